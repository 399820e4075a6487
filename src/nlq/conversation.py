from collections import deque
from dataclasses import dataclass

_DEFAULT_MAX_TURNS = 5
_DEFAULT_CHAR_BUDGET = 8_000


def clip_context(context: str | None, char_budget: int = _DEFAULT_CHAR_BUDGET) -> str | None:
    """Keep the most recent `char_budget` characters of a context string."""
    if not context:
        return None
    if len(context) <= char_budget:
        return context
    return context[-char_budget:]


@dataclass(frozen=True)
class Turn:
    question: str
    answer: str


class ConversationContext:
    """The last few question/answer turns of a session, oldest first."""

    def __init__(self, max_turns: int = _DEFAULT_MAX_TURNS) -> None:
        self._turns: deque[Turn] = deque(maxlen=max(1, max_turns))

    def __len__(self) -> int:
        return len(self._turns)

    def add(self, question: str, answer: str) -> None:
        self._turns.append(Turn(question, answer))

    def clear(self) -> None:
        self._turns.clear()

    def render(self) -> str | None:
        if not self._turns:
            return None
        return "\n\n".join(f"User: {t.question}\nAssistant: {t.answer}" for t in self._turns)

import json
import logging
import os
from typing import Any

from llm.base import ModelGateway, UpstreamError

from .errors import InterpretationFailure
from .identity import Identity

logger = logging.getLogger("courselens.interpreter")

INTERPRETATION_TEMPERATURE = 0.7
INTERPRETATION_MAX_OUTPUT_TOKENS = 2048
FALLBACK_RESPONSE = "I couldn't generate a response."

# ~4 characters per token is a reasonable approximation for English text.
_CHARS_PER_TOKEN = 4
_DEFAULT_TOKEN_BUDGET = 6_000

INTERPRETATION_PROMPT = """\
You are a helpful AI assistant for a learning management system.

Current user: {user}

User asked: "{question}"

Executed Prisma query:
{query}

Query results:
{data}
{previous_context}
SPECIAL HANDLING FOR CLARIFICATION QUERIES:
If the query results are a list of courses and the user's question was general \
(like "mentors in my course", "students in my course", "assignments"), then:
1. **Acknowledge their question**
2. **Show the available courses in a clean format**
3. **Ask them to specify which course** they want information about
4. **Give an example of how to ask** (e.g., "Show me mentors in [Course Name]")

RESPONSE FORMAT REQUIREMENTS:
- Use markdown formatting; keep headers small (###) and concise
- Use **bold** for important information and `code` for field names or values
- Use blockquotes (>) for key insights
- Keep the response conversational and helpful

TIMESTAMP FORMATTING:
- Timestamps in the results are UTC, written as ISO-8601 ending in `Z`
- ALWAYS convert timestamps to IST (Indian Standard Time, UTC+05:30)
- Display them as `DD/MM/YYYY, HH:MM AM/PM IST`, e.g. `15/01/2024, 02:30 PM IST`
- For relative times, also include IST: `2 hours ago (15/01/2024, 02:30 PM IST)`

CHOOSING A FORMAT:
- 3 or more records with the same fields: a markdown table
- Simple key-value pairs or short lists: bullet points
- Hierarchical or nested data: numbered lists with nested bullets
- A single value or count: one sentence with the value in bold
{truncation_note}
Based on the query results, provide a helpful, conversational answer to the \
user's question. Interpret the data meaningfully and do not invent records \
that are not in the results."""


def _token_budget() -> int:
    return int(os.getenv("RESULT_TOKEN_BUDGET", str(_DEFAULT_TOKEN_BUDGET)))


def serialize_data(data: Any, token_budget: int | None = None) -> tuple[str, bool]:
    """Serialize a dataset for the prompt, clipped to the token budget.

    Lists are cut at a record boundary. Returns the text and whether
    anything was dropped.
    """
    char_budget = (token_budget or _token_budget()) * _CHARS_PER_TOKEN
    text = json.dumps(data, indent=2, default=str)
    if len(text) <= char_budget:
        return text, False

    if isinstance(data, list):
        kept: list[Any] = []
        chars_used = 2
        for item in data:
            # Measured as a list element so the extra indentation is counted.
            block_len = len(json.dumps([item], indent=2, default=str)) - 2
            if chars_used + block_len > char_budget:
                break
            kept.append(item)
            chars_used += block_len
        return json.dumps(kept, indent=2, default=str), True

    return text[:char_budget], True


def build_interpretation_prompt(
    question: str,
    query: str,
    data: Any,
    identity: Identity,
    previous_context: str | None = None,
    token_budget: int | None = None,
) -> str:
    serialized, truncated = serialize_data(data, token_budget)
    note = ""
    if truncated:
        total = f" (the query returned {len(data)} records)" if isinstance(data, list) else ""
        note = (
            f"\nNOTE: The results above were truncated{total}; "
            "say that only part of the data is listed.\n"
        )
    context = f"\nPrevious context: {previous_context}\n" if previous_context else ""
    return INTERPRETATION_PROMPT.format(
        user=identity.label,
        question=question,
        query=query,
        data=serialized,
        previous_context=context,
        truncation_note=note,
    )


async def interpret(
    question: str,
    query: str,
    data: Any,
    identity: Identity,
    previous_context: str | None,
    gateway: ModelGateway,
) -> str:
    """Turn the executed query and its dataset into a markdown answer.

    There is no correction loop here: a gateway failure fails the request.
    """
    prompt = build_interpretation_prompt(question, query, data, identity, previous_context)
    try:
        text = await gateway.generate(
            prompt,
            max_output_tokens=INTERPRETATION_MAX_OUTPUT_TOKENS,
            temperature=INTERPRETATION_TEMPERATURE,
        )
    except UpstreamError as exc:
        logger.warning("Interpretation failed: %s", exc.message)
        raise InterpretationFailure(
            f"The query ran, but the answer could not be generated: {exc.message}", query,
        ) from exc

    if not text or not text.strip():
        return FALLBACK_RESPONSE
    return text

"""Generate, validate and execute a query, regenerating on execution failure.

Each iteration is one attempt:

    Generating -> Validating -> Executing -> Succeeded
                                          -> Regenerating -> Validating ...

Only ExecutionError leads to regeneration. Synthesis failures, policy
violations and upstream failures end the loop immediately, so no further
gateway call happens after one of them. The loop never runs more than
`max_attempts` generations or executions.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from db.access import ReadOnlyDataAccess
from llm.base import ModelGateway

from .errors import ExecutionError, MaxAttemptsExceeded
from .executor import execute
from .identity import Identity
from .synthesizer import (
    CORRECTION_TEMPERATURE,
    GENERATION_TEMPERATURE,
    build_correction_prompt,
    build_generation_prompt,
    generate_candidate,
)
from .validator import validate

logger = logging.getLogger("courselens.correction")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_ATTEMPT_DELAY = 0.5


@dataclass(frozen=True)
class QueryAttempt:
    """One generate -> validate -> execute iteration."""
    number: int
    candidate: str
    validated: bool
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.validated and self.error is None


@dataclass
class LoopOutcome:
    query: str
    data: Any
    attempts: list[QueryAttempt] = field(default_factory=list)


async def run_correction_loop(
    question: str,
    identity: Identity,
    data_access: ReadOnlyDataAccess,
    gateway: ModelGateway,
    *,
    previous_context: str | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    attempt_delay: float = DEFAULT_ATTEMPT_DELAY,
) -> LoopOutcome:
    """Return the first successfully executed candidate and its dataset.

    Raises MaxAttemptsExceeded when every attempt fails at execution time.
    Any other PipelineError propagates unchanged.
    """
    max_attempts = max(1, max_attempts)
    attempts: list[QueryAttempt] = []
    candidate = ""
    last_error = ""

    for number in range(1, max_attempts + 1):
        if number == 1:
            prompt = build_generation_prompt(question, identity, previous_context)
            temperature = GENERATION_TEMPERATURE
        else:
            logger.warning(
                "Query execution attempt %d/%d, waiting %.1fs", number, max_attempts, attempt_delay,
            )
            await asyncio.sleep(attempt_delay)
            prompt = build_correction_prompt(question, candidate, last_error, identity)
            temperature = CORRECTION_TEMPERATURE

        candidate = await generate_candidate(gateway, prompt, temperature)
        logger.info("Attempt %d candidate: %s", number, candidate)

        validate(candidate, identity.role)

        try:
            data = await execute(candidate, data_access, identity.role)
        except ExecutionError as exc:
            last_error = exc.message
            attempts.append(QueryAttempt(number, candidate, validated=True, error=last_error))
            logger.warning("Attempt %d failed: %s", number, last_error)
            continue

        attempts.append(QueryAttempt(number, candidate, validated=True))
        return LoopOutcome(query=candidate, data=data, attempts=attempts)

    raise MaxAttemptsExceeded(max_attempts, last_error, candidate, history=tuple(attempts))

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any

import asyncpg
from pydantic import BaseModel

from db.access import AccessSettings, ReadOnlyDataAccess
from llm.base import ModelGateway
from llm.factory import build_gateway

from .conversation import clip_context
from .correction import DEFAULT_ATTEMPT_DELAY, DEFAULT_MAX_ATTEMPTS, QueryAttempt, run_correction_loop
from .errors import AuthenticationMissing, PipelineError, PipelineTimeout
from .identity import Identity
from .interpreter import interpret

logger = logging.getLogger("courselens.pipeline")

GENERIC_FAILURE = "Failed to execute AI query"


@dataclass(frozen=True)
class PipelineSettings:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    attempt_delay: float = DEFAULT_ATTEMPT_DELAY
    deadline_seconds: float = 120.0
    context_char_budget: int = 8_000
    access: AccessSettings = field(default_factory=AccessSettings)

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            max_attempts=int(os.getenv("MAX_QUERY_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))),
            attempt_delay=float(os.getenv("QUERY_ATTEMPT_DELAY", str(DEFAULT_ATTEMPT_DELAY))),
            deadline_seconds=float(os.getenv("REQUEST_DEADLINE_SECONDS", "120")),
            context_char_budget=int(os.getenv("CONTEXT_CHAR_BUDGET", "8000")),
            access=AccessSettings.from_env(),
        )


class PipelineResponse(BaseModel):
    """Outcome of one question. Successful runs carry query, data and response."""
    ok: bool
    question: str
    query: str | None = None
    data: Any = None
    response: str | None = None
    error: str | None = None
    attempts: list[QueryAttempt] = []

    def as_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "query": self.query, "data": self.data, "response": self.response}
        result: dict[str, Any] = {"ok": False, "error": self.error}
        if self.query is not None:
            result["query"] = self.query
        return result


async def ask(
    question: str,
    identity: Identity | None,
    conn: asyncpg.Connection,
    *,
    previous_context: str | None = None,
    model: str | None = None,
    gateway: ModelGateway | None = None,
    settings: PipelineSettings | None = None,
) -> PipelineResponse:
    """Answer a question about platform data on behalf of `identity`.

    Steps:
        1. Synthesize a candidate query via the model gateway.
        2. Validate it against the caller's security policy.
        3. Execute it through the read-only data-access capability,
           regenerating on execution errors up to the attempt limit.
        4. Interpret the dataset into a markdown answer.

    Never raises for pipeline failures; they come back as ok=False.
    """
    if identity is None:
        return _failure(question, AuthenticationMissing())

    try:
        settings = settings or PipelineSettings.from_env()
        gateway = gateway or build_gateway(model)
    except ValueError as exc:
        # malformed numeric settings in the environment
        logger.error("Invalid pipeline configuration: %s", exc)
        return PipelineResponse(ok=False, question=question, error=GENERIC_FAILURE)

    context = clip_context(previous_context, settings.context_char_budget)
    data_access = ReadOnlyDataAccess(conn, settings.access)

    try:
        async with asyncio.timeout(settings.deadline_seconds):
            outcome = await run_correction_loop(
                question,
                identity,
                data_access,
                gateway,
                previous_context=context,
                max_attempts=settings.max_attempts,
                attempt_delay=settings.attempt_delay,
            )
            response = await interpret(
                question, outcome.query, outcome.data, identity, context, gateway,
            )
    except TimeoutError:
        return _failure(question, PipelineTimeout(settings.deadline_seconds))
    except PipelineError as exc:
        return _failure(question, exc)
    except Exception:
        logger.exception("Unexpected error answering %r for %s", question, identity.username)
        return PipelineResponse(ok=False, question=question, error=GENERIC_FAILURE)

    logger.info(
        "Answered for %s in %d attempt(s) using %s",
        identity.username, len(outcome.attempts), gateway.model,
    )
    return PipelineResponse(
        ok=True,
        question=question,
        query=outcome.query,
        data=outcome.data,
        response=response,
        attempts=outcome.attempts,
    )


def _failure(question: str, exc: PipelineError) -> PipelineResponse:
    logger.warning("%s: %s", type(exc).__name__, exc.message)
    attempts = list(getattr(exc, "history", ()))
    return PipelineResponse(
        ok=False,
        question=question,
        query=exc.query,
        error=exc.message,
        attempts=attempts,
    )

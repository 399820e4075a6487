import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass

from nlq.errors import PipelineError

logger = logging.getLogger("courselens.llm")

_DEFAULT_MAX_RETRIES = 3
_DEFAULT_TIMEOUT = 60.0


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class UpstreamError(PipelineError):
    """Base class for failures of the text-generation service."""


class UpstreamUnavailable(UpstreamError):
    """Transient failures persisted through every retry."""


class UpstreamRejected(UpstreamError):
    """The service refused the request (4xx-class) or is not configured."""


class UpstreamStatusError(Exception):
    """Raised by providers for a non-2xx HTTP response."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"HTTP {status_code}: {detail}" if detail else f"HTTP {status_code}")
        self.status_code = status_code
        self.detail = detail


class UpstreamConnectionError(Exception):
    """Raised by providers when no response was received at all."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayConfig:
    model: str
    api_key: str | None = None
    base_url: str | None = None
    max_retries: int = _DEFAULT_MAX_RETRIES
    timeout: float = _DEFAULT_TIMEOUT

    @classmethod
    def from_env(
        cls,
        model: str,
        api_key_var: str,
        base_url_var: str,
        default_base_url: str | None = None,
    ) -> "GatewayConfig":
        return cls(
            model=model,
            api_key=os.getenv(api_key_var),
            base_url=os.getenv(base_url_var, default_base_url),
            max_retries=int(os.getenv("LLM_MAX_RETRIES", str(_DEFAULT_MAX_RETRIES))),
            timeout=float(os.getenv("LLM_TIMEOUT_SECONDS", str(_DEFAULT_TIMEOUT))),
        )


@dataclass
class ModelInfo:
    name: str
    display_name: str
    description: str = ""
    version: str = ""


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

def status_backoff(attempt: int) -> float:
    """Seconds to wait after a 5xx response on the given 1-based attempt."""
    return float(2 ** attempt)


def network_backoff(attempt: int) -> float:
    """Seconds to wait after a connection failure on the given 1-based attempt."""
    return 0.5 + 2 ** attempt


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class ModelGateway(ABC):
    """Text-in / text-out boundary to a generation service, with retries."""

    def __init__(self, config: GatewayConfig) -> None:
        self.config = config

    @property
    def model(self) -> str:
        return self.config.model

    @abstractmethod
    def provider_name(self) -> str:
        """Short provider identifier used in logs and messages."""

    @abstractmethod
    async def _complete(self, prompt: str, max_output_tokens: int, temperature: float) -> str:
        """Send one request and return the first completion text.

        Must raise UpstreamStatusError for HTTP failures and
        UpstreamConnectionError when no response arrives.
        """

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """Return the generation models available to the configured credential."""

    async def generate(self, prompt: str, max_output_tokens: int, temperature: float) -> str:
        """Return a completion, retrying 5xx and network failures with backoff.

        4xx responses are terminal (UpstreamRejected). Exhausting the retries
        raises UpstreamUnavailable.
        """
        if not self.config.api_key:
            raise UpstreamRejected(
                f"No {self.provider_name()} API key found. Please configure it first."
            )

        max_retries = max(1, self.config.max_retries)
        for attempt in range(1, max_retries + 1):
            try:
                return await self._complete(prompt, max_output_tokens, temperature)
            except UpstreamStatusError as exc:
                if exc.status_code < 500:
                    raise UpstreamRejected(
                        f"{self.provider_name()} API error: {exc.status_code} "
                        f"after {attempt} attempts"
                    ) from exc
                if attempt == max_retries:
                    raise UpstreamUnavailable(
                        f"{self.provider_name()} is unavailable right now "
                        f"(HTTP {exc.status_code} after {attempt} attempts). Please try again."
                    ) from exc
                wait = status_backoff(attempt)
                logger.warning(
                    "%s %d error on attempt %d/%d, retrying in %.1fs",
                    self.provider_name(), exc.status_code, attempt, max_retries, wait,
                )
                await asyncio.sleep(wait)
            except UpstreamConnectionError as exc:
                if attempt == max_retries:
                    raise UpstreamUnavailable(
                        f"Could not reach {self.provider_name()} after {attempt} attempts. "
                        "Please try again."
                    ) from exc
                wait = network_backoff(attempt)
                logger.warning(
                    "Network error on attempt %d/%d (%s), retrying in %.1fs",
                    attempt, max_retries, exc, wait,
                )
                await asyncio.sleep(wait)

        raise UpstreamUnavailable("All retry attempts failed")

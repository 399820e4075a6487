class PipelineError(Exception):
    """Base class for every failure the pipeline reports to its caller.

    `message` is safe to show to an end user. `query` carries the candidate
    involved in the failure, when there is one, for operator diagnostics.
    """

    def __init__(self, message: str, query: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.query = query


class AuthenticationMissing(PipelineError):
    def __init__(self) -> None:
        super().__init__("Not authenticated")


class SynthesisError(PipelineError):
    """The model completion could not be reduced to a candidate query."""


class PolicyViolation(PipelineError):
    """The candidate breaks the read-only / field-visibility policy."""

    def __init__(self, message: str, code: str, query: str | None = None) -> None:
        super().__init__(message, query)
        self.code = code


class ExecutionError(PipelineError):
    """A policy-valid candidate failed at runtime. The only retryable class."""


class MaxAttemptsExceeded(PipelineError):
    def __init__(
        self,
        attempts: int,
        last_error: str,
        query: str | None,
        history: tuple = (),
    ) -> None:
        super().__init__(
            f"Query execution failed after {attempts} attempts: {last_error}",
            query,
        )
        self.attempts = attempts
        self.last_error = last_error
        self.history = history


class InterpretationFailure(PipelineError):
    """The query ran but the narrative answer could not be generated."""


class PipelineTimeout(PipelineError):
    def __init__(self, seconds: float, query: str | None = None) -> None:
        super().__init__(
            f"The request did not finish within {seconds:g} seconds. Please try again.",
            query,
        )

from __future__ import annotations

from app.schemas import ErrorEnvelope, ErrorCode, ErrorStep


class AnalysisError(Exception):
    """Raised when an analysis step fails and the run must stop."""

    def __init__(
        self,
        message: str,
        *,
        step: ErrorStep,
        error_code: ErrorCode,
        retryable: bool,
        attempts: int | None = None,
        sources_count: int | None = None,
        raw_output: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step = step
        self.error_code = error_code
        self.retryable = retryable
        self.attempts = attempts
        self.sources_count = sources_count
        self.raw_output = raw_output

    def to_envelope(self) -> ErrorEnvelope:
        return ErrorEnvelope(
            step=self.step,
            error_code=self.error_code,
            message=self.message,
            retryable=self.retryable,
            attempts=self.attempts,
            sources_count=self.sources_count,
            raw_output=self.raw_output,
        )


class InvalidRequestError(AnalysisError):
    """Raised when the request does not identify exactly one market."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message, step="overall", error_code="BAD_RESPONSE", retryable=False
        )


class LLMCallError(AnalysisError):
    """Raised when the provider call itself fails or times out."""

    def __init__(self, message: str, *, timed_out: bool = False, attempts: int | None = None) -> None:
        super().__init__(
            message,
            step="llm",
            error_code="TIMEOUT" if timed_out else "BAD_RESPONSE",
            retryable=True,
            attempts=attempts,
        )


class InvalidLLMOutputError(AnalysisError):
    """Raised when the model output cannot be decoded as a JSON object."""

    def __init__(
        self,
        message: str = "LLM output could not be parsed as JSON.",
        *,
        raw_output: str | None = None,
        attempts: int | None = None,
    ) -> None:
        super().__init__(
            message,
            step="parse",
            error_code="INVALID_JSON",
            retryable=True,
            attempts=attempts,
            raw_output=raw_output,
        )


class ReportValidationError(AnalysisError):
    """Raised when decoded model output violates the report schema."""

    def __init__(
        self,
        reason: str,
        *,
        raw_output: str | None = None,
        attempts: int | None = None,
    ) -> None:
        super().__init__(
            f"AI output failed validation ({reason})",
            step="validate",
            error_code="BAD_RESPONSE",
            retryable=True,
            attempts=attempts,
            raw_output=raw_output,
        )
        self.reason = reason


__all__ = [
    "AnalysisError",
    "InvalidLLMOutputError",
    "InvalidRequestError",
    "LLMCallError",
    "ReportValidationError",
]

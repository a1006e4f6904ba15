from __future__ import annotations


class MarketFetchError(Exception):
    """Raised when the Gamma API rejects or cannot serve a request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        if code is None and status_code in (404, 410):
            code = "NOT_FOUND"
        self.code = code
        self.retryable = retryable

    @property
    def is_not_found(self) -> bool:
        return self.code == "NOT_FOUND" or self.status_code in (404, 410)


class MarketResolutionError(MarketFetchError):
    """Raised when input cannot be mapped onto a market; never retried."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND") -> None:
        super().__init__(message, code=code, retryable=False)


__all__ = ["MarketFetchError", "MarketResolutionError"]

"""Retry-with-backoff executor shared by market, search, and LLM call sites."""

from __future__ import annotations

import asyncio
import errno
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

import httpx
from loguru import logger

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]
SleepFn = Callable[[float], Awaitable[None]]

_TRANSIENT_ERRNOS = {
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
    errno.EPIPE,
}
_TRANSIENT_CODES = {
    "ECONNRESET",
    "ETIMEDOUT",
    "EAI_AGAIN",
    "UND_ERR_CONNECT_TIMEOUT",
    "UND_ERR_SOCKET",
}
_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    asyncio.TimeoutError,
    socket.timeout,
    socket.gaierror,
    ConnectionResetError,
)


@dataclass(slots=True)
class RetryOutcome(Generic[T]):
    value: T | None
    attempts: int
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def status_code_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable_error(exc: BaseException) -> bool:
    """Classify an error as transient.

    Priority: explicit ``retryable`` flag, ``NOT_FOUND`` code, HTTP 404/410,
    HTTP 429/5xx, known transient network failures, otherwise not retryable.
    """
    retryable = getattr(exc, "retryable", None)
    if isinstance(retryable, bool):
        return retryable
    if getattr(exc, "code", None) == "NOT_FOUND":
        return False
    status = status_code_of(exc)
    if status in (404, 410):
        return False
    if status is not None and (status == 429 or status >= 500):
        return True
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    if isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS:
        return True
    return getattr(exc, "code", None) in _TRANSIENT_CODES


async def with_retries(
    fn: Callable[[int], Awaitable[T]],
    max_retries: int,
    backoff_ms: int,
    is_retryable: RetryPredicate | None = None,
    *,
    sleep: SleepFn = asyncio.sleep,
    label: str = "operation",
) -> RetryOutcome[T]:
    """Run ``fn(attempt)`` up to ``max_retries + 1`` times with exponential backoff."""

    max_retries = max(max_retries, 0)
    backoff_ms = max(backoff_ms, 0)
    attempt = 0
    while True:
        try:
            value = await fn(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - classified below
            retryable = is_retryable(exc) if is_retryable else True
            if not retryable or attempt >= max_retries:
                logger.debug(
                    "{} failed attempt={} retryable={} error={}",
                    label,
                    attempt + 1,
                    retryable,
                    exc,
                )
                return RetryOutcome(value=None, attempts=attempt + 1, error=exc)
            delay_ms = backoff_ms * (2**attempt)
            logger.debug(
                "{} failed attempt={}; retrying in {}ms error={}",
                label,
                attempt + 1,
                delay_ms,
                exc,
            )
            await sleep(delay_ms / 1000)
            attempt += 1
            continue
        return RetryOutcome(value=value, attempts=attempt + 1)


__all__ = ["RetryOutcome", "is_retryable_error", "status_code_of", "with_retries"]

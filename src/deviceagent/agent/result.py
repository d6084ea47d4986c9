"""Tagged result of a network operation.

A transport call never raises for HTTP or connectivity failures. It returns
exactly one of:
- Success: the server accepted the request (2xx)
- ApiError: the server rejected the request (HTTP status >= 400)
- NetworkError: the request never completed (no connectivity, timeout, DNS)

Callers branch on the variant with isinstance(); describe() and
is_retryable() are the reference exhaustive matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union, assert_never

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful request, optionally carrying response data."""

    data: T | None = None


@dataclass(frozen=True)
class ApiError:
    """Server rejected the request.

    Attributes:
        code: HTTP status code.
        message: Error body returned by the server, if any.
    """

    code: int
    message: str | None = None


@dataclass(frozen=True)
class NetworkError:
    """Request failed before a response was received."""

    reason: str = ""
    timed_out: bool = False


NetworkResult = Union[Success[Any], ApiError, NetworkError]


def is_retryable(result: NetworkResult) -> bool:
    """Check whether a failed result should be retried.

    Both network failures and API errors are retried; 4xx and 5xx
    are not distinguished.
    """
    if isinstance(result, Success):
        return False
    if isinstance(result, ApiError):
        return True
    if isinstance(result, NetworkError):
        return True
    assert_never(result)


def describe(result: NetworkResult) -> str:
    """Get a short human-readable description of a result."""
    if isinstance(result, Success):
        return "success"
    if isinstance(result, ApiError):
        return f"api error {result.code}: {result.message or 'no details'}"
    if isinstance(result, NetworkError):
        if result.timed_out:
            return f"timeout: {result.reason}"
        return f"network error: {result.reason or 'unreachable'}"
    assert_never(result)

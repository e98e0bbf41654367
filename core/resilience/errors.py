"""
PolicyOS Core Resilience — Errors and Classification
======================================================
Error types raised by the resilience layer, and the message-based
classification that decides whether an upstream failure is worth a retry.
"""

from __future__ import annotations

import re

ERROR_SUMMARY_LIMIT = 180
CIRCUIT_OPEN_CODE = "AI_CIRCUIT_OPEN"

RETRIABLE_MARKERS = (
    "timeout",
    "aborted",
    "connection error",
    "network error",
    "econnreset",
    "econnrefused",
    "eai_again",
)

_WHITESPACE = re.compile(r"\s+")
_HTTP_RETRIABLE = re.compile(r"http 429|http 5")


class ResilienceError(Exception):
    """Base error for resilience layer operations."""
    pass


class CircuitOpenError(ResilienceError):
    """
    Breaker is open: the call was shed without reaching the upstream.

    Callers treat this like an upstream failure but should not retry
    before remaining_ms has elapsed.
    """

    code = CIRCUIT_OPEN_CODE

    def __init__(self, remaining_ms: int, last_error: str = ""):
        self.remaining_ms = remaining_ms
        self.last_error = last_error
        super().__init__(
            f"ai circuit breaker is open for {remaining_ms}ms: "
            f"{last_error or 'recent upstream failures'}"
        )


def summarize_error(error: BaseException) -> str:
    """Error message with whitespace collapsed, cut to 180 characters."""
    raw = str(error) if error is not None else ""
    if not raw:
        raw = type(error).__name__ if error is not None else "unknown error"
    return _WHITESPACE.sub(" ", raw)[:ERROR_SUMMARY_LIMIT]


def is_retriable_error(error: BaseException, attempt: int = 0) -> bool:
    """
    True for timeouts, aborts, connection/network/DNS failures, and
    HTTP 429 or 5xx embedded in the message ("http 503: ...").
    CircuitOpenError is never retriable.
    """
    if isinstance(error, CircuitOpenError):
        return False
    normalized = summarize_error(error).lower()
    if not normalized:
        return False
    if any(marker in normalized for marker in RETRIABLE_MARKERS):
        return True
    return bool(_HTTP_RETRIABLE.search(normalized))

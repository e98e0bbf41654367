"""
PolicyOS Core Resilience — Retry with Exponential Backoff
===========================================================
run_with_retry(task) calls task(attempt) until it succeeds, the error is
not retriable, or attempts are exhausted. The wait before attempt n+1 is
backoff_ms * 2**(n-1). The last error is re-raised unchanged.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from core.resilience.errors import is_retriable_error, summarize_error

logger = logging.getLogger("policyos.resilience")

DEFAULT_RETRY_MAX_ATTEMPTS = 2
DEFAULT_RETRY_BACKOFF_MS = 180

T = TypeVar("T")


def as_positive_int(value, fallback: int) -> int:
    """Positive integer or fallback (non-numeric, zero and negatives fall back)."""
    try:
        parsed = int(float(value))
    except (TypeError, ValueError):
        return fallback
    return parsed if parsed > 0 else fallback


def run_with_retry(
    task: Callable[[int], T],
    *,
    max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS,
    backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS,
    should_retry: Callable[[BaseException, int], bool] = is_retriable_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    max_attempts = as_positive_int(max_attempts, DEFAULT_RETRY_MAX_ATTEMPTS)
    backoff_ms = as_positive_int(backoff_ms, DEFAULT_RETRY_BACKOFF_MS)

    attempt = 1
    while True:
        try:
            return task(attempt)
        except Exception as exc:
            if attempt >= max_attempts or not should_retry(exc, attempt):
                raise
            wait_ms = backoff_ms * (2 ** (attempt - 1))
            logger.warning(
                f"Retrying attempt={attempt + 1}/{max_attempts} "
                f"delay={wait_ms}ms reason={summarize_error(exc)}"
            )
            sleep(wait_ms / 1000.0)
            attempt += 1

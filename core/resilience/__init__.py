"""
PolicyOS Core Resilience — Public API
=======================================
Bounded-concurrency queue, retry with exponential backoff, and a
circuit breaker for calls to the external model gateway.
"""

from core.resilience.circuit_breaker import (
    DEFAULT_CIRCUIT_COOLDOWN_MS,
    DEFAULT_CIRCUIT_FAILURE_THRESHOLD,
    CircuitBreaker,
)
from core.resilience.errors import (
    CIRCUIT_OPEN_CODE,
    CircuitOpenError,
    ResilienceError,
    is_retriable_error,
    summarize_error,
)
from core.resilience.queue import BoundedTaskQueue
from core.resilience.retry import (
    DEFAULT_RETRY_BACKOFF_MS,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    as_positive_int,
    run_with_retry,
)

__all__ = [
    "CIRCUIT_OPEN_CODE",
    "DEFAULT_CIRCUIT_COOLDOWN_MS",
    "DEFAULT_CIRCUIT_FAILURE_THRESHOLD",
    "DEFAULT_RETRY_BACKOFF_MS",
    "DEFAULT_RETRY_MAX_ATTEMPTS",
    "BoundedTaskQueue",
    "CircuitBreaker",
    "CircuitOpenError",
    "ResilienceError",
    "as_positive_int",
    "is_retriable_error",
    "run_with_retry",
    "summarize_error",
]

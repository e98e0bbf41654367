"""
PolicyOS Core Resilience — Circuit Breaker
============================================
Fail-fast guard for a consistently failing upstream.

State machine (per gateway client, process lifetime):
- record_failure(): consecutive failures reaching failure_threshold
  opens the breaker for cooldown_ms
- throw_if_open(): while open, raises CircuitOpenError without touching
  the upstream
- record_success(): resets consecutive failures; clears the open window
  once it has elapsed

Time is read from an injected Clock.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, Optional

from core.resilience.errors import CircuitOpenError, summarize_error
from core.resilience.retry import as_positive_int
from core.time.clock import Clock, SystemClock, from_epoch_ms

logger = logging.getLogger("policyos.resilience")

DEFAULT_CIRCUIT_FAILURE_THRESHOLD = 4
DEFAULT_CIRCUIT_COOLDOWN_MS = 30000


class CircuitBreaker:
    """
    Usage:
        breaker = CircuitBreaker(failure_threshold=4, cooldown_ms=30000)
        breaker.throw_if_open()
        try:
            result = call()
        except Exception as exc:
            breaker.record_failure(exc)
            raise
        breaker.record_success()
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_CIRCUIT_FAILURE_THRESHOLD,
        cooldown_ms: int = DEFAULT_CIRCUIT_COOLDOWN_MS,
        clock: Optional[Clock] = None,
    ):
        self.failure_threshold = as_positive_int(
            failure_threshold, DEFAULT_CIRCUIT_FAILURE_THRESHOLD
        )
        self.cooldown_ms = as_positive_int(cooldown_ms, DEFAULT_CIRCUIT_COOLDOWN_MS)
        self._clock = clock or SystemClock()
        self._lock = Lock()
        self._consecutive_failures = 0
        self._total_failures = 0
        self._total_success = 0
        self._opened_at: Optional[int] = None
        self._opened_until: Optional[int] = None
        self._last_error = ""

    def _is_open(self, now_ms: int) -> bool:
        return self._opened_until is not None and now_ms < self._opened_until

    def _remaining_ms(self, now_ms: int) -> int:
        if not self._is_open(now_ms):
            return 0
        return max(0, self._opened_until - now_ms)

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def is_open(self) -> bool:
        with self._lock:
            return self._is_open(self._clock.now_ms())

    def throw_if_open(self) -> None:
        with self._lock:
            now_ms = self._clock.now_ms()
            if not self._is_open(now_ms):
                return
            remaining = self._remaining_ms(now_ms)
            last_error = self._last_error
        raise CircuitOpenError(remaining, last_error)

    def record_success(self) -> None:
        with self._lock:
            self._total_success += 1
            self._consecutive_failures = 0
            if (
                self._opened_until is not None
                and self._clock.now_ms() >= self._opened_until
            ):
                self._opened_at = None
                self._opened_until = None
                logger.info("Circuit breaker closed after cooldown.")

    def record_failure(self, error: BaseException) -> None:
        with self._lock:
            self._total_failures += 1
            self._consecutive_failures += 1
            self._last_error = summarize_error(error)
            if self._consecutive_failures >= self.failure_threshold:
                now_ms = self._clock.now_ms()
                self._opened_at = now_ms
                self._opened_until = now_ms + self.cooldown_ms
                logger.warning(
                    f"Circuit breaker opened for {self.cooldown_ms}ms after "
                    f"{self._consecutive_failures} consecutive failures: "
                    f"{self._last_error}"
                )

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            now_ms = self._clock.now_ms()
            return {
                "failure_threshold": self.failure_threshold,
                "cooldown_ms": self.cooldown_ms,
                "is_open": self._is_open(now_ms),
                "remaining_ms": self._remaining_ms(now_ms),
                "consecutive_failures": self._consecutive_failures,
                "total_failures": self._total_failures,
                "total_success": self._total_success,
                "last_error": self._last_error,
                "opened_at": (
                    from_epoch_ms(self._opened_at).isoformat()
                    if self._opened_at is not None else None
                ),
                "opened_until": (
                    from_epoch_ms(self._opened_until).isoformat()
                    if self._opened_until is not None else None
                ),
            }

"""
PolicyOS Core Time — Explicit Clock Protocol
==============================================
Doctrine: NO datetime.now() inside engine logic.

Budget pacing windows, frequency windows, circuit breaker cooldowns and
decision timestamps all read time through an injected Clock. Tests use
FixedClock and advance it explicitly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


# ══════════════════════════════════════════════════════════════
# CLOCK PROTOCOL
# ══════════════════════════════════════════════════════════════

class Clock(Protocol):
    """Injectable time source."""

    def now_utc(self) -> datetime:
        """Return current UTC time."""
        ...  # pragma: no cover

    def now_ms(self) -> int:
        """Return current time as epoch milliseconds."""
        ...  # pragma: no cover


def to_epoch_ms(dt: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(dt.timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


# ══════════════════════════════════════════════════════════════
# IMPLEMENTATIONS
# ══════════════════════════════════════════════════════════════

class SystemClock:
    """Production clock — real system time."""

    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_ms(self) -> int:
        return to_epoch_ms(self.now_utc())


class FixedClock:
    """
    Test clock — returns a fixed timestamp until advanced.

    Usage:
        clock = FixedClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock.advance(60)
    """

    def __init__(self, fixed_dt: datetime) -> None:
        if fixed_dt.tzinfo is None:
            raise ValueError("FixedClock requires timezone-aware datetime.")
        self._fixed_dt = fixed_dt

    def now_utc(self) -> datetime:
        return self._fixed_dt

    def now_ms(self) -> int:
        return to_epoch_ms(self._fixed_dt)

    def advance(self, seconds: float) -> None:
        """Advance the fixed time (useful for multi-step test scenarios)."""
        self._fixed_dt = self._fixed_dt + timedelta(seconds=seconds)

    def advance_ms(self, ms: int) -> None:
        self._fixed_dt = self._fixed_dt + timedelta(milliseconds=ms)

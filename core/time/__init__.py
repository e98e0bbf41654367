"""
PolicyOS Core Time — Public API
=================================
Explicit clock protocol. Doctrine: NO datetime.now() in engine logic.
"""

from core.time.clock import (
    Clock,
    FixedClock,
    SystemClock,
    from_epoch_ms,
    to_epoch_ms,
)

__all__ = [
    "Clock",
    "FixedClock",
    "SystemClock",
    "from_epoch_ms",
    "to_epoch_ms",
]

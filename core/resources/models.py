"""
PolicyOS Core Resources — State Models
========================================
Immutable resource state records and reservation tokens.

States are replaced on every write (dataclasses.replace), never mutated
in place. A ReservationToken is the only handle needed to undo a
reservation; the pipeline treats it as opaque and hands it back verbatim
to the owning constraint's release().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


# ══════════════════════════════════════════════════════════════
# RESOURCE KINDS
# ══════════════════════════════════════════════════════════════

class ResourceKind:
    """Resource namespaces. Each is owned by exactly one constraint."""
    BUDGET = "budget"
    INVENTORY = "inventory"
    FREQUENCY = "frequency"

    ALL = frozenset({"budget", "inventory", "frequency"})


def compose_key(*parts: str) -> str:
    """Build a composite resource key: merchantId|policyId[|sku|userId]."""
    return "|".join(str(part) for part in parts)


# ══════════════════════════════════════════════════════════════
# STATE RECORDS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BudgetState:
    """
    Budget usage for one merchant|policy key.

    Invariant at rest: used <= cap. minute_spent belongs to the
    fixed-origin minute window starting at minute_window_start_ms.
    """

    used: float = 0.0
    cap: float = float("inf")
    minute_window_start_ms: int = 0
    minute_spent: float = 0.0


@dataclass(frozen=True)
class InventoryState:
    """Reserved units for one merchant|sku key. Invariant: reserved <= hard_cap."""

    reserved: int = 0
    hard_cap: float = float("inf")


# ══════════════════════════════════════════════════════════════
# RESERVATION TOKEN
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ReservationToken:
    """
    Handle for undoing one committed reservation.

    Fields:
        kind:   budget | inventory | frequency
        key:    composite resource key
        amount: consumed quantity (budget cost, inventory units)
        marker: frequency hit timestamp, or the budget minute window
                the cost was counted in (epoch ms)
    """

    kind: str
    key: str
    amount: float = 0.0
    marker: Optional[int] = None

    def __post_init__(self):
        if self.kind not in ResourceKind.ALL:
            raise ValueError(
                f"kind '{self.kind}' not valid. "
                f"Must be one of: {sorted(ResourceKind.ALL)}"
            )
        if not self.key or not isinstance(self.key, str):
            raise ValueError("key must be a non-empty string.")

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "key": self.key,
            "amount": self.amount,
            "marker": self.marker,
        }

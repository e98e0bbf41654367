"""
PolicyOS Core Resources — Public API
======================================
Resource state records, reservation tokens and the keyed state store.
"""

from core.resources.models import (
    BudgetState,
    InventoryState,
    ReservationToken,
    ResourceKind,
    compose_key,
)
from core.resources.store import (
    InMemoryResourceStore,
    ResourceStore,
    ResourceStoreError,
)

__all__ = [
    "BudgetState",
    "InventoryState",
    "ReservationToken",
    "ResourceKind",
    "compose_key",
    "InMemoryResourceStore",
    "ResourceStore",
    "ResourceStoreError",
]

"""
PolicyOS Plugins — Plugin Registry
====================================
Typed lookup table of named plugin implementations, grouped by capability.

Rules:
- register() stores an implementation under (capability, name)
- Re-registration overwrites the previous implementation
- get() never raises: absence is a normal condition the caller turns
  into a structured failure response
- Implementations must satisfy the capability's interface

No logic beyond registration and lookup.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Dict, List, Optional

from engines.policyos.plugins.contracts import (
    CAPABILITY_INTERFACES,
    PluginCapability,
)

logger = logging.getLogger("policyos.plugins")


# ══════════════════════════════════════════════════════════════
# REGISTRY ERRORS
# ══════════════════════════════════════════════════════════════

class PluginRegistryError(Exception):
    """Base error for plugin registry operations."""
    pass


class UnknownCapabilityError(PluginRegistryError):
    """Capability is not one of trigger/segment/constraint/scorer/action."""

    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(
            f"Unsupported plugin capability '{capability}'. "
            f"Must be one of: {sorted(PluginCapability.ALL)}"
        )


# ══════════════════════════════════════════════════════════════
# PLUGIN REGISTRY
# ══════════════════════════════════════════════════════════════

class PluginRegistry:
    """
    Thread-safe registry of plugins per capability.

    Usage:
        registry = PluginRegistry()
        registry.register("constraint", "budget_guard_v1", BudgetGuard(...))
        plugin = registry.get("constraint", "budget_guard_v1")
        registry.get("constraint", "missing")   # None
    """

    def __init__(self):
        self._buckets: Dict[str, Dict[str, Any]] = {
            capability: {} for capability in PluginCapability.ALL
        }
        self._lock = Lock()

    def register(self, capability: str, name: str, impl: Any) -> None:
        """
        Register impl under (capability, name).

        Raises:
            UnknownCapabilityError: capability is not supported.
            ValueError: name is blank.
            TypeError: impl does not implement the capability interface.
        """
        interface = CAPABILITY_INTERFACES.get(capability)
        if interface is None:
            raise UnknownCapabilityError(capability)
        if not name or not isinstance(name, str) or not name.strip():
            raise ValueError("plugin name must be a non-empty string.")
        if not isinstance(impl, interface):
            raise TypeError(
                f"Expected {interface.__name__} for capability "
                f"'{capability}', got {type(impl).__name__}."
            )

        with self._lock:
            bucket = self._buckets[capability]
            if name in bucket:
                logger.info(f"Plugin overwritten: {capability}/{name}")
            bucket[name] = impl

    def get(self, capability: str, name: str) -> Optional[Any]:
        """Return the implementation, or None if absent."""
        with self._lock:
            bucket = self._buckets.get(capability)
            if bucket is None:
                return None
            return bucket.get(name)

    def list(self, capability: str) -> List[str]:
        """Registered names for a capability (sorted). Unknown → []."""
        with self._lock:
            bucket = self._buckets.get(capability)
            if bucket is None:
                return []
            return sorted(bucket.keys())

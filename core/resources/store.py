"""
PolicyOS Core Resources — Resource State Store
================================================
Keyed mutable resource state shared by constraint plugins.

Rules:
- One namespace per resource kind (budget, inventory, frequency)
- Each namespace is written only by its owning constraint plugin
- Entries are created lazily and never deleted
- Every check-then-reserve sequence runs under the per-key locks of the
  keys it touches (locked()), so cap invariants hold under concurrent
  admission of candidates racing for the same key

Locks are re-entrant: a constraint may lock its own key inside a
pipeline-held admission lock without deadlocking.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from threading import Lock, RLock
from typing import Any, Dict, Iterable, Iterator, Optional, Protocol, Tuple

from core.resources.models import ResourceKind

logger = logging.getLogger("policyos.resources")

Scope = Tuple[str, str]  # (kind, key)


# ══════════════════════════════════════════════════════════════
# STORE ERRORS
# ══════════════════════════════════════════════════════════════

class ResourceStoreError(Exception):
    """
    Resource store is unreachable or returned corrupt state.

    Fatal for the evaluation: never converted into a blocked candidate.
    """

    def __init__(self, message: str, kind: str = "", key: str = ""):
        self.kind = kind
        self.key = key
        super().__init__(message)


# ══════════════════════════════════════════════════════════════
# STORE PROTOCOL
# ══════════════════════════════════════════════════════════════

class ResourceStore(Protocol):
    """
    Narrow key-value interface over resource state.

    Implementations may back this with a database or a document store.
    """

    def get(self, kind: str, key: str) -> Optional[Any]:
        ...  # pragma: no cover

    def put(self, kind: str, key: str, value: Any) -> None:
        ...  # pragma: no cover

    def locked(self, scopes: Iterable[Scope]):
        ...  # pragma: no cover

    def snapshot(self, kind: str) -> Dict[str, Any]:
        ...  # pragma: no cover


# ══════════════════════════════════════════════════════════════
# IN-MEMORY STORE
# ══════════════════════════════════════════════════════════════

class InMemoryResourceStore:
    """
    Process-local resource store with per-key re-entrant locks.

    Usage:
        store = InMemoryResourceStore()
        with store.locked([("budget", "m1|p1")]):
            state = store.get("budget", "m1|p1")
            store.put("budget", "m1|p1", new_state)
    """

    def __init__(self) -> None:
        self._namespaces: Dict[str, Dict[str, Any]] = {
            kind: {} for kind in ResourceKind.ALL
        }
        self._key_locks: Dict[Scope, RLock] = {}
        self._guard = Lock()

    def _namespace(self, kind: str) -> Dict[str, Any]:
        namespace = self._namespaces.get(kind)
        if namespace is None:
            raise ResourceStoreError(
                f"Unknown resource kind '{kind}'.", kind=kind
            )
        return namespace

    def _lock_for(self, scope: Scope) -> RLock:
        with self._guard:
            lock = self._key_locks.get(scope)
            if lock is None:
                lock = RLock()
                self._key_locks[scope] = lock
            return lock

    # ══════════════════════════════════════════════════════════
    # READ / WRITE
    # ══════════════════════════════════════════════════════════

    def get(self, kind: str, key: str) -> Optional[Any]:
        return self._namespace(kind).get(key)

    def put(self, kind: str, key: str, value: Any) -> None:
        self._namespace(kind)[key] = value

    def snapshot(self, kind: str) -> Dict[str, Any]:
        """Copy of one namespace (values are immutable records)."""
        with self._guard:
            return dict(self._namespace(kind))

    # ══════════════════════════════════════════════════════════
    # LOCKING
    # ══════════════════════════════════════════════════════════

    @contextmanager
    def locked(self, scopes: Iterable[Scope]) -> Iterator[None]:
        """
        Hold the per-key locks for every scope for the block's duration.

        Scopes are de-duplicated and acquired in sorted order, so two
        admissions touching overlapping keys cannot deadlock.
        """
        ordered = sorted(set(scopes))
        for kind, _ in ordered:
            self._namespace(kind)
        acquired = []
        try:
            for scope in ordered:
                lock = self._lock_for(scope)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

"""
PolicyOS HTTP API - Dependencies
================================
Injected collaborators for handler wiring.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from threading import Lock
from typing import Any, Optional, Protocol


class MerchantDirectory(Protocol):
    """Resolves the merchant and user records an event refers to."""

    def get_merchant(self, merchant_id: str) -> Optional[dict[str, Any]]:
        ...

    def get_user(self, merchant_id: str, user_id: str) -> Optional[dict[str, Any]]:
        ...


class InMemoryMerchantDirectory:

    def __init__(self) -> None:
        self._merchants: dict[str, dict[str, Any]] = {}
        self._users: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = Lock()

    def put_merchant(self, merchant_id: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._merchants[merchant_id] = {**record, "merchant_id": merchant_id}

    def put_user(self, merchant_id: str, user_id: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._users[(merchant_id, user_id)] = {**record, "uid": user_id}

    def get_merchant(self, merchant_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            record = self._merchants.get(merchant_id)
            return copy.deepcopy(record) if record is not None else None

    def get_user(self, merchant_id: str, user_id: str) -> Optional[dict[str, Any]]:
        with self._lock:
            record = self._users.get((merchant_id, user_id))
            return copy.deepcopy(record) if record is not None else None


@dataclass(frozen=True)
class HttpApiDependencies:
    policyos_service: Any
    merchant_directory: MerchantDirectory

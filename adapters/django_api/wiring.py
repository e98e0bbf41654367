"""
PolicyOS Django Adapter Wiring
==============================
Constructs HttpApiDependencies for local/staging live runs.

This module is adapter-only glue:
- in-memory resource store, ledger and decision store
- one seeded dev merchant, user and WEATHER_CHANGE policy
- settings read once from the process environment
"""

from __future__ import annotations

import threading

from core.config.settings import PolicyOsSettings
from core.http_api.dependencies import HttpApiDependencies, InMemoryMerchantDirectory
from engines.policyos.models import Policy
from engines.policyos.service import PolicyOsService, build_policyos_service

DEV_MERCHANT_ID = "m_demo"
DEV_USER_ID = "u_demo"
DEV_POLICY_ID = "rainy_day_bonus@v1"

_DEPENDENCIES_LOCK = threading.Lock()
_DEPENDENCIES: HttpApiDependencies | None = None


def dev_policy_document() -> dict:
    return {
        "policy_id": DEV_POLICY_ID,
        "name": "Rainy day wallet bonus",
        "resource_scope": {"merchant_id": DEV_MERCHANT_ID},
        "trigger": {"plugin": "event_trigger_v1", "event": "WEATHER_CHANGE"},
        "conditions": [{"field": "weather", "op": "eq", "value": "RAIN"}],
        "segment": {"plugin": "all_users_v1"},
        "constraints": [
            {"plugin": "kill_switch_v1"},
            {"plugin": "budget_guard_v1", "params": {"cap": 60, "cost_per_hit": 12}},
            {"plugin": "frequency_cap_v1", "params": {"daily": 1}},
            {"plugin": "anti_fraud_hook_v1", "params": {"max_risk_score": 0.8}},
        ],
        "scoring": {"plugin": "expected_profit_v1"},
        "actions": [
            {
                "plugin": "wallet_grant_v1",
                "params": {"account": "bonus", "amount": 12},
            },
            {
                "plugin": "story_inject_v1",
                "channel": "story",
            },
        ],
        "story": {
            "title": "Rainy day treat",
            "narrative": "It is raining, a warm drink is on us.",
        },
    }


def _build_merchant_directory() -> InMemoryMerchantDirectory:
    directory = InMemoryMerchantDirectory()
    directory.put_merchant(
        DEV_MERCHANT_ID,
        {"name": "Demo Tea House", "kill_switch_enabled": False},
    )
    directory.put_user(DEV_MERCHANT_ID, DEV_USER_ID, {"tags": ["regular"]})
    return directory


def _build_service() -> PolicyOsService:
    service = build_policyos_service(settings=PolicyOsSettings.from_env())
    service.repository.publish(Policy.from_dict(dev_policy_document()))
    return service


def _create_dependencies() -> HttpApiDependencies:
    return HttpApiDependencies(
        policyos_service=_build_service(),
        merchant_directory=_build_merchant_directory(),
    )


def build_dependencies() -> HttpApiDependencies:
    global _DEPENDENCIES
    if _DEPENDENCIES is not None:
        return _DEPENDENCIES
    with _DEPENDENCIES_LOCK:
        if _DEPENDENCIES is None:
            _DEPENDENCIES = _create_dependencies()
    return _DEPENDENCIES


def reset_dependencies() -> None:
    global _DEPENDENCIES
    with _DEPENDENCIES_LOCK:
        _DEPENDENCIES = None

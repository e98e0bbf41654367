"""
PolicyOS Plugins — Default Plugin Set
=======================================
Registers the built-in plugins under their versioned names.
"""

from __future__ import annotations

from core.ledger.service import LedgerService
from core.resources.store import ResourceStore
from core.time.clock import Clock
from engines.policyos.plugins.actions import (
    FragmentGrantAction,
    NoopAction,
    StoryInjectAction,
    VoucherGrantAction,
    WalletGrantAction,
)
from engines.policyos.plugins.constraints import (
    AntiFraudConstraint,
    BudgetGuardConstraint,
    FrequencyCapConstraint,
    InventoryLockConstraint,
    KillSwitchConstraint,
)
from engines.policyos.plugins.contracts import PluginCapability
from engines.policyos.plugins.registry import PluginRegistry
from engines.policyos.plugins.scorers import ExpectedProfitScorer
from engines.policyos.plugins.triggers import (
    AllUsersSegment,
    ConditionSegment,
    EventTrigger,
    TagSegment,
)


def register_default_plugins(
    registry: PluginRegistry,
    *,
    store: ResourceStore,
    ledger: LedgerService,
    clock: Clock,
) -> PluginRegistry:
    if registry is None:
        raise ValueError("registry is required.")

    registry.register(PluginCapability.TRIGGER, "event_trigger_v1", EventTrigger())

    registry.register(PluginCapability.SEGMENT, "all_users_v1", AllUsersSegment())
    registry.register(PluginCapability.SEGMENT, "tag_segment_v1", TagSegment())
    registry.register(PluginCapability.SEGMENT, "condition_segment_v1", ConditionSegment())

    registry.register(PluginCapability.CONSTRAINT, "kill_switch_v1", KillSwitchConstraint())
    registry.register(
        PluginCapability.CONSTRAINT, "budget_guard_v1",
        BudgetGuardConstraint(store, clock),
    )
    registry.register(
        PluginCapability.CONSTRAINT, "inventory_lock_v1",
        InventoryLockConstraint(store),
    )
    registry.register(
        PluginCapability.CONSTRAINT, "frequency_cap_v1",
        FrequencyCapConstraint(store, clock),
    )
    registry.register(PluginCapability.CONSTRAINT, "anti_fraud_hook_v1", AntiFraudConstraint())

    registry.register(PluginCapability.SCORER, "expected_profit_v1", ExpectedProfitScorer())

    registry.register(PluginCapability.ACTION, "wallet_grant_v1", WalletGrantAction(ledger))
    registry.register(
        PluginCapability.ACTION, "voucher_grant_v1",
        VoucherGrantAction(ledger, clock),
    )
    registry.register(
        PluginCapability.ACTION, "fragment_grant_v1",
        FragmentGrantAction(ledger),
    )
    registry.register(PluginCapability.ACTION, "story_inject_v1", StoryInjectAction(clock))
    registry.register(PluginCapability.ACTION, "noop_v1", NoopAction())
    return registry

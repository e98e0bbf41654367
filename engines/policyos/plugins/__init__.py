"""
PolicyOS Plugins — Public API
===============================
Capability contracts, the plugin registry and the built-in plugin set.
"""

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
from engines.policyos.plugins.contracts import (
    CAPABILITY_INTERFACES,
    ActionPlugin,
    ConstraintPlugin,
    PluginCapability,
    ScorerPlugin,
    SegmentPlugin,
    TriggerPlugin,
)
from engines.policyos.plugins.defaults import register_default_plugins
from engines.policyos.plugins.registry import (
    PluginRegistry,
    PluginRegistryError,
    UnknownCapabilityError,
)
from engines.policyos.plugins.scorers import ExpectedProfitScorer
from engines.policyos.plugins.triggers import (
    AllUsersSegment,
    ConditionSegment,
    EventTrigger,
    TagSegment,
)

__all__ = [
    "CAPABILITY_INTERFACES",
    "ActionPlugin",
    "AllUsersSegment",
    "AntiFraudConstraint",
    "BudgetGuardConstraint",
    "ConditionSegment",
    "ConstraintPlugin",
    "EventTrigger",
    "ExpectedProfitScorer",
    "FragmentGrantAction",
    "FrequencyCapConstraint",
    "InventoryLockConstraint",
    "KillSwitchConstraint",
    "NoopAction",
    "PluginCapability",
    "PluginRegistry",
    "PluginRegistryError",
    "ScorerPlugin",
    "SegmentPlugin",
    "StoryInjectAction",
    "TriggerPlugin",
    "UnknownCapabilityError",
    "VoucherGrantAction",
    "WalletGrantAction",
    "register_default_plugins",
]

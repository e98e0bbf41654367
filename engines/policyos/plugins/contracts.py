"""
PolicyOS Plugins — Capability Contracts
=========================================
One abstract interface per plugin capability.

    trigger     → does the event fire this policy? how many candidates?
    segment     → is the user in the policy's audience?
    constraint  → may the candidate consume shared resources?
    scorer      → expected utility annotation for explainability
    action      → side-effecting leaf executed from the plan

The registry only accepts implementations of these interfaces, so a
misplaced plugin fails at registration rather than mid-evaluation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

from core.resources.models import ReservationToken
from engines.policyos.models import (
    ActionCommand,
    ActionSpec,
    Candidate,
    ConstraintResult,
    CostEstimate,
    PluginSpec,
    Policy,
    ReserveResult,
    ScoreResult,
    SegmentResult,
    TriggerContext,
)


# ══════════════════════════════════════════════════════════════
# CAPABILITIES
# ══════════════════════════════════════════════════════════════

class PluginCapability:
    TRIGGER = "trigger"
    SEGMENT = "segment"
    CONSTRAINT = "constraint"
    SCORER = "scorer"
    ACTION = "action"

    ALL = frozenset({"trigger", "segment", "constraint", "scorer", "action"})


# ══════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════

class TriggerPlugin(ABC):

    @abstractmethod
    def match(self, trigger: PluginSpec, policy: Policy, ctx: TriggerContext) -> bool:
        ...

    @abstractmethod
    def expand_candidates(
        self, trigger: PluginSpec, policy: Policy, ctx: TriggerContext
    ) -> List[Candidate]:
        ...


class SegmentPlugin(ABC):

    @abstractmethod
    def evaluate(
        self, segment: PluginSpec, policy: Policy, ctx: TriggerContext
    ) -> SegmentResult:
        ...


class ConstraintPlugin(ABC):
    """
    Three-phase admission contract.

    check:   pure read of resource state; never mutates.
    reserve: commits the consumption implied by a passed check;
             never re-checks.
    release: exact inverse of reserve for the token it returned;
             a no-op when the key is gone or the token is foreign.
    """

    def resource_scopes(
        self, policy: Policy, ctx: TriggerContext, constraint: PluginSpec
    ) -> Tuple[Tuple[str, str], ...]:
        """(kind, key) pairs this constraint reads and writes. Stateless → ()."""
        return ()

    @abstractmethod
    def check(
        self,
        policy: Policy,
        ctx: TriggerContext,
        constraint: PluginSpec,
        estimate: CostEstimate,
    ) -> ConstraintResult:
        ...

    @abstractmethod
    def reserve(
        self,
        policy: Policy,
        ctx: TriggerContext,
        constraint: PluginSpec,
        estimate: CostEstimate,
    ) -> ReserveResult:
        ...

    @abstractmethod
    def release(self, reserved: ReservationToken) -> bool:
        ...


class ScorerPlugin(ABC):

    @abstractmethod
    def score(self, policy: Policy, ctx: TriggerContext) -> ScoreResult:
        ...


class ActionPlugin(ABC):

    def estimate_cost(
        self, action: ActionSpec, policy: Policy, ctx: TriggerContext
    ) -> CostEstimate:
        return CostEstimate()

    @abstractmethod
    def execute(
        self,
        ctx: TriggerContext,
        policy: Policy,
        command: ActionCommand,
        trace_id: str,
    ) -> Dict[str, Any]:
        """
        Perform the action. The returned dict is merged into the
        adapter's response record; "success": False marks a failure.
        """
        ...


CAPABILITY_INTERFACES = {
    PluginCapability.TRIGGER: TriggerPlugin,
    PluginCapability.SEGMENT: SegmentPlugin,
    PluginCapability.CONSTRAINT: ConstraintPlugin,
    PluginCapability.SCORER: ScorerPlugin,
    PluginCapability.ACTION: ActionPlugin,
}

"""
PolicyOS Engine — Data Model
==============================
Policy definitions, per-event trigger context, plugin results and the
execution plan/result structures exchanged between pipeline and adapter.

Policy and its parts are immutable. They are created by policy authoring
(outside this engine) and parsed here with Policy.from_dict(). A malformed
definition raises PolicyDefinitionError: it is a configuration error and
propagates to the caller.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.resources.models import ReservationToken


DEFAULT_TRIGGER_PLUGIN = "event_trigger_v1"
DEFAULT_SEGMENT_PLUGIN = "all_users_v1"
DEFAULT_SCORER_PLUGIN = "expected_profit_v1"
DEFAULT_CHANNEL = "default"


class PolicyDefinitionError(ValueError):
    """Policy definition is malformed."""

    def __init__(self, message: str, policy_id: str = ""):
        self.policy_id = policy_id
        super().__init__(message)


def to_number(value: Any, fallback: float = 0.0) -> float:
    """Coerce to a finite float, else return fallback."""
    if isinstance(value, bool) or value is None:
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return number


# ══════════════════════════════════════════════════════════════
# POLICY DEFINITION
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PluginSpec:
    """Reference to a named plugin plus its configuration params."""

    plugin: str
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.plugin or not isinstance(self.plugin, str):
            raise PolicyDefinitionError("plugin must be a non-empty string.")
        if not isinstance(self.params, dict):
            raise PolicyDefinitionError("params must be a dict.")

    @classmethod
    def from_dict(cls, data: Any, default_plugin: str = "") -> "PluginSpec":
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise PolicyDefinitionError("plugin reference must be an object.")
        return cls(
            plugin=str(data.get("plugin") or default_plugin).strip(),
            params=dict(data.get("params") or {}),
        )


@dataclass(frozen=True)
class ActionSpec:
    """One configured action: plugin, delivery channel, params."""

    plugin: str
    channel: str = DEFAULT_CHANNEL
    params: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.plugin or not isinstance(self.plugin, str):
            raise PolicyDefinitionError("action plugin must be a non-empty string.")
        if not isinstance(self.params, dict):
            raise PolicyDefinitionError("action params must be a dict.")

    @classmethod
    def from_dict(cls, data: Any) -> "ActionSpec":
        if not isinstance(data, Mapping):
            raise PolicyDefinitionError("action must be an object.")
        return cls(
            plugin=str(data.get("plugin") or "").strip(),
            channel=str(data.get("channel") or DEFAULT_CHANNEL),
            params=dict(data.get("params") or {}),
        )


@dataclass(frozen=True)
class PolicyProgram:
    """Execution program limits: instance fan-out and budget pacing."""

    max_instances: int = 1
    max_cost_per_minute: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Any) -> "PolicyProgram":
        data = data if isinstance(data, Mapping) else {}
        pacing = data.get("pacing") if isinstance(data.get("pacing"), Mapping) else {}
        max_per_minute = pacing.get("max_cost_per_minute")
        return cls(
            max_instances=max(1, int(to_number(data.get("max_instances"), 1))),
            max_cost_per_minute=(
                None if max_per_minute is None
                else to_number(max_per_minute, math.inf)
            ),
        )


# ══════════════════════════════════════════════════════════════
# RANKING / OVERLAP VOCABULARY
# ══════════════════════════════════════════════════════════════

class Lane:
    """Priority lane. Higher lanes are allocated first."""
    EMERGENCY = "EMERGENCY"
    GUARDED = "GUARDED"
    NORMAL = "NORMAL"
    BACKGROUND = "BACKGROUND"

    RANK = {"EMERGENCY": 4, "GUARDED": 3, "NORMAL": 2, "BACKGROUND": 1}
    ALL = frozenset(RANK)


class TieBreaker:
    UTILITY_DESC = "UTILITY_DESC"
    EXPIRY_SOONER = "EXPIRY_SOONER"
    HIGHER_MARGIN = "HIGHER_MARGIN"
    RANDOM_JITTER = "RANDOM_JITTER"

    ALL = frozenset({"UTILITY_DESC", "EXPIRY_SOONER", "HIGHER_MARGIN", "RANDOM_JITTER"})


class OverlapMode:
    """How candidates sharing a conflict set (per user) coexist."""
    HARD_EXCLUSIVE = "HARD_EXCLUSIVE"
    SOFT_EXCLUSIVE = "SOFT_EXCLUSIVE"
    PREEMPTIVE = "PREEMPTIVE"
    STACKABLE = "STACKABLE"

    ALL = frozenset({"HARD_EXCLUSIVE", "SOFT_EXCLUSIVE", "PREEMPTIVE", "STACKABLE"})


@dataclass(frozen=True)
class OverlapPolicy:
    mode: str = OverlapMode.HARD_EXCLUSIVE
    conflict_set: str = "default"
    max_winners: int = 1

    def __post_init__(self):
        if self.mode not in OverlapMode.ALL:
            raise PolicyDefinitionError(
                f"overlap_policy.mode '{self.mode}' not valid. "
                f"Must be one of: {sorted(OverlapMode.ALL)}"
            )
        if not self.conflict_set or not isinstance(self.conflict_set, str):
            raise PolicyDefinitionError("overlap_policy.conflict_set must be non-empty.")
        if isinstance(self.max_winners, bool) or not isinstance(self.max_winners, int) \
                or self.max_winners < 1:
            raise PolicyDefinitionError("overlap_policy.max_winners must be a positive int.")

    @classmethod
    def from_dict(cls, data: Any) -> "OverlapPolicy":
        data = data if isinstance(data, Mapping) else {}
        return cls(
            mode=str(data.get("mode") or OverlapMode.HARD_EXCLUSIVE).strip().upper(),
            conflict_set=str(data.get("conflict_set") or "default").strip(),
            max_winners=max(1, int(to_number(data.get("max_winners"), 1))),
        )


@dataclass(frozen=True)
class Policy:
    """
    Immutable policy definition. Read-only to the engine.

    Fields:
        policy_id:      Unique id (e.g. 'rainy_day@v1').
        merchant_id:    Resource scope — all reservations key on it.
        trigger_event:  Event name this policy reacts to.
        trigger:        Trigger plugin reference.
        conditions:     Field conditions on the event (all must hold).
        segment:        Audience segment plugin reference.
        constraints:    Constraint plugins, in admission order.
        scoring:        Scorer plugin reference.
        actions:        Actions compiled into the execution plan.
        program:        Instance and pacing limits.
        story:          Optional story payload for story injection.
        lane:           Allocation priority lane (Lane).
        tie_breaker:    Ordering among equal lane and utility (TieBreaker).
        overlap:        Conflict set and coexistence mode (OverlapPolicy).
        expires_at:     Optional ISO-8601 expiry, read by EXPIRY_SOONER.
    """

    policy_id: str
    merchant_id: str
    trigger_event: str
    trigger: PluginSpec = field(
        default_factory=lambda: PluginSpec(DEFAULT_TRIGGER_PLUGIN)
    )
    conditions: Tuple[Dict[str, Any], ...] = ()
    segment: PluginSpec = field(
        default_factory=lambda: PluginSpec(DEFAULT_SEGMENT_PLUGIN)
    )
    constraints: Tuple[PluginSpec, ...] = ()
    scoring: PluginSpec = field(
        default_factory=lambda: PluginSpec(DEFAULT_SCORER_PLUGIN)
    )
    actions: Tuple[ActionSpec, ...] = ()
    program: PolicyProgram = field(default_factory=PolicyProgram)
    story: Optional[Dict[str, Any]] = None
    name: str = ""
    lane: str = Lane.NORMAL
    tie_breaker: str = TieBreaker.UTILITY_DESC
    overlap: OverlapPolicy = field(default_factory=OverlapPolicy)
    expires_at: Optional[str] = None

    def __post_init__(self):
        if not self.policy_id or not isinstance(self.policy_id, str):
            raise PolicyDefinitionError("policy_id must be a non-empty string.")
        if not self.merchant_id or not isinstance(self.merchant_id, str):
            raise PolicyDefinitionError(
                "resource_scope.merchant_id must be a non-empty string.",
                policy_id=self.policy_id,
            )
        if not self.trigger_event or not isinstance(self.trigger_event, str):
            raise PolicyDefinitionError(
                "trigger_event must be a non-empty string.",
                policy_id=self.policy_id,
            )
        for condition in self.conditions:
            if not isinstance(condition, Mapping) or not condition.get("field"):
                raise PolicyDefinitionError(
                    "each condition must be an object with a field.",
                    policy_id=self.policy_id,
                )
        if self.lane not in Lane.ALL:
            raise PolicyDefinitionError(
                f"lane '{self.lane}' not valid. Must be one of: {sorted(Lane.ALL)}",
                policy_id=self.policy_id,
            )
        if self.tie_breaker not in TieBreaker.ALL:
            raise PolicyDefinitionError(
                f"tie_breaker '{self.tie_breaker}' not valid. "
                f"Must be one of: {sorted(TieBreaker.ALL)}",
                policy_id=self.policy_id,
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Policy":
        """Parse an authored policy document (snake_case keys)."""
        if not isinstance(data, Mapping):
            raise PolicyDefinitionError("policy must be an object.")
        scope = data.get("resource_scope")
        scope = scope if isinstance(scope, Mapping) else {}
        trigger = data.get("trigger")
        trigger_event = data.get("trigger_event")
        if not trigger_event and isinstance(trigger, Mapping):
            trigger_event = trigger.get("event")
        story = data.get("story")
        return cls(
            policy_id=str(data.get("policy_id") or "").strip(),
            merchant_id=str(scope.get("merchant_id") or "").strip(),
            trigger_event=str(trigger_event or "").strip(),
            trigger=PluginSpec.from_dict(trigger, DEFAULT_TRIGGER_PLUGIN),
            conditions=tuple(
                dict(item) for item in (data.get("conditions") or ())
                if isinstance(item, Mapping)
            ),
            segment=PluginSpec.from_dict(data.get("segment"), DEFAULT_SEGMENT_PLUGIN),
            constraints=tuple(
                PluginSpec.from_dict(item) for item in (data.get("constraints") or ())
            ),
            scoring=PluginSpec.from_dict(data.get("scoring"), DEFAULT_SCORER_PLUGIN),
            actions=tuple(
                ActionSpec.from_dict(item) for item in (data.get("actions") or ())
            ),
            program=PolicyProgram.from_dict(data.get("program")),
            story=dict(story) if isinstance(story, Mapping) else None,
            name=str(data.get("name") or ""),
            lane=str(data.get("lane") or Lane.NORMAL).strip().upper(),
            tie_breaker=str(
                data.get("tie_breaker") or TieBreaker.UTILITY_DESC
            ).strip().upper(),
            overlap=OverlapPolicy.from_dict(data.get("overlap_policy")),
            expires_at=str(data["expires_at"]) if data.get("expires_at") else None,
        )


# ══════════════════════════════════════════════════════════════
# TRIGGER CONTEXT (one per incoming event)
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TriggerContext:
    """
    Per-evaluation context. Built once per incoming event, discarded after.

    payload carries the event's own fields (e.g. {"weather": "RAIN"}).
    policy_id is filled in per policy by for_policy(). estimate_attempted
    marks a context the estimator already ran for, even when it degraded
    to an empty estimate.
    """

    merchant_id: str
    event: str
    event_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    merchant: Dict[str, Any] = field(default_factory=dict)
    user: Optional[Dict[str, Any]] = None
    risk_score: float = 0.0
    model_estimate: Dict[str, Any] = field(default_factory=dict)
    policy_id: str = ""
    estimate_attempted: bool = False

    @property
    def user_id(self) -> str:
        if not self.user:
            return ""
        return str(self.user.get("uid") or "").strip()

    def for_policy(self, policy: Policy) -> "TriggerContext":
        return replace(self, policy_id=policy.policy_id)

    def with_model_estimate(self, estimate: Mapping[str, Any]) -> "TriggerContext":
        return replace(self, model_estimate=dict(estimate), estimate_attempted=True)


@dataclass(frozen=True)
class Candidate:
    """One expanded instance of a policy evaluation (instance is 1-based)."""

    instance: int
    policy: Policy
    ctx: TriggerContext


# ══════════════════════════════════════════════════════════════
# PLUGIN RESULTS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SegmentResult:
    matched: bool
    reason_codes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConstraintResult:
    """Outcome of a constraint check (or an aggregate of several)."""

    ok: bool
    reason_codes: Tuple[str, ...] = ()
    risk_flags: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "reason_codes": list(self.reason_codes),
            "risk_flags": list(self.risk_flags),
        }


@dataclass(frozen=True)
class ReserveResult:
    ok: bool
    reserved: Optional[ReservationToken] = None


@dataclass(frozen=True)
class CostEstimate:
    """Cost an action (or a whole policy) is expected to consume."""

    cost: float = 0.0
    budget_cost: float = 0.0

    def __add__(self, other: "CostEstimate") -> "CostEstimate":
        return CostEstimate(
            cost=self.cost + other.cost,
            budget_cost=self.budget_cost + other.budget_cost,
        )


@dataclass(frozen=True)
class ScoreResult:
    utility: float
    uncertainty: float
    estimate_cost: float
    expected_range: Dict[str, float]
    reason_codes: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "utility": self.utility,
            "uncertainty": self.uncertainty,
            "estimate_cost": self.estimate_cost,
            "expected_range": dict(self.expected_range),
            "reason_codes": list(self.reason_codes),
        }


# ══════════════════════════════════════════════════════════════
# EXECUTION PLAN / RESULT
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ActionCommand:
    id: str
    plugin: str
    channel: str
    params: Dict[str, Any]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plugin": self.plugin,
            "channel": self.channel,
            "params": copy.deepcopy(self.params),
        }


@dataclass(frozen=True)
class ExecutionPlan:
    runtime: str
    trace_id: str
    commands: Tuple[ActionCommand, ...]

    def to_dict(self) -> dict:
        return {
            "runtime": self.runtime,
            "trace_id": self.trace_id,
            "commands": [command.to_dict() for command in self.commands],
        }


@dataclass(frozen=True)
class ExecutionResult:
    """success is the AND of every response's success (missing counts as True)."""

    success: bool
    responses: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "responses": [dict(response) for response in self.responses],
        }


# ══════════════════════════════════════════════════════════════
# EVALUATION OUTCOMES
# ══════════════════════════════════════════════════════════════

class EvaluationOutcome:
    """Terminal outcomes of evaluating one policy against one event."""
    NO_MATCH = "NO_MATCH"
    BLOCKED = "BLOCKED"
    EXECUTED = "EXECUTED"

    ALL = frozenset({"NO_MATCH", "BLOCKED", "EXECUTED"})


@dataclass(frozen=True)
class CandidateOutcome:
    instance: int
    outcome: str
    reason_codes: Tuple[str, ...] = ()
    risk_flags: Tuple[str, ...] = ()
    reservations: Tuple[ReservationToken, ...] = ()
    score: Optional[ScoreResult] = None
    explain: Optional[Dict[str, Any]] = None
    plan: Optional[ExecutionPlan] = None
    execution: Optional[ExecutionResult] = None

    @property
    def executed(self) -> bool:
        return self.outcome == EvaluationOutcome.EXECUTED

    def to_dict(self) -> dict:
        return {
            "instance": self.instance,
            "outcome": self.outcome,
            "reason_codes": list(self.reason_codes),
            "risk_flags": list(self.risk_flags),
            "reservations": [token.to_dict() for token in self.reservations],
            "score": self.score.to_dict() if self.score else None,
            "explain": self.explain,
            "plan": self.plan.to_dict() if self.plan else None,
            "execution": self.execution.to_dict() if self.execution else None,
        }


@dataclass(frozen=True)
class PolicyEvaluation:
    """Structured result of one policy evaluation. Never an exception."""

    policy_id: str
    outcome: str
    reason_codes: Tuple[str, ...] = ()
    risk_flags: Tuple[str, ...] = ()
    candidates: Tuple[CandidateOutcome, ...] = ()

    def __post_init__(self):
        if self.outcome not in EvaluationOutcome.ALL:
            raise ValueError(
                f"outcome '{self.outcome}' not valid. "
                f"Must be one of: {sorted(EvaluationOutcome.ALL)}"
            )

    @property
    def executed_candidates(self) -> List[CandidateOutcome]:
        return [item for item in self.candidates if item.executed]

    def to_dict(self) -> dict:
        return {
            "policy_id": self.policy_id,
            "outcome": self.outcome,
            "reason_codes": list(self.reason_codes),
            "risk_flags": list(self.risk_flags),
            "candidates": [item.to_dict() for item in self.candidates],
        }


# ══════════════════════════════════════════════════════════════
# PRE-ADMISSION (ranking and allocation input)
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RankedCandidate:
    """A candidate whose checks passed and whose score is known."""

    candidate: Candidate
    score: ScoreResult

    @property
    def policy(self) -> Policy:
        return self.candidate.policy

    @property
    def ctx(self) -> TriggerContext:
        return self.candidate.ctx

    @property
    def instance(self) -> int:
        return self.candidate.instance


@dataclass(frozen=True)
class PolicyQualification:
    """
    Outcome of the read-only pass over one policy.

    Either evaluation is set (terminal: NO_MATCH or BLOCKED) or
    candidates holds the ranked-ready candidates. ctx carries the model
    estimate used for scoring.
    """

    policy: Policy
    ctx: TriggerContext
    evaluation: Optional[PolicyEvaluation] = None
    candidates: Tuple[RankedCandidate, ...] = ()

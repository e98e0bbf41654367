"""
PolicyOS Engine — Policy Evaluation Pipeline
==============================================
Decides, for one policy and one incoming event, whether the policy fires.

    trigger match → conditions → plugin resolution → candidate expansion
    → segment filter → constraint admission → scoring → compile/execute

Terminal outcomes: NO_MATCH, BLOCKED, EXECUTED.

Admission is all-or-nothing per candidate:
- every check() runs first, in configuration order; any failure blocks
  the candidate and no reserve() is made
- then every reserve() runs in the same order; a failed reserve releases
  the earlier reservations in reverse order
- check and reserve run under the store locks of every resource scope
  the constraints name, so racing candidates cannot overrun a cap

qualify() is the read-only half used before allocation: it runs the
same steps up to scoring with check() only, reserving nothing.

Expected-domain failures (no match, missing plugin, blocked constraint)
come back as a PolicyEvaluation. ResourceStoreError and exceptions from
actions propagate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Collection,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

from core.resources.models import ReservationToken
from core.resources.store import ResourceStore, ResourceStoreError
from engines.policyos.adapter import ExecutionAdapter
from engines.policyos.conditions import conditions_hold
from engines.policyos.models import (
    Candidate,
    CandidateOutcome,
    ConstraintResult,
    CostEstimate,
    EvaluationOutcome,
    PluginSpec,
    Policy,
    PolicyEvaluation,
    PolicyQualification,
    RankedCandidate,
    ScoreResult,
    TriggerContext,
)
from engines.policyos.plugins.contracts import (
    ConstraintPlugin,
    PluginCapability,
    ScorerPlugin,
    SegmentPlugin,
    TriggerPlugin,
)
from engines.policyos.plugins.registry import PluginRegistry

logger = logging.getLogger("policyos.pipeline")

Reservation = Tuple[ConstraintPlugin, ReservationToken]
ConstraintBinding = Tuple[PluginSpec, ConstraintPlugin]


class EstimateProvider(Protocol):
    """Supplies scorer inputs when the event carries no model estimate."""

    def estimate(
        self, policy: Policy, ctx: TriggerContext, trace_id: str = ""
    ) -> Dict[str, Any]:
        ...  # pragma: no cover


def _dedupe(items: Sequence[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(items))


@dataclass(frozen=True)
class _Admission:
    ok: bool
    result: ConstraintResult
    reservations: Tuple[Reservation, ...] = ()


@dataclass(frozen=True)
class _Resolved:
    trigger: TriggerPlugin
    segment: SegmentPlugin
    constraints: Tuple[ConstraintBinding, ...]
    scorer: ScorerPlugin


# ══════════════════════════════════════════════════════════════
# PIPELINE
# ══════════════════════════════════════════════════════════════

class PolicyEvaluationPipeline:
    """
    Usage:
        pipeline = PolicyEvaluationPipeline(registry, store, adapter)
        evaluation = pipeline.evaluate(policy, ctx, trace_id)
    """

    def __init__(
        self,
        registry: PluginRegistry,
        store: ResourceStore,
        adapter: Optional[ExecutionAdapter] = None,
        estimator: Optional[EstimateProvider] = None,
    ):
        if registry is None:
            raise ValueError("registry is required.")
        if store is None:
            raise ValueError("store is required.")
        self._registry = registry
        self._store = store
        self._adapter = adapter or ExecutionAdapter(registry)
        self._estimator = estimator

    # ══════════════════════════════════════════════════════════
    # ENTRY POINTS
    # ══════════════════════════════════════════════════════════

    def evaluate(
        self,
        policy: Policy,
        ctx: TriggerContext,
        trace_id: str,
        instances: Optional[Collection[int]] = None,
    ) -> PolicyEvaluation:
        """
        Full evaluation. When instances is given only those expanded
        candidates are admitted (the allocation winners of this policy).
        """
        ctx = ctx.for_policy(policy)
        resolved = self._resolve(policy, ctx)
        if isinstance(resolved, PolicyEvaluation):
            return resolved

        estimate = self.estimate_cost(policy, ctx)
        candidates = self._segment_candidates(policy, ctx, resolved)
        if instances is not None:
            candidates = [item for item in candidates if item.instance in instances]
        outcomes = [
            self._run_candidate(
                candidate, resolved.constraints, resolved.scorer, estimate, trace_id
            )
            for candidate in candidates
        ]
        if not outcomes:
            return PolicyEvaluation(
                policy_id=policy.policy_id,
                outcome=EvaluationOutcome.NO_MATCH,
                reason_codes=("segment_mismatch",),
            )
        return self._summarize(policy, outcomes)

    def qualify(
        self, policy: Policy, ctx: TriggerContext, trace_id: str
    ) -> PolicyQualification:
        """Read-only pass: match, check (no reserve) and score."""
        ctx = ctx.for_policy(policy)
        resolved = self._resolve(policy, ctx)
        if isinstance(resolved, PolicyEvaluation):
            return PolicyQualification(policy=policy, ctx=ctx, evaluation=resolved)

        candidates = self._segment_candidates(policy, ctx, resolved)
        if not candidates:
            return PolicyQualification(
                policy=policy,
                ctx=ctx,
                evaluation=PolicyEvaluation(
                    policy_id=policy.policy_id,
                    outcome=EvaluationOutcome.NO_MATCH,
                    reason_codes=("segment_mismatch",),
                ),
            )

        estimate = self.estimate_cost(policy, ctx)
        passed: List[Candidate] = []
        blocked: List[CandidateOutcome] = []
        for candidate in candidates:
            checked = self._admit(
                policy, candidate.ctx, resolved.constraints, estimate, reserve=False
            )
            if checked.ok:
                passed.append(candidate)
            else:
                blocked.append(self._blocked_outcome(candidate, checked.result))
        if not passed:
            return PolicyQualification(
                policy=policy, ctx=ctx, evaluation=self._summarize(policy, blocked)
            )

        scored = self._score(policy, ctx, resolved.scorer, trace_id)
        if isinstance(scored, CandidateOutcome):
            return PolicyQualification(
                policy=policy,
                ctx=ctx,
                evaluation=PolicyEvaluation(
                    policy_id=policy.policy_id,
                    outcome=EvaluationOutcome.BLOCKED,
                    reason_codes=scored.reason_codes,
                ),
            )
        ctx, score = scored
        return PolicyQualification(
            policy=policy,
            ctx=ctx,
            candidates=tuple(
                RankedCandidate(
                    candidate=Candidate(instance=item.instance, policy=policy, ctx=ctx),
                    score=score,
                )
                for item in passed
            ),
        )

    def estimate_cost(self, policy: Policy, ctx: TriggerContext) -> CostEstimate:
        """Sum of action cost estimates. Missing action plugins cost nothing."""
        total = CostEstimate()
        for action in policy.actions:
            plugin = self._registry.get(PluginCapability.ACTION, action.plugin)
            if plugin is None:
                continue
            total = total + plugin.estimate_cost(action, policy, ctx)
        return total

    # ══════════════════════════════════════════════════════════
    # MATCHING AND RESOLUTION
    # ══════════════════════════════════════════════════════════

    def _resolve(
        self, policy: Policy, ctx: TriggerContext
    ) -> Union[PolicyEvaluation, _Resolved]:
        trigger_plugin = self._registry.get(PluginCapability.TRIGGER, policy.trigger.plugin)
        if trigger_plugin is None:
            return self._missing(policy, PluginCapability.TRIGGER, policy.trigger.plugin)
        if not trigger_plugin.match(policy.trigger, policy, ctx):
            return PolicyEvaluation(
                policy_id=policy.policy_id,
                outcome=EvaluationOutcome.NO_MATCH,
                reason_codes=("trigger_mismatch",),
            )
        if not conditions_hold(policy.conditions, ctx):
            return PolicyEvaluation(
                policy_id=policy.policy_id,
                outcome=EvaluationOutcome.NO_MATCH,
                reason_codes=("condition_mismatch",),
            )

        segment_plugin = self._registry.get(PluginCapability.SEGMENT, policy.segment.plugin)
        if segment_plugin is None:
            return self._missing(policy, PluginCapability.SEGMENT, policy.segment.plugin)
        constraints: List[ConstraintBinding] = []
        for spec in policy.constraints:
            plugin = self._registry.get(PluginCapability.CONSTRAINT, spec.plugin)
            if plugin is None:
                return self._missing(policy, PluginCapability.CONSTRAINT, spec.plugin)
            constraints.append((spec, plugin))
        scorer = self._registry.get(PluginCapability.SCORER, policy.scoring.plugin)
        if scorer is None:
            return self._missing(policy, PluginCapability.SCORER, policy.scoring.plugin)
        return _Resolved(
            trigger=trigger_plugin,
            segment=segment_plugin,
            constraints=tuple(constraints),
            scorer=scorer,
        )

    @staticmethod
    def _segment_candidates(
        policy: Policy, ctx: TriggerContext, resolved: _Resolved
    ) -> List[Candidate]:
        return [
            candidate
            for candidate in resolved.trigger.expand_candidates(policy.trigger, policy, ctx)
            if resolved.segment.evaluate(policy.segment, policy, candidate.ctx).matched
        ]

    @staticmethod
    def _summarize(policy: Policy, outcomes: Sequence[CandidateOutcome]) -> PolicyEvaluation:
        executed = any(item.executed for item in outcomes)
        blocked = [item for item in outcomes if not item.executed]
        return PolicyEvaluation(
            policy_id=policy.policy_id,
            outcome=EvaluationOutcome.EXECUTED if executed else EvaluationOutcome.BLOCKED,
            reason_codes=_dedupe([code for item in blocked for code in item.reason_codes]),
            risk_flags=_dedupe([flag for item in blocked for flag in item.risk_flags]),
            candidates=tuple(outcomes),
        )

    # ══════════════════════════════════════════════════════════
    # PER-CANDIDATE FLOW
    # ══════════════════════════════════════════════════════════

    def _score(
        self,
        policy: Policy,
        ctx: TriggerContext,
        scorer: ScorerPlugin,
        trace_id: str,
        instance: int = 1,
    ) -> Union[CandidateOutcome, Tuple[TriggerContext, ScoreResult]]:
        try:
            if (
                self._estimator is not None
                and not ctx.model_estimate
                and not ctx.estimate_attempted
            ):
                ctx = ctx.with_model_estimate(
                    self._estimator.estimate(policy, ctx, trace_id)
                )
            return ctx, scorer.score(policy, ctx)
        except ResourceStoreError:
            raise
        except Exception:
            logger.exception(
                f"Scorer failed: {policy.scoring.plugin} policy={policy.policy_id}"
            )
            return CandidateOutcome(
                instance=instance,
                outcome=EvaluationOutcome.BLOCKED,
                reason_codes=(f"score:error:{policy.scoring.plugin}",),
            )

    def _run_candidate(
        self,
        candidate: Candidate,
        constraints: Sequence[ConstraintBinding],
        scorer: ScorerPlugin,
        estimate: CostEstimate,
        trace_id: str,
    ) -> CandidateOutcome:
        policy, ctx = candidate.policy, candidate.ctx

        admission = self._admit(policy, ctx, constraints, estimate)
        if not admission.ok:
            logger.info(
                f"Candidate blocked: policy={policy.policy_id} "
                f"instance={candidate.instance} "
                f"reasons={list(admission.result.reason_codes)} trace={trace_id}"
            )
            return self._blocked_outcome(candidate, admission.result)
        reservations = admission.reservations
        tokens = tuple(token for _, token in reservations)

        scored = self._score(policy, ctx, scorer, trace_id, candidate.instance)
        if isinstance(scored, CandidateOutcome):
            self._rollback(reservations)
            return scored
        ctx, score = scored

        plan = self._adapter.compile(policy, trace_id)
        explain = self._adapter.explain(policy, score, admission.result)
        try:
            execution = self._adapter.execute(ctx, policy, plan, trace_id)
        except Exception:
            self._rollback(reservations)
            raise

        if not execution.success:
            self._rollback(reservations)
            logger.warning(
                f"Execution failed, reservations released: "
                f"policy={policy.policy_id} trace={trace_id}"
            )
            return CandidateOutcome(
                instance=candidate.instance,
                outcome=EvaluationOutcome.BLOCKED,
                reason_codes=("execution_failed",),
                risk_flags=admission.result.risk_flags,
                score=score,
                explain=explain,
                plan=plan,
                execution=execution,
            )

        return CandidateOutcome(
            instance=candidate.instance,
            outcome=EvaluationOutcome.EXECUTED,
            reason_codes=admission.result.reason_codes + score.reason_codes,
            risk_flags=admission.result.risk_flags,
            reservations=tokens,
            score=score,
            explain=explain,
            plan=plan,
            execution=execution,
        )

    @staticmethod
    def _blocked_outcome(candidate: Candidate, result: ConstraintResult) -> CandidateOutcome:
        return CandidateOutcome(
            instance=candidate.instance,
            outcome=EvaluationOutcome.BLOCKED,
            reason_codes=result.reason_codes,
            risk_flags=result.risk_flags,
        )

    # ══════════════════════════════════════════════════════════
    # ADMISSION
    # ══════════════════════════════════════════════════════════

    def _admit(
        self,
        policy: Policy,
        ctx: TriggerContext,
        constraints: Sequence[ConstraintBinding],
        estimate: CostEstimate,
        reserve: bool = True,
    ) -> _Admission:
        scopes = []
        for spec, plugin in constraints:
            try:
                scopes.extend(plugin.resource_scopes(policy, ctx, spec))
            except ResourceStoreError:
                raise
            except Exception:
                return self._constraint_error(policy, spec)

        with self._store.locked(scopes):
            checked = self._check_all(policy, ctx, constraints, estimate)
            if not checked.ok or not reserve:
                return checked
            return self._reserve_all(policy, ctx, constraints, estimate, checked.result)

    def _check_all(
        self,
        policy: Policy,
        ctx: TriggerContext,
        constraints: Sequence[ConstraintBinding],
        estimate: CostEstimate,
    ) -> _Admission:
        passed_codes: List[str] = []
        failed_codes: List[str] = []
        failed_flags: List[str] = []
        for spec, plugin in constraints:
            try:
                result = plugin.check(policy, ctx, spec, estimate)
            except ResourceStoreError:
                raise
            except Exception:
                return self._constraint_error(policy, spec)
            if result.ok:
                passed_codes.extend(result.reason_codes)
            else:
                failed_codes.extend(result.reason_codes or (f"constraint:{spec.plugin}",))
                failed_flags.extend(result.risk_flags)

        if failed_codes:
            return _Admission(
                ok=False,
                result=ConstraintResult(
                    ok=False,
                    reason_codes=_dedupe(failed_codes),
                    risk_flags=_dedupe(failed_flags),
                ),
            )
        return _Admission(
            ok=True, result=ConstraintResult(ok=True, reason_codes=tuple(passed_codes))
        )

    def _reserve_all(
        self,
        policy: Policy,
        ctx: TriggerContext,
        constraints: Sequence[ConstraintBinding],
        estimate: CostEstimate,
        checked: ConstraintResult,
    ) -> _Admission:
        reserved: List[Reservation] = []
        for spec, plugin in constraints:
            try:
                result = plugin.reserve(policy, ctx, spec, estimate)
            except ResourceStoreError:
                self._rollback(reserved)
                raise
            except Exception:
                self._rollback(reserved)
                return self._constraint_error(policy, spec)
            if not result.ok:
                self._rollback(reserved)
                logger.warning(
                    f"Reserve failed, rolled back {len(reserved)} reservation(s): "
                    f"policy={policy.policy_id} constraint={spec.plugin}"
                )
                return _Admission(
                    ok=False,
                    result=ConstraintResult(
                        ok=False, reason_codes=("constraint:reserve_failed",)
                    ),
                )
            if result.reserved is not None:
                reserved.append((plugin, result.reserved))

        return _Admission(ok=True, result=checked, reservations=tuple(reserved))

    def _rollback(self, reserved: Sequence[Reservation]) -> None:
        for plugin, token in reversed(list(reserved)):
            plugin.release(token)

    @staticmethod
    def _constraint_error(policy: Policy, spec: PluginSpec) -> _Admission:
        logger.exception(
            f"Constraint failed: {spec.plugin} policy={policy.policy_id}"
        )
        return _Admission(
            ok=False,
            result=ConstraintResult(
                ok=False, reason_codes=(f"constraint:error:{spec.plugin}",)
            ),
        )

    @staticmethod
    def _missing(policy: Policy, capability: str, name: str) -> PolicyEvaluation:
        logger.warning(
            f"{capability} plugin missing: {name} (policy={policy.policy_id})"
        )
        return PolicyEvaluation(
            policy_id=policy.policy_id,
            outcome=EvaluationOutcome.BLOCKED,
            reason_codes=(f"{capability} plugin missing: {name}",),
        )

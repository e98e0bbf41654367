"""
PolicyOS Engine — Decision Service
====================================
Host-facing entry point: evaluates every active policy of a merchant
against one event and records an auditable decision.

Flow per event:
    qualify every policy (match, check, score; nothing reserved)
    → rank all qualified candidates → allocate per conflict set and user
    → run the full pipeline for the winners, in rank order

Decision record:
    decision_id, trace_id, merchant_id, user_id, event, event_id,
    created_at, elapsed_ms, executed, rejected, explains, story_cards,
    grants, vouchers, fragments, allocation, evaluations

Every decision emits one structured "policyos.decision" log line.
"""

from __future__ import annotations

import copy
import json
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Set

from ai.gateway.gateway import ModelGateway, build_model_gateway
from core.config.settings import DEFAULT_MAX_DECISIONS, PolicyOsSettings
from core.ledger.service import InMemoryLedgerService, LedgerService
from core.resources.store import InMemoryResourceStore, ResourceStore
from core.time.clock import Clock, SystemClock
from engines.policyos.adapter import ExecutionAdapter
from engines.policyos.allocation import (
    Allocation,
    allocate_candidates,
    rank_candidates,
)
from engines.policyos.estimates import GatewayEstimateProvider
from engines.policyos.models import (
    EvaluationOutcome,
    Policy,
    PolicyEvaluation,
    PolicyQualification,
    TriggerContext,
    to_number,
)
from engines.policyos.pipeline import PolicyEvaluationPipeline
from engines.policyos.plugins.contracts import PluginCapability
from engines.policyos.plugins.defaults import register_default_plugins
from engines.policyos.plugins.registry import PluginRegistry

logger = logging.getLogger("policyos.decisions")


# ══════════════════════════════════════════════════════════════
# POLICY REPOSITORY
# ══════════════════════════════════════════════════════════════

class InMemoryPolicyRepository:
    """Published policies per merchant, in publish order."""

    def __init__(self) -> None:
        self._policies: Dict[str, Policy] = {}
        self._lock = Lock()

    def publish(self, policy: Policy) -> Policy:
        with self._lock:
            self._policies[policy.policy_id] = policy
        logger.info(f"Policy published: {policy.policy_id} merchant={policy.merchant_id}")
        return policy

    def get(self, policy_id: str) -> Optional[Policy]:
        with self._lock:
            return self._policies.get(policy_id)

    def list_active(self, merchant_id: str) -> List[Policy]:
        with self._lock:
            return [
                policy for policy in self._policies.values()
                if policy.merchant_id == merchant_id
            ]


def _created_at(decision: Mapping[str, Any]) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(str(decision.get("created_at") or ""))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DecisionStore:
    """
    Decision records by id, bounded to max_decisions.
    Saving past the bound evicts the oldest record first.
    """

    def __init__(self, max_decisions: int = DEFAULT_MAX_DECISIONS) -> None:
        if max_decisions < 1:
            raise ValueError("max_decisions must be >= 1.")
        self._max_decisions = max_decisions
        self._decisions: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = Lock()

    def save(self, decision: Dict[str, Any]) -> None:
        with self._lock:
            self._decisions[decision["decision_id"]] = decision
            self._decisions.move_to_end(decision["decision_id"])
            while len(self._decisions) > self._max_decisions:
                evicted, _ = self._decisions.popitem(last=False)
                logger.debug(f"Decision evicted: {evicted}")

    def get(self, decision_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            decision = self._decisions.get(decision_id)
            return copy.deepcopy(decision) if decision is not None else None

    def purge_before(self, cutoff: datetime) -> int:
        """Drop decisions created before cutoff. Returns how many were dropped."""
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        with self._lock:
            stale = []
            for decision_id, decision in self._decisions.items():
                created_at = _created_at(decision)
                if created_at is not None and created_at < cutoff:
                    stale.append(decision_id)
            for decision_id in stale:
                del self._decisions[decision_id]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._decisions)


# ══════════════════════════════════════════════════════════════
# SERVICE
# ══════════════════════════════════════════════════════════════

class PolicyOsService:

    def __init__(
        self,
        *,
        registry: PluginRegistry,
        repository: InMemoryPolicyRepository,
        pipeline: PolicyEvaluationPipeline,
        decisions: Optional[DecisionStore] = None,
        clock: Optional[Clock] = None,
        gateway: Optional[ModelGateway] = None,
    ):
        self.registry = registry
        self.repository = repository
        self._pipeline = pipeline
        self._decisions = decisions or DecisionStore()
        self._clock = clock or SystemClock()
        self.gateway = gateway

    def evaluate_event(
        self,
        *,
        merchant_id: str,
        event: str,
        event_id: str = "",
        payload: Optional[Mapping[str, Any]] = None,
        merchant: Optional[Mapping[str, Any]] = None,
        user: Optional[Mapping[str, Any]] = None,
        risk_score: float = 0.0,
        model_estimate: Optional[Mapping[str, Any]] = None,
        trace_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        started_ms = self._clock.now_ms()
        trace_id = trace_id or str(uuid.uuid4())
        ctx = TriggerContext(
            merchant_id=merchant_id,
            event=event,
            event_id=event_id or f"evt_{started_ms}",
            payload=dict(payload or {}),
            merchant=dict(merchant or {}),
            user=dict(user) if user else None,
            risk_score=to_number(risk_score, 0.0),
            model_estimate=dict(model_estimate or {}),
        )

        qualifications = [
            self._pipeline.qualify(policy, ctx, trace_id)
            for policy in self.repository.list_active(merchant_id)
        ]
        allocation = allocate_candidates(rank_candidates([
            candidate
            for qualification in qualifications
            for candidate in qualification.candidates
        ]))
        evaluations = self._run_allocation(qualifications, allocation, trace_id)

        decision = self._build_decision(ctx, trace_id, started_ms, evaluations, allocation)
        self._decisions.save(decision)

        logger.info(json.dumps({
            "tag": "policyos.decision",
            "trace_id": trace_id,
            "merchant_id": merchant_id,
            "decision_id": decision["decision_id"],
            "event": event,
            "executed": len(decision["executed"]),
            "rejected": len(decision["rejected"]),
            "skipped": len(allocation.skipped),
            "elapsed_ms": decision["elapsed_ms"],
        }))
        return decision

    def _run_allocation(
        self,
        qualifications: List[PolicyQualification],
        allocation: Allocation,
        trace_id: str,
    ) -> List[PolicyEvaluation]:
        """
        Evaluate winning policies in rank order, restricted to their
        winning instances. Results come back in publish order.
        """
        by_policy = {item.policy.policy_id: item for item in qualifications}
        instances: Dict[str, Set[int]] = {}
        for winner in allocation.winners:
            instances.setdefault(winner.policy.policy_id, set()).add(winner.instance)

        results: Dict[str, PolicyEvaluation] = {}
        for winner in allocation.winners:
            policy_id = winner.policy.policy_id
            if policy_id in results:
                continue
            qualification = by_policy[policy_id]
            results[policy_id] = self._pipeline.evaluate(
                qualification.policy,
                qualification.ctx,
                trace_id,
                instances=instances[policy_id],
            )

        for skipped in allocation.skipped:
            policy_id = skipped.candidate.policy.policy_id
            if policy_id not in results:
                results[policy_id] = PolicyEvaluation(
                    policy_id=policy_id,
                    outcome=EvaluationOutcome.BLOCKED,
                    reason_codes=(skipped.reason,),
                )

        evaluations = []
        for qualification in qualifications:
            if qualification.evaluation is not None:
                evaluations.append(qualification.evaluation)
            else:
                evaluations.append(results[qualification.policy.policy_id])
        return evaluations

    def _build_decision(
        self,
        ctx: TriggerContext,
        trace_id: str,
        started_ms: int,
        evaluations: List[PolicyEvaluation],
        allocation: Optional[Allocation] = None,
    ) -> Dict[str, Any]:
        executed: List[str] = []
        rejected: List[Dict[str, str]] = []
        explains: List[Dict[str, Any]] = []
        story_cards: List[Dict[str, Any]] = []
        grants: List[Dict[str, Any]] = []
        vouchers: List[Dict[str, Any]] = []
        fragments: List[Dict[str, Any]] = []

        for evaluation in evaluations:
            if evaluation.outcome == EvaluationOutcome.EXECUTED:
                executed.append(evaluation.policy_id)
            elif evaluation.reason_codes != ("trigger_mismatch",):
                rejected.append({
                    "policy_id": evaluation.policy_id,
                    "outcome": evaluation.outcome,
                    "reason": evaluation.reason_codes[0] if evaluation.reason_codes else "",
                })
            for candidate in evaluation.executed_candidates:
                explains.append({"policy_id": evaluation.policy_id, **(candidate.explain or {})})
                for response in candidate.execution.responses:
                    story_cards.extend(response.get("story_cards") or [])
                    grants.extend(response.get("grants") or [])
                    vouchers.extend(response.get("vouchers") or [])
                    fragments.extend(response.get("fragments") or [])

        now_ms = self._clock.now_ms()
        return {
            "decision_id": f"decision_{uuid.uuid4().hex[:16]}",
            "trace_id": trace_id,
            "merchant_id": ctx.merchant_id,
            "user_id": ctx.user_id or None,
            "event": ctx.event,
            "event_id": ctx.event_id,
            "created_at": self._clock.now_utc().isoformat(),
            "elapsed_ms": max(0, now_ms - started_ms),
            "executed": executed,
            "rejected": rejected,
            "explains": explains,
            "story_cards": story_cards,
            "grants": grants,
            "vouchers": vouchers,
            "fragments": fragments,
            "allocation": (allocation or Allocation()).to_dict(),
            "evaluations": [evaluation.to_dict() for evaluation in evaluations],
        }

    def get_decision_explain(self, decision_id: str) -> Optional[Dict[str, Any]]:
        decision = self._decisions.get(decision_id)
        if decision is None:
            return None
        return {
            "decision_id": decision["decision_id"],
            "trace_id": decision["trace_id"],
            "merchant_id": decision["merchant_id"],
            "event": decision["event"],
            "executed": decision["executed"],
            "rejected": decision["rejected"],
            "explains": decision["explains"],
            "expected_range": [
                {
                    "policy_id": item["policy_id"],
                    "expected_range": item.get("expected_range"),
                }
                for item in decision["explains"]
            ],
        }

    def purge_decisions(self, retention_days: int) -> int:
        """Drop decision records older than retention_days."""
        if retention_days < 0:
            raise ValueError("retention_days must be >= 0.")
        cutoff = self._clock.now_utc() - timedelta(days=retention_days)
        purged = self._decisions.purge_before(cutoff)
        logger.info(f"Decisions purged: {purged} older than {cutoff.isoformat()}")
        return purged

    def list_plugins(self) -> Dict[str, List[str]]:
        return {
            "triggers": self.registry.list(PluginCapability.TRIGGER),
            "segments": self.registry.list(PluginCapability.SEGMENT),
            "constraints": self.registry.list(PluginCapability.CONSTRAINT),
            "scorers": self.registry.list(PluginCapability.SCORER),
            "actions": self.registry.list(PluginCapability.ACTION),
        }

    def ai_status(self) -> Dict[str, Any]:
        if self.gateway is None:
            return {"enabled": False}
        return {"enabled": True, **self.gateway.status()}


# ══════════════════════════════════════════════════════════════
# WIRING
# ══════════════════════════════════════════════════════════════

def build_policyos_service(
    *,
    settings: Optional[PolicyOsSettings] = None,
    clock: Optional[Clock] = None,
    store: Optional[ResourceStore] = None,
    ledger: Optional[LedgerService] = None,
    registry: Optional[PluginRegistry] = None,
    repository: Optional[InMemoryPolicyRepository] = None,
    gateway: Optional[ModelGateway] = None,
) -> PolicyOsService:
    """
    Wire a service from defaults. Model estimates are enabled only when
    settings.model_estimates is set; the gateway is built from settings
    when not supplied.
    """
    settings = settings or PolicyOsSettings()
    clock = clock or SystemClock()
    store = store or InMemoryResourceStore()
    ledger = ledger or InMemoryLedgerService(clock)
    registry = registry or PluginRegistry()
    register_default_plugins(registry, store=store, ledger=ledger, clock=clock)

    if gateway is None:
        gateway = build_model_gateway(settings.gateway, clock=clock)
    estimator = GatewayEstimateProvider(gateway) if settings.model_estimates else None

    pipeline = PolicyEvaluationPipeline(
        registry, store, ExecutionAdapter(registry), estimator=estimator
    )
    return PolicyOsService(
        registry=registry,
        repository=repository or InMemoryPolicyRepository(),
        pipeline=pipeline,
        decisions=DecisionStore(settings.max_decisions),
        clock=clock,
        gateway=gateway,
    )

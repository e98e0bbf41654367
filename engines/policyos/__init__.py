"""
PolicyOS Engine — Policy Execution Engine
===========================================
Decides which policies fire for an incoming business event, admits them
against shared resources (budget, inventory, per-user frequency), and
executes their actions with auditable reason codes.
"""

from engines.policyos.models import (
    ActionSpec,
    Candidate,
    CandidateOutcome,
    ConstraintResult,
    CostEstimate,
    EvaluationOutcome,
    ExecutionPlan,
    ExecutionResult,
    Lane,
    OverlapMode,
    OverlapPolicy,
    PluginSpec,
    Policy,
    PolicyDefinitionError,
    PolicyEvaluation,
    PolicyProgram,
    PolicyQualification,
    RankedCandidate,
    ScoreResult,
    TieBreaker,
    TriggerContext,
)
from engines.policyos.allocation import (
    Allocation,
    AllocationReason,
    allocate_candidates,
    rank_candidates,
)
from engines.policyos.adapter import ADAPTER_RUNTIME, ExecutionAdapter
from engines.policyos.pipeline import PolicyEvaluationPipeline
from engines.policyos.service import (
    DecisionStore,
    InMemoryPolicyRepository,
    PolicyOsService,
    build_policyos_service,
)

__all__ = [
    "ADAPTER_RUNTIME",
    "ActionSpec",
    "Allocation",
    "AllocationReason",
    "Candidate",
    "CandidateOutcome",
    "ConstraintResult",
    "CostEstimate",
    "DecisionStore",
    "EvaluationOutcome",
    "ExecutionAdapter",
    "ExecutionPlan",
    "ExecutionResult",
    "InMemoryPolicyRepository",
    "Lane",
    "OverlapMode",
    "OverlapPolicy",
    "PluginSpec",
    "Policy",
    "PolicyDefinitionError",
    "PolicyEvaluation",
    "PolicyEvaluationPipeline",
    "PolicyOsService",
    "PolicyProgram",
    "PolicyQualification",
    "RankedCandidate",
    "ScoreResult",
    "TieBreaker",
    "TriggerContext",
    "allocate_candidates",
    "build_policyos_service",
    "rank_candidates",
]

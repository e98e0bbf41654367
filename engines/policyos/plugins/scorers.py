"""
PolicyOS Plugins — Scorers
============================
Expected-utility annotation for admitted candidates.

    utility = p*v - c - risk_penalty - fatigue_penalty

Inputs come from ctx.model_estimate (model gateway or caller supplied).
Scoring never blocks admission.
"""

from __future__ import annotations

from engines.policyos.models import Policy, ScoreResult, TriggerContext, to_number
from engines.policyos.plugins.contracts import ScorerPlugin

MIN_SPREAD = 0.05
SPREAD_RATIO = 0.25


class ExpectedProfitScorer(ScorerPlugin):
    """
    Defaults when the estimate is silent: p=0.5, v=1, c=0, penalties 0,
    uncertainty 0.15 (clamped to [0, 1]).
    """

    def score(self, policy: Policy, ctx: TriggerContext) -> ScoreResult:
        estimate = ctx.model_estimate if isinstance(ctx.model_estimate, dict) else {}
        p = to_number(estimate.get("p"), 0.5)
        v = to_number(estimate.get("v"), 1.0)
        c = to_number(estimate.get("c"), 0.0)
        risk_penalty = to_number(estimate.get("risk_penalty"), 0.0)
        fatigue_penalty = to_number(estimate.get("fatigue_penalty"), 0.0)

        utility = p * v - c - risk_penalty - fatigue_penalty
        spread = max(MIN_SPREAD, abs(utility) * SPREAD_RATIO)
        return ScoreResult(
            utility=utility,
            uncertainty=min(1.0, max(0.0, to_number(estimate.get("uncertainty"), 0.15))),
            estimate_cost=c,
            expected_range={"min": utility - spread, "max": utility + spread},
            reason_codes=(f"score:{policy.scoring.plugin}",),
        )

"""
PolicyOS Engine — Model Estimates
===================================
Asks the model gateway for scorer inputs when an event carries none.

The model is advisory: any gateway failure (upstream error, open
breaker, unusable JSON) degrades to an empty estimate, and the scorer
falls back to its defaults.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from ai.gateway.errors import ModelGatewayError
from ai.gateway.gateway import PLANNER_ROLE, ModelGateway
from core.resilience.errors import CircuitOpenError
from engines.policyos.models import Policy, TriggerContext, to_number

logger = logging.getLogger("policyos.ai")

ESTIMATE_FIELDS = ("p", "v", "c", "risk_penalty", "fatigue_penalty", "uncertainty")

# Models often answer in camelCase.
_ALIASES = {
    "riskPenalty": "risk_penalty",
    "fatiguePenalty": "fatigue_penalty",
}

SYSTEM_PROMPT = (
    "You estimate the outcome of a marketing policy for one customer event. "
    "Answer with a single JSON object with numeric fields: "
    "p (conversion probability 0..1), v (value if converted), c (cost), "
    "risk_penalty, fatigue_penalty, uncertainty (0..1). No prose."
)


def normalize_estimate(raw: Any) -> Dict[str, float]:
    """Keep the known numeric fields of a model answer."""
    if not isinstance(raw, dict):
        return {}
    estimate: Dict[str, float] = {}
    for key, value in raw.items():
        name = _ALIASES.get(key, key)
        if name not in ESTIMATE_FIELDS:
            continue
        number = to_number(value, None)
        if number is not None:
            estimate[name] = number
    return estimate


class GatewayEstimateProvider:

    def __init__(self, gateway: ModelGateway):
        self._gateway = gateway

    def estimate(
        self, policy: Policy, ctx: TriggerContext, trace_id: str = ""
    ) -> Dict[str, float]:
        user = ctx.user or {}
        prompt = {
            "policy_id": policy.policy_id,
            "policy_name": policy.name,
            "event": ctx.event,
            "payload": ctx.payload,
            "user_tags": user.get("tags") or [],
            "risk_score": ctx.risk_score,
            "actions": [action.plugin for action in policy.actions],
        }
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(prompt, ensure_ascii=False, default=str)},
        ]
        try:
            raw = self._gateway.invoke(PLANNER_ROLE.name, messages, trace_id=trace_id)
        except (ModelGatewayError, CircuitOpenError) as exc:
            logger.warning(
                f"Model estimate unavailable, scorer defaults apply: "
                f"policy={policy.policy_id} trace={trace_id} error={exc}"
            )
            return {}
        return normalize_estimate(raw)

"""
PolicyOS Engine — Execution Adapter
=====================================
Compiles an admitted policy into action commands and runs them.

Execution is best-effort and reports everything: a missing action plugin
yields a synthetic failure response and the remaining commands still run.
Constraint admission, by contrast, is all-or-nothing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from engines.policyos.models import (
    DEFAULT_CHANNEL,
    ActionCommand,
    ConstraintResult,
    ExecutionPlan,
    ExecutionResult,
    Policy,
    ScoreResult,
    TriggerContext,
)
from engines.policyos.plugins.contracts import PluginCapability
from engines.policyos.plugins.registry import PluginRegistry

logger = logging.getLogger("policyos.adapter")

ADAPTER_RUNTIME = "POLICYOS_ADAPTER_V1"


class ExecutionAdapter:
    """
    Usage:
        adapter = ExecutionAdapter(registry)
        plan = adapter.compile(policy, trace_id)
        result = adapter.execute(ctx, policy, plan, trace_id)
    """

    def __init__(self, registry: PluginRegistry):
        if registry is None:
            raise ValueError("registry is required.")
        self._registry = registry

    def compile(self, policy: Policy, trace_id: str) -> ExecutionPlan:
        """Deterministic, side-effect free. Command ids are 1-based."""
        return ExecutionPlan(
            runtime=ADAPTER_RUNTIME,
            trace_id=trace_id,
            commands=tuple(
                ActionCommand(
                    id=f"{policy.policy_id}:action:{index}",
                    plugin=action.plugin,
                    channel=action.channel or DEFAULT_CHANNEL,
                    params=dict(action.params),
                )
                for index, action in enumerate(policy.actions, start=1)
            ),
        )

    def explain(
        self,
        policy: Policy,
        score_result: Optional[ScoreResult],
        constraint_result: Optional[ConstraintResult],
    ) -> Dict[str, Any]:
        """Audit summary. Constraint reason codes come before scorer codes."""
        reason_codes: List[str] = []
        if constraint_result is not None:
            reason_codes.extend(constraint_result.reason_codes)
        if score_result is not None:
            reason_codes.extend(score_result.reason_codes)
        return {
            "runtime": ADAPTER_RUNTIME,
            "policy_id": policy.policy_id,
            "reason_codes": reason_codes,
            "risk_flags": list(constraint_result.risk_flags) if constraint_result else [],
            "expected_range": dict(score_result.expected_range) if score_result else None,
        }

    def execute(
        self,
        ctx: TriggerContext,
        policy: Policy,
        plan: ExecutionPlan,
        trace_id: str,
    ) -> ExecutionResult:
        responses: List[Dict[str, Any]] = []
        for command in plan.commands:
            plugin = self._registry.get(PluginCapability.ACTION, command.plugin)
            if plugin is None:
                logger.warning(
                    f"Action plugin missing: {command.plugin} "
                    f"(command={command.id}, trace={trace_id})"
                )
                responses.append({
                    "command_id": command.id,
                    "success": False,
                    "reason_codes": [f"action plugin missing: {command.plugin}"],
                })
                continue
            response = plugin.execute(ctx, policy, command, trace_id) or {}
            responses.append({"command_id": command.id, **response})

        return ExecutionResult(
            success=all(item.get("success") is not False for item in responses),
            responses=tuple(responses),
        )

"""
PolicyOS HTTP API - Framework-Agnostic Handlers
===============================================
Pure handler functions over contracts and injected dependencies.
Every handler returns an envelope dict; none raises for expected input
problems.
"""

from __future__ import annotations

import logging
from typing import Any

from core.http_api.contracts import DecisionEvaluateHttpRequest, DecisionExplainRequest
from core.http_api.errors import (
    DECISION_NOT_FOUND,
    EVALUATION_FAILED,
    MERCHANT_NOT_FOUND,
    USER_NOT_FOUND,
    error_response,
    success_response,
)

logger = logging.getLogger("policyos.http")


def post_decision_evaluate(
    request: DecisionEvaluateHttpRequest,
    dependencies,
    headers: dict[str, Any] | None = None,
) -> dict[str, Any]:
    directory = dependencies.merchant_directory
    merchant = directory.get_merchant(request.merchant_id)
    if merchant is None:
        return error_response(
            code=MERCHANT_NOT_FOUND,
            message=f"Merchant not found: {request.merchant_id}",
            details={"merchant_id": request.merchant_id},
        )
    user = directory.get_user(request.merchant_id, request.user_id)
    if user is None:
        return error_response(
            code=USER_NOT_FOUND,
            message=f"User not found: {request.user_id}",
            details={"merchant_id": request.merchant_id, "user_id": request.user_id},
        )

    trace_id = request.trace_id or (headers or {}).get("X-Trace-Id")
    try:
        decision = dependencies.policyos_service.evaluate_event(
            merchant_id=request.merchant_id,
            event=request.event,
            event_id=request.event_id,
            payload=request.payload,
            merchant=merchant,
            user=user,
            risk_score=request.risk_score,
            model_estimate=request.model_estimate,
            trace_id=trace_id,
        )
    except Exception as exc:
        logger.exception(f"Decision evaluation failed: merchant={request.merchant_id}")
        return error_response(
            code=EVALUATION_FAILED,
            message="Failed to evaluate decision.",
            details={"error_type": type(exc).__name__},
        )
    return success_response(decision)


def get_decision_explain(
    request: DecisionExplainRequest,
    dependencies,
    headers: dict[str, Any] | None = None,
) -> dict[str, Any]:
    explain = dependencies.policyos_service.get_decision_explain(request.decision_id)
    if explain is None:
        return error_response(
            code=DECISION_NOT_FOUND,
            message=f"Decision not found: {request.decision_id}",
            details={"decision_id": request.decision_id},
        )
    return success_response(explain)


def list_plugins(dependencies, headers: dict[str, Any] | None = None) -> dict[str, Any]:
    return success_response(dependencies.policyos_service.list_plugins())


def get_ai_status(dependencies, headers: dict[str, Any] | None = None) -> dict[str, Any]:
    return success_response(dependencies.policyos_service.ai_status())

"""
PolicyOS Django Adapter Views
=============================
Pass-through HTTP views over core/http_api handlers.
"""

from __future__ import annotations

import json
from typing import Any

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from adapters.django_api.wiring import build_dependencies
from core.http_api.contracts import DecisionEvaluateHttpRequest, DecisionExplainRequest
from core.http_api.errors import error_response, status_for
from core.http_api.handlers import (
    get_ai_status,
    get_decision_explain,
    list_plugins,
    post_decision_evaluate,
)


def _headers_from_request(request: HttpRequest) -> dict[str, str]:
    return {str(key): str(value) for key, value in request.headers.items()}


def _json_error(code: str, message: str, status: int = 400) -> JsonResponse:
    return JsonResponse(
        error_response(code=code, message=message, details={}),
        status=status,
    )


def _json_payload(payload: dict[str, Any]) -> JsonResponse:
    return JsonResponse(payload, status=status_for(payload))


def _parse_json_body(request: HttpRequest) -> dict[str, Any]:
    if not request.body:
        return {}
    try:
        parsed = json.loads(request.body.decode("utf-8"))
    except Exception as exc:
        raise ValueError("Request body must be valid JSON.") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Request body must be a JSON object.")
    return parsed


def _method_not_allowed() -> JsonResponse:
    return _json_error(
        "METHOD_NOT_ALLOWED",
        "Method not allowed for this endpoint.",
        status=405,
    )


def _evaluate_contract(body: dict[str, Any]) -> DecisionEvaluateHttpRequest:
    return DecisionEvaluateHttpRequest(
        merchant_id=str(body.get("merchant_id") or "").strip(),
        event=str(body.get("event") or "").strip(),
        user_id=str(body.get("user_id") or "").strip(),
        event_id=str(body.get("event_id") or ""),
        payload=body.get("payload") or {},
        risk_score=body.get("risk_score", 0.0),
        model_estimate=body.get("model_estimate") or {},
        trace_id=body.get("trace_id"),
    )


@csrf_exempt
def decision_evaluate_view(request: HttpRequest):
    if request.method != "POST":
        return _method_not_allowed()
    headers = _headers_from_request(request)
    try:
        contract = _evaluate_contract(_parse_json_body(request))
    except (ValueError, KeyError) as exc:
        return _json_error("INVALID_REQUEST", str(exc), status=400)

    payload = post_decision_evaluate(contract, build_dependencies(), headers=headers)
    return _json_payload(payload)


def decision_explain_view(request: HttpRequest):
    if request.method != "GET":
        return _method_not_allowed()
    headers = _headers_from_request(request)
    try:
        contract = DecisionExplainRequest(
            decision_id=str(request.GET.get("decision_id") or "").strip()
        )
    except ValueError as exc:
        return _json_error("INVALID_REQUEST", str(exc), status=400)

    payload = get_decision_explain(contract, build_dependencies(), headers=headers)
    return _json_payload(payload)


def plugins_list_view(request: HttpRequest):
    if request.method != "GET":
        return _method_not_allowed()
    payload = list_plugins(build_dependencies(), headers=_headers_from_request(request))
    return _json_payload(payload)


def ai_status_view(request: HttpRequest):
    if request.method != "GET":
        return _method_not_allowed()
    payload = get_ai_status(build_dependencies(), headers=_headers_from_request(request))
    return _json_payload(payload)

"""
PolicyOS HTTP API - Error Mapping
=================================
Stable transport error codes and envelope builders.
"""

from __future__ import annotations

from typing import Any, Optional

from core.http_api.contracts import HttpApiErrorBody, HttpApiResponse

INVALID_REQUEST = "INVALID_REQUEST"
MERCHANT_NOT_FOUND = "MERCHANT_NOT_FOUND"
USER_NOT_FOUND = "USER_NOT_FOUND"
DECISION_NOT_FOUND = "DECISION_NOT_FOUND"
EVALUATION_FAILED = "EVALUATION_FAILED"

# Codes the framework adapters translate to a non-200 status.
ERROR_STATUS = {
    INVALID_REQUEST: 400,
    MERCHANT_NOT_FOUND: 404,
    USER_NOT_FOUND: 404,
    DECISION_NOT_FOUND: 404,
    EVALUATION_FAILED: 500,
}


def error_response(
    *,
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    return HttpApiResponse(
        ok=False,
        error=HttpApiErrorBody(
            code=code,
            message=message,
            details=details or {},
        ),
    ).to_dict()


def success_response(data: Any) -> dict[str, Any]:
    return HttpApiResponse(ok=True, data=data).to_dict()


def status_for(payload: dict[str, Any]) -> int:
    if payload.get("ok"):
        return 200
    code = (payload.get("error") or {}).get("code", "")
    return ERROR_STATUS.get(code, 400)

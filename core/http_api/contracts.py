"""
PolicyOS HTTP API - Contracts
=============================
Framework-agnostic request/response DTOs for the PolicyOS endpoints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class DecisionEvaluateHttpRequest:
    merchant_id: str
    event: str
    user_id: str
    event_id: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    risk_score: float = 0.0
    model_estimate: dict[str, Any] = field(default_factory=dict)
    trace_id: Optional[str] = None

    def __post_init__(self):
        if not self.merchant_id or not isinstance(self.merchant_id, str):
            raise ValueError("merchant_id must be a non-empty string.")
        if not self.event or not isinstance(self.event, str):
            raise ValueError("event must be a non-empty string.")
        if not self.user_id or not isinstance(self.user_id, str):
            raise ValueError("user_id must be a non-empty string.")
        if not isinstance(self.event_id, str):
            raise ValueError("event_id must be a string.")
        if not isinstance(self.payload, dict):
            raise ValueError("payload must be an object.")
        if not isinstance(self.model_estimate, dict):
            raise ValueError("model_estimate must be an object.")
        if isinstance(self.risk_score, bool) or not isinstance(
            self.risk_score, (int, float)
        ):
            raise ValueError("risk_score must be a number.")
        if self.trace_id is not None and not isinstance(self.trace_id, str):
            raise ValueError("trace_id must be a string or None.")


@dataclass(frozen=True)
class DecisionExplainRequest:
    decision_id: str

    def __post_init__(self):
        if not self.decision_id or not isinstance(self.decision_id, str):
            raise ValueError("decision_id must be a non-empty string.")


@dataclass(frozen=True)
class HttpApiErrorBody:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class HttpApiResponse:
    ok: bool
    data: Any = None
    error: Optional[HttpApiErrorBody] = None

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "data": self.data}
        if self.error is None:
            raise ValueError("error must be set when ok is False.")
        return {"ok": False, "error": self.error.to_dict()}

"""
Tests for the framework-agnostic PolicyOS HTTP handlers and contracts.
"""

from datetime import datetime, timezone

import pytest

from core.config.settings import PolicyOsSettings
from core.http_api import (
    DecisionEvaluateHttpRequest,
    DecisionExplainRequest,
    HttpApiDependencies,
    HttpApiErrorBody,
    HttpApiResponse,
    InMemoryMerchantDirectory,
    error_response,
    get_ai_status,
    get_decision_explain,
    list_plugins,
    post_decision_evaluate,
    status_for,
)
from core.time.clock import FixedClock
from engines.policyos.models import Policy
from engines.policyos.service import build_policyos_service


def _dependencies(service=None) -> HttpApiDependencies:
    if service is None:
        service = build_policyos_service(
            settings=PolicyOsSettings(),
            clock=FixedClock(datetime(2026, 3, 1, tzinfo=timezone.utc)),
        )
        service.repository.publish(Policy.from_dict({
            "policy_id": "rainy@v1",
            "resource_scope": {"merchant_id": "m1"},
            "trigger_event": "WEATHER_CHANGE",
            "conditions": [{"field": "weather", "equals": "RAIN"}],
            "constraints": [{"plugin": "kill_switch_v1"}],
            "actions": [{"plugin": "wallet_grant_v1", "params": {"amount": 3}}],
        }))
    directory = InMemoryMerchantDirectory()
    directory.put_merchant("m1", {"kill_switch_enabled": False})
    directory.put_user("m1", "u1", {"tags": ["vip"]})
    return HttpApiDependencies(policyos_service=service, merchant_directory=directory)


def _request(**overrides) -> DecisionEvaluateHttpRequest:
    data = dict(
        merchant_id="m1",
        event="WEATHER_CHANGE",
        user_id="u1",
        event_id="evt_1",
        payload={"weather": "RAIN"},
    )
    data.update(overrides)
    return DecisionEvaluateHttpRequest(**data)


class _ExplodingService:
    def evaluate_event(self, **kwargs):
        raise RuntimeError("store offline")


# ── Contracts ────────────────────────────────────────────────

class TestContracts:
    @pytest.mark.parametrize("field, value", [
        ("merchant_id", ""),
        ("event", ""),
        ("user_id", ""),
        ("payload", ["x"]),
        ("model_estimate", "p=1"),
        ("risk_score", "high"),
        ("risk_score", True),
    ])
    def test_evaluate_request_validation(self, field, value):
        with pytest.raises(ValueError):
            _request(**{field: value})

    def test_explain_request_requires_id(self):
        with pytest.raises(ValueError):
            DecisionExplainRequest(decision_id="")

    def test_error_envelope(self):
        assert error_response(code="INVALID_REQUEST", message="bad") == {
            "ok": False,
            "error": {"code": "INVALID_REQUEST", "message": "bad", "details": {}},
        }

    def test_failed_response_requires_error(self):
        with pytest.raises(ValueError):
            HttpApiResponse(ok=False).to_dict()
        assert HttpApiErrorBody(code="X", message="y").to_dict()["details"] == {}

    def test_status_mapping(self):
        assert status_for({"ok": True, "data": {}}) == 200
        assert status_for(error_response(code="USER_NOT_FOUND", message="")) == 404
        assert status_for(error_response(code="EVALUATION_FAILED", message="")) == 500
        assert status_for(error_response(code="SOMETHING_ELSE", message="")) == 400


# ── Handlers ─────────────────────────────────────────────────

class TestPostDecisionEvaluate:
    def test_success(self):
        payload = post_decision_evaluate(_request(), _dependencies())
        assert payload["ok"] is True
        assert payload["data"]["executed"] == ["rainy@v1"]
        assert payload["data"]["user_id"] == "u1"

    def test_trace_id_from_header(self):
        payload = post_decision_evaluate(
            _request(), _dependencies(), headers={"X-Trace-Id": "trace-h"}
        )
        assert payload["data"]["trace_id"] == "trace-h"

    def test_unknown_merchant(self):
        payload = post_decision_evaluate(_request(merchant_id="m9"), _dependencies())
        assert payload["error"]["code"] == "MERCHANT_NOT_FOUND"

    def test_unknown_user(self):
        payload = post_decision_evaluate(_request(user_id="u9"), _dependencies())
        assert payload["error"]["code"] == "USER_NOT_FOUND"
        assert payload["error"]["details"] == {"merchant_id": "m1", "user_id": "u9"}

    def test_service_failure(self):
        payload = post_decision_evaluate(_request(), _dependencies(_ExplodingService()))
        assert payload["error"]["code"] == "EVALUATION_FAILED"
        assert payload["error"]["details"] == {"error_type": "RuntimeError"}


class TestReadHandlers:
    def test_explain_round_trip(self):
        dependencies = _dependencies()
        decision = post_decision_evaluate(_request(), dependencies)["data"]
        payload = get_decision_explain(
            DecisionExplainRequest(decision_id=decision["decision_id"]), dependencies
        )
        assert payload["ok"] is True
        assert payload["data"]["executed"] == ["rainy@v1"]

    def test_explain_unknown(self):
        payload = get_decision_explain(
            DecisionExplainRequest(decision_id="decision_nope"), _dependencies()
        )
        assert payload["error"]["code"] == "DECISION_NOT_FOUND"

    def test_list_plugins(self):
        payload = list_plugins(_dependencies())
        assert "wallet_grant_v1" in payload["data"]["actions"]

    def test_ai_status(self):
        payload = get_ai_status(_dependencies())
        assert payload["data"]["enabled"] is True
        assert payload["data"]["configured"] is False

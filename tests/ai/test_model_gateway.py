"""
Tests for the model gateway: transport mapping, retry, circuit breaker
and the queue, all against a fake requests session.
"""

from datetime import datetime, timezone

import pytest
import requests

from ai.gateway import (
    ModelNotConfiguredError,
    ModelResponseError,
    ModelTransportError,
    OpenAICompatibleTransport,
    build_model_gateway,
)
from core.config.settings import ModelGatewaySettings
from core.resilience.errors import CircuitOpenError
from core.time.clock import FixedClock


class _FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


def _completion(content):
    return _FakeResponse(body={"choices": [{"message": {"content": content}}]})


class _FakeSession:
    """Replays queued responses or exceptions, recording each post."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _settings(**overrides) -> ModelGatewaySettings:
    data = dict(
        api_key="test-key",
        base_url="http://model.local/v1",
        retry_max_attempts=2,
        retry_backoff_ms=10,
        circuit_failure_threshold=2,
        circuit_cooldown_ms=5000,
    )
    data.update(overrides)
    return ModelGatewaySettings(**data)


def _gateway(session, clock=None, **overrides):
    sleeps = []
    gateway = build_model_gateway(
        _settings(**overrides),
        clock=clock or FixedClock(datetime(2026, 3, 1, tzinfo=timezone.utc)),
        session=session,
        sleep=sleeps.append,
    )
    return gateway, sleeps


MESSAGES = [{"role": "user", "content": "estimate"}]


# ── Transport ────────────────────────────────────────────────

class TestTransport:
    def _transport(self, session):
        return OpenAICompatibleTransport(
            base_url="http://model.local/v1/", api_key="k", timeout_ms=2500, session=session
        )

    def test_posts_chat_completion(self):
        session = _FakeSession(_completion("hello"))
        text = self._transport(session).complete(
            model="m", messages=MESSAGES, temperature=0.1, max_tokens=512
        )
        assert text == "hello"
        post = session.posts[0]
        assert post["url"] == "http://model.local/v1/chat/completions"
        assert post["headers"]["Authorization"] == "Bearer k"
        assert post["timeout"] == 2.5
        assert post["json"]["max_tokens"] == 512

    def test_timeout_maps_to_marker(self):
        session = _FakeSession(requests.Timeout("slow"))
        with pytest.raises(ModelTransportError, match="timeout after 2500ms"):
            self._transport(session).complete(
                model="m", messages=MESSAGES, temperature=0.1, max_tokens=1
            )

    def test_connection_error_maps_to_marker(self):
        session = _FakeSession(requests.ConnectionError("refused"))
        with pytest.raises(ModelTransportError, match="connection error"):
            self._transport(session).complete(
                model="m", messages=MESSAGES, temperature=0.1, max_tokens=1
            )

    def test_http_error_carries_status(self):
        session = _FakeSession(_FakeResponse(status_code=503, text="overloaded"))
        with pytest.raises(ModelTransportError) as excinfo:
            self._transport(session).complete(
                model="m", messages=MESSAGES, temperature=0.1, max_tokens=1
            )
        assert str(excinfo.value) == "http 503: overloaded"
        assert excinfo.value.status_code == 503

    def test_no_choices_is_response_error(self):
        session = _FakeSession(_FakeResponse(body={"choices": []}))
        with pytest.raises(ModelResponseError):
            self._transport(session).complete(
                model="m", messages=MESSAGES, temperature=0.1, max_tokens=1
            )

    def test_segmented_content_is_joined(self):
        session = _FakeSession(_completion([{"text": "{\"p\":"}, {"text": "1}"}]))
        text = self._transport(session).complete(
            model="m", messages=MESSAGES, temperature=0.1, max_tokens=1
        )
        assert text == '{"p":\n1}'


# ── Gateway ──────────────────────────────────────────────────

class TestModelGateway:
    def test_invoke_parses_json(self):
        session = _FakeSession(_completion('```json\n{"p": 0.3}\n```'))
        gateway, _ = _gateway(session)
        try:
            assert gateway.invoke("planner", MESSAGES) == {"p": 0.3}
        finally:
            gateway.shutdown()
        assert session.posts[0]["json"]["temperature"] == 0.1
        assert session.posts[0]["json"]["max_tokens"] == 512

    def test_chat_role_budget(self):
        session = _FakeSession(_completion('{"reply": "hi"}'))
        gateway, _ = _gateway(session)
        try:
            gateway.invoke("chat", MESSAGES)
        finally:
            gateway.shutdown()
        assert session.posts[0]["json"]["temperature"] == 0.3
        assert session.posts[0]["json"]["max_tokens"] == 2048

    def test_unknown_role(self):
        gateway, _ = _gateway(_FakeSession())
        try:
            with pytest.raises(ValueError, match="Unknown model role"):
                gateway.invoke("poet", MESSAGES)
        finally:
            gateway.shutdown()

    def test_not_configured(self):
        session = _FakeSession()
        gateway, _ = _gateway(session, api_key="")
        try:
            with pytest.raises(ModelNotConfiguredError):
                gateway.invoke("planner", MESSAGES)
        finally:
            gateway.shutdown()
        assert session.posts == []
        assert gateway.breaker.snapshot()["total_failures"] == 0

    def test_retries_transient_failure(self):
        session = _FakeSession(
            _FakeResponse(status_code=502, text="bad gateway"),
            _completion('{"p": 0.9}'),
        )
        gateway, sleeps = _gateway(session)
        try:
            assert gateway.invoke("planner", MESSAGES) == {"p": 0.9}
        finally:
            gateway.shutdown()
        assert len(session.posts) == 2
        assert sleeps == [0.01]
        assert gateway.breaker.consecutive_failures == 0

    def test_client_error_is_not_retried(self):
        session = _FakeSession(_FakeResponse(status_code=401, text="bad key"))
        gateway, sleeps = _gateway(session)
        try:
            with pytest.raises(ModelTransportError, match="http 401"):
                gateway.invoke("planner", MESSAGES)
        finally:
            gateway.shutdown()
        assert len(session.posts) == 1
        assert sleeps == []

    def test_breaker_opens_and_sheds_calls(self):
        clock = FixedClock(datetime(2026, 3, 1, tzinfo=timezone.utc))
        session = _FakeSession(
            requests.Timeout("slow"),
            requests.Timeout("slow"),
            _completion('{"p": 0.5}'),
        )
        gateway, _ = _gateway(session, clock=clock)
        try:
            with pytest.raises(ModelTransportError, match="timeout"):
                gateway.invoke("planner", MESSAGES)
            assert gateway.breaker.is_open()

            with pytest.raises(CircuitOpenError) as excinfo:
                gateway.invoke("planner", MESSAGES)
            assert excinfo.value.remaining_ms == 5000
            assert len(session.posts) == 2

            clock.advance_ms(5000)
            assert gateway.invoke("planner", MESSAGES) == {"p": 0.5}
        finally:
            gateway.shutdown()
        assert gateway.status()["circuit_breaker"]["is_open"] is False

    def test_unparseable_answer_counts_as_failure(self):
        session = _FakeSession(_completion("I cannot answer that"))
        gateway, _ = _gateway(session)
        try:
            with pytest.raises(ModelResponseError):
                gateway.invoke("planner", MESSAGES)
        finally:
            gateway.shutdown()
        snapshot = gateway.breaker.snapshot()
        assert snapshot["total_success"] == 1
        assert snapshot["total_failures"] == 1

    def test_status(self):
        gateway, _ = _gateway(_FakeSession(), max_concurrency=2)
        try:
            status = gateway.status()
        finally:
            gateway.shutdown()
        assert status["provider"] == "deepseek"
        assert status["configured"] is True
        assert status["max_concurrency"] == 2
        assert status["roles"]["planner"] == {"temperature": 0.1, "max_tokens": 512}
        assert status["retry"] == {"max_attempts": 2, "backoff_ms": 10}
        assert "test-key" not in str(status)

"""
PolicyOS AI Gateway — Model Gateway
=====================================
Resilient entry point for every external model call.

    invoke(role, messages)
      → queue.run(
          → run_with_retry(
              → breaker.throw_if_open()
              → transport.complete(...)
              → breaker.record_success()
              → parse_json_loose(raw)
            on error: breaker.record_failure(error); raise))

Roles share the breaker, the queue and the retry policy, but each has its
own sampling budget:
    planner → temperature 0.1, 512 tokens   (terse structured answers)
    chat    → temperature 0.3, 2048 tokens  (strategy chat)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from ai.gateway.errors import ModelNotConfiguredError
from ai.gateway.parsing import parse_json_loose
from ai.gateway.transport import OpenAICompatibleTransport
from core.config.settings import ModelGatewaySettings
from core.resilience.circuit_breaker import CircuitBreaker
from core.resilience.queue import BoundedTaskQueue
from core.resilience.retry import run_with_retry
from core.time.clock import Clock, SystemClock

logger = logging.getLogger("policyos.ai")


@dataclass(frozen=True)
class ModelRole:
    name: str
    temperature: float
    max_tokens: int


PLANNER_ROLE = ModelRole("planner", 0.1, 512)
CHAT_ROLE = ModelRole("chat", 0.3, 2048)
DEFAULT_ROLES = {role.name: role for role in (PLANNER_ROLE, CHAT_ROLE)}


class ModelGateway:
    """
    Usage:
        gateway = build_model_gateway(ModelGatewaySettings.from_env())
        plan = gateway.invoke("planner", [{"role": "user", "content": "..."}])
    """

    def __init__(
        self,
        *,
        transport: OpenAICompatibleTransport,
        model: str,
        breaker: CircuitBreaker,
        queue: BoundedTaskQueue,
        retry_max_attempts: int,
        retry_backoff_ms: int,
        provider: str = "",
        configured: bool = True,
        roles: Optional[Mapping[str, ModelRole]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._transport = transport
        self.model = model
        self.provider = provider
        self.configured = configured
        self._breaker = breaker
        self._queue = queue
        self._retry_max_attempts = retry_max_attempts
        self._retry_backoff_ms = retry_backoff_ms
        self._roles = dict(roles or DEFAULT_ROLES)
        self._sleep = sleep

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    def invoke(
        self,
        role: str,
        messages: List[Dict[str, str]],
        trace_id: str = "",
    ) -> Any:
        """
        Call the model and parse its JSON answer.

        Raises:
            ValueError: unknown role.
            ModelGatewayError: not configured, transport or response failure.
            CircuitOpenError: breaker open, call shed.
        """
        model_role = self._roles.get(role)
        if model_role is None:
            raise ValueError(
                f"Unknown model role '{role}'. Must be one of: {sorted(self._roles)}"
            )
        if not self.configured:
            raise ModelNotConfiguredError(
                f"ai provider '{self.provider}' is not configured"
            )

        def attempt(attempt_number: int) -> Any:
            self._breaker.throw_if_open()
            try:
                raw = self._transport.complete(
                    model=self.model,
                    messages=messages,
                    temperature=model_role.temperature,
                    max_tokens=model_role.max_tokens,
                )
                self._breaker.record_success()
                return parse_json_loose(raw)
            except Exception as exc:
                self._breaker.record_failure(exc)
                logger.warning(
                    f"Model call failed role={role} attempt={attempt_number} "
                    f"trace={trace_id} error={exc}"
                )
                raise

        return self._queue.run(
            lambda: run_with_retry(
                attempt,
                max_attempts=self._retry_max_attempts,
                backoff_ms=self._retry_backoff_ms,
                sleep=self._sleep,
            )
        )

    def status(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "configured": self.configured,
            "roles": {
                name: {"temperature": role.temperature, "max_tokens": role.max_tokens}
                for name, role in sorted(self._roles.items())
            },
            "max_concurrency": self._queue.max_concurrency,
            "retry": {
                "max_attempts": self._retry_max_attempts,
                "backoff_ms": self._retry_backoff_ms,
            },
            "circuit_breaker": self._breaker.snapshot(),
        }

    def shutdown(self) -> None:
        self._queue.shutdown()


def build_model_gateway(
    settings: ModelGatewaySettings,
    *,
    clock: Optional[Clock] = None,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ModelGateway:
    transport = OpenAICompatibleTransport(
        base_url=settings.base_url,
        api_key=settings.api_key,
        timeout_ms=settings.timeout_ms,
        session=session,
    )
    return ModelGateway(
        transport=transport,
        model=settings.model,
        provider=settings.provider,
        configured=settings.configured,
        breaker=CircuitBreaker(
            failure_threshold=settings.circuit_failure_threshold,
            cooldown_ms=settings.circuit_cooldown_ms,
            clock=clock or SystemClock(),
        ),
        queue=BoundedTaskQueue(max_concurrency=settings.max_concurrency, name="policyos-ai"),
        retry_max_attempts=settings.retry_max_attempts,
        retry_backoff_ms=settings.retry_backoff_ms,
        sleep=sleep,
    )

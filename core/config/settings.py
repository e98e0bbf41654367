"""
PolicyOS Core Config — Runtime Settings
=========================================
Environment-driven settings for the model gateway and the PolicyOS
service. Read once at wiring time; components receive the resolved
values, never os.environ.

Doctrine: malformed values fall back to defaults instead of failing boot.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from core.resilience.circuit_breaker import (
    DEFAULT_CIRCUIT_COOLDOWN_MS,
    DEFAULT_CIRCUIT_FAILURE_THRESHOLD,
)
from core.resilience.retry import (
    DEFAULT_RETRY_BACKOFF_MS,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    as_positive_int,
)


# ══════════════════════════════════════════════════════════════
# PROVIDER DEFAULTS
# ══════════════════════════════════════════════════════════════

class AiProvider:
    DEEPSEEK = "deepseek"
    OPENAI = "openai"
    ZHIPUAI = "zhipuai"

    ALL = frozenset({"deepseek", "openai", "zhipuai"})


PROVIDER_BASE_URLS = {
    AiProvider.DEEPSEEK: "https://api.deepseek.com/v1",
    AiProvider.OPENAI: "https://api.openai.com/v1",
    AiProvider.ZHIPUAI: "https://open.bigmodel.cn/api/paas/v4",
}

PROVIDER_MODELS = {
    AiProvider.DEEPSEEK: "deepseek-chat",
    AiProvider.OPENAI: "gpt-4o-mini",
    AiProvider.ZHIPUAI: "glm-3-turbo",
}

PROVIDER_KEY_VARS = {
    AiProvider.DEEPSEEK: "DEEPSEEK_API_KEY",
    AiProvider.OPENAI: "OPENAI_API_KEY",
    AiProvider.ZHIPUAI: "ZHIPUAI_API_KEY",
}

DEFAULT_AI_TIMEOUT_MS = 30000
DEFAULT_AI_MAX_CONCURRENCY = 1
DEFAULT_MAX_DECISIONS = 10000


def _as_string(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_bool(value, fallback: bool = False) -> bool:
    normalized = _as_string(value).lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    return fallback


def parse_provider(value) -> str:
    normalized = _as_string(value).lower()
    return normalized if normalized in AiProvider.ALL else AiProvider.DEEPSEEK


# ══════════════════════════════════════════════════════════════
# SETTINGS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ModelGatewaySettings:
    """Model gateway transport and resilience settings."""

    provider: str = AiProvider.DEEPSEEK
    model: str = PROVIDER_MODELS[AiProvider.DEEPSEEK]
    base_url: str = PROVIDER_BASE_URLS[AiProvider.DEEPSEEK]
    api_key: str = ""
    timeout_ms: int = DEFAULT_AI_TIMEOUT_MS
    retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    retry_backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS
    circuit_failure_threshold: int = DEFAULT_CIRCUIT_FAILURE_THRESHOLD
    circuit_cooldown_ms: int = DEFAULT_CIRCUIT_COOLDOWN_MS
    max_concurrency: int = DEFAULT_AI_MAX_CONCURRENCY

    def __post_init__(self):
        if self.provider not in AiProvider.ALL:
            raise ValueError(
                f"provider '{self.provider}' not valid. "
                f"Must be one of: {sorted(AiProvider.ALL)}"
            )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ModelGatewaySettings":
        env = os.environ if env is None else env
        provider = parse_provider(env.get("MQ_AI_PROVIDER"))
        return cls(
            provider=provider,
            model=_as_string(env.get("MQ_AI_MODEL")) or PROVIDER_MODELS[provider],
            base_url=(
                _as_string(env.get("MQ_AI_BASE_URL")) or PROVIDER_BASE_URLS[provider]
            ).rstrip("/"),
            api_key=(
                _as_string(env.get("MQ_AI_API_KEY"))
                or _as_string(env.get(PROVIDER_KEY_VARS[provider]))
            ),
            timeout_ms=as_positive_int(env.get("MQ_AI_TIMEOUT_MS"), DEFAULT_AI_TIMEOUT_MS),
            retry_max_attempts=as_positive_int(
                env.get("MQ_AI_RETRY_MAX_ATTEMPTS"), DEFAULT_RETRY_MAX_ATTEMPTS
            ),
            retry_backoff_ms=as_positive_int(
                env.get("MQ_AI_RETRY_BACKOFF_MS"), DEFAULT_RETRY_BACKOFF_MS
            ),
            circuit_failure_threshold=as_positive_int(
                env.get("MQ_AI_CIRCUIT_FAILURE_THRESHOLD"),
                DEFAULT_CIRCUIT_FAILURE_THRESHOLD,
            ),
            circuit_cooldown_ms=as_positive_int(
                env.get("MQ_AI_CIRCUIT_COOLDOWN_MS"), DEFAULT_CIRCUIT_COOLDOWN_MS
            ),
            max_concurrency=as_positive_int(
                env.get("MQ_AI_MAX_CONCURRENCY"), DEFAULT_AI_MAX_CONCURRENCY
            ),
        )

    def to_dict(self) -> dict:
        """Public view. The API key is never exposed."""
        return {
            "provider": self.provider,
            "model": self.model,
            "base_url": self.base_url,
            "configured": self.configured,
            "timeout_ms": self.timeout_ms,
            "retry_max_attempts": self.retry_max_attempts,
            "retry_backoff_ms": self.retry_backoff_ms,
            "circuit_failure_threshold": self.circuit_failure_threshold,
            "circuit_cooldown_ms": self.circuit_cooldown_ms,
            "max_concurrency": self.max_concurrency,
        }


@dataclass(frozen=True)
class PolicyOsSettings:
    """
    Fields:
        model_estimates: ask the model gateway for scorer inputs when an
                         event carries no model estimate.
        gateway:         model gateway settings.
        max_decisions:   decision records kept in memory; oldest evicted.
    """

    model_estimates: bool = False
    gateway: ModelGatewaySettings = field(default_factory=ModelGatewaySettings)
    max_decisions: int = DEFAULT_MAX_DECISIONS

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PolicyOsSettings":
        env = os.environ if env is None else env
        return cls(
            model_estimates=parse_bool(env.get("MQ_POLICYOS_MODEL_ESTIMATES"), False),
            gateway=ModelGatewaySettings.from_env(env),
            max_decisions=as_positive_int(
                env.get("MQ_POLICYOS_MAX_DECISIONS"), DEFAULT_MAX_DECISIONS
            ),
        )

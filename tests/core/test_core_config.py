"""
Tests for core.config — environment-driven runtime settings.
"""

import pytest

from core.config.settings import (
    AiProvider,
    ModelGatewaySettings,
    PolicyOsSettings,
    parse_bool,
    parse_provider,
)


class TestParsers:
    @pytest.mark.parametrize("value", ["1", "true", "YES", " on "])
    def test_truthy(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["0", "false", "No", "off"])
    def test_falsy(self, value):
        assert parse_bool(value, fallback=True) is False

    def test_unknown_uses_fallback(self):
        assert parse_bool("maybe", fallback=True) is True
        assert parse_bool(None) is False

    def test_provider_defaults_to_deepseek(self):
        assert parse_provider("OpenAI") == AiProvider.OPENAI
        assert parse_provider("anthropic-ish") == AiProvider.DEEPSEEK
        assert parse_provider(None) == AiProvider.DEEPSEEK


class TestModelGatewaySettings:
    def test_defaults_from_empty_env(self):
        settings = ModelGatewaySettings.from_env({})
        assert settings.provider == "deepseek"
        assert settings.model == "deepseek-chat"
        assert settings.base_url == "https://api.deepseek.com/v1"
        assert settings.timeout_ms == 30000
        assert settings.retry_max_attempts == 2
        assert settings.retry_backoff_ms == 180
        assert settings.circuit_failure_threshold == 4
        assert settings.circuit_cooldown_ms == 30000
        assert settings.max_concurrency == 1
        assert settings.configured is False

    def test_provider_specific_defaults(self):
        settings = ModelGatewaySettings.from_env({
            "MQ_AI_PROVIDER": "zhipuai",
            "ZHIPUAI_API_KEY": "zk",
        })
        assert settings.model == "glm-3-turbo"
        assert settings.base_url == "https://open.bigmodel.cn/api/paas/v4"
        assert settings.api_key == "zk"
        assert settings.configured is True

    def test_explicit_overrides(self):
        settings = ModelGatewaySettings.from_env({
            "MQ_AI_PROVIDER": "openai",
            "MQ_AI_MODEL": "gpt-custom",
            "MQ_AI_BASE_URL": "http://localhost:9000/v1/",
            "MQ_AI_API_KEY": "k",
            "OPENAI_API_KEY": "ignored",
            "MQ_AI_TIMEOUT_MS": "5000",
            "MQ_AI_MAX_CONCURRENCY": "3",
        })
        assert settings.model == "gpt-custom"
        assert settings.base_url == "http://localhost:9000/v1"
        assert settings.api_key == "k"
        assert settings.timeout_ms == 5000
        assert settings.max_concurrency == 3

    def test_invalid_numbers_fall_back(self):
        settings = ModelGatewaySettings.from_env({
            "MQ_AI_TIMEOUT_MS": "-1",
            "MQ_AI_RETRY_MAX_ATTEMPTS": "many",
            "MQ_AI_CIRCUIT_COOLDOWN_MS": "0",
        })
        assert settings.timeout_ms == 30000
        assert settings.retry_max_attempts == 2
        assert settings.circuit_cooldown_ms == 30000

    def test_to_dict_hides_key(self):
        data = ModelGatewaySettings(api_key="secret").to_dict()
        assert "api_key" not in data
        assert data["configured"] is True
        assert "secret" not in str(data)

    def test_rejects_unknown_provider(self):
        with pytest.raises(ValueError, match="provider"):
            ModelGatewaySettings(provider="other")


class TestPolicyOsSettings:
    def test_model_estimates_off_by_default(self):
        assert PolicyOsSettings.from_env({}).model_estimates is False

    def test_model_estimates_enabled(self):
        settings = PolicyOsSettings.from_env({
            "MQ_POLICYOS_MODEL_ESTIMATES": "true",
            "MQ_AI_API_KEY": "k",
        })
        assert settings.model_estimates is True
        assert settings.gateway.configured is True

    def test_max_decisions(self):
        assert PolicyOsSettings.from_env({}).max_decisions == 10000
        settings = PolicyOsSettings.from_env({"MQ_POLICYOS_MAX_DECISIONS": "50"})
        assert settings.max_decisions == 50
        assert PolicyOsSettings.from_env({"MQ_POLICYOS_MAX_DECISIONS": "-3"}).max_decisions == 10000

"""
PolicyOS AI Gateway — Public API
==================================
Resilient model gateway: OpenAI-compatible transport behind a bounded
queue, retry with backoff and a circuit breaker.
"""

from ai.gateway.errors import (
    ModelGatewayError,
    ModelNotConfiguredError,
    ModelResponseError,
    ModelTransportError,
)
from ai.gateway.gateway import (
    CHAT_ROLE,
    DEFAULT_ROLES,
    PLANNER_ROLE,
    ModelGateway,
    ModelRole,
    build_model_gateway,
)
from ai.gateway.parsing import normalize_content, parse_json_loose
from ai.gateway.transport import OpenAICompatibleTransport

__all__ = [
    "CHAT_ROLE",
    "DEFAULT_ROLES",
    "PLANNER_ROLE",
    "ModelGateway",
    "ModelGatewayError",
    "ModelNotConfiguredError",
    "ModelResponseError",
    "ModelRole",
    "ModelTransportError",
    "OpenAICompatibleTransport",
    "build_model_gateway",
    "normalize_content",
    "parse_json_loose",
]

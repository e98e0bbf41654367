"""
PolicyOS Core Config — Public API
===================================
Environment-driven runtime settings (model gateway, PolicyOS service).
"""

from core.config.settings import (
    AiProvider,
    ModelGatewaySettings,
    PolicyOsSettings,
    parse_bool,
    parse_provider,
)

__all__ = [
    "AiProvider",
    "ModelGatewaySettings",
    "PolicyOsSettings",
    "parse_bool",
    "parse_provider",
]

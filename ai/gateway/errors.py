"""
PolicyOS AI Gateway — Errors
==============================
Failures of the external model call. The message text carries the
markers the retry classifier reads ("timeout after ...", "connection
error: ...", "http 503: ...").
"""

from __future__ import annotations

from typing import Optional


class ModelGatewayError(Exception):
    """Base error for model gateway calls."""

    code = "AI_GATEWAY_ERROR"


class ModelNotConfiguredError(ModelGatewayError):
    """No API key: the gateway refuses to call out."""

    code = "AI_NOT_CONFIGURED"


class ModelTransportError(ModelGatewayError):
    """Network, timeout or HTTP failure talking to the provider."""

    code = "AI_TRANSPORT_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ModelResponseError(ModelGatewayError):
    """Provider answered but the content is empty or not usable JSON."""

    code = "AI_RESPONSE_INVALID"

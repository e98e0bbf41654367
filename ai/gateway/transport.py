"""
PolicyOS AI Gateway — OpenAI-Compatible Transport
===================================================
Posts role-tagged messages to <base_url>/chat/completions. Works for the
deepseek, openai and zhipuai endpoints, which share the wire format.

Every call carries a hard timeout. requests exceptions are mapped to
ModelTransportError with classification markers in the message.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ai.gateway.errors import ModelResponseError, ModelTransportError
from ai.gateway.parsing import normalize_content

logger = logging.getLogger("policyos.ai")

ERROR_BODY_LIMIT = 180


class OpenAICompatibleTransport:

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_ms: int,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.timeout_ms = timeout_ms
        self._session = session or requests.Session()

    def complete(
        self,
        *,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Return the first choice's text content."""
        url = f"{self.base_url}/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        try:
            response = self._session.post(
                url, json=payload, headers=headers, timeout=self.timeout_ms / 1000.0
            )
        except requests.Timeout as exc:
            raise ModelTransportError(f"timeout after {self.timeout_ms}ms") from exc
        except requests.ConnectionError as exc:
            raise ModelTransportError(f"connection error: {exc}") from exc
        except requests.RequestException as exc:
            raise ModelTransportError(f"network error: {exc}") from exc

        if response.status_code >= 400:
            detail = (response.text or "")[:ERROR_BODY_LIMIT]
            raise ModelTransportError(
                f"http {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ModelResponseError("provider returned a non-JSON body") from exc

        choices = body.get("choices") if isinstance(body, dict) else None
        if not choices:
            raise ModelResponseError("provider returned no choices")
        message = choices[0].get("message") or {}
        return normalize_content(message.get("content"))

"""
PolicyOS AI Gateway — Response Parsing
========================================
Models are asked for JSON but answer with prose, fenced blocks or
segmented content, so parsing is loose.
"""

from __future__ import annotations

import json
import re
from typing import Any

from ai.gateway.errors import ModelResponseError

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def normalize_content(content: Any) -> str:
    """Join segmented message content (list of strings / text parts)."""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict):
            text = part.get("text")
            if not isinstance(text, str):
                text = part.get("output_text")
            if isinstance(text, str):
                parts.append(text)
    return "\n".join(part for part in parts if part).strip()


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as exc:
        raise ModelResponseError(f"invalid ai response json: {exc}") from exc


def parse_json_loose(raw: Any) -> Any:
    """
    Parse, in order: the whole text, the first fenced ```json block, the
    outermost {...} slice.

    Raises:
        ModelResponseError: empty or unparseable content.
    """
    text = raw.strip() if isinstance(raw, str) else ""
    if not text:
        raise ModelResponseError("empty ai response")
    try:
        return json.loads(text)
    except ValueError:
        pass
    fenced = _FENCED.search(text)
    if fenced and fenced.group(1):
        return _loads(fenced.group(1))
    first, last = text.find("{"), text.rfind("}")
    if first >= 0 and last > first:
        return _loads(text[first:last + 1])
    raise ModelResponseError("invalid ai response json")

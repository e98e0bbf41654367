"""
PolicyOS Engine — Field Conditions
====================================
Evaluates policy conditions such as {"field": "weather", "equals": "RAIN"}
against an event.

Condition forms:
    {"field": f, "equals": v}            shorthand for op=eq
    {"field": f, "op": op, "value": v}   op in eq|neq|gt|gte|lt|lte|
                                         includes|in|nin (default eq)

Field lookup order (dotted paths): event payload, context attributes,
user record, user wallet.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping

from engines.policyos.models import TriggerContext, to_number

_MISSING = object()


def _get_by_path(target: Any, path: str) -> Any:
    segments = [segment.strip() for segment in path.split(".") if segment.strip()]
    if not segments:
        return _MISSING
    cursor = target
    for segment in segments:
        if not isinstance(cursor, Mapping) or segment not in cursor:
            return _MISSING
        cursor = cursor[segment]
    return cursor


def resolve_field(ctx: TriggerContext, field: str) -> Any:
    """Resolve a dotted field against the context. Missing → None."""
    path = str(field or "").strip()
    if not path:
        return None
    context_view = {
        "event": ctx.event,
        "event_id": ctx.event_id,
        "merchant_id": ctx.merchant_id,
        "merchant": ctx.merchant,
        "user": ctx.user or {},
        "risk_score": ctx.risk_score,
    }
    user = ctx.user or {}
    for source, prefix in (
        (ctx.payload, ""),
        (context_view, ""),
        (user, ""),
        (user, "wallet."),
    ):
        value = _get_by_path(source, prefix + path)
        if value is not _MISSING:
            return value
    return None


def evaluate_condition(actual: Any, op: str, expected: Any) -> bool:
    op = str(op or "").strip().lower() or "eq"
    if op == "neq":
        return actual != expected
    if op == "gte":
        return to_number(actual, -math.inf) >= to_number(expected, math.inf)
    if op == "gt":
        return to_number(actual, -math.inf) > to_number(expected, math.inf)
    if op == "lte":
        return to_number(actual, math.inf) <= to_number(expected, -math.inf)
    if op == "lt":
        return to_number(actual, math.inf) < to_number(expected, -math.inf)
    if op == "includes":
        if isinstance(actual, (list, tuple)):
            return expected in actual
        return str(expected or "") in str(actual or "")
    if op == "in":
        return isinstance(expected, (list, tuple)) and actual in expected
    if op == "nin":
        return not isinstance(expected, (list, tuple)) or actual not in expected
    return actual == expected


def condition_holds(condition: Mapping[str, Any], ctx: TriggerContext) -> bool:
    actual = resolve_field(ctx, condition.get("field"))
    if "equals" in condition:
        return evaluate_condition(actual, "eq", condition["equals"])
    return evaluate_condition(actual, condition.get("op"), condition.get("value"))


def conditions_hold(
    conditions: Iterable[Mapping[str, Any]],
    ctx: TriggerContext,
    logic: str = "AND",
) -> bool:
    """All (AND) or any (OR) condition holds. No conditions → True."""
    results = [condition_holds(condition, ctx) for condition in conditions]
    if not results:
        return True
    if str(logic or "AND").strip().upper() == "OR":
        return any(results)
    return all(results)

"""
PolicyOS Django HTTP adapter.
Thin framework glue over core/http_api handlers.
"""

from adapters.django_api.wiring import (
    DEV_MERCHANT_ID,
    DEV_POLICY_ID,
    DEV_USER_ID,
    build_dependencies,
    reset_dependencies,
)

__all__ = [
    "DEV_MERCHANT_ID",
    "DEV_POLICY_ID",
    "DEV_USER_ID",
    "build_dependencies",
    "reset_dependencies",
]

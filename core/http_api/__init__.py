"""
PolicyOS HTTP API - Public API
==============================
"""

from core.http_api.contracts import (
    DecisionEvaluateHttpRequest,
    DecisionExplainRequest,
    HttpApiErrorBody,
    HttpApiResponse,
)
from core.http_api.dependencies import (
    HttpApiDependencies,
    InMemoryMerchantDirectory,
    MerchantDirectory,
)
from core.http_api.errors import error_response, status_for, success_response
from core.http_api.handlers import (
    get_ai_status,
    get_decision_explain,
    list_plugins,
    post_decision_evaluate,
)

__all__ = [
    "DecisionEvaluateHttpRequest",
    "DecisionExplainRequest",
    "HttpApiDependencies",
    "HttpApiErrorBody",
    "HttpApiResponse",
    "InMemoryMerchantDirectory",
    "MerchantDirectory",
    "error_response",
    "get_ai_status",
    "get_decision_explain",
    "list_plugins",
    "post_decision_evaluate",
    "status_for",
    "success_response",
]

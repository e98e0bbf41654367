"""
PolicyOS AI Module — Model Gateway Access
===========================================
The external model is an opaque advisor: it returns structured JSON or
an error. Its answers annotate decisions (scorer inputs) and never
admit or block a policy on their own.
"""

from ai.gateway import (
    ModelGateway,
    ModelGatewayError,
    build_model_gateway,
    parse_json_loose,
)

__all__ = [
    "ModelGateway",
    "ModelGatewayError",
    "build_model_gateway",
    "parse_json_loose",
]

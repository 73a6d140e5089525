"""Provider-agnostic, stateless gateway to multimodal generation services."""
from __future__ import annotations

from pilot_llm.client import PROVIDERS, gateway_from_env
from pilot_llm.errors import (
    AuthError,
    BadRequestError,
    ConfigurationError,
    EmptyResponseError,
    GatewayError,
    NetworkError,
    OverloadedError,
    RateLimitedError,
    RequestTimeoutError,
    TransientServiceError,
    error_from_status_code,
)
from pilot_llm.gateway import ModelServiceGateway, RecordedCall, StubGateway
from pilot_llm.middleware import LoggingGateway
from pilot_llm.types import ContentKind, ContentPart, ImageData

__all__ = [
    "AuthError",
    "BadRequestError",
    "ConfigurationError",
    "ContentKind",
    "ContentPart",
    "EmptyResponseError",
    "GatewayError",
    "ImageData",
    "LoggingGateway",
    "ModelServiceGateway",
    "NetworkError",
    "OverloadedError",
    "PROVIDERS",
    "RateLimitedError",
    "RecordedCall",
    "RequestTimeoutError",
    "StubGateway",
    "TransientServiceError",
    "error_from_status_code",
    "gateway_from_env",
]

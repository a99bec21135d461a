"""
AI Routing Engine Core Module

Canonical data model, error taxonomy and configuration.
"""

from .models import (
    # Enums
    Provider,
    Role,
    FinishReason,
    HealthStatus,
    AttemptOutcome,

    # Requests / responses
    Message,
    CanonicalRequest,
    CanonicalResponse,
    ResponseMetadata,
    Usage,

    # Health and routing
    ProviderHealth,
    RoutingAttempt,
    new_request_id,
)

from .errors import (
    ErrorType,
    ErrorDetails,
    EngineError,
    ConfigurationError,
    ProviderError,
    ProviderErrorKind,
    RoutingError,
    RoutingErrorKind,
    StreamError,
    StreamErrorKind,
    UnknownPricing,
    classify_status,
    error_from_response,
    error_from_transport,
)

from .config import (
    EngineConfig,
    ProviderSettings,
    RoutingSettings,
    PriceEntry,
    load_config,
)

__all__ = [
    "Provider",
    "Role",
    "FinishReason",
    "HealthStatus",
    "AttemptOutcome",
    "Message",
    "CanonicalRequest",
    "CanonicalResponse",
    "ResponseMetadata",
    "Usage",
    "ProviderHealth",
    "RoutingAttempt",
    "new_request_id",
    "ErrorType",
    "ErrorDetails",
    "EngineError",
    "ConfigurationError",
    "ProviderError",
    "ProviderErrorKind",
    "RoutingError",
    "RoutingErrorKind",
    "StreamError",
    "StreamErrorKind",
    "UnknownPricing",
    "classify_status",
    "error_from_response",
    "error_from_transport",
    "EngineConfig",
    "ProviderSettings",
    "RoutingSettings",
    "PriceEntry",
    "load_config",
]

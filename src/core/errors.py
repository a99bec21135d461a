"""
AI Routing Engine - Error Definitions

Error taxonomy with infra vs semantic classification.

Three boundaries:
- ProviderError: raised by adapters (auth, rate_limited, upstream_5xx,
  timeout, bad_request, unknown)
- RoutingError: raised by the router (all_providers_failed,
  budget_exceeded, invalid_request)
- StreamError: raised while streaming (partial, terminal)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"


class ProviderErrorKind(str, Enum):
    """Canonical adapter failure kinds."""
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_5XX = "upstream_5xx"
    TIMEOUT = "timeout"
    BAD_REQUEST = "bad_request"
    UNKNOWN = "unknown"

    @property
    def allows_failover(self) -> bool:
        """Request-shape and credential problems survive a provider switch."""
        return self not in (ProviderErrorKind.AUTH, ProviderErrorKind.BAD_REQUEST)


class RoutingErrorKind(str, Enum):
    """Router-level failure kinds."""
    ALL_PROVIDERS_FAILED = "all_providers_failed"
    BUDGET_EXCEEDED = "budget_exceeded"
    INVALID_REQUEST = "invalid_request"


class StreamErrorKind(str, Enum):
    """Streaming failure kinds."""
    PARTIAL = "partial"      # failed before any content reached the caller
    TERMINAL = "terminal"    # failed after content was delivered


@dataclass
class ErrorDetails:
    """Full error information for callers and logs."""
    # Core fields (always present)
    code: str
    message: str
    type: ErrorType

    # Context fields
    provider: Optional[str] = None

    # Trace fields
    request_id: str = ""

    # Recovery fields
    retryable: bool = False
    retry_after: Optional[int] = None
    fallback_attempted: Optional[bool] = None
    partial_content: Optional[str] = None

    # Debug fields
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "request_id": self.request_id,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.fallback_attempted is not None:
            result["fallback_attempted"] = self.fallback_attempted
        if self.partial_content:
            result["partial_content"] = self.partial_content
        if self.details:
            result["details"] = self.details

        return {"error": result}


class EngineError(Exception):
    """Base exception for all routing engine errors."""

    def __init__(self, error: ErrorDetails):
        self.error = error
        super().__init__(error.message)

    def to_dict(self) -> Dict[str, Any]:
        return self.error.to_dict()


class ConfigurationError(EngineError):
    """Configuration could not be loaded or validated."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            ErrorDetails(
                code="configuration_error",
                message=message,
                type=ErrorType.SEMANTIC,
                details=details or {}
            )
        )


# ============================================================
# Provider Errors (adapter boundary)
# ============================================================

class ProviderError(EngineError):
    """
    Failure of one call against one provider.

    ``kind`` decides failover: auth and bad_request stop routing,
    everything else moves on to the next candidate.
    """

    def __init__(
        self,
        kind: ProviderErrorKind,
        provider_id: str,
        message: str = "",
        status_code: Optional[int] = None,
        request_id: str = "",
        retry_after: Optional[int] = None
    ):
        self.kind = kind
        self.provider_id = provider_id
        self.status_code = status_code
        self.request_id = request_id
        super().__init__(
            ErrorDetails(
                code=kind.value,
                message=message or f"{provider_id} request failed ({kind.value})",
                type=ErrorType.INFRA if kind.allows_failover else ErrorType.SEMANTIC,
                provider=provider_id,
                request_id=request_id,
                retryable=kind.allows_failover,
                retry_after=retry_after,
                details={"status_code": status_code} if status_code is not None else {}
            )
        )

    @classmethod
    def timeout(cls, provider_id: str, request_id: str = "", seconds: Optional[float] = None) -> "ProviderError":
        """Provider did not answer within the allotted time."""
        message = f"{provider_id} did not respond within timeout"
        if seconds is not None:
            message = f"{provider_id} did not respond within {seconds:g}s"
        return cls(ProviderErrorKind.TIMEOUT, provider_id, message, request_id=request_id)


def classify_status(status_code: int) -> ProviderErrorKind:
    """Map an HTTP status to a canonical error kind."""
    if status_code == 401:
        return ProviderErrorKind.AUTH
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMITED
    if status_code == 408:
        return ProviderErrorKind.TIMEOUT
    if status_code >= 500:
        return ProviderErrorKind.UPSTREAM_5XX
    if 400 <= status_code < 500:
        return ProviderErrorKind.BAD_REQUEST
    return ProviderErrorKind.UNKNOWN


def _parse_retry_after(headers: Mapping[str, str]) -> Optional[int]:
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def error_from_response(
    provider_id: str,
    response: httpx.Response,
    request_id: str = "",
    message: str = ""
) -> ProviderError:
    """
    Convert a non-2xx response to a ProviderError.

    The response body must already be read; adapters pass the vendor's
    own error message when they could decode one.
    """
    status_code = response.status_code
    kind = classify_status(status_code)
    return ProviderError(
        kind,
        provider_id,
        message=message or f"{provider_id} returned error {status_code}",
        status_code=status_code,
        request_id=request_id,
        retry_after=_parse_retry_after(response.headers) if kind == ProviderErrorKind.RATE_LIMITED else None
    )


def error_from_transport(
    provider_id: str,
    error: Exception,
    request_id: str = ""
) -> ProviderError:
    """Convert an httpx transport failure to a ProviderError."""
    if isinstance(error, httpx.TimeoutException):
        return ProviderError.timeout(provider_id, request_id)

    if isinstance(error, (httpx.NetworkError, httpx.RemoteProtocolError)):
        return ProviderError(
            ProviderErrorKind.UPSTREAM_5XX,
            provider_id,
            message=f"Connection to {provider_id} failed: {error}",
            request_id=request_id
        )

    return ProviderError(
        ProviderErrorKind.UNKNOWN,
        provider_id,
        message=str(error) or error.__class__.__name__,
        request_id=request_id
    )


# ============================================================
# Routing Errors (router boundary)
# ============================================================

class RoutingError(EngineError):
    """
    Final failure of a routed request.

    ``attempts`` is the ordered list of (provider_id, error_kind) pairs
    tried before giving up.
    """

    def __init__(
        self,
        kind: RoutingErrorKind,
        message: str,
        attempts: Optional[Sequence[Tuple[str, str]]] = None,
        request_id: str = "",
        deadline_exceeded: bool = False
    ):
        self.kind = kind
        self.attempts: List[Tuple[str, str]] = list(attempts or [])
        self.deadline_exceeded = deadline_exceeded
        details: Dict[str, Any] = {}
        if self.attempts:
            details["attempts"] = [
                {"provider": provider, "error_kind": error_kind}
                for provider, error_kind in self.attempts
            ]
        if deadline_exceeded:
            details["deadline_exceeded"] = True
        super().__init__(
            ErrorDetails(
                code=kind.value,
                message=message,
                type=ErrorType.INFRA if kind == RoutingErrorKind.ALL_PROVIDERS_FAILED else ErrorType.SEMANTIC,
                request_id=request_id,
                retryable=False,
                fallback_attempted=len(self.attempts) > 1,
                details=details
            )
        )

    @property
    def last_error_kind(self) -> Optional[str]:
        """Error kind of the final attempt, if any attempt was made."""
        if not self.attempts:
            return None
        return self.attempts[-1][1]


# ============================================================
# Stream Errors
# ============================================================

class StreamError(EngineError):
    """
    Streaming failure.

    PARTIAL means nothing reached the caller yet and failover was possible;
    TERMINAL means content was already delivered and the stream ends here.
    """

    def __init__(
        self,
        kind: StreamErrorKind,
        provider_id: str,
        message: str = "",
        partial_content: str = "",
        error_kind: Optional[str] = None,
        request_id: str = ""
    ):
        self.kind = kind
        self.provider_id = provider_id
        self.partial_content = partial_content
        self.error_kind = error_kind
        super().__init__(
            ErrorDetails(
                code=f"stream_{kind.value}",
                message=message or "Connection lost after receiving partial content",
                type=ErrorType.INFRA,
                provider=provider_id,
                request_id=request_id,
                retryable=kind == StreamErrorKind.PARTIAL,
                partial_content=partial_content or None,
                details={"error_kind": error_kind} if error_kind else {}
            )
        )


# ============================================================
# Pricing
# ============================================================

class UnknownPricing(EngineError):
    """No price entry for a provider/model pair."""

    def __init__(self, provider_id: str, model: str):
        self.provider_id = provider_id
        self.model = model
        super().__init__(
            ErrorDetails(
                code="unknown_pricing",
                message=f"No pricing configured for {provider_id}/{model}",
                type=ErrorType.SEMANTIC,
                provider=provider_id
            )
        )

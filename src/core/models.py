"""
AI Routing Engine - Core Data Models

Provider-agnostic request/response shapes used between the router,
the adapters and the streaming normalizer.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple


# ============================================================
# Enums
# ============================================================

class Provider(str, Enum):
    """Built-in provider identifiers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    STUB = "stub"


class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class FinishReason(str, Enum):
    """Completion finish reasons."""
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"


class HealthStatus(str, Enum):
    """Advisory provider health used to bias candidate ordering."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AttemptOutcome(str, Enum):
    """Outcome of a single provider attempt."""
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"


def new_request_id(prefix: str = "req") -> str:
    """Generate a unique identifier for one outbound call."""
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


# ============================================================
# Messages
# ============================================================

@dataclass(frozen=True)
class Message:
    """A single chat message."""
    role: Role
    content: str

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        """Create a user message."""
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        """Create an assistant message."""
        return cls(role=Role.ASSISTANT, content=content)


# ============================================================
# Request
# ============================================================

@dataclass(frozen=True)
class CanonicalRequest:
    """
    Normalized inference request.

    ``model`` is either a logical name ("fast-model") resolved through the
    configured routes, or provider-qualified ("openai/gpt-4o-mini") which
    pins the request to one adapter.

    Example:
        request = CanonicalRequest(
            model="anthropic/claude-3-haiku-20240307",
            messages=[
                Message.system("You are terse."),
                Message.user("Hello!")
            ],
            max_tokens=64
        )
    """
    model: str
    messages: Tuple[Message, ...]
    max_tokens: int = 1000
    temperature: float = 0.7
    top_p: float = 1.0
    stop: Optional[FrozenSet[str]] = None
    stream: bool = False
    user_id: str = ""
    max_cost_usd: Optional[float] = None
    id: str = field(default_factory=lambda: new_request_id("req"))

    def __post_init__(self):
        # Freeze caller-supplied collections so the request stays immutable
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))
        if self.stop is not None and not isinstance(self.stop, frozenset):
            object.__setattr__(self, "stop", frozenset(self.stop))

    @property
    def provider(self) -> Optional[str]:
        """Provider prefix of a provider-qualified model, if any."""
        if "/" in self.model:
            return self.model.split("/", 1)[0]
        return None

    @property
    def model_name(self) -> str:
        """Model name without the provider prefix."""
        if "/" in self.model:
            return self.model.split("/", 1)[1]
        return self.model

    @property
    def stop_sequences(self) -> List[str]:
        """Stop strings in a stable order for wire payloads."""
        return sorted(self.stop) if self.stop else []

    def with_model(self, model: str) -> CanonicalRequest:
        """Copy of this request targeting a concrete model."""
        return replace(self, model=model)


# ============================================================
# Response
# ============================================================

@dataclass(frozen=True)
class Usage:
    """Token usage information."""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ResponseMetadata:
    """Routing metadata stamped on every response."""
    request_id: str
    timestamp: float = field(default_factory=time.time)
    streaming: bool = False
    fallback_used: bool = False
    attempted_providers: List[str] = field(default_factory=list)
    cost_usd: Optional[float] = None
    cost_available: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "streaming": self.streaming,
            "fallback_used": self.fallback_used,
            "attempted_providers": list(self.attempted_providers),
            "cost_usd": self.cost_usd,
            "cost_available": self.cost_available,
        }


@dataclass
class CanonicalResponse:
    """
    Provider-agnostic completion.

    Adapters fill ``response_time_ms`` with the latency of their own call;
    the router replaces it with the end-to-end time and re-stamps
    ``metadata`` with the routing outcome.
    """
    id: str
    provider: str
    model: str
    content: str
    usage: Usage = field(default_factory=Usage)
    finish_reason: FinishReason = FinishReason.STOP
    response_time_ms: int = 0
    metadata: ResponseMetadata = field(default_factory=lambda: ResponseMetadata(request_id=""))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "model": self.model,
            "content": self.content,
            "usage": self.usage.to_dict(),
            "finish_reason": self.finish_reason.value,
            "response_time_ms": self.response_time_ms,
            "metadata": self.metadata.to_dict(),
        }


# ============================================================
# Health and routing bookkeeping
# ============================================================

@dataclass
class ProviderHealth:
    """Last known health of one provider."""
    provider_id: str
    status: HealthStatus = HealthStatus.HEALTHY
    last_checked_at: Optional[float] = None
    last_response_time_ms: Optional[int] = None
    detail: str = ""
    consecutive_failures: int = 0

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "status": self.status.value,
            "last_checked_at": self.last_checked_at,
            "last_response_time_ms": self.last_response_time_ms,
            "detail": self.detail,
            "consecutive_failures": self.consecutive_failures,
        }


@dataclass
class RoutingAttempt:
    """One dispatch of a request to one candidate."""
    provider_id: str
    model: str
    request_id: str
    started_at: float = field(default_factory=time.time)
    outcome: Optional[AttemptOutcome] = None
    error_kind: Optional[str] = None
    duration_ms: int = 0

    def finish(self, outcome: AttemptOutcome, error_kind: Optional[str] = None):
        """Record the attempt result."""
        self.outcome = outcome
        self.error_kind = error_kind
        self.duration_ms = int((time.time() - self.started_at) * 1000)


def attempted_providers(attempts: Iterable[RoutingAttempt]) -> List[str]:
    """Provider ids in dispatch order."""
    return [attempt.provider_id for attempt in attempts]

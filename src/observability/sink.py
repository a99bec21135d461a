"""
AI Routing Engine - Observability Sink

The router and the health monitor report what happens through an
``ObservabilitySink`` handed to them at construction. Nothing here is a
process-wide singleton.

Sinks:
- NullSink: discards everything (default)
- TelemetrySink: structured logs + Prometheus metrics + optional tracing
"""

from contextlib import nullcontext
from typing import Any, ContextManager, Optional, Protocol, Sequence

from ..core.models import CanonicalRequest, HealthStatus, ProviderHealth, RoutingAttempt, Usage
from .logging import StructuredLogger, get_logger
from .metrics import MetricsCollector
from .tracing import TracingManager


class ObservabilitySink(Protocol):
    """Structured events emitted by the routing engine."""

    def request_started(self, request: CanonicalRequest, candidates: Sequence[str]) -> None:
        ...

    def attempt_finished(self, request: CanonicalRequest, attempt: RoutingAttempt) -> None:
        ...

    def failover(self, request: CanonicalRequest, from_provider: str, to_provider: str, reason: str) -> None:
        ...

    def first_delta(self, request: CanonicalRequest, provider: str, seconds: float) -> None:
        ...

    def request_finished(
        self,
        request: CanonicalRequest,
        provider: str,
        model: str,
        status: str,
        duration_seconds: float,
        usage: Optional[Usage] = None,
        cost_usd: Optional[float] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        ...

    def pricing_unavailable(self, request: CanonicalRequest, provider: str, model: str) -> None:
        ...

    def health_checked(self, provider: str, success: bool, duration_seconds: float) -> None:
        ...

    def health_changed(self, previous: HealthStatus, current: ProviderHealth) -> None:
        ...

    def span(self, name: str, **attributes: Any) -> ContextManager:
        ...


class NullSink:
    """Sink that drops every event."""

    def request_started(self, request, candidates):
        pass

    def attempt_finished(self, request, attempt):
        pass

    def failover(self, request, from_provider, to_provider, reason):
        pass

    def first_delta(self, request, provider, seconds):
        pass

    def request_finished(self, request, provider, model, status, duration_seconds,
                         usage=None, cost_usd=None, error=None):
        pass

    def pricing_unavailable(self, request, provider, model):
        pass

    def health_checked(self, provider, success, duration_seconds):
        pass

    def health_changed(self, previous, current):
        pass

    def span(self, name, **attributes):
        return nullcontext()


class TelemetrySink:
    """
    Fans events out to the structured logger, Prometheus and OpenTelemetry.

    Metrics and tracing are optional; logging is always on.
    """

    def __init__(
        self,
        logger: Optional[StructuredLogger] = None,
        metrics: Optional[MetricsCollector] = None,
        tracing: Optional[TracingManager] = None,
    ):
        self.logger = logger or get_logger("routing_engine.events")
        self.metrics = metrics
        self.tracing = tracing

    def request_started(self, request, candidates):
        self.logger.info(
            "Routing request",
            request_id=request.id,
            model=request.model,
            streaming=request.stream,
            candidates=list(candidates),
        )

    def attempt_finished(self, request, attempt):
        outcome = attempt.outcome.value if attempt.outcome else "unknown"
        log = self.logger.info if outcome == "success" else self.logger.warning
        log(
            "Provider attempt finished",
            request_id=request.id,
            provider=attempt.provider_id,
            provider_request_id=attempt.request_id,
            outcome=outcome,
            error_kind=attempt.error_kind,
            duration_ms=attempt.duration_ms,
        )
        if self.metrics:
            self.metrics.record_attempt(attempt.provider_id, outcome, attempt.error_kind)

    def failover(self, request, from_provider, to_provider, reason):
        self.logger.warning(
            "Failing over to next provider",
            request_id=request.id,
            from_provider=from_provider,
            to_provider=to_provider,
            reason=reason,
        )
        if self.metrics:
            self.metrics.record_fallback(from_provider, to_provider, reason)

    def first_delta(self, request, provider, seconds):
        if self.metrics:
            self.metrics.record_time_to_first_token(provider, seconds)

    def request_finished(self, request, provider, model, status, duration_seconds,
                         usage=None, cost_usd=None, error=None):
        fields = {
            "request_id": request.id,
            "provider": provider,
            "model": model,
            "status": status,
            "duration_ms": int(duration_seconds * 1000),
        }
        if usage is not None:
            fields["prompt_tokens"] = usage.prompt_tokens
            fields["completion_tokens"] = usage.completion_tokens
        if cost_usd is not None:
            fields["cost_usd"] = cost_usd
        if error is not None:
            fields["error"] = str(error)
            self.logger.error("Request failed", **fields)
        else:
            self.logger.info("Request completed", **fields)

        if self.metrics:
            self.metrics.record_request(provider, model, status, duration_seconds, request.stream)
            if usage is not None:
                self.metrics.record_tokens(provider, model, usage.prompt_tokens, usage.completion_tokens)
            if cost_usd is not None:
                self.metrics.record_cost(provider, model, cost_usd)

    def pricing_unavailable(self, request, provider, model):
        self.logger.warning(
            "No pricing for model, cost unavailable",
            request_id=request.id,
            provider=provider,
            model=model,
        )

    def health_checked(self, provider, success, duration_seconds):
        if self.metrics:
            self.metrics.record_health_check(provider, success, duration_seconds)

    def health_changed(self, previous, current):
        self.logger.info(
            "Provider health changed",
            provider=current.provider_id,
            previous_status=previous.value,
            status=current.status.value,
            consecutive_failures=current.consecutive_failures,
            detail=current.detail,
        )
        if self.metrics:
            self.metrics.set_health_status(current.provider_id, current.status)

    def span(self, name, **attributes):
        if self.tracing is None:
            return nullcontext()
        return self.tracing.start_span(name, attributes=attributes)

"""
AI Routing Engine - Prometheus Metrics

Metrics collection with the Prometheus client library. Each collector
owns its registry, so several engines (or tests) never collide.

Metrics exposed:
- routing_requests_total: Routed requests by provider, model, status, streaming
- routing_request_duration_seconds: End-to-end routing latency
- routing_attempts_total: Provider attempts by outcome and error kind
- routing_fallbacks_total: Failovers between providers
- routing_tokens_total: Tokens used (input/output)
- routing_cost_usd_total: Cost in USD
- routing_time_to_first_token_seconds: Streaming time to first delta
- routing_provider_health_status: 0=healthy, 1=degraded, 2=unhealthy
- routing_health_check_*: Probe latency and results

Usage:
    metrics = MetricsCollector()
    metrics.record_request(provider="openai", model="gpt-4o", status="success",
                           duration_seconds=1.5)
    payload, content_type = metrics.render()
"""

from typing import Optional, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from ..core.models import HealthStatus


HEALTH_GAUGE_VALUES = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


class MetricsCollector:
    """Prometheus metrics for one routing engine instance."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        registry = self.registry

        self.requests_total = Counter(
            "routing_requests_total",
            "Total number of routed requests",
            labelnames=["provider", "model", "status", "streaming"],
            registry=registry,
        )

        # AI calls typically range from 0.1s to 60s+
        self.request_duration = Histogram(
            "routing_request_duration_seconds",
            "End-to-end routing duration in seconds",
            labelnames=["provider", "streaming"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, float("inf")),
            registry=registry,
        )

        self.attempts_total = Counter(
            "routing_attempts_total",
            "Provider attempts by outcome",
            labelnames=["provider", "outcome", "error_kind"],
            registry=registry,
        )

        self.fallbacks_total = Counter(
            "routing_fallbacks_total",
            "Failovers from one provider to the next",
            labelnames=["from_provider", "to_provider", "reason"],
            registry=registry,
        )

        self.tokens_total = Counter(
            "routing_tokens_total",
            "Total tokens used",
            labelnames=["provider", "model", "type"],  # type = input/output
            registry=registry,
        )

        self.cost_total = Counter(
            "routing_cost_usd_total",
            "Total cost in USD",
            labelnames=["provider", "model"],
            registry=registry,
        )

        self.time_to_first_token = Histogram(
            "routing_time_to_first_token_seconds",
            "Time to first delta in streaming responses",
            labelnames=["provider"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        self.provider_health = Gauge(
            "routing_provider_health_status",
            "Provider health (0=healthy, 1=degraded, 2=unhealthy)",
            labelnames=["provider"],
            registry=registry,
        )

        self.health_check_duration = Histogram(
            "routing_health_check_duration_seconds",
            "Health check duration",
            labelnames=["provider"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=registry,
        )

        self.health_check_success = Counter(
            "routing_health_check_success_total",
            "Health check successes",
            labelnames=["provider"],
            registry=registry,
        )

        self.health_check_failure = Counter(
            "routing_health_check_failure_total",
            "Health check failures",
            labelnames=["provider"],
            registry=registry,
        )

    def record_request(
        self,
        provider: str,
        model: str,
        status: str,
        duration_seconds: float,
        streaming: bool = False,
    ):
        """Record a finished routed request."""
        streaming_label = "true" if streaming else "false"
        self.requests_total.labels(
            provider=provider or "none",
            model=model,
            status=status,
            streaming=streaming_label,
        ).inc()
        self.request_duration.labels(
            provider=provider or "none",
            streaming=streaming_label,
        ).observe(duration_seconds)

    def record_attempt(self, provider: str, outcome: str, error_kind: Optional[str] = None):
        """Record one provider attempt."""
        self.attempts_total.labels(
            provider=provider,
            outcome=outcome,
            error_kind=error_kind or "none",
        ).inc()

    def record_fallback(self, from_provider: str, to_provider: str, reason: str):
        """Record a failover."""
        self.fallbacks_total.labels(
            from_provider=from_provider,
            to_provider=to_provider,
            reason=reason,
        ).inc()

    def record_tokens(self, provider: str, model: str, input_tokens: int, output_tokens: int):
        """Record token usage."""
        self.tokens_total.labels(provider=provider, model=model, type="input").inc(input_tokens)
        self.tokens_total.labels(provider=provider, model=model, type="output").inc(output_tokens)

    def record_cost(self, provider: str, model: str, cost_usd: float):
        """Record cost."""
        self.cost_total.labels(provider=provider, model=model).inc(cost_usd)

    def record_time_to_first_token(self, provider: str, ttft_seconds: float):
        """Record time to first delta for streaming requests."""
        self.time_to_first_token.labels(provider=provider).observe(ttft_seconds)

    def set_health_status(self, provider: str, status: HealthStatus):
        """Update the provider health gauge."""
        self.provider_health.labels(provider=provider).set(HEALTH_GAUGE_VALUES[status])

    def record_health_check(self, provider: str, success: bool, duration_seconds: float):
        """Record health check result."""
        self.health_check_duration.labels(provider=provider).observe(duration_seconds)

        if success:
            self.health_check_success.labels(provider=provider).inc()
        else:
            self.health_check_failure.labels(provider=provider).inc()

    def render(self) -> Tuple[bytes, str]:
        """Prometheus exposition payload and its content type."""
        return generate_latest(self.registry), CONTENT_TYPE_LATEST

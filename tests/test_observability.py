"""
AI Routing Engine - Observability Tests

Verifies:
- JSON log formatting with context injection and redaction
- Prometheus metrics recorded through the telemetry sink
- OpenTelemetry spans from the tracing manager
"""

import json
import logging

import pytest
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import CollectorRegistry

from src.core.errors import ProviderError, ProviderErrorKind
from src.core.models import (
    AttemptOutcome,
    CanonicalRequest,
    HealthStatus,
    Message,
    ProviderHealth,
    RoutingAttempt,
    Usage,
)
from src.observability.logging import JSONFormatter, LogContext, TimedOperation, get_logger
from src.observability.metrics import MetricsCollector
from src.observability.sink import NullSink, TelemetrySink
from src.observability.tracing import TracingManager


def make_record(**extra):
    record = logging.LogRecord("routing_engine.test", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_basic_fields(self):
        payload = json.loads(JSONFormatter().format(make_record(provider="openai")))

        assert payload["message"] == "hello"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "routing_engine.test"
        assert payload["provider"] == "openai"

    def test_redacts_secrets(self):
        payload = json.loads(JSONFormatter().format(
            make_record(api_key="sk-secret", authorization="Bearer x", prompt_tokens=12)
        ))

        assert payload["api_key"] == "[REDACTED]"
        assert payload["authorization"] == "[REDACTED]"
        assert payload["prompt_tokens"] == 12

    def test_injects_context(self):
        token = LogContext.set_current(LogContext(request_id="req_1", model="fast-model"))
        try:
            payload = json.loads(JSONFormatter().format(make_record()))
        finally:
            LogContext.reset(token)

        assert payload["request_id"] == "req_1"
        assert payload["model"] == "fast-model"
        assert LogContext.get_current() is None


class TestTimedOperation:

    @pytest.mark.asyncio
    async def test_measures_duration(self):
        async with TimedOperation("probe", get_logger("routing_engine.test")) as op:
            pass

        assert op.duration_ms is not None
        assert op.duration_ms >= 0

    def test_does_not_swallow(self):
        with pytest.raises(ValueError):
            with TimedOperation("probe"):
                raise ValueError("boom")


def sample(metrics, name, labels):
    return metrics.registry.get_sample_value(name, labels)


class TestTelemetrySink:

    def setup_method(self):
        self.metrics = MetricsCollector(CollectorRegistry())
        self.sink = TelemetrySink(metrics=self.metrics)
        self.request = CanonicalRequest(model="fast-model", messages=[Message.user("Hi")])

    def test_request_finished(self):
        self.sink.request_finished(
            self.request, "openai", "gpt-4o", "success", 0.3,
            usage=Usage(prompt_tokens=10, completion_tokens=4), cost_usd=0.002,
        )

        labels = {"provider": "openai", "model": "gpt-4o", "status": "success", "streaming": "false"}
        assert sample(self.metrics, "routing_requests_total", labels) == 1
        assert sample(self.metrics, "routing_tokens_total",
                      {"provider": "openai", "model": "gpt-4o", "type": "input"}) == 10
        assert sample(self.metrics, "routing_cost_usd_total",
                      {"provider": "openai", "model": "gpt-4o"}) == pytest.approx(0.002)

    def test_attempt_and_failover(self):
        attempt = RoutingAttempt(provider_id="openai", model="gpt-4o", request_id="rid")
        attempt.finish(AttemptOutcome.TIMEOUT, "timeout")

        self.sink.attempt_finished(self.request, attempt)
        self.sink.failover(self.request, "openai", "anthropic", "timeout")

        assert sample(self.metrics, "routing_attempts_total",
                      {"provider": "openai", "outcome": "timeout", "error_kind": "timeout"}) == 1
        assert sample(self.metrics, "routing_fallbacks_total",
                      {"from_provider": "openai", "to_provider": "anthropic", "reason": "timeout"}) == 1

    def test_health_gauge(self):
        self.sink.health_changed(
            HealthStatus.HEALTHY,
            ProviderHealth(provider_id="google", status=HealthStatus.UNHEALTHY, consecutive_failures=3),
        )
        self.sink.health_checked("google", False, 0.2)

        assert sample(self.metrics, "routing_provider_health_status", {"provider": "google"}) == 2
        assert sample(self.metrics, "routing_health_check_failure_total", {"provider": "google"}) == 1

    def test_render(self):
        self.sink.first_delta(self.request, "openai", 0.12)

        payload, content_type = self.metrics.render()

        assert b"routing_time_to_first_token_seconds" in payload
        assert content_type.startswith("text/plain")

    def test_collectors_do_not_share_registries(self):
        other = MetricsCollector()
        other.record_attempt("openai", "success")

        assert sample(self.metrics, "routing_attempts_total",
                      {"provider": "openai", "outcome": "success", "error_kind": "none"}) is None

    def test_span_without_tracing(self):
        with self.sink.span("route", model="fast-model"):
            pass


class TestTracing:

    def test_spans_exported(self):
        exporter = InMemorySpanExporter()
        tracing = TracingManager(service_name="routing-engine-test")
        tracing.provider.add_span_processor(SimpleSpanProcessor(exporter))
        sink = TelemetrySink(tracing=tracing)

        with sink.span("route", model="fast-model", provider=None):
            with sink.span("attempt", provider="openai") as span:
                assert tracing.get_current_trace_context() is not None
                span.set_attribute("outcome", "success")

        spans = {span.name: span for span in exporter.get_finished_spans()}
        assert set(spans) == {"route", "attempt"}
        assert spans["attempt"].parent.span_id == spans["route"].context.span_id
        assert dict(spans["route"].attributes) == {"model": "fast-model"}
        tracing.shutdown()

    def test_failed_attempt_marks_span(self):
        exporter = InMemorySpanExporter()
        tracing = TracingManager(service_name="routing-engine-test")
        tracing.provider.add_span_processor(SimpleSpanProcessor(exporter))
        sink = TelemetrySink(tracing=tracing)

        with pytest.raises(ProviderError):
            with sink.span("attempt", provider="openai"):
                raise ProviderError(ProviderErrorKind.UPSTREAM_5XX, "openai")

        (span,) = exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert [event.name for event in span.events] == ["exception"]
        tracing.shutdown()


class TestNullSink:

    def test_accepts_every_event(self):
        sink = NullSink()
        request = CanonicalRequest(model="m", messages=[Message.user("Hi")])

        sink.request_started(request, ["p1"])
        sink.failover(request, "p1", "p2", "timeout")
        sink.request_finished(request, "p1", "m", "success", 0.1)
        with sink.span("route"):
            pass

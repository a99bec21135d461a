"""
AI Routing Engine - OpenTelemetry Tracing

Spans for routed requests and provider attempts.

The manager owns its TracerProvider instead of installing a global one;
hosts that already run OpenTelemetry can pass their own provider.

Usage:
    tracing = TracingManager(service_name="routing-engine", console_export=True)
    with tracing.start_span("route", attributes={"model": "fast-model"}) as span:
        span.set_attribute("provider", "openai")
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, SpanKind


@dataclass
class TraceContext:
    """Identifiers of the active span, for log correlation."""
    trace_id: str
    span_id: str

    @classmethod
    def from_span(cls, span: Span) -> "TraceContext":
        ctx = span.get_span_context()
        return cls(
            trace_id=format(ctx.trace_id, "032x"),
            span_id=format(ctx.span_id, "016x"),
        )


class TracingManager:
    """Tracer factory bound to one TracerProvider."""

    def __init__(
        self,
        service_name: str = "routing-engine",
        service_version: str = "1.0.0",
        exporter: Optional[SpanExporter] = None,
        console_export: bool = False,
        provider: Optional[TracerProvider] = None,
    ):
        """
        Initialize tracing.

        Args:
            service_name: Name of the service
            service_version: Version of the service
            exporter: Span exporter (batched); None keeps spans in-process only
            console_export: Whether to print spans (for debugging)
            provider: Existing TracerProvider to reuse
        """
        self.service_name = service_name
        self.service_version = service_version

        if provider is None:
            resource = Resource.create({
                SERVICE_NAME: service_name,
                SERVICE_VERSION: service_version,
                "deployment.environment": os.getenv("MODE", "local"),
            })
            provider = TracerProvider(resource=resource)

            if exporter is not None:
                provider.add_span_processor(BatchSpanProcessor(exporter))

            if console_export:
                provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

        self.provider = provider
        self.tracer = provider.get_tracer(service_name, service_version)

    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        """
        Start a span as the current span.

        Returns:
            Context manager that yields the span
        """
        clean = {k: v for k, v in (attributes or {}).items() if v is not None}
        return self.tracer.start_as_current_span(name, kind=kind, attributes=clean)

    def get_current_trace_context(self) -> Optional[TraceContext]:
        """Current trace context for logging."""
        span = trace.get_current_span()
        if span and span.get_span_context().is_valid:
            return TraceContext.from_span(span)
        return None

    def shutdown(self):
        """Flush and shut down the tracer provider."""
        self.provider.shutdown()

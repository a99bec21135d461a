"""
AI Routing Engine - Observability

Structured logging, Prometheus metrics, OpenTelemetry tracing and the
sink interface the engine reports through.
"""

from .logging import (
    JSONFormatter,
    LogContext,
    StructuredLogger,
    TimedOperation,
    get_logger,
    setup_logging,
)
from .metrics import MetricsCollector
from .sink import NullSink, ObservabilitySink, TelemetrySink
from .tracing import TraceContext, TracingManager

__all__ = [
    "JSONFormatter",
    "LogContext",
    "StructuredLogger",
    "TimedOperation",
    "get_logger",
    "setup_logging",
    "MetricsCollector",
    "NullSink",
    "ObservabilitySink",
    "TelemetrySink",
    "TraceContext",
    "TracingManager",
]

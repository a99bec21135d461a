"""
AI Routing Engine - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Scripted fake adapters and a recording observability sink
- Canned vendor payloads for adapter tests
"""

import asyncio
import logging
import os
from contextlib import nullcontext
from typing import Any, Dict, List, Optional, Sequence

import httpx
import pytest

from src.core.errors import ProviderError, ProviderErrorKind
from src.core.models import (
    CanonicalRequest,
    CanonicalResponse,
    FinishReason,
    HealthStatus,
    Message,
    ProviderHealth,
    ResponseMetadata,
    Usage,
)
from src.streaming.normalizer import StreamDelta, StreamSummary


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )

    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Fake Adapter (for router and health tests)
# ============================================================

HANG = "hang"


class FakeAdapter:
    """
    Scripted in-memory provider.

    ``outcomes`` is consumed one entry per call; the last entry repeats.
    An entry is a content string, a ProviderErrorKind, or HANG.
    ``chunk_delay`` spaces out stream deltas.
    """

    def __init__(
        self,
        provider_id: str,
        outcomes: Sequence[Any] = ("ok",),
        stream_chunks: Optional[List[str]] = None,
        stream_fail_after: Optional[int] = None,
        health_results: Sequence[Any] = (HealthStatus.HEALTHY,),
        usage: Usage = Usage(prompt_tokens=10, completion_tokens=5),
        chunk_delay: float = 0.0,
    ):
        self.provider_id = provider_id
        self.outcomes = list(outcomes)
        self.stream_chunks = stream_chunks
        self.stream_fail_after = stream_fail_after
        self.health_results = list(health_results)
        self.usage = usage
        self.chunk_delay = chunk_delay

        self.calls: List[CanonicalRequest] = []
        self.request_ids: List[Optional[str]] = []
        self.health_checks = 0
        self.closed = False
        self.cancelled = False
        self.streams_closed = 0

    def _next_outcome(self) -> Any:
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]

    async def _apply(self, outcome: Any, request_id: Optional[str]):
        if outcome == HANG:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if isinstance(outcome, ProviderErrorKind):
            raise ProviderError(outcome, self.provider_id, request_id=request_id or "")

    async def process(self, request, request_id=None):
        self.calls.append(request)
        self.request_ids.append(request_id)
        outcome = self._next_outcome()
        await self._apply(outcome, request_id)
        return CanonicalResponse(
            id=f"resp-{self.provider_id}",
            provider=self.provider_id,
            model=request.model_name,
            content=outcome,
            usage=self.usage,
            finish_reason=FinishReason.STOP,
            response_time_ms=1,
            metadata=ResponseMetadata(request_id=request_id or ""),
        )

    async def stream(self, request, request_id=None):
        self.calls.append(request)
        self.request_ids.append(request_id)
        outcome = self._next_outcome()
        try:
            await self._apply(outcome, request_id)

            chunks = self.stream_chunks or [outcome]
            for index, text in enumerate(chunks):
                if self.stream_fail_after is not None and index == self.stream_fail_after:
                    yield StreamSummary(
                        usage=Usage(),
                        finish_reason=FinishReason.ERROR,
                        model=request.model_name,
                        provider=self.provider_id,
                        content="".join(chunks[:index]),
                        chunks=index,
                        failed=True,
                        error_kind=ProviderErrorKind.UPSTREAM_5XX,
                        error_message="connection reset",
                    )
                    return
                if self.chunk_delay:
                    await asyncio.sleep(self.chunk_delay)
                yield StreamDelta(text=text, index=index)

            yield StreamSummary(
                usage=self.usage,
                finish_reason=FinishReason.STOP,
                model=request.model_name,
                provider=self.provider_id,
                content="".join(chunks),
                chunks=len(chunks),
            )
        finally:
            self.streams_closed += 1

    async def health_check(self):
        self.health_checks += 1
        result = self.health_results.pop(0) if len(self.health_results) > 1 else self.health_results[0]
        if result == HANG:
            await asyncio.sleep(3600)
        return ProviderHealth(
            provider_id=self.provider_id,
            status=result,
            last_response_time_ms=3,
            detail="ok" if result == HealthStatus.HEALTHY else "HTTP 503",
        )

    async def close(self):
        self.closed = True


class RecordingSink:
    """Observability sink that keeps every event for assertions."""

    def __init__(self):
        self.events: List[tuple] = []

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> List[Dict[str, Any]]:
        return [fields for event, fields in self.events if event == name]

    def request_started(self, request, candidates):
        self.events.append(("request_started", {"request": request, "candidates": list(candidates)}))

    def attempt_finished(self, request, attempt):
        self.events.append(("attempt_finished", {"attempt": attempt}))

    def failover(self, request, from_provider, to_provider, reason):
        self.events.append(("failover", {"from": from_provider, "to": to_provider, "reason": reason}))

    def first_delta(self, request, provider, seconds):
        self.events.append(("first_delta", {"provider": provider}))

    def request_finished(self, request, provider, model, status, duration_seconds,
                         usage=None, cost_usd=None, error=None):
        self.events.append(("request_finished", {
            "provider": provider,
            "model": model,
            "status": status,
            "usage": usage,
            "cost_usd": cost_usd,
            "error": error,
        }))

    def pricing_unavailable(self, request, provider, model):
        self.events.append(("pricing_unavailable", {"provider": provider, "model": model}))

    def health_checked(self, provider, success, duration_seconds):
        self.events.append(("health_checked", {"provider": provider, "success": success}))

    def health_changed(self, previous, current):
        self.events.append(("health_changed", {"previous": previous, "current": current}))

    def span(self, name, **attributes):
        return nullcontext()


@pytest.fixture
def fake_adapter():
    """Factory for FakeAdapter instances."""
    return FakeAdapter


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def make_request():
    """
    Build a CanonicalRequest with sensible defaults.

    Usage:
        def test_route(make_request):
            request = make_request("fast-model", max_tokens=1)
    """
    def _make(model: str = "fast-model", content: str = "Hello", **kwargs) -> CanonicalRequest:
        messages = kwargs.pop("messages", [Message.user(content)])
        return CanonicalRequest(model=model, messages=messages, **kwargs)

    return _make


# ============================================================
# Mock HTTP transport (for adapter tests)
# ============================================================

class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler):
        self.requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def recording_transport():
    """Factory: recording_transport(handler) -> RecordingTransport."""
    return RecordingTransport


def sse_body(payloads: Sequence[str]) -> bytes:
    """Encode payload strings as an SSE body."""
    return "".join(f"data: {payload}\n\n" for payload in payloads).encode("utf-8")


@pytest.fixture
def sse():
    return sse_body


# ============================================================
# Canned vendor payloads
# ============================================================

@pytest.fixture
def mock_openai_response():
    """Standard mock OpenAI chat response."""
    return {
        "id": "chatcmpl-test123",
        "object": "chat.completion",
        "created": 1234567890,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": "Hello! I'm a mock response."
                },
                "finish_reason": "stop"
            }
        ],
        "usage": {
            "prompt_tokens": 10,
            "completion_tokens": 8,
            "total_tokens": 18
        }
    }


@pytest.fixture
def mock_anthropic_response():
    """Standard mock Anthropic response."""
    return {
        "id": "msg-test123",
        "type": "message",
        "role": "assistant",
        "content": [
            {
                "type": "text",
                "text": "Hello! I'm a mock Claude response."
            }
        ],
        "model": "claude-3-5-sonnet-20241022",
        "stop_reason": "end_turn",
        "usage": {
            "input_tokens": 10,
            "output_tokens": 8
        }
    }


@pytest.fixture
def mock_google_response():
    """Standard mock Gemini generateContent response."""
    return {
        "candidates": [
            {
                "content": {
                    "role": "model",
                    "parts": [{"text": "Hello from Gemini."}]
                },
                "finishReason": "STOP"
            }
        ],
        "usageMetadata": {
            "promptTokenCount": 7,
            "candidatesTokenCount": 4,
            "totalTokenCount": 11
        },
        "modelVersion": "gemini-1.5-flash-002"
    }


@pytest.fixture
def mock_error_500():
    """Mock 500 error response."""
    return {
        "error": {
            "code": "internal_error",
            "message": "Internal server error",
            "type": "server_error"
        }
    }


@pytest.fixture
def mock_error_429():
    """Mock 429 rate limit response."""
    return {
        "error": {
            "code": "rate_limit_exceeded",
            "message": "Rate limit exceeded",
            "type": "rate_limit_error"
        }
    }


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    yield

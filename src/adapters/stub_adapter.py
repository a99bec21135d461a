"""
AI Routing Engine - Stub Provider Adapter

Deterministic in-process adapter used for smoke/integration testing.
No network calls, no external provider keys required.
"""

import asyncio
import time
from typing import AsyncIterator, List, Optional

from .base import AdapterConfig
from ..core.errors import ProviderError, ProviderErrorKind
from ..core.models import (
    CanonicalRequest,
    CanonicalResponse,
    FinishReason,
    HealthStatus,
    Provider,
    ProviderHealth,
    ResponseMetadata,
    Role,
    Usage,
    new_request_id,
)
from ..streaming.normalizer import StreamDelta, StreamEvent, StreamSummary
from ..usage.estimator import estimate_prompt_tokens, estimate_text_tokens


class StubAdapter:
    """
    Deterministic adapter for tests/smoke checks.

    Echoes the last user message. ``fail_with`` makes every call raise
    the given error kind; ``delay`` is added before each call answers.
    """

    DEFAULT_MODEL = "echo"

    def __init__(
        self,
        config: AdapterConfig,
        fail_with: Optional[ProviderErrorKind] = None,
        delay: float = 0.0
    ):
        self.config = config
        self.provider_id = config.provider_id or Provider.STUB.value
        self.fail_with = fail_with
        self.delay = delay
        self.calls = 0

    def _reply(self, request: CanonicalRequest) -> str:
        for message in reversed(request.messages):
            if message.role == Role.USER:
                return f"stub: {message.content}"
        return "stub: deterministic response"

    async def _before_call(self, request_id: str):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise ProviderError(
                self.fail_with,
                self.provider_id,
                message=f"stub configured to fail with {self.fail_with.value}",
                request_id=request_id,
            )

    async def process(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> CanonicalResponse:
        request_id = request_id or new_request_id(self.provider_id)
        start = time.perf_counter()
        await self._before_call(request_id)

        content = self._reply(request)
        return CanonicalResponse(
            id=f"stub-{request_id}",
            provider=self.provider_id,
            model=request.model_name or self.DEFAULT_MODEL,
            content=content,
            usage=Usage(
                prompt_tokens=estimate_prompt_tokens(request.messages, self.provider_id),
                completion_tokens=estimate_text_tokens(content, self.provider_id),
            ),
            finish_reason=FinishReason.STOP,
            response_time_ms=int((time.perf_counter() - start) * 1000),
            metadata=ResponseMetadata(request_id=request_id),
        )

    async def stream(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> AsyncIterator[StreamEvent]:
        request_id = request_id or new_request_id(self.provider_id)
        await self._before_call(request_id)

        content = self._reply(request)
        words: List[str] = content.split(" ")
        for index, word in enumerate(words):
            yield StreamDelta(text=word if index == 0 else f" {word}", index=index)

        yield StreamSummary(
            usage=Usage(
                prompt_tokens=estimate_prompt_tokens(request.messages, self.provider_id),
                completion_tokens=estimate_text_tokens(content, self.provider_id),
            ),
            finish_reason=FinishReason.STOP,
            model=request.model_name or self.DEFAULT_MODEL,
            provider=self.provider_id,
            content=content,
            chunks=len(words),
        )

    async def health_check(self) -> ProviderHealth:
        return ProviderHealth(
            provider_id=self.provider_id,
            status=HealthStatus.HEALTHY,
            last_checked_at=time.time(),
            last_response_time_ms=0,
            detail="ok",
        )

    async def close(self):
        return

"""
AI Routing Engine - OpenAI Provider Adapter

Adapter for OpenAI's Chat Completions API (and compatible endpoints
such as Azure OpenAI via ``api_version``).
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from .base import (
    AdapterConfig,
    build_client,
    decode_body,
    error_message,
    open_stream,
    post_json,
    probe_endpoint,
)
from ..core.errors import ProviderError, ProviderErrorKind
from ..core.models import (
    CanonicalRequest,
    CanonicalResponse,
    FinishReason,
    Provider,
    ProviderHealth,
    ResponseMetadata,
    Usage,
    new_request_id,
)
from ..streaming.normalizer import StreamEvent, StreamNormalizer, StreamUpdate


# ============================================================
# Wire schema
# ============================================================

class OpenAIUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class OpenAIMessage(BaseModel):
    role: str = "assistant"
    content: Optional[str] = None


class OpenAIChoice(BaseModel):
    index: int = 0
    message: OpenAIMessage = Field(default_factory=OpenAIMessage)
    finish_reason: Optional[str] = None


class OpenAIChatResponse(BaseModel):
    id: str
    model: str
    choices: List[OpenAIChoice] = Field(default_factory=list)
    usage: Optional[OpenAIUsage] = None


class OpenAIDelta(BaseModel):
    content: Optional[str] = None


class OpenAIChunkChoice(BaseModel):
    index: int = 0
    delta: OpenAIDelta = Field(default_factory=OpenAIDelta)
    finish_reason: Optional[str] = None


class OpenAIErrorDetail(BaseModel):
    message: str = ""
    type: Optional[str] = None
    code: Optional[str] = None


class OpenAIChunk(BaseModel):
    model: Optional[str] = None
    choices: List[OpenAIChunkChoice] = Field(default_factory=list)
    usage: Optional[OpenAIUsage] = None
    error: Optional[OpenAIErrorDetail] = None


class OpenAIErrorEnvelope(BaseModel):
    error: OpenAIErrorDetail


FINISH_REASON_MAP = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
    "tool_calls": FinishReason.STOP,
    "function_call": FinishReason.STOP,
}


def map_finish_reason(reason: Optional[str]) -> Optional[FinishReason]:
    if reason is None:
        return None
    return FINISH_REASON_MAP.get(reason, FinishReason.STOP)


class OpenAIStreamDecoder:
    """Decodes ``chat.completion.chunk`` payloads."""

    done_sentinel = "[DONE]"

    def decode(self, payload: str) -> Optional[StreamUpdate]:
        chunk = OpenAIChunk.model_validate_json(payload)

        if chunk.error is not None:
            return StreamUpdate(error=chunk.error.message or "stream error")

        text = ""
        finish_reason = None
        if chunk.choices:
            choice = chunk.choices[0]
            text = choice.delta.content or ""
            finish_reason = map_finish_reason(choice.finish_reason)

        # The usage chunk (include_usage) arrives last with empty choices
        return StreamUpdate(
            text=text,
            prompt_tokens=chunk.usage.prompt_tokens if chunk.usage else None,
            completion_tokens=chunk.usage.completion_tokens if chunk.usage else None,
            finish_reason=finish_reason,
            model=chunk.model,
        )


# ============================================================
# Adapter
# ============================================================

class OpenAIAdapter:
    """
    Adapter for the OpenAI Chat Completions API.

    Supports:
    - Chat completions
    - Streaming with usage reporting
    - Health check via GET /models
    """

    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def __init__(
        self,
        config: AdapterConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.provider_id = config.provider_id or Provider.OPENAI.value
        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.client = build_client(
            config,
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
            params={"api-version": config.api_version} if config.api_version else None,
        )

    async def process(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> CanonicalResponse:
        """Generate a chat completion."""
        request_id = request_id or new_request_id(self.provider_id)

        response, latency_ms = await post_json(
            self.client,
            "/chat/completions",
            self._build_chat_payload(request),
            provider_id=self.provider_id,
            request_id=request_id,
            timeout=self.config.timeout,
            describe_error=self._describe_error,
        )
        body = decode_body(OpenAIChatResponse, response, self.provider_id, request_id)

        return self._parse_chat_response(body, request_id, latency_ms)

    async def stream(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> AsyncIterator[StreamEvent]:
        """Generate a streaming chat completion."""
        request_id = request_id or new_request_id(self.provider_id)

        payload = self._build_chat_payload(request)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

        normalizer = StreamNormalizer(
            OpenAIStreamDecoder(),
            provider=self.provider_id,
            model=request.model_name,
            request_id=request_id,
        )

        async with open_stream(
            self.client,
            "/chat/completions",
            payload,
            provider_id=self.provider_id,
            request_id=request_id,
            timeout=self.config.timeout,
            describe_error=self._describe_error,
        ) as response:
            async for event in normalizer.normalize(response.aiter_lines()):
                yield event

    async def health_check(self) -> ProviderHealth:
        """Check OpenAI API health."""
        return await probe_endpoint(
            self.client,
            "GET",
            "/models",
            provider_id=self.provider_id,
            timeout=self.config.health_check_timeout,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    # ============================================================
    # Private helper methods
    # ============================================================

    def _build_chat_payload(self, request: CanonicalRequest) -> Dict[str, Any]:
        """Build OpenAI-specific chat payload."""
        payload: Dict[str, Any] = {
            "model": request.model_name,
            "messages": [
                {"role": message.role.value, "content": message.content}
                for message in request.messages
            ],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
        }

        if request.stop:
            payload["stop"] = request.stop_sequences

        if request.user_id:
            payload["user"] = request.user_id

        return payload

    @staticmethod
    def _describe_error(response: httpx.Response) -> str:
        return error_message(OpenAIErrorEnvelope, response, lambda envelope: envelope.error.message)

    def _parse_chat_response(
        self,
        body: OpenAIChatResponse,
        request_id: str,
        latency_ms: int
    ) -> CanonicalResponse:
        """Parse OpenAI response to canonical form."""
        if not body.choices:
            raise ProviderError(
                ProviderErrorKind.UNKNOWN,
                self.provider_id,
                message="OpenAI returned no choices",
                request_id=request_id,
            )

        choice = body.choices[0]
        usage = body.usage or OpenAIUsage()

        return CanonicalResponse(
            id=body.id,
            provider=self.provider_id,
            model=body.model,
            content=choice.message.content or "",
            usage=Usage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            ),
            finish_reason=map_finish_reason(choice.finish_reason) or FinishReason.STOP,
            response_time_ms=latency_ms,
            metadata=ResponseMetadata(request_id=request_id),
        )

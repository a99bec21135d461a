"""
AI Routing Engine - Anthropic Provider Adapter

Adapter for Anthropic's Messages API (Claude 3.5, Claude 3, etc.)
"""

from typing import Annotated, Any, AsyncIterator, Dict, List, Literal, Optional, Union

import httpx
from pydantic import BaseModel, Field, TypeAdapter

from .base import (
    AdapterConfig,
    build_client,
    decode_body,
    error_message,
    open_stream,
    post_json,
    probe_endpoint,
    split_system_messages,
)
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

class AnthropicUsage(BaseModel):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class AnthropicContentBlock(BaseModel):
    type: str
    text: Optional[str] = None


class AnthropicMessage(BaseModel):
    id: str
    model: str
    content: List[AnthropicContentBlock] = Field(default_factory=list)
    stop_reason: Optional[str] = None
    usage: AnthropicUsage = Field(default_factory=AnthropicUsage)


class AnthropicErrorDetail(BaseModel):
    type: str = ""
    message: str = ""


class AnthropicErrorEnvelope(BaseModel):
    error: AnthropicErrorDetail


# Streaming events, discriminated on "type"

class MessageStartBody(BaseModel):
    id: str = ""
    model: Optional[str] = None
    usage: AnthropicUsage = Field(default_factory=AnthropicUsage)


class MessageStartEvent(BaseModel):
    type: Literal["message_start"]
    message: MessageStartBody


class TextDelta(BaseModel):
    type: str
    text: Optional[str] = None


class ContentBlockStartEvent(BaseModel):
    type: Literal["content_block_start"]
    index: int = 0


class ContentBlockDeltaEvent(BaseModel):
    type: Literal["content_block_delta"]
    index: int = 0
    delta: TextDelta


class ContentBlockStopEvent(BaseModel):
    type: Literal["content_block_stop"]
    index: int = 0


class MessageDeltaBody(BaseModel):
    stop_reason: Optional[str] = None


class MessageDeltaEvent(BaseModel):
    type: Literal["message_delta"]
    delta: MessageDeltaBody = Field(default_factory=MessageDeltaBody)
    usage: AnthropicUsage = Field(default_factory=AnthropicUsage)


class MessageStopEvent(BaseModel):
    type: Literal["message_stop"]


class PingEvent(BaseModel):
    type: Literal["ping"]


class ErrorEvent(BaseModel):
    type: Literal["error"]
    error: AnthropicErrorDetail = Field(default_factory=AnthropicErrorDetail)


AnthropicStreamEvent = Annotated[
    Union[
        MessageStartEvent,
        ContentBlockStartEvent,
        ContentBlockDeltaEvent,
        ContentBlockStopEvent,
        MessageDeltaEvent,
        MessageStopEvent,
        PingEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_stream_event_adapter: TypeAdapter = TypeAdapter(AnthropicStreamEvent)


FINISH_REASON_MAP = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_use": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "refusal": FinishReason.CONTENT_FILTER,
}


def map_finish_reason(reason: Optional[str]) -> Optional[FinishReason]:
    if reason is None:
        return None
    return FINISH_REASON_MAP.get(reason, FinishReason.STOP)


class AnthropicStreamDecoder:
    """
    Decodes Messages API stream events.

    Prompt tokens arrive once in ``message_start``; the completion count
    is final in ``message_delta``.
    """

    done_sentinel = None

    def decode(self, payload: str) -> Optional[StreamUpdate]:
        event = _stream_event_adapter.validate_json(payload)

        if isinstance(event, MessageStartEvent):
            return StreamUpdate(
                prompt_tokens=event.message.usage.input_tokens,
                completion_tokens=event.message.usage.output_tokens,
                model=event.message.model,
            )
        if isinstance(event, ContentBlockDeltaEvent):
            if event.delta.type != "text_delta":
                return None
            return StreamUpdate(text=event.delta.text or "")
        if isinstance(event, MessageDeltaEvent):
            return StreamUpdate(
                prompt_tokens=event.usage.input_tokens,
                completion_tokens=event.usage.output_tokens,
                finish_reason=map_finish_reason(event.delta.stop_reason),
            )
        if isinstance(event, MessageStopEvent):
            return StreamUpdate(done=True)
        if isinstance(event, ErrorEvent):
            return StreamUpdate(error=event.error.message or event.error.type or "stream error")
        return None


# ============================================================
# Adapter
# ============================================================

class AnthropicAdapter:
    """
    Adapter for Anthropic Claude API.

    Supports:
    - Chat completions with a hoisted system prompt
    - Streaming
    - Health check via a one-token message
    """

    DEFAULT_BASE_URL = "https://api.anthropic.com"
    API_VERSION = "2023-06-01"
    HEALTH_CHECK_MODEL = "claude-3-haiku-20240307"

    # Mapping from short names to full model IDs
    MODEL_ALIASES = {
        "claude-3-5-sonnet": "claude-3-5-sonnet-20241022",
        "claude-3.5-sonnet": "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku": "claude-3-5-haiku-20241022",
        "claude-3-opus": "claude-3-opus-20240229",
        "claude-3-haiku": "claude-3-haiku-20240307",
    }

    def __init__(
        self,
        config: AdapterConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.provider_id = config.provider_id or Provider.ANTHROPIC.value
        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.client = build_client(
            config,
            base_url=self.base_url,
            headers={
                "x-api-key": config.api_key,
                "anthropic-version": config.api_version or self.API_VERSION,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def process(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> CanonicalResponse:
        """Generate a chat completion using Claude."""
        request_id = request_id or new_request_id(self.provider_id)

        response, latency_ms = await post_json(
            self.client,
            "/v1/messages",
            self._build_chat_payload(request),
            provider_id=self.provider_id,
            request_id=request_id,
            timeout=self.config.timeout,
            describe_error=self._describe_error,
        )
        body = decode_body(AnthropicMessage, response, self.provider_id, request_id)

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

        normalizer = StreamNormalizer(
            AnthropicStreamDecoder(),
            provider=self.provider_id,
            model=payload["model"],
            request_id=request_id,
        )

        async with open_stream(
            self.client,
            "/v1/messages",
            payload,
            provider_id=self.provider_id,
            request_id=request_id,
            timeout=self.config.timeout,
            describe_error=self._describe_error,
        ) as response:
            async for event in normalizer.normalize(response.aiter_lines()):
                yield event

    async def health_check(self) -> ProviderHealth:
        """
        Check Anthropic API health.

        Anthropic has no health endpoint, so this sends a minimal request.
        """
        return await probe_endpoint(
            self.client,
            "POST",
            "/v1/messages",
            provider_id=self.provider_id,
            timeout=self.config.health_check_timeout,
            json={
                "model": self.config.health_check_model or self.HEALTH_CHECK_MODEL,
                "max_tokens": 1,
                "messages": [{"role": "user", "content": "Hi"}],
            },
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    # ============================================================
    # Private helper methods
    # ============================================================

    def _build_chat_payload(self, request: CanonicalRequest) -> Dict[str, Any]:
        """Build Anthropic-specific chat payload."""
        model_name = self.MODEL_ALIASES.get(request.model_name, request.model_name)

        # Anthropic takes the system prompt as a separate parameter
        system_content, messages = split_system_messages(list(request.messages))

        payload: Dict[str, Any] = {
            "model": model_name,
            "messages": [
                {"role": message.role.value, "content": message.content}
                for message in messages
            ],
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "top_p": request.top_p,
        }

        if system_content is not None:
            payload["system"] = system_content

        if request.stop:
            payload["stop_sequences"] = request.stop_sequences

        return payload

    @staticmethod
    def _describe_error(response: httpx.Response) -> str:
        return error_message(AnthropicErrorEnvelope, response, lambda envelope: envelope.error.message)

    def _parse_chat_response(
        self,
        body: AnthropicMessage,
        request_id: str,
        latency_ms: int
    ) -> CanonicalResponse:
        """Parse Anthropic response to canonical form."""
        content_text = "".join(
            block.text or "" for block in body.content if block.type == "text"
        )

        return CanonicalResponse(
            id=body.id,
            provider=self.provider_id,
            model=body.model,
            content=content_text,
            usage=Usage(
                prompt_tokens=body.usage.input_tokens or 0,
                completion_tokens=body.usage.output_tokens or 0,
            ),
            finish_reason=map_finish_reason(body.stop_reason) or FinishReason.STOP,
            response_time_ms=latency_ms,
            metadata=ResponseMetadata(request_id=request_id),
        )

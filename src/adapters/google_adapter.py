"""
AI Routing Engine - Google Provider Adapter

Adapter for Google's Gemini API (generateContent / streamGenerateContent).
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
    split_system_messages,
)
from ..core.models import (
    CanonicalRequest,
    CanonicalResponse,
    FinishReason,
    Provider,
    ProviderHealth,
    ResponseMetadata,
    Role,
    Usage,
    new_request_id,
)
from ..streaming.normalizer import StreamEvent, StreamNormalizer, StreamUpdate


# ============================================================
# Wire schema
# ============================================================

class GooglePart(BaseModel):
    text: Optional[str] = None


class GoogleContent(BaseModel):
    role: Optional[str] = None
    parts: List[GooglePart] = Field(default_factory=list)


class GoogleCandidate(BaseModel):
    content: GoogleContent = Field(default_factory=GoogleContent)
    finishReason: Optional[str] = None


class GoogleUsageMetadata(BaseModel):
    promptTokenCount: Optional[int] = None
    candidatesTokenCount: Optional[int] = None


class GooglePromptFeedback(BaseModel):
    blockReason: Optional[str] = None


class GoogleResponse(BaseModel):
    candidates: List[GoogleCandidate] = Field(default_factory=list)
    usageMetadata: Optional[GoogleUsageMetadata] = None
    modelVersion: Optional[str] = None
    promptFeedback: Optional[GooglePromptFeedback] = None
    responseId: Optional[str] = None

    @property
    def text(self) -> str:
        if not self.candidates:
            return ""
        return "".join(part.text or "" for part in self.candidates[0].content.parts)


class GoogleErrorDetail(BaseModel):
    code: int = 0
    message: str = ""
    status: str = ""


class GoogleErrorEnvelope(BaseModel):
    error: GoogleErrorDetail


FINISH_REASON_MAP = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "BLOCKLIST": FinishReason.CONTENT_FILTER,
    "PROHIBITED_CONTENT": FinishReason.CONTENT_FILTER,
    "SPII": FinishReason.CONTENT_FILTER,
}


def map_finish_reason(body: GoogleResponse) -> Optional[FinishReason]:
    """Finish reason of the first candidate, or a blocked prompt."""
    if not body.candidates:
        if body.promptFeedback and body.promptFeedback.blockReason:
            return FinishReason.CONTENT_FILTER
        return None
    reason = body.candidates[0].finishReason
    if reason is None:
        return None
    return FINISH_REASON_MAP.get(reason, FinishReason.STOP)


class GoogleStreamDecoder:
    """Decodes ``streamGenerateContent?alt=sse`` payloads; ends at EOF."""

    done_sentinel = None

    def decode(self, payload: str) -> Optional[StreamUpdate]:
        body = GoogleResponse.model_validate_json(payload)
        usage = body.usageMetadata
        return StreamUpdate(
            text=body.text,
            prompt_tokens=usage.promptTokenCount if usage else None,
            completion_tokens=usage.candidatesTokenCount if usage else None,
            finish_reason=map_finish_reason(body),
            model=body.modelVersion,
        )


# ============================================================
# Adapter
# ============================================================

class GoogleAdapter:
    """
    Adapter for Google Gemini API.

    Supports:
    - Chat completions (system prompt sent as systemInstruction)
    - Streaming over SSE
    - Health check via GET /models
    """

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
    API_VERSION = "v1beta"

    def __init__(
        self,
        config: AdapterConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.config = config
        self.provider_id = config.provider_id or Provider.GOOGLE.value
        self.base_url = config.base_url or self.DEFAULT_BASE_URL
        self.api_version = config.api_version or self.API_VERSION
        self.client = build_client(
            config,
            base_url=self.base_url,
            headers={
                "x-goog-api-key": config.api_key,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def process(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> CanonicalResponse:
        """Generate a chat completion using Gemini."""
        request_id = request_id or new_request_id(self.provider_id)

        response, latency_ms = await post_json(
            self.client,
            f"/{self.api_version}/models/{request.model_name}:generateContent",
            self._build_chat_payload(request),
            provider_id=self.provider_id,
            request_id=request_id,
            timeout=self.config.timeout,
            describe_error=self._describe_error,
        )
        body = decode_body(GoogleResponse, response, self.provider_id, request_id)

        usage = body.usageMetadata or GoogleUsageMetadata()
        return CanonicalResponse(
            id=body.responseId or request_id,
            provider=self.provider_id,
            model=body.modelVersion or request.model_name,
            content=body.text,
            usage=Usage(
                prompt_tokens=usage.promptTokenCount or 0,
                completion_tokens=usage.candidatesTokenCount or 0,
            ),
            finish_reason=map_finish_reason(body) or FinishReason.STOP,
            response_time_ms=latency_ms,
            metadata=ResponseMetadata(request_id=request_id),
        )

    async def stream(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> AsyncIterator[StreamEvent]:
        """Generate a streaming chat completion."""
        request_id = request_id or new_request_id(self.provider_id)

        normalizer = StreamNormalizer(
            GoogleStreamDecoder(),
            provider=self.provider_id,
            model=request.model_name,
            request_id=request_id,
        )

        async with open_stream(
            self.client,
            f"/{self.api_version}/models/{request.model_name}:streamGenerateContent?alt=sse",
            self._build_chat_payload(request),
            provider_id=self.provider_id,
            request_id=request_id,
            timeout=self.config.timeout,
            describe_error=self._describe_error,
        ) as response:
            async for event in normalizer.normalize(response.aiter_lines()):
                yield event

    async def health_check(self) -> ProviderHealth:
        """Check Gemini API health."""
        return await probe_endpoint(
            self.client,
            "GET",
            f"/{self.api_version}/models",
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
        """Build Gemini-specific payload."""
        system_content, messages = split_system_messages(list(request.messages))

        payload: Dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if message.role == Role.ASSISTANT else "user",
                    "parts": [{"text": message.content}],
                }
                for message in messages
            ],
            "generationConfig": {
                "maxOutputTokens": request.max_tokens,
                "temperature": request.temperature,
                "topP": request.top_p,
            },
        }

        if system_content is not None:
            payload["systemInstruction"] = {"parts": [{"text": system_content}]}

        if request.stop:
            payload["generationConfig"]["stopSequences"] = request.stop_sequences

        return payload

    @staticmethod
    def _describe_error(response: httpx.Response) -> str:
        return error_message(GoogleErrorEnvelope, response, lambda envelope: envelope.error.message)

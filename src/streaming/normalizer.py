"""
AI Routing Engine - Stream Normalizer

Turns a vendor's line-delimited event stream into a canonical sequence:
zero or more ``StreamDelta`` items followed by exactly one
``StreamSummary``.

Framing rules shared by every vendor:
- Only lines carrying the ``data:`` prefix are considered
- A vendor-specific sentinel payload (e.g. ``[DONE]``) ends consumption
- A payload the vendor decoder cannot parse is dropped, never fatal
- Token counts keep the latest value reported by the vendor
- A broken connection ends the stream with a summary marked ``failed``

The vendor decoders live with their adapters; this module only knows
the ``StreamDecoder`` protocol.
"""

import codecs
from dataclasses import dataclass, field
from typing import AsyncIterable, AsyncIterator, List, Optional, Protocol, Union

import httpx
from pydantic import ValidationError

from ..core.errors import ProviderErrorKind, error_from_transport
from ..core.models import FinishReason, ResponseMetadata, Usage
from ..observability.logging import get_logger

logger = get_logger("routing_engine.streaming")


@dataclass(frozen=True)
class StreamDelta:
    """One canonical text fragment."""
    text: str
    index: int = 0


@dataclass(frozen=True)
class StreamUpdate:
    """
    What a vendor decoder extracted from one event payload.

    Token counts are ``None`` when the event did not report them.
    """
    text: str = ""
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    finish_reason: Optional[FinishReason] = None
    model: Optional[str] = None
    done: bool = False
    error: Optional[str] = None


class StreamDecoder(Protocol):
    """Vendor-owned decoding of a single ``data:`` payload."""

    done_sentinel: Optional[str]

    def decode(self, payload: str) -> Optional[StreamUpdate]:
        """Decode one payload; raise ValueError if it is malformed."""
        ...


@dataclass
class StreamSummary:
    """
    Final record of a stream.

    ``failed`` is set when the stream broke mid-flight; ``content`` holds
    whatever was produced up to that point.
    """
    usage: Usage
    finish_reason: FinishReason
    model: str
    provider: str = ""
    content: str = ""
    chunks: int = 0
    failed: bool = False
    error_kind: Optional[ProviderErrorKind] = None
    error_message: Optional[str] = None
    response_time_ms: int = 0
    cost_usd: Optional[float] = None
    metadata: Optional[ResponseMetadata] = None


StreamEvent = Union[StreamDelta, StreamSummary]


@dataclass
class StreamState:
    """Accumulated state of one normalization pass."""
    model: str
    parts: List[str] = field(default_factory=list)
    chunks: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: Optional[FinishReason] = None
    skipped: int = 0

    def apply(self, update: StreamUpdate):
        """Fold a decoded update into the running totals."""
        if update.text:
            self.parts.append(update.text)
            self.chunks += 1
        # Vendors report counts incrementally; the latest figure wins
        if update.prompt_tokens is not None:
            self.prompt_tokens = update.prompt_tokens
        if update.completion_tokens is not None:
            self.completion_tokens = update.completion_tokens
        if update.finish_reason is not None:
            self.finish_reason = update.finish_reason
        if update.model:
            self.model = update.model

    def summary(
        self,
        provider: str,
        error_kind: Optional[ProviderErrorKind] = None,
        error_message: Optional[str] = None
    ) -> StreamSummary:
        failed = error_kind is not None
        return StreamSummary(
            usage=Usage(
                prompt_tokens=self.prompt_tokens,
                completion_tokens=self.completion_tokens
            ),
            finish_reason=FinishReason.ERROR if failed else (self.finish_reason or FinishReason.STOP),
            model=self.model,
            provider=provider,
            content="".join(self.parts),
            chunks=self.chunks,
            failed=failed,
            error_kind=error_kind,
            error_message=error_message
        )


class StreamNormalizer:
    """
    Normalizes one vendor's event stream.

    Each call to ``normalize`` starts from fresh state, so feeding the same
    input twice yields identical output. The returned iterator itself is
    single-use.
    """

    DATA_PREFIX = "data:"

    def __init__(
        self,
        decoder: StreamDecoder,
        provider: str,
        model: str = "",
        request_id: str = ""
    ):
        self.decoder = decoder
        self.provider = provider
        self.model = model
        self.request_id = request_id

    def _extract_payload(self, line: str) -> Optional[str]:
        line = line.rstrip("\r\n")
        if not line.startswith(self.DATA_PREFIX):
            return None
        payload = line[len(self.DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]
        return payload if payload.strip() else None

    async def normalize(self, lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
        """
        Yield canonical deltas, then one summary.

        Args:
            lines: Vendor event lines (already split, any line ending)
        """
        state = StreamState(model=self.model)
        sentinel = self.decoder.done_sentinel

        try:
            async for line in lines:
                payload = self._extract_payload(line)
                if payload is None:
                    continue
                if sentinel is not None and payload.strip() == sentinel:
                    break

                try:
                    update = self.decoder.decode(payload)
                except (ValueError, ValidationError):
                    state.skipped += 1
                    logger.debug(
                        "Skipping malformed stream event",
                        provider=self.provider,
                        request_id=self.request_id,
                    )
                    continue

                if update is None:
                    continue

                if update.error:
                    logger.warning(
                        "Provider reported error mid-stream",
                        provider=self.provider,
                        request_id=self.request_id,
                        error=update.error,
                    )
                    yield state.summary(self.provider, ProviderErrorKind.UPSTREAM_5XX, update.error)
                    return

                index = state.chunks
                state.apply(update)
                if update.text:
                    yield StreamDelta(text=update.text, index=index)

                if update.done:
                    break

        except httpx.TransportError as e:
            error = error_from_transport(self.provider, e, self.request_id)
            logger.warning(
                "Stream read failed",
                provider=self.provider,
                request_id=self.request_id,
                error_kind=error.kind.value,
                chunks_delivered=state.chunks,
            )
            yield state.summary(self.provider, error.kind, str(error))
            return

        yield state.summary(self.provider)

    async def normalize_bytes(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamEvent]:
        """Same as ``normalize`` for a raw byte stream."""
        async for event in self.normalize(iter_lines(chunks)):
            yield event


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Split a UTF-8 byte stream into lines, tolerating split code points."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for chunk in chunks:
        buffer += decoder.decode(chunk)
        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            yield line.rstrip("\r")
    buffer += decoder.decode(b"", final=True)
    if buffer:
        yield buffer.rstrip("\r")

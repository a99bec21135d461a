"""
AI Routing Engine - Streaming Module

Vendor-independent stream normalization:
- Canonical text deltas
- Final usage / finish reason summary
- Malformed event tolerance
"""

from .normalizer import (
    StreamNormalizer,
    StreamDecoder,
    StreamDelta,
    StreamEvent,
    StreamState,
    StreamSummary,
    StreamUpdate,
    iter_lines,
)
from ..core.errors import StreamError, StreamErrorKind

__all__ = [
    "StreamNormalizer",
    "StreamDecoder",
    "StreamDelta",
    "StreamEvent",
    "StreamState",
    "StreamSummary",
    "StreamUpdate",
    "iter_lines",
    "StreamError",
    "StreamErrorKind",
]

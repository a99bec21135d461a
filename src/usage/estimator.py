"""
AI Routing Engine - Token Estimation

Approximate prompt token counts, used only for budget pre-checks before a
request is dispatched. Billing always uses the provider's reported usage.
"""

import math
import re
from typing import Iterable

from ..core.models import Message


# Average characters per token by provider family
CHARS_PER_TOKEN = {
    "openai": 4.0,      # GPT models average ~4 chars/token
    "anthropic": 3.5,   # Claude slightly more efficient
    "google": 4.0,      # Gemini similar to GPT
    "default": 4.0,
}

# Overhead tokens per message
MESSAGE_OVERHEAD = {
    "openai": 4,
    "anthropic": 3,
    "google": 3,
    "default": 4,
}

_WHITESPACE = re.compile(r"\s")
_DIGIT = re.compile(r"\d")


def estimate_text_tokens(text: str, provider: str = "default") -> int:
    """
    Estimate tokens for plain text.

    Character heuristic adjusted for whitespace (fewer tokens) and
    digits (more tokens).
    """
    if not text:
        return 0

    chars_per_token = CHARS_PER_TOKEN.get(provider, CHARS_PER_TOKEN["default"])
    base_tokens = len(text) / chars_per_token

    whitespace_ratio = len(_WHITESPACE.findall(text)) / len(text)
    number_ratio = len(_DIGIT.findall(text)) / len(text)
    adjusted = base_tokens * (1 - whitespace_ratio * 0.1) * (1 + number_ratio * 0.2)

    return max(1, math.ceil(adjusted))


def estimate_prompt_tokens(messages: Iterable[Message], provider: str = "default") -> int:
    """Estimate prompt tokens for a message list, including per-message overhead."""
    overhead = MESSAGE_OVERHEAD.get(provider, MESSAGE_OVERHEAD["default"])
    total = 0
    for message in messages:
        total += overhead + estimate_text_tokens(message.content, provider)
    return total

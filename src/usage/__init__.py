"""
AI Routing Engine - Usage Module

Cost accounting attached to every routed response:
- Pricing: per-provider, per-model price table
- Estimator: prompt token estimation for budget pre-checks
"""

from .pricing import (
    DEFAULT_PRICES,
    ModelPrice,
    PriceTable,
)
from .estimator import (
    estimate_prompt_tokens,
    estimate_text_tokens,
)
from ..core.errors import UnknownPricing

__all__ = [
    "DEFAULT_PRICES",
    "ModelPrice",
    "PriceTable",
    "UnknownPricing",
    "estimate_prompt_tokens",
    "estimate_text_tokens",
]

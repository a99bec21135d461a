"""
AI Routing Engine - Pricing Catalog

Per-provider, per-model price table. Prices are USD per 1 million tokens.

Defaults as of January 2025; configuration entries override them.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..core.config import PriceEntry
from ..core.errors import UnknownPricing
from ..core.models import Usage


@dataclass(frozen=True)
class ModelPrice:
    """
    Pricing information for a single model.

    All prices are in USD per 1 million tokens.
    """
    provider: str
    model_name: str
    input_per_1m: float
    output_per_1m: float

    @property
    def model_id(self) -> str:
        return f"{self.provider}/{self.model_name}"

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """
        Calculate total cost for token usage.

        Args:
            input_tokens: Number of prompt tokens
            output_tokens: Number of completion tokens

        Returns:
            Total cost in USD
        """
        input_cost = (input_tokens / 1_000_000) * self.input_per_1m
        output_cost = (output_tokens / 1_000_000) * self.output_per_1m
        return input_cost + output_cost


DEFAULT_PRICES: Tuple[ModelPrice, ...] = (
    # OpenAI
    ModelPrice("openai", "gpt-4o", 2.50, 10.00),
    ModelPrice("openai", "gpt-4o-mini", 0.15, 0.60),
    ModelPrice("openai", "gpt-4-turbo", 10.00, 30.00),
    ModelPrice("openai", "gpt-3.5-turbo", 0.50, 1.50),
    # Anthropic
    ModelPrice("anthropic", "claude-3-5-sonnet-20241022", 3.00, 15.00),
    ModelPrice("anthropic", "claude-3-5-haiku-20241022", 0.80, 4.00),
    ModelPrice("anthropic", "claude-3-opus-20240229", 15.00, 75.00),
    ModelPrice("anthropic", "claude-3-haiku-20240307", 0.25, 1.25),
    # Google
    ModelPrice("google", "gemini-1.5-pro", 1.25, 5.00),
    ModelPrice("google", "gemini-1.5-flash", 0.075, 0.30),
    ModelPrice("google", "gemini-2.0-flash", 0.10, 0.40),
    # Local stub is free
    ModelPrice("stub", "echo", 0.0, 0.0),
)

DEFAULT_ALIASES: Dict[str, str] = {
    "anthropic/claude-3-5-sonnet": "anthropic/claude-3-5-sonnet-20241022",
    "anthropic/claude-3.5-sonnet": "anthropic/claude-3-5-sonnet-20241022",
    "anthropic/claude-3-5-haiku": "anthropic/claude-3-5-haiku-20241022",
    "anthropic/claude-3-opus": "anthropic/claude-3-opus-20240229",
    "anthropic/claude-3-haiku": "anthropic/claude-3-haiku-20240307",
}


class PriceTable:
    """
    Price lookup and cost calculation.

    ``cost`` is the authoritative figure a billing collaborator debits;
    it never guesses, so a missing entry raises ``UnknownPricing``.
    """

    def __init__(
        self,
        prices: Optional[Iterable[ModelPrice]] = None,
        include_defaults: bool = True
    ):
        self._prices: Dict[str, ModelPrice] = {}
        self._aliases: Dict[str, str] = {}
        if include_defaults:
            for price in DEFAULT_PRICES:
                self.add_price(price)
            self._aliases.update(DEFAULT_ALIASES)
        for price in prices or ():
            self.add_price(price)

    @classmethod
    def from_entries(cls, entries: Iterable[PriceEntry], include_defaults: bool = True) -> "PriceTable":
        """Build a table from configuration entries."""
        return cls(
            prices=[
                ModelPrice(
                    provider=entry.provider,
                    model_name=entry.model,
                    input_per_1m=entry.input_per_1m,
                    output_per_1m=entry.output_per_1m,
                )
                for entry in entries
            ],
            include_defaults=include_defaults,
        )

    def add_price(self, price: ModelPrice):
        self._prices[price.model_id] = price

    def get_price(self, provider_id: str, model: str) -> Optional[ModelPrice]:
        """
        Find the price entry for a provider/model pair.

        Dated model names fall back to their undated family entry
        ("gpt-4o-2024-08-06" matches "gpt-4o").
        """
        model_id = f"{provider_id}/{model}"
        model_id = self._aliases.get(model_id, model_id)
        if model_id in self._prices:
            return self._prices[model_id]

        best: Optional[ModelPrice] = None
        for candidate in self._prices.values():
            if candidate.provider != provider_id:
                continue
            if model.startswith(candidate.model_name + "-"):
                if best is None or len(candidate.model_name) > len(best.model_name):
                    best = candidate
        return best

    def cost(self, usage: Usage, provider_id: str, model: str) -> float:
        """
        Cost of a completed call.

        Raises:
            UnknownPricing: If no entry exists for the pair
        """
        price = self.get_price(provider_id, model)
        if price is None:
            raise UnknownPricing(provider_id, model)
        return price.calculate_cost(usage.prompt_tokens, usage.completion_tokens)

    def estimate_max_cost(
        self,
        provider_id: str,
        model: str,
        prompt_tokens: int,
        max_tokens: int
    ) -> Optional[float]:
        """Worst-case cost of a call, or None if the model is not priced."""
        price = self.get_price(provider_id, model)
        if price is None:
            return None
        return price.calculate_cost(prompt_tokens, max_tokens)

    def list_models(self, provider: Optional[str] = None) -> List[ModelPrice]:
        """Priced models, optionally filtered by provider."""
        prices = list(self._prices.values())
        if provider:
            prices = [p for p in prices if p.provider == provider]
        return sorted(prices, key=lambda p: p.model_id)

"""
AI Routing Engine - Pricing and Token Estimation Tests
"""

import pytest

from src.core.config import PriceEntry
from src.core.errors import UnknownPricing
from src.core.models import Message, Usage
from src.usage.estimator import estimate_prompt_tokens, estimate_text_tokens
from src.usage.pricing import ModelPrice, PriceTable


class TestPriceTable:

    def test_cost(self):
        table = PriceTable()

        cost = table.cost(Usage(prompt_tokens=1_000_000, completion_tokens=500_000), "openai", "gpt-4o")

        assert cost == pytest.approx(2.50 + 5.00)

    def test_dated_model_falls_back_to_family(self):
        table = PriceTable()

        price = table.get_price("openai", "gpt-4o-mini-2024-07-18")

        assert price.model_name == "gpt-4o-mini"

    def test_alias(self):
        table = PriceTable()

        assert table.get_price("anthropic", "claude-3-haiku").model_name == "claude-3-haiku-20240307"

    def test_unknown_model_raises(self):
        with pytest.raises(UnknownPricing) as exc_info:
            PriceTable().cost(Usage(1, 1), "openai", "o9-preview")

        assert exc_info.value.model == "o9-preview"

    def test_provider_must_match(self):
        assert PriceTable().get_price("google", "gpt-4o") is None

    def test_configured_entries_override_defaults(self):
        table = PriceTable.from_entries([
            PriceEntry(provider="openai", model="gpt-4o", input_per_1m=1.0, output_per_1m=1.0),
            PriceEntry(provider="local", model="llama", input_per_1m=0.1, output_per_1m=0.1),
        ])

        assert table.get_price("openai", "gpt-4o").input_per_1m == 1.0
        assert table.get_price("local", "llama") is not None

    def test_without_defaults(self):
        table = PriceTable([ModelPrice("p1", "m1", 1.0, 2.0)], include_defaults=False)

        assert table.get_price("openai", "gpt-4o") is None
        assert [p.model_id for p in table.list_models()] == ["p1/m1"]

    def test_estimate_max_cost(self):
        table = PriceTable([ModelPrice("p1", "m1", 10.0, 20.0)], include_defaults=False)

        assert table.estimate_max_cost("p1", "m1", 100_000, 50_000) == pytest.approx(2.0)
        assert table.estimate_max_cost("p1", "unknown", 1, 1) is None

    def test_list_models_by_provider(self):
        models = PriceTable().list_models("google")

        assert models
        assert all(p.provider == "google" for p in models)


class TestEstimator:

    def test_empty_text(self):
        assert estimate_text_tokens("") == 0

    def test_short_text_is_at_least_one(self):
        assert estimate_text_tokens("a") == 1

    def test_prompt_includes_overhead(self):
        messages = [Message.system("Be brief."), Message.user("Hello there")]

        total = estimate_prompt_tokens(messages, "openai")

        assert total == sum(4 + estimate_text_tokens(m.content, "openai") for m in messages)

    def test_longer_text_costs_more(self):
        assert estimate_text_tokens("word " * 200) > estimate_text_tokens("word " * 20)

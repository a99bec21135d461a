"""
AI Routing Engine - Configuration Tests
"""

import json

import pytest

from src.core.config import EngineConfig, load_config
from src.core.errors import ConfigurationError


class TestLoadConfig:
    """Environment overlay and JSON document."""

    def test_keys_from_environment(self):
        config = load_config(environ={
            "OPENAI_API_KEY": "sk-test",
            "ANTHROPIC_API_KEY": "ak-test",
        })

        assert set(config.providers) == {"openai", "anthropic"}
        assert config.providers["openai"].api_key == "sk-test"
        assert config.providers["openai"].timeout_seconds == 30.0

    def test_stub_switch(self):
        config = load_config(environ={"USE_STUB_ADAPTERS": "true"})

        assert "stub" in config.providers

    def test_stub_switch_off(self):
        config = load_config(environ={"USE_STUB_ADAPTERS": "0"})

        assert config.providers == {}

    def test_base_url_and_timeout_overlay(self):
        config = load_config(environ={
            "OPENAI_API_KEY": "sk-test",
            "OPENAI_BASE_URL": "https://proxy.internal/v1",
            "PROVIDER_TIMEOUT_SECONDS": "12.5",
            "REQUEST_DEADLINE_SECONDS": "40",
        })

        assert config.providers["openai"].base_url == "https://proxy.internal/v1"
        assert config.providers["openai"].timeout_seconds == 12.5
        assert config.request_deadline == 40

    def test_invalid_number(self):
        with pytest.raises(ConfigurationError):
            load_config(environ={"USE_STUB_ADAPTERS": "1", "PROVIDER_TIMEOUT_SECONDS": "soon"})

    def test_document(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text(json.dumps({
            "providers": {"openai": {"timeout_seconds": 5}},
            "routing": {
                "model_routes": {"fast-model": ["openai/gpt-4o-mini", "anthropic/claude-3-haiku"]},
                "unhealthy_threshold": 2,
            },
            "pricing": [{"provider": "openai", "model": "ft-custom", "input_per_1m": 1, "output_per_1m": 2}],
        }))

        config = load_config(str(path), environ={"OPENAI_API_KEY": "sk-test"})

        assert config.providers["openai"].api_key == "sk-test"
        assert config.providers["openai"].timeout_seconds == 5
        assert config.routing.model_routes["fast-model"][1] == "anthropic/claude-3-haiku"
        assert config.routing.unhealthy_threshold == 2
        assert config.pricing[0].model == "ft-custom"

    def test_document_path_from_environment(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text(json.dumps({"routing": {"attempt_timeout_seconds": 2}}))

        config = load_config(environ={"ROUTING_CONFIG_PATH": str(path)})

        assert config.routing.attempt_timeout_seconds == 2

    def test_missing_document(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(str(tmp_path / "absent.json"), environ={})

    def test_malformed_document(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_config(str(path), environ={})

    def test_unqualified_route_target_rejected(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text(json.dumps({"routing": {"model_routes": {"fast-model": ["gpt-4o"]}}}))

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path), environ={})

        assert "errors" in exc_info.value.error.details

    def test_unknown_field_rejected(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text(json.dumps({"routing": {"strategy": "cheapest"}}))

        with pytest.raises(ConfigurationError):
            load_config(str(path), environ={})

    @pytest.mark.parametrize("document, environ", [
        ([], {}),
        ({"providers": None}, {}),
        ({"providers": {"openai": None}}, {"OPENAI_API_KEY": "sk-test"}),
        ({"routing": ["fast-model"]}, {"REQUEST_DEADLINE_SECONDS": "5"}),
    ])
    def test_wrongly_shaped_document(self, tmp_path, document, environ):
        """Valid JSON of the wrong shape is a configuration error, not a crash."""
        path = tmp_path / "routing.json"
        path.write_text(json.dumps(document))

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(str(path), environ=environ)

        assert "must be a JSON object" in str(exc_info.value)

    def test_negative_timeout_rejected(self, tmp_path):
        path = tmp_path / "routing.json"
        path.write_text(json.dumps({"providers": {"stub": {"timeout_seconds": -1}}}))

        with pytest.raises(ConfigurationError):
            load_config(str(path), environ={})


class TestTimeBudgets:

    def test_deadline_defaults_to_three_timeouts(self):
        config = EngineConfig.model_validate({
            "providers": {"openai": {"timeout_seconds": 10}, "google": {"timeout_seconds": 20}},
        })

        assert config.request_deadline == 60

    def test_deadline_follows_attempt_timeout(self):
        config = EngineConfig.model_validate({"routing": {"attempt_timeout_seconds": 4}})

        assert config.request_deadline == 12
        assert config.attempt_timeout_for("anything") == 4

    def test_attempt_timeout_per_provider(self):
        config = EngineConfig.model_validate({"providers": {"openai": {"timeout_seconds": 7}}})

        assert config.attempt_timeout_for("openai") == 7
        assert config.attempt_timeout_for("unknown") == 30.0

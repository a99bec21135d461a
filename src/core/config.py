"""
AI Routing Engine - Configuration

Provider credentials and switches come from the environment; routes,
timeouts and the price table can also be supplied as a JSON document
(``ROUTING_CONFIG_PATH``). Everything is validated once at startup.
"""

import json
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError


# Provider id -> environment variable holding its credential
PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in ("1", "true", "yes", "on")


class ProviderSettings(BaseModel):
    """Per-provider connection settings."""
    model_config = ConfigDict(extra="forbid")

    api_key: str = ""
    base_url: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    health_check_timeout_seconds: float = Field(default=5.0, gt=0)
    api_version: Optional[str] = None
    max_connections: int = Field(default=10, ge=1)
    max_keepalive_connections: int = Field(default=5, ge=0)
    # Connection-establishment retries inside the transport, never a replay
    max_retries: int = Field(default=0, ge=0)
    health_check_model: Optional[str] = None


class RoutingSettings(BaseModel):
    """Candidate routes and time budgets."""
    model_config = ConfigDict(extra="forbid")

    model_routes: Dict[str, List[str]] = Field(default_factory=dict)
    attempt_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    request_deadline_seconds: Optional[float] = Field(default=None, gt=0)
    unhealthy_threshold: int = Field(default=3, ge=1)
    health_probe_interval_seconds: float = Field(default=30.0, gt=0)
    health_history_size: int = Field(default=50, ge=1)

    @field_validator("model_routes")
    @classmethod
    def _targets_are_qualified(cls, routes: Dict[str, List[str]]) -> Dict[str, List[str]]:
        for alias, targets in routes.items():
            if not targets:
                raise ValueError(f"route '{alias}' has no targets")
            for target in targets:
                if "/" not in target:
                    raise ValueError(
                        f"route '{alias}' target '{target}' must be provider-qualified (provider/model)"
                    )
        return routes


class PriceEntry(BaseModel):
    """Price of one model, USD per 1M tokens."""
    model_config = ConfigDict(extra="forbid")

    provider: str
    model: str
    input_per_1m: float = Field(ge=0)
    output_per_1m: float = Field(ge=0)


class EngineConfig(BaseModel):
    """Complete engine configuration."""
    model_config = ConfigDict(extra="forbid")

    providers: Dict[str, ProviderSettings] = Field(default_factory=dict)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    pricing: List[PriceEntry] = Field(default_factory=list)
    use_default_pricing: bool = True

    def attempt_timeout_for(self, provider_id: str) -> float:
        """Router-side ceiling for one attempt against ``provider_id``."""
        if self.routing.attempt_timeout_seconds is not None:
            return self.routing.attempt_timeout_seconds
        settings = self.providers.get(provider_id)
        return settings.timeout_seconds if settings else 30.0

    @property
    def request_deadline(self) -> float:
        """Overall deadline; defaults to three single-provider timeouts."""
        if self.routing.request_deadline_seconds is not None:
            return self.routing.request_deadline_seconds
        timeouts = [settings.timeout_seconds for settings in self.providers.values()]
        single = self.routing.attempt_timeout_seconds or (max(timeouts) if timeouts else 30.0)
        return 3 * single


def _read_document(path: str) -> dict:
    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigurationError(f"Routing config not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Routing config is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ConfigurationError(f"Routing config must be a JSON object, got {type(document).__name__}")
    return document


def _section(parent: dict, key: str, where: str) -> dict:
    """Mapping under ``key``, created when absent."""
    value = parent.setdefault(key, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"`{where}` must be a JSON object, got {type(value).__name__}")
    return value


def load_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> EngineConfig:
    """
    Build the engine configuration.

    Args:
        path: Optional JSON document; falls back to ``ROUTING_CONFIG_PATH``
        environ: Environment mapping (defaults to ``os.environ``)

    Raises:
        ConfigurationError: If the document or the overlay is invalid
    """
    env = os.environ if environ is None else environ
    path = path or env.get("ROUTING_CONFIG_PATH")
    document = _read_document(path) if path else {}

    providers = _section(document, "providers", "providers")
    for provider_id in providers:
        _section(providers, provider_id, f"providers.{provider_id}")

    for provider_id, key_env in PROVIDER_KEY_ENV.items():
        api_key = env.get(key_env)
        if api_key:
            providers.setdefault(provider_id, {})["api_key"] = api_key
        base_url = env.get(f"{provider_id.upper()}_BASE_URL")
        if base_url and provider_id in providers:
            providers[provider_id]["base_url"] = base_url

    if _is_truthy(env.get("USE_STUB_ADAPTERS")):
        providers.setdefault("stub", {})

    timeout = env.get("PROVIDER_TIMEOUT_SECONDS")
    routing = _section(document, "routing", "routing")
    try:
        if timeout:
            for settings in providers.values():
                settings.setdefault("timeout_seconds", float(timeout))
        if env.get("REQUEST_DEADLINE_SECONDS"):
            routing["request_deadline_seconds"] = float(env["REQUEST_DEADLINE_SECONDS"])
        if env.get("HEALTH_PROBE_INTERVAL_SECONDS"):
            routing["health_probe_interval_seconds"] = float(env["HEALTH_PROBE_INTERVAL_SECONDS"])
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric environment value: {e}") from e

    try:
        return EngineConfig.model_validate(document)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid routing configuration",
            details={"errors": e.errors(include_url=False)}
        ) from e

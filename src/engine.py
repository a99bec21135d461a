"""
AI Routing Engine - Assembly

Builds the adapter registry, health monitor, price table and router from
an ``EngineConfig`` and owns their lifecycle.

Usage:
    async with RoutingEngine.from_env() as engine:
        response = await engine.route(request)
"""

from typing import AsyncIterator, Dict, Mapping, Optional

import httpx

from .adapters import AdapterConfig, ProviderAdapter, get_adapter
from .core.config import EngineConfig, load_config
from .core.models import CanonicalRequest, CanonicalResponse, Provider
from .observability.logging import get_logger
from .observability.metrics import MetricsCollector
from .observability.sink import ObservabilitySink, TelemetrySink
from .observability.tracing import TracingManager
from .routing.health import HealthMonitor
from .routing.router import Router
from .streaming.normalizer import StreamEvent
from .usage.pricing import PriceTable

logger = get_logger("routing_engine.engine")


def build_adapters(
    config: EngineConfig,
    transports: Optional[Mapping[str, httpx.AsyncBaseTransport]] = None
) -> Dict[str, ProviderAdapter]:
    """
    One adapter per configured provider.

    Providers without credentials are skipped (the stub needs none).

    Raises:
        ConfigurationError: If a provider id has no adapter implementation
    """
    transports = transports or {}
    adapters: Dict[str, ProviderAdapter] = {}

    for provider_id, settings in config.providers.items():
        if provider_id != Provider.STUB.value and not settings.api_key:
            logger.warning("Provider has no credentials, skipping", provider=provider_id)
            continue
        adapters[provider_id] = get_adapter(
            provider_id,
            AdapterConfig.from_settings(provider_id, settings),
            transport=transports.get(provider_id),
        )

    logger.info("Adapters initialized", providers=sorted(adapters))
    return adapters


class RoutingEngine:
    """
    The routing engine with its collaborators wired together.

    Background health probing starts on ``start()`` (or ``async with``)
    and every adapter's HTTP client is closed on ``close()``.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        adapters: Optional[Mapping[str, ProviderAdapter]] = None,
        sink: Optional[ObservabilitySink] = None,
        metrics: Optional[MetricsCollector] = None,
        tracing: Optional[TracingManager] = None,
        probe_in_background: bool = True,
    ):
        self.config = config or EngineConfig()
        self.adapters: Dict[str, ProviderAdapter] = (
            dict(adapters) if adapters is not None else build_adapters(self.config)
        )
        self.metrics = metrics or MetricsCollector()
        self.tracing = tracing
        self.sink = sink or TelemetrySink(metrics=self.metrics, tracing=tracing)
        self.probe_in_background = probe_in_background

        self.pricing = PriceTable.from_entries(
            self.config.pricing,
            include_defaults=self.config.use_default_pricing,
        )
        self.health = HealthMonitor(
            unhealthy_threshold=self.config.routing.unhealthy_threshold,
            history_size=self.config.routing.health_history_size,
            sink=self.sink,
        )
        for provider_id, adapter in self.adapters.items():
            settings = self.config.providers.get(provider_id)
            self.health.register(
                adapter,
                probe_timeout=settings.health_check_timeout_seconds if settings else None,
            )

        self.router = Router(
            self.adapters,
            config=self.config,
            health=self.health,
            pricing=self.pricing,
            sink=self.sink,
        )
        self._started = False

    @classmethod
    def from_env(cls, path: Optional[str] = None, **kwargs) -> "RoutingEngine":
        """Engine built from ``load_config`` (environment + optional JSON)."""
        return cls(load_config(path), **kwargs)

    async def start(self):
        """Begin background health probing."""
        if self._started:
            return
        if self.probe_in_background and self.adapters:
            self.health.start_background_probing(self.config.routing.health_probe_interval_seconds)
        self._started = True

    async def close(self):
        """Stop probing and release every adapter's connections."""
        await self.health.stop()
        for provider_id, adapter in self.adapters.items():
            try:
                await adapter.close()
            except Exception as e:
                logger.error("Failed to close adapter", provider=provider_id, error=str(e))
        if self.tracing is not None:
            self.tracing.shutdown()
        self._started = False

    async def __aenter__(self) -> "RoutingEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def route(self, request: CanonicalRequest) -> CanonicalResponse:
        return await self.router.route(request)

    def route_stream(self, request: CanonicalRequest) -> AsyncIterator[StreamEvent]:
        return self.router.route_stream(request)

    def get_stats(self):
        return self.router.get_stats()

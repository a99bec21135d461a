"""
AI Routing Engine - Health Monitor

Live, advisory provider status used to order routing candidates.

Status transitions:
- any failure (probe or live call) increments the consecutive-failure count
- below the threshold the provider is ``degraded``
- at or above the threshold (default 3) it is ``unhealthy``
- a single success resets it to ``healthy``

Sources of updates:
- background probes at a fixed interval per provider
- live request failures, which also trigger an immediate out-of-band probe
"""

import asyncio
import time
from collections import deque
from dataclasses import replace
from threading import Lock
from typing import Any, Deque, Dict, List, Mapping, Optional

from ..adapters.base import ProviderAdapter
from ..core.models import HealthStatus, ProviderHealth
from ..observability.logging import TimedOperation, get_logger
from ..observability.sink import NullSink, ObservabilitySink

logger = get_logger("routing_engine.health")


class HealthMonitor:
    """
    Tracks ProviderHealth for every registered adapter.

    ``current_status`` never blocks on I/O; ``probe`` performs a
    health check bounded by the provider's health-check timeout.
    """

    DEFAULT_PROBE_TIMEOUT = 5.0

    def __init__(
        self,
        adapters: Optional[Mapping[str, ProviderAdapter]] = None,
        unhealthy_threshold: int = 3,
        history_size: int = 50,
        probe_timeouts: Optional[Mapping[str, float]] = None,
        sink: Optional[ObservabilitySink] = None,
    ):
        self.unhealthy_threshold = unhealthy_threshold
        self.history_size = history_size
        self.sink = sink or NullSink()

        self._lock = Lock()
        self._adapters: Dict[str, ProviderAdapter] = {}
        self._health: Dict[str, ProviderHealth] = {}
        self._history: Dict[str, Deque[ProviderHealth]] = {}
        self._probe_timeouts: Dict[str, float] = dict(probe_timeouts or {})

        self._inflight: Dict[str, asyncio.Task] = {}
        self._background: Dict[str, asyncio.Task] = {}

        for adapter in (adapters or {}).values():
            self.register(adapter)

    # ============================================================
    # Registry
    # ============================================================

    def register(self, adapter: ProviderAdapter, probe_timeout: Optional[float] = None):
        """Start tracking an adapter; its status begins as healthy."""
        provider_id = adapter.provider_id
        with self._lock:
            self._adapters[provider_id] = adapter
            self._health.setdefault(provider_id, ProviderHealth(provider_id=provider_id))
            self._history.setdefault(provider_id, deque(maxlen=self.history_size))
            if probe_timeout is not None:
                self._probe_timeouts[provider_id] = probe_timeout

    @property
    def providers(self) -> List[str]:
        with self._lock:
            return list(self._adapters)

    def _probe_timeout(self, provider_id: str) -> float:
        return self._probe_timeouts.get(provider_id, self.DEFAULT_PROBE_TIMEOUT)

    # ============================================================
    # Reads
    # ============================================================

    def current_status(self, provider_id: str) -> ProviderHealth:
        """
        Last known health (a copy). Unknown providers read as healthy.
        """
        with self._lock:
            health = self._health.get(provider_id)
            if health is None:
                return ProviderHealth(provider_id=provider_id)
            return replace(health)

    def statuses(self) -> Dict[str, HealthStatus]:
        """Status of every registered provider."""
        with self._lock:
            return {pid: health.status for pid, health in self._health.items()}

    def healthy_providers(self) -> List[str]:
        """Providers currently reported healthy."""
        with self._lock:
            return [pid for pid, health in self._health.items() if health.is_healthy]

    def history(self, provider_id: str) -> List[ProviderHealth]:
        """Recent health snapshots for a provider, oldest first."""
        with self._lock:
            return list(self._history.get(provider_id, ()))

    def summary(self) -> Dict[str, Any]:
        """Counts per status plus every provider's last known health."""
        with self._lock:
            counts = {status.value: 0 for status in HealthStatus}
            for health in self._health.values():
                counts[health.status.value] += 1
            checked = [h.last_checked_at for h in self._health.values() if h.last_checked_at]
            return {
                "total": len(self._health),
                **counts,
                "last_check": max(checked) if checked else None,
                "providers": {pid: health.to_dict() for pid, health in self._health.items()},
            }

    # ============================================================
    # Writes
    # ============================================================

    def _update(
        self,
        provider_id: str,
        success: bool,
        detail: str,
        response_time_ms: Optional[int],
    ) -> ProviderHealth:
        with self._lock:
            current = self._health.get(provider_id) or ProviderHealth(provider_id=provider_id)
            previous = current.status

            if success:
                failures = 0
                status = HealthStatus.HEALTHY
            else:
                failures = current.consecutive_failures + 1
                if failures >= self.unhealthy_threshold:
                    status = HealthStatus.UNHEALTHY
                else:
                    status = HealthStatus.DEGRADED

            updated = ProviderHealth(
                provider_id=provider_id,
                status=status,
                last_checked_at=time.time(),
                last_response_time_ms=(
                    response_time_ms if response_time_ms is not None else current.last_response_time_ms
                ),
                detail=detail,
                consecutive_failures=failures,
            )
            self._health[provider_id] = updated
            self._history.setdefault(provider_id, deque(maxlen=self.history_size)).append(updated)

        if previous != status:
            self.sink.health_changed(previous, replace(updated))
        return replace(updated)

    def record_success(
        self,
        provider_id: str,
        response_time_ms: Optional[int] = None,
        detail: str = "ok"
    ) -> ProviderHealth:
        """A probe or live call succeeded."""
        return self._update(provider_id, True, detail, response_time_ms)

    def record_failure(
        self,
        provider_id: str,
        detail: str = "",
        response_time_ms: Optional[int] = None
    ) -> ProviderHealth:
        """A probe or live call failed."""
        return self._update(provider_id, False, detail, response_time_ms)

    # ============================================================
    # Probing
    # ============================================================

    async def probe(self, provider_id: str) -> ProviderHealth:
        """
        Run a health check now and fold the result into the status.

        Raises:
            KeyError: If no adapter is registered under ``provider_id``
        """
        with self._lock:
            adapter = self._adapters[provider_id]
        timeout = self._probe_timeout(provider_id)

        start = time.perf_counter()
        async with TimedOperation("health_probe", logger, extra={"provider": provider_id}):
            try:
                result = await asyncio.wait_for(adapter.health_check(), timeout=timeout)
            except asyncio.TimeoutError:
                result = ProviderHealth(
                    provider_id=provider_id,
                    status=HealthStatus.UNHEALTHY,
                    detail=f"health check timed out after {timeout:g}s",
                )
            except Exception as e:
                result = ProviderHealth(
                    provider_id=provider_id,
                    status=HealthStatus.UNHEALTHY,
                    detail=f"{e.__class__.__name__}: {e}",
                )
        elapsed = time.perf_counter() - start

        response_time_ms = result.last_response_time_ms
        if response_time_ms is None:
            response_time_ms = int(elapsed * 1000)

        success = result.status == HealthStatus.HEALTHY
        self.sink.health_checked(provider_id, success, elapsed)
        if success:
            return self.record_success(provider_id, response_time_ms, result.detail or "ok")
        return self.record_failure(provider_id, result.detail, response_time_ms)

    def trigger_probe(self, provider_id: str) -> Optional[asyncio.Task]:
        """
        Schedule an out-of-band probe without waiting for it.

        At most one triggered probe per provider is in flight.
        """
        with self._lock:
            if provider_id not in self._adapters:
                return None
            task = self._inflight.get(provider_id)
            if task is not None and not task.done():
                return task
            task = asyncio.get_running_loop().create_task(self._safe_probe(provider_id))
            self._inflight[provider_id] = task

        task.add_done_callback(lambda _: self._inflight.pop(provider_id, None))
        return task

    async def _safe_probe(self, provider_id: str):
        try:
            await self.probe(provider_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Health probe crashed", provider=provider_id, error=str(e))

    async def _probe_loop(self, provider_id: str, interval: float):
        while True:
            await self._safe_probe(provider_id)
            await asyncio.sleep(interval)

    def start_background_probing(self, interval: float):
        """
        Probe every registered provider every ``interval`` seconds.

        Calling it again replaces the running loops.
        """
        self._cancel_background()
        loop = asyncio.get_running_loop()
        for provider_id in self.providers:
            self._background[provider_id] = loop.create_task(self._probe_loop(provider_id, interval))
        logger.info(
            "Background health probing started",
            interval_seconds=interval,
            providers=list(self._background),
        )

    def _cancel_background(self) -> List[asyncio.Task]:
        tasks = list(self._background.values()) + list(self._inflight.values())
        for task in tasks:
            task.cancel()
        self._background.clear()
        return tasks

    @property
    def is_probing(self) -> bool:
        return any(not task.done() for task in self._background.values())

    async def stop(self):
        """Cancel background and in-flight probes and wait for them."""
        tasks = self._cancel_background()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

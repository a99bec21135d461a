"""
AI Routing Engine - Router Service

Routes canonical requests across provider adapters with:
- Candidate resolution (provider-qualified or logical model routes)
- Health-aware ordering (unhealthy candidates go last, never dropped)
- Sequential failover under a per-attempt timeout and an overall deadline
- Streaming with semantic drift protection (no failover after content)
- Cost attached to every response
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple

from ..adapters.base import ProviderAdapter
from ..core.config import EngineConfig
from ..core.errors import (
    ProviderError,
    ProviderErrorKind,
    RoutingError,
    RoutingErrorKind,
    StreamError,
    StreamErrorKind,
    UnknownPricing,
)
from ..core.models import (
    AttemptOutcome,
    CanonicalRequest,
    CanonicalResponse,
    ResponseMetadata,
    RoutingAttempt,
    Usage,
    attempted_providers,
    new_request_id,
)
from ..observability.logging import LogContext, get_logger
from ..observability.sink import NullSink, ObservabilitySink
from ..streaming.normalizer import StreamDelta, StreamEvent, StreamSummary
from ..usage.estimator import estimate_prompt_tokens
from ..usage.pricing import PriceTable
from .fallback import Candidate, CandidateResolver, RequestPhaseTracker, order_by_health
from .health import HealthMonitor

logger = get_logger("routing_engine.router")


@dataclass
class RouterStats:
    """Aggregate routing counters."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    fallbacks_used: int = 0
    provider_selections: Dict[str, int] = field(default_factory=dict)

    def record_success(self, provider_id: str, fallback_used: bool):
        self.successful_requests += 1
        self.provider_selections[provider_id] = self.provider_selections.get(provider_id, 0) + 1
        if fallback_used:
            self.fallbacks_used += 1

    def record_failure(self):
        self.failed_requests += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "fallbacks_used": self.fallbacks_used,
            "provider_selections": dict(self.provider_selections),
        }


class Router:
    """
    Failover router for AI requests.

    Attempts against the candidates of one request are strictly
    sequential and each candidate is tried at most once.
    """

    # Remaining deadline below this is treated as spent
    MIN_ATTEMPT_SECONDS = 0.001

    def __init__(
        self,
        adapters: Mapping[str, ProviderAdapter],
        config: Optional[EngineConfig] = None,
        health: Optional[HealthMonitor] = None,
        pricing: Optional[PriceTable] = None,
        sink: Optional[ObservabilitySink] = None,
    ):
        """
        Initialize router with provider adapters.

        Args:
            adapters: Provider id -> adapter instance
            config: Routes and time budgets
            health: Shared health monitor (one is created if omitted)
            pricing: Price table for cost attribution
            sink: Receiver of routing events
        """
        self.adapters: Dict[str, ProviderAdapter] = dict(adapters)
        self.config = config or EngineConfig()
        self.sink = sink or NullSink()
        self.health = health or HealthMonitor(
            self.adapters,
            unhealthy_threshold=self.config.routing.unhealthy_threshold,
            history_size=self.config.routing.health_history_size,
            sink=self.sink,
        )
        self.pricing = pricing or PriceTable()
        self.resolver = CandidateResolver(self.config.routing.model_routes, self.adapters)
        self.stats = RouterStats()

    # ============================================================
    # Planning
    # ============================================================

    def validate(self, request: CanonicalRequest):
        """
        Reject requests no provider could serve.

        Raises:
            RoutingError: invalid_request
        """
        problems = []
        if not request.messages:
            problems.append("messages must not be empty")
        if request.max_tokens <= 0:
            problems.append("max_tokens must be positive")
        if not 0.0 <= request.temperature <= 2.0:
            problems.append("temperature must be between 0 and 2")
        if not 0.0 <= request.top_p <= 1.0:
            problems.append("top_p must be between 0 and 1")
        if request.max_cost_usd is not None and request.max_cost_usd < 0:
            problems.append("max_cost_usd must not be negative")

        if problems:
            raise RoutingError(
                RoutingErrorKind.INVALID_REQUEST,
                "; ".join(problems),
                request_id=request.id,
            )

    def resolve_candidates(self, model: str, request_id: str = "") -> List[Candidate]:
        """
        Ordered candidates for a model, unhealthy ones moved last.

        Raises:
            RoutingError: invalid_request if nothing can serve the model
        """
        candidates = self.resolver.resolve(model)
        if not candidates:
            raise RoutingError(
                RoutingErrorKind.INVALID_REQUEST,
                f"No provider available for model '{model}'",
                request_id=request_id,
            )
        return order_by_health(candidates, self.health.statuses())

    def _within_budget(self, request: CanonicalRequest, candidates: List[Candidate]) -> List[Candidate]:
        """Drop candidates whose worst-case cost exceeds the request's cap."""
        if request.max_cost_usd is None:
            return candidates

        affordable = []
        for candidate in candidates:
            estimate = self.pricing.estimate_max_cost(
                candidate.provider_id,
                candidate.model,
                estimate_prompt_tokens(request.messages, candidate.provider_id),
                request.max_tokens,
            )
            # Unknown pricing never blocks
            if estimate is None or estimate <= request.max_cost_usd:
                affordable.append(candidate)
            else:
                logger.info(
                    "Skipping candidate over budget",
                    request_id=request.id,
                    provider=candidate.provider_id,
                    model=candidate.model,
                    estimated_cost_usd=round(estimate, 6),
                    max_cost_usd=request.max_cost_usd,
                )

        if not affordable:
            raise RoutingError(
                RoutingErrorKind.BUDGET_EXCEEDED,
                f"Every candidate for '{request.model}' exceeds the cost cap of ${request.max_cost_usd}",
                request_id=request.id,
            )
        return affordable

    def _plan(self, request: CanonicalRequest) -> List[Candidate]:
        self.validate(request)
        candidates = self.resolve_candidates(request.model, request.id)
        return self._within_budget(request, candidates)

    # ============================================================
    # Bookkeeping
    # ============================================================

    @staticmethod
    def _log_context(request: CanonicalRequest) -> LogContext:
        return LogContext(request_id=request.id, user_id=request.user_id, model=request.model)

    def _attempt_budget(self, provider_id: str, deadline: float) -> Tuple[float, float]:
        """(configured attempt timeout, timeout capped by the deadline)."""
        configured = self.config.attempt_timeout_for(provider_id)
        remaining = deadline - asyncio.get_running_loop().time()
        return configured, min(configured, remaining)

    def _record_attempt_failure(
        self,
        request: CanonicalRequest,
        attempt: RoutingAttempt,
        error: ProviderError
    ):
        outcome = AttemptOutcome.TIMEOUT if error.kind == ProviderErrorKind.TIMEOUT else AttemptOutcome.ERROR
        attempt.finish(outcome, error.kind.value)
        self.sink.attempt_finished(request, attempt)
        if error.kind.allows_failover:
            self.health.record_failure(attempt.provider_id, str(error), attempt.duration_ms)
            self.health.trigger_probe(attempt.provider_id)

    def _record_attempt_success(self, request: CanonicalRequest, attempt: RoutingAttempt):
        attempt.finish(AttemptOutcome.SUCCESS)
        self.sink.attempt_finished(request, attempt)
        self.health.record_success(attempt.provider_id, attempt.duration_ms)

    def _cost(
        self,
        request: CanonicalRequest,
        usage: Usage,
        provider_id: str,
        models: List[str]
    ) -> Optional[float]:
        """Cost of the call; None (and an event) when the model is unpriced."""
        for model in models:
            try:
                return self.pricing.cost(usage, provider_id, model)
            except UnknownPricing:
                continue
        self.sink.pricing_unavailable(request, provider_id, models[0] if models else "")
        return None

    def _invalid_request(
        self,
        request: CanonicalRequest,
        attempts: List[RoutingAttempt],
        error: ProviderError
    ) -> RoutingError:
        return RoutingError(
            RoutingErrorKind.INVALID_REQUEST,
            f"{error.provider_id} rejected the request ({error.kind.value}): {error}",
            attempts=[(a.provider_id, a.error_kind or "") for a in attempts],
            request_id=request.id,
        )

    def _exhausted(
        self,
        request: CanonicalRequest,
        attempts: List[RoutingAttempt],
        deadline_exceeded: bool
    ) -> RoutingError:
        if deadline_exceeded:
            message = f"Request deadline of {self.config.request_deadline:g}s exceeded after {len(attempts)} attempt(s)"
        else:
            message = f"All {len(attempts)} provider attempt(s) failed"
        return RoutingError(
            RoutingErrorKind.ALL_PROVIDERS_FAILED,
            message,
            attempts=[(a.provider_id, a.error_kind or "") for a in attempts],
            request_id=request.id,
            deadline_exceeded=deadline_exceeded,
        )

    def _fail(
        self,
        request: CanonicalRequest,
        attempts: List[RoutingAttempt],
        error: BaseException,
        start: float
    ):
        self.stats.record_failure()
        self.sink.request_finished(
            request,
            attempts[-1].provider_id if attempts else "",
            request.model,
            "error",
            time.perf_counter() - start,
            error=error,
        )

    # ============================================================
    # Non-streaming
    # ============================================================

    async def route(self, request: CanonicalRequest) -> CanonicalResponse:
        """
        Route a request and return the first successful response.

        Streaming requests are consumed to completion and assembled.

        Raises:
            RoutingError: all_providers_failed, budget_exceeded or invalid_request
            StreamError: terminal, when a stream broke after delivering content
        """
        token = LogContext.set_current(self._log_context(request))
        try:
            if request.stream:
                return await self._collect_stream(request)
            return await self._route(request)
        finally:
            LogContext.reset(token)

    async def _route(self, request: CanonicalRequest) -> CanonicalResponse:
        start = time.perf_counter()
        self.stats.total_requests += 1

        try:
            candidates = self._plan(request)
        except RoutingError as e:
            self._fail(request, [], e, start)
            raise

        self.sink.request_started(request, [c.qualified_model for c in candidates])

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.request_deadline
        attempts: List[RoutingAttempt] = []
        last_error: Optional[ProviderError] = None
        deadline_exceeded = False

        with self.sink.span("route", request_id=request.id, model=request.model):
            for candidate in candidates:
                configured, timeout = self._attempt_budget(candidate.provider_id, deadline)
                if timeout < self.MIN_ATTEMPT_SECONDS:
                    deadline_exceeded = True
                    break

                if last_error is not None:
                    self.sink.failover(request, attempts[-1].provider_id, candidate.provider_id, last_error.kind.value)

                attempt = RoutingAttempt(
                    provider_id=candidate.provider_id,
                    model=candidate.model,
                    request_id=new_request_id(candidate.provider_id),
                )
                attempts.append(attempt)
                adapter = self.adapters[candidate.provider_id]

                try:
                    with self.sink.span("attempt", provider=candidate.provider_id, model=candidate.model):
                        response = await asyncio.wait_for(
                            adapter.process(
                                request.with_model(candidate.qualified_model),
                                request_id=attempt.request_id,
                            ),
                            timeout=timeout,
                        )
                except asyncio.TimeoutError as e:
                    last_error = ProviderError.timeout(candidate.provider_id, attempt.request_id, timeout)
                    last_error.__cause__ = e
                    if timeout < configured:
                        deadline_exceeded = True
                except ProviderError as e:
                    last_error = e
                except Exception as e:
                    last_error = ProviderError(
                        ProviderErrorKind.UNKNOWN,
                        candidate.provider_id,
                        message=f"{e.__class__.__name__}: {e}",
                        request_id=attempt.request_id,
                    )
                    last_error.__cause__ = e
                else:
                    self._record_attempt_success(request, attempt)
                    return self._finalize(request, response, candidate, attempts, start)

                self._record_attempt_failure(request, attempt, last_error)

                if not last_error.kind.allows_failover:
                    error = self._invalid_request(request, attempts, last_error)
                    self._fail(request, attempts, error, start)
                    raise error from last_error

        error = self._exhausted(request, attempts, deadline_exceeded)
        self._fail(request, attempts, error, start)
        raise error from last_error

    def _finalize(
        self,
        request: CanonicalRequest,
        response: CanonicalResponse,
        candidate: Candidate,
        attempts: List[RoutingAttempt],
        start: float
    ) -> CanonicalResponse:
        """Stamp routing metadata, cost and end-to-end time."""
        cost = self._cost(request, response.usage, candidate.provider_id, [response.model, candidate.model])
        fallback_used = len(attempts) > 1

        response.metadata = ResponseMetadata(
            request_id=attempts[-1].request_id,
            streaming=False,
            fallback_used=fallback_used,
            attempted_providers=attempted_providers(attempts),
            cost_usd=cost,
            cost_available=cost is not None,
        )
        duration = time.perf_counter() - start
        response.response_time_ms = int(duration * 1000)

        self.stats.record_success(candidate.provider_id, fallback_used)
        self.sink.request_finished(
            request,
            candidate.provider_id,
            response.model,
            "success",
            duration,
            usage=response.usage,
            cost_usd=cost,
        )
        return response

    # ============================================================
    # Streaming
    # ============================================================

    async def route_stream(self, request: CanonicalRequest) -> AsyncIterator[StreamEvent]:
        """
        Route a streaming request.

        Yields StreamDelta items and ends with one StreamSummary carrying
        usage, cost and routing metadata. Failover happens only while no
        content has reached the caller; after that a failure raises
        StreamError(terminal) with the partial content.

        Raises:
            RoutingError: all_providers_failed, budget_exceeded or invalid_request
            StreamError: terminal
        """
        previous = LogContext.get_current()
        LogContext.set_current(self._log_context(request))
        stream = self._route_stream(request)
        try:
            async for event in stream:
                yield event
        finally:
            await stream.aclose()
            LogContext.set_current(previous)

    async def _route_stream(self, request: CanonicalRequest) -> AsyncIterator[StreamEvent]:
        start = time.perf_counter()
        self.stats.total_requests += 1

        try:
            candidates = self._plan(request)
        except RoutingError as e:
            self._fail(request, [], e, start)
            raise

        self.sink.request_started(request, [c.qualified_model for c in candidates])

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.request_deadline
        tracker = RequestPhaseTracker(request.id)
        attempts: List[RoutingAttempt] = []
        last_error: Optional[ProviderError] = None
        deadline_exceeded = False

        with self.sink.span("route", request_id=request.id, model=request.model, streaming=True):
            for candidate in candidates:
                configured, timeout = self._attempt_budget(candidate.provider_id, deadline)
                if timeout < self.MIN_ATTEMPT_SECONDS:
                    deadline_exceeded = True
                    break

                if last_error is not None:
                    self.sink.failover(request, attempts[-1].provider_id, candidate.provider_id, last_error.kind.value)

                attempt = RoutingAttempt(
                    provider_id=candidate.provider_id,
                    model=candidate.model,
                    request_id=new_request_id(candidate.provider_id),
                )
                attempts.append(attempt)
                adapter = self.adapters[candidate.provider_id]
                attempt_deadline = loop.time() + timeout

                summary: Optional[StreamSummary] = None
                error: Optional[ProviderError] = None
                with self.sink.span("attempt", provider=candidate.provider_id, model=candidate.model):
                    stream = adapter.stream(
                        request.with_model(candidate.qualified_model),
                        request_id=attempt.request_id,
                    )
                    try:
                        while True:
                            if tracker.can_fallback():
                                read_timeout = attempt_deadline - loop.time()
                            else:
                                # Idle timeout per read, capped by the request deadline
                                read_timeout = min(configured, deadline - loop.time())
                            if read_timeout <= 0:
                                raise asyncio.TimeoutError()
                            try:
                                event = await asyncio.wait_for(stream.__anext__(), timeout=read_timeout)
                            except StopAsyncIteration:
                                break

                            if isinstance(event, StreamDelta):
                                if not event.text:
                                    continue
                                if tracker.can_fallback():
                                    self.sink.first_delta(request, candidate.provider_id, time.perf_counter() - start)
                                tracker.record_delivery(event.text)
                                yield event
                            else:
                                summary = event
                                break
                    except asyncio.TimeoutError as e:
                        budget = timeout if tracker.can_fallback() else min(configured, self.config.request_deadline)
                        error = ProviderError.timeout(candidate.provider_id, attempt.request_id, budget)
                        error.__cause__ = e
                        if tracker.can_fallback() and timeout < configured:
                            deadline_exceeded = True
                    except ProviderError as e:
                        error = e
                    except Exception as e:
                        error = ProviderError(
                            ProviderErrorKind.UNKNOWN,
                            candidate.provider_id,
                            message=f"{e.__class__.__name__}: {e}",
                            request_id=attempt.request_id,
                        )
                        error.__cause__ = e
                    finally:
                        await stream.aclose()

                if error is None:
                    if summary is None:
                        error = ProviderError(
                            ProviderErrorKind.UNKNOWN,
                            candidate.provider_id,
                            message="stream ended without a summary",
                            request_id=attempt.request_id,
                        )
                    elif summary.failed:
                        error = ProviderError(
                            summary.error_kind or ProviderErrorKind.UPSTREAM_5XX,
                            candidate.provider_id,
                            message=summary.error_message or "stream broke mid-flight",
                            request_id=attempt.request_id,
                        )

                if error is None:
                    self._record_attempt_success(request, attempt)
                    tracker.mark_completed()
                    yield self._finalize_stream(request, summary, candidate, attempts, tracker, start)
                    return

                last_error = error
                self._record_attempt_failure(request, attempt, error)

                if not tracker.can_fallback():
                    stream_error = StreamError(
                        StreamErrorKind.TERMINAL,
                        candidate.provider_id,
                        message=f"Stream from {candidate.provider_id} failed after content was delivered: {error}",
                        partial_content=tracker.partial_content,
                        error_kind=error.kind.value,
                        request_id=attempt.request_id,
                    )
                    self._fail(request, attempts, stream_error, start)
                    raise stream_error from error

                if not error.kind.allows_failover:
                    routing_error = self._invalid_request(request, attempts, error)
                    self._fail(request, attempts, routing_error, start)
                    raise routing_error from error

        routing_error = self._exhausted(request, attempts, deadline_exceeded)
        self._fail(request, attempts, routing_error, start)
        raise routing_error from last_error

    def _finalize_stream(
        self,
        request: CanonicalRequest,
        summary: StreamSummary,
        candidate: Candidate,
        attempts: List[RoutingAttempt],
        tracker: RequestPhaseTracker,
        start: float
    ) -> StreamSummary:
        cost = self._cost(request, summary.usage, candidate.provider_id, [summary.model, candidate.model])
        fallback_used = len(attempts) > 1
        duration = time.perf_counter() - start

        final = replace(
            summary,
            provider=candidate.provider_id,
            content=tracker.partial_content,
            chunks=tracker.chunks_delivered,
            response_time_ms=int(duration * 1000),
            cost_usd=cost,
            metadata=ResponseMetadata(
                request_id=attempts[-1].request_id,
                streaming=True,
                fallback_used=fallback_used,
                attempted_providers=attempted_providers(attempts),
                cost_usd=cost,
                cost_available=cost is not None,
            ),
        )

        self.stats.record_success(candidate.provider_id, fallback_used)
        self.sink.request_finished(
            request,
            candidate.provider_id,
            final.model,
            "success",
            duration,
            usage=final.usage,
            cost_usd=cost,
        )
        return final

    async def _collect_stream(self, request: CanonicalRequest) -> CanonicalResponse:
        """Consume ``route_stream`` to completion into one response."""
        parts: List[str] = []
        summary: Optional[StreamSummary] = None

        stream = self.route_stream(request)
        try:
            async for event in stream:
                if isinstance(event, StreamDelta):
                    parts.append(event.text)
                else:
                    summary = event
        finally:
            await stream.aclose()

        metadata = summary.metadata or ResponseMetadata(request_id=request.id, streaming=True)
        return CanonicalResponse(
            id=metadata.request_id,
            provider=summary.provider,
            model=summary.model,
            content="".join(parts),
            usage=summary.usage,
            finish_reason=summary.finish_reason,
            response_time_ms=summary.response_time_ms,
            metadata=metadata,
        )

    # ============================================================
    # Introspection
    # ============================================================

    def get_stats(self) -> Dict[str, Any]:
        """Routing counters plus the health summary."""
        return {
            **self.stats.to_dict(),
            "providers": sorted(self.adapters),
            "models": self.resolver.known_models(),
            "health": self.health.summary(),
        }

"""
AI Routing Engine - Provider Adapter Contract

Every provider implements the ``ProviderAdapter`` capability protocol
independently. The helpers below are plain functions the adapters compose;
there is no shared base class state.

The adapter is responsible for:
1. Converting the canonical request to the provider's wire format
2. Making the API call under its own timeout
3. Converting the provider response (or stream) back to canonical form
4. Mapping provider errors to canonical ProviderError kinds
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Tuple,
    Type,
    TypeVar,
    runtime_checkable,
)

import httpx
from pydantic import BaseModel, ValidationError

from ..core.config import ProviderSettings
from ..core.errors import (
    ProviderError,
    ProviderErrorKind,
    error_from_response,
    error_from_transport,
)
from ..core.models import (
    CanonicalRequest,
    CanonicalResponse,
    HealthStatus,
    Message,
    ProviderHealth,
    Role,
)
from ..streaming.normalizer import StreamEvent

SchemaT = TypeVar("SchemaT", bound=BaseModel)
ErrorMessageFn = Callable[[httpx.Response], str]


@dataclass
class AdapterConfig:
    """Configuration for a provider adapter."""
    provider_id: str
    api_key: str
    base_url: Optional[str] = None
    timeout: float = 30.0
    health_check_timeout: float = 5.0
    api_version: Optional[str] = None
    max_connections: int = 10
    max_keepalive_connections: int = 5
    max_retries: int = 0
    health_check_model: Optional[str] = None

    @classmethod
    def from_settings(cls, provider_id: str, settings: ProviderSettings) -> "AdapterConfig":
        return cls(
            provider_id=provider_id,
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            health_check_timeout=settings.health_check_timeout_seconds,
            api_version=settings.api_version,
            max_connections=settings.max_connections,
            max_keepalive_connections=settings.max_keepalive_connections,
            max_retries=settings.max_retries,
            health_check_model=settings.health_check_model,
        )


@runtime_checkable
class ProviderAdapter(Protocol):
    """Capabilities the router needs from a provider."""

    provider_id: str

    async def process(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> CanonicalResponse:
        """
        Run a non-streaming completion.

        Raises:
            ProviderError: On any non-recoverable condition
        """
        ...

    def stream(
        self,
        request: CanonicalRequest,
        request_id: Optional[str] = None
    ) -> AsyncIterator[StreamEvent]:
        """
        Run a streaming completion.

        Yields StreamDelta items and ends with one StreamSummary. Errors
        before the stream opens raise ProviderError; a broken stream ends
        with a summary marked failed.
        """
        ...

    async def health_check(self) -> ProviderHealth:
        """Probe reachability; reports degraded/unhealthy instead of raising."""
        ...

    async def close(self) -> None:
        ...


# ============================================================
# HTTP helpers
# ============================================================

def build_client(
    config: AdapterConfig,
    base_url: str,
    headers: Dict[str, str],
    transport: Optional[httpx.AsyncBaseTransport] = None,
    params: Optional[Dict[str, str]] = None
) -> httpx.AsyncClient:
    """
    HTTP client owned by one adapter.

    The connection pool bounds outbound concurrency per provider.
    """
    limits = httpx.Limits(
        max_connections=config.max_connections,
        max_keepalive_connections=config.max_keepalive_connections,
    )
    if transport is None:
        transport = httpx.AsyncHTTPTransport(limits=limits, retries=config.max_retries)
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        params=params,
        timeout=httpx.Timeout(config.timeout),
        limits=limits,
        transport=transport,
    )


def decode_body(
    schema: Type[SchemaT],
    response: httpx.Response,
    provider_id: str,
    request_id: str = ""
) -> SchemaT:
    """Decode a successful response through the adapter's wire schema."""
    try:
        return schema.model_validate_json(response.content)
    except ValidationError as e:
        raise ProviderError(
            ProviderErrorKind.UNKNOWN,
            provider_id,
            message=f"Unexpected {provider_id} response shape: {e.error_count()} validation errors",
            status_code=response.status_code,
            request_id=request_id,
        ) from e


def error_message(schema: Type[BaseModel], response: httpx.Response, extract: Callable[[Any], Optional[str]]) -> str:
    """Vendor error text from an already-read error body, or empty."""
    try:
        envelope = schema.model_validate_json(response.content)
    except ValidationError:
        return response.text[:500] if response.content else ""
    return extract(envelope) or ""


async def post_json(
    client: httpx.AsyncClient,
    path: str,
    payload: Dict[str, Any],
    *,
    provider_id: str,
    request_id: str,
    timeout: float,
    describe_error: ErrorMessageFn,
) -> Tuple[httpx.Response, int]:
    """
    POST a JSON payload bounded by ``timeout``.

    The timeout cancels the in-flight request. Error bodies are read in
    full before the ProviderError is raised.

    Returns:
        The successful response and its latency in milliseconds
    """
    start = time.perf_counter()
    try:
        response = await asyncio.wait_for(client.post(path, json=payload), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ProviderError.timeout(provider_id, request_id, timeout) from e
    except httpx.TransportError as e:
        raise error_from_transport(provider_id, e, request_id) from e

    if not response.is_success:
        raise error_from_response(provider_id, response, request_id, describe_error(response))

    return response, int((time.perf_counter() - start) * 1000)


@asynccontextmanager
async def open_stream(
    client: httpx.AsyncClient,
    path: str,
    payload: Dict[str, Any],
    *,
    provider_id: str,
    request_id: str,
    timeout: float,
    describe_error: ErrorMessageFn,
) -> AsyncIterator[httpx.Response]:
    """
    Open a streaming POST and yield the response once headers arrived.

    Non-2xx responses are drained and raised as ProviderError; the
    connection is always released on exit.
    """
    request = client.build_request("POST", path, json=payload)
    try:
        response = await asyncio.wait_for(client.send(request, stream=True), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ProviderError.timeout(provider_id, request_id, timeout) from e
    except httpx.TransportError as e:
        raise error_from_transport(provider_id, e, request_id) from e

    try:
        if not response.is_success:
            await response.aread()
            raise error_from_response(provider_id, response, request_id, describe_error(response))
        yield response
    finally:
        await response.aclose()


async def probe_endpoint(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    *,
    provider_id: str,
    timeout: float,
    json: Optional[Dict[str, Any]] = None
) -> ProviderHealth:
    """
    Health probe: 2xx is healthy, any other status is degraded, and a
    transport failure or timeout is unhealthy. Never raises.
    """
    start = time.perf_counter()
    try:
        response = await asyncio.wait_for(
            client.request(method, path, json=json, timeout=timeout),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        return ProviderHealth(
            provider_id=provider_id,
            status=HealthStatus.UNHEALTHY,
            last_checked_at=time.time(),
            last_response_time_ms=int((time.perf_counter() - start) * 1000),
            detail=f"health check timed out after {timeout:g}s",
        )
    except Exception as e:
        return ProviderHealth(
            provider_id=provider_id,
            status=HealthStatus.UNHEALTHY,
            last_checked_at=time.time(),
            last_response_time_ms=int((time.perf_counter() - start) * 1000),
            detail=f"{e.__class__.__name__}: {e}",
        )

    latency_ms = int((time.perf_counter() - start) * 1000)
    if response.is_success:
        return ProviderHealth(
            provider_id=provider_id,
            status=HealthStatus.HEALTHY,
            last_checked_at=time.time(),
            last_response_time_ms=latency_ms,
            detail="ok",
        )
    return ProviderHealth(
        provider_id=provider_id,
        status=HealthStatus.DEGRADED,
        last_checked_at=time.time(),
        last_response_time_ms=latency_ms,
        detail=f"HTTP {response.status_code}",
    )


# ============================================================
# Message helpers
# ============================================================

def split_system_messages(messages: List[Message]) -> Tuple[Optional[str], List[Message]]:
    """
    Hoist system messages out of the conversation.

    The first system message becomes the system prompt; any later system
    messages are appended to it in order. Other messages keep their order.
    """
    system_parts: List[str] = []
    conversation: List[Message] = []

    for message in messages:
        if message.role == Role.SYSTEM:
            system_parts.append(message.content)
        else:
            conversation.append(message)

    if not system_parts:
        return None, conversation
    return "\n\n".join(system_parts), conversation

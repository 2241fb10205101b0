import asyncio
from typing import Dict
from weakref import WeakKeyDictionary

import httpx
from fastapi import Depends
from redis.asyncio import Redis

from .mcp.connector import ToolConnector
from .provider.config import ModelConfigProvider, SettingsModelConfigProvider
from .provider.llm_client import LLMClient
from .redis_client import get_redis_client
from .services.conversation_service import ConversationService
from .sessions.resolver import SessionResolver
from .sessions.transport_registry import TransportRegistry, default_registry
from .settings import settings

# Model calls reuse one connection pool per event loop instead of opening a
# client per request.
_http_clients_by_loop: "WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, httpx.AsyncClient]]" = (
    WeakKeyDictionary()
)

_model_config_provider = SettingsModelConfigProvider()


def _shared_client(purpose: str, timeout: float) -> httpx.AsyncClient:
    loop = asyncio.get_running_loop()
    clients = _http_clients_by_loop.setdefault(loop, {})
    client = clients.get(purpose)
    if client is None or client.is_closed:
        client = httpx.AsyncClient(timeout=timeout)
        clients[purpose] = client
    return client


async def close_http_clients() -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:  # pragma: no cover - called outside a loop
        return
    clients = _http_clients_by_loop.pop(loop, {})
    for client in clients.values():
        await client.aclose()


async def get_redis() -> Redis:
    """
    FastAPI dependency that provides a shared Redis client.

    Tests override this dependency with an in-memory fake.
    """
    return get_redis_client()


async def get_http_client() -> httpx.AsyncClient:
    """
    Shared AsyncClient for model completion calls.
    """
    return _shared_client("llm", settings.upstream_timeout)


def get_transport_registry() -> TransportRegistry:
    return default_registry


def get_model_config_provider() -> ModelConfigProvider:
    return _model_config_provider


def get_tool_connector() -> ToolConnector:
    return ToolConnector()


def get_session_resolver(
    redis: Redis = Depends(get_redis),
    registry: TransportRegistry = Depends(get_transport_registry),
    connector: ToolConnector = Depends(get_tool_connector),
) -> SessionResolver:
    return SessionResolver(redis, registry, connector)


def get_conversation_service(
    redis: Redis = Depends(get_redis),
    client: httpx.AsyncClient = Depends(get_http_client),
    registry: TransportRegistry = Depends(get_transport_registry),
    connector: ToolConnector = Depends(get_tool_connector),
    config_provider: ModelConfigProvider = Depends(get_model_config_provider),
) -> ConversationService:
    return ConversationService(
        redis=redis,
        llm=LLMClient(client),
        registry=registry,
        connector=connector,
        config_provider=config_provider,
    )

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar, runtime_checkable

import httpx
from mcp import ClientSession
from mcp.shared.exceptions import McpError
from mcp.types import Implementation

from toolchat.errors import TransportError
from toolchat.logging_config import logger
from toolchat.settings import settings

CLIENT_INFO = Implementation(name="toolchat-gateway", version="0.1.0")

T = TypeVar("T")


class ToolProviderError(TransportError):
    """
    The tool provider answered with a JSON-RPC error or an unusable payload.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        data: Any = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if code is not None:
            details["code"] = code
        if data is not None:
            details["data"] = data
        super().__init__(message, details=details or None)
        self.code = code
        self.data = data


@runtime_checkable
class ToolTransport(Protocol):
    """
    Live, process-local handle to a tool provider.
    """

    @property
    def transport_id(self) -> Optional[str]: ...

    @property
    def reconnectable(self) -> bool: ...

    async def initialize(self) -> Dict[str, Any]: ...

    async def list_tools(self) -> List[Dict[str, Any]]: ...

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any: ...

    async def aclose(self) -> None: ...


def _leaf_exception(exc: BaseException) -> BaseException:
    # anyio task groups wrap failures in exception groups.
    while True:
        inner = getattr(exc, "exceptions", None)
        if not isinstance(inner, (list, tuple)) or not inner:
            return exc
        exc = inner[0]


def as_provider_error(exc: BaseException, action: str) -> ToolProviderError:
    leaf = _leaf_exception(exc)
    if isinstance(leaf, ToolProviderError):
        return leaf
    if isinstance(leaf, McpError):
        return ToolProviderError(
            leaf.error.message or f"{action} failed",
            code=leaf.error.code,
            data=leaf.error.data,
        )
    if isinstance(leaf, httpx.HTTPStatusError):
        return ToolProviderError(
            f"Tool provider HTTP error {leaf.response.status_code}",
            code=leaf.response.status_code,
        )
    if isinstance(leaf, httpx.HTTPError):
        return ToolProviderError(f"Tool provider unreachable: {leaf}")
    return ToolProviderError(f"{action} failed: {leaf or leaf.__class__.__name__}")


def raise_for_tool_error(name: str, result: Any) -> Any:
    """
    MCP reports tool-level failures as `isError: true` inside a successful
    response; surface them as exceptions so the sequencer marks the call failed.
    """
    if isinstance(result, dict) and result.get("isError") is True:
        text_parts: List[str] = []
        content = result.get("content")
        if isinstance(content, list):
            for item in content:
                if isinstance(item, dict) and isinstance(item.get("text"), str):
                    text_parts.append(item["text"])
        message = "\n".join(text_parts) or f"Tool {name} reported an error"
        raise ToolProviderError(message, data=result)
    return result


class SessionTransport:
    """
    A tool transport backed by one `mcp.ClientSession`.

    The SDK's client contexts run anyio task groups, which must be entered
    and left by the same task, while a transport lives in the registry
    across requests. Each transport therefore owns a background task that
    opens the streams, initializes the session and then parks until
    `aclose()`. Requests from any task go through the live session.

    A transport is used once: after its session ends, every call raises
    ToolProviderError and the caller connects a new one.
    """

    def __init__(self, *, timeout: Optional[float] = None) -> None:
        self.timeout = timeout if timeout is not None else settings.mcp_request_timeout
        self._session: Optional[ClientSession] = None
        self._owner: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self._closed = False

    def describe(self) -> str:
        return "tool provider"

    def _open_streams(self) -> AbstractAsyncContextManager[Tuple[Any, ...]]:
        raise NotImplementedError

    def _streams_opened(self, streams: Tuple[Any, ...]) -> None:
        """Hook for transports that need more than the read/write pair."""

    async def _run(self, ready: "asyncio.Future[Dict[str, Any]]") -> None:
        try:
            async with self._open_streams() as streams:
                self._streams_opened(streams)
                async with ClientSession(
                    streams[0],
                    streams[1],
                    read_timeout_seconds=timedelta(seconds=self.timeout),
                    client_info=CLIENT_INFO,
                ) as session:
                    result = await session.initialize()
                    self._session = session
                    if not ready.done():
                        ready.set_result(
                            result.model_dump(mode="json", by_alias=True, exclude_none=True)
                        )
                    await self._stop.wait()
        except Exception as exc:
            if not ready.done():
                ready.set_exception(exc)
            else:
                logger.warning("mcp: %s session ended: %s", self.describe(), _leaf_exception(exc))
        finally:
            self._session = None
            if not ready.done():
                ready.set_exception(
                    ToolProviderError(f"{self.describe()} closed during the handshake")
                )

    async def initialize(self) -> Dict[str, Any]:
        if self._owner is not None or self._closed:
            raise ToolProviderError(f"{self.describe()} was already started")
        ready: "asyncio.Future[Dict[str, Any]]" = asyncio.get_running_loop().create_future()
        self._owner = asyncio.create_task(self._run(ready))
        try:
            return await asyncio.wait_for(ready, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            await self.aclose()
            raise ToolProviderError(
                f"{self.describe()} did not complete the handshake within {self.timeout:.0f}s"
            ) from exc
        except Exception as exc:
            await self.aclose()
            raise as_provider_error(exc, "initialize") from exc

    async def _call(self, action: str, request: Callable[[ClientSession], Awaitable[T]]) -> T:
        session = self._session
        owner = self._owner
        if self._closed or session is None or owner is None or owner.done():
            raise ToolProviderError(f"{self.describe()} is closed")

        pending = asyncio.ensure_future(request(session))
        try:
            done, _ = await asyncio.wait({pending, owner}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            pending.cancel()
            raise
        if pending not in done:
            pending.cancel()
            raise ToolProviderError(f"{self.describe()} connection was lost during {action}")
        try:
            return pending.result()
        except Exception as exc:
            raise as_provider_error(exc, action) from exc

    async def list_tools(self) -> List[Dict[str, Any]]:
        result = await self._call("tools/list", lambda session: session.list_tools())
        return [tool.model_dump(mode="json", by_alias=True, exclude_none=True) for tool in result.tools]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        result = await self._call("tools/call", lambda session: session.call_tool(name, arguments))
        return raise_for_tool_error(
            name, result.model_dump(mode="json", by_alias=True, exclude_none=True)
        )

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        owner = self._owner
        if owner is None:
            return
        self._stop.set()
        done, _ = await asyncio.wait({owner}, timeout=self.timeout)
        if not done:
            owner.cancel()
            await asyncio.wait({owner})
        logger.info("mcp: closed %s", self.describe())


__all__ = [
    "CLIENT_INFO",
    "SessionTransport",
    "ToolProviderError",
    "ToolTransport",
    "as_provider_error",
    "raise_for_tool_error",
]

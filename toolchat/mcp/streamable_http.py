"""
URL-style tool provider transport (MCP streamable HTTP).

The SDK's `streamablehttp_client` does the wire work: JSON or
`text/event-stream` responses, the `Mcp-Session-Id` echo and the DELETE
that ends a server-side session. Because the handshake is plain HTTP, any
process can redo it from the stored URL, which is what makes this
transport reconnectable.
"""

from __future__ import annotations

import uuid
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
from mcp.client.streamable_http import streamablehttp_client

from toolchat.logging_config import logger

from .base import SessionTransport

# Prefix of ids generated locally when the server issues none; never sent upstream.
LOCAL_SESSION_PREFIX = "http-"


class StreamableHttpTransport(SessionTransport):
    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.url = url
        self.headers = dict(headers or {})
        self._http_transport = http_transport
        self._get_session_id: Optional[Callable[[], Optional[str]]] = None
        self._local_id = f"{LOCAL_SESSION_PREFIX}{uuid.uuid4().hex}"

    @property
    def transport_id(self) -> Optional[str]:
        return self.server_session_id or self._local_id

    @property
    def server_session_id(self) -> Optional[str]:
        return self._get_session_id() if self._get_session_id is not None else None

    @property
    def reconnectable(self) -> bool:
        return True

    def describe(self) -> str:
        return f"tool provider {self.url}"

    def _client_factory(
        self,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[httpx.Timeout] = None,
        auth: Optional[httpx.Auth] = None,
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=headers,
            timeout=timeout if timeout is not None else self.timeout,
            auth=auth,
            transport=self._http_transport,
            follow_redirects=True,
        )

    def _open_streams(self) -> AbstractAsyncContextManager[Tuple[Any, ...]]:
        return streamablehttp_client(
            self.url,
            headers=self.headers or None,
            timeout=timedelta(seconds=self.timeout),
            httpx_client_factory=self._client_factory,
        )

    def _streams_opened(self, streams: Tuple[Any, ...]) -> None:
        self._get_session_id = streams[2]

    async def initialize(self) -> Dict[str, Any]:
        info = await super().initialize()
        if self.server_session_id is None:
            logger.info(
                "streamable_http: %s issued no session id; tracking it as %s",
                self.url,
                self._local_id,
            )
        return info


__all__ = ["LOCAL_SESSION_PREFIX", "StreamableHttpTransport"]

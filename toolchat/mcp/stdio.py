"""
Command-style tool provider transport.

Runs the configured executable through the SDK's `stdio_client`. The child
process lives and dies with its session: if it exits, the transport stays
closed instead of respawning a server that never saw `initialize`. The
handle is never reconnectable from another worker.
"""

from __future__ import annotations

import os
import uuid
from contextlib import AbstractAsyncContextManager
from typing import Any, Dict, List, Optional, Tuple

from mcp import StdioServerParameters
from mcp.client.stdio import stdio_client

from .base import SessionTransport


class StdioTransport(SessionTransport):
    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        *,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.command = command
        self.args = list(args or [])
        self._env = dict(env or {})
        self._transport_id = f"stdio-{uuid.uuid4().hex}"

    @property
    def transport_id(self) -> Optional[str]:
        return self._transport_id

    @property
    def reconnectable(self) -> bool:
        return False

    def describe(self) -> str:
        return f"tool provider '{self.command}'"

    def server_parameters(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.command,
            args=self.args,
            env={**os.environ, **self._env},
        )

    def _open_streams(self) -> AbstractAsyncContextManager[Tuple[Any, ...]]:
        return stdio_client(self.server_parameters())


__all__ = ["StdioTransport"]

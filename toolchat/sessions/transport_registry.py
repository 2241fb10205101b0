"""
Process-local table of live tool transports.

The registry is authoritative only for the process that created the
handles it holds. Another worker (or this one after a restart) simply
finds nothing here, and the session resolver reconnects from the durable
record instead of coordinating across processes.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from toolchat.logging_config import logger
from toolchat.mcp.base import ToolTransport


class TransportRegistry:
    def __init__(self) -> None:
        self._transports: Dict[str, ToolTransport] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._transports

    def __len__(self) -> int:
        return len(self._transports)

    def get(self, session_id: Optional[str]) -> Optional[ToolTransport]:
        if not session_id:
            return None
        return self._transports.get(session_id)

    async def put(self, session_id: str, transport: ToolTransport) -> None:
        """
        Register a live transport; an older handle for the same session is closed.
        """
        previous = self._transports.get(session_id)
        self._transports[session_id] = transport
        if previous is not None and previous is not transport:
            await self._close(session_id, previous)

    def evict(self, session_id: str) -> Optional[ToolTransport]:
        """
        Forget a handle without closing it (the caller owns it afterwards).
        """
        return self._transports.pop(session_id, None)

    async def close(self, session_id: str) -> bool:
        transport = self._transports.pop(session_id, None)
        if transport is None:
            return False
        await self._close(session_id, transport)
        return True

    async def close_all(self) -> None:
        session_ids: List[str] = list(self._transports)
        for session_id in session_ids:
            await self.close(session_id)

    @staticmethod
    async def _close(session_id: str, transport: ToolTransport) -> None:
        try:
            await transport.aclose()
        except Exception as exc:  # pragma: no cover - shutdown best effort
            logger.warning(
                "transport_registry: failed to close transport for session %s: %s",
                session_id,
                exc,
            )


default_registry = TransportRegistry()


__all__ = ["TransportRegistry", "default_registry"]

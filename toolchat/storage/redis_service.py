"""
Durable tool-session records in Redis.

The record is keyed by session id and expires through its TTL when idle.
All writes are whole-record JSON sets of monotonic/idempotent fields, so
two turns racing on the same session at worst lose a last_used update or
cause an extra reconnect; no lock is taken.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

from pydantic import ValidationError
from redis.asyncio import Redis

from toolchat.logging_config import logger
from toolchat.models import ToolSession
from toolchat.redis_client import redis_delete, redis_get_json, redis_set_json
from toolchat.settings import settings

SESSION_KEY_TEMPLATE = "toolchat:session:{session_id}"

# Fields a turn is allowed to patch on an existing record.
_UPDATABLE_FIELDS = frozenset(
    {"transport_id", "tools", "reasoning_state", "system_prompt", "model_ref", "connection"}
)


def _session_key(session_id: str) -> str:
    return SESSION_KEY_TEMPLATE.format(session_id=session_id)


async def get_session(redis: Redis, session_id: str) -> Optional[ToolSession]:
    """
    Load a session record; a missing key is a normal "no session" answer.
    """
    data = await redis_get_json(redis, _session_key(session_id))
    if not data:
        return None
    try:
        return ToolSession.model_validate(data)
    except ValidationError as exc:
        logger.warning("Discarding malformed session record %s: %s", session_id, exc)
        return None


async def set_session(
    redis: Redis, session: ToolSession, *, ttl_seconds: Optional[int] = None
) -> None:
    ttl = ttl_seconds if ttl_seconds is not None else settings.session_ttl_seconds
    await redis_set_json(
        redis, _session_key(session.session_id), session.model_dump(), ttl_seconds=ttl
    )


async def touch_session(
    redis: Redis, session_id: str, *, ts: Optional[float] = None
) -> Optional[ToolSession]:
    """
    Refresh last_used and the TTL; returns the updated record, or None.
    """
    existing = await get_session(redis, session_id)
    if existing is None:
        return None
    session = existing.model_copy()
    session.last_used = max(session.last_used, ts or time.time())
    await set_session(redis, session)
    return session


async def update_session_fields(
    redis: Redis, session_id: str, **fields: Any
) -> Optional[ToolSession]:
    """
    Patch selected fields of an existing record (and refresh its TTL).
    """
    unknown = set(fields) - _UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported session fields: {sorted(unknown)}")
    existing = await get_session(redis, session_id)
    if existing is None:
        return None
    updates: Dict[str, Any] = dict(fields)
    updates["last_used"] = max(existing.last_used, time.time())
    session = existing.model_copy(update=updates)
    await set_session(redis, session)
    return session


async def clear_transport(redis: Redis, session_id: str) -> Optional[ToolSession]:
    """
    Drop the transport pointer after a failed reconnect.

    The record stays so that the caller can still see the session; the
    next turn will try to reconnect again from the stored parameters.
    """
    return await update_session_fields(redis, session_id, transport_id=None)


async def delete_session(redis: Redis, session_id: str) -> bool:
    """
    Delete a session key; returns True if the key existed.
    """
    return await redis_delete(redis, _session_key(session_id))


__all__ = [
    "SESSION_KEY_TEMPLATE",
    "clear_transport",
    "delete_session",
    "get_session",
    "set_session",
    "touch_session",
    "update_session_fields",
]

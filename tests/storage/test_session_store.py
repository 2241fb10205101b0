import json
import time

import pytest

from toolchat.models import ConnectionParams, ReasoningState, ToolDescriptor, ToolSession, build_openai_tools
from toolchat.settings import settings
from toolchat.storage.redis_service import (
    SESSION_KEY_TEMPLATE,
    clear_transport,
    delete_session,
    get_session,
    set_session,
    touch_session,
    update_session_fields,
)


def _session(**overrides) -> ToolSession:
    now = time.time()
    data = dict(
        session_id="s1",
        connection=ConnectionParams(
            kind="url", url="https://tools.example/mcp", headers={"Authorization": "Bearer secret"}
        ),
        tools=[
            ToolDescriptor(
                name="list_files",
                description="List files",
                input_schema={"type": "object", "properties": {"path": {"type": "string"}}},
            ),
            ToolDescriptor(name="bare_tool"),
        ],
        model_ref="default",
        system_prompt="You are helpful.",
        transport_id="mcp-123",
        created_at=now,
        last_used=now,
    )
    data.update(overrides)
    return ToolSession(**data)


@pytest.mark.asyncio
async def test_round_trip_preserves_tool_catalog(redis):
    original = _session()
    await set_session(redis, original)

    loaded = await get_session(redis, "s1")
    assert loaded is not None
    assert build_openai_tools(loaded.tools) == build_openai_tools(original.tools)
    assert loaded.connection == original.connection
    assert redis.ttls[SESSION_KEY_TEMPLATE.format(session_id="s1")] == settings.session_ttl_seconds


@pytest.mark.asyncio
async def test_missing_and_malformed_records_read_as_absent(redis):
    assert await get_session(redis, "nope") is None

    await redis.set(SESSION_KEY_TEMPLATE.format(session_id="bad"), "{not json")
    assert await get_session(redis, "bad") is None

    await redis.set(SESSION_KEY_TEMPLATE.format(session_id="partial"), json.dumps({"session_id": "partial"}))
    assert await get_session(redis, "partial") is None


@pytest.mark.asyncio
async def test_touch_refreshes_last_used(redis):
    await set_session(redis, _session(created_at=100.0, last_used=100.0))

    touched = await touch_session(redis, "s1", ts=200.0)
    assert touched is not None and touched.last_used == 200.0

    # last_used never moves backwards.
    touched = await touch_session(redis, "s1", ts=150.0)
    assert touched.last_used == 200.0

    assert await touch_session(redis, "missing") is None


@pytest.mark.asyncio
async def test_update_fields_and_clear_transport(redis):
    await set_session(redis, _session())

    updated = await update_session_fields(
        redis, "s1", reasoning_state=ReasoningState(name="sequentialthinking", state={"thoughtNumber": 1})
    )
    assert updated.reasoning_state.state == {"thoughtNumber": 1}

    cleared = await clear_transport(redis, "s1")
    assert cleared.transport_id is None
    loaded = await get_session(redis, "s1")
    assert loaded.transport_id is None
    assert loaded.reasoning_state is not None

    with pytest.raises(ValueError):
        await update_session_fields(redis, "s1", created_at=0)

    assert await update_session_fields(redis, "missing", transport_id="x") is None


@pytest.mark.asyncio
async def test_delete_session(redis):
    await set_session(redis, _session())
    assert await delete_session(redis, "s1") is True
    assert await delete_session(redis, "s1") is False
    assert await get_session(redis, "s1") is None


def test_public_view_hides_secrets():
    view = _session().public_view()
    assert "headers" not in view["connection"]
    assert view["connection"]["url"] == "https://tools.example/mcp"
    assert "member" not in view

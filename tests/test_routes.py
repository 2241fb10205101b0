import base64
import json
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from toolchat.deps import (
    get_http_client,
    get_model_config_provider,
    get_redis,
    get_tool_connector,
    get_transport_registry,
)
from toolchat.mcp.connector import ToolConnector
from toolchat.provider.config import SettingsModelConfigProvider, StaticModelConfigProvider
from toolchat.routes import create_app
from toolchat.sessions.transport_registry import TransportRegistry
from toolchat.settings import Settings, settings

URL = "https://tools.example/mcp"
TOKEN = "route-test-token"


def _auth_headers() -> Dict[str, str]:
    encoded = base64.b64encode(TOKEN.encode("utf-8")).decode("ascii")
    return {"Authorization": f"Bearer {encoded}"}


def _sse_payloads(text: str) -> List[Any]:
    payloads: List[Any] = []
    for line in text.splitlines():
        if not line.startswith("data: "):
            continue
        body = line[len("data: ") :]
        payloads.append(body if body == "[DONE]" else json.loads(body))
    return payloads


@pytest.fixture
def gateway(monkeypatch, fakes, redis, model_config):
    monkeypatch.setattr(settings, "api_auth_token", TOKEN, raising=False)

    server = fakes.FakeMcpServer()
    api = fakes.ScriptedModelAPI()
    registry = TransportRegistry()

    app = create_app()

    async def override_redis():
        return redis

    async def override_http_client():
        return api.client()

    app.dependency_overrides[get_redis] = override_redis
    app.dependency_overrides[get_http_client] = override_http_client
    app.dependency_overrides[get_tool_connector] = lambda: ToolConnector(
        http_transport=server.transport(),
        allowed_commands=["node"],
        allowed_npm_packages=None,
        reconnect_backoff_seconds=0,
        request_timeout=5,
    )
    app.dependency_overrides[get_transport_registry] = lambda: registry
    app.dependency_overrides[get_model_config_provider] = lambda: StaticModelConfigProvider(model_config)

    # One event loop for the whole test so transports outlive single requests.
    with TestClient(app) as client:
        yield SimpleNamespace(app=app, client=client, server=server, api=api, registry=registry)
        client.portal.call(registry.close_all)


def test_health_needs_no_auth(gateway):
    resp = gateway.client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_conversation_requires_auth(gateway):
    resp = gateway.client.post("/mcp/conversation/stream", json={"userMessage": "hi"})
    assert resp.status_code == 401


def test_conversation_stream_with_tools(gateway, fakes):
    gateway.api.streams = [
        fakes.stream_body(fakes.tool_call_chunk(0, call_id="call_1", name="list_files", arguments="{}")),
        fakes.stream_body(fakes.content_chunk("Two files.")),
    ]
    gateway.api.completions = [
        fakes.completion_with_tool_calls([{"id": "call_1", "name": "list_files", "arguments": "{}"}])
    ]

    resp = gateway.client.post(
        "/mcp/conversation/stream",
        headers=_auth_headers(),
        json={"userMessage": "list files", "connection": {"url": URL}},
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    payloads = _sse_payloads(resp.text)
    types = [p if p == "[DONE]" else p["type"] for p in payloads]
    assert types[0] == "session"
    assert types.count("new_turn") == 1
    assert types[-2:] == ["done", "[DONE]"]
    assert "".join(p["content"] for p in payloads if p != "[DONE]" and p["type"] == "content") == "Two files."

    session_id = payloads[0]["session_id"]
    info = gateway.client.get(f"/mcp/sessions/{session_id}", headers=_auth_headers())
    assert info.status_code == 200
    body = info.json()
    assert body["transport_live"] is True
    assert body["tools"][0]["name"] == "list_files"
    assert "headers" not in body["connection"]

    deleted = gateway.client.delete(f"/mcp/sessions/{session_id}", headers=_auth_headers())
    assert deleted.status_code == 204
    assert session_id not in gateway.registry
    assert gateway.client.get(f"/mcp/sessions/{session_id}", headers=_auth_headers()).status_code == 404
    assert gateway.client.delete(f"/mcp/sessions/{session_id}", headers=_auth_headers()).status_code == 404


def test_invalid_connection_is_rejected_before_streaming(gateway):
    resp = gateway.client.post(
        "/mcp/conversation/stream",
        headers=_auth_headers(),
        json={"userMessage": "hi", "connection": {"url": "ftp://nope"}},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "bad_request"


def test_unreachable_tool_provider_on_first_connect(gateway):
    gateway.server.down = True
    resp = gateway.client.post(
        "/mcp/conversation/stream",
        headers=_auth_headers(),
        json={"userMessage": "hi", "connection": {"url": URL}},
    )
    assert resp.status_code == 502


def test_missing_model_configuration(gateway):
    empty = Settings(LLM_BASE_URL=None, LLM_API_KEY=None)
    gateway.app.dependency_overrides[get_model_config_provider] = lambda: SettingsModelConfigProvider(
        empty, ttl_seconds=0
    )
    resp = gateway.client.post(
        "/mcp/conversation/stream", headers=_auth_headers(), json={"userMessage": "hi"}
    )
    assert resp.status_code == 503
    assert resp.json()["detail"]["error"] == "service_unavailable"


def test_blank_message_fails_validation(gateway):
    resp = gateway.client.post(
        "/mcp/conversation/stream", headers=_auth_headers(), json={"userMessage": "   "}
    )
    assert resp.status_code == 422


def test_connection_check(gateway):
    resp = gateway.client.post(
        "/mcp/test-connection", headers=_auth_headers(), json={"connection": {"url": URL}}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["transport_kind"] == "url"
    assert [t["name"] for t in body["tools"]] == ["list_files"]
    assert gateway.server.deleted == 1
    assert len(gateway.registry) == 0


def test_connection_check_failure(gateway):
    gateway.server.down = True
    resp = gateway.client.post(
        "/mcp/test-connection", headers=_auth_headers(), json={"connection": {"url": URL}}
    )
    assert resp.status_code == 502
    assert resp.json()["detail"]["error"] == "bad_gateway"


def test_create_session_and_call_a_tool(gateway):
    created = gateway.client.post(
        "/mcp/sessions", headers=_auth_headers(), json={"connection": {"url": URL}}
    )
    assert created.status_code == 201
    body = created.json()
    session_id = body["sessionId"]
    assert [t["name"] for t in body["tools"]] == ["list_files"]
    assert session_id in gateway.registry

    called = gateway.client.post(
        f"/mcp/sessions/{session_id}/tools/list_files",
        headers=_auth_headers(),
        json={"arguments": {"path": "."}},
    )
    assert called.status_code == 200
    result = called.json()
    assert result["sessionId"] == session_id
    assert result["tool"] == "list_files"
    assert result["result"] == "a.txt\nb.txt"
    assert gateway.server.methods.count("initialize") == 1
    assert "tools/call" in gateway.server.methods


def test_create_session_keeps_client_id_and_refuses_duplicates(gateway):
    body = {"sessionId": "mine", "connection": {"url": URL}}
    first = gateway.client.post("/mcp/sessions", headers=_auth_headers(), json=body)
    assert first.status_code == 201
    assert first.json()["sessionId"] == "mine"

    again = gateway.client.post("/mcp/sessions", headers=_auth_headers(), json=body)
    assert again.status_code == 409


def test_create_session_rejects_bad_params(gateway):
    resp = gateway.client.post(
        "/mcp/sessions",
        headers=_auth_headers(),
        json={"connection": {"command": "bash", "args": ["-c", "true"]}},
    )
    assert resp.status_code == 400


def test_call_tool_on_unknown_session(gateway):
    resp = gateway.client.post(
        "/mcp/sessions/ghost/tools/list_files", headers=_auth_headers(), json={"arguments": {}}
    )
    assert resp.status_code == 404


def test_call_tool_outside_the_catalog(gateway):
    session_id = gateway.client.post(
        "/mcp/sessions", headers=_auth_headers(), json={"connection": {"url": URL}}
    ).json()["sessionId"]

    resp = gateway.client.post(
        f"/mcp/sessions/{session_id}/tools/rm_rf", headers=_auth_headers(), json={"arguments": {}}
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["details"]["tools"] == ["list_files"]
    assert "tools/call" not in gateway.server.methods


def test_call_tool_reconnects_a_session_from_another_worker(gateway):
    session_id = gateway.client.post(
        "/mcp/sessions", headers=_auth_headers(), json={"connection": {"url": URL}}
    ).json()["sessionId"]
    # Dropping the live transport leaves only the durable record behind.
    gateway.client.portal.call(gateway.registry.close, session_id)

    resp = gateway.client.post(
        f"/mcp/sessions/{session_id}/tools/list_files", headers=_auth_headers()
    )
    assert resp.status_code == 200
    assert resp.json()["result"] == "a.txt\nb.txt"
    assert gateway.server.methods.count("initialize") == 2
    assert session_id in gateway.registry

"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that `import toolchat`
works consistently in all tests, and provides the in-memory fakes most
tests share: a Redis stand-in, a scripted tool transport and helpers to
fake an OpenAI-compatible model API through httpx.MockTransport.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest


# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from toolchat.models import ModelConfig  # noqa: E402


class DummyRedis:
    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self.ttls: Dict[str, Optional[int]] = {}

    async def get(self, key: str):
        return self._data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None):
        self._data[key] = value
        self.ttls[key] = ex

    async def delete(self, key: str):
        existed = key in self._data
        self._data.pop(key, None)
        self.ttls.pop(key, None)
        return 1 if existed else 0


class FakeToolTransport:
    """
    Scripted ToolTransport: `handlers` maps a tool name to a value, an
    exception instance, or a callable taking the arguments dict.
    """

    def __init__(
        self,
        tools: Optional[List[Dict[str, Any]]] = None,
        handlers: Optional[Dict[str, Any]] = None,
        *,
        transport_id: str = "fake-transport",
        reconnectable: bool = True,
    ) -> None:
        self._tools = tools or []
        self.handlers = handlers or {}
        self._transport_id = transport_id
        self._reconnectable = reconnectable
        self.calls: List[tuple] = []
        self.closed = False

    @property
    def transport_id(self) -> Optional[str]:
        return self._transport_id

    @property
    def reconnectable(self) -> bool:
        return self._reconnectable

    async def initialize(self) -> Dict[str, Any]:
        return {"serverInfo": {"name": "fake"}}

    async def list_tools(self) -> List[Dict[str, Any]]:
        return list(self._tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        self.calls.append((name, arguments))
        handler = self.handlers.get(name)
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler):
            return handler(arguments)
        if handler is None:
            raise RuntimeError(f"unknown tool {name}")
        return handler

    async def aclose(self) -> None:
        self.closed = True


def sse_frame(payload: Any) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


def content_chunk(text: str) -> Dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]}


def tool_call_chunk(
    index: int, *, call_id: Optional[str] = None, name: Optional[str] = None, arguments: Optional[str] = None
) -> Dict[str, Any]:
    function: Dict[str, Any] = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    delta: Dict[str, Any] = {"index": index, "function": function}
    if call_id is not None:
        delta["id"] = call_id
        delta["type"] = "function"
    return {"choices": [{"index": 0, "delta": {"tool_calls": [delta]}, "finish_reason": None}]}


def stream_body(*payloads: Dict[str, Any], done: bool = True) -> bytes:
    body = b"".join(sse_frame(p) for p in payloads)
    if done:
        body += b"data: [DONE]\n\n"
    return body


def completion_with_tool_calls(calls: List[Dict[str, Any]], content: Optional[str] = None) -> Dict[str, Any]:
    return {
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": content,
                    "tool_calls": [
                        {
                            "id": c["id"],
                            "type": "function",
                            "function": {"name": c["name"], "arguments": c["arguments"]},
                        }
                        for c in calls
                    ],
                },
                "finish_reason": "tool_calls",
            }
        ]
    }


class ScriptedModelAPI:
    """
    httpx.MockTransport handler answering streaming requests from
    `streams` and non-streaming ones from `completions`, in order.
    """

    def __init__(
        self,
        streams: Optional[List[Any]] = None,
        completions: Optional[List[Any]] = None,
    ) -> None:
        self.streams = list(streams or [])
        self.completions = list(completions or [])
        self.requests: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if body.get("stream"):
            item = self.streams.pop(0)
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(
                200, content=item, headers={"content-type": "text/event-stream"}
            )
        item = self.completions.pop(0)
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class FakeMcpServer:
    """
    Minimal streamable-HTTP tool provider served through httpx.MockTransport.

    Answers initialize with a JSON body and a session header, tools/list
    with an SSE body, and tools/call from `results`. The standalone GET
    stream is refused with 405. Set `down = True` to make every request
    fail at the HTTP level.
    """

    def __init__(
        self,
        tools: Optional[List[Dict[str, Any]]] = None,
        results: Optional[Dict[str, Any]] = None,
        *,
        session_id: Optional[str] = "srv-session-1",
    ) -> None:
        self.tools = tools if tools is not None else [
            {
                "name": "list_files",
                "description": "List files in a directory",
                "inputSchema": {"type": "object", "properties": {"path": {"type": "string"}}},
            }
        ]
        self.results = results if results is not None else {
            "list_files": {"content": [{"type": "text", "text": "a.txt\nb.txt"}]}
        }
        self.session_id = session_id
        self.down = False
        self.methods: List[str] = []
        self.session_headers: List[Optional[str]] = []
        self.deleted = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            return httpx.Response(503, text="unavailable")
        if request.method == "GET":
            return httpx.Response(405)
        if request.method == "DELETE":
            self.deleted += 1
            return httpx.Response(200)

        message = json.loads(request.content)
        method = message.get("method")
        self.methods.append(method)
        self.session_headers.append(request.headers.get("Mcp-Session-Id"))

        if "id" not in message:
            return httpx.Response(202)
        if method == "initialize":
            headers = {"Mcp-Session-Id": self.session_id} if self.session_id else {}
            result = {
                "protocolVersion": message["params"]["protocolVersion"],
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake", "version": "1.0.0"},
            }
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": message["id"], "result": result}, headers=headers
            )
        if method == "tools/list":
            frame = {"jsonrpc": "2.0", "id": message["id"], "result": {"tools": self.tools}}
            return httpx.Response(
                200,
                content=f"event: message\ndata: {json.dumps(frame)}\n\n".encode("utf-8"),
                headers={"content-type": "text/event-stream"},
            )
        if method == "tools/call":
            name = message["params"]["name"]
            if name not in self.results:
                return httpx.Response(
                    200,
                    json={
                        "jsonrpc": "2.0",
                        "id": message["id"],
                        "error": {"code": -32602, "message": f"Unknown tool: {name}"},
                    },
                )
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": message["id"], "result": self.results[name]}
            )
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32601, "message": "no"}},
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def redis() -> DummyRedis:
    return DummyRedis()


@pytest.fixture
def model_config() -> ModelConfig:
    return ModelConfig(
        ref="default",
        model="test-model",
        base_url="https://llm.example/v1",
        api_key="sk-test",  # pragma: allowlist secret
        temperature=0.2,
        max_tokens=256,
    )


@pytest.fixture
def fakes() -> Any:
    """
    Access to the helper classes/functions without importing conftest.
    """

    class _Fakes:
        DummyRedis = DummyRedis
        FakeToolTransport = FakeToolTransport
        FakeMcpServer = FakeMcpServer
        ScriptedModelAPI = ScriptedModelAPI
        sse_frame = staticmethod(sse_frame)
        content_chunk = staticmethod(content_chunk)
        tool_call_chunk = staticmethod(tool_call_chunk)
        stream_body = staticmethod(stream_body)
        completion_with_tool_calls = staticmethod(completion_with_tool_calls)

    return _Fakes

from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from toolchat.errors import ConnectionConfigError

# Marker command used by older clients to describe a URL-style server as
# {"command": "_STREAMABLE_HTTP_", "args": ["--url", "<url>"]}.
STREAMABLE_HTTP_COMMAND = "_STREAMABLE_HTTP_"


class ConnectionParams(BaseModel):
    """
    Provider-specific descriptor used to (re)establish a tool transport.

    Only URL-style descriptors are reconnectable: the handshake is
    stateless HTTP, so any process can redo it from the stored fields.
    Command-style descriptors spawn a child process that dies with the
    process that created it.
    """

    kind: Literal["url", "command"]
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    server_name: Optional[str] = None

    @property
    def reconnectable(self) -> bool:
        return self.kind == "url"

    @classmethod
    def from_descriptor(cls, raw: Any) -> "ConnectionParams":
        """
        Parse `{url}`, `{command, args}` or an `{"mcpServers": {...}}` config
        (as a dict or a JSON string). The first configured server wins.
        """
        data = raw
        if isinstance(raw, str):
            text = raw.strip()
            if not text:
                raise ConnectionConfigError("Connection parameters are empty")
            try:
                data = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ConnectionConfigError(
                    "Connection parameters are not valid JSON",
                    details={"reason": str(exc)},
                ) from exc
        if not isinstance(data, dict):
            raise ConnectionConfigError("Connection parameters must be a JSON object")

        server_name: Optional[str] = None
        servers = data.get("mcpServers")
        if servers is not None:
            if not isinstance(servers, dict) or not servers:
                raise ConnectionConfigError("'mcpServers' must be a non-empty object")
            server_name = next(iter(servers))
            data = servers[server_name]
            if not isinstance(data, dict):
                raise ConnectionConfigError(
                    f"Server entry '{server_name}' must be an object"
                )

        headers = data.get("headers") or {}
        if not isinstance(headers, dict):
            raise ConnectionConfigError("'headers' must be an object")
        headers = {str(k): str(v) for k, v in headers.items()}

        url = data.get("url") or data.get("baseUrl")
        command = data.get("command")
        args = data.get("args") or []
        if not isinstance(args, list):
            raise ConnectionConfigError("'args' must be a list of strings")
        args = [str(a) for a in args]

        if command == STREAMABLE_HTTP_COMMAND:
            try:
                url = args[args.index("--url") + 1]
            except (ValueError, IndexError):
                raise ConnectionConfigError(
                    "Streamable HTTP descriptor is missing the '--url' argument"
                ) from None
            command = None
            args = []

        if url:
            if not isinstance(url, str) or not url.startswith(("http://", "https://")):
                raise ConnectionConfigError(
                    "Tool provider URL must start with http:// or https://",
                    details={"url": str(url)},
                )
            return cls(kind="url", url=url, headers=headers, server_name=server_name)

        if command:
            if not isinstance(command, str):
                raise ConnectionConfigError("'command' must be a string")
            env = data.get("env") or {}
            if not isinstance(env, dict):
                raise ConnectionConfigError("'env' must be an object")
            return cls(
                kind="command",
                command=command,
                args=args,
                env={str(k): str(v) for k, v in env.items()},
                server_name=server_name,
            )

        raise ConnectionConfigError(
            "Connection parameters require either 'url' or 'command'"
        )


class ToolDescriptor(BaseModel):
    """
    One entry of a provider's tool catalog, as cached in the session record.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = Field(default_factory=dict, alias="inputSchema")

    @classmethod
    def from_catalog_entry(cls, entry: Any) -> Optional["ToolDescriptor"]:
        if isinstance(entry, str):
            return cls(name=entry) if entry.strip() else None
        if not isinstance(entry, dict):
            return None
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            return None
        schema = entry.get("inputSchema")
        if schema is None:
            schema = entry.get("input_schema")
        return cls(
            name=name,
            description=entry.get("description") if isinstance(entry.get("description"), str) else None,
            input_schema=schema if isinstance(schema, dict) else {},
        )

    def to_openai_tool(self) -> Dict[str, Any]:
        parameters = dict(self.input_schema) if self.input_schema else {}
        if not parameters:
            parameters = {"type": "object", "properties": {}}
        parameters.setdefault("type", "object")
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or f"Use the {self.name} tool",
                "parameters": parameters,
            },
        }


def build_openai_tools(tools: List[ToolDescriptor]) -> List[Dict[str, Any]]:
    return [tool.to_openai_tool() for tool in tools if tool.name]


class MemberInfo(BaseModel):
    """
    Actor metadata used to derive a system prompt.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    role: str = ""
    responsibilities: str = ""
    mcp_config_json: Optional[str] = Field(default=None, alias="mcpConfigJson")


class ReasoningState(BaseModel):
    """
    Persisted state of the sequential-reasoning tool so a follow-up turn can
    resume the same chain of thoughts.
    """

    name: str
    state: Dict[str, Any] = Field(default_factory=dict)

    @property
    def thought(self) -> Optional[str]:
        value = self.state.get("thought")
        return value if isinstance(value, str) and value else None


class ToolSession(BaseModel):
    """
    Durable session metadata stored in Redis.

    Holds everything needed to rebuild a transport in another process; the
    model is referenced by `model_ref`, the secret never lands here.
    """

    session_id: str = Field(..., description="Logical session id")
    connection: Optional[ConnectionParams] = Field(
        default=None, description="Descriptor used to (re)connect the tool provider"
    )
    tools: List[ToolDescriptor] = Field(default_factory=list)
    model_ref: Optional[str] = Field(default=None, description="Model configuration reference")
    system_prompt: str = ""
    member: Optional[MemberInfo] = None
    transport_id: Optional[str] = Field(
        default=None, description="Provider-side session id of the current transport"
    )
    reasoning_state: Optional[ReasoningState] = None
    created_at: float = Field(..., description="Creation timestamp (epoch seconds)")
    last_used: float = Field(..., description="Last access timestamp (epoch seconds)")

    def public_view(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"member"})
        if self.connection is not None:
            data["connection"] = self.connection.model_dump(exclude={"headers", "env"})
        return data


__all__ = [
    "STREAMABLE_HTTP_COMMAND",
    "ConnectionParams",
    "MemberInfo",
    "ReasoningState",
    "ToolDescriptor",
    "ToolSession",
    "build_openai_tools",
]

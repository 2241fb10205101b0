from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .session import MemberInfo, ReasoningState, ToolDescriptor


class ConversationRequest(BaseModel):
    """
    One inbound turn.

    camelCase names used by browser clients are accepted as aliases.
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    user_message: str = Field(..., alias="userMessage", min_length=1)
    member_info: Optional[MemberInfo] = Field(default=None, alias="memberInfo")
    connection: Optional[Any] = Field(
        default=None,
        description="URL/command descriptor or an mcpServers config (object or JSON string)",
    )
    previous_tool_state: Optional[ReasoningState] = Field(
        default=None,
        alias="previousToolState",
        description="Reasoning-tool state carried over by the client from the previous turn",
    )

    @field_validator("user_message")
    @classmethod
    def _strip_message(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("userMessage must not be blank")
        return value

    @field_validator("session_id")
    @classmethod
    def _blank_session_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    def connection_descriptor(self) -> Optional[Any]:
        """
        Explicit connection params win over the member's stored mcp config.
        """
        if self.connection not in (None, "", {}):
            return self.connection
        if self.member_info is not None and self.member_info.mcp_config_json:
            return self.member_info.mcp_config_json
        return None


class ConnectionTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    connection: Any = Field(..., description="Descriptor to test")


class ConnectionTestResponse(BaseModel):
    success: bool
    transport_kind: str
    tools: List[ToolDescriptor] = Field(default_factory=list)


class SessionCreateRequest(BaseModel):
    """
    Open a tool session without running a conversation turn.
    """

    model_config = ConfigDict(populate_by_name=True)

    connection: Any = Field(..., description="URL/command descriptor or an mcpServers config")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    member_info: Optional[MemberInfo] = Field(default=None, alias="memberInfo")


class SessionCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    tools: List[ToolDescriptor] = Field(default_factory=list)


class ToolInvocationRequest(BaseModel):
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolInvocationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    tool: str
    result: str = Field(..., description="Tool output reduced to display text")
    raw: Any = Field(default=None, description="Result as returned by the tool provider")


__all__ = [
    "ConversationRequest",
    "ConnectionTestRequest",
    "ConnectionTestResponse",
    "SessionCreateRequest",
    "SessionCreateResponse",
    "ToolInvocationRequest",
    "ToolInvocationResponse",
]

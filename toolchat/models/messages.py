from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = self.tool_calls
        if self.role == "tool":
            payload["tool_call_id"] = self.tool_call_id
            if self.name:
                payload["name"] = self.name
        return payload


class ToolCallStatus(str, Enum):
    """
    Lifecycle of a tool call; values are the wire names the client merges on.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.SUCCESS, ToolCallStatus.ERROR)


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    raw_arguments: Optional[str] = None
    index: int = 0
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None
    confirmed: bool = Field(
        default=False,
        description="True once the authoritative non-streaming pass returned this call",
    )

    def mark(self, status: ToolCallStatus) -> None:
        # Terminal states never go back.
        if self.status.is_terminal:
            return
        self.status = status

    def to_openai(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments, ensure_ascii=False),
            },
        }

    def to_state(self, *, result_preview: Optional[str] = None) -> Dict[str, Any]:
        state: Dict[str, Any] = {
            "id": self.id,
            "type": "function",
            "name": self.name,
            "arguments": self.arguments,
            "status": self.status.value,
        }
        result = result_preview if result_preview is not None else self.result
        if result is not None:
            state["result"] = result
        return state


__all__ = ["ChatMessage", "ToolCall", "ToolCallStatus"]

from .conversation import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    ConversationRequest,
    SessionCreateRequest,
    SessionCreateResponse,
    ToolInvocationRequest,
    ToolInvocationResponse,
)
from .events import (
    ContentDelta,
    OutboundEvent,
    OutboundEventType,
    StreamDone,
    ToolCallDelta,
    UpstreamError,
    UpstreamEvent,
)
from .messages import ChatMessage, ToolCall, ToolCallStatus
from .model_config import ModelConfig
from .session import (
    ConnectionParams,
    MemberInfo,
    ReasoningState,
    ToolDescriptor,
    ToolSession,
    build_openai_tools,
)

__all__ = [
    "ChatMessage",
    "ConnectionTestRequest",
    "ConnectionTestResponse",
    "ConnectionParams",
    "ContentDelta",
    "ConversationRequest",
    "MemberInfo",
    "ModelConfig",
    "OutboundEvent",
    "OutboundEventType",
    "ReasoningState",
    "SessionCreateRequest",
    "SessionCreateResponse",
    "StreamDone",
    "ToolCall",
    "ToolCallDelta",
    "ToolCallStatus",
    "ToolDescriptor",
    "ToolInvocationRequest",
    "ToolInvocationResponse",
    "ToolSession",
    "UpstreamError",
    "UpstreamEvent",
    "build_openai_tools",
]

"""
Prompt text used by the conversation pipeline.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from toolchat.models import MemberInfo, ReasoningState
from toolchat.settings import settings

SEQUENTIAL_THINKING_TOOLS = frozenset(
    {"sequentialthinking", "mcp_sequential_thinking_sequentialthinking"}
)

TOOLS_UNAVAILABLE_NOTE = (
    "Tools are unavailable for this turn because the tool provider could not be "
    "reached. Answer without tools and tell the user that tool results are not "
    "available right now."
)


def is_sequential_thinking_tool(name: Optional[str]) -> bool:
    if not name:
        return False
    return name in SEQUENTIAL_THINKING_TOOLS or name.endswith("sequentialthinking")


def build_system_prompt(member: Optional[MemberInfo]) -> str:
    if member is None or not member.name:
        return settings.default_system_prompt
    parts = [f"You are an AI team member named {member.name}."]
    if member.role:
        parts.append(f"{member.role.rstrip('.')}.")
    if member.responsibilities:
        parts.append(f"Your responsibilities are {member.responsibilities.rstrip('.')}.")
    parts.append("Please provide professional, valuable replies.")
    return " ".join(parts)


def build_user_content(user_message: str, reasoning: Optional[ReasoningState]) -> str:
    """
    Wrap the user's message into a continuation prompt when a reasoning
    chain from a previous turn is still open.
    """
    if reasoning is None or not is_sequential_thinking_tool(reasoning.name):
        return user_message
    thought = reasoning.thought
    if not thought:
        return user_message
    state: Dict[str, Any] = reasoning.state
    number = state.get("thoughtNumber") or "?"
    total = state.get("totalThoughts") or "?"
    return (
        f"Last time we were in thinking step {number}/{total}.\n"
        f'The previous thought was: "{thought}"\n'
        f'Please continue this line of thinking, considering my reply: "{user_message}"'
    )


__all__ = [
    "SEQUENTIAL_THINKING_TOOLS",
    "TOOLS_UNAVAILABLE_NOTE",
    "build_system_prompt",
    "build_user_content",
    "is_sequential_thinking_tool",
]

"""
Rewrite a conversation history into a shape chat-completion APIs accept.

Runs before every follow-up model call, whatever the input looks like:

* assistant messages carry non-null content or a non-empty tool_calls list;
* tool messages carry string content and reference a tool-call id issued
  by a preceding assistant message (orphans are dropped);
* every issued tool-call id gets a tool response (a stub is inserted for
  calls that never produced one).
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from toolchat.logging_config import logger
from toolchat.models import ChatMessage

NOT_EXECUTED_TEXT = "Tool call was not executed."


def _as_dict(message: Any) -> Dict[str, Any]:
    if isinstance(message, ChatMessage):
        return message.to_payload()
    return dict(message)


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return ""


def _normalize_tool_calls(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    calls: List[Dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        function = item.get("function") if isinstance(item.get("function"), dict) else {}
        name = function.get("name")
        if not isinstance(name, str) or not name:
            continue
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments if arguments is not None else {}, ensure_ascii=False)
        calls.append(
            {
                "id": str(item["id"]),
                "type": "function",
                "function": {"name": name, "arguments": arguments},
            }
        )
    return calls


def validate_history(messages: Sequence[Any]) -> List[Dict[str, Any]]:
    validated: List[Dict[str, Any]] = []
    issued: Dict[str, str] = {}
    answered: set = set()
    pending: List[str] = []

    def close_pending() -> None:
        for call_id in pending:
            if call_id not in answered:
                validated.append(
                    {
                        "role": "tool",
                        "tool_call_id": call_id,
                        "name": issued.get(call_id),
                        "content": NOT_EXECUTED_TEXT,
                    }
                )
                answered.add(call_id)
        pending.clear()

    for original in messages:
        message = _as_dict(original)
        role = message.get("role")

        if role == "tool":
            call_id: Optional[str] = message.get("tool_call_id")
            if not call_id or call_id not in issued or call_id in answered:
                logger.warning("message_history: dropping orphan tool message (id=%r)", call_id)
                continue
            entry: Dict[str, Any] = {
                "role": "tool",
                "tool_call_id": call_id,
                "content": _text(message.get("content")),
            }
            name = message.get("name") or issued.get(call_id)
            if name:
                entry["name"] = name
            validated.append(entry)
            answered.add(call_id)
            continue

        close_pending()

        if role == "assistant":
            tool_calls = _normalize_tool_calls(message.get("tool_calls"))
            content = message.get("content")
            entry = {"role": "assistant"}
            if tool_calls:
                entry["content"] = content if isinstance(content, str) else None
                entry["tool_calls"] = tool_calls
                for call in tool_calls:
                    issued[call["id"]] = call["function"]["name"]
                    pending.append(call["id"])
            else:
                entry["content"] = _text(content)
            validated.append(entry)
            continue

        if role in ("system", "user"):
            validated.append({"role": role, "content": _text(message.get("content"))})
            continue

        logger.warning("message_history: dropping message with unknown role %r", role)

    close_pending()
    for entry in validated:
        if entry["role"] == "tool" and entry.get("name") is None:
            entry.pop("name", None)
    return validated


def history_is_valid(messages: Sequence[Dict[str, Any]]) -> bool:
    seen_ids: set = set()
    for message in messages:
        role = message.get("role")
        if role == "assistant":
            if message.get("content") is None and not message.get("tool_calls"):
                return False
            for call in message.get("tool_calls") or []:
                seen_ids.add(call.get("id"))
        elif role == "tool":
            if not isinstance(message.get("content"), str):
                return False
            if message.get("tool_call_id") not in seen_ids:
                return False
    return True


__all__ = ["NOT_EXECUTED_TEXT", "history_is_valid", "validate_history"]

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from toolchat.settings import settings

NO_RESULT_TEXT = "Tool returned no result"


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _content_array_text(items: Any) -> Optional[str]:
    if not isinstance(items, list):
        return None
    texts: List[str] = []
    for item in items:
        if isinstance(item, str):
            texts.append(item)
            continue
        text = _field(item, "text")
        if isinstance(text, str) and (_field(item, "type") in (None, "text")):
            texts.append(text)
    if not texts:
        return None
    return "\n".join(texts)


def normalize_tool_result(result: Any) -> str:
    """
    Reduce an arbitrarily shaped tool result to one display string.

    Order: plain string, None, `.content` (string or text-item array),
    `.text`, `.message.content`, `.result`, JSON, then `str()`.
    """
    if isinstance(result, str):
        return result
    if result is None:
        return NO_RESULT_TEXT

    content = _field(result, "content")
    if isinstance(content, str):
        return content
    array_text = _content_array_text(content)
    if array_text is not None:
        return array_text

    text = _field(result, "text")
    if isinstance(text, str):
        return text

    message = _field(result, "message")
    if message is not None:
        message_content = _field(message, "content")
        if isinstance(message_content, str):
            return message_content

    inner = _field(result, "result")
    if isinstance(inner, str):
        return inner
    if inner is not None and inner is not result:
        return normalize_tool_result(inner)

    array_text = _content_array_text(result)
    if array_text is not None:
        return array_text

    try:
        return json.dumps(result, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        return str(result)


def preview(text: Optional[str], limit: Optional[int] = None) -> Optional[str]:
    if text is None:
        return None
    limit = limit or settings.tool_result_preview_chars
    if len(text) <= limit:
        return text
    return text[:limit] + f"... [truncated {len(text) - limit} chars]"


def extract_reasoning_state(result: Any) -> Optional[Dict[str, Any]]:
    """
    Find the sequential-reasoning payload (the object carrying
    `nextThoughtNeeded`) either at the top level or JSON-encoded inside a
    text content item.
    """
    if isinstance(result, dict) and "nextThoughtNeeded" in result:
        return result
    candidates: List[str] = []
    if isinstance(result, str):
        candidates.append(result)
    else:
        text = _content_array_text(_field(result, "content"))
        if text:
            candidates.append(text)
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except (TypeError, ValueError):
            continue
        if isinstance(parsed, dict) and "nextThoughtNeeded" in parsed:
            return parsed
    return None


__all__ = ["NO_RESULT_TEXT", "extract_reasoning_state", "normalize_tool_result", "preview"]

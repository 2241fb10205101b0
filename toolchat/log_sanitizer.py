from __future__ import annotations

from collections.abc import Mapping
from typing import Any

REDACTED = "***REDACTED***"

# Mcp-Session-Id is a bearer-like handle for an upstream tool session.
_SENSITIVE_HEADER_NAMES = {
    "authorization",
    "proxy-authorization",
    "x-api-key",
    "api-key",
    "cookie",
    "set-cookie",
    "mcp-session-id",
}
_SENSITIVE_FRAGMENTS = ("key", "token", "secret", "auth", "cookie")


def sanitize_headers_for_log(
    headers: Mapping[str, str], *, mask_token: str = REDACTED
) -> dict[str, str]:
    """
    Copy of `headers` safe to log: well-known credential headers and any
    header whose name looks like a credential are masked.
    """
    sanitized: dict[str, str] = {}
    for name, value in headers.items():
        lower = name.lower()
        if lower in _SENSITIVE_HEADER_NAMES or any(f in lower for f in _SENSITIVE_FRAGMENTS):
            sanitized[name] = mask_token
        else:
            sanitized[name] = value
    return sanitized


def truncate_for_log(value: Any, limit: int = 300) -> str:
    text = value if isinstance(value, str) else repr(value)
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...(+{len(text) - limit} chars)"


__all__ = ["REDACTED", "sanitize_headers_for_log", "truncate_for_log"]

"""
Best-effort parsing of tool-call argument strings.

Models occasionally emit argument payloads that are almost JSON: bare
keys or values, single-quoted strings, trailing commas, or an object cut
off before its closing brace. Those go through `json_repair` before giving
up. `parse_tool_arguments` never raises: what cannot be repaired into an
object becomes a placeholder carrying the raw text.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from json_repair import repair_json

from toolchat.logging_config import logger

RAW_ARGUMENTS_KEY = "_raw_arguments"
PARSE_ERROR_KEY = "_parse_error"


def _as_object(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {"value": value}


def placeholder_arguments(raw: str, error: str) -> Dict[str, Any]:
    return {RAW_ARGUMENTS_KEY: raw, PARSE_ERROR_KEY: error}


def is_placeholder(arguments: Dict[str, Any]) -> bool:
    return RAW_ARGUMENTS_KEY in arguments and PARSE_ERROR_KEY in arguments


def parse_tool_arguments(raw: Any) -> Dict[str, Any]:
    """
    strict JSON -> repaired JSON -> placeholder; always returns a dict.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if not isinstance(raw, str):
        return _as_object(raw)
    if not raw.strip():
        return {}

    try:
        return _as_object(json.loads(raw))
    except (ValueError, RecursionError) as exc:
        strict_error = str(exc)

    try:
        repaired = repair_json(raw)
        value = json.loads(repaired)
    except (ValueError, RecursionError) as exc:
        logger.warning("tool_arguments: irreparable tool arguments (%s): %s", exc, raw[:200])
        return placeholder_arguments(raw, f"{strict_error}; after repair: {exc}")

    # Repair salvages something from almost any text; only an object counts.
    if not isinstance(value, dict):
        logger.warning("tool_arguments: arguments are not an object: %s", raw[:200])
        return placeholder_arguments(raw, f"{strict_error}; repaired value is not an object")

    logger.info("tool_arguments: repaired tool arguments: %s -> %s", raw[:200], repaired[:200])
    return value


__all__ = [
    "PARSE_ERROR_KEY",
    "RAW_ARGUMENTS_KEY",
    "is_placeholder",
    "parse_tool_arguments",
    "placeholder_arguments",
]

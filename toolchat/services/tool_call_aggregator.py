"""
Reconcile streamed tool-call hints with an authoritative non-streaming call.

The streaming pass only tells us *that* tools were requested. Once it ends,
the same context is sent again without streaming and the returned
`tool_calls` become the final queue:

* an authoritative call whose id matches a provisional entry overwrites
  that entry's arguments (and keeps its position);
* an authoritative call with an unknown id is appended;
* provisional entries the authoritative pass never confirmed are dropped.

If the authoritative call fails, no calls are invented: the provisional
entries are returned flagged unconfirmed so the sequencer reports them as
not executed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from toolchat.errors import UpstreamModelError
from toolchat.logging_config import logger
from toolchat.models import ModelConfig, ToolCall
from toolchat.provider.llm_client import LLMClient

from .tool_arguments import parse_tool_arguments
from .stream_decoder import ProvisionalToolCall


@dataclass
class AggregationResult:
    calls: List[ToolCall] = field(default_factory=list)
    error: Optional[str] = None
    assistant_content: Optional[str] = None
    discarded: List[ProvisionalToolCall] = field(default_factory=list)

    @property
    def reconciled(self) -> bool:
        return self.error is None


def _fallback_id(index: int) -> str:
    return f"call_{index}_{uuid.uuid4().hex[:8]}"


def _authoritative_calls(payload: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return [], None
    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        return [], None
    content = message.get("content") if isinstance(message.get("content"), str) else None
    raw_calls = message.get("tool_calls")
    if not isinstance(raw_calls, list):
        return [], content
    return [c for c in raw_calls if isinstance(c, dict)], content


def unconfirmed_calls(provisional: Sequence[ProvisionalToolCall]) -> List[ToolCall]:
    calls: List[ToolCall] = []
    for entry in provisional:
        if not entry.name and not entry.id:
            continue
        calls.append(
            ToolCall(
                id=entry.id or _fallback_id(entry.index),
                name=entry.name or "unknown_tool",
                arguments=parse_tool_arguments(entry.raw_arguments),
                raw_arguments=entry.raw_arguments or None,
                index=entry.index,
                confirmed=False,
            )
        )
    return calls


class ToolCallAggregator:
    def __init__(self, llm: LLMClient) -> None:
        self.llm = llm

    async def aggregate(
        self,
        provisional: Sequence[ProvisionalToolCall],
        *,
        config: ModelConfig,
        messages: Sequence[Any],
        tools: Optional[List[Dict[str, Any]]],
    ) -> AggregationResult:
        try:
            payload = await self.llm.complete_chat(config, messages, tools=tools)
        except UpstreamModelError as exc:
            logger.warning("aggregator: authoritative tool-call query failed: %s", exc.message)
            return AggregationResult(
                calls=unconfirmed_calls(provisional),
                error=f"Could not confirm tool calls: {exc.message}",
            )

        authoritative, content = _authoritative_calls(payload)
        by_id: Dict[str, ProvisionalToolCall] = {
            entry.id: entry for entry in provisional if entry.id
        }

        confirmed: Dict[str, ToolCall] = {}
        appended: List[ToolCall] = []
        for position, raw in enumerate(authoritative):
            function = raw.get("function") if isinstance(raw.get("function"), dict) else {}
            call_id = raw.get("id") if isinstance(raw.get("id"), str) and raw.get("id") else None
            raw_args = function.get("arguments")
            name = function.get("name") if isinstance(function.get("name"), str) else ""

            if call_id is not None and call_id in by_id:
                match = by_id[call_id]
                confirmed[call_id] = ToolCall(
                    id=call_id,
                    name=name or match.name,
                    arguments=parse_tool_arguments(raw_args),
                    raw_arguments=raw_args if isinstance(raw_args, str) else None,
                    index=match.index,
                    confirmed=True,
                )
                continue
            if not name:
                logger.warning("aggregator: authoritative tool call without a name skipped: %s", raw)
                continue
            appended.append(
                ToolCall(
                    id=call_id or _fallback_id(position),
                    name=name,
                    arguments=parse_tool_arguments(raw_args),
                    raw_arguments=raw_args if isinstance(raw_args, str) else None,
                    index=len(provisional) + position,
                    confirmed=True,
                )
            )

        ordered: List[ToolCall] = []
        discarded: List[ProvisionalToolCall] = []
        for entry in provisional:
            if entry.id and entry.id in confirmed:
                ordered.append(confirmed.pop(entry.id))
            else:
                discarded.append(entry)
        ordered.extend(appended)

        if discarded:
            logger.info(
                "aggregator: discarded %d unconfirmed streamed tool call(s): %s",
                len(discarded),
                [d.name or d.id for d in discarded],
            )
        logger.info(
            "aggregator: final tool queue %s",
            [(c.id, c.name) for c in ordered],
        )
        return AggregationResult(calls=ordered, assistant_content=content, discarded=discarded)


__all__ = ["AggregationResult", "ToolCallAggregator", "unconfirmed_calls"]

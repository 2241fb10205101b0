"""
OpenAI-compatible chat completion calls.

`stream_chat` yields raw SSE bytes for the decoder; `complete_chat` is the
non-streaming call used for authoritative tool-call reconciliation.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx

from toolchat.errors import UpstreamModelError
from toolchat.log_sanitizer import truncate_for_log
from toolchat.logging_config import logger
from toolchat.models import ChatMessage, ModelConfig


def chat_completions_endpoint(base_url: str) -> str:
    base = base_url.rstrip("/")
    if base.endswith("/chat/completions"):
        return base
    return f"{base}/chat/completions"


def build_headers(config: ModelConfig) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {config.api_key.get_secret_value()}",
    }


def _message_payloads(messages: Sequence[Any]) -> List[Dict[str, Any]]:
    payloads: List[Dict[str, Any]] = []
    for message in messages:
        if isinstance(message, ChatMessage):
            payloads.append(message.to_payload())
        else:
            payloads.append(dict(message))
    return payloads


def build_chat_body(
    config: ModelConfig,
    messages: Sequence[Any],
    *,
    tools: Optional[List[Dict[str, Any]]] = None,
    stream: bool,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": config.model,
        "messages": _message_payloads(messages),
        "temperature": config.temperature,
        "stream": stream,
    }
    if config.max_tokens:
        body["max_tokens"] = config.max_tokens
    if tools:
        body["tools"] = tools
        body["tool_choice"] = "auto"
    return body


class LLMClient:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def stream_chat(
        self,
        config: ModelConfig,
        messages: Sequence[Any],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[bytes]:
        """
        Stream raw response bytes from the model.

        HTTP errors and transport failures surface as UpstreamModelError;
        the caller turns them into an `error` event.
        """
        url = chat_completions_endpoint(config.base_url)
        body = build_chat_body(config, messages, tools=tools, stream=True)
        logger.info(
            "llm_client: streaming %s model=%s messages=%d tools=%d",
            url,
            config.model,
            len(body["messages"]),
            len(tools or []),
        )
        sent_any = False
        try:
            async with self._client.stream(
                "POST", url, headers=build_headers(config), json=body
            ) as resp:
                if resp.status_code >= 400:
                    text = (await resp.aread()).decode("utf-8", errors="ignore")
                    logger.warning(
                        "llm_client: streaming HTTP error %s for %s; response=%s",
                        resp.status_code,
                        url,
                        truncate_for_log(text, 500),
                    )
                    raise UpstreamModelError(
                        f"Model API HTTP error {resp.status_code}",
                        status_code=resp.status_code,
                        text=text,
                    )
                async for chunk in resp.aiter_bytes():
                    if not chunk:
                        continue
                    if not sent_any:
                        logger.info("llm_client: received first chunk from %s", url)
                        sent_any = True
                    yield chunk
        except httpx.HTTPError as exc:
            logger.warning("llm_client: streaming transport error for %s: %s", url, exc)
            raise UpstreamModelError(
                "Model API transport error"
                + (" mid-stream" if sent_any else ""),
                text=str(exc),
            ) from exc

    async def complete_chat(
        self,
        config: ModelConfig,
        messages: Sequence[Any],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        url = chat_completions_endpoint(config.base_url)
        body = build_chat_body(config, messages, tools=tools, stream=False)
        try:
            resp = await self._client.post(url, headers=build_headers(config), json=body)
        except httpx.HTTPError as exc:
            logger.warning("llm_client: transport error for %s: %s", url, exc)
            raise UpstreamModelError("Model API transport error", text=str(exc)) from exc

        if resp.status_code >= 400:
            logger.warning(
                "llm_client: HTTP error %s for %s; response=%s",
                resp.status_code,
                url,
                truncate_for_log(resp.text, 500),
            )
            raise UpstreamModelError(
                f"Model API HTTP error {resp.status_code}",
                status_code=resp.status_code,
                text=resp.text,
            )
        try:
            payload = resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise UpstreamModelError(
                "Model API returned a non-JSON body",
                status_code=resp.status_code,
                text=truncate_for_log(resp.text, 500),
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamModelError("Model API returned an unexpected payload shape")
        return payload


__all__ = [
    "LLMClient",
    "build_chat_body",
    "build_headers",
    "chat_completions_endpoint",
]

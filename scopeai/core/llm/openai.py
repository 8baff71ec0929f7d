"""OpenAI chat-completions adapter over httpx."""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator

import httpx

from scopeai.config import LLMConfig
from scopeai.core.llm.base import PartialToolCall, ProviderAdapter, synth_call_id
from scopeai.core.llm.types import (
    CallOptions,
    DoneChunk,
    LLMResponse,
    LLMStreamChunk,
    LLMToolCall,
    LLMUsage,
    Provider,
    TextChunk,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
)
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


def _usage(data: dict[str, Any] | None) -> LLMUsage | None:
    if not data:
        return None
    return LLMUsage(
        prompt_tokens=data.get("prompt_tokens", 0),
        completion_tokens=data.get("completion_tokens", 0),
        total_tokens=data.get("total_tokens", 0),
    )


def _start(pending: PartialToolCall, index: int) -> list[LLMStreamChunk]:
    """Open a call once its id is known, replaying fragments that arrived first."""
    pending.started = True
    events: list[LLMStreamChunk] = [ToolCallStart(id=pending.id, name=pending.name, index=index)]
    if pending.fragments:
        events.append(ToolCallDelta(id=pending.id, arguments="".join(pending.fragments)))
    return events


class OpenAIAdapter(ProviderAdapter):
    """Chat-completions provider (OpenAI and compatible endpoints)."""

    def __init__(self, config: LLMConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.openai_base_url.rstrip("/"),
            timeout=config.stream_timeout,
        )

    @property
    def provider(self) -> Provider:
        return Provider.OPENAI

    async def call(self, options: CallOptions) -> LLMResponse:
        body = self._build_body(options)
        resp = await self._client.post("/chat/completions", json=body, headers=self._headers())
        resp.raise_for_status()
        data = resp.json()

        choice = data["choices"][0]
        msg = choice.get("message", {})
        tool_calls = [
            LLMToolCall(
                id=tc["id"],
                name=tc.get("function", {}).get("name", ""),
                arguments=tc.get("function", {}).get("arguments") or "{}",
            )
            for tc in msg.get("tool_calls") or []
        ]
        return LLMResponse(
            content=msg.get("content"),
            tool_calls=tool_calls,
            usage=_usage(data.get("usage")),
        )

    async def stream(self, options: CallOptions) -> AsyncGenerator[LLMStreamChunk, None]:
        body = self._build_body(options, stream=True)
        open_calls: dict[int, PartialToolCall] = {}
        finish_reason = "stop"
        usage: LLMUsage | None = None

        async with self._client.stream(
            "POST", "/chat/completions", json=body, headers=self._headers()
        ) as resp:
            if resp.is_error:
                await resp.aread()
                resp.raise_for_status()

            async for line in resp.aiter_lines():
                if options.aborted:
                    log.debug("openai_stream_aborted", discarded=len(open_calls))
                    return
                if not line.startswith("data:"):
                    continue
                payload = line[5:].strip()
                if payload == "[DONE]":
                    break
                try:
                    chunk = json.loads(payload)
                except json.JSONDecodeError:
                    log.warning("openai_stream_bad_chunk", payload=payload[:200])
                    continue

                if chunk.get("usage"):
                    usage = _usage(chunk["usage"])
                choices = chunk.get("choices") or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.get("delta") or {}

                if delta.get("content"):
                    yield TextChunk(delta["content"])

                for tc in delta.get("tool_calls") or []:
                    index = tc.get("index", 0)
                    fn = tc.get("function") or {}
                    pending = open_calls.get(index)
                    if pending is None:
                        # A new call begins only when an unseen index appears
                        pending = PartialToolCall(id="", name="")
                        open_calls[index] = pending
                    if not pending.started:
                        pending.id = tc.get("id") or pending.id
                        pending.name = fn.get("name") or pending.name
                    arguments = fn.get("arguments") or ""
                    if arguments:
                        pending.fragments.append(arguments)
                    if pending.started:
                        if arguments:
                            yield ToolCallDelta(id=pending.id, arguments=arguments)
                    elif pending.id:
                        for event in _start(pending, index):
                            yield event

                reason = choice.get("finish_reason")
                if reason == "tool_calls":
                    for index in sorted(open_calls):
                        pending = open_calls[index]
                        if not pending.started:
                            pending.id = synth_call_id()
                            for event in _start(pending, index):
                                yield event
                        yield ToolCallEnd(pending.finish())
                    open_calls.clear()
                    finish_reason = "tool_calls"
                elif reason and open_calls:
                    log.warning("openai_stream_unterminated_calls", finish_reason=reason, count=len(open_calls))
                    open_calls.clear()

        if open_calls:
            log.warning("openai_stream_unterminated_calls", finish_reason=None, count=len(open_calls))
        yield DoneChunk(finish_reason=finish_reason, usage=usage)

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._config.openai_api_key}"}

    def _build_body(self, options: CallOptions, stream: bool = False) -> dict[str, Any]:
        api_messages: list[dict[str, Any]] = []
        for msg in options.messages:
            if msg.role == "tool":
                api_messages.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.role == "assistant" and msg.tool_calls:
                api_messages.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": tc.arguments},
                        }
                        for tc in msg.tool_calls
                    ],
                })
            else:
                api_messages.append({"role": msg.role, "content": msg.content})

        body: dict[str, Any] = {
            "model": options.model,
            "messages": api_messages,
            "max_tokens": options.max_tokens or self._config.max_tokens,
            "temperature": options.temperature if options.temperature is not None else self._config.temperature,
        }
        if options.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in options.tools
            ]
        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

"""Anthropic messages adapter."""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator

from anthropic import AsyncAnthropic

from scopeai.config import LLMConfig
from scopeai.core.llm.base import PartialToolCall, ProviderAdapter, parse_arguments
from scopeai.core.llm.types import (
    CallOptions,
    DoneChunk,
    LLMMessage,
    LLMResponse,
    LLMStreamChunk,
    LLMToolCall,
    LLMToolDefinition,
    LLMUsage,
    Provider,
    TextChunk,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
)
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


class AnthropicAdapter(ProviderAdapter):
    def __init__(self, config: LLMConfig, client: Any | None = None) -> None:
        self._config = config
        self._client = client or AsyncAnthropic(api_key=config.anthropic_api_key or None)

    @property
    def provider(self) -> Provider:
        return Provider.ANTHROPIC

    async def call(self, options: CallOptions) -> LLMResponse:
        kwargs = self._build_kwargs(options)
        response = await self._client.messages.create(**kwargs)
        return self._parse_response(response)

    async def stream(self, options: CallOptions) -> AsyncGenerator[LLMStreamChunk, None]:
        kwargs = self._build_kwargs(options)
        stream = await self._client.messages.create(**kwargs, stream=True)

        open_blocks: dict[int, PartialToolCall] = {}
        closed = 0
        input_tokens: int | None = None
        output_tokens: int | None = None

        try:
            async for event in stream:
                if options.aborted:
                    log.debug("anthropic_stream_aborted", discarded=len(open_blocks))
                    return

                if event.type == "message_start":
                    usage = getattr(event.message, "usage", None)
                    if usage is not None:
                        input_tokens = usage.input_tokens
                elif event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        open_blocks[event.index] = PartialToolCall(id=block.id, name=block.name)
                        yield ToolCallStart(id=block.id, name=block.name, index=event.index)
                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        yield TextChunk(delta.text)
                    elif delta.type == "input_json_delta":
                        pending = open_blocks.get(event.index)
                        if pending is not None and delta.partial_json:
                            pending.fragments.append(delta.partial_json)
                            yield ToolCallDelta(id=pending.id, arguments=delta.partial_json)
                elif event.type == "content_block_stop":
                    pending = open_blocks.pop(event.index, None)
                    if pending is not None:
                        closed += 1
                        yield ToolCallEnd(pending.finish())
                elif event.type == "message_delta":
                    usage = getattr(event, "usage", None)
                    if usage is not None:
                        output_tokens = usage.output_tokens
        finally:
            await stream.close()

        if open_blocks:
            log.warning("anthropic_stream_unterminated_calls", count=len(open_blocks))

        usage_out: LLMUsage | None = None
        if input_tokens is not None or output_tokens is not None:
            usage_out = LLMUsage(
                prompt_tokens=input_tokens or 0,
                completion_tokens=output_tokens or 0,
                total_tokens=(input_tokens or 0) + (output_tokens or 0),
            )
        yield DoneChunk(finish_reason="tool_calls" if closed else "stop", usage=usage_out)

    async def close(self) -> None:
        await self._client.close()

    def _build_kwargs(self, options: CallOptions) -> dict[str, Any]:
        system = "\n\n".join(m.content for m in options.messages if m.role == "system" and m.content)
        kwargs: dict[str, Any] = {
            "model": options.model,
            "messages": self._build_messages(options.messages),
            "max_tokens": options.max_tokens or self._config.max_tokens,
            "temperature": options.temperature if options.temperature is not None else self._config.temperature,
        }
        if system:
            kwargs["system"] = system
        if options.tools:
            kwargs["tools"] = [self._tool_schema(t) for t in options.tools]
        return kwargs

    @staticmethod
    def _tool_schema(tool: LLMToolDefinition) -> dict[str, Any]:
        return {
            "name": tool.name,
            "description": tool.description,
            "input_schema": {"type": "object", **tool.parameters},
        }

    @staticmethod
    def _build_messages(messages: list[LLMMessage]) -> list[dict[str, Any]]:
        api_messages: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == "system":
                continue
            if msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                # Consecutive tool results share one user turn
                prev = api_messages[-1] if api_messages else None
                if (
                    prev is not None
                    and prev["role"] == "user"
                    and isinstance(prev["content"], list)
                    and all(b.get("type") == "tool_result" for b in prev["content"])
                ):
                    prev["content"].append(block)
                else:
                    api_messages.append({"role": "user", "content": [block]})
            elif msg.role == "assistant" and msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    blocks.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": parse_arguments(tc.arguments),
                    })
                api_messages.append({"role": "assistant", "content": blocks})
            elif msg.role == "assistant":
                api_messages.append({"role": "assistant", "content": msg.content})
            else:
                api_messages.append({"role": "user", "content": msg.content})
        return api_messages

    @staticmethod
    def _parse_response(response: Any) -> LLMResponse:
        texts: list[str] = []
        tool_calls: list[LLMToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(LLMToolCall(
                    id=block.id,
                    name=block.name,
                    arguments=json.dumps(block.input or {}),
                ))

        usage = None
        if getattr(response, "usage", None) is not None:
            usage = LLMUsage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )
        return LLMResponse(
            content="".join(texts) if texts else None,
            tool_calls=tool_calls,
            usage=usage,
        )

"""Gemini generate-content adapter over httpx."""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator

import httpx

from scopeai.config import LLMConfig
from scopeai.core.llm.base import ProviderAdapter, parse_arguments, synth_call_id
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
    ToolCallEnd,
    ToolCallStart,
)
from scopeai.utils.logging import get_logger

log = get_logger(__name__)

# JSON-schema keywords the function-declaration schema accepts
_SCHEMA_KEYS = {"type", "format", "description", "nullable", "enum", "properties", "required", "items", "minimum", "maximum"}


def to_gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Convert a JSON schema to Gemini's OpenAPI subset (upper-case types, unknown keys dropped)."""
    out: dict[str, Any] = {}
    for key, value in schema.items():
        if key not in _SCHEMA_KEYS:
            continue
        if key == "type":
            out["type"] = str(value).upper()
        elif key == "properties":
            out["properties"] = {name: to_gemini_schema(sub) for name, sub in value.items()}
        elif key == "items":
            out["items"] = to_gemini_schema(value)
        else:
            out[key] = value
    return out


def _usage(meta: dict[str, Any] | None) -> LLMUsage | None:
    if not meta:
        return None
    return LLMUsage(
        prompt_tokens=meta.get("promptTokenCount", 0),
        completion_tokens=meta.get("candidatesTokenCount", 0),
        total_tokens=meta.get("totalTokenCount", 0),
    )


def _parts(data: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return []
    return (candidates[0].get("content") or {}).get("parts") or []


def _tool_call(part: dict[str, Any]) -> LLMToolCall:
    fc = part["functionCall"]
    return LLMToolCall(
        id=fc.get("id") or synth_call_id(),
        name=fc.get("name", ""),
        arguments=json.dumps(fc.get("args") or {}),
    )


class GoogleAdapter(ProviderAdapter):
    def __init__(self, config: LLMConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.google_base_url.rstrip("/"),
            timeout=config.stream_timeout,
        )

    @property
    def provider(self) -> Provider:
        return Provider.GOOGLE

    async def call(self, options: CallOptions) -> LLMResponse:
        body = self._build_body(options)
        resp = await self._client.post(
            f"/models/{options.model}:generateContent", json=body, headers=self._headers()
        )
        resp.raise_for_status()
        data = resp.json()

        texts: list[str] = []
        tool_calls: list[LLMToolCall] = []
        for part in _parts(data):
            if "functionCall" in part:
                tool_calls.append(_tool_call(part))
            elif part.get("text"):
                texts.append(part["text"])

        return LLMResponse(
            content="".join(texts) if texts else None,
            tool_calls=tool_calls,
            usage=_usage(data.get("usageMetadata")),
        )

    async def stream(self, options: CallOptions) -> AsyncGenerator[LLMStreamChunk, None]:
        body = self._build_body(options)
        calls = 0
        usage: LLMUsage | None = None

        async with self._client.stream(
            "POST",
            f"/models/{options.model}:streamGenerateContent",
            params={"alt": "sse"},
            json=body,
            headers=self._headers(),
        ) as resp:
            if resp.is_error:
                await resp.aread()
                resp.raise_for_status()

            async for line in resp.aiter_lines():
                if options.aborted:
                    log.debug("google_stream_aborted")
                    return
                if not line.startswith("data:"):
                    continue
                try:
                    chunk = json.loads(line[5:].strip())
                except json.JSONDecodeError:
                    log.warning("google_stream_bad_chunk", payload=line[:200])
                    continue

                if chunk.get("usageMetadata"):
                    usage = _usage(chunk["usageMetadata"])
                for index, part in enumerate(_parts(chunk)):
                    if "functionCall" in part:
                        # Function calls arrive whole
                        call = _tool_call(part)
                        calls += 1
                        yield ToolCallStart(id=call.id, name=call.name, index=index)
                        yield ToolCallEnd(call)
                    elif part.get("text"):
                        yield TextChunk(part["text"])

        yield DoneChunk(finish_reason="tool_calls" if calls else "stop", usage=usage)

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._config.google_api_key}

    def _build_body(self, options: CallOptions) -> dict[str, Any]:
        system = "\n\n".join(m.content for m in options.messages if m.role == "system" and m.content)
        body: dict[str, Any] = {
            "contents": self._build_contents(options.messages),
            "generationConfig": {
                "temperature": options.temperature if options.temperature is not None else self._config.temperature,
                "maxOutputTokens": options.max_tokens or self._config.max_tokens,
            },
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if options.tools:
            body["tools"] = [{"functionDeclarations": [self._declaration(t) for t in options.tools]}]
            body["toolConfig"] = {"functionCallingConfig": {"mode": "AUTO"}}
        return body

    @staticmethod
    def _declaration(tool: LLMToolDefinition) -> dict[str, Any]:
        parameters = to_gemini_schema({"type": "object", **tool.parameters})
        return {"name": tool.name, "description": tool.description, "parameters": parameters}

    @staticmethod
    def _build_contents(messages: list[LLMMessage]) -> list[dict[str, Any]]:
        contents: list[dict[str, Any]] = []
        call_names: dict[str, str] = {}
        for msg in messages:
            if msg.role == "system":
                continue
            if msg.role == "tool":
                response = parse_arguments(msg.content) if msg.content.startswith("{") else {}
                part = {
                    "functionResponse": {
                        "id": msg.tool_call_id,
                        "name": msg.name or call_names.get(msg.tool_call_id or "", ""),
                        "response": response or {"result": msg.content},
                    }
                }
                prev = contents[-1] if contents else None
                if prev is not None and prev["role"] == "user" and all(
                    "functionResponse" in p for p in prev["parts"]
                ):
                    prev["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
            elif msg.role == "assistant":
                parts: list[dict[str, Any]] = []
                if msg.content:
                    parts.append({"text": msg.content})
                for tc in msg.tool_calls:
                    call_names[tc.id] = tc.name
                    parts.append({
                        "functionCall": {"id": tc.id, "name": tc.name, "args": parse_arguments(tc.arguments)}
                    })
                if parts:
                    contents.append({"role": "model", "parts": parts})
            else:
                contents.append({"role": "user", "parts": [{"text": msg.content}]})
        return contents

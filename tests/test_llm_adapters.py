"""Tests for the OpenAI, Anthropic and Gemini adapters."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from scopeai.config import LLMConfig
from scopeai.core.llm.anthropic import AnthropicAdapter
from scopeai.core.llm.google import GoogleAdapter, to_gemini_schema
from scopeai.core.llm.openai import OpenAIAdapter
from scopeai.core.llm.types import (
    CallOptions,
    DoneChunk,
    LLMMessage,
    LLMToolCall,
    LLMToolDefinition,
    TextChunk,
    ToolCallDelta,
    ToolCallEnd,
    ToolCallStart,
)


TOOL = LLMToolDefinition(
    name="get_customer_invoices",
    description="List invoices",
    parameters={
        "type": "object",
        "properties": {"status": {"type": "string", "enum": ["paid", "unpaid"]}},
        "additionalProperties": False,
    },
)


def _sse(*events) -> bytes:
    lines = [f"data: {json.dumps(e)}\n\n" for e in events]
    return "".join(lines).encode() + b"data: [DONE]\n\n"


def _gemini_sse(*events) -> bytes:
    return "".join(f"data: {json.dumps(e)}\n\n" for e in events).encode()


async def _collect(stream):
    return [chunk async for chunk in stream]


async def _collect_aborting(stream, abort, when):
    """Collect chunks, setting ``abort`` right after the first chunk matching ``when``."""
    chunks = []
    async for chunk in stream:
        chunks.append(chunk)
        if when(chunk):
            abort.set()
    return chunks


def _conversation() -> list[LLMMessage]:
    call = LLMToolCall(id="call_1", name="get_customer_invoices", arguments='{"status": "unpaid"}')
    return [
        LLMMessage(role="system", content="Du är en hjälpsam assistent."),
        LLMMessage(role="user", content="Visa obetalda fakturor"),
        LLMMessage(role="assistant", content="", tool_calls=[call]),
        LLMMessage(role="tool", content='{"success": true}', tool_call_id="call_1", name="get_customer_invoices"),
    ]


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class TestOpenAIAdapter:
    def _adapter(self, handler, captured=None):
        def wrapped(request: httpx.Request) -> httpx.Response:
            if captured is not None:
                captured.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(wrapped), base_url="https://api.test/v1")
        return OpenAIAdapter(LLMConfig(openai_api_key="sk-test"), client=client)

    async def test_call_parses_tool_calls(self):
        captured = []

        def handler(request):
            return httpx.Response(200, json={
                "choices": [{
                    "message": {
                        "content": None,
                        "tool_calls": [{
                            "id": "call_abc",
                            "type": "function",
                            "function": {"name": "get_customer_invoices", "arguments": '{"status": "unpaid"}'},
                        }],
                    },
                    "finish_reason": "tool_calls",
                }],
                "usage": {"prompt_tokens": 12, "completion_tokens": 5, "total_tokens": 17},
            })

        adapter = self._adapter(handler, captured)
        response = await adapter.call(CallOptions(model="gpt-4o", messages=_conversation(), tools=[TOOL]))

        assert response.finish_reason == "tool_calls"
        assert response.tool_calls[0].id == "call_abc"
        assert json.loads(response.tool_calls[0].arguments) == {"status": "unpaid"}
        assert response.usage.total_tokens == 17

        body = json.loads(captured[0].content)
        assert captured[0].headers["authorization"] == "Bearer sk-test"
        assert body["tools"][0]["type"] == "function"
        assert body["tools"][0]["function"]["name"] == "get_customer_invoices"
        roles = [m["role"] for m in body["messages"]]
        assert roles == ["system", "user", "assistant", "tool"]
        assert body["messages"][2]["tool_calls"][0]["id"] == "call_1"
        assert body["messages"][3]["tool_call_id"] == "call_1"

    async def test_call_text_only(self):
        adapter = self._adapter(lambda r: httpx.Response(200, json={
            "choices": [{"message": {"content": "Hej!"}, "finish_reason": "stop"}],
        }))
        response = await adapter.call(CallOptions(model="gpt-4o", messages=[LLMMessage(role="user", content="Hej")]))
        assert response.content == "Hej!"
        assert response.tool_calls == []
        assert response.finish_reason == "stop"

    async def test_call_http_error_raises(self):
        adapter = self._adapter(lambda r: httpx.Response(429, json={"error": {"message": "Rate limited"}}))
        with pytest.raises(httpx.HTTPStatusError):
            await adapter.call(CallOptions(model="gpt-4o", messages=[]))

    async def test_stream_two_deltas_then_finish(self):
        body = _sse(
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "id": "call_1", "type": "function",
                "function": {"name": "get_customer_invoices", "arguments": '{"sta'},
            }]}, "finish_reason": None}]},
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "function": {"arguments": 'tus": "unpaid"}'},
            }]}, "finish_reason": None}]},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
            {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7}},
        )
        adapter = self._adapter(lambda r: httpx.Response(200, content=body))
        chunks = await _collect(adapter.stream(CallOptions(model="gpt-4o", messages=[], tools=[TOOL])))

        starts = [c for c in chunks if isinstance(c, ToolCallStart)]
        deltas = [c for c in chunks if isinstance(c, ToolCallDelta)]
        ends = [c for c in chunks if isinstance(c, ToolCallEnd)]
        assert len(starts) == 1
        assert len(deltas) == 2
        assert len(ends) == 1
        assert ends[0].call.id == "call_1"
        assert json.loads(ends[0].call.arguments) == {"status": "unpaid"}
        assert json.loads("".join(d.arguments for d in deltas)) == json.loads(ends[0].call.arguments)

        done = chunks[-1]
        assert isinstance(done, DoneChunk)
        assert done.finish_reason == "tool_calls"
        assert done.usage.total_tokens == 7

    async def test_stream_text(self):
        body = _sse(
            {"choices": [{"delta": {"content": "Hej "}, "finish_reason": None}]},
            {"choices": [{"delta": {"content": "där"}, "finish_reason": "stop"}]},
        )
        adapter = self._adapter(lambda r: httpx.Response(200, content=body))
        chunks = await _collect(adapter.stream(CallOptions(model="gpt-4o", messages=[])))
        assert "".join(c.content for c in chunks if isinstance(c, TextChunk)) == "Hej där"
        assert chunks[-1].finish_reason == "stop"

    async def test_stream_sends_stream_flags(self):
        captured = []
        adapter = self._adapter(lambda r: httpx.Response(200, content=_sse()), captured)
        await _collect(adapter.stream(CallOptions(model="gpt-4o", messages=[])))
        body = json.loads(captured[0].content)
        assert body["stream"] is True
        assert body["stream_options"] == {"include_usage": True}

    async def test_stream_two_calls_end_in_index_order(self):
        body = _sse(
            {"choices": [{"delta": {"tool_calls": [
                {"index": 1, "id": "b", "function": {"name": "get_accounts", "arguments": "{}"}},
                {"index": 0, "id": "a", "function": {"name": "get_transactions", "arguments": "{}"}},
            ]}, "finish_reason": "tool_calls"}]},
        )
        adapter = self._adapter(lambda r: httpx.Response(200, content=body))
        chunks = await _collect(adapter.stream(CallOptions(model="gpt-4o", messages=[])))
        ends = [c.call.id for c in chunks if isinstance(c, ToolCallEnd)]
        assert ends == ["a", "b"]

    async def test_stream_abort_discards_open_call(self):
        body = _sse(
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "id": "call_1", "function": {"name": "get_accounts", "arguments": '{"per'},
            }]}, "finish_reason": None}]},
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "function": {"arguments": 'iod": "2024"}'},
            }]}, "finish_reason": None}]},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        )
        adapter = self._adapter(lambda r: httpx.Response(200, content=body))
        abort = asyncio.Event()
        options = CallOptions(model="gpt-4o", messages=[], abort=abort)

        chunks = await _collect_aborting(adapter.stream(options), abort, lambda c: isinstance(c, ToolCallDelta))

        assert [c.type for c in chunks] == ["tool_call_start", "tool_call_delta"]

    async def test_stream_start_waits_for_call_id(self):
        body = _sse(
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "function": {"name": "get_accounts", "arguments": '{"per'},
            }]}, "finish_reason": None}]},
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "id": "call_7", "function": {"arguments": 'iod": "2024"}'},
            }]}, "finish_reason": None}]},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        )
        adapter = self._adapter(lambda r: httpx.Response(200, content=body))
        chunks = await _collect(adapter.stream(CallOptions(model="gpt-4o", messages=[])))

        assert [c.type for c in chunks] == ["tool_call_start", "tool_call_delta", "tool_call_end", "done"]
        assert chunks[0].id == "call_7"
        assert chunks[0].name == "get_accounts"
        assert chunks[1].id == "call_7"
        assert json.loads(chunks[1].arguments) == {"period": "2024"}
        assert chunks[2].call.id == "call_7"

    async def test_stream_call_without_id_gets_stable_one(self):
        body = _sse(
            {"choices": [{"delta": {"tool_calls": [{
                "index": 0, "function": {"name": "get_accounts", "arguments": "{}"},
            }]}, "finish_reason": "tool_calls"}]},
        )
        adapter = self._adapter(lambda r: httpx.Response(200, content=body))
        chunks = await _collect(adapter.stream(CallOptions(model="gpt-4o", messages=[])))

        start = next(c for c in chunks if isinstance(c, ToolCallStart))
        end = next(c for c in chunks if isinstance(c, ToolCallEnd))
        assert start.id.startswith("call_")
        assert start.id == end.call.id


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

def _event(type_, **kwargs):
    return SimpleNamespace(type=type_, **kwargs)


class FakeAnthropicStream:
    def __init__(self, events):
        self._events = events
        self.closed = False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for event in self._events:
            yield event

    async def close(self):
        self.closed = True


def _anthropic_client(result):
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=result)
    client.close = AsyncMock()
    return client


class TestAnthropicAdapter:
    async def test_call_maps_blocks(self):
        response = SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Jag kollar."),
                SimpleNamespace(type="tool_use", id="toolu_1", name="get_customer_invoices", input={"status": "unpaid"}),
            ],
            usage=SimpleNamespace(input_tokens=10, output_tokens=6),
        )
        client = _anthropic_client(response)
        adapter = AnthropicAdapter(LLMConfig(), client=client)

        result = await adapter.call(CallOptions(model="claude-sonnet-4", messages=_conversation(), tools=[TOOL]))

        assert result.content == "Jag kollar."
        assert result.finish_reason == "tool_calls"
        assert result.tool_calls[0].id == "toolu_1"
        assert json.loads(result.tool_calls[0].arguments) == {"status": "unpaid"}
        assert result.usage.total_tokens == 16

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Du är en hjälpsam assistent."
        assert kwargs["tools"][0]["input_schema"]["type"] == "object"
        assistant = kwargs["messages"][1]
        assert assistant["role"] == "assistant"
        assert assistant["content"][0] == {
            "type": "tool_use", "id": "call_1", "name": "get_customer_invoices", "input": {"status": "unpaid"},
        }
        tool_turn = kwargs["messages"][2]
        assert tool_turn["role"] == "user"
        assert tool_turn["content"][0]["tool_use_id"] == "call_1"

    async def test_consecutive_tool_results_share_one_turn(self):
        calls = [
            LLMToolCall(id="a", name="get_accounts", arguments="{}"),
            LLMToolCall(id="b", name="get_transactions", arguments="{}"),
        ]
        messages = [
            LLMMessage(role="user", content="Visa"),
            LLMMessage(role="assistant", content="", tool_calls=calls),
            LLMMessage(role="tool", content="{}", tool_call_id="a"),
            LLMMessage(role="tool", content="{}", tool_call_id="b"),
        ]
        api = AnthropicAdapter._build_messages(messages)
        assert len(api) == 3
        assert [b["tool_use_id"] for b in api[2]["content"]] == ["a", "b"]

    async def test_stream_events(self):
        stream = FakeAnthropicStream([
            _event("message_start", message=SimpleNamespace(usage=SimpleNamespace(input_tokens=9))),
            _event("content_block_start", index=0, content_block=SimpleNamespace(type="text")),
            _event("content_block_delta", index=0, delta=SimpleNamespace(type="text_delta", text="Kollar")),
            _event("content_block_stop", index=0),
            _event("content_block_start", index=1,
                   content_block=SimpleNamespace(type="tool_use", id="toolu_9", name="get_accounts")),
            _event("content_block_delta", index=1,
                   delta=SimpleNamespace(type="input_json_delta", partial_json='{"per')),
            _event("content_block_delta", index=1,
                   delta=SimpleNamespace(type="input_json_delta", partial_json='iod": "2024"}')),
            _event("content_block_stop", index=1),
            _event("message_delta", usage=SimpleNamespace(output_tokens=4)),
            _event("message_stop"),
        ])
        adapter = AnthropicAdapter(LLMConfig(), client=_anthropic_client(stream))

        chunks = await _collect(adapter.stream(CallOptions(model="claude-sonnet-4", messages=[])))

        assert [c.type for c in chunks] == [
            "text", "tool_call_start", "tool_call_delta", "tool_call_delta", "tool_call_end", "done",
        ]
        end = chunks[4]
        assert end.call.id == "toolu_9"
        assert json.loads(end.call.arguments) == {"period": "2024"}
        assert chunks[-1].finish_reason == "tool_calls"
        assert chunks[-1].usage.total_tokens == 13
        assert stream.closed

    async def test_stream_tool_without_arguments(self):
        stream = FakeAnthropicStream([
            _event("content_block_start", index=0,
                   content_block=SimpleNamespace(type="tool_use", id="toolu_1", name="get_employees")),
            _event("content_block_stop", index=0),
        ])
        adapter = AnthropicAdapter(LLMConfig(), client=_anthropic_client(stream))
        chunks = await _collect(adapter.stream(CallOptions(model="claude-sonnet-4", messages=[])))
        end = next(c for c in chunks if isinstance(c, ToolCallEnd))
        assert end.call.arguments == "{}"

    async def test_stream_abort_discards_open_block(self):
        stream = FakeAnthropicStream([
            _event("content_block_start", index=0,
                   content_block=SimpleNamespace(type="tool_use", id="toolu_2", name="get_accounts")),
            _event("content_block_delta", index=0,
                   delta=SimpleNamespace(type="input_json_delta", partial_json='{"per')),
            _event("content_block_delta", index=0,
                   delta=SimpleNamespace(type="input_json_delta", partial_json='iod": "2024"}')),
            _event("content_block_stop", index=0),
            _event("message_stop"),
        ])
        adapter = AnthropicAdapter(LLMConfig(), client=_anthropic_client(stream))
        abort = asyncio.Event()
        options = CallOptions(model="claude-sonnet-4", messages=[], abort=abort)

        chunks = await _collect_aborting(adapter.stream(options), abort, lambda c: isinstance(c, ToolCallStart))

        assert [c.type for c in chunks] == ["tool_call_start"]
        assert stream.closed


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------

class TestGoogleAdapter:
    def _adapter(self, handler, captured=None):
        def wrapped(request: httpx.Request) -> httpx.Response:
            if captured is not None:
                captured.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(wrapped), base_url="https://gemini.test/v1beta")
        return GoogleAdapter(LLMConfig(google_api_key="g-key"), client=client)

    def test_schema_conversion(self):
        schema = to_gemini_schema({
            "type": "object",
            "properties": {
                "amount": {"type": "number", "minimum": 0},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["amount"],
            "additionalProperties": False,
        })
        assert schema["type"] == "OBJECT"
        assert schema["properties"]["amount"] == {"type": "NUMBER", "minimum": 0}
        assert schema["properties"]["tags"]["items"]["type"] == "STRING"
        assert "additionalProperties" not in schema

    async def test_call_request_and_response(self):
        captured = []

        def handler(request):
            return httpx.Response(200, json={
                "candidates": [{"content": {"role": "model", "parts": [
                    {"functionCall": {"name": "get_customer_invoices", "args": {"status": "paid"}}},
                ]}}],
                "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2, "totalTokenCount": 6},
            })

        adapter = self._adapter(handler, captured)
        response = await adapter.call(CallOptions(model="gemini-2.0-flash", messages=_conversation(), tools=[TOOL]))

        assert response.finish_reason == "tool_calls"
        call = response.tool_calls[0]
        assert call.id.startswith("call_")
        assert json.loads(call.arguments) == {"status": "paid"}
        assert response.usage.total_tokens == 6

        request = captured[0]
        assert request.url.path.endswith("/models/gemini-2.0-flash:generateContent")
        assert request.headers["x-goog-api-key"] == "g-key"
        body = json.loads(request.content)
        assert body["systemInstruction"]["parts"][0]["text"] == "Du är en hjälpsam assistent."
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
        fn_response = body["contents"][2]["parts"][0]["functionResponse"]
        assert fn_response["id"] == "call_1"
        assert fn_response["name"] == "get_customer_invoices"
        assert fn_response["response"] == {"success": True}
        assert body["toolConfig"]["functionCallingConfig"]["mode"] == "AUTO"

    async def test_vendor_id_is_kept(self):
        adapter = self._adapter(lambda r: httpx.Response(200, json={
            "candidates": [{"content": {"parts": [
                {"functionCall": {"id": "fc-7", "name": "get_accounts", "args": {}}},
            ]}}],
        }))
        response = await adapter.call(CallOptions(model="gemini-2.0-flash", messages=[]))
        assert response.tool_calls[0].id == "fc-7"

    async def test_stream_emits_whole_calls(self):
        captured = []
        body = _gemini_sse(
            {"candidates": [{"content": {"parts": [{"text": "Ett ögonblick"}]}}]},
            {"candidates": [{"content": {"parts": [
                {"functionCall": {"name": "get_accounts", "args": {"period": "2024"}}},
            ]}}], "usageMetadata": {"promptTokenCount": 1, "candidatesTokenCount": 1, "totalTokenCount": 2}},
        )
        adapter = self._adapter(lambda r: httpx.Response(200, content=body), captured)
        chunks = await _collect(adapter.stream(CallOptions(model="gemini-2.0-flash", messages=[])))

        assert [c.type for c in chunks] == ["text", "tool_call_start", "tool_call_end", "done"]
        assert chunks[1].id == chunks[2].call.id
        assert json.loads(chunks[2].call.arguments) == {"period": "2024"}
        assert chunks[-1].finish_reason == "tool_calls"
        assert captured[0].url.params["alt"] == "sse"

    async def test_stream_abort_stops_before_next_event(self):
        body = _gemini_sse(
            {"candidates": [{"content": {"parts": [{"text": "Ett ögonblick"}]}}]},
            {"candidates": [{"content": {"parts": [
                {"functionCall": {"name": "get_accounts", "args": {}}},
            ]}}]},
        )
        adapter = self._adapter(lambda r: httpx.Response(200, content=body))
        abort = asyncio.Event()
        options = CallOptions(model="gemini-2.0-flash", messages=[], abort=abort)

        chunks = await _collect_aborting(adapter.stream(options), abort, lambda c: isinstance(c, TextChunk))

        assert [c.type for c in chunks] == ["text"]

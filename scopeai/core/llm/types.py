"""LLM data types shared by every provider adapter."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


@dataclass
class LLMToolCall:
    id: str
    name: str
    arguments: str  # raw JSON text, exactly as the vendor produced it


@dataclass
class LLMMessage:
    role: str  # "system", "user", "assistant", "tool"
    content: str = ""
    tool_call_id: str | None = None
    name: str | None = None
    tool_calls: list[LLMToolCall] = field(default_factory=list)


@dataclass(frozen=True)
class LLMToolDefinition:
    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


FinishReason = Literal["stop", "tool_calls"]


@dataclass
class LLMResponse:
    content: str | None = None
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    finish_reason: FinishReason = "stop"
    usage: LLMUsage | None = None

    def __post_init__(self) -> None:
        self.finish_reason = "tool_calls" if self.tool_calls else "stop"


@dataclass
class CallOptions:
    model: str
    messages: list[LLMMessage]
    tools: list[LLMToolDefinition] = field(default_factory=list)
    temperature: float | None = None
    max_tokens: int | None = None
    timeout: float | None = None
    abort: asyncio.Event | None = None

    @property
    def aborted(self) -> bool:
        return self.abort is not None and self.abort.is_set()


# ---------------------------------------------------------------------------
# Stream chunks
# ---------------------------------------------------------------------------

@dataclass
class TextChunk:
    content: str
    type: str = field(default="text", init=False)


@dataclass
class ToolCallStart:
    id: str
    name: str
    index: int = 0
    type: str = field(default="tool_call_start", init=False)


@dataclass
class ToolCallDelta:
    id: str
    arguments: str
    type: str = field(default="tool_call_delta", init=False)


@dataclass
class ToolCallEnd:
    call: LLMToolCall
    type: str = field(default="tool_call_end", init=False)


@dataclass
class DoneChunk:
    finish_reason: FinishReason = "stop"
    usage: LLMUsage | None = None
    type: str = field(default="done", init=False)


LLMStreamChunk = Union[TextChunk, ToolCallStart, ToolCallDelta, ToolCallEnd, DoneChunk]

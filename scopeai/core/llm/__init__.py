"""LLM provider subpackage."""

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
from scopeai.core.llm.base import ProviderAdapter
from scopeai.core.llm.anthropic import AnthropicAdapter
from scopeai.core.llm.google import GoogleAdapter
from scopeai.core.llm.openai import OpenAIAdapter
from scopeai.core.llm.client import LLMClient

__all__ = [
    "CallOptions",
    "DoneChunk",
    "LLMMessage",
    "LLMResponse",
    "LLMStreamChunk",
    "LLMToolCall",
    "LLMToolDefinition",
    "LLMUsage",
    "Provider",
    "TextChunk",
    "ToolCallDelta",
    "ToolCallEnd",
    "ToolCallStart",
    "ProviderAdapter",
    "AnthropicAdapter",
    "GoogleAdapter",
    "OpenAIAdapter",
    "LLMClient",
]

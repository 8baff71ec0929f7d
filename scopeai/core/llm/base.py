"""Provider adapter abstract base class."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator
from uuid import uuid4

from scopeai.core.llm.types import CallOptions, LLMResponse, LLMStreamChunk, LLMToolCall, Provider
from scopeai.utils.logging import get_logger

log = get_logger(__name__)


class ProviderAdapter(ABC):
    """Translates neutral call options into one vendor's wire protocol and back."""

    @property
    @abstractmethod
    def provider(self) -> Provider: ...

    @abstractmethod
    async def call(self, options: CallOptions) -> LLMResponse: ...

    @abstractmethod
    def stream(self, options: CallOptions) -> AsyncGenerator[LLMStreamChunk, None]: ...

    async def close(self) -> None:
        """Clean up resources. Override if needed."""


@dataclass
class PartialToolCall:
    """A streamed tool call whose argument fragments are still arriving."""

    id: str
    name: str
    fragments: list[str] = field(default_factory=list)
    # Set once ToolCallStart went out; id and name are frozen from then on
    started: bool = False

    def finish(self) -> LLMToolCall:
        return LLMToolCall(id=self.id, name=self.name, arguments="".join(self.fragments) or "{}")


def synth_call_id() -> str:
    """Id for vendors that leave a tool call unnamed."""
    return f"call_{uuid4().hex[:12]}"


def parse_arguments(arguments: str) -> dict[str, Any]:
    """Decode raw tool-call JSON for vendors that want structured input back."""
    if not arguments:
        return {}
    try:
        value = json.loads(arguments)
    except json.JSONDecodeError:
        log.warning("tool_arguments_not_json", length=len(arguments))
        return {}
    return value if isinstance(value, dict) else {}

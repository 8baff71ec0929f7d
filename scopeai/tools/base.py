"""Base tool interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from scopeai.core.llm.types import LLMToolDefinition
from scopeai.models import AgentContext


def format_sek(amount: float) -> str:
    return f"{amount:,.0f}".replace(",", " ") + " kr"


@dataclass
class ToolResult:
    success: bool
    output: str = ""
    error: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Structured result handed back to the model."""
        payload: dict[str, Any] = {"message": self.output}
        if self.data:
            payload["data"] = self.data
        return payload


class BaseTool(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for tool parameters."""
        ...

    @property
    def mutating(self) -> bool:
        """Mutating tools only run after a human approves them."""
        return False

    @abstractmethod
    async def execute(self, context: AgentContext, **kwargs: Any) -> ToolResult: ...

    def summarize(self, args: dict[str, Any]) -> str:
        """One-line description of what approving this call will do."""
        return f"{self.name}({', '.join(f'{k}={v!r}' for k, v in args.items())})"

    def warnings(self, args: dict[str, Any]) -> list[str]:
        return []

    def to_definition(self) -> LLMToolDefinition:
        return LLMToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

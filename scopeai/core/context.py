"""Conversation history trimmed to a message and token budget."""

from __future__ import annotations

from typing import Callable, Iterable

import tiktoken

from scopeai.core.llm.types import LLMMessage
from scopeai.models import StoredMessage
from scopeai.utils.logging import get_logger

log = get_logger(__name__)

TokenCounter = Callable[[str], int]

# Role and framing overhead per message
_MESSAGE_OVERHEAD = 4


def default_counter() -> TokenCounter:
    tokenizer = tiktoken.get_encoding("cl100k_base")
    return lambda text: len(tokenizer.encode(text))


class HistoryWindow:
    """Keeps the newest messages that fit both budgets, oldest first."""

    def __init__(
        self,
        max_messages: int = 20,
        max_tokens: int = 8_000,
        counter: TokenCounter | None = None,
    ) -> None:
        self._max_messages = max_messages
        self._max_tokens = max_tokens
        self._counter = counter

    def count_tokens(self, text: str) -> int:
        if self._counter is None:
            # Loading the encoding is slow; defer it until first use
            self._counter = default_counter()
        return self._counter(text)

    def message_tokens(self, message: LLMMessage) -> int:
        return self.count_tokens(message.content) + _MESSAGE_OVERHEAD

    def fit(self, messages: list[LLMMessage]) -> list[LLMMessage]:
        kept: list[LLMMessage] = []
        total = 0
        for message in reversed(messages[-self._max_messages:] if self._max_messages else []):
            tokens = self.message_tokens(message)
            if total + tokens > self._max_tokens:
                break
            kept.append(message)
            total += tokens
        kept.reverse()
        if len(kept) < len(messages):
            log.debug("history_trimmed", kept=len(kept), dropped=len(messages) - len(kept), tokens=total)
        return kept

    def from_stored(self, stored: Iterable[StoredMessage]) -> list[LLMMessage]:
        """Convert persisted turns and fit them."""
        return self.fit([LLMMessage(role=m.role, content=m.content) for m in stored if m.content])

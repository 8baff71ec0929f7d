"""Provider-agnostic LLM client: routing, deadlines and error normalization."""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import AsyncIterator, Callable

from scopeai.config import LLMConfig
from scopeai.core.llm.anthropic import AnthropicAdapter
from scopeai.core.llm.base import ProviderAdapter
from scopeai.core.llm.google import GoogleAdapter
from scopeai.core.llm.openai import OpenAIAdapter
from scopeai.core.llm.types import CallOptions, LLMResponse, LLMStreamChunk, Provider
from scopeai.errors import LLMError, LLMTimeoutError, ProviderError, UnknownModelError
from scopeai.utils.logging import get_logger

log = get_logger(__name__)

# Checked in order after the configured exact-model map
MODEL_PREFIXES: tuple[tuple[str, Provider], ...] = (
    ("gpt-", Provider.OPENAI),
    ("o1", Provider.OPENAI),
    ("o3", Provider.OPENAI),
    ("o4", Provider.OPENAI),
    ("claude-", Provider.ANTHROPIC),
    ("gemini-", Provider.GOOGLE),
)

_FACTORIES: dict[Provider, Callable[[LLMConfig], ProviderAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.GOOGLE: GoogleAdapter,
}


class LLMClient:
    """Single entry point for every model call.

    Adapters are created lazily per provider unless injected. Calls are never
    retried; a deadline expiry sets the shared abort signal before raising.
    """

    def __init__(
        self,
        config: LLMConfig,
        adapters: dict[Provider, ProviderAdapter] | None = None,
    ) -> None:
        self._config = config
        self._adapters: dict[Provider, ProviderAdapter] = dict(adapters or {})

    @property
    def default_model(self) -> str:
        return self._config.default_model

    def resolve_provider(self, model: str) -> Provider:
        mapped = self._config.models.get(model)
        if mapped:
            return Provider(mapped)
        for prefix, provider in MODEL_PREFIXES:
            if model.startswith(prefix):
                return provider
        raise UnknownModelError(model)

    def adapter_for(self, provider: Provider) -> ProviderAdapter:
        adapter = self._adapters.get(provider)
        if adapter is None:
            adapter = _FACTORIES[provider](self._config)
            self._adapters[provider] = adapter
        return adapter

    async def call(self, options: CallOptions) -> LLMResponse:
        provider = self.resolve_provider(options.model)
        adapter = self.adapter_for(provider)
        timeout = options.timeout or self._config.timeout
        abort = options.abort or asyncio.Event()
        options = replace(options, abort=abort)

        start = time.monotonic()
        call_task = asyncio.ensure_future(adapter.call(options))
        abort_task = asyncio.ensure_future(abort.wait())
        try:
            done, _ = await asyncio.wait(
                {call_task, abort_task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (call_task, abort_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(call_task, abort_task, return_exceptions=True)

        if call_task in done:
            if call_task.cancelled():
                raise asyncio.CancelledError()
            exc = call_task.exception()
            if exc is not None:
                log.warning("llm_call_failed", model=options.model, provider=provider.value, error=str(exc))
                if isinstance(exc, LLMError):
                    raise exc
                raise ProviderError.from_exception(provider.value, exc) from exc
            response = call_task.result()
            log.info(
                "llm_call",
                model=options.model,
                provider=provider.value,
                finish_reason=response.finish_reason,
                tool_calls=len(response.tool_calls),
                latency_ms=int((time.monotonic() - start) * 1000),
            )
            return response

        if abort_task in done:
            log.info("llm_call_aborted", model=options.model)
            raise asyncio.CancelledError()

        abort.set()
        log.warning("llm_call_timeout", model=options.model, timeout=timeout)
        raise LLMTimeoutError(options.model, timeout)

    async def stream(self, options: CallOptions) -> AsyncIterator[LLMStreamChunk]:
        provider = self.resolve_provider(options.model)
        adapter = self.adapter_for(provider)
        timeout = options.timeout or self._config.stream_timeout
        abort = options.abort or asyncio.Event()
        options = replace(options, abort=abort)

        deadline = asyncio.get_running_loop().time() + timeout
        chunks = adapter.stream(options)
        try:
            while True:
                if abort.is_set():
                    raise asyncio.CancelledError()
                try:
                    async with asyncio.timeout_at(deadline):
                        chunk = await anext(chunks)
                except StopAsyncIteration:
                    break
                except LLMError:
                    raise
                except TimeoutError as exc:
                    abort.set()
                    log.warning("llm_stream_timeout", model=options.model, timeout=timeout)
                    raise LLMTimeoutError(options.model, timeout) from exc
                except Exception as exc:
                    log.warning("llm_stream_failed", model=options.model, provider=provider.value, error=str(exc))
                    raise ProviderError.from_exception(provider.value, exc) from exc
                yield chunk
        finally:
            await chunks.aclose()

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()
        self._adapters.clear()

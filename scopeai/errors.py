"""Exception hierarchy for the agent core."""

from __future__ import annotations

from typing import Any


class ScopeError(Exception):
    """Base class for all Scope AI errors."""


# ---------------------------------------------------------------------------
# LLM layer
# ---------------------------------------------------------------------------

class LLMError(ScopeError):
    pass


class ProviderError(LLMError):
    """A vendor call failed. Code and message are kept exactly as the vendor sent them."""

    def __init__(self, provider: str, message: str, code: int | str | None = None) -> None:
        super().__init__(f"{provider}: {message}" if code is None else f"{provider} [{code}]: {message}")
        self.provider = provider
        self.code = code
        self.message = message

    @classmethod
    def from_exception(cls, provider: str, exc: BaseException) -> ProviderError:
        code: Any = getattr(exc, "status_code", None)
        response = getattr(exc, "response", None)
        if code is None and response is not None:
            code = getattr(response, "status_code", None)
        message = getattr(exc, "message", None) or _body_message(response) or str(exc) or type(exc).__name__
        return cls(provider, message, code)


def _body_message(response: Any) -> str | None:
    """Pull ``error.message`` out of a vendor's JSON error body, if there is one."""
    if response is None:
        return None
    try:
        body = response.json()
    except (ValueError, RuntimeError, AttributeError):
        return None
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        message = body["error"].get("message")
        return str(message) if message else None
    return None


class LLMTimeoutError(LLMError, TimeoutError):
    def __init__(self, model: str, timeout: float) -> None:
        super().__init__(f"LLM call to {model} exceeded {timeout:.1f}s")
        self.model = model
        self.timeout = timeout


class UnknownModelError(LLMError):
    def __init__(self, model: str) -> None:
        super().__init__(f"No provider is configured for model {model!r}")
        self.model = model


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class ToolError(ScopeError):
    pass


class UnknownToolError(ToolError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolValidationError(ToolError):
    def __init__(self, name: str, errors: list[str]) -> None:
        super().__init__(f"Invalid arguments for {name}: " + "; ".join(errors))
        self.name = name
        self.errors = errors


# ---------------------------------------------------------------------------
# Confirmations
# ---------------------------------------------------------------------------

class ConfirmationError(ScopeError):
    def __init__(self, confirmation_id: str, message: str) -> None:
        super().__init__(message)
        self.confirmation_id = confirmation_id


class ConfirmationNotFoundError(ConfirmationError):
    def __init__(self, confirmation_id: str, message: str | None = None) -> None:
        super().__init__(confirmation_id, message or f"Confirmation {confirmation_id} not found")


class ConfirmationAlreadyResolvedError(ConfirmationNotFoundError):
    def __init__(self, confirmation_id: str) -> None:
        super().__init__(confirmation_id, f"Confirmation {confirmation_id} was already resolved")


class ConfirmationExpiredError(ConfirmationError):
    def __init__(self, confirmation_id: str, confirmation: Any = None) -> None:
        super().__init__(confirmation_id, f"Confirmation {confirmation_id} has expired")
        self.confirmation = confirmation


# ---------------------------------------------------------------------------
# Agents and planning
# ---------------------------------------------------------------------------

class MaxIterationsExceeded(ScopeError):
    def __init__(self, max_rounds: int, domain: str = "") -> None:
        super().__init__(f"Tool loop exceeded {max_rounds} rounds" + (f" in {domain}" if domain else ""))
        self.max_rounds = max_rounds
        self.domain = domain


class PlanError(ScopeError, ValueError):
    pass

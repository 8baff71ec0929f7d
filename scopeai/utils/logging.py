"""structlog configuration.

Tool arguments and user text end up in log events, and in bookkeeping
those routinely hold personal identity numbers, bank details and provider
keys. :func:`redact` masks them before anything is rendered.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any, ContextManager

import structlog

REDACTED = "***"

# Values under these keys are masked whole, at any depth
_SECRET_KEYS = frozenset({
    "api_key",
    "anthropic_api_key",
    "openai_api_key",
    "google_api_key",
    "authorization",
    "password",
    "token",
    "personnummer",
    "personal_number",
    "bankgiro",
    "plusgiro",
    "iban",
    "account_number",
    "clearing_number",
})

_VALUE_PATTERNS = [
    # Personnummer/samordningsnummer, with or without century and separator
    re.compile(r"\b(?:19|20)?\d{6}[-+]?\d{4}\b"),
    re.compile(r"\bBearer\s+[\w\-.]+"),
    re.compile(r"\b(?:sk-|AIza)[\w\-]{16,}"),
]


def _is_secret(key: Any) -> bool:
    return isinstance(key, str) and key.lower() in _SECRET_KEYS


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        for pattern in _VALUE_PATTERNS:
            value = pattern.sub(REDACTED, value)
        return value
    if isinstance(value, dict):
        return {k: REDACTED if _is_secret(k) else _scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    return value


def redact(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Mask identity numbers, bank details and credentials, including inside tool arguments."""
    for key, value in list(event_dict.items()):
        event_dict[key] = REDACTED if _is_secret(key) else _scrub(value)
    return event_dict


def bind_turn(conversation_id: str, user_id: str, company_id: str) -> ContextManager[Any]:
    """Tag every event logged inside the block, including from spawned tasks, with the turn's owner."""
    return structlog.contextvars.bound_contextvars(
        conversation_id=conversation_id,
        user_id=user_id,
        company_id=company_id,
    )


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            redact,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # Provider SDKs log request bodies at DEBUG
    for name in ("httpx", "httpcore", "anthropic", "aiosqlite"):
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    if numeric_level <= logging.DEBUG:
        get_logger(__name__).warning("debug_logging_enabled", note="message text and tool results are logged")


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

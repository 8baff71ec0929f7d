"""Utility modules for Scope AI."""

from .logging import bind_turn, get_logger, setup_logging

__all__ = ["bind_turn", "get_logger", "setup_logging"]

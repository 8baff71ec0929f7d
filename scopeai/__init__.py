"""Scope AI - LLM provider abstraction and tool-calling agent core."""
__version__ = "0.1.0"

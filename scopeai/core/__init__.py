"""Core modules for Scope AI."""

"""LLM client module."""

from .claude import APIError, ClaudeClient

__all__ = ["APIError", "ClaudeClient"]

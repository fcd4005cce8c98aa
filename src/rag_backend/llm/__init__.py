"""Completion gateway."""

from .gateway import ChatMessage, CompletionClient, LiteLLMCompletionClient, model_call

__all__ = ["ChatMessage", "CompletionClient", "LiteLLMCompletionClient", "model_call"]

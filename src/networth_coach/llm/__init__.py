"""Model provider abstraction for the tool-calling loop."""
from .base import (
    ChatMessage,
    LLMError,
    LLMTimeoutError,
    LLMUsage,
    ModelProvider,
    ProviderTurn,
    ToolRequest,
    ToolSpec,
)

__all__ = [
    "ChatMessage",
    "LLMError",
    "LLMTimeoutError",
    "LLMUsage",
    "ModelProvider",
    "ProviderTurn",
    "ToolRequest",
    "ToolSpec",
]

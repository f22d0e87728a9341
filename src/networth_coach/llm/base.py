"""Base classes for model provider abstraction.

Every provider (Anthropic, OpenAI, OpenRouter, mock) implements the
ModelProvider interface. The tool-calling loop only ever sees the
provider-neutral types defined here; each adapter translates them to and
from its own wire envelope.

Conversation shape:
    ChatMessage(role="user", content="How long to pay off my card?")
    ChatMessage(role="assistant", content="", tool_requests=(ToolRequest(...),))
    ChatMessage(role="tool", content='{"months": 14, ...}', tool_call_id="call_1")
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from ..errors import ErrorCategory, ErrorSeverity, ProviderError


@dataclass(frozen=True)
class LLMUsage:
    """Token usage and cost tracking for provider calls.

    Attributes:
        input_tokens: Number of tokens in the prompt
        output_tokens: Number of tokens in the response
        total_tokens: Total tokens used (input + output)
        estimated_cost_usd: Estimated cost in USD
    """
    input_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost_usd: float

    def __add__(self, other: "LLMUsage") -> "LLMUsage":
        return LLMUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            estimated_cost_usd=self.estimated_cost_usd + other.estimated_cost_usd
        )


ZERO_USAGE = LLMUsage(input_tokens=0, output_tokens=0, total_tokens=0, estimated_cost_usd=0.0)


@dataclass(frozen=True)
class ToolSpec:
    """A function the model may call: name, description and JSON schema."""
    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass(frozen=True)
class ToolRequest:
    """One tool invocation requested by the model."""
    id: str
    name: str
    arguments: Dict[str, Any]


@dataclass(frozen=True)
class ChatMessage:
    """One turn of the running conversation."""
    role: Literal["user", "assistant", "tool"]
    content: str
    tool_requests: Tuple[ToolRequest, ...] = ()
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None


@dataclass(frozen=True)
class ProviderTurn:
    """A provider's reply: either final text or tool requests."""
    text: Optional[str] = None
    tool_requests: Tuple[ToolRequest, ...] = ()
    usage: LLMUsage = field(default=ZERO_USAGE)

    @property
    def is_final(self) -> bool:
        return not self.tool_requests


class LLMError(ProviderError):
    """Provider API call failed (HTTP error, quota, malformed reply)."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, retryable=True, details=details)


class LLMTimeoutError(ProviderError):
    """Provider request exceeded its timeout.

    Prevents the pipeline from hanging on a slow or unresponsive provider.
    """

    code = "PROVIDER_TIMEOUT"

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        details = {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message=message,
            retryable=True,
            details=details,
            category=ErrorCategory.TIMEOUT,
            severity=ErrorSeverity.WARNING
        )


class ModelProvider(ABC):
    """Abstract base class for model providers.

    Key Requirements:
    - Must accept the provider-neutral conversation and tool specs
    - Must return either final text or tool requests, never both
    - Must track token usage and cost
    - Must raise LLMTimeoutError / LLMError instead of leaking SDK exceptions
    - Must not log raw prompts or responses
    """

    @abstractmethod
    def converse(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSpec] = (),
        timeout: float = 60.0
    ) -> ProviderTurn:
        """Send one turn of the conversation.

        Args:
            system_prompt: Instructions for the model
            messages: Full running conversation, oldest first
            tools: Tools the model may request
            timeout: Maximum time to wait for the provider in seconds

        Returns:
            ProviderTurn with final text or tool requests

        Raises:
            LLMTimeoutError: If the request exceeds timeout
            LLMError: For other provider failures
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model identifier being used.

        Example: "claude-sonnet-4-5-20250929" or "gpt-4o"
        """

    @property
    def provider_name(self) -> str:
        return self.__class__.__name__.replace("Provider", "").lower()


def estimate_cost(
    input_tokens: int,
    output_tokens: int,
    input_cost_per_mtok: float,
    output_cost_per_mtok: float
) -> float:
    return (
        (input_tokens / 1_000_000) * input_cost_per_mtok +
        (output_tokens / 1_000_000) * output_cost_per_mtok
    )


def tool_specs_to_json_schema(tools: Sequence[ToolSpec]) -> List[Dict[str, Any]]:
    """OpenAI-style function definitions, shared by OpenAI-compatible adapters."""
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            },
        }
        for t in tools
    ]

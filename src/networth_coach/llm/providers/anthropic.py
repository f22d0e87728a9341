"""Anthropic (Claude) model provider.

Adapts the provider-neutral conversation to the Messages API: tool requests
become `tool_use` content blocks on the assistant turn, and tool results are
sent back as `tool_result` blocks inside a single user turn.
"""
import os
from typing import Any, Dict, List, Sequence

from ..base import (
    ChatMessage,
    LLMError,
    LLMTimeoutError,
    LLMUsage,
    ModelProvider,
    ProviderTurn,
    ToolRequest,
    ToolSpec,
    estimate_cost,
)
from ...errors import ConfigurationError


def to_anthropic_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    """Translate the running conversation into Messages API params.

    Consecutive tool results are merged into one user turn, which is what the
    API expects after an assistant turn with several tool_use blocks.
    """
    out: List[Dict[str, Any]] = []
    for msg in messages:
        if msg.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content,
            }
            prev = out[-1] if out else None
            if (
                prev is not None
                and prev["role"] == "user"
                and isinstance(prev["content"], list)
                and all(b.get("type") == "tool_result" for b in prev["content"])
            ):
                prev["content"].append(block)
            else:
                out.append({"role": "user", "content": [block]})
        elif msg.role == "assistant" and msg.tool_requests:
            content: List[Dict[str, Any]] = []
            if msg.content:
                content.append({"type": "text", "text": msg.content})
            for req in msg.tool_requests:
                content.append({
                    "type": "tool_use",
                    "id": req.id,
                    "name": req.name,
                    "input": req.arguments,
                })
            out.append({"role": "assistant", "content": content})
        else:
            out.append({"role": msg.role, "content": msg.content})
    return out


def to_anthropic_tools(tools: Sequence[ToolSpec]) -> List[Dict[str, Any]]:
    return [
        {"name": t.name, "description": t.description, "input_schema": t.parameters}
        for t in tools
    ]


class AnthropicProvider(ModelProvider):
    """Anthropic Claude API provider.

    Requires ANTHROPIC_API_KEY environment variable.

    Pricing (Sonnet 4.5): $3.00/MTok input, $15.00/MTok output

    Example:
        >>> provider = AnthropicProvider(model="claude-sonnet-4-5-20250929")
        >>> turn = provider.converse(
        ...     "You are a financial coach.",
        ...     [ChatMessage(role="user", content="How long until I save $5,000?")],
        ...     tools=CALCULATOR_TOOL_SPECS,
        ... )
    """

    INPUT_COST_PER_MTOK = 3.00
    OUTPUT_COST_PER_MTOK = 15.00
    MAX_TOKENS = 2048

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        client: Any = None
    ):
        """Initialize Anthropic provider.

        Args:
            model: Model to use (default: from ANTHROPIC_MODEL env var or claude-sonnet-4-5-20250929)
            api_key: API key (default: from ANTHROPIC_API_KEY env var)
            client: Pre-built SDK client (tests)

        Raises:
            ConfigurationError: If the API key or SDK is missing
        """
        self._model = model or os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")

        try:
            import anthropic
        except ImportError:
            raise ConfigurationError("anthropic package not installed. Run: pip install anthropic")
        self._sdk = anthropic

        if client is not None:
            self._client = client
            return

        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY environment variable not set",
                details={"variable": "ANTHROPIC_API_KEY"}
            )
        self._client = anthropic.Anthropic(api_key=api_key)

    def converse(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSpec] = (),
        timeout: float = 60.0
    ) -> ProviderTurn:
        params: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": self.MAX_TOKENS,
            "temperature": 0.7,
            "system": system_prompt,
            "messages": to_anthropic_messages(messages),
        }
        if tools:
            params["tools"] = to_anthropic_tools(tools)

        try:
            message = self._client.messages.create(timeout=timeout, **params)
        except self._sdk.APITimeoutError as e:
            raise LLMTimeoutError(
                f"Anthropic request exceeded timeout of {timeout}s: {e}",
                timeout_seconds=timeout
            )
        except self._sdk.APIError as e:
            raise LLMError(f"Anthropic API error: {e}", details={"provider": "anthropic"})

        return self._parse(message)

    def _parse(self, message: Any) -> ProviderTurn:
        texts: List[str] = []
        requests: List[ToolRequest] = []
        for block in message.content or []:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                requests.append(ToolRequest(
                    id=block.id,
                    name=block.name,
                    arguments=dict(block.input or {}),
                ))

        usage = self._calculate_usage(message.usage)
        return ProviderTurn(text="".join(texts), tool_requests=tuple(requests), usage=usage)

    def _calculate_usage(self, usage_obj: Any) -> LLMUsage:
        input_tokens = usage_obj.input_tokens
        output_tokens = usage_obj.output_tokens
        return LLMUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
            estimated_cost_usd=estimate_cost(
                input_tokens, output_tokens,
                self.INPUT_COST_PER_MTOK, self.OUTPUT_COST_PER_MTOK
            )
        )

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "anthropic"

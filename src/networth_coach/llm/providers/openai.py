"""OpenAI model provider.

Uses the Chat Completions API with function tools. Tool requests come back
as `tool_calls` on the assistant message; results go back as `tool` role
messages keyed by `tool_call_id`.
"""
import json
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
    tool_specs_to_json_schema,
)
from ...errors import ConfigurationError


def to_openai_messages(system_prompt: str, messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    """Translate the running conversation into Chat Completions messages."""
    out: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for msg in messages:
        if msg.role == "tool":
            out.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.content,
            })
        elif msg.role == "assistant" and msg.tool_requests:
            out.append({
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": req.id,
                        "type": "function",
                        "function": {
                            "name": req.name,
                            "arguments": json.dumps(req.arguments),
                        },
                    }
                    for req in msg.tool_requests
                ],
            })
        else:
            out.append({"role": msg.role, "content": msg.content})
    return out


def decode_tool_arguments(raw: str | None) -> Dict[str, Any]:
    """Parse a function-call argument string.

    Malformed JSON is passed through under `_raw_arguments` so the tool
    executor can report it back to the model instead of failing the request.
    """
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return {"_raw_arguments": raw}
    return decoded if isinstance(decoded, dict) else {"_raw_arguments": raw}


class OpenAIProvider(ModelProvider):
    """OpenAI API provider.

    Requires OPENAI_API_KEY environment variable.

    Pricing (GPT-4o): $2.50/MTok input, $10.00/MTok output
    """

    INPUT_COST_PER_MTOK = 2.50
    OUTPUT_COST_PER_MTOK = 10.00
    MAX_TOKENS = 2048

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        client: Any = None
    ):
        """Initialize OpenAI provider.

        Args:
            model: Model to use (default: from OPENAI_MODEL env var or gpt-4o)
            api_key: API key (default: from OPENAI_API_KEY env var)
            client: Pre-built SDK client (tests)

        Raises:
            ConfigurationError: If the API key or SDK is missing
        """
        self._model = model or os.getenv("OPENAI_MODEL", "gpt-4o")

        try:
            import openai
        except ImportError:
            raise ConfigurationError("openai package not installed. Run: pip install openai")
        self._sdk = openai

        if client is not None:
            self._client = client
            return

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "OPENAI_API_KEY environment variable not set",
                details={"variable": "OPENAI_API_KEY"}
            )
        self._client = openai.OpenAI(api_key=api_key)

    def converse(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSpec] = (),
        timeout: float = 60.0
    ) -> ProviderTurn:
        params: Dict[str, Any] = {
            "model": self._model,
            "messages": to_openai_messages(system_prompt, messages),
            "temperature": 0.7,
            "max_tokens": self.MAX_TOKENS,
        }
        if tools:
            params["tools"] = tool_specs_to_json_schema(tools)

        try:
            response = self._client.chat.completions.create(timeout=timeout, **params)
        except self._sdk.APITimeoutError as e:
            raise LLMTimeoutError(
                f"OpenAI request exceeded timeout of {timeout}s: {e}",
                timeout_seconds=timeout
            )
        except self._sdk.APIError as e:
            raise LLMError(f"OpenAI API error: {e}", details={"provider": "openai"})

        if not response.choices:
            raise LLMError("Empty response from OpenAI", details={"provider": "openai"})

        message = response.choices[0].message
        usage = self._calculate_usage(response.usage)

        tool_calls = getattr(message, "tool_calls", None) or []
        if tool_calls:
            return ProviderTurn(
                text=message.content or "",
                tool_requests=tuple(
                    ToolRequest(
                        id=call.id,
                        name=call.function.name,
                        arguments=decode_tool_arguments(call.function.arguments),
                    )
                    for call in tool_calls
                ),
                usage=usage,
            )
        return ProviderTurn(text=message.content or "", usage=usage)

    def _calculate_usage(self, usage_obj: Any) -> LLMUsage:
        if usage_obj is None:
            return LLMUsage(0, 0, 0, 0.0)
        input_tokens = usage_obj.prompt_tokens
        output_tokens = usage_obj.completion_tokens
        return LLMUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage_obj.total_tokens,
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
        return "openai"

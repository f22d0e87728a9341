"""OpenRouter model provider.

OpenRouter exposes many models behind one OpenAI-compatible endpoint, so the
conversation envelope is shared with the OpenAI adapter; the transport is a
plain HTTPS call with `requests`.
"""
import os
from typing import Any, Dict, Sequence

import requests

from ..base import (
    ChatMessage,
    LLMError,
    LLMTimeoutError,
    LLMUsage,
    ModelProvider,
    ProviderTurn,
    ToolRequest,
    ToolSpec,
    tool_specs_to_json_schema,
)
from .openai import decode_tool_arguments, to_openai_messages
from ...errors import ConfigurationError


class OpenRouterProvider(ModelProvider):
    """OpenRouter API provider.

    Requires OPENROUTER_API_KEY environment variable or explicit API key.

    Example:
        >>> provider = OpenRouterProvider(model="anthropic/claude-sonnet-4.5")
        >>> turn = provider.converse("You are a coach.", [ChatMessage("user", "Hi")])
    """

    API_ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        session: requests.Session | None = None
    ):
        """Initialize OpenRouter provider.

        Args:
            model: Model to use (default: from OPENROUTER_MODEL env var or openai/gpt-4o)
            api_key: API key (default: from OPENROUTER_API_KEY env var)
            session: HTTP session to reuse (default: new session)

        Raises:
            ConfigurationError: If API key is not provided
        """
        self._api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not self._api_key:
            raise ConfigurationError(
                "OPENROUTER_API_KEY environment variable not set or api_key not provided",
                details={"variable": "OPENROUTER_API_KEY"}
            )
        self._model = model or os.getenv("OPENROUTER_MODEL", "openai/gpt-4o")
        self._session = session or requests.Session()

    def converse(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSpec] = (),
        timeout: float = 60.0
    ) -> ProviderTurn:
        payload: Dict[str, Any] = {
            "model": self._model,
            "messages": to_openai_messages(system_prompt, messages),
            "temperature": 0.7,
            "max_tokens": 2048,
        }
        if tools:
            payload["tools"] = tool_specs_to_json_schema(tools)

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "X-Title": "Networth Coach",
        }

        try:
            response = self._session.post(
                self.API_ENDPOINT,
                json=payload,
                headers=headers,
                timeout=timeout
            )
        except requests.exceptions.Timeout as e:
            raise LLMTimeoutError(
                f"OpenRouter request exceeded timeout of {timeout}s: {e}",
                timeout_seconds=timeout
            )
        except requests.exceptions.RequestException as e:
            raise LLMError(f"OpenRouter API request failed: {e}", details={"provider": "openrouter"})

        if response.status_code != 200:
            raise LLMError(
                f"OpenRouter API returned status {response.status_code}",
                details={"provider": "openrouter", "status_code": response.status_code}
            )

        try:
            data = response.json()
        except ValueError as e:
            raise LLMError(f"OpenRouter returned invalid JSON: {e}", details={"provider": "openrouter"})

        choices = data.get("choices") or []
        if not choices:
            raise LLMError("Empty response from OpenRouter", details={"provider": "openrouter"})

        message = choices[0].get("message") or {}
        usage = self._calculate_usage(data.get("usage") or {})

        tool_calls = message.get("tool_calls") or []
        if tool_calls:
            return ProviderTurn(
                text=message.get("content") or "",
                tool_requests=tuple(
                    ToolRequest(
                        id=call.get("id", f"call_{i}"),
                        name=call["function"]["name"],
                        arguments=decode_tool_arguments(call["function"].get("arguments")),
                    )
                    for i, call in enumerate(tool_calls)
                ),
                usage=usage,
            )
        return ProviderTurn(text=message.get("content") or "", usage=usage)

    def _calculate_usage(self, usage_obj: dict) -> LLMUsage:
        """OpenRouter reports cost in USD in the usage object when available."""
        input_tokens = usage_obj.get("prompt_tokens", 0)
        output_tokens = usage_obj.get("completion_tokens", 0)
        return LLMUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage_obj.get("total_tokens", input_tokens + output_tokens),
            estimated_cost_usd=float(usage_obj.get("cost", usage_obj.get("total_cost", 0.0)))
        )

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "openrouter"

"""Mock model provider for testing.

This provider returns scripted turns without making any API calls. It is
also selectable at runtime (provider "mock") for local development.
"""
from typing import List, Sequence, Tuple, Union

from ..base import (
    ChatMessage,
    LLMError,
    LLMTimeoutError,
    LLMUsage,
    ModelProvider,
    ProviderTurn,
    ToolRequest,
    ToolSpec,
)

DEFAULT_MOCK_RESPONSE = (
    "Start by setting aside a fixed amount each month and track your progress "
    "against your goal. Small, consistent contributions add up over time."
)

ScriptedTurn = Union[str, ProviderTurn, Sequence[ToolRequest]]


class MockProvider(ModelProvider):
    """Mock model provider for testing.

    Plays back a script of turns in order. Each script entry may be a string
    (final text), a ProviderTurn, or a sequence of ToolRequests. Once the
    script is exhausted the last entry is repeated, or `response_text` is
    returned if there was no script.

    Every call is recorded in `calls` as (system_prompt, messages, tools).

    Example:
        >>> provider = MockProvider(script=[
        ...     [ToolRequest(id="t1", name="futureValue", arguments={...})],
        ...     "You'll have about $12,000 in 5 years.",
        ... ])
        >>> provider.converse("sys", [ChatMessage("user", "hi")]).is_final
        False
    """

    def __init__(
        self,
        script: Sequence[ScriptedTurn] | None = None,
        response_text: str = DEFAULT_MOCK_RESPONSE,
        should_fail: bool = False,
        should_timeout: bool = False,
        model: str = "mock-llm-v1",
        input_tokens: int = 100,
        output_tokens: int = 50
    ):
        """Initialize mock provider.

        Args:
            script: Turns to play back, in order
            response_text: Final text when no script is given
            should_fail: If True, raise LLMError on every call
            should_timeout: If True, raise LLMTimeoutError on every call
            model: Reported model identifier
            input_tokens: Mock input token count per call
            output_tokens: Mock output token count per call
        """
        self._script: List[ProviderTurn] = [self._to_turn(t) for t in (script or [])]
        self._response_text = response_text
        self._should_fail = should_fail
        self._should_timeout = should_timeout
        self._model = model
        self._input_tokens = input_tokens
        self._output_tokens = output_tokens
        self.calls: List[Tuple[str, Tuple[ChatMessage, ...], Tuple[ToolSpec, ...]]] = []

    @staticmethod
    def _to_turn(entry: ScriptedTurn) -> ProviderTurn:
        if isinstance(entry, ProviderTurn):
            return entry
        if isinstance(entry, str):
            return ProviderTurn(text=entry)
        return ProviderTurn(tool_requests=tuple(entry))

    def converse(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[ToolSpec] = (),
        timeout: float = 60.0
    ) -> ProviderTurn:
        self.calls.append((system_prompt, tuple(messages), tuple(tools)))

        if self._should_timeout:
            raise LLMTimeoutError(
                f"Mock provider exceeded timeout of {timeout}s",
                timeout_seconds=timeout
            )
        if self._should_fail:
            raise LLMError("Mock provider configured to fail", details={"provider": "mock"})

        index = len(self.calls) - 1
        if self._script:
            scripted = self._script[min(index, len(self._script) - 1)]
        else:
            scripted = ProviderTurn(text=self._response_text)

        usage = LLMUsage(
            input_tokens=self._input_tokens,
            output_tokens=self._output_tokens,
            total_tokens=self._input_tokens + self._output_tokens,
            estimated_cost_usd=0.001  # Mock cost
        )
        return ProviderTurn(
            text=scripted.text,
            tool_requests=scripted.tool_requests,
            usage=usage
        )

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "mock"

"""Bounded tool-calling loop.

Drives a conversation with a model provider so it can call calculator tools
before producing its final answer:

    AWAITING_PROVIDER -> (TOOL_REQUESTED -> TOOLS_EXECUTED -> AWAITING_PROVIDER)* -> DONE

DONE is reached by a final text answer or by exhausting `max_iterations`
provider calls, in which case the fallback text is returned. Provider errors
are not caught here; they abort the loop and propagate to the caller.
"""
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import LoopDeadlineExceeded
from .llm.base import ZERO_USAGE, ChatMessage, LLMUsage, ModelProvider, ToolRequest, ToolSpec
from .logging import logger
from .tools.toolbox import Toolbox

FALLBACK_RESPONSE = "No response generated"
DEFAULT_MAX_ITERATIONS = 6

LoopEventCallback = Callable[[str, Dict[str, Any]], None]


@dataclass(frozen=True)
class ExecutedToolCall:
    id: str
    name: str
    arguments: Dict[str, Any]
    result: Dict[str, Any]
    is_error: bool = False


@dataclass(frozen=True)
class LoopResult:
    text: str
    iterations: int
    tool_calls: Tuple[ExecutedToolCall, ...] = ()
    usage: LLMUsage = field(default=ZERO_USAGE)
    exhausted: bool = False


class ToolCallingLoop:
    """Runs the provider/tool conversation for one request.

    Args:
        toolbox: Tools the model may call
        max_iterations: Provider calls allowed before giving up
        provider_timeout: Per-call provider timeout in seconds
        clock: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(
        self,
        toolbox: Optional[Toolbox] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        provider_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.toolbox = toolbox or Toolbox()
        self.max_iterations = max_iterations
        self.provider_timeout = provider_timeout
        self._clock = clock

    def run(
        self,
        provider: ModelProvider,
        system_prompt: str,
        history: Sequence[ChatMessage],
        user_message: str,
        tools: Sequence[ToolSpec] = (),
        max_iterations: Optional[int] = None,
        deadline_seconds: Optional[float] = None,
        on_event: Optional[LoopEventCallback] = None,
    ) -> LoopResult:
        """Run the loop until a final answer or the iteration cap.

        Args:
            provider: Model provider to converse with
            system_prompt: Instructions for the model
            history: Earlier turns, oldest first
            user_message: The current user message
            tools: Tool specs offered to the model (empty for no tools)
            max_iterations: Override of the configured cap for this run
            deadline_seconds: Wall-clock budget, checked before each provider call
            on_event: Called with ("provider_call" | "tool_call", payload)

        Returns:
            LoopResult with the final text, or FALLBACK_RESPONSE when exhausted

        Raises:
            LoopDeadlineExceeded: The deadline passed before a provider call
            ProviderError: Network, timeout or quota failure from the provider
        """
        cap = max_iterations if max_iterations is not None else self.max_iterations
        if cap < 1:
            raise ValueError("max_iterations must be at least 1")
        emit = on_event or (lambda _type, _payload: None)
        started = self._clock()

        messages: List[ChatMessage] = list(history)
        messages.append(ChatMessage(role="user", content=user_message))
        executed: List[ExecutedToolCall] = []
        usage = ZERO_USAGE
        iterations = 0

        while iterations < cap:
            if deadline_seconds is not None and self._clock() - started >= deadline_seconds:
                raise LoopDeadlineExceeded(deadline_seconds, iterations)

            iterations += 1
            call_start = self._clock()
            turn = provider.converse(
                system_prompt, messages, tools=tools, timeout=self.provider_timeout
            )
            usage = usage + turn.usage
            emit("provider_call", {
                "iteration": iterations,
                "provider": provider.provider_name,
                "model": provider.model_name,
                "tool_requests": [r.name for r in turn.tool_requests],
                "final": turn.is_final,
                "duration_ms": round((self._clock() - call_start) * 1000, 1),
                "input_tokens": turn.usage.input_tokens,
                "output_tokens": turn.usage.output_tokens,
            })

            if turn.is_final:
                return LoopResult(
                    text=turn.text or "",
                    iterations=iterations,
                    tool_calls=tuple(executed),
                    usage=usage,
                )

            messages.append(ChatMessage(
                role="assistant",
                content=turn.text or "",
                tool_requests=turn.tool_requests,
            ))
            for request in turn.tool_requests:
                call = self._execute(request)
                executed.append(call)
                emit("tool_call", {
                    "id": call.id,
                    "name": call.name,
                    "arguments": call.arguments,
                    "result": call.result,
                    "error": call.is_error,
                })
                messages.append(ChatMessage(
                    role="tool",
                    content=json.dumps(call.result),
                    tool_call_id=call.id,
                    tool_name=call.name,
                ))

        logger.warning("tool_loop_exhausted iterations=%d tool_calls=%d", iterations, len(executed))
        return LoopResult(
            text=FALLBACK_RESPONSE,
            iterations=iterations,
            tool_calls=tuple(executed),
            usage=usage,
            exhausted=True,
        )

    def _execute(self, request: ToolRequest) -> ExecutedToolCall:
        result = self.toolbox.execute(request)
        return ExecutedToolCall(
            id=request.id,
            name=request.name,
            arguments=dict(request.arguments),
            result=result.data,
            is_error=result.is_error,
        )

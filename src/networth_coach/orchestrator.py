"""Query orchestration pipeline.

One request flows strictly in order:

    trace start -> input guardrail -> rate limit -> routing -> enrichment
        -> tool-calling loop -> output guardrail -> trace end + evaluation

Guardrail and rate-limit failures return a client error before any external
call. Enrichment failures become warnings. Everything else is caught by the
single handler in `handle()`, which records the error on the trace and
returns the generic server-error shape; internal error text never reaches
the caller.

Example:
    >>> orchestrator = CoachOrchestrator.from_settings(settings)
    >>> outcome = orchestrator.handle({"message": "How long to save $5,000 at $400/month?"})
    >>> outcome.status_code, outcome.body.metadata.agent_used
    (200, 'calculator')
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from .config import Settings
from .enrichment import EnrichmentGateway, PerplexityDeepResearch
from .errors import (
    ConfigurationError,
    LoopDeadlineExceeded,
    OutputValidationError,
    ProviderError,
    RateLimitError,
    StructuredError,
)
from .guardrails import InputGuardrail, OutputGuardrail
from .llm.base import ZERO_USAGE, ChatMessage, LLMTimeoutError, LLMUsage
from .llm.providers import ProviderRegistry
from .logging import logger
from .prompts import build_system_prompt
from .rate_limiter import RateLimiter, build_rate_limit_store
from .router import AgentRouter
from .schemas import (
    ClientErrorResponse,
    EvaluationSummary,
    QueryMetadata,
    QueryRequest,
    QueryResponse,
    ServerErrorResponse,
)
from .tool_loop import ToolCallingLoop
from .tools.toolbox import Toolbox
from .tracing import TraceRecorder

TOOL_LOOP_EXHAUSTED = "tool_loop_exhausted"


@dataclass
class Outcome:
    """Result of one pipeline run, ready to be serialized by the HTTP layer."""
    status_code: int
    body: Union[QueryResponse, ClientErrorResponse, ServerErrorResponse]
    trace_id: str
    agent: Optional[str] = None
    error_code: Optional[str] = None
    usage: LLMUsage = field(default=ZERO_USAGE)
    tool_calls: int = 0
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status_code == 200


def http_status_for(error: BaseException) -> int:
    """HTTP status for an error that reached the top-level handler."""
    if isinstance(error, (LLMTimeoutError, LoopDeadlineExceeded)):
        return 503
    if isinstance(error, (ProviderError, OutputValidationError)):
        return 502
    return 500


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _dedupe(items: List[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


class CoachOrchestrator:
    """Runs the coaching pipeline for one request at a time.

    All collaborators are injected; `from_settings` wires the production
    defaults. Instances are shared across request threads: the rate limiter
    and trace recorder carry their own locks, everything else is stateless.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        rate_limiter: RateLimiter,
        tracer: TraceRecorder,
        enrichment: EnrichmentGateway,
        settings: Optional[Settings] = None,
        toolbox: Optional[Toolbox] = None,
        agent_router: Optional[AgentRouter] = None,
        input_guardrail: Optional[InputGuardrail] = None,
        output_guardrail: Optional[OutputGuardrail] = None,
    ):
        self.settings = settings or Settings()
        self.providers = providers
        self.rate_limiter = rate_limiter
        self.tracer = tracer
        self.enrichment = enrichment
        self.toolbox = toolbox or Toolbox()
        self.agent_router = agent_router or AgentRouter()
        self.input_guardrail = input_guardrail or InputGuardrail()
        self.output_guardrail = output_guardrail or OutputGuardrail()
        self.loop = ToolCallingLoop(
            toolbox=self.toolbox,
            max_iterations=self.settings.tool_loop_max_iterations,
            provider_timeout=self.settings.provider_timeout_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CoachOrchestrator":
        deep_research = None
        try:
            deep_research = PerplexityDeepResearch(timeout=settings.enrichment_timeout_seconds)
        except ConfigurationError:
            logger.info("deep_research_disabled reason=no_api_key")

        return cls(
            providers=ProviderRegistry(),
            rate_limiter=RateLimiter(
                store=build_rate_limit_store(settings.redis_url),
                max_requests=settings.rate_limit_max_requests,
                window_ms=settings.rate_limit_window_ms,
            ),
            tracer=TraceRecorder(capacity=settings.trace_capacity),
            enrichment=EnrichmentGateway(
                deep_research=deep_research,
                timeout_seconds=settings.enrichment_timeout_seconds,
                knowledge_limit=settings.knowledge_limit,
                min_similarity=settings.knowledge_min_similarity,
                max_workers=settings.enrichment_max_workers,
            ),
            settings=settings,
        )

    def close(self) -> None:
        self.enrichment.close()

    def _snapshot(self, payload: Any) -> Dict[str, Any]:
        data = payload.model_dump() if isinstance(payload, BaseModel) else payload
        if not isinstance(data, Mapping):
            data = {}
        selector = _pick(data, "modelSelector", "model_selector")
        if not isinstance(selector, Mapping):
            selector = {}
        user_id = _pick(data, "userId", "user_id")
        message = _pick(data, "message")
        return {
            "user_id": str(user_id) if user_id is not None else None,
            "message": message if isinstance(message, str) else None,
            "goal_type": _pick(data, "goalType", "goal_type"),
            "region": _pick(data, "region") or "US",
            "deep_research": bool(_pick(data, "deepResearchRequested", "deepResearch", "deep_research_requested")),
            "provider": selector.get("provider") or self.settings.default_provider,
            "model": selector.get("model") or self.settings.default_model,
        }

    def handle(self, payload: Union[Mapping[str, Any], QueryRequest, Any]) -> Outcome:
        """Run the full pipeline for one inbound payload.

        Args:
            payload: Raw request body (camelCase or snake_case keys) or an
                already-built QueryRequest

        Returns:
            Outcome with status code 200, 400, 429 or 5xx and the body to send
        """
        start = time.perf_counter()
        trace_id = self.tracer.start_trace(self._snapshot(payload))

        def record(event_type: str, event_payload: Dict[str, Any]) -> None:
            self.tracer.add_event(trace_id, event_type, event_payload)

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        agent: Optional[str] = None
        usage = ZERO_USAGE
        tool_calls = 0
        try:
            validation = self.input_guardrail.validate(payload)
            request = validation.sanitized
            if not validation.valid or request is None:
                rejection = validation.to_error()
                record("validation_fail", {
                    "phase": "input",
                    "error": rejection.message,
                    "code": rejection.code,
                })
                self.tracer.end_trace(trace_id, {"outcome": "rejected"})
                logger.info("query_rejected trace_id=%s code=%s", trace_id, rejection.code)
                return Outcome(
                    status_code=400,
                    body=ClientErrorResponse(
                        error="Invalid request",
                        message=rejection.message,
                        trace_id=trace_id,
                    ),
                    trace_id=trace_id,
                    error_code=rejection.code,
                    duration_ms=elapsed_ms(),
                )
            record("input_validation", {"valid": True, "warnings": list(validation.warnings)})

            if request.user_id:
                try:
                    decision = self.rate_limiter.check_limit(request.user_id)
                except RateLimitError as e:
                    record("rate_limit", {
                        "user_id": request.user_id,
                        "allowed": False,
                        "reset_in_ms": e.retry_after_ms,
                    })
                    self.tracer.end_trace(trace_id, {"outcome": "rejected"})
                    logger.info("query_rate_limited trace_id=%s", trace_id)
                    return Outcome(
                        status_code=429,
                        body=ClientErrorResponse(
                            error="Rate limit exceeded",
                            message=f"Please wait {e.retry_after_seconds} seconds before trying again",
                            trace_id=trace_id,
                            retry_after_seconds=e.retry_after_seconds,
                        ),
                        trace_id=trace_id,
                        error_code=e.code,
                        duration_ms=elapsed_ms(),
                    )
                record("rate_limit", {
                    "user_id": request.user_id,
                    "allowed": True,
                    "remaining": decision.remaining,
                })

            agent = self.agent_router.route(request)
            record("routing", {"agent": agent})

            enrichment = self.enrichment.gather(request, agent, on_event=record)

            selector_provider = (
                request.model_selector.provider if request.model_selector
                else self.settings.default_provider
            )
            selector_model = (
                request.model_selector.model if request.model_selector
                else self.settings.default_model
            )
            provider = self.providers.get(selector_provider, selector_model)

            system_prompt = build_system_prompt(agent, request, enrichment)
            history = [
                ChatMessage(role=turn.role, content=turn.text)
                for turn in request.conversation_history
            ]
            tools = self.toolbox.specs_for_agent(agent)

            record("agent_start", {
                "agent": agent,
                "provider": provider.provider_name,
                "model": provider.model_name,
                "tools": [t.name for t in tools],
            })
            result = self.loop.run(
                provider,
                system_prompt,
                history,
                request.message,
                tools=tools,
                deadline_seconds=self.settings.tool_loop_deadline_seconds,
                on_event=record,
            )
            usage = result.usage
            tool_calls = len(result.tool_calls)
            record("agent_end", {
                "agent": agent,
                "iterations": result.iterations,
                "tool_calls": tool_calls,
                "exhausted": result.exhausted,
            })

            output = self.output_guardrail.validate(result.text, validation.requires_disclaimer)
            record("output_validation", {
                "valid": output.valid,
                "warnings": list(output.warnings),
                "error": output.error,
            })
            if not output.valid:
                record("validation_fail", {"phase": "output", "error": output.error})
                raise OutputValidationError(
                    output.error or "Invalid model output",
                    details={"agent": agent, "iterations": result.iterations}
                )

            warnings = list(validation.warnings) + list(enrichment.warnings)
            if result.exhausted:
                warnings.append(TOOL_LOOP_EXHAUSTED)
            warnings = _dedupe(warnings + list(output.warnings))

            final_response = output.enhanced or result.text
            research = enrichment.research.to_dict() if enrichment.research else None
            duration = elapsed_ms()

            self.tracer.end_trace(trace_id, {
                "response": final_response,
                "research": research,
                "warnings": warnings,
                "agent_used": agent,
                "model": provider.model_name,
                "outcome": "success",
            })
            evaluation = self.tracer.evaluate_response(
                trace_id, request.message, final_response, warnings, agent
            )

            logger.info(
                "query_completed trace_id=%s agent=%s duration_ms=%d tool_calls=%d",
                trace_id, agent, duration, tool_calls
            )
            return Outcome(
                status_code=200,
                body=QueryResponse(
                    response=final_response,
                    research=research,
                    model=provider.model_name,
                    metadata=QueryMetadata(
                        agent_used=agent,
                        duration=duration,
                        warnings=warnings,
                        trace_id=trace_id,
                        evaluation=EvaluationSummary(
                            score=evaluation.score,
                            dimensions=evaluation.dimensions,
                        ),
                        tool_calls=tool_calls,
                        iterations=result.iterations,
                    ),
                ),
                trace_id=trace_id,
                agent=agent,
                usage=usage,
                tool_calls=tool_calls,
                duration_ms=duration,
            )

        except Exception as e:
            code = e.code if isinstance(e, StructuredError) else "INTERNAL_ERROR"
            retryable = e.retryable if isinstance(e, StructuredError) else True
            if isinstance(e, StructuredError):
                logger.error("query_failed trace_id=%s code=%s error=%s", trace_id, code, e.message)
            else:
                logger.exception("query_failed trace_id=%s code=%s", trace_id, code)

            self.tracer.trace_error(trace_id, e, code)
            self.tracer.end_trace(trace_id, {"agent_used": agent, "outcome": "error"})
            return Outcome(
                status_code=http_status_for(e),
                body=ServerErrorResponse(retryable=retryable, trace_id=trace_id),
                trace_id=trace_id,
                agent=agent,
                error_code=code,
                usage=usage,
                tool_calls=tool_calls,
                duration_ms=elapsed_ms(),
            )

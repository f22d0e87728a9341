"""End-to-end tests for the query pipeline.

Runs CoachOrchestrator against MockProvider. Validates:
1. A successful request returns the response, metadata and a closed trace
2. Input rejections and rate limits return 4xx before any provider call
3. Provider, timeout, deadline and output failures map to 5xx and are traced
4. Warnings from enrichment, the loop and the guardrails reach the caller
"""
import pytest

from networth_coach.config import Settings
from networth_coach.enrichment import KNOWLEDGE_SEARCH_UNAVAILABLE, EnrichmentGateway, ResearchResult
from networth_coach.errors import LoopDeadlineExceeded, OutputValidationError, ProviderError
from networth_coach.guardrails import FINANCIAL_DISCLAIMER, INVESTMENT_DISCLAIMER_REQUIRED, InputValidation
from networth_coach.llm import LLMTimeoutError, ToolRequest
from networth_coach.llm.providers import MockProvider
from networth_coach.orchestrator import TOOL_LOOP_EXHAUSTED, http_status_for
from networth_coach.rate_limiter import RateLimiter
from networth_coach.schemas import ClientErrorResponse, QueryResponse, ServerErrorResponse
from networth_coach.tool_loop import FALLBACK_RESPONSE

CAR_QUESTION = "How much should I save each month for a $20,000 car in 5 years?"


def _events(orchestrator, trace_id):
    return [e.type for e in orchestrator.tracer.get_trace(trace_id).events]


class FailingKnowledge:
    def search(self, query, limit, region, min_similarity):
        raise ConnectionError("vector store down")


class StaticResearch:
    def run(self, topic, goal_type, region):
        return ResearchResult(summary="Index funds have low fees.", key_findings=("Fees matter",))


class TestSuccessfulQuery:

    def test_plain_answer(self, make_orchestrator):
        orchestrator, provider = make_orchestrator(script=["Start with a small monthly budget."])

        outcome = orchestrator.handle({"message": "  I feel overwhelmed by my finances  "})

        assert outcome.status_code == 200
        assert outcome.ok
        body = outcome.body
        assert isinstance(body, QueryResponse)
        assert body.response == "Start with a small monthly budget."
        assert body.model == "mock-llm-v1"
        assert body.metadata.agent_used == "coach"
        assert body.metadata.trace_id == outcome.trace_id
        assert body.metadata.iterations == 1
        assert body.metadata.tool_calls == 0
        assert 0 <= body.metadata.evaluation.score <= 100
        assert provider.calls[0][1][-1].content == "I feel overwhelmed by my finances"

        trace = orchestrator.tracer.get_trace(outcome.trace_id)
        assert trace.outcome == "success"
        assert trace.ended_at is not None
        assert trace.evaluation is not None
        assert _events(orchestrator, outcome.trace_id) == [
            "request_start", "input_validation", "routing", "enrichment", "agent_start", "provider_call",
            "agent_end", "output_validation", "request_end", "evaluation",
        ]

    def test_every_stage_is_traced_for_identified_user(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(script=["Start with an emergency fund."])

        outcome = orchestrator.handle({"message": "Help me plan", "userId": "u1"})

        assert outcome.status_code == 200
        assert _events(orchestrator, outcome.trace_id) == [
            "request_start", "input_validation", "rate_limit", "routing", "enrichment", "enrichment",
            "agent_start", "provider_call", "agent_end", "output_validation", "request_end", "evaluation",
        ]
        events = {e.type: e.payload for e in orchestrator.tracer.get_trace(outcome.trace_id).events}
        assert events["input_validation"] == {"valid": True, "warnings": []}
        assert events["rate_limit"] == {"user_id": "u1", "allowed": True, "remaining": 19}

    def test_input_warnings_are_traced(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(script=["Index funds spread risk."])
        outcome = orchestrator.handle({"message": "Is it smart to invest in index funds?"})
        events = {e.type: e.payload for e in orchestrator.tracer.get_trace(outcome.trace_id).events}
        assert INVESTMENT_DISCLAIMER_REQUIRED in events["input_validation"]["warnings"]

    def test_calculator_round_trip(self, make_orchestrator):
        orchestrator, provider = make_orchestrator(script=[
            [ToolRequest(id="t1", name="monthlyPayment",
                         arguments={"targetAmount": 20000, "years": 5, "annualRate": 0.05})],
            "Save about $294 a month.",
        ])

        outcome = orchestrator.handle({"message": CAR_QUESTION})

        assert outcome.status_code == 200
        assert outcome.body.metadata.agent_used == "calculator"
        assert outcome.body.metadata.tool_calls == 1
        assert outcome.body.metadata.iterations == 2
        assert outcome.tool_calls == 1
        assert outcome.usage.input_tokens == 200

        offered = [spec.name for spec in provider.calls[0][2]]
        assert len(offered) == 6
        tool_message = provider.calls[1][1][-1]
        assert tool_message.role == "tool"
        assert '"monthlyPayment": 294.09' in tool_message.content

        tool_events = [e for e in orchestrator.tracer.get_trace(outcome.trace_id).events if e.type == "tool_call"]
        assert tool_events[0].payload["name"] == "monthlyPayment"

    def test_history_is_sent_before_message(self, make_orchestrator):
        orchestrator, provider = make_orchestrator(script=["Sure."])
        orchestrator.handle({
            "message": "And for a house?",
            "conversationHistory": [
                {"role": "user", "text": "How do I save for a car?"},
                {"role": "assistant", "text": "Set a monthly target."},
            ],
        })
        sent = provider.calls[0][1]
        assert [(m.role, m.content) for m in sent] == [
            ("user", "How do I save for a car?"),
            ("assistant", "Set a monthly target."),
            ("user", "And for a house?"),
        ]

    def test_disclaimer_appended_for_investment_questions(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(script=["Broad index funds are a common starting point."])
        outcome = orchestrator.handle({"message": "Is it smart to invest in index funds?"})
        assert outcome.status_code == 200
        assert outcome.body.response.endswith(FINANCIAL_DISCLAIMER)
        assert INVESTMENT_DISCLAIMER_REQUIRED in outcome.body.metadata.warnings

    def test_exhausted_loop_returns_fallback_with_warning(self, make_orchestrator):
        settings = Settings(default_provider="mock", default_model="mock-llm-v1", tool_loop_max_iterations=2)
        orchestrator, provider = make_orchestrator(
            script=[[ToolRequest(id="t1", name="futureValue",
                                 arguments={"presentValue": 0, "monthlyContribution": 100,
                                            "annualRate": 0.05, "years": 1})]],
            settings=settings,
        )
        outcome = orchestrator.handle({"message": CAR_QUESTION})

        assert outcome.status_code == 200
        assert outcome.body.response == FALLBACK_RESPONSE
        assert TOOL_LOOP_EXHAUSTED in outcome.body.metadata.warnings
        assert provider.call_count == 2

    def test_enrichment_failure_becomes_warning(self, make_orchestrator):
        gateway = EnrichmentGateway(knowledge_search=FailingKnowledge(), timeout_seconds=1.0)
        orchestrator, _ = make_orchestrator(script=["Keep going."], enrichment=gateway)
        outcome = orchestrator.handle({"message": "I feel overwhelmed by my finances"})
        assert outcome.status_code == 200
        assert KNOWLEDGE_SEARCH_UNAVAILABLE in outcome.body.metadata.warnings
        assert "enrichment_fail" in _events(orchestrator, outcome.trace_id)

    def test_research_strategy_returns_research(self, make_orchestrator):
        gateway = EnrichmentGateway(deep_research=StaticResearch(), timeout_seconds=1.0)
        orchestrator, provider = make_orchestrator(script=["Fees matter most."], enrichment=gateway)
        outcome = orchestrator.handle({"message": "Compare index funds", "deepResearchRequested": True})
        assert outcome.body.metadata.agent_used == "research"
        assert outcome.body.research["summary"] == "Index funds have low fees."
        assert provider.calls[0][2] == ()

    def test_serialized_body_is_camel_case(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(script=["Hello."])
        outcome = orchestrator.handle({"message": "Budget tips please"})
        data = outcome.body.model_dump(mode="json", by_alias=True, exclude_none=True)
        assert set(data["metadata"]) >= {"agentUsed", "duration", "warnings", "traceId", "evaluation"}


class TestClientErrors:

    def test_empty_message_rejected(self, make_orchestrator):
        orchestrator, provider = make_orchestrator()
        outcome = orchestrator.handle({"message": "   "})

        assert outcome.status_code == 400
        assert isinstance(outcome.body, ClientErrorResponse)
        assert outcome.body.error == "Invalid request"
        assert outcome.body.message == "Query cannot be empty"
        assert outcome.error_code == "INVALID_INPUT"
        assert provider.call_count == 0

        trace = orchestrator.tracer.get_trace(outcome.trace_id)
        assert trace.outcome == "rejected"
        assert trace.ended_at is not None
        assert _events(orchestrator, outcome.trace_id) == ["request_start", "validation_fail", "request_end"]

    def test_non_object_payload_rejected(self, make_orchestrator):
        orchestrator, _ = make_orchestrator()
        assert orchestrator.handle(["not", "an", "object"]).status_code == 400

    def test_accepted_input_without_request_is_rejected(self, make_orchestrator):
        class NoRequestGuardrail:
            def validate(self, payload):
                return InputValidation(valid=True)

        orchestrator, provider = make_orchestrator()
        orchestrator.input_guardrail = NoRequestGuardrail()
        outcome = orchestrator.handle({"message": "Budget tips"})

        assert outcome.status_code == 400
        assert outcome.body.message == "Invalid request"
        assert provider.call_count == 0
        assert _events(orchestrator, outcome.trace_id) == ["request_start", "validation_fail", "request_end"]

    def test_blocked_content_rejected(self, make_orchestrator):
        orchestrator, provider = make_orchestrator()
        outcome = orchestrator.handle({"message": "How do I run a pump and dump?"})
        assert outcome.status_code == 400
        assert outcome.error_code == "BLOCKED_CONTENT"
        assert provider.call_count == 0

    def test_rate_limit(self, make_orchestrator):
        orchestrator, provider = make_orchestrator(
            script=["ok"], rate_limiter=RateLimiter(max_requests=2, window_ms=60_000)
        )
        for _ in range(2):
            assert orchestrator.handle({"message": "Budget tips", "userId": "u1"}).status_code == 200

        outcome = orchestrator.handle({"message": "Budget tips", "userId": "u1"})

        assert outcome.status_code == 429
        assert outcome.error_code == "RATE_LIMITED"
        assert outcome.body.error == "Rate limit exceeded"
        assert 1 <= outcome.body.retry_after_seconds <= 60
        assert outcome.body.message == (
            f"Please wait {outcome.body.retry_after_seconds} seconds before trying again"
        )
        assert provider.call_count == 2
        assert "rate_limit" in _events(orchestrator, outcome.trace_id)
        denied = [e.payload for e in orchestrator.tracer.get_trace(outcome.trace_id).events if e.type == "rate_limit"]
        assert denied[0]["allowed"] is False
        assert orchestrator.tracer.get_trace(outcome.trace_id).outcome == "rejected"

        # Other users and anonymous requests are unaffected
        assert orchestrator.handle({"message": "Budget tips", "userId": "u2"}).status_code == 200
        assert orchestrator.handle({"message": "Budget tips"}).status_code == 200

    def test_default_limit_is_twenty_per_minute(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(script=["ok"])
        statuses = [orchestrator.handle({"message": "Budget tips", "userId": "u1"}).status_code
                    for _ in range(21)]
        assert statuses == [200] * 20 + [429]


class TestServerErrors:

    def _assert_server_error(self, orchestrator, outcome, status, code):
        assert outcome.status_code == status
        assert outcome.error_code == code
        assert isinstance(outcome.body, ServerErrorResponse)
        assert outcome.body.error == "Failed to get response"
        assert outcome.body.trace_id == outcome.trace_id
        trace = orchestrator.tracer.get_trace(outcome.trace_id)
        assert trace.outcome == "error"
        assert trace.ended_at is not None
        assert trace.error["code"] == code

    def test_provider_failure(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(provider=MockProvider(should_fail=True))
        outcome = orchestrator.handle({"message": "Budget tips"})
        self._assert_server_error(orchestrator, outcome, 502, "PROVIDER_ERROR")
        assert outcome.body.retryable is True
        assert "Mock provider" not in outcome.body.message

    def test_provider_timeout(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(provider=MockProvider(should_timeout=True))
        outcome = orchestrator.handle({"message": "Budget tips"})
        self._assert_server_error(orchestrator, outcome, 503, "PROVIDER_TIMEOUT")

    def test_empty_output(self, make_orchestrator):
        orchestrator, _ = make_orchestrator(script=[""])
        outcome = orchestrator.handle({"message": "Budget tips"})
        self._assert_server_error(orchestrator, outcome, 502, "OUTPUT_INVALID")
        events = orchestrator.tracer.get_trace(outcome.trace_id).events
        assert any(e.type == "validation_fail" and e.payload["phase"] == "output" for e in events)

    def test_deadline_exceeded(self, make_orchestrator):
        settings = Settings(default_provider="mock", default_model="mock-llm-v1", tool_loop_deadline_seconds=0)
        orchestrator, provider = make_orchestrator(script=["never"], settings=settings)
        outcome = orchestrator.handle({"message": "Budget tips"})
        self._assert_server_error(orchestrator, outcome, 503, "DEADLINE_EXCEEDED")
        assert provider.call_count == 0

    def test_unconfigured_provider(self, make_orchestrator):
        settings = Settings(default_provider="nope", default_model="x")
        orchestrator, _ = make_orchestrator(settings=settings)
        outcome = orchestrator.handle({"message": "Budget tips"})
        self._assert_server_error(orchestrator, outcome, 500, "CONFIGURATION_ERROR")
        assert outcome.body.retryable is False

    def test_unexpected_exception(self, make_orchestrator, monkeypatch):
        orchestrator, _ = make_orchestrator(script=["ok"])

        def broken(request):
            raise RuntimeError("router bug")

        monkeypatch.setattr(orchestrator.agent_router, "route", broken)
        outcome = orchestrator.handle({"message": "Budget tips"})
        self._assert_server_error(orchestrator, outcome, 500, "INTERNAL_ERROR")
        assert "router bug" not in outcome.body.message


@pytest.mark.parametrize("error, status", [
    (LLMTimeoutError("slow"), 503),
    (LoopDeadlineExceeded(1.0, 2), 503),
    (ProviderError("down"), 502),
    (OutputValidationError("empty"), 502),
    (RuntimeError("bug"), 500),
])
def test_http_status_for(error, status):
    assert http_status_for(error) == status

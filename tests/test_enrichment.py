"""Tests for best-effort enrichment.

Validates that:
1. Lookups that succeed land in the Enrichment and emit `enrichment` events
2. Slow or failing lookups become warnings and `enrichment_fail` events
3. Deep research only runs for the research strategy
4. The Perplexity adapter maps HTTP results and failures
"""
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from networth_coach.enrichment import (
    DEEP_RESEARCH_UNAVAILABLE,
    FINANCIAL_CONTEXT_UNAVAILABLE,
    KNOWLEDGE_SEARCH_UNAVAILABLE,
    EnrichmentGateway,
    FinancialContext,
    InMemoryFinancialContextStore,
    KnowledgeSnippet,
    PerplexityDeepResearch,
    ResearchResult,
)
from networth_coach.errors import ConfigurationError, EnrichmentFailure
from networth_coach.schemas import QueryRequest


class StaticKnowledge:
    def __init__(self, snippets):
        self.snippets = snippets
        self.calls = []

    def search(self, query, limit, region, min_similarity):
        self.calls.append((query, limit, region, min_similarity))
        return self.snippets[:limit]


class FailingKnowledge:
    def search(self, query, limit, region, min_similarity):
        raise ConnectionError("vector store down")


class BlockingKnowledge:
    def __init__(self):
        self.release = threading.Event()

    def search(self, query, limit, region, min_similarity):
        self.release.wait(5)
        return []


class StaticResearch:
    def __init__(self):
        self.calls = []

    def run(self, topic, goal_type, region):
        self.calls.append((topic, goal_type, region))
        return ResearchResult(summary="Index funds have low fees.", key_findings=("Fees matter",))


@pytest.fixture
def events():
    return []


def _recorder(events):
    return lambda event_type, payload: events.append((event_type, payload))


class TestGateway:

    def test_all_sources_succeed(self, events):
        context = FinancialContext(total_debt=5000, monthly_bills=1200, net_worth=20000)
        knowledge = StaticKnowledge([KnowledgeSnippet("Pay yourself first", 0.9, "Saving")])
        gateway = EnrichmentGateway(
            context_store=InMemoryFinancialContextStore({"u1": context}),
            knowledge_search=knowledge,
            deep_research=StaticResearch(),
        )
        try:
            result = gateway.gather(
                QueryRequest(message="Index funds?", user_id="u1", region="UK", deep_research_requested=True),
                "research",
                on_event=_recorder(events),
            )
        finally:
            gateway.close()

        assert result.financial_context == context
        assert [k.content for k in result.knowledge] == ["Pay yourself first"]
        assert result.research.summary == "Index funds have low fees."
        assert result.warnings == []
        assert [e[0] for e in events] == ["enrichment", "enrichment", "enrichment"]
        assert knowledge.calls == [("Index funds?", 3, "UK", 0.75)]

    def test_no_user_skips_financial_context(self, events):
        gateway = EnrichmentGateway()
        try:
            result = gateway.gather(QueryRequest(message="Budget tips"), "coach", on_event=_recorder(events))
        finally:
            gateway.close()
        assert result.financial_context is None
        assert result.warnings == []
        assert [p["source"] for _, p in events] == ["knowledge"]

    def test_research_only_for_research_strategy(self):
        research = StaticResearch()
        gateway = EnrichmentGateway(deep_research=research)
        try:
            result = gateway.gather(QueryRequest(message="Budget tips"), "coach")
        finally:
            gateway.close()
        assert research.calls == []
        assert result.research is None

    def test_failing_lookup_becomes_warning(self, events):
        gateway = EnrichmentGateway(knowledge_search=FailingKnowledge())
        try:
            result = gateway.gather(QueryRequest(message="Budget tips"), "coach", on_event=_recorder(events))
        finally:
            gateway.close()
        assert result.knowledge == []
        assert result.warnings == [KNOWLEDGE_SEARCH_UNAVAILABLE]
        assert events == [("enrichment_fail", {
            "source": "knowledge", "reason": "error", "error_type": "ConnectionError",
        })]

    def test_slow_lookup_times_out(self, events):
        knowledge = BlockingKnowledge()
        gateway = EnrichmentGateway(knowledge_search=knowledge, timeout_seconds=0.05)
        try:
            result = gateway.gather(QueryRequest(message="Budget tips"), "coach", on_event=_recorder(events))
        finally:
            knowledge.release.set()
            gateway.close()
        assert result.warnings == [KNOWLEDGE_SEARCH_UNAVAILABLE]
        assert events[-1] == ("enrichment_fail", {"source": "knowledge", "reason": "timeout"})

    def test_hung_lookups_keep_requests_bounded(self):
        knowledge = BlockingKnowledge()
        gateway = EnrichmentGateway(knowledge_search=knowledge, timeout_seconds=0.05, max_workers=1)
        try:
            started = time.monotonic()
            first = gateway.gather(QueryRequest(message="Budget tips"), "coach")
            # The only worker is still stuck on the first lookup
            second = gateway.gather(QueryRequest(message="Budget tips"), "coach")
            elapsed = time.monotonic() - started

            knowledge.release.set()
            gateway.timeout_seconds = 2.0
            third = gateway.gather(QueryRequest(message="Budget tips"), "coach")
        finally:
            knowledge.release.set()
            gateway.close()

        assert first.warnings == [KNOWLEDGE_SEARCH_UNAVAILABLE]
        assert second.warnings == [KNOWLEDGE_SEARCH_UNAVAILABLE]
        assert elapsed < 1.0
        assert third.warnings == []

    def test_pool_size_from_settings(self):
        from networth_coach.config import Settings
        from networth_coach.orchestrator import CoachOrchestrator

        orchestrator = CoachOrchestrator.from_settings(Settings(enrichment_max_workers=2))
        try:
            assert orchestrator.enrichment.max_workers == 2
        finally:
            orchestrator.close()
        assert Settings().enrichment_max_workers == 8

    def test_failing_context_store(self):
        store = MagicMock()
        store.get.side_effect = RuntimeError("db down")
        gateway = EnrichmentGateway(context_store=store)
        try:
            result = gateway.gather(QueryRequest(message="Budget tips", user_id="u1"), "coach")
        finally:
            gateway.close()
        assert result.warnings == [FINANCIAL_CONTEXT_UNAVAILABLE]

    def test_research_not_configured(self, events):
        gateway = EnrichmentGateway(deep_research=None)
        try:
            result = gateway.gather(
                QueryRequest(message="Index funds?", deep_research_requested=True),
                "research",
                on_event=_recorder(events),
            )
        finally:
            gateway.close()
        assert result.research is None
        assert DEEP_RESEARCH_UNAVAILABLE in result.warnings
        assert ("enrichment_fail", {"source": "deep_research", "reason": "not_configured"}) in events


def _response(status=200, payload=None):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload or {}
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} error")
    return response


class TestPerplexityDeepResearch:

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
        with pytest.raises(ConfigurationError):
            PerplexityDeepResearch()

    def test_builds_result_from_search(self):
        session = MagicMock()
        session.post.return_value = _response(payload={"results": [
            {
                "title": "Emergency funds explained",
                "url": "https://www.investopedia.com/emergency-fund",
                "snippet": "An emergency fund is important. Keep it in high-yield savings.",
            },
            {"title": "Diversification", "url": "https://www.morningstar.com/x", "snippet": "Diversify broadly."},
        ]})
        research = PerplexityDeepResearch(api_key="test-key", session=session)

        result = research.run("emergency fund size", "house", "US")

        assert [s.title for s in result.sources] == ["Emergency funds explained", "Diversification"]
        assert result.key_findings == ("An emergency fund is important",)
        assert "Build an emergency fund covering 3-6 months of expenses" in result.recommendations
        assert "Focus on increasing your down payment savings for better mortgage rates" in result.recommendations
        assert result.summary.startswith("An emergency fund is important.")

        _, kwargs = session.post.call_args
        assert "saving for house" in kwargs["json"]["query"]
        assert kwargs["json"]["query"].endswith("in US")
        assert "investopedia.com" in kwargs["json"]["search_domain_filter"]
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"

        data = result.to_dict()
        assert set(data) == {"summary", "keyFindings", "recommendations", "sources"}

    def test_http_error_raises_enrichment_failure(self):
        session = MagicMock()
        session.post.return_value = _response(status=503)
        research = PerplexityDeepResearch(api_key="test-key", session=session)
        with pytest.raises(EnrichmentFailure) as exc_info:
            research.run("anything", None, None)
        assert exc_info.value.source == "deep_research"
        assert exc_info.value.retryable is True

    def test_network_error_raises_enrichment_failure(self):
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("no route")
        research = PerplexityDeepResearch(api_key="test-key", session=session)
        with pytest.raises(EnrichmentFailure):
            research.run("anything", None, None)

    def test_empty_results_give_generic_recommendations(self):
        session = MagicMock()
        session.post.return_value = _response(payload={"results": []})
        result = PerplexityDeepResearch(api_key="test-key", session=session).run("x", None, None)
        assert result.sources == ()
        assert result.summary == ""
        assert len(result.recommendations) == 2

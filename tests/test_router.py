import pytest

from networth_coach.router import AgentRouter, is_calculation_query
from networth_coach.schemas import QueryRequest


def _route(**fields):
    return AgentRouter().route(QueryRequest(**fields))


def test_router_instantiates():
    assert AgentRouter() is not None


def test_deep_research_wins():
    # Even with calculation keywords
    assert _route(message="How much interest do index funds earn?", deep_research_requested=True) == "research"


@pytest.mark.parametrize("message", [
    "Calculate my savings",
    "How much do I need each month?",
    "HOW LONG until I reach $10k?",
    "What's my loan payment?",
    "Should I save more?",
    "Plan for 18 months",
])
def test_calculation_keywords(message):
    assert _route(message=message) == "calculator"


def test_coach_fallback():
    assert _route(message="I feel overwhelmed by my finances") == "coach"


def test_routing_is_deterministic():
    request = QueryRequest(message="What are good budgeting habits?")
    router = AgentRouter()
    assert {router.route(request) for _ in range(5)} == {"coach"}


def test_is_calculation_query_is_substring_match():
    assert is_calculation_query("interesting") is True
    assert is_calculation_query("hello") is False

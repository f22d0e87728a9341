from __future__ import annotations

from .schemas import AgentKind, QueryRequest

# Substring match, case-insensitive
CALCULATION_KEYWORDS = (
    "calculate",
    "compute",
    "how much",
    "how long",
    "payment",
    "interest",
    "save",
    "months",
    "years",
    "debt payoff",
    "loan",
)


def is_calculation_query(message: str) -> bool:
    q = message.lower()
    return any(k in q for k in CALCULATION_KEYWORDS)


class AgentRouter:
    """Pick the strategy that will answer a request.

    Decision order, first match wins:
      1. deep research requested -> research
      2. calculation keyword in the message -> calculator
      3. otherwise -> coach

    Stateless: the same request always routes the same way.
    """

    def route(self, request: QueryRequest) -> AgentKind:
        if request.deep_research_requested:
            return "research"
        if is_calculation_query(request.message):
            return "calculator"
        return "coach"

"""Best-effort context gathered before the model is called.

Three optional lookups feed the system prompt:
    - the user's financial context (debts, bills, net worth)
    - knowledge-base snippets similar to the question
    - deep research, only for the research strategy

Lookups run on a small thread pool and are awaited with a bounded timeout.
A slow or failing lookup degrades the answer, never the request: it becomes
a warning and an `enrichment_fail` trace event.
"""
import os
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import requests

from .errors import ConfigurationError, EnrichmentFailure
from .logging import logger
from .schemas import AgentKind, QueryRequest

FINANCIAL_CONTEXT_UNAVAILABLE = "financial_context_unavailable"
KNOWLEDGE_SEARCH_UNAVAILABLE = "knowledge_search_unavailable"
DEEP_RESEARCH_UNAVAILABLE = "deep_research_unavailable"

EnrichmentEventCallback = Callable[[str, Dict[str, Any]], None]


@dataclass(frozen=True)
class FinancialContext:
    total_debt: float = 0.0
    monthly_bills: float = 0.0
    net_worth: float = 0.0
    has_active_goal: bool = False
    monthly_debt_interest: Optional[float] = None
    high_interest_debt: Optional[bool] = None


@dataclass(frozen=True)
class KnowledgeSnippet:
    content: str
    score: float
    title: Optional[str] = None


@dataclass(frozen=True)
class ResearchSource:
    title: str
    url: str
    snippet: str = ""


@dataclass(frozen=True)
class ResearchResult:
    summary: str
    key_findings: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    sources: Tuple[ResearchSource, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "keyFindings": list(self.key_findings),
            "recommendations": list(self.recommendations),
            "sources": [
                {"title": s.title, "url": s.url, "snippet": s.snippet}
                for s in self.sources
            ],
        }


class FinancialContextStore(Protocol):
    def get(self, user_id: str) -> Optional[FinancialContext]:
        ...


class KnowledgeSearch(Protocol):
    def search(
        self,
        query: str,
        limit: int,
        region: Optional[str],
        min_similarity: float,
    ) -> List[KnowledgeSnippet]:
        ...


class DeepResearch(Protocol):
    def run(self, topic: str, goal_type: Optional[str], region: Optional[str]) -> ResearchResult:
        ...


class NullFinancialContextStore:
    """No stored context: every user is treated as a new user."""

    def get(self, user_id: str) -> Optional[FinancialContext]:
        return None


class InMemoryFinancialContextStore:
    def __init__(self, contexts: Optional[Dict[str, FinancialContext]] = None):
        self._contexts = dict(contexts or {})

    def put(self, user_id: str, context: FinancialContext) -> None:
        self._contexts[user_id] = context

    def get(self, user_id: str) -> Optional[FinancialContext]:
        return self._contexts.get(user_id)


class NullKnowledgeSearch:
    def search(self, query: str, limit: int, region: Optional[str], min_similarity: float) -> List[KnowledgeSnippet]:
        return []


class PerplexityDeepResearch:
    """Deep research over the Perplexity Search API.

    Searches a fixed set of trusted finance domains and condenses the result
    snippets into findings and recommendations.

    Requires PERPLEXITY_API_KEY environment variable or explicit API key.
    """

    API_ENDPOINT = "https://api.perplexity.ai/search"
    TRUSTED_DOMAINS = (
        "investopedia.com",
        "morningstar.com",
        "fool.com",
        "nerdwallet.com",
        "bankrate.com",
        "forbes.com",
        "bloomberg.com",
        "ft.com",
    )
    FINDING_KEYWORDS = ("important", "key", "significant", "note", "critical", "should", "recommend")

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        max_results: int = 10
    ):
        self._api_key = api_key or os.getenv("PERPLEXITY_API_KEY")
        if not self._api_key:
            raise ConfigurationError(
                "PERPLEXITY_API_KEY environment variable not set",
                details={"variable": "PERPLEXITY_API_KEY"}
            )
        self._session = session or requests.Session()
        self._timeout = timeout
        self._max_results = max_results

    def run(self, topic: str, goal_type: Optional[str], region: Optional[str]) -> ResearchResult:
        query = topic
        if goal_type:
            query += f" - specific advice for someone saving for {goal_type.replace('_', ' ')}"
        if region:
            query += f" in {region}"

        try:
            response = self._session.post(
                self.API_ENDPOINT,
                json={
                    "query": query,
                    "search_domain_filter": list(self.TRUSTED_DOMAINS),
                    "max_results": self._max_results,
                    "max_tokens_per_page": 2048,
                },
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise EnrichmentFailure(f"Deep research request failed: {e}", source="deep_research")

        sources = tuple(
            ResearchSource(
                title=r.get("title") or "",
                url=r.get("url") or "",
                snippet=r.get("snippet") or "",
            )
            for r in data.get("results") or []
            if isinstance(r, dict)
        )
        content = "\n\n".join(s.snippet for s in sources if s.snippet)
        summary = content[:500] + ("..." if len(content) > 500 else "")
        return ResearchResult(
            summary=summary,
            key_findings=self._key_findings(content),
            recommendations=self._recommendations(content, goal_type),
            sources=sources,
        )

    def _key_findings(self, content: str) -> Tuple[str, ...]:
        findings: List[str] = []
        for sentence in content.replace("!", ".").replace("?", ".").split(". "):
            sentence = sentence.strip()
            if sentence and any(k in sentence.lower() for k in self.FINDING_KEYWORDS):
                findings.append(sentence)
                if len(findings) >= 5:
                    break
        return tuple(findings)

    @staticmethod
    def _recommendations(content: str, goal_type: Optional[str]) -> Tuple[str, ...]:
        text = content.lower()
        recs: List[str] = []
        if "diversif" in text:
            recs.append("Consider diversifying your portfolio across different asset classes")
        if "emergen" in text:
            recs.append("Build an emergency fund covering 3-6 months of expenses")
        if "interest rate" in text or "savings" in text:
            recs.append("Compare high-yield savings account rates before choosing where to save")
        if goal_type == "house":
            recs.append("Focus on increasing your down payment savings for better mortgage rates")
        if not recs:
            recs.append("Review your current financial strategy regularly")
            recs.append("Consult with a financial advisor for personalized advice")
        return tuple(recs)


@dataclass
class Enrichment:
    financial_context: Optional[FinancialContext] = None
    knowledge: List[KnowledgeSnippet] = field(default_factory=list)
    research: Optional[ResearchResult] = None
    warnings: List[str] = field(default_factory=list)


class EnrichmentGateway:
    """Runs the enrichment lookups for one request with bounded waits.

    Args:
        context_store: Source of per-user financial context
        knowledge_search: Vector search over the knowledge base
        deep_research: Research adapter, or None when not configured
        timeout_seconds: Total wait for all lookups of one request
        knowledge_limit: Maximum snippets requested
        min_similarity: Minimum snippet similarity
        max_workers: Thread pool size shared by all requests

    A lookup that outlives the timeout cannot be interrupted: its request
    moves on without it, but the worker stays busy until the collaborator
    returns. Collaborators should carry their own I/O timeouts, and
    max_workers bounds how many hung lookups the pool absorbs before new
    lookups queue and time out unstarted.
    """

    def __init__(
        self,
        context_store: Optional[FinancialContextStore] = None,
        knowledge_search: Optional[KnowledgeSearch] = None,
        deep_research: Optional[DeepResearch] = None,
        timeout_seconds: float = 5.0,
        knowledge_limit: int = 3,
        min_similarity: float = 0.75,
        max_workers: int = 8,
    ):
        self.context_store = context_store or NullFinancialContextStore()
        self.knowledge_search = knowledge_search or NullKnowledgeSearch()
        self.deep_research = deep_research
        self.timeout_seconds = timeout_seconds
        self.knowledge_limit = knowledge_limit
        self.min_similarity = min_similarity
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="enrichment")

    def gather(
        self,
        request: QueryRequest,
        agent_kind: AgentKind,
        on_event: Optional[EnrichmentEventCallback] = None,
    ) -> Enrichment:
        emit = on_event or (lambda _type, _payload: None)
        result = Enrichment()
        started = time.monotonic()

        pending: List[Tuple[str, str, Future]] = []
        if request.user_id:
            pending.append((
                "financial_context", FINANCIAL_CONTEXT_UNAVAILABLE,
                self._executor.submit(self.context_store.get, request.user_id),
            ))
        pending.append((
            "knowledge", KNOWLEDGE_SEARCH_UNAVAILABLE,
            self._executor.submit(
                self.knowledge_search.search,
                request.message, self.knowledge_limit, request.region, self.min_similarity,
            ),
        ))
        if agent_kind == "research":
            if self.deep_research is None:
                result.warnings.append(DEEP_RESEARCH_UNAVAILABLE)
                emit("enrichment_fail", {"source": "deep_research", "reason": "not_configured"})
            else:
                pending.append((
                    "deep_research", DEEP_RESEARCH_UNAVAILABLE,
                    self._executor.submit(
                        self.deep_research.run, request.message, request.goal_type, request.region,
                    ),
                ))

        for source, warning, future in pending:
            remaining = max(0.0, self.timeout_seconds - (time.monotonic() - started))
            try:
                value = future.result(timeout=remaining)
            except FutureTimeout:
                started_running = not future.cancel()
                logger.warning(
                    "enrichment_timeout source=%s timeout=%.1fs still_running=%s",
                    source, self.timeout_seconds, started_running
                )
                result.warnings.append(warning)
                emit("enrichment_fail", {"source": source, "reason": "timeout"})
                continue
            except Exception as e:
                # Any lookup failure degrades to "no enrichment"
                logger.warning("enrichment_failed source=%s error=%s", source, e.__class__.__name__)
                result.warnings.append(warning)
                emit("enrichment_fail", {
                    "source": source,
                    "reason": "error",
                    "error_type": e.__class__.__name__,
                })
                continue

            if source == "financial_context":
                result.financial_context = value
                emit("enrichment", {"source": source, "found": value is not None})
            elif source == "knowledge":
                result.knowledge = list(value or [])
                emit("enrichment", {"source": source, "results": len(result.knowledge)})
            else:
                result.research = value
                emit("enrichment", {"source": source, "sources": len(value.sources) if value else 0})

        return result

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

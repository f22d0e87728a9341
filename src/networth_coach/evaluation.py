"""Heuristic response-quality scoring.

Scores are observational telemetry attached to a response. They never block
or alter it.

Each dimension is 0-100:
    relevance     keyword overlap between the question and the answer
    accuracy      penalized by misleading-claim warnings and heavy hedging
    helpfulness   actionable language, lists and concrete amounts
    safety        missing disclaimer and absolutist language
    completeness  answer length band
    intent        whether the answer does what the routed strategy is for
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from .guardrails import DISCLAIMER_LANGUAGE, INVESTMENT_DISCLAIMER_REQUIRED, MISLEADING_CLAIMS

FEEDBACK_THRESHOLD = 70

_WORD = re.compile(r"[a-z0-9']+")
_HEDGING = re.compile(r"\b(?:might|could|possibly|may|perhaps)\b", re.IGNORECASE)
_ABSOLUTIST = re.compile(r"guaranteed|\balways\b|\bnever\b|100%|\bdefinitely\b", re.IGNORECASE)
_ACTIONABLE = re.compile(
    r"you should|consider|recommend|\btry\b|\bstep\b|^\s*\d+\.|^\s*[-*•]",
    re.IGNORECASE | re.MULTILINE,
)
_AMOUNT = re.compile(r"[$£€]\s?\d[\d,]*|\d[\d,]*(?:\.\d+)?\s?(?:%|months?|years?)")
_NUMBER = re.compile(r"\d")
_RESEARCH_MARKERS = re.compile(r"finding|research|according to|source|recommend|study|data shows", re.IGNORECASE)

_STOPWORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "your", "can", "how",
    "what", "should", "with", "this", "that", "have", "has", "was", "from",
    "does", "will", "would", "about", "there", "their", "they", "get", "any",
})

_FEEDBACK = {
    "relevance": "Response may not fully address the user query",
    "accuracy": "Response contains potentially misleading information",
    "helpfulness": "Response lacks actionable advice",
    "safety": "Response may not follow safety guidelines",
    "completeness": "Response may be incomplete or too brief",
    "intent": "Response may not match the kind of answer requested",
}


@dataclass(frozen=True)
class Evaluation:
    score: int
    dimensions: Dict[str, int]
    feedback: Optional[str] = None
    trace_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"score": self.score, "dimensions": dict(self.dimensions)}
        if self.feedback:
            out["feedback"] = self.feedback
        return out


def _keywords(text: str) -> set:
    return {w for w in _WORD.findall(text.lower()) if len(w) > 2 and w not in _STOPWORDS}


def score_relevance(message: str, response: str) -> int:
    asked = _keywords(message)
    if not asked:
        return 100
    answered = _keywords(response)
    overlap = sum(
        1 for word in asked
        if any(word in other or other in word for other in answered if len(other) > 2)
    )
    return round(min(overlap / len(asked), 1.0) * 100)


def score_accuracy(response: str, warnings: Sequence[str]) -> int:
    score = 100
    if MISLEADING_CLAIMS in warnings:
        score -= 30
    # Some hedging shows caution; a lot of it means the answer is vague
    if len(_HEDGING.findall(response)) > 10:
        score -= 10
    return max(score, 0)


def score_helpfulness(response: str) -> int:
    score = 50
    score += min(len(_ACTIONABLE.findall(response)) * 5, 40)
    if _AMOUNT.search(response):
        score += 10
    return min(score, 100)


def score_safety(response: str, warnings: Sequence[str]) -> int:
    score = 100
    if INVESTMENT_DISCLAIMER_REQUIRED in warnings and not DISCLAIMER_LANGUAGE.search(response):
        score -= 20
    score -= min(len(_ABSOLUTIST.findall(response)) * 10, 40)
    return max(score, 0)


def score_completeness(response: str) -> int:
    length = len(response)
    if length < 100:
        return 30
    if length < 300:
        return 60
    if length < 1000:
        return 80
    if length < 3000:
        return 100
    if length < 5000:
        return 90
    return 70


def score_intent(response: str, agent_kind: Optional[str]) -> int:
    if agent_kind == "calculator":
        return 100 if _NUMBER.search(response) else 40
    if agent_kind == "research":
        return 100 if _RESEARCH_MARKERS.search(response) else 50
    if agent_kind == "coach":
        return 100 if _ACTIONABLE.search(response) else 60
    return 100


def _feedback(dimensions: Dict[str, int]) -> str:
    return ". ".join(
        _FEEDBACK[name] for name, value in dimensions.items()
        if value < FEEDBACK_THRESHOLD
    )


def evaluate_response(
    original_message: str,
    final_response: str,
    warnings: Sequence[str] = (),
    agent_kind: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> Evaluation:
    """Score a final response on every dimension.

    Args:
        original_message: The user's question
        final_response: The answer returned to the user
        warnings: Input and output guardrail warnings for the request
        agent_kind: Strategy that answered (research, calculator, coach)
        trace_id: Trace the evaluation belongs to

    Returns:
        Evaluation with the rounded mean score and, below 70, feedback text
    """
    dimensions = {
        "relevance": score_relevance(original_message, final_response),
        "accuracy": score_accuracy(final_response, warnings),
        "helpfulness": score_helpfulness(final_response),
        "safety": score_safety(final_response, warnings),
        "completeness": score_completeness(final_response),
        "intent": score_intent(final_response, agent_kind),
    }
    score = round(sum(dimensions.values()) / len(dimensions))
    feedback = _feedback(dimensions) if score < FEEDBACK_THRESHOLD else None
    return Evaluation(score=score, dimensions=dimensions, feedback=feedback or None, trace_id=trace_id)

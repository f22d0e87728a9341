"""Per-request trace recording and evaluation.

A trace is the ordered audit log of one request: every pipeline stage adds at
least one event, including early rejections and failures. Traces live in a
bounded in-memory store (most recent `capacity` kept) owned by one
TraceRecorder instance, created at service start and passed to the pipeline.

Example:
    >>> recorder = TraceRecorder()
    >>> trace_id = recorder.start_trace({"user_id": "u1", "message": "Hi", "model": "mock-llm-v1"})
    >>> recorder.add_event(trace_id, "routing", {"agent": "coach"})
    >>> recorder.end_trace(trace_id, {"response": "Hello!", "agent_used": "coach"})
    >>> recorder.get_trace(trace_id).ended_at is not None
    True
"""
import copy
import json
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .evaluation import Evaluation, evaluate_response
from .logging import logger

EVENT_TYPES = frozenset({
    "request_start",
    "input_validation",
    "validation_fail",
    "rate_limit",
    "routing",
    "enrichment",
    "enrichment_fail",
    "agent_start",
    "provider_call",
    "tool_call",
    "agent_end",
    "output_validation",
    "request_end",
    "evaluation",
    "error",
})

DEFAULT_CAPACITY = 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TraceEvent:
    type: str
    payload: Dict[str, Any]
    timestamp: int
    id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:12]}")


@dataclass
class TraceMetrics:
    tool_calls: int = 0
    provider_calls: int = 0
    validation_failures: int = 0
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Trace:
    id: str
    started_at: int
    input: Dict[str, Any]
    user_id: Optional[str] = None
    model: Optional[str] = None
    agent_used: str = "pending"
    events: List[TraceEvent] = field(default_factory=list)
    ended_at: Optional[int] = None
    duration_ms: Optional[int] = None
    final_response: Optional[str] = None
    research: Optional[Dict[str, Any]] = None
    warnings: List[str] = field(default_factory=list)
    metrics: TraceMetrics = field(default_factory=TraceMetrics)
    error: Optional[Dict[str, Any]] = None
    evaluation: Optional[Dict[str, Any]] = None
    outcome: Optional[str] = None  # success | rejected | error, set when the trace ends

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"

    def add_warnings(self, warnings: Sequence[str]) -> None:
        for w in warnings:
            if w not in self.warnings:
                self.warnings.append(w)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class TraceRecorder:
    """Thread-safe, bounded trace store.

    Unknown trace ids are logged and ignored by the write methods so that a
    tracing problem can never fail a request.

    Args:
        capacity: Maximum number of traces kept; the oldest is evicted first
        clock: Epoch-milliseconds clock (injectable for tests)
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, clock: Optional[Callable[[], int]] = None):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._clock = clock or _now_ms
        self._traces: "OrderedDict[str, Trace]" = OrderedDict()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def start_trace(self, metadata: Mapping[str, Any]) -> str:
        """Open a trace and record its `request_start` event.

        Args:
            metadata: Request snapshot; `user_id` and `model` are lifted onto
                the trace, everything is kept as the input snapshot

        Returns:
            The new trace id
        """
        trace_id = f"trace_{uuid.uuid4().hex}"
        now = self._clock()
        snapshot = dict(metadata)
        trace = Trace(
            id=trace_id,
            started_at=now,
            input=snapshot,
            user_id=snapshot.get("user_id"),
            model=snapshot.get("model"),
        )
        trace.events.append(TraceEvent("request_start", {"input": snapshot}, now))

        with self._lock:
            self._traces[trace_id] = trace
            while len(self._traces) > self._capacity:
                self._traces.popitem(last=False)

        logger.info("trace_started trace_id=%s", trace_id)
        return trace_id

    def add_event(self, trace_id: str, event_type: str, payload: Optional[Mapping[str, Any]] = None) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown trace event type: {event_type}")
        payload = dict(payload or {})
        with self._lock:
            trace = self._traces.get(trace_id)
            if trace is None:
                logger.warning("trace_not_found trace_id=%s event=%s", trace_id, event_type)
                return
            trace.events.append(TraceEvent(event_type, payload, self._clock()))
            metrics = trace.metrics
            if event_type == "tool_call":
                metrics.tool_calls += 1
            elif event_type == "provider_call":
                metrics.provider_calls += 1
                metrics.input_tokens += int(payload.get("input_tokens", 0) or 0)
                metrics.output_tokens += int(payload.get("output_tokens", 0) or 0)
            elif event_type == "validation_fail":
                metrics.validation_failures += 1
            elif event_type == "routing":
                trace.agent_used = payload.get("agent", trace.agent_used)

    def end_trace(self, trace_id: str, summary: Optional[Mapping[str, Any]] = None) -> None:
        """Close a trace. Only the first call has any effect.

        Args:
            summary: Optional `response`, `research`, `warnings`, `agent_used`,
                `model` and `outcome`
        """
        summary = dict(summary or {})
        with self._lock:
            trace = self._traces.get(trace_id)
            if trace is None:
                logger.warning("trace_not_found trace_id=%s event=request_end", trace_id)
                return
            if trace.ended_at is not None:
                return
            now = self._clock()
            trace.ended_at = now
            trace.duration_ms = now - trace.started_at
            trace.outcome = summary.get("outcome") or ("error" if trace.error else "success")
            if summary.get("response") is not None:
                trace.final_response = summary["response"]
            if summary.get("research") is not None:
                trace.research = summary["research"]
            if summary.get("agent_used"):
                trace.agent_used = summary["agent_used"]
            if summary.get("model"):
                trace.model = summary["model"]
            trace.add_warnings(summary.get("warnings") or [])
            trace.events.append(TraceEvent("request_end", {
                "agent_used": trace.agent_used,
                "outcome": trace.outcome,
                "warnings": list(trace.warnings),
                "duration_ms": trace.duration_ms,
                "error": trace.error is not None,
            }, now))
            duration = trace.duration_ms
            metrics = trace.metrics

        logger.info(
            "trace_completed trace_id=%s duration_ms=%d tool_calls=%d provider_calls=%d",
            trace_id, duration, metrics.tool_calls, metrics.provider_calls
        )

    def trace_error(self, trace_id: str, error: BaseException | str, code: Optional[str] = None) -> None:
        """Record an error on the trace; the trace stays open until end_trace."""
        if isinstance(error, BaseException):
            data = {
                "message": str(error),
                "code": code or getattr(error, "code", None),
                "error_type": error.__class__.__name__,
            }
        else:
            data = {"message": error, "code": code, "error_type": None}

        with self._lock:
            trace = self._traces.get(trace_id)
            if trace is None:
                logger.warning("trace_not_found trace_id=%s event=error", trace_id)
                return
            trace.error = data
            trace.events.append(TraceEvent("error", dict(data), self._clock()))

        logger.error("trace_error trace_id=%s code=%s", trace_id, data["code"])

    def evaluate_response(
        self,
        trace_id: str,
        original_message: str,
        final_response: str,
        warnings: Sequence[str] = (),
        agent_kind: Optional[str] = None,
    ) -> Evaluation:
        """Score a response and attach the result to its trace."""
        evaluation = evaluate_response(
            original_message, final_response, warnings, agent_kind, trace_id=trace_id
        )
        with self._lock:
            trace = self._traces.get(trace_id)
            if trace is not None:
                trace.evaluation = evaluation.to_dict()
                trace.events.append(TraceEvent("evaluation", evaluation.to_dict(), self._clock()))

        logger.info("trace_evaluated trace_id=%s score=%d", trace_id, evaluation.score)
        return evaluation

    def clear(self) -> None:
        with self._lock:
            self._traces.clear()
        logger.info("traces_cleared")

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def get_trace(self, trace_id: str) -> Optional[Trace]:
        """Snapshot of one trace, or None if unknown or evicted."""
        with self._lock:
            trace = self._traces.get(trace_id)
            return copy.deepcopy(trace) if trace is not None else None

    def traces_for_user(self, user_id: str) -> List[Trace]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._traces.values() if t.user_id == user_id]

    def all_traces(self) -> List[Trace]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._traces.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._traces)

    @property
    def capacity(self) -> int:
        return self._capacity

    def analytics(self) -> Dict[str, Any]:
        """Aggregate view over the traces currently held.

        Returns:
            {
                "total_requests": int,
                "successful_requests": int,
                "failed_requests": int,
                "in_flight": int,
                "average_duration_ms": int,
                "average_score": float,
                "agent_usage": {agent: count},
                "model_usage": {model: count},
                "top_warnings": {warning: count},
                "timestamp": int
            }
        """
        traces = self.all_traces()
        completed = [t for t in traces if t.succeeded]
        failed = [t for t in traces if t.outcome == "error" or t.error is not None]
        rejected = [t for t in traces if t.outcome == "rejected"]
        in_flight = [t for t in traces if t.ended_at is None]

        avg_duration = (
            round(sum(t.duration_ms or 0 for t in completed) / len(completed))
            if completed else 0
        )
        scores = [t.evaluation["score"] for t in traces if t.evaluation]
        avg_score = round(sum(scores) / len(scores), 1) if scores else 0.0

        agent_usage: Dict[str, int] = {}
        for t in completed:
            agent_usage[t.agent_used] = agent_usage.get(t.agent_used, 0) + 1

        model_usage: Dict[str, int] = {}
        for t in traces:
            if t.model:
                model_usage[t.model] = model_usage.get(t.model, 0) + 1

        warning_counts: Dict[str, int] = {}
        for t in completed:
            for w in t.warnings:
                warning_counts[w] = warning_counts.get(w, 0) + 1
        top_warnings = dict(sorted(warning_counts.items(), key=lambda kv: (-kv[1], kv[0])))

        return {
            "total_requests": len(traces),
            "successful_requests": len(completed),
            "failed_requests": len(failed),
            "rejected_requests": len(rejected),
            "in_flight": len(in_flight),
            "average_duration_ms": avg_duration,
            "average_score": avg_score,
            "agent_usage": agent_usage,
            "model_usage": model_usage,
            "top_warnings": top_warnings,
            "timestamp": self._clock(),
        }

    def export_json(self) -> str:
        return json.dumps([t.to_dict() for t in self.all_traces()], indent=2, default=str)

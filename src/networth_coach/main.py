from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import ValidationError as PydanticValidationError

from .config import Settings, settings as default_settings
from .guardrails import first_error_message
from .logging import correlation_id_middleware, logger, setup_logging
from .orchestrator import CoachOrchestrator, Outcome
from .schemas import DebtStrategyRequest, SavingsProjectionRequest
from .tools.calculator import (
    CalculationError,
    Debt,
    compare_debt_strategies,
    effective_annual_rate,
    savings_projection,
)

REQS = Counter("coach_requests_total", "Total query requests", ["agent", "outcome"])
LAT = Histogram("coach_request_duration_ms", "Query duration in ms")
TOOL_CALLS = Counter("coach_tool_calls_total", "Total calculator tool calls")
TOKENS_IN = Counter("coach_tokens_input_total", "Total input tokens consumed")
TOKENS_OUT = Counter("coach_tokens_output_total", "Total output tokens generated")
COST = Counter("coach_cost_usd_total", "Total estimated cost in USD")


def _outcome_label(outcome: Outcome) -> str:
    if outcome.status_code == 200:
        return "success"
    if outcome.status_code == 429:
        return "rate_limited"
    if outcome.status_code < 500:
        return "rejected"
    return "error"


def _record_metrics(outcome: Outcome) -> None:
    REQS.labels(agent=outcome.agent or "none", outcome=_outcome_label(outcome)).inc()
    LAT.observe(outcome.duration_ms)
    if outcome.tool_calls > 0:
        TOOL_CALLS.inc(outcome.tool_calls)
    if outcome.usage.input_tokens > 0:
        TOKENS_IN.inc(outcome.usage.input_tokens)
    if outcome.usage.output_tokens > 0:
        TOKENS_OUT.inc(outcome.usage.output_tokens)
    if outcome.usage.estimated_cost_usd > 0:
        COST.inc(outcome.usage.estimated_cost_usd)


def _to_debts(req: DebtStrategyRequest) -> List[Debt]:
    return [
        Debt(
            name=d.name or f"Debt {i + 1}",
            balance=d.balance,
            annual_rate=d.interest_rate,
            minimum_payment=d.minimum_payment,
        )
        for i, d in enumerate(req.debts)
    ]


def create_app(
    orchestrator: Optional[CoachOrchestrator] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the HTTP app around one orchestrator instance.

    Args:
        orchestrator: Pipeline to serve; built from settings when omitted
        settings: Service settings, defaults to the environment-derived ones
    """
    settings = settings or default_settings
    orchestrator = orchestrator or CoachOrchestrator.from_settings(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        orchestrator.close()

    app = FastAPI(title="Networth Coach", version="0.1.0", lifespan=lifespan)
    app.middleware("http")(correlation_id_middleware)
    app.state.orchestrator = orchestrator

    @app.get("/health")
    def health():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/query")
    def query(payload: Any = Body(...)):
        # Raw body: schema validation belongs to the input guardrail
        outcome = orchestrator.handle(payload)
        _record_metrics(outcome)
        return JSONResponse(
            status_code=outcome.status_code,
            content=outcome.body.model_dump(mode="json", by_alias=True, exclude_none=True),
        )

    @app.post("/debt-strategies")
    def debt_strategies(payload: Any = Body(...)):
        try:
            req = DebtStrategyRequest.model_validate(payload)
            comparison = compare_debt_strategies(_to_debts(req), req.monthly_budget)
        except PydanticValidationError as e:
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid request", "message": first_error_message(e)},
            )
        except CalculationError as e:
            return JSONResponse(status_code=400, content={"error": "Invalid request", "message": e.message})
        logger.info(
            "debt_strategies_compared debts=%d recommended=%s",
            len(req.debts), comparison.recommended
        )
        return comparison.to_dict()

    @app.post("/savings-projection")
    def projection(payload: Any = Body(...)):
        try:
            req = SavingsProjectionRequest.model_validate(payload)
        except PydanticValidationError as e:
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid request", "message": first_error_message(e)},
            )
        points = savings_projection(req.current_amount, req.monthly_contribution, req.annual_rate, req.years)
        return {
            "projection": [p.to_dict() for p in points],
            "effectiveAnnualRate": round(effective_annual_rate(req.annual_rate), 6),
        }

    @app.get("/traces/{trace_id}")
    def get_trace(trace_id: str) -> Dict[str, Any]:
        trace = orchestrator.tracer.get_trace(trace_id)
        if trace is None:
            raise HTTPException(status_code=404, detail="Trace not found")
        return trace.to_dict()

    @app.get("/analytics")
    def analytics() -> Dict[str, Any]:
        data = orchestrator.tracer.analytics()
        data["rate_limiter"] = orchestrator.rate_limiter.get_stats().to_dict()
        return data

    return app


setup_logging()
app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("networth_coach.main:app", host="127.0.0.1", port=8000, reload=True)

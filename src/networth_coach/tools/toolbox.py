"""Calculator functions exposed to the model as tools.

Each tool pairs a pydantic argument model (which doubles as the JSON schema
sent to the provider) with one calculator function. Tool failures never
escape: unknown names, malformed arguments and impossible math all come back
as an `{"error": ...}` payload so the model can correct itself within the
loop's iteration budget.
"""
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from . import calculator
from .base import Tool, ToolResult
from ..errors import ToolExecutionError
from ..llm.base import ToolRequest, ToolSpec
from ..logging import logger

RATE_HINT = (
    "Annual interest rate as a decimal (e.g., 0.045 for 4.5%). Use 0.045 for "
    "high-yield savings, 0.07 for investments, 0.02 for regular savings."
)


class _ToolArgs(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class FutureValueArgs(_ToolArgs):
    present_value: float = Field(..., ge=0, description="Current amount saved (starting balance)")
    monthly_contribution: float = Field(..., ge=0, description="Amount added each month")
    annual_rate: float = Field(..., ge=0, le=1, description=RATE_HINT)
    years: float = Field(..., ge=0, le=calculator.MAX_YEARS, description="Number of years to calculate")


class MonthlyPaymentArgs(_ToolArgs):
    target_amount: float = Field(..., ge=0, description="The goal amount to reach")
    years: float = Field(..., gt=0, le=calculator.MAX_YEARS, description="Years to reach the goal")
    annual_rate: float = Field(..., ge=0, le=1, description=RATE_HINT)
    current_savings: float = Field(0.0, ge=0, description="Amount already saved")


class TimeToGoalArgs(_ToolArgs):
    target_amount: float = Field(..., ge=0, description="The goal amount to reach")
    current_savings: float = Field(..., ge=0, description="Amount already saved")
    monthly_contribution: float = Field(..., ge=0, description="Amount being saved each month")
    annual_rate: float = Field(..., ge=0, le=1, description=RATE_HINT)


class DebtPayoffArgs(_ToolArgs):
    principal: float = Field(..., ge=0, description="The debt amount (balance owed)")
    annual_rate: float = Field(
        ..., ge=0, le=1,
        description="Annual interest rate as a decimal (e.g., 0.20 for 20%). Credit cards "
                    "are typically 0.15-0.25, student loans 0.04-0.07."
    )
    monthly_payment: float = Field(..., ge=0, description="Amount paid each month toward the debt")


class LoanPaymentArgs(_ToolArgs):
    principal: float = Field(..., ge=0, description="Principal loan amount")
    annual_rate: float = Field(..., ge=0, le=1, description="Annual interest rate as a decimal")
    years: float = Field(..., gt=0, le=calculator.MAX_YEARS, description="Loan term in years")


class CompoundInterestArgs(_ToolArgs):
    principal: float = Field(..., ge=0, description="Principal investment amount")
    annual_rate: float = Field(..., ge=0, le=1, description="Annual interest rate as a decimal")
    years: float = Field(..., ge=0, le=calculator.MAX_YEARS, description="Investment period in years")
    compounding_frequency: int = Field(
        12, ge=1, le=365,
        description="Number of times interest compounds per year (default: 12)"
    )


def _json_schema(args_model: Type[_ToolArgs]) -> Dict[str, Any]:
    schema = args_model.model_json_schema(by_alias=True)
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    return schema


class CalculatorTool:
    """One calculator function wrapped as a model tool."""

    def __init__(
        self,
        name: str,
        description: str,
        args_model: Type[_ToolArgs],
        func: Callable[..., Any],
    ):
        self.name = name
        self.args_model = args_model
        self.func = func
        self.spec = ToolSpec(name=name, description=description, parameters=_json_schema(args_model))

    def run(self, arguments: Dict[str, Any]) -> ToolResult:
        start = time.perf_counter()
        if "_raw_arguments" in arguments:
            raise ToolExecutionError(
                "Arguments were not valid JSON",
                tool_name=self.name,
                details={"arguments": arguments["_raw_arguments"]}
            )
        try:
            args = self.args_model.model_validate(arguments)
        except PydanticValidationError as e:
            raise ToolExecutionError(
                f"Invalid arguments for {self.name}",
                tool_name=self.name,
                details={"errors": [
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                    for err in e.errors()
                ]}
            )

        try:
            result = self.func(**args.model_dump())
        except calculator.CalculationError as e:
            raise ToolExecutionError(e.message, tool_name=self.name, details=e.details)
        except (ArithmeticError, ValueError) as e:
            raise ToolExecutionError(
                f"Calculation failed: {e}", tool_name=self.name, details={"exception": type(e).__name__}
            )

        return ToolResult(
            data=result.to_dict(),
            duration_ms=(time.perf_counter() - start) * 1000,
        )


FUTURE_VALUE = CalculatorTool(
    "futureValue",
    "Calculate the future value of savings with compound interest. Use this when "
    "users ask \"how much will I have\" or \"what will my savings grow to\".",
    FutureValueArgs,
    calculator.future_value,
)
MONTHLY_PAYMENT = CalculatorTool(
    "monthlyPayment",
    "Calculate the monthly savings needed to reach a specific goal. Use this when "
    "users ask \"how much do I need to save per month\".",
    MonthlyPaymentArgs,
    calculator.monthly_payment,
)
TIME_TO_GOAL = CalculatorTool(
    "timeToGoal",
    "Calculate how long it will take to reach a savings goal at the current "
    "contribution rate. Use this when users ask \"how long will it take\".",
    TimeToGoalArgs,
    calculator.time_to_goal,
)
DEBT_PAYOFF = CalculatorTool(
    "debtPayoff",
    "Calculate how long it will take to pay off a single debt and the total "
    "interest paid. Use this for credit cards, loans, or any single debt.",
    DebtPayoffArgs,
    calculator.debt_payoff,
)
LOAN_PAYMENT = CalculatorTool(
    "loanPayment",
    "Calculate the required monthly payment for a fixed-term loan such as a "
    "mortgage or auto loan.",
    LoanPaymentArgs,
    calculator.loan_payment,
)
COMPOUND_INTEREST = CalculatorTool(
    "compoundInterest",
    "Calculate compound interest on a lump-sum investment.",
    CompoundInterestArgs,
    calculator.compound_interest,
)

ALL_TOOLS: Sequence[CalculatorTool] = (
    FUTURE_VALUE,
    MONTHLY_PAYMENT,
    TIME_TO_GOAL,
    DEBT_PAYOFF,
    LOAN_PAYMENT,
    COMPOUND_INTEREST,
)

# Tool names offered to each strategy; research answers from its findings only
AGENT_TOOLS: Dict[str, Sequence[str]] = {
    "calculator": tuple(t.name for t in ALL_TOOLS),
    "coach": (FUTURE_VALUE.name, MONTHLY_PAYMENT.name, TIME_TO_GOAL.name),
    "research": (),
}


class Toolbox:
    """Registry of tools the loop can execute.

    Example:
        >>> box = Toolbox()
        >>> box.execute(ToolRequest(id="t1", name="loanPayment",
        ...     arguments={"principal": 10000, "annualRate": 0, "years": 1})).data
        {'monthlyPayment': 833.33, 'totalPaid': 10000.0, 'totalInterest': 0.0}
    """

    def __init__(self, tools: Optional[Sequence[Tool]] = None):
        self._tools: Dict[str, Tool] = {t.name: t for t in (tools if tools is not None else ALL_TOOLS)}

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def specs(self, names: Optional[Sequence[str]] = None) -> List[ToolSpec]:
        """Tool specs in registration order, optionally filtered by name."""
        if names is None:
            return [t.spec for t in self._tools.values()]
        return [self._tools[n].spec for n in names if n in self._tools]

    def specs_for_agent(self, agent: str) -> List[ToolSpec]:
        return self.specs(AGENT_TOOLS.get(agent, ()))

    def execute(self, request: ToolRequest) -> ToolResult:
        """Run one tool request, converting every failure into an error payload."""
        tool = self._tools.get(request.name)
        try:
            if tool is None:
                raise ToolExecutionError("Unknown tool", tool_name=request.name)
            return tool.run(request.arguments)
        except ToolExecutionError as e:
            logger.info("tool_error tool=%s message=%s", request.name, e.message)
            payload: Dict[str, Any] = {"error": e.message}
            extra = {k: v for k, v in e.details.items() if k != "tool"}
            if extra:
                payload.update(extra)
            return ToolResult(data=payload, is_error=True)

"""Financial calculator library.

Pure, deterministic functions used both as model tools and directly by the
debt-strategy endpoint. Every function takes plain numbers and returns a
frozen result record; `to_dict()` produces the camelCase payload sent back
to the model, rounded to cents.

Rates are annual decimals (0.05 for 5%) compounded monthly unless stated.
A rate of 0 is always handled as the linear case.

Example:
    >>> pmt = monthly_payment(target_amount=20000, years=5, annual_rate=0.05)
    >>> round(pmt.monthly_payment, 2)
    294.09
    >>> round(future_value(0, pmt.monthly_payment, 0.05, 5).future_value, 2)
    20000.0
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Sequence, Tuple

from ..errors import ErrorCategory, ErrorSeverity, StructuredError

DebtStrategy = Literal["avalanche", "snowball"]

# Upper bounds that keep every loop and exponent finite
MAX_YEARS = 100
MAX_PAYOFF_MONTHS = 1200
DEFAULT_SIMULATION_MONTHS = 600
CENT = 0.005


class CalculationError(StructuredError):
    """Inputs are invalid or describe an impossible scenario."""

    code = "CALCULATION_ERROR"

    def __init__(self, message: str, details: Dict[str, Any] | None = None):
        super().__init__(
            message=message,
            category=ErrorCategory.TOOL_EXECUTION,
            severity=ErrorSeverity.INFO,
            retryable=True,
            details=details
        )


def _cents(value: float) -> float:
    return round(value + 0.0, 2)


def _check_amount(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
        raise CalculationError(f"{name} must be a finite number", details={name: value})
    if value < 0:
        raise CalculationError(f"{name} cannot be negative", details={name: value})


def _check_rate(value: float, name: str = "annual_rate") -> None:
    _check_amount(name, value)
    if value > 1:
        raise CalculationError(
            f"{name} must be a decimal (e.g. 0.05 for 5%)",
            details={name: value}
        )


def _check_years(value: float, allow_zero: bool = True) -> None:
    _check_amount("years", value)
    if value > MAX_YEARS:
        raise CalculationError(f"years cannot exceed {MAX_YEARS}", details={"years": value})
    if not allow_zero and value == 0:
        raise CalculationError("years must be greater than zero", details={"years": value})


def _check_result(name: str, value: float, years: float) -> float:
    if not math.isfinite(value):
        raise CalculationError(
            f"{name} cannot be computed for a horizon this short",
            details={"years": years}
        )
    return value


def _ceil_months(value: float) -> int:
    # Absorb float noise such as 47.999999999 or 48.000000001
    return max(0, math.ceil(round(value, 6)))


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FutureValueResult:
    future_value: float
    total_contributions: float
    total_interest: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "futureValue": _cents(self.future_value),
            "totalContributions": _cents(self.total_contributions),
            "totalInterest": _cents(self.total_interest),
        }


@dataclass(frozen=True)
class MonthlyPaymentResult:
    monthly_payment: float
    total_months: int
    total_contributions: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "monthlyPayment": _cents(self.monthly_payment),
            "totalMonths": self.total_months,
            "totalContributions": _cents(self.total_contributions),
        }


@dataclass(frozen=True)
class TimeToGoalResult:
    reachable: bool
    months: int | None
    years: int | None
    remaining_months: int | None
    total_contributions: float | None

    def to_dict(self) -> Dict[str, Any]:
        if not self.reachable:
            return {
                "reachable": False,
                "error": "Cannot reach goal with current contribution rate",
                "suggestion": "Increase monthly contributions or extend timeframe",
            }
        return {
            "reachable": True,
            "months": self.months,
            "years": self.years,
            "remainingMonths": self.remaining_months,
            "totalContributions": _cents(self.total_contributions or 0.0),
        }


@dataclass(frozen=True)
class DebtPayoffResult:
    months: int
    total_interest: float
    total_paid: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "months": self.months,
            "totalInterest": _cents(self.total_interest),
            "totalPaid": _cents(self.total_paid),
        }


@dataclass(frozen=True)
class LoanPaymentResult:
    monthly_payment: float
    total_paid: float
    total_interest: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "monthlyPayment": _cents(self.monthly_payment),
            "totalPaid": _cents(self.total_paid),
            "totalInterest": _cents(self.total_interest),
        }


@dataclass(frozen=True)
class CompoundInterestResult:
    final_amount: float
    interest_earned: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "finalAmount": _cents(self.final_amount),
            "interestEarned": _cents(self.interest_earned),
        }


# ---------------------------------------------------------------------------
# Single-goal calculators
# ---------------------------------------------------------------------------

def future_value(
    present_value: float,
    monthly_contribution: float,
    annual_rate: float,
    years: float
) -> FutureValueResult:
    """Project a balance with monthly contributions and monthly compounding.

    FV = PV(1+r)^n + PMT((1+r)^n - 1)/r with r = annual_rate/12, n = years*12.

    Args:
        present_value: Starting balance
        monthly_contribution: Amount added at the end of each month
        annual_rate: Annual rate as a decimal
        years: Horizon in years (fractional allowed)

    Returns:
        FutureValueResult

    Raises:
        CalculationError: Negative, non-finite or out-of-range inputs
    """
    _check_amount("present_value", present_value)
    _check_amount("monthly_contribution", monthly_contribution)
    _check_rate(annual_rate)
    _check_years(years)

    r = annual_rate / 12
    n = years * 12
    if r == 0:
        fv = present_value + monthly_contribution * n
    else:
        growth = (1 + r) ** n
        fv = present_value * growth + monthly_contribution * (growth - 1) / r

    fv = max(0.0, fv)
    contributions = present_value + monthly_contribution * n
    return FutureValueResult(
        future_value=fv,
        total_contributions=contributions,
        total_interest=fv - contributions,
    )


def monthly_payment(
    target_amount: float,
    years: float,
    annual_rate: float,
    current_savings: float = 0.0
) -> MonthlyPaymentResult:
    """Monthly contribution needed to reach a target; inverse of future_value.

    PMT = (target - PV(1+r)^n) * r / ((1+r)^n - 1), floored at 0 when the
    current savings already grow past the target.

    Raises:
        CalculationError: Invalid inputs or a zero-length horizon
    """
    _check_amount("target_amount", target_amount)
    _check_amount("current_savings", current_savings)
    _check_rate(annual_rate)
    _check_years(years, allow_zero=False)

    r = annual_rate / 12
    n = years * 12
    growth = (1 + r) ** n
    # growth rounds to 1.0 for a zero rate or a vanishingly short horizon
    if growth == 1.0:
        payment = (target_amount - current_savings) / n
    else:
        payment = (target_amount - current_savings * growth) * r / (growth - 1)

    payment = max(0.0, _check_result("monthly_payment", payment, years))
    return MonthlyPaymentResult(
        monthly_payment=payment,
        total_months=int(round(n)),
        total_contributions=current_savings + payment * n,
    )


def time_to_goal(
    target_amount: float,
    current_savings: float,
    monthly_contribution: float,
    annual_rate: float
) -> TimeToGoalResult:
    """Months until savings reach a target.

    Solves the growing-annuity identity for n:
        n = ln((T*r + PMT) / (PV*r + PMT)) / ln(1 + r)
    and falls back to (T - PV) / PMT when the rate is 0. The result is
    rounded up to whole months.

    A goal is unreachable when nothing is contributed and the current
    savings fall short of the target.
    """
    _check_amount("target_amount", target_amount)
    _check_amount("current_savings", current_savings)
    _check_amount("monthly_contribution", monthly_contribution)
    _check_rate(annual_rate)

    if current_savings >= target_amount:
        return TimeToGoalResult(True, 0, 0, 0, current_savings)
    if monthly_contribution <= 0:
        return TimeToGoalResult(False, None, None, None, None)

    r = annual_rate / 12
    if r == 0:
        raw = (target_amount - current_savings) / monthly_contribution
    else:
        raw = math.log(
            (target_amount * r + monthly_contribution) /
            (current_savings * r + monthly_contribution)
        ) / math.log(1 + r)

    months = _ceil_months(raw)
    return TimeToGoalResult(
        reachable=True,
        months=months,
        years=months // 12,
        remaining_months=months % 12,
        total_contributions=current_savings + monthly_contribution * months,
    )


def debt_payoff(
    principal: float,
    annual_rate: float,
    monthly_payment: float
) -> DebtPayoffResult:
    """Amortize a single debt month by month.

    Each month interest accrues on the remaining balance and the payment
    (capped at the balance) reduces it.

    Raises:
        CalculationError: The payment does not exceed the first month's
            interest, so the balance would never reach zero
    """
    _check_amount("principal", principal)
    _check_rate(annual_rate)
    _check_amount("monthly_payment", monthly_payment)

    if principal == 0:
        return DebtPayoffResult(months=0, total_interest=0.0, total_paid=0.0)

    r = annual_rate / 12
    if monthly_payment <= 0 or monthly_payment <= principal * r:
        raise CalculationError(
            "Monthly payment does not cover interest charges",
            details={
                "monthly_payment": monthly_payment,
                "monthly_interest": round(principal * r, 2),
                "suggestion": "Increase monthly payment amount",
            }
        )

    balance = principal
    months = 0
    total_interest = 0.0
    total_paid = 0.0
    while balance > CENT:
        if months >= MAX_PAYOFF_MONTHS:
            raise CalculationError(
                f"Debt would take more than {MAX_PAYOFF_MONTHS} months to pay off",
                details={"suggestion": "Increase monthly payment amount"}
            )
        interest = balance * r
        total_interest += interest
        balance += interest
        paid = min(monthly_payment, balance)
        balance -= paid
        total_paid += paid
        months += 1

    return DebtPayoffResult(months=months, total_interest=total_interest, total_paid=total_paid)


def loan_payment(principal: float, annual_rate: float, years: float) -> LoanPaymentResult:
    """Fixed monthly payment for an amortizing loan.

    M = P*r / (1 - (1+r)^-n), or P/n when the rate is 0.
    """
    _check_amount("principal", principal)
    _check_rate(annual_rate)
    _check_years(years, allow_zero=False)

    r = annual_rate / 12
    n = years * 12
    discount = (1 + r) ** -n
    if discount == 1.0:
        payment = principal / n
    else:
        payment = principal * r / (1 - discount)
    payment = _check_result("monthly_payment", payment, years)

    total_paid = payment * n
    return LoanPaymentResult(
        monthly_payment=payment,
        total_paid=total_paid,
        total_interest=total_paid - principal,
    )


def compound_interest(
    principal: float,
    annual_rate: float,
    years: float,
    compounding_frequency: int = 12
) -> CompoundInterestResult:
    """P(1 + r/m)^(m*t)."""
    _check_amount("principal", principal)
    _check_rate(annual_rate)
    _check_years(years)
    _check_amount("compounding_frequency", compounding_frequency)
    if compounding_frequency < 1 or compounding_frequency > 365:
        raise CalculationError(
            "compounding_frequency must be between 1 and 365",
            details={"compounding_frequency": compounding_frequency}
        )

    final = principal * (1 + annual_rate / compounding_frequency) ** (compounding_frequency * years)
    return CompoundInterestResult(final_amount=final, interest_earned=final - principal)


# ---------------------------------------------------------------------------
# Multi-debt payoff simulation (avalanche / snowball)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Debt:
    name: str
    balance: float
    annual_rate: float
    minimum_payment: float


@dataclass(frozen=True)
class DebtPayoffSimulation:
    strategy: DebtStrategy
    months: int
    total_interest: float
    total_paid: float
    payoff_order: Tuple[str, ...]
    debt_free: bool
    payoff_months: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "months": self.months,
            "totalInterest": _cents(self.total_interest),
            "totalPaid": _cents(self.total_paid),
            "payoffOrder": list(self.payoff_order),
            "payoffMonths": dict(self.payoff_months),
            "debtFree": self.debt_free,
        }


@dataclass(frozen=True)
class DebtStrategyComparison:
    avalanche: DebtPayoffSimulation
    snowball: DebtPayoffSimulation
    recommended: DebtStrategy
    interest_saved: float
    months_difference: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avalanche": self.avalanche.to_dict(),
            "snowball": self.snowball.to_dict(),
            "recommended": self.recommended,
            "interestSaved": _cents(self.interest_saved),
            "monthsDifference": self.months_difference,
        }


def rank_debts(debts: Sequence[Debt], strategy: DebtStrategy) -> List[int]:
    """Indexes of `debts` in the order extra money is directed to them."""
    indexes = range(len(debts))
    if strategy == "avalanche":
        return sorted(indexes, key=lambda i: (-debts[i].annual_rate, debts[i].balance, i))
    if strategy == "snowball":
        return sorted(indexes, key=lambda i: (debts[i].balance, -debts[i].annual_rate, i))
    raise CalculationError(f"Unknown strategy: {strategy}", details={"strategy": strategy})


def simulate_debt_payoff(
    debts: Sequence[Debt],
    monthly_budget: float,
    strategy: DebtStrategy,
    max_months: int = DEFAULT_SIMULATION_MONTHS
) -> DebtPayoffSimulation:
    """Simulate paying several debts from one fixed monthly budget.

    Each month:
      1. interest accrues on every open debt
      2. every open debt receives its minimum payment (or its balance)
      3. whatever is left of the budget goes to the open debt ranked first
         by the strategy, spilling over to the next when a debt clears

    The ranking is computed once from the starting balances and rates.
    Budget freed by a cleared debt stays in the pool, which produces the
    usual waterfall effect.

    Args:
        debts: Debts to pay off
        monthly_budget: Total paid toward all debts each month
        strategy: "avalanche" (highest rate first) or "snowball" (smallest
            balance first)
        max_months: Simulation cap; debt_free is False when it is reached

    Raises:
        CalculationError: Budget below the sum of minimum payments, or
            invalid debt values
    """
    if not debts:
        raise CalculationError("At least one debt is required")
    _check_amount("monthly_budget", monthly_budget)
    for debt in debts:
        _check_amount("balance", debt.balance)
        _check_rate(debt.annual_rate, "interest_rate")
        _check_amount("minimum_payment", debt.minimum_payment)
    names = [d.name for d in debts]
    if len(set(names)) != len(names):
        raise CalculationError("Debt names must be unique", details={"names": names})

    minimums = sum(d.minimum_payment for d in debts if d.balance > CENT)
    if monthly_budget + 1e-9 < minimums:
        raise CalculationError(
            "Monthly budget is below the sum of minimum payments",
            details={"monthly_budget": monthly_budget, "minimum_payments": round(minimums, 2)}
        )

    order = rank_debts(debts, strategy)
    balances = [d.balance for d in debts]
    payoff_months: Dict[str, int] = {}
    payoff_order: List[str] = []
    for i, debt in enumerate(debts):
        if balances[i] <= CENT:
            balances[i] = 0.0
            payoff_order.append(debt.name)
            payoff_months[debt.name] = 0

    months = 0
    total_interest = 0.0
    total_paid = 0.0

    while any(b > 0 for b in balances) and months < max_months:
        months += 1

        for i, debt in enumerate(debts):
            if balances[i] > 0:
                interest = balances[i] * debt.annual_rate / 12
                balances[i] += interest
                total_interest += interest

        remaining = monthly_budget
        for i, debt in enumerate(debts):
            if balances[i] > 0:
                paid = min(debt.minimum_payment, balances[i], remaining)
                balances[i] -= paid
                remaining -= paid
                total_paid += paid

        for i in order:
            if remaining <= 0:
                break
            if balances[i] > 0:
                paid = min(remaining, balances[i])
                balances[i] -= paid
                remaining -= paid
                total_paid += paid

        for i in order:
            if 0 < balances[i] <= CENT:
                balances[i] = 0.0
            if balances[i] == 0 and debts[i].name not in payoff_months:
                payoff_months[debts[i].name] = months
                payoff_order.append(debts[i].name)

    return DebtPayoffSimulation(
        strategy=strategy,
        months=months,
        total_interest=total_interest,
        total_paid=total_paid,
        payoff_order=tuple(payoff_order),
        debt_free=all(b == 0 for b in balances),
        payoff_months=payoff_months,
    )


def compare_debt_strategies(
    debts: Sequence[Debt],
    monthly_budget: float,
    max_months: int = DEFAULT_SIMULATION_MONTHS
) -> DebtStrategyComparison:
    """Run avalanche and snowball on the same debts and pick the cheaper.

    Less total interest wins; ties go to fewer months, then to avalanche.
    """
    avalanche = simulate_debt_payoff(debts, monthly_budget, "avalanche", max_months)
    snowball = simulate_debt_payoff(debts, monthly_budget, "snowball", max_months)

    a_key = (round(avalanche.total_interest, 2), avalanche.months)
    s_key = (round(snowball.total_interest, 2), snowball.months)
    recommended: DebtStrategy = "snowball" if s_key < a_key else "avalanche"

    return DebtStrategyComparison(
        avalanche=avalanche,
        snowball=snowball,
        recommended=recommended,
        interest_saved=abs(snowball.total_interest - avalanche.total_interest),
        months_difference=abs(snowball.months - avalanche.months),
    )


# ---------------------------------------------------------------------------
# Planning helpers (projection, retirement, housing, APY)
# ---------------------------------------------------------------------------

# Housing costs at most 28% of gross income, all debt at most 36%
HOUSING_INCOME_SHARE = 0.28
TOTAL_DEBT_INCOME_SHARE = 0.36


@dataclass(frozen=True)
class ProjectionPoint:
    month: int
    balance: float
    total_contributed: float
    total_interest: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "balance": _cents(self.balance),
            "totalContributed": _cents(self.total_contributed),
            "totalInterest": _cents(self.total_interest),
        }


@dataclass(frozen=True)
class RetirementNeedsResult:
    target_amount: float
    projected_value: float
    shortfall: float
    monthly_contribution_needed: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetAmount": _cents(self.target_amount),
            "projectedValue": _cents(self.projected_value),
            "shortfall": _cents(self.shortfall),
            "monthlyContributionNeeded": _cents(self.monthly_contribution_needed),
        }


@dataclass(frozen=True)
class HouseAffordabilityResult:
    max_house_price: float
    max_monthly_payment: float
    max_loan_amount: float
    down_payment_needed: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxHousePrice": _cents(self.max_house_price),
            "maxMonthlyPayment": _cents(self.max_monthly_payment),
            "maxLoanAmount": _cents(self.max_loan_amount),
            "downPaymentNeeded": _cents(self.down_payment_needed),
        }


def _annuity_present_value(payment: float, monthly_rate: float, months: float) -> float:
    if monthly_rate == 0:
        return payment * months
    return payment * (1 - (1 + monthly_rate) ** -months) / monthly_rate


def effective_annual_rate(nominal_rate: float, compounding_frequency: int = 12) -> float:
    """APY for a nominal annual rate: (1 + r/m)^m - 1."""
    _check_rate(nominal_rate, "nominal_rate")
    if compounding_frequency < 1 or compounding_frequency > 365:
        raise CalculationError(
            "compounding_frequency must be between 1 and 365",
            details={"compounding_frequency": compounding_frequency}
        )
    return (1 + nominal_rate / compounding_frequency) ** compounding_frequency - 1


def savings_projection(
    current_amount: float,
    monthly_contribution: float,
    annual_rate: float,
    years: float
) -> List[ProjectionPoint]:
    """Month-by-month balance, from month 0 through the last whole month.

    Each month earns interest on the opening balance, then receives the
    contribution. The final balance matches `future_value` for whole-month
    horizons.
    """
    _check_amount("current_amount", current_amount)
    _check_amount("monthly_contribution", monthly_contribution)
    _check_rate(annual_rate)
    _check_years(years)

    r = annual_rate / 12
    balance = float(current_amount)
    contributed = float(current_amount)
    points = [ProjectionPoint(0, balance, contributed, 0.0)]
    for month in range(1, int(years * 12) + 1):
        balance = balance * (1 + r) + monthly_contribution
        contributed += monthly_contribution
        points.append(ProjectionPoint(month, balance, contributed, balance - contributed))
    return points


def retirement_needs(
    current_age: float,
    retirement_age: float,
    current_savings: float,
    annual_income: float,
    income_replacement_ratio: float = 0.8,
    years_in_retirement: float = 25,
    annual_return: float = 0.07
) -> RetirementNeedsResult:
    """Nest egg needed to fund retirement income, and the monthly saving to get there.

    The target is the present value, at retirement, of a monthly income of
    `annual_income * income_replacement_ratio / 12` drawn for
    `years_in_retirement`. Current savings grow untouched until then.
    """
    _check_amount("current_age", current_age)
    _check_amount("retirement_age", retirement_age)
    _check_amount("current_savings", current_savings)
    _check_amount("annual_income", annual_income)
    _check_amount("income_replacement_ratio", income_replacement_ratio)
    _check_rate(annual_return, "annual_return")
    years_to_retirement = retirement_age - current_age
    if years_to_retirement <= 0:
        raise CalculationError(
            "retirement_age must be after current_age",
            details={"current_age": current_age, "retirement_age": retirement_age}
        )
    _check_years(years_to_retirement, allow_zero=False)
    _check_years(years_in_retirement, allow_zero=False)

    monthly_income = annual_income * income_replacement_ratio / 12
    target = _annuity_present_value(monthly_income, annual_return / 12, years_in_retirement * 12)
    projected = future_value(current_savings, 0, annual_return, years_to_retirement).future_value
    shortfall = max(0.0, target - projected)
    contribution = (
        monthly_payment(target, years_to_retirement, annual_return, current_savings).monthly_payment
        if shortfall > 0 else 0.0
    )
    return RetirementNeedsResult(
        target_amount=target,
        projected_value=projected,
        shortfall=shortfall,
        monthly_contribution_needed=contribution,
    )


def house_affordability(
    annual_income: float,
    monthly_debts: float,
    down_payment_percent: float,
    annual_rate: float,
    years: float = 30
) -> HouseAffordabilityResult:
    """Largest house price the 28/36 rule allows.

    The mortgage payment is capped at 28% of gross monthly income and at
    36% less existing monthly debt payments, whichever is lower.
    """
    _check_amount("annual_income", annual_income)
    _check_amount("monthly_debts", monthly_debts)
    _check_amount("down_payment_percent", down_payment_percent)
    if down_payment_percent >= 1:
        raise CalculationError(
            "down_payment_percent must be a decimal below 1 (e.g. 0.2 for 20%)",
            details={"down_payment_percent": down_payment_percent}
        )
    _check_rate(annual_rate)
    _check_years(years, allow_zero=False)

    monthly_income = annual_income / 12
    max_payment = max(0.0, min(
        monthly_income * HOUSING_INCOME_SHARE,
        monthly_income * TOTAL_DEBT_INCOME_SHARE - monthly_debts,
    ))
    max_loan = _annuity_present_value(max_payment, annual_rate / 12, years * 12)
    max_price = max_loan / (1 - down_payment_percent)
    return HouseAffordabilityResult(
        max_house_price=max_price,
        max_monthly_payment=max_payment,
        max_loan_amount=max_loan,
        down_payment_needed=max_price * down_payment_percent,
    )

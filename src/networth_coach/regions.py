from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class RegionConfig:
    code: str
    name: str
    currency: str
    currency_symbol: str
    retirement_accounts: Tuple[str, ...]
    savings_accounts: Tuple[str, ...]
    student_loans: str


REGIONS: Dict[str, RegionConfig] = {
    "US": RegionConfig(
        code="US",
        name="United States",
        currency="USD",
        currency_symbol="$",
        retirement_accounts=("401(k)", "IRA", "Roth IRA"),
        savings_accounts=("High-Yield Savings Account", "Money Market Account", "CD (Certificate of Deposit)"),
        student_loans="Federal Student Loans (subsidized/unsubsidized), Private Student Loans",
    ),
    "CA": RegionConfig(
        code="CA",
        name="Canada",
        currency="CAD",
        currency_symbol="C$",
        retirement_accounts=("RRSP", "TFSA", "Employer Pension Plan"),
        savings_accounts=("High-Interest Savings Account", "GIC (Guaranteed Investment Certificate)", "FHSA"),
        student_loans="Canada Student Loans, provincial student aid",
    ),
    "UK": RegionConfig(
        code="UK",
        name="United Kingdom",
        currency="GBP",
        currency_symbol="£",
        retirement_accounts=("ISA (Individual Savings Account)", "LISA (Lifetime ISA)", "Pension Scheme"),
        savings_accounts=("Easy Access Savings", "Fixed Rate Bonds", "Help to Buy ISA"),
        student_loans="Student Finance England, Plan 1/Plan 2/Plan 5 loans",
    ),
    "AU": RegionConfig(
        code="AU",
        name="Australia",
        currency="AUD",
        currency_symbol="A$",
        retirement_accounts=("Superannuation", "Self-Managed Super Fund"),
        savings_accounts=("High-Interest Savings Account", "Term Deposit", "First Home Super Saver"),
        student_loans="HECS-HELP",
    ),
    "EU": RegionConfig(
        code="EU",
        name="European Union",
        currency="EUR",
        currency_symbol="€",
        retirement_accounts=("Private Pension Plans", "Riester-Rente", "Company Pension Schemes"),
        savings_accounts=("Savings Account (Sparkonto)", "Fixed Deposit", "Building Society Savings"),
        student_loans="BAföG (Germany), National student aid programs",
    ),
}


def get_region(code: str | None) -> RegionConfig:
    """Region settings, falling back to US for unknown codes."""
    return REGIONS.get((code or "US").upper(), REGIONS["US"])


def format_currency(amount: float, region: str | None = "US") -> str:
    """Whole-unit amount with the region's symbol, e.g. "£12,500"."""
    symbol = get_region(region).currency_symbol
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.0f}"

"""System prompts for each strategy.

The prompt is assembled from fixed instructions for the routed strategy plus
whatever user and enrichment context is available. Nothing here is logged.
"""
from typing import List, Optional

from .enrichment import Enrichment, FinancialContext, KnowledgeSnippet, ResearchResult
from .regions import format_currency, get_region
from .schemas import AgentKind, QueryRequest

GOAL_DESCRIPTIONS = {
    "house": "buying a house",
    "car": "buying a car",
    "travel": "traveling",
    "emergency_fund": "building an emergency fund",
    "debt_free": "becoming debt-free",
    "retirement": "saving for retirement",
    "investment": "building an investment portfolio",
    "other": "achieving a financial goal",
}

COACH_INSTRUCTIONS = """You are Networth, an expert financial coach helping users achieve their savings goals.

- Give clear, actionable advice tailored to the user's goal and region
- Break complex topics into simple steps and use bullets or numbers for clarity
- Use the calculator tools whenever a concrete figure would help; never guess numbers
- Be warm, encouraging and realistic
- Financial advice is educational, not a definitive recommendation
- For tax, legal or complex investment questions, recommend consulting a professional"""

CALCULATOR_INSTRUCTIONS = """You are a financial calculator specialist. Your role is to:
1. Perform accurate financial calculations using the provided tools
2. Explain calculations in simple terms
3. Show your work step-by-step
4. Provide insights about the results
5. Suggest optimizations when appropriate

Pass interest rates as decimals (0.05 for 5%). If a tool returns an error, fix
the arguments and try again. Format currency values clearly and explain what
the numbers mean in practical terms."""

RESEARCH_INSTRUCTIONS = """You are a financial research specialist. Your role is to:
1. Synthesize the research findings provided below
2. Provide evidence-based recommendations
3. Cite sources where they support a point
4. Identify risks and opportunities
5. Highlight any important disclaimers

Present the answer as a summary of key findings, followed by specific
recommendations."""

_INSTRUCTIONS = {
    "coach": COACH_INSTRUCTIONS,
    "calculator": CALCULATOR_INSTRUCTIONS,
    "research": RESEARCH_INSTRUCTIONS,
}


def _user_context(request: QueryRequest) -> List[str]:
    region = get_region(request.region)
    lines = ["**User Context:**"]
    if request.goal_type:
        lines.append(f"- Primary Goal: {GOAL_DESCRIPTIONS.get(request.goal_type, request.goal_type)}")
    lines.append(f"- Region: {region.name}")
    lines.append(f"- Currency: {region.currency} ({region.currency_symbol})")
    if request.target_amount is not None:
        lines.append(f"- Target Amount: {format_currency(request.target_amount, request.region)}")
    if request.current_savings is not None:
        lines.append(f"- Current Savings: {format_currency(request.current_savings, request.region)}")
    if request.monthly_budget is not None:
        lines.append(f"- Monthly Budget: {format_currency(request.monthly_budget, request.region)}")
    if request.timeframe_months is not None:
        lines.append(f"- Timeframe: {request.timeframe_months} months")
    lines.append(f"- Retirement accounts: {', '.join(region.retirement_accounts)}")
    lines.append(f"- Savings accounts: {', '.join(region.savings_accounts)}")
    return lines


def _financial_context(ctx: FinancialContext, region: str) -> List[str]:
    lines = [
        "**Financial Context:**",
        f"- Total debt: {format_currency(ctx.total_debt, region)}",
        f"- Monthly bills: {format_currency(ctx.monthly_bills, region)}",
        f"- Net worth: {format_currency(ctx.net_worth, region)}",
    ]
    if ctx.monthly_debt_interest:
        lines.append(f"- Monthly interest cost: {format_currency(ctx.monthly_debt_interest, region)}")
    if ctx.high_interest_debt:
        lines.append("- Has high-interest debt (>15% APR); this should be a priority")
    if not ctx.has_active_goal:
        lines.append("- No active savings goal yet")
    return lines


def _knowledge(snippets: List[KnowledgeSnippet]) -> List[str]:
    lines = ["**Relevant Financial Knowledge:**"]
    for i, item in enumerate(snippets, 1):
        heading = f"{i}. {item.title}" if item.title else f"{i}."
        lines.append(f"{heading} {item.content}".strip())
    return lines


def _research(research: ResearchResult) -> List[str]:
    lines = ["**Deep Research Results:**", f"Summary: {research.summary}"]
    if research.key_findings:
        lines.append("Key Findings:")
        lines.extend(f"{i}. {f}" for i, f in enumerate(research.key_findings, 1))
    if research.recommendations:
        lines.append("Recommendations:")
        lines.extend(f"{i}. {r}" for i, r in enumerate(research.recommendations, 1))
    if research.sources:
        lines.append("Sources:")
        lines.extend(f"- {s.title} ({s.url})" for s in research.sources[:5])
    return lines


def build_system_prompt(
    agent_kind: AgentKind,
    request: QueryRequest,
    enrichment: Optional[Enrichment] = None,
) -> str:
    sections = [_INSTRUCTIONS[agent_kind], "\n".join(_user_context(request))]
    if enrichment is not None:
        if enrichment.financial_context is not None:
            sections.append("\n".join(_financial_context(enrichment.financial_context, request.region)))
        if enrichment.knowledge:
            sections.append("\n".join(_knowledge(enrichment.knowledge)))
        if enrichment.research is not None:
            sections.append("\n".join(_research(enrichment.research)))
        elif agent_kind == "research":
            sections.append("Deep research is unavailable right now; answer from general knowledge and say so.")
    return "\n\n".join(sections)

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

GoalType = Literal[
    "house", "car", "travel", "emergency_fund",
    "debt_free", "retirement", "investment", "other",
]
Region = Literal["US", "CA", "UK", "AU", "EU"]
ProviderName = Literal["anthropic", "openai", "openrouter", "mock"]
AgentKind = Literal["research", "calculator", "coach"]

MAX_MESSAGE_LENGTH = 2000


class _CamelModel(BaseModel):
    # The surrounding app speaks camelCase; snake_case is accepted too
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationTurn(_CamelModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    text: str
    timestamp: Optional[datetime] = None


class ModelSelector(_CamelModel):
    model_config = ConfigDict(frozen=True)

    provider: ProviderName
    model: str = Field(..., min_length=1)


class QueryRequest(_CamelModel):
    """One inbound coaching request, immutable once accepted."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    message: str
    user_id: Optional[str] = None
    goal_type: Optional[GoalType] = None
    region: Region = "US"
    deep_research_requested: bool = Field(
        False,
        validation_alias=AliasChoices(
            "deepResearchRequested", "deepResearch", "deep_research_requested"
        ),
    )
    model_selector: Optional[ModelSelector] = None
    conversation_history: List[ConversationTurn] = Field(default_factory=list)

    # Goal snapshot supplied by the caller, used only as prompt context
    target_amount: Optional[float] = Field(None, ge=0)
    current_savings: Optional[float] = Field(None, ge=0)
    monthly_budget: Optional[float] = Field(None, ge=0)
    timeframe_months: Optional[int] = Field(None, ge=0)

    @field_validator("message")
    @classmethod
    def _check_message(cls, v: str) -> str:
        if not v.strip():
            raise PydanticCustomError("empty_query", "Query cannot be empty")
        if len(v) > MAX_MESSAGE_LENGTH:
            raise PydanticCustomError(
                "query_too_long",
                "Query is too long (max {max_length} characters)",
                {"max_length": MAX_MESSAGE_LENGTH},
            )
        return v


class EvaluationSummary(_CamelModel):
    score: int = Field(..., ge=0, le=100)
    dimensions: Dict[str, int]


class QueryMetadata(_CamelModel):
    agent_used: AgentKind
    duration: int  # milliseconds
    warnings: List[str]
    trace_id: str
    evaluation: EvaluationSummary
    tool_calls: int = 0
    iterations: int = 0


class QueryResponse(_CamelModel):
    response: str
    research: Optional[Dict[str, Any]] = None
    model: str
    metadata: QueryMetadata


class ClientErrorResponse(_CamelModel):
    error: str
    message: str
    trace_id: Optional[str] = None
    retry_after_seconds: Optional[int] = None


class ServerErrorResponse(_CamelModel):
    error: str = "Failed to get response"
    message: str = "Couldn't get a response, please try again."
    retryable: bool = True
    trace_id: Optional[str] = None


class DebtInput(_CamelModel):
    name: Optional[str] = None  # "Debt N" when omitted
    balance: float = Field(..., ge=0)
    interest_rate: float = Field(..., ge=0, le=1)
    minimum_payment: float = Field(..., ge=0)


class DebtStrategyRequest(_CamelModel):
    debts: List[DebtInput] = Field(..., min_length=1)
    monthly_budget: float = Field(..., gt=0)


class SavingsProjectionRequest(_CamelModel):
    current_amount: float = Field(0, ge=0)
    monthly_contribution: float = Field(..., ge=0)
    annual_rate: float = Field(..., ge=0, le=1)
    years: float = Field(..., gt=0, le=100)

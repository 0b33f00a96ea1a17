"""
Tool Models for the Kakebo Assistant

Every tool the language model may call has:
1. A PARAMS model - the arguments the model is allowed to send
2. A PAYLOAD model - the result the tool hands back

Payloads form a CLOSED tagged union on the `tool` field, one variant per
tool name. The wire format sent back to the model is camelCase
(`totalAmount`, `topExpenses`), produced by `to_wire()`.

DESIGN DECISION: Payload models carry NO numeric range constraints.
A tool that reports totalBudget=-500 must still produce a payload so the
validator can reject it with a readable message. Range checks live in
kakebo.validation, not here.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from kakebo.models.expense import KakeboCategory


class ToolName(str, Enum):
    """Closed set of tools exposed to the language model."""
    ANALYZE_SPENDING_PATTERN = "analyzeSpendingPattern"
    GET_BUDGET_STATUS = "getBudgetStatus"
    DETECT_ANOMALIES = "detectAnomalies"
    PREDICT_MONTHLY_SPENDING = "predictMonthlySpending"
    GET_SPENDING_TRENDS = "getSpendingTrends"
    SEARCH_EXPENSES = "searchExpenses"
    SUBMIT_SEARCH_FEEDBACK = "submitSearchFeedback"

    @property
    def display_name(self) -> str:
        """Spanish name used in user-facing messages."""
        return _TOOL_DISPLAY_NAMES[self]


_TOOL_DISPLAY_NAMES = {
    ToolName.ANALYZE_SPENDING_PATTERN: "análisis de gastos",
    ToolName.GET_BUDGET_STATUS: "estado de presupuesto",
    ToolName.DETECT_ANOMALIES: "detección de anomalías",
    ToolName.PREDICT_MONTHLY_SPENDING: "proyección de gastos",
    ToolName.GET_SPENDING_TRENDS: "tendencias de gasto",
    ToolName.SEARCH_EXPENSES: "búsqueda de gastos",
    ToolName.SUBMIT_SEARCH_FEEDBACK: "registro de feedback",
}


CategoryFilter = Literal["survival", "optional", "culture", "extra", "all"]
TrendDirection = Literal["increasing", "decreasing", "stable"]
Severity = Literal["low", "medium", "high"]
ConfidenceLevel = Literal["low", "medium", "high"]


class _CamelModel(BaseModel):
    """Accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# =============================================================================
# PARAMS
# =============================================================================

class SpendingPatternParams(_CamelModel):
    category: CategoryFilter = "all"
    period: Literal[
        "current_month", "last_month", "last_3_months",
        "last_6_months", "current_week", "last_week",
    ] = "current_month"
    limit: int = Field(default=5, ge=1, description="Expenses to list (max 50)")
    semantic_filter: Optional[str] = Field(
        default=None,
        description="Keyword family such as 'comida' or 'transporte'"
    )


class BudgetStatusParams(_CamelModel):
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    category: Optional[KakeboCategory] = None


class AnomaliesParams(_CamelModel):
    period: Literal["current_month", "last_week", "last_3_days"] = "current_month"
    sensitivity: Literal["low", "medium", "high"] = "medium"


class PredictionParams(_CamelModel):
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    category: Optional[KakeboCategory] = None


class TrendsParams(_CamelModel):
    period: Literal["last_3_months", "last_6_months", "last_year"] = "last_3_months"
    group_by: Literal["week", "month"] = "month"
    category: Optional[KakeboCategory] = None


class SearchParams(_CamelModel):
    query: Optional[str] = None
    period: Literal[
        "current_month", "last_month", "last_3_months", "last_6_months",
        "current_week", "last_week", "all",
    ] = "current_month"
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    limit: int = Field(default=20, ge=1, description="Results to return (max 50)")


class FeedbackParams(_CamelModel):
    query: str
    correct_expense_ids: list[str] = Field(default_factory=list)
    incorrect_expense_ids: list[str] = Field(default_factory=list)


TOOL_PARAMS: dict[ToolName, type[BaseModel]] = {
    ToolName.ANALYZE_SPENDING_PATTERN: SpendingPatternParams,
    ToolName.GET_BUDGET_STATUS: BudgetStatusParams,
    ToolName.DETECT_ANOMALIES: AnomaliesParams,
    ToolName.PREDICT_MONTHLY_SPENDING: PredictionParams,
    ToolName.GET_SPENDING_TRENDS: TrendsParams,
    ToolName.SEARCH_EXPENSES: SearchParams,
    ToolName.SUBMIT_SEARCH_FEEDBACK: FeedbackParams,
}


# =============================================================================
# PAYLOAD PARTS
# =============================================================================

class ExpenseSummary(_CamelModel):
    id: str
    concept: str
    amount: float
    date: str
    category: str


class CategoryBudgetStatus(_CamelModel):
    category: str
    budget: float
    spent: float
    remaining: float
    percentage: float
    status: str
    days_remaining: int
    projected_spending: float


class AnomalyItem(_CamelModel):
    expense_id: str
    concept: str
    amount: float
    category: str
    date: str
    reason: Literal["unusually_high_amount", "rare_category", "unusual_timing"]
    severity: str
    historical_average: float
    deviation_percentage: float


class CategoryPrediction(_CamelModel):
    category: str
    spent_so_far: float
    projected_total: float
    budget: float
    projected_overage: float
    confidence: str


class TrendDataPoint(_CamelModel):
    date: str = Field(..., description="Week start (Monday) or YYYY-MM")
    amount: float
    count: int
    is_projected: bool = False


class ExtremePoint(_CamelModel):
    date: str = ""
    amount: float = 0.0


class SearchHit(_CamelModel):
    id: str
    concept: str
    amount: float
    date: str
    category: str
    similarity: float
    confidence: Optional[float] = None
    signals: Optional[dict[str, float]] = None


# =============================================================================
# PAYLOADS (tagged union on `tool`)
# =============================================================================

class _Payload(_CamelModel):

    def to_wire(self) -> dict[str, Any]:
        """camelCase JSON-ready dict handed back to the language model."""
        return self.model_dump(by_alias=True, mode="json")


class SpendingPatternPayload(_Payload):
    tool: Literal["analyzeSpendingPattern"] = "analyzeSpendingPattern"
    category: str
    period: str
    date_from: str
    date_to: str
    total_amount: float
    average_per_period: float
    transaction_count: int
    trend: str
    trend_percentage: float
    top_expenses: list[ExpenseSummary] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)


class BudgetStatusPayload(_Payload):
    tool: Literal["getBudgetStatus"] = "getBudgetStatus"
    month: str
    categories: list[CategoryBudgetStatus] = Field(default_factory=list)
    total_budget: float
    total_spent: float
    total_remaining: float
    overall_status: str
    monthly_income: float = 0.0
    fixed_expenses: float = 0.0
    saving_goal: float = 0.0
    utilizable: float = 0.0
    disponible_real: float = Field(
        default=0.0,
        description="Utilizable minus spent: what the user can really spend"
    )
    current_balance: float = 0.0


class AnomaliesPayload(_Payload):
    tool: Literal["detectAnomalies"] = "detectAnomalies"
    period: str
    sensitivity: str
    anomalies: list[AnomalyItem] = Field(default_factory=list)
    summary: str
    insufficient_history: bool = False
    historical_count: int = 0


class PredictionPayload(_Payload):
    tool: Literal["predictMonthlySpending"] = "predictMonthlySpending"
    month: str
    current_date: str
    days_elapsed: int
    days_remaining: int
    spent_so_far: float
    projected_total: float
    budget: float
    projected_overage: float
    confidence: str
    by_category: list[CategoryPrediction] = Field(default_factory=list)


class TrendsPayload(_Payload):
    tool: Literal["getSpendingTrends"] = "getSpendingTrends"
    period: str
    group_by: str
    category: Optional[str] = None
    data_points: list[TrendDataPoint] = Field(default_factory=list)
    trend: str = "stable"
    trend_percentage: float = 0.0
    average: float = 0.0
    peak: ExtremePoint = Field(default_factory=ExtremePoint)
    low: ExtremePoint = Field(default_factory=ExtremePoint)


class SearchPayload(_Payload):
    tool: Literal["searchExpenses"] = "searchExpenses"
    query: str
    period: str
    total_amount: float
    count: int
    expenses: list[SearchHit] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)


class FeedbackPayload(_Payload):
    tool: Literal["submitSearchFeedback"] = "submitSearchFeedback"
    success: bool
    message: str
    records_submitted: int = 0


ToolPayload = Annotated[
    Union[
        SpendingPatternPayload,
        BudgetStatusPayload,
        AnomaliesPayload,
        PredictionPayload,
        TrendsPayload,
        SearchPayload,
        FeedbackPayload,
    ],
    Field(discriminator="tool"),
]

_PAYLOAD_ADAPTER = TypeAdapter(ToolPayload)


def parse_tool_payload(data: dict[str, Any]) -> ToolPayload:
    """Parse a wire dict back into its payload variant (dispatch on `tool`)."""
    return _PAYLOAD_ADAPTER.validate_python(data)


# =============================================================================
# VALIDATION RESULT
# =============================================================================

class ToolValidationResult(BaseModel):
    """Outcome of checking one tool payload."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

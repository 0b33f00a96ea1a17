"""
Learning Models for the Kakebo Assistant

The assistant improves its categorization from three kinds of records:

1. MERCHANT RULES - learned vendor token -> category mappings.
   User-scoped rules come from explicit corrections (confidence 1.0).
   Global rules (user_id None) gain votes when users agree with them.

2. CORRECTION EXAMPLES - (wrong -> right) pairs used as few-shot
   examples in prompts. Created once per correction, after that only
   their usage counter ever changes.

3. SEARCH FEEDBACK - per (user, query, expense) verdicts on search
   results. Upserted: the last submission wins.

Anything computed from these (metrics, consensus) is derived per request
and never stored.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from kakebo.models.expense import KakeboCategory


# =============================================================================
# ENUMS
# =============================================================================

class RuleScope(str, Enum):
    """Who a merchant rule applies to."""
    USER = "user"
    GLOBAL = "global"


class FeedbackType(str, Enum):
    """User verdict on a search result."""
    CORRECT = "correct"
    INCORRECT = "incorrect"


class VelocityTrend(str, Enum):
    """Week-over-week direction of rule learning."""
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


# =============================================================================
# STORED RECORDS
# =============================================================================

class MerchantRule(BaseModel):
    """A learned merchant -> category mapping."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: Optional[str] = Field(
        default=None,
        description="Owner; None for a global rule"
    )
    merchant: str = Field(
        ...,
        min_length=1,
        description="Normalized merchant token (e.g. 'mercadona')"
    )
    category: KakeboCategory
    confidence: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="1.0 for explicit user corrections"
    )
    vote_count: int = Field(
        default=1,
        ge=0,
        description="How many users agreed with this mapping"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def scope(self) -> RuleScope:
        return RuleScope.GLOBAL if self.user_id is None else RuleScope.USER


class CorrectionExample(BaseModel):
    """A stored (wrong -> right) classification pair."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: Optional[str] = Field(
        default=None,
        description="Owner; None for a shared example"
    )
    concept: str = Field(..., description="Transaction concept that was corrected")
    old_category: KakeboCategory = Field(..., description="What the model chose")
    new_category: KakeboCategory = Field(..., description="What the user chose")
    merchant: Optional[str] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    times_used: int = Field(
        default=0,
        ge=0,
        description="How often this example was shown in a prompt"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SearchFeedback(BaseModel):
    """One user's verdict on one search result for one query."""

    user_id: str
    query: str = Field(..., description="Normalized query (lowercase, trimmed)")
    expense_id: str
    feedback_type: FeedbackType
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def key(self) -> tuple[str, str, str]:
        """Uniqueness key."""
        return (self.user_id, self.query, self.expense_id)


# =============================================================================
# RESULTS
# =============================================================================

class LearningResult(BaseModel):
    """Outcome of learning from one correction."""

    success: bool
    merchant: Optional[str] = Field(
        default=None,
        description="Extracted merchant; None when none could be identified"
    )
    rule_created: bool = False
    rule_updated: bool = False
    global_vote_incremented: bool = False
    message: str


class LearningStats(BaseModel):
    """Summary of a user's learned merchant rules."""

    total_rules: int = 0
    rules_by_category: dict[str, int] = Field(default_factory=dict)
    top_merchants: list[MerchantRule] = Field(default_factory=list)


class ExampleStats(BaseModel):
    """Summary of a user's correction examples."""

    total_examples: int = 0
    examples_by_category: dict[str, int] = Field(default_factory=dict)
    most_corrected: Optional[str] = None
    correction_count: int = 0


class QueryFeedback(BaseModel):
    """
    Verdicts for one query, keyed by expense id.

    An expense id never appears in both sets.
    """

    model_config = ConfigDict(frozen=True)

    correct_expense_ids: frozenset[str] = Field(default_factory=frozenset)
    incorrect_expense_ids: frozenset[str] = Field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        return not self.correct_expense_ids and not self.incorrect_expense_ids


class FeedbackResult(BaseModel):
    """Outcome of submitting search feedback."""

    success: bool
    message: str
    records_submitted: int = 0


# =============================================================================
# METRICS
# =============================================================================

class MerchantRuleMetrics(BaseModel):
    total: int = 0
    high_confidence: int = Field(default=0, description="Rules with confidence >= 0.9")
    avg_confidence: float = 0.0
    added_this_week: int = 0
    added_last_week: int = 0
    velocity_trend: VelocityTrend = VelocityTrend.STABLE


class Misclassification(BaseModel):
    from_category: str
    to_category: str
    count: int


class CorrectionExampleMetrics(BaseModel):
    total: int = 0
    total_usages: int = 0
    avg_usages: float = 0.0
    added_this_week: int = 0
    top_misclassifications: list[Misclassification] = Field(default_factory=list)


class QueryIssue(BaseModel):
    query: str
    incorrect_count: int


class SearchFeedbackMetrics(BaseModel):
    total: int = 0
    correct_count: int = 0
    incorrect_count: int = 0
    precision: float = Field(
        default=100.0,
        description="correct / total * 100; 100 when there is no feedback yet"
    )
    added_this_week: int = 0
    top_queries_with_issues: list[QueryIssue] = Field(default_factory=list)


class LearningMetrics(BaseModel):
    """
    Health of the learning subsystems over the last two weeks.

    overall_learning_score (0-100):
        40% merchant rule coverage  - min(total / 10, 1) * 100
        35% search precision        - feedback precision
        25% example usage activity  - min(total_usages / 20, 1) * 100
    """

    period: str
    merchant_rules: MerchantRuleMetrics
    correction_examples: CorrectionExampleMetrics
    search_feedback: SearchFeedbackMetrics
    overall_learning_score: int = Field(ge=0, le=100)
    generated_at: datetime

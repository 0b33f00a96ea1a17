"""
Expense Models for the Kakebo Assistant

The four Kakebo buckets are represented by ONE canonical enum.
The Spanish tokens used by the persistent store exist only behind
KakeboCategory.to_storage() / KakeboCategory.from_storage(), and only
storage adapters call those.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class KakeboCategory(str, Enum):
    """
    Kakebo budgeting buckets.

    survival: essentials (food, housing, transport, health)
    optional: discretionary (eating out, leisure, subscriptions)
    culture: growth (books, courses, museums)
    extra: unplanned (repairs, gifts, fines)
    """
    SURVIVAL = "survival"
    OPTIONAL = "optional"
    CULTURE = "culture"
    EXTRA = "extra"

    def to_storage(self) -> str:
        """Token used by the persistent store."""
        return _STORAGE_TOKENS[self]

    @classmethod
    def from_storage(cls, value: str) -> "KakeboCategory":
        """
        Parse a stored token.

        Accepts the Spanish storage tokens and the canonical English values.
        Raises ValueError for anything else.
        """
        token = (value or "").strip().lower()
        for category, stored in _STORAGE_TOKENS.items():
            if token == stored or token == category.value:
                return category
        raise ValueError(f"Unknown Kakebo category: {value!r}")

    @property
    def display_name(self) -> str:
        """Spanish label shown to users."""
        return _STORAGE_TOKENS[self].capitalize()


_STORAGE_TOKENS = {
    KakeboCategory.SURVIVAL: "supervivencia",
    KakeboCategory.OPTIONAL: "opcional",
    KakeboCategory.CULTURE: "cultura",
    KakeboCategory.EXTRA: "extra",
}


# =============================================================================
# CORE MODELS
# =============================================================================

class Expense(BaseModel):
    """A single recorded expense owned by one user."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Expense identifier"
    )
    user_id: str = Field(
        ...,
        description="Owner of the expense"
    )
    amount: float = Field(
        ...,
        ge=0,
        description="Amount in EUR"
    )
    category: KakeboCategory = Field(
        default=KakeboCategory.EXTRA,
        description="Kakebo bucket"
    )
    expense_date: date = Field(
        ...,
        description="Date the expense happened"
    )
    concept: str = Field(
        default="",
        max_length=500,
        description="Free-text description (e.g. 'Mercadona compra semanal')"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the record was created"
    )

    @property
    def label(self) -> str:
        """Concept for display, never empty."""
        return self.concept or "Sin concepto"


class UserFinancialSettings(BaseModel):
    """
    Per-user budgeting settings.

    Budgets are monthly limits per Kakebo bucket.
    """

    user_id: str
    budgets: dict[KakeboCategory, float] = Field(
        default_factory=dict,
        description="Monthly budget per category"
    )
    monthly_income: float = Field(default=0.0)
    monthly_saving_goal: float = Field(default=0.0)
    current_balance: float = Field(default=0.0)

    def budget_for(self, category: KakeboCategory) -> float:
        """Budget for one category (0 when not set)."""
        return self.budgets.get(category, 0.0)


class FixedExpense(BaseModel):
    """A recurring monthly commitment (rent, phone, insurance)."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    concept: str = ""
    amount: float = Field(..., ge=0)
    start_month: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    end_month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    active: bool = True

    def applies_to(self, month: str) -> bool:
        """True when the commitment is active in `month` (YYYY-MM)."""
        if not self.active or self.start_month > month:
            return False
        return self.end_month is None or self.end_month >= month


class ScoredExpense(BaseModel):
    """An expense returned by a text search, with its similarity."""

    expense: Expense
    similarity: float = Field(ge=0.0, le=1.0)

"""
User Context Analyzer

How much history a user has decides what the assistant may honestly
claim. A user who started last week has no "usual pattern" to compare
against, so the analysis is turned into a Spanish disclaimer injected as a
system message before the model answers.

Data quality tiers:
    excellent   100+ transactions and 90+ days
    good         50+ transactions and 60+ days
    fair         20+ transactions and 30+ days
    poor        anything less
"""

from collections import Counter
from datetime import date
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from kakebo.models.tools import ToolName


logger = structlog.get_logger(__name__)


NEW_USER_DAYS = 30
LIMITED_HISTORY_DAYS = 90


class UserContext(BaseModel):
    """What the assistant knows about the depth of a user's data."""

    is_new_user: bool = True
    has_limited_history: bool = True
    days_since_first_expense: int = 0
    total_transactions: int = 0
    transactions_by_category: dict[str, int] = Field(default_factory=dict)
    data_quality: str = "poor"
    recommended_actions: list[str] = Field(
        default_factory=lambda: [
            "Start by registering your daily expenses",
            "Set monthly budgets for each category",
        ]
    )
    first_expense_date: Optional[date] = None


class ToolAppropriateness(BaseModel):
    appropriate: bool
    reason: Optional[str] = None


def assess_data_quality(transactions: int, days_since_first: int) -> str:
    if transactions >= 100 and days_since_first >= 90:
        return "excellent"
    if transactions >= 50 and days_since_first >= 60:
        return "good"
    if transactions >= 20 and days_since_first >= 30:
        return "fair"
    return "poor"


def recommended_actions(
    is_new_user: bool,
    total_transactions: int,
    by_category: dict[str, int],
) -> list[str]:
    actions = []
    if is_new_user:
        actions.append("Keep registering expenses daily for more accurate insights")
    if total_transactions < 50:
        actions.append(
            "More transaction history will improve anomaly detection and trend analysis"
        )
    if len(by_category) < 3:
        actions.append(
            "Try categorizing your expenses across all 4 categories for better insights"
        )
    return actions


async def analyze_user_context(store, user_id: str, today: Optional[date] = None) -> UserContext:
    """
    Assess the user's history.

    Never raises: a store failure yields the conservative new-user context.
    """
    today = today or date.today()
    try:
        expenses = await store.list_expenses(user_id, order_by="date")
    except Exception as e:
        logger.error("user_context_failed", user_id=user_id, error=str(e))
        return UserContext()

    if not expenses:
        return UserContext()

    first = expenses[0].expense_date
    days = max(0, (today - first).days)
    by_category = dict(Counter(e.category.value for e in expenses))
    is_new = days < NEW_USER_DAYS

    context = UserContext(
        is_new_user=is_new,
        has_limited_history=days < LIMITED_HISTORY_DAYS,
        days_since_first_expense=days,
        total_transactions=len(expenses),
        transactions_by_category=by_category,
        data_quality=assess_data_quality(len(expenses), days),
        recommended_actions=recommended_actions(is_new, len(expenses), by_category),
        first_expense_date=first,
    )

    logger.debug(
        "user_context_analyzed",
        user_id=user_id,
        days_since_first=days,
        total_transactions=context.total_transactions,
        data_quality=context.data_quality,
    )
    return context


def generate_context_disclaimer(context: UserContext) -> str:
    """System-prompt addendum matching the user's history depth."""
    if context.is_new_user:
        return (
            f"IMPORTANTE - USUARIO NUEVO: Este usuario empezó hace "
            f"{context.days_since_first_expense} días con {context.total_transactions} "
            "transacciones. Tienes MUY POCO HISTÓRICO.\n\n"
            "RESTRICCIONES OBLIGATORIAS:\n"
            '- ✗ NO hagas comparaciones con "patrones habituales" (no existen aún)\n'
            "- ✗ NO hagas proyecciones a largo plazo\n"
            '- ✗ NO detectes "anomalías" (no hay baseline)\n'
            '- ✗ NO analices "tendencias" (insuficiente histórico)\n'
            '- ✓ SÍ reconoce explícitamente: "Como empezaste hace poco, aún no tengo '
            'suficiente histórico"\n'
            "- ✓ SÍ limita respuestas a datos del período actual solamente\n\n"
            f"Calidad de datos: {context.data_quality}"
        )

    if context.has_limited_history:
        return (
            f"CONTEXTO - HISTÓRICO LIMITADO: Este usuario tiene "
            f"{context.days_since_first_expense} días de histórico "
            f"({context.total_transactions} transacciones).\n\n"
            "PRECAUCIONES:\n"
            "- Menciona limitaciones si el análisis requiere más histórico\n"
            "- Proyecciones de largo plazo tienen baja confianza\n"
            "- Comparaciones temporales limitadas al período disponible\n\n"
            f"Calidad de datos: {context.data_quality}"
        )

    return (
        f"CONTEXTO: Usuario con {context.days_since_first_expense} días de histórico "
        f"({context.total_transactions} transacciones). Calidad de datos: "
        f"{context.data_quality}. Histórico suficiente para análisis completos."
    )


_MIN_DAYS_FOR_TOOL = {
    ToolName.DETECT_ANOMALIES: (
        30,
        "Anomaly detection requires at least 30 days of historical data to establish baseline patterns.",
    ),
    ToolName.GET_SPENDING_TRENDS: (
        60,
        "Trend analysis requires at least 60 days of data for meaningful insights.",
    ),
    ToolName.PREDICT_MONTHLY_SPENDING: (
        30,
        "Predictions require at least 30 days of historical data for accuracy.",
    ),
}


def is_tool_appropriate_for_user(tool_name: str, context: UserContext) -> ToolAppropriateness:
    """Advisory only: the tool still runs, the caller decides what to do with the hint."""
    try:
        requirement = _MIN_DAYS_FOR_TOOL.get(ToolName(tool_name))
    except ValueError:
        requirement = None

    if requirement and context.days_since_first_expense < requirement[0]:
        return ToolAppropriateness(appropriate=False, reason=requirement[1])
    return ToolAppropriateness(appropriate=True)

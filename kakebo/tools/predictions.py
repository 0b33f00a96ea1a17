"""
Monthly Spending Prediction Tool

Linear projection: (spent so far / days elapsed) * days in month, per
category. Confidence grows with the share of the month already observed
and the overall confidence is the WEAKEST category's.
"""

from collections import defaultdict

from kakebo.models.expense import KakeboCategory
from kakebo.models.tools import (
    CategoryPrediction,
    PredictionParams,
    PredictionPayload,
)
from kakebo.services.storage import NotFoundError
from kakebo.tools.base import ToolContext, round2
from kakebo.tools.budget import days_elapsed_in_month
from kakebo.tools.periods import days_in_month, month_bounds, month_key, parse_month


CONFIDENCE_RANK = {"low": 1, "medium": 2, "high": 3}


def projection_confidence(days_elapsed: int) -> str:
    if days_elapsed >= 20:
        return "high"
    if days_elapsed >= 10:
        return "medium"
    return "low"


def project_category(amounts: list[float], days_elapsed: int, total_days: int) -> tuple[float, str]:
    """(projected total, confidence). No data means 0 at low confidence."""
    if not amounts or days_elapsed == 0:
        return 0.0, "low"
    projection = sum(amounts) / days_elapsed * total_days
    return round2(projection), projection_confidence(days_elapsed)


async def predict_monthly_spending(
    ctx: ToolContext,
    params: PredictionParams,
) -> PredictionPayload:
    """
    Project end-of-month spending.

    Raises:
        NotFoundError: If the user has no budget settings
    """
    month = params.month or month_key(ctx.today)
    year, month_num = parse_month(month)
    total_days = days_in_month(year, month_num)
    elapsed = days_elapsed_in_month(month, ctx.today)

    settings = await ctx.store.get_user_settings(ctx.user_id)
    if settings is None:
        raise NotFoundError("User settings not found")

    start, end = month_bounds(month)
    expenses = await ctx.store.list_expenses(ctx.user_id, date_from=start, date_to=end)

    amounts: dict[KakeboCategory, list[float]] = defaultdict(list)
    for expense in expenses:
        amounts[expense.category].append(expense.amount)

    predictions = []
    for category in KakeboCategory:
        if params.category and category != params.category:
            continue

        projected, confidence = project_category(amounts[category], elapsed, total_days)
        budget = settings.budget_for(category)
        predictions.append(CategoryPrediction(
            category=category.value,
            spent_so_far=round2(sum(amounts[category])),
            projected_total=projected,
            budget=budget,
            projected_overage=round2(max(0.0, projected - budget)),
            confidence=confidence,
        ))

    projected_total = sum(p.projected_total for p in predictions)
    budget_total = sum(p.budget for p in predictions)
    confidence = min(
        (p.confidence for p in predictions),
        key=lambda c: CONFIDENCE_RANK[c],
        default="low",
    )

    return PredictionPayload(
        month=month,
        current_date=ctx.today.isoformat(),
        days_elapsed=elapsed,
        days_remaining=total_days - elapsed,
        spent_so_far=round2(sum(p.spent_so_far for p in predictions)),
        projected_total=round2(projected_total),
        budget=budget_total,
        projected_overage=round2(max(0.0, projected_total - budget_total)),
        confidence=confidence,
        by_category=predictions,
    )

"""
Budget Status Tool

Spent vs. budget per Kakebo category for one month, plus the month's
financial overview:

    utilizable      = income - fixed expenses - saving goal
    disponible_real = utilizable - spent      (what the user can REALLY spend)

Projection is linear, except during the first days of the month where a
single large early expense (rent on day 1) would otherwise project to an
absurd figure; there the remaining days are weighted at 70%.
"""

from collections import defaultdict
from datetime import date

import structlog

from kakebo.models.expense import KakeboCategory
from kakebo.models.tools import (
    BudgetStatusParams,
    BudgetStatusPayload,
    CategoryBudgetStatus,
)
from kakebo.services.storage import NotFoundError
from kakebo.tools.base import ToolContext, round1, round2
from kakebo.tools.periods import days_in_month, month_bounds, month_key, parse_month


logger = structlog.get_logger(__name__)


EXCEEDED_PERCENTAGE = 100.0
WARNING_PERCENTAGE = 70.0
EARLY_MONTH_DAYS = 5
CONSERVATIVE_FACTOR = 0.7


def status_level(percentage: float) -> str:
    if percentage >= EXCEEDED_PERCENTAGE:
        return "exceeded"
    if percentage >= WARNING_PERCENTAGE:
        return "warning"
    return "safe"


def days_elapsed_in_month(month: str, today: date) -> int:
    """Days elapsed: today's day for the current month, all of a past month, 0 for a future one."""
    year, month_num = parse_month(month)
    if (year, month_num) == (today.year, today.month):
        return today.day
    if (year, month_num) < (today.year, today.month):
        return days_in_month(year, month_num)
    return 0


def project_spending(spent: float, days_elapsed: int, total_days: int) -> float:
    """
    End-of-month projection.

    Before day 5 the remaining days assume spending slows down.
    """
    if days_elapsed == 0:
        return spent

    daily_average = spent / days_elapsed
    if days_elapsed < EARLY_MONTH_DAYS:
        return spent + daily_average * CONSERVATIVE_FACTOR * (total_days - days_elapsed)
    return daily_average * total_days


async def get_budget_status(
    ctx: ToolContext,
    params: BudgetStatusParams,
) -> BudgetStatusPayload:
    """
    Budget status for a month (current month by default).

    Raises:
        NotFoundError: If the user has no budget settings
    """
    month = params.month or month_key(ctx.today)

    settings = await ctx.store.get_user_settings(ctx.user_id)
    if settings is None:
        raise NotFoundError("User settings not found")

    start, end = month_bounds(month)
    expenses = await ctx.store.list_expenses(ctx.user_id, date_from=start, date_to=end)

    spent_by_category: dict[KakeboCategory, float] = defaultdict(float)
    for expense in expenses:
        spent_by_category[expense.category] += expense.amount

    year, month_num = parse_month(month)
    total_days = days_in_month(year, month_num)
    elapsed = days_elapsed_in_month(month, ctx.today)
    remaining_days = total_days - elapsed

    categories = []
    for category in KakeboCategory:
        if params.category and category != params.category:
            continue

        budget = settings.budget_for(category)
        spent = round2(spent_by_category[category])
        percentage = spent / budget * 100 if budget > 0 else 0.0

        categories.append(CategoryBudgetStatus(
            category=category.value,
            budget=budget,
            spent=spent,
            remaining=round2(budget - spent),
            percentage=round1(percentage),
            status=status_level(percentage),
            days_remaining=remaining_days,
            projected_spending=round2(project_spending(spent, elapsed, total_days)),
        ))

    total_budget = sum(c.budget for c in categories)
    total_spent = round2(sum(c.spent for c in categories))
    overall_percentage = total_spent / total_budget * 100 if total_budget > 0 else 0.0
    month_spent = round2(sum(spent_by_category.values()))

    fixed_total = await _fixed_expenses_total(ctx, month)
    utilizable = settings.monthly_income - fixed_total - settings.monthly_saving_goal

    logger.info(
        "financial_overview_calculated",
        month=month,
        monthly_income=settings.monthly_income,
        fixed_expenses=fixed_total,
        saving_goal=settings.monthly_saving_goal,
        utilizable=utilizable,
        month_spent=month_spent,
    )

    return BudgetStatusPayload(
        month=month,
        categories=categories,
        total_budget=round2(total_budget),
        total_spent=total_spent,
        total_remaining=round2(total_budget - total_spent),
        overall_status=status_level(overall_percentage),
        monthly_income=settings.monthly_income,
        fixed_expenses=round2(fixed_total),
        saving_goal=settings.monthly_saving_goal,
        utilizable=round2(utilizable),
        disponible_real=round2(utilizable - month_spent),
        current_balance=settings.current_balance,
    )


async def _fixed_expenses_total(ctx: ToolContext, month: str) -> float:
    """Fixed expenses are optional context: a failed read counts as none."""
    try:
        return await ctx.store.get_fixed_expenses_total(ctx.user_id, month)
    except Exception as e:
        logger.warning("fixed_expenses_unavailable", month=month, error=str(e))
        return 0.0

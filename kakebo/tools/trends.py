"""
Spending Trends Tool

Totals grouped by week (Monday start) or month over 3, 6 or 12 months.

The current month is incomplete, so in monthly grouping it is projected to
a full month and flagged `is_projected`; otherwise the last point would
always look like a drop. The trend compares the first and last points.
"""

from collections import defaultdict
from datetime import date

from kakebo.models.tools import (
    ExtremePoint,
    TrendDataPoint,
    TrendsParams,
    TrendsPayload,
)
from kakebo.tools.base import ToolContext, round1, round2
from kakebo.tools.periods import days_in_month, month_key, trend_period_start, week_start


STABLE_TREND_PERCENTAGE = 5.0


def group_key(d: date, group_by: str) -> str:
    return week_start(d).isoformat() if group_by == "week" else month_key(d)


def project_month(amount: float, month: str, today: date) -> float:
    """Scale the current month's amount to a full month."""
    if month != month_key(today):
        return amount
    total_days = days_in_month(today.year, today.month)
    if today.day == total_days:
        return amount
    return amount / today.day * total_days


def first_vs_last_trend(points: list[TrendDataPoint]) -> tuple[str, float]:
    if len(points) < 2:
        return "stable", 0.0

    first, last = points[0].amount, points[-1].amount
    if first == 0:
        return "stable", 0.0

    change = (last - first) / first * 100
    if abs(change) < STABLE_TREND_PERCENTAGE:
        return "stable", 0.0
    return ("increasing" if change > 0 else "decreasing"), abs(change)


async def get_spending_trends(ctx: ToolContext, params: TrendsParams) -> TrendsPayload:
    start = trend_period_start(params.period, ctx.today)
    expenses = await ctx.store.list_expenses(
        ctx.user_id,
        date_from=start,
        date_to=ctx.today,
        category=params.category,
    )

    base = dict(
        period=params.period,
        group_by=params.group_by,
        category=params.category.value if params.category else None,
    )

    if not expenses:
        return TrendsPayload(**base)

    grouped: dict[str, list[float]] = defaultdict(list)
    for expense in expenses:
        grouped[group_key(expense.expense_date, params.group_by)].append(expense.amount)

    points = []
    for key in sorted(grouped):
        amount = sum(grouped[key])
        projected = params.group_by == "month" and key == month_key(ctx.today)
        if projected:
            amount = project_month(amount, key, ctx.today)
        points.append(TrendDataPoint(
            date=key,
            amount=round2(amount),
            count=len(grouped[key]),
            is_projected=projected,
        ))

    peak = max(points, key=lambda p: p.amount)
    low = min(points, key=lambda p: p.amount)
    trend, percentage = first_vs_last_trend(points)

    return TrendsPayload(
        **base,
        data_points=points,
        trend=trend,
        trend_percentage=round1(percentage),
        average=round2(sum(p.amount for p in points) / len(points)),
        peak=ExtremePoint(date=peak.date, amount=peak.amount),
        low=ExtremePoint(date=low.date, amount=low.amount),
    )

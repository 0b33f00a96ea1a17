"""
Anomaly Detection Tool

DESIGN DECISION: Anomalies are judged against the user's OWN history,
never against generic thresholds. The baseline is the 3 months before the
analysed period, summarized per category (mean and population standard
deviation).

IMPORTANT: With fewer than `min_historical_expenses` baseline expenses the
detector reports NOTHING and says so, with the exact count. "No anomalies"
and "not enough history to tell" are different answers.

Flags are not exclusive; one expense may carry several:
- unusually_high_amount: above mean + k*sigma, only for categories with
  more than 5 historical expenses
- rare_category: category seen 1-4 times in the baseline
- unusual_timing: a day with 3+ expenses averaging over 50 EUR
"""

import math
from collections import defaultdict
from typing import Iterable

import structlog
from pydantic import BaseModel

from kakebo.models.expense import Expense, KakeboCategory
from kakebo.models.tools import AnomaliesParams, AnomaliesPayload, AnomalyItem
from kakebo.tools.base import ToolContext, round1, round2
from kakebo.tools.periods import add_months, anomaly_period_range


logger = structlog.get_logger(__name__)


SENSITIVITY_MULTIPLIERS = {
    "low": 3.0,
    "medium": 2.0,
    "high": 1.5,
}

SEVERITY_ORDER = {"high": 3, "medium": 2, "low": 1}

MIN_POINTS_FOR_DEVIATION = 5
TIMING_MIN_EXPENSES = 3
TIMING_MIN_AVERAGE = 50.0
TIMING_MAX_FLAGS = 2
BASELINE_MONTHS = 3


class CategoryStats(BaseModel):
    mean: float = 0.0
    std_dev: float = 0.0
    count: int = 0


def calculate_stats(amounts: list[float]) -> CategoryStats:
    """Mean and population standard deviation."""
    if not amounts:
        return CategoryStats()
    mean = sum(amounts) / len(amounts)
    variance = sum((a - mean) ** 2 for a in amounts) / len(amounts)
    return CategoryStats(mean=mean, std_dev=math.sqrt(variance), count=len(amounts))


def severity_for(deviation_percentage: float) -> str:
    if deviation_percentage > 200:
        return "high"
    if deviation_percentage > 100:
        return "medium"
    return "low"


def summarize_anomalies(anomalies: list[AnomalyItem]) -> str:
    if not anomalies:
        return "No se detectaron anomalías. Tus gastos están dentro de lo normal."

    high = sum(1 for a in anomalies if a.severity == "high")
    medium = sum(1 for a in anomalies if a.severity == "medium")

    summary = f"Se detectaron {len(anomalies)} anomalía(s)"
    if high:
        summary += f" ({high} de alta severidad)"
    elif medium:
        summary += f" ({medium} de severidad media)"
    return summary + ". Revisa los detalles para más información."


def insufficient_history_message(count: int, minimum: int) -> str:
    return (
        "Necesitas más histórico para detectar anomalías fiables. "
        f"Actualmente tienes {count} gastos de los últimos 3 meses. "
        f"Se recomienda al menos {minimum} gastos históricos "
        "(aproximadamente 2-3 meses de uso regular)."
    )


def _item(
    expense: Expense,
    reason: str,
    severity: str,
    historical_average: float,
    deviation_percentage: float,
) -> AnomalyItem:
    return AnomalyItem(
        expense_id=expense.id,
        concept=expense.label,
        amount=expense.amount,
        category=expense.category.value,
        date=expense.expense_date.isoformat(),
        reason=reason,
        severity=severity,
        historical_average=historical_average,
        deviation_percentage=deviation_percentage,
    )


def detect_anomalies(
    current: list[Expense],
    historical: Iterable[Expense],
    period: str = "current_month",
    sensitivity: str = "medium",
    min_historical: int = 20,
) -> AnomaliesPayload:
    """
    Flag current-period expenses that break the user's historical pattern.

    Args:
        current: Expenses of the analysed period, newest first
        historical: Baseline expenses (the 3 months before the period)
        period: Period name, echoed in the payload
        sensitivity: low (3 sigma), medium (2 sigma) or high (1.5 sigma)
        min_historical: Baseline size required before anything is reported

    Returns:
        Payload with anomalies sorted by severity, highest first
    """
    historical = list(historical)

    if not current:
        return AnomaliesPayload(
            period=period,
            sensitivity=sensitivity,
            summary="No hay gastos en este período para analizar",
            historical_count=len(historical),
        )

    if len(historical) < min_historical:
        logger.info(
            "anomaly_baseline_insufficient",
            historical_count=len(historical),
            required=min_historical,
        )
        return AnomaliesPayload(
            period=period,
            sensitivity=sensitivity,
            summary=insufficient_history_message(len(historical), min_historical),
            insufficient_history=True,
            historical_count=len(historical),
        )

    amounts_by_category: dict[KakeboCategory, list[float]] = defaultdict(list)
    for expense in historical:
        amounts_by_category[expense.category].append(expense.amount)
    stats = {
        category: calculate_stats(amounts_by_category[category])
        for category in KakeboCategory
    }

    multiplier = SENSITIVITY_MULTIPLIERS.get(sensitivity, SENSITIVITY_MULTIPLIERS["medium"])
    anomalies: list[AnomalyItem] = []

    for expense in current:
        s = stats[expense.category]

        if s.count > MIN_POINTS_FOR_DEVIATION and s.std_dev > 0:
            threshold = s.mean + multiplier * s.std_dev
            if expense.amount > threshold:
                deviation = (expense.amount - s.mean) / s.mean * 100
                anomalies.append(_item(
                    expense,
                    reason="unusually_high_amount",
                    severity=severity_for(deviation),
                    historical_average=round2(s.mean),
                    deviation_percentage=round1(deviation),
                ))

        if 0 < s.count < MIN_POINTS_FOR_DEVIATION:
            anomalies.append(_item(
                expense,
                reason="rare_category",
                severity="low",
                historical_average=round2(s.mean),
                deviation_percentage=0.0,
            ))

    by_day: dict[str, list[Expense]] = defaultdict(list)
    for expense in current:
        by_day[expense.expense_date.isoformat()].append(expense)

    for day_expenses in by_day.values():
        if len(day_expenses) < TIMING_MIN_EXPENSES:
            continue
        average = sum(e.amount for e in day_expenses) / len(day_expenses)
        if average <= TIMING_MIN_AVERAGE:
            continue

        flagged_ids = {a.expense_id for a in anomalies}
        unflagged = [e for e in day_expenses if e.id not in flagged_ids]
        for expense in unflagged[:TIMING_MAX_FLAGS]:
            anomalies.append(_item(
                expense,
                reason="unusual_timing",
                severity="low",
                historical_average=0.0,
                deviation_percentage=0.0,
            ))

    anomalies.sort(key=lambda a: SEVERITY_ORDER.get(a.severity, 0), reverse=True)

    return AnomaliesPayload(
        period=period,
        sensitivity=sensitivity,
        anomalies=anomalies,
        summary=summarize_anomalies(anomalies),
        historical_count=len(historical),
    )


async def run_detect_anomalies(ctx: ToolContext, params: AnomaliesParams) -> AnomaliesPayload:
    """Load the period and its baseline, then run the detector."""
    start, end = anomaly_period_range(params.period, ctx.today)
    baseline_start = add_months(start, -BASELINE_MONTHS)

    current = await ctx.store.list_expenses(
        ctx.user_id,
        date_from=start,
        date_to=end,
        order_by="date",
        descending=True,
    )
    historical = [
        e for e in await ctx.store.list_expenses(
            ctx.user_id,
            date_from=baseline_start,
            date_to=start,
        )
        if e.expense_date < start
    ]

    return detect_anomalies(
        current,
        historical,
        period=params.period,
        sensitivity=params.sensitivity,
        min_historical=ctx.policy.min_historical_expenses,
    )

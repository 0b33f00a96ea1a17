"""
Spending Pattern Analysis Tool

Totals, average per transaction, day-over-day trend and the largest
expenses of a category (or all of them) over a period.

The optional semantic filter narrows results with a keyword family
("comida", "transporte", ...) matched against the expense concept. It is
a plain keyword table: fast, predictable and independent of any external
service.

Transparency: the payload always carries `transaction_count`, and the
insights say how many of the transactions are being shown.
"""

from collections import defaultdict
from typing import Optional

import structlog

from kakebo.models.expense import Expense, KakeboCategory
from kakebo.models.tools import (
    ExpenseSummary,
    SpendingPatternParams,
    SpendingPatternPayload,
)
from kakebo.services.storage.queries import fold
from kakebo.tools.base import ToolContext
from kakebo.tools.periods import period_range


logger = structlog.get_logger(__name__)


MAX_LIMIT = 50
STABLE_TREND_PERCENTAGE = 5.0
NOTABLE_TREND_PERCENTAGE = 10.0
DOMINANT_EXPENSE_PERCENTAGE = 20.0

SEMANTIC_KEYWORDS: dict[str, list[str]] = {
    "comida": [
        "supermercado", "mercadona", "aldi", "lidl", "carrefour", "dia", "consum",
        "restaurante", "bar", "cafetería", "café", "bocata", "bocadillo",
        "cena", "comida", "almuerzo", "desayuno", "merienda", "tapas",
        "food", "eat", "lunch", "dinner", "breakfast",
        "pizza", "burger", "kebab", "sushi", "paella",
        "glovo", "uber eats", "just eat", "deliveroo", "delivery",
    ],
    "transporte": [
        "metro", "autobús", "bus", "taxi", "uber", "cabify", "bolt",
        "gasolina", "combustible", "diesel", "carburante",
        "parking", "aparcamiento", "peaje", "autopista",
        "bici", "patinete", "moto", "coche", "tren", "renfe", "ave",
        "billete", "ticket", "transport", "mobilitat", "tmb",
    ],
    "salud": [
        "farmacia", "médico", "doctor", "doctora", "hospital", "clínica",
        "psicólogo", "psicóloga", "terapeuta", "terapia", "fisio", "fisioterapeuta",
        "dentista", "odontólogo", "óptica", "oftalmólogo",
        "seguro médico", "seguro salud", "medicina", "medicamento",
        "consulta", "cita médica", "analítica", "análisis",
    ],
    "vivienda": [
        "alquiler", "renta", "arrendamiento", "hipoteca",
        "luz", "electricidad", "agua", "gas", "internet", "wifi", "fibra",
        "comunidad", "comunidad de propietarios", "basura",
        "seguro hogar", "reparación casa", "fontanero", "electricista",
    ],
    "ocio": [
        "cine", "teatro", "concierto", "festival", "fiesta", "discoteca",
        "bar", "pub", "copas", "museo", "exposición", "parque temático",
        "videojuegos", "playstation", "xbox", "nintendo", "steam",
        "spotify", "netflix", "hbo", "disney", "prime video",
        "deporte", "gimnasio", "gym", "piscina", "paddle", "tenis",
    ],
    "educacion": [
        "libro", "libros", "ebook", "audiolibro", "librería",
        "curso", "clase", "clases", "formación", "master", "máster",
        "academia", "universidad", "matrícula", "mensualidad",
        "udemy", "coursera", "platzi", "domestika",
    ],
    "suscripciones": [
        "suscripción", "subscripción", "mensualidad", "cuota",
        "spotify", "netflix", "hbo", "disney", "amazon prime",
        "youtube premium", "apple music", "google one",
        "gym", "gimnasio", "club", "asociación",
    ],
    "vicios": [
        "tabaco", "cigarros", "cigarrillos", "vaper", "vape",
        "alcohol", "cerveza", "vino", "whisky", "ron", "gin",
        "lotería", "euromillones", "primitiva", "apuestas", "casino",
        "marihuana", "cannabis",
    ],
}


def keywords_for(semantic_filter: str) -> Optional[list[str]]:
    """Keyword family for a filter name, None when the family is unknown."""
    return SEMANTIC_KEYWORDS.get(fold(semantic_filter).strip())


def filter_by_keywords(expenses: list[Expense], semantic_filter: str) -> list[Expense]:
    """
    Keep expenses whose concept contains any keyword of the family.

    An unknown family filters nothing out.
    """
    keywords = keywords_for(semantic_filter)
    if keywords is None:
        logger.warning("unknown_semantic_filter", semantic_filter=semantic_filter)
        return expenses

    folded = [fold(k) for k in keywords]
    filtered = [
        e for e in expenses
        if e.concept and any(k in fold(e.concept) for k in folded)
    ]
    logger.info(
        "semantic_filter_applied",
        semantic_filter=semantic_filter,
        original_count=len(expenses),
        filtered_count=len(filtered),
    )
    return filtered


def calculate_trend(amounts: list[float]) -> tuple[str, float]:
    """
    Least-squares slope relative to the mean.

    Returns (direction, absolute percentage); under 5% is stable with 0.
    """
    n = len(amounts)
    if n < 2:
        return "stable", 0.0

    xs = range(n)
    sum_x = sum(xs)
    sum_y = sum(amounts)
    sum_xy = sum(x * y for x, y in zip(xs, amounts))
    sum_x2 = sum(x * x for x in xs)

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    average = sum_y / n
    percentage = slope / average * 100 if average else 0.0

    if abs(percentage) < STABLE_TREND_PERCENTAGE:
        return "stable", 0.0
    return ("increasing" if slope > 0 else "decreasing"), abs(percentage)


def generate_insights(
    total_amount: float,
    trend: str,
    trend_percentage: float,
    top_expenses: list[ExpenseSummary],
    category: str,
) -> list[str]:
    insights = []

    if trend == "increasing" and trend_percentage > NOTABLE_TREND_PERCENTAGE:
        insights.append(
            f"Tus gastos en {category} están aumentando un {trend_percentage:.1f}% en este período"
        )
    elif trend == "decreasing" and trend_percentage > NOTABLE_TREND_PERCENTAGE:
        insights.append(
            f"Tus gastos en {category} están disminuyendo un {trend_percentage:.1f}% - ¡bien hecho!"
        )

    if top_expenses and total_amount > 0:
        top = top_expenses[0]
        share = top.amount / total_amount * 100
        if share > DOMINANT_EXPENSE_PERCENTAGE:
            insights.append(
                f'"{top.concept}" representa el {share:.1f}% del total en esta categoría'
            )

    if len(top_expenses) > 5:
        insights.append(f"Tienes {len(top_expenses)} gastos registrados en esta categoría")

    return insights


async def analyze_spending_pattern(
    ctx: ToolContext,
    params: SpendingPatternParams,
) -> SpendingPatternPayload:
    """Analyze one category (or all) over a period."""
    start, end = period_range(params.period, ctx.today)
    category = None if params.category == "all" else KakeboCategory(params.category)

    expenses = await ctx.store.list_expenses(
        ctx.user_id,
        date_from=start,
        date_to=end,
        category=category,
        order_by="amount",
        descending=True,
    )

    if params.semantic_filter and expenses:
        expenses = filter_by_keywords(expenses, params.semantic_filter)

    base = dict(
        category=params.category,
        period=params.period,
        date_from=start.isoformat() if start else "",
        date_to=end.isoformat() if end else "",
    )

    if not expenses:
        return SpendingPatternPayload(
            **base,
            total_amount=0.0,
            average_per_period=0.0,
            transaction_count=0,
            trend="stable",
            trend_percentage=0.0,
            insights=["No hay gastos registrados en este período"],
        )

    count = len(expenses)
    total = sum(e.amount for e in expenses)
    limit = min(params.limit, MAX_LIMIT)

    top_expenses = [
        ExpenseSummary(
            id=e.id,
            concept=e.label,
            amount=e.amount,
            date=e.expense_date.isoformat(),
            category=e.category.value,
        )
        for e in expenses[:limit]
    ]

    daily: dict = defaultdict(float)
    for e in expenses:
        daily[e.expense_date] += e.amount
    trend, trend_percentage = calculate_trend([daily[d] for d in sorted(daily)])

    insights = generate_insights(total, trend, trend_percentage, top_expenses, params.category)

    if count > limit:
        insights.insert(0, f"Mostrando los {limit} gastos más altos de {count} transacciones totales")
    elif count > 5:
        insights.insert(0, f"Mostrando todas las {count} transacciones")

    if count < ctx.policy.min_transactions_for_confidence:
        insights.append(
            f"Solo hay {count} transacciones en este período: "
            "datos insuficientes para conclusiones firmes"
        )

    return SpendingPatternPayload(
        **base,
        total_amount=round(total, 2),
        average_per_period=round(total / count, 2),
        transaction_count=count,
        trend=trend,
        trend_percentage=round(trend_percentage, 1),
        top_expenses=top_expenses,
        insights=insights,
    )

"""
Free-Text Expense Search Tool

Answers questions like "vicios", "restaurantes caros" or "gimnasio".

Pipeline:
1. "Most recent" queries ("último", "last expense") skip matching entirely
   and list the newest expenses.
2. Otherwise candidates come from one of two code paths, chosen by the
   search mode resolved for the request:
   - semantic: the store's text-similarity search
   - keyword: the keyword families of the spending tool plus the literal
     query, matched against concepts
3. Period and amount filters.
4. Hybrid feedback (personal verdicts, global consensus) drops results
   marked incorrect and boosts those marked correct.
5. Multi-signal reranking (similarity, recency, category intent).
"""

from collections import defaultdict
from typing import Optional

import structlog

from kakebo.config import SearchMode
from kakebo.learning.feedback import SearchFeedbackEngine
from kakebo.models.expense import Expense, KakeboCategory, ScoredExpense
from kakebo.models.tools import SearchHit, SearchParams, SearchPayload
from kakebo.ranking import RankedExpense, rerank_results
from kakebo.services.storage.queries import fold, text_similarity
from kakebo.tools.base import ToolContext, round2
from kakebo.tools.periods import period_range
from kakebo.tools.spending import keywords_for


logger = structlog.get_logger(__name__)


MAX_LIMIT = 50
DEFAULT_QUERY = "último"
KEYWORD_FAMILY_SIMILARITY = 0.8

_RECENT_EXACT = {
    "ultimo", "last", "reciente", "recent", "mas reciente",
}
_RECENT_CONTAINS = (
    "ultimo gasto", "last expense", "ultima compra", "gasto reciente",
    "compra reciente", "recent expense",
)


def is_recent_query(query: str) -> bool:
    """True for "show me my latest expense" style queries."""
    q = fold(query).strip()
    return q in _RECENT_EXACT or any(phrase in q for phrase in _RECENT_CONTAINS)


def _in_range(expense: Expense, params: SearchParams, ctx: ToolContext) -> bool:
    start, end = period_range(params.period, ctx.today)
    if start and expense.expense_date < start:
        return False
    if end and expense.expense_date > end:
        return False
    if params.min_amount is not None and expense.amount < params.min_amount:
        return False
    if params.max_amount is not None and expense.amount > params.max_amount:
        return False
    return True


async def _recent_expenses(ctx: ToolContext, params: SearchParams, query: str, limit: int) -> SearchPayload:
    start, end = period_range(params.period, ctx.today)
    expenses = await ctx.store.list_expenses(
        ctx.user_id,
        date_from=start,
        date_to=end,
        min_amount=params.min_amount,
        max_amount=params.max_amount,
        order_by="date",
        descending=True,
        limit=limit,
    )

    if not expenses:
        return SearchPayload(
            query=query,
            period=params.period,
            total_amount=0.0,
            count=0,
            insights=[f'No encontré gastos en el período "{params.period}"'],
        )

    total = sum(e.amount for e in expenses)
    first = expenses[0]
    insights = [
        f"Encontré {len(expenses)} gasto(s) reciente(s)",
        f'Más reciente: "{first.label}" ({first.amount}€) el {first.expense_date.isoformat()}',
        f"ID de este gasto: {first.id}",
        f"Total: €{total:.2f}",
    ]

    return SearchPayload(
        query=query,
        period=params.period,
        total_amount=round2(total),
        count=len(expenses),
        expenses=[_hit(ScoredExpense(expense=e, similarity=1.0)) for e in expenses],
        insights=insights,
    )


async def _semantic_candidates(ctx: ToolContext, query: str) -> list[ScoredExpense]:
    return await ctx.store.search_expenses_by_text(
        ctx.user_id,
        query,
        limit=ctx.search.candidate_limit,
        threshold=ctx.search.similarity_threshold,
    )


async def _keyword_candidates(ctx: ToolContext, params: SearchParams, query: str) -> list[ScoredExpense]:
    start, end = period_range(params.period, ctx.today)
    expenses = await ctx.store.list_expenses(ctx.user_id, date_from=start, date_to=end)

    family = [fold(k) for k in (keywords_for(query) or [])]
    scored = []
    for expense in expenses:
        similarity = text_similarity(query, expense.concept)
        concept = fold(expense.concept)
        if family and any(k in concept for k in family):
            similarity = max(similarity, KEYWORD_FAMILY_SIMILARITY)
        if similarity > 0:
            scored.append(ScoredExpense(expense=expense, similarity=similarity))

    scored.sort(key=lambda s: s.similarity, reverse=True)
    return scored[:ctx.search.candidate_limit]


def _hit(result: ScoredExpense, ranked: Optional[RankedExpense] = None) -> SearchHit:
    expense = result.expense
    return SearchHit(
        id=expense.id,
        concept=expense.label,
        amount=expense.amount,
        date=expense.expense_date.isoformat(),
        category=expense.category.value,
        similarity=round2(result.similarity),
        confidence=ranked.confidence if ranked else None,
        signals=ranked.signals.model_dump() if ranked else None,
    )


def _insights(top: list[ScoredExpense], found: int, limit: int) -> list[str]:
    insights = []
    if found > limit:
        insights.append(
            f"Mostrando los {limit} resultados más relevantes de {found} gastos encontrados"
        )

    by_category: dict[KakeboCategory, float] = defaultdict(float)
    for r in top:
        by_category[r.expense.category] += r.expense.amount
    if len(by_category) > 1:
        breakdown = ", ".join(
            f"{category.display_name}: €{amount:.2f}"
            for category, amount in sorted(by_category.items(), key=lambda kv: kv[1], reverse=True)
        )
        insights.append(f"Distribuido en: {breakdown}")

    total = sum(r.expense.amount for r in top)
    insights.append(f"Gasto promedio: €{total / len(top):.2f}")

    if len(top) > 1:
        highest = max(top, key=lambda r: r.expense.amount).expense
        insights.append(f"Gasto más alto: {highest.label} (€{highest.amount})")

    return insights


async def search_expenses(ctx: ToolContext, params: SearchParams) -> SearchPayload:
    """Search expenses by free text."""
    query = (params.query or "").strip() or DEFAULT_QUERY
    limit = min(params.limit, MAX_LIMIT)

    if is_recent_query(query):
        logger.info("search_recent_path", query=query, period=params.period)
        return await _recent_expenses(ctx, params, query, limit)

    if ctx.search_mode == SearchMode.KEYWORD:
        candidates = await _keyword_candidates(ctx, params, query)
    else:
        candidates = await _semantic_candidates(ctx, query)

    if not candidates:
        return SearchPayload(
            query=query,
            period=params.period,
            total_amount=0.0,
            count=0,
            insights=[f'No encontré gastos relacionados con "{query}"'],
        )

    filtered = [c for c in candidates if _in_range(c.expense, params, ctx)]

    feedback_engine = SearchFeedbackEngine(ctx.store, ctx.policy, ctx.audit_logger)
    feedback = await feedback_engine.get_hybrid_feedback(ctx.user_id, query)
    filtered = feedback_engine.apply(filtered, feedback)

    logger.info(
        "search_feedback_applied",
        query=query,
        mode=ctx.search_mode.value,
        candidates=len(candidates),
        after_feedback=len(filtered),
        excluded=len(feedback.incorrect_expense_ids),
    )

    ranked = rerank_results(filtered, query, reference_date=ctx.today)[:limit]
    top = [r.result for r in ranked]

    if not top:
        return SearchPayload(
            query=query,
            period=params.period,
            total_amount=0.0,
            count=0,
            insights=[f'No encontré gastos relacionados con "{query}" en el período "{params.period}"'],
        )

    total = sum(r.expense.amount for r in top)
    return SearchPayload(
        query=query,
        period=params.period,
        total_amount=round2(total),
        count=len(top),
        expenses=[_hit(r.result, r) for r in ranked],
        insights=_insights(top, len(filtered), limit),
    )

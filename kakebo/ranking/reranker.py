"""
Multi-Signal Result Reranking

Search results arrive ordered by text similarity alone. The reranker blends
three signals into one confidence score:

    confidence = w_s * semantic + w_r * recency + w_c * category_match

- semantic: the similarity, clamped to [0, 1]
- recency: exponential decay, 1.0 today and 0.5 one half-life ago
- category_match: 1.0 when the expense is in the category the query
  implies (or the query implies none), 0.5 otherwise

Weights default to 0.6 / 0.2 / 0.2 and are always re-normalized to sum 1.
"""

import math
from datetime import date
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from kakebo.learning.category_intent import infer_query_categories
from kakebo.models.expense import KakeboCategory, ScoredExpense


logger = structlog.get_logger(__name__)


DEFAULT_RECENCY_HALF_LIFE_DAYS = 30.0
CATEGORY_MISMATCH_SCORE = 0.5


class RerankWeights(BaseModel):
    """Relative weight of each signal. Only the proportions matter."""

    semantic: float = Field(default=0.6, ge=0.0)
    recency: float = Field(default=0.2, ge=0.0)
    category_match: float = Field(default=0.2, ge=0.0)

    def normalized(self) -> "RerankWeights":
        total = self.semantic + self.recency + self.category_match
        if total <= 0:
            return RerankWeights()
        return RerankWeights(
            semantic=self.semantic / total,
            recency=self.recency / total,
            category_match=self.category_match / total,
        )


class RankSignals(BaseModel):
    """Per-signal breakdown, each in [0, 1]."""
    semantic: float
    recency: float
    category_match: float


class RankedExpense(BaseModel):
    """A search result with its blended confidence."""
    result: ScoredExpense
    confidence: float = Field(ge=0.0, le=1.0)
    score: float = Field(ge=0.0, le=1.0, description="Unrounded confidence, the sort key")
    signals: RankSignals


def recency_score(
    expense_date: date,
    reference_date: Optional[date] = None,
    half_life_days: float = DEFAULT_RECENCY_HALF_LIFE_DAYS,
) -> float:
    """
    e^(-ln2 * days / half_life).

    today -> 1.0, half_life days ago -> 0.5, future dates -> 1.0
    """
    reference = reference_date or date.today()
    days = max(0, (reference - expense_date).days)
    return math.exp(-math.log(2) / half_life_days * days)


def category_match_score(
    category: KakeboCategory,
    expected: Optional[frozenset[KakeboCategory]],
) -> float:
    if not expected:
        return 1.0
    return 1.0 if category in expected else CATEGORY_MISMATCH_SCORE


def compute_confidence(
    result: ScoredExpense,
    query: str,
    weights: Optional[RerankWeights] = None,
    half_life_days: float = DEFAULT_RECENCY_HALF_LIFE_DAYS,
    reference_date: Optional[date] = None,
    expected_categories: Optional[frozenset[KakeboCategory]] = None,
) -> RankedExpense:
    """Score one result. `expected_categories` defaults to the query's intent."""
    w = (weights or RerankWeights()).normalized()
    if expected_categories is None:
        expected_categories = infer_query_categories(query)

    signals = RankSignals(
        semantic=max(0.0, min(1.0, result.similarity)),
        recency=recency_score(result.expense.expense_date, reference_date, half_life_days),
        category_match=category_match_score(result.expense.category, expected_categories),
    )

    score = min(1.0, (
        w.semantic * signals.semantic
        + w.recency * signals.recency
        + w.category_match * signals.category_match
    ))
    return RankedExpense(
        result=result,
        confidence=round(score, 3),
        score=score,
        signals=signals,
    )


def rerank_results(
    results: list[ScoredExpense],
    query: str,
    weights: Optional[RerankWeights] = None,
    half_life_days: float = DEFAULT_RECENCY_HALF_LIFE_DAYS,
    reference_date: Optional[date] = None,
) -> list[RankedExpense]:
    """
    Rerank results by blended confidence, highest first.

    Ordering uses the unrounded score; only exact ties keep their input
    order.
    """
    if not results:
        return []

    expected = infer_query_categories(query)
    ranked = [
        compute_confidence(
            r,
            query,
            weights=weights,
            half_life_days=half_life_days,
            reference_date=reference_date,
            expected_categories=expected,
        )
        for r in results
    ]
    ranked.sort(key=lambda r: r.score, reverse=True)

    logger.debug(
        "results_reranked",
        query=query,
        count=len(ranked),
        top_confidence=ranked[0].confidence,
        bottom_confidence=ranked[-1].confidence,
    )
    return ranked

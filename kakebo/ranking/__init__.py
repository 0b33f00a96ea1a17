"""Search result ranking."""

from kakebo.ranking.reranker import (
    RankedExpense,
    RankSignals,
    RerankWeights,
    category_match_score,
    compute_confidence,
    recency_score,
    rerank_results,
)

__all__ = [
    "RankedExpense",
    "RankSignals",
    "RerankWeights",
    "category_match_score",
    "compute_confidence",
    "recency_score",
    "rerank_results",
]

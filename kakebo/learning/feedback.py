"""
Search Feedback Consensus

Users tell the assistant which search results were right or wrong
("la insulina NO es un vicio"). Those verdicts shape later searches:

1. PERSONAL feedback - the user's own verdicts, always authoritative
2. GLOBAL consensus - votes from every user on the same query, used only
   where a clear majority exists and the user has not spoken

DESIGN DECISION: Personal feedback always wins. Global consensus only
fills gaps, and an expense is never both correct and incorrect.

Reads degrade to empty feedback on store failure. Submitting feedback is
a primary write and raises.
"""

from typing import Optional

import structlog

from kakebo.audit import AuditLogger
from kakebo.config import PolicySettings, get_settings
from kakebo.models.expense import ScoredExpense
from kakebo.models.learning import (
    FeedbackResult,
    FeedbackType,
    QueryFeedback,
    SearchFeedback,
)
from kakebo.services.storage import LearningStorageInterface


def normalize_query(query: str) -> str:
    return (query or "").lower().strip()


def apply_feedback(
    results: list[ScoredExpense],
    feedback: QueryFeedback,
    boost: float = 1.2,
) -> list[ScoredExpense]:
    """
    Drop results marked incorrect, boost those marked correct, re-sort.

    Boosted similarity is capped at 1.0. The sort is stable, so equal
    similarities keep their input order.
    """
    adjusted = []
    for result in results:
        expense_id = result.expense.id
        if expense_id in feedback.incorrect_expense_ids:
            continue
        if expense_id in feedback.correct_expense_ids:
            result = result.model_copy(
                update={"similarity": min(result.similarity * boost, 1.0)}
            )
        adjusted.append(result)

    adjusted.sort(key=lambda r: r.similarity, reverse=True)
    return adjusted


class SearchFeedbackEngine:
    """Stores search verdicts and merges them into personal + global feedback."""

    def __init__(
        self,
        storage: LearningStorageInterface,
        policy: Optional[PolicySettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._policy = policy or get_settings().policy
        self._audit_logger = audit_logger
        self._logger = structlog.get_logger()

    async def submit_search_feedback(
        self,
        user_id: str,
        query: str,
        correct_expense_ids: Optional[list[str]] = None,
        incorrect_expense_ids: Optional[list[str]] = None,
    ) -> FeedbackResult:
        """
        Upsert the user's verdicts for a query.

        Raises:
            StorageError: The feedback could not be written
        """
        correct_expense_ids = correct_expense_ids or []
        incorrect_expense_ids = incorrect_expense_ids or []
        normalized = normalize_query(query)

        records = [
            SearchFeedback(
                user_id=user_id,
                query=normalized,
                expense_id=expense_id,
                feedback_type=FeedbackType.CORRECT,
            )
            for expense_id in correct_expense_ids
        ] + [
            SearchFeedback(
                user_id=user_id,
                query=normalized,
                expense_id=expense_id,
                feedback_type=FeedbackType.INCORRECT,
            )
            for expense_id in incorrect_expense_ids
        ]

        if not records:
            return FeedbackResult(success=False, message="No feedback provided")

        try:
            written = await self._storage.upsert_search_feedback(records)
        except Exception as e:
            self._logger.error("search_feedback_submit_failed", error=str(e), query=normalized)
            raise

        self._logger.info("search_feedback_submitted", query=normalized, records=written)

        if self._audit_logger:
            await self._audit_logger.log_feedback_submitted(
                user_id=user_id,
                query=normalized,
                correct_count=len(correct_expense_ids),
                incorrect_count=len(incorrect_expense_ids),
            )

        return FeedbackResult(
            success=True,
            message=(
                f"Aprendido: {len(correct_expense_ids)} correctos, "
                f'{len(incorrect_expense_ids)} incorrectos para "{query}"'
            ),
            records_submitted=written,
        )

    async def get_personal_feedback(self, user_id: str, query: str) -> QueryFeedback:
        """The user's own verdicts for a query; empty on store failure."""
        try:
            rows = await self._storage.list_search_feedback(
                user_id=user_id, query=normalize_query(query)
            )
        except Exception as e:
            self._logger.error("personal_feedback_failed", error=str(e), query=query)
            return QueryFeedback()

        return QueryFeedback(
            correct_expense_ids=frozenset(
                r.expense_id for r in rows if r.feedback_type == FeedbackType.CORRECT
            ),
            incorrect_expense_ids=frozenset(
                r.expense_id for r in rows if r.feedback_type == FeedbackType.INCORRECT
            ),
        )

    async def get_global_feedback(self, query: str) -> QueryFeedback:
        """
        Majority verdicts across all users; empty on store failure.

        An expense needs `consensus_min_votes` votes, and one side needs at
        least `consensus_ratio` of them. Incorrect is checked first.
        """
        try:
            rows = await self._storage.list_search_feedback(query=normalize_query(query))
        except Exception as e:
            self._logger.error("global_feedback_failed", error=str(e), query=query)
            return QueryFeedback()

        votes: dict[str, list[int]] = {}
        for row in rows:
            counts = votes.setdefault(row.expense_id, [0, 0])
            if row.feedback_type == FeedbackType.CORRECT:
                counts[0] += 1
            else:
                counts[1] += 1

        correct, incorrect = set(), set()
        for expense_id, (n_correct, n_incorrect) in votes.items():
            total = n_correct + n_incorrect
            if total < self._policy.consensus_min_votes:
                continue
            if n_incorrect / total >= self._policy.consensus_ratio:
                incorrect.add(expense_id)
            elif n_correct / total >= self._policy.consensus_ratio:
                correct.add(expense_id)

        self._logger.info(
            "global_feedback_consensus",
            query=query,
            expenses=len(votes),
            global_correct=len(correct),
            global_incorrect=len(incorrect),
        )
        return QueryFeedback(
            correct_expense_ids=frozenset(correct),
            incorrect_expense_ids=frozenset(incorrect),
        )

    async def get_hybrid_feedback(self, user_id: str, query: str) -> QueryFeedback:
        """Personal verdicts, with global consensus filling the gaps."""
        personal = await self.get_personal_feedback(user_id, query)
        global_ = await self.get_global_feedback(query)

        correct = set(personal.correct_expense_ids)
        incorrect = set(personal.incorrect_expense_ids)

        for expense_id in global_.correct_expense_ids:
            if expense_id not in incorrect:
                correct.add(expense_id)
        for expense_id in global_.incorrect_expense_ids:
            if expense_id not in correct:
                incorrect.add(expense_id)

        return QueryFeedback(
            correct_expense_ids=frozenset(correct),
            incorrect_expense_ids=frozenset(incorrect),
        )

    def apply(self, results: list[ScoredExpense], feedback: QueryFeedback) -> list[ScoredExpense]:
        """apply_feedback with the configured boost."""
        return apply_feedback(results, feedback, self._policy.feedback_boost)

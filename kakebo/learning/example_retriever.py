"""
Correction Example Retrieval

Supplies past (wrong -> right) corrections as few-shot examples so the
model stops repeating the same classification mistakes.

DESIGN DECISION: Every read path fails CLOSED. A store error returns an
empty list, never an exception: the model can always classify without
examples, it just does it a little worse. Only saving a new example
surfaces its error, so the user can be told the correction was not kept.
"""

from typing import Literal, Optional

import structlog

from kakebo.audit import AuditLogger
from kakebo.models.expense import KakeboCategory
from kakebo.models.learning import CorrectionExample, ExampleStats
from kakebo.learning.merchant_extractor import extract_merchant
from kakebo.services.storage import LearningStorageInterface, StorageError


DEFAULT_LIMIT = 3
DEFAULT_MIN_CONFIDENCE = 0.8
MIN_KEYWORD_LENGTH = 4

_HEADERS = {
    "es": "Aquí hay transacciones similares que has corregido antes:",
    "en": "Here are similar transactions you've corrected before:",
}
_BEFORE = {"es": "antes", "en": "was"}


def format_examples_for_prompt(
    examples: list[CorrectionExample],
    language: Literal["es", "en"] = "es",
) -> str:
    """
    Render examples as a prompt block.

        Aquí hay transacciones similares que has corregido antes:
          - "mercadona compra" → survival (antes: optional)

    Returns "" for no examples.
    """
    if not examples:
        return ""

    before = _BEFORE[language]
    lines = [_HEADERS[language]]
    for example in examples:
        lines.append(
            f'  - "{example.concept}" → {example.new_category.value} '
            f"({before}: {example.old_category.value})"
        )
    return "\n".join(lines)


class ExampleRetriever:
    """Reads, writes and tracks correction examples."""

    def __init__(
        self,
        storage: LearningStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._logger = structlog.get_logger()

    async def get_relevant_examples(
        self,
        user_id: str,
        limit: int = DEFAULT_LIMIT,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        prefer_recent: bool = False,
        category_filter: Optional[KakeboCategory] = None,
    ) -> list[CorrectionExample]:
        """
        Examples visible to the user (own and shared) for few-shot prompting.

        Args:
            user_id: The user asking
            limit: Maximum examples returned
            min_confidence: Confidence floor
            prefer_recent: Newest first instead of most confident first
            category_filter: Only examples corrected INTO this category

        Returns:
            Up to `limit` examples; empty on any store failure
        """
        order_by = "created_at" if prefer_recent else "confidence"
        try:
            if category_filter is not None:
                examples = await self._storage.get_relevant_examples(
                    user_id,
                    category_filter,
                    limit,
                    min_confidence=min_confidence,
                    order_by=order_by,
                )
            else:
                examples = await self._storage.query_correction_examples(
                    user_id,
                    min_confidence=min_confidence,
                    order_by=order_by,
                    limit=limit,
                )
        except Exception as e:
            self._logger.error(
                "relevant_examples_failed",
                error=str(e),
                user_id=user_id,
                category=category_filter.value if category_filter else None,
            )
            return []

        self._logger.info("relevant_examples_retrieved", user_id=user_id, count=len(examples))
        return examples[:limit]

    async def get_similar_examples(
        self,
        user_id: str,
        concept: str,
        limit: int = DEFAULT_LIMIT,
    ) -> list[CorrectionExample]:
        """
        Examples whose concept shares a keyword (4+ chars) with `concept`.

        Empty when the concept has no usable keyword or the store fails.
        """
        keywords = [w for w in concept.lower().strip().split() if len(w) >= MIN_KEYWORD_LENGTH]
        if not keywords:
            self._logger.debug("no_similarity_keywords", concept=concept)
            return []

        try:
            examples = await self._storage.query_correction_examples(
                user_id,
                min_confidence=DEFAULT_MIN_CONFIDENCE,
                order_by="confidence",
                limit=limit,
                keywords=keywords,
            )
        except Exception as e:
            self._logger.error("similar_examples_failed", error=str(e), user_id=user_id)
            return []

        self._logger.info(
            "similar_examples_retrieved", user_id=user_id, concept=concept, count=len(examples)
        )
        return examples

    async def track_example_usage(self, example_ids: list[str]) -> int:
        """
        Count one more use of each example.

        Individual failures are logged and skipped.

        Returns:
            Number of examples actually updated
        """
        updated = 0
        for example_id in example_ids:
            try:
                await self._storage.increment_example_usage(example_id)
                updated += 1
            except Exception as e:
                self._logger.warning(
                    "example_usage_increment_failed", error=str(e), example_id=example_id
                )

        if updated:
            self._logger.info("example_usage_tracked", count=updated, total=len(example_ids))
        return updated

    async def get_example_stats(self, user_id: str) -> ExampleStats:
        """Example statistics; neutral defaults if the store fails."""
        try:
            return await self._storage.get_example_stats(user_id)
        except Exception as e:
            self._logger.error("example_stats_failed", error=str(e), user_id=user_id)
            return ExampleStats()

    async def save_correction_example(
        self,
        user_id: str,
        concept: str,
        old_category: KakeboCategory,
        new_category: KakeboCategory,
        confidence: float = 1.0,
    ) -> CorrectionExample:
        """
        Store a new correction example.

        Raises:
            StorageError: The example was not saved
        """
        example = CorrectionExample(
            user_id=user_id,
            concept=concept,
            old_category=old_category,
            new_category=new_category,
            merchant=extract_merchant(concept),
            confidence=confidence,
        )

        try:
            saved = await self._storage.save_correction_example(example)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to save correction example: {e}")

        if self._audit_logger:
            await self._audit_logger.log_correction_saved(
                user_id=user_id,
                example_id=saved.id,
                old_category=old_category.value,
                new_category=new_category.value,
            )
        return saved

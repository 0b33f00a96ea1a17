"""
Merchant Rule Learning

Turns user corrections into merchant -> category rules:

1. Extract the merchant from the corrected concept
2. Upsert the user's own rule with confidence 1.0 (explicit correction)
3. If a global rule already maps that merchant to the same category,
   add a vote to it

DESIGN DECISION: A concept without an identifiable merchant is not a
failure. The correction is still valid, there is just nothing to learn a
rule from, so the result is successful with no rule.

Batches never fail fast: every correction gets its own result.
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from kakebo.audit import AuditLogger
from kakebo.models.expense import KakeboCategory
from kakebo.models.learning import LearningResult, LearningStats
from kakebo.learning.merchant_extractor import extract_merchant
from kakebo.services.storage import LearningStorageInterface


EXPLICIT_CORRECTION_CONFIDENCE = 1.0
TOP_MERCHANTS_LIMIT = 10


class Correction(BaseModel):
    """One user correction of an expense category."""
    concept: str
    old_category: KakeboCategory
    new_category: KakeboCategory


class MerchantRuleLearner:
    """
    Learns merchant rules from category corrections.

    Usage:
        learner = MerchantRuleLearner(store)
        result = await learner.learn_from_correction(
            user_id, "Mercadona compra", KakeboCategory.OPTIONAL, KakeboCategory.SURVIVAL
        )
    """

    def __init__(
        self,
        storage: LearningStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._logger = structlog.get_logger()

    async def learn_from_correction(
        self,
        user_id: str,
        concept: str,
        old_category: KakeboCategory,
        new_category: KakeboCategory,
    ) -> LearningResult:
        """
        Learn a rule from one correction.

        Returns:
            LearningResult; success=False only when the rule write failed
        """
        merchant = extract_merchant(concept)

        if not merchant:
            self._logger.debug("merchant_not_extracted", concept=concept, user_id=user_id)
            return LearningResult(
                success=True,
                merchant=None,
                message="No se pudo identificar un comerciante en el concepto. No se creó regla.",
            )

        self._logger.info(
            "learning_from_correction",
            merchant=merchant,
            old_category=old_category.value,
            new_category=new_category.value,
            user_id=user_id,
        )

        try:
            existing = await self._storage.get_merchant_rule(user_id, merchant)
        except Exception as e:
            # Only decides the wording, the upsert below is what matters
            self._logger.warning("merchant_rule_lookup_failed", error=str(e), merchant=merchant)
            existing = None

        try:
            await self._storage.upsert_merchant_rule(
                user_id=user_id,
                merchant=merchant,
                category=new_category,
                confidence=EXPLICIT_CORRECTION_CONFIDENCE,
            )
        except Exception as e:
            self._logger.error("merchant_rule_upsert_failed", error=str(e), merchant=merchant)
            return LearningResult(
                success=False,
                merchant=merchant,
                message=f"Error al crear regla: {e}",
            )

        rule_created = existing is None
        global_vote_incremented = await self._reinforce_global_rule(merchant, new_category)

        if self._audit_logger:
            await self._audit_logger.log_correction_learned(
                user_id=user_id,
                merchant=merchant,
                category=new_category.value,
                rule_created=rule_created,
                global_vote_incremented=global_vote_incremented,
            )

        verb = "aprendida" if rule_created else "actualizada"
        return LearningResult(
            success=True,
            merchant=merchant,
            rule_created=rule_created,
            rule_updated=not rule_created,
            global_vote_incremented=global_vote_incremented,
            message=f'✅ Regla {verb}: "{merchant}" → {new_category.value}',
        )

    async def _reinforce_global_rule(
        self,
        merchant: str,
        category: KakeboCategory,
    ) -> bool:
        """Add a vote to the global rule when it agrees with the correction."""
        try:
            global_rule = await self._storage.get_merchant_rule(None, merchant)
            if global_rule is None or global_rule.category != category:
                return False

            updated = await self._storage.increment_global_rule_vote(merchant)
            if updated is None:
                return False

            self._logger.info(
                "global_rule_vote_incremented",
                merchant=merchant,
                category=category.value,
                vote_count=updated.vote_count,
            )
            return True
        except Exception as e:
            # The user's own rule is already saved
            self._logger.warning("global_rule_vote_failed", error=str(e), merchant=merchant)
            return False

    async def learn_from_batch(
        self,
        user_id: str,
        corrections: list[Correction],
    ) -> list[LearningResult]:
        """
        Learn from several corrections, one result per correction.

        Processed in order so repeated merchants upsert deterministically.
        """
        results = []
        for correction in corrections:
            try:
                result = await self.learn_from_correction(
                    user_id,
                    correction.concept,
                    correction.old_category,
                    correction.new_category,
                )
            except Exception as e:
                result = LearningResult(
                    success=False,
                    message=f"Error al aprender de la corrección: {e}",
                )
            results.append(result)

        self._logger.info(
            "batch_learning_completed",
            total=len(corrections),
            success=sum(1 for r in results if r.success),
            rules_created=sum(1 for r in results if r.rule_created),
            rules_updated=sum(1 for r in results if r.rule_updated),
            user_id=user_id,
        )
        return results

    async def get_learning_stats(self, user_id: str) -> LearningStats:
        """Rules the user has taught; empty stats if the store fails."""
        try:
            rules = await self._storage.list_merchant_rules(user_id)
        except Exception as e:
            self._logger.error("learning_stats_failed", error=str(e), user_id=user_id)
            return LearningStats()

        by_category: dict[str, int] = {}
        for rule in rules:
            by_category[rule.category.value] = by_category.get(rule.category.value, 0) + 1

        return LearningStats(
            total_rules=len(rules),
            rules_by_category=by_category,
            top_merchants=rules[:TOP_MERCHANTS_LIMIT],
        )

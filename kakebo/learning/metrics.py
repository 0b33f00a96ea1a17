"""
Learning Metrics

Health of the three learning subsystems for one user over the last two
weeks, plus a composite 0-100 score.

Each section is computed independently. A store failure in one section
yields that section's neutral default and the score still computes.
"""

import asyncio
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

import structlog

from kakebo.models.learning import (
    CorrectionExampleMetrics,
    FeedbackType,
    LearningMetrics,
    MerchantRuleMetrics,
    Misclassification,
    QueryIssue,
    SearchFeedbackMetrics,
    VelocityTrend,
)
from kakebo.services.storage import LearningStorageInterface


HIGH_CONFIDENCE = 0.9
TOP_N = 5

RULE_COVERAGE_TARGET = 10
USAGE_ACTIVITY_TARGET = 20


def calculate_learning_score(
    rules: MerchantRuleMetrics,
    examples: CorrectionExampleMetrics,
    feedback: SearchFeedbackMetrics,
) -> int:
    """
    Composite learning score.

        40% rule coverage    min(rules / 10, 1) * 100
        35% search precision feedback precision
        25% example activity min(usages / 20, 1) * 100
    """
    rule_coverage = min(rules.total / RULE_COVERAGE_TARGET, 1) * 100
    example_activity = min(examples.total_usages / USAGE_ACTIVITY_TARGET, 1) * 100
    score = 0.4 * rule_coverage + 0.35 * feedback.precision + 0.25 * example_activity
    return min(100, max(0, round(score)))


class LearningMetricsAggregator:
    """Computes LearningMetrics from the learning store."""

    def __init__(self, storage: LearningStorageInterface):
        self._storage = storage
        self._logger = structlog.get_logger()

    async def get_learning_metrics(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> LearningMetrics:
        now = now or datetime.utcnow()
        week_ago = now - timedelta(days=7)
        two_weeks_ago = now - timedelta(days=14)

        rules, examples, feedback = await asyncio.gather(
            self._merchant_rule_metrics(user_id, week_ago, two_weeks_ago),
            self._correction_example_metrics(user_id, week_ago),
            self._search_feedback_metrics(user_id, week_ago),
        )

        score = calculate_learning_score(rules, examples, feedback)

        self._logger.info(
            "learning_metrics_computed",
            user_id=user_id,
            merchant_rules=rules.total,
            correction_examples=examples.total,
            search_feedback=feedback.total,
            score=score,
        )

        return LearningMetrics(
            period=f"{two_weeks_ago.date().isoformat()} to {now.date().isoformat()}",
            merchant_rules=rules,
            correction_examples=examples,
            search_feedback=feedback,
            overall_learning_score=score,
            generated_at=now,
        )

    async def _merchant_rule_metrics(
        self,
        user_id: str,
        week_ago: datetime,
        two_weeks_ago: datetime,
    ) -> MerchantRuleMetrics:
        try:
            rules = await self._storage.list_merchant_rules(user_id)

            total = len(rules)
            this_week = sum(1 for r in rules if r.created_at >= week_ago)
            last_week = sum(1 for r in rules if two_weeks_ago <= r.created_at < week_ago)

            if this_week > last_week:
                trend = VelocityTrend.IMPROVING
            elif this_week < last_week:
                trend = VelocityTrend.DECLINING
            else:
                trend = VelocityTrend.STABLE

            return MerchantRuleMetrics(
                total=total,
                high_confidence=sum(1 for r in rules if r.confidence >= HIGH_CONFIDENCE),
                avg_confidence=round(sum(r.confidence for r in rules) / total, 2) if total else 0.0,
                added_this_week=this_week,
                added_last_week=last_week,
                velocity_trend=trend,
            )
        except Exception as e:
            self._logger.warning("merchant_rule_metrics_failed", error=str(e))
            return MerchantRuleMetrics()

    async def _correction_example_metrics(
        self,
        user_id: str,
        week_ago: datetime,
    ) -> CorrectionExampleMetrics:
        try:
            examples = await self._storage.list_correction_examples(user_id)

            total = len(examples)
            usages = sum(e.times_used for e in examples)
            pairs = Counter((e.old_category.value, e.new_category.value) for e in examples)

            return CorrectionExampleMetrics(
                total=total,
                total_usages=usages,
                avg_usages=round(usages / total, 1) if total else 0.0,
                added_this_week=sum(1 for e in examples if e.created_at >= week_ago),
                top_misclassifications=[
                    Misclassification(from_category=old, to_category=new, count=count)
                    for (old, new), count in pairs.most_common(TOP_N)
                ],
            )
        except Exception as e:
            self._logger.warning("correction_example_metrics_failed", error=str(e))
            return CorrectionExampleMetrics()

    async def _search_feedback_metrics(
        self,
        user_id: str,
        week_ago: datetime,
    ) -> SearchFeedbackMetrics:
        try:
            rows = await self._storage.list_search_feedback(user_id=user_id)

            total = len(rows)
            correct = sum(1 for r in rows if r.feedback_type == FeedbackType.CORRECT)
            incorrect = sum(1 for r in rows if r.feedback_type == FeedbackType.INCORRECT)
            issues = Counter(r.query for r in rows if r.feedback_type == FeedbackType.INCORRECT)

            return SearchFeedbackMetrics(
                total=total,
                correct_count=correct,
                incorrect_count=incorrect,
                precision=round(correct / total * 100) if total else 100,
                added_this_week=sum(1 for r in rows if r.created_at >= week_ago),
                top_queries_with_issues=[
                    QueryIssue(query=query, incorrect_count=count)
                    for query, count in issues.most_common(TOP_N)
                ],
            )
        except Exception as e:
            self._logger.warning("search_feedback_metrics_failed", error=str(e))
            return SearchFeedbackMetrics()

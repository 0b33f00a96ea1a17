"""
In-Memory Storage Implementation

Deterministic store used by tests and local runs. Implements all three
storage interfaces over plain Python containers.

Failures can be injected per operation name so tests can exercise the
degraded paths:

    store.fail_on("list_expenses", ConnectionError("connection timeout"))
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from kakebo.models.audit import AuditEvent
from kakebo.models.expense import (
    Expense,
    FixedExpense,
    KakeboCategory,
    ScoredExpense,
    UserFinancialSettings,
)
from kakebo.models.learning import (
    CorrectionExample,
    ExampleStats,
    MerchantRule,
    SearchFeedback,
)
from kakebo.services.storage import queries
from kakebo.services.storage.interface import (
    AuditStorageInterface,
    ExpenseStorageInterface,
    LearningStorageInterface,
    NotFoundError,
)


class InMemoryStore(
    ExpenseStorageInterface,
    LearningStorageInterface,
    AuditStorageInterface,
):
    """All storage interfaces backed by process memory."""

    def __init__(self):
        self.expenses: list[Expense] = []
        self.settings: dict[str, UserFinancialSettings] = {}
        self.fixed_expenses: list[FixedExpense] = []
        # (user_id or None, merchant) -> rule
        self.merchant_rules: dict[tuple[Optional[str], str], MerchantRule] = {}
        self.correction_examples: dict[str, CorrectionExample] = {}
        # (user_id, query, expense_id) -> feedback
        self.search_feedback: dict[tuple[str, str, str], SearchFeedback] = {}
        self.audit_events: list[AuditEvent] = []
        self._failures: dict[str, Exception] = {}

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def fail_on(self, operation: str, error: Exception) -> None:
        """Make every call to `operation` raise `error`."""
        self._failures[operation] = error

    def clear_failures(self) -> None:
        self._failures.clear()

    def _check(self, operation: str) -> None:
        error = self._failures.get(operation)
        if error is not None:
            raise error

    def add_expenses(self, *expenses: Expense) -> None:
        self.expenses.extend(expenses)

    def add_rule(self, rule: MerchantRule) -> None:
        self.merchant_rules[(rule.user_id, rule.merchant)] = rule

    def add_example(self, example: CorrectionExample) -> None:
        self.correction_examples[example.id] = example

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def list_expenses(
        self,
        user_id,
        date_from=None,
        date_to=None,
        category=None,
        min_amount=None,
        max_amount=None,
        order_by="date",
        descending=False,
        limit=None,
    ) -> list[Expense]:
        self._check("list_expenses")
        return queries.filter_expenses(
            self.expenses,
            user_id,
            date_from=date_from,
            date_to=date_to,
            category=category,
            min_amount=min_amount,
            max_amount=max_amount,
            order_by=order_by,
            descending=descending,
            limit=limit,
        )

    async def search_expenses_by_text(
        self,
        user_id: str,
        query: str,
        limit: int = 100,
        threshold: float = 0.2,
    ) -> list[ScoredExpense]:
        self._check("search_expenses_by_text")
        return queries.search_by_text(self.expenses, user_id, query, limit, threshold)

    async def get_user_settings(self, user_id: str) -> Optional[UserFinancialSettings]:
        self._check("get_user_settings")
        return self.settings.get(user_id)

    async def get_fixed_expenses_total(self, user_id: str, month: str) -> float:
        self._check("get_fixed_expenses_total")
        return sum(
            f.amount for f in self.fixed_expenses
            if f.user_id == user_id and f.applies_to(month)
        )

    # -------------------------------------------------------------------------
    # Merchant rules
    # -------------------------------------------------------------------------

    async def get_merchant_rule(
        self,
        user_id: Optional[str],
        merchant: str,
    ) -> Optional[MerchantRule]:
        self._check("get_merchant_rule")
        return self.merchant_rules.get((user_id, merchant))

    async def list_merchant_rules(self, user_id: Optional[str]) -> list[MerchantRule]:
        self._check("list_merchant_rules")
        rules = [r for r in self.merchant_rules.values() if r.user_id == user_id]
        rules.sort(key=lambda r: r.created_at)
        return rules

    async def upsert_merchant_rule(
        self,
        user_id: str,
        merchant: str,
        category: KakeboCategory,
        confidence: float,
    ) -> MerchantRule:
        self._check("upsert_merchant_rule")
        key = (user_id, merchant)
        existing = self.merchant_rules.get(key)
        now = datetime.utcnow()

        if existing:
            rule = existing.model_copy(update={
                "category": category,
                "confidence": confidence,
                "vote_count": existing.vote_count + 1,
                "updated_at": now,
            })
        else:
            rule = MerchantRule(
                user_id=user_id,
                merchant=merchant,
                category=category,
                confidence=confidence,
                created_at=now,
                updated_at=now,
            )
        self.merchant_rules[key] = rule
        return rule

    async def increment_global_rule_vote(self, merchant: str) -> Optional[MerchantRule]:
        self._check("increment_global_rule_vote")
        key = (None, merchant)
        rule = self.merchant_rules.get(key)
        if rule is None:
            return None
        updated = rule.model_copy(update={
            "vote_count": rule.vote_count + 1,
            "updated_at": datetime.utcnow(),
        })
        self.merchant_rules[key] = updated
        return updated

    # -------------------------------------------------------------------------
    # Correction examples
    # -------------------------------------------------------------------------

    async def save_correction_example(self, example: CorrectionExample) -> CorrectionExample:
        self._check("save_correction_example")
        self.correction_examples[example.id] = example
        return example

    async def get_relevant_examples(
        self,
        user_id: str,
        category: KakeboCategory,
        limit: int = 3,
        min_confidence: float = 0.0,
        order_by: str = "confidence",
    ) -> list[CorrectionExample]:
        self._check("get_relevant_examples")
        return queries.relevant_examples(
            self.correction_examples.values(),
            user_id,
            category,
            limit,
            min_confidence=min_confidence,
            order_by=order_by,
        )

    async def query_correction_examples(
        self,
        user_id: str,
        min_confidence: float = 0.8,
        order_by: str = "confidence",
        limit: int = 3,
        keywords: Optional[list[str]] = None,
    ) -> list[CorrectionExample]:
        self._check("query_correction_examples")
        return queries.query_examples(
            self.correction_examples.values(),
            user_id,
            min_confidence=min_confidence,
            order_by=order_by,
            limit=limit,
            keywords=keywords,
        )

    async def increment_example_usage(self, example_id: str) -> None:
        self._check("increment_example_usage")
        example = self.correction_examples.get(example_id)
        if example is None:
            raise NotFoundError(f"Correction example not found: {example_id}")
        self.correction_examples[example_id] = example.model_copy(
            update={"times_used": example.times_used + 1}
        )

    async def get_example_stats(self, user_id: str) -> ExampleStats:
        self._check("get_example_stats")
        return queries.example_stats(self.correction_examples.values(), user_id)

    async def list_correction_examples(self, user_id: str) -> list[CorrectionExample]:
        self._check("list_correction_examples")
        return [e for e in self.correction_examples.values() if e.user_id == user_id]

    # -------------------------------------------------------------------------
    # Search feedback
    # -------------------------------------------------------------------------

    async def upsert_search_feedback(self, records: list[SearchFeedback]) -> int:
        self._check("upsert_search_feedback")
        for record in records:
            self.search_feedback[record.key] = record
        return len(records)

    async def list_search_feedback(
        self,
        user_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[SearchFeedback]:
        self._check("list_search_feedback")
        return [
            f for f in self.search_feedback.values()
            if (user_id is None or f.user_id == user_id)
            and (query is None or f.query == query)
        ]

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def append_event(self, event: AuditEvent) -> bool:
        self._check("append_event")
        self.audit_events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        self._check("get_events_by_correlation_id")
        events = [e for e in self.audit_events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        self._check("get_recent_events")
        events = sorted(self.audit_events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

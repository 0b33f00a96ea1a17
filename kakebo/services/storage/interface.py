"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the assistant needs: expense reads for the tools,
learning records for the feedback loop, and the append-only audit log.

All learning writes are UPSERTS keyed by a unique key. Concurrent
corrections race at the store and the last write wins; there is no
application-level locking.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional
from uuid import UUID

from kakebo.models.audit import AuditEvent
from kakebo.models.expense import (
    Expense,
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


class ExpenseStorageInterface(ABC):
    """
    Read access to expenses and budgeting settings.

    The assistant core never writes expenses.
    """

    @abstractmethod
    async def list_expenses(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        category: Optional[KakeboCategory] = None,
        min_amount: Optional[float] = None,
        max_amount: Optional[float] = None,
        order_by: str = "date",
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        """
        List a user's expenses with optional filters.

        Args:
            user_id: Owner of the expenses
            date_from: Include expenses on or after this date
            date_to: Include expenses on or before this date
            category: Filter by Kakebo category
            min_amount: Include expenses with amount >= this
            max_amount: Include expenses with amount <= this
            order_by: "date", "amount" or "created_at"
            descending: Sort direction
            limit: Maximum number of results (None = all)

        Returns:
            List of matching expenses

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def search_expenses_by_text(
        self,
        user_id: str,
        query: str,
        limit: int = 100,
        threshold: float = 0.2,
    ) -> list[ScoredExpense]:
        """
        Free-text similarity search over expense concepts.

        Args:
            user_id: Owner of the expenses
            query: Natural-language query
            limit: Maximum number of candidates
            threshold: Minimum similarity (0-1)

        Returns:
            Expenses with their similarity, most similar first

        Raises:
            StorageError: If the search fails
        """
        pass

    @abstractmethod
    async def get_user_settings(
        self,
        user_id: str,
    ) -> Optional[UserFinancialSettings]:
        """
        Get budgets and financial overview settings.

        Returns:
            The settings if the user configured them, None otherwise
        """
        pass

    @abstractmethod
    async def get_fixed_expenses_total(self, user_id: str, month: str) -> float:
        """
        Sum of the user's active fixed expenses for a month (YYYY-MM).
        """
        pass


class LearningStorageInterface(ABC):
    """
    Storage for merchant rules, correction examples and search feedback.
    """

    # -------------------------------------------------------------------------
    # Merchant rules
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_merchant_rule(
        self,
        user_id: Optional[str],
        merchant: str,
    ) -> Optional[MerchantRule]:
        """
        Get the rule for a merchant.

        Args:
            user_id: Owner of the rule; None for the global rule
            merchant: Normalized merchant token

        Returns:
            The rule if it exists, None otherwise
        """
        pass

    @abstractmethod
    async def list_merchant_rules(
        self,
        user_id: Optional[str],
    ) -> list[MerchantRule]:
        """
        List rules owned by a user (or the global rules when user_id is None).
        """
        pass

    @abstractmethod
    async def upsert_merchant_rule(
        self,
        user_id: str,
        merchant: str,
        category: KakeboCategory,
        confidence: float,
    ) -> MerchantRule:
        """
        Create or replace a user-scoped rule, keyed by (user_id, merchant).

        Returns:
            The stored rule

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def increment_global_rule_vote(self, merchant: str) -> Optional[MerchantRule]:
        """
        Add one vote to the global rule for a merchant.

        Returns:
            The updated rule, None if no global rule exists
        """
        pass

    # -------------------------------------------------------------------------
    # Correction examples
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_correction_example(
        self,
        example: CorrectionExample,
    ) -> CorrectionExample:
        """
        Persist a new correction example.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_relevant_examples(
        self,
        user_id: str,
        category: KakeboCategory,
        limit: int = 3,
        min_confidence: float = 0.0,
        order_by: str = "confidence",
    ) -> list[CorrectionExample]:
        """
        Examples whose corrected category is `category`, owned by the user
        or global, at or above `min_confidence`, ordered by `order_by`
        ("confidence" or "created_at") and then capped at `limit`.
        """
        pass

    @abstractmethod
    async def query_correction_examples(
        self,
        user_id: str,
        min_confidence: float = 0.8,
        order_by: str = "confidence",
        limit: int = 3,
        keywords: Optional[list[str]] = None,
    ) -> list[CorrectionExample]:
        """
        Examples owned by the user or global at or above a confidence floor.

        Args:
            user_id: Requesting user
            min_confidence: Confidence floor
            order_by: "confidence" or "created_at" (both descending)
            limit: Maximum number of results
            keywords: When given, keep examples whose concept contains
                any keyword (case-insensitive)
        """
        pass

    @abstractmethod
    async def increment_example_usage(self, example_id: str) -> None:
        """
        Atomically add one to an example's times_used.

        Raises:
            NotFoundError: If the example doesn't exist
        """
        pass

    @abstractmethod
    async def get_example_stats(self, user_id: str) -> ExampleStats:
        """Summary of a user's own correction examples."""
        pass

    @abstractmethod
    async def list_correction_examples(self, user_id: str) -> list[CorrectionExample]:
        """All examples owned by a user."""
        pass

    # -------------------------------------------------------------------------
    # Search feedback
    # -------------------------------------------------------------------------

    @abstractmethod
    async def upsert_search_feedback(self, records: list[SearchFeedback]) -> int:
        """
        Upsert feedback rows keyed by (user_id, query, expense_id).

        Returns:
            Number of rows written

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_search_feedback(
        self,
        user_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[SearchFeedback]:
        """
        List feedback rows.

        Args:
            user_id: Restrict to one user; None means every user
            query: Restrict to one normalized query
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one conversation turn).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass

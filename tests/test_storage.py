"""
Tests for the storage adapters and their shared query helpers.

Google Sheets is never contacted: the store gets a mocked client whose
worksheets return fixed rows.
"""

from datetime import date, datetime
from unittest.mock import MagicMock

import pytest

from kakebo.models.expense import KakeboCategory
from kakebo.models.learning import CorrectionExample, FeedbackType, SearchFeedback
from kakebo.services.storage import (
    ConnectionError,
    GoogleSheetsStore,
    NotFoundError,
    StorageError,
)
from kakebo.services.storage.google_sheets import (
    EXPENSE_COLUMNS,
    MERCHANT_RULE_COLUMNS,
    USER_SETTINGS_COLUMNS,
)
from kakebo.services.storage.queries import (
    example_stats,
    filter_expenses,
    fold,
    query_examples,
    relevant_examples,
    text_similarity,
)


# =============================================================================
# QUERY HELPERS
# =============================================================================

class TestQueryHelpers:
    """Tests for the in-process filtering shared by both adapters."""

    def test_fold_strips_accents(self):
        assert fold("Cafetería ÚLTIMO") == "cafeteria ultimo"
        assert fold(None) == ""

    def test_text_similarity(self):
        assert text_similarity("farmacia", "Farmacia Central") == 1.0
        assert text_similarity("cena restaurante", "Restaurante La Tagliatella") == 0.5
        assert text_similarity("", "Mercadona") == 0.0
        assert text_similarity("de", "Cena de empresa") == 1.0
        assert text_similarity("xy zz", "Mercadona") == 0.0

    def test_filter_expenses_by_user_date_and_amount(self, make_expense):
        expenses = [
            make_expense(10.0, date(2026, 2, 1)),
            make_expense(50.0, date(2026, 2, 10)),
            make_expense(99.0, date(2026, 2, 5), user_id="someone-else"),
            make_expense(30.0, date(2026, 1, 20)),
        ]

        rows = filter_expenses(
            expenses, "user-1",
            date_from=date(2026, 2, 1), min_amount=20.0,
        )
        assert [e.amount for e in rows] == [50.0]

    def test_filter_expenses_ordering_and_limit(self, make_expense):
        expenses = [
            make_expense(10.0, date(2026, 2, 1)),
            make_expense(50.0, date(2026, 2, 3)),
            make_expense(30.0, date(2026, 2, 2)),
        ]
        by_amount = filter_expenses(expenses, "user-1", order_by="amount", descending=True, limit=2)
        assert [e.amount for e in by_amount] == [50.0, 30.0]

        by_date = filter_expenses(expenses, "user-1")
        assert [e.expense_date.day for e in by_date] == [1, 2, 3]

    def test_examples_visible_to_user_include_global(self):
        examples = [
            CorrectionExample(user_id="user-1", concept="Netflix", confidence=0.9,
                              old_category=KakeboCategory.EXTRA, new_category=KakeboCategory.OPTIONAL),
            CorrectionExample(user_id=None, concept="Spotify", confidence=1.0,
                              old_category=KakeboCategory.EXTRA, new_category=KakeboCategory.OPTIONAL),
            CorrectionExample(user_id="other", concept="HBO", confidence=1.0,
                              old_category=KakeboCategory.EXTRA, new_category=KakeboCategory.OPTIONAL),
        ]

        relevant = relevant_examples(examples, "user-1", KakeboCategory.OPTIONAL, limit=5)
        assert [e.concept for e in relevant] == ["Netflix", "Spotify"]

        keyword_hits = query_examples(
            examples, "user-1", min_confidence=0.8, order_by="confidence", limit=5,
            keywords=["spotify"],
        )
        assert [e.concept for e in keyword_hits] == ["Spotify"]

    def test_example_stats(self):
        examples = [
            CorrectionExample(user_id="user-1", concept="a",
                              old_category=KakeboCategory.OPTIONAL, new_category=KakeboCategory.SURVIVAL),
            CorrectionExample(user_id="user-1", concept="b",
                              old_category=KakeboCategory.OPTIONAL, new_category=KakeboCategory.CULTURE),
        ]
        stats = example_stats(examples, "user-1")
        assert stats.total_examples == 2
        assert stats.most_corrected == "optional"
        assert stats.correction_count == 2
        assert example_stats(examples, "nobody").total_examples == 0


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class TestInMemoryStore:
    """Tests for the in-memory adapter."""

    @pytest.mark.asyncio
    async def test_injected_failure(self, store, user_id):
        store.fail_on("list_expenses", ConnectionError("connection timeout"))
        with pytest.raises(ConnectionError):
            await store.list_expenses(user_id)

        store.clear_failures()
        assert await store.list_expenses(user_id) == []

    @pytest.mark.asyncio
    async def test_upsert_rule_increments_votes(self, store, user_id):
        first = await store.upsert_merchant_rule(user_id, "mercadona", KakeboCategory.SURVIVAL, 1.0)
        second = await store.upsert_merchant_rule(user_id, "mercadona", KakeboCategory.OPTIONAL, 1.0)

        assert first.vote_count == 1
        assert second.vote_count == 2
        assert second.category == KakeboCategory.OPTIONAL
        assert second.id == first.id

    @pytest.mark.asyncio
    async def test_global_vote_needs_existing_rule(self, store):
        assert await store.increment_global_rule_vote("mercadona") is None

    @pytest.mark.asyncio
    async def test_feedback_upsert_replaces_by_key(self, store, user_id):
        await store.upsert_search_feedback([SearchFeedback(
            user_id=user_id, query="vicios", expense_id="e1", feedback_type=FeedbackType.CORRECT,
        )])
        await store.upsert_search_feedback([SearchFeedback(
            user_id=user_id, query="vicios", expense_id="e1", feedback_type=FeedbackType.INCORRECT,
        )])

        rows = await store.list_search_feedback(user_id=user_id, query="vicios")
        assert len(rows) == 1
        assert rows[0].feedback_type == FeedbackType.INCORRECT

    @pytest.mark.asyncio
    async def test_increment_missing_example(self, store):
        with pytest.raises(NotFoundError):
            await store.increment_example_usage("missing")


# =============================================================================
# GOOGLE SHEETS STORE
# =============================================================================

def _sheet(header, *rows):
    sheet = MagicMock()
    sheet.get_all_values.return_value = [header, *rows]
    return sheet


@pytest.fixture
def sheets_client():
    return MagicMock()


@pytest.fixture
def sheets_store(sheets_client):
    return GoogleSheetsStore(client=sheets_client)


class TestGoogleSheetsStore:
    """Tests for row conversion and filtering in the Sheets adapter."""

    def test_expense_row_uses_storage_tokens(self, make_expense):
        expense = make_expense(12.5, date(2026, 2, 3), KakeboCategory.SURVIVAL, concept="Farmacia")
        row = GoogleSheetsStore._expense_to_row(expense)

        assert row[2] == "2026-02-03"
        assert row[3] == "12.5"
        assert row[4] == "supervivencia"

        parsed = GoogleSheetsStore._row_to_expense(row)
        assert parsed.category == KakeboCategory.SURVIVAL
        assert parsed.amount == 12.5

    @pytest.mark.asyncio
    async def test_list_expenses_skips_malformed_rows(self, sheets_store, sheets_client):
        sheets_client.expenses_sheet.return_value = _sheet(
            EXPENSE_COLUMNS,
            ["e1", "user-1", "2026-02-01", "20", "opcional", "Cine", "2026-02-01T10:00:00"],
            ["e2", "user-1", "not-a-date", "5", "extra", "Roto", ""],
            ["", "", "", "", "", "", ""],
            ["e3", "user-2", "2026-02-02", "9", "cultura", "Libro", ""],
        )

        expenses = await sheets_store.list_expenses("user-1")

        assert [e.id for e in expenses] == ["e1"]
        assert expenses[0].category == KakeboCategory.OPTIONAL

    @pytest.mark.asyncio
    async def test_read_failure_is_storage_error(self, sheets_store, sheets_client):
        sheets_client.expenses_sheet.return_value.get_all_values.side_effect = RuntimeError("quota")
        with pytest.raises(StorageError):
            await sheets_store.list_expenses("user-1")

    @pytest.mark.asyncio
    async def test_user_settings_budget_columns(self, sheets_store, sheets_client):
        sheets_client.user_settings_sheet.return_value = _sheet(
            USER_SETTINGS_COLUMNS,
            ["user-1", "400", "200", "50", "", "2000", "300", "1500"],
        )

        settings = await sheets_store.get_user_settings("user-1")

        assert settings.budget_for(KakeboCategory.SURVIVAL) == 400.0
        assert settings.budget_for(KakeboCategory.EXTRA) == 0.0
        assert settings.monthly_income == 2000.0
        assert await sheets_store.get_user_settings("nobody") is None

    @pytest.mark.asyncio
    async def test_upsert_existing_rule_updates_in_place(self, sheets_store, sheets_client):
        row = [
            "r1", "user-1", "mercadona", "opcional", "1.0", "1",
            datetime(2026, 1, 1).isoformat(), datetime(2026, 1, 1).isoformat(),
        ]
        sheet = _sheet(MERCHANT_RULE_COLUMNS, row)
        sheet.row_values.return_value = row
        sheets_client.merchant_rules_sheet.return_value = sheet

        rule = await sheets_store.upsert_merchant_rule(
            "user-1", "mercadona", KakeboCategory.SURVIVAL, 1.0
        )

        assert rule.id == "r1"
        assert rule.vote_count == 2
        sheet.update.assert_called_once()
        assert sheet.update.call_args.kwargs["range_name"] == "A2"
        assert sheet.update.call_args.kwargs["values"][0][3] == "supervivencia"
        sheet.append_row.assert_not_called()

    @pytest.mark.asyncio
    async def test_upsert_new_rule_appends(self, sheets_store, sheets_client):
        sheet = _sheet(MERCHANT_RULE_COLUMNS)
        sheets_client.merchant_rules_sheet.return_value = sheet

        rule = await sheets_store.upsert_merchant_rule("user-1", "zara", KakeboCategory.OPTIONAL, 1.0)

        assert rule.vote_count == 1
        sheet.append_row.assert_called_once()

"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is a supported backend because:
1. Users can view their expenses and learned rules directly in Sheets
2. No database setup required
3. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions: upserts find the row by key and overwrite it
- Limited query capabilities (we filter in Python, see queries.py)

One worksheet per table, created with a header row on first use.
Categories are written with their Spanish storage tokens.
"""

import json
from datetime import date, datetime
from typing import Callable, Optional, TypeVar
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from kakebo.config import get_settings
from kakebo.models.audit import AuditEvent, AuditEventType, AuditSeverity
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
    FeedbackType,
    MerchantRule,
    SearchFeedback,
)
from kakebo.services.storage import queries
from kakebo.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    ExpenseStorageInterface,
    LearningStorageInterface,
    NotFoundError,
    StorageError,
)


T = TypeVar("T")


EXPENSE_COLUMNS = [
    "id", "user_id", "date", "amount", "category", "concept", "created_at",
]

USER_SETTINGS_COLUMNS = [
    "user_id",
    "budget_supervivencia",
    "budget_opcional",
    "budget_cultura",
    "budget_extra",
    "monthly_income",
    "monthly_saving_goal",
    "current_balance",
]

FIXED_EXPENSE_COLUMNS = [
    "id", "user_id", "concept", "amount", "start_ym", "end_ym", "active",
]

MERCHANT_RULE_COLUMNS = [
    "id", "user_id", "merchant", "category", "confidence", "vote_count",
    "created_at", "updated_at",
]

CORRECTION_EXAMPLE_COLUMNS = [
    "id", "user_id", "concept", "old_category", "new_category", "merchant",
    "confidence", "times_used", "created_at",
]

SEARCH_FEEDBACK_COLUMNS = [
    "user_id", "query", "expense_id", "feedback_type", "created_at",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_BUDGET_COLUMNS = {
    KakeboCategory.SURVIVAL: 1,
    KakeboCategory.OPTIONAL: 2,
    KakeboCategory.CULTURE: 3,
    KakeboCategory.EXTRA: 4,
}


def _safe_get(row: list, index: int, default: str = "") -> str:
    """Handle missing columns gracefully."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


def _float(value: str) -> float:
    return float(value) if value else 0.0


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with a header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def expenses_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.expenses_sheet_name, EXPENSE_COLUMNS)

    def user_settings_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.user_settings_sheet_name, USER_SETTINGS_COLUMNS)

    def fixed_expenses_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.fixed_expenses_sheet_name, FIXED_EXPENSE_COLUMNS)

    def merchant_rules_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.merchant_rules_sheet_name, MERCHANT_RULE_COLUMNS)

    def correction_examples_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(
            self._settings.correction_examples_sheet_name, CORRECTION_EXAMPLE_COLUMNS
        )

    def search_feedback_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(
            self._settings.search_feedback_sheet_name, SEARCH_FEEDBACK_COLUMNS
        )

    def audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self.get_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


class GoogleSheetsStore(
    ExpenseStorageInterface,
    LearningStorageInterface,
    AuditStorageInterface,
):
    """
    Google Sheets implementation of every storage interface.

    Rows are read whole and filtered in Python.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    @staticmethod
    def _expense_to_row(expense: Expense) -> list:
        return [
            expense.id,
            expense.user_id,
            expense.expense_date.isoformat(),
            str(expense.amount),
            expense.category.to_storage(),
            expense.concept,
            expense.created_at.isoformat(),
        ]

    @staticmethod
    def _row_to_expense(row: list) -> Expense:
        created = _safe_get(row, 6)
        return Expense(
            id=_safe_get(row, 0),
            user_id=_safe_get(row, 1),
            expense_date=date.fromisoformat(_safe_get(row, 2)),
            amount=_float(_safe_get(row, 3)),
            category=KakeboCategory.from_storage(_safe_get(row, 4, "extra")),
            concept=_safe_get(row, 5),
            created_at=datetime.fromisoformat(created) if created else datetime.utcnow(),
        )

    @staticmethod
    def _row_to_settings(row: list) -> UserFinancialSettings:
        return UserFinancialSettings(
            user_id=_safe_get(row, 0),
            budgets={
                category: _float(_safe_get(row, index))
                for category, index in _BUDGET_COLUMNS.items()
            },
            monthly_income=_float(_safe_get(row, 5)),
            monthly_saving_goal=_float(_safe_get(row, 6)),
            current_balance=_float(_safe_get(row, 7)),
        )

    @staticmethod
    def _row_to_fixed_expense(row: list) -> FixedExpense:
        return FixedExpense(
            id=_safe_get(row, 0),
            user_id=_safe_get(row, 1),
            concept=_safe_get(row, 2),
            amount=_float(_safe_get(row, 3)),
            start_month=_safe_get(row, 4),
            end_month=_safe_get(row, 5) or None,
            active=_safe_get(row, 6, "True").lower() == "true",
        )

    @staticmethod
    def _rule_to_row(rule: MerchantRule) -> list:
        return [
            rule.id,
            rule.user_id or "",
            rule.merchant,
            rule.category.to_storage(),
            str(rule.confidence),
            str(rule.vote_count),
            rule.created_at.isoformat(),
            rule.updated_at.isoformat(),
        ]

    @staticmethod
    def _row_to_rule(row: list) -> MerchantRule:
        return MerchantRule(
            id=_safe_get(row, 0),
            user_id=_safe_get(row, 1) or None,
            merchant=_safe_get(row, 2),
            category=KakeboCategory.from_storage(_safe_get(row, 3)),
            confidence=_float(_safe_get(row, 4, "1.0")),
            vote_count=int(_safe_get(row, 5, "1")),
            created_at=datetime.fromisoformat(_safe_get(row, 6)),
            updated_at=datetime.fromisoformat(_safe_get(row, 7)),
        )

    @staticmethod
    def _example_to_row(example: CorrectionExample) -> list:
        return [
            example.id,
            example.user_id or "",
            example.concept,
            example.old_category.to_storage(),
            example.new_category.to_storage(),
            example.merchant or "",
            str(example.confidence),
            str(example.times_used),
            example.created_at.isoformat(),
        ]

    @staticmethod
    def _row_to_example(row: list) -> CorrectionExample:
        return CorrectionExample(
            id=_safe_get(row, 0),
            user_id=_safe_get(row, 1) or None,
            concept=_safe_get(row, 2),
            old_category=KakeboCategory.from_storage(_safe_get(row, 3)),
            new_category=KakeboCategory.from_storage(_safe_get(row, 4)),
            merchant=_safe_get(row, 5) or None,
            confidence=_float(_safe_get(row, 6, "1.0")),
            times_used=int(_safe_get(row, 7, "0")),
            created_at=datetime.fromisoformat(_safe_get(row, 8)),
        )

    @staticmethod
    def _feedback_to_row(feedback: SearchFeedback) -> list:
        return [
            feedback.user_id,
            feedback.query,
            feedback.expense_id,
            feedback.feedback_type.value,
            feedback.created_at.isoformat(),
        ]

    @staticmethod
    def _row_to_feedback(row: list) -> SearchFeedback:
        return SearchFeedback(
            user_id=_safe_get(row, 0),
            query=_safe_get(row, 1),
            expense_id=_safe_get(row, 2),
            feedback_type=FeedbackType(_safe_get(row, 3)),
            created_at=datetime.fromisoformat(_safe_get(row, 4)),
        )

    @staticmethod
    def _row_to_event(row: list) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            user_id=_safe_get(row, 4) or None,
            entity_type=_safe_get(row, 5) or None,
            entity_id=_safe_get(row, 6) or None,
            correlation_id=UUID(_safe_get(row, 7)) if _safe_get(row, 7) else None,
            description=_safe_get(row, 8),
            details=json.loads(_safe_get(row, 9)) if _safe_get(row, 9) else {},
            error_message=_safe_get(row, 10) or None,
            is_user_action=_safe_get(row, 11).lower() == "true",
        )

    @staticmethod
    def _load(sheet: gspread.Worksheet, convert: Callable[[list], T]) -> list[T]:
        """Convert every data row, skipping empty and malformed rows."""
        items = []
        for row in sheet.get_all_values()[1:]:  # Skip header
            if not row or not row[0]:
                continue
            try:
                items.append(convert(row))
            except (ValueError, KeyError):
                continue  # Skip malformed rows
        return items

    @staticmethod
    def _find_row(sheet: gspread.Worksheet, match: Callable[[list], bool]) -> Optional[int]:
        """1-based sheet row index of the first matching data row."""
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):  # Row 1 is header
            if row and match(row):
                return idx
        return None

    # =========================================================================
    # EXPENSES
    # =========================================================================

    async def _all_expenses(self) -> list[Expense]:
        try:
            return self._load(self._client.expenses_sheet(), self._row_to_expense)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read expenses: {e}")

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
        return queries.filter_expenses(
            await self._all_expenses(),
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
        return queries.search_by_text(
            await self._all_expenses(), user_id, query, limit, threshold
        )

    async def get_user_settings(self, user_id: str) -> Optional[UserFinancialSettings]:
        try:
            for row in self._client.user_settings_sheet().get_all_values()[1:]:
                if row and row[0] == user_id:
                    return self._row_to_settings(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get user settings: {e}")

    async def get_fixed_expenses_total(self, user_id: str, month: str) -> float:
        try:
            fixed = self._load(self._client.fixed_expenses_sheet(), self._row_to_fixed_expense)
        except Exception as e:
            raise StorageError(f"Failed to read fixed expenses: {e}")
        return sum(f.amount for f in fixed if f.user_id == user_id and f.applies_to(month))

    # =========================================================================
    # MERCHANT RULES
    # =========================================================================

    async def _all_rules(self) -> list[MerchantRule]:
        try:
            return self._load(self._client.merchant_rules_sheet(), self._row_to_rule)
        except Exception as e:
            raise StorageError(f"Failed to read merchant rules: {e}")

    async def get_merchant_rule(
        self,
        user_id: Optional[str],
        merchant: str,
    ) -> Optional[MerchantRule]:
        for rule in await self._all_rules():
            if rule.user_id == user_id and rule.merchant == merchant:
                return rule
        return None

    async def list_merchant_rules(self, user_id: Optional[str]) -> list[MerchantRule]:
        rules = [r for r in await self._all_rules() if r.user_id == user_id]
        rules.sort(key=lambda r: r.created_at)
        return rules

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upsert_merchant_rule(
        self,
        user_id: str,
        merchant: str,
        category: KakeboCategory,
        confidence: float,
    ) -> MerchantRule:
        try:
            sheet = self._client.merchant_rules_sheet()
            idx = self._find_row(
                sheet, lambda row: _safe_get(row, 1) == user_id and _safe_get(row, 2) == merchant
            )
            now = datetime.utcnow()

            if idx is None:
                rule = MerchantRule(
                    user_id=user_id,
                    merchant=merchant,
                    category=category,
                    confidence=confidence,
                    created_at=now,
                    updated_at=now,
                )
                sheet.append_row(self._rule_to_row(rule), value_input_option="RAW")
                return rule

            existing = self._row_to_rule(sheet.row_values(idx))
            rule = existing.model_copy(update={
                "category": category,
                "confidence": confidence,
                "vote_count": existing.vote_count + 1,
                "updated_at": now,
            })
            sheet.update(range_name=f"A{idx}", values=[self._rule_to_row(rule)])
            return rule
        except Exception as e:
            raise StorageError(f"Failed to upsert merchant rule: {e}")

    async def increment_global_rule_vote(self, merchant: str) -> Optional[MerchantRule]:
        try:
            sheet = self._client.merchant_rules_sheet()
            idx = self._find_row(
                sheet, lambda row: not _safe_get(row, 1) and _safe_get(row, 2) == merchant
            )
            if idx is None:
                return None

            rule = self._row_to_rule(sheet.row_values(idx))
            updated = rule.model_copy(update={
                "vote_count": rule.vote_count + 1,
                "updated_at": datetime.utcnow(),
            })
            sheet.update(range_name=f"A{idx}", values=[self._rule_to_row(updated)])
            return updated
        except Exception as e:
            raise StorageError(f"Failed to increment global rule vote: {e}")

    # =========================================================================
    # CORRECTION EXAMPLES
    # =========================================================================

    async def _all_examples(self) -> list[CorrectionExample]:
        try:
            return self._load(self._client.correction_examples_sheet(), self._row_to_example)
        except Exception as e:
            raise StorageError(f"Failed to read correction examples: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_correction_example(self, example: CorrectionExample) -> CorrectionExample:
        try:
            sheet = self._client.correction_examples_sheet()
            sheet.append_row(self._example_to_row(example), value_input_option="RAW")
            return example
        except Exception as e:
            raise StorageError(f"Failed to save correction example: {e}")

    async def get_relevant_examples(
        self,
        user_id: str,
        category: KakeboCategory,
        limit: int = 3,
        min_confidence: float = 0.0,
        order_by: str = "confidence",
    ) -> list[CorrectionExample]:
        return queries.relevant_examples(
            await self._all_examples(),
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
        return queries.query_examples(
            await self._all_examples(),
            user_id,
            min_confidence=min_confidence,
            order_by=order_by,
            limit=limit,
            keywords=keywords,
        )

    async def increment_example_usage(self, example_id: str) -> None:
        try:
            sheet = self._client.correction_examples_sheet()
            idx = self._find_row(sheet, lambda row: row[0] == example_id)
        except Exception as e:
            raise StorageError(f"Failed to find correction example: {e}")

        if idx is None:
            raise NotFoundError(f"Correction example not found: {example_id}")

        try:
            times_used_col = CORRECTION_EXAMPLE_COLUMNS.index("times_used") + 1
            current = sheet.cell(idx, times_used_col).value
            sheet.update_cell(idx, times_used_col, str(int(current or 0) + 1))
        except Exception as e:
            raise StorageError(f"Failed to increment example usage: {e}")

    async def get_example_stats(self, user_id: str) -> ExampleStats:
        return queries.example_stats(await self._all_examples(), user_id)

    async def list_correction_examples(self, user_id: str) -> list[CorrectionExample]:
        return [e for e in await self._all_examples() if e.user_id == user_id]

    # =========================================================================
    # SEARCH FEEDBACK
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upsert_search_feedback(self, records: list[SearchFeedback]) -> int:
        try:
            sheet = self._client.search_feedback_sheet()
            existing = {
                (_safe_get(row, 0), _safe_get(row, 1), _safe_get(row, 2)): idx
                for idx, row in enumerate(sheet.get_all_values()[1:], start=2)
                if row
            }

            for record in records:
                row = self._feedback_to_row(record)
                idx = existing.get(record.key)
                if idx is None:
                    sheet.append_row(row, value_input_option="RAW")
                    existing[record.key] = -1  # appended; later duplicates overwrite below
                elif idx == -1:
                    idx = self._find_row(
                        sheet,
                        lambda r: (_safe_get(r, 0), _safe_get(r, 1), _safe_get(r, 2)) == record.key,
                    )
                    sheet.update(range_name=f"A{idx}", values=[row])
                else:
                    sheet.update(range_name=f"A{idx}", values=[row])
            return len(records)
        except Exception as e:
            raise StorageError(f"Failed to upsert search feedback: {e}")

    async def list_search_feedback(
        self,
        user_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[SearchFeedback]:
        try:
            rows = self._load(self._client.search_feedback_sheet(), self._row_to_feedback)
        except Exception as e:
            raise StorageError(f"Failed to read search feedback: {e}")
        return [
            f for f in rows
            if (user_id is None or f.user_id == user_id)
            and (query is None or f.query == query)
        ]

    # =========================================================================
    # AUDIT
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            sheet = self._client.audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._load(self._client.audit_sheet(), self._row_to_event)
                if e.correlation_id == correlation_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        try:
            events = self._load(self._client.audit_sheet(), self._row_to_event)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

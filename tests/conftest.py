"""
Shared fixtures for the Kakebo assistant tests.

No test talks to Gemini or Google Sheets: the store is the in-memory
implementation and the language model is a scripted fake.
"""

from datetime import date, timedelta
from typing import Callable, Optional, Union

import pytest

from kakebo.agents import LanguageModelClient
from kakebo.config import PolicySettings, SearchSettings
from kakebo.models.conversation import ChatMessage, ModelTurn
from kakebo.models.expense import Expense, KakeboCategory, UserFinancialSettings
from kakebo.services.storage import InMemoryStore
from kakebo.tools import ToolContext


USER_ID = "user-1"
TODAY = date(2026, 2, 15)


def build_expense(
    amount: float,
    on: date,
    category: KakeboCategory = KakeboCategory.SURVIVAL,
    concept: str = "Compra",
    user_id: str = USER_ID,
    expense_id: Optional[str] = None,
) -> Expense:
    data = dict(
        user_id=user_id,
        amount=amount,
        category=category,
        expense_date=on,
        concept=concept,
    )
    if expense_id:
        data["id"] = expense_id
    return Expense(**data)


Step = Union[ModelTurn, Callable[[list[ChatMessage], Optional[list[dict]]], ModelTurn]]


class ScriptedModelClient(LanguageModelClient):
    """
    Fake language model that replays a script.

    Each step is a ModelTurn or a callable receiving (messages, tools),
    so a synthesis step can compose its answer from the tool results.
    """

    model_name = "scripted-model"

    def __init__(self, *steps: Step):
        self._steps = list(steps)
        self.calls: list[tuple[list[ChatMessage], Optional[list[dict]]]] = []

    async def complete(self, messages, tools=None) -> ModelTurn:
        self.calls.append((list(messages), tools))
        step = self._steps.pop(0)
        if callable(step):
            return step(messages, tools)
        return step


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
def make_expense():
    """Factory for expenses owned by the test user."""
    return build_expense


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def seeded_store() -> InMemoryStore:
    """
    Store with three months of history and a budget.

    February 2026 (up to the 15th) holds 12 expenses, 5 survival
    (Mercadona) and 7 optional (restaurants): 12 x 25 EUR = 300 EUR.
    November 2025 to January 2026 hold 30 survival expenses of 40 EUR.
    """
    store = InMemoryStore()

    for i in range(5):
        store.add_expenses(build_expense(
            25.0, date(2026, 2, 1 + i * 3), KakeboCategory.SURVIVAL,
            concept=f"Mercadona compra {i}", expense_id=f"feb-s{i}",
        ))
    for i in range(7):
        store.add_expenses(build_expense(
            25.0, date(2026, 2, 2 + i * 2), KakeboCategory.OPTIONAL,
            concept=f"Restaurante cena {i}", expense_id=f"feb-o{i}",
        ))

    start = date(2025, 11, 1)
    for i in range(30):
        store.add_expenses(build_expense(
            40.0, start + timedelta(days=i * 3), KakeboCategory.SURVIVAL,
            concept="Mercadona", expense_id=f"hist-{i}",
        ))

    store.settings[USER_ID] = UserFinancialSettings(
        user_id=USER_ID,
        budgets={
            KakeboCategory.SURVIVAL: 400.0,
            KakeboCategory.OPTIONAL: 200.0,
            KakeboCategory.CULTURE: 50.0,
            KakeboCategory.EXTRA: 50.0,
        },
        monthly_income=2000.0,
        monthly_saving_goal=300.0,
        current_balance=1500.0,
    )
    return store


@pytest.fixture
def make_context(today):
    """Factory for a ToolContext over a given store."""

    def _make(store, **overrides) -> ToolContext:
        data = dict(
            store=store,
            user_id=USER_ID,
            today=today,
            search=SearchSettings(),
            policy=PolicySettings(),
        )
        data.update(overrides)
        return ToolContext(**data)

    return _make

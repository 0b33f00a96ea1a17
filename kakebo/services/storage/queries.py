"""
In-process query helpers shared by the storage adapters.

Neither adapter has a query engine: the in-memory store keeps plain lists
and Google Sheets returns every row of a worksheet. Both load the rows and
filter them here, so the two adapters answer every query identically.
"""

import re
import unicodedata
from collections import Counter
from datetime import date
from typing import Iterable, Optional

from kakebo.models.expense import Expense, KakeboCategory, ScoredExpense
from kakebo.models.learning import CorrectionExample, ExampleStats


def fold(text: str) -> str:
    """Lowercase and strip accents ("Cafetería" -> "cafeteria")."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower()


def filter_expenses(
    expenses: Iterable[Expense],
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
    """Apply the ExpenseStorageInterface.list_expenses filters in Python."""
    rows = []
    for expense in expenses:
        if expense.user_id != user_id:
            continue
        if date_from and expense.expense_date < date_from:
            continue
        if date_to and expense.expense_date > date_to:
            continue
        if category and expense.category != category:
            continue
        if min_amount is not None and expense.amount < min_amount:
            continue
        if max_amount is not None and expense.amount > max_amount:
            continue
        rows.append(expense)

    if order_by == "amount":
        rows.sort(key=lambda e: e.amount, reverse=descending)
    elif order_by == "created_at":
        rows.sort(key=lambda e: e.created_at, reverse=descending)
    else:
        rows.sort(key=lambda e: (e.expense_date, e.created_at), reverse=descending)

    return rows[:limit] if limit is not None else rows


def text_similarity(query: str, concept: str) -> float:
    """
    Lexical similarity between a query and an expense concept.

    1.0 when the whole query appears in the concept, otherwise the share
    of query words (3+ chars) found in the concept.
    """
    q = fold(query).strip()
    c = fold(concept)
    if not q or not c:
        return 0.0
    if q in c:
        return 1.0

    words = [w for w in re.split(r"\W+", q) if len(w) >= 3]
    if not words:
        return 0.0
    hits = sum(1 for w in words if w in c)
    return hits / len(words)


def search_by_text(
    expenses: Iterable[Expense],
    user_id: str,
    query: str,
    limit: int,
    threshold: float,
) -> list[ScoredExpense]:
    scored = []
    for expense in expenses:
        if expense.user_id != user_id:
            continue
        similarity = text_similarity(query, expense.concept)
        if similarity >= threshold and similarity > 0:
            scored.append(ScoredExpense(expense=expense, similarity=similarity))

    scored.sort(key=lambda s: s.similarity, reverse=True)
    return scored[:limit]


def _visible_to(example: CorrectionExample, user_id: str) -> bool:
    return example.user_id is None or example.user_id == user_id


def relevant_examples(
    examples: Iterable[CorrectionExample],
    user_id: str,
    category: KakeboCategory,
    limit: int,
    min_confidence: float = 0.0,
    order_by: str = "confidence",
) -> list[CorrectionExample]:
    """
    Examples corrected INTO `category` at or above `min_confidence`.

    By confidence, user rows come before global ones. By created_at, the
    newest rows come first whoever owns them. The cap applies last.
    """
    rows = [
        e for e in examples
        if _visible_to(e, user_id)
        and e.new_category == category
        and e.confidence >= min_confidence
    ]
    if order_by == "created_at":
        rows.sort(key=lambda e: e.created_at, reverse=True)
    else:
        rows.sort(
            key=lambda e: (e.user_id is not None, e.confidence, e.created_at),
            reverse=True,
        )
    return rows[:limit]


def query_examples(
    examples: Iterable[CorrectionExample],
    user_id: str,
    min_confidence: float,
    order_by: str,
    limit: int,
    keywords: Optional[list[str]] = None,
) -> list[CorrectionExample]:
    rows = []
    for example in examples:
        if not _visible_to(example, user_id):
            continue
        if example.confidence < min_confidence:
            continue
        if keywords:
            concept = fold(example.concept)
            if not any(fold(kw) in concept for kw in keywords):
                continue
        rows.append(example)

    if order_by == "created_at":
        rows.sort(key=lambda e: e.created_at, reverse=True)
    else:
        rows.sort(key=lambda e: (e.confidence, e.created_at), reverse=True)
    return rows[:limit]


def example_stats(examples: Iterable[CorrectionExample], user_id: str) -> ExampleStats:
    """
    examples_by_category counts corrected-to categories.
    most_corrected is the category the model got wrong most often.
    """
    own = [e for e in examples if e.user_id == user_id]
    if not own:
        return ExampleStats()

    by_category = Counter(e.new_category.value for e in own)
    wrong = Counter(e.old_category.value for e in own)
    most_corrected, correction_count = wrong.most_common(1)[0]

    return ExampleStats(
        total_examples=len(own),
        examples_by_category=dict(by_category),
        most_corrected=most_corrected,
        correction_count=correction_count,
    )

"""Tests for merchant rules, correction examples and search feedback."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from kakebo.config import PolicySettings
from kakebo.learning import (
    Correction,
    ExampleRetriever,
    MerchantRuleLearner,
    SearchFeedbackEngine,
    apply_feedback,
    format_examples_for_prompt,
    normalize_query,
)
from kakebo.models.expense import KakeboCategory, ScoredExpense
from kakebo.models.learning import (
    CorrectionExample,
    FeedbackType,
    MerchantRule,
    QueryFeedback,
    SearchFeedback,
)
from kakebo.services.storage import ConnectionError, StorageError


SURVIVAL = KakeboCategory.SURVIVAL
OPTIONAL = KakeboCategory.OPTIONAL
CULTURE = KakeboCategory.CULTURE


class TestMerchantRuleLearner:
    """Tests for learning rules from corrections."""

    @pytest.mark.asyncio
    async def test_explicit_correction_creates_rule(self, store, user_id):
        """A correction creates a user rule with confidence 1.0."""
        learner = MerchantRuleLearner(store)

        result = await learner.learn_from_correction(
            user_id, "Mercadona compra semanal", OPTIONAL, SURVIVAL
        )

        assert result.success
        assert result.merchant == "mercadona"
        assert result.rule_created and not result.rule_updated
        assert "aprendida" in result.message
        rule = store.merchant_rules[(user_id, "mercadona")]
        assert rule.category == SURVIVAL
        assert rule.confidence == 1.0

    @pytest.mark.asyncio
    async def test_repeated_correction_updates_rule(self, store, user_id):
        """The second correction for a merchant is an update, last write wins."""
        learner = MerchantRuleLearner(store)
        await learner.learn_from_correction(user_id, "Netflix", CULTURE, OPTIONAL)

        result = await learner.learn_from_correction(user_id, "Netflix mensual", OPTIONAL, CULTURE)

        assert result.rule_updated and not result.rule_created
        rule = store.merchant_rules[(user_id, "netflix")]
        assert rule.category == CULTURE
        assert rule.vote_count == 2
        assert 0.0 <= rule.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_no_merchant_is_a_soft_no_op(self, store, user_id):
        """Nothing to learn from is still a success, with no rule."""
        result = await MerchantRuleLearner(store).learn_from_correction(
            user_id, "ab", OPTIONAL, SURVIVAL
        )
        assert result.success
        assert result.merchant is None
        assert store.merchant_rules == {}

    @pytest.mark.asyncio
    async def test_agreeing_global_rule_gets_a_vote(self, store, user_id):
        store.add_rule(MerchantRule(user_id=None, merchant="lidl", category=SURVIVAL, vote_count=4))

        result = await MerchantRuleLearner(store).learn_from_correction(
            user_id, "Lidl", OPTIONAL, SURVIVAL
        )

        assert result.global_vote_incremented
        assert store.merchant_rules[(None, "lidl")].vote_count == 5

    @pytest.mark.asyncio
    async def test_disagreeing_global_rule_is_untouched(self, store, user_id):
        store.add_rule(MerchantRule(user_id=None, merchant="lidl", category=OPTIONAL, vote_count=4))

        result = await MerchantRuleLearner(store).learn_from_correction(
            user_id, "Lidl", OPTIONAL, SURVIVAL
        )

        assert not result.global_vote_incremented
        assert store.merchant_rules[(None, "lidl")].vote_count == 4

    @pytest.mark.asyncio
    async def test_global_vote_failure_keeps_user_rule(self, store, user_id):
        store.add_rule(MerchantRule(user_id=None, merchant="lidl", category=SURVIVAL))
        store.fail_on("increment_global_rule_vote", ConnectionError("timeout"))

        result = await MerchantRuleLearner(store).learn_from_correction(
            user_id, "Lidl", OPTIONAL, SURVIVAL
        )

        assert result.success
        assert not result.global_vote_incremented
        assert (user_id, "lidl") in store.merchant_rules

    @pytest.mark.asyncio
    async def test_upsert_failure_is_reported(self, store, user_id):
        store.fail_on("upsert_merchant_rule", ConnectionError("connection timeout"))

        result = await MerchantRuleLearner(store).learn_from_correction(
            user_id, "Mercadona", OPTIONAL, SURVIVAL
        )

        assert not result.success
        assert result.merchant == "mercadona"
        assert "connection timeout" in result.message

    @pytest.mark.asyncio
    async def test_audit_logged(self, store, user_id):
        audit = AsyncMock()
        await MerchantRuleLearner(store, audit).learn_from_correction(
            user_id, "Mercadona", OPTIONAL, SURVIVAL
        )
        audit.log_correction_learned.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_batch_gives_one_result_per_correction(self, store, user_id):
        corrections = [
            Correction(concept="Mercadona", old_category=OPTIONAL, new_category=SURVIVAL),
            Correction(concept="ab", old_category=OPTIONAL, new_category=SURVIVAL),
            Correction(concept="Mercadona", old_category=SURVIVAL, new_category=OPTIONAL),
        ]

        results = await MerchantRuleLearner(store).learn_from_batch(user_id, corrections)

        assert len(results) == 3
        assert results[0].rule_created
        assert results[1].merchant is None
        assert results[2].rule_updated
        assert store.merchant_rules[(user_id, "mercadona")].category == OPTIONAL

    @pytest.mark.asyncio
    async def test_learning_stats(self, store, user_id):
        learner = MerchantRuleLearner(store)
        await learner.learn_from_correction(user_id, "Mercadona", OPTIONAL, SURVIVAL)
        await learner.learn_from_correction(user_id, "Lidl", OPTIONAL, SURVIVAL)
        await learner.learn_from_correction(user_id, "Netflix", SURVIVAL, OPTIONAL)

        stats = await learner.get_learning_stats(user_id)

        assert stats.total_rules == 3
        assert stats.rules_by_category == {"survival": 2, "optional": 1}

    @pytest.mark.asyncio
    async def test_learning_stats_on_failure(self, store, user_id):
        store.fail_on("list_merchant_rules", ConnectionError("down"))
        stats = await MerchantRuleLearner(store).get_learning_stats(user_id)
        assert stats.total_rules == 0


def _example(user_id, concept, old, new, confidence=1.0, times_used=0, age_days=0):
    return CorrectionExample(
        user_id=user_id,
        concept=concept,
        old_category=old,
        new_category=new,
        confidence=confidence,
        times_used=times_used,
        created_at=datetime(2026, 2, 15) - timedelta(days=age_days),
    )


class TestExampleRetriever:
    """Tests for few-shot correction examples."""

    @pytest.mark.asyncio
    async def test_relevant_examples_filter_confidence_and_owner(self, store, user_id):
        """Own and shared examples above the floor are returned, others' are not."""
        store.add_example(_example(user_id, "Mercadona", OPTIONAL, SURVIVAL, confidence=0.9))
        store.add_example(_example(None, "Lidl", OPTIONAL, SURVIVAL, confidence=1.0))
        store.add_example(_example(user_id, "Dudoso", OPTIONAL, SURVIVAL, confidence=0.5))
        store.add_example(_example("someone-else", "Aldi", OPTIONAL, SURVIVAL))

        examples = await ExampleRetriever(store).get_relevant_examples(user_id, limit=6)

        assert [e.concept for e in examples] == ["Lidl", "Mercadona"]

    @pytest.mark.asyncio
    async def test_prefer_recent(self, store, user_id):
        store.add_example(_example(user_id, "Viejo", OPTIONAL, SURVIVAL, age_days=10))
        store.add_example(_example(user_id, "Nuevo", OPTIONAL, SURVIVAL, confidence=0.85))

        examples = await ExampleRetriever(store).get_relevant_examples(
            user_id, limit=1, prefer_recent=True
        )

        assert [e.concept for e in examples] == ["Nuevo"]

    @pytest.mark.asyncio
    async def test_category_filter(self, store, user_id):
        """Only examples corrected INTO the category, user rows first."""
        store.add_example(_example(None, "Shared", OPTIONAL, SURVIVAL))
        store.add_example(_example(user_id, "Own", OPTIONAL, SURVIVAL, confidence=0.9))
        store.add_example(_example(user_id, "Book", OPTIONAL, CULTURE))

        examples = await ExampleRetriever(store).get_relevant_examples(
            user_id, limit=5, category_filter=SURVIVAL
        )

        assert [e.concept for e in examples] == ["Own", "Shared"]

    @pytest.mark.asyncio
    async def test_category_filter_applies_floor_before_limit(self, store, user_id):
        """Low-confidence own rows never crowd out shared rows above the floor."""
        for concept in ("Dudoso 1", "Dudoso 2", "Dudoso 3"):
            store.add_example(_example(user_id, concept, OPTIONAL, SURVIVAL, confidence=0.5))
        for concept in ("Lidl", "Aldi", "Dia"):
            store.add_example(_example(None, concept, OPTIONAL, SURVIVAL, confidence=0.95))

        examples = await ExampleRetriever(store).get_relevant_examples(
            user_id, limit=3, min_confidence=0.8, category_filter=SURVIVAL
        )

        assert sorted(e.concept for e in examples) == ["Aldi", "Dia", "Lidl"]

    @pytest.mark.asyncio
    async def test_category_filter_prefer_recent_picks_newest(self, store, user_id):
        store.add_example(_example(user_id, "Antiguo", OPTIONAL, SURVIVAL, age_days=20))
        store.add_example(_example(None, "Reciente", OPTIONAL, SURVIVAL, confidence=0.85, age_days=1))

        examples = await ExampleRetriever(store).get_relevant_examples(
            user_id, limit=1, prefer_recent=True, category_filter=SURVIVAL
        )

        assert [e.concept for e in examples] == ["Reciente"]

    @pytest.mark.asyncio
    async def test_read_failure_returns_empty(self, store, user_id):
        store.fail_on("query_correction_examples", ConnectionError("timeout"))
        assert await ExampleRetriever(store).get_relevant_examples(user_id) == []

    @pytest.mark.asyncio
    async def test_similar_examples_share_a_keyword(self, store, user_id):
        store.add_example(_example(user_id, "Farmacia centro", OPTIONAL, SURVIVAL))
        store.add_example(_example(user_id, "Cine", SURVIVAL, CULTURE))

        retriever = ExampleRetriever(store)
        examples = await retriever.get_similar_examples(user_id, "farmacia del barrio")

        assert [e.concept for e in examples] == ["Farmacia centro"]
        assert await retriever.get_similar_examples(user_id, "a b") == []

    @pytest.mark.asyncio
    async def test_track_usage_skips_failures(self, store, user_id):
        example = _example(user_id, "Mercadona", OPTIONAL, SURVIVAL)
        store.add_example(example)

        updated = await ExampleRetriever(store).track_example_usage([example.id, "missing"])

        assert updated == 1
        assert store.correction_examples[example.id].times_used == 1

    @pytest.mark.asyncio
    async def test_save_extracts_merchant_and_audits(self, store, user_id):
        audit = AsyncMock()
        saved = await ExampleRetriever(store, audit).save_correction_example(
            user_id, "Vaper El Estanco", SURVIVAL, OPTIONAL
        )
        assert saved.merchant == "vaper"
        assert saved.id in store.correction_examples
        audit.log_correction_saved.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_failure_raises_storage_error(self, store, user_id):
        """The primary write surfaces its failure."""
        store.fail_on("save_correction_example", RuntimeError("disk full"))
        with pytest.raises(StorageError):
            await ExampleRetriever(store).save_correction_example(
                user_id, "Mercadona", OPTIONAL, SURVIVAL
            )

    @pytest.mark.asyncio
    async def test_example_stats_and_failure(self, store, user_id):
        store.add_example(_example(user_id, "A compra", OPTIONAL, SURVIVAL))
        store.add_example(_example(user_id, "B compra", OPTIONAL, SURVIVAL))
        store.add_example(_example(user_id, "Libro", SURVIVAL, CULTURE))
        retriever = ExampleRetriever(store)

        stats = await retriever.get_example_stats(user_id)
        assert stats.total_examples == 3
        assert stats.most_corrected == "optional"
        assert stats.correction_count == 2

        store.fail_on("get_example_stats", ConnectionError("timeout"))
        assert (await retriever.get_example_stats(user_id)).total_examples == 0

    def test_format_examples_for_prompt(self, user_id):
        examples = [_example(user_id, "mercadona compra", OPTIONAL, SURVIVAL)]

        spanish = format_examples_for_prompt(examples)
        english = format_examples_for_prompt(examples, language="en")

        assert spanish.splitlines()[0] == "Aquí hay transacciones similares que has corregido antes:"
        assert '"mercadona compra" → survival (antes: optional)' in spanish
        assert "(was: optional)" in english
        assert format_examples_for_prompt([]) == ""


def _scored(expense_id, similarity, make_expense, today):
    return ScoredExpense(
        expense=make_expense(10.0, today, expense_id=expense_id), similarity=similarity
    )


def _vote(user, query, expense_id, kind):
    return SearchFeedback(user_id=user, query=query, expense_id=expense_id, feedback_type=kind)


class TestSearchFeedback:
    """Tests for the feedback consensus engine."""

    @pytest.fixture
    def engine(self, store):
        return SearchFeedbackEngine(store, PolicySettings())

    def test_normalize_query(self):
        assert normalize_query("  Vicios ") == "vicios"

    @pytest.mark.asyncio
    async def test_submit_normalizes_and_upserts(self, engine, store, user_id):
        result = await engine.submit_search_feedback(
            user_id, " Vicios ", correct_expense_ids=["e1"], incorrect_expense_ids=["e2"]
        )

        assert result.success
        assert result.records_submitted == 2
        assert result.message == 'Aprendido: 1 correctos, 1 incorrectos para " Vicios "'
        assert set(store.search_feedback) == {
            (user_id, "vicios", "e1"),
            (user_id, "vicios", "e2"),
        }

    @pytest.mark.asyncio
    async def test_resubmission_overwrites(self, engine, store, user_id):
        """Last submission wins for the same (user, query, expense)."""
        await engine.submit_search_feedback(user_id, "vicios", incorrect_expense_ids=["e1"])
        await engine.submit_search_feedback(user_id, "vicios", correct_expense_ids=["e1"])

        personal = await engine.get_personal_feedback(user_id, "vicios")
        assert personal.correct_expense_ids == frozenset({"e1"})
        assert personal.incorrect_expense_ids == frozenset()

    @pytest.mark.asyncio
    async def test_no_ids_is_not_submitted(self, engine, user_id):
        result = await engine.submit_search_feedback(user_id, "vicios")
        assert not result.success
        assert result.message == "No feedback provided"

    @pytest.mark.asyncio
    async def test_submit_failure_raises(self, engine, store, user_id):
        store.fail_on("upsert_search_feedback", ConnectionError("timeout"))
        with pytest.raises(ConnectionError):
            await engine.submit_search_feedback(user_id, "vicios", correct_expense_ids=["e1"])

    @pytest.mark.asyncio
    async def test_global_consensus_needs_votes_and_majority(self, engine, store):
        """3+ votes with a 60% majority decide; fewer votes decide nothing."""
        await store.upsert_search_feedback([
            _vote("u1", "vicios", "insulina", FeedbackType.INCORRECT),
            _vote("u2", "vicios", "insulina", FeedbackType.INCORRECT),
            _vote("u3", "vicios", "insulina", FeedbackType.CORRECT),
            _vote("u1", "vicios", "tabaco", FeedbackType.CORRECT),
            _vote("u2", "vicios", "tabaco", FeedbackType.CORRECT),
            _vote("u3", "vicios", "tabaco", FeedbackType.CORRECT),
            _vote("u1", "vicios", "cerveza", FeedbackType.CORRECT),
            _vote("u2", "vicios", "cerveza", FeedbackType.CORRECT),
        ])

        consensus = await engine.get_global_feedback("vicios")

        assert consensus.incorrect_expense_ids == frozenset({"insulina"})
        assert consensus.correct_expense_ids == frozenset({"tabaco"})

    @pytest.mark.asyncio
    async def test_split_votes_decide_nothing(self, engine, store):
        await store.upsert_search_feedback([
            _vote("u1", "vicios", "cafe", FeedbackType.INCORRECT),
            _vote("u2", "vicios", "cafe", FeedbackType.INCORRECT),
            _vote("u3", "vicios", "cafe", FeedbackType.CORRECT),
            _vote("u4", "vicios", "cafe", FeedbackType.CORRECT),
        ])
        assert (await engine.get_global_feedback("vicios")).is_empty

    @pytest.mark.asyncio
    async def test_personal_overrides_global(self, engine, store, user_id):
        """The user's own verdict beats the crowd, and no id is on both sides."""
        await store.upsert_search_feedback([
            _vote("u1", "vicios", "insulina", FeedbackType.INCORRECT),
            _vote("u2", "vicios", "insulina", FeedbackType.INCORRECT),
            _vote("u3", "vicios", "insulina", FeedbackType.INCORRECT),
            _vote(user_id, "vicios", "insulina", FeedbackType.CORRECT),
            _vote("u1", "vicios", "tabaco", FeedbackType.CORRECT),
            _vote("u2", "vicios", "tabaco", FeedbackType.CORRECT),
            _vote("u3", "vicios", "tabaco", FeedbackType.CORRECT),
        ])

        hybrid = await engine.get_hybrid_feedback(user_id, "vicios")

        assert "insulina" in hybrid.correct_expense_ids
        assert "tabaco" in hybrid.correct_expense_ids
        assert not hybrid.correct_expense_ids & hybrid.incorrect_expense_ids

    @pytest.mark.asyncio
    async def test_reads_degrade_to_empty(self, engine, store, user_id):
        store.fail_on("list_search_feedback", ConnectionError("timeout"))
        assert (await engine.get_hybrid_feedback(user_id, "vicios")).is_empty

    def test_apply_feedback(self, make_expense, today):
        """Incorrect results are dropped, correct ones boosted (capped at 1.0)."""
        results = [
            _scored("a", 0.9, make_expense, today),
            _scored("b", 0.7, make_expense, today),
            _scored("c", 0.6, make_expense, today),
        ]
        feedback = QueryFeedback(
            correct_expense_ids=frozenset({"a", "c"}),
            incorrect_expense_ids=frozenset({"b"}),
        )

        adjusted = apply_feedback(results, feedback, boost=1.2)

        assert [r.expense.id for r in adjusted] == ["a", "c"]
        assert adjusted[0].similarity == 1.0
        assert adjusted[1].similarity == pytest.approx(0.72)

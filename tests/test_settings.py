"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from kakebo.config import GeminiSettings, PolicySettings, SearchMode, SearchSettings


class TestPolicySettings:
    """Tests for the product policy thresholds."""

    def test_defaults(self):
        policy = PolicySettings()
        assert policy.reconciliation_tolerance == 0.05
        assert policy.consensus_min_votes == 3
        assert policy.consensus_ratio == 0.6
        assert policy.min_historical_expenses == 20
        assert policy.min_transactions_for_confidence == 10
        assert policy.max_tools_per_call == 3
        assert policy.max_history_messages == 50

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("KAKEBO_POLICY_CONSENSUS_MIN_VOTES", "5")
        monkeypatch.setenv("KAKEBO_POLICY_RECONCILIATION_TOLERANCE", "0.1")

        policy = PolicySettings()

        assert policy.consensus_min_votes == 5
        assert policy.reconciliation_tolerance == 0.1

    def test_ratio_must_be_a_majority(self):
        with pytest.raises(ValidationError):
            PolicySettings(consensus_ratio=0.5)


class TestSearchSettings:
    """Tests for search configuration."""

    def test_default_mode_is_semantic(self):
        assert SearchSettings().mode == SearchMode.SEMANTIC

    def test_mode_from_environment(self, monkeypatch):
        monkeypatch.setenv("KAKEBO_SEARCH_MODE", "keyword")
        assert SearchSettings().mode == SearchMode.KEYWORD


class TestGeminiSettings:
    """Tests for the language model configuration."""

    def test_api_key_required(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(ValidationError):
            GeminiSettings(_env_file=None)

    def test_pricing_defaults(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        settings = GeminiSettings()
        assert settings.model_name == "gemini-1.5-flash"
        assert settings.input_cost_per_1m == 0.075
        assert settings.output_cost_per_1m == 0.30

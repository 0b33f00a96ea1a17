"""
Configuration Management for the Kakebo Assistant

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.

Thresholds that shape what the assistant is allowed to claim (reconciliation
tolerance, consensus votes, minimum history) live in PolicySettings so they
can be tuned without touching the algorithms that apply them.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SearchMode(str, Enum):
    """Which code path the expense search tool uses."""
    SEMANTIC = "semantic"
    KEYWORD = "keyword"


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per table
    expenses_sheet_name: str = Field(default="Expenses")
    user_settings_sheet_name: str = Field(default="UserSettings")
    fixed_expenses_sheet_name: str = Field(default="FixedExpenses")
    merchant_rules_sheet_name: str = Field(default="MerchantRules")
    correction_examples_sheet_name: str = Field(default="CorrectionExamples")
    search_feedback_sheet_name: str = Field(default="SearchFeedback")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )

    # Pricing, used for per-turn cost metrics
    input_cost_per_1m: float = Field(
        default=0.075,
        ge=0.0,
        description="USD per million input tokens"
    )
    output_cost_per_1m: float = Field(
        default=0.30,
        ge=0.0,
        description="USD per million output tokens"
    )


class PolicySettings(BaseSettings):
    """
    Product policy thresholds.

    Defaults are the values the assistant has always shipped with.
    Change them only with product input.
    """

    model_config = SettingsConfigDict(
        env_prefix="KAKEBO_POLICY_",
        extra="ignore"
    )

    # Validation
    reconciliation_tolerance: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Allowed relative gap between reported parts and totals"
    )

    # Search feedback consensus
    consensus_min_votes: int = Field(
        default=3,
        ge=1,
        description="Votes needed before a global verdict is considered"
    )
    consensus_ratio: float = Field(
        default=0.6,
        gt=0.5,
        le=1.0,
        description="Majority ratio needed for a global verdict"
    )
    feedback_boost: float = Field(
        default=1.2,
        ge=1.0,
        description="Similarity multiplier for results marked correct"
    )

    # Disclosure thresholds
    min_historical_expenses: int = Field(
        default=20,
        ge=1,
        description="Historical expenses needed before anomalies are reported"
    )
    min_transactions_for_confidence: int = Field(
        default=10,
        ge=1,
        description="Below this, answers must disclose insufficient data"
    )

    # Orchestration limits
    max_tools_per_call: int = Field(default=3, ge=1)
    max_history_messages: int = Field(default=50, ge=1)
    few_shot_limit: int = Field(default=6, ge=0)
    few_shot_min_confidence: float = Field(default=0.8, ge=0.0, le=1.0)


class SearchSettings(BaseSettings):
    """Expense search configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KAKEBO_SEARCH_",
        extra="ignore"
    )

    mode: SearchMode = Field(
        default=SearchMode.SEMANTIC,
        description="semantic: store text similarity, keyword: keyword table"
    )
    similarity_threshold: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Minimum similarity for semantic candidates"
    )
    candidate_limit: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Candidates fetched before filtering and ranking"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local structured logs"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def policy(self) -> PolicySettings:
        return PolicySettings()

    @property
    def search(self) -> SearchSettings:
        return SearchSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus
    {setting_name}_error entries describing failures.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "gemini", "policy", "search", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

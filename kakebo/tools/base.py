"""
Shared per-request context handed to every tool.

Everything a tool may depend on is resolved ONCE per user turn and frozen
here: the store, the requesting user, the reference date and the search
configuration. Tools never read settings or the environment themselves.
"""

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from kakebo.config import PolicySettings, SearchMode, SearchSettings


class ToolContext(BaseModel):
    """Immutable inputs shared by all tools of one request."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    # Implements ExpenseStorageInterface and LearningStorageInterface
    store: Any
    user_id: str
    today: date = Field(default_factory=date.today)
    search: SearchSettings = Field(default_factory=SearchSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    audit_logger: Optional[Any] = None

    @property
    def search_mode(self) -> SearchMode:
        return self.search.mode


def round2(value: float) -> float:
    return round(value, 2)


def round1(value: float) -> float:
    return round(value, 1)

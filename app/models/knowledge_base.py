"""
Knowledge Base Catalog Models

Read-only snapshot of a configured knowledge base, plus the per-record
refresh outcome produced by the scheduler.
"""

from datetime import datetime, timezone
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


# Reserved timestamp meaning "never refreshed"
NEVER_REFRESHED = datetime.min.replace(tzinfo=timezone.utc)

# Projection requested by the scheduler (kb_id is always returned)
REFRESH_FIELDS = (
    "last_refresh_datetime",
    "refresh_frequency_in_hours",
    "sharepoint_list_id",
    "question_field",
    "answer_fields",
    "sharepoint_site_id",
)


def format_universal_sortable(value: datetime) -> str:
    """Format a timestamp as 'YYYY-MM-DD HH:MM:SSZ' in UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return f"{value.year:04d}-{value:%m-%d %H:%M:%S}Z"


class KnowledgeBaseRecord(BaseModel):
    """
    Catalog entry for one knowledge base.

    Source locator fields are opaque to the scheduler and are passed to the
    refresher untouched.
    """

    model_config = ConfigDict(frozen=True)

    kb_id: str = Field(..., description="Unique knowledge base identifier")
    last_refresh_datetime: datetime = Field(
        NEVER_REFRESHED, description="Last successful refresh (UTC)"
    )
    refresh_frequency_in_hours: int = Field(
        0, ge=0, description="Refresh interval in hours, 0 disables refresh"
    )

    # Source locators
    sharepoint_site_id: Optional[str] = None
    sharepoint_list_id: Optional[str] = None
    question_field: Optional[str] = None
    answer_fields: Optional[str] = None

    @field_validator("last_refresh_datetime", mode="before")
    @classmethod
    def _default_never(cls, value):
        # Missing timestamps are treated as never refreshed
        if value is None or value == "":
            return NEVER_REFRESHED
        return value

    @field_validator("last_refresh_datetime")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def never_refreshed(self) -> bool:
        return self.last_refresh_datetime == NEVER_REFRESHED

    def source_locators(self) -> dict:
        """Locator fields forwarded to the refresh service."""
        return {
            "sharepoint_site_id": self.sharepoint_site_id,
            "sharepoint_list_id": self.sharepoint_list_id,
            "question_field": self.question_field,
            "answer_fields": self.answer_fields,
        }


# Per-record refresh outcome


class RefreshSuccess(BaseModel):
    """Refresh completed and the new timestamp was recorded."""

    kb_id: str
    refreshed_at: datetime


class RefreshFailure(BaseModel):
    """Refresh (or recording its timestamp) failed."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    kb_id: str
    last_refresh_datetime: datetime
    error_message: str
    error: Optional[BaseException] = Field(None, exclude=True, repr=False)


RefreshOutcome = Union[RefreshSuccess, RefreshFailure]


class RefreshCycleSummary(BaseModel):
    """Tally of one pass over the catalog snapshot."""

    started_at: datetime
    total: int = 0
    skipped: int = 0
    outcomes: List[RefreshOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, RefreshSuccess))

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, RefreshFailure))

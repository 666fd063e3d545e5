"""
Spaced-repetition data models.

KnowledgeEntry holds only the scheduling-relevant subset of a knowledge
entry; content, tags and concept links belong to the entry layer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _generate_id() -> str:
    """Generate a 12-character hex ID from UUID4."""
    return uuid4().hex[:12]


def _utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class ReviewResponse(str, Enum):
    """How well the user recalled an entry."""

    FORGOT = "forgot"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @property
    def is_correct(self) -> bool:
        return self is not ReviewResponse.FORGOT


class KnowledgeEntry(BaseModel):
    """
    Scheduling state of a knowledge entry.

    Attributes:
        id: Opaque identifier
        owner_id: ID of the owning user
        review_count: Number of recorded reviews
        last_reviewed_at: When the entry was last reviewed
        next_review_at: When the entry becomes due; never due if None
        retention_score: Estimated recall in [0, 1]
        created_at: When the entry was created
        updated_at: When the scheduling state last changed
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_generate_id)
    owner_id: str
    review_count: int = Field(default=0, ge=0)
    last_reviewed_at: datetime | None = None
    next_review_at: datetime | None = None
    retention_score: float = Field(default=0.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("last_reviewed_at", "next_review_at", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # Naive timestamps are taken as UTC so due-ness comparisons never mix kinds
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class ReviewItem(BaseModel):
    """
    One prompt within a review session.

    Once ``response`` is set the item is presented and the response is
    never overwritten.
    """

    entry_id: str
    presented: bool = False
    response: ReviewResponse | None = None
    response_time_ms: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _response_implies_presented(self) -> ReviewItem:
        if self.response is not None and not self.presented:
            raise ValueError("an answered item must be marked presented")
        return self


class ReviewStats(BaseModel):
    """Aggregate statistics of a review session."""

    total_items: int = 0
    completed_items: int = 0
    correct_count: int = 0
    average_response_time: float = 0.0

    @classmethod
    def from_items(cls, items: list[ReviewItem]) -> ReviewStats:
        times = [i.response_time_ms for i in items if i.response_time_ms is not None]
        return cls(
            total_items=len(items),
            completed_items=sum(1 for i in items if i.presented),
            correct_count=sum(
                1 for i in items if i.response is not None and i.response.is_correct
            ),
            average_response_time=(sum(times) / len(times)) if times else 0.0,
        )


class ReviewSession(BaseModel):
    """
    One batch of review prompts for a user.

    Active while ``completed_at`` is None; Completed (terminal) once set.
    The item list is fixed at creation.
    """

    id: str = Field(default_factory=_generate_id)
    owner_id: str
    started_at: datetime = Field(default_factory=_utc_now)
    completed_at: datetime | None = None
    items: list[ReviewItem] = Field(default_factory=list)
    stats: ReviewStats = Field(default_factory=ReviewStats)

    @field_validator("items")
    @classmethod
    def _unique_entries(cls, value: list[ReviewItem]) -> list[ReviewItem]:
        ids = [item.entry_id for item in value]
        if len(ids) != len(set(ids)):
            raise ValueError("a session cannot contain the same entry twice")
        return value

    @property
    def is_active(self) -> bool:
        return self.completed_at is None

    def get_item(self, entry_id: str) -> ReviewItem | None:
        for item in self.items:
            if item.entry_id == entry_id:
                return item
        return None

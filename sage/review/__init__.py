"""
Spaced-repetition review.

ReviewScheduler decides when knowledge entries are due and updates their
retention after each review; ReviewSessionService runs batches of
reviews through the Active → Completed lifecycle.
"""

from sage.review.models import (
    KnowledgeEntry,
    ReviewItem,
    ReviewResponse,
    ReviewSession,
    ReviewStats,
)
from sage.review.scheduler import ReviewScheduler, next_schedule
from sage.review.session import ReviewSessionService

__all__ = [
    # Components
    "ReviewScheduler",
    "ReviewSessionService",
    "next_schedule",
    # Models
    "KnowledgeEntry",
    "ReviewItem",
    "ReviewResponse",
    "ReviewSession",
    "ReviewStats",
]

"""
ReviewScheduler: due-ness and retention updates for knowledge entries.

Scheduling policy (SM-2 family, fixed multipliers):

    response   retention r                 next interval
    forgot     r * 0.5                     1 day (reset)
    hard       r * 0.85                    max(1, previous * 1.2)
    good       r + (1 - r) * 0.5           previous * 2.0
    easy       r + (1 - r) * 0.8           previous * 3.0

The previous interval is the gap between ``last_reviewed_at`` and
``next_review_at`` (1 day before the first review). Retention is clamped
to [0, 1] and the interval to [min_interval_days, max_interval_days].
Failure decays retention and resets the interval; success raises
retention and accelerates the interval, bounded by the clamp.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sage.core.clock import Clock, SystemClock
from sage.core.config import Settings, get_settings
from sage.core.errors import entry_not_found, validation_error
from sage.core.locks import KeyedLock
from sage.review.models import KnowledgeEntry, ReviewResponse

if TYPE_CHECKING:
    from sage.storage.base import EntryRepository

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0

RETENTION_DECAY = {
    ReviewResponse.FORGOT: 0.5,
    ReviewResponse.HARD: 0.85,
}
RETENTION_GAIN = {
    ReviewResponse.GOOD: 0.5,
    ReviewResponse.EASY: 0.8,
}
INTERVAL_GROWTH = {
    ReviewResponse.HARD: 1.2,
    ReviewResponse.GOOD: 2.0,
    ReviewResponse.EASY: 3.0,
}


def parse_response(value: ReviewResponse | str) -> ReviewResponse:
    """Coerce a review response, raising ValidationError for unknown values."""
    try:
        return ReviewResponse(value)
    except ValueError:
        allowed = ", ".join(r.value for r in ReviewResponse)
        raise validation_error(
            "response", f"Unknown response {value!r}; expected one of: {allowed}"
        ) from None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def previous_interval_days(entry: KnowledgeEntry) -> float:
    """Interval implied by the entry's last schedule, in days (1 if unscheduled)."""
    if entry.last_reviewed_at is None or entry.next_review_at is None:
        return 1.0
    gap = (entry.next_review_at - entry.last_reviewed_at).total_seconds() / SECONDS_PER_DAY
    return gap if gap > 0 else 1.0


def next_schedule(
    retention: float,
    previous_interval_days: float,
    response: ReviewResponse,
    min_days: float = 1.0,
    max_days: float = 365.0,
) -> tuple[float, float]:
    """
    Apply the scheduling policy to one review.

    Args:
        retention: Current retention score
        previous_interval_days: Previous interval in days
        response: The review response
        min_days: Lower bound of the interval
        max_days: Upper bound of the interval

    Returns:
        Tuple of (new retention score, new interval in days)
    """
    if response in RETENTION_DECAY:
        new_retention = retention * RETENTION_DECAY[response]
    else:
        new_retention = retention + (1.0 - retention) * RETENTION_GAIN[response]

    if response is ReviewResponse.FORGOT:
        interval = 1.0
    elif response is ReviewResponse.HARD:
        interval = max(1.0, previous_interval_days * INTERVAL_GROWTH[response])
    else:
        interval = previous_interval_days * INTERVAL_GROWTH[response]

    return _clamp(new_retention, 0.0, 1.0), _clamp(interval, min_days, max_days)


class ReviewScheduler:
    """
    Spaced-repetition scheduling over knowledge entries.

    Args:
        entries: Knowledge entry repository
        clock: Source of "now" (defaults to wall-clock time)
        settings: Interval bounds and default limits
    """

    def __init__(
        self,
        entries: EntryRepository,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._entries = entries
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._entry_locks = KeyedLock()

    async def get_entry(self, entry_id: str) -> KnowledgeEntry:
        entry = await self._entries.get(entry_id)
        if entry is None:
            raise entry_not_found(entry_id)
        return entry

    async def find_due_for_review(
        self, owner_id: str, limit: int | None = None
    ) -> list[KnowledgeEntry]:
        """
        Entries of an owner whose next review time has passed.

        Most overdue first; equally overdue entries are ordered by
        retention ascending so the weakest surface first. Entries that
        were never scheduled are never due.

        Args:
            owner_id: ID of the owner
            limit: Maximum entries (default from settings)

        Returns:
            Due KnowledgeEntry records
        """
        limit = self._settings.due_review_limit if limit is None else limit
        if limit < 0:
            raise validation_error("limit", f"Limit cannot be negative, got {limit}")

        now = self._clock.now()
        due = [
            e for e in await self._entries.list_for_owner(owner_id)
            if e.next_review_at is not None and e.next_review_at <= now
        ]
        due.sort(key=lambda e: (e.next_review_at, e.retention_score, e.id))
        return due[:limit]

    async def record_review(
        self,
        entry_id: str,
        response: ReviewResponse | str,
        response_time_ms: int | None = None,
    ) -> KnowledgeEntry:
        """
        Update an entry's retention and schedule after a review.

        Args:
            entry_id: ID of the reviewed entry
            response: How well the user recalled it
            response_time_ms: Time the user took to answer

        Returns:
            The updated KnowledgeEntry

        Raises:
            NotFoundError: If the entry does not exist
            ValidationError: On an unknown response or negative time
        """
        response = parse_response(response)
        if response_time_ms is not None and response_time_ms < 0:
            raise validation_error("response_time_ms", "Response time cannot be negative")

        async with self._entry_locks.hold(entry_id):
            entry = await self.get_entry(entry_id)
            previous = previous_interval_days(entry)
            retention, interval = next_schedule(
                entry.retention_score,
                previous,
                response,
                self._settings.min_interval_days,
                self._settings.max_interval_days,
            )

            now = self._clock.now()
            entry.retention_score = retention
            entry.last_reviewed_at = now
            entry.next_review_at = now + timedelta(days=interval)
            entry.review_count += 1
            entry.updated_at = now
            await self._entries.save(entry)

        timing = f", {response_time_ms}ms" if response_time_ms is not None else ""
        logger.info(
            f"Recorded review for entry {entry_id}: {response.value} "
            f"(retention={retention:.3f}, interval={interval:.2f}d{timing})"
        )
        return entry

    async def update_retention_score(self, entry_id: str, score: float) -> KnowledgeEntry:
        """Overwrite an entry's retention score, clamped to [0, 1]."""
        async with self._entry_locks.hold(entry_id):
            entry = await self.get_entry(entry_id)
            entry.retention_score = _clamp(float(score), 0.0, 1.0)
            entry.updated_at = self._clock.now()
            await self._entries.save(entry)
        return entry

    async def schedule_first_review(
        self, entry_id: str, at: datetime | None = None
    ) -> KnowledgeEntry:
        """
        Put a never-scheduled entry into rotation.

        Entries that already have a ``next_review_at`` are left unchanged.

        Args:
            entry_id: ID of the entry
            at: When the entry becomes due (default: now)
        """
        async with self._entry_locks.hold(entry_id):
            entry = await self.get_entry(entry_id)
            if entry.next_review_at is None:
                entry.next_review_at = at or self._clock.now()
                entry.updated_at = self._clock.now()
                await self._entries.save(entry)
                logger.debug(f"Scheduled first review of entry {entry_id}")
        return entry

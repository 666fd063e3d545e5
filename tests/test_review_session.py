"""
Tests for ReviewSessionService.

Tests cover:
- Session creation and the one-active-session rule
- Presenting items and recording responses (scheduler invoked first)
- Completion rules and statistics
- Concurrent duplicate responses
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from sage.core.clock import FixedClock
from sage.core.errors import ConflictError, NotFoundError, ValidationError
from sage.review.models import KnowledgeEntry, ReviewResponse, ReviewSession
from sage.review.session import ReviewSessionService
from sage.storage.memory import InMemoryEntryRepository

OWNER = "user-1"


@pytest.fixture
async def entry_ids(entries: InMemoryEntryRepository, clock: FixedClock) -> list[str]:
    """Three due entries with a 4-day previous interval."""
    ids = []
    for _ in range(3):
        entry = KnowledgeEntry(
            owner_id=OWNER,
            retention_score=0.5,
            last_reviewed_at=clock.now() - timedelta(days=4),
            next_review_at=clock.now(),
        )
        await entries.save(entry)
        ids.append(entry.id)
    return ids


class TestCreateSession:
    """Test session creation."""

    @pytest.mark.asyncio
    async def test_create(
        self, review: ReviewSessionService, entry_ids: list[str], clock: FixedClock
    ) -> None:
        session = await review.create_session(OWNER, entry_ids)
        assert session.is_active
        assert session.started_at == clock.now()
        assert [i.entry_id for i in session.items] == entry_ids
        assert not any(i.presented for i in session.items)
        assert session.stats.total_items == 3

    @pytest.mark.asyncio
    async def test_second_active_session_conflicts(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        await review.create_session(OWNER, entry_ids[:1])
        with pytest.raises(ConflictError):
            await review.create_session(OWNER, entry_ids[1:])

    @pytest.mark.asyncio
    async def test_other_owner_unaffected(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        await review.create_session(OWNER, entry_ids)
        other = await review.create_session("user-2", ["foreign-entry"])
        assert other.owner_id == "user-2"

    @pytest.mark.asyncio
    async def test_concurrent_creates_yield_one_session(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        results = await asyncio.gather(
            review.create_session(OWNER, entry_ids),
            review.create_session(OWNER, entry_ids),
            return_exceptions=True,
        )
        assert sum(isinstance(r, ReviewSession) for r in results) == 1
        assert sum(isinstance(r, ConflictError) for r in results) == 1

    @pytest.mark.asyncio
    async def test_duplicate_entries_rejected(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        with pytest.raises(ValidationError):
            await review.create_session(OWNER, [entry_ids[0], entry_ids[0]])
        assert await review.find_active_session(OWNER) is None

    @pytest.mark.asyncio
    async def test_new_session_after_completion(
        self, review: ReviewSessionService, entry_ids: list[str], clock: FixedClock
    ) -> None:
        first = await review.create_session(OWNER, [entry_ids[0]])
        await review.record_item_response(first.id, entry_ids[0], "good", 800)
        await review.complete_session(first.id)

        clock.advance(minutes=1)
        second = await review.create_session(OWNER, entry_ids[1:])
        sessions = await review.list_sessions(OWNER)
        assert [s.id for s in sessions] == [second.id, first.id]


class TestQueries:
    """Test session lookups."""

    @pytest.mark.asyncio
    async def test_get_and_find_active(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        session = await review.create_session(OWNER, entry_ids)
        assert (await review.get_session(session.id)).id == session.id
        active = await review.find_active_session(OWNER)
        assert active is not None and active.id == session.id

    @pytest.mark.asyncio
    async def test_get_missing(self, review: ReviewSessionService) -> None:
        with pytest.raises(NotFoundError):
            await review.get_session("missing")

    @pytest.mark.asyncio
    async def test_no_active_session(self, review: ReviewSessionService) -> None:
        assert await review.find_active_session(OWNER) is None
        assert await review.list_sessions(OWNER) == []


class TestItems:
    """Test presenting and answering items."""

    @pytest.mark.asyncio
    async def test_mark_presented_idempotent(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        session = await review.create_session(OWNER, entry_ids)
        await review.mark_presented(session.id, entry_ids[0])
        updated = await review.mark_presented(session.id, entry_ids[0])
        item = updated.get_item(entry_ids[0])
        assert item is not None and item.presented
        assert item.response is None

    @pytest.mark.asyncio
    async def test_unknown_item(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        session = await review.create_session(OWNER, entry_ids[:1])
        with pytest.raises(NotFoundError):
            await review.mark_presented(session.id, entry_ids[2])
        with pytest.raises(NotFoundError):
            await review.record_item_response(session.id, entry_ids[2], "good")

    @pytest.mark.asyncio
    async def test_record_response_updates_item_and_entry(
        self,
        review: ReviewSessionService,
        entries: InMemoryEntryRepository,
        entry_ids: list[str],
        clock: FixedClock,
    ) -> None:
        session = await review.create_session(OWNER, entry_ids)
        updated = await review.record_item_response(session.id, entry_ids[0], "good", 1200)

        item = updated.get_item(entry_ids[0])
        assert item is not None
        assert item.presented
        assert item.response is ReviewResponse.GOOD
        assert item.response_time_ms == 1200

        entry = await entries.get(entry_ids[0])
        assert entry is not None
        assert entry.retention_score == pytest.approx(0.75)
        assert entry.next_review_at == clock.now() + timedelta(days=8)

    @pytest.mark.asyncio
    async def test_second_response_conflicts(
        self,
        review: ReviewSessionService,
        entries: InMemoryEntryRepository,
        entry_ids: list[str],
    ) -> None:
        session = await review.create_session(OWNER, entry_ids)
        await review.record_item_response(session.id, entry_ids[0], "good")
        with pytest.raises(ConflictError):
            await review.record_item_response(session.id, entry_ids[0], "forgot")

        entry = await entries.get(entry_ids[0])
        assert entry is not None and entry.review_count == 1
        stored = await review.get_session(session.id)
        assert stored.get_item(entry_ids[0]).response is ReviewResponse.GOOD  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_racing_duplicate_responses(
        self,
        review: ReviewSessionService,
        entries: InMemoryEntryRepository,
        entry_ids: list[str],
    ) -> None:
        session = await review.create_session(OWNER, entry_ids)
        results = await asyncio.gather(
            review.record_item_response(session.id, entry_ids[0], "good"),
            review.record_item_response(session.id, entry_ids[0], "easy"),
            return_exceptions=True,
        )
        assert sum(isinstance(r, ConflictError) for r in results) == 1
        entry = await entries.get(entry_ids[0])
        assert entry is not None and entry.review_count == 1

    @pytest.mark.asyncio
    async def test_scheduler_failure_leaves_item_unanswered(
        self, review: ReviewSessionService
    ) -> None:
        session = await review.create_session(OWNER, ["not-an-entry"])
        with pytest.raises(NotFoundError):
            await review.record_item_response(session.id, "not-an-entry", "good")
        item = (await review.get_session(session.id)).get_item("not-an-entry")
        assert item is not None and item.response is None and not item.presented

    @pytest.mark.asyncio
    async def test_invalid_response(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        session = await review.create_session(OWNER, entry_ids)
        with pytest.raises(ValidationError):
            await review.record_item_response(session.id, entry_ids[0], "brilliant")
        with pytest.raises(ValidationError):
            await review.record_item_response(session.id, entry_ids[0], "good", -1)


class TestCompleteSession:
    """Test completion rules and statistics."""

    @pytest.mark.asyncio
    async def test_complete_requires_all_presented(
        self, review: ReviewSessionService, entry_ids: list[str], clock: FixedClock
    ) -> None:
        e1, e2 = entry_ids[:2]
        session = await review.create_session(OWNER, [e1, e2])
        await review.record_item_response(session.id, e1, "good", 1000)

        with pytest.raises(ConflictError):
            await review.complete_session(session.id)
        assert (await review.get_session(session.id)).is_active

        await review.record_item_response(session.id, e2, "forgot", 3000)
        clock.advance(minutes=2)
        completed = await review.complete_session(session.id)

        assert completed.completed_at == clock.now()
        assert completed.stats.total_items == 2
        assert completed.stats.completed_items == 2
        assert completed.stats.correct_count == 1
        assert completed.stats.average_response_time == pytest.approx(2000.0)

    @pytest.mark.asyncio
    async def test_presented_without_response_counts_as_completed(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        session = await review.create_session(OWNER, entry_ids[:1])
        await review.mark_presented(session.id, entry_ids[0])
        completed = await review.complete_session(session.id)
        assert completed.stats.completed_items == 1
        assert completed.stats.correct_count == 0
        assert completed.stats.average_response_time == 0.0

    @pytest.mark.asyncio
    async def test_completed_session_is_terminal(
        self, review: ReviewSessionService, entry_ids: list[str]
    ) -> None:
        session = await review.create_session(OWNER, entry_ids[:2])
        await review.record_item_response(session.id, entry_ids[0], "easy")
        await review.mark_presented(session.id, entry_ids[1])
        await review.complete_session(session.id)

        with pytest.raises(ConflictError):
            await review.complete_session(session.id)
        with pytest.raises(ConflictError):
            await review.mark_presented(session.id, entry_ids[1])
        with pytest.raises(ConflictError):
            await review.record_item_response(session.id, entry_ids[1], "good")
        assert await review.find_active_session(OWNER) is None

    @pytest.mark.asyncio
    async def test_complete_missing(self, review: ReviewSessionService) -> None:
        with pytest.raises(NotFoundError):
            await review.complete_session("missing")

"""
ReviewSessionService: lifecycle of review sessions.

A session is Active from creation until ``complete_session`` stamps
``completed_at``; Completed is terminal. Each owner has at most one
Active session.

Design Decisions:
- Session mutations are serialized per session id, session creation per
  owner. The repository hands out copies, so a mutation is a
  read-modify-save under the lock and two racing responses for the same
  item cannot both land.
- ``record_item_response`` updates the entry's schedule before touching
  the item. If scheduling fails the item stays unanswered and the call
  can be repeated.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from sage.core.clock import Clock, SystemClock
from sage.core.errors import ConflictError, NotFoundError, from_pydantic, session_not_found
from sage.core.locks import KeyedLock
from sage.review.models import (
    ReviewItem,
    ReviewResponse,
    ReviewSession,
    ReviewStats,
)
from sage.review.scheduler import parse_response

if TYPE_CHECKING:
    from sage.review.scheduler import ReviewScheduler
    from sage.storage.base import SessionRepository

logger = logging.getLogger(__name__)


class ReviewSessionService:
    """
    Create, advance and complete review sessions.

    Args:
        sessions: Review session repository
        scheduler: Scheduler updated with every item response
        clock: Source of timestamps (defaults to wall-clock time)
    """

    def __init__(
        self,
        sessions: SessionRepository,
        scheduler: ReviewScheduler,
        clock: Clock | None = None,
    ) -> None:
        self._sessions = sessions
        self._scheduler = scheduler
        self._clock = clock or SystemClock()
        self._owner_locks = KeyedLock()
        self._session_locks = KeyedLock()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Queries
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def get_session(self, session_id: str) -> ReviewSession:
        session = await self._sessions.get(session_id)
        if session is None:
            raise session_not_found(session_id)
        return session

    async def find_active_session(self, owner_id: str) -> ReviewSession | None:
        return await self._sessions.find_active(owner_id)

    async def list_sessions(self, owner_id: str) -> list[ReviewSession]:
        """All sessions of an owner, newest first."""
        return await self._sessions.list_for_owner(owner_id)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Lifecycle
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def create_session(self, owner_id: str, entry_ids: list[str]) -> ReviewSession:
        """
        Start a review session over the given entries.

        Args:
            owner_id: ID of the reviewing user
            entry_ids: Entries to review, in presentation order

        Returns:
            The new Active ReviewSession

        Raises:
            ConflictError: If the owner already has an Active session
            ValidationError: If an entry appears twice
        """
        async with self._owner_locks.hold(owner_id):
            active = await self._sessions.find_active(owner_id)
            if active is not None:
                logger.warning(
                    f"Refused new session for owner {owner_id}: session {active.id} is active"
                )
                raise ConflictError(
                    "An active review session already exists",
                    detail=f"Session ID: {active.id}",
                    hint="Complete the active session before starting another",
                )

            try:
                session = ReviewSession(
                    owner_id=owner_id,
                    started_at=self._clock.now(),
                    items=[ReviewItem(entry_id=entry_id) for entry_id in entry_ids],
                )
            except PydanticValidationError as e:
                raise from_pydantic(e, "Invalid review session") from e

            session.stats = ReviewStats.from_items(session.items)
            await self._sessions.save(session)

        logger.info(
            f"Started review session {session.id} for owner {owner_id} "
            f"with {len(session.items)} items"
        )
        return session

    async def mark_presented(self, session_id: str, entry_id: str) -> ReviewSession:
        """
        Mark an item as shown to the user. Repeating the call is harmless.

        Raises:
            NotFoundError: If the session or item does not exist
            ConflictError: If the session is completed
        """
        async with self._session_locks.hold(session_id):
            session = await self.get_session(session_id)
            self._require_active(session)
            item = self._require_item(session, entry_id)
            if not item.presented:
                item.presented = True
                await self._sessions.save(session)
        return session

    async def record_item_response(
        self,
        session_id: str,
        entry_id: str,
        response: ReviewResponse | str,
        response_time_ms: int | None = None,
    ) -> ReviewSession:
        """
        Record the user's answer to one item and reschedule its entry.

        Args:
            session_id: ID of the session
            entry_id: ID of the answered entry
            response: How well the user recalled it
            response_time_ms: Time the user took to answer

        Returns:
            The updated ReviewSession

        Raises:
            NotFoundError: If the session, item or entry does not exist
            ConflictError: If the item already has a response or the
                session is completed
            ValidationError: On an unknown response or negative time
        """
        response = parse_response(response)

        async with self._session_locks.hold(session_id):
            session = await self.get_session(session_id)
            self._require_active(session)
            item = self._require_item(session, entry_id)
            if item.response is not None:
                logger.warning(
                    f"Duplicate response for entry {entry_id} in session {session_id}"
                )
                raise ConflictError(
                    "Item already has a response",
                    detail=f"Session ID: {session_id}, Entry ID: {entry_id}",
                )

            await self._scheduler.record_review(entry_id, response, response_time_ms)

            item.presented = True
            item.response = response
            item.response_time_ms = response_time_ms
            await self._sessions.save(session)
        return session

    async def complete_session(self, session_id: str) -> ReviewSession:
        """
        Close a session once every item has been presented.

        Raises:
            NotFoundError: If the session does not exist
            ConflictError: If the session is already completed or an item
                was never presented
        """
        async with self._session_locks.hold(session_id):
            session = await self.get_session(session_id)
            self._require_active(session)
            pending = [item.entry_id for item in session.items if not item.presented]
            if pending:
                logger.warning(
                    f"Cannot complete session {session_id}: {len(pending)} items unpresented"
                )
                raise ConflictError(
                    "Review session has unpresented items",
                    detail=f"Entry IDs: {', '.join(pending)}",
                    hint="Present every item before completing the session",
                )

            session.completed_at = self._clock.now()
            session.stats = ReviewStats.from_items(session.items)
            await self._sessions.save(session)

        logger.info(
            f"Completed review session {session_id}: "
            f"{session.stats.correct_count}/{session.stats.total_items} correct"
        )
        return session

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Helpers
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    @staticmethod
    def _require_active(session: ReviewSession) -> None:
        if not session.is_active:
            raise ConflictError(
                "Review session is already completed",
                detail=f"Session ID: {session.id}",
                hint="Start a new review session",
            )

    @staticmethod
    def _require_item(session: ReviewSession, entry_id: str) -> ReviewItem:
        item = session.get_item(entry_id)
        if item is None:
            raise NotFoundError(
                "Entry is not part of this review session",
                detail=f"Session ID: {session.id}, Entry ID: {entry_id}",
            )
        return item

"""
Service container and lifecycle management.

Builds storage and every core component in dependency order and owns
their startup/shutdown. Embedding processes (an API server, an agent
tool host, a test) create one container, call ``startup()`` and reach
components through its properties.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TypeVar

from sage.core.clock import Clock, SystemClock
from sage.core.config import Settings, get_settings
from sage.core.logging import configure_logging
from sage.graph.merger import ConceptMerger
from sage.graph.store import ConceptGraphStore
from sage.graph.traversal import GraphTraversal
from sage.review.scheduler import ReviewScheduler
from sage.review.session import ReviewSessionService
from sage.storage.base import EntryRepository, GraphStorage, SessionRepository
from sage.storage.memory import (
    FileGraphStorage,
    InMemoryEntryRepository,
    InMemoryGraphStorage,
    InMemorySessionRepository,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _require(component: T | None) -> T:
    if component is None:
        raise RuntimeError("ServiceContainer not initialized - call startup() first")
    return component


class ServiceContainer:
    """
    Dependency injection container for the core components.

    Only concept graphs are file-backed in persistent mode. Knowledge
    entries and review sessions always live in the in-memory repositories
    and do not survive a restart.

    Args:
        settings: Configuration (defaults to ``get_settings()``)
        clock: Shared source of "now" (defaults to wall-clock time)
        persistent: Store graphs as files under ``settings.data_path``
            instead of in memory only
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Clock | None = None,
        persistent: bool = False,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock()
        self._persistent = persistent

        self._storage: GraphStorage | None = None
        self._entries: EntryRepository | None = None
        self._sessions: SessionRepository | None = None
        self._store: ConceptGraphStore | None = None
        self._traversal: GraphTraversal | None = None
        self._merger: ConceptMerger | None = None
        self._scheduler: ReviewScheduler | None = None
        self._review: ReviewSessionService | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def storage(self) -> GraphStorage:
        """Get graph storage instance."""
        return _require(self._storage)

    @property
    def entries(self) -> EntryRepository:
        """Get knowledge entry repository."""
        return _require(self._entries)

    @property
    def sessions(self) -> SessionRepository:
        """Get review session repository."""
        return _require(self._sessions)

    @property
    def store(self) -> ConceptGraphStore:
        """Get concept graph store instance."""
        return _require(self._store)

    @property
    def traversal(self) -> GraphTraversal:
        """Get graph traversal instance."""
        return _require(self._traversal)

    @property
    def merger(self) -> ConceptMerger:
        """Get concept merger instance."""
        return _require(self._merger)

    @property
    def scheduler(self) -> ReviewScheduler:
        """Get review scheduler instance."""
        return _require(self._scheduler)

    @property
    def review(self) -> ReviewSessionService:
        """Get review session service instance."""
        return _require(self._review)

    @property
    def started(self) -> bool:
        return self._storage is not None

    async def startup(self) -> None:
        """
        Create storage and components.

        Calling ``startup()`` on a running container does nothing.
        """
        if self.started:
            return

        configure_logging(self._settings.log_level)
        logger.info("Starting service container")

        # Initialize in dependency order
        if self._persistent:
            self._storage = FileGraphStorage(self._settings.data_path / "graphs")
        else:
            self._storage = InMemoryGraphStorage()
        self._entries = InMemoryEntryRepository()
        self._sessions = InMemorySessionRepository()

        self._store = ConceptGraphStore(self._storage, clock=self._clock)
        self._traversal = GraphTraversal(self._storage, settings=self._settings)
        self._merger = ConceptMerger(self._storage, clock=self._clock)
        self._scheduler = ReviewScheduler(
            self._entries, clock=self._clock, settings=self._settings
        )
        self._review = ReviewSessionService(
            self._sessions, self._scheduler, clock=self._clock
        )

        logger.info(
            f"Service container started "
            f"({'file' if self._persistent else 'in-memory'} graph storage)"
        )

    async def shutdown(self) -> None:
        """Close storage and drop component references."""
        logger.info("Shutting down service container")

        if self._storage is not None:
            await self._storage.close()

        self._storage = None
        self._entries = None
        self._sessions = None
        self._store = None
        self._traversal = None
        self._merger = None
        self._scheduler = None
        self._review = None

        logger.info("Service container shutdown complete")


@asynccontextmanager
async def running_container(
    settings: Settings | None = None,
    clock: Clock | None = None,
    persistent: bool = False,
) -> AsyncIterator[ServiceContainer]:
    """Start a container for the duration of the block."""
    container = ServiceContainer(settings=settings, clock=clock, persistent=persistent)
    await container.startup()
    try:
        yield container
    finally:
        await container.shutdown()

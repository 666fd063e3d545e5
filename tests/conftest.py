"""
Pytest configuration and fixtures for core tests.

Every component is built on in-memory storage and a FixedClock, so
timestamps are deterministic and tests never touch the real data path.
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone

import pytest

from sage.core.clock import FixedClock
from sage.core.config import Settings, get_settings
from sage.graph.merger import ConceptMerger
from sage.graph.store import ConceptGraphStore
from sage.graph.traversal import GraphTraversal
from sage.review.scheduler import ReviewScheduler
from sage.review.session import ReviewSessionService
from sage.storage.memory import (
    InMemoryEntryRepository,
    InMemoryGraphStorage,
    InMemorySessionRepository,
)

START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    """Keep the settings singleton from leaking between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Default settings, ignoring any .env file in the working directory."""
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(START)


@pytest.fixture
def storage() -> InMemoryGraphStorage:
    return InMemoryGraphStorage()


@pytest.fixture
def store(storage: InMemoryGraphStorage, clock: FixedClock) -> ConceptGraphStore:
    return ConceptGraphStore(storage, clock=clock)


@pytest.fixture
def traversal(storage: InMemoryGraphStorage, settings: Settings) -> GraphTraversal:
    return GraphTraversal(storage, settings=settings)


@pytest.fixture
def merger(storage: InMemoryGraphStorage, clock: FixedClock) -> ConceptMerger:
    return ConceptMerger(storage, clock=clock)


@pytest.fixture
def entries() -> InMemoryEntryRepository:
    return InMemoryEntryRepository()


@pytest.fixture
def scheduler(
    entries: InMemoryEntryRepository, clock: FixedClock, settings: Settings
) -> ReviewScheduler:
    return ReviewScheduler(entries, clock=clock, settings=settings)


@pytest.fixture
def sessions() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def review(
    sessions: InMemorySessionRepository,
    scheduler: ReviewScheduler,
    clock: FixedClock,
) -> ReviewSessionService:
    return ReviewSessionService(sessions, scheduler, clock=clock)

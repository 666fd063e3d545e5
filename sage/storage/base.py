"""
Storage contracts consumed by the core.

GraphStorage supplies per-owner transactions and snapshot reads over
ConceptGraph instances. EntryRepository and SessionRepository store the
review-side records. Implementations decide the technology; the core only
relies on the semantics documented here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from sage.graph.concept_graph import ConceptGraph
from sage.review.models import KnowledgeEntry, ReviewSession


@dataclass
class GraphTransaction:
    """
    Unit of work over one owner's graph.

    ``graph`` is a private working copy. Leaving the transaction block
    normally commits it; raising out of the block discards it.
    """

    owner_id: str
    graph: ConceptGraph


class GraphStorage(ABC):
    """Durable home of every owner's concept graph."""

    @abstractmethod
    async def snapshot(self, owner_id: str) -> ConceptGraph:
        """
        Get the last committed graph of an owner.

        The returned graph must be treated as read-only; it is never
        modified by later transactions.
        """

    @abstractmethod
    async def owner_of(self, concept_id: str) -> str | None:
        """Owner of a committed concept, or None if no such concept exists."""

    @abstractmethod
    def transaction(self, owner_id: str) -> AbstractAsyncContextManager[GraphTransaction]:
        """Open an exclusive, all-or-nothing transaction on an owner's graph."""

    @abstractmethod
    async def owners(self) -> list[str]:
        """IDs of every owner with a stored graph."""

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class EntryRepository(ABC):
    """Storage for KnowledgeEntry records."""

    @abstractmethod
    async def get(self, entry_id: str) -> KnowledgeEntry | None: ...

    @abstractmethod
    async def save(self, entry: KnowledgeEntry) -> KnowledgeEntry: ...

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> list[KnowledgeEntry]: ...


class SessionRepository(ABC):
    """Storage for ReviewSession records."""

    @abstractmethod
    async def get(self, session_id: str) -> ReviewSession | None: ...

    @abstractmethod
    async def save(self, session: ReviewSession) -> ReviewSession: ...

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> list[ReviewSession]: ...

    async def find_active(self, owner_id: str) -> ReviewSession | None:
        """The owner's session without ``completed_at``, if any."""
        for session in await self.list_for_owner(owner_id):
            if session.completed_at is None:
                return session
        return None

"""
In-memory storage implementations.

InMemoryGraphStorage keeps one committed ConceptGraph per owner.
Transactions take the owner's lock, mutate a deep copy and swap it in on
commit, so readers holding a snapshot never see partial state and a
failed transaction leaves nothing behind. FileGraphStorage adds JSON
persistence of each committed graph.

The repositories hand out copies of their records: a caller mutating a
returned model does not change stored state until it calls ``save``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sage.core.errors import ConflictError
from sage.core.locks import KeyedLock
from sage.graph.concept_graph import ConceptGraph
from sage.review.models import KnowledgeEntry, ReviewSession
from sage.storage.base import (
    EntryRepository,
    GraphStorage,
    GraphTransaction,
    SessionRepository,
)
from sage.storage.persistence import list_graphs, load_graph, save_graph

logger = logging.getLogger(__name__)


class InMemoryGraphStorage(GraphStorage):
    """
    Per-owner concept graphs held in process memory.

    Thread Safety:
        Intended for a single event loop. Writers are serialized per owner
        through a KeyedLock; readers never block.
    """

    def __init__(self) -> None:
        self._graphs: dict[str, ConceptGraph] = {}
        # concept_id -> owner_id, for committed concepts only
        self._owner_index: dict[str, str] = {}
        self._locks = KeyedLock()

    async def snapshot(self, owner_id: str) -> ConceptGraph:
        graph = self._graphs.get(owner_id)
        if graph is None:
            return ConceptGraph(owner_id)
        return graph

    async def owner_of(self, concept_id: str) -> str | None:
        return self._owner_index.get(concept_id)

    async def owners(self) -> list[str]:
        return sorted(self._graphs)

    @asynccontextmanager
    async def transaction(self, owner_id: str) -> AsyncIterator[GraphTransaction]:
        async with self._locks.hold(owner_id):
            committed = self._graphs.get(owner_id)
            working = committed.copy() if committed is not None else ConceptGraph(owner_id)
            txn = GraphTransaction(owner_id=owner_id, graph=working)
            try:
                yield txn
            except BaseException:
                logger.debug(f"Transaction aborted for owner {owner_id}")
                raise
            await self._commit(owner_id, committed, working)

    async def _commit(
        self,
        owner_id: str,
        committed: ConceptGraph | None,
        working: ConceptGraph,
    ) -> None:
        before = {c.id for c in committed.concepts()} if committed is not None else set()
        after = {c.id for c in working.concepts()}

        for concept_id in after - before:
            other = self._owner_index.get(concept_id)
            if other is not None and other != owner_id:
                raise ConflictError(
                    "Concept id already in use",
                    detail=f"Concept ID: {concept_id}",
                )

        await self._persist(working)

        self._graphs[owner_id] = working
        for concept_id in before - after:
            self._owner_index.pop(concept_id, None)
        for concept_id in after - before:
            self._owner_index[concept_id] = owner_id
        logger.debug(
            f"Committed graph for owner {owner_id}: "
            f"{len(working)} concepts, {working.relationship_count} relationships"
        )

    async def _persist(self, graph: ConceptGraph) -> None:
        """Durability hook; in-memory storage keeps nothing on disk."""
        return None

    def _install(self, graph: ConceptGraph) -> None:
        self._graphs[graph.owner_id] = graph
        for concept in graph.concepts():
            self._owner_index[concept.id] = graph.owner_id


class FileGraphStorage(InMemoryGraphStorage):
    """
    InMemoryGraphStorage that writes every committed graph to disk.

    Graphs found under ``base_path`` are loaded at construction. A commit
    only becomes visible after its graph.json was replaced on disk, so a
    write failure aborts the transaction and keeps the previous file.
    """

    def __init__(self, base_path: Path) -> None:
        super().__init__()
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

        for meta in list_graphs(self.base_path):
            try:
                graph = load_graph(Path(meta["path"]))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable graph at {meta['path']}: {e}")
                continue
            if graph is not None:
                self._install(graph)

        logger.info(
            f"FileGraphStorage initialized with base_path={base_path}, "
            f"{len(self._graphs)} graphs loaded"
        )

    async def _persist(self, graph: ConceptGraph) -> None:
        await save_graph(graph, self.base_path)

    async def health_check(self) -> bool:
        return self.base_path.is_dir()


class InMemoryEntryRepository(EntryRepository):
    """KnowledgeEntry records held in process memory."""

    def __init__(self, entries: list[KnowledgeEntry] | None = None) -> None:
        self._entries: dict[str, KnowledgeEntry] = {}
        for entry in entries or []:
            self._entries[entry.id] = entry.model_copy(deep=True)

    async def get(self, entry_id: str) -> KnowledgeEntry | None:
        entry = self._entries.get(entry_id)
        return entry.model_copy(deep=True) if entry is not None else None

    async def save(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        self._entries[entry.id] = entry.model_copy(deep=True)
        return entry

    async def list_for_owner(self, owner_id: str) -> list[KnowledgeEntry]:
        return [
            e.model_copy(deep=True)
            for e in self._entries.values()
            if e.owner_id == owner_id
        ]


class InMemorySessionRepository(SessionRepository):
    """ReviewSession records held in process memory."""

    def __init__(self) -> None:
        self._sessions: dict[str, ReviewSession] = {}

    async def get(self, session_id: str) -> ReviewSession | None:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def save(self, session: ReviewSession) -> ReviewSession:
        self._sessions[session.id] = session.model_copy(deep=True)
        return session

    async def list_for_owner(self, owner_id: str) -> list[ReviewSession]:
        sessions = [
            s.model_copy(deep=True)
            for s in self._sessions.values()
            if s.owner_id == owner_id
        ]
        sessions.sort(key=lambda s: (s.started_at, s.id), reverse=True)
        return sessions

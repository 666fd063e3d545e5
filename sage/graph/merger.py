"""
ConceptMerger: fold one concept into another.

The surviving (target) concept absorbs the merged (source) concept's:
- Relationships (re-pointed to the target, self-loops dropped,
  duplicates coalesced keeping the strongest)
- Aliases, plus the source's name as a new alias
- Entry count

The whole merge runs in a single storage transaction: any failure leaves
the owner's graph exactly as it was, and readers never observe a
half-merged graph.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sage.core.clock import Clock, SystemClock
from sage.core.errors import SelfMergeError, concept_not_found, validation_error
from sage.graph.models import Concept, Relationship

if TYPE_CHECKING:
    from sage.graph.concept_graph import ConceptGraph
    from sage.storage.base import GraphStorage

logger = logging.getLogger(__name__)


@dataclass
class MergeSummary:
    """Counts describing what a merge did to the edge set."""

    redirected: int = 0
    dropped_self_loops: int = 0
    coalesced: int = 0
    aliases_added: int = 0


def _touch(graph: ConceptGraph, concept_id: str, now: datetime) -> None:
    concept = graph.get_concept(concept_id)
    if concept is not None:
        concept.updated_at = now


class ConceptMerger:
    """
    Atomic concept merge.

    Args:
        storage: Graph storage capability (transactions)
        clock: Source of timestamps (defaults to wall-clock time)
    """

    def __init__(self, storage: GraphStorage, clock: Clock | None = None) -> None:
        self._storage = storage
        self._clock = clock or SystemClock()

    async def merge_concepts(self, source_id: str, target_id: str) -> Concept:
        """
        Merge ``source_id`` into ``target_id``.

        Args:
            source_id: ID of the concept that disappears
            target_id: ID of the concept that survives

        Returns:
            The surviving target Concept

        Raises:
            SelfMergeError: If source and target are the same concept
            NotFoundError: If either concept does not exist
            ValidationError: If the concepts have different owners
        """
        if source_id == target_id:
            raise SelfMergeError(
                "A concept cannot be merged into itself",
                detail=f"Concept ID: {source_id}",
            )

        source_owner = await self._storage.owner_of(source_id)
        if source_owner is None:
            raise concept_not_found(source_id)
        target_owner = await self._storage.owner_of(target_id)
        if target_owner is None:
            raise concept_not_found(target_id)
        if source_owner != target_owner:
            raise validation_error("target_id", "Cannot merge concepts of different owners")

        summary = MergeSummary()
        async with self._storage.transaction(source_owner) as txn:
            graph = txn.graph
            source = graph.get_concept(source_id)
            if source is None:
                raise concept_not_found(source_id)
            target = graph.get_concept(target_id)
            if target is None:
                raise concept_not_found(target_id)

            now = self._clock.now()

            # 1. Re-point edges, keeping the strongest of any duplicates
            for rel in graph.remove_concept(source_id):
                new_source = target_id if rel.source_id == source_id else rel.source_id
                new_target = target_id if rel.target_id == source_id else rel.target_id

                if new_source == new_target:
                    summary.dropped_self_loops += 1
                    continue

                other = new_target if new_source == target_id else new_source
                existing = graph.get_relationship(new_source, new_target, rel.type)
                if existing is not None:
                    summary.coalesced += 1
                    if rel.strength > existing.strength:
                        existing.strength = rel.strength
                        existing.updated_at = now
                        _touch(graph, other, now)
                    continue

                summary.redirected += 1
                graph.set_relationship(
                    Relationship(
                        source_id=new_source,
                        target_id=new_target,
                        type=rel.type,
                        strength=rel.strength,
                        created_at=rel.created_at,
                        updated_at=now,
                    )
                )
                _touch(graph, other, now)

            # 2. Aliases: target's first, then source's, then source's name
            for alias in [*source.aliases, source.name]:
                if target.add_alias(alias):
                    summary.aliases_added += 1

            # 3. Entry count
            target.entry_count += source.entry_count
            target.updated_at = now

        logger.info(
            f"Merged concept {source_id} into {target_id} for owner {source_owner}: "
            f"{summary.redirected} redirected, {summary.coalesced} coalesced, "
            f"{summary.dropped_self_loops} self-loops dropped"
        )
        return target.model_copy(deep=True)

"""
ConceptGraphStore: validated mutations of the concept graph.

Owns Concept and Relationship records for every owner and enforces the
structural invariants on each mutation:
- concept names are never blank
- relationships never loop onto their source
- relationship strength stays within [0, 1]
- both endpoints of a relationship have the same owner
- at most one relationship per (source, target, type); repeated creates
  overwrite the strength

Every mutation runs inside a storage transaction for the owner, so
mutations of one owner's graph are serialized and all-or-nothing, and
every affected concept gets a fresh ``updated_at`` from the clock.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import ValidationError as PydanticValidationError

from sage.core.clock import Clock, SystemClock
from sage.core.errors import (
    ConflictError,
    concept_not_found,
    from_pydantic,
    validation_error,
)
from sage.graph.concept_graph import ConceptGraph
from sage.graph.models import Concept, Relationship, RelationshipType

if TYPE_CHECKING:
    from sage.storage.base import GraphStorage

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "description", "aliases"})

Direction = Literal["out", "in", "both"]


def parse_relationship_type(value: RelationshipType | str) -> RelationshipType:
    """Coerce a relationship type, raising ValidationError for unknown values."""
    try:
        return RelationshipType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in RelationshipType)
        raise validation_error(
            "type", f"Unknown relationship type {value!r}; expected one of: {allowed}"
        ) from None


def check_strength(strength: float) -> float:
    """Validate a relationship strength, returning it as float."""
    try:
        value = float(strength)
    except (TypeError, ValueError):
        raise validation_error("strength", f"Strength must be a number, got {strength!r}") from None
    if not 0.0 <= value <= 1.0:
        raise validation_error("strength", f"Strength must be within [0, 1], got {value}")
    return value


class ConceptGraphStore:
    """
    Validated CRUD over concepts and relationships.

    Args:
        storage: Graph storage capability (transactions, snapshots)
        clock: Source of timestamps (defaults to wall-clock time)
    """

    def __init__(self, storage: GraphStorage, clock: Clock | None = None) -> None:
        self._storage = storage
        self._clock = clock or SystemClock()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # CONCEPT OPERATIONS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def create_concept(
        self,
        owner_id: str,
        name: str,
        description: str | None = None,
        aliases: list[str] | None = None,
        concept_id: str | None = None,
    ) -> Concept:
        """
        Create a concept in an owner's graph.

        Args:
            owner_id: ID of the owning user
            name: Primary name (must not be blank)
            description: Optional description
            aliases: Optional alternative names
            concept_id: Optional caller-supplied id (generated if omitted)

        Returns:
            The created Concept

        Raises:
            ValidationError: If the name is blank
            ConflictError: If ``concept_id`` is already in use
        """
        now = self._clock.now()
        fields: dict[str, Any] = {
            "owner_id": owner_id,
            "name": name,
            "description": description,
            "aliases": list(aliases or []),
            "created_at": now,
            "updated_at": now,
        }
        if concept_id is not None:
            fields["id"] = concept_id
        try:
            concept = Concept(**fields)
        except PydanticValidationError as e:
            raise from_pydantic(e, "Invalid concept") from None

        # Aliases equal to the name carry no information
        concept.aliases = [a for a in concept.aliases if a.lower() != concept.name.lower()]

        if await self._storage.owner_of(concept.id) is not None:
            raise ConflictError("Concept id already in use", detail=f"Concept ID: {concept.id}")

        async with self._storage.transaction(owner_id) as txn:
            if concept.id in txn.graph:
                raise ConflictError(
                    "Concept id already in use", detail=f"Concept ID: {concept.id}"
                )
            txn.graph.add_concept(concept)

        logger.info(f"Created concept {concept.id} ({concept.name}) for owner {owner_id}")
        return concept.model_copy(deep=True)

    async def get_concept(self, concept_id: str) -> Concept:
        """
        Get a concept by id.

        Raises:
            NotFoundError: If no such concept exists
        """
        graph = await self._snapshot_for(concept_id)
        concept = graph.get_concept(concept_id)
        if concept is None:
            raise concept_not_found(concept_id)
        return concept.model_copy(deep=True)

    async def list_concepts(self, owner_id: str) -> list[Concept]:
        """All of an owner's concepts, sorted by name then id."""
        graph = await self._storage.snapshot(owner_id)
        concepts = sorted(graph.concepts(), key=lambda c: (c.name.lower(), c.id))
        return [c.model_copy(deep=True) for c in concepts]

    async def find_by_name(self, owner_id: str, name: str) -> Concept | None:
        """Concept whose name equals ``name`` (case-insensitive)."""
        graph = await self._storage.snapshot(owner_id)
        lowered = name.strip().lower()
        matches = sorted(
            (c for c in graph.concepts() if c.name.lower() == lowered),
            key=lambda c: c.id,
        )
        return matches[0].model_copy(deep=True) if matches else None

    async def find_by_alias(self, owner_id: str, alias: str) -> Concept | None:
        """Concept carrying ``alias`` among its aliases (case-insensitive)."""
        graph = await self._storage.snapshot(owner_id)
        lowered = alias.strip().lower()
        matches = sorted(
            (c for c in graph.concepts() if any(a.lower() == lowered for a in c.aliases)),
            key=lambda c: c.id,
        )
        return matches[0].model_copy(deep=True) if matches else None

    async def update_concept(self, concept_id: str, **fields: Any) -> Concept:
        """
        Update name, description and/or aliases of a concept.

        Args:
            concept_id: ID of the concept to update
            **fields: Any of ``name``, ``description``, ``aliases``

        Returns:
            The updated Concept

        Raises:
            NotFoundError: If the concept does not exist
            ValidationError: On unknown fields or a blank name
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise validation_error(
                ", ".join(sorted(unknown)),
                f"Only {', '.join(sorted(UPDATABLE_FIELDS))} can be updated",
            )

        owner_id = await self._require_owner(concept_id)
        async with self._storage.transaction(owner_id) as txn:
            current = self._require_concept(txn.graph, concept_id)
            data = current.model_dump()
            data.update(fields)
            if data.get("aliases") is None:
                data["aliases"] = []
            data["updated_at"] = self._clock.now()
            try:
                updated = Concept.model_validate(data)
            except PydanticValidationError as e:
                raise from_pydantic(e, "Invalid concept update") from None
            updated.aliases = [
                a for a in updated.aliases if a.lower() != updated.name.lower()
            ]
            txn.graph.add_concept(updated)

        logger.info(f"Updated concept {concept_id}: {', '.join(sorted(fields)) or 'no fields'}")
        return updated.model_copy(deep=True)

    async def delete_concept(self, concept_id: str) -> None:
        """
        Delete a concept and all relationships touching it.

        Raises:
            NotFoundError: If the concept does not exist
        """
        owner_id = await self._require_owner(concept_id)
        async with self._storage.transaction(owner_id) as txn:
            self._require_concept(txn.graph, concept_id)
            removed = txn.graph.remove_concept(concept_id)
            now = self._clock.now()
            for rel in removed:
                other = rel.target_id if rel.source_id == concept_id else rel.source_id
                self._touch(txn.graph, other, now)

        logger.info(
            f"Deleted concept {concept_id} and {len(removed)} relationships "
            f"for owner {owner_id}"
        )

    async def increment_entry_count(self, concept_id: str) -> Concept:
        """Record one more knowledge entry linked to a concept."""
        return await self._adjust_entry_count(concept_id, 1)

    async def decrement_entry_count(self, concept_id: str) -> Concept:
        """
        Record one fewer knowledge entry linked to a concept.

        Raises:
            ValidationError: If the count is already zero
        """
        return await self._adjust_entry_count(concept_id, -1)

    async def _adjust_entry_count(self, concept_id: str, delta: int) -> Concept:
        owner_id = await self._require_owner(concept_id)
        async with self._storage.transaction(owner_id) as txn:
            concept = self._require_concept(txn.graph, concept_id)
            if concept.entry_count + delta < 0:
                raise validation_error("entry_count", "Entry count cannot become negative")
            concept.entry_count += delta
            concept.updated_at = self._clock.now()
        return concept.model_copy(deep=True)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # RELATIONSHIP OPERATIONS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def create_relationship(
        self,
        source_id: str,
        target_id: str,
        rel_type: RelationshipType | str,
        strength: float = 1.0,
    ) -> Relationship:
        """
        Create or update the relationship (source, target, type).

        Args:
            source_id: ID of the concept the edge starts from
            target_id: ID of the concept the edge points to
            rel_type: Relationship type
            strength: Weight in [0, 1] (default 1.0)

        Returns:
            The stored Relationship

        Raises:
            ValidationError: On self-loop, out-of-range strength, unknown
                type, or endpoints with different owners
            NotFoundError: If either endpoint does not exist
        """
        rel_type = parse_relationship_type(rel_type)
        strength = check_strength(strength)
        if source_id == target_id:
            raise validation_error("target_id", "A concept cannot relate to itself")

        source_owner = await self._require_owner(source_id)
        target_owner = await self._require_owner(target_id)
        if source_owner != target_owner:
            raise validation_error(
                "target_id", "Both concepts of a relationship must have the same owner"
            )

        async with self._storage.transaction(source_owner) as txn:
            self._require_concept(txn.graph, source_id)
            self._require_concept(txn.graph, target_id)
            now = self._clock.now()
            existing = txn.graph.get_relationship(source_id, target_id, rel_type)
            relationship = Relationship(
                source_id=source_id,
                target_id=target_id,
                type=rel_type,
                strength=strength,
                created_at=existing.created_at if existing is not None else now,
                updated_at=now,
            )
            txn.graph.set_relationship(relationship)
            self._touch(txn.graph, source_id, now)
            self._touch(txn.graph, target_id, now)

        action = "Updated" if existing is not None else "Created"
        logger.info(
            f"{action} relationship {source_id} -[{rel_type.value}:{strength}]-> {target_id}"
        )
        return relationship.model_copy()

    async def remove_relationship(
        self,
        source_id: str,
        target_id: str,
        rel_type: RelationshipType | str | None = None,
    ) -> int:
        """
        Remove relationships from source to target.

        Removes the edge of ``rel_type`` or, if omitted, every edge from
        source to target. Removing edges that do not exist is a no-op.

        Returns:
            Number of relationships removed

        Raises:
            NotFoundError: If either endpoint does not exist
        """
        parsed = parse_relationship_type(rel_type) if rel_type is not None else None
        owner_id = await self._require_owner(source_id)
        await self._require_owner(target_id)

        async with self._storage.transaction(owner_id) as txn:
            self._require_concept(txn.graph, source_id)
            if parsed is not None:
                types = [parsed]
            else:
                types = [r.type for r in txn.graph.relationships_between(source_id, target_id)]
            removed = 0
            for t in types:
                if txn.graph.remove_relationship(source_id, target_id, t) is not None:
                    removed += 1
            if removed:
                now = self._clock.now()
                self._touch(txn.graph, source_id, now)
                self._touch(txn.graph, target_id, now)

        logger.info(f"Removed {removed} relationship(s) {source_id} -> {target_id}")
        return removed

    async def get_relationships(
        self, concept_id: str, direction: Direction = "both"
    ) -> list[Relationship]:
        """
        Relationships touching a concept.

        Args:
            concept_id: ID of the concept
            direction: "out", "in" or "both"

        Raises:
            NotFoundError: If the concept does not exist
            ValidationError: On an unknown direction
        """
        graph = await self._snapshot_for(concept_id)
        self._require_concept(graph, concept_id)
        if direction == "out":
            rels = graph.out_relationships(concept_id)
        elif direction == "in":
            rels = graph.in_relationships(concept_id)
        elif direction == "both":
            rels = graph.incident_relationships(concept_id)
        else:
            raise validation_error("direction", f"Unknown direction {direction!r}")
        rels.sort(key=lambda r: (r.source_id, r.target_id, r.type.value))
        return [r.model_copy() for r in rels]

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # HELPERS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def _require_owner(self, concept_id: str) -> str:
        owner_id = await self._storage.owner_of(concept_id)
        if owner_id is None:
            raise concept_not_found(concept_id)
        return owner_id

    async def _snapshot_for(self, concept_id: str) -> ConceptGraph:
        owner_id = await self._require_owner(concept_id)
        return await self._storage.snapshot(owner_id)

    @staticmethod
    def _require_concept(graph: ConceptGraph, concept_id: str) -> Concept:
        # The owner index may be stale if a concurrent transaction removed it
        concept = graph.get_concept(concept_id)
        if concept is None:
            raise concept_not_found(concept_id)
        return concept

    @staticmethod
    def _touch(graph: ConceptGraph, concept_id: str, now: datetime) -> None:
        concept = graph.get_concept(concept_id)
        if concept is not None:
            concept.updated_at = now




"""
Tests for ConceptGraphStore.

Tests cover:
- Concept CRUD and name/alias lookup
- Relationship validation (self-loop, strength, type, owner boundary)
- Upsert semantics per (source, target, type)
- Cascading delete and updated_at bookkeeping
- Entry count adjustments
- Transaction rollback on failure
"""

from __future__ import annotations

import pytest

from sage.core.clock import FixedClock
from sage.core.errors import ConflictError, NotFoundError, ValidationError
from sage.graph.models import RelationshipType
from sage.graph.store import ConceptGraphStore, check_strength, parse_relationship_type
from sage.storage.memory import InMemoryGraphStorage

OWNER = "user-1"
OTHER_OWNER = "user-2"


class TestHelpers:
    """Test module-level validators."""

    def test_parse_relationship_type(self) -> None:
        assert parse_relationship_type("part_of") is RelationshipType.PART_OF

    def test_parse_unknown_type(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_relationship_type("likes")
        assert "related_to" in (exc_info.value.detail or "")

    @pytest.mark.parametrize("value", [-0.01, 1.01, "strong", None])
    def test_check_strength_rejects(self, value: object) -> None:
        with pytest.raises(ValidationError):
            check_strength(value)  # type: ignore[arg-type]

    @pytest.mark.parametrize("value", [0, 0.5, 1])
    def test_check_strength_accepts_bounds(self, value: float) -> None:
        assert check_strength(value) == float(value)


class TestConceptOperations:
    """Test concept create/read/update/delete."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, store: ConceptGraphStore, clock: FixedClock) -> None:
        concept = await store.create_concept(
            OWNER, "Linear Algebra", description="Vectors", aliases=["LA"]
        )
        fetched = await store.get_concept(concept.id)
        assert fetched.name == "Linear Algebra"
        assert fetched.aliases == ["LA"]
        assert fetched.owner_id == OWNER
        assert fetched.entry_count == 0
        assert fetched.created_at == clock.now()

    @pytest.mark.asyncio
    async def test_create_with_explicit_id(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Sets", concept_id="sets")
        assert concept.id == "sets"

    @pytest.mark.asyncio
    async def test_duplicate_id_conflicts(self, store: ConceptGraphStore) -> None:
        await store.create_concept(OWNER, "Sets", concept_id="sets")
        with pytest.raises(ConflictError):
            await store.create_concept(OTHER_OWNER, "Other Sets", concept_id="sets")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "   "])
    async def test_blank_name_rejected(self, store: ConceptGraphStore, name: str) -> None:
        with pytest.raises(ValidationError):
            await store.create_concept(OWNER, name)
        assert await store.list_concepts(OWNER) == []

    @pytest.mark.asyncio
    async def test_alias_equal_to_name_dropped(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Graph", aliases=["graph", "Network"])
        assert concept.aliases == ["Network"]

    @pytest.mark.asyncio
    async def test_aliases_differing_in_case_collapse(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Machine Learning", aliases=["ML", "ml"])
        assert concept.aliases == ["ML"]

    @pytest.mark.asyncio
    async def test_get_missing(self, store: ConceptGraphStore) -> None:
        with pytest.raises(NotFoundError):
            await store.get_concept("missing")

    @pytest.mark.asyncio
    async def test_returned_concept_is_a_copy(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Sets")
        concept.name = "Mutated"
        assert (await store.get_concept(concept.id)).name == "Sets"

    @pytest.mark.asyncio
    async def test_list_concepts_sorted_and_scoped(self, store: ConceptGraphStore) -> None:
        await store.create_concept(OWNER, "beta")
        await store.create_concept(OWNER, "Alpha")
        await store.create_concept(OTHER_OWNER, "Gamma")
        names = [c.name for c in await store.list_concepts(OWNER)]
        assert names == ["Alpha", "beta"]

    @pytest.mark.asyncio
    async def test_find_by_name_and_alias(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Machine Learning", aliases=["ML"])
        assert (await store.find_by_name(OWNER, "machine learning")).id == concept.id
        assert (await store.find_by_alias(OWNER, "ml")).id == concept.id
        assert await store.find_by_name(OWNER, "ML") is None
        assert await store.find_by_name(OTHER_OWNER, "Machine Learning") is None

    @pytest.mark.asyncio
    async def test_update_concept(self, store: ConceptGraphStore, clock: FixedClock) -> None:
        concept = await store.create_concept(OWNER, "Sets")
        clock.advance(minutes=5)
        updated = await store.update_concept(
            concept.id, name="Set Theory", description="Foundations", aliases=["Sets"]
        )
        assert updated.name == "Set Theory"
        assert updated.description == "Foundations"
        assert updated.aliases == ["Sets"]
        assert updated.updated_at == clock.now()
        assert updated.created_at == concept.created_at

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Sets")
        with pytest.raises(ValidationError):
            await store.update_concept(concept.id, entry_count=10)
        with pytest.raises(ValidationError):
            await store.update_concept(concept.id, owner_id=OTHER_OWNER)

    @pytest.mark.asyncio
    async def test_update_rejects_blank_name(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Sets")
        with pytest.raises(ValidationError):
            await store.update_concept(concept.id, name=" ")
        assert (await store.get_concept(concept.id)).name == "Sets"

    @pytest.mark.asyncio
    async def test_update_missing(self, store: ConceptGraphStore) -> None:
        with pytest.raises(NotFoundError):
            await store.update_concept("missing", name="X")

    @pytest.mark.asyncio
    async def test_delete_cascades_relationships(
        self, store: ConceptGraphStore, clock: FixedClock
    ) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        c = await store.create_concept(OWNER, "C")
        await store.create_relationship(a.id, b.id, "builds_on")
        await store.create_relationship(c.id, b.id, "part_of")

        clock.advance(hours=1)
        await store.delete_concept(b.id)

        with pytest.raises(NotFoundError):
            await store.get_concept(b.id)
        assert await store.get_relationships(a.id) == []
        assert await store.get_relationships(c.id) == []
        assert (await store.get_concept(a.id)).updated_at == clock.now()

    @pytest.mark.asyncio
    async def test_delete_missing(self, store: ConceptGraphStore) -> None:
        with pytest.raises(NotFoundError):
            await store.delete_concept("missing")


class TestEntryCount:
    """Test entry count adjustments."""

    @pytest.mark.asyncio
    async def test_increment_and_decrement(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Sets")
        await store.increment_entry_count(concept.id)
        result = await store.increment_entry_count(concept.id)
        assert result.entry_count == 2
        result = await store.decrement_entry_count(concept.id)
        assert result.entry_count == 1

    @pytest.mark.asyncio
    async def test_decrement_at_zero_rejected(self, store: ConceptGraphStore) -> None:
        concept = await store.create_concept(OWNER, "Sets")
        with pytest.raises(ValidationError):
            await store.decrement_entry_count(concept.id)
        assert (await store.get_concept(concept.id)).entry_count == 0


class TestRelationshipOperations:
    """Test relationship validation and upsert semantics."""

    @pytest.mark.asyncio
    async def test_create_relationship(self, store: ConceptGraphStore, clock: FixedClock) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        clock.advance(seconds=30)
        rel = await store.create_relationship(a.id, b.id, RelationshipType.BUILDS_ON, 0.7)
        assert rel.source_id == a.id
        assert rel.target_id == b.id
        assert rel.strength == 0.7
        assert (await store.get_concept(a.id)).updated_at == clock.now()
        assert (await store.get_concept(b.id)).updated_at == clock.now()

    @pytest.mark.asyncio
    async def test_default_strength(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        rel = await store.create_relationship(a.id, b.id, "related_to")
        assert rel.strength == 1.0

    @pytest.mark.asyncio
    async def test_upsert_overwrites_strength(
        self, store: ConceptGraphStore, clock: FixedClock
    ) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        first = await store.create_relationship(a.id, b.id, "builds_on", 0.2)
        clock.advance(minutes=1)
        second = await store.create_relationship(a.id, b.id, "builds_on", 0.9)

        rels = await store.get_relationships(a.id, direction="out")
        assert len(rels) == 1
        assert rels[0].strength == 0.9
        assert second.created_at == first.created_at
        assert second.updated_at == clock.now()

    @pytest.mark.asyncio
    async def test_related_to_is_not_mirrored(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        await store.create_relationship(a.id, b.id, "related_to")
        assert await store.get_relationships(b.id, direction="out") == []
        assert len(await store.get_relationships(b.id, direction="in")) == 1

    @pytest.mark.asyncio
    async def test_self_loop_rejected(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        with pytest.raises(ValidationError):
            await store.create_relationship(a.id, a.id, "related_to")

    @pytest.mark.asyncio
    async def test_strength_out_of_range(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        with pytest.raises(ValidationError):
            await store.create_relationship(a.id, b.id, "related_to", 1.5)
        assert await store.get_relationships(a.id) == []

    @pytest.mark.asyncio
    async def test_unknown_type(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        with pytest.raises(ValidationError):
            await store.create_relationship(a.id, b.id, "friend_of")

    @pytest.mark.asyncio
    async def test_cross_owner_rejected(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OTHER_OWNER, "B")
        with pytest.raises(ValidationError):
            await store.create_relationship(a.id, b.id, "related_to")

    @pytest.mark.asyncio
    async def test_missing_endpoint(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        with pytest.raises(NotFoundError):
            await store.create_relationship(a.id, "missing", "related_to")

    @pytest.mark.asyncio
    async def test_remove_relationship_by_type(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        await store.create_relationship(a.id, b.id, "builds_on")
        await store.create_relationship(a.id, b.id, "related_to")

        assert await store.remove_relationship(a.id, b.id, "builds_on") == 1
        remaining = await store.get_relationships(a.id, direction="out")
        assert [r.type for r in remaining] == [RelationshipType.RELATED_TO]

    @pytest.mark.asyncio
    async def test_remove_all_relationships_between(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        await store.create_relationship(a.id, b.id, "builds_on")
        await store.create_relationship(a.id, b.id, "related_to")
        await store.create_relationship(b.id, a.id, "related_to")

        assert await store.remove_relationship(a.id, b.id) == 2
        assert len(await store.get_relationships(a.id)) == 1

    @pytest.mark.asyncio
    async def test_remove_absent_relationship_is_noop(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        assert await store.remove_relationship(a.id, b.id, "builds_on") == 0

    @pytest.mark.asyncio
    async def test_get_relationships_direction(self, store: ConceptGraphStore) -> None:
        a = await store.create_concept(OWNER, "A")
        b = await store.create_concept(OWNER, "B")
        c = await store.create_concept(OWNER, "C")
        await store.create_relationship(a.id, b.id, "builds_on")
        await store.create_relationship(c.id, a.id, "part_of")

        assert [r.target_id for r in await store.get_relationships(a.id, "out")] == [b.id]
        assert [r.source_id for r in await store.get_relationships(a.id, "in")] == [c.id]
        assert len(await store.get_relationships(a.id, "both")) == 2
        with pytest.raises(ValidationError):
            await store.get_relationships(a.id, "sideways")  # type: ignore[arg-type]


class TestAtomicity:
    """A failed mutation leaves the committed graph untouched."""

    @pytest.mark.asyncio
    async def test_failed_transaction_rolls_back(
        self, storage: InMemoryGraphStorage, store: ConceptGraphStore
    ) -> None:
        a = await store.create_concept(OWNER, "A")

        with pytest.raises(RuntimeError):
            async with storage.transaction(OWNER) as txn:
                txn.graph.get_concept(a.id).name = "Half-written"
                txn.graph.remove_concept(a.id)
                raise RuntimeError("storage failure")

        assert (await store.get_concept(a.id)).name == "A"

    @pytest.mark.asyncio
    async def test_snapshot_not_modified_by_later_commit(
        self, storage: InMemoryGraphStorage, store: ConceptGraphStore
    ) -> None:
        a = await store.create_concept(OWNER, "A")
        snapshot = await storage.snapshot(OWNER)
        await store.update_concept(a.id, name="Renamed")
        assert snapshot.get_concept(a.id).name == "A"

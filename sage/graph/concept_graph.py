"""
ConceptGraph: the per-owner graph data structure.

Holds one owner's concepts and relationships. Uses NetworkX internally
for adjacency so traversals walk an index over concept ids rather than
following object references.

Design Decisions:
- Dict-based concept lookup by id
- NetworkX MultiDiGraph with the relationship type as edge key, so the
  (source, target, type) triple is unique by construction
- Every stored edge is strictly directed; symmetric readings are a
  traversal concern
- No business validation here: ConceptGraphStore enforces invariants
  before calling into this structure
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

import networkx as nx  # type: ignore[import-untyped]

from sage.graph.models import Concept, Relationship, RelationshipType


class ConceptGraph:
    """
    In-memory concept graph for a single owner.

    Usage:
        graph = ConceptGraph(owner_id="user-1")
        graph.add_concept(Concept(id="a", owner_id="user-1", name="Algebra"))
        graph.add_concept(Concept(id="b", owner_id="user-1", name="Calculus"))
        graph.set_relationship(
            Relationship(source_id="a", target_id="b", type="prerequisite_of")
        )

    Attributes:
        owner_id: ID of the user owning every concept in this graph
    """

    def __init__(self, owner_id: str) -> None:
        self.owner_id = owner_id
        self._concepts: dict[str, Concept] = {}
        self._graph: nx.MultiDiGraph = nx.MultiDiGraph()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # CONCEPT OPERATIONS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def add_concept(self, concept: Concept) -> Concept:
        """
        Add or replace a concept node.

        Args:
            concept: The Concept to store

        Returns:
            The stored Concept (same object)
        """
        self._concepts[concept.id] = concept
        self._graph.add_node(concept.id)
        return concept

    def get_concept(self, concept_id: str) -> Concept | None:
        return self._concepts.get(concept_id)

    def remove_concept(self, concept_id: str) -> list[Relationship]:
        """
        Remove a concept and every edge touching it.

        Args:
            concept_id: ID of the concept to remove

        Returns:
            The relationships that were removed along with the node
        """
        removed = self.incident_relationships(concept_id)
        self._concepts.pop(concept_id, None)
        if concept_id in self._graph:
            self._graph.remove_node(concept_id)
        return removed

    def concepts(self) -> Iterator[Concept]:
        return iter(self._concepts.values())

    def __contains__(self, concept_id: object) -> bool:
        return concept_id in self._concepts

    def __len__(self) -> int:
        return len(self._concepts)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # RELATIONSHIP OPERATIONS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def set_relationship(self, relationship: Relationship) -> Relationship | None:
        """
        Store a relationship, replacing any edge with the same triple.

        Args:
            relationship: The Relationship to store

        Returns:
            The Relationship previously stored under the same
            (source, target, type), or None if the edge is new
        """
        previous = self.get_relationship(
            relationship.source_id, relationship.target_id, relationship.type
        )
        self._graph.add_edge(
            relationship.source_id,
            relationship.target_id,
            key=relationship.type.value,
            rel=relationship,
        )
        return previous

    def get_relationship(
        self, source_id: str, target_id: str, rel_type: RelationshipType
    ) -> Relationship | None:
        data = self._graph.get_edge_data(source_id, target_id, key=rel_type.value)
        if data is None:
            return None
        return data["rel"]

    def remove_relationship(
        self, source_id: str, target_id: str, rel_type: RelationshipType
    ) -> Relationship | None:
        existing = self.get_relationship(source_id, target_id, rel_type)
        if existing is not None:
            self._graph.remove_edge(source_id, target_id, key=rel_type.value)
        return existing

    def relationships_between(self, source_id: str, target_id: str) -> list[Relationship]:
        """All edges from source to target (one per type)."""
        data = self._graph.get_edge_data(source_id, target_id)
        if not data:
            return []
        return sorted((d["rel"] for d in data.values()), key=lambda r: r.type.value)

    def out_relationships(
        self,
        concept_id: str,
        types: Iterable[RelationshipType] | None = None,
    ) -> list[Relationship]:
        """
        Get outgoing edges of a concept.

        Args:
            concept_id: ID of the concept
            types: Optional filter on relationship types

        Returns:
            Relationships whose source is ``concept_id``
        """
        if concept_id not in self._graph:
            return []
        allowed = _type_filter(types)
        return [
            rel
            for _, _, rel in self._graph.out_edges(concept_id, data="rel")
            if allowed is None or rel.type in allowed
        ]

    def in_relationships(
        self,
        concept_id: str,
        types: Iterable[RelationshipType] | None = None,
    ) -> list[Relationship]:
        """Relationships whose target is ``concept_id``."""
        if concept_id not in self._graph:
            return []
        allowed = _type_filter(types)
        return [
            rel
            for _, _, rel in self._graph.in_edges(concept_id, data="rel")
            if allowed is None or rel.type in allowed
        ]

    def incident_relationships(self, concept_id: str) -> list[Relationship]:
        """Incoming and outgoing edges of a concept."""
        return self.out_relationships(concept_id) + self.in_relationships(concept_id)

    def relationships(self) -> list[Relationship]:
        return [rel for _, _, rel in self._graph.edges(data="rel")]

    def degree(self, concept_id: str) -> int:
        """Incoming plus outgoing edge count."""
        if concept_id not in self._graph:
            return 0
        return int(self._graph.degree(concept_id))

    @property
    def relationship_count(self) -> int:
        return int(self._graph.number_of_edges())

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # COPY / EXPORT
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def copy(self) -> ConceptGraph:
        """
        Deep copy of the graph.

        Transactions mutate a copy so the committed graph that readers
        hold is never modified in place.
        """
        clone = ConceptGraph(self.owner_id)
        for concept in self._concepts.values():
            clone.add_concept(concept.model_copy(deep=True))
        for rel in self.relationships():
            clone.set_relationship(rel.model_copy())
        return clone

    def to_networkx(self) -> nx.MultiDiGraph:
        """
        Build an attribute-only NetworkX graph suitable for export.

        Lists are joined with commas because GraphML has no list type.
        """
        exported: nx.MultiDiGraph = nx.MultiDiGraph()
        for concept in self._concepts.values():
            exported.add_node(
                concept.id,
                name=concept.name,
                description=concept.description or "",
                aliases=",".join(concept.aliases),
                entry_count=concept.entry_count,
            )
        for rel in self.relationships():
            exported.add_edge(
                rel.source_id,
                rel.target_id,
                key=rel.type.value,
                type=rel.type.value,
                strength=rel.strength,
            )
        return exported

    def stats(self) -> dict[str, Any]:
        """
        Get statistics about the graph.

        Returns:
            Dictionary with concept_count, relationship_count and a
            relationship_types breakdown (type -> count)
        """
        relationship_types: dict[str, int] = {}
        for rel in self.relationships():
            relationship_types[rel.type.value] = relationship_types.get(rel.type.value, 0) + 1
        return {
            "concept_count": len(self._concepts),
            "relationship_count": self.relationship_count,
            "relationship_types": relationship_types,
        }


def _type_filter(
    types: Iterable[RelationshipType] | None,
) -> frozenset[RelationshipType] | None:
    if types is None:
        return None
    return frozenset(RelationshipType(t) for t in types)

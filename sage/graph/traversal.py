"""
GraphTraversal: read-only algorithms over a concept graph snapshot.

Every operation reads the owner's last committed graph and never mutates
it. The graph is a general directed graph even for nominally hierarchical
relationship types, so every walk keeps an explicit visited-set and a hop
bound; cycles end traversal deterministically instead of looping.

Operations:
- get_related: bounded breadth-first expansion along outgoing edges
- find_path: unweighted shortest path with deterministic tie-breaking
- get_hierarchy: ancestors/descendants along part_of and prerequisite_of
- find_concepts: name/alias search
- get_top_concepts: most connected concepts
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from typing import TYPE_CHECKING

from sage.core.config import Settings, get_settings
from sage.core.errors import concept_not_found, validation_error
from sage.graph.concept_graph import ConceptGraph
from sage.graph.models import (
    HIERARCHY_TYPES,
    SYMMETRIC_TYPES,
    Concept,
    ConceptHierarchy,
    ConceptPath,
    ConceptWithStats,
    PathStep,
    RelatedConcept,
    Relationship,
    RelationshipType,
)
from sage.graph.store import parse_relationship_type

if TYPE_CHECKING:
    from sage.storage.base import GraphStorage

logger = logging.getLogger(__name__)


def _strongest(relationships: Iterable[Relationship]) -> Relationship:
    """Pick the strongest edge; ties go to the alphabetically first type."""
    return min(relationships, key=lambda r: (-r.strength, r.type.value))


class GraphTraversal:
    """
    Read-only queries over concept graphs.

    Args:
        storage: Graph storage capability (snapshot reads only)
        settings: Traversal bounds and default limits
    """

    def __init__(self, storage: GraphStorage, settings: Settings | None = None) -> None:
        self._storage = storage
        self._settings = settings or get_settings()

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # RELATED CONCEPTS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def get_related(
        self,
        concept_id: str,
        types: Iterable[RelationshipType | str] | None = None,
        depth: int = 1,
        limit: int | None = None,
        min_strength: float | None = None,
        symmetric: bool = False,
    ) -> list[RelatedConcept]:
        """
        Find concepts reachable from a concept within ``depth`` hops.

        Expands breadth-first along outgoing edges. Each concept is
        collected the first time it is reached, i.e. at its shortest hop
        distance; when several edges reach it on that same hop the
        strongest one is reported.

        Args:
            concept_id: ID of the start concept
            types: Optional relationship types to follow
            depth: Maximum number of hops (>= 1)
            limit: Maximum results; always capped at max_traversal_results
            min_strength: Ignore edges weaker than this
            symmetric: Also follow incoming related_to/contrasts_with edges

        Returns:
            RelatedConcepts sorted by strength descending, then id ascending

        Raises:
            NotFoundError: If the start concept does not exist
            ValidationError: On depth < 1 or a negative limit
        """
        if depth < 1:
            raise validation_error("depth", f"Depth must be at least 1, got {depth}")
        if limit is not None and limit < 0:
            raise validation_error("limit", f"Limit cannot be negative, got {limit}")
        allowed = self._parse_types(types)

        graph = await self._graph_for(concept_id)
        if concept_id not in graph:
            raise concept_not_found(concept_id)

        reached: dict[str, RelatedConcept] = {}
        visited: set[str] = {concept_id}
        frontier: list[str] = [concept_id]

        for hop in range(1, depth + 1):
            candidates: dict[str, list[Relationship]] = {}
            for node_id in frontier:
                for rel, neighbor in self._neighbors(graph, node_id, allowed, symmetric):
                    if neighbor in visited:
                        continue
                    if min_strength is not None and rel.strength < min_strength:
                        continue
                    candidates.setdefault(neighbor, []).append(rel)

            if not candidates:
                break

            for neighbor_id, rels in candidates.items():
                best = _strongest(rels)
                concept = graph.get_concept(neighbor_id)
                if concept is None:
                    continue
                reached[neighbor_id] = RelatedConcept(
                    concept=concept.model_copy(deep=True),
                    relationship_type=best.type,
                    strength=best.strength,
                    depth=hop,
                )
            visited.update(candidates)
            frontier = sorted(candidates)

        results = sorted(reached.values(), key=lambda r: (-r.strength, r.concept.id))
        cap = self._settings.max_traversal_results
        effective = cap if limit is None else min(limit, cap)

        logger.debug(
            f"get_related({concept_id}, depth={depth}) reached {len(results)} concepts"
        )
        return results[:effective]

    @staticmethod
    def _neighbors(
        graph: ConceptGraph,
        node_id: str,
        allowed: frozenset[RelationshipType] | None,
        symmetric: bool,
    ) -> list[tuple[Relationship, str]]:
        pairs = [(rel, rel.target_id) for rel in graph.out_relationships(node_id, allowed)]
        if symmetric:
            reverse_types = SYMMETRIC_TYPES if allowed is None else SYMMETRIC_TYPES & allowed
            if reverse_types:
                pairs.extend(
                    (rel, rel.source_id)
                    for rel in graph.in_relationships(node_id, reverse_types)
                )
        return pairs

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # PATH FINDING
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def find_path(
        self,
        source_id: str,
        target_id: str,
        max_depth: int | None = None,
        relationship_types: Iterable[RelationshipType | str] | None = None,
    ) -> ConceptPath | None:
        """
        Find the shortest directed path between two concepts.

        Breadth-first search visiting neighbours in ascending id order, so
        among equally short paths the first one discovered in that order
        wins. Between two consecutive path nodes the strongest parallel
        edge is reported.

        Args:
            source_id: ID of the start concept
            target_id: ID of the end concept
            max_depth: Maximum number of edges (default from settings)
            relationship_types: Optional relationship types to follow

        Returns:
            The ConceptPath, or None if no path of at most ``max_depth``
            edges exists

        Raises:
            NotFoundError: If either concept does not exist
            ValidationError: On a negative max_depth
        """
        if max_depth is None:
            max_depth = self._settings.default_path_max_depth
        if max_depth < 0:
            raise validation_error("max_depth", f"max_depth cannot be negative, got {max_depth}")
        allowed = self._parse_types(relationship_types)

        graph = await self._graph_for(source_id)
        source = graph.get_concept(source_id)
        if source is None:
            raise concept_not_found(source_id)
        target = graph.get_concept(target_id)
        if target is None:
            # Unknown id, or a concept of another owner: both are unreachable
            if await self._storage.owner_of(target_id) is None:
                raise concept_not_found(target_id)
            return None

        if source_id == target_id:
            return ConceptPath(nodes=[source.model_copy(deep=True)], relationships=[])

        parents: dict[str, str] = {source_id: source_id}
        queue: deque[tuple[str, int]] = deque([(source_id, 0)])
        found = False

        while queue and not found:
            node_id, dist = queue.popleft()
            if dist >= max_depth:
                continue
            neighbors = sorted({rel.target_id for rel in graph.out_relationships(node_id, allowed)})
            for neighbor in neighbors:
                if neighbor in parents:
                    continue
                parents[neighbor] = node_id
                if neighbor == target_id:
                    found = True
                    break
                queue.append((neighbor, dist + 1))

        if not found:
            logger.debug(f"No path {source_id} -> {target_id} within {max_depth} edges")
            return None

        node_ids = [target_id]
        while node_ids[-1] != source_id:
            node_ids.append(parents[node_ids[-1]])
        node_ids.reverse()

        steps: list[PathStep] = []
        for a, b in zip(node_ids, node_ids[1:]):
            rels = [
                r for r in graph.relationships_between(a, b)
                if allowed is None or r.type in allowed
            ]
            best = _strongest(rels)
            steps.append(
                PathStep(
                    source_id=a,
                    target_id=b,
                    relationship_type=best.type,
                    strength=best.strength,
                )
            )

        nodes = [graph.get_concept(nid).model_copy(deep=True) for nid in node_ids]  # type: ignore[union-attr]
        return ConceptPath(nodes=nodes, relationships=steps)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # HIERARCHY
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def get_hierarchy(
        self,
        concept_id: str,
        ancestor_depth: int | None = None,
        descendant_depth: int | None = None,
    ) -> ConceptHierarchy:
        """
        Get ancestors and descendants along part_of / prerequisite_of edges.

        Ancestors are found by walking those edges against their direction
        (the current concept as target), descendants by walking them
        forward. Both walks stop at already visited concepts, so cycles
        that contradict hierarchy semantics still terminate.

        Args:
            concept_id: ID of the concept
            ancestor_depth: Maximum hops upwards (default from settings)
            descendant_depth: Maximum hops downwards (default from settings)

        Returns:
            ConceptHierarchy with both lists ordered by distance, then id

        Raises:
            NotFoundError: If the concept does not exist
        """
        default = self._settings.hierarchy_depth
        ancestor_depth = default if ancestor_depth is None else ancestor_depth
        descendant_depth = default if descendant_depth is None else descendant_depth
        if ancestor_depth < 0 or descendant_depth < 0:
            raise validation_error("depth", "Hierarchy depths cannot be negative")

        graph = await self._graph_for(concept_id)
        concept = graph.get_concept(concept_id)
        if concept is None:
            raise concept_not_found(concept_id)

        ancestors = self._walk(graph, concept_id, ancestor_depth, upwards=True)
        descendants = self._walk(graph, concept_id, descendant_depth, upwards=False)

        return ConceptHierarchy(
            concept=concept.model_copy(deep=True),
            ancestors=[graph.get_concept(i).model_copy(deep=True) for i in ancestors],  # type: ignore[union-attr]
            descendants=[graph.get_concept(i).model_copy(deep=True) for i in descendants],  # type: ignore[union-attr]
        )

    @staticmethod
    def _walk(graph: ConceptGraph, start_id: str, max_hops: int, upwards: bool) -> list[str]:
        visited: set[str] = {start_id}
        ordered: list[str] = []
        frontier = [start_id]
        for _ in range(max_hops):
            next_frontier: set[str] = set()
            for node_id in frontier:
                if upwards:
                    neighbors = [r.source_id for r in graph.in_relationships(node_id, HIERARCHY_TYPES)]
                else:
                    neighbors = [r.target_id for r in graph.out_relationships(node_id, HIERARCHY_TYPES)]
                next_frontier.update(n for n in neighbors if n not in visited)
            if not next_frontier:
                break
            layer = sorted(next_frontier)
            visited.update(layer)
            ordered.extend(layer)
            frontier = layer
        return ordered

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # SEARCH & RANKING
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def find_concepts(
        self, query: str, owner_id: str, limit: int | None = None
    ) -> list[Concept]:
        """
        Search an owner's concepts by name and aliases.

        Case-insensitive substring match. Exact matches of the name or an
        alias rank before substring matches; each group is alphabetical.

        Args:
            query: Text to look for
            owner_id: ID of the owner whose concepts are searched
            limit: Maximum results (default from settings)

        Returns:
            Matching concepts, best first
        """
        limit = self._settings.default_search_limit if limit is None else limit
        if limit < 0:
            raise validation_error("limit", f"Limit cannot be negative, got {limit}")
        needle = query.strip().lower()
        if not needle:
            return []

        graph = await self._storage.snapshot(owner_id)
        ranked: list[tuple[int, str, str, Concept]] = []
        for concept in graph.concepts():
            names = [concept.name.lower()] + [a.lower() for a in concept.aliases]
            if needle in names:
                rank = 0
            elif any(needle in n for n in names):
                rank = 1
            else:
                continue
            ranked.append((rank, concept.name.lower(), concept.id, concept))

        ranked.sort(key=lambda r: r[:3])
        cap = min(limit, self._settings.max_traversal_results)
        return [r[3].model_copy(deep=True) for r in ranked[:cap]]

    async def get_top_concepts(
        self, owner_id: str, limit: int | None = None
    ) -> list[ConceptWithStats]:
        """
        Most connected concepts of an owner.

        Ranked by degree (incoming + outgoing edges) descending, then
        entry_count descending, then id.

        Args:
            owner_id: ID of the owner
            limit: Maximum results (default from settings)

        Returns:
            ConceptWithStats records, most connected first
        """
        limit = self._settings.default_top_concepts_limit if limit is None else limit
        if limit < 0:
            raise validation_error("limit", f"Limit cannot be negative, got {limit}")

        graph = await self._storage.snapshot(owner_id)
        stats: list[ConceptWithStats] = []
        for concept in graph.concepts():
            incident = graph.incident_relationships(concept.id)
            avg = sum(r.strength for r in incident) / len(incident) if incident else 0.0
            stats.append(
                ConceptWithStats(
                    concept=concept.model_copy(deep=True),
                    connection_count=len(incident),
                    avg_relationship_strength=avg,
                )
            )

        stats.sort(
            key=lambda s: (-s.connection_count, -s.concept.entry_count, s.concept.id)
        )
        return stats[: min(limit, self._settings.max_traversal_results)]

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # HELPERS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def _graph_for(self, concept_id: str) -> ConceptGraph:
        owner_id = await self._storage.owner_of(concept_id)
        if owner_id is None:
            raise concept_not_found(concept_id)
        return await self._storage.snapshot(owner_id)

    @staticmethod
    def _parse_types(
        types: Iterable[RelationshipType | str] | None,
    ) -> frozenset[RelationshipType] | None:
        if types is None:
            return None
        return frozenset(parse_relationship_type(t) for t in types)

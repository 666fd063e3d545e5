"""
Concept knowledge graph.

This package provides the concept/relationship data models, the
per-owner graph structure, validated mutations (ConceptGraphStore),
read-only traversals (GraphTraversal) and concept merging
(ConceptMerger).
"""

from sage.graph.concept_graph import ConceptGraph
from sage.graph.merger import ConceptMerger
from sage.graph.models import (
    Concept,
    ConceptHierarchy,
    ConceptPath,
    ConceptWithStats,
    PathStep,
    RelatedConcept,
    Relationship,
    RelationshipType,
)
from sage.graph.store import ConceptGraphStore
from sage.graph.traversal import GraphTraversal

__all__ = [
    # Components
    "ConceptGraphStore",
    "GraphTraversal",
    "ConceptMerger",
    "ConceptGraph",
    # Models
    "Concept",
    "Relationship",
    "RelationshipType",
    "RelatedConcept",
    "PathStep",
    "ConceptPath",
    "ConceptHierarchy",
    "ConceptWithStats",
]

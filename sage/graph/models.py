"""
Concept graph data models: Concept, Relationship and traversal results.

Concept and Relationship are the stored records. The remaining models
(RelatedConcept, ConceptPath, ConceptHierarchy, ConceptWithStats) are
read-only results produced by GraphTraversal.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


def _generate_id() -> str:
    """Generate a 12-character hex ID from UUID4."""
    return uuid4().hex[:12]


def _utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class RelationshipType(str, Enum):
    """Kinds of directed relationship between two concepts."""

    RELATED_TO = "related_to"
    PREREQUISITE_OF = "prerequisite_of"
    BUILDS_ON = "builds_on"
    CONTRASTS_WITH = "contrasts_with"
    EXAMPLE_OF = "example_of"
    PART_OF = "part_of"


# Types walked by get_hierarchy (ancestors against, descendants along the edge)
HIERARCHY_TYPES: frozenset[RelationshipType] = frozenset(
    {RelationshipType.PART_OF, RelationshipType.PREREQUISITE_OF}
)

# Types that read naturally in both directions; only followed backwards
# when a traversal explicitly asks for symmetric semantics.
SYMMETRIC_TYPES: frozenset[RelationshipType] = frozenset(
    {RelationshipType.RELATED_TO, RelationshipType.CONTRASTS_WITH}
)


class Concept(BaseModel):
    """
    A named node in a user's personal knowledge graph.

    Attributes:
        id: Opaque stable identifier
        owner_id: ID of the user owning this concept
        name: Primary display name (never blank)
        description: Optional free-text description
        aliases: Alternative names, de-duplicated, in insertion order
        entry_count: Number of knowledge entries linked to this concept
        created_at: When this concept was created
        updated_at: When this concept was last modified
    """

    id: str = Field(default_factory=_generate_id)
    owner_id: str
    name: str
    description: str | None = None
    aliases: list[str] = Field(default_factory=list)
    entry_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value

    @field_validator("aliases")
    @classmethod
    def _dedupe_aliases(cls, value: list[str]) -> list[str]:
        kept: list[str] = []
        seen: set[str] = set()
        for alias in value:
            alias = alias.strip()
            if alias and alias.lower() not in seen:
                seen.add(alias.lower())
                kept.append(alias)
        return kept

    def has_name(self, text: str) -> bool:
        """True if ``text`` equals the name or an alias (case-insensitive)."""
        lowered = text.lower()
        return self.name.lower() == lowered or any(
            a.lower() == lowered for a in self.aliases
        )

    def add_alias(self, alias: str) -> bool:
        """
        Add an alternative name for this concept.

        Skips the alias if it matches the name or an existing alias
        (case-insensitive).

        Args:
            alias: Alternative name to add

        Returns:
            True if the alias was added
        """
        alias = alias.strip()
        if not alias or self.has_name(alias):
            return False
        self.aliases.append(alias)
        return True


class Relationship(BaseModel):
    """
    A directed, typed, weighted edge between two concepts.

    At most one Relationship exists per (source_id, target_id, type).

    Attributes:
        source_id: ID of the concept the edge starts from
        target_id: ID of the concept the edge points to
        type: Kind of relationship
        strength: Confidence/importance weight in [0, 1]
        created_at: When the edge was first created
        updated_at: When the edge's strength was last written
    """

    source_id: str
    target_id: str
    type: RelationshipType
    strength: float = Field(default=1.0, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def key(self) -> tuple[str, str, RelationshipType]:
        return (self.source_id, self.target_id, self.type)


class RelatedConcept(BaseModel):
    """A concept reached by get_related, with the edge that first reached it."""

    concept: Concept
    relationship_type: RelationshipType
    strength: float
    depth: int


class PathStep(BaseModel):
    """One edge of a ConceptPath."""

    source_id: str
    target_id: str
    relationship_type: RelationshipType
    strength: float


class ConceptPath(BaseModel):
    """Shortest path between two concepts."""

    nodes: list[Concept]
    relationships: list[PathStep]

    @property
    def length(self) -> int:
        return len(self.relationships)

    @property
    def node_ids(self) -> list[str]:
        return [c.id for c in self.nodes]


class ConceptHierarchy(BaseModel):
    """Ancestors and descendants of a concept along hierarchy edges."""

    concept: Concept
    ancestors: list[Concept] = Field(default_factory=list)
    descendants: list[Concept] = Field(default_factory=list)


class ConceptWithStats(BaseModel):
    """A concept with its connectivity statistics."""

    concept: Concept
    connection_count: int
    avg_relationship_strength: float

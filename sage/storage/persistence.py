"""
Concept graph persistence: save, load, list, export.

Each owner's graph gets its own directory holding a single graph.json:
- meta: owner id, timestamps, counts
- concepts: all Concept objects
- relationships: all Relationship objects

Design Decisions:
- One file per commit, written with tempfile + os.replace: a failed save
  leaves the previous graph on disk untouched
- JSON for data files (human-readable, easy debugging)
- GraphML for interoperability (Gephi, Neo4j, yEd, etc.) is an explicit
  export, not part of the commit
- Relationships whose endpoints are missing are dropped on load
- Owner ids that are not filesystem-safe are hashed into the directory
  name; the meta section always keeps the real id
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles
import networkx as nx  # type: ignore[import-untyped]

from sage.graph.concept_graph import ConceptGraph
from sage.graph.models import Concept, Relationship

logger = logging.getLogger(__name__)

GRAPH_FILE = "graph.json"
SAFE_DIR_PATTERN = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]{0,63}$")


def owner_dir_name(owner_id: str) -> str:
    """Filesystem-safe directory name for an owner."""
    if SAFE_DIR_PATTERN.match(owner_id):
        return owner_id
    return "h-" + hashlib.sha256(owner_id.encode("utf-8")).hexdigest()[:24]


async def _atomic_write(path: Path, content: str) -> None:
    """
    Atomically write content to a file.

    Writes to a temp file in the same directory, then renames it over the
    target. Renames are atomic on POSIX systems, so readers never observe a
    partially written file.

    Args:
        path: Target file path
        content: String content to write

    Raises:
        OSError: If write or rename fails
    """
    # Create temp file in same directory to ensure same filesystem for atomic rename
    fd, temp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    os.close(fd)
    try:
        async with aiofiles.open(temp_path, mode="w", encoding="utf-8") as f:
            await f.write(content)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


async def save_graph(graph: ConceptGraph, base_path: Path) -> Path:
    """
    Save an owner's graph to disk.

    Args:
        graph: ConceptGraph to save
        base_path: Parent directory for graph storage

    Returns:
        The owner's graph directory

    Raises:
        OSError: If the write fails; the previously saved graph is kept
    """
    graph_path = base_path / owner_dir_name(graph.owner_id)
    graph_path.mkdir(parents=True, exist_ok=True)

    stats = graph.stats()
    document = {
        "meta": {
            "owner_id": graph.owner_id,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "concept_count": stats["concept_count"],
            "relationship_count": stats["relationship_count"],
        },
        "concepts": [c.model_dump(mode="json") for c in graph.concepts()],
        "relationships": [r.model_dump(mode="json") for r in graph.relationships()],
    }

    await _atomic_write(graph_path / GRAPH_FILE, json.dumps(document, indent=2))
    return graph_path


def _read_document(graph_path: Path) -> dict[str, Any] | None:
    graph_file = graph_path / GRAPH_FILE
    if not graph_file.exists():
        return None
    return json.loads(graph_file.read_text(encoding="utf-8"))


def load_graph(graph_path: Path) -> ConceptGraph | None:
    """
    Load an owner's graph from disk.

    Args:
        graph_path: Path to the owner's graph directory

    Returns:
        Reconstructed ConceptGraph, or None if the path doesn't exist
        or holds no graph.json
    """
    document = _read_document(graph_path)
    if document is None:
        return None

    graph = ConceptGraph(owner_id=document["meta"]["owner_id"])
    for cd in document.get("concepts", []):
        graph.add_concept(Concept.model_validate(cd))

    for rd in document.get("relationships", []):
        rel = Relationship.model_validate(rd)
        if graph.get_concept(rel.source_id) is None or graph.get_concept(rel.target_id) is None:
            logger.warning(
                f"Dropping relationship {rel.source_id} -> {rel.target_id} "
                f"({rel.type.value}) with a missing endpoint in {graph_path}"
            )
            continue
        graph.set_relationship(rel)

    return graph


def list_graphs(base_path: Path) -> list[dict[str, Any]]:
    """
    List all stored graphs in a directory.

    Args:
        base_path: Parent directory containing owner directories

    Returns:
        List of meta dicts (with an added ``path`` key), sorted by
        saved_at descending
    """
    results: list[dict[str, Any]] = []

    if not base_path.exists():
        return results

    for graph_dir in base_path.iterdir():
        if not graph_dir.is_dir():
            continue

        try:
            document = _read_document(graph_dir)
        except (json.JSONDecodeError, OSError):
            # Skip corrupted or unreadable files
            continue
        if document is None or "meta" not in document:
            continue
        meta = dict(document["meta"])
        meta["path"] = str(graph_dir)
        results.append(meta)

    return sorted(results, key=lambda x: x.get("saved_at", ""), reverse=True)


def delete_graph(owner_id: str, base_path: Path) -> bool:
    """Remove an owner's stored graph files. Returns True if anything was removed."""
    graph_path = base_path / owner_dir_name(owner_id)
    if not graph_path.exists():
        return False
    for child in graph_path.iterdir():
        child.unlink()
    graph_path.rmdir()
    return True


def export_graphml(graph: ConceptGraph, output_path: Path) -> None:
    """
    Export a concept graph to GraphML format.

    Node attributes: name, description, aliases (comma-separated),
    entry_count. Edge attributes: type, strength.

    Args:
        graph: ConceptGraph to export
        output_path: File path for the GraphML output
    """
    nx.write_graphml(graph.to_networkx(), str(output_path))

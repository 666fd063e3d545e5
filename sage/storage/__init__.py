"""
Storage capability for the Sage core.

The core is written against the contracts in ``sage.storage.base``;
``sage.storage.memory`` provides in-memory implementations (optionally
file-backed) used by the service container and the tests.
"""

from sage.storage.base import (
    EntryRepository,
    GraphStorage,
    GraphTransaction,
    SessionRepository,
)
from sage.storage.memory import (
    FileGraphStorage,
    InMemoryEntryRepository,
    InMemoryGraphStorage,
    InMemorySessionRepository,
)

__all__ = [
    "GraphStorage",
    "GraphTransaction",
    "EntryRepository",
    "SessionRepository",
    "InMemoryGraphStorage",
    "FileGraphStorage",
    "InMemoryEntryRepository",
    "InMemorySessionRepository",
]

"""
Sage core: a per-user concept knowledge graph and a spaced-repetition
review engine.

Most callers only need ServiceContainer, which wires storage and every
component together.
"""

__version__ = "0.1.0"

"""
Relation resolution for entgen.

Resolves declared relation targets across packages, checks foreign keys,
and pairs or synthesizes inverse relations into a frozen RelationGraph.
"""

from .graph import RelationGraph
from .resolver import RelationResolver, default_foreign_key, inverse_name

__all__ = [
    "RelationGraph",
    "RelationResolver",
    "default_foreign_key",
    "inverse_name",
]

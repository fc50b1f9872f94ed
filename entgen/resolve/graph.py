"""
Resolved relation graph.

The RelationGraph holds every resolved relation edge, declared and
synthesized, indexed by source entity and by target entity.

Invariants:
    - Graph is mutable while the resolver runs, frozen before plans read it
    - Once frozen, no edge can be added
    - Edges of one entity iterate in declaration order, synthesized inverses
      after declared edges in the order they were derived
    - Fingerprint changes when any edge changes

Example:
    >>> graph = RelationGraph()
    >>> graph.add(relation)
    >>> graph.freeze()
    'sha256:...'
    >>> graph.outgoing("blog.User")
    [Relation(source='blog.User', name='posts', ...)]
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from typing import Dict, Iterator, List, Optional

from ..errors import GraphFrozenError
from ..ir.model import Relation

logger = logging.getLogger(__name__)


class RelationGraph:
    """Directed multigraph of entities connected by relations.

    Attributes:
        frozen: Whether the graph is frozen (immutable)
        fingerprint: SHA-256 hash of the graph (computed on freeze)
    """

    def __init__(self) -> None:
        self._outgoing: Dict[str, List[Relation]] = {}
        self._incoming: Dict[str, List[Relation]] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Graph fingerprint (available after freeze)."""
        return self._fingerprint

    def add(self, relation: Relation) -> None:
        """Add a resolved relation edge.

        Raises:
            GraphFrozenError: If the graph is frozen
            ValueError: If the relation is unresolved or its name is taken
        """
        with self._lock:
            if self._frozen:
                raise GraphFrozenError(
                    f"Cannot add relation '{relation.element}': graph is frozen"
                )
            if relation.target is None:
                raise ValueError(f"Relation '{relation.element}' is not resolved")
            edges = self._outgoing.setdefault(relation.source, [])
            if any(r.name == relation.name for r in edges):
                raise ValueError(f"Relation '{relation.element}' already exists")
            edges.append(relation)
            self._incoming.setdefault(relation.target, []).append(relation)

    def outgoing(self, entity: str) -> List[Relation]:
        """Relations declared on (or synthesized for) an entity."""
        return list(self._outgoing.get(entity, ()))

    def incoming(self, entity: str) -> List[Relation]:
        """Relations whose target is an entity."""
        return list(self._incoming.get(entity, ()))

    def get(self, entity: str, name: str) -> Optional[Relation]:
        for relation in self._outgoing.get(entity, ()):
            if relation.name == name:
                return relation
        return None

    def relations(self) -> Iterator[Relation]:
        """Iterate over all edges, grouped by source entity in sorted order."""
        for source in sorted(self._outgoing):
            yield from self._outgoing[source]

    def __len__(self) -> int:
        return sum(len(edges) for edges in self._outgoing.values())

    def freeze(self) -> str:
        """Freeze the graph and compute its fingerprint.

        Raises:
            GraphFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise GraphFrozenError("Relation graph is already frozen")
            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Relation graph frozen with {len(self)} edges, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"

    def to_dict(self) -> dict:
        return {
            "relations": [r.to_dict() for r in self.relations()],
        }

"""
Relation resolver.

Completes the relations declared by the IR builder:
    1. Resolve each target (and join entity) to a fully-qualified entity
    2. Determine the foreign-key owner and check the key column exists with
       a type compatible with the referenced column
    3. Pair each relation with its inverse, or synthesize one
    4. Detect conflicting inverses

Foreign-key ownership by kind:
    BELONGS_TO      key column on the declaring entity, references the target
    HAS_ONE/MANY    key column on the target, references the declaring entity
    MANY_TO_MANY    two key columns on the join entity, one per side

Invariants:
    - Every resolved relation has exactly one inverse in the graph, either
      declared explicitly or synthesized
    - Resolution is deterministic: entities are visited in sorted order and
      relations in declaration order
    - Resolving the same IR twice yields equal graphs
    - A relation that failed to resolve never gets a synthesized inverse
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Set, Tuple

from ..errors import Diagnostics, ErrorKind
from ..ir.model import Column, Entity, Relation, RelationKind, SchemaIr
from ..ir.naming import pluralize, to_snake_case
from ..ir.symbols import SymbolTable
from .graph import RelationGraph

logger = logging.getLogger(__name__)


def default_foreign_key(kind: RelationKind, source: Entity, target: Entity) -> str:
    """Default key column name for a non-join relation."""
    if kind is RelationKind.BELONGS_TO:
        return f"{to_snake_case(target.name)}_id"
    return f"{to_snake_case(source.name)}_id"


def inverse_name(kind: RelationKind, source: Entity) -> str:
    """Name of a synthesized inverse of kind ``kind`` pointing at ``source``."""
    name = to_snake_case(source.name)
    return pluralize(name) if kind.is_list else name


class RelationResolver:
    """Resolves declared relations into a frozen RelationGraph.

    Example:
        >>> diagnostics = Diagnostics()
        >>> graph = RelationResolver(ir, diagnostics).resolve()
        >>> [r.name for r in graph.outgoing("blog.User")]
        ['posts']
    """

    def __init__(self, ir: SchemaIr, diagnostics: Diagnostics) -> None:
        self.ir = ir
        self.diagnostics = diagnostics
        # Skipped entities stay visible as resolution targets
        self.symbols = SymbolTable(ir.entities)

    def resolve(self) -> RelationGraph:
        """Resolve every relation and return the frozen graph."""
        declared: List[Relation] = []
        for entity in self.ir.iter_entities():
            for relation in entity.relations:
                resolved = self._resolve_relation(entity, relation)
                if resolved is not None:
                    declared.append(resolved)

        declared, synthesized = self._pair_inverses(declared)

        graph = RelationGraph()
        by_source: Dict[str, List[Relation]] = {}
        for relation in declared + synthesized:
            by_source.setdefault(relation.source, []).append(relation)
        for source in sorted(by_source):
            for relation in by_source[source]:
                graph.add(relation)

        logger.info(
            f"Resolved {len(declared)} declared relations, "
            f"synthesized {len(synthesized)} inverses"
        )
        graph.freeze()
        return graph

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _report(self, kind: ErrorKind, relation: Relation, message: str) -> None:
        self.diagnostics.add(kind, relation.file, relation.element, message)
        logger.warning(f"{relation.element}: {message}")

    # ------------------------------------------------------------------
    # Targets and keys
    # ------------------------------------------------------------------

    def _lookup(self, name: str, package: str) -> Optional[Entity]:
        qualified = self.symbols.resolve(name, package)
        return self.ir.entities[qualified] if qualified else None

    def _resolve_relation(self, entity: Entity, relation: Relation) -> Optional[Relation]:
        target = self._lookup(relation.declared_target, entity.package)
        if target is None:
            self._report(
                ErrorKind.UNKNOWN_RELATION_TARGET,
                relation,
                f"Relation target '{relation.declared_target}' is not an entity "
                f"visible from package '{entity.package}'",
            )
            return None

        if relation.kind is RelationKind.MANY_TO_MANY:
            return self._resolve_join(entity, target, relation)

        if relation.kind is RelationKind.BELONGS_TO:
            owner, referenced = entity, target
        else:
            owner, referenced = target, entity

        if relation.references:
            ref_column = referenced.get_column(relation.references)
            if ref_column is None:
                self._report(
                    ErrorKind.RELATION_KEY_MISMATCH,
                    relation,
                    f"Referenced column '{relation.references}' does not exist "
                    f"on '{referenced.qualified_name}'",
                )
                return None
        else:
            ref_column = referenced.primary_key
            if ref_column is None:
                # Primary key problems were reported by the IR builder
                return None

        fk_name = relation.foreign_key or default_foreign_key(relation.kind, entity, target)
        fk_column = owner.get_column(fk_name)
        if fk_column is None:
            self._report(
                ErrorKind.RELATION_KEY_MISMATCH,
                relation,
                f"Foreign key column '{fk_name}' does not exist on '{owner.qualified_name}'",
            )
            return None
        if not fk_column.same_type_as(ref_column):
            self._report(
                ErrorKind.RELATION_KEY_MISMATCH,
                relation,
                f"Foreign key '{owner.name}.{fk_column.name}' ({_describe(fk_column)}) "
                f"does not match '{referenced.name}.{ref_column.name}' ({_describe(ref_column)})",
            )
            return None

        return replace(
            relation,
            target=target.qualified_name,
            foreign_key=fk_column.column_name,
            references=ref_column.column_name,
        )

    def _resolve_join(
        self,
        entity: Entity,
        target: Entity,
        relation: Relation,
    ) -> Optional[Relation]:
        if not relation.through:
            self._report(
                ErrorKind.AMBIGUOUS_JOIN_ENTITY,
                relation,
                "many_to_many relation does not name a join entity",
            )
            return None
        join = self._lookup(relation.through, entity.package)
        if join is None:
            self._report(
                ErrorKind.AMBIGUOUS_JOIN_ENTITY,
                relation,
                f"Join entity '{relation.through}' is not an entity "
                f"visible from package '{entity.package}'",
            )
            return None

        to_source: List[Tuple[Relation, str]] = []
        to_target: List[Tuple[Relation, str]] = []
        for join_relation in join.relations:
            if join_relation.kind is not RelationKind.BELONGS_TO:
                continue
            side = self._lookup(join_relation.declared_target, join.package)
            if side is None:
                continue
            key = join_relation.foreign_key or default_foreign_key(
                RelationKind.BELONGS_TO, join, side
            )
            if side.qualified_name == entity.qualified_name:
                to_source.append((join_relation, key))
            if side.qualified_name == target.qualified_name:
                to_target.append((join_relation, key))

        if relation.foreign_key:
            to_source = [(r, k) for r, k in to_source if k == relation.foreign_key]
        if entity.qualified_name == target.qualified_name:
            to_target = [(r, k) for r, k in to_target if (r, k) not in to_source]

        if len(to_source) != 1 or len(to_target) != 1:
            self._report(
                ErrorKind.AMBIGUOUS_JOIN_ENTITY,
                relation,
                f"Join entity '{join.qualified_name}' must declare exactly one belongs_to "
                f"relation to '{entity.name}' and one to '{target.name}' "
                f"(found {len(to_source)} and {len(to_target)})",
            )
            return None

        source_key = join.get_column(to_source[0][1])
        target_key = join.get_column(to_target[0][1])
        references = entity.primary_key
        if source_key is None or target_key is None or references is None:
            # The join entity's own relations report missing key columns
            return None

        return replace(
            relation,
            target=target.qualified_name,
            through_entity=join.qualified_name,
            foreign_key=source_key.column_name,
            through_target_key=target_key.column_name,
            references=references.column_name,
        )

    # ------------------------------------------------------------------
    # Inverses
    # ------------------------------------------------------------------

    def _pair_inverses(
        self,
        declared: List[Relation],
    ) -> Tuple[List[Relation], List[Relation]]:
        inverses: Dict[str, str] = {}
        synthesized: List[Relation] = []
        reported: Set[frozenset] = set()

        taken: Dict[str, Set[str]] = {}
        for entity in self.ir.iter_entities():
            taken[entity.qualified_name] = {r.name for r in entity.relations} | {
                c.name for c in entity.columns
            }

        for relation in declared:
            if relation.element in inverses:
                continue
            candidates = [
                other
                for other in declared
                if other.element != relation.element
                and other.source == relation.target
                and other.target == relation.source
                and _same_link(relation, other)
            ]

            if candidates:
                other = candidates[0]
                compatible = (
                    len(candidates) == 1
                    and other.kind.is_inverse_of(relation.kind)
                    and other.references == relation.references
                    and other.element not in inverses
                )
                if compatible:
                    inverses[relation.element] = other.name
                    inverses[other.element] = relation.name
                    logger.debug(f"Paired {relation.element} with explicit inverse {other.element}")
                    continue
                for conflicting in candidates:
                    pair = frozenset((relation.element, conflicting.element))
                    if pair in reported:
                        continue
                    reported.add(pair)
                    self._report(
                        ErrorKind.CONFLICTING_INVERSE_RELATION,
                        relation,
                        f"'{conflicting.element}' ({conflicting.kind.value}) cannot be the "
                        f"inverse of {relation.kind.value} relation '{relation.element}'",
                    )
                continue

            inverse = self._synthesize(relation)
            if inverse is None:
                continue
            if inverse.name in taken[inverse.source]:
                self._report(
                    ErrorKind.CONFLICTING_INVERSE_RELATION,
                    relation,
                    f"Inverse '{inverse.name}' ({inverse.kind.value}) would collide with an "
                    f"existing member of '{inverse.source}'",
                )
                continue
            taken[inverse.source].add(inverse.name)
            inverses[relation.element] = inverse.name
            synthesized.append(inverse)
            logger.debug(
                f"Synthesized {inverse.kind.value} {inverse.element} as inverse of "
                f"{relation.element}"
            )

        completed = [replace(r, inverse=inverses.get(r.element)) for r in declared]
        return completed, synthesized

    def _synthesize(self, relation: Relation) -> Optional[Relation]:
        if relation.target is None:
            raise ValueError(f"Cannot synthesize an inverse of unresolved {relation.element}")
        source = self.ir.entities[relation.source]
        target = self.ir.entities[relation.target]

        if relation.kind is RelationKind.MANY_TO_MANY:
            references = target.primary_key
            if references is None:
                return None
            return Relation(
                source=target.qualified_name,
                name=inverse_name(RelationKind.MANY_TO_MANY, source),
                kind=RelationKind.MANY_TO_MANY,
                declared_target=source.qualified_name,
                file=relation.file,
                target=source.qualified_name,
                foreign_key=relation.through_target_key or "",
                references=references.column_name,
                through=relation.through,
                through_entity=relation.through_entity,
                through_target_key=relation.foreign_key,
                synthesized=True,
                inverse=relation.name,
            )

        if relation.kind is RelationKind.BELONGS_TO:
            key = source.get_column(relation.foreign_key)
            kind = RelationKind.HAS_ONE if key is not None and key.unique else RelationKind.HAS_MANY
        else:
            kind = RelationKind.BELONGS_TO

        return Relation(
            source=target.qualified_name,
            name=inverse_name(kind, source),
            kind=kind,
            declared_target=source.qualified_name,
            file=relation.file,
            target=source.qualified_name,
            foreign_key=relation.foreign_key,
            references=relation.references,
            synthesized=True,
            inverse=relation.name,
        )


def _same_link(relation: Relation, other: Relation) -> bool:
    """Whether two relations describe the same physical key link."""
    if relation.kind is RelationKind.MANY_TO_MANY or other.kind is RelationKind.MANY_TO_MANY:
        return (
            relation.kind is other.kind
            and relation.through_entity == other.through_entity
            and relation.foreign_key == other.through_target_key
            and relation.through_target_key == other.foreign_key
        )
    return relation.key_owner == other.key_owner and relation.foreign_key == other.foreign_key


def _describe(column: Column) -> str:
    text = column.type_name or column.kind.value
    return f"repeated {text}" if column.repeated else text

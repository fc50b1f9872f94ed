"""
Storage plan.

Per entity, a persistence mapping (table, columns, keys, relations). Per
service, a storage interface with one operation per method and a default
implementation strategy expressed in IR terms only.

Default strategies:
    get      GET_BY_KEY       select one row by primary key
    list     FILTER_PAGINATE  filter on filterable columns, paginate by
                              primary key ascending
    create   INSERT           insert every column except auto-increment keys
    update   UPDATE_BY_KEY    update every non-key column by primary key
    delete   DELETE_BY_KEY    delete one row by primary key
    custom   (none)           requires an override

Every operation is independently overridable; see ``entgen.plan.overrides``.

Oneof groups are stored per their strategy:
    flatten  one nullable column per variant (optionally prefixed)
    json     one JSON column named after the oneof
    tagged   a <oneof>_type discriminator plus a <oneof>_value column
Default implementations write and filter on the stored columns.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import Settings, get_settings
from ..ir.filters import allowed_operators
from ..ir.model import (
    Column,
    Entity,
    Method,
    OneofGroup,
    OperationKind,
    Relation,
    SchemaIr,
    Service,
)
from ..ir.naming import to_snake_case
from ..options.models import OneofStrategy
from ..resolve.graph import RelationGraph

logger = logging.getLogger(__name__)


class DefaultStrategy(Enum):
    GET_BY_KEY = "get_by_key"
    FILTER_PAGINATE = "filter_paginate"
    INSERT = "insert"
    UPDATE_BY_KEY = "update_by_key"
    DELETE_BY_KEY = "delete_by_key"


_STRATEGIES = {
    OperationKind.GET: DefaultStrategy.GET_BY_KEY,
    OperationKind.LIST: DefaultStrategy.FILTER_PAGINATE,
    OperationKind.CREATE: DefaultStrategy.INSERT,
    OperationKind.UPDATE: DefaultStrategy.UPDATE_BY_KEY,
    OperationKind.DELETE: DefaultStrategy.DELETE_BY_KEY,
}


@dataclass(frozen=True)
class ColumnMapping:
    name: str
    column_name: str
    kind: str
    type_name: Optional[str] = None
    nullable: bool = False
    repeated: bool = False
    primary_key: bool = False
    auto_increment: bool = False
    unique: bool = False
    default_value: str = ""
    embed: bool = False
    type_hints: Tuple[Tuple[str, str], ...] = ()
    oneof: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "column_name": self.column_name,
            "kind": self.kind,
            "nullable": self.nullable,
            "repeated": self.repeated,
            "primary_key": self.primary_key,
            "auto_increment": self.auto_increment,
            "unique": self.unique,
        }
        if self.type_name:
            result["type_name"] = self.type_name
        if self.default_value:
            result["default_value"] = self.default_value
        if self.embed:
            result["embed"] = True
        if self.type_hints:
            result["type_hints"] = dict(self.type_hints)
        if self.oneof:
            result["oneof"] = self.oneof
        return result


@dataclass(frozen=True)
class RelationMapping:
    """A relation as the storage layer sees it: tables and key columns."""

    name: str
    kind: str
    target: str
    target_table: str
    foreign_key: str
    references: str
    through_table: Optional[str] = None
    through_target_key: Optional[str] = None
    inverse: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "kind": self.kind,
            "target": self.target,
            "target_table": self.target_table,
            "foreign_key": self.foreign_key,
            "references": self.references,
        }
        if self.through_table:
            result["through_table"] = self.through_table
            result["through_target_key"] = self.through_target_key
        if self.inverse:
            result["inverse"] = self.inverse
        return result


@dataclass(frozen=True)
class OneofMapping:
    """Stored form of one oneof group.

    Attributes:
        name: Oneof name
        strategy: flatten, json or tagged
        members: Member column names
        columns: Columns actually stored for the group
        discriminator: Tag column (tagged only)
    """

    name: str
    strategy: OneofStrategy
    members: Tuple[str, ...]
    columns: Tuple[str, ...]
    discriminator: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "strategy": self.strategy.value,
            "members": list(self.members),
            "columns": list(self.columns),
        }
        if self.discriminator:
            result["discriminator"] = self.discriminator
        return result


@dataclass(frozen=True)
class EntityMapping:
    """Base persistence mapping of one entity."""

    entity: str
    table_name: str
    primary_key: str
    columns: Tuple[ColumnMapping, ...]
    relations: Tuple[RelationMapping, ...] = ()
    oneofs: Tuple[OneofMapping, ...] = ()

    def get_column(self, name: str) -> Optional[ColumnMapping]:
        for column in self.columns:
            if column.name == name or column.column_name == name:
                return column
        return None

    def get_oneof(self, name: str) -> Optional[OneofMapping]:
        for oneof in self.oneofs:
            if oneof.name == name:
                return oneof
        return None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "entity": self.entity,
            "table_name": self.table_name,
            "primary_key": self.primary_key,
            "columns": [c.to_dict() for c in self.columns],
            "relations": [r.to_dict() for r in self.relations],
        }
        if self.oneofs:
            result["oneofs"] = [o.to_dict() for o in self.oneofs]
        return result


@dataclass(frozen=True)
class DefaultImplementation:
    """Generated behavior of one operation, in IR terms.

    Attributes:
        strategy: What the default does
        entity: Fully-qualified entity operated on
        table_name: Table of the entity
        key_column: Primary-key column used for lookups
        columns: Columns written (INSERT, UPDATE_BY_KEY) or filterable
            (FILTER_PAGINATE)
        order_by: Default ordering as (column, direction) pairs
        page_size: Default page size (FILTER_PAGINATE)
        max_page_size: Upper bound on a requested page size (FILTER_PAGINATE)
    """

    strategy: DefaultStrategy
    entity: str
    table_name: str
    key_column: str
    columns: Tuple[str, ...] = ()
    order_by: Tuple[Tuple[str, str], ...] = ()
    page_size: Optional[int] = None
    max_page_size: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "strategy": self.strategy.value,
            "entity": self.entity,
            "table_name": self.table_name,
            "key_column": self.key_column,
            "columns": list(self.columns),
        }
        if self.order_by:
            result["order_by"] = [list(o) for o in self.order_by]
        if self.page_size is not None:
            result["page_size"] = self.page_size
            result["max_page_size"] = self.max_page_size
        return result


@dataclass(frozen=True)
class StorageOperation:
    """One overridable operation of a storage interface."""

    name: str
    method: str
    operation: OperationKind
    input_type: str
    output_type: str
    entity: Optional[str] = None
    default: Optional[DefaultImplementation] = None

    @property
    def requires_override(self) -> bool:
        return self.default is None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "method": self.method,
            "operation": self.operation.value,
            "input_type": self.input_type,
            "output_type": self.output_type,
            "overridable": True,
            "requires_override": self.requires_override,
        }
        if self.entity:
            result["entity"] = self.entity
        if self.default is not None:
            result["default"] = self.default.to_dict()
        return result


@dataclass(frozen=True)
class StorageInterface:
    """Trait-like interface of one service: operations with defaults."""

    service: str
    trait_name: str
    generate_implementation: bool
    operations: Tuple[StorageOperation, ...]

    def get_operation(self, name: str) -> Optional[StorageOperation]:
        for op in self.operations:
            if op.name == name:
                return op
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "trait_name": self.trait_name,
            "generate_implementation": self.generate_implementation,
            "operations": [o.to_dict() for o in self.operations],
        }


@dataclass(frozen=True)
class StoragePlan:
    entities: Tuple[EntityMapping, ...]
    interfaces: Tuple[StorageInterface, ...]

    def get_entity(self, entity: str) -> Optional[EntityMapping]:
        for mapping in self.entities:
            if mapping.entity == entity:
                return mapping
        return None

    def get_interface(self, service: str) -> Optional[StorageInterface]:
        for interface in self.interfaces:
            if interface.service == service:
                return interface
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "interfaces": [i.to_dict() for i in self.interfaces],
        }


def _map_entity(entity: Entity, ir: SchemaIr, graph: RelationGraph) -> EntityMapping:
    columns = tuple(
        ColumnMapping(
            name=c.name,
            column_name=c.column_name,
            kind=c.kind.value,
            type_name=c.type_name,
            nullable=c.nullable,
            repeated=c.repeated,
            primary_key=c.primary_key,
            auto_increment=c.auto_increment,
            unique=c.unique,
            default_value=c.default_value,
            embed=c.embed,
            type_hints=c.type_hints,
            oneof=c.oneof,
        )
        for c in entity.columns
    )
    relations = tuple(
        _map_relation(r, ir) for r in graph.outgoing(entity.qualified_name)
    )
    key = entity.primary_key
    if key is None:
        raise ValueError(f"Entity '{entity.qualified_name}' has no primary key")
    return EntityMapping(
        entity=entity.qualified_name,
        table_name=entity.table_name,
        primary_key=key.column_name,
        columns=columns,
        relations=relations,
        oneofs=tuple(_map_oneof(o) for o in entity.oneofs),
    )


def oneof_columns(group: OneofGroup) -> Tuple[str, ...]:
    """Columns stored for a oneof group."""
    if group.strategy is OneofStrategy.FLATTEN:
        return group.members
    base = to_snake_case(group.name)
    if group.strategy is OneofStrategy.JSON:
        return (base,)
    return (group.discriminator_column or f"{base}_type", f"{base}_value")


def _map_oneof(group: OneofGroup) -> OneofMapping:
    columns = oneof_columns(group)
    return OneofMapping(
        name=group.name,
        strategy=group.strategy,
        members=group.members,
        columns=columns,
        discriminator=columns[0] if group.strategy is OneofStrategy.TAGGED else None,
    )


def _stored_columns(entity: Entity, columns: List[Column]) -> Tuple[str, ...]:
    """Stored column names: json and tagged oneof members give way to their group's columns."""
    stored: List[str] = []
    for c in columns:
        group = entity.get_oneof(c.oneof) if c.oneof else None
        if group is None or group.strategy is OneofStrategy.FLATTEN:
            names: Tuple[str, ...] = (c.column_name,)
        else:
            names = oneof_columns(group)
        stored.extend(n for n in names if n not in stored)
    return tuple(stored)


def _map_relation(relation: Relation, ir: SchemaIr) -> RelationMapping:
    if relation.target is None:
        raise ValueError(f"Relation {relation.element} is unresolved")
    through_table = None
    if relation.through_entity:
        through_table = ir.entities[relation.through_entity].table_name
    return RelationMapping(
        name=relation.name,
        kind=relation.kind.value,
        target=relation.target,
        target_table=ir.entities[relation.target].table_name,
        foreign_key=relation.foreign_key,
        references=relation.references,
        through_table=through_table,
        through_target_key=relation.through_target_key,
        inverse=relation.inverse,
    )


def stored_as_column(entity: Entity, column: Column) -> bool:
    """Whether the column is stored as itself rather than inside a json or tagged oneof."""
    group = entity.get_oneof(column.oneof) if column.oneof else None
    return group is None or group.strategy is OneofStrategy.FLATTEN


def default_implementation(
    operation: OperationKind,
    entity: Entity,
    settings: Settings,
) -> Optional[DefaultImplementation]:
    """Default behavior of an operation on an entity, or None for custom."""
    strategy = _STRATEGIES.get(operation)
    key = entity.primary_key
    if strategy is None or key is None:
        return None

    common: Dict[str, Any] = {
        "strategy": strategy,
        "entity": entity.qualified_name,
        "table_name": entity.table_name,
        "key_column": key.column_name,
    }
    if strategy is DefaultStrategy.FILTER_PAGINATE:
        filterable = tuple(
            c.column_name
            for c in entity.columns
            if allowed_operators(c.kind, c.cardinality)
            and stored_as_column(entity, c)
        )
        return DefaultImplementation(
            columns=filterable,
            order_by=((key.column_name, "asc"),),
            page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
            **common,
        )
    if strategy is DefaultStrategy.INSERT:
        return DefaultImplementation(
            columns=_stored_columns(entity, [c for c in entity.columns if not c.auto_increment]),
            **common,
        )
    if strategy is DefaultStrategy.UPDATE_BY_KEY:
        return DefaultImplementation(
            columns=_stored_columns(entity, [c for c in entity.columns if not c.primary_key]),
            **common,
        )
    return DefaultImplementation(**common)


def _build_interface(service: Service, ir: SchemaIr, settings: Settings) -> StorageInterface:
    operations: List[StorageOperation] = []
    for method in service.methods:
        if method.storage_skip:
            continue
        operations.append(_build_operation(method, service, ir, settings))
    return StorageInterface(
        service=service.qualified_name,
        trait_name=service.trait_name,
        generate_implementation=service.generate_implementation,
        operations=tuple(operations),
    )


def _build_operation(
    method: Method,
    service: Service,
    ir: SchemaIr,
    settings: Settings,
) -> StorageOperation:
    default = None
    if service.generate_implementation and method.entity:
        default = default_implementation(method.operation, ir.entities[method.entity], settings)
    if default is None:
        logger.debug(f"{service.qualified_name}.{method.name} has no default, requires override")
    return StorageOperation(
        name=method.storage_method_name,
        method=method.name,
        operation=method.operation,
        input_type=method.input_type,
        output_type=method.output_type,
        entity=method.entity,
        default=default,
    )


def build_storage_plan(
    ir: SchemaIr,
    graph: RelationGraph,
    settings: Optional[Settings] = None,
) -> StoragePlan:
    """Build the storage plan from a fully resolved IR."""
    settings = settings or get_settings()
    entities = tuple(
        _map_entity(entity, ir, graph) for entity in ir.iter_entities(include_skipped=False)
    )
    interfaces = tuple(
        _build_interface(service, ir, settings)
        for service in ir.services.values()
        if service.generate_storage and not service.storage_skip
    )
    logger.info(
        f"Storage plan: {len(entities)} entity mappings, {len(interfaces)} interfaces"
    )
    return StoragePlan(entities=entities, interfaces=interfaces)

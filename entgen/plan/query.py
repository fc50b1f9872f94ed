"""
Query/API plan.

For each node-eligible entity (not skipped, not excluded from the API, with
a single primary key) the plan emits:

    - the object shape (columns minus API-skipped fields)
    - a cursor-paginated connection wrapper: <Type>Connection / <Type>Edge,
      sharing one PageInfo shape
    - a filter input <Type>Filter with one comparison group per filterable
      column
    - an order-by input <Type>OrderBy over orderable columns
    - a dual accessor per relation: a loader-backed accessor and a
      paginated connection accessor scoped by the owning record's key

Relations to entities that are not node-eligible get no accessor, so no
plan element references a type the API does not expose.

Operations come from service methods that are not excluded from the API. Each
create or update mutation also gets an input object derived from its request
message: CreateUserRequest becomes CreateUserInput, and update inputs leave
out the primary key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..config import Settings, get_settings
from ..ir.filters import allowed_operators, filter_type_name, is_orderable
from ..ir.model import (
    ApiOperationKind,
    Column,
    Entity,
    Method,
    OperationKind,
    Relation,
    RelationKind,
    SchemaIr,
)
from ..ir.naming import to_camel_case, to_pascal_case, to_snake_case
from ..resolve.graph import RelationGraph
from ..schema.types import Cardinality, ScalarKind
from .storage import stored_as_column

logger = logging.getLogger(__name__)

PAGE_INFO = "PageInfo"
PAGE_INFO_FIELDS = ("hasNextPage", "hasPreviousPage", "startCursor", "endCursor")
ORDER_DIRECTIONS = ("ASC", "DESC")

_SCALARS = {
    ScalarKind.BOOL: "Boolean",
    ScalarKind.INT32: "Int",
    ScalarKind.UINT32: "Int",
    ScalarKind.INT64: "Int64",
    ScalarKind.UINT64: "Int64",
    ScalarKind.FLOAT: "Float",
    ScalarKind.DOUBLE: "Float",
    ScalarKind.STRING: "String",
    ScalarKind.BYTES: "Bytes",
    ScalarKind.TIMESTAMP: "DateTime",
}


def api_type_name(kind: ScalarKind, type_name: Optional[str] = None) -> str:
    """API type of a field: scalar name, or PascalCase of the referenced type."""
    if kind in _SCALARS:
        return _SCALARS[kind]
    if type_name is None:
        raise ValueError(f"{kind.value} field requires a type name")
    return to_pascal_case(type_name.rsplit(".", 1)[-1])


@dataclass(frozen=True)
class FieldShape:
    name: str
    column: str
    type: str
    nullable: bool = False
    list: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "column": self.column,
            "type": self.type,
            "nullable": self.nullable,
            "list": self.list,
        }


@dataclass(frozen=True)
class ConnectionShape:
    """Connection wrapper over a node type."""

    name: str
    edge_name: str
    node_type: str
    page_info: str = PAGE_INFO
    default_page_size: int = 20
    max_page_size: int = 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "edge_name": self.edge_name,
            "node_type": self.node_type,
            "page_info": self.page_info,
            "default_page_size": self.default_page_size,
            "max_page_size": self.max_page_size,
        }


@dataclass(frozen=True)
class FilterGroup:
    """Comparison group for one filterable column."""

    field: str
    column: str
    filter_type: str
    operators: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "column": self.column,
            "filter_type": self.filter_type,
            "operators": list(self.operators),
        }


@dataclass(frozen=True)
class FilterInput:
    name: str
    groups: Tuple[FilterGroup, ...]

    def get_group(self, field: str) -> Optional[FilterGroup]:
        for group in self.groups:
            if group.field == field:
                return group
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "groups": [g.to_dict() for g in self.groups]}


@dataclass(frozen=True)
class OrderByInput:
    name: str
    fields: Tuple[str, ...]
    default: Tuple[str, str]
    directions: Tuple[str, ...] = ORDER_DIRECTIONS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "fields": list(self.fields),
            "directions": list(self.directions),
            "default": list(self.default),
        }


@dataclass(frozen=True)
class LoaderAccessor:
    """Batched accessor: one fetch per request for all owning records.

    Attributes:
        loader: Loader name, e.g. PostsByUserLoader
        key_column: Column on the owning record that supplies the batch key
        lookup_column: Column the batch is matched on (target or join table)
        through_table: Join table for MANY_TO_MANY
        through_target_key: Join column leading to the target
        list: Whether each key maps to a list of records
    """

    loader: str
    key_column: str
    lookup_column: str
    through_table: Optional[str] = None
    through_target_key: Optional[str] = None
    list: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "loader": self.loader,
            "key_column": self.key_column,
            "lookup_column": self.lookup_column,
            "list": self.list,
        }
        if self.through_table:
            result["through_table"] = self.through_table
            result["through_target_key"] = self.through_target_key
        return result


@dataclass(frozen=True)
class ConnectionAccessor:
    """Paginated accessor reusing the target's connection, scoped by key."""

    name: str
    connection: str
    scope_column: str
    scope_value_column: str
    through_table: Optional[str] = None
    through_target_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "connection": self.connection,
            "scope_column": self.scope_column,
            "scope_value_column": self.scope_value_column,
        }
        if self.through_table:
            result["through_table"] = self.through_table
            result["through_target_key"] = self.through_target_key
        return result


@dataclass(frozen=True)
class RelationAccessor:
    name: str
    relation: str
    kind: RelationKind
    target_type: str
    loader: LoaderAccessor
    connection: ConnectionAccessor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "relation": self.relation,
            "kind": self.kind.value,
            "target_type": self.target_type,
            "loader": self.loader.to_dict(),
            "connection": self.connection.to_dict(),
        }


@dataclass(frozen=True)
class NodePlan:
    entity: str
    type_name: str
    implements_node: bool
    id_field: str
    fields: Tuple[FieldShape, ...]
    connection: ConnectionShape
    filter: FilterInput
    order_by: OrderByInput
    relations: Tuple[RelationAccessor, ...]

    def get_relation(self, name: str) -> Optional[RelationAccessor]:
        for accessor in self.relations:
            if accessor.relation == name or accessor.name == name:
                return accessor
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "type_name": self.type_name,
            "implements_node": self.implements_node,
            "id_field": self.id_field,
            "fields": [f.to_dict() for f in self.fields],
            "connection": self.connection.to_dict(),
            "filter": self.filter.to_dict(),
            "order_by": self.order_by.to_dict(),
            "relations": [r.to_dict() for r in self.relations],
        }


@dataclass(frozen=True)
class QueryOperation:
    name: str
    kind: ApiOperationKind
    service: str
    method: str
    operation: OperationKind
    input_type: str
    output_type: str
    entity: Optional[str] = None
    connection: Optional[str] = None
    input: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
            "service": self.service,
            "method": self.method,
            "operation": self.operation.value,
            "input_type": self.input_type,
            "output_type": self.output_type,
        }
        if self.entity:
            result["entity"] = self.entity
        if self.connection:
            result["connection"] = self.connection
        if self.input:
            result["input"] = self.input
        return result


@dataclass(frozen=True)
class InputShape:
    """Input object of a create or update mutation.

    Attributes:
        name: Input type name, e.g. CreateUserInput
        request: Fully-qualified request message it is derived from
        fields: Request fields; update inputs leave out the primary key
        update: Whether this is an update input
    """

    name: str
    request: str
    fields: Tuple[FieldShape, ...]
    update: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "request": self.request,
            "update": self.update,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass(frozen=True)
class QueryPlan:
    nodes: Tuple[NodePlan, ...]
    operations: Tuple[QueryOperation, ...]
    filter_types: Tuple[str, ...]
    inputs: Tuple[InputShape, ...] = ()
    page_info: str = PAGE_INFO

    def get_node(self, entity: str) -> Optional[NodePlan]:
        for node in self.nodes:
            if node.entity == entity or node.type_name == entity:
                return node
        return None

    def get_operation(self, name: str) -> Optional[QueryOperation]:
        for op in self.operations:
            if op.name == name:
                return op
        return None

    def get_input(self, name: str) -> Optional[InputShape]:
        for shape in self.inputs:
            if shape.name == name:
                return shape
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_info": {"name": self.page_info, "fields": list(PAGE_INFO_FIELDS)},
            "filter_types": list(self.filter_types),
            "nodes": [n.to_dict() for n in self.nodes],
            "operations": [o.to_dict() for o in self.operations],
            "inputs": [i.to_dict() for i in self.inputs],
        }


def is_node_eligible(entity: Entity) -> bool:
    return not entity.skip and not entity.api_skip and entity.primary_key is not None


class QueryPlanBuilder:
    """Builds the query/API plan from a fully resolved IR and graph."""

    def __init__(
        self,
        ir: SchemaIr,
        graph: RelationGraph,
        settings: Optional[Settings] = None,
    ) -> None:
        self.ir = ir
        self.graph = graph
        self.settings = settings or get_settings()
        self._eligible = {
            name: entity for name, entity in ir.entities.items() if is_node_eligible(entity)
        }
        self._inputs: Dict[str, InputShape] = {}

    def build(self) -> QueryPlan:
        nodes = tuple(self._build_node(e) for e in self._eligible.values())
        operations = tuple(self._build_operations())
        filter_types = sorted(
            {g.filter_type for n in nodes for g in n.filter.groups}
        )
        logger.info(
            f"Query plan: {len(nodes)} node types, {len(operations)} operations, "
            f"{sum(len(n.relations) for n in nodes)} relation accessors"
        )
        return QueryPlan(
            nodes=nodes,
            operations=operations,
            filter_types=tuple(filter_types),
            inputs=tuple(self._inputs[name] for name in sorted(self._inputs)),
        )

    # ------------------------------------------------------------------
    # Node types
    # ------------------------------------------------------------------

    def _build_node(self, entity: Entity) -> NodePlan:
        type_name = entity.api_name
        key = entity.primary_key
        if key is None:
            raise ValueError(f"Entity '{entity.qualified_name}' has no primary key")
        visible = [c for c in entity.columns if not c.api_skip]

        fields = tuple(
            FieldShape(
                name=c.api_name,
                column=c.column_name,
                type=api_type_name(c.kind, c.type_name),
                nullable=c.nullable,
                list=c.repeated,
            )
            for c in visible
        )
        connection = ConnectionShape(
            name=f"{type_name}Connection",
            edge_name=f"{type_name}Edge",
            node_type=type_name,
            default_page_size=self.settings.default_page_size,
            max_page_size=self.settings.max_page_size,
        )
        stored = [c for c in visible if stored_as_column(entity, c)]
        filter_input = FilterInput(
            name=f"{type_name}Filter",
            groups=tuple(g for g in (self._filter_group(c) for c in stored) if g is not None),
        )
        order_by = OrderByInput(
            name=f"{type_name}OrderBy",
            fields=tuple(
                c.api_name
                for c in stored
                if c.orderable and is_orderable(c.kind, c.cardinality)
            ),
            default=(key.api_name, "ASC"),
        )
        relations = tuple(
            accessor
            for accessor in (
                self._accessor(entity, r) for r in self.graph.outgoing(entity.qualified_name)
            )
            if accessor is not None
        )
        return NodePlan(
            entity=entity.qualified_name,
            type_name=type_name,
            implements_node=entity.node,
            id_field=key.api_name,
            fields=fields,
            connection=connection,
            filter=filter_input,
            order_by=order_by,
            relations=relations,
        )

    def _filter_group(self, column: Column) -> Optional[FilterGroup]:
        if not column.filterable:
            return None
        allowed = allowed_operators(column.kind, column.cardinality)
        if not allowed:
            return None
        if column.operators is not None:
            operators = tuple(op.value for op in allowed if op.value in column.operators)
        else:
            operators = tuple(op.value for op in allowed)
        if not operators:
            return None
        return FilterGroup(
            field=column.api_name,
            column=column.column_name,
            filter_type=filter_type_name(column.kind),
            operators=operators,
        )

    # ------------------------------------------------------------------
    # Relation accessors
    # ------------------------------------------------------------------

    def _accessor(self, entity: Entity, relation: Relation) -> Optional[RelationAccessor]:
        if relation.target is None:
            raise ValueError(f"Relation {relation.element} is unresolved")
        target = self._eligible.get(relation.target)
        if target is None:
            logger.debug(f"No accessor for {relation.element}: target is not exposed")
            return None

        through_table = None
        if relation.kind is RelationKind.BELONGS_TO:
            key_column, lookup_column = relation.foreign_key, relation.references
        elif relation.kind is RelationKind.MANY_TO_MANY:
            key_column, lookup_column = relation.references, relation.foreign_key
            if relation.through_entity is None:
                raise ValueError(f"Relation {relation.element} has no join entity")
            through_table = self.ir.entities[relation.through_entity].table_name
        else:
            key_column, lookup_column = relation.references, relation.foreign_key

        name = to_camel_case(relation.name)
        loader = LoaderAccessor(
            loader=f"{to_pascal_case(relation.name)}By{entity.api_name}Loader",
            key_column=key_column,
            lookup_column=lookup_column,
            through_table=through_table,
            through_target_key=relation.through_target_key,
            list=relation.kind.is_list,
        )
        connection = ConnectionAccessor(
            name=f"{name}Connection",
            connection=f"{target.api_name}Connection",
            scope_column=lookup_column,
            scope_value_column=key_column,
            through_table=through_table,
            through_target_key=relation.through_target_key,
        )
        return RelationAccessor(
            name=name,
            relation=relation.name,
            kind=relation.kind,
            target_type=target.api_name,
            loader=loader,
            connection=connection,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def _message_type(self, name: str) -> str:
        entity = self.ir.entities.get(name)
        if entity is not None:
            return entity.api_name
        return to_pascal_case(name.rsplit(".", 1)[-1])

    def _input_shape(self, method: Method) -> Optional[InputShape]:
        """Input object of a create/update mutation, shared by methods with one request."""
        if method.api_kind is not ApiOperationKind.MUTATION:
            return None
        if method.operation not in (OperationKind.CREATE, OperationKind.UPDATE):
            return None
        request = self.ir.messages.get(method.input_type)
        if request is None:
            return None

        short = to_pascal_case(request.name)
        if short.endswith("Request"):
            name = short[: -len("Request")] + "Input"
        else:
            name = f"{short}Input"
        if name in self._inputs:
            return self._inputs[name]

        entity = self.ir.entities.get(method.entity) if method.entity else None
        update = method.operation is OperationKind.UPDATE
        key_name = "id"
        if entity is not None and entity.primary_key is not None:
            key_name = entity.primary_key.name

        fields = []
        for f in request.fields:
            if update and f.name == key_name:
                continue
            column = entity.get_column(f.name) if entity is not None else None
            fields.append(
                FieldShape(
                    name=column.api_name if column is not None else to_camel_case(f.name),
                    column=column.column_name if column is not None else to_snake_case(f.name),
                    type=api_type_name(f.kind, f.type_name),
                    nullable=f.cardinality is Cardinality.OPTIONAL,
                    list=f.cardinality is Cardinality.REPEATED,
                )
            )
        shape = InputShape(
            name=name, request=request.qualified_name, fields=tuple(fields), update=update
        )
        self._inputs[name] = shape
        logger.debug(f"Input {name}: {len(fields)} fields from {request.qualified_name}")
        return shape

    def _build_operations(self) -> List[QueryOperation]:
        operations: List[QueryOperation] = []
        for service in self.ir.services.values():
            if service.api_skip:
                continue
            for method in service.methods:
                if method.api_skip:
                    continue
                if method.entity is not None and method.entity not in self._eligible:
                    logger.debug(
                        f"No API operation for {service.qualified_name}.{method.name}: "
                        f"entity is not exposed"
                    )
                    continue
                connection = None
                if method.operation is OperationKind.LIST and method.entity:
                    connection = f"{self._eligible[method.entity].api_name}Connection"
                input_shape = self._input_shape(method)
                operations.append(
                    QueryOperation(
                        name=method.api_name,
                        kind=method.api_kind,
                        service=service.qualified_name,
                        method=method.name,
                        operation=method.operation,
                        input_type=self._message_type(method.input_type),
                        output_type=self._message_type(method.output_type),
                        entity=method.entity,
                        connection=connection,
                        input=input_shape.name if input_shape else None,
                    )
                )
        return operations


def build_query_plan(
    ir: SchemaIr,
    graph: RelationGraph,
    settings: Optional[Settings] = None,
) -> QueryPlan:
    """Build the query/API plan from a fully resolved IR."""
    return QueryPlanBuilder(ir, graph, settings).build()

"""
Intermediate representation (IR) of a compiled schema.

This module defines the normalized, backend-agnostic records produced by
the IR builder and completed by the relation resolver:
- Column, Entity, OneofGroup: persistent record types
- Relation, RelationKind: directed edges between entities
- EnumType, Message: supporting type shapes
- Method, Service: RPC surfaces with per-layer directives
- ValidationDecl: field-level rule declarations for the rule compiler
- SchemaIr: the whole IR, keyed by fully-qualified names

Invariants:
    - All records are immutable once built
    - Every entity is keyed by its fully-qualified name (package.Name)
    - A Relation produced by the builder is declared (target unresolved);
      only the resolver produces resolved relations
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any, Iterator, Mapping

from ..options.models import EnumStorageType, OneofStrategy, Rules
from ..schema.types import Cardinality, ScalarKind


class RelationKind(Enum):
    """Semantic kind of a relation edge."""

    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"

    @property
    def is_list(self) -> bool:
        """Whether the accessor on the declaring side yields many records."""
        return self in (RelationKind.HAS_MANY, RelationKind.MANY_TO_MANY)

    @property
    def key_on_source(self) -> bool:
        """Whether the declaring entity holds the foreign key."""
        return self is RelationKind.BELONGS_TO

    def is_inverse_of(self, other: RelationKind) -> bool:
        """Whether a relation of this kind may be the inverse of ``other``."""
        if other is RelationKind.BELONGS_TO:
            return self in (RelationKind.HAS_ONE, RelationKind.HAS_MANY)
        if other in (RelationKind.HAS_ONE, RelationKind.HAS_MANY):
            return self is RelationKind.BELONGS_TO
        return self is RelationKind.MANY_TO_MANY


class OperationKind(Enum):
    """Storage operation kinds with a generated default behavior."""

    GET = "get"
    LIST = "list"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CUSTOM = "custom"


class ApiOperationKind(Enum):
    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"


@dataclass(frozen=True)
class Column:
    """A field of an entity.

    Attributes:
        name: Schema field name
        column_name: Storage identifier (override or snake_case of name)
        api_name: Query/API identifier (override or camelCase of name)
        number: Schema field number
        kind: Scalar kind
        cardinality: singular, optional or repeated
        type_name: Fully-qualified message/enum name for MESSAGE/ENUM kinds
        primary_key: Whether this is the primary key
        auto_increment: Derived true iff integral primary key, unless set
        unique: Uniqueness constraint
        default_value: Default-value expression (opaque)
        embed: Store a message-typed column as an embedded document
        type_hints: Opaque backend type hints, sorted by key
        api_skip: Omitted from the API object shape
        filterable: Exposed in the API filter input
        orderable: Exposed in the API order-by input
        operators: Explicit operator restriction, or None for the defaults
        oneof: Oneof group the column belongs to, if any
    """

    name: str
    column_name: str
    api_name: str
    number: int
    kind: ScalarKind
    cardinality: Cardinality = Cardinality.SINGULAR
    type_name: str | None = None
    primary_key: bool = False
    auto_increment: bool = False
    unique: bool = False
    default_value: str = ""
    embed: bool = False
    type_hints: tuple[tuple[str, str], ...] = ()
    api_skip: bool = False
    filterable: bool = True
    orderable: bool = True
    operators: tuple[str, ...] | None = None
    oneof: str | None = None

    @property
    def nullable(self) -> bool:
        return self.cardinality is Cardinality.OPTIONAL or self.oneof is not None

    @property
    def repeated(self) -> bool:
        return self.cardinality is Cardinality.REPEATED

    def same_type_as(self, other: Column) -> bool:
        """Whether a key in this column can reference ``other``."""
        return (
            self.kind is other.kind
            and self.type_name == other.type_name
            and not self.repeated
            and not other.repeated
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "column_name": self.column_name,
            "api_name": self.api_name,
            "number": self.number,
            "kind": self.kind.value,
            "cardinality": self.cardinality.value,
        }
        if self.type_name:
            result["type_name"] = self.type_name
        if self.primary_key:
            result["primary_key"] = True
        if self.auto_increment:
            result["auto_increment"] = True
        if self.unique:
            result["unique"] = True
        if self.default_value:
            result["default_value"] = self.default_value
        if self.embed:
            result["embed"] = True
        if self.type_hints:
            result["type_hints"] = dict(self.type_hints)
        if self.api_skip:
            result["api_skip"] = True
        if self.operators is not None:
            result["operators"] = list(self.operators)
        if self.oneof:
            result["oneof"] = self.oneof
        return result


@dataclass(frozen=True)
class Relation:
    """A directed relation between two entities.

    Attributes:
        source: Fully-qualified name of the declaring entity
        name: Relation (accessor) name
        kind: Relation kind
        declared_target: Target name as written in the schema
        file: Schema file the relation was declared in
        target: Fully-qualified target entity (None until resolved)
        foreign_key: Foreign-key column name on the key owner
        references: Referenced column name on the referenced side
        through: Join entity name as declared (MANY_TO_MANY)
        through_entity: Fully-qualified join entity (resolved)
        through_target_key: Join column referencing the target (MANY_TO_MANY)
        synthesized: Whether the resolver derived this edge as an inverse
        inverse: Name of the inverse relation on the target, once known
    """

    source: str
    name: str
    kind: RelationKind
    declared_target: str
    file: str = ""
    target: str | None = None
    foreign_key: str = ""
    references: str = ""
    through: str = ""
    through_entity: str | None = None
    through_target_key: str | None = None
    synthesized: bool = False
    inverse: str | None = None

    @property
    def resolved(self) -> bool:
        return self.target is not None

    @property
    def element(self) -> str:
        return f"{self.source}.{self.name}"

    @property
    def key_owner(self) -> str | None:
        """Entity that physically holds the foreign-key column."""
        if self.kind is RelationKind.BELONGS_TO:
            return self.source
        if self.kind is RelationKind.MANY_TO_MANY:
            return self.through_entity
        return self.target

    @property
    def referenced_side(self) -> str | None:
        """Entity holding the referenced column."""
        if self.kind is RelationKind.BELONGS_TO:
            return self.target
        return self.source

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "source": self.source,
            "name": self.name,
            "kind": self.kind.value,
            "target": self.target or self.declared_target,
            "foreign_key": self.foreign_key,
            "references": self.references,
        }
        if self.through_entity or self.through:
            result["through"] = self.through_entity or self.through
        if self.through_target_key:
            result["through_target_key"] = self.through_target_key
        if self.synthesized:
            result["synthesized"] = True
        if self.inverse:
            result["inverse"] = self.inverse
        return result


@dataclass(frozen=True)
class OneofGroup:
    """A oneof group of an entity and how it is stored.

    Attributes:
        name: Oneof name as declared
        strategy: flatten, json or tagged
        members: Storage names of the member columns, in field order
        discriminator_column: Tag column override (tagged)
    """

    name: str
    strategy: OneofStrategy = OneofStrategy.FLATTEN
    members: tuple[str, ...] = ()
    discriminator_column: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "strategy": self.strategy.value,
            "members": list(self.members),
        }
        if self.discriminator_column:
            result["discriminator_column"] = self.discriminator_column
        return result


@dataclass(frozen=True)
class Entity:
    """A persistent record type.

    Attributes:
        name: Message name
        package: Schema package
        file: Schema file the message was declared in
        table_name: Storage table/collection name
        skip: Excluded from generation, still a resolution target
        columns: Ordered columns
        relations: Relations as declared (unresolved)
        api_name: Query/API type name
        api_skip: Excluded from the query/API layer
        node: Exposed as a node in the query/API layer
        oneofs: Oneof groups with their storage strategy
    """

    name: str
    package: str
    file: str
    table_name: str
    skip: bool = False
    columns: tuple[Column, ...] = dataclass_field(default_factory=tuple)
    relations: tuple[Relation, ...] = dataclass_field(default_factory=tuple)
    api_name: str = ""
    api_skip: bool = False
    node: bool = True
    oneofs: tuple[OneofGroup, ...] = dataclass_field(default_factory=tuple)

    @property
    def qualified_name(self) -> str:
        return f"{self.package}.{self.name}" if self.package else self.name

    @property
    def primary_keys(self) -> list[Column]:
        return [c for c in self.columns if c.primary_key]

    @property
    def primary_key(self) -> Column | None:
        """The single primary-key column, or None if the entity has zero or several."""
        keys = self.primary_keys
        return keys[0] if len(keys) == 1 else None

    def get_column(self, name: str) -> Column | None:
        """Get a column by schema field name or storage column name."""
        for c in self.columns:
            if c.name == name or c.column_name == name:
                return c
        return None

    def get_relation(self, name: str) -> Relation | None:
        for r in self.relations:
            if r.name == name:
                return r
        return None

    def get_oneof(self, name: str) -> OneofGroup | None:
        for group in self.oneofs:
            if group.name == name:
                return group
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "qualified_name": self.qualified_name,
            "table_name": self.table_name,
            "columns": [c.to_dict() for c in self.columns],
            "relations": [r.to_dict() for r in self.relations],
            "api_name": self.api_name,
        }
        if self.skip:
            result["skip"] = True
        if self.api_skip:
            result["api_skip"] = True
        if not self.node:
            result["node"] = False
        if self.oneofs:
            result["oneofs"] = [o.to_dict() for o in self.oneofs]
        return result


@dataclass(frozen=True)
class EnumMember:
    name: str
    number: int
    string_value: str = ""
    int_value: int | None = None
    default: bool = False
    skip: bool = False

    @property
    def storage_value(self) -> str:
        return self.string_value or self.name


@dataclass(frozen=True)
class EnumType:
    name: str
    package: str
    file: str
    storage_type: EnumStorageType = EnumStorageType.STRING
    members: tuple[EnumMember, ...] = dataclass_field(default_factory=tuple)
    skip: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.package}.{self.name}" if self.package else self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "qualified_name": self.qualified_name,
            "storage_type": self.storage_type.value,
            "members": [
                {
                    "name": m.name,
                    "number": m.number,
                    "storage_value": m.int_value if m.int_value is not None else m.storage_value,
                }
                for m in self.members
                if not m.skip
            ],
        }


@dataclass(frozen=True)
class MessageField:
    name: str
    kind: ScalarKind
    cardinality: Cardinality = Cardinality.SINGULAR
    type_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
            "cardinality": self.cardinality.value,
        }
        if self.type_name:
            result["type_name"] = self.type_name
        return result


@dataclass(frozen=True)
class Message:
    """Shape of any message (entity or request/response)."""

    name: str
    package: str
    file: str
    fields: tuple[MessageField, ...] = dataclass_field(default_factory=tuple)

    @property
    def qualified_name(self) -> str:
        return f"{self.package}.{self.name}" if self.package else self.name

    def get_field(self, name: str) -> MessageField | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class Method:
    """An RPC method with its per-layer directives."""

    name: str
    service: str
    input_type: str
    output_type: str
    operation: OperationKind = OperationKind.CUSTOM
    entity: str | None = None
    storage_method_name: str = ""
    storage_skip: bool = False
    grpc_method_name: str = ""
    grpc_skip: bool = False
    api_name: str = ""
    api_kind: ApiOperationKind = ApiOperationKind.QUERY
    api_skip: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "input_type": self.input_type,
            "output_type": self.output_type,
            "operation": self.operation.value,
            "storage_method_name": self.storage_method_name,
            "grpc_method_name": self.grpc_method_name,
            "api_name": self.api_name,
            "api_kind": self.api_kind.value,
        }
        if self.entity:
            result["entity"] = self.entity
        for flag in ("storage_skip", "grpc_skip", "api_skip"):
            if getattr(self, flag):
                result[flag] = True
        return result


@dataclass(frozen=True)
class Service:
    """A named RPC surface with ordered methods."""

    name: str
    package: str
    file: str
    methods: tuple[Method, ...] = dataclass_field(default_factory=tuple)
    trait_name: str = ""
    generate_storage: bool = True
    generate_implementation: bool = True
    storage_skip: bool = False
    grpc_struct_name: str = ""
    grpc_storage_trait: str = ""
    grpc_skip: bool = False
    api_skip: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.package}.{self.name}" if self.package else self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "qualified_name": self.qualified_name,
            "trait_name": self.trait_name,
            "grpc_struct_name": self.grpc_struct_name,
            "methods": [m.to_dict() for m in self.methods],
        }


@dataclass(frozen=True)
class FieldRuleDecl:
    """Validation declaration of one field as written in the schema."""

    name: str
    kind: ScalarKind
    cardinality: Cardinality
    rules: Rules | None = None
    rename: str = ""
    type_override: str = ""
    skip: bool = False


@dataclass(frozen=True)
class ValidationDecl:
    """Validation declaration of one message."""

    message: str
    file: str
    generate_conversion: bool
    domain_name: str = ""
    skip: bool = False
    fields: tuple[FieldRuleDecl, ...] = dataclass_field(default_factory=tuple)


@dataclass(frozen=True)
class SchemaIr:
    """The complete IR of one compilation.

    Mappings are keyed by fully-qualified name and iterate in sorted key
    order, independent of file processing order.
    """

    entities: Mapping[str, Entity] = dataclass_field(default_factory=dict)
    enums: Mapping[str, EnumType] = dataclass_field(default_factory=dict)
    messages: Mapping[str, Message] = dataclass_field(default_factory=dict)
    services: Mapping[str, Service] = dataclass_field(default_factory=dict)
    validations: Mapping[str, ValidationDecl] = dataclass_field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("entities", "enums", "messages", "services", "validations"):
            mapping = getattr(self, name)
            object.__setattr__(self, name, {k: mapping[k] for k in sorted(mapping)})

    def get_entity(self, qualified_name: str) -> Entity | None:
        return self.entities.get(qualified_name)

    def iter_entities(self, include_skipped: bool = True) -> Iterator[Entity]:
        for entity in self.entities.values():
            if include_skipped or not entity.skip:
                yield entity

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities.values()],
            "enums": [e.to_dict() for e in self.enums.values()],
            "services": [s.to_dict() for s in self.services.values()],
        }

"""
IR builder: schema elements + decoded options -> SchemaIr.

The builder runs in two phases:
    1. Collect every fully-qualified message, enum and entity name across
       all files (the global symbol table).
    2. Build entities, enums, messages, services and validation
       declarations, applying naming defaults.

Invariants:
    - Errors are recorded into the shared Diagnostics, never raised
    - The builder always completes a best-effort IR
    - Relations are recorded as declared; targets and keys are resolved
      later by the relation resolver
    - Exactly one primary key per entity, skipped entities included
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace

from ..config import Settings, get_settings
from ..errors import Diagnostics, ErrorKind, MalformedOptionError
from ..options import decoder as ns
from ..options.decoder import DecodedOptions, OptionDecoder
from ..options.models import (
    ColumnOptions,
    EntityOptions,
    EnumOptions,
    EnumValueOptions,
    GraphqlFieldOptions,
    GraphqlMethodOptions,
    GraphqlServiceOptions,
    GraphqlTypeOptions,
    GrpcMethodOptions,
    GrpcServiceOptions,
    OneofDef,
    OneofStrategy,
    StorageMethodOptions,
    StorageServiceOptions,
    ValidateFieldOptions,
    ValidateMessageOptions,
)
from ..schema.types import (
    Cardinality,
    FieldDef,
    FileDef,
    MessageDef,
    ScalarKind,
    SchemaSet,
    ServiceDef,
)
from .filters import FilterOperator, allowed_operators
from .model import (
    ApiOperationKind,
    Column,
    Entity,
    EnumMember,
    EnumType,
    FieldRuleDecl,
    Message,
    MessageField,
    Method,
    OneofGroup,
    OperationKind,
    Relation,
    RelationKind,
    SchemaIr,
    Service,
    ValidationDecl,
)
from .naming import singularize, to_camel_case, to_pascal_case, to_snake_case
from .symbols import SymbolTable

logger = logging.getLogger(__name__)

_OPERATION_PREFIXES = (
    ("Get", OperationKind.GET),
    ("List", OperationKind.LIST),
    ("Create", OperationKind.CREATE),
    ("Update", OperationKind.UPDATE),
    ("Delete", OperationKind.DELETE),
)


def infer_operation(method_name: str) -> OperationKind:
    """Infer the storage operation from a method name prefix."""
    for prefix, kind in _OPERATION_PREFIXES:
        if method_name.startswith(prefix):
            return kind
    return OperationKind.CUSTOM


def infer_entity_name(method_name: str) -> str:
    """Infer the entity name from a method name.

    GetUser -> User, ListPostsByAuthor -> Post, DeleteComment -> Comment
    """
    name = method_name
    for prefix, _ in _OPERATION_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix):]
            break
    by = name.find("By")
    if by > 0:
        name = name[:by]
    if method_name.startswith("List"):
        name = singularize(name)
    return name


class IrBuilder:
    """Builds a SchemaIr from a SchemaSet.

    Example:
        >>> diagnostics = Diagnostics()
        >>> ir = IrBuilder(diagnostics).build(schema)
        >>> ir.get_entity("blog.User").table_name
        'user'
    """

    def __init__(self, diagnostics: Diagnostics, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        self.diagnostics = diagnostics
        self.decoder = OptionDecoder(
            prefix=settings.extension_prefix,
            strict=settings.strict_options,
        )
        self._types = SymbolTable()
        self._entity_names = SymbolTable()
        self._enum_names: set[str] = set()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def build(self, schema: SchemaSet) -> SchemaIr:
        """Build the IR for every file in the schema set."""
        self._collect_symbols(schema)

        entities: dict[str, Entity] = {}
        enums: dict[str, EnumType] = {}
        messages: dict[str, Message] = {}
        services: dict[str, Service] = {}
        validations: dict[str, ValidationDecl] = {}

        for file in schema:
            for enum_def in file.enums:
                enum_type = self._build_enum(file, enum_def)
                enums[enum_type.qualified_name] = enum_type

            for message in file.messages:
                qualified = file.qualify(message.name)
                message_opts = self._decode("message", qualified, file, message.options)
                field_opts = {
                    f.name: self._decode("field", f"{qualified}.{f.name}", file, f.options)
                    for f in message.fields
                }

                messages[qualified] = self._build_message(file, message)

                if message_opts.has(ns.ENTITY):
                    entities[qualified] = self._build_entity(
                        file, message, message_opts, field_opts
                    )

                validation = self._build_validation(file, message, message_opts, field_opts)
                if validation is not None:
                    validations[qualified] = validation

            for service_def in file.services:
                service = self._build_service(file, service_def)
                if service is not None:
                    services[service.qualified_name] = service

        self._check_table_names(entities)

        ir = SchemaIr(
            entities=entities,
            enums=enums,
            messages=messages,
            services=services,
            validations=validations,
        )
        logger.info(
            f"Built IR: {len(ir.entities)} entities, {len(ir.enums)} enums, "
            f"{len(ir.services)} services, {len(ir.validations)} validation declarations"
        )
        return ir

    # ------------------------------------------------------------------
    # Symbols and options
    # ------------------------------------------------------------------

    def _collect_symbols(self, schema: SchemaSet) -> None:
        prefix = self.decoder.prefix + ns.ENTITY
        for file in schema:
            for message in file.messages:
                qualified = file.qualify(message.name)
                self._types.add(qualified)
                if prefix in message.options:
                    self._entity_names.add(qualified)
            for enum_def in file.enums:
                qualified = file.qualify(enum_def.name)
                self._types.add(qualified)
                self._enum_names.add(qualified)

    def _decode(self, element_kind: str, element: str, file: FileDef, options) -> DecodedOptions:
        decoded, errors = self.decoder.decode_element(element_kind, element, options)
        for error in errors:
            self._report_malformed(file, error)
        return decoded

    def _report_malformed(self, file: FileDef, error: MalformedOptionError) -> None:
        self.diagnostics.add(ErrorKind.MALFORMED_OPTION, file.name, error.element, error.message)
        logger.warning(error.message)

    def _qualify_type(self, file: FileDef, element: str, f: FieldDef) -> str | None:
        if f.kind not in (ScalarKind.MESSAGE, ScalarKind.ENUM) or not f.type_name:
            return None
        resolved = self._types.resolve(f.type_name, file.package)
        expected_enum = f.kind is ScalarKind.ENUM
        if resolved is None or (resolved in self._enum_names) != expected_enum:
            self.diagnostics.add(
                ErrorKind.UNKNOWN_TYPE_REFERENCE,
                file.name,
                element,
                f"Field references unknown {f.kind.value} type '{f.type_name}'",
            )
            return f.type_name
        return resolved

    # ------------------------------------------------------------------
    # Messages and entities
    # ------------------------------------------------------------------

    def _build_message(self, file: FileDef, message: MessageDef) -> Message:
        qualified = file.qualify(message.name)
        fields = tuple(
            MessageField(
                name=f.name,
                kind=f.kind,
                cardinality=f.cardinality,
                type_name=self._qualify_type(file, f"{qualified}.{f.name}", f),
            )
            for f in message.fields
        )
        return Message(name=message.name, package=file.package, file=file.name, fields=fields)

    def _build_entity(
        self,
        file: FileDef,
        message: MessageDef,
        message_opts: DecodedOptions,
        field_opts: dict[str, DecodedOptions],
    ) -> Entity:
        qualified = file.qualify(message.name)
        entity_opts = message_opts.get(ns.ENTITY, EntityOptions)
        type_opts = message_opts.get(ns.GRAPHQL_TYPE, GraphqlTypeOptions)

        columns = tuple(
            self._build_column(file, qualified, f, field_opts[f.name]) for f in message.fields
        )
        columns, oneofs = self._build_oneofs(file, qualified, entity_opts, columns)
        relations = self._build_relations(file, qualified, entity_opts, columns)

        entity = Entity(
            name=message.name,
            package=file.package,
            file=file.name,
            table_name=entity_opts.table_name or to_snake_case(message.name),
            skip=entity_opts.skip,
            columns=columns,
            relations=relations,
            api_name=type_opts.name or to_pascal_case(message.name),
            api_skip=type_opts.skip,
            node=type_opts.node,
            oneofs=oneofs,
        )
        self._check_primary_key(entity)
        logger.debug(
            f"Entity {qualified}: table={entity.table_name}, {len(columns)} columns, "
            f"{len(relations)} declared relations"
        )
        return entity

    def _build_column(
        self,
        file: FileDef,
        entity: str,
        f: FieldDef,
        opts: DecodedOptions,
    ) -> Column:
        element = f"{entity}.{f.name}"
        column_opts = opts.get(ns.COLUMN, ColumnOptions)
        api_opts = opts.get(ns.GRAPHQL_FIELD, GraphqlFieldOptions)

        integral_key = column_opts.primary_key and f.kind.is_integral
        if column_opts.auto_increment is None:
            auto_increment = integral_key
        else:
            auto_increment = column_opts.auto_increment
            if auto_increment and not integral_key:
                self.diagnostics.add(
                    ErrorKind.INVALID_COLUMN,
                    file.name,
                    element,
                    "auto_increment requires an integral primary key",
                )

        operators = None
        if api_opts.operators:
            operators = self._check_operators(file, element, f, api_opts.operators)

        # Single-field oneofs named with a leading underscore mark optional presence
        cardinality, oneof = f.cardinality, f.oneof
        if oneof and oneof.startswith("_"):
            cardinality, oneof = Cardinality.OPTIONAL, None

        return Column(
            name=f.name,
            column_name=column_opts.column_name or to_snake_case(f.name),
            api_name=api_opts.name or to_camel_case(f.name),
            number=f.number,
            kind=f.kind,
            cardinality=cardinality,
            type_name=self._field_type(file, f),
            primary_key=column_opts.primary_key,
            auto_increment=auto_increment,
            unique=column_opts.unique,
            default_value=column_opts.default_value,
            embed=column_opts.embed,
            type_hints=tuple(sorted(column_opts.type_hints.items())),
            api_skip=api_opts.skip,
            filterable=api_opts.filterable,
            orderable=api_opts.orderable,
            operators=operators,
            oneof=oneof,
        )

    def _build_oneofs(
        self,
        file: FileDef,
        entity: str,
        opts: EntityOptions,
        columns: tuple[Column, ...],
    ) -> tuple[tuple[Column, ...], tuple[OneofGroup, ...]]:
        """Group oneof member columns and apply each group's storage strategy."""
        members: dict[str, list[Column]] = {}
        for c in columns:
            if c.oneof:
                members.setdefault(c.oneof, []).append(c)

        declared: dict[str, OneofDef] = {}
        for oneof_opts in opts.oneofs:
            if oneof_opts.name not in members:
                self.diagnostics.add(
                    ErrorKind.INVALID_COLUMN,
                    file.name,
                    f"{entity}.{oneof_opts.name}",
                    f"Oneof '{oneof_opts.name}' has no fields on '{entity}'",
                )
                continue
            declared[oneof_opts.name] = oneof_opts

        renamed: dict[str, Column] = {}
        groups: list[OneofGroup] = []
        for name, group in members.items():
            oneof_opts = declared.get(name) or OneofDef(name=name)
            for c in group:
                if c.primary_key:
                    self.diagnostics.add(
                        ErrorKind.INVALID_COLUMN,
                        file.name,
                        f"{entity}.{c.name}",
                        f"Primary key '{c.name}' cannot be a member of oneof '{name}'",
                    )
                if oneof_opts.strategy is OneofStrategy.FLATTEN and oneof_opts.column_prefix:
                    renamed[c.name] = replace(
                        c, column_name=f"{oneof_opts.column_prefix}{c.column_name}"
                    )
            groups.append(
                OneofGroup(
                    name=name,
                    strategy=oneof_opts.strategy,
                    members=tuple(renamed.get(c.name, c).column_name for c in group),
                    discriminator_column=oneof_opts.discriminator_column,
                )
            )
            logger.debug(
                f"Oneof {entity}.{name}: {oneof_opts.strategy.value}, {len(group)} members"
            )

        return tuple(renamed.get(c.name, c) for c in columns), tuple(groups)

    def _field_type(self, file: FileDef, f: FieldDef) -> str | None:
        # Unknown type names were already reported while building the message shape
        if f.kind not in (ScalarKind.MESSAGE, ScalarKind.ENUM) or not f.type_name:
            return None
        return self._types.resolve(f.type_name, file.package) or f.type_name

    def _check_operators(
        self,
        file: FileDef,
        element: str,
        f: FieldDef,
        declared: list[str],
    ) -> tuple[str, ...]:
        allowed = allowed_operators(f.kind, f.cardinality)
        valid: list[str] = []
        for name in declared:
            try:
                op = FilterOperator.from_str(name)
            except ValueError as e:
                self.diagnostics.add(ErrorKind.INVALID_FILTER_OPERATOR, file.name, element, str(e))
                continue
            if op not in allowed:
                self.diagnostics.add(
                    ErrorKind.INVALID_FILTER_OPERATOR,
                    file.name,
                    element,
                    f"Operator '{name}' is not supported for {f.kind.value} columns",
                )
                continue
            if op.value not in valid:
                valid.append(op.value)
        return tuple(valid)

    def _build_relations(
        self,
        file: FileDef,
        entity: str,
        opts: EntityOptions,
        columns: tuple[Column, ...],
    ) -> tuple[Relation, ...]:
        relations: list[Relation] = []
        seen: set[str] = set()
        column_names = {c.name for c in columns}
        for rel in opts.relations:
            element = f"{entity}.{rel.name}"
            if rel.name in seen or rel.name in column_names:
                self.diagnostics.add(
                    ErrorKind.MALFORMED_OPTION,
                    file.name,
                    element,
                    f"Relation name '{rel.name}' is already used on '{entity}'",
                )
                continue
            seen.add(rel.name)
            relations.append(
                Relation(
                    source=entity,
                    name=rel.name,
                    kind=RelationKind(rel.type.value),
                    declared_target=rel.related,
                    file=file.name,
                    foreign_key=rel.foreign_key,
                    references=rel.references,
                    through=rel.through,
                )
            )
        return tuple(relations)

    def _check_primary_key(self, entity: Entity) -> None:
        keys = entity.primary_keys
        if len(keys) == 1:
            return
        if keys:
            names = ", ".join(c.name for c in keys)
            message = f"Entity '{entity.name}' declares {len(keys)} primary keys ({names})"
        else:
            message = f"Entity '{entity.name}' declares no primary key"
        self.diagnostics.add(
            ErrorKind.DUPLICATE_PRIMARY_KEY, entity.file, entity.qualified_name, message
        )
        logger.warning(message)

    def _check_table_names(self, entities: dict[str, Entity]) -> None:
        by_table: dict[tuple[str, str], list[Entity]] = defaultdict(list)
        for qualified in sorted(entities):
            entity = entities[qualified]
            by_table[(entity.package, entity.table_name)].append(entity)
        for (package, table), owners in by_table.items():
            for entity in owners[1:]:
                self.diagnostics.add(
                    ErrorKind.DUPLICATE_TABLE_NAME,
                    entity.file,
                    entity.qualified_name,
                    f"Table name '{table}' is already used by '{owners[0].qualified_name}' "
                    f"in package '{package}'",
                )

    # ------------------------------------------------------------------
    # Enums
    # ------------------------------------------------------------------

    def _build_enum(self, file: FileDef, enum_def) -> EnumType:
        qualified = file.qualify(enum_def.name)
        enum_opts = self._decode("enum", qualified, file, enum_def.options).get(
            ns.ENUM, EnumOptions
        )
        members = []
        for value in enum_def.values:
            value_opts = self._decode(
                "enum_value", f"{qualified}.{value.name}", file, value.options
            ).get(ns.ENUM_VALUE, EnumValueOptions)
            members.append(
                EnumMember(
                    name=value.name,
                    number=value.number,
                    string_value=value_opts.string_value,
                    int_value=value_opts.int_value,
                    default=value_opts.default,
                    skip=value_opts.skip,
                )
            )
        return EnumType(
            name=enum_def.name,
            package=file.package,
            file=file.name,
            storage_type=enum_opts.storage_type,
            members=tuple(members),
            skip=enum_opts.skip,
        )

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def _build_service(self, file: FileDef, service_def: ServiceDef) -> Service | None:
        qualified = file.qualify(service_def.name)
        service_opts = self._decode("service", qualified, file, service_def.options)
        method_opts = {
            m.name: self._decode("method", f"{qualified}.{m.name}", file, m.options)
            for m in service_def.methods
        }
        has_metadata = bool(service_opts.explicit) or any(
            o.explicit for o in method_opts.values()
        )
        if not has_metadata:
            logger.debug(f"Service {qualified} carries no entgen options, not materialized")
            return None

        storage = service_opts.get(ns.STORAGE_SERVICE, StorageServiceOptions)
        grpc = service_opts.get(ns.GRPC_SERVICE, GrpcServiceOptions)
        graphql = service_opts.get(ns.GRAPHQL_SERVICE, GraphqlServiceOptions)

        trait_name = storage.trait_name or f"{service_def.name}Storage"
        methods = tuple(
            self._build_method(file, qualified, m, method_opts[m.name])
            for m in service_def.methods
        )
        return Service(
            name=service_def.name,
            package=file.package,
            file=file.name,
            methods=methods,
            trait_name=trait_name,
            generate_storage=storage.generate_storage,
            generate_implementation=storage.generate_implementation,
            storage_skip=storage.skip,
            grpc_struct_name=grpc.struct_name or f"{service_def.name}GrpcService",
            grpc_storage_trait=grpc.storage_trait or trait_name,
            grpc_skip=grpc.skip,
            api_skip=graphql.skip,
        )

    def _build_method(self, file: FileDef, service: str, method_def, opts: DecodedOptions) -> Method:
        element = f"{service}.{method_def.name}"
        storage = opts.get(ns.STORAGE_METHOD, StorageMethodOptions)
        grpc = opts.get(ns.GRPC_METHOD, GrpcMethodOptions)
        graphql = opts.get(ns.GRAPHQL_METHOD, GraphqlMethodOptions)

        input_type = self._resolve_message(file, element, method_def.input_type, "input")
        output_type = self._resolve_message(file, element, method_def.output_type, "output")

        if storage.operation is not None:
            operation = OperationKind(storage.operation.value)
        else:
            operation = infer_operation(method_def.name)

        entity: str | None = None
        if storage.entity_name:
            entity = self._entity_names.resolve(storage.entity_name, file.package)
            if entity is None:
                self.diagnostics.add(
                    ErrorKind.UNKNOWN_TYPE_REFERENCE,
                    file.name,
                    element,
                    f"Method references unknown entity '{storage.entity_name}'",
                )
        elif operation is not OperationKind.CUSTOM:
            entity = self._entity_names.resolve(infer_entity_name(method_def.name), file.package)

        if entity is None and operation is not OperationKind.CUSTOM:
            logger.debug(f"No entity for {element}; treating {operation.value} as custom")
            operation = OperationKind.CUSTOM

        if graphql.kind is not None:
            api_kind = ApiOperationKind(graphql.kind.value)
        elif operation in (OperationKind.GET, OperationKind.LIST):
            api_kind = ApiOperationKind.QUERY
        else:
            api_kind = ApiOperationKind.MUTATION

        return Method(
            name=method_def.name,
            service=service,
            input_type=input_type,
            output_type=output_type,
            operation=operation,
            entity=entity,
            storage_method_name=storage.method_name or to_snake_case(method_def.name),
            storage_skip=storage.skip,
            grpc_method_name=grpc.method_name or to_snake_case(method_def.name),
            grpc_skip=grpc.skip,
            api_name=graphql.name or to_camel_case(method_def.name),
            api_kind=api_kind,
            api_skip=graphql.skip,
        )

    def _resolve_message(self, file: FileDef, element: str, name: str, role: str) -> str:
        resolved = self._types.resolve(name, file.package)
        if resolved is None or resolved in self._enum_names:
            self.diagnostics.add(
                ErrorKind.UNKNOWN_TYPE_REFERENCE,
                file.name,
                element,
                f"Method {role} type '{name}' is not a known message",
            )
            return name
        return resolved

    # ------------------------------------------------------------------
    # Validation declarations
    # ------------------------------------------------------------------

    def _build_validation(
        self,
        file: FileDef,
        message: MessageDef,
        message_opts: DecodedOptions,
        field_opts: dict[str, DecodedOptions],
    ) -> ValidationDecl | None:
        declared = message_opts.has(ns.VALIDATE_MESSAGE) or any(
            o.has(ns.VALIDATE_FIELD) for o in field_opts.values()
        )
        if not declared:
            return None

        opts = message_opts.get(ns.VALIDATE_MESSAGE, ValidateMessageOptions)
        fields = []
        for f in message.fields:
            field_opts_ = field_opts[f.name].get(ns.VALIDATE_FIELD, ValidateFieldOptions)
            fields.append(
                FieldRuleDecl(
                    name=f.name,
                    kind=f.kind,
                    cardinality=f.cardinality,
                    rules=field_opts_.rules,
                    rename=field_opts_.rename,
                    type_override=field_opts_.type,
                    skip=field_opts_.skip,
                )
            )
        return ValidationDecl(
            message=file.qualify(message.name),
            file=file.name,
            generate_conversion=opts.generate_conversion,
            domain_name=opts.name,
            skip=opts.skip,
            fields=tuple(fields),
        )

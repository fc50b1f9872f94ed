"""
Intermediate representation for entgen.

Normalized entity, column, relation, service and validation records, the
naming convention, the filter-operator model, and the IR builder.
"""

from .builder import IrBuilder, infer_entity_name, infer_operation
from .filters import FilterOperator, allowed_operators, filter_type_name, is_orderable
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
from .naming import pluralize, singularize, to_camel_case, to_pascal_case, to_snake_case
from .symbols import SymbolTable

__all__ = [
    # Builder
    "IrBuilder",
    "infer_entity_name",
    "infer_operation",
    # Records
    "ApiOperationKind",
    "Column",
    "Entity",
    "EnumMember",
    "EnumType",
    "FieldRuleDecl",
    "Message",
    "MessageField",
    "Method",
    "OneofGroup",
    "OperationKind",
    "Relation",
    "RelationKind",
    "SchemaIr",
    "Service",
    "ValidationDecl",
    # Filters
    "FilterOperator",
    "allowed_operators",
    "filter_type_name",
    "is_orderable",
    # Naming
    "pluralize",
    "singularize",
    "to_camel_case",
    "to_pascal_case",
    "to_snake_case",
    "SymbolTable",
]

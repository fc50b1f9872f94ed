"""
Schema input model for entgen.

Structural, already-parsed schema elements (files, messages, fields, enums,
services, methods) with their raw extension values, and a YAML/JSON loader.
"""

from .loader import SchemaLoadError, load_schema, parse_schema
from .types import (
    Cardinality,
    EnumDef,
    EnumValueDef,
    FieldDef,
    FileDef,
    MessageDef,
    MethodDef,
    ScalarKind,
    SchemaSet,
    ServiceDef,
)

__all__ = [
    # Types
    "Cardinality",
    "EnumDef",
    "EnumValueDef",
    "FieldDef",
    "FileDef",
    "MessageDef",
    "MethodDef",
    "ScalarKind",
    "SchemaSet",
    "ServiceDef",
    # Loading
    "SchemaLoadError",
    "load_schema",
    "parse_schema",
]

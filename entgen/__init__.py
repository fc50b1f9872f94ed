"""
entgen - schema compiler for storage, RPC and query/API generation plans.

entgen reads schema files whose elements carry extension metadata and
compiles them into target-agnostic generation plans:
- Storage: entity mappings and per-service interfaces with overridable
  default operations
- RPC: method bindings with request-to-domain conversion
- Query/API: node types, connections, filters and relation accessors

Compile-time errors are collected across the whole input; any error
suppresses every plan.
"""

from .compiler import CompilationResult, compile_schema
from .config import Settings, get_settings
from .errors import (
    CompilationError,
    Diagnostic,
    Diagnostics,
    EntGenError,
    ErrorKind,
    InvalidCursorError,
    MalformedOptionError,
    ValidationAggregateError,
)
from .schema import SchemaSet, load_schema, parse_schema

__version__ = "0.1.0"

__all__ = [
    "CompilationResult",
    "compile_schema",
    "Settings",
    "get_settings",
    "CompilationError",
    "Diagnostic",
    "Diagnostics",
    "EntGenError",
    "ErrorKind",
    "InvalidCursorError",
    "MalformedOptionError",
    "ValidationAggregateError",
    "SchemaSet",
    "load_schema",
    "parse_schema",
]

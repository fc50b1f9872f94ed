"""
Error types for the entgen schema compiler.

This module defines:
- ErrorKind: every compile-time and runtime error kind
- Diagnostic / Diagnostics: the ordered, accumulated compile-time error list
- EntGenError and subclasses: exceptions raised at API seams

Invariants:
    - Compile-time errors are accumulated as diagnostics, never raised one
      at a time while a compilation is running
    - Diagnostics are ordered by (file, element); ties keep insertion order
    - Runtime contract errors (InvalidCursorError, ValidationAggregateError)
      are never recorded as diagnostics
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence


class ErrorKind(Enum):
    """Kinds of errors produced by the compiler and by generated code."""

    # Compile-time
    MALFORMED_OPTION = "MalformedOption"
    UNKNOWN_RELATION_TARGET = "UnknownRelationTarget"
    RELATION_KEY_MISMATCH = "RelationKeyMismatch"
    AMBIGUOUS_JOIN_ENTITY = "AmbiguousJoinEntity"
    CONFLICTING_INVERSE_RELATION = "ConflictingInverseRelation"
    DUPLICATE_PRIMARY_KEY = "DuplicatePrimaryKey"
    DUPLICATE_TABLE_NAME = "DuplicateTableName"
    INVALID_COLUMN = "InvalidColumn"
    INVALID_FILTER_OPERATOR = "InvalidFilterOperator"
    INVALID_VALIDATION_RULE = "InvalidValidationRule"
    UNKNOWN_TYPE_REFERENCE = "UnknownTypeReference"

    # Runtime (generated code contracts)
    INVALID_CURSOR = "InvalidCursor"
    VALIDATION_AGGREGATE = "ValidationAggregate"

    @property
    def is_runtime(self) -> bool:
        """Whether this kind belongs to generated code rather than the compiler."""
        return self in (ErrorKind.INVALID_CURSOR, ErrorKind.VALIDATION_AGGREGATE)


@dataclass(frozen=True)
class Diagnostic:
    """A single compile-time error.

    Attributes:
        kind: The error kind
        file: Schema file the offending element lives in
        element: Fully-qualified path of the offending element
            (e.g. "blog.User.posts")
        message: Human-readable description
    """

    kind: ErrorKind
    file: str
    element: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind.value,
            "file": self.file,
            "element": self.element,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.file}:{self.element} - {self.message}"


class Diagnostics:
    """Ordered accumulator of compile-time diagnostics.

    Every compiler phase records into the same instance so that a single
    invocation surfaces the full defect list.

    Example:
        >>> diagnostics = Diagnostics()
        >>> diagnostics.add(ErrorKind.DUPLICATE_PRIMARY_KEY, "blog.yaml", "blog.User", "...")
        >>> bool(diagnostics)
        True
    """

    def __init__(self) -> None:
        self._items: List[Diagnostic] = []

    def add(self, kind: ErrorKind, file: str, element: str, message: str) -> Diagnostic:
        """Record a diagnostic and return it."""
        if kind.is_runtime:
            raise ValueError(f"{kind.value} is a runtime error and cannot be a diagnostic")
        diagnostic = Diagnostic(kind=kind, file=file, element=element, message=message)
        self._items.append(diagnostic)
        return diagnostic

    def extend(self, diagnostics: Sequence[Diagnostic]) -> None:
        self._items.extend(diagnostics)

    def of_kind(self, kind: ErrorKind) -> List[Diagnostic]:
        return [d for d in self.sorted() if d.kind == kind]

    def sorted(self) -> List[Diagnostic]:
        """Diagnostics ordered by (file, element), stable within a key."""
        return sorted(self._items, key=lambda d: (d.file, d.element))

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.sorted())

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


class EntGenError(Exception):
    """Base exception for all entgen errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ENTGEN_ERROR"
        self.details = details or {}


class MalformedOptionError(EntGenError):
    """An extension value does not match the schema of its namespace.

    Raised by the option decoder; the IR builder turns it into a
    MalformedOption diagnostic.
    """

    def __init__(self, element: str, namespace: str, reason: str) -> None:
        super().__init__(
            f"Malformed option '{namespace}' on '{element}': {reason}",
            code=ErrorKind.MALFORMED_OPTION.value,
            details={"element": element, "namespace": namespace, "reason": reason},
        )
        self.element = element
        self.namespace = namespace
        self.reason = reason


class CompilationError(EntGenError):
    """Raised when a compilation produced diagnostics.

    Attributes:
        diagnostics: Ordered list of every diagnostic found
    """

    def __init__(self, diagnostics: Sequence[Diagnostic]) -> None:
        self.diagnostics = list(diagnostics)
        messages = [str(d) for d in self.diagnostics]
        super().__init__(
            f"Compilation failed with {len(self.diagnostics)} error(s):\n" + "\n".join(messages),
            code="COMPILATION_ERROR",
            details={"diagnostics": [d.to_dict() for d in self.diagnostics]},
        )


class GraphFrozenError(EntGenError):
    """Raised when modifying a relation graph after it was frozen."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="GRAPH_FROZEN")


class InvalidCursorError(EntGenError):
    """A pagination cursor could not be decoded or belongs to another type.

    Recoverable by the caller: re-request without a cursor.
    """

    def __init__(self, cursor: str, reason: str) -> None:
        super().__init__(
            f"Invalid cursor: {reason}",
            code=ErrorKind.INVALID_CURSOR.value,
            details={"cursor": cursor, "reason": reason},
        )
        self.cursor = cursor
        self.reason = reason


@dataclass(frozen=True)
class FieldError:
    """One failed validation rule for one field."""

    code: str
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "field": self.field, "message": self.message}


class ValidationAggregateError(EntGenError):
    """Every rule violation of one domain conversion attempt.

    Attributes:
        domain_type: Name of the domain type that could not be built
        errors: All field errors, in check-plan order
    """

    def __init__(self, domain_type: str, errors: Sequence[FieldError]) -> None:
        self.domain_type = domain_type
        self.errors = list(errors)
        super().__init__(
            f"Validation failed for {domain_type} with {len(self.errors)} error(s)",
            code=ErrorKind.VALIDATION_AGGREGATE.value,
            details={"errors": [e.to_dict() for e in self.errors]},
        )

    def fields(self) -> List[str]:
        """Names of the fields that failed, without duplicates."""
        seen: List[str] = []
        for error in self.errors:
            if error.field not in seen:
                seen.append(error.field)
        return seen

"""
Filter-operator model for query/API filter inputs.

Each filterable column gets one comparison group. Which operators a group
exposes depends on the column type:

    string                      eq neq gt gte lt lte in contains
    integral, float, timestamp  eq neq gt gte lt lte in
    bool, enum                  eq neq in
    bytes, message, repeated    not filterable
"""

from __future__ import annotations

from enum import Enum

from ..schema.types import Cardinality, ScalarKind


class FilterOperator(Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"

    @classmethod
    def from_str(cls, value: str) -> FilterOperator:
        for op in cls:
            if op.value == value:
                return op
        valid = [o.value for o in cls]
        raise ValueError(f"Invalid filter operator '{value}'. Valid operators: {valid}")


EQUALITY = (FilterOperator.EQ, FilterOperator.NEQ, FilterOperator.IN)
ORDERING = (
    FilterOperator.EQ,
    FilterOperator.NEQ,
    FilterOperator.GT,
    FilterOperator.GTE,
    FilterOperator.LT,
    FilterOperator.LTE,
    FilterOperator.IN,
)
TEXT = ORDERING + (FilterOperator.CONTAINS,)


def allowed_operators(kind: ScalarKind, cardinality: Cardinality) -> tuple[FilterOperator, ...]:
    """Operators a column of this type supports, in canonical order."""
    if cardinality is Cardinality.REPEATED:
        return ()
    if kind is ScalarKind.STRING:
        return TEXT
    if kind.is_numeric or kind is ScalarKind.TIMESTAMP:
        return ORDERING
    if kind in (ScalarKind.BOOL, ScalarKind.ENUM):
        return EQUALITY
    return ()


def is_orderable(kind: ScalarKind, cardinality: Cardinality) -> bool:
    if cardinality is Cardinality.REPEATED:
        return False
    return kind is ScalarKind.STRING or kind.is_numeric or kind is ScalarKind.TIMESTAMP


def filter_type_name(kind: ScalarKind) -> str:
    """Shared comparison-group input name for a scalar kind."""
    if kind.is_integral:
        return "IntFilter"
    if kind.is_numeric:
        return "FloatFilter"
    names = {
        ScalarKind.STRING: "StringFilter",
        ScalarKind.BOOL: "BoolFilter",
        ScalarKind.TIMESTAMP: "TimestampFilter",
        ScalarKind.ENUM: "EnumFilter",
    }
    return names[kind]

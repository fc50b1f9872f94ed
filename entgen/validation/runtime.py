"""
Reference implementation of the domain-conversion contract.

``convert(plan, payload)`` evaluates every check of every field, collects
one FieldError per failed check, and either returns an instance of the
plan's domain type or raises ValidationAggregateError with all errors.

Absent values (missing key or None) only fail ``required``; every other
check is skipped for them. Present values run every check, so an empty
string on a required email field yields two errors.
"""

from __future__ import annotations

import ipaddress
import re
import uuid
from dataclasses import make_dataclass
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping

from pydantic import AnyUrl, EmailStr, TypeAdapter, ValidationError

from ..errors import FieldError, ValidationAggregateError
from .compiler import Check, CheckKind, ValidationPlan

_EMAIL = TypeAdapter(EmailStr)
_URL = TypeAdapter(AnyUrl)


def _is_empty(value: Any) -> bool:
    if isinstance(value, (str, bytes, list, tuple, dict)):
        return len(value) == 0
    return False


def _is_email(value: str) -> bool:
    try:
        _EMAIL.validate_python(value)
    except ValidationError:
        return False
    return True


def _is_url(value: str) -> bool:
    try:
        _URL.validate_python(value)
    except ValidationError:
        return False
    return True


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _is_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def _is_ipv6(value: str) -> bool:
    try:
        ipaddress.IPv6Address(value)
    except ValueError:
        return False
    return True


_SHAPES: Dict[CheckKind, Callable[[str], bool]] = {
    CheckKind.EMAIL: _is_email,
    CheckKind.URL: _is_url,
    CheckKind.UUID: _is_uuid,
    CheckKind.ASCII: str.isascii,
    CheckKind.ALPHANUMERIC: lambda v: v.isascii() and v.isalnum(),
    CheckKind.IPV4: _is_ipv4,
    CheckKind.IPV6: _is_ipv6,
}


def _within(value: Any, check: Check) -> bool:
    bounds = dict(check.params)
    if "equal" in bounds and value != bounds["equal"]:
        return False
    if "min" in bounds and value < bounds["min"]:
        return False
    if "max" in bounds and value > bounds["max"]:
        return False
    if "greater_than" in bounds and value <= bounds["greater_than"]:
        return False
    if "less_than" in bounds and value >= bounds["less_than"]:
        return False
    return True


def _has_duplicates(items: Any) -> bool:
    seen: List[Any] = []
    for item in items:
        if item in seen:
            return True
        seen.append(item)
    return False


def run_check(check: Check, value: Any) -> bool:
    """Evaluate one check against a value. Returns True if it passes."""
    absent = value is None
    if check.kind is CheckKind.REQUIRED:
        return not absent and not _is_empty(value)
    if absent:
        return True

    if check.kind is CheckKind.PATTERN:
        return isinstance(value, str) and re.search(check.param("pattern"), value) is not None
    if check.kind.is_shape:
        return isinstance(value, str) and _SHAPES[check.kind](value)
    if check.kind is CheckKind.LENGTH:
        try:
            size = len(value)
        except TypeError:
            return False
        return _within(size, check)
    if check.kind is CheckKind.RANGE:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return _within(value, check)
    if check.kind is CheckKind.UNIQUE_ITEMS:
        return not _has_duplicates(value)
    raise ValueError(f"Unknown check kind: {check.kind}")


@lru_cache(maxsize=None)
def domain_class(plan: ValidationPlan) -> type:
    """The frozen dataclass generated for a plan's domain type."""
    return make_dataclass(
        plan.domain_type,
        [(f.target_name, Any) for f in plan.fields],
        frozen=True,
    )


def validate(plan: ValidationPlan, payload: Mapping[str, Any]) -> List[FieldError]:
    """Evaluate every check of the plan and return all failures in plan order."""
    errors: List[FieldError] = []
    for field_plan in plan.fields:
        value = payload.get(field_plan.field)
        for check in field_plan.checks:
            if not run_check(check, value):
                errors.append(
                    FieldError(
                        code=check.kind.value,
                        field=field_plan.field,
                        message=check.message,
                    )
                )
    return errors


def convert(plan: ValidationPlan, payload: Mapping[str, Any]) -> Any:
    """Convert a raw payload to the plan's domain type.

    Raises:
        ValidationAggregateError: With every failed check, if any failed
    """
    errors = validate(plan, payload)
    if errors:
        raise ValidationAggregateError(plan.domain_type, errors)
    cls = domain_class(plan)
    return cls(**{f.target_name: payload.get(f.field) for f in plan.fields})

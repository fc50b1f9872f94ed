"""
Validation-rule compiler.

Turns the per-field rule declarations of a message into an ordered check
plan. Checks of one field are always emitted in this order:

    required
    email, url, uuid, ascii, alphanumeric, ipv4, ipv6, pattern
    length, range
    unique_items

A field without ``required`` is optional for validation purposes even if
the wire-level field is mandatory.

Only messages with ``generate_conversion`` produce a ValidationPlan (one
plan, one domain type). Rule declarations on every message are still
checked, and uncompilable rules become InvalidValidationRule diagnostics.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..errors import Diagnostics, ErrorKind
from ..ir.model import FieldRuleDecl, SchemaIr, ValidationDecl
from ..options.models import Rules
from ..schema.types import Cardinality, ScalarKind

logger = logging.getLogger(__name__)


class CheckKind(Enum):
    REQUIRED = "required"
    EMAIL = "email"
    URL = "url"
    UUID = "uuid"
    ASCII = "ascii"
    ALPHANUMERIC = "alphanumeric"
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    PATTERN = "pattern"
    LENGTH = "length"
    RANGE = "range"
    UNIQUE_ITEMS = "unique_items"

    @property
    def is_shape(self) -> bool:
        return self in _SHAPE_CHECKS


# Fixed evaluation order
CHECK_ORDER: Tuple[CheckKind, ...] = tuple(CheckKind)

_SHAPE_CHECKS = (
    CheckKind.EMAIL,
    CheckKind.URL,
    CheckKind.UUID,
    CheckKind.ASCII,
    CheckKind.ALPHANUMERIC,
    CheckKind.IPV4,
    CheckKind.IPV6,
    CheckKind.PATTERN,
)

_DEFAULT_MESSAGES = {
    CheckKind.REQUIRED: "is required",
    CheckKind.EMAIL: "must be a valid email address",
    CheckKind.URL: "must be a valid URL",
    CheckKind.UUID: "must be a valid UUID",
    CheckKind.ASCII: "must contain only ASCII characters",
    CheckKind.ALPHANUMERIC: "must contain only letters and digits",
    CheckKind.IPV4: "must be a valid IPv4 address",
    CheckKind.IPV6: "must be a valid IPv6 address",
    CheckKind.PATTERN: "must match pattern {pattern}",
    CheckKind.LENGTH: "length must be {bounds}",
    CheckKind.RANGE: "must be {bounds}",
    CheckKind.UNIQUE_ITEMS: "must not contain duplicate items",
}


@dataclass(frozen=True)
class Check:
    """One compiled rule.

    Attributes:
        kind: Rule kind
        params: Sorted (name, value) pairs, e.g. (("max", 64), ("min", 1))
        message: Error message emitted when the check fails
    """

    kind: CheckKind
    params: Tuple[Tuple[str, Any], ...] = ()
    message: str = ""

    def param(self, name: str) -> Any:
        return dict(self.params).get(name)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.params:
            result["params"] = dict(self.params)
        return result


@dataclass(frozen=True)
class FieldRulePlan:
    """Ordered checks for one field of the domain type."""

    field: str
    target_name: str
    kind: ScalarKind
    cardinality: Cardinality
    type_override: str = ""
    checks: Tuple[Check, ...] = ()

    @property
    def required(self) -> bool:
        return any(c.kind is CheckKind.REQUIRED for c in self.checks)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "field": self.field,
            "target_name": self.target_name,
            "kind": self.kind.value,
            "cardinality": self.cardinality.value,
            "checks": [c.to_dict() for c in self.checks],
        }
        if self.type_override:
            result["type_override"] = self.type_override
        return result


@dataclass(frozen=True)
class ValidationPlan:
    """Conversion plan from a raw message to its validated domain type."""

    message: str
    domain_type: str
    fields: Tuple[FieldRulePlan, ...] = dataclass_field(default_factory=tuple)

    def get_field(self, name: str) -> Optional[FieldRulePlan]:
        for f in self.fields:
            if f.field == name:
                return f
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "domain_type": self.domain_type,
            "fields": [f.to_dict() for f in self.fields],
        }


def _format_bounds(params: Dict[str, Any]) -> str:
    words = {
        "equal": "exactly {}",
        "min": "at least {}",
        "max": "at most {}",
        "greater_than": "greater than {}",
        "less_than": "less than {}",
    }
    return " and ".join(words[k].format(v) for k, v in params.items())


class ValidationCompiler:
    """Compiles ValidationDecls into ValidationPlans.

    Example:
        >>> plans = ValidationCompiler(diagnostics).compile(ir)
        >>> plans["auth.SignUpRequest"].domain_type
        'ValidatedSignUpRequest'
    """

    def __init__(self, diagnostics: Diagnostics) -> None:
        self.diagnostics = diagnostics

    def compile(self, ir: SchemaIr) -> Dict[str, ValidationPlan]:
        """Compile every validation declaration in the IR.

        Returns:
            ValidationPlan per message with generate_conversion, keyed by
            fully-qualified message name
        """
        plans: Dict[str, ValidationPlan] = {}
        for name, decl in ir.validations.items():
            plan = self.compile_message(decl)
            if plan is not None:
                plans[name] = plan
        logger.info(f"Compiled {len(plans)} validation plans")
        return plans

    def compile_message(self, decl: ValidationDecl) -> Optional[ValidationPlan]:
        fields = []
        for f in decl.fields:
            if f.skip:
                continue
            fields.append(
                FieldRulePlan(
                    field=f.name,
                    target_name=f.rename or f.name,
                    kind=f.kind,
                    cardinality=f.cardinality,
                    type_override=f.type_override,
                    checks=self.compile_field(decl, f),
                )
            )

        if decl.skip or not decl.generate_conversion:
            return None

        simple_name = decl.message.rsplit(".", 1)[-1]
        plan = ValidationPlan(
            message=decl.message,
            domain_type=decl.domain_name or f"Validated{simple_name}",
            fields=tuple(fields),
        )
        logger.debug(
            f"Validation plan for {decl.message}: domain type {plan.domain_type}, "
            f"{sum(len(f.checks) for f in plan.fields)} checks"
        )
        return plan

    def compile_field(self, decl: ValidationDecl, f: FieldRuleDecl) -> Tuple[Check, ...]:
        rules = f.rules
        if rules is None:
            return ()
        element = f"{decl.message}.{f.name}"
        checks: List[Check] = []

        def invalid(reason: str) -> None:
            self.diagnostics.add(ErrorKind.INVALID_VALIDATION_RULE, decl.file, element, reason)
            logger.warning(f"{element}: {reason}")

        def emit(kind: CheckKind, **params: Any) -> None:
            ordered = tuple(sorted(params.items()))
            if rules.message:
                message = rules.message
            else:
                message = _DEFAULT_MESSAGES[kind].format(
                    pattern=params.get("pattern", ""),
                    bounds=_format_bounds(params),
                )
            checks.append(Check(kind=kind, params=ordered, message=message))

        repeated = f.cardinality is Cardinality.REPEATED
        is_string = f.kind is ScalarKind.STRING and not repeated

        if rules.required:
            emit(CheckKind.REQUIRED)

        for kind in _SHAPE_CHECKS:
            if kind is CheckKind.PATTERN:
                enabled = bool(rules.pattern)
            else:
                enabled = getattr(rules, kind.value)
            if not enabled:
                continue
            if not is_string:
                invalid(f"'{kind.value}' rule requires a string field, got {_type_label(f)}")
                continue
            if kind is CheckKind.PATTERN:
                try:
                    re.compile(rules.pattern)
                except re.error as e:
                    invalid(f"Invalid pattern '{rules.pattern}': {e}")
                    continue
                emit(kind, pattern=rules.pattern)
            else:
                emit(kind)

        self._compile_bounds(f, rules, emit, invalid)

        if rules.unique_items:
            if not repeated:
                invalid("'unique_items' rule requires a repeated field")
            else:
                emit(CheckKind.UNIQUE_ITEMS)

        return tuple(checks)

    def _compile_bounds(self, f: FieldRuleDecl, rules: Rules, emit, invalid) -> None:
        repeated = f.cardinality is Cardinality.REPEATED

        length = rules.length
        if length is not None:
            params = {k: v for k, v in length.model_dump().items() if v is not None}
            if not (repeated or f.kind in (ScalarKind.STRING, ScalarKind.BYTES)):
                invalid(f"'length' rule requires a string, bytes or repeated field, got {_type_label(f)}")
            elif not params:
                invalid("'length' rule sets no bound")
            elif length.min is not None and length.max is not None and length.min > length.max:
                invalid(f"Length bounds are inverted: min {length.min} > max {length.max}")
            elif length.equal is not None and (
                (length.min is not None and length.equal < length.min)
                or (length.max is not None and length.equal > length.max)
            ):
                invalid(f"Length {length.equal} lies outside [min, max]")
            else:
                emit(CheckKind.LENGTH, **params)

        bounds = rules.range
        if bounds is not None:
            params = {k: v for k, v in bounds.model_dump().items() if v is not None}
            lower = [v for v in (bounds.min, bounds.greater_than) if v is not None]
            upper = [v for v in (bounds.max, bounds.less_than) if v is not None]
            if repeated or not f.kind.is_numeric:
                invalid(f"'range' rule requires a numeric field, got {_type_label(f)}")
            elif not params:
                invalid("'range' rule sets no bound")
            elif lower and upper and max(lower) > min(upper):
                invalid(f"Range bounds are inverted: lower {max(lower)} > upper {min(upper)}")
            elif (
                bounds.greater_than is not None
                and bounds.less_than is not None
                and bounds.greater_than >= bounds.less_than
            ):
                invalid(
                    f"Range is empty: greater_than {bounds.greater_than} "
                    f">= less_than {bounds.less_than}"
                )
            else:
                emit(CheckKind.RANGE, **params)


def _type_label(f: FieldRuleDecl) -> str:
    if f.cardinality is Cardinality.REPEATED:
        return f"repeated {f.kind.value}"
    return f.kind.value

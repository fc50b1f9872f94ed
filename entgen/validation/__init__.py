"""
Validation for entgen.

The rule compiler turns field rule declarations into ordered check plans;
the runtime module evaluates a plan and converts a payload to its domain
type or raises one aggregate error.
"""

from .compiler import (
    CHECK_ORDER,
    Check,
    CheckKind,
    FieldRulePlan,
    ValidationCompiler,
    ValidationPlan,
)
from .runtime import convert, domain_class, run_check, validate

__all__ = [
    "CHECK_ORDER",
    "Check",
    "CheckKind",
    "FieldRulePlan",
    "ValidationCompiler",
    "ValidationPlan",
    "convert",
    "domain_class",
    "run_check",
    "validate",
]

"""
Compilation pipeline.

    SchemaSet
      -> IrBuilder             (options decoded, naming defaults applied)
      -> RelationResolver      (targets, keys, inverses)
      -> ValidationCompiler    (rule check plans)
      -> storage / RPC / query plans

Invariants:
    - Every phase runs and records into one Diagnostics, so a single call
      reports every defect in the input
    - Any diagnostic suppresses all plan output (all-or-nothing)
    - Identical input yields an identical plan and fingerprint

Example:
    >>> result = compile_schema(load_schema("blog.yaml"))
    >>> if not result.ok:
    ...     for diagnostic in result.diagnostics:
    ...         print(diagnostic)
    >>> result.fingerprint
    'sha256:...'
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .config import Settings, get_settings
from .errors import CompilationError, Diagnostic, Diagnostics
from .ir.builder import IrBuilder
from .ir.model import SchemaIr
from .plan.query import QueryPlan, build_query_plan
from .plan.rpc import RpcPlan, build_rpc_plan
from .plan.storage import StoragePlan, build_storage_plan
from .resolve.graph import RelationGraph
from .resolve.resolver import RelationResolver
from .schema.types import SchemaSet
from .validation.compiler import ValidationCompiler, ValidationPlan

logger = logging.getLogger(__name__)

LAYERS = ("storage", "rpc", "query")


@dataclass
class CompilationResult:
    """Outcome of one compilation.

    On failure only ``diagnostics`` is populated; the IR and graph are kept
    for inspection but every plan is None.

    Attributes:
        diagnostics: Every compile-time error, ordered by (file, element)
        ir: The built IR (best effort on failure)
        graph: The resolved relation graph (best effort on failure)
        validation_plans: ValidationPlan per message
        storage: Storage plan
        rpc: RPC plan
        query: Query/API plan
        fingerprint: sha256 fingerprint of the canonical plan JSON
    """

    diagnostics: List[Diagnostic] = field(default_factory=list)
    ir: Optional[SchemaIr] = None
    graph: Optional[RelationGraph] = None
    validation_plans: Optional[Dict[str, ValidationPlan]] = None
    storage: Optional[StoragePlan] = None
    rpc: Optional[RpcPlan] = None
    query: Optional[QueryPlan] = None
    fingerprint: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.diagnostics

    def raise_for_errors(self) -> None:
        """Raise CompilationError if any diagnostic was recorded."""
        if self.diagnostics:
            raise CompilationError(self.diagnostics)

    def plans_dict(self) -> Dict[str, Any]:
        """Canonical dictionary of every plan (empty on failure)."""
        if not self.ok:
            return {}
        if self.storage is None or self.rpc is None or self.query is None:
            raise ValueError("Compilation succeeded but plans were not built")
        if self.validation_plans is None:
            raise ValueError("Compilation succeeded but validation plans were not built")
        return {
            "storage": self.storage.to_dict(),
            "rpc": self.rpc.to_dict(),
            "query": self.query.to_dict(),
            "validation": [p.to_dict() for p in self.validation_plans.values()],
        }

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "ok": self.ok,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }
        if self.ok:
            result["fingerprint"] = self.fingerprint
            result["plans"] = self.plans_dict()
        return result


def fingerprint_of(data: Dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"


def compile_schema(
    schema: SchemaSet,
    settings: Optional[Settings] = None,
    raise_on_error: bool = False,
) -> CompilationResult:
    """Compile a schema set into generation plans.

    Args:
        schema: The full set of schema files
        settings: Compiler settings (default: environment settings)
        raise_on_error: Raise CompilationError instead of returning a
            failed result

    Returns:
        CompilationResult with either diagnostics or plans, never both

    Raises:
        CompilationError: If raise_on_error and any diagnostic was recorded
    """
    settings = settings or get_settings()
    diagnostics = Diagnostics()
    logger.info(f"Compiling {len(schema.files)} schema files")

    ir = IrBuilder(diagnostics, settings).build(schema)
    graph = RelationResolver(ir, diagnostics).resolve()
    validation_plans = ValidationCompiler(diagnostics).compile(ir)

    result = CompilationResult(diagnostics=diagnostics.sorted(), ir=ir, graph=graph)
    if diagnostics:
        logger.warning(f"Compilation failed with {len(diagnostics)} error(s); no plans emitted")
        if raise_on_error:
            result.raise_for_errors()
        return result

    storage = build_storage_plan(ir, graph, settings)
    result.validation_plans = validation_plans
    result.storage = storage
    result.rpc = build_rpc_plan(ir, storage, validation_plans)
    result.query = build_query_plan(ir, graph, settings)
    result.fingerprint = fingerprint_of(result.plans_dict())
    logger.info(f"Compilation succeeded, fingerprint={result.fingerprint}")
    return result

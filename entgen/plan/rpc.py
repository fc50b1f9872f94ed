"""
RPC plan.

For each RPC method, binds the request/response shapes to the matching
storage operation. When the request message has a ValidationPlan, the
request is converted to its domain type before storage is invoked.

Binding steps, in order:
    decode   request bytes/struct -> field mapping
    convert  field mapping -> domain type (only with a ValidationPlan)
    invoke   storage operation
    encode   result -> response mapping

``RpcDispatcher`` is the reference executor of these steps.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from google.protobuf import json_format, struct_pb2
from google.protobuf.message import DecodeError

from ..errors import EntGenError
from ..ir.model import Method, OperationKind, SchemaIr, Service
from ..validation.compiler import ValidationPlan
from ..validation.runtime import convert
from .overrides import DefaultForwardingStorage
from .storage import StoragePlan

logger = logging.getLogger(__name__)


class RpcStep(Enum):
    DECODE = "decode"
    CONVERT = "convert"
    INVOKE = "invoke"
    ENCODE = "encode"


@dataclass(frozen=True)
class RpcBinding:
    """One method bound to its storage operation.

    Attributes:
        method: RPC method name
        handler: Generated handler name (snake_case unless overridden)
        input_type: Fully-qualified request message
        output_type: Fully-qualified response message
        operation: Storage operation kind
        storage_operation: Storage operation name, None if storage is skipped
        domain_type: Domain type the request converts to, if any
        steps: Ordered steps the handler performs
    """

    method: str
    handler: str
    input_type: str
    output_type: str
    operation: OperationKind
    storage_operation: Optional[str]
    domain_type: Optional[str]
    steps: Tuple[RpcStep, ...]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "method": self.method,
            "handler": self.handler,
            "input_type": self.input_type,
            "output_type": self.output_type,
            "operation": self.operation.value,
            "steps": [s.value for s in self.steps],
        }
        if self.storage_operation:
            result["storage_operation"] = self.storage_operation
        if self.domain_type:
            result["domain_type"] = self.domain_type
        return result


@dataclass(frozen=True)
class RpcService:
    service: str
    struct_name: str
    storage_trait: str
    bindings: Tuple[RpcBinding, ...]

    def get_binding(self, method: str) -> Optional[RpcBinding]:
        for binding in self.bindings:
            if binding.method == method:
                return binding
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "service": self.service,
            "struct_name": self.struct_name,
            "storage_trait": self.storage_trait,
            "bindings": [b.to_dict() for b in self.bindings],
        }


@dataclass(frozen=True)
class RpcPlan:
    services: Tuple[RpcService, ...]

    def get_service(self, service: str) -> Optional[RpcService]:
        for s in self.services:
            if s.service == service:
                return s
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"services": [s.to_dict() for s in self.services]}


def _bind(
    method: Method,
    service: Service,
    storage: StoragePlan,
    validation_plans: Mapping[str, ValidationPlan],
) -> RpcBinding:
    interface = storage.get_interface(service.qualified_name)
    operation = None
    if interface is not None:
        op = interface.get_operation(method.storage_method_name)
        if op is not None and not method.storage_skip:
            operation = op.name

    validation = validation_plans.get(method.input_type)
    steps: List[RpcStep] = [RpcStep.DECODE]
    if validation is not None:
        steps.append(RpcStep.CONVERT)
    if operation is not None:
        steps.append(RpcStep.INVOKE)
    steps.append(RpcStep.ENCODE)

    return RpcBinding(
        method=method.name,
        handler=method.grpc_method_name,
        input_type=method.input_type,
        output_type=method.output_type,
        operation=method.operation,
        storage_operation=operation,
        domain_type=validation.domain_type if validation is not None else None,
        steps=tuple(steps),
    )


def build_rpc_plan(
    ir: SchemaIr,
    storage: StoragePlan,
    validation_plans: Mapping[str, ValidationPlan],
) -> RpcPlan:
    """Build the RPC plan from the IR, storage plan and validation plans."""
    services = []
    for service in ir.services.values():
        if service.grpc_skip:
            continue
        bindings = tuple(
            _bind(m, service, storage, validation_plans)
            for m in service.methods
            if not m.grpc_skip
        )
        services.append(
            RpcService(
                service=service.qualified_name,
                struct_name=service.grpc_struct_name,
                storage_trait=service.grpc_storage_trait,
                bindings=bindings,
            )
        )
    logger.info(
        f"RPC plan: {len(services)} services, "
        f"{sum(len(s.bindings) for s in services)} bindings"
    )
    return RpcPlan(services=tuple(services))


# ----------------------------------------------------------------------
# Reference executor
# ----------------------------------------------------------------------


class UnboundMethodError(EntGenError):
    """A method has no storage operation to invoke."""

    def __init__(self, service: str, method: str) -> None:
        super().__init__(
            f"{service}.{method} is not bound to a storage operation",
            code="UNBOUND_METHOD",
            details={"service": service, "method": method},
        )


def decode_request(request: Any) -> Dict[str, Any]:
    """Decode a request given as a mapping, a Struct, or Struct bytes.

    Raises:
        ValueError: If the request cannot be decoded
    """
    if isinstance(request, Mapping):
        return dict(request)
    if isinstance(request, struct_pb2.Struct):
        return json_format.MessageToDict(request)
    if isinstance(request, (bytes, bytearray)):
        struct = struct_pb2.Struct()
        try:
            struct.ParseFromString(bytes(request))
        except DecodeError as e:
            raise ValueError(f"Invalid request payload: {e}") from e
        return json_format.MessageToDict(struct)
    raise ValueError(f"Unsupported request type: {type(request).__name__}")


def encode_response(result: Any) -> Any:
    """Encode a storage result as a plain mapping (or list of mappings)."""
    if result is None:
        return None
    if hasattr(result, "to_dict"):
        return result.to_dict()
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        return dataclasses.asdict(result)
    if isinstance(result, Mapping):
        return dict(result)
    if isinstance(result, (list, tuple)):
        return [encode_response(r) for r in result]
    return result


class RpcDispatcher:
    """Runs the steps of an RpcService's bindings against a storage.

    Example:
        >>> dispatcher = RpcDispatcher(rpc_service, storage, validation_plans)
        >>> response = await dispatcher.call("CreateUser", {"email": "a@example.com"})
    """

    def __init__(
        self,
        service: RpcService,
        storage: Optional[DefaultForwardingStorage],
        validation_plans: Optional[Mapping[str, ValidationPlan]] = None,
    ) -> None:
        self.service = service
        self.storage = storage
        self.validation_plans = dict(validation_plans or {})

    async def call(self, method: str, request: Any) -> Any:
        """Handle one request.

        Raises:
            ValueError: If the request cannot be decoded or the method is unknown
            ValidationAggregateError: If the request fails domain conversion
            UnboundMethodError: If the method has no storage operation
        """
        binding = self.service.get_binding(method)
        if binding is None:
            raise ValueError(f"Unknown method '{method}' on {self.service.service}")
        if self.storage is None or binding.storage_operation is None:
            raise UnboundMethodError(self.service.service, method)

        value: Any = None
        for step in binding.steps:
            if step is RpcStep.DECODE:
                value = decode_request(request)
            elif step is RpcStep.CONVERT:
                value = convert(self.validation_plans[binding.input_type], value)
            elif step is RpcStep.INVOKE:
                value = await self.storage.invoke(binding.storage_operation, value)
            elif step is RpcStep.ENCODE:
                value = encode_response(value)
        return value

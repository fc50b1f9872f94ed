"""
Per-operation override adapter for storage interfaces.

Generated storage code provides one default callable per operation.
Hand-written code may replace any single operation; every other operation
keeps forwarding to its default. Custom operations have no default and
must be overridden.

Example:
    >>> storage = DefaultForwardingStorage(
    ...     interface,
    ...     defaults={"get_user": default_get_user, "list_users": default_list_users},
    ...     overrides={"list_users": my_list_users},
    ... )
    >>> await storage.invoke("get_user", request)    # default
    >>> await storage.invoke("list_users", request)  # override
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from ..errors import EntGenError
from .storage import StorageInterface

logger = logging.getLogger(__name__)

Operation = Callable[[Any], Union[Any, Awaitable[Any]]]


class MissingOperationError(EntGenError):
    """An operation has neither an override nor a default."""

    def __init__(self, trait_name: str, operations: list[str]) -> None:
        super().__init__(
            f"{trait_name} has no implementation for: {', '.join(operations)}",
            code="MISSING_OPERATION",
            details={"trait_name": trait_name, "operations": operations},
        )
        self.operations = operations


class UnknownOperationError(EntGenError):
    """An override or invocation names an operation the interface lacks."""

    def __init__(self, trait_name: str, name: str) -> None:
        super().__init__(
            f"{trait_name} has no operation '{name}'",
            code="UNKNOWN_OPERATION",
            details={"trait_name": trait_name, "operation": name},
        )


class DefaultForwardingStorage:
    """Storage implementation that forwards each operation to its override
    when one is given and to the generated default otherwise.

    Attributes:
        interface: The storage interface being implemented
    """

    def __init__(
        self,
        interface: StorageInterface,
        defaults: Optional[Mapping[str, Operation]] = None,
        overrides: Optional[Mapping[str, Operation]] = None,
    ) -> None:
        self.interface = interface
        defaults = dict(defaults or {})
        overrides = dict(overrides or {})

        for name in list(defaults) + list(overrides):
            if interface.get_operation(name) is None:
                raise UnknownOperationError(interface.trait_name, name)

        self._resolved: Dict[str, Operation] = {}
        self._sources: Dict[str, str] = {}
        missing = []
        for op in interface.operations:
            if op.name in overrides:
                self._resolved[op.name] = overrides[op.name]
                self._sources[op.name] = "override"
            elif op.name in defaults and not op.requires_override:
                self._resolved[op.name] = defaults[op.name]
                self._sources[op.name] = "default"
            else:
                missing.append(op.name)
        if missing:
            raise MissingOperationError(interface.trait_name, missing)

        overridden = [n for n, s in self._sources.items() if s == "override"]
        logger.debug(
            f"{interface.trait_name}: {len(overridden)} overridden, "
            f"{len(self._resolved) - len(overridden)} default operations"
        )

    @classmethod
    def from_object(
        cls,
        interface: StorageInterface,
        defaults: Optional[Mapping[str, Operation]] = None,
        implementation: Any = None,
    ) -> DefaultForwardingStorage:
        """Use the methods of ``implementation`` named after operations as overrides."""
        overrides: Dict[str, Operation] = {}
        if implementation is not None:
            for op in interface.operations:
                method = getattr(implementation, op.name, None)
                if callable(method):
                    overrides[op.name] = method
        return cls(interface, defaults=defaults, overrides=overrides)

    def source_of(self, name: str) -> str:
        """'override' or 'default' for an operation."""
        if name not in self._sources:
            raise UnknownOperationError(self.interface.trait_name, name)
        return self._sources[name]

    async def invoke(self, name: str, request: Any) -> Any:
        """Run one operation, awaiting it if it is a coroutine function."""
        operation = self._resolved.get(name)
        if operation is None:
            raise UnknownOperationError(self.interface.trait_name, name)
        result = operation(request)
        if inspect.isawaitable(result):
            result = await result
        return result

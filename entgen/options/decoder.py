"""
Option decoder for entgen extension metadata.

Every schema element may carry extension values keyed by extension name.
The decoder turns the raw value for one namespace into its typed record.

Accepted raw forms:
    - a mapping (already-structured extension value)
    - a JSON text
    - bytes holding a serialized google.protobuf.Struct

Invariants:
    - An unset namespace decodes to the record's defaults
    - A value whose shape does not match its namespace raises
      MalformedOptionError naming the element and the namespace
    - Extensions outside the configured prefix are ignored
    - Decoding is pure: the same raw value always yields an equal record

Example:
    >>> entity = decode_option("blog.User", ENTITY, {"table_name": "users"})
    >>> entity.table_name
    'users'
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Type, TypeVar

from google.protobuf import json_format, struct_pb2
from google.protobuf.message import DecodeError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import MalformedOptionError
from . import models

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# Extension names (without the configurable prefix)
ENTITY = "storage.entity"
COLUMN = "storage.column"
ENUM = "storage.enum"
ENUM_VALUE = "storage.enum_value"
STORAGE_SERVICE = "storage.service"
STORAGE_METHOD = "storage.method"
GRPC_SERVICE = "grpc.service"
GRPC_METHOD = "grpc.method"
GRAPHQL_TYPE = "graphql.type"
GRAPHQL_FIELD = "graphql.field"
GRAPHQL_SERVICE = "graphql.service"
GRAPHQL_METHOD = "graphql.method"
VALIDATE_MESSAGE = "validate.message"
VALIDATE_FIELD = "validate.field"

# Namespace -> record type
NAMESPACES: Dict[str, Type[BaseModel]] = {
    ENTITY: models.EntityOptions,
    COLUMN: models.ColumnOptions,
    ENUM: models.EnumOptions,
    ENUM_VALUE: models.EnumValueOptions,
    STORAGE_SERVICE: models.StorageServiceOptions,
    STORAGE_METHOD: models.StorageMethodOptions,
    GRPC_SERVICE: models.GrpcServiceOptions,
    GRPC_METHOD: models.GrpcMethodOptions,
    GRAPHQL_TYPE: models.GraphqlTypeOptions,
    GRAPHQL_FIELD: models.GraphqlFieldOptions,
    GRAPHQL_SERVICE: models.GraphqlServiceOptions,
    GRAPHQL_METHOD: models.GraphqlMethodOptions,
    VALIDATE_MESSAGE: models.ValidateMessageOptions,
    VALIDATE_FIELD: models.ValidateFieldOptions,
}

# Element kind -> namespaces that may be attached to it
ELEMENT_NAMESPACES: Dict[str, tuple[str, ...]] = {
    "message": (ENTITY, GRAPHQL_TYPE, VALIDATE_MESSAGE),
    "field": (COLUMN, GRAPHQL_FIELD, VALIDATE_FIELD),
    "enum": (ENUM,),
    "enum_value": (ENUM_VALUE,),
    "service": (STORAGE_SERVICE, GRPC_SERVICE, GRAPHQL_SERVICE),
    "method": (STORAGE_METHOD, GRPC_METHOD, GRAPHQL_METHOD),
}


def _raw_to_mapping(raw: Any) -> Mapping[str, Any]:
    """Normalize a raw extension value to a mapping.

    Raises:
        ValueError: If the value cannot be interpreted as a structure
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        struct = struct_pb2.Struct()
        try:
            struct.ParseFromString(bytes(raw))
        except DecodeError as e:
            raise ValueError(f"invalid protobuf Struct payload: {e}") from e
        return json_format.MessageToDict(struct)
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON payload: {e.msg}") from e
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return data
    raise ValueError(f"unsupported option value of type {type(raw).__name__}")


def _describe(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def decode_option(element: str, namespace: str, raw: Any) -> BaseModel:
    """Decode one extension value into its typed record.

    Args:
        element: Fully-qualified element path (for error reporting)
        namespace: Extension name without prefix (e.g. "storage.entity")
        raw: Raw extension value, or None when unset

    Returns:
        The typed option record

    Raises:
        MalformedOptionError: If the namespace is unknown or the value does
            not match its schema
    """
    record_type = NAMESPACES.get(namespace)
    if record_type is None:
        raise MalformedOptionError(element, namespace, "unknown extension")

    try:
        data = _raw_to_mapping(raw)
    except ValueError as e:
        raise MalformedOptionError(element, namespace, str(e)) from e

    try:
        return record_type.model_validate(dict(data))
    except PydanticValidationError as e:
        raise MalformedOptionError(element, namespace, _describe(e)) from e


@dataclass(frozen=True)
class DecodedOptions:
    """All decoded option records of one element, keyed by namespace.

    Namespaces that were not set hold their default record.
    """

    element: str
    records: Mapping[str, BaseModel]
    explicit: frozenset[str]

    def get(self, namespace: str, expected: Type[T]) -> T:
        record = self.records[namespace]
        if not isinstance(record, expected):
            raise TypeError(
                f"Namespace '{namespace}' holds {type(record).__name__}, not {expected.__name__}"
            )
        return record

    def has(self, namespace: str) -> bool:
        """Whether the namespace was explicitly set on the element."""
        return namespace in self.explicit


class OptionDecoder:
    """Decodes every extension attached to a schema element.

    Errors for individual namespaces are collected so that one element with
    several malformed extensions reports all of them.

    Example:
        >>> decoder = OptionDecoder()
        >>> opts, errors = decoder.decode_element("message", "blog.User", message.options)
        >>> opts.get(ENTITY, EntityOptions).table_name
    """

    def __init__(self, prefix: str = "entgen.", strict: bool = True) -> None:
        self.prefix = prefix
        self.strict = strict

    def decode_element(
        self,
        element_kind: str,
        element: str,
        options: Mapping[str, Any],
    ) -> tuple[DecodedOptions, list[MalformedOptionError]]:
        """Decode all extensions on one element.

        Args:
            element_kind: One of "message", "field", "enum", "enum_value",
                "service", "method"
            element: Fully-qualified element path
            options: Raw extension values keyed by full extension name

        Returns:
            Tuple of (decoded options, list of decode errors)
        """
        allowed = ELEMENT_NAMESPACES[element_kind]
        errors: list[MalformedOptionError] = []
        raw_by_namespace: dict[str, Any] = {}

        for extension, raw in options.items():
            if not extension.startswith(self.prefix):
                logger.debug(f"Ignoring foreign extension '{extension}' on {element}")
                continue
            namespace = extension[len(self.prefix):]
            if namespace not in allowed:
                if self.strict:
                    reason = (
                        "unknown extension"
                        if namespace not in NAMESPACES
                        else f"not applicable to a {element_kind}"
                    )
                    errors.append(MalformedOptionError(element, namespace, reason))
                continue
            raw_by_namespace[namespace] = raw

        records: dict[str, BaseModel] = {}
        for namespace in allowed:
            try:
                records[namespace] = decode_option(
                    element, namespace, raw_by_namespace.get(namespace)
                )
            except MalformedOptionError as e:
                errors.append(e)
                records[namespace] = NAMESPACES[namespace]()

        decoded = DecodedOptions(
            element=element,
            records=records,
            explicit=frozenset(raw_by_namespace),
        )
        return decoded, errors

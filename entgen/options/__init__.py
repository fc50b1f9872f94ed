"""
Extension option decoding for entgen.

Typed option records per namespace (storage, grpc, graphql, validate) and
the decoder that produces them from raw extension values.
"""

from .decoder import (
    COLUMN,
    ENTITY,
    ENUM,
    ENUM_VALUE,
    GRAPHQL_FIELD,
    GRAPHQL_METHOD,
    GRAPHQL_SERVICE,
    GRAPHQL_TYPE,
    GRPC_METHOD,
    GRPC_SERVICE,
    NAMESPACES,
    STORAGE_METHOD,
    STORAGE_SERVICE,
    VALIDATE_FIELD,
    VALIDATE_MESSAGE,
    DecodedOptions,
    OptionDecoder,
    decode_option,
)
from .models import (
    ColumnOptions,
    EntityOptions,
    EnumOptions,
    EnumStorageType,
    EnumValueOptions,
    GraphqlFieldOptions,
    GraphqlMethodOptions,
    GraphqlOperationKind,
    GraphqlServiceOptions,
    GraphqlTypeOptions,
    GrpcMethodOptions,
    GrpcServiceOptions,
    LengthConstraint,
    OneofDef,
    OneofStrategy,
    RangeConstraint,
    RelationDef,
    RelationType,
    Rules,
    StorageMethodOptions,
    StorageOperation,
    StorageServiceOptions,
    ValidateFieldOptions,
    ValidateMessageOptions,
)

__all__ = [
    # Namespaces
    "COLUMN",
    "ENTITY",
    "ENUM",
    "ENUM_VALUE",
    "GRAPHQL_FIELD",
    "GRAPHQL_METHOD",
    "GRAPHQL_SERVICE",
    "GRAPHQL_TYPE",
    "GRPC_METHOD",
    "GRPC_SERVICE",
    "NAMESPACES",
    "STORAGE_METHOD",
    "STORAGE_SERVICE",
    "VALIDATE_FIELD",
    "VALIDATE_MESSAGE",
    # Decoding
    "DecodedOptions",
    "OptionDecoder",
    "decode_option",
    # Records
    "ColumnOptions",
    "EntityOptions",
    "EnumOptions",
    "EnumStorageType",
    "EnumValueOptions",
    "GraphqlFieldOptions",
    "GraphqlMethodOptions",
    "GraphqlOperationKind",
    "GraphqlServiceOptions",
    "GraphqlTypeOptions",
    "GrpcMethodOptions",
    "GrpcServiceOptions",
    "LengthConstraint",
    "OneofDef",
    "OneofStrategy",
    "RangeConstraint",
    "RelationDef",
    "RelationType",
    "Rules",
    "StorageMethodOptions",
    "StorageOperation",
    "StorageServiceOptions",
    "ValidateFieldOptions",
    "ValidateMessageOptions",
]

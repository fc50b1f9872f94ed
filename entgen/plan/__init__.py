"""
Generation plans for entgen.

Target-agnostic plans consumed by renderers (storage, RPC, query/API), plus
reference implementations of the runtime contracts the generated code must
honor: per-operation overrides, cursors and batch loading.
"""

from .cursor import Edge, Page, PageInfo, decode_cursor, encode_cursor, paginate, slice_page
from .loader import NOT_FOUND, BatchLoader
from .overrides import DefaultForwardingStorage, MissingOperationError, UnknownOperationError
from .query import (
    ConnectionAccessor,
    ConnectionShape,
    FieldShape,
    FilterGroup,
    FilterInput,
    InputShape,
    LoaderAccessor,
    NodePlan,
    OrderByInput,
    QueryOperation,
    QueryPlan,
    RelationAccessor,
    build_query_plan,
    is_node_eligible,
)
from .rpc import (
    RpcBinding,
    RpcDispatcher,
    RpcPlan,
    RpcService,
    RpcStep,
    UnboundMethodError,
    build_rpc_plan,
)
from .storage import (
    ColumnMapping,
    DefaultImplementation,
    DefaultStrategy,
    EntityMapping,
    OneofMapping,
    RelationMapping,
    StorageInterface,
    StorageOperation,
    StoragePlan,
    build_storage_plan,
    oneof_columns,
)

__all__ = [
    # Storage
    "ColumnMapping",
    "DefaultImplementation",
    "DefaultStrategy",
    "EntityMapping",
    "OneofMapping",
    "RelationMapping",
    "StorageInterface",
    "StorageOperation",
    "StoragePlan",
    "build_storage_plan",
    "oneof_columns",
    "DefaultForwardingStorage",
    "MissingOperationError",
    "UnknownOperationError",
    # RPC
    "RpcBinding",
    "RpcDispatcher",
    "RpcPlan",
    "RpcService",
    "RpcStep",
    "UnboundMethodError",
    "build_rpc_plan",
    # Query/API
    "ConnectionAccessor",
    "ConnectionShape",
    "FieldShape",
    "FilterGroup",
    "FilterInput",
    "InputShape",
    "LoaderAccessor",
    "NodePlan",
    "OrderByInput",
    "QueryOperation",
    "QueryPlan",
    "RelationAccessor",
    "build_query_plan",
    "is_node_eligible",
    # Runtime contracts
    "BatchLoader",
    "NOT_FOUND",
    "Edge",
    "Page",
    "PageInfo",
    "decode_cursor",
    "encode_cursor",
    "paginate",
    "slice_page",
]

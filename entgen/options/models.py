"""
Typed option records for every extension namespace.

Each record is a frozen pydantic model that forbids unknown keys, so an
extension value whose shape does not match its namespace fails to decode.
Unset options take their documented defaults; ``ColumnOptions.auto_increment``
stays ``None`` when unset so the IR builder can derive it.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _OptionRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class RelationType(str, Enum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"


class RelationDef(_OptionRecord):
    """A relation declared on an entity."""

    name: str = Field(min_length=1)
    type: RelationType
    related: str = Field(min_length=1)
    foreign_key: str = ""
    references: str = ""
    through: str = ""


class OneofStrategy(str, Enum):
    FLATTEN = "flatten"
    JSON = "json"
    TAGGED = "tagged"


class OneofDef(_OptionRecord):
    """Storage strategy of one oneof group."""

    name: str = Field(min_length=1)
    strategy: OneofStrategy = OneofStrategy.FLATTEN
    column_prefix: str = ""
    discriminator_column: str = ""


class EntityOptions(_OptionRecord):
    table_name: str = ""
    skip: bool = False
    relations: List[RelationDef] = Field(default_factory=list)
    oneofs: List[OneofDef] = Field(default_factory=list)


class ColumnOptions(_OptionRecord):
    primary_key: bool = False
    auto_increment: Optional[bool] = None
    unique: bool = False
    column_name: str = ""
    default_value: str = ""
    embed: bool = False
    type_hints: Dict[str, str] = Field(default_factory=dict)


class EnumStorageType(str, Enum):
    STRING = "string"
    INTEGER = "integer"


class EnumOptions(_OptionRecord):
    storage_type: EnumStorageType = EnumStorageType.STRING
    skip: bool = False


class EnumValueOptions(_OptionRecord):
    string_value: str = ""
    int_value: Optional[int] = None
    default: bool = False
    skip: bool = False


class StorageServiceOptions(_OptionRecord):
    generate_storage: bool = True
    generate_implementation: bool = True
    trait_name: str = ""
    skip: bool = False


class StorageOperation(str, Enum):
    GET = "get"
    LIST = "list"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CUSTOM = "custom"


class StorageMethodOptions(_OptionRecord):
    skip: bool = False
    method_name: str = ""
    entity_name: str = ""
    operation: Optional[StorageOperation] = None


class GrpcServiceOptions(_OptionRecord):
    skip: bool = False
    struct_name: str = ""
    storage_trait: str = ""


class GrpcMethodOptions(_OptionRecord):
    skip: bool = False
    method_name: str = ""


class GraphqlTypeOptions(_OptionRecord):
    skip: bool = False
    name: str = ""
    node: bool = True


class GraphqlFieldOptions(_OptionRecord):
    skip: bool = False
    name: str = ""
    filterable: bool = True
    orderable: bool = True
    operators: List[str] = Field(default_factory=list)


class GraphqlServiceOptions(_OptionRecord):
    skip: bool = False


class GraphqlOperationKind(str, Enum):
    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"


class GraphqlMethodOptions(_OptionRecord):
    skip: bool = False
    name: str = ""
    kind: Optional[GraphqlOperationKind] = None


class ValidateMessageOptions(_OptionRecord):
    skip: bool = False
    name: str = ""
    generate_conversion: bool = False


class LengthConstraint(_OptionRecord):
    min: Optional[int] = Field(default=None, ge=0)
    max: Optional[int] = Field(default=None, ge=0)
    equal: Optional[int] = Field(default=None, ge=0)


class RangeConstraint(_OptionRecord):
    min: Optional[float] = None
    max: Optional[float] = None
    greater_than: Optional[float] = None
    less_than: Optional[float] = None


class Rules(_OptionRecord):
    required: bool = False
    email: bool = False
    url: bool = False
    uuid: bool = False
    ascii: bool = False
    alphanumeric: bool = False
    ipv4: bool = False
    ipv6: bool = False
    pattern: str = ""
    length: Optional[LengthConstraint] = None
    range: Optional[RangeConstraint] = None
    unique_items: bool = False
    message: str = ""


class ValidateFieldOptions(_OptionRecord):
    skip: bool = False
    rename: str = ""
    type: str = ""
    rules: Optional[Rules] = None

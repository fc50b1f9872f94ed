"""
Structural input model for the entgen compiler.

This module defines the already-parsed schema elements the compiler
consumes:
- ScalarKind / Cardinality: the type of a field
- FieldDef, MessageDef: messages and their fields
- EnumValueDef, EnumDef: enums
- MethodDef, ServiceDef: RPC surfaces
- FileDef, SchemaSet: one schema file, and the transitive set of files

Every element carries an ``options`` mapping from extension name to the raw
extension value (a mapping, a JSON text, or serialized protobuf Struct
bytes). Options are decoded later by ``entgen.options.decoder``.

Invariants:
    - Field names and numbers are unique within a message
    - Message, enum and service names are unique within a package
    - type_name is set iff kind is MESSAGE or ENUM

Example:
    >>> User = MessageDef(
    ...     name="User",
    ...     fields=(
    ...         FieldDef("id", 1, ScalarKind.INT64, options={"entgen.storage.column": {"primary_key": True}}),
    ...         FieldDef("email", 2, ScalarKind.STRING),
    ...     ),
    ...     options={"entgen.storage.entity": {"table_name": "users"}},
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping


def _frozen_options(options: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(options or {}))


class ScalarKind(Enum):
    """Wire-level field types."""

    BOOL = "bool"
    INT32 = "int32"
    INT64 = "int64"
    UINT32 = "uint32"
    UINT64 = "uint64"
    FLOAT = "float"
    DOUBLE = "double"
    STRING = "string"
    BYTES = "bytes"
    TIMESTAMP = "timestamp"
    MESSAGE = "message"
    ENUM = "enum"

    @classmethod
    def from_str(cls, value: str) -> ScalarKind:
        """Convert string representation to ScalarKind.

        Raises:
            ValueError: If value is not a valid kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field type '{value}'. Valid types: {valid}")

    @property
    def is_integral(self) -> bool:
        return self in (ScalarKind.INT32, ScalarKind.INT64, ScalarKind.UINT32, ScalarKind.UINT64)

    @property
    def is_numeric(self) -> bool:
        return self.is_integral or self in (ScalarKind.FLOAT, ScalarKind.DOUBLE)


class Cardinality(Enum):
    """Presence semantics of a field."""

    SINGULAR = "singular"
    OPTIONAL = "optional"
    REPEATED = "repeated"


@dataclass(frozen=True)
class FieldDef:
    """A field within a message.

    Attributes:
        name: Field name as declared
        number: Field number (positive)
        kind: Wire-level type
        cardinality: singular, optional or repeated
        type_name: Referenced message/enum name for MESSAGE/ENUM kinds
        oneof: Name of the oneof group the field belongs to, if any
        options: Raw extension values keyed by extension name
    """

    name: str
    number: int
    kind: ScalarKind
    cardinality: Cardinality = Cardinality.SINGULAR
    type_name: str | None = None
    options: Mapping[str, Any] = dataclass_field(default_factory=dict)
    oneof: str | None = None

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if self.number <= 0:
            raise ValueError(f"Field number must be positive, got {self.number}")
        if self.kind in (ScalarKind.MESSAGE, ScalarKind.ENUM) and not self.type_name:
            raise ValueError(f"type_name required for {self.kind.value} field '{self.name}'")
        if self.oneof and self.cardinality is Cardinality.REPEATED:
            raise ValueError(f"Oneof field '{self.name}' cannot be repeated")
        object.__setattr__(self, "options", _frozen_options(self.options))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "number": self.number,
            "type": self.kind.value,
        }
        if self.cardinality is not Cardinality.SINGULAR:
            result["label"] = self.cardinality.value
        if self.type_name:
            result["type_name"] = self.type_name
        if self.oneof:
            result["oneof"] = self.oneof
        if self.options:
            result["options"] = dict(self.options)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            number=data["number"],
            kind=ScalarKind.from_str(data["type"]),
            cardinality=Cardinality(data.get("label", "singular")),
            type_name=data.get("type_name"),
            options=data.get("options") or {},
            oneof=data.get("oneof"),
        )


@dataclass(frozen=True)
class MessageDef:
    """A message definition."""

    name: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    options: Mapping[str, Any] = dataclass_field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate message definition."""
        if not self.name:
            raise ValueError("Message name cannot be empty")

        numbers = [f.number for f in self.fields]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"Duplicate field number in message '{self.name}'")

        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field name in message '{self.name}'")
        object.__setattr__(self, "options", _frozen_options(self.options))

    def get_field(self, name: str) -> FieldDef | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.options:
            result["options"] = dict(self.options)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageDef:
        return cls(
            name=data["name"],
            fields=tuple(FieldDef.from_dict(f) for f in data.get("fields", [])),
            options=data.get("options") or {},
        )


@dataclass(frozen=True)
class EnumValueDef:
    """A single enum value."""

    name: str
    number: int
    options: Mapping[str, Any] = dataclass_field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "options", _frozen_options(self.options))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "number": self.number}
        if self.options:
            result["options"] = dict(self.options)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnumValueDef:
        return cls(name=data["name"], number=data["number"], options=data.get("options") or {})


@dataclass(frozen=True)
class EnumDef:
    """An enum definition."""

    name: str
    values: tuple[EnumValueDef, ...] = dataclass_field(default_factory=tuple)
    options: Mapping[str, Any] = dataclass_field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Enum name cannot be empty")
        object.__setattr__(self, "options", _frozen_options(self.options))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "values": [v.to_dict() for v in self.values],
        }
        if self.options:
            result["options"] = dict(self.options)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnumDef:
        return cls(
            name=data["name"],
            values=tuple(EnumValueDef.from_dict(v) for v in data.get("values", [])),
            options=data.get("options") or {},
        )


@dataclass(frozen=True)
class MethodDef:
    """An RPC method. input_type/output_type name messages."""

    name: str
    input_type: str
    output_type: str
    options: Mapping[str, Any] = dataclass_field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Method name cannot be empty")
        object.__setattr__(self, "options", _frozen_options(self.options))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "input_type": self.input_type,
            "output_type": self.output_type,
        }
        if self.options:
            result["options"] = dict(self.options)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MethodDef:
        return cls(
            name=data["name"],
            input_type=data["input_type"],
            output_type=data["output_type"],
            options=data.get("options") or {},
        )


@dataclass(frozen=True)
class ServiceDef:
    """A service with ordered methods."""

    name: str
    methods: tuple[MethodDef, ...] = dataclass_field(default_factory=tuple)
    options: Mapping[str, Any] = dataclass_field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Service name cannot be empty")
        names = [m.name for m in self.methods]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate method name in service '{self.name}'")
        object.__setattr__(self, "options", _frozen_options(self.options))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "methods": [m.to_dict() for m in self.methods],
        }
        if self.options:
            result["options"] = dict(self.options)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServiceDef:
        return cls(
            name=data["name"],
            methods=tuple(MethodDef.from_dict(m) for m in data.get("methods", [])),
            options=data.get("options") or {},
        )


@dataclass(frozen=True)
class FileDef:
    """One schema file.

    Attributes:
        name: File name (used to key diagnostics)
        package: Dotted package name
        dependencies: Names of files this file imports
        messages, enums, services: Top-level definitions
    """

    name: str
    package: str
    messages: tuple[MessageDef, ...] = dataclass_field(default_factory=tuple)
    enums: tuple[EnumDef, ...] = dataclass_field(default_factory=tuple)
    services: tuple[ServiceDef, ...] = dataclass_field(default_factory=tuple)
    dependencies: tuple[str, ...] = dataclass_field(default_factory=tuple)

    def __post_init__(self) -> None:
        """Validate file definition."""
        if not self.name:
            raise ValueError("File name cannot be empty")

        names = [m.name for m in self.messages] + [e.name for e in self.enums]
        names += [s.name for s in self.services]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate definition name in file '{self.name}'")

    def qualify(self, name: str) -> str:
        """Fully-qualified name of a definition in this file's package."""
        return f"{self.package}.{name}" if self.package else name

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "package": self.package,
            "messages": [m.to_dict() for m in self.messages],
            "enums": [e.to_dict() for e in self.enums],
            "services": [s.to_dict() for s in self.services],
        }
        if self.dependencies:
            result["dependencies"] = list(self.dependencies)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileDef:
        return cls(
            name=data["name"],
            package=data.get("package", ""),
            messages=tuple(MessageDef.from_dict(m) for m in data.get("messages", [])),
            enums=tuple(EnumDef.from_dict(e) for e in data.get("enums", [])),
            services=tuple(ServiceDef.from_dict(s) for s in data.get("services", [])),
            dependencies=tuple(data.get("dependencies", [])),
        )


@dataclass(frozen=True)
class SchemaSet:
    """The full, transitive set of schema files for one compilation."""

    files: tuple[FileDef, ...] = dataclass_field(default_factory=tuple)

    def __post_init__(self) -> None:
        names = [f.name for f in self.files]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate file name in schema set")

    def __iter__(self) -> Iterator[FileDef]:
        return iter(self.files)

    def get_file(self, name: str) -> FileDef | None:
        for f in self.files:
            if f.name == name:
                return f
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"files": [f.to_dict() for f in self.files]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaSet:
        return cls(files=tuple(FileDef.from_dict(f) for f in data.get("files", [])))

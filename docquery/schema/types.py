"""
Core type definitions for DocQuery entity schemas.

This module defines the structural description of a queryable entity:
- FieldDef: Individual field within an entity
- EntityDef: Definition of an entity type (one catalog entry)

Definitions are supplied by an external catalog and are never mutated
once built. The query engine only needs them for two things: knowing which
names are queryable, and knowing which fields are relationships that can be
expanded inline.

Invariants:
    - Entity names are unique within a catalog
    - Field names are unique within an entity
    - REFERENCE / LIST_REF fields name their target entity in `ref`
    - Definitions are immutable (frozen dataclasses)

How to change safely:
    - Add new field kinds at the end of FieldKind
    - Keep to_dict()/from_dict() symmetric; catalog files depend on them
    - Never make definitions mutable; the registry fingerprint assumes it

Example:
    >>> from docquery.schema.types import EntityDef, field
    >>> Booking = EntityDef(
    ...     name="Booking",
    ...     fields=(
    ...         field("status", "enum", enum_values=("pending", "confirmed")),
    ...         field("host", "ref", ref="User"),
    ...         field("vehicle", "ref", ref="Vehicle"),
    ...     ),
    ... )
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import Any


class FieldKind(Enum):
    """Supported field types in an entity schema."""

    STRING = "str"
    INTEGER = "int"
    FLOAT = "float"
    BOOLEAN = "bool"
    TIMESTAMP = "timestamp"
    JSON = "json"  # Arbitrary nested object
    ENUM = "enum"
    OBJECT_ID = "objectid"
    REFERENCE = "ref"  # Id of a document in another entity
    LIST_STRING = "list_str"
    LIST_INT = "list_int"
    LIST_REF = "list_ref"  # List of ids in another entity

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Args:
            value: String name of the field kind

        Returns:
            Corresponding FieldKind enum value

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @property
    def is_relationship(self) -> bool:
        """Whether values of this kind point at documents of another entity."""
        return self in (FieldKind.REFERENCE, FieldKind.LIST_REF)


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single field within an entity.

    Attributes:
        name: Field name as stored in documents (dotted paths not allowed)
        kind: The data type of the field
        required: Whether documents must carry the field
        default: Default value the owning application applies
        enum_values: Valid values if kind is ENUM
        ref: Target entity name if kind is REFERENCE or LIST_REF
        indexed: Whether the store should index this field
        description: Human-readable description
    """

    name: str
    kind: FieldKind
    required: bool = False
    default: Any = None
    enum_values: tuple[str, ...] | None = None
    ref: str | None = None
    indexed: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if not self.name:
            raise ValueError("Field name cannot be empty")
        if "." in self.name or self.name.startswith("$"):
            raise ValueError(f"Invalid field name '{self.name}'")
        if self.kind == FieldKind.ENUM and not self.enum_values:
            raise ValueError(f"enum_values required for ENUM field '{self.name}'")
        if self.kind.is_relationship and not self.ref:
            raise ValueError(f"ref required for relationship field '{self.name}'")
        if not self.kind.is_relationship and self.ref:
            raise ValueError(
                f"Field '{self.name}' of kind {self.kind.value} cannot declare a ref"
            )

    @property
    def is_relationship(self) -> bool:
        return self.kind.is_relationship

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "kind": self.kind.value,
        }
        if self.required:
            result["required"] = True
        if self.default is not None:
            result["default"] = self.default
        if self.enum_values:
            result["enum_values"] = list(self.enum_values)
        if self.ref is not None:
            result["ref"] = self.ref
        if self.indexed:
            result["indexed"] = True
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        return cls(
            name=data["name"],
            kind=FieldKind.from_str(data["kind"]),
            required=data.get("required", False),
            default=data.get("default"),
            enum_values=tuple(data["enum_values"]) if data.get("enum_values") else None,
            ref=data.get("ref"),
            indexed=data.get("indexed", False),
            description=data.get("description", ""),
        )


def field(
    name: str,
    kind: str | FieldKind,
    *,
    required: bool = False,
    default: Any = None,
    enum_values: tuple[str, ...] | None = None,
    ref: str | None = None,
    indexed: bool = False,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Example:
        >>> email = field("email", "str", required=True, indexed=True)
        >>> host = field("host", "ref", ref="User")
    """
    if isinstance(kind, str):
        kind = FieldKind.from_str(kind)
    return FieldDef(
        name=name,
        kind=kind,
        required=required,
        default=default,
        enum_values=enum_values,
        ref=ref,
        indexed=indexed,
        description=description,
    )


@dataclass(frozen=True)
class EntityDef:
    """Definition of a queryable entity type.

    Attributes:
        name: Logical entity name callers query by (e.g. "Booking")
        fields: Tuple of field definitions
        collection: Physical collection name (defaults to lowercased plural)
        description: Human-readable description

    Every document implicitly carries an `_id` field, which is not listed
    in `fields`.

    Example:
        >>> User = EntityDef(
        ...     name="User",
        ...     fields=(field("email", "str", required=True, indexed=True),),
        ... )
        >>> User.collection
        'users'
    """

    name: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    collection: str = ""
    description: str = ""

    def __post_init__(self) -> None:
        """Validate entity definition and derive the collection name."""
        if not self.name:
            raise ValueError("Entity name cannot be empty")
        if not self.name.replace("_", "").isalnum():
            raise ValueError(f"Invalid entity name '{self.name}'")

        field_names = [f.name for f in self.fields]
        if len(field_names) != len(set(field_names)):
            raise ValueError(f"Duplicate field name in entity '{self.name}'")
        if "_id" in field_names:
            raise ValueError(f"Entity '{self.name}' must not declare the implicit '_id' field")

        if not self.collection:
            # Same default the ODMs use: "Booking" -> "bookings"
            object.__setattr__(self, "collection", _default_collection(self.name))

    def get_field(self, name: str) -> FieldDef | None:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def get_field_names(self) -> list[str]:
        """Get list of all declared field names."""
        return [f.name for f in self.fields]

    def relationships(self) -> dict[str, str]:
        """Map of relationship field name to target entity name."""
        return {f.name: f.ref for f in self.fields if f.is_relationship and f.ref}

    def get_indexed_fields(self) -> list[FieldDef]:
        return [f for f in self.fields if f.indexed]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "name": self.name,
            "collection": self.collection,
            "fields": [f.to_dict() for f in self.fields],
        }
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntityDef:
        """Create from dictionary representation.

        Raises:
            ValueError: If the mapping does not describe a valid entity
        """
        if not isinstance(data, dict):
            raise ValueError(f"Entity definition must be a mapping, got {type(data).__name__}")
        if "name" not in data:
            raise ValueError("Entity definition is missing 'name'")
        try:
            fields = tuple(FieldDef.from_dict(f) for f in data.get("fields", []))
        except KeyError as e:
            raise ValueError(f"Field in entity '{data['name']}' is missing {e}") from e
        except (TypeError, AttributeError) as e:
            raise ValueError(f"Malformed field in entity '{data['name']}': {e}") from e
        if not isinstance(data["name"], str):
            raise ValueError(f"Entity name must be a string, got {data['name']!r}")
        return cls(
            name=data["name"],
            fields=fields,
            collection=data.get("collection", ""),
            description=data.get("description", ""),
        )


def _default_collection(name: str) -> str:
    lowered = name.lower()
    if lowered.endswith("y") and not lowered.endswith(("ay", "ey", "oy", "uy")):
        return lowered[:-1] + "ies"
    if lowered.endswith(("s", "x", "ch", "sh")):
        return lowered + "es"
    return lowered + "s"

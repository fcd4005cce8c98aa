"""
Data contracts for the collection store.

Defines CollectionMetadata, VectorRecord, SearchResult and the structured
filter triple used by every vector database backend.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import ValidationError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CollectionStatus(str, Enum):
    """Application-visible serving state of a collection."""

    LOADED = "loaded"
    UNLOADED = "unloaded"


@dataclass
class CollectionMetadata:
    """
    Declared properties of one collection.

    Invariants:
    - name matches the vector database collection identifier exactly
    - name and vector_dim never change after creation
    """

    name: str
    vector_dim: int
    tags: set[str] = field(default_factory=set)
    description: str = ""
    status: CollectionStatus = CollectionStatus.UNLOADED
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary (tags sorted for stable output)."""
        return {
            "name": self.name,
            "tags": sorted(self.tags),
            "description": self.description,
            "vectorDim": self.vector_dim,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CollectionMetadata":
        """
        Create CollectionMetadata from its dictionary form.

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        try:
            return cls(
                name=data["name"],
                vector_dim=int(data["vectorDim"]),
                tags=set(data.get("tags") or []),
                description=data.get("description") or "",
                status=CollectionStatus(data.get("status", CollectionStatus.UNLOADED.value)),
                created_at=datetime.fromisoformat(data["createdAt"]),
                updated_at=datetime.fromisoformat(data["updatedAt"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed collection metadata: {e}") from e

    @classmethod
    def from_json(cls, text: str) -> "CollectionMetadata":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Collection metadata is not valid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass
class VectorRecord:
    """
    One stored vector with its text and schemaless attributes.

    ``id`` is assigned by the vector database on insert. ``attributes`` never
    carries an ``embedding`` key (the vector lives in its own field).
    """

    embedding: list[float]
    text: str
    attributes: dict[str, Any] = field(default_factory=dict)
    id: int | None = None

    def __post_init__(self):
        if "embedding" in self.attributes:
            self.attributes = {k: v for k, v in self.attributes.items() if k != "embedding"}


@dataclass
class SearchResult:
    """A scored hit from similarity search; higher score is better."""

    id: int | str
    text: str
    attributes: dict[str, Any]
    score: float
    embedding: list[float] | None = None
    collection: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "attributes": self.attributes,
            "score": self.score,
            "collection": self.collection,
        }


@dataclass
class InsertResult:
    inserted_count: int
    ids: list[int] = field(default_factory=list)


@dataclass
class CollectionStats:
    """Row count and index configuration of a collection."""

    name: str
    row_count: int
    vector_dim: int | None
    metric_type: str | None
    status: str
    indexes: list[dict[str, Any]] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Schema and Filters
# -----------------------------------------------------------------------------


class FieldType(str, Enum):
    INT64 = "int64"
    FLOAT_VECTOR = "float_vector"
    VARCHAR = "varchar"
    JSON = "json"


@dataclass(frozen=True)
class FieldSchema:
    """One field of the fixed collection schema."""

    name: str
    data_type: FieldType
    is_primary_key: bool = False
    auto_id: bool = False
    dim: int | None = None
    max_length: int | None = None
    metric_type: str | None = None


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IN = "in"
    LIKE = "like"


_OPERATOR_SYMBOLS = {
    FilterOperator.EQ: "==",
    FilterOperator.NE: "!=",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}


@dataclass(frozen=True)
class SearchFilter:
    """
    Structured ``{field, operator, value}`` filter over record attributes.

    ``field`` names an attribute; backends map it to their attribute storage.
    """

    field: str
    operator: FilterOperator
    value: Any

    def __post_init__(self):
        if not self.field:
            raise ValidationError("Filter field must not be empty")
        try:
            operator = FilterOperator(self.operator)
        except ValueError as e:
            raise ValidationError(f"Unknown filter operator: {self.operator!r}") from e
        object.__setattr__(self, "operator", operator)
        if operator == FilterOperator.IN and not isinstance(self.value, (list, tuple, set, frozenset)):
            raise ValidationError("'in' filter requires a list of values")
        if operator in (FilterOperator.GT, FilterOperator.GTE, FilterOperator.LT, FilterOperator.LTE):
            if isinstance(self.value, bool) or not isinstance(self.value, (int, float, str)):
                raise ValidationError(f"Range filter requires a number or string, got {self.value!r}")

    @classmethod
    def eq(cls, field_name: str, value: Any) -> "SearchFilter":
        return cls(field_name, FilterOperator.EQ, value)

    def to_expression(self) -> str:
        """Render as a boolean expression string (used for logging)."""
        if self.operator == FilterOperator.IN:
            values = ",".join(_format_literal(v) for v in self.value)
            return f"{self.field} in [{values}]"
        if self.operator == FilterOperator.LIKE:
            return f'{self.field} like "%{self.value}%"'
        return f"{self.field} {_OPERATOR_SYMBOLS[self.operator]} {_format_literal(self.value)}"


def _format_literal(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value)
    return str(value)

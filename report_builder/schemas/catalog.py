"""
Catalog schemas: data sources and the fields they expose to the builder.

Catalog entries are owned by the external data source and never mutated
by the engine.
"""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import ConfigDict, Field

from report_builder.schemas.base import WireModel


class FieldType(str, Enum):
    """Declared type of a catalog or template field."""
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"


# currency and percentage behave as numbers for operators, aggregations and values
NUMERIC_FIELD_TYPES: FrozenSet[FieldType] = frozenset(
    {FieldType.NUMBER, FieldType.CURRENCY, FieldType.PERCENTAGE}
)

NO_AGGREGATION = "none"
DEFAULT_FORMAT = "default"

_NUMERIC_AGGREGATIONS = ["none", "sum", "avg", "count", "min", "max", "distinct", "first", "last"]
_NUMERIC_FORMATS = ["default", "currency", "percentage", "decimal", "integer"]

DEFAULT_AGGREGATIONS: Dict[FieldType, List[str]] = {
    FieldType.STRING: ["none", "count", "distinct", "first", "last"],
    FieldType.NUMBER: _NUMERIC_AGGREGATIONS,
    FieldType.CURRENCY: _NUMERIC_AGGREGATIONS,
    FieldType.PERCENTAGE: _NUMERIC_AGGREGATIONS,
    FieldType.DATE: ["none", "count", "min", "max", "first", "last"],
    FieldType.BOOLEAN: ["none", "count", "first", "last"],
}

DEFAULT_FORMATS: Dict[FieldType, List[str]] = {
    FieldType.STRING: ["default", "uppercase", "lowercase", "capitalize", "truncate"],
    FieldType.NUMBER: _NUMERIC_FORMATS,
    FieldType.CURRENCY: _NUMERIC_FORMATS,
    FieldType.PERCENTAGE: _NUMERIC_FORMATS,
    FieldType.DATE: ["default", "short", "medium", "long", "custom"],
    FieldType.BOOLEAN: ["default"],
}


class BuilderField(WireModel):
    """Selectable data attribute supplied by a data source."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Catalog field id")
    name: str = Field(..., min_length=1, description="Column name in the data source")
    type: FieldType
    source: str = Field(..., description="Owning data source id")
    label: str = Field(..., description="Human-readable label")
    description: Optional[str] = None
    aggregations: List[str] = Field(default_factory=list, description="Allowed aggregations (empty = type defaults)")
    formats: List[str] = Field(default_factory=list, description="Allowed formats (empty = type defaults)")

    @property
    def allowed_aggregations(self) -> List[str]:
        """Allowed aggregations including ``none``."""
        allowed = list(self.aggregations) or list(DEFAULT_AGGREGATIONS[self.type])
        if NO_AGGREGATION not in allowed:
            allowed.insert(0, NO_AGGREGATION)
        return allowed

    @property
    def allowed_formats(self) -> List[str]:
        allowed = list(self.formats) or list(DEFAULT_FORMATS[self.type])
        if DEFAULT_FORMAT not in allowed:
            allowed.insert(0, DEFAULT_FORMAT)
        return allowed


class DataSource(WireModel):
    """A queryable source of fields (table, view, API)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    type: str = "table"
    description: Optional[str] = None
    fields: List[BuilderField] = Field(default_factory=list)

    def get_field(self, name: str) -> Optional[BuilderField]:
        """Find a field by name or catalog id."""
        for field in self.fields:
            if field.name == name or field.id == name:
                return field
        return None

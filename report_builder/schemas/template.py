"""
Report template schemas.

``ReportTemplate`` is the aggregate root that gets persisted; field and
filter order is display order and is preserved through serialization.
"""
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import Field, field_validator

from report_builder.schemas.base import WireModel
from report_builder.schemas.catalog import DEFAULT_FORMAT, NO_AGGREGATION, FieldType
from report_builder.schemas.visualization import TableVisualization, VisualizationConfig


class TemplateCategory(str, Enum):
    SALES = "sales"
    FINANCIAL = "financial"
    OPERATIONAL = "operational"
    ANALYTICS = "analytics"
    CUSTOM = "custom"


FIELD_WIDTHS = ("auto", "small", "medium", "large", "full")


class TemplateField(WireModel):
    """A catalog field copied into a template, with display overrides."""

    id: str = Field(..., min_length=1, description="Engine-generated, unique within the template")
    name: str = Field(..., min_length=1, description="Catalog field name")
    display_name: str
    type: FieldType
    source: str = ""
    label: str = ""
    description: Optional[str] = None
    allowed_aggregations: List[str] = Field(default_factory=lambda: [NO_AGGREGATION])
    allowed_formats: List[str] = Field(default_factory=lambda: [DEFAULT_FORMAT])
    aggregation: str = NO_AGGREGATION
    format: str = DEFAULT_FORMAT
    visible: bool = True
    sortable: bool = True
    filterable: bool = True
    width: str = "auto"


class TemplateFilter(WireModel):
    """A user-configured predicate over a template field."""

    id: str = Field(..., min_length=1)
    field_id: str = Field(..., description="References TemplateField.id, not a catalog field")
    operator: str
    value: Any = None
    label: str = ""
    required: bool = False
    visible: bool = True


class ReportTemplate(WireModel):
    """Reusable report definition."""

    id: Optional[str] = Field(None, description="Absent until first persisted")
    name: str = ""
    description: str = ""
    category: TemplateCategory = TemplateCategory.CUSTOM
    fields: List[TemplateField] = Field(default_factory=list)
    filters: List[TemplateFilter] = Field(default_factory=list)
    visualization: VisualizationConfig = Field(default_factory=TableVisualization)
    is_public: bool = False
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _lowercase_category(cls, value: Any) -> Any:
        # Stored templates from the GraphQL layer use upper-case categories
        if isinstance(value, str):
            return value.lower()
        return value

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: List[str]) -> List[str]:
        seen = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    def get_field(self, field_id: str) -> Optional[TemplateField]:
        for field in self.fields:
            if field.id == field_id:
                return field
        return None

    def get_filter(self, filter_id: str) -> Optional[TemplateFilter]:
        for template_filter in self.filters:
            if template_filter.id == filter_id:
                return template_filter
        return None

    def field_names(self) -> List[str]:
        return [field.name for field in self.fields]


class SaveResult(WireModel):
    """Repository response to a successful save."""
    id: str
    updated_at: datetime
    created_at: Optional[datetime] = None

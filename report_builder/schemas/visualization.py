"""
Visualization configuration schemas.

A template carries exactly one visualization, discriminated on ``type``.
Attributes declared on ``VisualizationBase`` are common to every variant;
everything else only exists on its own variant.
"""
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import Field

from report_builder.schemas.base import WireModel


class VisualizationType(str, Enum):
    TABLE = "table"
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    METRIC = "metric"


DEFAULT_COLORS: List[str] = ["#3B82F6", "#EF4444", "#10B981", "#F59E0B", "#8B5CF6", "#EC4899"]


class VisualizationBase(WireModel):
    """Attributes shared by every visualization type."""
    title: str = ""
    subtitle: str = ""
    show_legend: bool = True
    show_grid: bool = True
    colors: List[str] = Field(default_factory=lambda: list(DEFAULT_COLORS))
    responsive: bool = True
    animation: bool = True
    theme: str = "light"


class TablePagination(WireModel):
    enabled: bool = True
    page_size: int = Field(default=10, ge=1, le=1000)


class TableVisualization(VisualizationBase):
    type: Literal["table"] = "table"
    pagination: TablePagination = Field(default_factory=TablePagination)
    striped: bool = True
    bordered: bool = True
    compact: bool = False
    default_sort: Optional[str] = None


class BarVisualization(VisualizationBase):
    type: Literal["bar"] = "bar"
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    orientation: Literal["vertical", "horizontal"] = "vertical"
    stacked: bool = False
    show_values: bool = False
    bar_width: float = Field(default=0.8, gt=0, le=1)


class LineVisualization(VisualizationBase):
    type: Literal["line"] = "line"
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    smooth: bool = True
    show_points: bool = True
    filled: bool = False
    stroke_width: int = Field(default=2, ge=1)


class PieVisualization(VisualizationBase):
    type: Literal["pie"] = "pie"
    group_by: Optional[str] = None
    category_field: Optional[str] = None
    value_field: Optional[str] = None
    donut: bool = False
    show_labels: bool = True
    show_percentages: bool = True
    inner_radius: int = Field(default=0, ge=0)


class MetricVisualization(VisualizationBase):
    type: Literal["metric"] = "metric"
    metric_field: Optional[str] = None
    show_trend: bool = True
    show_comparison: bool = False
    font_size: Literal["small", "medium", "large"] = "large"
    alignment: Literal["left", "center", "right"] = "center"


VisualizationConfig = Annotated[
    Union[
        TableVisualization,
        BarVisualization,
        LineVisualization,
        PieVisualization,
        MetricVisualization,
    ],
    Field(discriminator="type"),
]

VISUALIZATION_CLASSES: Dict[VisualizationType, Type[VisualizationBase]] = {
    VisualizationType.TABLE: TableVisualization,
    VisualizationType.BAR: BarVisualization,
    VisualizationType.LINE: LineVisualization,
    VisualizationType.PIE: PieVisualization,
    VisualizationType.METRIC: MetricVisualization,
}

COMMON_ATTRIBUTES = tuple(VisualizationBase.model_fields)


def default_visualization(viz_type: Union[VisualizationType, str], **common: Any) -> VisualizationBase:
    """
    Build a visualization of ``viz_type`` with type defaults.

    Only common attributes may be passed through ``common``; anything
    else is dropped so no type-specific setting crosses variants.
    """
    viz_class = VISUALIZATION_CLASSES[VisualizationType(viz_type)]
    carried = {key: value for key, value in common.items() if key in COMMON_ATTRIBUTES}
    return viz_class(**carried)


def chart_field_references(viz: VisualizationBase) -> Dict[str, str]:
    """Attribute name -> referenced field name for every chart binding that is set."""
    references = {}
    for attr in ("x_axis", "y_axis", "group_by", "category_field", "value_field", "metric_field"):
        value = getattr(viz, attr, None)
        if value:
            references[attr] = value
    return references

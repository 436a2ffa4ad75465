"""Tests for the template data model and its wire format."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from report_builder.schemas.template import ReportTemplate, TemplateCategory
from report_builder.schemas.visualization import (
    COMMON_ATTRIBUTES,
    BarVisualization,
    MetricVisualization,
    default_visualization,
)

WIRE_TEMPLATE = {
    "id": "template_0123456789ab",
    "name": "Sales by region",
    "description": "",
    "category": "SALES",
    "fields": [
        {"id": "field_b", "name": "region", "displayName": "Region", "type": "string"},
        {
            "id": "field_a", "name": "total_sales", "displayName": "Total", "type": "currency",
            "aggregation": "sum", "format": "currency",
        },
    ],
    "filters": [
        {"id": "filter_2", "fieldId": "field_a", "operator": "greater_than", "value": 1000},
        {"id": "filter_1", "fieldId": "field_b", "operator": "in", "value": ["West", "East"]},
    ],
    "visualization": {"type": "bar", "xAxis": "region", "yAxis": "total_sales", "showLegend": False},
    "isPublic": True,
    "tags": ["regional"],
    "createdAt": "2024-03-01T12:00:00Z",
    "updatedAt": "2024-03-02T08:30:00Z",
    "createdBy": "user_42",
}


class TestWireFormat:
    """camelCase JSON in and out."""

    def test_from_wire(self):
        template = ReportTemplate.from_wire(WIRE_TEMPLATE)

        assert template.category == TemplateCategory.SALES
        assert isinstance(template.visualization, BarVisualization)
        assert template.visualization.show_legend is False
        assert template.filters[0].field_id == "field_a"
        assert template.updated_at == datetime(2024, 3, 2, 8, 30, tzinfo=timezone.utc)

    def test_round_trip_preserves_order(self):
        wire = ReportTemplate.from_wire(WIRE_TEMPLATE).to_wire()

        assert [f["id"] for f in wire["fields"]] == ["field_b", "field_a"]
        assert [f["id"] for f in wire["filters"]] == ["filter_2", "filter_1"]
        assert wire["filters"][1]["value"] == ["West", "East"]
        assert wire["visualization"]["xAxis"] == "region"
        assert wire["isPublic"] is True
        assert wire["category"] == "sales"

    def test_unknown_visualization_type_rejected(self):
        with pytest.raises(ValidationError):
            ReportTemplate.from_wire(dict(WIRE_TEMPLATE, visualization={"type": "radar"}))

    def test_defaults(self):
        template = ReportTemplate()

        assert template.id is None
        assert template.visualization.type == "table"
        assert template.category == TemplateCategory.CUSTOM
        assert template.is_public is False


class TestVisualizationDefaults:
    """Switching visualization types."""

    def test_default_visualization_drops_type_specific_attributes(self):
        viz = default_visualization("metric", title="Revenue", x_axis="region")

        assert isinstance(viz, MetricVisualization)
        assert viz.title == "Revenue"
        assert viz.font_size == "large"

    def test_common_attributes(self):
        assert "title" in COMMON_ATTRIBUTES
        assert "colors" in COMMON_ATTRIBUTES
        assert "x_axis" not in COMMON_ATTRIBUTES

    def test_chart_defaults(self):
        bar = default_visualization("bar")
        assert (bar.orientation, bar.bar_width, bar.x_axis) == ("vertical", 0.8, None)

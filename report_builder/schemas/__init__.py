"""Pydantic data model for report templates, catalog entries and validation results."""
from report_builder.schemas.catalog import BuilderField, DataSource, FieldType
from report_builder.schemas.template import (
    ReportTemplate,
    SaveResult,
    TemplateCategory,
    TemplateField,
    TemplateFilter,
)
from report_builder.schemas.validation import ValidationIssue, ValidationResult
from report_builder.schemas.visualization import VisualizationConfig, VisualizationType

__all__ = [
    "BuilderField",
    "DataSource",
    "FieldType",
    "ReportTemplate",
    "SaveResult",
    "TemplateCategory",
    "TemplateField",
    "TemplateFilter",
    "ValidationIssue",
    "ValidationResult",
    "VisualizationConfig",
    "VisualizationType",
]

"""
System Report Templates

Pre-built report templates for common project-management reports. A user
starts from one of these via ``TemplateModel.apply_prebuilt``; they can also
be seeded into a repository so they show up next to user templates.
"""

from typing import Any, Dict, List, Optional

from report_builder.core.exceptions import CatalogFieldNotFoundError, DataSourceNotFoundError
from report_builder.schemas.catalog import DataSource
from report_builder.schemas.template import ReportTemplate, TemplateField, TemplateFilter
from report_builder.services.catalog import SAMPLE_DATA_SOURCES
from report_builder.services.repository import InMemoryTemplateRepository


# ============================================================================
# System Template Definitions
# ============================================================================

SYSTEM_TEMPLATES: List[Dict[str, Any]] = [
    {
        "id": "system_project_status_overview",
        "name": "Project Status Overview",
        "description": "Projects grouped by status. "
                       "Useful for seeing how work is distributed across the portfolio.",
        "category": "operational",
        "tags": ["projects", "status"],
        "fields": [
            {"source": "projects", "name": "status"},
            {"source": "projects", "name": "id", "aggregation": "count", "displayName": "Projects"},
        ],
        "filters": [],
        "visualization": {
            "type": "pie",
            "title": "Projects by status",
            "groupBy": "status",
            "valueField": "id",
            "donut": True,
        },
    },
    {
        "id": "system_task_completion",
        "name": "Open Tasks by Priority",
        "description": "Count of open tasks per priority level, with due dates. "
                       "Track where the backlog is piling up.",
        "category": "operational",
        "tags": ["tasks", "backlog"],
        "fields": [
            {"source": "tasks", "name": "priority"},
            {"source": "tasks", "name": "id", "aggregation": "count", "displayName": "Open tasks"},
            {"source": "tasks", "name": "due_date", "aggregation": "min", "format": "DD/MM/YYYY"},
            {"source": "tasks", "name": "completed", "visible": False},
        ],
        "filters": [
            {"field": "completed", "operator": "equals", "value": False, "label": "Open only"},
        ],
        "visualization": {
            "type": "bar",
            "title": "Open tasks by priority",
            "xAxis": "priority",
            "yAxis": "id",
            "showValues": True,
        },
    },
    {
        "id": "system_portfolio_budget",
        "name": "Portfolio Budget",
        "description": "Total budget across active projects as a single headline figure.",
        "category": "financial",
        "tags": ["projects", "budget"],
        "fields": [
            {"source": "projects", "name": "budget", "aggregation": "sum", "format": "currency"},
            {"source": "projects", "name": "status"},
        ],
        "filters": [
            {"field": "status", "operator": "not_in", "value": ["archived", "cancelled"], "label": "Active projects"},
        ],
        "visualization": {
            "type": "metric",
            "title": "Total budget",
            "metricField": "budget",
            "showTrend": False,
        },
    },
    {
        "id": "system_user_signups",
        "name": "User Sign-ups",
        "description": "New users over time. Spot onboarding spikes after launches.",
        "category": "analytics",
        "tags": ["users", "growth"],
        "fields": [
            {"source": "users", "name": "created_at", "format": "MM/YYYY"},
            {"source": "users", "name": "id", "aggregation": "count", "displayName": "New users"},
        ],
        "filters": [
            {"field": "created_at", "operator": "greater_than_or_equal", "value": "2024-01-01"},
        ],
        "visualization": {
            "type": "line",
            "title": "Sign-ups per month",
            "xAxis": "created_at",
            "yAxis": "id",
            "filled": True,
        },
    },
    {
        "id": "system_team_directory",
        "name": "Team Directory",
        "description": "Every user with name and email, newest first.",
        "category": "custom",
        "tags": ["users"],
        "fields": [
            {"source": "users", "name": "name"},
            {"source": "users", "name": "email"},
            {"source": "users", "name": "created_at", "format": "DD/MM/YYYY"},
        ],
        "filters": [],
        "visualization": {
            "type": "table",
            "title": "Team directory",
            "defaultSort": "created_at",
            "pagination": {"enabled": True, "pageSize": 25},
        },
    },
]


# ============================================================================
# Template Construction
# ============================================================================

def build_system_template(
    definition: Dict[str, Any],
    data_sources: Optional[List[DataSource]] = None,
) -> ReportTemplate:
    """
    Turn a system template definition into a ``ReportTemplate``.

    Fields are resolved against the catalog so they carry the catalog's
    type, label and allowed aggregations/formats.

    Raises:
        DataSourceNotFoundError: If a field names an unknown data source
        CatalogFieldNotFoundError: If a field is not in its data source
    """
    sources = {source.id: source for source in (data_sources or SAMPLE_DATA_SOURCES)}

    fields = []
    for entry in definition["fields"]:
        source = sources.get(entry["source"])
        if source is None:
            raise DataSourceNotFoundError(entry["source"])
        catalog_field = source.get_field(entry["name"])
        if catalog_field is None:
            raise CatalogFieldNotFoundError(entry["source"], entry["name"])

        overrides = {k: v for k, v in entry.items() if k not in ("source", "name")}
        fields.append(TemplateField.model_validate({
            "id": f"field_{catalog_field.id}",
            "name": catalog_field.name,
            "displayName": catalog_field.label,
            "type": catalog_field.type,
            "source": catalog_field.source,
            "label": catalog_field.label,
            "description": catalog_field.description,
            "allowedAggregations": catalog_field.allowed_aggregations,
            "allowedFormats": catalog_field.allowed_formats,
            **overrides,
        }))

    field_ids = {field.name: field.id for field in fields}
    filters = []
    for index, entry in enumerate(definition["filters"]):
        filters.append(TemplateFilter(
            id=f"filter_{definition['id']}_{index + 1}",
            field_id=field_ids[entry["field"]],
            operator=entry["operator"],
            value=entry.get("value"),
            label=entry.get("label", ""),
        ))

    return ReportTemplate.model_validate({
        "id": definition["id"],
        "name": definition["name"],
        "description": definition["description"],
        "category": definition["category"],
        "tags": definition["tags"],
        "fields": fields,
        "filters": filters,
        "visualization": definition["visualization"],
        "isPublic": True,
        "createdBy": "system",
    })


def get_system_templates() -> List[ReportTemplate]:
    """All system templates, in definition order."""
    return [build_system_template(definition) for definition in SYSTEM_TEMPLATES]


def get_system_template_by_id(template_id: str) -> Optional[ReportTemplate]:
    """
    Get a system template by ID.

    Args:
        template_id: System template ID

    Returns:
        The template, or None if not found
    """
    for definition in SYSTEM_TEMPLATES:
        if definition["id"] == template_id:
            return build_system_template(definition)
    return None


def list_system_template_ids() -> List[str]:
    return [definition["id"] for definition in SYSTEM_TEMPLATES]


def load_system_templates(repository: InMemoryTemplateRepository, overwrite: bool = False) -> Dict[str, int]:
    """
    Seed system templates into a repository.

    Args:
        repository: Target repository
        overwrite: If True, replace existing system templates. If False, skip existing.

    Returns:
        Dictionary with counts of created/updated/skipped templates
    """
    created = 0
    updated = 0
    skipped = 0

    for template in get_system_templates():
        if template.id in repository:
            if not overwrite:
                skipped += 1
                continue
            updated += 1
        else:
            created += 1
        repository.add(template)

    return {
        "created": created,
        "updated": updated,
        "skipped": skipped,
        "total": len(SYSTEM_TEMPLATES)
    }

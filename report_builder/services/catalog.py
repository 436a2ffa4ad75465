"""
Field Catalog

Read-only view over the data sources and fields a template can be built
from. The engine only reads the catalog; fields already copied into a
template are unaffected by later catalog changes.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from report_builder.core.exceptions import CatalogUnavailableError, DataSourceNotFoundError
from report_builder.schemas.catalog import BuilderField, DataSource, FieldType

logger = logging.getLogger(__name__)


class FieldCatalog(ABC):
    """Supplies data sources and their builder fields."""

    @abstractmethod
    async def list_data_sources(self) -> List[DataSource]:
        """
        All data sources with their fields.

        Raises:
            CatalogUnavailableError: If the catalog cannot be reached
        """

    async def get_data_source(self, source_id: str) -> DataSource:
        for source in await self.list_data_sources():
            if source.id == source_id:
                return source
        raise DataSourceNotFoundError(source_id)

    async def search_fields(self, source_id: str, term: str) -> List[BuilderField]:
        """Case-insensitive match on label, name and description."""
        source = await self.get_data_source(source_id)
        needle = term.strip().lower()
        if not needle:
            return list(source.fields)
        return [
            field for field in source.fields
            if needle in field.label.lower()
            or needle in field.name.lower()
            or needle in (field.description or "").lower()
        ]


def _field(source: str, field_id: str, name: str, field_type: FieldType, label: str, **extra) -> BuilderField:
    return BuilderField(id=field_id, name=name, type=field_type, source=source, label=label, **extra)


SAMPLE_DATA_SOURCES: List[DataSource] = [
    DataSource(
        id="users",
        name="Users",
        description="System users",
        fields=[
            _field("users", "user_id", "id", FieldType.NUMBER, "User ID", aggregations=["count"]),
            _field("users", "user_name", "name", FieldType.STRING, "Name", aggregations=["count"]),
            _field("users", "user_email", "email", FieldType.STRING, "Email", aggregations=["count"]),
            _field(
                "users", "user_created_at", "created_at", FieldType.DATE, "Created At",
                formats=["YYYY-MM-DD", "DD/MM/YYYY", "MM/YYYY"],
            ),
        ],
    ),
    DataSource(
        id="projects",
        name="Projects",
        description="Project records",
        fields=[
            _field("projects", "project_id", "id", FieldType.NUMBER, "Project ID", aggregations=["count"]),
            _field("projects", "project_name", "name", FieldType.STRING, "Project Name", aggregations=["count"]),
            _field("projects", "project_status", "status", FieldType.STRING, "Status", aggregations=["count"]),
            _field("projects", "project_budget", "budget", FieldType.CURRENCY, "Budget"),
            _field("projects", "project_progress", "progress", FieldType.PERCENTAGE, "Progress"),
            _field(
                "projects", "project_created_at", "created_at", FieldType.DATE, "Created At",
                formats=["YYYY-MM-DD", "DD/MM/YYYY", "MM/YYYY"],
            ),
        ],
    ),
    DataSource(
        id="tasks",
        name="Tasks",
        description="Task records",
        fields=[
            _field("tasks", "task_id", "id", FieldType.NUMBER, "Task ID", aggregations=["count"]),
            _field("tasks", "task_title", "title", FieldType.STRING, "Title", aggregations=["count"]),
            _field("tasks", "task_priority", "priority", FieldType.STRING, "Priority", aggregations=["count"]),
            _field("tasks", "task_completed", "completed", FieldType.BOOLEAN, "Completed", aggregations=["count"]),
            _field("tasks", "task_estimate", "estimated_hours", FieldType.NUMBER, "Estimated Hours"),
            _field(
                "tasks", "task_due_date", "due_date", FieldType.DATE, "Due Date",
                formats=["YYYY-MM-DD", "DD/MM/YYYY"],
            ),
        ],
    ),
]


class StaticFieldCatalog(FieldCatalog):
    """
    Catalog over a fixed list of data sources.

    ``available=False`` simulates an unreachable catalog: every read raises
    ``CatalogUnavailableError``.
    """

    def __init__(self, data_sources: Optional[List[DataSource]] = None, available: bool = True):
        self.data_sources = list(SAMPLE_DATA_SOURCES if data_sources is None else data_sources)
        self.available = available

    async def list_data_sources(self) -> List[DataSource]:
        if not self.available:
            raise CatalogUnavailableError(details={"catalog": type(self).__name__})
        logger.debug(f"Listing {len(self.data_sources)} data sources")
        return list(self.data_sources)

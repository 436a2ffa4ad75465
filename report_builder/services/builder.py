"""
Report Builder Session

One editing session: the template model plus the collaborators around it.
This is the surface a UI layer talks to. Mutations go through ``model``;
the session adds catalog lookups, template switching, preview and save.

Usage:
    session = ReportBuilderSession(StaticFieldCatalog(), InMemoryTemplateRepository())
    await session.load_catalog()
    await session.add_catalog_field("projects", "status")
    session.model.set_visualization("pie")
    token = session.request_preview()
    await session.save()
"""

from typing import Callable, List, Optional

from report_builder.core.exceptions import (
    CatalogError,
    CatalogFieldNotFoundError,
    CatalogUnavailableError,
    DataSourceNotFoundError,
    TemplateNotFoundError,
)
from report_builder.core.logging import setup_logging
from report_builder.schemas.catalog import BuilderField, DataSource
from report_builder.schemas.template import ReportTemplate
from report_builder.schemas.validation import ValidationResult
from report_builder.services.autosave import AutosaveCoordinator, SaveStatus, Scheduler
from report_builder.services.catalog import FieldCatalog
from report_builder.services.preview import (
    DataQueryExecutor,
    PreviewGenerator,
    PreviewResult,
    SampleDataQueryExecutor,
)
from report_builder.services.repository import TemplateRepository
from report_builder.services.system_templates import get_system_template_by_id
from report_builder.services.template_model import MutationResult, TemplateModel

logger = setup_logging(__name__)


class ReportBuilderSession:
    """Editing session for one report template."""

    def __init__(
        self,
        catalog: FieldCatalog,
        repository: TemplateRepository,
        executor: Optional[DataQueryExecutor] = None,
        scheduler: Optional[Scheduler] = None,
        template: Optional[ReportTemplate] = None,
        autosave: Optional[bool] = None,
        debounce_seconds: Optional[float] = None,
    ):
        self.catalog = catalog
        self.repository = repository

        self.model = TemplateModel(template)
        self.autosave = AutosaveCoordinator(
            self.model,
            repository,
            scheduler=scheduler,
            debounce_seconds=debounce_seconds,
            enabled=autosave,
        )
        self.preview = PreviewGenerator(executor or SampleDataQueryExecutor())
        self._detach_preview = self.preview.attach(self.model)

        self.data_sources: List[DataSource] = []
        self.catalog_error: Optional[CatalogError] = None

    # ------------------------------------------------------------------
    # Read-only projection
    # ------------------------------------------------------------------

    @property
    def template(self) -> ReportTemplate:
        return self.model.template

    @property
    def validation(self) -> ValidationResult:
        return self.model.validation

    @property
    def save_status(self) -> SaveStatus:
        return self.autosave.status

    @property
    def preview_result(self) -> Optional[PreviewResult]:
        return self.preview.result

    @property
    def is_dirty(self) -> bool:
        return self.model.is_dirty

    @property
    def catalog_available(self) -> bool:
        """False until the catalog loaded; adding fields is disabled while False."""
        return self.catalog_error is None and bool(self.data_sources)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def load_catalog(self) -> List[DataSource]:
        """
        Load data sources for field selection.

        A catalog failure disables adding fields but leaves the template
        fully editable, so it is recorded rather than raised.
        """
        try:
            self.data_sources = await self.catalog.list_data_sources()
            self.catalog_error = None
        except CatalogError as e:
            logger.warning(f"Field catalog unavailable: {e.message}")
            self.data_sources = []
            self.catalog_error = e
        return self.data_sources

    def find_catalog_field(self, source_id: str, field_name: str) -> BuilderField:
        if not self.catalog_available:
            raise CatalogUnavailableError(message="Field catalog is not loaded")

        for source in self.data_sources:
            if source.id == source_id:
                catalog_field = source.get_field(field_name)
                if catalog_field is None:
                    raise CatalogFieldNotFoundError(source_id, field_name)
                return catalog_field
        raise DataSourceNotFoundError(source_id)

    async def add_catalog_field(self, source_id: str, field_name: str) -> MutationResult:
        """
        Add a field from the loaded catalog to the template.

        Raises:
            CatalogUnavailableError: If the catalog is not loaded
            DataSourceNotFoundError: If the data source is unknown
            CatalogFieldNotFoundError: If the field is not in the data source
        """
        if not self.data_sources and self.catalog_error is None:
            await self.load_catalog()
        return self.model.add_field(self.find_catalog_field(source_id, field_name))

    async def search_fields(self, source_id: str, term: str) -> List[BuilderField]:
        return await self.catalog.search_fields(source_id, term)

    # ------------------------------------------------------------------
    # Template switching
    # ------------------------------------------------------------------

    async def open_template(self, template_id: str) -> MutationResult:
        """
        Load a stored template into the session (edit mode).

        Raises:
            TemplateNotFoundError: If the repository has no such template
        """
        await self.autosave.flush()
        template = await self.repository.get(template_id)
        return self.model.load(template)

    def new_template(self) -> MutationResult:
        """Start over with an empty template (create mode)."""
        return self.model.reset()

    def apply_prebuilt(self, template_id: str) -> MutationResult:
        """
        Start a new template from a system template.

        Raises:
            TemplateNotFoundError: If no system template has this id
        """
        prebuilt = get_system_template_by_id(template_id)
        if prebuilt is None:
            raise TemplateNotFoundError(template_id, details={"kind": "system"})
        return self.model.apply_prebuilt(prebuilt)

    def clone(self, name: Optional[str] = None) -> MutationResult:
        """Continue editing a private, unsaved copy of the current template."""
        return self.model.clone(name)

    # ------------------------------------------------------------------
    # Drag and drop
    # ------------------------------------------------------------------

    def move(self, list_id: str, from_index: int, to_index: int) -> MutationResult:
        return self.model.move(list_id, from_index, to_index)

    # ------------------------------------------------------------------
    # Preview and save
    # ------------------------------------------------------------------

    def request_preview(self) -> int:
        """
        Request preview rows for the current template.

        Raises:
            TemplateValidationError: If the template has validation errors
        """
        return self.preview.request_preview(self.model)

    async def save(self) -> ReportTemplate:
        """
        Save now, bypassing the autosave debounce.

        Raises:
            TemplateValidationError: If the template has validation errors
            PersistenceError: If the repository rejected the save
        """
        return await self.autosave.save_now()

    def on_save_status(self, listener: Callable[[SaveStatus], None]) -> Callable[[], None]:
        return self.autosave.on_status_change(listener)

    async def close(self) -> None:
        """Finish pending saves and detach from the model."""
        await self.autosave.flush()
        await self.preview.wait()
        self.autosave.close()
        self._detach_preview()
        logger.info(f"Closed builder session for template {self.model.template.id or '<new>'}")

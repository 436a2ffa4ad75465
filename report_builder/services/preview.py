"""
Preview Generator

Requests preview rows for the template being edited. Every request takes a
new generation token; a response is applied only when its token is still
the current one, so the displayed preview always belongs to the latest
request. In-flight queries are never cancelled, only their results dropped.
Previews never save the template.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import Field

from report_builder.core.config import get_settings
from report_builder.core.exceptions import PreviewError, PreviewQueryError, TemplateValidationError
from report_builder.schemas.base import WireModel
from report_builder.schemas.catalog import NUMERIC_FIELD_TYPES, FieldType
from report_builder.schemas.template import ReportTemplate
from report_builder.services.template_model import (
    SCOPE_FIELDS,
    SCOPE_FILTERS,
    SCOPE_TEMPLATE,
    SCOPE_VISUALIZATION,
    MutationResult,
    TemplateModel,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

# Mutations that change what a preview would show; metadata does not
INVALIDATING_SCOPES = {SCOPE_FIELDS, SCOPE_FILTERS, SCOPE_VISUALIZATION, SCOPE_TEMPLATE}


class PreviewResult(WireModel):
    """Rows of an applied preview, tagged with the request that produced them."""
    token: int
    rows: List[Row] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0.0
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DataQueryExecutor(ABC):
    """Runs a template against real data. Row keys are field names."""

    @abstractmethod
    async def preview(self, template: ReportTemplate) -> List[Row]:
        """Return preview rows for ``template``."""


class SampleDataQueryExecutor(DataQueryExecutor):
    """
    Deterministic sample rows per field type, for demos and tests.

    Row ``i`` carries ``"<label> <i+1>"`` for strings, ``(i+1) * 100`` for
    numbers, consecutive days from 2024-01-01 for dates and alternating
    booleans.
    """

    BASE_DATE = date(2024, 1, 1)

    def __init__(self, row_count: int = 10, delay: float = 0.0):
        self.row_count = row_count
        self.delay = delay
        self.calls = 0

    async def preview(self, template: ReportTemplate) -> List[Row]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)

        rows = []
        for i in range(self.row_count):
            row = {}
            for field in template.fields:
                row[field.name] = self._sample_value(field.type, field.display_name, i)
            rows.append(row)
        return rows

    def _sample_value(self, field_type: FieldType, label: str, index: int) -> Any:
        if field_type in NUMERIC_FIELD_TYPES:
            return (index + 1) * 100
        if field_type == FieldType.DATE:
            return (self.BASE_DATE + timedelta(days=index)).isoformat()
        if field_type == FieldType.BOOLEAN:
            return index % 2 == 0
        return f"{label} {index + 1}"


class PreviewGenerator:
    """
    Last-request-wins preview requests.

    Usage:
        generator = PreviewGenerator(SampleDataQueryExecutor())
        generator.attach(model)
        token = generator.request_preview(model)
        await generator.wait()
        generator.result.token == token
    """

    def __init__(self, executor: DataQueryExecutor, row_limit: Optional[int] = None):
        self.executor = executor
        self.row_limit = row_limit or get_settings().PREVIEW_ROW_LIMIT

        self.result: Optional[PreviewResult] = None
        self.last_error: Optional[PreviewError] = None

        self._generation = 0
        self._outstanding: Dict[asyncio.Task, int] = {}
        self._listeners: List[Callable[[Optional[PreviewResult], Optional[PreviewError]], None]] = []

    @property
    def current_token(self) -> int:
        return self._generation

    @property
    def is_generating(self) -> bool:
        """True while the latest request has not produced a result or error."""
        return any(
            not task.done() and token == self._generation for task, token in self._outstanding.items()
        )

    def subscribe(
        self, listener: Callable[[Optional[PreviewResult], Optional[PreviewError]], None]
    ) -> Callable[[], None]:
        """Listener receives ``(result, None)`` or ``(None, error)`` for every applied outcome."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def attach(self, model: TemplateModel) -> Callable[[], None]:
        """Invalidate outstanding previews whenever ``model`` changes what they show."""

        def on_change(_model: TemplateModel, result: MutationResult) -> None:
            if result.scope in INVALIDATING_SCOPES:
                self.invalidate()

        return model.subscribe(on_change)

    def invalidate(self) -> int:
        """Advance the generation so every outstanding response becomes stale."""
        self._generation += 1
        return self._generation

    def request_preview(self, model: TemplateModel) -> int:
        """
        Start a preview query for the model's current state.

        Returns:
            Generation token of this request

        Raises:
            TemplateValidationError: If the template has validation errors
        """
        validation = model.validation
        if not validation.is_valid:
            raise TemplateValidationError(validation, message="Fix validation errors before previewing")

        token = self.invalidate()
        snapshot = model.snapshot()
        task = asyncio.ensure_future(self._run(token, snapshot))
        self._outstanding[task] = token
        task.add_done_callback(lambda done: self._outstanding.pop(done, None))
        logger.info(f"Preview requested (token {token}, {len(snapshot.fields)} fields)")
        return token

    async def wait(self) -> None:
        """Wait for every outstanding preview query."""
        while self._outstanding:
            await asyncio.gather(*list(self._outstanding))

    async def _run(self, token: int, template: ReportTemplate) -> None:
        start = time.monotonic()
        try:
            rows = await self.executor.preview(template)
        except Exception as e:
            if token != self._generation:
                logger.debug(f"Discarding stale preview error (token {token}, current {self._generation})")
                return
            error = e if isinstance(e, PreviewError) else PreviewQueryError(
                f"Preview query failed: {str(e)}",
                details={"token": token, "exception": type(e).__name__},
            )
            self.last_error = error
            self._emit(None, error)
            return

        if token != self._generation:
            logger.debug(f"Discarding stale preview (token {token}, current {self._generation})")
            return

        execution_time_ms = (time.monotonic() - start) * 1000
        limited = rows[:self.row_limit]
        self.result = PreviewResult(
            token=token,
            rows=limited,
            columns=template.field_names(),
            row_count=len(limited),
            execution_time_ms=round(execution_time_ms, 2),
        )
        self.last_error = None
        logger.info(f"Preview {token} applied: {len(limited)} rows in {execution_time_ms:.0f}ms")
        self._emit(self.result, None)

    def _emit(self, result: Optional[PreviewResult], error: Optional[PreviewError]) -> None:
        for listener in list(self._listeners):
            listener(result, error)

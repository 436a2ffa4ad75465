"""
Pytest configuration and fixtures for the report builder test suite.

Provides catalog fields, a saved (edit mode) template model, a manual
scheduler with a virtual clock and mock collaborators.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, List
from unittest.mock import AsyncMock

import pytest

from report_builder.schemas.catalog import BuilderField, DataSource, FieldType
from report_builder.schemas.template import ReportTemplate, SaveResult
from report_builder.services.autosave import Scheduler
from report_builder.services.repository import TemplateRepository
from report_builder.services.template_model import TemplateModel

SAVED_AT = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class ManualScheduler(Scheduler):
    """Scheduler driven by ``advance()`` instead of wall-clock time."""

    def __init__(self):
        self.now = 0.0
        self._timers: List[dict] = []

    def schedule(self, callback: Callable[[], None], delay: float) -> Callable[[], None]:
        timer = {"due": self.now + delay, "callback": callback, "active": True}
        self._timers.append(timer)

        def cancel() -> None:
            timer["active"] = False

        return cancel

    @property
    def active_timers(self) -> int:
        return sum(1 for timer in self._timers if timer["active"])

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.now + seconds
        while True:
            due = [t for t in self._timers if t["active"] and t["due"] <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t["due"])
            timer["active"] = False
            self.now = max(self.now, timer["due"])
            timer["callback"]()
        self.now = target


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def total_sales_field():
    return BuilderField(id="sales_total", name="total_sales", type=FieldType.NUMBER, source="sales", label="Total Sales")


@pytest.fixture
def category_field():
    return BuilderField(id="sales_category", name="category", type=FieldType.STRING, source="sales", label="Category")


@pytest.fixture
def order_date_field():
    return BuilderField(id="sales_order_date", name="order_date", type=FieldType.DATE, source="sales", label="Order Date")


@pytest.fixture
def is_paid_field():
    return BuilderField(id="sales_is_paid", name="is_paid", type=FieldType.BOOLEAN, source="sales", label="Paid")


@pytest.fixture
def sales_source(total_sales_field, category_field, order_date_field, is_paid_field):
    return DataSource(
        id="sales",
        name="Sales",
        description="Closed deals",
        fields=[total_sales_field, category_field, order_date_field, is_paid_field],
    )


@pytest.fixture
def model():
    """Empty create-mode model."""
    return TemplateModel()


@pytest.fixture
def saved_model(total_sales_field, category_field):
    """Valid edit-mode model: two fields and a bar chart over them."""
    model = TemplateModel(ReportTemplate(
        id="template_abc123def456",
        name="Q3 Sales",
        updated_at=SAVED_AT,
        created_at=SAVED_AT,
    ))
    model.add_field(category_field)
    model.add_field(total_sales_field)
    model.set_visualization("bar")
    model.update_visualization({"xAxis": "category", "yAxis": "total_sales"})
    model.mark_saved(SaveResult(id="template_abc123def456", updated_at=SAVED_AT), model.revision)
    return model


@pytest.fixture
def mock_repository():
    """Repository mock whose saves succeed with a later ``updated_at`` each time."""
    repository = AsyncMock(spec=TemplateRepository)
    calls = {"count": 0}

    async def save(template):
        calls["count"] += 1
        return SaveResult(
            id=template.id or "template_new000000001",
            updated_at=SAVED_AT + timedelta(seconds=calls["count"]),
            created_at=template.created_at or SAVED_AT,
        )

    repository.save.side_effect = save
    return repository

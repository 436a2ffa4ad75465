"""Unit tests for the in-memory template repository."""

import pytest

from report_builder.core.exceptions import TemplateNotFoundError, VersionConflictError
from report_builder.schemas.template import ReportTemplate, TemplateCategory
from report_builder.services.repository import InMemoryTemplateRepository


@pytest.fixture
def repository():
    return InMemoryTemplateRepository()


class TestInMemoryTemplateRepository:
    """Test suite for InMemoryTemplateRepository."""

    @pytest.mark.asyncio
    async def test_create_assigns_id_and_timestamps(self, repository):
        result = await repository.save(ReportTemplate(name="Pipeline"))

        assert result.id.startswith("template_")
        assert len(result.id) == len("template_") + 12
        assert result.created_at == result.updated_at

        stored = await repository.get(result.id)
        assert stored.name == "Pipeline"
        assert stored.updated_at == result.updated_at

    @pytest.mark.asyncio
    async def test_update_with_current_version(self, repository):
        created = await repository.save(ReportTemplate(name="Pipeline"))
        current = await repository.get(created.id)

        updated = await repository.save(current.model_copy(update={"description": "Q3"}))

        assert updated.id == created.id
        assert updated.updated_at > created.updated_at
        assert updated.created_at == created.created_at

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, repository):
        """Test a save based on an outdated copy is rejected, not merged."""
        created = await repository.save(ReportTemplate(name="Pipeline"))
        mine = await repository.get(created.id)
        theirs = await repository.get(created.id)
        await repository.save(theirs.model_copy(update={"description": "theirs"}))

        with pytest.raises(VersionConflictError) as exc_info:
            await repository.save(mine.model_copy(update={"description": "mine"}))

        assert exc_info.value.error_code == "VERSION_CONFLICT"
        assert (await repository.get(created.id)).description == "theirs"

    @pytest.mark.asyncio
    async def test_update_unknown_template(self, repository):
        with pytest.raises(TemplateNotFoundError):
            await repository.save(ReportTemplate(id="template_missing0001", name="Ghost"))

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, repository):
        created = await repository.save(ReportTemplate(name="Pipeline", tags=["a"]))
        copy = await repository.get(created.id)
        copy.tags.append("b")

        assert (await repository.get(created.id)).tags == ["a"]

    @pytest.mark.asyncio
    async def test_list_by_category(self, repository):
        await repository.save(ReportTemplate(name="Deals", category="sales"))
        await repository.save(ReportTemplate(name="Costs", category="financial"))

        sales = await repository.list(category=TemplateCategory.SALES)

        assert [t.name for t in sales] == ["Deals"]
        assert len(await repository.list()) == 2
        assert len(await repository.list(skip=1, limit=5)) == 1

    @pytest.mark.asyncio
    async def test_delete(self, repository):
        created = await repository.save(ReportTemplate(name="Pipeline"))
        await repository.delete(created.id)

        assert created.id not in repository
        with pytest.raises(TemplateNotFoundError):
            await repository.delete(created.id)

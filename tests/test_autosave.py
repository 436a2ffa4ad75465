"""Unit tests for the debounced autosave coordinator."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from report_builder.core.exceptions import (
    ConfigurationError,
    TemplateSaveError,
    TemplateValidationError,
    VersionConflictError,
)
from report_builder.schemas.template import ReportTemplate, SaveResult
from report_builder.services.autosave import AutosaveCoordinator, SaveStatus, Scheduler

SAVED_AT = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def coordinator(saved_model, mock_repository, scheduler):
    return AutosaveCoordinator(saved_model, mock_repository, scheduler=scheduler, debounce_seconds=2.0, enabled=True)


class BlockingSaves:
    """Repository save that blocks until released, tracking concurrency."""

    def __init__(self):
        self.release = asyncio.Event()
        self.saved = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def save(self, template):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.saved.append(template)
        try:
            await self.release.wait()
        finally:
            self.in_flight -= 1
        return SaveResult(
            id=template.id or "template_new000000001",
            updated_at=SAVED_AT + timedelta(seconds=len(self.saved)),
        )


class TestDebounce:
    """Debounce window behavior."""

    @pytest.mark.asyncio
    async def test_rapid_edits_trigger_exactly_one_save(self, coordinator, saved_model, mock_repository, scheduler):
        """Test 5 edits 200ms apart produce one save 2s after the last edit."""
        started_at = []
        coordinator.on_status_change(
            lambda status: started_at.append(scheduler.now) if status == SaveStatus.SAVING else None
        )

        for i in range(5):
            saved_model.update_metadata({"description": f"edit {i}"})
            scheduler.advance(0.2)

        scheduler.advance(1.7)
        await coordinator.flush()
        assert mock_repository.save.await_count == 0
        assert coordinator.status == SaveStatus.SCHEDULED

        scheduler.advance(0.1)
        await coordinator.flush()

        assert mock_repository.save.await_count == 1
        assert started_at == [pytest.approx(2.8)]
        saved = mock_repository.save.await_args.args[0]
        assert saved.description == "edit 4"
        assert coordinator.status == SaveStatus.IDLE
        assert not saved_model.is_dirty

    @pytest.mark.asyncio
    async def test_successful_save_refreshes_version(self, coordinator, saved_model, scheduler):
        saved_model.update_metadata({"description": "Quarterly"})
        scheduler.advance(2.0)
        await coordinator.flush()

        assert saved_model.template.updated_at == SAVED_AT + timedelta(seconds=1)

    @pytest.mark.asyncio
    async def test_status_transitions(self, coordinator, saved_model, scheduler):
        seen = []
        coordinator.on_status_change(seen.append)

        saved_model.update_metadata({"description": "Quarterly"})
        scheduler.advance(2.0)
        await coordinator.flush()

        assert seen == [SaveStatus.SCHEDULED, SaveStatus.SAVING, SaveStatus.IDLE]

    @pytest.mark.asyncio
    async def test_create_mode_does_not_autosave(self, model, mock_repository, scheduler, total_sales_field):
        coordinator = AutosaveCoordinator(model, mock_repository, scheduler=scheduler, debounce_seconds=2.0, enabled=True)

        model.update_metadata({"name": "Draft"})
        model.add_field(total_sales_field)
        scheduler.advance(10)
        await coordinator.flush()

        assert coordinator.status == SaveStatus.IDLE
        assert not coordinator.timer_armed
        mock_repository.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_autosave(self, saved_model, mock_repository, scheduler):
        coordinator = AutosaveCoordinator(saved_model, mock_repository, scheduler=scheduler, enabled=False)

        saved_model.update_metadata({"description": "Quarterly"})
        scheduler.advance(10)
        await coordinator.flush()

        mock_repository.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_template_skips_timer_save(self, coordinator, saved_model, mock_repository, scheduler):
        saved_model.update_metadata({"name": ""})
        scheduler.advance(2.0)
        await coordinator.flush()

        mock_repository.save.assert_not_awaited()
        assert coordinator.status == SaveStatus.IDLE
        assert saved_model.is_dirty

    def test_debounce_must_be_positive(self, saved_model, mock_repository):
        with pytest.raises(ConfigurationError):
            AutosaveCoordinator(saved_model, mock_repository, debounce_seconds=0)


class TestCoalescing:
    """At most one save in flight, one queued follow-up."""

    @pytest.mark.asyncio
    async def test_follow_up_reflects_latest_snapshot(self, coordinator, saved_model, mock_repository, scheduler):
        saves = BlockingSaves()
        mock_repository.save.side_effect = saves.save

        saved_model.update_metadata({"description": "first"})
        scheduler.advance(2.0)
        await asyncio.sleep(0)
        assert coordinator.status == SaveStatus.SAVING

        saved_model.update_metadata({"description": "second"})
        scheduler.advance(2.0)
        saved_model.update_metadata({"description": "third"})
        scheduler.advance(2.0)
        assert coordinator.status == SaveStatus.SAVING
        assert coordinator.has_pending_save

        saves.release.set()
        await coordinator.flush()

        assert [t.description for t in saves.saved] == ["first", "third"]
        assert saves.max_in_flight == 1
        assert coordinator.status == SaveStatus.IDLE
        assert not saved_model.is_dirty

    @pytest.mark.asyncio
    async def test_follow_up_carries_new_version(self, coordinator, saved_model, mock_repository, scheduler):
        saves = BlockingSaves()
        mock_repository.save.side_effect = saves.save

        saved_model.update_metadata({"description": "first"})
        scheduler.advance(2.0)
        saved_model.update_metadata({"description": "second"})
        scheduler.advance(2.0)
        saves.release.set()
        await coordinator.flush()

        assert saves.saved[0].updated_at == SAVED_AT
        assert saves.saved[1].updated_at == SAVED_AT + timedelta(seconds=1)
        assert saved_model.template.updated_at == SAVED_AT + timedelta(seconds=2)

    @pytest.mark.asyncio
    async def test_follow_up_carries_id_from_first_save(self, model, mock_repository, scheduler, total_sales_field):
        """Test a queued save after a create uses the id the create assigned."""
        coordinator = AutosaveCoordinator(model, mock_repository, scheduler=scheduler, debounce_seconds=2.0, enabled=True)
        model.update_metadata({"name": "Draft"})
        model.add_field(total_sales_field)

        saves = BlockingSaves()
        mock_repository.save.side_effect = saves.save

        first = asyncio.ensure_future(coordinator.save_now())
        await asyncio.sleep(0)
        assert coordinator.is_saving
        model.update_metadata({"description": "more"})
        second = asyncio.ensure_future(coordinator.save_now())
        await asyncio.sleep(0)
        assert coordinator.has_pending_save

        saves.release.set()
        await asyncio.gather(first, second)

        assert [t.id for t in saves.saved] == [None, "template_new000000001"]
        assert saves.saved[1].description == "more"
        assert model.template.id == "template_new000000001"
        assert not model.is_dirty


class TestFailures:
    """Failed saves keep edits and never retry on their own."""

    @pytest.mark.asyncio
    async def test_failure_enters_error_and_keeps_edits(self, coordinator, saved_model, mock_repository, scheduler):
        mock_repository.save.side_effect = TemplateSaveError("Backend unavailable")

        saved_model.update_metadata({"description": "unsaved work"})
        scheduler.advance(2.0)
        await coordinator.flush()

        assert coordinator.status == SaveStatus.ERROR
        assert coordinator.last_error.error_code == "TEMPLATE_SAVE_FAILED"
        assert saved_model.template.description == "unsaved work"
        assert saved_model.is_dirty

        scheduler.advance(30)
        await coordinator.flush()
        assert mock_repository.save.await_count == 1

    @pytest.mark.asyncio
    async def test_next_mutation_retries(self, coordinator, saved_model, mock_repository, scheduler):
        succeed = mock_repository.save.side_effect
        mock_repository.save.side_effect = TemplateSaveError("Backend unavailable")
        saved_model.update_metadata({"description": "unsaved work"})
        scheduler.advance(2.0)
        await coordinator.flush()

        mock_repository.save.side_effect = succeed
        saved_model.update_metadata({"description": "unsaved work, again"})
        assert coordinator.status == SaveStatus.SCHEDULED
        scheduler.advance(2.0)
        await coordinator.flush()

        assert coordinator.status == SaveStatus.IDLE
        assert coordinator.last_error is None
        assert not saved_model.is_dirty

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, coordinator, saved_model, mock_repository, scheduler):
        mock_repository.save.side_effect = RuntimeError("socket closed")

        saved_model.update_metadata({"description": "x"})
        scheduler.advance(2.0)
        await coordinator.flush()

        assert isinstance(coordinator.last_error, TemplateSaveError)
        assert coordinator.last_error.details["exception"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_version_conflict_surfaces_on_manual_save(self, coordinator, saved_model, mock_repository):
        mock_repository.save.side_effect = VersionConflictError(saved_model.template.id)
        saved_model.update_metadata({"description": "mine"})

        with pytest.raises(VersionConflictError):
            await coordinator.save_now()

        assert coordinator.status == SaveStatus.ERROR
        assert saved_model.template.description == "mine"

    @pytest.mark.asyncio
    async def test_failure_drops_queued_follow_up(self, coordinator, saved_model, mock_repository, scheduler):
        release = asyncio.Event()

        async def failing_save(template):
            await release.wait()
            raise TemplateSaveError("Backend unavailable")

        mock_repository.save.side_effect = failing_save
        saved_model.update_metadata({"description": "first"})
        scheduler.advance(2.0)
        saved_model.update_metadata({"description": "second"})
        scheduler.advance(2.0)
        assert coordinator.has_pending_save

        release.set()
        await coordinator.flush()

        assert mock_repository.save.await_count == 1
        assert not coordinator.has_pending_save
        assert coordinator.status == SaveStatus.ERROR

    @pytest.mark.asyncio
    async def test_queued_manual_save_runs_after_failure(self, coordinator, saved_model, mock_repository):
        """Test a manual save queued behind a failing save still reaches the repository."""
        release = asyncio.Event()
        descriptions = []

        async def first_fails(template):
            descriptions.append(template.description)
            if len(descriptions) == 1:
                await release.wait()
                raise TemplateSaveError("Backend unavailable")
            return SaveResult(id=template.id, updated_at=SAVED_AT + timedelta(seconds=5))

        mock_repository.save.side_effect = first_fails
        saved_model.update_metadata({"description": "draft"})
        first = asyncio.ensure_future(coordinator.save_now())
        await asyncio.sleep(0)
        saved_model.update_metadata({"description": "manual"})
        second = asyncio.ensure_future(coordinator.save_now())
        await asyncio.sleep(0)
        assert coordinator.has_pending_save

        release.set()
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert descriptions == ["draft", "manual"]
        assert isinstance(results[0], TemplateSaveError)
        assert results[1].description == "manual"
        assert coordinator.status == SaveStatus.IDLE
        assert coordinator.last_error is None
        assert not saved_model.is_dirty

    @pytest.mark.asyncio
    async def test_manual_save_absorbs_queued_autosave(self, coordinator, saved_model, mock_repository, scheduler):
        """Test an autosave and a manual save queued together share one follow-up."""
        release = asyncio.Event()
        calls = []

        async def first_fails(template):
            calls.append(template.description)
            if len(calls) == 1:
                await release.wait()
                raise TemplateSaveError("Backend unavailable")
            return SaveResult(id=template.id, updated_at=SAVED_AT + timedelta(seconds=5))

        mock_repository.save.side_effect = first_fails
        saved_model.update_metadata({"description": "first"})
        scheduler.advance(2.0)
        saved_model.update_metadata({"description": "second"})
        scheduler.advance(2.0)
        manual = asyncio.ensure_future(coordinator.save_now())
        await asyncio.sleep(0)

        release.set()
        await manual
        await coordinator.flush()

        assert calls == ["first", "second"]
        assert coordinator.status == SaveStatus.IDLE


class TestManualSave:
    """save_now() bypasses the debounce timer."""

    @pytest.mark.asyncio
    async def test_manual_save_cancels_timer(self, coordinator, saved_model, mock_repository, scheduler):
        saved_model.update_metadata({"description": "now"})
        assert coordinator.timer_armed

        await coordinator.save_now()

        assert not coordinator.timer_armed
        scheduler.advance(5)
        await coordinator.flush()
        assert mock_repository.save.await_count == 1

    @pytest.mark.asyncio
    async def test_manual_save_requires_valid_template(self, coordinator, saved_model, mock_repository):
        saved_model.update_metadata({"name": ""})

        with pytest.raises(TemplateValidationError) as exc_info:
            await coordinator.save_now()

        assert exc_info.value.details["codes"] == ["NAME_REQUIRED"]
        mock_repository.save.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_manual_create_assigns_id(self, model, mock_repository, scheduler, total_sales_field):
        coordinator = AutosaveCoordinator(model, mock_repository, scheduler=scheduler, debounce_seconds=2.0, enabled=True)
        model.update_metadata({"name": "Draft"})
        model.add_field(total_sales_field)

        saved = await coordinator.save_now()

        assert saved.id == "template_new000000001"
        assert model.is_edit_mode
        assert not model.is_dirty


class TestTemplateReplacement:
    """Loading another template cancels pending work for the old one."""

    @pytest.mark.asyncio
    async def test_load_cancels_timer(self, coordinator, saved_model, mock_repository, scheduler):
        saved_model.update_metadata({"description": "abandoned"})

        saved_model.load(ReportTemplate(id="template_other000001", name="Other", updated_at=SAVED_AT))
        scheduler.advance(5)
        await coordinator.flush()

        mock_repository.save.assert_not_awaited()
        assert coordinator.status == SaveStatus.IDLE

    @pytest.mark.asyncio
    async def test_stale_save_does_not_touch_new_template(self, coordinator, saved_model, mock_repository, scheduler):
        saves = BlockingSaves()
        mock_repository.save.side_effect = saves.save
        saved_model.update_metadata({"description": "old"})
        scheduler.advance(2.0)

        saved_model.load(ReportTemplate(id="template_other000001", name="Other", updated_at=SAVED_AT))
        saves.release.set()
        await coordinator.flush()

        assert saved_model.template.id == "template_other000001"
        assert saved_model.template.updated_at == SAVED_AT
        assert not saved_model.is_dirty


class TestScheduler:
    """Timer abstraction."""

    def test_scheduler_is_abstract(self):
        with pytest.raises(TypeError):
            Scheduler()

    def test_manual_scheduler_cancel(self, scheduler):
        fired = []
        cancel = scheduler.schedule(lambda: fired.append(scheduler.now), 1.0)

        cancel()
        scheduler.advance(5)

        assert fired == []
        assert scheduler.active_timers == 0

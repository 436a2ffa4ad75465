"""
Autosave Persistence Coordinator

Debounced saving of a TemplateModel to a TemplateRepository.

States:
- IDLE: nothing pending
- SCHEDULED: a debounce timer is armed
- SAVING: a save request is in flight (at most one, ever)
- ERROR: the last save failed; edits are kept and the next mutation or
  manual save retries

Every mutation in edit mode restarts the debounce timer. A timer that fires
while a save is in flight queues exactly one follow-up save holding the
snapshot taken at fire time; later triggers replace that snapshot instead
of queueing more saves. Failures are never retried automatically: a failed
save drops a queued autosave, but a queued manual save still runs.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional

from report_builder.core.config import get_settings
from report_builder.core.exceptions import (
    ConfigurationError,
    PersistenceError,
    TemplateSaveError,
    TemplateValidationError,
)
from report_builder.schemas.template import ReportTemplate
from report_builder.services.repository import TemplateRepository
from report_builder.services.template_model import SCOPE_TEMPLATE, MutationResult, TemplateModel

logger = logging.getLogger(__name__)

Cancel = Callable[[], None]


class SaveStatus(Enum):
    """Save-status signal exposed to the UI."""
    IDLE = "idle"
    SCHEDULED = "scheduled"
    SAVING = "saving"
    ERROR = "error"


class Scheduler(ABC):
    """Timer abstraction: ``schedule(callback, delay)`` returns a cancel function."""

    @abstractmethod
    def schedule(self, callback: Callable[[], None], delay: float) -> Cancel:
        pass


class AsyncioScheduler(Scheduler):
    """Runs callbacks on the running event loop via ``call_later``."""

    def schedule(self, callback: Callable[[], None], delay: float) -> Cancel:
        handle = asyncio.get_running_loop().call_later(delay, callback)
        return handle.cancel


class _PendingSave:
    """One save request, running or queued as the follow-up."""

    def __init__(self, snapshot: ReportTemplate, revision: int, manual: bool = False):
        self.snapshot = snapshot
        self.revision = revision
        self.manual = manual
        self.waiters: List[asyncio.Future] = []

    def resolve(self, error: Optional[PersistenceError] = None) -> None:
        for waiter in self.waiters:
            if waiter.done():
                continue
            if error is None:
                waiter.set_result(None)
            else:
                waiter.set_exception(error)
        self.waiters = []


class AutosaveCoordinator:
    """
    Coordinates autosave and manual save for one TemplateModel.

    Usage:
        coordinator = AutosaveCoordinator(model, repository)
        model.update_metadata({"name": "Q3 pipeline"})   # schedules a save
        await coordinator.save_now()                     # manual save
    """

    def __init__(
        self,
        model: TemplateModel,
        repository: TemplateRepository,
        scheduler: Optional[Scheduler] = None,
        debounce_seconds: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        settings = get_settings()
        self.debounce_seconds = settings.AUTOSAVE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        if self.debounce_seconds <= 0:
            raise ConfigurationError(
                "Autosave debounce window must be positive",
                details={"debounce_seconds": self.debounce_seconds},
            )

        self.model = model
        self.repository = repository
        self.scheduler = scheduler or AsyncioScheduler()
        self.enabled = settings.AUTOSAVE_ENABLED if enabled is None else enabled

        self.last_error: Optional[PersistenceError] = None
        self.save_count = 0

        self._state = SaveStatus.IDLE
        self._cancel_timer: Optional[Cancel] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._pending: Optional[_PendingSave] = None
        self._epoch = 0  # bumped whenever the model is replaced wholesale
        self._status_listeners: List[Callable[[SaveStatus], None]] = []
        self._unsubscribe = model.subscribe(self._on_model_changed)

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def status(self) -> SaveStatus:
        return self._state

    @property
    def is_saving(self) -> bool:
        return self._in_flight is not None

    @property
    def has_pending_save(self) -> bool:
        return self._pending is not None

    @property
    def timer_armed(self) -> bool:
        return self._cancel_timer is not None

    def on_status_change(self, listener: Callable[[SaveStatus], None]) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    def notify_mutation(self) -> None:
        """Restart the debounce window after an edit."""
        if not self.enabled or not self.model.is_edit_mode:
            return

        self._stop_timer()
        self._cancel_timer = self.scheduler.schedule(self._on_timer_fired, self.debounce_seconds)
        if self._in_flight is None:
            self._set_state(SaveStatus.SCHEDULED)
        logger.debug(f"Autosave scheduled in {self.debounce_seconds}s")

    async def save_now(self) -> ReportTemplate:
        """
        Manual save, bypassing the debounce timer.

        Queues as the follow-up when a save is already in flight and waits
        for that save, which runs even if the in-flight save fails.

        Returns:
            Snapshot of the saved template

        Raises:
            TemplateValidationError: If the template has validation errors
            PersistenceError: If this save failed
        """
        validation = self.model.validation
        if not validation.is_valid:
            raise TemplateValidationError(validation, message="Fix validation errors before saving")

        self._stop_timer()
        pending = self._trigger_save(manual=True)
        waiter = asyncio.get_running_loop().create_future()
        pending.waiters.append(waiter)
        await waiter
        return self.model.snapshot()

    async def flush(self) -> None:
        """Wait until no save is in flight or queued."""
        while self._in_flight is not None:
            await self._in_flight

    def cancel(self) -> None:
        """Drop the armed timer and any queued follow-up. An in-flight save still completes."""
        self._stop_timer()
        if self._pending is not None:
            self._pending.resolve()
            self._pending = None
        if self._in_flight is None and self._state == SaveStatus.SCHEDULED:
            self._set_state(SaveStatus.IDLE)

    def close(self) -> None:
        """Detach from the model."""
        self.cancel()
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_model_changed(self, model: TemplateModel, result: MutationResult) -> None:
        if result.scope == SCOPE_TEMPLATE:
            # A different template now lives in the session
            self._epoch += 1
            self.cancel()
            return
        self.notify_mutation()

    def _on_timer_fired(self) -> None:
        self._cancel_timer = None

        if not self.model.validation.is_valid:
            logger.info(
                f"Autosave skipped: template has errors {self.model.validation.error_codes()}"
            )
            if self._in_flight is None and self._state == SaveStatus.SCHEDULED:
                self._set_state(SaveStatus.IDLE)
            return

        self._trigger_save()

    def _trigger_save(self, manual: bool = False) -> _PendingSave:
        if self._in_flight is not None:
            # Coalesce: at most one follow-up, holding the latest snapshot
            if self._pending is None:
                self._pending = _PendingSave(self.model.snapshot(), self.model.revision, manual)
            else:
                self._pending.snapshot = self.model.snapshot()
                self._pending.revision = self.model.revision
                self._pending.manual = self._pending.manual or manual
            logger.debug("Save in flight; follow-up save queued")
            return self._pending

        pending = _PendingSave(self.model.snapshot(), self.model.revision, manual)
        self._start_save(pending)
        return pending

    def _start_save(self, pending: _PendingSave) -> None:
        self.save_count += 1
        self._set_state(SaveStatus.SAVING)
        self._in_flight = asyncio.ensure_future(self._run_save(pending, self._epoch))

    async def _run_save(self, pending: _PendingSave, epoch: int) -> None:
        template = pending.snapshot
        logger.info(f"Saving template {template.id or '<new>'} (revision {pending.revision})")

        try:
            result = await self.repository.save(template)
        except PersistenceError as e:
            self._on_save_failed(pending, e)
            return
        except Exception as e:
            self._on_save_failed(pending, TemplateSaveError(
                f"Template save failed: {str(e)}",
                details={"template_id": template.id, "exception": type(e).__name__},
            ))
            return

        if epoch == self._epoch:
            self.model.mark_saved(result, pending.revision)
        else:
            logger.info(f"Template {result.id} saved after the session switched templates")
        self.last_error = None
        self._in_flight = None
        logger.info(f"Template {result.id} saved at {result.updated_at.isoformat()}")
        pending.resolve()

        if self._pending is not None:
            self._start_follow_up()
            return

        self._set_state(SaveStatus.SCHEDULED if self._cancel_timer else SaveStatus.IDLE)

    def _start_follow_up(self) -> None:
        follow_up = self._pending
        self._pending = None
        # The queued snapshot predates the last response; carry the current id/version
        follow_up.snapshot = follow_up.snapshot.model_copy(update={
            "id": self.model.template.id,
            "updated_at": self.model.template.updated_at,
            "created_at": self.model.template.created_at,
        })
        self._start_save(follow_up)

    def _on_save_failed(self, pending: _PendingSave, error: PersistenceError) -> None:
        logger.warning(f"Save failed [{error.error_code}]: {error.message}; local edits kept")
        self.last_error = error
        self._in_flight = None
        pending.resolve(error)

        if self._pending is not None:
            if self._pending.manual:
                logger.info("Running queued manual save after failure")
                self._start_follow_up()
                return
            logger.debug("Dropping queued follow-up save after failure")
            self._pending = None
        self._set_state(SaveStatus.ERROR)

    def _stop_timer(self) -> None:
        if self._cancel_timer is not None:
            self._cancel_timer()
            self._cancel_timer = None

    def _set_state(self, state: SaveStatus) -> None:
        if state == self._state:
            return
        logger.debug(f"Save status {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._status_listeners):
            listener(state)

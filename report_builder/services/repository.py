"""
Template Repository

Persistence contract consumed by the builder, plus an in-memory
implementation with optimistic version checking. Storage backends live
outside the engine; they implement ``TemplateRepository``.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from report_builder.core.exceptions import TemplateNotFoundError, VersionConflictError
from report_builder.schemas.template import ReportTemplate, SaveResult, TemplateCategory

logger = logging.getLogger(__name__)


class TemplateRepository(ABC):
    """Stores report templates."""

    @abstractmethod
    async def get(self, template_id: str) -> ReportTemplate:
        """
        Load a template.

        Raises:
            TemplateNotFoundError: If no template has this id
        """

    @abstractmethod
    async def save(self, template: ReportTemplate) -> SaveResult:
        """
        Create (no id) or update (id set) a template.

        Raises:
            VersionConflictError: If the stored copy changed since ``template.updated_at``
            PersistenceError: On any other storage failure
        """

    @abstractmethod
    async def delete(self, template_id: str) -> None:
        """Remove a template."""

    @abstractmethod
    async def list(
        self,
        category: Optional[TemplateCategory] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ReportTemplate]:
        """List stored templates, optionally filtered by category."""


class InMemoryTemplateRepository(TemplateRepository):
    """
    Dict-backed repository.

    ``updated_at`` doubles as the version: an update whose ``updated_at``
    differs from the stored one is rejected with ``VersionConflictError``.
    ``latency`` (seconds) simulates a slow backend.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._templates: Dict[str, ReportTemplate] = {}
        self.save_count = 0

    async def get(self, template_id: str) -> ReportTemplate:
        await self._wait()
        template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template.model_copy(deep=True)

    async def save(self, template: ReportTemplate) -> SaveResult:
        await self._wait()
        self.save_count += 1
        now = datetime.now(timezone.utc)

        if template.id is None:
            template_id = f"template_{uuid.uuid4().hex[:12]}"
            stored = template.model_copy(deep=True, update={
                "id": template_id,
                "created_at": now,
                "updated_at": now,
            })
            self._templates[template_id] = stored
            logger.info(f"Created report template {template_id} '{template.name}'")
            return SaveResult(id=template_id, updated_at=now, created_at=now)

        existing = self._templates.get(template.id)
        if existing is None:
            raise TemplateNotFoundError(template.id)
        if existing.updated_at != template.updated_at:
            raise VersionConflictError(template.id, details={
                "stored_updated_at": existing.updated_at.isoformat() if existing.updated_at else None,
                "incoming_updated_at": template.updated_at.isoformat() if template.updated_at else None,
            })

        # Versions must strictly increase even when two saves land in the same tick
        if existing.updated_at and now <= existing.updated_at:
            now = existing.updated_at + timedelta(microseconds=1)

        stored = template.model_copy(deep=True, update={
            "created_at": existing.created_at,
            "updated_at": now,
        })
        self._templates[template.id] = stored
        logger.info(f"Updated report template {template.id} '{template.name}'")
        return SaveResult(id=template.id, updated_at=now, created_at=existing.created_at)

    async def delete(self, template_id: str) -> None:
        await self._wait()
        if self._templates.pop(template_id, None) is None:
            raise TemplateNotFoundError(template_id)
        logger.info(f"Deleted report template {template_id}")

    async def list(
        self,
        category: Optional[TemplateCategory] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[ReportTemplate]:
        await self._wait()
        templates = list(self._templates.values())
        if category is not None:
            templates = [t for t in templates if t.category == TemplateCategory(category)]
        return [t.model_copy(deep=True) for t in templates[skip:skip + limit]]

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def add(self, template: ReportTemplate) -> ReportTemplate:
        """Seed a template synchronously (fixtures, system templates)."""
        now = datetime.now(timezone.utc)
        stored = template.model_copy(deep=True, update={
            "id": template.id or f"template_{uuid.uuid4().hex[:12]}",
            "created_at": template.created_at or now,
            "updated_at": template.updated_at or now,
        })
        self._templates[stored.id] = stored
        return stored.model_copy(deep=True)

    async def _wait(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

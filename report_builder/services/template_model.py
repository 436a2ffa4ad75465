"""
Template Model

Mutable aggregate around one ``ReportTemplate`` being edited. Every mutation
replaces the affected list or sub-model (nothing is changed in place), bumps
the revision, re-runs validation synchronously and notifies subscribers.
Rejected mutations change nothing and notify nobody.

Usage:
    model = TemplateModel()
    model.subscribe(lambda model, result: print(result.action))
    model.add_field(catalog_field)
    model.add_filter(model.template.fields[0].id)
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from report_builder.core.config import get_settings
from report_builder.schemas.base import merge_model, normalize_keys
from report_builder.schemas.catalog import BuilderField
from report_builder.schemas.template import (
    FIELD_WIDTHS,
    ReportTemplate,
    SaveResult,
    TemplateField,
    TemplateFilter,
)
from report_builder.schemas.validation import ValidationResult
from report_builder.schemas.visualization import (
    COMMON_ATTRIBUTES,
    VisualizationType,
    default_visualization,
)
from report_builder.services.operator_registry import OperatorRegistry, operator_registry
from report_builder.services.reorder import is_valid_move, reorder
from report_builder.services.validation import ValidationEngine

logger = logging.getLogger(__name__)

# Rejection codes
DUPLICATE_FIELD = "DUPLICATE_FIELD"
FIELD_NOT_FOUND = "FIELD_NOT_FOUND"
FILTER_NOT_FOUND = "FILTER_NOT_FOUND"
INVALID_INDEX = "INVALID_INDEX"
INVALID_LIST = "INVALID_LIST"
INVALID_AGGREGATION = "INVALID_AGGREGATION"
INVALID_FORMAT = "INVALID_FORMAT"
INVALID_WIDTH = "INVALID_WIDTH"
INVALID_VALUE = "INVALID_VALUE"
INVALID_VISUALIZATION_TYPE = "INVALID_VISUALIZATION_TYPE"
NO_CHANGES = "NO_CHANGES"

# Mutation scopes
SCOPE_FIELDS = "fields"
SCOPE_FILTERS = "filters"
SCOPE_VISUALIZATION = "visualization"
SCOPE_METADATA = "metadata"
SCOPE_TEMPLATE = "template"

# Catalog-derived attributes are frozen once a field is added
PROTECTED_FIELD_ATTRIBUTES = {"id", "name", "type", "source", "allowed_aggregations", "allowed_formats"}
PROTECTED_FILTER_ATTRIBUTES = {"id"}
METADATA_ATTRIBUTES = {"name", "description", "category", "tags", "is_public"}

REORDERABLE_LISTS = (SCOPE_FIELDS, SCOPE_FILTERS)


@dataclass
class MutationResult:
    """Outcome of one model operation."""
    applied: bool
    action: str
    scope: str
    code: Optional[str] = None
    message: str = ""
    item_id: Optional[str] = None
    related_ids: List[str] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.applied


Listener = Callable[["TemplateModel", MutationResult], None]


def generate_id(prefix: str, existing: Set[str]) -> str:
    """Short unique id, e.g. ``field_3f2a9c0d1b7e``."""
    while True:
        candidate = f"{prefix}_{uuid.uuid4().hex[:12]}"
        if candidate not in existing:
            return candidate


def new_template() -> ReportTemplate:
    """Empty template for create mode."""
    return ReportTemplate(
        visualization=default_visualization(get_settings().DEFAULT_VISUALIZATION_TYPE)
    )


class TemplateModel:
    """Editable report template with validation and change notification."""

    def __init__(
        self,
        template: Optional[ReportTemplate] = None,
        registry: Optional[OperatorRegistry] = None,
        validator: Optional[ValidationEngine] = None,
    ):
        self.registry = registry or operator_registry
        self.validator = validator or ValidationEngine(self.registry)
        self._template = template.model_copy(deep=True) if template else new_template()
        self._listeners: List[Listener] = []
        self.revision = 0
        self.saved_revision = 0
        self.validation: ValidationResult = self.validator.validate(self._template)

    # ------------------------------------------------------------------
    # Read-only projection
    # ------------------------------------------------------------------

    @property
    def template(self) -> ReportTemplate:
        """Current template. Treat as read-only; use ``snapshot()`` to keep a copy."""
        return self._template

    @property
    def is_edit_mode(self) -> bool:
        return self._template.id is not None

    @property
    def is_dirty(self) -> bool:
        return self.revision != self.saved_revision

    def snapshot(self) -> ReportTemplate:
        return self._template.model_copy(deep=True)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def add_field(self, catalog_field: BuilderField) -> MutationResult:
        """Copy a catalog field into the template."""
        if catalog_field.name in self._template.field_names():
            return self._reject(
                "add_field", SCOPE_FIELDS, DUPLICATE_FIELD,
                f"Field '{catalog_field.name}' is already in the template",
            )

        template_field = TemplateField(
            id=generate_id("field", {f.id for f in self._template.fields}),
            name=catalog_field.name,
            display_name=catalog_field.label or catalog_field.name,
            type=catalog_field.type,
            source=catalog_field.source,
            label=catalog_field.label,
            description=catalog_field.description,
            allowed_aggregations=catalog_field.allowed_aggregations,
            allowed_formats=catalog_field.allowed_formats,
        )
        updated = self._template.model_copy(
            update={"fields": [*self._template.fields, template_field]}
        )
        return self._commit(updated, MutationResult(
            applied=True, action="add_field", scope=SCOPE_FIELDS, item_id=template_field.id,
        ))

    def remove_field(self, field_id: str) -> MutationResult:
        """Remove a field and every filter that references it."""
        if self._template.get_field(field_id) is None:
            return self._reject("remove_field", SCOPE_FIELDS, FIELD_NOT_FOUND, f"Unknown field {field_id}")

        kept_filters = [f for f in self._template.filters if f.field_id != field_id]
        removed_filters = [f.id for f in self._template.filters if f.field_id == field_id]
        updated = self._template.model_copy(update={
            "fields": [f for f in self._template.fields if f.id != field_id],
            "filters": kept_filters,
        })
        if removed_filters:
            logger.debug(f"Removing field {field_id} cascades to filters {removed_filters}")
        return self._commit(updated, MutationResult(
            applied=True, action="remove_field", scope=SCOPE_FIELDS,
            item_id=field_id, related_ids=removed_filters,
        ))

    def update_field(self, field_id: str, changes: Dict[str, Any]) -> MutationResult:
        """Merge display attributes into a field. Identity and type cannot change."""
        current = self._template.get_field(field_id)
        if current is None:
            return self._reject("update_field", SCOPE_FIELDS, FIELD_NOT_FOUND, f"Unknown field {field_id}")

        normalized, ignored = normalize_keys(TemplateField, changes)
        for key in list(normalized):
            if key in PROTECTED_FIELD_ATTRIBUTES:
                ignored.append(key)
                del normalized[key]
        if not normalized:
            return self._reject("update_field", SCOPE_FIELDS, NO_CHANGES, "No editable attributes given", ignored)

        if "aggregation" in normalized and normalized["aggregation"] not in current.allowed_aggregations:
            return self._reject(
                "update_field", SCOPE_FIELDS, INVALID_AGGREGATION,
                f"Aggregation '{normalized['aggregation']}' is not allowed for {current.name}",
            )
        if "format" in normalized and normalized["format"] not in current.allowed_formats:
            return self._reject(
                "update_field", SCOPE_FIELDS, INVALID_FORMAT,
                f"Format '{normalized['format']}' is not allowed for {current.name}",
            )
        if "width" in normalized and normalized["width"] not in FIELD_WIDTHS:
            return self._reject(
                "update_field", SCOPE_FIELDS, INVALID_WIDTH, f"Unknown width '{normalized['width']}'",
            )

        try:
            merged = merge_model(current, normalized)
        except PydanticValidationError as e:
            return self._reject("update_field", SCOPE_FIELDS, INVALID_VALUE, str(e))

        updated = self._template.model_copy(update={
            "fields": [merged if f.id == field_id else f for f in self._template.fields]
        })
        return self._commit(updated, MutationResult(
            applied=True, action="update_field", scope=SCOPE_FIELDS, item_id=field_id, ignored=ignored,
        ))

    def reorder_fields(self, from_index: int, to_index: int) -> MutationResult:
        return self._reorder(SCOPE_FIELDS, from_index, to_index)

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def add_filter(self, field_id: str, label: Optional[str] = None) -> MutationResult:
        """Add a filter on a template field with the type's default operator."""
        template_field = self._template.get_field(field_id)
        if template_field is None:
            return self._reject("add_filter", SCOPE_FILTERS, FIELD_NOT_FOUND, f"Unknown field {field_id}")

        operator = self.registry.default_operator(template_field.type)
        template_filter = TemplateFilter(
            id=generate_id("filter", {f.id for f in self._template.filters}),
            field_id=field_id,
            operator=operator,
            value=self.registry.empty_value(operator),
            label=label or f"Filter on {template_field.display_name}",
        )
        updated = self._template.model_copy(
            update={"filters": [*self._template.filters, template_filter]}
        )
        return self._commit(updated, MutationResult(
            applied=True, action="add_filter", scope=SCOPE_FILTERS, item_id=template_filter.id,
        ))

    def remove_filter(self, filter_id: str) -> MutationResult:
        if self._template.get_filter(filter_id) is None:
            return self._reject("remove_filter", SCOPE_FILTERS, FILTER_NOT_FOUND, f"Unknown filter {filter_id}")

        updated = self._template.model_copy(update={
            "filters": [f for f in self._template.filters if f.id != filter_id]
        })
        return self._commit(updated, MutationResult(
            applied=True, action="remove_filter", scope=SCOPE_FILTERS, item_id=filter_id,
        ))

    def update_filter(self, filter_id: str, changes: Dict[str, Any]) -> MutationResult:
        """
        Merge attributes into a filter.

        Pointing the filter at a field of another type resets the operator to
        that type's default and clears the value. Changing only the operator
        resets the value to the new operator's empty default.
        """
        current = self._template.get_filter(filter_id)
        if current is None:
            return self._reject("update_filter", SCOPE_FILTERS, FILTER_NOT_FOUND, f"Unknown filter {filter_id}")

        normalized, ignored = normalize_keys(TemplateFilter, changes)
        for key in list(normalized):
            if key in PROTECTED_FILTER_ATTRIBUTES:
                ignored.append(key)
                del normalized[key]
        if not normalized:
            return self._reject("update_filter", SCOPE_FILTERS, NO_CHANGES, "No editable attributes given", ignored)

        new_field_id = normalized.get("field_id", current.field_id)
        if new_field_id != current.field_id:
            new_field = self._template.get_field(new_field_id)
            if new_field is None:
                return self._reject(
                    "update_filter", SCOPE_FILTERS, FIELD_NOT_FOUND, f"Unknown field {new_field_id}",
                )
            old_field = self._template.get_field(current.field_id)
            if old_field is None or old_field.type != new_field.type:
                for key in ("operator", "value"):
                    if key in normalized:
                        ignored.append(key)
                operator = self.registry.default_operator(new_field.type)
                normalized["operator"] = operator
                normalized["value"] = self.registry.empty_value(operator)
        if "operator" in normalized and normalized["operator"] != current.operator and "value" not in normalized:
            normalized["value"] = self.registry.empty_value(normalized["operator"])

        try:
            merged = merge_model(current, normalized)
        except PydanticValidationError as e:
            return self._reject("update_filter", SCOPE_FILTERS, INVALID_VALUE, str(e))

        updated = self._template.model_copy(update={
            "filters": [merged if f.id == filter_id else f for f in self._template.filters]
        })
        return self._commit(updated, MutationResult(
            applied=True, action="update_filter", scope=SCOPE_FILTERS, item_id=filter_id, ignored=ignored,
        ))

    def reorder_filters(self, from_index: int, to_index: int) -> MutationResult:
        return self._reorder(SCOPE_FILTERS, from_index, to_index)

    def move(self, list_id: str, from_index: int, to_index: int) -> MutationResult:
        """
        Apply a drag-and-drop move ``(list_id, from_index, to_index)``.

        Only moves within ``fields`` or within ``filters`` are accepted.
        """
        if list_id not in REORDERABLE_LISTS:
            return self._reject("move", SCOPE_TEMPLATE, INVALID_LIST, f"Cannot reorder list '{list_id}'")
        return self._reorder(list_id, from_index, to_index)

    # ------------------------------------------------------------------
    # Visualization
    # ------------------------------------------------------------------

    def set_visualization(self, viz_type: str) -> MutationResult:
        """Switch visualization type. Only common attributes survive the switch."""
        try:
            target = VisualizationType(viz_type)
        except ValueError:
            return self._reject(
                "set_visualization", SCOPE_VISUALIZATION, INVALID_VISUALIZATION_TYPE,
                f"Unknown visualization type '{viz_type}'",
            )

        current = self._template.visualization
        common = {name: getattr(current, name) for name in COMMON_ATTRIBUTES}
        updated = self._template.model_copy(update={
            "visualization": default_visualization(target, **common)
        })
        return self._commit(updated, MutationResult(
            applied=True, action="set_visualization", scope=SCOPE_VISUALIZATION, item_id=target.value,
        ))

    def update_visualization(self, changes: Dict[str, Any]) -> MutationResult:
        """Shallow-merge settings into the current visualization without changing its type."""
        current = self._template.visualization
        normalized, ignored = normalize_keys(type(current), changes)
        if "type" in normalized:
            del normalized["type"]
            ignored.append("type")
        if not normalized:
            return self._reject(
                "update_visualization", SCOPE_VISUALIZATION, NO_CHANGES,
                "No attributes of this visualization given", ignored,
            )
        if ignored:
            logger.debug(f"Ignoring attributes not valid for {current.type} visualization: {ignored}")

        try:
            merged = merge_model(current, normalized)
        except PydanticValidationError as e:
            return self._reject("update_visualization", SCOPE_VISUALIZATION, INVALID_VALUE, str(e))

        updated = self._template.model_copy(update={"visualization": merged})
        return self._commit(updated, MutationResult(
            applied=True, action="update_visualization", scope=SCOPE_VISUALIZATION, ignored=ignored,
        ))

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def update_metadata(self, changes: Dict[str, Any]) -> MutationResult:
        """Update name, description, category, tags or is_public."""
        normalized, ignored = normalize_keys(ReportTemplate, changes)
        for key in list(normalized):
            if key not in METADATA_ATTRIBUTES:
                ignored.append(key)
                del normalized[key]
        if not normalized:
            return self._reject("update_metadata", SCOPE_METADATA, NO_CHANGES, "No metadata given", ignored)

        try:
            updated = merge_model(self._template, normalized)
        except PydanticValidationError as e:
            return self._reject("update_metadata", SCOPE_METADATA, INVALID_VALUE, str(e))

        return self._commit(updated, MutationResult(
            applied=True, action="update_metadata", scope=SCOPE_METADATA, ignored=ignored,
        ))

    # ------------------------------------------------------------------
    # Wholesale replacement
    # ------------------------------------------------------------------

    def load(self, template: ReportTemplate) -> MutationResult:
        """Replace the model with a stored template. The result is clean (not dirty)."""
        result = self._commit(template.model_copy(deep=True), MutationResult(
            applied=True, action="load", scope=SCOPE_TEMPLATE, item_id=template.id,
        ), clean=True)
        logger.info(f"Loaded template {template.id or '<new>'} '{template.name}'")
        return result

    def reset(self) -> MutationResult:
        """Discard everything and start an empty template."""
        return self._commit(new_template(), MutationResult(
            applied=True, action="reset", scope=SCOPE_TEMPLATE,
        ), clean=True)

    def apply_prebuilt(self, prebuilt: ReportTemplate) -> MutationResult:
        """Start a new template from a prebuilt one: its metadata and visualization, no fields."""
        template = ReportTemplate(
            name=prebuilt.name,
            description=prebuilt.description,
            category=prebuilt.category,
            visualization=prebuilt.visualization.model_copy(deep=True),
            tags=list(prebuilt.tags),
        )
        return self._commit(template, MutationResult(
            applied=True, action="apply_prebuilt", scope=SCOPE_TEMPLATE, item_id=prebuilt.id,
        ))

    def clone(self, name: Optional[str] = None) -> MutationResult:
        """Turn the current template into an unsaved, private copy."""
        source_id = self._template.id
        template = self._template.model_copy(deep=True, update={
            "id": None,
            "name": name or self._template.name,
            "is_public": False,
            "created_at": None,
            "updated_at": None,
            "created_by": None,
        })
        return self._commit(template, MutationResult(
            applied=True, action="clone", scope=SCOPE_TEMPLATE, item_id=source_id,
        ))

    # ------------------------------------------------------------------
    # Persistence reconciliation
    # ------------------------------------------------------------------

    def mark_saved(self, result: SaveResult, revision: int) -> None:
        """
        Reconcile the repository response into the model.

        ``revision`` is the model revision the saved snapshot was taken at;
        the model stays dirty when it changed after that snapshot.
        """
        self._template = self._template.model_copy(update={
            "id": result.id,
            "updated_at": result.updated_at,
            "created_at": self._template.created_at or result.created_at or result.updated_at,
        })
        if revision > self.saved_revision:
            self.saved_revision = revision

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reorder(self, list_id: str, from_index: int, to_index: int) -> MutationResult:
        items = getattr(self._template, list_id)
        action = f"reorder_{list_id}"
        if not is_valid_move(items, from_index, to_index):
            return self._reject(action, list_id, INVALID_INDEX, f"Move {from_index} -> {to_index} out of range")

        updated = self._template.model_copy(update={list_id: reorder(items, from_index, to_index)})
        return self._commit(updated, MutationResult(
            applied=True, action=action, scope=list_id, item_id=items[from_index].id,
        ))

    def _commit(self, template: ReportTemplate, result: MutationResult, clean: bool = False) -> MutationResult:
        self._template = template
        self.revision += 1
        if clean:
            self.saved_revision = self.revision
        self.validation = self.validator.validate(template)
        logger.debug(
            f"{result.action} applied (revision {self.revision}, "
            f"{len(self.validation.errors)} errors, {len(self.validation.warnings)} warnings)"
        )
        for listener in list(self._listeners):
            listener(self, result)
        return result

    def _reject(
        self,
        action: str,
        scope: str,
        code: str,
        message: str,
        ignored: Optional[List[str]] = None,
    ) -> MutationResult:
        logger.debug(f"{action} rejected: [{code}] {message}")
        return MutationResult(
            applied=False, action=action, scope=scope, code=code, message=message, ignored=ignored or [],
        )

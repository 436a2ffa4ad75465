"""
Template Validation Engine

Pure, synchronous validation of a report template. Safe to run after every
mutation: no I/O, no state. All rules run and every violation is collected
in rule order.
"""

from typing import List, Optional

from report_builder.core.config import get_settings
from report_builder.schemas.template import ReportTemplate
from report_builder.schemas.validation import ValidationIssue, ValidationResult
from report_builder.schemas.visualization import chart_field_references
from report_builder.services.operator_registry import OperatorRegistry, operator_registry

# Error codes
NAME_REQUIRED = "NAME_REQUIRED"
NAME_TOO_LONG = "NAME_TOO_LONG"
FIELDS_REQUIRED = "FIELDS_REQUIRED"
AXES_REQUIRED = "AXES_REQUIRED"
GROUP_BY_REQUIRED = "GROUP_BY_REQUIRED"
METRIC_FIELD_REQUIRED = "METRIC_FIELD_REQUIRED"
FILTER_FIELD_MISSING = "FILTER_FIELD_MISSING"
INVALID_OPERATOR = "INVALID_OPERATOR"
VALUE_REQUIRED = "VALUE_REQUIRED"

# Warning codes
NO_FILTERS = "NO_FILTERS"
NO_VISIBLE_FIELDS = "NO_VISIBLE_FIELDS"
UNKNOWN_CHART_FIELD = "UNKNOWN_CHART_FIELD"


class ValidationEngine:
    """
    Validates templates against the operator registry.

    Rules (errors):
    1. name non-blank, and no longer than the configured maximum
    2. at least one field
    3. bar/line need both axes, pie needs a grouping field, metric needs a metric field
    4. every filter references an existing template field
    5. every filter operator supports the referenced field's type
    6. operators that need a value carry one of the right shape

    Warnings never block saving.
    """

    def __init__(self, registry: Optional[OperatorRegistry] = None, max_name_length: Optional[int] = None):
        self.registry = registry or operator_registry
        self.max_name_length = max_name_length or get_settings().TEMPLATE_NAME_MAX_LENGTH

    def validate(self, template: ReportTemplate) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        self._check_name(template, errors)

        if not template.fields:
            errors.append(ValidationIssue(
                field="fields", code=FIELDS_REQUIRED,
                message="At least one field must be selected",
            ))

        self._check_visualization(template, errors)
        self._check_filters(template, errors)
        self._collect_warnings(template, warnings)

        return ValidationResult(errors=errors, warnings=warnings)

    def _check_name(self, template: ReportTemplate, errors: List[ValidationIssue]) -> None:
        if not template.name.strip():
            errors.append(ValidationIssue(
                field="name", code=NAME_REQUIRED,
                message="Report name is required",
            ))
        elif len(template.name) > self.max_name_length:
            errors.append(ValidationIssue(
                field="name", code=NAME_TOO_LONG,
                message=f"Report name must be at most {self.max_name_length} characters",
            ))

    def _check_visualization(self, template: ReportTemplate, errors: List[ValidationIssue]) -> None:
        viz = template.visualization

        if viz.type in ("bar", "line"):
            missing = [axis for axis in ("x_axis", "y_axis") if not getattr(viz, axis)]
            if missing:
                errors.append(ValidationIssue(
                    field="visualization." + ",".join(missing), code=AXES_REQUIRED,
                    message="X and Y axes are required for bar and line charts",
                ))
        elif viz.type == "pie":
            if not (viz.group_by or viz.category_field):
                errors.append(ValidationIssue(
                    field="visualization.group_by", code=GROUP_BY_REQUIRED,
                    message="A grouping field is required for pie charts",
                ))
        elif viz.type == "metric":
            if not viz.metric_field:
                errors.append(ValidationIssue(
                    field="visualization.metric_field", code=METRIC_FIELD_REQUIRED,
                    message="A metric field is required for metric visualizations",
                ))

    def _check_filters(self, template: ReportTemplate, errors: List[ValidationIssue]) -> None:
        fields_by_id = {field.id: field for field in template.fields}
        resolved = []

        for index, template_filter in enumerate(template.filters):
            field = fields_by_id.get(template_filter.field_id)
            if field is None:
                errors.append(ValidationIssue(
                    field=f"filters[{index}].field_id", code=FILTER_FIELD_MISSING,
                    message=f"Filter {index + 1} references a field that is not in the template",
                ))
            else:
                resolved.append((index, template_filter, field))

        for index, template_filter, field in resolved:
            if not self.registry.is_supported(template_filter.operator, field.type):
                errors.append(ValidationIssue(
                    field=f"filters[{index}].operator", code=INVALID_OPERATOR,
                    message=(
                        f"Operator '{template_filter.operator}' is not valid for "
                        f"{field.type.value} field '{field.display_name}'"
                    ),
                ))

        for index, template_filter, field in resolved:
            spec = self.registry.get(template_filter.operator)
            if spec is None or not spec.requires_value:
                continue
            if not self.registry.has_valid_value(template_filter.operator, template_filter.value, field.type):
                errors.append(ValidationIssue(
                    field=f"filters[{index}].value", code=VALUE_REQUIRED,
                    message=f"Filter {index + 1} needs a value for '{spec.label}'",
                ))

    def _collect_warnings(self, template: ReportTemplate, warnings: List[ValidationIssue]) -> None:
        if template.fields and not template.filters:
            warnings.append(ValidationIssue(
                field="filters", code=NO_FILTERS,
                message="No filters configured; the report will include every row",
            ))

        if template.fields and not any(field.visible for field in template.fields):
            warnings.append(ValidationIssue(
                field="fields", code=NO_VISIBLE_FIELDS,
                message="All fields are hidden",
            ))

        names = set(template.field_names())
        for attr, referenced in chart_field_references(template.visualization).items():
            if referenced not in names:
                warnings.append(ValidationIssue(
                    field=f"visualization.{attr}", code=UNKNOWN_CHART_FIELD,
                    message=f"'{referenced}' is not one of the selected fields",
                ))


def validate(template: ReportTemplate, registry: Optional[OperatorRegistry] = None) -> ValidationResult:
    """Validate ``template`` with a default engine."""
    return ValidationEngine(registry).validate(template)

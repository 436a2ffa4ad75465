"""Validation result schemas."""
from typing import List

from pydantic import Field, computed_field

from report_builder.schemas.base import WireModel


class ValidationIssue(WireModel):
    field: str = Field(..., description="Template attribute the issue points at")
    message: str
    code: str


class ValidationResult(WireModel):
    """Errors block save and preview; warnings are advisory."""
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    @computed_field
    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error_codes(self) -> List[str]:
        return [issue.code for issue in self.errors]

    def warning_codes(self) -> List[str]:
        return [issue.code for issue in self.warnings]

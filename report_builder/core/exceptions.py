"""
Custom Exception Hierarchy for the Report Builder Engine

Provides domain-specific exceptions with structured error codes, logging,
and user-facing messages for the builder session and its collaborators.
"""

import logging
from typing import Optional, Dict, Any, TYPE_CHECKING
from datetime import datetime, timezone

if TYPE_CHECKING:
    from report_builder.schemas.validation import ValidationResult

logger = logging.getLogger(__name__)


class ReportBuilderException(Exception):
    """
    Base exception for all report builder errors.

    Attributes:
        error_code: Unique error identifier for logging/debugging
        message: User-facing error message
        details: Technical details for logging
        recoverable: Whether the editing session can continue unchanged
    """

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc).isoformat()

        # Log the error with full context
        logger.error(
            f"[{error_code}] {message}",
            extra={
                "error_code": error_code,
                "details": self.details,
                "timestamp": self.timestamp
            }
        )

        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for display."""
        return {
            "error": self.error_code,
            "message": self.message,
            "timestamp": self.timestamp
        }


# ============================================================================
# Validation Errors
# ============================================================================

class TemplateValidationError(ReportBuilderException):
    """The template has blocking validation errors (blocks save and preview)."""

    def __init__(
        self,
        result: "ValidationResult",
        message: str = "Template has validation errors",
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}
        details["codes"] = [issue.code for issue in result.errors]
        self.result = result

        super().__init__(
            message=message,
            error_code="TEMPLATE_INVALID",
            details=details
        )


# ============================================================================
# Catalog Errors
# ============================================================================

class CatalogError(ReportBuilderException):
    """Errors reading the field catalog."""

    def __init__(
        self,
        message: str = "Field catalog request failed",
        error_code: str = "CATALOG_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details
        )


class CatalogUnavailableError(CatalogError):
    """The data-source list could not be loaded."""

    def __init__(
        self,
        message: str = "Data sources are unavailable",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CATALOG_UNAVAILABLE",
            details=details
        )


class DataSourceNotFoundError(CatalogError):
    """Unknown data source id."""

    def __init__(
        self,
        source_id: str,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}
        details["source_id"] = source_id

        super().__init__(
            message=f"Data source {source_id} not found",
            error_code="DATA_SOURCE_NOT_FOUND",
            details=details
        )


class CatalogFieldNotFoundError(CatalogError):
    """Unknown field within a data source."""

    def __init__(
        self,
        source_id: str,
        field_name: str,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}
        details["source_id"] = source_id
        details["field_name"] = field_name

        super().__init__(
            message=f"Field {field_name} not found in data source {source_id}",
            error_code="CATALOG_FIELD_NOT_FOUND",
            details=details
        )


# ============================================================================
# Persistence Errors
# ============================================================================

class PersistenceError(ReportBuilderException):
    """Errors saving or loading templates. Local edits are never discarded."""

    def __init__(
        self,
        message: str = "Template persistence failed",
        error_code: str = "PERSISTENCE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details
        )


class TemplateSaveError(PersistenceError):
    """A save request failed."""

    def __init__(
        self,
        message: str = "Template save failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="TEMPLATE_SAVE_FAILED",
            details=details
        )


class VersionConflictError(PersistenceError):
    """The stored template changed since it was loaded. No auto-merge."""

    def __init__(
        self,
        template_id: str,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}
        details["template_id"] = template_id

        super().__init__(
            message=f"Template {template_id} was modified by another session",
            error_code="VERSION_CONFLICT",
            details=details
        )


class TemplateNotFoundError(PersistenceError):
    """Template not found in the repository."""

    def __init__(
        self,
        template_id: str,
        details: Optional[Dict[str, Any]] = None
    ):
        if details is None:
            details = {}
        details["template_id"] = template_id

        super().__init__(
            message=f"Report template {template_id} not found",
            error_code="TEMPLATE_NOT_FOUND",
            details=details
        )


# ============================================================================
# Preview Errors
# ============================================================================

class PreviewError(ReportBuilderException):
    """Errors generating preview data. Independent of save state."""

    def __init__(
        self,
        message: str = "Preview generation failed",
        error_code: str = "PREVIEW_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details
        )


class PreviewQueryError(PreviewError):
    """The data-query executor failed."""

    def __init__(
        self,
        message: str = "Preview query failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="PREVIEW_QUERY_FAILED",
            details=details
        )


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(ReportBuilderException):
    """Configuration errors."""

    def __init__(
        self,
        message: str = "Configuration error",
        error_code: str = "CONFIGURATION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            details=details,
            recoverable=False
        )

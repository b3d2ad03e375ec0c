"""Form submission validation, analytics and export pipeline."""

from .services import (
    ExportError,
    ExportHistoryTracker,
    ExportJobQueue,
    ExportService,
    FormAnalyticsService,
    SerializationError,
    filter_submissions,
    serialize,
    validate_field,
    validate_form,
)

__version__ = "1.0.0"

__all__ = [
    "validate_field",
    "validate_form",
    "FormAnalyticsService",
    "filter_submissions",
    "serialize",
    "SerializationError",
    "ExportService",
    "ExportError",
    "ExportJobQueue",
    "ExportHistoryTracker",
]

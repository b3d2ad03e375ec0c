"""Services for the form submission pipeline."""

from .export_history import DynamoDBHistoryStore, ExportHistoryTracker
from .export_queue import ExportJobQueue
from .export_report import analyze_data_quality, generate_summary_report
from .export_service import ExportError, ExportService
from .field_analytics import aggregate_field_values
from .filter_service import filter_submissions
from .form_analytics_service import FormAnalyticsService
from .serializers import SerializationError, serialize
from .validation_service import validate_field, validate_form

__all__ = [
    "validate_field",
    "validate_form",
    "aggregate_field_values",
    "FormAnalyticsService",
    "filter_submissions",
    "serialize",
    "SerializationError",
    "ExportService",
    "ExportError",
    "ExportJobQueue",
    "ExportHistoryTracker",
    "DynamoDBHistoryStore",
    "analyze_data_quality",
    "generate_summary_report",
]

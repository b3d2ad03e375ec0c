"""Data models for the form submission pipeline."""

from .analytics import FieldAnalyticsSummary
from .export import (
    ExportFormat,
    ExportHistoryEntry,
    ExportJob,
    ExportJobRequest,
    ExportOptions,
    ExportResult,
    ExportStatistics,
    FieldSource,
    JobStatus,
    QueueStatus,
    SerializedExport,
)
from .field import FieldDefinition, FieldType, FileDescriptor, FormDefinition
from .submission import (
    DateRange,
    FilterCriteria,
    SortOrder,
    SubmissionPage,
    SubmissionRecord,
    SubmissionStatus,
    UserContext,
    ValidationReport,
)

__all__ = [
    "FieldType",
    "FieldDefinition",
    "FileDescriptor",
    "FormDefinition",
    "SubmissionRecord",
    "SubmissionStatus",
    "UserContext",
    "DateRange",
    "FilterCriteria",
    "SortOrder",
    "SubmissionPage",
    "ValidationReport",
    "FieldAnalyticsSummary",
    "ExportFormat",
    "ExportOptions",
    "ExportResult",
    "SerializedExport",
    "FieldSource",
    "JobStatus",
    "ExportJob",
    "ExportJobRequest",
    "QueueStatus",
    "ExportHistoryEntry",
    "ExportStatistics",
]

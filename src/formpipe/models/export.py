"""Export, job queue and export history data models."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from ulid import ULID

from .field import FieldDefinition
from .submission import SubmissionRecord

RESERVED_DELIMITERS = frozenset({'"', "\n", "\r"})


class ExportFormat(str, Enum):
    """Supported export encodings."""

    CSV = "csv"
    EXCEL_CSV = "excel-csv"
    JSON = "json"


class FieldSource(str, Enum):
    """Where the effective field schema of an export came from."""

    STORED = "stored"  # embedded in the most recent submission
    FALLBACK = "fallback"  # supplied by the caller
    INFERRED = "inferred"  # synthesized from submission data


class JobStatus(str, Enum):
    """Export job lifecycle: queued -> processing -> completed | failed."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportOptions(BaseModel):
    """Per-export encoding options."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    filename: str | None = Field(None, description="Explicit filename; generated if absent")
    include_headers: bool = True
    delimiter: str = Field(default=",", min_length=1, max_length=1)
    include_form_data: bool = True
    include_metadata: bool = True
    include_field_definitions: bool = True
    pretty_print: bool = True
    use_stored_fields: bool = Field(
        default=True, description="Prefer the schema embedded in submissions"
    )
    include_timestamp: bool = Field(
        default=True, description="Append a timestamp to generated filenames"
    )

    @field_validator("delimiter")
    @classmethod
    def validate_delimiter(cls, value: str) -> str:
        """Quote and line-break characters would make cells ambiguous."""
        if value in RESERVED_DELIMITERS:
            raise ValueError(f"Delimiter {value!r} is not allowed")
        return value


class ExportResult(BaseModel):
    """Statistics of one serializer invocation, consumed by the queue and history."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, use_enum_values=True
    )

    success: bool = True
    format: ExportFormat
    filename: str
    record_count: int = Field(..., ge=0)
    size_bytes: int = Field(..., ge=0)
    field_source: FieldSource
    mime_type: str
    location: str | None = Field(None, description="Where the file was delivered")


class SerializedExport(BaseModel):
    """Encoded export file plus its statistics."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    content: str
    filename: str
    mime_type: str
    stats: ExportResult

    def to_bytes(self) -> bytes:
        return self.content.encode("utf-8")


class ExportJobRequest(BaseModel):
    """Payload of one export job."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    submissions: list[SubmissionRecord] = Field(default_factory=list)
    field_schema: list[FieldDefinition] = Field(default_factory=list)
    format: ExportFormat = ExportFormat.CSV
    options: ExportOptions = Field(default_factory=ExportOptions)


class ExportJob(BaseModel):
    """State of a queued export."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(ULID()))
    status: JobStatus = JobStatus.QUEUED
    payload: ExportJobRequest
    result: ExportResult | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def summary(self) -> dict[str, Any]:
        """Job state without the submission payload."""
        return self.model_dump(mode="json", by_alias=True, exclude={"payload"}) | {
            "format": self.payload.format.value,
            "recordCount": len(self.payload.submissions),
        }


class QueueStatus(BaseModel):
    """Job counts by state."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    queued: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
    is_processing: bool = False


class ExportHistoryEntry(BaseModel):
    """Metadata of one finished export."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, use_enum_values=True
    )

    id: str = Field(default_factory=lambda: str(ULID()))
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    format: ExportFormat
    record_count: int = 0
    filename: str
    size_bytes: int = 0
    success: bool = True
    field_source: FieldSource | None = None

    @classmethod
    def from_result(cls, result: ExportResult) -> "ExportHistoryEntry":
        return cls(
            format=result.format,
            record_count=result.record_count,
            filename=result.filename,
            size_bytes=result.size_bytes,
            success=result.success,
            field_source=result.field_source,
        )


class ExportStatistics(BaseModel):
    """Aggregate statistics over the export history."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_exports: int = 0
    total_records: int = 0
    successful_exports: int = 0
    failed_exports: int = 0
    format_breakdown: dict[str, int] = Field(default_factory=dict)
    field_source_breakdown: dict[str, int] = Field(default_factory=dict)
    average_records_per_export: int = 0
    recent_exports: list[ExportHistoryEntry] = Field(default_factory=list)


class FormExport(BaseModel):
    """One file of a multi-form export; form fields are None for a combined file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    form_id: str | None = None
    form_title: str | None = None
    export: SerializedExport


class MultiFormExport(BaseModel):
    """Outcome of exporting several forms, one file each or one combined file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    separate_files: bool
    exports: list[FormExport] = Field(default_factory=list)
    total_forms: int = 0
    total_submissions: int = 0

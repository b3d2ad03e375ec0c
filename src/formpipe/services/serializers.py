"""Export codecs: CSV, Excel-compatible CSV and JSON."""

import csv
import io
import json
import logging
from collections import Counter
from datetime import UTC, date, datetime
from typing import Any, Callable

from formpipe.models.export import (
    ExportFormat,
    ExportOptions,
    ExportResult,
    FieldSource,
    SerializedExport,
)
from formpipe.models.field import FieldDefinition
from formpipe.models.submission import SubmissionRecord
from formpipe.services.schema_resolver import (
    SchemaError,
    coerce_fields,
    resolve_effective_schema,
)
from formpipe.utils.constants import (
    DEFAULT_FILENAME_BASES,
    FILE_EXTENSIONS,
    MIME_TYPES,
    UTF8_BOM,
)

logger = logging.getLogger(__name__)

CSV_FIXED_HEADERS = ["Submission ID", "Submitted At"]
LIST_SEPARATOR = ", "


class SerializationError(ValueError):
    """Raised when submissions cannot be encoded in the requested format."""

    pass


def column_label(field: FieldDefinition) -> str:
    return field.label or field.id


def format_cell(value: Any) -> str:
    """Flatten one data value into CSV cell text."""
    if value is None:
        return ""
    if isinstance(value, dict):
        # File descriptors are exported by name
        return str(value.get("name", "")) if "name" in value else json.dumps(value)
    if isinstance(value, (list, tuple)):
        return LIST_SEPARATOR.join(format_cell(item) for item in value)
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def generate_filename(
    base_name: str, extension: str, include_timestamp: bool = True, now: datetime | None = None
) -> str:
    """``<base>_<YYYY-MM-DD>_<HH-MM-SS>.<ext>``, or ``<base>.<ext>`` without timestamp."""
    if not include_timestamp:
        return f"{base_name}.{extension}"
    moment = now or datetime.now(UTC)
    return f"{base_name}_{moment:%Y-%m-%d}_{moment:%H-%M-%S}.{extension}"


def _encode_csv(
    submissions: list[SubmissionRecord],
    fields: list[FieldDefinition],
    options: ExportOptions,
) -> str:
    buffer = io.StringIO()
    writer = csv.writer(
        buffer,
        delimiter=options.delimiter,
        quoting=csv.QUOTE_ALL,
        lineterminator="\n",
    )

    if options.include_headers:
        writer.writerow(CSV_FIXED_HEADERS + [column_label(field) for field in fields])

    for submission in submissions:
        row = [submission.id, submission.submitted_at.isoformat()]
        row.extend(format_cell(submission.data.get(field.id)) for field in fields)
        writer.writerow(row)

    return buffer.getvalue()


def _encode_excel_csv(
    submissions: list[SubmissionRecord],
    fields: list[FieldDefinition],
    options: ExportOptions,
) -> str:
    return UTF8_BOM + _encode_csv(submissions, fields, options)


def _field_definition_json(field: FieldDefinition) -> dict[str, Any]:
    definition = {
        "id": field.id,
        "label": column_label(field),
        "type": field.type.value,
        "required": field.required,
    }
    if field.options:
        definition["options"] = list(field.options)
    if field.generated:
        definition["generated"] = True
    return definition


def json_data_keys(fields: list[FieldDefinition]) -> dict[str, str]:
    """Field id -> key in exported ``data``: the label, or "label (id)" when labels collide."""
    label_counts = Counter(column_label(field) for field in fields)
    keys = {}
    for field in fields:
        label = column_label(field)
        keys[field.id] = label if label_counts[label] == 1 else f"{label} ({field.id})"
    return keys


def _submission_json(
    submission: SubmissionRecord,
    fields: list[FieldDefinition],
    options: ExportOptions,
    data_keys: dict[str, str],
) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": submission.id,
        "formId": submission.form_id,
        "submittedAt": submission.submitted_at.isoformat(),
    }

    if options.include_metadata:
        item["metadata"] = {
            "formTitle": submission.form_title,
            "status": submission.status,
            "flags": sorted(submission.flags),
            "notes": list(submission.notes),
            "source": (
                submission.user_context.source_label if submission.user_context else None
            )
            or "web",
            "hasStoredFields": submission.has_embedded_schema,
        }

    if options.include_form_data:
        data = {}
        for field in fields:
            if field.id in submission.data:
                data[data_keys[field.id]] = submission.data[field.id]
        item["data"] = data

    if options.include_field_definitions:
        item["fieldDefinitions"] = [_field_definition_json(field) for field in fields]

    return item


def _encode_json(
    submissions: list[SubmissionRecord],
    fields: list[FieldDefinition],
    options: ExportOptions,
) -> str:
    data_keys = json_data_keys(fields)
    records = [_submission_json(s, fields, options, data_keys) for s in submissions]
    return json.dumps(
        records,
        indent=2 if options.pretty_print else None,
        ensure_ascii=False,
        default=str,
    )


ENCODERS: dict[ExportFormat, Callable[..., str]] = {
    ExportFormat.CSV: _encode_csv,
    ExportFormat.EXCEL_CSV: _encode_excel_csv,
    ExportFormat.JSON: _encode_json,
}


def serialize(
    submissions: list[SubmissionRecord],
    fields: list[FieldDefinition | dict[str, Any]] | None,
    export_format: ExportFormat | str,
    options: ExportOptions | None = None,
    now: datetime | None = None,
) -> SerializedExport:
    """Encode submissions and report export statistics.

    Args:
        submissions: Records to export, in output order
        fields: Caller-supplied fallback schema
        export_format: csv, excel-csv or json
        options: Encoding options (defaults apply when omitted)
        now: Timestamp used for the generated filename

    Returns:
        SerializedExport with content, filename, MIME type and stats

    Raises:
        SerializationError: Unsupported format or malformed field schema
    """
    try:
        fmt = ExportFormat(export_format)
    except ValueError as e:
        raise SerializationError(f"Unsupported export format: {export_format}") from e

    options = options or ExportOptions()
    try:
        fallback_fields = coerce_fields(fields)
    except SchemaError as e:
        raise SerializationError(str(e)) from e

    effective_fields, source = resolve_effective_schema(
        submissions, fallback_fields, options.use_stored_fields
    )
    content = ENCODERS[fmt](submissions, effective_fields, options)

    filename = resolve_filename(fmt, options, now)
    mime_type = MIME_TYPES[fmt.value]
    stats = ExportResult(
        success=True,
        format=fmt,
        filename=filename,
        record_count=len(submissions),
        size_bytes=len(content.encode("utf-8")),
        field_source=FieldSource(source),
        mime_type=mime_type,
    )
    logger.info(
        f"Serialized {stats.record_count} submissions as {fmt.value} "
        f"({stats.size_bytes} bytes, {source.value} fields)"
    )
    return SerializedExport(content=content, filename=filename, mime_type=mime_type, stats=stats)


def resolve_filename(
    fmt: ExportFormat,
    options: ExportOptions,
    now: datetime | None = None,
    base_name: str | None = None,
) -> str:
    """The explicit filename with its extension ensured, else a generated one."""
    extension = FILE_EXTENSIONS[fmt.value]
    if options.filename:
        if options.filename.lower().endswith(f".{extension}"):
            return options.filename
        return f"{options.filename}.{extension}"
    return generate_filename(
        base_name or DEFAULT_FILENAME_BASES[fmt.value], extension, options.include_timestamp, now
    )

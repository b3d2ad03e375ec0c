"""Export orchestration: validate, serialize, deliver and record history."""

import json
import logging
import re
from datetime import UTC, datetime
from typing import Any, Callable

from formpipe.models.export import (
    ExportFormat,
    ExportJobRequest,
    ExportOptions,
    ExportResult,
    FieldSource,
    FormExport,
    MultiFormExport,
    SerializedExport,
)
from formpipe.models.field import FieldDefinition, FormDefinition
from formpipe.models.submission import FilterCriteria, SubmissionRecord
from formpipe.services.delivery import DeliveryError, FileDelivery
from formpipe.services.export_history import ExportHistoryTracker
from formpipe.services.export_report import analyze_data_quality, generate_summary_report
from formpipe.services.filter_service import filter_submissions
from formpipe.services.schema_resolver import SchemaError, coerce_fields
from formpipe.services.serializers import (
    SerializationError,
    generate_filename,
    resolve_filename,
    serialize,
)
from formpipe.utils.constants import (
    FILE_EXTENSIONS,
    MAX_EXPORT_RECORDS,
    MIME_TYPES,
    NO_MATCHING_SUBMISSIONS,
)
from formpipe.utils.number_utils import format_file_size, round_half_up

logger = logging.getLogger(__name__)

# Rough bytes per field per record, used for size estimates only
ESTIMATED_FIELD_BYTES = {
    ExportFormat.CSV: 20,
    ExportFormat.EXCEL_CSV: 20,
    ExportFormat.JSON: 50,
}
STORED_SCHEMA_OVERHEAD = {
    ExportFormat.CSV: 1.1,
    ExportFormat.EXCEL_CSV: 1.1,
    ExportFormat.JSON: 1.3,
}
REPORT_FILENAME_BASE = "submissions_report"
COMBINED_FILENAME_BASE = "all_submissions"


def _slug(text: str) -> str:
    """Filename-safe form of a form title."""
    return re.sub(r"[^A-Za-z0-9_-]+", "_", text).strip("_") or "form"


class ExportError(Exception):
    """An export could not be produced or delivered."""

    pass


class ExportService:
    """Runs exports end to end for direct requests and for queued jobs."""

    def __init__(
        self,
        history: ExportHistoryTracker,
        delivery: FileDelivery | None = None,
        max_records: int = MAX_EXPORT_RECORDS,
        clock: Callable[[], datetime] | None = None,
    ):
        self.history = history
        self.delivery = delivery
        self.max_records = max_records
        self.clock = clock or (lambda: datetime.now(UTC))

    def validate_export_request(
        self, submissions: list[SubmissionRecord], export_format: ExportFormat | str
    ) -> list[str]:
        """Problems that prevent an export; empty when the request is exportable."""
        errors = []
        if not submissions:
            errors.append("No submissions to export")
        if len(submissions) > self.max_records:
            errors.append(f"Too many submissions. Maximum allowed: {self.max_records}")

        try:
            ExportFormat(export_format)
        except ValueError:
            errors.append(f"Unsupported export format: {export_format}")

        if submissions and not any(s.data or s.has_embedded_schema for s in submissions):
            errors.append("Submissions contain no field definitions or form data")
        return errors

    async def export_submissions(
        self,
        submissions: list[SubmissionRecord],
        fields: list[FieldDefinition] | None = None,
        export_format: ExportFormat | str = ExportFormat.CSV,
        options: ExportOptions | None = None,
    ) -> SerializedExport:
        """Serialize submissions, deliver the file if a destination is configured.

        Every export that reaches the serializer is recorded in the history,
        including ones whose delivery failed.

        Raises:
            ExportError: The request was invalid, or encoding or delivery failed
        """
        problems = self.validate_export_request(submissions, export_format)
        if problems:
            logger.warning(f"Rejected export request: {problems}")
            raise ExportError(f"Export failed: {', '.join(problems)}")

        try:
            export = serialize(submissions, fields, export_format, options, now=self.clock())
        except SerializationError as e:
            logger.error(f"Failed to serialize {len(submissions)} submissions: {e}")
            raise ExportError(f"Export failed: {e}") from e

        return await self._deliver_and_record(export)

    async def _deliver_and_record(self, export: SerializedExport) -> SerializedExport:
        """Deliver the file if a destination is configured, then record it.

        Failed deliveries are recorded too, as unsuccessful exports.
        """
        if self.delivery is not None:
            try:
                location = await self.delivery.deliver(
                    export.to_bytes(), export.filename, export.mime_type
                )
            except DeliveryError as e:
                await self.history.record(export.stats.model_copy(update={"success": False}))
                raise ExportError(f"Export failed: {e}") from e
            export = export.model_copy(
                update={"stats": export.stats.model_copy(update={"location": location})}
            )

        await self.history.record(export.stats)
        logger.info(
            f"Exported {export.stats.record_count} submissions to {export.filename} "
            f"({format_file_size(export.stats.size_bytes)})"
        )
        return export

    async def export_filtered(
        self,
        submissions: list[SubmissionRecord],
        criteria: FilterCriteria | None,
        fields: list[FieldDefinition] | None = None,
        export_format: ExportFormat | str = ExportFormat.CSV,
        options: ExportOptions | None = None,
    ) -> SerializedExport:
        """Export only the submissions matching ``criteria``.

        Raises:
            ExportError: Nothing matched, or the export itself failed
        """
        matching = filter_submissions(submissions, criteria)
        if not matching:
            raise ExportError(NO_MATCHING_SUBMISSIONS)
        return await self.export_submissions(matching, fields, export_format, options)

    async def export_selected(
        self,
        submissions: list[SubmissionRecord],
        submission_ids: list[str],
        fields: list[FieldDefinition] | None = None,
        export_format: ExportFormat | str = ExportFormat.CSV,
        options: ExportOptions | None = None,
    ) -> SerializedExport:
        """Export the submissions whose ids were selected, in input order."""
        wanted = set(submission_ids)
        selected = [s for s in submissions if s.id in wanted]
        if not selected:
            raise ExportError("No submissions selected for export")
        return await self.export_submissions(selected, fields, export_format, options)

    def analyze_data_quality(
        self,
        submissions: list[SubmissionRecord],
        fields: list[FieldDefinition] | None = None,
    ) -> dict[str, Any]:
        """Enhancement rate, completeness buckets and recommendations for an export."""
        return analyze_data_quality(submissions, fields)

    async def export_summary_report(
        self,
        submissions: list[SubmissionRecord],
        fields: list[FieldDefinition] | None = None,
        export_format: ExportFormat | str = ExportFormat.JSON,
        options: ExportOptions | None = None,
        include_field_analysis: bool = True,
    ) -> SerializedExport:
        """Encode the summary report as a JSON file and deliver it like an export.

        Raises:
            ExportError: No submissions, a non-JSON format or a malformed schema
        """
        if export_format != ExportFormat.JSON:
            fmt_name = getattr(export_format, "value", export_format)
            raise ExportError(f"Unsupported report format: {fmt_name}")
        if not submissions:
            raise ExportError("Export failed: No submissions to export")

        options = options or ExportOptions()
        try:
            fallback_fields = coerce_fields(fields)
        except SchemaError as e:
            raise ExportError(f"Export failed: {e}") from e

        now = self.clock()
        report = generate_summary_report(
            submissions, fallback_fields, include_field_analysis, now=now
        )
        content = json.dumps(
            report, indent=2 if options.pretty_print else None, ensure_ascii=False
        )
        filename = resolve_filename(ExportFormat.JSON, options, now, REPORT_FILENAME_BASE)
        mime_type = MIME_TYPES[ExportFormat.JSON.value]
        stats = ExportResult(
            format=ExportFormat.JSON,
            filename=filename,
            record_count=len(submissions),
            size_bytes=len(content.encode("utf-8")),
            field_source=FieldSource(report["fieldSource"]),
            mime_type=mime_type,
        )
        export = SerializedExport(
            content=content, filename=filename, mime_type=mime_type, stats=stats
        )
        return await self._deliver_and_record(export)

    async def export_multiple_forms(
        self,
        submissions: list[SubmissionRecord],
        forms: list[FormDefinition] | None = None,
        export_format: ExportFormat | str = ExportFormat.CSV,
        options: ExportOptions | None = None,
        separate_files: bool = True,
    ) -> MultiFormExport:
        """Export submissions of several forms, one file per form or one combined file.

        Submissions are grouped by ``form_id`` in first-seen order. Each form's
        definition, when given, is that file's fallback schema; a combined
        file falls back to the union of all form schemas. Per-form files are
        always named after their form, so ``options.filename`` only names a
        combined file.

        Raises:
            ExportError: Nothing to export, or any single export failed
        """
        if not submissions:
            raise ExportError("Export failed: No submissions to export")
        try:
            fmt = ExportFormat(export_format)
        except ValueError as e:
            raise ExportError(f"Export failed: Unsupported export format: {export_format}") from e

        options = options or ExportOptions()
        forms_by_id = {form.id: form for form in forms or []}
        groups: dict[str, list[SubmissionRecord]] = {}
        for submission in submissions:
            groups.setdefault(submission.form_id, []).append(submission)

        exports = []
        if separate_files:
            used_names: set[str] = set()
            for form_id, group in groups.items():
                form = forms_by_id.get(form_id)
                title = (form.title if form else None) or group[0].form_title or form_id
                base_name = f"{_slug(title)}_submissions"
                if base_name in used_names:
                    base_name = f"{base_name}_{_slug(form_id)}"
                used_names.add(base_name)

                form_options = options.model_copy(
                    update={
                        "filename": generate_filename(
                            base_name,
                            FILE_EXTENSIONS[fmt.value],
                            options.include_timestamp,
                            self.clock(),
                        )
                    }
                )
                export = await self.export_submissions(
                    group, form.fields if form else None, fmt, form_options
                )
                exports.append(FormExport(form_id=form_id, form_title=title, export=export))
        else:
            merged: dict[str, FieldDefinition] = {}
            for form in forms or []:
                for field in form.fields:
                    merged.setdefault(field.id, field)
            combined_options = options.model_copy(
                update={
                    "filename": resolve_filename(
                        fmt, options, self.clock(), COMBINED_FILENAME_BASE
                    )
                }
            )
            export = await self.export_submissions(
                submissions, list(merged.values()) or None, fmt, combined_options
            )
            exports.append(FormExport(export=export))

        logger.info(
            f"Exported {len(submissions)} submissions of {len(groups)} forms "
            f"into {len(exports)} files"
        )
        return MultiFormExport(
            separate_files=separate_files,
            exports=exports,
            total_forms=len(groups),
            total_submissions=len(submissions),
        )

    async def run_job(self, request: ExportJobRequest) -> SerializedExport:
        """Queue processor: run one export job request."""
        return await self.export_submissions(
            request.submissions, request.field_schema, request.format, request.options
        )

    def estimate_export_size(
        self,
        submissions: list[SubmissionRecord],
        export_format: ExportFormat | str = ExportFormat.CSV,
    ) -> dict[str, Any]:
        """Rough output size, extrapolated from the first submission's field count."""
        if not submissions:
            return {"bytes": 0, "kilobytes": 0, "megabytes": 0, "readable": "0 Bytes"}

        fmt = ExportFormat(export_format)
        sample = submissions[0]
        if sample.has_embedded_schema:
            field_count = len(sample.embedded_field_schema)
            per_record = field_count * ESTIMATED_FIELD_BYTES[fmt] * STORED_SCHEMA_OVERHEAD[fmt]
        else:
            per_record = len(sample.data) * ESTIMATED_FIELD_BYTES[fmt]

        total = round_half_up(per_record * len(submissions))
        return {
            "bytes": total,
            "kilobytes": round_half_up(total / 1024),
            "megabytes": round_half_up(total / (1024 * 1024)),
            "readable": format_file_size(total),
        }

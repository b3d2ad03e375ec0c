"""Tests for export orchestration."""

import csv
import io
import json
from unittest.mock import AsyncMock

import pytest

from conftest import FIXED_NOW, make_submission
from formpipe.models.export import ExportFormat, ExportJobRequest, ExportOptions
from formpipe.models.field import FieldDefinition, FormDefinition
from formpipe.models.submission import FilterCriteria
from formpipe.services.delivery import DeliveryError
from formpipe.services.export_history import ExportHistoryTracker
from formpipe.services.export_service import ExportError, ExportService
from formpipe.utils.constants import NO_MATCHING_SUBMISSIONS


@pytest.fixture
def history():
    return ExportHistoryTracker()


@pytest.fixture
def service(history, fixed_clock):
    return ExportService(history, clock=fixed_clock)


class TestValidateExportRequest:
    """Tests for request validation."""

    def test_valid(self, service):
        assert service.validate_export_request([make_submission()], "csv") == []

    def test_empty(self, service):
        assert service.validate_export_request([], "csv") == ["No submissions to export"]

    def test_too_many(self, history):
        service = ExportService(history, max_records=2)
        submissions = [make_submission(f"s{i}") for i in range(3)]
        assert service.validate_export_request(submissions, "json") == [
            "Too many submissions. Maximum allowed: 2"
        ]

    def test_unsupported_format(self, service):
        assert service.validate_export_request([make_submission()], "pdf") == [
            "Unsupported export format: pdf"
        ]

    def test_no_data_anywhere(self, service):
        assert service.validate_export_request([make_submission(data={})], "csv") == [
            "Submissions contain no field definitions or form data"
        ]

    def test_embedded_schema_counts_as_data(self, service):
        submission = make_submission(data={}, embedded_field_schema=[FieldDefinition(id="a")])
        assert service.validate_export_request([submission], "csv") == []


class TestExportSubmissions:
    """Tests for export_submissions."""

    @pytest.mark.asyncio
    async def test_records_history(self, service, history, sample_submissions, contact_fields):
        export = await service.export_submissions(sample_submissions, contact_fields, "csv")

        assert export.filename == "submissions_2024-06-15_12-00-00.csv"
        assert export.stats.location is None
        entries = history.get_history()
        assert len(entries) == 1
        assert entries[0].record_count == 3
        assert entries[0].success is True

    @pytest.mark.asyncio
    async def test_invalid_request_not_recorded(self, service, history):
        with pytest.raises(ExportError, match="Export failed: No submissions to export"):
            await service.export_submissions([], None, "csv")
        assert history.get_history() == []

    @pytest.mark.asyncio
    async def test_bad_schema_is_export_error(self, service):
        with pytest.raises(ExportError, match="Invalid field definition"):
            await service.export_submissions([make_submission()], [{"type": "text"}], "csv")

    @pytest.mark.asyncio
    async def test_delivery_location_on_stats(self, history, fixed_clock, sample_submissions):
        delivery = AsyncMock()
        delivery.deliver.return_value = "s3://exports/exports/file.json"
        service = ExportService(history, delivery=delivery, clock=fixed_clock)

        export = await service.export_submissions(
            sample_submissions, None, ExportFormat.JSON, ExportOptions(filename="file")
        )

        delivery.deliver.assert_awaited_once_with(export.to_bytes(), "file.json", "application/json")
        assert export.stats.location == "s3://exports/exports/file.json"
        assert history.get_history()[0].success is True

    @pytest.mark.asyncio
    async def test_delivery_failure_recorded_as_failed(self, history, sample_submissions):
        delivery = AsyncMock()
        delivery.deliver.side_effect = DeliveryError("bucket gone")
        service = ExportService(history, delivery=delivery)

        with pytest.raises(ExportError, match="bucket gone"):
            await service.export_submissions(sample_submissions, None, "csv")

        entries = history.get_history()
        assert len(entries) == 1
        assert entries[0].success is False
        assert history.get_statistics().failed_exports == 1


class TestFilteredAndSelected:
    """Tests for filtered and selected exports."""

    @pytest.mark.asyncio
    async def test_export_filtered(self, service, sample_submissions):
        export = await service.export_filtered(
            sample_submissions, FilterCriteria(status="reviewed"), None, "json"
        )
        assert export.stats.record_count == 1

    @pytest.mark.asyncio
    async def test_export_filtered_no_matches(self, service, history, sample_submissions):
        with pytest.raises(ExportError) as exc_info:
            await service.export_filtered(sample_submissions, FilterCriteria(status="archived"))
        assert str(exc_info.value) == NO_MATCHING_SUBMISSIONS
        assert history.get_history() == []

    @pytest.mark.asyncio
    async def test_export_selected_keeps_input_order(self, service, sample_submissions):
        export = await service.export_selected(sample_submissions, ["sub-3", "sub-1", "nope"])
        lines = export.content.splitlines()
        assert lines[1].startswith('"sub-1"')
        assert lines[2].startswith('"sub-3"')

    @pytest.mark.asyncio
    async def test_export_selected_nothing(self, service, sample_submissions):
        with pytest.raises(ExportError, match="No submissions selected for export"):
            await service.export_selected(sample_submissions, [])

    @pytest.mark.asyncio
    async def test_run_job(self, service, sample_submissions, contact_fields):
        request = ExportJobRequest(
            submissions=sample_submissions,
            field_schema=contact_fields,
            format=ExportFormat.EXCEL_CSV,
        )
        export = await service.run_job(request)
        assert export.filename.startswith("submissions_excel_")
        assert export.stats.field_source == "fallback"


class TestSummaryReport:
    """Tests for export_summary_report."""

    @pytest.mark.asyncio
    async def test_json_report(self, service, history, sample_submissions, contact_fields):
        export = await service.export_summary_report(sample_submissions, contact_fields)

        assert export.filename == "submissions_report_2024-06-15_12-00-00.json"
        assert export.mime_type == "application/json"
        report = json.loads(export.content)
        assert report["totalSubmissions"] == 3
        assert report["generated"] == FIXED_NOW.isoformat()
        assert export.stats.field_source == "fallback"
        assert export.stats.record_count == 3

        entries = history.get_history()
        assert len(entries) == 1
        assert entries[0].format == "json"

    @pytest.mark.asyncio
    async def test_explicit_filename(self, service, sample_submissions):
        export = await service.export_summary_report(
            sample_submissions, options=ExportOptions(filename="weekly", pretty_print=False)
        )
        assert export.filename == "weekly.json"
        assert "\n" not in export.content

    @pytest.mark.asyncio
    async def test_only_json(self, service, sample_submissions):
        with pytest.raises(ExportError, match="Unsupported report format: csv"):
            await service.export_summary_report(sample_submissions, export_format=ExportFormat.CSV)

    @pytest.mark.asyncio
    async def test_empty(self, service, history):
        with pytest.raises(ExportError, match="No submissions to export"):
            await service.export_summary_report([])
        assert history.get_history() == []

    def test_analyze_data_quality(self, service, sample_submissions, contact_fields):
        analysis = service.analyze_data_quality(sample_submissions, contact_fields)
        assert analysis["enhancementRate"] == 0
        assert analysis["dataCompleteness"]["avgCompletionRate"] == 87


class TestExportMultipleForms:
    """Tests for export_multiple_forms."""

    @pytest.fixture
    def feedback_submission(self):
        return make_submission(
            "fb-1", data={"comment": "Great"}, form_id="feedback", form_title="Feedback!"
        )

    @pytest.mark.asyncio
    async def test_one_file_per_form(
        self, service, history, sample_submissions, contact_form, feedback_submission
    ):
        result = await service.export_multiple_forms(
            sample_submissions + [feedback_submission], [contact_form]
        )

        assert result.separate_files is True
        assert result.total_forms == 2
        assert result.total_submissions == 4
        contact, feedback = result.exports
        assert contact.form_id == "contact-form"
        assert contact.form_title == "Contact Form"
        assert contact.export.filename == "Contact_Form_submissions_2024-06-15_12-00-00.csv"
        assert contact.export.stats.record_count == 3
        assert contact.export.stats.field_source == "fallback"
        assert feedback.form_title == "Feedback!"
        assert feedback.export.filename == "Feedback_submissions_2024-06-15_12-00-00.csv"
        assert feedback.export.stats.field_source == "inferred"
        assert len(history.get_history()) == 2

    @pytest.mark.asyncio
    async def test_same_titles_get_distinct_names(self, service):
        submissions = [
            make_submission("a", form_id="s-1", form_title="Survey"),
            make_submission("b", form_id="s-2", form_title="Survey"),
        ]
        result = await service.export_multiple_forms(
            submissions, options=ExportOptions(include_timestamp=False, filename="ignored")
        )
        assert [e.export.filename for e in result.exports] == [
            "Survey_submissions.csv",
            "Survey_submissions_s-2.csv",
        ]

    @pytest.mark.asyncio
    async def test_combined_file(
        self, service, sample_submissions, contact_form, feedback_submission
    ):
        feedback_form = FormDefinition(
            id="feedback",
            title="Feedback",
            fields=[FieldDefinition(id="comment", label="Comment")],
        )
        result = await service.export_multiple_forms(
            sample_submissions + [feedback_submission],
            [contact_form, feedback_form],
            separate_files=False,
        )

        assert result.separate_files is False
        assert result.total_forms == 2
        (combined,) = result.exports
        assert combined.form_id is None
        assert combined.export.filename == "all_submissions_2024-06-15_12-00-00.csv"
        assert combined.export.stats.record_count == 4
        header = next(csv.reader(io.StringIO(combined.export.content)))
        assert header[2:] == ["Full Name", "Email", "Topic", "Interests", "Rating", "Comment"]

    @pytest.mark.asyncio
    async def test_empty(self, service):
        with pytest.raises(ExportError, match="No submissions to export"):
            await service.export_multiple_forms([])

    @pytest.mark.asyncio
    async def test_unsupported_format(self, service, sample_submissions):
        with pytest.raises(ExportError, match="Unsupported export format: xml"):
            await service.export_multiple_forms(sample_submissions, export_format="xml")


class TestEstimateExportSize:
    """Tests for size estimates."""

    def test_empty(self, service):
        assert service.estimate_export_size([]) == {
            "bytes": 0,
            "kilobytes": 0,
            "megabytes": 0,
            "readable": "0 Bytes",
        }

    def test_from_data_keys(self, service):
        submissions = [make_submission(f"s{i}", {"a": 1, "b": 2}) for i in range(100)]
        estimate = service.estimate_export_size(submissions, "csv")
        assert estimate["bytes"] == 4000
        assert estimate["kilobytes"] == 4
        assert estimate["readable"] == "3.91 KB"

    def test_stored_schema_overhead(self, service):
        schema = [FieldDefinition(id=f"f{i}") for i in range(4)]
        submissions = [
            make_submission(f"s{i}", embedded_field_schema=schema, submitted_at=FIXED_NOW)
            for i in range(10)
        ]
        assert service.estimate_export_size(submissions, "json")["bytes"] == 2600

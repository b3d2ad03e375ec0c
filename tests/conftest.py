"""Pytest configuration and shared fixtures."""

import os
from datetime import UTC, datetime, timedelta

import pytest

from formpipe.models.export import ExportFormat, ExportResult, FieldSource
from formpipe.models.field import FieldDefinition, FieldType, FormDefinition
from formpipe.models.submission import SubmissionRecord, UserContext

# Keep boto3 away from real credentials in every test
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-west-2")

# Saturday, 15 June 2024, noon UTC
FIXED_NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def make_submission(
    submission_id: str = "sub-1",
    data: dict | None = None,
    submitted_at: datetime | None = None,
    **kwargs,
) -> SubmissionRecord:
    """Build a SubmissionRecord with sensible defaults."""
    return SubmissionRecord(
        id=submission_id,
        form_id=kwargs.pop("form_id", "contact-form"),
        form_title=kwargs.pop("form_title", "Contact Form"),
        data=data if data is not None else {"name": "Ada Lovelace"},
        submitted_at=submitted_at or FIXED_NOW - timedelta(hours=1),
        **kwargs,
    )


def make_result(
    export_format: ExportFormat = ExportFormat.CSV,
    record_count: int = 3,
    success: bool = True,
    field_source: FieldSource = FieldSource.FALLBACK,
    filename: str = "submissions.csv",
) -> ExportResult:
    """Build serializer stats as the history tracker receives them."""
    return ExportResult(
        success=success,
        format=export_format,
        filename=filename,
        record_count=record_count,
        size_bytes=record_count * 100,
        field_source=field_source,
        mime_type="text/csv",
    )


@pytest.fixture
def fixed_clock():
    """Clock that always returns FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def contact_fields():
    """Schema of a small contact form."""
    return [
        FieldDefinition(id="name", label="Full Name", type=FieldType.TEXT, required=True),
        FieldDefinition(id="email", label="Email", type=FieldType.EMAIL, required=True),
        FieldDefinition(
            id="topic",
            label="Topic",
            type=FieldType.SELECT,
            options=["Sales", "Support", "Other"],
        ),
        FieldDefinition(
            id="interests",
            label="Interests",
            type=FieldType.CHECKBOX,
            options=["Cloud", "Data", "Security"],
        ),
        FieldDefinition(id="rating", label="Rating", type=FieldType.RATING, max_rating=5),
    ]


@pytest.fixture
def contact_form(contact_fields):
    """Form definition wrapping the contact schema."""
    return FormDefinition(id="contact-form", title="Contact Form", fields=contact_fields)


@pytest.fixture
def sample_submissions():
    """Three contact form submissions spread over the last few days."""
    return [
        make_submission(
            "sub-1",
            {
                "name": "Ada Lovelace",
                "email": "ada@example.com",
                "topic": "Sales",
                "interests": ["Cloud", "Data"],
                "rating": 4,
            },
            submitted_at=FIXED_NOW - timedelta(hours=2),
            status="submitted",
            user_context=UserContext(
                user_agent="Mozilla/5.0 (Windows NT 10.0) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
            ),
        ),
        make_submission(
            "sub-2",
            {
                "name": "Grace Hopper",
                "email": "grace@example.com",
                "topic": "Support",
                "interests": ["Data"],
                "rating": 4,
            },
            submitted_at=FIXED_NOW - timedelta(days=1),
            status="reviewed",
            user_context=UserContext(
                user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Mobile/15E148 Safari/604.1"
            ),
        ),
        make_submission(
            "sub-3",
            {
                "name": "Alan Turing",
                "email": "",
                "topic": "Sales",
                "interests": [],
                "rating": 5,
            },
            submitted_at=FIXED_NOW - timedelta(days=3),
        ),
    ]

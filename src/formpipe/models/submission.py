"""Submission and filtering data models."""

from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .field import FieldDefinition


class SubmissionStatus(str, Enum):
    """Common submission statuses (status is free-form, these are the known ones)."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    ARCHIVED = "archived"


class UserContext(BaseModel):
    """Client context captured at submit time."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_agent: str | None = None
    source_label: str | None = None


class SubmissionRecord(BaseModel):
    """One complete set of answers to a form.

    ``data`` is immutable after creation; only status, flags and notes change.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., description="Submission identifier")
    form_id: str = Field(default="", description="Form this submission answers")
    form_title: str | None = Field(None, description="Form title at submit time")
    data: dict[str, Any] = Field(default_factory=dict, description="Field id -> value")
    embedded_field_schema: list[FieldDefinition] | None = Field(
        None,
        validation_alias=AliasChoices(
            "embeddedFieldSchema", "embedded_field_schema", "formFields"
        ),
        description="Copy of the form schema valid at submission time",
    )
    submitted_at: datetime = Field(..., description="Submission timestamp")
    started_at: datetime | None = Field(
        None,
        validation_alias=AliasChoices("startedAt", "started_at", "startTime"),
        description="When the respondent opened the form",
    )
    status: str | None = Field(None, description="Review status")
    flags: set[str] = Field(default_factory=set)
    notes: list[str] = Field(default_factory=list)
    user_context: UserContext | None = None

    @field_validator("submitted_at", "started_at")
    @classmethod
    def ensure_timezone(cls, value: datetime | None) -> datetime | None:
        """Naive timestamps are stored as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def has_embedded_schema(self) -> bool:
        return bool(self.embedded_field_schema)


class DateRange(BaseModel):
    """Inclusive submitted-at range; either end may be open."""

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def expand_dates(cls, value: Any, info) -> Any:
        """Date-only bounds cover the whole day."""
        if isinstance(value, str) and len(value) == 10:
            value = date.fromisoformat(value)
        if isinstance(value, date) and not isinstance(value, datetime):
            bound = time.max if info.field_name == "end" else time.min
            return datetime.combine(value, bound, tzinfo=UTC)
        return value

    @field_validator("start", "end")
    @classmethod
    def ensure_timezone(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


class FilterCriteria(BaseModel):
    """Filter predicates; all present criteria are ANDed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: str | None = None
    date_range: DateRange | None = None
    flags: set[str] | None = None
    search_term: str | None = None
    field_filters: dict[str, str] | None = Field(
        None, description="Field id -> case-insensitive substring the value must contain"
    )


class SortOrder(str, Enum):
    """Submission list orderings."""

    NEWEST = "newest"
    OLDEST = "oldest"
    ALPHABETICAL = "alphabetical"


class Pagination(BaseModel):
    """Page metadata for a paginated submission list."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    current_page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool
    start_index: int
    end_index: int


class SubmissionPage(BaseModel):
    """One page of submissions."""

    items: list[SubmissionRecord]
    pagination: Pagination


class ValidationReport(BaseModel):
    """Outcome of validating a whole submission against its fields."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_valid: bool
    errors: dict[str, list[str]] = Field(default_factory=dict)

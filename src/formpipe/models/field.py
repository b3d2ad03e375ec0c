"""Form schema data models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FieldType(str, Enum):
    """Closed set of supported field types."""

    TEXT = "text"
    EMAIL = "email"
    TEXTAREA = "textarea"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    FILE = "file"
    RATING = "rating"


TEXT_LIKE_TYPES = frozenset({FieldType.TEXT, FieldType.EMAIL, FieldType.TEXTAREA})
CHOICE_TYPES = frozenset({FieldType.SELECT, FieldType.RADIO})


class FieldDefinition(BaseModel):
    """One schema-defined question in a form, with its type and constraints."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str = Field(..., min_length=1, description="Field identifier, unique within a form")
    label: str = Field(default="", description="Human-readable label")
    type: FieldType = Field(default=FieldType.TEXT, description="Field type")
    required: bool = Field(default=False, description="Whether a value is required")
    options: list[str] | None = Field(None, description="Ordered choices for choice types")

    # number
    min: float | None = Field(None, description="Minimum numeric value")
    max: float | None = Field(None, description="Maximum numeric value")
    step: float | None = Field(None, description="Numeric step, counted from min")
    allow_decimals: bool = Field(default=False, description="Accept non-integer numbers")

    # text
    min_length: int | None = Field(None, ge=0)
    max_length: int | None = Field(None, ge=0)
    pattern: str | None = Field(None, description="Regular expression the value must match")
    pattern_message: str | None = Field(None, description="Custom message for pattern failures")

    # date
    min_date: str | None = Field(None, description="Earliest allowed date (ISO)")
    max_date: str | None = Field(None, description="Latest allowed date (ISO)")
    future_only: bool = False
    past_only: bool = False

    # checkbox
    min_selections: int | None = Field(None, ge=0)
    max_selections: int | None = Field(None, ge=0)

    # file
    max_file_size: float | None = Field(None, description="Maximum size per file in MB")
    max_files: int | None = Field(None, ge=0)
    accepted_types: list[str] | None = Field(
        None, description="Extensions (.pdf), MIME prefixes (image/*) or exact MIME types"
    )

    # rating
    max_rating: float | None = Field(None, description="Top of the rating scale (default 5)")
    min_rating: float | None = None
    allow_half: bool = False

    generated: bool = Field(
        default=False, description="True when synthesized from submission data"
    )

    @property
    def display_label(self) -> str:
        """Label used in messages; falls back to a humanized id ("first_name" -> "First name")."""
        if self.label:
            return self.label
        words = self.id.replace("_", " ").replace("-", " ").strip()
        return words[:1].upper() + words[1:]


class FileDescriptor(BaseModel):
    """Metadata of one uploaded file as stored in submission data."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="", description="Original file name")
    size: int = Field(default=0, ge=0, description="Size in bytes")
    type: str = Field(default="", description="MIME type reported by the uploader")

    @property
    def extension(self) -> str:
        """Lowercase extension (text after the last dot)."""
        return self.name.rsplit(".", 1)[-1].lower()

    @classmethod
    def coerce(cls, value: Any) -> "FileDescriptor":
        """Build a descriptor from a stored mapping, a descriptor, or a bare name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            return cls.model_validate(value)
        return cls(name=str(value))


class FormDefinition(BaseModel):
    """A form and its ordered field schema."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., description="Form identifier")
    title: str = Field(default="", description="Form title")
    fields: list[FieldDefinition] = Field(default_factory=list)

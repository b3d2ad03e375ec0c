"""Analytics data models."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .field import FieldType


class FieldAnalyticsSummary(BaseModel):
    """Response statistics for one field across a submission set."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, use_enum_values=True
    )

    field_id: str
    field_label: str
    field_type: FieldType
    response_count: int = Field(default=0, ge=0)
    response_rate: int = Field(default=0, ge=0, le=100, description="Percent of submissions")
    analytics: dict[str, Any] = Field(
        default_factory=dict, description="Type-specific statistics"
    )

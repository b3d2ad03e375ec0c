"""Effective field schema resolution for exports.

Authoritative schemas win over guesses, in this order:

1. the schema embedded in the most recently submitted record (``stored``)
2. the schema supplied by the caller (``fallback``)
3. definitions inferred from the keys and values seen in ``data`` (``inferred``)
"""

import logging
from typing import Any, Iterable

from pydantic import ValidationError

from formpipe.models.export import FieldSource
from formpipe.models.field import FieldDefinition, FieldType
from formpipe.models.submission import SubmissionRecord
from formpipe.utils.date_utils import parse_datetime

logger = logging.getLogger(__name__)

LONG_TEXT_THRESHOLD = 100


class SchemaError(ValueError):
    """A supplied field schema could not be parsed."""

    pass


def coerce_fields(fields: Iterable[FieldDefinition | dict[str, Any]] | None) -> list[FieldDefinition]:
    """Accept field definitions as models or raw wire dicts."""
    result = []
    for index, field in enumerate(fields or []):
        if isinstance(field, FieldDefinition):
            result.append(field)
            continue
        try:
            result.append(FieldDefinition.model_validate(field))
        except ValidationError as e:
            raise SchemaError(f"Invalid field definition at position {index}: {e}") from e
    return result


def infer_field_type(value: Any) -> FieldType:
    """Best-effort field type for a raw value of a legacy submission."""
    if isinstance(value, (list, tuple)):
        return FieldType.CHECKBOX
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return FieldType.NUMBER
    if isinstance(value, str):
        if "@" in value and "." in value:
            return FieldType.EMAIL
        if "-" in value and parse_datetime(value) is not None:
            return FieldType.DATE
        if len(value) > LONG_TEXT_THRESHOLD:
            return FieldType.TEXTAREA
    return FieldType.TEXT


def infer_fields(submissions: list[SubmissionRecord]) -> list[FieldDefinition]:
    """Synthesize one definition per data key, typed by its first observed value."""
    seen: dict[str, FieldDefinition] = {}
    for submission in submissions:
        for field_id, value in submission.data.items():
            if field_id in seen:
                continue
            seen[field_id] = FieldDefinition(
                id=field_id,
                label=field_id,
                type=infer_field_type(value),
                generated=True,
            )
    return list(seen.values())


def resolve_effective_schema(
    submissions: list[SubmissionRecord],
    fallback_fields: list[FieldDefinition] | None = None,
    use_stored_fields: bool = True,
) -> tuple[list[FieldDefinition], FieldSource]:
    """Pick the schema an export should use and report where it came from.

    Args:
        submissions: Records being exported
        fallback_fields: Schema supplied by the caller
        use_stored_fields: Consider schemas embedded in submissions

    Returns:
        (fields, source)
    """
    if use_stored_fields:
        with_schema = [s for s in submissions if s.has_embedded_schema]
        if with_schema:
            latest = max(with_schema, key=lambda s: s.submitted_at)
            return list(latest.embedded_field_schema), FieldSource.STORED

    if fallback_fields:
        return list(fallback_fields), FieldSource.FALLBACK

    inferred = infer_fields(submissions)
    logger.info(f"No stored or fallback schema, inferred {len(inferred)} fields from data")
    return inferred, FieldSource.INFERRED

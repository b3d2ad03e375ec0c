"""Field and form validation.

Validators are pure functions that return human-readable messages and never
raise: an empty list is the only "valid" signal. Each field type has one
handler registered in ``FIELD_VALIDATORS``; the order of checks inside a
handler is fixed so the output is deterministic.
"""

import logging
import math
import re
from datetime import date, datetime
from functools import lru_cache
from typing import Any, Callable

from pydantic import ValidationError

from formpipe.models.field import FieldDefinition, FieldType, FileDescriptor
from formpipe.models.submission import ValidationReport
from formpipe.utils.date_utils import parse_datetime, start_of_day
from formpipe.utils.number_utils import normalize_number, parse_number

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
STEP_TOLERANCE = 1e-4
DEFAULT_MAX_RATING = 5
BYTES_PER_MB = 1024 * 1024


def _fmt(number: float) -> str:
    """Render a constraint value without a trailing .0."""
    return str(normalize_number(number))


def _plural(count: float, word: str) -> str:
    return f"{_fmt(count)} {word}{'s' if count > 1 else ''}"


def has_value(value: Any, field_type: FieldType) -> bool:
    """Whether ``value`` counts as filled in for a field of ``field_type``."""
    if value is None:
        return False
    if field_type == FieldType.CHECKBOX:
        if isinstance(value, (list, tuple)):
            return len(value) > 0
        return str(value).strip() != ""
    if field_type == FieldType.FILE:
        if isinstance(value, (list, tuple)):
            return len(value) > 0
        return bool(value)
    if field_type in (FieldType.NUMBER, FieldType.RATING):
        return value != ""
    return str(value).strip() != ""


@lru_cache(maxsize=256)
def compile_field_pattern(pattern: str) -> re.Pattern:
    """Compile a schema pattern with ``$`` anchored at the very end of the text.

    Python's ``$`` also matches before a trailing newline; schema patterns are
    written for browsers where it does not, so bare ``$`` becomes ``\\Z``.
    Escaped dollars and dollars inside character classes are left alone.

    Raises:
        re.error: The pattern is not a valid regular expression
    """
    translated = []
    escaped = False
    in_class = False
    for char in pattern:
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == "[" and not in_class:
            in_class = True
        elif char == "]" and in_class:
            in_class = False
        elif char == "$" and not in_class:
            translated.append(r"\Z")
            continue
        translated.append(char)
    return re.compile("".join(translated))


def _to_wall_clock(moment: datetime) -> datetime:
    """Aware datetimes become naive local time so they compare with 'today'."""
    if moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


def _validate_text(value: Any, field: FieldDefinition) -> list[str]:
    errors: list[str] = []
    label = field.display_label
    text = str(value)

    if field.min_length is not None and len(text) < field.min_length:
        errors.append(f"{label} must be at least {field.min_length} characters")
    if field.max_length is not None and len(text) > field.max_length:
        errors.append(f"{label} must not exceed {field.max_length} characters")

    if field.pattern:
        try:
            matched = compile_field_pattern(field.pattern).search(text) is not None
        except re.error as e:
            logger.warning(f"Ignoring invalid pattern on field {field.id}: {e}")
            matched = True
        if not matched:
            errors.append(field.pattern_message or f"{label} format is invalid")

    return errors


def _validate_email(value: Any, field: FieldDefinition) -> list[str]:
    errors = _validate_text(value, field)
    if not EMAIL_PATTERN.fullmatch(str(value)):
        errors.append(f"{field.display_label} must be a valid email address")
    return errors


def _validate_number(value: Any, field: FieldDefinition) -> list[str]:
    label = field.display_label
    number = parse_number(value)
    if number is None:
        return [f"{label} must be a valid number"]

    errors: list[str] = []
    if not field.allow_decimals and not (math.isfinite(number) and number.is_integer()):
        errors.append(f"{label} must be a whole number")
    if field.min is not None and number < field.min:
        errors.append(f"{label} must be at least {_fmt(field.min)}")
    if field.max is not None and number > field.max:
        errors.append(f"{label} must not exceed {_fmt(field.max)}")
    if field.step and field.step > 0 and math.isfinite(number):
        remainder = abs(math.fmod(number - (field.min or 0), field.step))
        if min(remainder, field.step - remainder) > STEP_TOLERANCE:
            errors.append(f"{label} must be in increments of {_fmt(field.step)}")
    return errors


def _validate_date(value: Any, field: FieldDefinition, today: datetime) -> list[str]:
    label = field.display_label
    parsed = parse_datetime(value)
    if parsed is None:
        return [f"{label} must be a valid date"]

    errors: list[str] = []
    moment = _to_wall_clock(parsed)

    if field.future_only and moment <= today:
        errors.append(f"{label} must be a future date")
    if field.past_only and moment >= today:
        errors.append(f"{label} must be a past date")

    if field.min_date:
        min_date = parse_datetime(field.min_date)
        if min_date is not None and moment.date() < _to_wall_clock(min_date).date():
            errors.append(f"{label} must be on or after {min_date.date().isoformat()}")
    if field.max_date:
        max_date = parse_datetime(field.max_date)
        if max_date is not None and moment.date() > _to_wall_clock(max_date).date():
            errors.append(f"{label} must be on or before {max_date.date().isoformat()}")

    return errors


def _validate_single_choice(value: Any, field: FieldDefinition) -> list[str]:
    if field.options is not None and str(value) not in field.options:
        return [f"Please select a valid option for {field.display_label}"]
    return []


def _validate_multiple_choice(value: Any, field: FieldDefinition) -> list[str]:
    label = field.display_label
    if not isinstance(value, (list, tuple)):
        return [f"{label} must be a list of selections"]

    errors: list[str] = []
    if field.min_selections and len(value) < field.min_selections:
        errors.append(
            f"Please select at least {_plural(field.min_selections, 'option')} for {label}"
        )
    if field.max_selections is not None and len(value) > field.max_selections:
        errors.append(
            f"Please select no more than {_plural(field.max_selections, 'option')} for {label}"
        )
    if field.options is not None:
        invalid = [str(v) for v in value if str(v) not in field.options]
        if invalid:
            errors.append(f"Invalid selections in {label}: {', '.join(invalid)}")
    return errors


def _matches_accepted_type(upload: FileDescriptor, accepted: str) -> bool:
    if accepted.startswith("."):
        return upload.name.lower().endswith(accepted.lower())
    if accepted.endswith("/*"):
        family = accepted.split("/", 1)[0]
        return family == "*" or upload.type.startswith(f"{family}/")
    return upload.type == accepted


def _validate_file(value: Any, field: FieldDefinition) -> list[str]:
    label = field.display_label
    files = list(value) if isinstance(value, (list, tuple)) else [value]
    errors: list[str] = []

    if field.max_files and len(files) > field.max_files:
        errors.append(f"{label} allows a maximum of {_plural(field.max_files, 'file')}")

    for index, raw in enumerate(files, start=1):
        try:
            upload = FileDescriptor.coerce(raw)
        except ValidationError:
            errors.append(f"{label}: file {index} is not a valid upload")
            continue

        if field.max_file_size and upload.size > field.max_file_size * BYTES_PER_MB:
            errors.append(
                f"{label}: file {index} exceeds maximum size of {_fmt(field.max_file_size)}MB"
            )
        if field.accepted_types and not any(
            _matches_accepted_type(upload, accepted) for accepted in field.accepted_types
        ):
            errors.append(
                f"{label}: file {index} type not allowed. "
                f"Accepted types: {', '.join(field.accepted_types)}"
            )

    return errors


def _validate_rating(value: Any, field: FieldDefinition) -> list[str]:
    label = field.display_label
    rating = parse_number(value)
    if rating is None:
        return [f"{label} must be a valid rating"]

    errors: list[str] = []
    max_rating = field.max_rating or DEFAULT_MAX_RATING
    if rating < 0 or rating > max_rating:
        errors.append(f"{label} must be between 0 and {_fmt(max_rating)}")
    if field.min_rating is not None and rating < field.min_rating:
        errors.append(f"{label} must be at least {_fmt(field.min_rating)}")
    if field.allow_half:
        if not (rating * 2).is_integer():
            errors.append(f"{label} must be in half-point increments")
    elif not rating.is_integer():
        errors.append(f"{label} must be a whole number")
    return errors


FIELD_VALIDATORS: dict[FieldType, Callable[..., list[str]]] = {
    FieldType.TEXT: _validate_text,
    FieldType.TEXTAREA: _validate_text,
    FieldType.EMAIL: _validate_email,
    FieldType.NUMBER: _validate_number,
    FieldType.DATE: _validate_date,
    FieldType.SELECT: _validate_single_choice,
    FieldType.RADIO: _validate_single_choice,
    FieldType.CHECKBOX: _validate_multiple_choice,
    FieldType.FILE: _validate_file,
    FieldType.RATING: _validate_rating,
}


def validate_field(
    value: Any, field: FieldDefinition, today: date | datetime | None = None
) -> list[str]:
    """Validate one value against its field definition.

    Args:
        value: Raw submitted value
        field: Field definition with constraints
        today: Reference day for futureOnly/pastOnly checks (defaults to local today)

    Returns:
        Error messages in check order; empty when the value is valid
    """
    if not has_value(value, field.type):
        if field.required:
            return [f"{field.display_label} is required"]
        return []

    if field.type == FieldType.DATE:
        if today is None:
            reference = start_of_day(datetime.now())
        elif isinstance(today, datetime):
            reference = start_of_day(_to_wall_clock(today))
        else:
            reference = datetime(today.year, today.month, today.day)
        return _validate_date(value, field, reference)

    return FIELD_VALIDATORS[field.type](value, field)


def validate_form(
    data: dict[str, Any],
    fields: list[FieldDefinition],
    today: date | datetime | None = None,
) -> ValidationReport:
    """Validate every field of a submission; only failing fields get an entry."""
    errors: dict[str, list[str]] = {}
    for field in fields:
        field_errors = validate_field(data.get(field.id), field, today=today)
        if field_errors:
            errors[field.id] = field_errors
    return ValidationReport(is_valid=not errors, errors=errors)


def validate_cross_fields(
    data: dict[str, Any], rules: list[dict[str, Any]]
) -> dict[str, list[str]]:
    """Apply rules that relate two fields to each other.

    Supported rule types:
    - ``confirm_field``: both fields must hold the same value
    - ``date_range``: the first date must be strictly before the second

    Errors are keyed by the second field of each rule; unknown rule types are
    skipped.
    """
    errors: dict[str, list[str]] = {}
    for rule in rules:
        rule_type = rule.get("type")
        rule_fields = rule.get("fields") or []
        if len(rule_fields) != 2:
            logger.warning(f"Skipping cross-field rule {rule_type}: needs exactly two fields")
            continue
        first, second = rule_fields
        message = rule.get("message")

        if rule_type == "confirm_field":
            if data.get(first) != data.get(second):
                errors.setdefault(second, []).append(message or "Fields do not match")
        elif rule_type == "date_range":
            start = parse_datetime(data.get(first))
            end = parse_datetime(data.get(second))
            if start is None or end is None:
                continue
            if _to_wall_clock(start) >= _to_wall_clock(end):
                errors.setdefault(second, []).append(
                    message or "End date must be after start date"
                )
    return errors


def get_validation_summary(errors: dict[str, list[str]]) -> dict[str, Any]:
    """Flatten a validation result into counts and a message list."""
    messages = [message for field_errors in errors.values() for message in field_errors]
    return {
        "hasErrors": bool(messages),
        "totalErrors": len(messages),
        "fieldsWithErrors": sum(1 for field_errors in errors.values() if field_errors),
        "errorMessages": messages,
    }

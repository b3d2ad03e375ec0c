"""Per-field-type statistics over a set of submitted values."""

import logging
from collections import Counter
from typing import Any, Callable

from pydantic import ValidationError

from formpipe.models.field import FieldType, FileDescriptor
from formpipe.utils.date_utils import parse_datetime
from formpipe.utils.number_utils import (
    format_file_size,
    median,
    normalize_number,
    parse_number,
    percentage,
    round_half_up,
)

logger = logging.getLogger(__name__)

UNKNOWN_TYPE_ANALYTICS = {"summary": "no specific analytics"}


def _option_key(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def _distribution(counts: Counter, total: int, key: str = "option") -> list[dict[str, Any]]:
    """Bucket list sorted by count descending; ties keep first-seen order."""
    buckets = [
        {key: option, "count": count, "percentage": percentage(count, total)}
        for option, count in counts.items()
    ]
    return sorted(buckets, key=lambda bucket: bucket["count"], reverse=True)


def _most_popular(counts: Counter) -> str | None:
    best = None
    best_count = 0
    for option, count in counts.items():
        if count > best_count:
            best, best_count = option, count
    return best


def _text_analytics(values: list[Any]) -> dict[str, Any]:
    texts = [str(value) for value in values]
    if not texts:
        return {"averageLength": 0, "averageWordCount": 0}

    lengths = [len(text) for text in texts]
    word_counts = [len(text.split()) for text in texts]
    return {
        "averageLength": round_half_up(sum(lengths) / len(lengths)),
        "averageWordCount": round_half_up(sum(word_counts) / len(word_counts)),
        "longestResponse": max(lengths),
        "shortestResponse": min(lengths),
    }


def _number_analytics(values: list[Any]) -> dict[str, Any]:
    numbers = [n for n in (parse_number(value) for value in values) if n is not None]
    if not numbers:
        return {"average": 0, "min": 0, "max": 0, "median": 0}

    return {
        "average": normalize_number(round_half_up(sum(numbers) / len(numbers), 2)),
        "min": normalize_number(min(numbers)),
        "max": normalize_number(max(numbers)),
        "median": normalize_number(median(numbers)),
    }


def _choice_analytics(values: list[Any]) -> dict[str, Any]:
    counts = Counter(_option_key(value) for value in values)
    return {
        "distribution": _distribution(counts, len(values)),
        "mostPopular": _most_popular(counts),
    }


def _checkbox_analytics(values: list[Any]) -> dict[str, Any]:
    selections = [value if isinstance(value, (list, tuple)) else [value] for value in values]
    counts = Counter(_option_key(option) for selected in selections for option in selected)
    # Percentages are relative to submissions, not to individual selections
    total = len(selections)
    average = sum(len(selected) for selected in selections) / total if total else 0
    return {
        "distribution": _distribution(counts, total),
        "averageSelections": normalize_number(round_half_up(average, 1)),
        "mostPopular": _most_popular(counts),
    }


def _rating_analytics(values: list[Any]) -> dict[str, Any]:
    ratings = [r for r in (parse_number(value) for value in values) if r is not None]
    if not ratings:
        return {"average": 0, "distribution": []}

    counts = Counter(normalize_number(rating) for rating in ratings)
    distribution = [
        {"rating": rating, "count": count, "percentage": percentage(count, len(ratings))}
        for rating, count in sorted(counts.items())
    ]
    return {
        "average": normalize_number(round_half_up(sum(ratings) / len(ratings), 1)),
        "distribution": distribution,
    }


def _date_analytics(values: list[Any]) -> dict[str, Any]:
    dates = sorted(
        parsed.date() for parsed in (parse_datetime(value) for value in values) if parsed
    )
    if not dates:
        return {"earliest": None, "latest": None, "rangeDays": 0}

    earliest, latest = dates[0], dates[-1]
    return {
        "earliest": earliest.isoformat(),
        "latest": latest.isoformat(),
        "rangeDays": (latest - earliest).days + 1,
    }


def _file_analytics(values: list[Any]) -> dict[str, Any]:
    files: list[FileDescriptor] = []
    for value in values:
        for raw in value if isinstance(value, (list, tuple)) else [value]:
            try:
                upload = FileDescriptor.coerce(raw)
            except ValidationError:
                logger.debug(f"Skipping malformed file descriptor: {raw!r}")
                continue
            if upload.name:
                files.append(upload)

    extensions = Counter(upload.extension for upload in files)
    per_submission = len(files) / len(values) if values else 0
    return {
        "totalFiles": len(files),
        "averageFilesPerSubmission": normalize_number(round_half_up(per_submission, 1)),
        "totalSize": format_file_size(sum(upload.size for upload in files)),
        "extensions": [{"ext": ext, "count": count} for ext, count in extensions.items()],
    }


FIELD_ANALYTICS_HANDLERS: dict[FieldType, Callable[[list[Any]], dict[str, Any]]] = {
    FieldType.TEXT: _text_analytics,
    FieldType.EMAIL: _text_analytics,
    FieldType.TEXTAREA: _text_analytics,
    FieldType.NUMBER: _number_analytics,
    FieldType.SELECT: _choice_analytics,
    FieldType.RADIO: _choice_analytics,
    FieldType.CHECKBOX: _checkbox_analytics,
    FieldType.RATING: _rating_analytics,
    FieldType.DATE: _date_analytics,
    FieldType.FILE: _file_analytics,
}


def aggregate_field_values(values: list[Any], field_type: FieldType | str) -> dict[str, Any]:
    """Compute type-specific statistics for the non-empty values of one field.

    Args:
        values: Non-empty values collected across submissions
        field_type: Field type (enum member or its string value)

    Returns:
        Statistics dict whose keys depend on the field type; unknown types get
        a fixed summary placeholder
    """
    try:
        handler = FIELD_ANALYTICS_HANDLERS[FieldType(field_type)]
    except ValueError:
        return dict(UNKNOWN_TYPE_ANALYTICS)
    return handler(list(values))

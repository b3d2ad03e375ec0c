"""Export data-quality analysis and summary reports.

Both look at how much of an export rests on stored schemas (submissions that
carry their own ``embedded_field_schema``) versus legacy records, and how
completely the fields were answered.
"""

import logging
from collections import Counter
from datetime import UTC, datetime
from typing import Any

from formpipe.models.field import FieldDefinition
from formpipe.models.submission import SubmissionRecord
from formpipe.services.form_analytics_service import is_filled
from formpipe.services.schema_resolver import infer_field_type, resolve_effective_schema
from formpipe.utils.number_utils import percentage, round_half_up

logger = logging.getLogger(__name__)

MAX_TRACKED_VALUES = 50
TOP_VALUES = 10
LOW_RESPONSE_RATE = 30
MIN_FIELD_TYPES = 4


def _value_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return str(value)


def analyze_data_quality(
    submissions: list[SubmissionRecord],
    fallback_fields: list[FieldDefinition] | None = None,
) -> dict[str, Any]:
    """Score how well a set of submissions will export.

    Args:
        submissions: Records about to be exported
        fallback_fields: Schema supplied by the caller

    Returns:
        Enhancement rate, field source counts, completeness buckets and
        recommendations, with camelCase keys
    """
    total = len(submissions)
    enhanced = [s for s in submissions if s.has_embedded_schema]

    effective_fields, _ = resolve_effective_schema(submissions, fallback_fields)
    generated = sum(1 for field in effective_fields if field.generated)

    field_types: Counter = Counter()
    for submission in enhanced:
        field_types.update(field.type.value for field in submission.embedded_field_schema)

    complete = partial = empty = 0
    completion_sum = 0.0
    for submission in submissions:
        values = list(submission.data.values())
        rate = sum(1 for value in values if is_filled(value)) / len(values) if values else 0
        if rate == 1:
            complete += 1
        elif rate > 0:
            partial += 1
        else:
            empty += 1
        completion_sum += rate

    enhancement_rate = percentage(len(enhanced), total)
    avg_completion = round_half_up(completion_sum / total * 100) if total else 0
    schema_sizes = sum(len(s.embedded_field_schema) for s in enhanced)

    recommendations = []
    if enhancement_rate < 25:
        recommendations.append(
            "Very low enhancement rate - most exports will use generated field definitions"
        )
    elif enhancement_rate < 50:
        recommendations.append(
            "Moderate enhancement rate - consider migrating more forms "
            "to use stored field definitions"
        )
    if avg_completion < 60:
        recommendations.append(
            "Low data completion rate - exported data may have many empty fields"
        )
    if generated > len(effective_fields) - generated:
        recommendations.append(
            "More generated than stored fields - export quality could be improved "
            "with better field definitions"
        )
    if len(field_types) < 3:
        recommendations.append(
            "Limited field type diversity - consider expanding form complexity"
        )

    return {
        "totalSubmissions": total,
        "enhancedSubmissions": len(enhanced),
        "legacySubmissions": total - len(enhanced),
        "enhancementRate": enhancement_rate,
        "fieldAnalysis": {
            "totalFields": len(effective_fields),
            "storedFields": len(effective_fields) - generated,
            "generatedFields": generated,
            "fieldTypes": dict(field_types),
            "avgFieldsPerSubmission": (
                round_half_up(schema_sizes / len(enhanced)) if enhanced else 0
            ),
        },
        "dataCompleteness": {
            "completeSubmissions": complete,
            "partialSubmissions": partial,
            "emptySubmissions": empty,
            "avgCompletionRate": avg_completion,
        },
        "recommendations": recommendations,
    }


class _FieldUsage:
    """Running response counts for one field id."""

    def __init__(self, field: FieldDefinition, legacy: bool):
        self.label = field.label or field.id
        self.type = field.type.value
        self.required = field.required
        self.legacy = legacy
        self.occurrences = 0
        self.responses = 0
        self.values: dict[str, None] = {}

    def observe(self, value: Any) -> None:
        self.occurrences += 1
        if not is_filled(value):
            return
        self.responses += 1
        if len(self.values) < MAX_TRACKED_VALUES:
            self.values.setdefault(_value_text(value), None)

    def to_dict(self) -> dict[str, Any]:
        usage = {
            "label": self.label,
            "type": self.type,
            "required": self.required,
            "totalOccurrences": self.occurrences,
            "responses": self.responses,
            "emptyResponses": self.occurrences - self.responses,
            "responseRate": percentage(self.responses, self.occurrences),
            "uniqueValueCount": len(self.values),
            "topValues": list(self.values)[:TOP_VALUES],
        }
        if self.legacy:
            usage["legacy"] = True
        return usage


def generate_summary_report(
    submissions: list[SubmissionRecord],
    fallback_fields: list[FieldDefinition] | None = None,
    include_field_analysis: bool = True,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Summarize submissions per form, per field and for overall data quality.

    Stored-schema submissions are analysed against their own schema. Legacy
    submissions are analysed per data key, labelled from the effective schema
    where it knows the key and typed from the value otherwise.

    Args:
        submissions: Records to summarize
        fallback_fields: Schema supplied by the caller
        include_field_analysis: Add data-quality recommendations
        now: Report timestamp

    Returns:
        Report dict with camelCase keys, ready for JSON encoding
    """
    effective_fields, source = resolve_effective_schema(submissions, fallback_fields)
    known_fields = {field.id: field for field in effective_fields}

    usage: dict[str, _FieldUsage] = {}
    field_types: Counter = Counter()
    forms: dict[str, dict[str, Any]] = {}
    enhanced_count = 0
    definition_count = 0

    for submission in submissions:
        enhanced = submission.has_embedded_schema
        if enhanced:
            enhanced_count += 1
            definition_count += len(submission.embedded_field_schema)
            for field in submission.embedded_field_schema:
                field_types[field.type.value] += 1
                if field.id not in usage:
                    usage[field.id] = _FieldUsage(field, legacy=False)
                usage[field.id].observe(submission.data.get(field.id))
        else:
            for field_id, value in submission.data.items():
                if field_id not in usage:
                    field = known_fields.get(field_id) or FieldDefinition(
                        id=field_id, type=infer_field_type(value), generated=True
                    )
                    usage[field_id] = _FieldUsage(field, legacy=True)
                usage[field_id].observe(value)

        submitted_at = submission.submitted_at
        form = forms.setdefault(
            submission.form_id,
            {
                "formTitle": submission.form_title,
                "count": 0,
                "enhancedCount": 0,
                "legacyCount": 0,
                "firstSubmission": submitted_at,
                "lastSubmission": submitted_at,
            },
        )
        form["count"] += 1
        form["enhancedCount" if enhanced else "legacyCount"] += 1
        form["firstSubmission"] = min(form["firstSubmission"], submitted_at)
        form["lastSubmission"] = max(form["lastSubmission"], submitted_at)

    for form in forms.values():
        form["enhancementRate"] = percentage(form["enhancedCount"], form["count"])
        form["firstSubmission"] = form["firstSubmission"].isoformat()
        form["lastSubmission"] = form["lastSubmission"].isoformat()

    total = len(submissions)
    legacy_count = total - enhanced_count
    enhancement_rate = percentage(enhanced_count, total)
    field_usage = {field_id: entry.to_dict() for field_id, entry in usage.items()}
    completeness = percentage(
        sum(entry.responses for entry in usage.values()),
        sum(entry.occurrences for entry in usage.values()),
    )
    moments = [s.submitted_at for s in submissions]

    recommendations = []
    if include_field_analysis:
        if enhancement_rate < 50:
            recommendations.append(
                f"Enhancement Rate Low: Only {enhancement_rate}% of submissions use stored "
                "field definitions. Consider updating form submission process."
            )
        low_response = [u for u in field_usage.values() if u["responseRate"] < LOW_RESPONSE_RATE]
        if low_response:
            recommendations.append(
                f"Low Response Fields: {len(low_response)} fields have response rates below "
                f"{LOW_RESPONSE_RATE}%. Consider making them optional or improving clarity."
            )
        if completeness < 70:
            recommendations.append(
                f"Data Completeness Low: Overall completion rate is {completeness}%. "
                "Consider improving form UX or making key fields required."
            )
        if len(field_types) < MIN_FIELD_TYPES:
            recommendations.append(
                f"Limited Field Diversity: Only {len(field_types)} field types used. "
                "Consider using more varied input types for richer data collection."
            )
        if legacy_count > enhanced_count:
            recommendations.append(
                f"Legacy Data Dominance: {legacy_count} legacy submissions vs "
                f"{enhanced_count} enhanced. Consider migrating older forms to use "
                "field definitions."
            )

    logger.info(
        f"Summarized {total} submissions across {len(forms)} forms "
        f"({enhancement_rate}% with stored schemas)"
    )
    return {
        "generated": (now or datetime.now(UTC)).isoformat(),
        "totalSubmissions": total,
        "enhancedSubmissions": enhanced_count,
        "legacySubmissions": legacy_count,
        "enhancementRate": enhancement_rate,
        "fieldSource": source.value,
        "forms": forms,
        "dateRange": {
            "earliest": min(moments).isoformat() if moments else None,
            "latest": max(moments).isoformat() if moments else None,
        },
        "fieldAnalysis": {
            "totalFieldDefinitions": definition_count,
            "uniqueFieldCount": len(usage),
            "fieldTypes": dict(field_types),
            "fieldUsage": field_usage,
            "responseRates": {
                field_id: entry["responseRate"] for field_id, entry in field_usage.items()
            },
            "dataQuality": {
                "completenessScore": completeness,
                "consistencyScore": enhancement_rate,
            },
        },
        "dataQuality": {"recommendations": recommendations},
    }

"""Form-level submission analytics."""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable

from formpipe.models.analytics import FieldAnalyticsSummary
from formpipe.models.field import FormDefinition
from formpipe.models.submission import SubmissionRecord, SubmissionStatus
from formpipe.services.field_analytics import aggregate_field_values
from formpipe.utils.constants import DEFAULT_ANALYTICS_WINDOW_DAYS
from formpipe.utils.date_utils import (
    DAY_NAMES,
    js_weekday,
    start_of_day,
    start_of_month,
    start_of_week,
    to_local,
)
from formpipe.utils.number_utils import (
    median,
    normalize_number,
    percentage,
    round_half_up,
)

logger = logging.getLogger(__name__)

BROWSER_TOKENS = (
    ("Edg", "Edge"),
    ("Chrome", "Chrome"),
    ("Firefox", "Firefox"),
    ("Safari", "Safari"),
)


def _local_now() -> datetime:
    return datetime.now().astimezone()


def is_filled(value: Any) -> bool:
    """A value counts as a response unless it is None, "" or an empty list."""
    if value is None or value == "":
        return False
    if isinstance(value, (list, tuple)) and not value:
        return False
    return True


def _detect_device(user_agent: str) -> str:
    if "Mobile" in user_agent or "Android" in user_agent:
        return "mobile"
    if "Tablet" in user_agent or "iPad" in user_agent:
        return "tablet"
    return "desktop"


def _detect_browser(user_agent: str) -> str:
    # Edge UAs also mention Chrome and Safari; Chrome UAs mention Safari
    for token, browser in BROWSER_TOKENS:
        if token in user_agent:
            return browser
    return "Other"


class FormAnalyticsService:
    """Aggregates a snapshot of submissions into dashboard statistics.

    All calendar boundaries (today, week, month, trend days, peak hours) are
    evaluated in the timezone of the injected clock.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self.clock = clock or _local_now

    def aggregate_form(
        self,
        submissions: list[SubmissionRecord],
        form: FormDefinition | None = None,
        window_days: int = DEFAULT_ANALYTICS_WINDOW_DAYS,
    ) -> dict[str, Any]:
        """Compute counts, rates, trend, peak times and per-field analytics.

        Args:
            submissions: Submissions of one form
            form: Form definition; field analytics and completion need it
            window_days: Size of the "recent" window and of the trend series

        Returns:
            Analytics dict with camelCase keys
        """
        now = self.clock()
        if not submissions:
            return self._empty_analytics(now, window_days)

        tz = now.tzinfo
        local_now = to_local(now, tz)
        local_times = [to_local(s.submitted_at, tz) for s in submissions]

        window_start = local_now - timedelta(days=window_days)
        recent = sum(1 for moment in local_times if moment >= window_start)
        today = start_of_day(local_now)

        return {
            "totalSubmissions": len(submissions),
            "recentSubmissions": recent,
            "submissionsToday": sum(1 for m in local_times if m >= today),
            "submissionsThisWeek": sum(1 for m in local_times if m >= start_of_week(local_now)),
            "submissionsThisMonth": sum(
                1 for m in local_times if m >= start_of_month(local_now)
            ),
            "averagePerDay": self._average_per_day(recent, window_days),
            "completionRate": self.completion_rate(submissions, form),
            "conversionRate": self.conversion_rate(submissions),
            "submissionTrend": self._trend(local_times, today, window_days),
            "peakSubmissionTimes": self._peak_times(local_times),
            "fieldAnalytics": self.field_analytics(submissions, form),
            "statusBreakdown": self.status_breakdown(submissions),
            "deviceBreakdown": self.device_breakdown(submissions),
            "responseTimeAnalytics": self.response_time_analytics(submissions),
        }

    def generate_report(
        self,
        submissions: list[SubmissionRecord],
        form: FormDefinition | None = None,
        window_days: int = DEFAULT_ANALYTICS_WINDOW_DAYS,
        include_field_analytics: bool = True,
    ) -> dict[str, Any]:
        """Shape form analytics into a shareable report."""
        analytics = self.aggregate_form(submissions, form, window_days)
        report = {
            "generatedAt": self.clock().isoformat(),
            "timeRange": window_days,
            "form": {
                "id": form.id if form else None,
                "title": form.title if form else None,
                "fieldCount": len(form.fields) if form else 0,
            },
            "summary": {
                key: analytics[key]
                for key in (
                    "totalSubmissions",
                    "recentSubmissions",
                    "averagePerDay",
                    "completionRate",
                    "conversionRate",
                )
            },
            "trends": analytics["submissionTrend"],
            "peakTimes": analytics["peakSubmissionTimes"],
        }
        if include_field_analytics:
            report["fieldAnalytics"] = analytics["fieldAnalytics"]
        return report

    @staticmethod
    def completion_rate(
        submissions: list[SubmissionRecord], form: FormDefinition | None
    ) -> int:
        """Mean share of the form's fields filled per submission, as a percent."""
        if not form or not form.fields or not submissions:
            return 0
        field_ids = [field.id for field in form.fields]
        filled = sum(
            1 for s in submissions for field_id in field_ids if is_filled(s.data.get(field_id))
        )
        return percentage(filled, len(submissions) * len(field_ids))

    @staticmethod
    def conversion_rate(submissions: list[SubmissionRecord]) -> int:
        """Percent of submissions that are past draft and carry data."""
        converted = sum(
            1 for s in submissions if s.status != SubmissionStatus.DRAFT.value and s.data
        )
        return percentage(converted, len(submissions))

    @staticmethod
    def field_analytics(
        submissions: list[SubmissionRecord], form: FormDefinition | None
    ) -> dict[str, dict[str, Any]]:
        if not form:
            return {}

        result = {}
        for field in form.fields:
            values = [s.data.get(field.id) for s in submissions]
            responses = [value for value in values if is_filled(value)]
            summary = FieldAnalyticsSummary(
                field_id=field.id,
                field_label=field.display_label,
                field_type=field.type,
                response_count=len(responses),
                response_rate=percentage(len(responses), len(submissions)),
                analytics=aggregate_field_values(responses, field.type) if responses else {},
            )
            result[field.id] = summary.model_dump(by_alias=True)
        return result

    @staticmethod
    def status_breakdown(submissions: list[SubmissionRecord]) -> dict[str, int]:
        return dict(
            Counter(s.status or SubmissionStatus.SUBMITTED.value for s in submissions)
        )

    @staticmethod
    def device_breakdown(submissions: list[SubmissionRecord]) -> dict[str, dict[str, int]]:
        devices: Counter = Counter()
        browsers: Counter = Counter()
        for submission in submissions:
            context = submission.user_context
            user_agent = (context.user_agent if context else None) or "Unknown"
            devices[_detect_device(user_agent)] += 1
            browsers[_detect_browser(user_agent)] += 1
        return {"devices": dict(devices), "browsers": dict(browsers)}

    @staticmethod
    def response_time_analytics(submissions: list[SubmissionRecord]) -> dict[str, Any]:
        """Whole minutes from opening the form to submitting it.

        Only submissions that recorded a start time count; a start after the
        submit time is clock skew and is skipped.
        """
        minutes = [
            (s.submitted_at - s.started_at).total_seconds() // 60
            for s in submissions
            if s.started_at is not None and s.started_at <= s.submitted_at
        ]
        if not minutes:
            return {
                "average": 0,
                "median": 0,
                "fastest": None,
                "slowest": None,
                "sampleSize": 0,
            }
        return {
            "average": round_half_up(sum(minutes) / len(minutes)),
            "median": normalize_number(median(minutes)),
            "fastest": int(min(minutes)),
            "slowest": int(max(minutes)),
            "sampleSize": len(minutes),
        }

    @staticmethod
    def _average_per_day(recent: int, window_days: int) -> float:
        if window_days <= 0:
            return 0
        return round_half_up(recent / window_days, 1)

    @staticmethod
    def _trend(
        local_times: list[datetime], today: datetime, window_days: int
    ) -> list[dict[str, Any]]:
        """One entry per day, oldest first, ending today; days without submissions are 0."""
        per_day = Counter(moment.date() for moment in local_times)
        first_day = today.date() - timedelta(days=window_days - 1)
        series = []
        for offset in range(max(window_days, 0)):
            day = first_day + timedelta(days=offset)
            series.append({"date": day.isoformat(), "count": per_day.get(day, 0)})
        return series

    @staticmethod
    def _peak_times(local_times: list[datetime]) -> dict[str, Any]:
        by_hour = Counter(moment.hour for moment in local_times)
        by_day = Counter(js_weekday(moment) for moment in local_times)

        # sorted() is stable, so ties keep first-encountered order
        hours = sorted(
            ({"hour": hour, "count": count} for hour, count in by_hour.items()),
            key=lambda entry: entry["count"],
            reverse=True,
        )
        days = sorted(
            (
                {"day": DAY_NAMES[index], "dayIndex": index, "count": count}
                for index, count in by_day.items()
            ),
            key=lambda entry: entry["count"],
            reverse=True,
        )
        return {
            "byHour": hours,
            "byDay": days,
            "peakHour": hours[0]["hour"] if hours else None,
            "peakDay": days[0]["day"] if days else None,
        }

    def _empty_analytics(self, now: datetime, window_days: int) -> dict[str, Any]:
        today = start_of_day(to_local(now, now.tzinfo))
        return {
            "totalSubmissions": 0,
            "recentSubmissions": 0,
            "submissionsToday": 0,
            "submissionsThisWeek": 0,
            "submissionsThisMonth": 0,
            "averagePerDay": 0,
            "completionRate": 0,
            "conversionRate": 0,
            "submissionTrend": self._trend([], today, window_days),
            "peakSubmissionTimes": self._peak_times([]),
            "fieldAnalytics": {},
            "statusBreakdown": {},
            "deviceBreakdown": {"devices": {}, "browsers": {}},
            "responseTimeAnalytics": self.response_time_analytics([]),
        }

"""Submission filtering, search, sorting and pagination.

Everything here is pure: inputs are never mutated and an empty result is a
normal outcome, not an error.
"""

import math
from typing import Any

from formpipe.models.submission import (
    FilterCriteria,
    Pagination,
    SortOrder,
    SubmissionPage,
    SubmissionRecord,
)
from formpipe.utils.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

ALL_STATUSES = "all"


def _searchable_values(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str)]
    return []


def matches_search_term(submission: SubmissionRecord, term: str) -> bool:
    """Case-insensitive substring match over title, embedded labels and data values."""
    needle = term.lower()
    if submission.form_title and needle in submission.form_title.lower():
        return True
    for field in submission.embedded_field_schema or []:
        if needle in field.label.lower():
            return True
    for value in submission.data.values():
        if any(needle in text.lower() for text in _searchable_values(value)):
            return True
    return False


def _matches_field_filter(submission: SubmissionRecord, field_id: str, expected: str) -> bool:
    value = submission.data.get(field_id)
    if value is None or value == "" or value == []:
        return False
    needle = str(expected).lower()
    if isinstance(value, (list, tuple)):
        return any(needle in str(item).lower() for item in value)
    return needle in str(value).lower()


def filter_submissions(
    submissions: list[SubmissionRecord], criteria: FilterCriteria | None
) -> list[SubmissionRecord]:
    """Apply every present criterion in order: status, date range, flags, search.

    Args:
        submissions: Snapshot to filter
        criteria: Filter predicates; None returns a copy of the input

    Returns:
        Matching submissions in input order
    """
    result = list(submissions)
    if criteria is None:
        return result

    if criteria.status and criteria.status != ALL_STATUSES:
        result = [s for s in result if s.status == criteria.status]

    if criteria.date_range is not None:
        result = [s for s in result if criteria.date_range.contains(s.submitted_at)]

    if criteria.flags:
        result = [s for s in result if s.flags & criteria.flags]

    if criteria.search_term and criteria.search_term.strip():
        term = criteria.search_term.strip()
        result = [s for s in result if matches_search_term(s, term)]

    if criteria.field_filters:
        active = {k: v for k, v in criteria.field_filters.items() if v}
        result = [
            s
            for s in result
            if all(_matches_field_filter(s, field_id, value) for field_id, value in active.items())
        ]

    return result


def search_submissions(
    submissions: list[SubmissionRecord], term: str | None
) -> list[SubmissionRecord]:
    """Free-text search that also looks at submission ids and client context."""
    if not term or not term.strip():
        return list(submissions)

    needle = term.strip().lower()

    def matches(submission: SubmissionRecord) -> bool:
        if needle in submission.id.lower() or matches_search_term(submission, needle):
            return True
        context = submission.user_context
        if context is None:
            return False
        return any(
            needle in text.lower()
            for text in (context.user_agent, context.source_label)
            if text
        )

    return [s for s in submissions if matches(s)]


def sort_submissions(
    submissions: list[SubmissionRecord], sort_by: SortOrder | str = SortOrder.NEWEST
) -> list[SubmissionRecord]:
    """Return a sorted copy; unknown orderings keep input order."""
    try:
        order = SortOrder(sort_by)
    except ValueError:
        return list(submissions)

    if order == SortOrder.NEWEST:
        return sorted(submissions, key=lambda s: s.submitted_at, reverse=True)
    if order == SortOrder.OLDEST:
        return sorted(submissions, key=lambda s: s.submitted_at)
    return sorted(submissions, key=lambda s: (s.form_title or s.id or "").casefold())


def paginate_submissions(
    submissions: list[SubmissionRecord],
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> SubmissionPage:
    """Slice one page out of a submission list (pages are 1-based)."""
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    total = len(submissions)
    start = (page - 1) * page_size
    end = start + page_size

    return SubmissionPage(
        items=submissions[start:end],
        pagination=Pagination(
            current_page=page,
            page_size=page_size,
            total_items=total,
            total_pages=math.ceil(total / page_size),
            has_next_page=end < total,
            has_prev_page=page > 1,
            start_index=start + 1,
            end_index=min(end, total),
        ),
    )

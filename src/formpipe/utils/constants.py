"""Shared constants for the form submission pipeline."""

# Hard cap on records in a single export. Matches the dashboard's limit.
MAX_EXPORT_RECORDS: int = 5000

# Export history bounds: in-memory ring buffer and the persisted subset.
EXPORT_HISTORY_CAPACITY: int = 50
EXPORT_HISTORY_PERSISTED: int = 10

# Default analytics window in days
DEFAULT_ANALYTICS_WINDOW_DAYS: int = 30

# Pagination defaults for submission lists
DEFAULT_PAGE_SIZE: int = 10
MAX_PAGE_SIZE: int = 100

# UTF-8 byte-order-mark so spreadsheet software detects the encoding
UTF8_BOM: str = "\ufeff"

MIME_TYPES: dict[str, str] = {
    "csv": "text/csv",
    "excel-csv": "text/csv",
    "json": "application/json",
}

FILE_EXTENSIONS: dict[str, str] = {
    "csv": "csv",
    "excel-csv": "csv",
    "json": "json",
}

DEFAULT_FILENAME_BASES: dict[str, str] = {
    "csv": "submissions",
    "excel-csv": "submissions_excel",
    "json": "submissions",
}

NO_MATCHING_SUBMISSIONS = "No submissions match the current filters"

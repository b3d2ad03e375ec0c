"""FastAPI application for submission validation, analytics and exports."""

import logging
import os
import time
from datetime import UTC, date, datetime
from typing import Any

import boto3
from botocore.exceptions import ClientError
from fastapi import FastAPI, HTTPException, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from mangum import Mangum
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from formpipe.models.export import (
    ExportFormat,
    ExportJobRequest,
    ExportOptions,
    SerializedExport,
)
from formpipe.models.field import FieldDefinition, FormDefinition
from formpipe.models.submission import FilterCriteria, SortOrder, SubmissionRecord
from formpipe.services.delivery import FileDelivery, LocalFileDelivery, S3FileDelivery
from formpipe.services.export_history import DynamoDBHistoryStore, ExportHistoryTracker
from formpipe.services.export_queue import ExportJobQueue
from formpipe.services.export_service import ExportError, ExportService
from formpipe.services.filter_service import (
    filter_submissions,
    paginate_submissions,
    sort_submissions,
)
from formpipe.services.form_analytics_service import FormAnalyticsService
from formpipe.services.validation_service import validate_field, validate_form
from formpipe.utils.cache import CACHE_CONTROL_PRIVATE, cached_form_analytics
from formpipe.utils.constants import (
    DEFAULT_ANALYTICS_WINDOW_DAYS,
    DEFAULT_PAGE_SIZE,
    MAX_EXPORT_RECORDS,
    MAX_PAGE_SIZE,
)

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")

# Initialize FastAPI app
app = FastAPI(
    title="Form Submission Pipeline API",
    description="Validate, analyze and export form submissions",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request, call_next):
    """Log API requests with timing for CloudWatch monitoring."""
    start = time.time()
    response = await call_next(request)
    duration_ms = (time.time() - start) * 1000

    path = request.url.path
    if duration_ms > 1000:
        logger.warning(
            "[SLOW] %s %s %.0fms status=%d",
            request.method,
            path,
            duration_ms,
            response.status_code,
        )
    elif response.status_code >= 500:
        logger.error(
            "[ERROR] %s %s %.0fms status=%d",
            request.method,
            path,
            duration_ms,
            response.status_code,
        )
    elif response.status_code >= 400:
        logger.info(
            "[CLIENT_ERROR] %s %s %.0fms status=%d",
            request.method,
            path,
            duration_ms,
            response.status_code,
        )

    return response


# Lazy-initialized AWS clients and services
_dynamodb = None
_s3_client = None
_export_history = None
_history_loaded = False
_export_service = None
_export_queue = None
_analytics_service = None


def reset_services():
    """Reset all lazy-initialized services. Useful for testing.

    Also resets boto3's default session so that clients created afterwards
    pick up the current moto mock context.
    """
    global _dynamodb, _s3_client, _export_history, _history_loaded
    global _export_service, _export_queue, _analytics_service
    _dynamodb = None
    _s3_client = None
    _export_history = None
    _history_loaded = False
    _export_service = None
    _export_queue = None
    _analytics_service = None
    boto3.DEFAULT_SESSION = None


def get_dynamodb():
    """Get or create DynamoDB resource (lazy init)."""
    global _dynamodb
    if _dynamodb is None:
        region = os.environ.get("AWS_DEFAULT_REGION", "us-west-2")
        _dynamodb = boto3.resource("dynamodb", region_name=region)
    return _dynamodb


def get_s3_client():
    """Get or create S3 client (lazy init)."""
    global _s3_client
    if _s3_client is None:
        region = os.environ.get("AWS_DEFAULT_REGION", "us-west-2")
        _s3_client = boto3.client("s3", region_name=region)
    return _s3_client


def get_file_delivery() -> FileDelivery | None:
    """S3 when EXPORT_BUCKET is set, a local directory when EXPORT_LOCAL_DIR is set."""
    bucket = os.environ.get("EXPORT_BUCKET")
    if bucket:
        return S3FileDelivery(
            get_s3_client(), bucket, os.environ.get("EXPORT_PREFIX", "exports/")
        )
    local_dir = os.environ.get("EXPORT_LOCAL_DIR")
    if local_dir:
        return LocalFileDelivery(local_dir)
    return None


def get_export_history() -> ExportHistoryTracker:
    """Get or create the export history tracker (persisted when a table is configured)."""
    global _export_history
    if _export_history is None:
        table_name = os.environ.get("EXPORT_HISTORY_TABLE")
        store = DynamoDBHistoryStore(get_dynamodb().Table(table_name)) if table_name else None
        _export_history = ExportHistoryTracker(store=store)
    return _export_history


async def get_loaded_export_history() -> ExportHistoryTracker:
    """History tracker with the persisted entries loaded once per process."""
    global _history_loaded
    history = get_export_history()
    if not _history_loaded:
        _history_loaded = True
        await history.load()
    return history


def get_export_service() -> ExportService:
    global _export_service
    if _export_service is None:
        _export_service = ExportService(
            history=get_export_history(),
            delivery=get_file_delivery(),
            max_records=int(os.environ.get("MAX_EXPORT_RECORDS", MAX_EXPORT_RECORDS)),
        )
    return _export_service


def get_export_queue() -> ExportJobQueue:
    global _export_queue
    if _export_queue is None:
        _export_queue = ExportJobQueue(processor=get_export_service().run_job)
    return _export_queue


def get_analytics_service() -> FormAnalyticsService:
    global _analytics_service
    if _analytics_service is None:
        _analytics_service = FormAnalyticsService()
    return _analytics_service


# MARK: - Request Models


class ApiRequest(BaseModel):
    """Base for request bodies: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidateFormRequest(ApiRequest):
    """Request body for validating a whole submission."""

    data: dict[str, Any] = Field(default_factory=dict, description="Field id -> value")
    fields: list[FieldDefinition] = Field(..., description="Form schema")
    today: date | None = Field(None, description="Reference day for date checks")


class ValidateFieldRequest(ApiRequest):
    """Request body for validating a single value."""

    value: Any = None
    field: FieldDefinition
    today: date | None = None


class AnalyticsRequest(ApiRequest):
    """Request body for form analytics."""

    submissions: list[SubmissionRecord] = Field(default_factory=list)
    form: FormDefinition | None = None
    window_days: int = Field(default=DEFAULT_ANALYTICS_WINDOW_DAYS, ge=0, le=366)


class FilterRequest(ApiRequest):
    """Request body for filtering, sorting and paginating submissions."""

    submissions: list[SubmissionRecord] = Field(default_factory=list)
    criteria: FilterCriteria | None = None
    sort_by: SortOrder = SortOrder.NEWEST
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)


class ExportRequest(ExportJobRequest):
    """Request body for a direct export, optionally narrowed by filter or selection."""

    criteria: FilterCriteria | None = None
    submission_ids: list[str] | None = None


class SummaryReportRequest(ExportJobRequest):
    """Request body for a summary report export (JSON only)."""

    format: ExportFormat = ExportFormat.JSON
    include_field_analysis: bool = True


class MultiFormExportRequest(ApiRequest):
    """Request body for exporting the submissions of several forms."""

    submissions: list[SubmissionRecord] = Field(default_factory=list)
    forms: list[FormDefinition] = Field(default_factory=list)
    format: ExportFormat = ExportFormat.CSV
    options: ExportOptions = Field(default_factory=ExportOptions)
    separate_files: bool = True


# MARK: - Health


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": "1.0.0",
        "environment": ENVIRONMENT,
    }


# MARK: - Validation Endpoints


@app.post("/api/v1/validate")
async def validate_submission(request: ValidateFormRequest):
    """Validate every field of a submission against its schema."""
    report = validate_form(request.data, request.fields, today=request.today)
    return report.model_dump(by_alias=True)


@app.post("/api/v1/validate/field")
async def validate_single_field(request: ValidateFieldRequest):
    """Validate one value against one field definition."""
    errors = validate_field(request.value, request.field, today=request.today)
    return {"fieldId": request.field.id, "isValid": not errors, "errors": errors}


# MARK: - Analytics Endpoints


@cached_form_analytics
def _aggregate_cached(request: AnalyticsRequest) -> dict[str, Any]:
    """Cached wrapper for form analytics over a submission snapshot."""
    return get_analytics_service().aggregate_form(
        request.submissions, request.form, request.window_days
    )


@app.post("/api/v1/analytics")
async def get_form_analytics(request: AnalyticsRequest, response: Response):
    """Aggregate counts, trends and per-field statistics for a form."""
    analytics = _aggregate_cached(request)
    response.headers["Cache-Control"] = CACHE_CONTROL_PRIVATE
    return analytics


# MARK: - Submission Endpoints


@app.post("/api/v1/submissions/filter")
async def filter_submission_list(request: FilterRequest):
    """Filter, sort and paginate a submission list."""
    matching = filter_submissions(request.submissions, request.criteria)
    ordered = sort_submissions(matching, request.sort_by)
    page = paginate_submissions(ordered, request.page, request.page_size)
    return page.model_dump(mode="json", by_alias=True)


# MARK: - Export Endpoints


def _file_response(export: SerializedExport) -> Response:
    headers = {
        "Content-Disposition": f'attachment; filename="{export.filename}"',
        "Cache-Control": CACHE_CONTROL_PRIVATE,
        "X-Record-Count": str(export.stats.record_count),
        "X-Field-Source": export.stats.field_source,
    }
    if export.stats.location:
        headers["X-Export-Location"] = export.stats.location
    return Response(content=export.to_bytes(), media_type=export.mime_type, headers=headers)


@app.post("/api/v1/exports")
async def create_export(request: ExportRequest):
    """Run an export immediately and return the encoded file."""
    await get_loaded_export_history()
    service = get_export_service()

    if request.criteria is not None:
        export = await service.export_filtered(
            request.submissions,
            request.criteria,
            request.field_schema,
            request.format,
            request.options,
        )
    elif request.submission_ids is not None:
        export = await service.export_selected(
            request.submissions,
            request.submission_ids,
            request.field_schema,
            request.format,
            request.options,
        )
    else:
        export = await service.export_submissions(
            request.submissions, request.field_schema, request.format, request.options
        )

    return _file_response(export)


@app.post("/api/v1/exports/jobs", status_code=status.HTTP_202_ACCEPTED)
async def create_export_job(request: ExportJobRequest):
    """Queue an export; poll the job endpoint for its outcome."""
    await get_loaded_export_history()
    job_id = get_export_queue().enqueue(request)
    return {"jobId": job_id, "status": "queued"}


@app.get("/api/v1/exports/jobs/{job_id}")
async def get_export_job(job_id: str):
    """Get the state of a queued export."""
    job = get_export_queue().get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Export job {job_id} not found",
        )
    return job.summary()


@app.get("/api/v1/exports/queue")
async def get_export_queue_status():
    """Job counts by state."""
    return get_export_queue().get_queue_status().model_dump(by_alias=True)


@app.delete("/api/v1/exports/queue/completed")
async def clear_completed_jobs():
    """Forget finished jobs."""
    removed = get_export_queue().clear_completed()
    return {"removed": removed}


@app.get("/api/v1/exports/history")
async def get_export_history_entries():
    """Most recent exports, newest first."""
    history = await get_loaded_export_history()
    return {
        "exports": [
            entry.model_dump(mode="json", by_alias=True) for entry in history.get_history()
        ]
    }


@app.get("/api/v1/exports/statistics")
async def get_export_statistics():
    """Totals and breakdowns over the export history."""
    history = await get_loaded_export_history()
    return history.get_statistics().model_dump(mode="json", by_alias=True)


@app.post("/api/v1/exports/estimate")
async def estimate_export(request: ExportJobRequest):
    """Rough size of an export before running it."""
    return get_export_service().estimate_export_size(request.submissions, request.format)


@app.post("/api/v1/exports/report")
async def create_summary_report(request: SummaryReportRequest):
    """Export a per-form, per-field and data-quality summary as a JSON file."""
    await get_loaded_export_history()
    export = await get_export_service().export_summary_report(
        request.submissions,
        request.field_schema,
        request.format,
        request.options,
        include_field_analysis=request.include_field_analysis,
    )
    return _file_response(export)


@app.post("/api/v1/exports/forms")
async def create_multi_form_export(request: MultiFormExportRequest):
    """Export several forms at once; each file is returned with its content."""
    await get_loaded_export_history()
    result = await get_export_service().export_multiple_forms(
        request.submissions,
        request.forms,
        request.format,
        request.options,
        separate_files=request.separate_files,
    )
    return result.model_dump(mode="json", by_alias=True)


@app.post("/api/v1/exports/quality")
async def analyze_export_quality(request: ExportJobRequest):
    """How much of an export rests on stored schemas and how complete its data is."""
    return get_export_service().analyze_data_quality(request.submissions, request.field_schema)


# MARK: - Error Handlers


@app.exception_handler(ExportError)
async def export_error_handler(request, exc: ExportError):
    """Handle export failures."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)}
    )


@app.exception_handler(ClientError)
async def aws_client_error_handler(request, exc: ClientError):
    """Handle AWS client errors."""
    error_message = exc.response["Error"]["Message"]
    logger.error(f"AWS error on {request.url.path}: {error_message}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"AWS error: {error_message}"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    """Handle value errors."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)}
    )


# MARK: - Lambda Handler

api_handler = Mangum(app, lifespan="off")


# For local development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

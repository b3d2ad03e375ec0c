"""Lambda handler for running a batch of exports.

The event carries the export requests to run:

    {"exports": [{"submissions": [...], "fieldSchema": [...], "format": "csv"}, ...]}

Each request becomes a job on a fresh in-process queue; jobs run in order and
one failing job does not stop the rest. Files go to EXPORT_BUCKET and outcomes
are appended to the export history in EXPORT_HISTORY_TABLE when configured.
"""

import asyncio
import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

import boto3
from pydantic import ValidationError

from formpipe.models.export import ExportJobRequest, JobStatus
from formpipe.services.delivery import LocalFileDelivery, S3FileDelivery
from formpipe.services.export_history import DynamoDBHistoryStore, ExportHistoryTracker
from formpipe.services.export_queue import ExportJobQueue
from formpipe.services.export_service import ExportService
from formpipe.utils.constants import MAX_EXPORT_RECORDS

# Configure logging
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def build_export_service() -> ExportService:
    """Wire an export service from environment configuration."""
    region = os.environ.get("AWS_DEFAULT_REGION", "us-west-2")

    store = None
    table_name = os.environ.get("EXPORT_HISTORY_TABLE")
    if table_name:
        store = DynamoDBHistoryStore(boto3.resource("dynamodb", region_name=region).Table(table_name))

    delivery = None
    bucket = os.environ.get("EXPORT_BUCKET")
    if bucket:
        delivery = S3FileDelivery(
            boto3.client("s3", region_name=region),
            bucket,
            os.environ.get("EXPORT_PREFIX", "exports/"),
        )
    elif os.environ.get("EXPORT_LOCAL_DIR"):
        delivery = LocalFileDelivery(os.environ["EXPORT_LOCAL_DIR"])

    return ExportService(
        history=ExportHistoryTracker(store=store),
        delivery=delivery,
        max_records=int(os.environ.get("MAX_EXPORT_RECORDS", MAX_EXPORT_RECORDS)),
    )


async def run_export_batch(
    requests: list[ExportJobRequest], service: ExportService | None = None
) -> list[dict[str, Any]]:
    """Queue every request, wait for the queue to drain and summarize each job."""
    service = service or build_export_service()
    await service.history.load()

    queue = ExportJobQueue(processor=service.run_job)
    job_ids = [queue.enqueue(request) for request in requests]
    await queue.wait_until_idle()

    return [queue.get_job(job_id).summary() for job_id in job_ids]


def export_handler(event: dict[str, Any], context) -> dict[str, Any]:
    """
    Lambda handler to run a batch of exports.

    Args:
        event: Lambda event with an "exports" list of export job requests
        context: Lambda context

    Returns:
        Dict with statusCode 200 (all completed), 207 (some failed),
        400 (bad event) or 500 (unexpected failure) and per-job results
    """
    logger.info(f"Starting export batch at {datetime.now(UTC).isoformat()}")

    try:
        requests = [ExportJobRequest.model_validate(raw) for raw in event.get("exports", [])]
    except ValidationError as e:
        logger.error(f"Invalid export batch event: {e}")
        return {
            "statusCode": 400,
            "body": json.dumps({"message": "Invalid export request", "error": str(e)}),
        }

    if not requests:
        return {
            "statusCode": 400,
            "body": json.dumps({"message": "No exports requested"}),
        }

    try:
        jobs = asyncio.run(run_export_batch(requests))
    except Exception as e:
        logger.error(f"Failed to run export batch: {e}")
        return {
            "statusCode": 500,
            "body": json.dumps({"message": "Failed to run export batch", "error": str(e)}),
        }

    failed = [job for job in jobs if job["status"] == JobStatus.FAILED.value]
    if failed:
        logger.warning(f"Export batch finished with {len(failed)}/{len(jobs)} failed jobs")
        return {
            "statusCode": 207,  # Multi-Status
            "body": json.dumps(
                {"message": "Export batch completed with errors", "jobs": jobs}
            ),
        }

    logger.info(f"Export batch completed: {len(jobs)} jobs")
    return {
        "statusCode": 200,
        "body": json.dumps({"message": "Export batch completed", "jobs": jobs}),
    }

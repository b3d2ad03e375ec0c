"""In-process FIFO queue for export jobs.

Jobs run one at a time on a single worker task that is started on demand and
exits once the queue is drained. The queue lives in memory only; jobs do not
survive a process restart.
"""

import asyncio
import inspect
import logging
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

from formpipe.models.export import (
    ExportJob,
    ExportJobRequest,
    JobStatus,
    QueueStatus,
    SerializedExport,
)

logger = logging.getLogger(__name__)

JobProcessor = Callable[[ExportJobRequest], Awaitable[SerializedExport]]
CompleteCallback = Callable[[SerializedExport], Any]
ErrorCallback = Callable[[ExportJob, Exception], Any]


class ExportJobQueue:
    """Single-consumer export job queue."""

    def __init__(self, processor: JobProcessor):
        self.processor = processor
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._jobs: dict[str, ExportJob] = {}
        self._callbacks: dict[str, tuple[CompleteCallback | None, ErrorCallback | None]] = {}
        self._worker: asyncio.Task | None = None

    def enqueue(
        self,
        request: ExportJobRequest,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> str:
        """Add a job and make sure the worker is running.

        Must be called from a running event loop. Returns immediately with the
        new job id; callbacks fire after the job finishes.
        """
        loop = asyncio.get_running_loop()

        job = ExportJob(payload=request)
        self._jobs[job.id] = job
        self._callbacks[job.id] = (on_complete, on_error)
        self._queue.put_nowait(job.id)
        logger.info(
            f"Queued export job {job.id} ({request.format.value}, "
            f"{len(request.submissions)} submissions)"
        )

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return job.id

    def get_job(self, job_id: str) -> ExportJob | None:
        return self._jobs.get(job_id)

    def get_queue_status(self) -> QueueStatus:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return QueueStatus(
            queued=counts[JobStatus.QUEUED],
            processing=counts[JobStatus.PROCESSING],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            total=len(self._jobs),
            is_processing=self.is_processing,
        )

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def clear_completed(self) -> int:
        """Forget finished jobs (completed or failed); returns how many were removed."""
        finished = [job_id for job_id, job in self._jobs.items() if job.is_terminal]
        for job_id in finished:
            del self._jobs[job_id]
            self._callbacks.pop(job_id, None)
        return len(finished)

    async def wait_until_idle(self) -> None:
        """Block until every queued job has finished."""
        await self._queue.join()

    async def _drain(self) -> None:
        while not self._queue.empty():
            job_id = self._queue.get_nowait()
            try:
                await self._run(self._jobs[job_id])
            finally:
                self._queue.task_done()

    async def _run(self, job: ExportJob) -> None:
        on_complete, on_error = self._callbacks.get(job.id, (None, None))
        job.status = JobStatus.PROCESSING
        job.started_at = datetime.now(UTC)

        try:
            export = await self.processor(job.payload)
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            job.completed_at = datetime.now(UTC)
            logger.error(f"Export job {job.id} failed: {e}")
            await self._fire(on_error, job, e)
            return

        job.status = JobStatus.COMPLETED
        job.result = export.stats
        job.completed_at = datetime.now(UTC)
        logger.info(f"Export job {job.id} completed: {export.filename}")
        await self._fire(on_complete, export)

    async def _fire(self, callback: Callable | None, *args) -> None:
        if callback is None:
            return
        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Export job callback {callback!r} raised: {e}")

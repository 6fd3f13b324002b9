"""Batch operations over many clips.

Two entry points:
- start_batch_operation: tracked job in a background thread, polled via
  the job manager (progress, cancel, history, statistics)
- analyze_clips: synchronous, returns {clip_id: result} directly

Both go through run_batch, so parallelism is bounded by chunk size.
"""

import logging
import threading
from typing import Any, Optional

from timeline_ai.executor.batch_operations import ClipOperations
from timeline_ai.executor.batch_scheduler import BatchProgressCallback, run_batch
from timeline_ai.executor.job_manager import JobManager
from timeline_ai.executor.schemas import (
    BatchJobStatus,
    BatchOperationType,
    BatchParams,
    BatchProgress,
    BatchStatistics,
)

logger = logging.getLogger(__name__)

DEFAULT_ANALYSIS_CONCURRENCY = 2


class BatchRunner:
    """Runs clip operations as tracked, concurrency-bounded batch jobs."""

    def __init__(self, operations: ClipOperations, jobs: Optional[JobManager] = None):
        self._operations = operations
        self._jobs = jobs or JobManager()

    @property
    def jobs(self) -> JobManager:
        return self._jobs

    def start_batch_operation(self, params: BatchParams) -> tuple[str, threading.Thread]:
        """Create a job and run it in a daemon thread. Returns (job_id, thread)."""
        job = self._jobs.create_job(params.operation, total=len(params.clip_ids))
        thread = threading.Thread(
            target=self._run_in_thread,
            args=(job.job_id, params),
            name=f"batch-{job.job_id}",
            daemon=True,
        )
        thread.start()
        logger.info(f"Started batch thread for {job.job_id}")
        return job.job_id, thread

    def _run_in_thread(self, job_id: str, params: BatchParams) -> None:
        try:
            self.run_batch_operation(job_id, params)
        except Exception as e:
            logger.error(f"[{job_id}] Batch job crashed: {e}", exc_info=True)
            self._jobs.finish_job(job_id, BatchJobStatus.FAILED)

    def run_batch_operation(self, job_id: str, params: BatchParams) -> BatchProgress:
        """Run a created job to completion in the calling thread."""
        self._jobs.mark_running(job_id)

        def worker(clip_id: str) -> Any:
            self._jobs.set_current_clip(job_id, clip_id)
            return self._operations.run(params.operation, clip_id, params.options)

        results = run_batch(
            params.clip_ids,
            worker,
            params.max_concurrent,
            on_result=lambda clip_id, result: self._jobs.record_success(job_id, clip_id, result),
            on_error=lambda clip_id, e: self._jobs.record_failure(job_id, clip_id, e),
            cancellation_check=lambda: self._jobs.is_cancelled(job_id),
            label=job_id,
        )
        if self._jobs.is_cancelled(job_id):
            status = BatchJobStatus.CANCELLED
        elif not results and params.clip_ids:
            status = BatchJobStatus.FAILED
        else:
            status = BatchJobStatus.COMPLETED
        return self._jobs.finish_job(job_id, status)

    def analyze_clips(
        self,
        clip_ids: list[str],
        operation: BatchOperationType = BatchOperationType.AI_DESCRIPTION,
        max_concurrent: int = DEFAULT_ANALYSIS_CONCURRENCY,
        progress_callback: Optional[BatchProgressCallback] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Analyze clips and return {clip_id: result}, omitting failed clips."""
        return run_batch(
            clip_ids,
            lambda clip_id: self._operations.run(operation, clip_id, options),
            max_concurrent,
            progress_callback=progress_callback,
            label=f"analyze-{operation.value}",
        )

    def get_progress(self, job_id: str) -> Optional[BatchProgress]:
        return self._jobs.get_job(job_id)

    def cancel(self, job_id: str) -> bool:
        return self._jobs.request_cancellation(job_id)

    def get_history(self) -> list[BatchProgress]:
        return self._jobs.get_history()

    def clear_history(self) -> None:
        self._jobs.clear_history()

    def get_statistics(self) -> BatchStatistics:
        return self._jobs.get_statistics()

"""Batch job lifecycle management.

Handles:
- Job creation and progress updates (for API polling)
- Cancellation (flag-based, checked between chunks)
- Finished-job history (last BATCH_HISTORY_LIMIT jobs) and statistics

All state is in memory and guarded by one lock; snapshots handed out are
copies.
"""

import logging
import threading
import time
from collections import deque
from datetime import datetime
from typing import Any, Optional

from timeline_ai.executor.schemas import (
    BatchJobRecord,
    BatchJobStatus,
    BatchOperationType,
    BatchProgress,
    BatchStatistics,
    new_batch_job_id,
)

logger = logging.getLogger(__name__)

BATCH_HISTORY_LIMIT = 50


class JobManager:
    """In-memory registry of batch jobs."""

    def __init__(self, history_limit: int = BATCH_HISTORY_LIMIT):
        self._active: dict[str, BatchProgress] = {}
        self._history: deque[BatchProgress] = deque(maxlen=history_limit)
        self._started: dict[str, float] = {}
        self._cancellation_flags: dict[str, bool] = {}
        self._lock = threading.Lock()

    def create_job(self, operation: BatchOperationType, total: int) -> BatchProgress:
        job = BatchProgress(job_id=new_batch_job_id(), operation=operation, total=total)
        with self._lock:
            self._active[job.job_id] = job
            self._started[job.job_id] = time.time()
        logger.info(f"[{job.job_id}] Created {operation.value} job for {total} clips")
        return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Optional[BatchProgress]:
        with self._lock:
            job = self._active.get(job_id)
            if job is None:
                job = next((j for j in self._history if j.job_id == job_id), None)
            return job.model_copy(deep=True) if job is not None else None

    def mark_running(self, job_id: str) -> None:
        with self._lock:
            self._active[job_id].status = BatchJobStatus.RUNNING

    def set_current_clip(self, job_id: str, clip_id: str) -> None:
        with self._lock:
            job = self._active.get(job_id)
            if job is not None:
                job.current_clip = clip_id

    def record_success(self, job_id: str, clip_id: str, result: Any) -> None:
        with self._lock:
            job = self._active[job_id]
            job.completed += 1
            job.outcomes[clip_id] = BatchJobRecord(key=clip_id, outcome="success", result=result)

    def record_failure(self, job_id: str, clip_id: str, error: Exception) -> None:
        message = f"{clip_id}: {error}"
        with self._lock:
            job = self._active[job_id]
            job.failed += 1
            job.errors.append(message)
            job.outcomes[clip_id] = BatchJobRecord(key=clip_id, outcome="error", error=str(error))

    def finish_job(self, job_id: str, status: BatchJobStatus) -> BatchProgress:
        """Move a job to history with its final status."""
        with self._lock:
            job = self._active.pop(job_id)
            started = self._started.pop(job_id, time.time())
            job.status = status
            job.current_clip = None
            job.finished_at = datetime.now().isoformat()
            job.duration_ms = int((time.time() - started) * 1000)
            self._history.append(job)
            self._cancellation_flags.pop(job_id, None)
        logger.info(
            f"[{job_id}] Finished with status={status.value}: "
            f"{job.completed} ok, {job.failed} failed, {job.duration_ms}ms"
        )
        return job.model_copy(deep=True)

    def list_active(self) -> list[BatchProgress]:
        with self._lock:
            return [j.model_copy(deep=True) for j in self._active.values()]

    def get_history(self) -> list[BatchProgress]:
        with self._lock:
            return [j.model_copy(deep=True) for j in self._history]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    # --- cancellation ---

    def request_cancellation(self, job_id: str) -> bool:
        """Flag a running job for cancellation. Returns False if not active."""
        with self._lock:
            if job_id not in self._active:
                return False
            self._cancellation_flags[job_id] = True
        logger.info(f"[{job_id}] Cancellation requested")
        return True

    def is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            return self._cancellation_flags.get(job_id, False)

    # --- statistics ---

    def get_statistics(self) -> BatchStatistics:
        with self._lock:
            active = [j.model_copy() for j in self._active.values()]
            finished = [j.model_copy() for j in self._history]

        processed = sum(j.completed + j.failed for j in active + finished)
        succeeded = sum(j.completed for j in active + finished)
        return BatchStatistics(
            total_jobs=len(active) + len(finished),
            running_jobs=sum(1 for j in active if j.status == BatchJobStatus.RUNNING),
            completed_jobs=sum(1 for j in finished if j.status == BatchJobStatus.COMPLETED),
            failed_jobs=sum(1 for j in finished if j.status == BatchJobStatus.FAILED),
            average_execution_time_ms=(
                sum(j.duration_ms for j in finished) / len(finished) if finished else 0.0
            ),
            total_clips_processed=processed,
            success_rate=round(succeeded / processed * 100, 1) if processed else 0.0,
        )

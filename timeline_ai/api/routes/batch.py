"""Batch job API routes.

Jobs run in background threads; clients poll GET /batch/{job_id}.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from timeline_ai.api.dependencies import get_batch_runner
from timeline_ai.executor.batch_runner import BatchRunner
from timeline_ai.executor.schemas import BatchParams, BatchProgress, BatchStatistics

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/batch", tags=["batch"])


@router.post("", status_code=202)
def start_batch(
    params: BatchParams,
    runner: BatchRunner = Depends(get_batch_runner),
) -> dict:
    """Start a batch job over the given clips."""
    job_id, _ = runner.start_batch_operation(params)
    return {
        "job_id": job_id,
        "operation": params.operation.value,
        "total": len(params.clip_ids),
        "status_url": f"/v1/batch/{job_id}",
    }


@router.get("/history", response_model=list[BatchProgress])
def get_batch_history(runner: BatchRunner = Depends(get_batch_runner)) -> list[BatchProgress]:
    return runner.get_history()


@router.delete("/history")
def clear_batch_history(runner: BatchRunner = Depends(get_batch_runner)) -> dict:
    runner.clear_history()
    return {"cleared": True}


@router.get("/stats", response_model=BatchStatistics)
def get_batch_stats(runner: BatchRunner = Depends(get_batch_runner)) -> BatchStatistics:
    return runner.get_statistics()


@router.get("/{job_id}", response_model=BatchProgress)
def get_batch_job(job_id: str, runner: BatchRunner = Depends(get_batch_runner)) -> BatchProgress:
    job = runner.get_progress(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Batch job not found: {job_id}")
    return job


@router.post("/{job_id}/cancel")
def cancel_batch_job(job_id: str, runner: BatchRunner = Depends(get_batch_runner)) -> dict:
    if not runner.cancel(job_id):
        raise HTTPException(status_code=404, detail=f"Batch job not active: {job_id}")
    return {"job_id": job_id, "cancellation_requested": True}

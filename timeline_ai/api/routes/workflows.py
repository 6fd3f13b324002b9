"""Workflow API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from timeline_ai.api.dependencies import get_workflow_executor
from timeline_ai.executor.schemas import ActiveWorkflow, WorkflowParams, WorkflowResult
from timeline_ai.executor.workflow_runner import WorkflowExecutionError, WorkflowExecutor
from timeline_ai.workflows.schemas import WorkflowDefinitionError, WorkflowSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


@router.get("", response_model=list[WorkflowSummary])
def list_workflows(
    executor: WorkflowExecutor = Depends(get_workflow_executor),
) -> list[WorkflowSummary]:
    """List all workflow types."""
    return executor.get_available_workflows()


@router.get("/active", response_model=list[ActiveWorkflow])
def list_active_workflows(
    executor: WorkflowExecutor = Depends(get_workflow_executor),
) -> list[ActiveWorkflow]:
    return executor.get_active_workflows()


@router.post("/run", response_model=WorkflowResult)
def run_workflow(
    params: WorkflowParams,
    executor: WorkflowExecutor = Depends(get_workflow_executor),
) -> WorkflowResult:
    """Run a workflow to completion and return its result.

    Blocks until the run finishes; poll /workflows/active from another
    client to follow progress.
    """
    try:
        return executor.execute_workflow(params)
    except WorkflowDefinitionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except WorkflowExecutionError as e:
        logger.error(f"Workflow {params.workflow_type} failed: {e}")
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.post("/{workflow_id}/cancel")
def cancel_workflow(
    workflow_id: str,
    executor: WorkflowExecutor = Depends(get_workflow_executor),
) -> dict:
    if not executor.cancel_workflow(workflow_id):
        raise HTTPException(status_code=404, detail=f"Workflow not active: {workflow_id}")
    return {"workflow_id": workflow_id, "cancelled": True}

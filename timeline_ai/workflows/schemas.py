"""Workflow definition schemas.

A workflow type is a named set of steps from the built-in step library,
plus catalog metadata shown to the user when choosing a workflow.
"""

from enum import Enum

from pydantic import BaseModel, Field


class WorkflowDefinitionError(ValueError):
    """Invalid workflow definition: unknown type or step, or a dependency cycle."""


class WorkflowComplexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class WorkflowDefinition(BaseModel):
    workflow_type: str = Field(..., description="Unique key, e.g. 'quick_edit'")
    name: str
    description: str = ""
    estimated_duration_min: int = Field(..., gt=0, description="Typical run time in minutes")
    complexity: WorkflowComplexity = WorkflowComplexity.MEDIUM
    supported_inputs: list[str] = Field(default_factory=lambda: ["video"])
    outputs: list[str] = Field(default_factory=list)
    steps: list[str] = Field(..., min_length=1, description="Step ids from the step library")


class WorkflowSummary(BaseModel):
    """Lightweight workflow info for listings."""

    workflow_type: str
    name: str
    description: str
    estimated_duration_min: int
    complexity: WorkflowComplexity
    supported_inputs: list[str]
    outputs: list[str]
    step_count: int

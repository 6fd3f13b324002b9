"""Executor-side schemas for workflow runs and batch jobs.

Workflow definitions (what a workflow type consists of) live in
timeline_ai.workflows. These schemas describe what happens during and after
a run.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, Field


def new_workflow_id() -> str:
    return f"workflow-{uuid.uuid4().hex[:12]}"


def new_batch_job_id() -> str:
    return f"batch-{uuid.uuid4().hex[:12]}"


# --- Workflow steps ---


class StepCategory(str, Enum):
    ANALYSIS = "analysis"
    EDITING = "editing"
    ENHANCEMENT = "enhancement"
    EXPORT = "export"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepResult(BaseModel):
    """What a step's execute() returns."""

    success: bool
    outputs: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    skipped: bool = Field(
        default=False,
        description="Step had nothing to do for these params (logged as skipped)",
    )


# --- Workflow params ---


class WorkflowPreferences(BaseModel):
    target_duration: Optional[float] = Field(
        default=None, gt=0, description="Desired final duration in seconds"
    )
    style: str = "dynamic"
    pace: Literal["slow", "medium", "fast", "dynamic"] = "medium"
    color_grading: str = Field(
        default="auto", description="warm | cool | cinematic | natural | auto (no grading)"
    )
    stabilization: bool = True
    transition_style: str = "dissolve"
    include_transitions: bool = True
    include_subtitles: bool = False
    language: str = "auto"
    music_track: Optional[str] = None


class PlatformTarget(BaseModel):
    platform: str = Field(..., description="e.g. youtube, instagram, tiktok")
    aspect_ratio: str = "16:9"
    max_duration: Optional[float] = Field(default=None, gt=0)


class WorkflowParams(BaseModel):
    workflow_type: str
    input_videos: list[str] = Field(..., min_length=1)
    output_directory: str
    preferences: WorkflowPreferences = Field(default_factory=WorkflowPreferences)
    platform_targets: list[PlatformTarget] = Field(default_factory=list)


@dataclass
class WorkflowContext:
    """Mutable state shared by the steps of exactly one workflow run."""

    workflow_id: str
    params: WorkflowParams
    scratch_dir: Path
    intermediate_artifacts: dict[str, Any] = field(default_factory=dict)
    analysis_results: dict[str, Any] = field(default_factory=dict)
    pipeline_state: Optional[dict[str, Any]] = None
    progress_sink: Optional[Callable[[float, str], None]] = None


@dataclass
class WorkflowStepSpec:
    """A node of the step graph."""

    id: str
    name: str
    description: str
    category: StepCategory
    dependencies: list[str]
    estimated_duration_s: int
    execute: Callable[[WorkflowContext], StepResult]


# --- Workflow results ---


class ExecutionLogEntry(BaseModel):
    step_id: str
    step_name: str
    status: StepStatus
    duration_ms: int = 0
    detail: Optional[str] = None


class WorkflowOutput(BaseModel):
    type: Literal["main_video", "platform_video", "project"]
    file_path: str
    platform: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PipelineSummary(BaseModel):
    project_file: Optional[str] = None
    sections_created: int = 0
    total_duration: float = 0.0
    effects_applied: list[str] = Field(default_factory=list)
    transitions_used: int = 0
    music_track: Optional[str] = None
    subtitles_generated: int = 0


class WorkflowStatistics(BaseModel):
    processing_time_ms: int = 0
    steps_total: int = 0
    steps_completed: int = 0
    steps_failed: int = 0
    steps_skipped: int = 0
    automation_level: float = Field(
        default=0.0, description="Percentage of steps that completed automatically"
    )
    manual_adjustments_needed: list[str] = Field(default_factory=list)


class WorkflowResult(BaseModel):
    workflow_id: str
    workflow_type: str
    success: bool
    cancelled: bool = False
    outputs: list[WorkflowOutput] = Field(default_factory=list)
    pipeline_summary: PipelineSummary = Field(default_factory=PipelineSummary)
    statistics: WorkflowStatistics = Field(default_factory=WorkflowStatistics)
    suggestions: list[str] = Field(default_factory=list)
    execution_log: list[ExecutionLogEntry] = Field(default_factory=list)


class ActiveWorkflow(BaseModel):
    """Snapshot of a running workflow."""

    workflow_id: str
    workflow_type: str
    started_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    progress: float = 0.0
    current_step: Optional[str] = None


# --- Batch jobs ---

DEFAULT_MAX_CONCURRENT = 3


class BatchOperationType(str, Enum):
    VIDEO_ANALYSIS = "video_analysis"
    WHISPER_TRANSCRIPTION = "whisper_transcription"
    SUBTITLE_GENERATION = "subtitle_generation"
    QUALITY_ANALYSIS = "quality_analysis"
    SCENE_DETECTION = "scene_detection"
    MOTION_ANALYSIS = "motion_analysis"
    AUDIO_ANALYSIS = "audio_analysis"
    LANGUAGE_DETECTION = "language_detection"
    COMPREHENSIVE_ANALYSIS = "comprehensive_analysis"
    AI_DESCRIPTION = "ai_description"


class BatchJobStatus(str, Enum):
    """Batch job lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BatchJobRecord(BaseModel):
    """Outcome of one batch item."""

    key: str
    outcome: Literal["success", "error"]
    result: Optional[Any] = None
    error: Optional[str] = None


class BatchParams(BaseModel):
    operation: BatchOperationType
    clip_ids: list[str] = Field(..., min_length=1)
    max_concurrent: int = Field(default=DEFAULT_MAX_CONCURRENT, ge=1, le=16)
    options: dict[str, Any] = Field(default_factory=dict)


class BatchProgress(BaseModel):
    """Progress snapshot for a batch job."""

    job_id: str
    operation: BatchOperationType
    status: BatchJobStatus = BatchJobStatus.PENDING
    total: int = 0
    completed: int = 0
    failed: int = 0
    current_clip: Optional[str] = None
    started_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    finished_at: Optional[str] = None
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)
    outcomes: dict[str, BatchJobRecord] = Field(default_factory=dict)


class BatchStatistics(BaseModel):
    total_jobs: int = 0
    running_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    average_execution_time_ms: float = 0.0
    total_clips_processed: int = 0
    success_rate: float = 0.0

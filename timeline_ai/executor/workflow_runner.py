"""Workflow execution: runs a workflow type's steps in dependency order.

The executor:

1. Resolves the workflow definition and its cached step order
2. Creates the run's scratch directory (fatal on failure)
3. Runs every step against one shared WorkflowContext, reporting progress
   before each step. A failing or raising step is logged and the run moves
   on to the next step.
4. Collects outputs, statistics and suggestions (fatal on failure)
5. Removes the scratch directory (best effort) and unregisters the run

Cancellation removes the run from the active registry; the loop notices
before the next step starts. The step in flight runs to completion.
"""

import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from timeline_ai.executor.native_bridge import NativeBridge
from timeline_ai.executor.schemas import (
    ActiveWorkflow,
    ExecutionLogEntry,
    PipelineSummary,
    StepResult,
    StepStatus,
    WorkflowContext,
    WorkflowOutput,
    WorkflowParams,
    WorkflowResult,
    WorkflowStatistics,
    WorkflowStepSpec,
    new_workflow_id,
)
from timeline_ai.executor.step_graph import StepGraph
from timeline_ai.executor.steps import BuiltinSteps
from timeline_ai.workflows.registry import WorkflowRegistry
from timeline_ai.workflows.schemas import WorkflowSummary

logger = logging.getLogger(__name__)

SCRATCH_ROOT = Path(
    os.environ.get(
        "TIMELINE_AI_SCRATCH_DIR",
        os.path.join(tempfile.gettempdir(), "timeline_ai", "workflows"),
    )
)

ProgressSink = Callable[[float, str], None]


class WorkflowExecutionError(RuntimeError):
    """A workflow run failed outside step execution (setup or teardown)."""


class WorkflowExecutor:
    """Runs workflows built from the step library."""

    def __init__(
        self,
        bridge: NativeBridge,
        registry: Optional[WorkflowRegistry] = None,
        steps: Optional[dict[str, WorkflowStepSpec]] = None,
        scratch_root: Optional[Path] = None,
    ):
        self._bridge = bridge
        self._registry = registry or WorkflowRegistry()
        self._graph = StepGraph(steps if steps is not None else BuiltinSteps(bridge).specs())
        self._scratch_root = scratch_root or SCRATCH_ROOT
        self._active: dict[str, ActiveWorkflow] = {}
        self._active_lock = threading.Lock()

        # Resolve every definition up front so a bad one fails at startup
        for definition in self._registry.list_definitions():
            self._graph.execution_order(definition.workflow_type, definition.steps)

    # --- catalog / registry ---

    def get_available_workflows(self) -> list[WorkflowSummary]:
        return self._registry.list_all()

    def get_active_workflows(self) -> list[ActiveWorkflow]:
        with self._active_lock:
            return [w.model_copy() for w in self._active.values()]

    def cancel_workflow(self, workflow_id: str) -> bool:
        """Remove a run from the active registry. Returns False if unknown."""
        with self._active_lock:
            removed = self._active.pop(workflow_id, None)
        if removed is None:
            return False
        logger.info(f"[{workflow_id}] Cancellation requested")
        return True

    def _is_active(self, workflow_id: str) -> bool:
        with self._active_lock:
            return workflow_id in self._active

    def _update_active(self, workflow_id: str, progress: float, step_name: str) -> None:
        with self._active_lock:
            active = self._active.get(workflow_id)
            if active is not None:
                active.progress = progress
                active.current_step = step_name

    # --- execution ---

    def execute_workflow(
        self,
        params: WorkflowParams,
        progress_sink: Optional[ProgressSink] = None,
        workflow_id: Optional[str] = None,
    ) -> WorkflowResult:
        """Run one workflow to completion.

        Raises:
            WorkflowDefinitionError: Unknown workflow type or invalid steps
            WorkflowExecutionError: Setup or output collection failed
        """
        definition = self._registry.require(params.workflow_type)
        order = self._graph.execution_order(definition.workflow_type, definition.steps)
        workflow_id = workflow_id or new_workflow_id()
        start_time = time.time()

        scratch_dir = self._scratch_root / workflow_id
        try:
            self._bridge.invoke("create_directory", {"path": str(scratch_dir)})
        except Exception as e:
            raise WorkflowExecutionError(
                f"[{workflow_id}] Could not create scratch directory: {e}"
            ) from e

        context = WorkflowContext(
            workflow_id=workflow_id,
            params=params,
            scratch_dir=scratch_dir,
            progress_sink=progress_sink,
        )
        with self._active_lock:
            self._active[workflow_id] = ActiveWorkflow(
                workflow_id=workflow_id, workflow_type=params.workflow_type
            )

        logger.info(
            f"[{workflow_id}] Starting {params.workflow_type}: "
            f"{len(params.input_videos)} inputs, steps={[s.id for s in order]}"
        )

        try:
            execution_log: list[ExecutionLogEntry] = []
            cancelled = False
            for index, step in enumerate(order):
                if not self._is_active(workflow_id):
                    cancelled = True
                    logger.info(f"[{workflow_id}] Cancelled before step {step.id}")
                    break

                progress = index / len(order) * 100
                self._update_active(workflow_id, progress, step.name)
                if progress_sink is not None:
                    progress_sink(progress, step.name)

                execution_log.append(self._run_step(step, context))

            try:
                outputs = self._collect_outputs(context)
            except Exception as e:
                raise WorkflowExecutionError(
                    f"[{workflow_id}] Workflow execution failed: {e}"
                ) from e

            statistics = _compute_statistics(
                execution_log, len(order), int((time.time() - start_time) * 1000)
            )
            completed = statistics.steps_completed > 0
            result = WorkflowResult(
                workflow_id=workflow_id,
                workflow_type=params.workflow_type,
                success=completed,
                cancelled=cancelled,
                outputs=outputs,
                pipeline_summary=_summarize_pipeline(context),
                statistics=statistics,
                suggestions=_generate_suggestions(params, execution_log, cancelled),
                execution_log=execution_log,
            )
            if progress_sink is not None and not cancelled:
                progress_sink(100.0, "Completed")

            logger.info(
                f"[{workflow_id}] Finished: {statistics.steps_completed}/{len(order)} steps "
                f"completed, {statistics.steps_failed} failed, "
                f"{statistics.processing_time_ms}ms"
            )
            return result

        finally:
            with self._active_lock:
                self._active.pop(workflow_id, None)
            self._cleanup_scratch(workflow_id, scratch_dir)

    def _run_step(self, step: WorkflowStepSpec, context: WorkflowContext) -> ExecutionLogEntry:
        label = f"{context.workflow_id}/{step.id}"
        step_start = time.time()
        try:
            result: StepResult = step.execute(context)
        except Exception as e:
            duration_ms = int((time.time() - step_start) * 1000)
            logger.error(f"[{label}] Step raised: {e}", exc_info=True)
            return ExecutionLogEntry(
                step_id=step.id,
                step_name=step.name,
                status=StepStatus.FAILED,
                duration_ms=duration_ms,
                detail=str(e),
            )

        duration_ms = int((time.time() - step_start) * 1000)
        if not result.success:
            detail = "; ".join(result.errors) or "Step reported failure"
            logger.error(f"[{label}] Step failed: {detail}")
            status = StepStatus.FAILED
        elif result.skipped:
            detail = "; ".join(result.warnings) or None
            logger.info(f"[{label}] Skipped: {detail}")
            status = StepStatus.SKIPPED
        else:
            detail = "; ".join(result.errors + result.warnings) or None
            logger.info(f"[{label}] Completed in {duration_ms}ms")
            status = StepStatus.COMPLETED

        return ExecutionLogEntry(
            step_id=step.id,
            step_name=step.name,
            status=status,
            duration_ms=duration_ms,
            detail=detail,
        )

    def _collect_outputs(self, context: WorkflowContext) -> list[WorkflowOutput]:
        artifacts = context.intermediate_artifacts
        outputs = []

        final_video = artifacts.get("final_video")
        if final_video:
            metadata = self._bridge.invoke("ffmpeg_get_metadata", {"filePath": final_video}) or {}
            outputs.append(
                WorkflowOutput(
                    type="main_video",
                    file_path=final_video,
                    metadata={
                        "duration": metadata.get("duration", 0),
                        "width": metadata.get("width", 1920),
                        "height": metadata.get("height", 1080),
                        "file_size": metadata.get("fileSize", metadata.get("file_size", 0)),
                    },
                )
            )

        for platform, path in (artifacts.get("platform_videos") or {}).items():
            outputs.append(WorkflowOutput(type="platform_video", file_path=path, platform=platform))

        return outputs

    def _cleanup_scratch(self, workflow_id: str, scratch_dir: Path) -> None:
        try:
            self._bridge.invoke("remove_directory", {"path": str(scratch_dir)})
        except Exception as e:
            logger.warning(f"[{workflow_id}] Failed to remove scratch dir {scratch_dir}: {e}")


def _compute_statistics(
    execution_log: list[ExecutionLogEntry], total_steps: int, processing_time_ms: int
) -> WorkflowStatistics:
    completed = sum(1 for e in execution_log if e.status == StepStatus.COMPLETED)
    failed = [e for e in execution_log if e.status == StepStatus.FAILED]
    skipped = sum(1 for e in execution_log if e.status == StepStatus.SKIPPED)
    return WorkflowStatistics(
        processing_time_ms=processing_time_ms,
        steps_total=total_steps,
        steps_completed=completed,
        steps_failed=len(failed),
        steps_skipped=skipped,
        automation_level=round(completed / total_steps * 100, 1) if total_steps else 0.0,
        manual_adjustments_needed=[f"Redo '{e.step_name}' manually" for e in failed],
    )


def _summarize_pipeline(context: WorkflowContext) -> PipelineSummary:
    timeline = context.pipeline_state or {}
    sections = timeline.get("sections") or []
    audio_tracks = timeline.get("audio_tracks") or []
    return PipelineSummary(
        project_file=context.intermediate_artifacts.get("project_file"),
        sections_created=len(sections),
        total_duration=round(sum(s.get("duration", 0.0) for s in sections), 3),
        effects_applied=[e["type"] for e in timeline.get("effects") or []],
        transitions_used=len(timeline.get("transitions") or []),
        music_track=audio_tracks[0]["audio_file"] if audio_tracks else None,
        subtitles_generated=len(context.analysis_results.get("transcripts") or {}),
    )


def _generate_suggestions(
    params: WorkflowParams, execution_log: list[ExecutionLogEntry], cancelled: bool
) -> list[str]:
    suggestions = []
    if cancelled:
        suggestions.append("Workflow was cancelled; remaining steps did not run")
    failed = [e.step_name for e in execution_log if e.status == StepStatus.FAILED]
    if failed:
        suggestions.append(
            f"Some steps failed ({', '.join(failed)}); manual review recommended"
        )
    if params.preferences.target_duration:
        suggestions.append(
            f"Check that the final duration matches the {params.preferences.target_duration:g}s target"
        )
    suggestions.append("Preview the result before the final export")
    return suggestions

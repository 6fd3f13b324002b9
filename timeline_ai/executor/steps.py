"""Built-in workflow steps.

Each step reads and mutates the WorkflowContext and calls native media
operations through the bridge. Steps report problems through StepResult
(success=False with errors) or by raising; the executor treats both as a
non-fatal step failure.

Context keys written here:
- analysis_results["input_analysis"]: {video_path: quick analysis}
- analysis_results["scenes"]: {video_path: [scene, ...]}
- analysis_results["transcripts"]: {video_path: transcription}
- intermediate_artifacts["project_file"], ["final_video"],
  ["platform_videos"] ({platform: path})
- pipeline_state: the timeline (sections, effects, transitions, audio tracks)
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from timeline_ai.executor.native_bridge import NativeBridge
from timeline_ai.executor.schemas import (
    StepCategory,
    StepResult,
    WorkflowContext,
    WorkflowStepSpec,
)

logger = logging.getLogger(__name__)

SCENE_THRESHOLD = 0.3
MIN_SCENE_LENGTH_S = 2.0
DEFAULT_SECTION_LENGTH_S = 10.0

RENDER_SETTINGS = {
    "resolution": {"width": 1920, "height": 1080},
    "framerate": 30,
    "quality": "high",
}
PLATFORM_BITRATE_KBPS = 3500
PLATFORM_FRAMERATE = 30

COLOR_GRADING_PRESETS: dict[str, dict[str, int]] = {
    "warm": {"temperature": 200, "tint": 50, "saturation": 110},
    "cool": {"temperature": -200, "tint": -50, "saturation": 105},
    "cinematic": {"contrast": 120, "shadows": -30, "highlights": -20},
    "natural": {"exposure": 0, "contrast": 105, "saturation": 100},
}
STABILIZATION_SETTINGS = {"strength": 0.5, "smoothness": 0.7}

TRANSITION_DURATION_S = 1.0

PACE_MULTIPLIERS = {"slow": 0.8, "medium": 1.0, "fast": 1.2, "dynamic": 1.5}
MUSIC_VOLUME = 0.3
MUSIC_FADE_IN_S = 2.0
MUSIC_FADE_OUT_S = 3.0


def _scene_bounds(scene: Any) -> tuple[float, float]:
    """(start, end) seconds from a scene dict, tolerating key spellings."""
    if not isinstance(scene, dict):
        return 0.0, DEFAULT_SECTION_LENGTH_S
    start = scene.get("start_time", scene.get("startTime", scene.get("start", 0.0))) or 0.0
    end = scene.get("end_time", scene.get("endTime", scene.get("end")))
    if end is None:
        end = float(start) + DEFAULT_SECTION_LENGTH_S
    return float(start), float(end)


def _scene_list(native_result: Any) -> list[Any]:
    if isinstance(native_result, dict):
        return list(native_result.get("scenes") or [])
    if isinstance(native_result, list):
        return native_result
    return []


def build_sections(
    scenes_by_video: dict[str, list[Any]],
    durations: dict[str, float],
    target_duration: Optional[float] = None,
) -> list[dict[str, Any]]:
    """Timeline sections from detected scenes, capped at target_duration.

    A video with no detected scenes contributes one section spanning its
    probed duration.
    """
    spans: list[tuple[str, float, float]] = []
    for video, scenes in scenes_by_video.items():
        if scenes:
            spans.extend((video, *_scene_bounds(scene)) for scene in scenes)
        elif durations.get(video):
            spans.append((video, 0.0, float(durations[video])))

    sections = []
    total = 0.0
    for video, start, end in spans:
        if end <= start:
            continue
        if target_duration is not None:
            if total >= target_duration:
                break
            end = min(end, start + (target_duration - total))
        index = len(sections)
        sections.append({
            "id": f"section_{index}",
            "name": f"Scene {index + 1}",
            "source": video,
            "start_time": start,
            "end_time": end,
            "duration": round(end - start, 3),
        })
        total += end - start
    return sections


def build_transitions(sections: list[dict[str, Any]], style: str) -> list[dict[str, Any]]:
    """One transition between each pair of consecutive sections."""
    return [
        {
            "type": style,
            "duration": TRANSITION_DURATION_S,
            "from_section": sections[i]["id"],
            "to_section": sections[i + 1]["id"],
        }
        for i in range(len(sections) - 1)
    ]


def build_music_track(sections: list[dict[str, Any]], music_track: str, pace: str) -> dict[str, Any]:
    sync_points = []
    position = 0.0
    for section in sections:
        sync_points.append(round(position, 3))
        position += section["duration"]
    return {
        "audio_file": music_track,
        "volume": MUSIC_VOLUME,
        "fade_in": MUSIC_FADE_IN_S,
        "fade_out": MUSIC_FADE_OUT_S,
        "tempo_multiplier": PACE_MULTIPLIERS.get(pace, 1.0),
        "sync_points": sync_points,
    }


def platform_resolution(aspect_ratio: str) -> tuple[int, int]:
    return (1920, 1080) if aspect_ratio == "16:9" else (1080, 1920)


class BuiltinSteps:
    """The step library every workflow type draws from."""

    def __init__(self, bridge: NativeBridge):
        self._bridge = bridge

    def specs(self) -> dict[str, WorkflowStepSpec]:
        specs = [
            WorkflowStepSpec(
                id="analyze_input",
                name="Analyze input",
                description="Probe input media for duration, streams and quality",
                category=StepCategory.ANALYSIS,
                dependencies=[],
                estimated_duration_s=30,
                execute=self.analyze_input,
            ),
            WorkflowStepSpec(
                id="detect_scenes",
                name="Detect scenes",
                description="Find scene boundaries to cut on",
                category=StepCategory.ANALYSIS,
                dependencies=["analyze_input"],
                estimated_duration_s=45,
                execute=self.detect_scenes,
            ),
            WorkflowStepSpec(
                id="generate_subtitles",
                name="Generate subtitles",
                description="Transcribe speech into subtitles",
                category=StepCategory.ANALYSIS,
                dependencies=["analyze_input"],
                estimated_duration_s=120,
                execute=self.generate_subtitles,
            ),
            WorkflowStepSpec(
                id="create_timeline",
                name="Create timeline",
                description="Lay detected scenes out as timeline sections",
                category=StepCategory.EDITING,
                dependencies=["detect_scenes"],
                estimated_duration_s=60,
                execute=self.create_timeline,
            ),
            WorkflowStepSpec(
                id="apply_effects",
                name="Apply effects",
                description="Color grading and stabilization",
                category=StepCategory.ENHANCEMENT,
                dependencies=["create_timeline"],
                estimated_duration_s=90,
                execute=self.apply_effects,
            ),
            WorkflowStepSpec(
                id="add_transitions",
                name="Add transitions",
                description="Transitions between consecutive sections",
                category=StepCategory.EDITING,
                dependencies=["create_timeline"],
                estimated_duration_s=30,
                execute=self.add_transitions,
            ),
            WorkflowStepSpec(
                id="add_music",
                name="Add music",
                description="Background music synced to the cut",
                category=StepCategory.ENHANCEMENT,
                dependencies=["create_timeline"],
                estimated_duration_s=45,
                execute=self.add_music,
            ),
            WorkflowStepSpec(
                id="export_video",
                name="Export video",
                description="Render the final video",
                category=StepCategory.EXPORT,
                dependencies=["apply_effects", "add_transitions"],
                estimated_duration_s=300,
                execute=self.export_video,
            ),
            WorkflowStepSpec(
                id="optimize_platforms",
                name="Optimize for platforms",
                description="Re-encode the render for each target platform",
                category=StepCategory.EXPORT,
                dependencies=["export_video"],
                estimated_duration_s=180,
                execute=self.optimize_platforms,
            ),
        ]
        return {spec.id: spec for spec in specs}

    # --- analysis ---

    def analyze_input(self, context: WorkflowContext) -> StepResult:
        analyses: dict[str, Any] = {}
        errors = []
        for video in context.params.input_videos:
            try:
                analyses[video] = self._bridge.invoke("ffmpeg_quick_analysis", {"filePath": video})
            except Exception as e:
                errors.append(f"{video}: {e}")

        context.analysis_results["input_analysis"] = analyses
        return StepResult(
            success=bool(analyses),
            outputs={"analyzed_files": len(analyses)},
            errors=errors,
        )

    def detect_scenes(self, context: WorkflowContext) -> StepResult:
        scenes: dict[str, list[Any]] = {}
        warnings = []
        for video in context.params.input_videos:
            result = self._bridge.invoke(
                "ffmpeg_detect_scenes",
                {
                    "filePath": video,
                    "threshold": SCENE_THRESHOLD,
                    "minSceneLength": MIN_SCENE_LENGTH_S,
                },
            )
            scenes[video] = _scene_list(result)
            if not scenes[video]:
                warnings.append(f"No scene changes detected in {video}")

        context.analysis_results["scenes"] = scenes
        return StepResult(
            success=True,
            outputs={"scenes_detected": sum(len(s) for s in scenes.values())},
            warnings=warnings,
        )

    def generate_subtitles(self, context: WorkflowContext) -> StepResult:
        preferences = context.params.preferences
        if not preferences.include_subtitles:
            return StepResult(success=True, skipped=True, warnings=["Subtitles not requested"])

        transcripts: dict[str, Any] = {}
        for i, video in enumerate(context.params.input_videos):
            audio_path = self._bridge.invoke(
                "extract_audio_for_whisper",
                {
                    "videoFilePath": video,
                    "outputFormat": "wav",
                    "outputPath": str(context.scratch_dir / f"audio_{i}.wav"),
                },
            )
            transcripts[video] = self._bridge.invoke(
                "whisper_transcribe_openai",
                {
                    "audioFilePath": audio_path,
                    "model": "whisper-1",
                    "language": preferences.language,
                    "responseFormat": "verbose_json",
                },
            )

        context.analysis_results["transcripts"] = transcripts
        return StepResult(success=True, outputs={"transcripts": len(transcripts)})

    # --- editing ---

    def create_timeline(self, context: WorkflowContext) -> StepResult:
        scenes = context.analysis_results.get("scenes") or {}
        analyses = context.analysis_results.get("input_analysis") or {}
        durations = {
            video: analysis.get("duration", 0.0)
            for video, analysis in analyses.items()
            if isinstance(analysis, dict)
        }
        if not scenes:
            scenes = {video: [] for video in context.params.input_videos}

        sections = build_sections(
            scenes, durations, context.params.preferences.target_duration
        )
        if not sections:
            return StepResult(
                success=False,
                errors=["No scenes or clip durations available to build a timeline"],
            )

        timeline = {
            "version": "1.0",
            "settings": {
                "resolution": RENDER_SETTINGS["resolution"],
                "framerate": RENDER_SETTINGS["framerate"],
            },
            "sections": sections,
            "effects": [],
            "transitions": [],
            "audio_tracks": [],
        }
        project_file = str(context.scratch_dir / "project.json")
        self._bridge.invoke(
            "create_timeline_project",
            {"projectData": json.dumps(timeline), "outputPath": project_file},
        )

        context.pipeline_state = timeline
        context.intermediate_artifacts["project_file"] = project_file
        return StepResult(
            success=True,
            outputs={"sections": len(sections), "project_file": project_file},
        )

    def apply_effects(self, context: WorkflowContext) -> StepResult:
        if context.pipeline_state is None:
            return StepResult(success=False, errors=["Timeline was not created"])

        preferences = context.params.preferences
        effects = []
        warnings = []
        if preferences.color_grading != "auto":
            preset = preferences.color_grading
            if preset not in COLOR_GRADING_PRESETS:
                warnings.append(f"Unknown color grading '{preset}', using natural")
                preset = "natural"
            effects.append({
                "type": "color_correction",
                "preset": preset,
                "settings": COLOR_GRADING_PRESETS[preset],
            })
        if preferences.stabilization:
            effects.append({"type": "stabilization", "settings": STABILIZATION_SETTINGS})

        if not effects:
            return StepResult(success=True, skipped=True, warnings=["No effects requested"])

        context.pipeline_state["effects"] = effects
        return StepResult(
            success=True,
            outputs={"effects": [e["type"] for e in effects]},
            warnings=warnings,
        )

    def add_transitions(self, context: WorkflowContext) -> StepResult:
        if context.pipeline_state is None:
            return StepResult(success=False, errors=["Timeline was not created"])

        preferences = context.params.preferences
        if not preferences.include_transitions:
            return StepResult(success=True, skipped=True, warnings=["Transitions disabled"])

        sections = context.pipeline_state["sections"]
        if len(sections) < 2:
            return StepResult(
                success=True, skipped=True, warnings=["Single section, no transitions needed"]
            )

        transitions = build_transitions(sections, preferences.transition_style)
        context.pipeline_state["transitions"] = transitions
        return StepResult(success=True, outputs={"transitions": len(transitions)})

    def add_music(self, context: WorkflowContext) -> StepResult:
        if context.pipeline_state is None:
            return StepResult(success=False, errors=["Timeline was not created"])

        preferences = context.params.preferences
        if not preferences.music_track:
            return StepResult(success=True, skipped=True, warnings=["No music track provided"])

        track = build_music_track(
            context.pipeline_state["sections"], preferences.music_track, preferences.pace
        )
        context.pipeline_state["audio_tracks"] = [track]
        return StepResult(
            success=True,
            outputs={"music_track": preferences.music_track, "tempo": track["tempo_multiplier"]},
        )

    # --- export ---

    def export_video(self, context: WorkflowContext) -> StepResult:
        project_file = context.intermediate_artifacts.get("project_file")
        if context.pipeline_state is None or not project_file:
            return StepResult(success=False, errors=["Nothing to export: timeline missing"])

        output_path = str(Path(context.params.output_directory) / f"{context.workflow_id}.mp4")
        render_result = self._bridge.invoke(
            "compile_workflow_video",
            {
                "projectFile": project_file,
                "projectData": json.dumps(context.pipeline_state),
                "outputPath": output_path,
                "settings": json.dumps(RENDER_SETTINGS),
            },
        )

        context.intermediate_artifacts["final_video"] = output_path
        return StepResult(
            success=True,
            outputs={"final_video": output_path, "render": render_result},
            next_steps=["Preview the render before publishing"],
        )

    def optimize_platforms(self, context: WorkflowContext) -> StepResult:
        targets = context.params.platform_targets
        if not targets:
            return StepResult(success=True, skipped=True, warnings=["No platform targets"])

        source = context.intermediate_artifacts.get("final_video")
        if not source:
            return StepResult(success=False, errors=["No rendered video to optimize"])

        platform_videos: dict[str, str] = {}
        errors = []
        for target in targets:
            width, height = platform_resolution(target.aspect_ratio)
            optimized_path = str(
                Path(context.params.output_directory)
                / f"{context.workflow_id}_{target.platform}.mp4"
            )
            args: dict[str, Any] = {
                "inputPath": source,
                "outputPath": optimized_path,
                "targetWidth": width,
                "targetHeight": height,
                "targetBitrate": PLATFORM_BITRATE_KBPS,
                "targetFramerate": PLATFORM_FRAMERATE,
                "audioCodec": "aac",
                "videoCodec": "h264",
            }
            if target.max_duration:
                args["maxDuration"] = target.max_duration
            try:
                self._bridge.invoke("ffmpeg_optimize_for_platform", args)
                platform_videos[target.platform] = optimized_path
            except Exception as e:
                errors.append(f"{target.platform}: {e}")

        context.intermediate_artifacts["platform_videos"] = platform_videos
        return StepResult(
            success=bool(platform_videos),
            outputs={"platforms": sorted(platform_videos)},
            errors=errors,
        )

"""Per-clip operations run by batch jobs.

Every operation takes a clip id, resolves it to a media path and returns a
JSON-serializable dict. Media work goes through the native bridge; the
ai_description operation also asks a chat model (through the router) to
describe the clip from its probe data.
"""

import json
import logging
import os
import tempfile
import textwrap
from typing import Any, Callable, Optional

from timeline_ai.executor.native_bridge import NativeBridge
from timeline_ai.executor.schemas import BatchOperationType
from timeline_ai.llm.json_output import parse_json_reply
from timeline_ai.llm.router import ProviderRouter
from timeline_ai.llm.schemas import Message, MessageRole, RequestOptions

logger = logging.getLogger(__name__)

MEDIA_ROOT = os.environ.get(
    "TIMELINE_AI_MEDIA_ROOT", os.path.join(tempfile.gettempdir(), "timeline_ai", "media")
)

SUBTITLE_CHARS_PER_LINE = 42
DESCRIPTION_MODEL = "gpt-4o"
DESCRIPTION_FALLBACK_MODELS = ["claude-4-sonnet"]

DESCRIPTION_SYSTEM_PROMPT = (
    "You are a video editor's assistant. Given technical probe data for a clip, "
    "describe what the clip likely contains and how it could be used in an edit. "
    'Reply with JSON only: {"description": str, "tags": [str], "mood": str, '
    '"suggested_use": str}'
)


def default_clip_resolver(clip_id: str) -> str:
    return os.path.join(MEDIA_ROOT, f"{clip_id}.mp4")


def wrap_subtitle_lines(text: str, max_chars: int = SUBTITLE_CHARS_PER_LINE) -> list[str]:
    """Split transcript text into subtitle lines of at most max_chars (whole words)."""
    return textwrap.wrap(text, width=max_chars, break_long_words=False, break_on_hyphens=False)


class ClipOperations:
    """Dispatches batch operation types to their implementations."""

    def __init__(
        self,
        bridge: NativeBridge,
        router: Optional[ProviderRouter] = None,
        clip_resolver: Callable[[str], str] = default_clip_resolver,
    ):
        self._bridge = bridge
        self._router = router
        self._resolve = clip_resolver
        self._handlers: dict[BatchOperationType, Callable[[str, dict[str, Any]], dict[str, Any]]] = {
            BatchOperationType.VIDEO_ANALYSIS: self.video_analysis,
            BatchOperationType.WHISPER_TRANSCRIPTION: self.whisper_transcription,
            BatchOperationType.SUBTITLE_GENERATION: self.subtitle_generation,
            BatchOperationType.QUALITY_ANALYSIS: self.quality_analysis,
            BatchOperationType.SCENE_DETECTION: self.scene_detection,
            BatchOperationType.MOTION_ANALYSIS: self.motion_analysis,
            BatchOperationType.AUDIO_ANALYSIS: self.audio_analysis,
            BatchOperationType.LANGUAGE_DETECTION: self.language_detection,
            BatchOperationType.COMPREHENSIVE_ANALYSIS: self.comprehensive_analysis,
            BatchOperationType.AI_DESCRIPTION: self.ai_description,
        }

    def run(
        self, operation: BatchOperationType, clip_id: str, options: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        return self._handlers[operation](clip_id, options or {})

    def _invoke(self, operation: str, args: dict[str, Any]) -> dict[str, Any]:
        result = self._bridge.invoke(operation, args)
        return result if isinstance(result, dict) else {"result": result}

    def _extract_audio(self, clip_id: str) -> str:
        return self._bridge.invoke(
            "extract_audio_for_whisper",
            {"videoFilePath": self._resolve(clip_id), "outputFormat": "wav"},
        )

    def video_analysis(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        return self._invoke("ffmpeg_quick_analysis", {"filePath": self._resolve(clip_id)})

    def whisper_transcription(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        return self._invoke(
            "whisper_transcribe_openai",
            {
                "audioFilePath": self._extract_audio(clip_id),
                "model": options.get("model", "whisper-1"),
                "language": options.get("language"),
                "responseFormat": "verbose_json",
                "temperature": 0,
                "timestampGranularities": ["segment"],
            },
        )

    def subtitle_generation(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        transcription = self.whisper_transcription(clip_id, options)
        text = transcription.get("text", "")
        max_chars = options.get("max_characters_per_line", SUBTITLE_CHARS_PER_LINE)
        lines = wrap_subtitle_lines(text, max_chars)
        return {
            "subtitles": lines,
            "format": options.get("format", "srt"),
            "line_count": len(lines),
            "total_characters": len(text),
        }

    def quality_analysis(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        return self._invoke(
            "ffmpeg_analyze_quality",
            {
                "filePath": self._resolve(clip_id),
                "enableBitrateAnalysis": True,
                "enableResolutionAnalysis": True,
            },
        )

    def scene_detection(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        return self._invoke(
            "ffmpeg_detect_scenes",
            {
                "filePath": self._resolve(clip_id),
                "threshold": options.get("threshold", 0.3),
                "minSceneLength": options.get("min_scene_length", 1.0),
            },
        )

    def motion_analysis(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        return self._invoke(
            "ffmpeg_analyze_motion",
            {
                "filePath": self._resolve(clip_id),
                "algorithm": options.get("algorithm", "optical_flow"),
                "sensitivity": options.get("sensitivity", 0.1),
            },
        )

    def audio_analysis(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        return self._invoke(
            "ffmpeg_analyze_audio",
            {
                "filePath": self._resolve(clip_id),
                "enableSpectralAnalysis": True,
                "enableDynamicsAnalysis": True,
            },
        )

    def language_detection(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        transcription = self.whisper_transcription(clip_id, {"model": "whisper-1"})
        return {"language": transcription.get("language") or "unknown"}

    def comprehensive_analysis(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        # Sequential: the batch scheduler already bounds parallelism per clip
        return {
            "clip_id": clip_id,
            "video": self.video_analysis(clip_id, options),
            "audio": self.audio_analysis(clip_id, options),
            "quality": self.quality_analysis(clip_id, options),
        }

    def ai_description(self, clip_id: str, options: dict[str, Any]) -> dict[str, Any]:
        if self._router is None:
            raise ValueError("ai_description requires a provider router")

        probe = self.video_analysis(clip_id, options)
        messages = [
            Message(role=MessageRole.SYSTEM, content=DESCRIPTION_SYSTEM_PROMPT),
            Message(
                role=MessageRole.USER,
                content=f"Clip {clip_id} probe data:\n{json.dumps(probe, indent=2, default=str)}",
            ),
        ]
        dispatch = self._router.dispatch(
            options.get("model", DESCRIPTION_MODEL),
            messages,
            RequestOptions(
                temperature=0.3,
                max_tokens=800,
                fallback_model_ids=options.get("fallback_models", DESCRIPTION_FALLBACK_MODELS),
            ),
        )

        try:
            description = parse_json_reply(dispatch.content)
        except json.JSONDecodeError:
            logger.warning(f"[{clip_id}] Model reply was not JSON, keeping raw text")
            description = {"description": dispatch.content, "tags": []}

        description["clip_id"] = clip_id
        description["model_used"] = dispatch.model_id
        return description

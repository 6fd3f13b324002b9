import threading
import time

import pytest

from timeline_ai.executor.batch_operations import ClipOperations, wrap_subtitle_lines
from timeline_ai.executor.batch_runner import BatchRunner
from timeline_ai.executor.batch_scheduler import chunked, run_batch
from timeline_ai.executor.job_manager import JobManager
from timeline_ai.executor.native_bridge import NativeOperationError
from timeline_ai.executor.schemas import BatchJobStatus, BatchOperationType, BatchParams
from timeline_ai.llm.router import ProviderRouter
from timeline_ai.llm.schemas import ProviderKind

from tests.fakes import FakeBackend, FakeBridge


def _operations(bridge, router=None) -> ClipOperations:
    return ClipOperations(bridge, router=router, clip_resolver=lambda clip_id: f"/media/{clip_id}.mp4")


# --- scheduler ---


def test_chunked():
    assert chunked(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]


def test_next_chunk_starts_after_previous_chunk_settles():
    events = []
    lock = threading.Lock()
    active = 0
    peak = 0

    def worker(key):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
            events.append(("start", key))
        time.sleep(0.02 if key in ("a", "c") else 0.001)
        with lock:
            active -= 1
            events.append(("end", key))
        return key.upper()

    results = run_batch(["a", "b", "c", "d", "e"], worker, max_concurrent=2)

    assert results == {"a": "A", "b": "B", "c": "C", "d": "D", "e": "E"}
    assert peak <= 2
    position = {event: i for i, event in enumerate(events)}
    assert max(position[("end", "a")], position[("end", "b")]) < min(
        position[("start", "c")], position[("start", "d")]
    )
    assert max(position[("end", "c")], position[("end", "d")]) < position[("start", "e")]


def test_failures_are_isolated_and_reported():
    progress = []
    failures = []

    def worker(key):
        if key == "bad":
            raise ValueError("corrupt clip")
        return len(key)

    results = run_batch(
        ["ok", "bad", "fine"],
        worker,
        max_concurrent=3,
        progress_callback=lambda done, total, key: progress.append((done, total, key)),
        on_error=lambda key, e: failures.append((key, str(e))),
    )

    assert results == {"ok": 2, "fine": 4}
    assert failures == [("bad", "corrupt clip")]
    assert sorted(done for done, _, _ in progress) == [1, 2]
    assert {key for _, _, key in progress} == {"ok", "fine"}
    assert all(total == 3 for _, total, _ in progress)


def test_cancellation_is_checked_between_chunks():
    started = []
    cancelled = threading.Event()

    def worker(key):
        started.append(key)
        cancelled.set()
        return key

    results = run_batch(["a", "b", "c"], worker, max_concurrent=1, cancellation_check=cancelled.is_set)

    assert started == ["a"]
    assert results == {"a": "a"}


def test_max_concurrent_must_be_positive():
    with pytest.raises(ValueError):
        run_batch(["a"], lambda key: key, max_concurrent=0)


# --- clip operations ---


def test_subtitle_generation_wraps_transcript():
    bridge = FakeBridge(
        {
            "extract_audio_for_whisper": "/tmp/clip.wav",
            "whisper_transcribe_openai": {"text": "the quick brown fox jumps over the lazy dog", "language": "en"},
        }
    )

    result = _operations(bridge).run(
        BatchOperationType.SUBTITLE_GENERATION, "clip1", {"max_characters_per_line": 16}
    )

    assert result["subtitles"] == ["the quick brown", "fox jumps over", "the lazy dog"]
    assert result["line_count"] == 3
    transcribe_args = next(args for op, args in bridge.calls if op == "whisper_transcribe_openai")
    assert transcribe_args["audioFilePath"] == "/tmp/clip.wav"


def test_language_detection_defaults_to_unknown():
    bridge = FakeBridge({"extract_audio_for_whisper": "/tmp/a.wav", "whisper_transcribe_openai": {"text": ""}})
    assert _operations(bridge).run(BatchOperationType.LANGUAGE_DETECTION, "c") == {"language": "unknown"}


def test_comprehensive_analysis_combines_probes():
    bridge = FakeBridge({"ffmpeg_quick_analysis": {"duration": 4.0}})

    result = _operations(bridge).run(BatchOperationType.COMPREHENSIVE_ANALYSIS, "c9")

    assert result["clip_id"] == "c9"
    assert result["video"] == {"duration": 4.0}
    assert bridge.operations() == [
        "ffmpeg_quick_analysis",
        "ffmpeg_analyze_audio",
        "ffmpeg_analyze_quality",
    ]
    assert bridge.calls[0][1] == {"filePath": "/media/c9.mp4"}


def test_ai_description_parses_model_json(catalog):
    reply = '```json\n{"description": "Waves at sunset", "tags": ["beach", "golden hour"]}\n```'
    openai = FakeBackend(ProviderKind.OPENAI, [reply])
    router = ProviderRouter({ProviderKind.OPENAI: openai}, catalog=catalog)

    result = _operations(FakeBridge({"ffmpeg_quick_analysis": {"duration": 8.0}}), router).run(
        BatchOperationType.AI_DESCRIPTION, "beach"
    )

    assert result == {
        "description": "Waves at sunset",
        "tags": ["beach", "golden hour"],
        "clip_id": "beach",
        "model_used": "gpt-4o",
    }
    _, messages, options = openai.calls[0]
    assert '"duration": 8.0' in messages[-1].content
    assert options.fallback_model_ids == ["claude-4-sonnet"]


def test_ai_description_keeps_non_json_reply(catalog):
    router = ProviderRouter(
        {ProviderKind.OPENAI: FakeBackend(ProviderKind.OPENAI, ["A calm beach."])}, catalog=catalog
    )

    result = _operations(FakeBridge(), router).run(BatchOperationType.AI_DESCRIPTION, "beach")

    assert result["description"] == "A calm beach."
    assert result["tags"] == []


def test_ai_description_requires_router():
    with pytest.raises(ValueError):
        _operations(FakeBridge()).run(BatchOperationType.AI_DESCRIPTION, "x")


def test_wrap_subtitle_lines_keeps_long_words_whole():
    assert wrap_subtitle_lines("supercalifragilistic yes", 10) == ["supercalifragilistic", "yes"]


# --- runner and job tracking ---


def test_batch_job_runs_in_background_and_records_outcomes():
    bridge = FakeBridge(
        {
            "ffmpeg_quick_analysis": lambda args: (
                _raise(NativeOperationError("unreadable", "ffmpeg_quick_analysis"))
                if "broken" in args["filePath"]
                else {"duration": 3.0}
            )
        }
    )
    runner = BatchRunner(_operations(bridge))

    job_id, thread = runner.start_batch_operation(
        BatchParams(operation=BatchOperationType.VIDEO_ANALYSIS, clip_ids=["c1", "broken", "c3"], max_concurrent=2)
    )
    thread.join(timeout=5)

    job = runner.get_progress(job_id)
    assert job.status == BatchJobStatus.COMPLETED
    assert (job.total, job.completed, job.failed) == (3, 2, 1)
    assert job.outcomes["c1"].result == {"duration": 3.0}
    assert job.outcomes["broken"].outcome == "error"
    assert job.errors == ["broken: unreadable"]
    assert job.finished_at is not None
    assert [j.job_id for j in runner.get_history()] == [job_id]


def _raise(error):
    raise error


def test_batch_with_no_successes_is_failed():
    bridge = FakeBridge({"ffmpeg_quick_analysis": NativeOperationError("down", "ffmpeg_quick_analysis")})
    runner = BatchRunner(_operations(bridge))

    job_id, thread = runner.start_batch_operation(
        BatchParams(operation=BatchOperationType.VIDEO_ANALYSIS, clip_ids=["a", "b"])
    )
    thread.join(timeout=5)

    assert runner.get_progress(job_id).status == BatchJobStatus.FAILED
    assert runner.get_statistics().failed_jobs == 1


def test_cancelled_job_stops_before_next_chunk():
    runner = BatchRunner(_operations(FakeBridge()))
    params = BatchParams(operation=BatchOperationType.VIDEO_ANALYSIS, clip_ids=["a", "b", "c"], max_concurrent=1)
    job = runner.jobs.create_job(params.operation, total=3)

    assert runner.cancel(job.job_id) is True
    final = runner.run_batch_operation(job.job_id, params)

    assert final.status == BatchJobStatus.CANCELLED
    assert final.completed == 0
    assert runner.cancel(job.job_id) is False


def test_analyze_clips_returns_successful_results():
    bridge = FakeBridge({"ffmpeg_analyze_quality": lambda args: {"path": args["filePath"]}})
    runner = BatchRunner(_operations(bridge))
    progress = []

    results = runner.analyze_clips(
        ["x", "y"],
        operation=BatchOperationType.QUALITY_ANALYSIS,
        progress_callback=lambda done, total, key: progress.append(done),
    )

    assert results == {"x": {"path": "/media/x.mp4"}, "y": {"path": "/media/y.mp4"}}
    assert sorted(progress) == [1, 2]


def test_analyze_clips_reports_progress_for_successes_only():
    def quality(args):
        if args["filePath"].endswith("bad.mp4"):
            raise RuntimeError("unreadable")
        return {"path": args["filePath"]}

    runner = BatchRunner(_operations(FakeBridge({"ffmpeg_analyze_quality": quality})))
    progress = []

    results = runner.analyze_clips(
        ["bad", "ok"],
        operation=BatchOperationType.QUALITY_ANALYSIS,
        progress_callback=lambda done, total, key: progress.append((done, total, key)),
    )

    assert results == {"ok": {"path": "/media/ok.mp4"}}
    assert progress == [(1, 2, "ok")]


def test_job_history_is_bounded_and_clearable():
    jobs = JobManager(history_limit=2)
    ids = []
    for _ in range(3):
        job = jobs.create_job(BatchOperationType.SCENE_DETECTION, total=1)
        jobs.mark_running(job.job_id)
        jobs.record_success(job.job_id, "clip", {"scenes": []})
        jobs.finish_job(job.job_id, BatchJobStatus.COMPLETED)
        ids.append(job.job_id)

    assert [j.job_id for j in jobs.get_history()] == ids[1:]
    assert jobs.get_job(ids[0]) is None

    stats = jobs.get_statistics()
    assert stats.total_jobs == 2
    assert stats.completed_jobs == 2
    assert stats.success_rate == 100.0

    jobs.clear_history()
    assert jobs.get_history() == []


def test_snapshots_are_copies():
    jobs = JobManager()
    job = jobs.create_job(BatchOperationType.AUDIO_ANALYSIS, total=2)

    snapshot = jobs.get_job(job.job_id)
    snapshot.completed = 99

    assert jobs.get_job(job.job_id).completed == 0
    assert [j.job_id for j in jobs.list_active()] == [job.job_id]

import sys
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

from tests.fakes import FakeBridge, StaticCredentials  # noqa: E402
from timeline_ai.model_catalog.registry import ModelCatalog  # noqa: E402


@pytest.fixture
def catalog() -> ModelCatalog:
    return ModelCatalog()


@pytest.fixture
def credentials() -> StaticCredentials:
    return StaticCredentials({"claude": "sk-ant-test", "openai": "sk-test", "deepseek": "ds-test"})


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge(
        {
            "ffmpeg_quick_analysis": {"duration": 30.0, "width": 1920, "height": 1080},
            "ffmpeg_detect_scenes": {
                "scenes": [
                    {"start_time": 0.0, "end_time": 12.0},
                    {"start_time": 12.0, "end_time": 30.0},
                ]
            },
            "ffmpeg_get_metadata": {"duration": 30.0, "width": 1920, "height": 1080, "fileSize": 1024},
        }
    )


@pytest.fixture
def retry_delays(monkeypatch):
    """Record dispatch backoff delays instead of sleeping."""
    delays: list[float] = []
    monkeypatch.setattr("timeline_ai.llm.router.time.sleep", delays.append)
    return delays

import json
import time

import pytest
from fastapi.testclient import TestClient

from timeline_ai.api.dependencies import Services
from timeline_ai.api.main import create_app
from timeline_ai.executor.batch_operations import ClipOperations
from timeline_ai.executor.batch_runner import BatchRunner
from timeline_ai.executor.workflow_runner import WorkflowExecutor
from timeline_ai.llm.errors import CredentialMissingError, UpstreamError
from timeline_ai.llm.router import ProviderRouter
from timeline_ai.llm.schemas import InstalledModel, ProviderKind

from tests.fakes import FakeBackend

CHAT_BODY = {
    "model_id": "claude-4-sonnet",
    "messages": [{"role": "user", "content": "Name this clip."}],
}


@pytest.fixture
def backends():
    return {
        ProviderKind.CLAUDE: FakeBackend(ProviderKind.CLAUDE, ["Golden Hour"]),
        ProviderKind.OPENAI: FakeBackend(ProviderKind.OPENAI, ["gpt says hi"], has_credential=False),
        ProviderKind.DEEPSEEK: FakeBackend(ProviderKind.DEEPSEEK, ["deep thoughts"]),
        ProviderKind.OLLAMA: FakeBackend(
            ProviderKind.OLLAMA, ["local words"], installed=[InstalledModel(name="llama3:8b")]
        ),
    }


@pytest.fixture
def client(backends, bridge, catalog, tmp_path):
    services = Services(
        provider_router=ProviderRouter(backends, catalog=catalog),
        workflow_executor=WorkflowExecutor(bridge, scratch_root=tmp_path),
        batch_runner=BatchRunner(
            ClipOperations(bridge, clip_resolver=lambda clip_id: f"/media/{clip_id}.mp4")
        ),
    )
    with TestClient(create_app(services)) as test_client:
        yield test_client


def test_root_and_health(client):
    assert client.get("/").json()["endpoints"]["chat"] == "/v1/chat"

    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["workflows_loaded"] == 10
    assert health["active_workflows"] == 0


def test_list_models_filters_by_provider(client):
    models = client.get("/v1/models").json()
    ids = {m["id"] for m in models}
    assert "claude-4-sonnet" in ids
    assert "llama3:8b" in ids
    assert "gpt-4o" not in ids

    local = client.get("/v1/models", params={"provider": "ollama"}).json()
    assert [m["id"] for m in local] == ["llama3:8b"]


def test_model_availability(client):
    body = client.get("/v1/models/deepseek-chat/availability").json()
    assert body == {"model_id": "deepseek-chat", "provider_kind": "deepseek", "available": True}


def test_chat_dispatch_and_cache(client, backends):
    first = client.post("/v1/chat", json=CHAT_BODY)
    second = client.post("/v1/chat", json=CHAT_BODY)

    assert first.status_code == 200
    assert first.json()["content"] == "Golden Hour"
    assert first.json()["cached"] is False
    assert second.json()["cached"] is True
    assert len(backends[ProviderKind.CLAUDE].calls) == 1
    assert client.get("/v1/cache/stats").json()["size"] == 1

    assert client.delete("/v1/cache").json() == {"cleared": True}
    assert client.get("/v1/cache/stats").json()["size"] == 0


def test_chat_exhausted_returns_bad_gateway(client, backends):
    backends[ProviderKind.CLAUDE]._outcomes = [UpstreamError("Claude API error: 500 boom", status_code=500)]
    backends[ProviderKind.DEEPSEEK]._outcomes = [CredentialMissingError("DeepSeek API key not set")]

    response = client.post(
        "/v1/chat",
        json={**CHAT_BODY, "options": {"fallback_model_ids": ["deepseek-chat"]}},
    )

    assert response.status_code == 502
    assert "All models unavailable" in response.json()["detail"]


def test_chat_validates_request(client):
    assert client.post("/v1/chat", json={"model_id": "gpt-4o", "messages": []}).status_code == 422


def test_chat_stream_emits_ndjson_events(client):
    response = client.post(
        "/v1/chat/stream",
        json={"model_id": "llama3:8b", "messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 200
    events = [json.loads(line) for line in response.text.splitlines() if line]
    assert events == [
        {"type": "content", "delta": "local"},
        {"type": "content", "delta": "words"},
        {"type": "complete", "content": "localwords"},
    ]


def test_chat_stream_reports_errors_in_band(client, backends):
    backends[ProviderKind.CLAUDE]._outcomes = [UpstreamError("Claude API error: 401 bad key", status_code=401)]

    response = client.post("/v1/chat/stream", json=CHAT_BODY)

    events = [json.loads(line) for line in response.text.splitlines() if line]
    assert events == [{"type": "error", "message": "Claude API error: 401 bad key"}]


def test_workflow_endpoints(client):
    workflows = client.get("/v1/workflows").json()
    assert len(workflows) == 10

    result = client.post(
        "/v1/workflows/run",
        json={"workflow_type": "quick_edit", "input_videos": ["/media/a.mp4"], "output_directory": "/exports"},
    )
    assert result.status_code == 200
    assert result.json()["success"] is True
    assert client.get("/v1/workflows/active").json() == []


def test_workflow_errors(client):
    unknown = client.post(
        "/v1/workflows/run",
        json={"workflow_type": "nope", "input_videos": ["/media/a.mp4"], "output_directory": "/exports"},
    )
    assert unknown.status_code == 400

    assert client.post("/v1/workflows/workflow-missing/cancel").status_code == 404


def test_batch_lifecycle(client):
    started = client.post(
        "/v1/batch",
        json={"operation": "video_analysis", "clip_ids": ["c1", "c2"], "max_concurrent": 2},
    )
    assert started.status_code == 202
    job_id = started.json()["job_id"]

    deadline = time.time() + 5
    job = client.get(f"/v1/batch/{job_id}").json()
    while job["status"] in ("pending", "running") and time.time() < deadline:
        time.sleep(0.01)
        job = client.get(f"/v1/batch/{job_id}").json()

    assert job["status"] == "completed"
    assert job["completed"] == 2
    assert [j["job_id"] for j in client.get("/v1/batch/history").json()] == [job_id]
    assert client.get("/v1/batch/stats").json()["completed_jobs"] == 1

    assert client.post(f"/v1/batch/{job_id}/cancel").status_code == 404
    assert client.delete("/v1/batch/history").json() == {"cleared": True}
    assert client.get(f"/v1/batch/{job_id}").status_code == 404


def test_batch_rejects_unknown_operation(client):
    response = client.post("/v1/batch", json={"operation": "teleport", "clip_ids": ["c1"]})
    assert response.status_code == 422

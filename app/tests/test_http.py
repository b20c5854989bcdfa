"""Tests for the HTTP surface (turn API, health, metrics, SSE)."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedProvider, text_step
from nova.core.config import ProvidersConfig
from nova.handlers.media import MediaControlHandler
from nova.http.routes import _sse_generator
from nova.kernel.event_bus import EventBus
from nova.kernel.gateway import BroadcastGateway
from nova.main import create_app
from nova.media.desktop import DesktopMediaBackend
from nova.media.spotify import SpotifyBackend
from nova.memory.notes import PersonaWorkspace
from nova.providers.base import ProviderRuntime
from nova.providers.registry import ProviderPool
from nova.runtime import NovaRuntime
from nova.session.store import SessionStore
from nova.turn.contracts import Lane

RUNTIME = ProviderRuntime(
    provider_id="openai",
    kind="openai-compatible",
    api_key="sk-test",
    base_url="https://api.openai.com/v1",
    model="gpt-4.1-mini",
)


async def _ok_runner(argv):
    return 0


@pytest.fixture
def provider():
    return ScriptedProvider(RUNTIME, [text_step("Hello from Nova.")])


@pytest.fixture
def client(tmp_dir, provider):
    runtime = NovaRuntime(
        SessionStore(tmp_dir / "sessions.db"),
        workspace=PersonaWorkspace(tmp_dir / "workspace"),
        gateway=BroadcastGateway(EventBus()),
        provider_pool=ProviderPool(factory=lambda runtime: provider),
        handlers={
            Lane.MEDIA_CONTROL: MediaControlHandler(
                SpotifyBackend(""), DesktopMediaBackend("linux", runner=_ok_runner)
            ),
        },
    )
    with TestClient(create_app(runtime)) as test_client:
        yield test_client


def test_input_runs_a_special_lane(client):
    response = client.post("/v1/input", json={"text": "pause", "options": {"userContextId": "alex"}})
    assert response.status_code == 200
    data = response.json()
    assert data["route"] == "media_control"
    assert data["reply"] == "Paused."
    assert data["ok"] is True


def test_input_runs_chat(client, provider):
    response = client.post("/v1/input", json={"text": "tell me a joke", "session_key": "s1"})
    assert response.status_code == 200
    data = response.json()
    assert data["reply"] == "Hello from Nova."
    assert data["provider"] == "openai"
    assert data["totalTokens"] == 15
    assert len(provider.calls) == 1

    turns = client.get("/v1/sessions/s1/turns").json()
    assert [t["role"] for t in turns["turns"]] == ["user", "assistant"]

    usage = client.get("/v1/usage", params={"session_key": "s1"}).json()
    assert usage["turns"] == 1
    assert usage["total_tokens"] == 15


def test_duplicate_input(client):
    first = client.post("/v1/input", json={"text": "next song"})
    second = client.post("/v1/input", json={"text": "next song"})
    assert first.json()["reply"] == "Skipping ahead."
    assert second.json() == {"duplicate": True}


def test_bad_requests(client):
    assert client.post("/v1/input", content=b"not json").status_code == 400
    assert client.post("/v1/input", json=["pause"]).status_code == 400
    assert client.post("/v1/input", json={"text": "  "}).status_code == 400


def test_no_provider_is_503(client, use_config):
    use_config(providers=ProvidersConfig())
    response = client.post("/v1/input", json={"text": "tell me a joke"})
    assert response.status_code == 503
    assert "No generation provider available" in response.json()["error"]


def test_health(client, use_config):
    data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["provider"]["provider"] == "openai"
    assert data["memory_index"] is False

    use_config(providers=ProvidersConfig())
    degraded = client.get("/health").json()
    assert degraded["status"] == "degraded"
    assert degraded["provider"]["status"] == "unavailable"


def test_metrics_endpoint(client):
    client.post("/v1/input", json={"text": "pause"})
    data = client.get("/metrics").json()
    assert data["counters"]["turns.accepted{lane=media_control}"] == 1
    assert "turn.latency_ms{lane=media_control}" in data["histograms"]


@pytest.mark.asyncio
async def test_sse_generator_formats_events():
    bus = EventBus()
    stream = _sse_generator("hud.alex", bus)

    pending = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    bus.publish("hud.alex", {"type": "state", "state": "thinking"})
    chunk = await pending

    assert chunk.startswith("event: state\ndata: ")
    assert json.loads(chunk.split("data: ", 1)[1]) == {"type": "state", "state": "thinking"}

    bus.close_topic("hud.alex")
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert bus.subscriber_count("hud.alex") == 0

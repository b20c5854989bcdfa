"""
Shared fixtures for Nova tests.

Config is swapped per test by replacing the module singleton, which every
runtime module reads as ``config_module.config`` at call time.
"""

from __future__ import annotations

import tempfile
from dataclasses import replace
from pathlib import Path

import pytest
import pytest_asyncio

import nova.core.config as config_module
from nova.core.config import LLMConfig, NovaConfig, ProviderSettings, ProvidersConfig
from nova.core.metrics import metrics
from nova.kernel.event_bus import GLOBAL_TOPIC, EventBus
from nova.kernel.gateway import BroadcastGateway
from nova.providers.base import LLMProvider, LLMStreamEvent, LLMToolCall
from nova.session.store import SessionStore
from nova.tools.base import NovaTool, ToolParam
from nova.tools.registry import ToolRegistry
from nova.turn.contracts import ToolResult


def make_config(**overrides) -> NovaConfig:
    """A config with one connected OpenAI-compatible provider."""
    providers = ProvidersConfig(
        openai=ProviderSettings(
            "openai",
            api_key="sk-test",
            base_url="https://api.openai.com/v1",
            model="gpt-4.1-mini",
            connected=True,
        ),
    )
    cfg = NovaConfig(providers=providers, llm=LLMConfig(active_provider="openai"))
    return replace(cfg, **overrides)


@pytest.fixture(autouse=True)
def nova_config(monkeypatch):
    cfg = make_config()
    monkeypatch.setattr(config_module, "config", cfg)
    metrics.reset()
    return cfg


@pytest.fixture
def use_config(monkeypatch):
    """Install a config built with make_config(**overrides)."""

    def _use(**overrides) -> NovaConfig:
        cfg = make_config(**overrides)
        monkeypatch.setattr(config_module, "config", cfg)
        return cfg

    return _use


@pytest.fixture
def tmp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest_asyncio.fixture
async def session_store(tmp_dir):
    store = SessionStore(db_path=tmp_dir / "sessions.db")
    await store.start()
    yield store
    await store.stop()


class RecordingGateway(BroadcastGateway):
    """Gateway whose global-topic events are collected in order."""

    def __init__(self):
        super().__init__(EventBus())
        self.queue = self.bus.subscribe(GLOBAL_TOPIC, maxsize=10_000)

    def events(self) -> list[dict]:
        out = []
        while not self.queue.empty():
            out.append(self.queue.get_nowait())
        return out


@pytest.fixture
def gateway():
    return RecordingGateway()


# ─── Scripted provider ────────────────────────────────────────


def text_step(*chunks: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> list[LLMStreamEvent]:
    events = [LLMStreamEvent(type="token", content=c) for c in chunks]
    events.append(
        LLMStreamEvent(type="usage", prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    )
    events.append(LLMStreamEvent(type="done"))
    return events


def tool_step(*calls: tuple[str, str, dict]) -> list[LLMStreamEvent]:
    return [
        LLMStreamEvent(
            type="tool_calls",
            tool_calls=[LLMToolCall(id=cid, name=name, arguments=args) for cid, name, args in calls],
        ),
        LLMStreamEvent(type="usage", prompt_tokens=10, completion_tokens=2),
        LLMStreamEvent(type="done"),
    ]


class ScriptedProvider(LLMProvider):
    """Replays one scripted step per generate call.

    A step is a list of events, or an exception to raise (optionally after
    some events, given as (events, exception)).
    """

    def __init__(self, runtime, steps=None, completion: str = ""):
        super().__init__(runtime)
        self.steps = list(steps or [])
        self.completion = completion
        self.calls: list[dict] = []
        self.complete_calls: list[dict] = []

    async def start(self):
        pass

    async def stop(self):
        pass

    async def generate_stream_with_tools(
        self, messages, tools=None, model=None, max_tokens=1200, temperature=0.7
    ):
        self.calls.append({"messages": list(messages), "tools": tools, "model": model})
        step = self.steps.pop(0) if self.steps else text_step("ok")
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, tuple):
            events, error = step
            for event in events:
                yield event
            raise error
        for event in step:
            yield event

    async def complete(self, system, user_text, max_tokens=200, model=None):
        self.complete_calls.append({"system": system, "user_text": user_text, "model": model})
        return self.completion


# ─── Tools ────────────────────────────────────────────────────


class StaticTool(NovaTool):
    """Tool that returns canned content (or raises) and counts calls."""

    def __init__(self, name: str, content: str = "", error: Exception | None = None, params=None):
        self.name = name
        self.description = f"Static {name}"
        self.parameters = list(params or [ToolParam(name="query", type="string", description="q")])
        self.content = content
        self.error = error
        self.calls: list[dict] = []

    async def execute(self, **kwargs) -> ToolResult:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return ToolResult.success(self.content)


SEARCH_RESULTS = (
    "[1] Austin forecast\n"
    "https://weather.example/austin\n"
    "Sunny, high of 31C tomorrow.\n"
    "\n"
    "[2] Weekend outlook\n"
    "https://weather.example/weekend\n"
    "Storms possible on Saturday."
)


def registry_with(*tools: NovaTool) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    return registry

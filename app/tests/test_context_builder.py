"""Tests for the prompt context builder."""

import asyncio

import pytest

from conftest import SEARCH_RESULTS, StaticTool, registry_with
from nova.core.metrics import metrics
from nova.llm.context_builder import PromptContextBuilder, is_fast_lane, prompt_hash
from nova.memory.notes import PersonaWorkspace
from nova.providers.base import ProviderRuntime
from nova.session.models import TranscriptEntry
from nova.tools.base import ToolParam
from nova.turn.contracts import InputOptions, Turn

RUNTIME = ProviderRuntime(
    provider_id="openai",
    kind="openai-compatible",
    api_key="sk-test",
    base_url="https://api.openai.com/v1",
    model="gpt-4.1-mini",
)


def _turn(text: str, **options) -> Turn:
    options.setdefault("user_context_id", "alex")
    return Turn.from_input(text, InputOptions(**options))


class FakeMemoryIndex:
    def __init__(self, facts=None, delay: float = 0.0):
        self.facts = facts or []
        self.delay = delay
        self.started = True
        self.queries: list[tuple[str, str, int]] = []

    async def search(self, user_context_id, query, limit=3):
        self.queries.append((user_context_id, query, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        return [{"fact": f, "score": 0.9} for f in self.facts][:limit]


def test_fast_lane_detection():
    assert is_fast_lane("hi there") is True
    assert is_fast_lane("what's the weather in Austin tomorrow") is False
    assert is_fast_lane("read https://example.com") is False
    assert is_fast_lane("do you remember me") is False
    assert is_fast_lane("please write a long and careful essay about trains") is False
    assert is_fast_lane("anything at all goes here today friend", {"fast_lane": True}) is True


def test_prompt_hash_is_stable_and_short():
    messages = [{"role": "system", "content": "a"}, {"role": "user", "content": "b"}]
    assert prompt_hash(messages) == prompt_hash([dict(m) for m in messages])
    assert prompt_hash(messages) != prompt_hash(messages[:1])
    assert len(prompt_hash(messages)) == 24


@pytest.mark.asyncio
async def test_fast_lane_skips_enrichment():
    search = StaticTool("web_search", SEARCH_RESULTS)
    builder = PromptContextBuilder(tool_registry=registry_with(search))

    result = await builder.build(_turn("hi there"), [], RUNTIME)

    assert result.fast_lane is True
    assert result.profile.name == "fast"
    assert search.calls == []
    assert result.used_web_search_preload is False
    assert result.messages[0]["role"] == "system"
    assert result.messages[-1] == {"role": "user", "content": "hi there"}


@pytest.mark.asyncio
async def test_weather_question_preloads_web_search():
    search = StaticTool("web_search", SEARCH_RESULTS)
    builder = PromptContextBuilder(tool_registry=registry_with(search))
    text = "what's the weather in Austin tomorrow"

    result = await builder.build(_turn(text), [], RUNTIME)

    assert result.used_web_search_preload is True
    assert search.calls == [{"query": text}]
    system = result.messages[0]["content"]
    assert "## Live Web Search Context" in system
    assert "Sunny, high of 31C tomorrow." in system
    assert "Available tools: web_search" in system
    assert result.section_tokens["Live Web Search Context"] > 0


@pytest.mark.asyncio
async def test_failed_web_search_is_dropped():
    search = StaticTool("web_search", error=RuntimeError("dns down"))
    builder = PromptContextBuilder(tool_registry=registry_with(search))

    result = await builder.build(_turn("latest news on the Fed"), [], RUNTIME)

    assert result.used_web_search_preload is False
    assert "Live Web Search Context" not in result.messages[0]["content"]


@pytest.mark.asyncio
async def test_no_results_is_not_a_section():
    search = StaticTool("web_search", "No results found.")
    builder = PromptContextBuilder(tool_registry=registry_with(search))

    result = await builder.build(_turn("latest news on the Fed"), [], RUNTIME)

    assert search.calls
    assert result.used_web_search_preload is False


@pytest.mark.asyncio
async def test_link_context():
    fetch = StaticTool(
        "web_fetch",
        "Title: Post\nSource: https://example.com/post\n\nA post about trains.",
        params=[
            ToolParam(name="url", type="string", description="url"),
            ToolParam(name="max_chars", type="integer", description="n", required=False, default=100),
        ],
    )
    builder = PromptContextBuilder(tool_registry=registry_with(fetch))

    result = await builder.build(_turn("summarize https://example.com/post please"), [], RUNTIME)

    assert result.used_link_understanding is True
    assert fetch.calls[0]["url"] == "https://example.com/post"
    assert "## Link Context" in result.messages[0]["content"]
    assert "A post about trains." in result.messages[0]["content"]


@pytest.mark.asyncio
async def test_memory_recall_section():
    index = FakeMemoryIndex(["My favorite color is green"])
    builder = PromptContextBuilder(memory_index=index)

    result = await builder.build(_turn("do you remember my favorite color"), [], RUNTIME)

    assert result.used_memory_recall is True
    assert index.queries[0][0] == "alex"
    assert "[1] My favorite color is green" in result.messages[0]["content"]


@pytest.mark.asyncio
async def test_slow_memory_recall_times_out():
    index = FakeMemoryIndex(["too late"], delay=2.0)
    builder = PromptContextBuilder(memory_index=index)

    result = await builder.build(_turn("do you remember my favorite color"), [], RUNTIME)

    assert result.used_memory_recall is False
    assert metrics.counter("enrichment.timeout", labels={"source": "memory"}) == 1


@pytest.mark.asyncio
async def test_persona_notes_and_short_term_context(tmp_dir):
    workspace = PersonaWorkspace(tmp_dir)
    (tmp_dir / "alex").mkdir()
    (tmp_dir / "alex" / "USER.md").write_text("Prefers short answers.", encoding="utf-8")
    builder = PromptContextBuilder(workspace=workspace)

    turn = _turn(
        "and what about tomorrow",
        hints={"short_term_context": "Discussing a trip to Lisbon", "follow_up": True},
    )
    result = await builder.build(turn, [], RUNTIME)

    system = result.messages[0]["content"]
    assert "## User Preference Memory\nPrefers short answers." in system
    assert "## Short-Term Context\nfollow_up: true\nDiscussing a trip to Lisbon" in system
    assert "Persistent Memory" not in system


@pytest.mark.asyncio
async def test_undecodable_persona_note_is_still_used(tmp_dir):
    workspace = PersonaWorkspace(tmp_dir)
    (tmp_dir / "alex").mkdir()
    (tmp_dir / "alex" / "USER.md").write_bytes(b"likes \xff\xfe tea")
    builder = PromptContextBuilder(workspace=workspace)

    result = await builder.build(_turn("what should I drink this afternoon"), [], RUNTIME)

    assert "## User Preference Memory\nlikes \ufffd\ufffd tea" in result.messages[0]["content"]


@pytest.mark.asyncio
async def test_strict_output_requirements_come_last():
    builder = PromptContextBuilder()
    result = await builder.build(_turn("Answer with one word: is water wet?"), [], RUNTIME)

    assert result.constraints.one_word is True
    assert result.profile.name.endswith("+strict")
    system = result.messages[0]["content"]
    assert "## Strict Output Requirements" in system
    assert system.endswith(result.constraints.instructions)


@pytest.mark.asyncio
async def test_history_is_trimmed_to_budget():
    session = [
        TranscriptEntry("hud:alex", role="user" if i % 2 == 0 else "assistant", text=f"{i} " + "x" * 400)
        for i in range(30)
    ]
    session.append(TranscriptEntry("hud:alex", role="assistant", text=""))
    builder = PromptContextBuilder()

    result = await builder.build(_turn("tell me more about the plan"), session, RUNTIME)

    history = result.messages[1:-1]
    assert 0 < len(history) < 30
    assert history[-1]["content"].startswith("29 ")
    assert result.history_tokens <= result.profile.history_target_tokens
    assert all(m["content"] for m in history)


@pytest.mark.asyncio
async def test_runtime_metadata_and_tone():
    builder = PromptContextBuilder()
    result = await builder.build(
        _turn("hello", source="telegram", hints={"tone": "calm"}), [], RUNTIME
    )
    system = result.messages[0]["content"]
    assert "- Channel: telegram" in system
    assert "- Model: gpt-4.1-mini (openai)" in system
    assert "Tone: calm." in system
    assert result.prompt_hash == prompt_hash(result.messages)

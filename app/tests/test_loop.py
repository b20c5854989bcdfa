"""Tests for the tool-calling loop executor."""

import pytest

from conftest import SEARCH_RESULTS, ScriptedProvider, StaticTool, registry_with, text_step, tool_step
from nova.core.metrics import metrics
from nova.llm.loop import CORRECTION_PREFACE, EXHAUSTED_ERROR, ToolLoopExecutor
from nova.providers.base import LLMStreamEvent, ProviderRuntime, ProviderTransportError
from nova.tools.web_search import NO_RESULTS
from nova.turn.contracts import LoopStatus

RUNTIME = ProviderRuntime(
    provider_id="openai",
    kind="openai-compatible",
    api_key="sk-test",
    base_url="https://api.openai.com/v1",
    model="gpt-4.1-mini",
)

MESSAGES = [
    {"role": "system", "content": "You are Nova."},
    {"role": "user", "content": "what's the weather in Austin"},
]


class DeltaRecorder:
    def __init__(self):
        self.deltas: list[str] = []

    def __call__(self, text: str) -> None:
        self.deltas.append(text)


@pytest.mark.asyncio
async def test_plain_reply_streams_and_counts_usage():
    provider = ScriptedProvider(RUNTIME, [text_step("Hel", "lo")])
    on_delta = DeltaRecorder()

    outcome = await ToolLoopExecutor().run(MESSAGES, None, provider, on_delta=on_delta)

    assert outcome.status == LoopStatus.DONE
    assert outcome.ok is True
    assert outcome.reply == "Hello"
    assert outcome.streamed is True
    assert on_delta.deltas == ["Hel", "lo"]
    assert outcome.usage.prompt_tokens == 10
    assert outcome.usage.completion_tokens == 5
    assert outcome.model == "gpt-4.1-mini"


@pytest.mark.asyncio
async def test_tool_results_are_fed_back():
    search = StaticTool("web_search", SEARCH_RESULTS)
    provider = ScriptedProvider(
        RUNTIME,
        [tool_step(("call_1", "web_search", {"query": "austin weather"})), text_step("Sunny.")],
    )
    loop = ToolLoopExecutor(registry_with(search))

    outcome = await loop.run(MESSAGES, [search.to_openai_schema()], provider)

    assert outcome.reply == "Sunny."
    assert outcome.tool_calls == ["web_search"]
    assert search.calls == [{"query": "austin weather"}]
    assert outcome.usage.total_tokens == 27

    second = provider.calls[1]["messages"]
    assert second[-2]["role"] == "assistant"
    assert second[-2]["tool_calls"][0]["function"]["name"] == "web_search"
    assert second[-1] == {"role": "tool", "tool_call_id": "call_1", "content": SEARCH_RESULTS}
    # The caller's list is left untouched
    assert len(MESSAGES) == 2


@pytest.mark.asyncio
async def test_failing_tool_does_not_stop_later_tools():
    broken = StaticTool("broken", error=RuntimeError("boom"))
    search = StaticTool("web_search", SEARCH_RESULTS)
    provider = ScriptedProvider(
        RUNTIME,
        [
            tool_step(("c1", "broken", {"query": "a"}), ("c2", "web_search", {"query": "b"})),
            text_step("Done."),
        ],
    )
    loop = ToolLoopExecutor(registry_with(broken, search))

    outcome = await loop.run(MESSAGES, None, provider)

    assert outcome.ok is True
    assert outcome.tool_calls == ["broken", "web_search"]
    tool_messages = [m for m in provider.calls[1]["messages"] if m["role"] == "tool"]
    assert tool_messages[0]["content"] == "Tool execution failed: boom"
    assert tool_messages[1]["content"] == SEARCH_RESULTS
    assert metrics.counter("tools.failed", labels={"tool": "broken"}) == 1


@pytest.mark.asyncio
async def test_unknown_tool_and_missing_runtime():
    provider = ScriptedProvider(RUNTIME, [tool_step(("c1", "nope", {})), text_step("ok")])
    outcome = await ToolLoopExecutor(registry_with()).run(MESSAGES, None, provider)
    assert outcome.ok is True
    tool_message = provider.calls[1]["messages"][-1]
    assert tool_message["content"] == "Unknown tool: nope"

    provider = ScriptedProvider(RUNTIME, [tool_step(("c1", "nope", {})), text_step("ok")])
    await ToolLoopExecutor(None).run(MESSAGES, None, provider)
    assert "no tool runtime configured" in provider.calls[1]["messages"][-1]["content"]


@pytest.mark.asyncio
async def test_first_request_retried_on_fallback_model():
    provider = ScriptedProvider(RUNTIME, [ProviderTransportError("503 overloaded"), text_step("Recovered.")])
    loop = ToolLoopExecutor(fallback_model="gpt-4o-mini")

    outcome = await loop.run(MESSAGES, None, provider)

    assert outcome.ok is True
    assert outcome.reply == "Recovered."
    assert outcome.model == "gpt-4o-mini"
    assert provider.calls[1]["model"] == "gpt-4o-mini"
    assert len(outcome.retries) == 1
    retry = outcome.retries[0]
    assert (retry.stage, retry.from_model, retry.to_model) == ("first_request", "gpt-4.1-mini", "gpt-4o-mini")
    assert "503" in retry.reason
    assert metrics.counter("loop.retries") == 1


@pytest.mark.asyncio
async def test_no_retry_without_fallback_model():
    provider = ScriptedProvider(RUNTIME, [ProviderTransportError("bad gateway")])
    outcome = await ToolLoopExecutor().run(MESSAGES, None, provider)

    assert outcome.status == LoopStatus.FAILED
    assert outcome.error == "bad gateway"
    assert outcome.retries == []
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_no_retry_after_visible_output():
    provider = ScriptedProvider(
        RUNTIME,
        [([LLMStreamEvent(type="token", content="The forecast is")], ProviderTransportError("reset"))],
    )
    on_delta = DeltaRecorder()
    loop = ToolLoopExecutor(fallback_model="gpt-4o-mini")

    outcome = await loop.run(MESSAGES, None, provider, on_delta=on_delta)

    assert outcome.status == LoopStatus.PARTIAL
    assert outcome.reply == "The forecast is"
    assert outcome.retries == []
    assert len(provider.calls) == 1
    assert on_delta.deltas == ["The forecast is"]


@pytest.mark.asyncio
async def test_retry_that_also_fails():
    provider = ScriptedProvider(RUNTIME, [ProviderTransportError("first"), ProviderTransportError("second")])
    outcome = await ToolLoopExecutor(fallback_model="gpt-4o-mini").run(MESSAGES, None, provider)

    assert outcome.status == LoopStatus.FAILED
    assert outcome.error == "second"
    assert len(outcome.retries) == 1


@pytest.mark.asyncio
async def test_no_retry_after_the_first_step():
    search = StaticTool("web_search", SEARCH_RESULTS)
    provider = ScriptedProvider(
        RUNTIME,
        [tool_step(("c1", "web_search", {"query": "austin weather"})), ProviderTransportError("timed out")],
    )
    on_delta = DeltaRecorder()
    loop = ToolLoopExecutor(registry_with(search), fallback_model="gpt-4o-mini")

    outcome = await loop.run(MESSAGES, None, provider, on_delta=on_delta)

    assert outcome.status == LoopStatus.FAILED
    assert outcome.error == "timed out"
    assert outcome.reply == ""
    assert outcome.streamed is False
    assert outcome.retries == []
    assert outcome.model == "gpt-4.1-mini"
    assert len(provider.calls) == 2
    assert on_delta.deltas == []
    assert metrics.counter("loop.retries") == 0


@pytest.mark.asyncio
async def test_step_bound_exhausts_without_recovery():
    search = StaticTool("web_search", SEARCH_RESULTS)
    provider = ScriptedProvider(
        RUNTIME,
        [tool_step(("c1", "web_search", {"query": "a"})), tool_step(("c2", "web_search", {"query": "b"}))],
    )
    loop = ToolLoopExecutor(registry_with(search), max_steps=2)

    outcome = await loop.run(MESSAGES, None, provider)

    assert outcome.status == LoopStatus.EXHAUSTED
    assert outcome.error == EXHAUSTED_ERROR
    assert outcome.reply == ""
    assert outcome.tool_calls == ["web_search", "web_search"]
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_no_live_access_reply_is_corrected():
    search = StaticTool("web_search", SEARCH_RESULTS)
    provider = ScriptedProvider(RUNTIME, [text_step("Sorry, I don't have live access to weather data.")])
    on_delta = DeltaRecorder()

    outcome = await ToolLoopExecutor(registry_with(search)).run(MESSAGES, None, provider, on_delta=on_delta)

    assert outcome.ok is True
    refusal = "Sorry, I don't have live access to weather data."
    assert outcome.reply.startswith(refusal + "\n\n" + CORRECTION_PREFACE)
    assert outcome.reply == "".join(on_delta.deltas)
    assert "- Austin forecast: Sunny, high of 31C tomorrow." in outcome.reply
    assert "  Source: https://weather.example/austin" in outcome.reply
    assert outcome.tool_calls == ["web_search"]
    assert search.calls == [{"query": "what's the weather in Austin"}]
    assert on_delta.deltas[-1].startswith("\n\n" + CORRECTION_PREFACE)


@pytest.mark.asyncio
async def test_correction_falls_back_to_raw_results():
    search = StaticTool("web_search", "Austin: 31C and sunny, light wind.")
    provider = ScriptedProvider(RUNTIME, [text_step("I cannot browse the internet.")])
    on_delta = DeltaRecorder()

    outcome = await ToolLoopExecutor(registry_with(search)).run(MESSAGES, None, provider, on_delta=on_delta)

    assert outcome.reply == (
        "I cannot browse the internet.\n\n"
        f"{CORRECTION_PREFACE} Current web results:\n\nAustin: 31C and sunny, light wind."
    )
    assert outcome.reply == "".join(on_delta.deltas)
    assert outcome.tool_calls == ["web_search"]


@pytest.mark.asyncio
async def test_no_correction_when_search_finds_nothing():
    search = StaticTool("web_search", NO_RESULTS)
    reply = "I cannot browse the internet."
    provider = ScriptedProvider(RUNTIME, [text_step(reply)])

    outcome = await ToolLoopExecutor(registry_with(search)).run(MESSAGES, None, provider)

    assert outcome.reply == reply
    assert outcome.tool_calls == []


@pytest.mark.asyncio
async def test_no_correction_without_search_tool():
    reply = "I can't browse the web, sorry."
    provider = ScriptedProvider(RUNTIME, [text_step(reply)])
    outcome = await ToolLoopExecutor(registry_with()).run(MESSAGES, None, provider)
    assert outcome.reply == reply
    assert outcome.tool_calls == []

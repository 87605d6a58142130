"""Tests for tech_referee/agent.py."""

import asyncio
import json
import logging

import pytest
from pydantic import BaseModel
from unittest.mock import AsyncMock, MagicMock

from tech_referee.agent import AgentInvoker, describe_failure, extract_json
from tech_referee.errors import AgentCallFailed, AgentOutputInvalid, InvalidCredential
from tech_referee.providers.base import ProviderError, ToolCall
from tech_referee.research import SearchResult, ToolSpec
from tech_referee.retry import RetryPolicy
from tests.conftest import MockProvider, make_invoker


class Verdict(BaseModel):
    winner: str
    score: int


def _research(results: list[SearchResult] | None = None) -> MagicMock:
    research = MagicMock()
    research.spec.return_value = ToolSpec(name="web_search", description="search", parameters={"type": "object"})
    research.search = AsyncMock(return_value=results or [])
    return research


def _search_call(query: str, call_id: str = "c1") -> ToolCall:
    return ToolCall(id=call_id, name="web_search", arguments={"query": query})


# --- extract_json ---


@pytest.mark.parametrize(
    "text",
    [
        '{"winner": "A", "score": 3}',
        '```json\n{"winner": "A", "score": 3}\n```',
        'Here is my answer: {"winner": "A", "score": 3} hope that helps',
    ],
)
def test_extract_json_tolerates_wrapping(text):
    assert extract_json(text) == {"winner": "A", "score": 3}


def test_extract_json_returns_none_without_object():
    assert extract_json("no json here {oops") is None


# --- structured mode ---


async def test_generate_object_validates_final_answer():
    provider = MockProvider(steps=[['{"winner": "PostgreSQL", "score": 8}']])
    result = await make_invoker(provider).generate_object("sys", "pick one", Verdict)

    assert result == Verdict(winner="PostgreSQL", score=8)
    system, turns = provider.calls[0]
    assert system == "sys"
    assert "JSON schema" in turns[0].text


async def test_generate_object_runs_tool_round_trip():
    research = _research([SearchResult(title="T", url="https://t.example", content="body")])
    provider = MockProvider(steps=[
        ["Let me check.", _search_call("pg pricing")],
        ['{"winner": "MongoDB", "score": 6}'],
    ])

    result = await make_invoker(provider, research).generate_object("sys", "pick", Verdict)

    assert result.winner == "MongoDB"
    research.search.assert_awaited_once_with("pg pricing")
    _, second_turns = provider.calls[1]
    assert [t.role for t in second_turns] == ["user", "assistant", "tool"]
    assert json.loads(second_turns[2].result)["results"][0]["url"] == "https://t.example"


async def test_generate_object_without_json_raises_output_invalid():
    provider = MockProvider(steps=[["I cannot decide."]])
    with pytest.raises(AgentOutputInvalid):
        await make_invoker(provider).generate_object("sys", "pick", Verdict)


async def test_generate_object_with_wrong_shape_raises_output_invalid():
    provider = MockProvider(steps=[['{"winner": "A"}']])
    with pytest.raises(AgentOutputInvalid, match="expected shape"):
        await make_invoker(provider).generate_object("sys", "pick", Verdict)


# --- streaming mode ---


async def test_stream_text_yields_fragments_in_order():
    provider = MockProvider(steps=[["## Case", " for ", "PostgreSQL"]])
    stream = make_invoker(provider).stream_text("sys", "argue")

    fragments = [f async for f in stream]

    assert fragments == ["## Case", " for ", "PostgreSQL"]
    assert stream.text == "## Case for PostgreSQL"
    assert stream.budget_exhausted is False


async def test_stream_text_is_lazy_and_single_pass():
    provider = MockProvider(steps=[["once"]])
    stream = make_invoker(provider).stream_text("sys", "argue")
    assert provider.calls == []

    assert await stream.collect() == "once"
    with pytest.raises(RuntimeError, match="once"):
        async for _ in stream:
            pass


async def test_stream_text_collects_search_results():
    found = [SearchResult(title="Docs", url="https://docs.example", content="c")]
    provider = MockProvider(steps=[[_search_call("docs")], ["Done."]])
    stream = make_invoker(provider, _research(found)).stream_text("sys", "argue")

    await stream.collect()

    assert stream.search_results == found
    assert stream.text == "Done."


async def test_unknown_tool_gets_error_result():
    provider = MockProvider(steps=[[ToolCall(id="x", name="calculator", arguments={})], ["fine"]])
    await make_invoker(provider, _research()).stream_text("sys", "argue").collect()

    _, turns = provider.calls[1]
    assert "Unknown tool" in turns[-1].result


async def test_step_budget_exhaustion_returns_partial_text(caplog):
    provider = MockProvider(respond=lambda system, turns: ["thinking... ", _search_call("again")])
    stream = make_invoker(provider, _research()).stream_text("sys", "argue", max_steps=3)

    with caplog.at_level(logging.WARNING, logger="tech_referee.agent"):
        text = await stream.collect()

    assert len(provider.calls) == 3
    assert text == "thinking... " * 3
    assert stream.budget_exhausted is True
    assert "step budget of 3 exhausted" in caplog.text


async def test_transient_error_before_first_fragment_is_retried():
    provider = MockProvider(steps=[ProviderError("mock", "503 Service Unavailable"), ["recovered"]])
    text = await make_invoker(provider).stream_text("sys", "argue").collect()

    assert text == "recovered"
    assert len(provider.calls) == 2


async def test_error_after_first_fragment_is_not_retried():
    provider = MockProvider(steps=[["partial", ProviderError("mock", "503 Service Unavailable")], ["never"]])
    stream = make_invoker(provider).stream_text("sys", "argue")

    with pytest.raises(AgentCallFailed):
        await stream.collect()

    assert len(provider.calls) == 1
    assert stream.text == "partial"


async def test_retries_exhausted_raise_agent_call_failed():
    provider = MockProvider(respond=lambda s, t: ProviderError("mock", "connection reset"))
    with pytest.raises(AgentCallFailed):
        await make_invoker(provider).stream_text("sys", "argue").collect()
    assert len(provider.calls) == 3


async def test_auth_error_is_classified_and_not_retried():
    provider = MockProvider(respond=lambda s, t: ProviderError("mock", "Invalid API key provided"))
    with pytest.raises(InvalidCredential):
        await make_invoker(provider).generate_object("sys", "pick", Verdict)
    assert len(provider.calls) == 1


async def test_timeout_raises_agent_call_failed():
    provider = MockProvider(steps=[["late"]], delay=0.5)
    invoker = AgentInvoker(provider, retry=RetryPolicy(max_retries=0), timeout_sec=0.05)

    with pytest.raises(AgentCallFailed, match="timed out"):
        await invoker.stream_text("sys", "argue").collect()


async def test_first_fragment_arrives_before_stream_finishes():
    gate = asyncio.Event()

    class SlowTail(MockProvider):
        async def stream_step(self, system, turns, tools):
            self.calls.append((system, list(turns)))
            yield "first"
            await gate.wait()
            yield "second"

    provider = SlowTail()
    stream = make_invoker(provider).stream_text("sys", "argue")
    iterator = stream.__aiter__()

    assert await iterator.__anext__() == "first"
    gate.set()
    assert await iterator.__anext__() == "second"


def test_describe_failure():
    assert describe_failure(AgentCallFailed("Agent execution failed", "boom")) == "Agent execution failed (boom)"
    assert describe_failure(RuntimeError()) == "RuntimeError"

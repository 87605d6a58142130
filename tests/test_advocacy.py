"""Tests for tech_referee/advocacy.py."""

import logging

from tech_referee.advocacy import PARTIAL_ARGUMENT, collect_sources, extract_weaknesses, run_advocacy
from tech_referee.providers.base import ProviderError, ToolCall
from tech_referee.research import SearchResult
from tests.conftest import MockProvider, advocate_text, chunks, debate_responder, make_invoker


async def test_one_result_per_option_in_plan_order(sample_plan, debate_provider):
    results = await run_advocacy(make_invoker(debate_provider), "ADVOCATE for {option}", sample_plan, concurrency=2)

    assert [r.option for r in results] == ["PostgreSQL", "MongoDB"]
    assert all(r.error is None for r in results)
    pg = results[0]
    assert pg.argument == advocate_text("PostgreSQL").strip()
    assert pg.weaknesses == ["PostgreSQL needs tuning at scale", "Smaller hiring pool"]
    assert [s.url for s in pg.sources] == ["https://postgresql.example.com/docs"]


async def test_each_advocate_gets_its_own_option(sample_plan, debate_provider):
    await run_advocacy(make_invoker(debate_provider), "ADVOCATE for {option}", sample_plan, concurrency=1)

    systems = [system for system, _ in debate_provider.calls]
    assert systems == ["ADVOCATE for PostgreSQL", "ADVOCATE for MongoDB"]
    prompt = debate_provider.calls[0][1][0].text
    assert "PostgreSQL (YOUR OPTION)" in prompt
    assert "Compare against MongoDB" in prompt
    assert "Cost (weight: 8/10)" in prompt


async def test_failed_advocate_gets_placeholder(sample_plan, caplog):
    def respond(system, turns):
        if system.endswith("MongoDB"):
            return ProviderError("mock", "Internal schema error")
        return debate_responder(system, turns)

    with caplog.at_level(logging.WARNING, logger="tech_referee.advocacy"):
        results = await run_advocacy(
            make_invoker(MockProvider(respond=respond)), "ADVOCATE for {option}", sample_plan, concurrency=2
        )

    assert len(results) == 2
    assert results[0].error is None
    mongo = results[1]
    assert mongo.option == "MongoDB"
    assert mongo.argument == "Error: Could not complete research for MongoDB"
    assert "Internal schema error" in mongo.error
    assert mongo.sources == []
    assert "Advocate for MongoDB failed" in caplog.text


async def test_hooks_receive_fragments_and_results(sample_plan, debate_provider):
    fragments: dict[str, list[str]] = {}
    finished: list[str] = []

    await run_advocacy(
        make_invoker(debate_provider),
        "ADVOCATE for {option}",
        sample_plan,
        concurrency=2,
        on_text=lambda option, text: fragments.setdefault(option, []).append(text),
        on_result=lambda result: finished.append(result.option),
    )

    assert fragments["PostgreSQL"] == chunks(advocate_text("PostgreSQL"))
    assert sorted(finished) == ["MongoDB", "PostgreSQL"]


async def test_placeholder_is_reported_through_on_result(sample_plan):
    provider = MockProvider(respond=lambda system, turns: ProviderError("mock", "bad request"))
    seen = []

    await run_advocacy(make_invoker(provider), "ADVOCATE for {option}", sample_plan, 2, on_result=seen.append)

    assert [r.error is not None for r in seen] == [True, True]


async def test_exhausted_step_budget_marks_argument_partial(sample_plan):
    def respond(system, turns):
        return ["partial ", ToolCall(id="c1", name="web_search", arguments={"query": "more"})]

    results = await run_advocacy(
        make_invoker(MockProvider(respond=respond)), "ADVOCATE for {option}", sample_plan, 2, max_steps=2
    )

    assert [r.argument for r in results] == ["partial partial", "partial partial"]
    assert [r.error for r in results] == [PARTIAL_ARGUMENT, PARTIAL_ARGUMENT]


async def test_empty_argument_gets_placeholder(sample_plan):
    results = await run_advocacy(
        make_invoker(MockProvider(respond=lambda system, turns: ["  \n"])), "ADVOCATE for {option}", sample_plan, 2
    )

    assert results[0].argument == "Error: Could not complete research for PostgreSQL"
    assert "no argument" in results[0].error
    assert all(r.error for r in results)


def test_collect_sources_enriches_cited_links():
    research = [SearchResult(title="PG", url="https://pg.example.com", content="snippet text", published_date="2024")]
    sources = collect_sources("See [Postgres site](https://pg.example.com) and [Other](https://other.example.com).", research)

    assert sources[0].title == "Postgres site"
    assert sources[0].snippet == "snippet text"
    assert sources[0].published_date == "2024"
    assert sources[1].snippet == ""


def test_collect_sources_falls_back_to_research_results():
    research = [
        SearchResult(title="A", url="https://a.example.com", content="a"),
        SearchResult(title="A again", url="https://a.example.com", content="a"),
    ]
    sources = collect_sources("No links in this argument.", research)
    assert [s.url for s in sources] == ["https://a.example.com"]


def test_extract_weaknesses_reads_limitations_heading():
    markdown = "## Strengths\n- fast\n\n## Limitations\n- single writer\n- no joins\n"
    assert extract_weaknesses(markdown) == ["single writer", "no joins"]
    assert extract_weaknesses("## Strengths\n- fast\n") == []

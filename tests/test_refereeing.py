"""Tests for tech_referee/refereeing.py."""

import pytest

from tech_referee.errors import AgentCallFailed, AgentOutputInvalid, InsufficientInput
from tech_referee.models import AxisScore
from tech_referee.providers.base import ProviderError
from tech_referee.refereeing import (
    parse_recommendation,
    parse_scores,
    parse_tradeoffs,
    run_referee,
    shape_verdict,
    weighted_leader,
)
from tests.conftest import REFEREE_TEXT, MockProvider, make_invoker


def _grid(scores):
    return {s.axis: s.scores for s in scores}


async def test_verdict_covers_every_axis_and_option(sample_plan, sample_arguments, sample_cross_exams, debate_provider):
    result = await run_referee(
        make_invoker(debate_provider), "REFEREE: synthesize", sample_plan, sample_arguments, sample_cross_exams
    )

    assert _grid(result.scores) == {
        "Cost": {"PostgreSQL": 8, "MongoDB": 6},
        "Scalability": {"PostgreSQL": 7, "MongoDB": 9},
    }
    assert result.recommendation.option == "PostgreSQL"
    assert result.recommendation.confidence == "high"
    assert result.recommendation.reasoning.startswith("Cost is the heaviest axis")
    assert [(t.condition, t.recommendation) for t in result.tradeoffs] == [
        ("you need flexible product schemas", "MongoDB"),
        ("you need strict order consistency", "PostgreSQL"),
    ]
    assert result.caveats == ["Sustained write volume above 50k/s would favor MongoDB"]
    assert result.summary == REFEREE_TEXT.strip()


async def test_referee_prompt_carries_every_phase(sample_plan, sample_arguments, sample_cross_exams, debate_provider):
    fragments: list[str] = []
    await run_referee(
        make_invoker(debate_provider),
        "REFEREE: synthesize",
        sample_plan,
        sample_arguments,
        sample_cross_exams,
        on_text=fragments.append,
    )

    prompt = debate_provider.calls[0][1][0].text
    assert "_Score{Cost:PostgreSQL=[score],MongoDB=[score]}" in prompt
    assert "### Cross-Examination by MongoDB Advocate" in prompt
    assert "(one of: PostgreSQL, MongoDB)" in prompt
    assert "".join(fragments) == REFEREE_TEXT


def test_missing_scores_are_filled_with_neutral_and_noted(sample_plan):
    scores, caveats = parse_scores("_Score{Cost:PostgreSQL=8,MongoDB=6}", sample_plan)

    assert _grid(scores)["Scalability"] == {"PostgreSQL": 5, "MongoDB": 5}
    assert len(caveats) == 2
    assert caveats[0] == "No score was given for PostgreSQL on Scalability; a neutral 5/10 was assumed."


def test_scores_are_clamped(sample_plan):
    scores, _ = parse_scores("_Score{Cost:PostgreSQL=12,MongoDB=0}", sample_plan)
    assert _grid(scores)["Cost"] == {"PostgreSQL": 10, "MongoDB": 1}


def test_scores_from_option_per_row_table(sample_plan):
    markdown = (
        "| Option | Cost | Scalability |\n"
        "|---|---|---|\n"
        "| PostgreSQL | 8 | 7 |\n"
        "| **MongoDB** | 6 | 9/10 |\n"
    )
    scores, caveats = parse_scores(markdown, sample_plan)

    assert _grid(scores) == {
        "Cost": {"PostgreSQL": 8, "MongoDB": 6},
        "Scalability": {"PostgreSQL": 7, "MongoDB": 9},
    }
    assert caveats == []


def test_scores_from_axis_per_row_table(sample_plan):
    markdown = (
        "| Axis | PostgreSQL | MongoDB |\n"
        "|---|---|---|\n"
        "| Cost | 8 | 6 |\n"
        "| Scalability | 7 | 9 |\n"
    )
    scores, caveats = parse_scores(markdown, sample_plan)

    assert _grid(scores)["Scalability"] == {"PostgreSQL": 7, "MongoDB": 9}
    assert caveats == []


def test_score_keys_win_over_table(sample_plan):
    markdown = (
        "_Score{Cost:PostgreSQL=3,MongoDB=4}\n\n"
        "| Option | Cost |\n|---|---|\n| PostgreSQL | 9 |\n| MongoDB | 9 |\n"
    )
    scores, _ = parse_scores(markdown, sample_plan)
    assert _grid(scores)["Cost"] == {"PostgreSQL": 3, "MongoDB": 4}


def test_tradeoffs_ignore_unknown_options(sample_plan):
    markdown = (
        "## Trade-offs\n"
        "- If you need caching, choose Redis because it is in memory.\n"
        "- **If** budget is tight, pick PostgreSQL.\n"
        "- Some unrelated sentence.\n"
    )
    assert [(t.condition, t.recommendation) for t in parse_tradeoffs(markdown, sample_plan)] == [
        ("budget is tight", "PostgreSQL"),
    ]


def test_weighted_leader_uses_axis_weights(sample_plan):
    scores = [
        AxisScore(axis="Cost", scores={"PostgreSQL": 4, "MongoDB": 6}),
        AxisScore(axis="Scalability", scores={"PostgreSQL": 5, "MongoDB": 9}),
    ]
    assert weighted_leader(sample_plan, scores) == "MongoDB"


def test_unresolved_recommendation_falls_back_to_weighted_leader(sample_plan):
    scores = [
        AxisScore(axis="Cost", scores={"PostgreSQL": 4, "MongoDB": 6}),
        AxisScore(axis="Scalability", scores={"PostgreSQL": 5, "MongoDB": 9}),
    ]
    recommendation, caveats = parse_recommendation(
        "## Recommendation\n**Recommended option:** Cassandra\n", sample_plan, scores
    )

    assert recommendation.option == "MongoDB"
    assert recommendation.confidence == "medium"
    assert "MongoDB leads on weighted scores" in caveats[0]


def test_shape_verdict_always_names_a_plan_option(sample_plan):
    result = shape_verdict("Both are fine, honestly.", sample_plan)

    assert result.recommendation.option in sample_plan.options
    assert len(result.scores) == len(sample_plan.axes)
    assert all(set(s.scores) == set(sample_plan.options) for s in result.scores)
    # four assumed scores plus the unresolved recommendation
    assert len(result.caveats) == 5


@pytest.mark.parametrize("empty", ["arguments", "cross_examinations"])
async def test_empty_inputs_raise_insufficient_input(empty, sample_plan, sample_arguments, sample_cross_exams, mock_provider):
    inputs = {"arguments": sample_arguments, "cross_examinations": sample_cross_exams}
    inputs[empty] = []

    with pytest.raises(InsufficientInput):
        await run_referee(make_invoker(mock_provider), "REFEREE", sample_plan, **inputs)
    assert mock_provider.calls == []


async def test_empty_output_raises_output_invalid(sample_plan, sample_arguments, sample_cross_exams):
    provider = MockProvider(steps=[["   \n"]])
    with pytest.raises(AgentOutputInvalid):
        await run_referee(make_invoker(provider), "REFEREE", sample_plan, sample_arguments, sample_cross_exams)


async def test_referee_failure_propagates(sample_plan, sample_arguments, sample_cross_exams):
    provider = MockProvider(respond=lambda s, t: ProviderError("mock", "model exploded"))
    with pytest.raises(AgentCallFailed):
        await run_referee(make_invoker(provider), "REFEREE", sample_plan, sample_arguments, sample_cross_exams)

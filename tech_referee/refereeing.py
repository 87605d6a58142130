"""Referee phase: one streamed synthesis, shaped into scores, trade-offs and a recommendation."""

import logging
import re
from collections.abc import Callable

from tech_referee.agent import AgentInvoker
from tech_referee.errors import AgentOutputInvalid, InsufficientInput
from tech_referee.markup import (
    ScoreBlock,
    TableBlock,
    extract_bullets,
    extract_custom_keys,
    find_section,
    labeled_value,
    match_label,
)
from tech_referee.models import (
    CONFIDENCE_LEVELS,
    AdvocateResult,
    AxisScore,
    ComparisonPlan,
    CrossExamResult,
    Recommendation,
    RefereeResult,
    Tradeoff,
)
from tech_referee.prompts import build_referee_prompt

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 5
MIN_SCORE, MAX_SCORE = 1, 10

_TRADEOFF = re.compile(
    r"\bif\s+(?P<condition>.+?),\s*(?:choose|pick|go with|use|prefer)\s+(?P<option>.+?)"
    r"(?=\s+because\b|\s+since\b|[.;:]\s|[.;:]?$)",
    re.IGNORECASE,
)
_LEADING_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _clamp(value: float) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(round(value))))


def _cell_number(value: str | int | float) -> float | None:
    if isinstance(value, (int, float)):
        return float(value)
    m = _LEADING_NUMBER.search(value.replace("*", ""))
    return float(m.group()) if m else None


def parse_scores(markdown: str, plan: ComparisonPlan) -> tuple[list[AxisScore], list[str]]:
    """Scores for every axis x option pair, plus caveats for pairs that had to be assumed.

    _Score blocks win over tables; tables may be option-per-row or axis-per-row.
    """
    axis_names = [a.name for a in plan.axes]
    grid: dict[str, dict[str, int]] = {name: {} for name in axis_names}

    def _put(axis_label: str, option_label: str, value: float | None) -> None:
        axis = match_label(axis_label, axis_names)
        option = match_label(option_label, plan.options)
        if axis is None or option is None or value is None:
            return
        grid[axis].setdefault(option, _clamp(value))

    blocks = extract_custom_keys(markdown)
    for block in blocks:
        if isinstance(block, ScoreBlock):
            for option_label, score in block.scores:
                _put(block.axis, option_label, score)

    for block in blocks:
        if not isinstance(block, TableBlock) or not block.rows or len(block.columns) < 2:
            continue
        key_column = block.columns[0].name
        for row in block.rows:
            row_label = str(row.get(key_column, ""))
            for column in block.columns[1:]:
                value = _cell_number(row.get(column.name, ""))
                if match_label(row_label, plan.options) is not None:
                    _put(column.name, row_label, value)
                else:
                    _put(row_label, column.name, value)

    caveats: list[str] = []
    scores: list[AxisScore] = []
    for axis in axis_names:
        for option in plan.options:
            if option not in grid[axis]:
                grid[axis][option] = NEUTRAL_SCORE
                caveats.append(
                    f"No score was given for {option} on {axis}; a neutral {NEUTRAL_SCORE}/10 was assumed."
                )
        scores.append(AxisScore(axis=axis, scores={o: grid[axis][o] for o in plan.options}))

    if caveats:
        logger.warning("Referee left %d score(s) unstated; filled with %d", len(caveats), NEUTRAL_SCORE)
    return scores, caveats


def parse_tradeoffs(markdown: str, plan: ComparisonPlan) -> list[Tradeoff]:
    """"If <condition>, choose <option>" statements whose option is one of the plan's."""
    section = find_section(markdown, "trade-off", "tradeoff", "trade off") or markdown
    tradeoffs: list[Tradeoff] = []
    for line in section.splitlines():
        text = line.strip().lstrip("-*+ ").replace("**", "").strip('"“”')
        m = _TRADEOFF.search(text)
        if not m:
            continue
        option = match_label(m.group("option"), plan.options)
        if option is None:
            continue
        tradeoffs.append(Tradeoff(condition=m.group("condition").strip(), recommendation=option))
    return tradeoffs


def weighted_leader(plan: ComparisonPlan, scores: list[AxisScore]) -> str:
    """Option with the highest weight-adjusted total; plan order breaks ties."""
    weights = {a.name: a.weight for a in plan.axes}
    totals = {o: 0 for o in plan.options}
    for axis_score in scores:
        for option, score in axis_score.scores.items():
            totals[option] += weights.get(axis_score.axis, 1) * score
    return max(plan.options, key=lambda o: totals[o])


def parse_recommendation(
    markdown: str,
    plan: ComparisonPlan,
    scores: list[AxisScore],
) -> tuple[Recommendation, list[str]]:
    section = find_section(markdown, "recommendation") or markdown
    caveats: list[str] = []

    label = labeled_value(section, "Recommended option") or labeled_value(section, "Recommendation") or ""
    option = match_label(label, plan.options)
    if option is None:
        option = weighted_leader(plan, scores)
        caveats.append(f"The recommendation did not name a compared option; {option} leads on weighted scores.")
        logger.warning("Referee recommendation %r unresolved; using weighted leader %s", label, option)

    confidence_text = (labeled_value(section, "Confidence") or "").lower()
    confidence = next((c for c in CONFIDENCE_LEVELS if confidence_text.startswith(c)), "medium")

    reasoning = labeled_value(section, "Reasoning") or section.strip()
    return Recommendation(option=option, reasoning=reasoning, confidence=confidence), caveats


def shape_verdict(markdown: str, plan: ComparisonPlan) -> RefereeResult:
    """Turn the referee's markdown into a RefereeResult covering every axis and option."""
    scores, score_caveats = parse_scores(markdown, plan)
    recommendation, rec_caveats = parse_recommendation(markdown, plan, scores)
    section = find_section(markdown, "caveat")
    caveats = (extract_bullets(section) if section else []) + score_caveats + rec_caveats

    return RefereeResult(
        summary=markdown,
        scores=scores,
        tradeoffs=parse_tradeoffs(markdown, plan),
        recommendation=recommendation,
        caveats=caveats,
    )


async def run_referee(
    invoker: AgentInvoker,
    system_prompt: str,
    plan: ComparisonPlan,
    arguments: list[AdvocateResult],
    cross_examinations: list[CrossExamResult],
    max_steps: int = 8,
    on_text: Callable[[str], None] | None = None,
) -> RefereeResult:
    """Stream the referee's synthesis and shape it.

    Raises:
        InsufficientInput: Either input list is empty.
        AgentCallFailed: The single referee call failed; there is no fallback verdict.
        AgentOutputInvalid: The referee produced no text.
    """
    if not arguments:
        raise InsufficientInput("No advocate arguments provided", "Referee requires advocate results to synthesize")
    if not cross_examinations:
        raise InsufficientInput(
            "No cross-examinations provided",
            "Referee requires cross-examination results to synthesize",
        )

    stream = invoker.stream_text(
        system_prompt,
        build_referee_prompt(plan, arguments, cross_examinations),
        max_steps=max_steps,
    )
    async for fragment in stream:
        if on_text:
            on_text(fragment)

    markdown = stream.text.strip()
    if not markdown:
        raise AgentOutputInvalid("The referee did not produce a verdict", "empty response")

    result = shape_verdict(markdown, plan)
    logger.info(
        "Referee recommends %s (%s confidence), %d trade-offs",
        result.recommendation.option, result.recommendation.confidence, len(result.tradeoffs),
    )
    return result

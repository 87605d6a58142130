"""Cross-examination phase: each option's examiner challenges every other argument."""

import logging
import re
from collections.abc import Callable

from tech_referee.agent import AgentInvoker, describe_failure
from tech_referee.errors import AgentOutputInvalid, InsufficientInput
from tech_referee.executor import execute_in_parallel
from tech_referee.markup import find_section, labeled_value, match_label
from tech_referee.models import VERDICTS, AdvocateResult, Challenge, ComparisonPlan, CrossExamResult, FactCheck
from tech_referee.prompts import build_cross_exam_prompt, inject_option

logger = logging.getLogger(__name__)

TextHook = Callable[[str, str], None]          # (option, fragment)
ResultHook = Callable[[CrossExamResult], None]

PARTIAL_CROSS_EXAM = "step budget exhausted; cross-examination is partial"

_TARGET_LINE = re.compile(r"^[ \t]*(?:[-*+][ \t]+)?\**[ \t]*Target\b", re.IGNORECASE | re.MULTILINE)


def _challenge_blocks(text: str) -> list[str]:
    starts = [m.start() for m in _TARGET_LINE.finditer(text)]
    return [text[s:e] for s, e in zip(starts, starts[1:] + [len(text)])]


def parse_challenges(markdown: str, own_option: str, options: tuple[str, ...] | list[str]) -> list[Challenge]:
    """Target/Claim/Issue blocks from the examiner's text.

    Challenges aimed at the examiner's own option, or at a label that is not one
    of the options, are dropped.
    """
    challenges: list[Challenge] = []
    for block in _challenge_blocks(markdown):
        target_label = labeled_value(block, "Target") or ""
        target = match_label(target_label, options)
        if target is None or target == own_option:
            logger.debug("Dropping challenge from %s aimed at %r", own_option, target_label)
            continue

        claim = (labeled_value(block, "Claim") or "").strip().strip('"“”')
        critique = labeled_value(block, "Issue") or labeled_value(block, "Critique") or ""
        evidence = labeled_value(block, "Evidence") or labeled_value(block, "Counter-Evidence") or ""

        fact_check = None
        verdict_text = (labeled_value(block, "Verdict") or "").lower()
        verdict = next((v for v in VERDICTS if verdict_text.startswith(v)), None)
        if verdict:
            fact_check = FactCheck(verdict=verdict, evidence=evidence)
        elif evidence:
            critique = f"{critique} {evidence}".strip()

        if not claim and not critique:
            continue
        challenges.append(Challenge(target_option=target, claim=claim, critique=critique, fact_check=fact_check))
    return challenges


def placeholder_cross_exam(option: str, error: str) -> CrossExamResult:
    return CrossExamResult(
        option=option,
        defense="Error: Could not complete cross-examination",
        error=error,
    )


async def cross_examine_for(
    invoker: AgentInvoker,
    system_template: str,
    plan: ComparisonPlan,
    own: AdvocateResult,
    opponents: list[AdvocateResult],
    max_steps: int = 10,
    on_text: TextHook | None = None,
) -> CrossExamResult:
    stream = invoker.stream_text(
        inject_option(system_template, own.option),
        build_cross_exam_prompt(plan, own, opponents),
        max_steps=max_steps,
    )
    async for fragment in stream:
        if on_text:
            on_text(own.option, fragment)

    content = stream.text.strip()
    if not content:
        raise AgentOutputInvalid(f"Cross-examiner for {own.option} returned no text", "empty response")
    return CrossExamResult(
        option=own.option,
        challenges=parse_challenges(content, own.option, plan.options),
        defense=find_section(content, "defense") or content,
        content=content,
        error=PARTIAL_CROSS_EXAM if stream.budget_exhausted else None,
    )


async def run_cross_examination(
    invoker: AgentInvoker,
    system_template: str,
    plan: ComparisonPlan,
    arguments: list[AdvocateResult],
    concurrency: int,
    max_steps: int = 10,
    on_text: TextHook | None = None,
    on_result: ResultHook | None = None,
) -> list[CrossExamResult]:
    """Run one cross-examiner per advocate result, at most `concurrency` at a time.

    Raises:
        InsufficientInput: No advocate results to examine.
    """
    if not arguments:
        raise InsufficientInput(
            "No advocate arguments provided",
            "Cross-examination requires the advocate results to challenge",
        )

    async def _worker(own: AdvocateResult, index: int) -> CrossExamResult:
        opponents = [a for a in arguments if a.option != own.option]
        return await cross_examine_for(invoker, system_template, plan, own, opponents, max_steps, on_text)

    def _on_error(own: AdvocateResult, exc: Exception, index: int) -> None:
        logger.warning("Cross-examination for %s failed: %s", own.option, exc)

    def _on_complete(own: AdvocateResult, result: CrossExamResult, index: int) -> None:
        logger.info("Cross-examination for %s finished: %d challenges", own.option, len(result.challenges))
        if on_result:
            on_result(result)

    outcome = await execute_in_parallel(
        arguments,
        concurrency,
        _worker,
        on_item_complete=_on_complete,
        on_item_error=_on_error,
    )

    errors = {e.index: e.error for e in outcome.errors}
    results: list[CrossExamResult] = []
    for index, own in enumerate(arguments):
        result = outcome.results[index]
        if result is None:
            result = placeholder_cross_exam(own.option, describe_failure(errors[index]))
            if on_result:
                on_result(result)
        results.append(result)

    logger.info("Cross-examination complete: %d/%d succeeded", outcome.successful, len(arguments))
    return results

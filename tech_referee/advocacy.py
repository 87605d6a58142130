"""Advocate phase: one streamed, researched argument per plan option."""

import logging
from collections.abc import Callable

from tech_referee.agent import AgentInvoker, describe_failure
from tech_referee.errors import AgentOutputInvalid
from tech_referee.executor import execute_in_parallel
from tech_referee.markup import extract_bullets, extract_links, find_section
from tech_referee.models import AdvocateResult, ComparisonPlan, Source
from tech_referee.prompts import build_advocate_prompt, inject_option
from tech_referee.research import SearchResult, to_source

logger = logging.getLogger(__name__)

TextHook = Callable[[str, str], None]          # (option, fragment)
ResultHook = Callable[[AdvocateResult], None]

PARTIAL_ARGUMENT = "step budget exhausted; argument is partial"


def collect_sources(markdown: str, research: list[SearchResult]) -> list[Source]:
    """Sources cited as links, enriched with snippets from matching research results.

    Falls back to the research results themselves when the text cites nothing.
    """
    by_url = {r.url: r for r in research}
    sources: list[Source] = []
    for title, url in extract_links(markdown):
        hit = by_url.get(url)
        if hit is not None:
            source = to_source(hit)
            source.title = title or source.title
        else:
            source = Source(title=title, url=url, snippet="")
        sources.append(source)

    if not sources:
        seen: set[str] = set()
        for r in research:
            if r.url not in seen:
                seen.add(r.url)
                sources.append(to_source(r))
    return sources


def extract_weaknesses(markdown: str) -> list[str]:
    section = find_section(markdown, "weakness", "limitation")
    return extract_bullets(section) if section else []


def placeholder_argument(option: str, error: str) -> AdvocateResult:
    return AdvocateResult(
        option=option,
        argument=f"Error: Could not complete research for {option}",
        error=error,
    )


async def advocate_for(
    invoker: AgentInvoker,
    system_template: str,
    plan: ComparisonPlan,
    option: str,
    max_steps: int = 10,
    on_text: TextHook | None = None,
) -> AdvocateResult:
    """Stream one advocate's argument and shape it into an AdvocateResult."""
    stream = invoker.stream_text(
        inject_option(system_template, option),
        build_advocate_prompt(plan, option),
        max_steps=max_steps,
    )
    async for fragment in stream:
        if on_text:
            on_text(option, fragment)

    argument = stream.text.strip()
    if not argument:
        raise AgentOutputInvalid(f"Advocate for {option} returned no argument", "empty response")
    return AdvocateResult(
        option=option,
        argument=argument,
        sources=collect_sources(argument, stream.search_results),
        weaknesses=extract_weaknesses(argument),
        error=PARTIAL_ARGUMENT if stream.budget_exhausted else None,
    )


async def run_advocacy(
    invoker: AgentInvoker,
    system_template: str,
    plan: ComparisonPlan,
    concurrency: int,
    max_steps: int = 10,
    on_text: TextHook | None = None,
    on_result: ResultHook | None = None,
) -> list[AdvocateResult]:
    """Run one advocate per option, at most `concurrency` at a time.

    Never raises for a single advocate's failure: that option gets a placeholder
    result carrying the error. The returned list follows plan.options order.
    """

    async def _worker(option: str, index: int) -> AdvocateResult:
        return await advocate_for(invoker, system_template, plan, option, max_steps, on_text)

    def _on_error(option: str, exc: Exception, index: int) -> None:
        logger.warning("Advocate for %s failed: %s", option, exc)

    def _on_complete(option: str, result: AdvocateResult, index: int) -> None:
        logger.info("Advocate for %s finished: %d sources", option, len(result.sources))
        if on_result:
            on_result(result)

    outcome = await execute_in_parallel(
        list(plan.options),
        concurrency,
        _worker,
        on_item_complete=_on_complete,
        on_item_error=_on_error,
    )

    errors = {e.index: e.error for e in outcome.errors}
    results: list[AdvocateResult] = []
    for index, option in enumerate(plan.options):
        result = outcome.results[index]
        if result is None:
            result = placeholder_argument(option, describe_failure(errors[index]))
            if on_result:
                on_result(result)
        results.append(result)

    logger.info("Advocacy complete: %d/%d succeeded", outcome.successful, len(plan.options))
    return results

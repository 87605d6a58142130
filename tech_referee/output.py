"""Rich console output and markdown report for comparison sessions."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from tech_referee.models import (
    AdvocateResult,
    AxisScore,
    ComparisonPlan,
    CrossExamResult,
    RefereeResult,
    Session,
    SessionStatus,
)

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_STATUS_STYLES = {
    SessionStatus.COMPLETE: "green",
    SessionStatus.ERROR: "red",
    SessionStatus.CLARIFYING: "yellow",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str, words: int = 50) -> str:
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_plan(plan: ComparisonPlan) -> None:
    console.print(Rule("[bold cyan]Comparison Plan[/bold cyan]"))
    console.print(f"Options: [bold]{', '.join(plan.options)}[/bold]")
    table = Table(show_header=True, header_style="bold")
    table.add_column("Axis")
    table.add_column("Weight", justify="right")
    table.add_column("Description")
    for axis in plan.axes:
        table.add_row(axis.name, str(axis.weight), axis.description)
    console.print(table)
    for c in plan.constraints:
        value = f" ({c.value})" if c.value else ""
        console.print(f"  [dim]{c.type}:[/dim] {c.description}{value}")


def print_arguments(results: list[AdvocateResult]) -> None:
    console.print(Rule("[bold cyan]Advocates[/bold cyan]"))
    for r in results:
        console.print(
            Panel(
                Text(_preview(r.argument)),
                title=f"[bold]{r.option}[/bold]",
                subtitle=f"{len(r.sources)} sources" if not r.error else "[red]failed[/red]",
                border_style="red" if r.error else "dim",
            )
        )


def print_cross_examinations(results: list[CrossExamResult]) -> None:
    console.print(Rule("[bold cyan]Cross-Examination[/bold cyan]"))
    for r in results:
        console.print(
            Panel(
                Text(_preview(r.defense)),
                title=f"[bold]{r.option}[/bold]",
                subtitle=f"{len(r.challenges)} challenges" if not r.error else "[red]failed[/red]",
                border_style="red" if r.error else "dim",
            )
        )


def scores_table(plan: ComparisonPlan, scores: list[AxisScore]) -> Table:
    table = Table(title="Scores (1-10)", show_header=True, header_style="bold")
    table.add_column("Axis")
    table.add_column("Weight", justify="right")
    for option in plan.options:
        table.add_column(option, justify="right")
    weights = {a.name: a.weight for a in plan.axes}
    for axis_score in scores:
        table.add_row(
            axis_score.axis,
            str(weights.get(axis_score.axis, "")),
            *(str(axis_score.scores.get(o, "-")) for o in plan.options),
        )
    return table


def print_verdict(plan: ComparisonPlan, result: RefereeResult) -> None:
    """Print the referee's full markdown, then the structured verdict."""
    console.print(Rule("[bold green]Referee Verdict[/bold green]"))
    console.print(Markdown(result.summary))
    console.print(scores_table(plan, result.scores))
    rec = result.recommendation
    console.print(
        Panel(
            Text(rec.reasoning),
            title=f"[bold green]Recommended: {rec.option}[/bold green]",
            subtitle=f"confidence: {rec.confidence}",
        )
    )
    for t in result.tradeoffs:
        console.print(f"  If {t.condition} -> [bold]{t.recommendation}[/bold]")


def print_error(error: dict) -> None:
    console.print(f"[bold red]Error ({error.get('code')}):[/bold red] {error.get('message')}")
    if error.get("details"):
        console.print(f"[dim]{error['details']}[/dim]")


def print_session_list(sessions: list[Session]) -> None:
    if not sessions:
        console.print("No saved sessions.")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Status")
    table.add_column("Query")
    for s in sessions:
        style = _STATUS_STYLES.get(s.status, "cyan")
        table.add_row(
            s.id,
            s.created_at.strftime("%Y-%m-%d %H:%M"),
            f"[{style}]{s.status.value}[/{style}]",
            s.query[:60] + ("..." if len(s.query) > 60 else ""),
        )
    console.print(table)


def render_report(session: Session) -> str:
    """Full session as markdown: query, plan, arguments, cross-examinations, verdict."""
    lines: list[str] = [
        f"# Tech Referee: {session.query[:80]}",
        "",
        f"**Session:** {session.id}",
        f"**Date:** {session.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Status:** {session.status.value}",
        "",
        "---",
        "",
    ]

    plan = session.plan
    if plan is not None:
        lines += ["## Plan", "", f"**Options:** {', '.join(plan.options)}", ""]
        lines += [f"- **{a.name}** (weight {a.weight}/10): {a.description}" for a in plan.axes]
        lines.append("")
        if plan.constraints:
            lines += ["**Constraints:**", ""]
            lines += [f"- {c.type}: {c.description}" + (f" ({c.value})" if c.value else "") for c in plan.constraints]
            lines.append("")

    for arg in session.arguments or []:
        lines += [f"## Advocate: {arg.option}", "", arg.argument, ""]
        if arg.error:
            lines += [f"*Failed: {arg.error}*", ""]

    for ce in session.cross_examinations or []:
        lines += [f"## Cross-Examination: {ce.option}", "", ce.content or ce.defense, ""]
        if ce.error:
            lines += [f"*Failed: {ce.error}*", ""]

    result = session.result
    if result is not None and plan is not None:
        lines += ["## Verdict", "", result.summary, "", "### Scores", ""]
        lines.append("| Axis | " + " | ".join(plan.options) + " |")
        lines.append("|---|" + "---|" * len(plan.options))
        for s in result.scores:
            lines.append(f"| {s.axis} | " + " | ".join(str(s.scores.get(o, "-")) for o in plan.options) + " |")
        rec = result.recommendation
        lines += [
            "",
            f"**Recommended option:** {rec.option} ({rec.confidence} confidence)",
            "",
        ]
        if result.caveats:
            lines += ["### Caveats", ""] + [f"- {c}" for c in result.caveats] + [""]

    if session.error:
        lines += ["## Error", "", f"{session.error['code']}: {session.error['message']}", ""]

    return "\n".join(lines)


def save_report(session: Session, output_dir: Path, slug_override: str | None = None) -> Path:
    """Write the session report as <timestamp>_<slug>.md in output_dir.

    Args:
        session: Session to render, finished or not.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the query. Useful for inbox mode.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(session.query)
    filepath = output_dir / f"{timestamp}_{slug}.md"
    filepath.write_text(render_report(session), encoding="utf-8")
    logger.info("Report saved to: %s", filepath)
    return filepath

"""Click CLI: config loading, pipeline setup, interactive clarification, and output."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.text import Text

from config.config_loader import AppConfig, load_config
from tech_referee.errors import CREDENTIAL_CODES, PipelineError
from tech_referee.healthcheck import check_provider
from tech_referee.inbox import archive_file, ensure_dirs, parse_file, scan_inbox
from tech_referee.models import AdvocateResult, CrossExamResult, Session, SessionStatus
from tech_referee.orchestrator import (
    TERMINAL_STATES,
    ComparisonPipeline,
    RunSettings,
    build_pipeline,
    pending_questions,
)
from tech_referee.output import (
    print_arguments,
    print_cross_examinations,
    print_error,
    print_plan,
    print_session_list,
    print_verdict,
    save_report,
)
from tech_referee.sessions import SessionStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_MAX_CLARIFICATION_ROUNDS = 3

_PHASE_LABELS = {
    SessionStatus.PLANNING: "Planning comparison...",
    SessionStatus.ADVOCATING: "Advocates researching...",
    SessionStatus.CROSS_EXAMINING: "Cross-examining arguments...",
    SessionStatus.REFEREEING: "Referee deliberating...",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _parse_answers(pairs: tuple[str, ...]) -> dict[str, str | list[str]]:
    """KEY=VALUE pairs; a repeated KEY collects its values into a list."""
    answers: dict[str, str | list[str]] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--answer")
        key, value = key.strip(), value.strip()
        if key in answers:
            existing = answers[key]
            answers[key] = (existing if isinstance(existing, list) else [existing]) + [value]
        else:
            answers[key] = value
    return answers


def _report_pipeline_error(err: PipelineError, config: AppConfig, settings: RunSettings) -> None:
    print_error(err.to_dict())
    if err.code in CREDENTIAL_CODES:
        model_cfg = config.models.get(settings.provider)
        env_var = model_cfg.api_key_env if model_cfg else "the provider API key"
        console.print(f"[yellow]Set {env_var} in .env or pass --api-key.[/yellow]")
        others = sorted(config.available_providers - {settings.provider})
        if others:
            console.print(f"[dim]Providers with a key configured: {', '.join(others)} (use --provider)[/dim]")


def _ask_clarifications(session: Session, skip: dict[str, str | list[str]]) -> dict[str, str | list[str]]:
    """Prompt for every unanswered question. Numbered choices map to their option text."""
    answers: dict[str, str | list[str]] = {}
    console.print("\n[bold yellow]The planner needs a few details:[/bold yellow]")
    for q in session.clarifications:
        if q.id in session.answers or q.id in skip:
            continue
        console.print(f"\n[bold]{q.question}[/bold]")
        for i, opt in enumerate(q.options, start=1):
            console.print(f"  {i}. {opt}")
        hint = " (comma-separated)" if q.type == "multi" else ""
        raw = click.prompt(f"Answer{hint}", type=str).strip()
        picks = [p.strip() for p in raw.split(",")] if q.type == "multi" else [raw]
        resolved = [
            q.options[int(p) - 1] if p.isdigit() and 1 <= int(p) <= len(q.options) else p
            for p in picks if p
        ]
        answers[q.id] = resolved if q.type == "multi" else (resolved[0] if resolved else "")
    return answers


async def _health_check(pipeline: ComparisonPipeline) -> bool:
    provider = pipeline.provider
    console.print(f"\n[bold]Checking {provider.name()} ({provider.model_string()})...[/bold]")
    ok, err = await check_provider(provider)
    if ok:
        console.print(f"  [green]OK  [/green] {provider.name()}")
    else:
        short_err = err.splitlines()[0][:120] if err else "unknown error"
        console.print(f"  [red]FAIL[/red] {provider.name()}: {short_err}")
    return ok


async def _run_with_progress(
    pipeline: ComparisonPipeline,
    session: Session,
    answers: dict[str, str | list[str]] | None,
) -> Session:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(_PHASE_LABELS.get(session.status, "Planning comparison..."), total=None)

        def on_status(s: Session) -> None:
            progress.update(task, description=_PHASE_LABELS.get(s.status, s.status.value))

        def on_advocate_result(r: AdvocateResult) -> None:
            mark = "[red]FAIL[/red]" if r.error else "[green]OK[/green]"
            progress.print(f"{mark} Advocate for {r.option}")

        def on_cross_exam_result(r: CrossExamResult) -> None:
            mark = "[red]FAIL[/red]" if r.error else "[green]OK[/green]"
            progress.print(f"{mark} Cross-examination for {r.option} ({len(r.challenges)} challenges)")

        pipeline.hooks.on_status = on_status
        pipeline.hooks.on_advocate_result = on_advocate_result
        pipeline.hooks.on_cross_exam_result = on_cross_exam_result
        return await pipeline.run(session, answers)


async def _drive(
    pipeline: ComparisonPipeline,
    session: Session,
    answers: dict[str, str | list[str]] | None,
    interactive: bool,
) -> Session:
    """Run until the session is terminal, or stuck in clarifying without a way to ask."""
    answers = dict(answers or {})
    for _ in range(_MAX_CLARIFICATION_ROUNDS + 1):
        if session.status is SessionStatus.CLARIFYING:
            if any(q not in answers for q in pending_questions(session)):
                if not interactive:
                    return session
                answers.update(_ask_clarifications(session, skip=answers))
        session = await _run_with_progress(pipeline, session, answers or None)
        answers = {}
        if session.status is not SessionStatus.CLARIFYING:
            break
    return session


def _print_outcome(session: Session, output_dir: Path, slug_override: str | None = None) -> Path | None:
    if session.plan is not None:
        print_plan(session.plan)
    if session.arguments:
        print_arguments(session.arguments)
    if session.cross_examinations:
        print_cross_examinations(session.cross_examinations)
    if session.result is not None and session.plan is not None:
        print_verdict(session.plan, session.result)
    if session.status is SessionStatus.CLARIFYING:
        console.print("[yellow]Unanswered clarification questions:[/yellow]")
        for q in session.clarifications:
            if q.id in pending_questions(session):
                console.print(f"  {q.id}: {q.question}")
        return None
    if session.error:
        print_error(session.error)

    saved_path = save_report(session, output_dir, slug_override=slug_override)
    console.print(f"\n[dim]Report: {saved_path}[/dim]")
    console.print(f"[dim]Session: {session.id}[/dim]")
    return saved_path


async def _compare(
    config: AppConfig,
    settings: RunSettings,
    store: SessionStore,
    output_dir: Path,
    query: str | None,
    session: Session | None,
    answers: dict[str, str | list[str]],
    skip_health_check: bool,
) -> Session | None:
    """Build the pipeline and drive one session. Returns None when it never started."""
    pipeline = build_pipeline(config, settings, store)
    if isinstance(pipeline, PipelineError):
        _report_pipeline_error(pipeline, config, settings)
        return None

    if not skip_health_check and not await _health_check(pipeline):
        console.print("[bold red]Error:[/bold red] Provider health check failed. Use --skip-health-check to try anyway.")
        return None

    if session is None:
        session = pipeline.create_session(query or "")
        console.print(f"\n[bold cyan]Tech Referee[/bold cyan] - {settings.provider}, concurrency {settings.concurrency}")
        console.print(Text(f"Query: {session.query[:80]}{'...' if len(session.query) > 80 else ''}\n", style="italic"))

    session = await _drive(pipeline, session, answers, interactive=sys.stdin.isatty())
    _print_outcome(session, output_dir)
    return session


def _settings(
    config: AppConfig,
    provider: str | None,
    model: str | None,
    concurrency: int | None,
    api_key: str | None,
    search_api_key: str | None,
) -> RunSettings:
    return RunSettings(
        provider=provider or config.defaults.provider,
        model=model,
        concurrency=concurrency if concurrency is not None else config.defaults.concurrency,
        api_key=api_key,
        search_api_key=search_api_key,
    )


def _run_options(fn):
    """Options shared by every command that talks to a model."""
    fn = click.option("--skip-health-check", is_flag=True, default=False,
                      help="Skip the API connectivity check at startup")(fn)
    fn = click.option("--output", "output_path", default=None, help="Report directory (default: from config)")(fn)
    fn = click.option("--search-api-key", default=None, help="Search API key (overrides environment)")(fn)
    fn = click.option("--api-key", default=None, help="Model API key (overrides environment)")(fn)
    fn = click.option("--model", default=None, help="Model identifier override for the provider")(fn)
    fn = click.option("--provider", default=None, help="Provider name from settings.yaml (default: from config)")(fn)
    fn = click.option("--concurrency", default=None, type=int, help="Parallel agents per phase, 1-3")(fn)
    return fn


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--sessions-dir", default=None, help="Session storage folder (default: from config)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, sessions_dir: str | None) -> None:
    """Tech Referee -- structured multi-agent debate for technology choices.

    \b
    Examples:
      tech-referee compare "Postgres vs MongoDB for an e-commerce platform"
      tech-referee compare --file question.md --concurrency 3
      tech-referee compare "React or Vue?" --answer use_case=dashboard --answer scale=small
      tech-referee inbox
      tech-referee sessions
      tech-referee resume 20250101-120000-abc123
    """
    # Model output can contain characters the Windows console codepage cannot encode
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    ctx.obj = {
        "config": config,
        "store": SessionStore(Path(sessions_dir) if sessions_dir else config.defaults.sessions_dir),
    }


@main.command()
@click.argument("query", required=False)
@click.option("--file", "query_file", type=click.Path(exists=True), help="Read the query from a .md file")
@click.option("--answer", "answer_pairs", multiple=True, metavar="KEY=VALUE",
              help="Pre-answer a clarification question (repeatable)")
@_run_options
@click.pass_context
def compare(
    ctx: click.Context,
    query: str | None,
    query_file: str | None,
    answer_pairs: tuple[str, ...],
    concurrency: int | None,
    provider: str | None,
    model: str | None,
    api_key: str | None,
    search_api_key: str | None,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Run a full comparison for QUERY."""
    config: AppConfig = ctx.obj["config"]

    if query_file:
        query_text = Path(query_file).read_text(encoding="utf-8").strip()
    elif query:
        query_text = query
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUERY argument or --file.")
        sys.exit(1)
    if not query_text:
        console.print("[bold red]Error:[/bold red] The query is empty.")
        sys.exit(1)

    settings = _settings(config, provider, model, concurrency, api_key, search_api_key)
    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    session = asyncio.run(
        _compare(
            config, settings, ctx.obj["store"], output_dir,
            query=query_text,
            session=None,
            answers=_parse_answers(answer_pairs),
            skip_health_check=skip_health_check,
        )
    )
    if session is None or session.status is not SessionStatus.COMPLETE:
        sys.exit(1)


@main.command()
@click.argument("session_id")
@click.option("--answer", "answer_pairs", multiple=True, metavar="KEY=VALUE",
              help="Answer a pending clarification question (repeatable)")
@_run_options
@click.pass_context
def resume(
    ctx: click.Context,
    session_id: str,
    answer_pairs: tuple[str, ...],
    concurrency: int | None,
    provider: str | None,
    model: str | None,
    api_key: str | None,
    search_api_key: str | None,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Continue an unfinished session from its current phase."""
    config: AppConfig = ctx.obj["config"]
    store: SessionStore = ctx.obj["store"]

    session = store.load(session_id)
    if session is None:
        console.print(f"[bold red]Error:[/bold red] No session {session_id}")
        sys.exit(1)
    if session.status in TERMINAL_STATES:
        console.print(f"Session {session_id} is already {session.status.value}; nothing to resume.")
        sys.exit(1)

    settings = _settings(config, provider, model, concurrency, api_key, search_api_key)
    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    result = asyncio.run(
        _compare(
            config, settings, store, output_dir,
            query=None,
            session=session,
            answers=_parse_answers(answer_pairs),
            skip_health_check=skip_health_check,
        )
    )
    if result is None or result.status is not SessionStatus.COMPLETE:
        sys.exit(1)


async def _run_inbox(
    config: AppConfig,
    store: SessionStore,
    inbox_dir: Path,
    archive_dir: Path,
    output_dir: Path,
    cli_settings: RunSettings,
    skip_health_check: bool,
) -> None:
    """Process every queued .md file. Precedence: CLI flag > front matter > config default."""
    ensure_dirs(inbox_dir, archive_dir)
    files = scan_inbox(inbox_dir)

    if not files:
        click.echo("No files in inbox.")
        return

    checked: dict[str, bool] = {}
    for file_path in files:
        try:
            request = parse_file(file_path)
        except PipelineError as err:
            logger.error("Failed: %s -- %s", file_path.name, err)
            archive_file(file_path, archive_dir, failed=True)
            continue

        settings = RunSettings(
            provider=cli_settings.provider or request.provider or config.defaults.provider,
            model=cli_settings.model or request.model,
            concurrency=(
                cli_settings.concurrency if cli_settings.concurrency is not None
                else request.concurrency if request.concurrency is not None
                else config.defaults.concurrency
            ),
            api_key=cli_settings.api_key,
            search_api_key=cli_settings.search_api_key,
        )

        pipeline = build_pipeline(config, settings, store)
        if isinstance(pipeline, PipelineError):
            _report_pipeline_error(pipeline, config, settings)
            archive_file(file_path, archive_dir, failed=True)
            continue

        if not skip_health_check:
            if settings.provider not in checked:
                checked[settings.provider] = await _health_check(pipeline)
            if not checked[settings.provider]:
                archive_file(file_path, archive_dir, failed=True)
                continue

        session = pipeline.create_session(request.query)
        session = await _drive(pipeline, session, request.answers, interactive=False)
        saved = _print_outcome(session, output_dir, slug_override=file_path.stem)

        failed = session.status is not SessionStatus.COMPLETE
        archived = archive_file(file_path, archive_dir, failed=failed)
        if failed:
            logger.error("Failed: %s -- session %s ended %s", file_path.name, session.id, session.status.value)
        else:
            click.echo(f"Processed: {file_path.name} -> {saved} (archived: {archived.name})")


@main.command()
@click.option("--inbox-dir", "inbox_dir_override", default=None,
              help="Override inbox folder path (default: from config)")
@_run_options
@click.pass_context
def inbox(
    ctx: click.Context,
    inbox_dir_override: str | None,
    concurrency: int | None,
    provider: str | None,
    model: str | None,
    api_key: str | None,
    search_api_key: str | None,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Process all queued .md query files in the inbox folder."""
    config: AppConfig = ctx.obj["config"]
    if config.inbox is None and inbox_dir_override is None:
        console.print("[bold red]Error:[/bold red] No inbox configured; pass --inbox-dir.")
        sys.exit(1)

    inbox_dir = Path(inbox_dir_override) if inbox_dir_override else config.inbox.dir
    archive_dir = config.inbox.archive_dir if config.inbox else inbox_dir / "archive"
    output_dir = Path(output_path) if output_path else config.defaults.output_dir
    # provider left empty so front matter can fill it
    cli_settings = RunSettings(
        provider=provider or "",
        model=model,
        concurrency=concurrency,
        api_key=api_key,
        search_api_key=search_api_key,
    )
    asyncio.run(
        _run_inbox(config, ctx.obj["store"], inbox_dir, archive_dir, output_dir, cli_settings, skip_health_check)
    )


@main.command("sessions")
@click.pass_context
def list_sessions(ctx: click.Context) -> None:
    """List saved sessions, newest first."""
    print_session_list(ctx.obj["store"].list_sessions())


@main.command()
@click.argument("session_id")
@click.pass_context
def show(ctx: click.Context, session_id: str) -> None:
    """Print a saved session."""
    session = ctx.obj["store"].load(session_id)
    if session is None:
        console.print(f"[bold red]Error:[/bold red] No session {session_id}")
        sys.exit(1)

    console.print(f"[bold]{session.id}[/bold] ({session.status.value})")
    console.print(Text(session.query))
    if session.plan is not None:
        print_plan(session.plan)
    if session.arguments:
        print_arguments(session.arguments)
    if session.cross_examinations:
        print_cross_examinations(session.cross_examinations)
    if session.result is not None and session.plan is not None:
        print_verdict(session.plan, session.result)
    if session.error:
        print_error(session.error)


@main.command()
@click.argument("session_id")
@click.confirmation_option(prompt="Delete this session permanently?")
@click.pass_context
def delete(ctx: click.Context, session_id: str) -> None:
    """Delete a saved session."""
    if ctx.obj["store"].delete(session_id):
        console.print(f"Deleted {session_id}")
    else:
        console.print(f"[bold red]Error:[/bold red] No session {session_id}")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Pipeline orchestrator: sequences the four phases over a session state machine.

    pending -> planning -> (clarifying <-> planning)* -> advocating
            -> cross-examining -> refereeing -> complete

error is reachable from every non-terminal state. A fatal phase error moves the
session to error but keeps every phase output produced so far.
"""

import dataclasses
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from config.config_loader import AppConfig, ModelConfig, PromptsConfig, RetryConfig, StepBudgets, resolve_api_key
from tech_referee.advocacy import run_advocacy
from tech_referee.agent import AgentInvoker
from tech_referee.cross_examination import run_cross_examination
from tech_referee.errors import (
    InsufficientInput,
    InvalidRequest,
    InvalidTransition,
    MissingCredential,
    PipelineError,
    parse_error,
)
from tech_referee.models import (
    AdvocateResult,
    ComparisonPlan,
    CrossExamResult,
    RefereeResult,
    Session,
    SessionStatus,
    TranscriptEntry,
)
from tech_referee.planning import PlanningOutcome, run_planning
from tech_referee.providers.anthropic import AnthropicProvider
from tech_referee.providers.base import AIProvider
from tech_referee.providers.gemini import GeminiProvider
from tech_referee.providers.openai_provider import OpenAIProvider
from tech_referee.refereeing import run_referee
from tech_referee.research import ResearchTool
from tech_referee.retry import RetryPolicy
from tech_referee.sessions import SessionStore

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "google-genai": GeminiProvider,
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
}

MIN_CONCURRENCY, MAX_CONCURRENCY = 1, 3

S = SessionStatus
ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    S.PENDING: frozenset({S.PLANNING}),
    S.PLANNING: frozenset({S.CLARIFYING, S.ADVOCATING}),
    S.CLARIFYING: frozenset({S.PLANNING}),
    S.ADVOCATING: frozenset({S.CROSS_EXAMINING}),
    S.CROSS_EXAMINING: frozenset({S.REFEREEING}),
    S.REFEREEING: frozenset({S.COMPLETE}),
    S.COMPLETE: frozenset(),
    S.ERROR: frozenset(),
}
TERMINAL_STATES = frozenset({S.COMPLETE, S.ERROR})


# --- session state helpers ---


def new_session(query: str) -> Session:
    session_id = f"{datetime.now():%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"
    session = Session(id=session_id, query=query, created_at=datetime.now())
    add_transcript(session, "user_query", query)
    return session


def add_transcript(session: Session, entry_type: str, content: str, **metadata) -> TranscriptEntry:
    entry = TranscriptEntry(
        id=uuid.uuid4().hex,
        timestamp=datetime.now(),
        type=entry_type,
        content=content,
        metadata=metadata,
    )
    session.transcript.append(entry)
    return entry


def transition(session: Session, target: SessionStatus) -> None:
    """Move session to target.

    Raises:
        InvalidTransition: target is not reachable from the current status.
    """
    current = session.status
    allowed = target in ALLOWED_TRANSITIONS[current] or (target is S.ERROR and current not in TERMINAL_STATES)
    if not allowed:
        raise InvalidTransition(
            f"Cannot move session from {current.value} to {target.value}",
            f"session {session.id}",
        )
    logger.debug("Session %s: %s -> %s", session.id, current.value, target.value)
    session.status = target


def mark_error(session: Session, err: PipelineError) -> None:
    """Record a fatal error. Phase outputs already on the session are kept."""
    if session.status not in TERMINAL_STATES:
        transition(session, S.ERROR)
    session.error = err.to_dict()
    add_transcript(session, "error", err.message, code=err.code, details=err.details)


def has_partial_results(session: Session) -> bool:
    return any(x is not None for x in (session.plan, session.arguments, session.cross_examinations, session.result))


def pending_questions(session: Session, answers: dict[str, str | list[str]] | None = None) -> list[str]:
    known = {**session.answers, **(answers or {})}
    return [q.id for q in session.clarifications if q.id not in known]


# --- request settings and credentials ---


@dataclass
class RunSettings:
    """Per-request configuration surface. Overrides win over environment variables."""

    provider: str
    model: str | None = None
    concurrency: int = 2
    api_key: str | None = None
    search_api_key: str | None = None


@dataclass
class Credentials:
    model_key: str
    search_key: str | None = None


def validate_settings(config: AppConfig, settings: RunSettings) -> None:
    """Raises InvalidRequest for an unknown provider or concurrency outside 1-3."""
    if settings.provider not in config.models:
        raise InvalidRequest(
            f"Unknown provider: {settings.provider}",
            f"Available: {', '.join(sorted(config.models))}",
        )
    if not MIN_CONCURRENCY <= settings.concurrency <= MAX_CONCURRENCY:
        raise InvalidRequest(
            "Concurrency must be between 1 and 3",
            f"got {settings.concurrency}",
        )


def resolve_credentials(config: AppConfig, settings: RunSettings) -> Credentials | MissingCredential:
    """Model key is required; a missing search key only disables research."""
    model_cfg = config.models[settings.provider]
    model_key = resolve_api_key(model_cfg.api_key_env, settings.api_key)
    if not model_key:
        return MissingCredential(settings.provider)

    search_key = resolve_api_key(config.research.api_key_env, settings.search_api_key)
    if not search_key:
        logger.warning("%s not set; agents will run without web research", config.research.api_key_env)
    return Credentials(model_key=model_key, search_key=search_key)


def create_provider(model_cfg: ModelConfig, api_key: str) -> AIProvider:
    provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
    if provider_cls is None:
        raise InvalidRequest(f"Unsupported SDK for provider {model_cfg.name}: {model_cfg.sdk}")
    return provider_cls(model_cfg, api_key)


def _policy(raw: RetryConfig) -> RetryPolicy:
    return RetryPolicy(
        max_retries=raw.max_retries,
        base_delay=raw.base_delay,
        max_delay=raw.max_delay,
        multiplier=raw.multiplier,
    )


# --- pipeline ---


@dataclass
class PipelineHooks:
    """Optional observers. Text hooks receive fragments as agents stream them."""

    on_status: Callable[[Session], None] | None = None
    on_advocate_text: Callable[[str, str], None] | None = None
    on_advocate_result: Callable[[AdvocateResult], None] | None = None
    on_cross_exam_text: Callable[[str, str], None] | None = None
    on_cross_exam_result: Callable[[CrossExamResult], None] | None = None
    on_referee_text: Callable[[str], None] | None = None


class ComparisonPipeline:
    """Runs the four phases for a session, persisting it at every phase boundary."""

    def __init__(
        self,
        invoker: AgentInvoker,
        prompts: PromptsConfig,
        concurrency: int = 2,
        budgets: StepBudgets | None = None,
        store: SessionStore | None = None,
        hooks: PipelineHooks | None = None,
    ) -> None:
        if not MIN_CONCURRENCY <= concurrency <= MAX_CONCURRENCY:
            raise InvalidRequest("Concurrency must be between 1 and 3", f"got {concurrency}")
        self._invoker = invoker
        self._prompts = prompts
        self._concurrency = concurrency
        self._budgets = budgets or StepBudgets()
        self._store = store
        self.hooks = hooks or PipelineHooks()

    @property
    def provider(self) -> AIProvider:
        return self._invoker.provider

    # Phase entry points: each returns the phase output or raises a PipelineError.

    async def plan(self, query: str, answers: dict[str, str | list[str]] | None = None) -> PlanningOutcome:
        if not query or not query.strip():
            raise InvalidRequest("Query must not be empty")
        return await run_planning(self._invoker, self._prompts.planner, query, answers, self._budgets.planner)

    async def advocate(self, plan: ComparisonPlan) -> list[AdvocateResult]:
        return await run_advocacy(
            self._invoker,
            self._prompts.advocate,
            plan,
            self._concurrency,
            self._budgets.advocate,
            on_text=self.hooks.on_advocate_text,
            on_result=self.hooks.on_advocate_result,
        )

    async def cross_examine(self, plan: ComparisonPlan, arguments: list[AdvocateResult]) -> list[CrossExamResult]:
        return await run_cross_examination(
            self._invoker,
            self._prompts.cross_examiner,
            plan,
            arguments,
            self._concurrency,
            self._budgets.cross_examiner,
            on_text=self.hooks.on_cross_exam_text,
            on_result=self.hooks.on_cross_exam_result,
        )

    async def referee(
        self,
        plan: ComparisonPlan,
        arguments: list[AdvocateResult],
        cross_examinations: list[CrossExamResult],
    ) -> RefereeResult:
        return await run_referee(
            self._invoker,
            self._prompts.referee,
            plan,
            arguments,
            cross_examinations,
            self._budgets.referee,
            on_text=self.hooks.on_referee_text,
        )

    # Session driving

    def create_session(self, query: str) -> Session:
        if not query or not query.strip():
            raise InvalidRequest("Query must not be empty")
        session = new_session(query.strip())
        self._save(session)
        return session

    async def run(self, session: Session, answers: dict[str, str | list[str]] | None = None) -> Session:
        """Advance session as far as it can go.

        Stops early in clarifying (questions need answers) or error. Per-option
        failures never stop the run; they show up as placeholder results.

        Raises:
            InvalidRequest: Session already finished, or clarification questions
                remain unanswered. The session is left unchanged.
        """
        if session.status in TERMINAL_STATES:
            raise InvalidRequest(
                f"Session {session.id} is already {session.status.value}",
                "Start a new comparison instead",
            )
        if session.status is S.CLARIFYING:
            missing = pending_questions(session, answers)
            if missing:
                raise InvalidRequest("Clarification questions are unanswered", ", ".join(missing))
        for key, value in (answers or {}).items():
            session.answers[key] = value
            add_transcript(session, "clarification_answer", f"{key}: {value}", question_id=key)

        try:
            await self._advance(session)
        except PipelineError as err:
            logger.error("Session %s failed in %s: %s", session.id, session.status.value, err)
            mark_error(session, err)
            self._save(session)
        except Exception as exc:
            logger.exception("Unexpected failure in session %s", session.id)
            mark_error(session, parse_error(exc, session.status.value))
            self._save(session)
        return session

    resume = run

    async def _advance(self, session: Session) -> None:
        if session.status in (S.PENDING, S.CLARIFYING):
            self._enter(session, S.PLANNING)

        if session.status is S.PLANNING:
            outcome = await self.plan(session.query, session.answers or None)
            if outcome.needs_clarification:
                session.clarifications = outcome.clarifications
                for q in outcome.clarifications:
                    add_transcript(session, "clarification_question", q.question, question_id=q.id)
                self._enter(session, S.CLARIFYING)
                return
            session.plan = outcome.plan
            session.completed_phases.append("planning")
            add_transcript(
                session,
                "planning_result",
                f"Comparing {', '.join(outcome.plan.options)} on {', '.join(a.name for a in outcome.plan.axes)}",
            )
            self._enter(session, S.ADVOCATING)

        if session.status is S.ADVOCATING:
            plan = self._require_plan(session)
            session.arguments = await self.advocate(plan)
            session.completed_phases.append("advocating")
            for arg in session.arguments:
                add_transcript(session, "advocate_argument", arg.argument, option=arg.option, error=arg.error)
            self._enter(session, S.CROSS_EXAMINING)

        if session.status is S.CROSS_EXAMINING:
            plan = self._require_plan(session)
            session.cross_examinations = await self.cross_examine(plan, session.arguments or [])
            session.completed_phases.append("cross-examining")
            for ce in session.cross_examinations:
                add_transcript(session, "cross_examination", ce.content or ce.defense, option=ce.option, error=ce.error)
            self._enter(session, S.REFEREEING)

        if session.status is S.REFEREEING:
            plan = self._require_plan(session)
            session.result = await self.referee(plan, session.arguments or [], session.cross_examinations or [])
            session.completed_phases.append("refereeing")
            add_transcript(
                session,
                "referee_verdict",
                session.result.summary,
                recommendation=session.result.recommendation.option,
                confidence=session.result.recommendation.confidence,
            )
            session.completed_at = datetime.now()
            self._enter(session, S.COMPLETE)
            logger.info("Session %s complete: %s", session.id, session.result.recommendation.option)

    def _require_plan(self, session: Session) -> ComparisonPlan:
        if session.plan is None:
            raise InsufficientInput("No comparison plan on the session", f"status {session.status.value}")
        return session.plan

    def _enter(self, session: Session, target: SessionStatus) -> None:
        transition(session, target)
        self._save(session)
        if self.hooks.on_status:
            self.hooks.on_status(session)

    def _save(self, session: Session) -> None:
        if self._store is not None:
            self._store.save(session)


def build_pipeline(
    config: AppConfig,
    settings: RunSettings,
    store: SessionStore | None = None,
    hooks: PipelineHooks | None = None,
) -> ComparisonPipeline | PipelineError:
    """Assemble provider, research tool and invoker for one request.

    Returns the pipeline, or the PipelineError (usually MissingCredential) that
    prevents building it. Nothing is sent to a model here.
    """
    try:
        validate_settings(config, settings)
    except InvalidRequest as err:
        return err

    credentials = resolve_credentials(config, settings)
    if isinstance(credentials, MissingCredential):
        return credentials

    model_cfg = config.models[settings.provider]
    if settings.model:
        model_cfg = dataclasses.replace(model_cfg, model=settings.model)

    try:
        provider = create_provider(model_cfg, credentials.model_key)
    except PipelineError as err:
        return err

    research = ResearchTool(config.research, credentials.search_key, retry=_policy(config.search_retry))
    invoker = AgentInvoker(
        provider,
        research,
        retry=_policy(config.api_retry),
        timeout_sec=float(model_cfg.timeout_sec),
    )
    logger.info("Pipeline ready: %s (%s), concurrency %d", provider.name(), provider.model_string(), settings.concurrency)
    return ComparisonPipeline(
        invoker,
        config.prompts,
        concurrency=settings.concurrency,
        budgets=config.step_budgets,
        store=store,
        hooks=hooks,
    )

"""Shared pytest fixtures."""

import asyncio
import json
from collections.abc import Callable
from pathlib import Path

import pytest

from config.config_loader import (
    AppConfig,
    DefaultsConfig,
    ModelConfig,
    PromptsConfig,
    ResearchConfig,
    RetryConfig,
    StepBudgets,
)
from tech_referee.agent import AgentInvoker
from tech_referee.models import (
    AdvocateAssignment,
    AdvocateResult,
    Challenge,
    ComparisonAxis,
    ComparisonPlan,
    Constraint,
    CrossExamResult,
    Source,
)
from tech_referee.providers.base import AIProvider, StepEvent, Turn
from tech_referee.retry import RetryPolicy

NO_WAIT = RetryPolicy(max_retries=2, base_delay=0.0, max_delay=0.0, jitter=0.0)

Responder = Callable[[str, list[Turn]], list[StepEvent] | Exception]


def chunks(text: str, size: int = 40) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


class MockProvider(AIProvider):
    """Test double AIProvider.

    Either replays `steps` in order (one entry per model turn) or asks
    `respond(system, turns)` for each turn. An Exception entry is raised before
    any event; an Exception inside an event list is raised mid-stream.
    """

    def __init__(
        self,
        provider_name: str = "mock",
        steps: list[list[StepEvent] | Exception] | None = None,
        respond: Responder | None = None,
        delay: float = 0.0,
    ) -> None:
        self._name = provider_name
        self._steps = list(steps or [])
        self._respond = respond
        self._delay = delay
        self.calls: list[tuple[str, list[Turn]]] = []

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def stream_step(self, system, turns, tools):
        self.calls.append((system, list(turns)))
        if self._respond is not None:
            events = self._respond(system, turns)
        elif self._steps:
            events = self._steps.pop(0)
        else:
            events = ["OK"]
        if self._delay:
            await asyncio.sleep(self._delay)
        if isinstance(events, Exception):
            raise events
        for event in events:
            if isinstance(event, Exception):
                raise event
            yield event


def make_invoker(provider: AIProvider, research=None, timeout_sec: float = 5.0) -> AgentInvoker:
    return AgentInvoker(provider, research, retry=NO_WAIT, timeout_sec=timeout_sec)


# --- canned agent output ---


PLAN_JSON = {
    "needs_clarification": False,
    "plan": {
        "options": ["PostgreSQL", "MongoDB"],
        "constraints": [{"type": "scale", "description": "Catalog of 1M products", "value": "1M"}],
        "axes": [
            {"name": "Cost", "description": "Hosting and licence cost", "weight": 8},
            {"name": "Scalability", "description": "Growth headroom", "weight": 7},
        ],
        "assignments": [
            {"option": "PostgreSQL", "advocate_id": "advocate-1"},
            {"option": "MongoDB", "advocate_id": "advocate-2"},
        ],
    },
}

CLARIFY_JSON = {
    "needs_clarification": True,
    "clarifications": [
        {"id": "scale", "question": "How many orders per day?", "type": "single",
         "options": ["<1k", "1k-100k", ">100k"], "allow_custom": True},
    ],
}


def advocate_text(option: str) -> str:
    slug = option.lower()
    return (
        f"## Overview\n{option} is the right call for this shop "
        f"([{option} docs](https://{slug}.example.com/docs)).\n\n"
        f"## Cost\n{option} is cheap to run.\n\n"
        "## Acknowledged Weaknesses\n"
        f"- {option} needs tuning at scale\n"
        "- Smaller hiring pool\n"
    )


def cross_exam_text(option: str, opponent: str) -> str:
    return (
        "## Challenges\n"
        f"- **Target**: {opponent}\n"
        f'- **Claim**: "{opponent} is cheap to run."\n'
        "- **Issue**: outdated, managed pricing went up\n"
        "- **Verdict**: disputed\n"
        "- **Evidence**: [Pricing](https://pricing.example.com)\n\n"
        f"- **Target**: {option}\n"
        f'- **Claim**: "{option} is the right call"\n'
        "- **Issue**: self-review\n\n"
        f"## Defense of {option}\n"
        f"{option} handles the stated load comfortably.\n\n"
        "## Key Omissions\n- Backup costs\n"
    )


REFEREE_TEXT = """## Summary
Both options fit; PostgreSQL wins on cost.

## Scores
_Score{Cost:PostgreSQL=8,MongoDB=6}
_Score{Scalability:PostgreSQL=7,MongoDB=9}

## Trade-offs
- If you need flexible product schemas, choose MongoDB because documents map to catalog items.
- If you need strict order consistency, choose PostgreSQL because of ACID transactions.

## Recommendation
**Recommended option:** PostgreSQL
**Confidence:** high
**Reasoning:** Cost is the heaviest axis and PostgreSQL leads it.

## Caveats
- Sustained write volume above 50k/s would favor MongoDB
"""


def debate_responder(system: str, turns: list[Turn]) -> list[StepEvent]:
    """Answers each phase by its system prompt (see sample_prompts_config)."""
    if system.startswith("PLANNER"):
        return [json.dumps(PLAN_JSON)]
    if system.startswith("ADVOCATE for "):
        return chunks(advocate_text(system.removeprefix("ADVOCATE for ")))
    if system.startswith("CROSS for "):
        option = system.removeprefix("CROSS for ")
        opponent = "MongoDB" if option == "PostgreSQL" else "PostgreSQL"
        return chunks(cross_exam_text(option, opponent))
    if system.startswith("REFEREE"):
        return chunks(REFEREE_TEXT)
    return ["OK"]


# --- fixtures ---


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="openai",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        planner="PLANNER: produce a plan",
        advocate="ADVOCATE for {option}",
        cross_examiner="CROSS for {option}",
        referee="REFEREE: synthesize",
    )


@pytest.fixture
def sample_research_config() -> ResearchConfig:
    return ResearchConfig(api_key_env="TEST_SEARCH_KEY", base_url="https://search.test")


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        provider="gemini",
        concurrency=2,
        output_dir=tmp_path / "output",
        sessions_dir=tmp_path / "sessions",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
    sample_research_config: ResearchConfig,
) -> AppConfig:
    model_cfg = ModelConfig(
        name="gemini",
        sdk="google-genai",
        model="gemini-3-flash-preview",
        api_key_env="TEST_GEMINI_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        models={"gemini": model_cfg},
        prompts=sample_prompts_config,
        research=sample_research_config,
        api_retry=RetryConfig(max_retries=0, base_delay=0.0, max_delay=0.0),
        search_retry=RetryConfig(max_retries=0, base_delay=0.0, max_delay=0.0),
        step_budgets=StepBudgets(),
    )


@pytest.fixture
def sample_plan() -> ComparisonPlan:
    return ComparisonPlan(
        options=("PostgreSQL", "MongoDB"),
        constraints=(Constraint(type="scale", description="Catalog of 1M products", value="1M"),),
        axes=(
            ComparisonAxis(name="Cost", description="Hosting and licence cost", weight=8),
            ComparisonAxis(name="Scalability", description="Growth headroom", weight=7),
        ),
        assignments=(
            AdvocateAssignment(option="PostgreSQL", advocate_id="advocate-1"),
            AdvocateAssignment(option="MongoDB", advocate_id="advocate-2"),
        ),
    )


@pytest.fixture
def sample_arguments() -> list[AdvocateResult]:
    return [
        AdvocateResult(
            option=option,
            argument=advocate_text(option),
            sources=[Source(title=f"{option} docs", url=f"https://{option.lower()}.example.com/docs", snippet="")],
            weaknesses=[f"{option} needs tuning at scale"],
        )
        for option in ("PostgreSQL", "MongoDB")
    ]


@pytest.fixture
def sample_cross_exams() -> list[CrossExamResult]:
    return [
        CrossExamResult(
            option="PostgreSQL",
            challenges=[Challenge(target_option="MongoDB", claim="MongoDB is cheap", critique="outdated")],
            defense="PostgreSQL handles the load.",
        ),
        CrossExamResult(
            option="MongoDB",
            challenges=[Challenge(target_option="PostgreSQL", claim="PostgreSQL is cheap", critique="incomplete")],
            defense="MongoDB scales out.",
        ),
    ]


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def debate_provider() -> MockProvider:
    return MockProvider("gemini", respond=debate_responder)

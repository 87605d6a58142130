"""Load settings.yaml into typed dataclasses. Reports which providers have API keys."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class ResearchConfig:
    api_key_env: str
    base_url: str
    num_results: int = 5
    snippet_chars: int = 1500
    max_query_chars: int = 200
    timeout_sec: float = 20.0


@dataclass
class RetryConfig:
    max_retries: int
    base_delay: float
    max_delay: float
    multiplier: float = 2.0


@dataclass
class StepBudgets:
    planner: int = 5
    advocate: int = 10
    cross_examiner: int = 10
    referee: int = 8


@dataclass
class PromptsConfig:
    planner: str
    advocate: str
    cross_examiner: str
    referee: str


@dataclass
class DefaultsConfig:
    provider: str
    concurrency: int
    output_dir: Path
    sessions_dir: Path


@dataclass
class InboxConfig:
    dir: Path
    archive_dir: Path


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    research: ResearchConfig
    api_retry: RetryConfig
    search_retry: RetryConfig
    step_budgets: StepBudgets = field(default_factory=StepBudgets)
    inbox: InboxConfig | None = None
    available_providers: set[str] = field(default_factory=set)


def _retry(raw: dict) -> RetryConfig:
    return RetryConfig(
        max_retries=int(raw["max_retries"]),
        base_delay=float(raw["base_delay"]),
        max_delay=float(raw["max_delay"]),
        multiplier=float(raw.get("multiplier", 2.0)),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if the default
    concurrency is outside 1-3. Logs missing API keys but does not raise; callers
    check available_providers or resolve credentials per request.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        provider=str(defaults_raw["provider"]),
        concurrency=int(defaults_raw["concurrency"]),
        output_dir=Path(defaults_raw["output_dir"]),
        sessions_dir=Path(defaults_raw["sessions_dir"]),
    )
    if not 1 <= defaults.concurrency <= 3:
        raise ValueError(f"defaults.concurrency must be 1-3, got {defaults.concurrency}")

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        planner=prompts_raw["planner"],
        advocate=prompts_raw["advocate"],
        cross_examiner=prompts_raw["cross_examiner"],
        referee=prompts_raw["referee"],
    )

    research_raw = raw["research"]
    research = ResearchConfig(
        api_key_env=research_raw["api_key_env"],
        base_url=research_raw["base_url"],
        num_results=int(research_raw.get("num_results", 5)),
        snippet_chars=int(research_raw.get("snippet_chars", 1500)),
        max_query_chars=int(research_raw.get("max_query_chars", 200)),
        timeout_sec=float(research_raw.get("timeout_sec", 20.0)),
    )

    retry_raw = raw["retry"]
    budgets_raw = raw.get("step_budgets", {})
    step_budgets = StepBudgets(**{k: int(v) for k, v in budgets_raw.items()})

    inbox: InboxConfig | None = None
    if "inbox" in raw:
        inbox = InboxConfig(
            dir=Path(raw["inbox"]["dir"]),
            archive_dir=Path(raw["inbox"]["archive_dir"]),
        )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        if os.environ.get(model_raw["api_key_env"], "").strip():
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider has no API key in environment: %s (set %s in .env)",
                provider_name,
                model_raw["api_key_env"],
            )

    if not os.environ.get(research.api_key_env, "").strip():
        logger.info("No %s in environment; web research degrades to no results", research.api_key_env)

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        research=research,
        api_retry=_retry(retry_raw["api"]),
        search_retry=_retry(retry_raw["search"]),
        step_budgets=step_budgets,
        inbox=inbox,
        available_providers=available_providers,
    )


def resolve_api_key(env_var: str, override: str | None = None) -> str | None:
    """Per-request override wins over the process environment. Blank counts as absent."""
    if override and override.strip():
        return override.strip()
    return os.environ.get(env_var, "").strip() or None

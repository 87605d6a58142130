"""Pipeline error taxonomy and classification of arbitrary exceptions."""

from typing import Any

INVALID_REQUEST = "INVALID_REQUEST"
API_KEY_MISSING = "API_KEY_MISSING"
API_KEY_INVALID = "API_KEY_INVALID"
RATE_LIMITED = "RATE_LIMITED"
AGENT_FAILED = "AGENT_FAILED"
AGENT_OUTPUT_INVALID = "AGENT_OUTPUT_INVALID"
PLANNING_FAILED = "PLANNING_FAILED"
INSUFFICIENT_INPUT = "INSUFFICIENT_INPUT"
INVALID_TRANSITION = "INVALID_TRANSITION"

# Codes that point the user at configuration instead of a retry
CREDENTIAL_CODES = frozenset({API_KEY_MISSING, API_KEY_INVALID})


class PipelineError(Exception):
    """Base for every failure that escalates past a phase coordinator."""

    code = AGENT_FAILED
    retryable = True

    def __init__(self, message: str, details: str | None = None, *, retryable: bool | None = None) -> None:
        self.message = message
        self.details = details
        if retryable is not None:
            self.retryable = retryable
        super().__init__(message if not details else f"{message}: {details}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "retryable": self.retryable,
        }


class InvalidRequest(PipelineError):
    code = INVALID_REQUEST
    retryable = False


class MissingCredential(PipelineError):
    code = API_KEY_MISSING
    retryable = False

    def __init__(self, key_name: str) -> None:
        super().__init__(
            f"{key_name} API key is required",
            f"Configure your {key_name} API key in .env or pass it on the command line",
        )


class InvalidCredential(PipelineError):
    code = API_KEY_INVALID
    retryable = False


class AgentCallFailed(PipelineError):
    code = AGENT_FAILED


class RateLimited(AgentCallFailed):
    code = RATE_LIMITED


class AgentOutputInvalid(PipelineError):
    code = AGENT_OUTPUT_INVALID


class PlanningFailed(PipelineError):
    code = PLANNING_FAILED
    retryable = False


class InsufficientInput(PipelineError):
    code = INSUFFICIENT_INPUT
    retryable = False


class InvalidTransition(PipelineError):
    code = INVALID_TRANSITION
    retryable = False


def parse_error(exc: BaseException, context: str | None = None) -> PipelineError:
    """Map any exception onto the taxonomy. PipelineErrors pass through unchanged."""
    if isinstance(exc, PipelineError):
        return exc

    text = str(exc)
    lowered = text.lower()
    if "api key" in lowered or "authentication" in lowered or "unauthorized" in lowered:
        return InvalidCredential("Invalid API key", text)
    if "rate limit" in lowered or "quota" in lowered or "429" in lowered:
        return RateLimited("Rate limited", text)
    details = f"{context}: {text}" if context else (text or type(exc).__name__)
    return AgentCallFailed("Agent execution failed", details)

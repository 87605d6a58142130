"""Provider health check: ping the selected model API before starting a comparison."""

import asyncio
import logging

from tech_referee.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def check_provider(provider: AIProvider, timeout_sec: float = _TIMEOUT_SEC) -> tuple[bool, str]:
    """Returns (ok, error_message). error_message is "" when ok is True. Never raises."""
    try:
        await asyncio.wait_for(provider.complete(_PING_PROMPT), timeout=timeout_sec)
    except asyncio.TimeoutError:
        return False, f"no response within {timeout_sec:.0f}s"
    except Exception as exc:
        logger.debug("Health check for %s failed", provider.name(), exc_info=True)
        return False, str(exc) or type(exc).__name__
    return True, ""

"""Unit tests for tech_referee/healthcheck.py - no real API calls."""

import asyncio

from tech_referee.healthcheck import check_provider
from tech_referee.providers.base import ProviderError

from tests.conftest import MockProvider


async def test_healthy_provider_passes():
    provider = MockProvider("claude", steps=[["OK"]])

    assert await check_provider(provider) == (True, "")
    system, turns = provider.calls[0]
    assert "OK" in turns[0].text


async def test_failing_provider_reports_error():
    """A provider that raises returns ok=False with the error message."""
    provider = MockProvider("grok", steps=[ProviderError("grok", "403 Forbidden")])

    ok, err = await check_provider(provider)

    assert ok is False
    assert "403" in err


async def test_timeout_counts_as_failure():
    """A provider that hangs past the timeout is marked as failed."""

    class Hanging(MockProvider):
        async def stream_step(self, system, turns, tools):
            await asyncio.sleep(9999)
            yield "never"

    ok, err = await check_provider(Hanging("slow"), timeout_sec=0.05)

    assert ok is False
    assert "no response" in err

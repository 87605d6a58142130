"""Agent invoker: one model call with bounded web-research round-trips.

Two modes share the same tool loop:

- generate_object(): the final answer is parsed as JSON and validated against a
  pydantic model at the boundary.
- stream_text(): the answer is surfaced as a lazy, single-pass stream of text
  fragments; the first fragment reaches the caller as soon as the provider emits it.

A step is one model turn. When the model still wants tools after the last allowed
step, the invoker stops and returns whatever text exists.
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from tech_referee.errors import AgentCallFailed, AgentOutputInvalid, PipelineError, parse_error
from tech_referee.providers.base import AIProvider, ProviderError, StepEvent, ToolCall, Turn
from tech_referee.research import TOOL_NAME, ResearchTool, SearchResult, results_to_dicts
from tech_referee.retry import API_RETRY, RetryPolicy

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_TIMEOUT_SEC = 60.0


@dataclass
class AgentRun:
    """What one invocation produced so far."""

    parts: list[str] = field(default_factory=list)
    final_text: str = ""
    search_results: list[SearchResult] = field(default_factory=list)
    steps: int = 0
    budget_exhausted: bool = False

    @property
    def text(self) -> str:
        return "".join(self.parts)


class TextStream:
    """Lazy, single-pass async iterator over the fragments of one streamed answer.

    After exhaustion, text, search_results and budget_exhausted describe the
    whole invocation.
    """

    def __init__(self, source: AsyncIterator[str], run: AgentRun) -> None:
        self._source = source
        self._run = run
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._consumed:
            raise RuntimeError("TextStream can only be consumed once")
        self._consumed = True
        return self._source

    @property
    def text(self) -> str:
        return self._run.text

    @property
    def search_results(self) -> list[SearchResult]:
        return self._run.search_results

    @property
    def budget_exhausted(self) -> bool:
        return self._run.budget_exhausted

    async def collect(self) -> str:
        async for _ in self:
            pass
        return self.text


def extract_json(text: str) -> Any | None:
    """First JSON object in text, tolerating code fences and surrounding prose."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.strip("`")
        if stripped.lower().startswith("json"):
            stripped = stripped[4:]
    decoder = json.JSONDecoder()
    for index, char in enumerate(stripped):
        if char != "{":
            continue
        try:
            value, _ = decoder.raw_decode(stripped[index:])
        except json.JSONDecodeError:
            continue
        return value
    return None


class AgentInvoker:
    """Runs model calls for every phase with a shared provider and research tool."""

    def __init__(
        self,
        provider: AIProvider,
        research: ResearchTool | None = None,
        retry: RetryPolicy = API_RETRY,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        self._provider = provider
        self._research = research
        self._retry = retry
        self._timeout_sec = timeout_sec

    @property
    def provider(self) -> AIProvider:
        return self._provider

    async def generate_object(
        self,
        system: str,
        prompt: str,
        schema: type[ModelT],
        *,
        max_steps: int = 5,
    ) -> ModelT:
        """Structured mode.

        Raises:
            AgentCallFailed: Provider/network failure or timeout.
            AgentOutputInvalid: No JSON object, or one that fails schema validation.
        """
        run = AgentRun()
        full_prompt = (
            f"{prompt}\n\nRespond with a single JSON object that matches this JSON schema:\n"
            f"{json.dumps(schema.model_json_schema())}"
        )
        async for _ in self._run(system, full_prompt, max_steps, run):
            pass

        raw = run.final_text or run.text
        data = extract_json(raw)
        if not isinstance(data, dict):
            raise AgentOutputInvalid(
                "The agent did not produce a valid output",
                raw[:200] or "empty response",
            )
        try:
            return schema.model_validate(data)
        except ValidationError as exc:
            raise AgentOutputInvalid("Agent output did not match the expected shape", str(exc)) from exc

    def stream_text(self, system: str, prompt: str, *, max_steps: int = 10) -> TextStream:
        """Streaming mode. Nothing is sent to the provider until the stream is iterated."""
        run = AgentRun()
        return TextStream(self._run(system, prompt, max_steps, run), run)

    async def _run(self, system: str, prompt: str, max_steps: int, run: AgentRun) -> AsyncIterator[str]:
        turns = [Turn(role="user", text=prompt)]
        tools = [self._research.spec()] if self._research is not None else []
        deadline = time.monotonic() + self._timeout_sec

        for step in range(1, max_steps + 1):
            run.steps = step
            step_text: list[str] = []
            calls: list[ToolCall] = []
            async for event in self._step(system, turns, tools, deadline):
                if isinstance(event, ToolCall):
                    calls.append(event)
                else:
                    step_text.append(event)
                    run.parts.append(event)
                    yield event
            run.final_text = "".join(step_text)

            if not calls:
                return
            if step == max_steps:
                run.budget_exhausted = True
                logger.warning(
                    "%s step budget of %d exhausted with %d pending tool calls; returning partial output",
                    self._provider.name(), max_steps, len(calls),
                )
                return

            turns.append(Turn(role="assistant", text=run.final_text, tool_calls=calls))
            for call in calls:
                result = await self._execute_tool(call, run)
                turns.append(Turn(role="tool", tool_call=call, result=result))

    async def _step(
        self,
        system: str,
        turns: list[Turn],
        tools: list,
        deadline: float,
    ) -> AsyncIterator[StepEvent]:
        """One model turn. Transient failures are retried only before the first event."""
        attempt = 0
        while True:
            emitted = False
            events = self._provider.stream_step(system, turns, tools)
            try:
                while True:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutError
                    try:
                        event = await asyncio.wait_for(events.__anext__(), timeout=remaining)
                    except StopAsyncIteration:
                        return
                    emitted = True
                    yield event
            except TimeoutError as exc:
                raise AgentCallFailed(
                    f"{self._provider.name()} request timed out",
                    f"no complete answer within {self._timeout_sec:.0f}s",
                ) from exc
            except ProviderError as exc:
                if emitted or not self._retry.should_retry(exc, attempt):
                    raise parse_error(exc, self._provider.name()) from exc
                delay = self._retry.delay_for(attempt)
                attempt += 1
                logger.warning(
                    "Provider %s transient failure, retry %d/%d in %.2fs: %s",
                    self._provider.name(), attempt, self._retry.max_retries, delay, exc,
                )
                await asyncio.sleep(delay)
            finally:
                await events.aclose()

    async def _execute_tool(self, call: ToolCall, run: AgentRun) -> str:
        if call.name != TOOL_NAME or self._research is None:
            logger.warning("Model requested unknown tool %r", call.name)
            return json.dumps({"error": f"Unknown tool: {call.name}"})
        results = await self._research.search(str(call.arguments.get("query", "")))
        run.search_results.extend(results)
        return json.dumps({"results": results_to_dicts(results)})


def describe_failure(exc: Exception) -> str:
    """Short human-readable reason for placeholder results and transcripts."""
    if isinstance(exc, PipelineError):
        return f"{exc.message} ({exc.details})" if exc.details else exc.message
    return str(exc) or type(exc).__name__

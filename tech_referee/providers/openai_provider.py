"""OpenAI provider using openai SDK; also serves OpenAI-compatible APIs via base_url."""

import json
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from tech_referee.providers.base import AIProvider, ProviderError, StepEvent, ToolCall, Turn
from tech_referee.research import ToolSpec

logger = logging.getLogger(__name__)


def _to_messages(system: str, turns: list[Turn]) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    for turn in turns:
        if turn.role == "user":
            messages.append({"role": "user", "content": turn.text})
        elif turn.role == "assistant":
            message: dict[str, Any] = {"role": "assistant", "content": turn.text or None}
            if turn.tool_calls:
                message["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in turn.tool_calls
                ]
            messages.append(message)
        elif turn.role == "tool" and turn.tool_call is not None:
            messages.append({"role": "tool", "tool_call_id": turn.tool_call.id, "content": turn.result})
    return messages


def _parse_arguments(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Unparseable tool arguments: %r", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIProvider(AIProvider):
    """OpenAI (or compatible, e.g. xAI) provider via openai SDK."""

    def __init__(self, config: ModelConfig, api_key: str | None) -> None:
        self._config = config
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url, timeout=config.timeout_sec)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def stream_step(
        self,
        system: str,
        turns: list[Turn],
        tools: list[ToolSpec],
    ) -> AsyncIterator[StepEvent]:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": _to_messages(system, turns),
            "max_tokens": self._config.max_tokens,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
                }
                for t in tools
            ]

        start = time.monotonic()
        pending: dict[int, dict[str, str]] = {}
        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content
                for tc in delta.tool_calls or []:
                    slot = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        slot["id"] = tc.id
                    if tc.function and tc.function.name:
                        slot["name"] += tc.function.name
                    if tc.function and tc.function.arguments:
                        slot["arguments"] += tc.function.arguments
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        for index in sorted(pending):
            slot = pending[index]
            yield ToolCall(
                id=slot["id"] or f"call_{index}",
                name=slot["name"],
                arguments=_parse_arguments(slot["arguments"]),
            )

        logger.info("OpenAI step: %.2fs, %d tool calls", time.monotonic() - start, len(pending))

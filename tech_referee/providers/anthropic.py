"""Anthropic Claude provider using anthropic SDK with native async streaming."""

import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from tech_referee.providers.base import AIProvider, ProviderError, StepEvent, ToolCall, Turn
from tech_referee.research import ToolSpec

logger = logging.getLogger(__name__)


def _to_messages(turns: list[Turn]) -> list[dict[str, Any]]:
    """Convert neutral turns to Messages API format; tool results ride in user turns."""
    messages: list[dict[str, Any]] = []
    for turn in turns:
        if turn.role == "user":
            messages.append({"role": "user", "content": turn.text})
        elif turn.role == "assistant":
            content: list[dict[str, Any]] = []
            if turn.text:
                content.append({"type": "text", "text": turn.text})
            for call in turn.tool_calls:
                content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
            messages.append({"role": "assistant", "content": content})
        elif turn.role == "tool" and turn.tool_call is not None:
            block = {"type": "tool_result", "tool_use_id": turn.tool_call.id, "content": turn.result}
            last = messages[-1] if messages else None
            if last and last["role"] == "user" and isinstance(last["content"], list):
                last["content"].append(block)
            else:
                messages.append({"role": "user", "content": [block]})
    return messages


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig, api_key: str | None) -> None:
        self._config = config
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key, timeout=config.timeout_sec)

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
            "max_tokens": self._config.max_tokens,
            "messages": _to_messages(turns),
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]

        start = time.monotonic()
        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
                final = await stream.get_final_message()
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        for block in final.content:
            if block.type == "tool_use":
                yield ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))

        token_count: int | None = None
        if final.usage:
            token_count = final.usage.input_tokens + final.usage.output_tokens

        logger.info(
            "Anthropic step: %.2fs, %s tokens, stop=%s",
            time.monotonic() - start,
            token_count,
            final.stop_reason,
        )

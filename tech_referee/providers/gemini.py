"""Gemini provider using google-genai SDK with native async streaming."""

import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from tech_referee.providers.base import AIProvider, ProviderError, StepEvent, ToolCall, Turn
from tech_referee.research import ToolSpec

logger = logging.getLogger(__name__)


def _to_schema(schema: dict[str, Any]) -> genai_types.Schema:
    """JSON-schema dict -> Gemini Schema (upper-case type names)."""
    properties = {name: _to_schema(sub) for name, sub in schema.get("properties", {}).items()}
    return genai_types.Schema(
        type=schema.get("type", "string").upper(),
        description=schema.get("description"),
        properties=properties or None,
        required=schema.get("required") or None,
        items=_to_schema(schema["items"]) if "items" in schema else None,
    )


def _to_contents(turns: list[Turn]) -> list[genai_types.Content]:
    contents: list[genai_types.Content] = []
    for turn in turns:
        if turn.role == "user":
            contents.append(genai_types.Content(role="user", parts=[genai_types.Part.from_text(text=turn.text)]))
        elif turn.role == "assistant":
            parts: list[genai_types.Part] = []
            if turn.text:
                parts.append(genai_types.Part.from_text(text=turn.text))
            for call in turn.tool_calls:
                # The raw part carries the thought signature newer models require
                if isinstance(call.raw, genai_types.Part):
                    parts.append(call.raw)
                else:
                    parts.append(genai_types.Part(
                        function_call=genai_types.FunctionCall(id=call.id, name=call.name, args=call.arguments),
                    ))
            contents.append(genai_types.Content(role="model", parts=parts))
        elif turn.role == "tool" and turn.tool_call is not None:
            part = genai_types.Part.from_function_response(
                name=turn.tool_call.name,
                response={"result": turn.result},
            )
            last = contents[-1] if contents else None
            if last is not None and last.role == "user" and last.parts and last.parts[0].function_response:
                last.parts.append(part)
            else:
                contents.append(genai_types.Content(role="user", parts=[part]))
    return contents


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig, api_key: str | None) -> None:
        self._config = config
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

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
        config = genai_types.GenerateContentConfig(
            max_output_tokens=self._config.max_tokens,
            system_instruction=system or None,
        )
        if tools:
            config.tools = [
                genai_types.Tool(function_declarations=[
                    genai_types.FunctionDeclaration(
                        name=t.name,
                        description=t.description,
                        parameters=_to_schema(t.parameters),
                    )
                    for t in tools
                ])
            ]
            config.automatic_function_calling = genai_types.AutomaticFunctionCallingConfig(disable=True)

        start = time.monotonic()
        calls: list[ToolCall] = []
        token_count: int | None = None
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=self._config.model,
                contents=_to_contents(turns),
                config=config,
            )
            async for chunk in stream:
                if chunk.usage_metadata:
                    token_count = chunk.usage_metadata.total_token_count
                if not chunk.candidates or not chunk.candidates[0].content:
                    continue
                for part in chunk.candidates[0].content.parts or []:
                    if part.function_call:
                        fc = part.function_call
                        calls.append(ToolCall(
                            id=fc.id or f"{fc.name}-{len(calls)}",
                            name=fc.name or "",
                            arguments=dict(fc.args or {}),
                            raw=part,
                        ))
                    elif part.text and not part.thought:
                        yield part.text
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        for call in calls:
            yield call

        logger.info("Gemini step: %.2fs, %s tokens, %d tool calls", time.monotonic() - start, token_count, len(calls))

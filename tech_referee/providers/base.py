"""Abstract base for all AI model providers."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from tech_referee.research import ToolSpec


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]
    raw: Any = None        # provider-native call object, echoed back verbatim on the next turn


@dataclass
class Turn:
    """One provider-neutral conversation turn.

    role is "user" (text), "assistant" (text plus the tool calls it made) or
    "tool" (the JSON result for one tool call).
    """

    role: str
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call: ToolCall | None = None
    result: str = ""


StepEvent = str | ToolCall


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    def stream_step(
        self,
        system: str,
        turns: list[Turn],
        tools: list[ToolSpec],
    ) -> AsyncIterator[StepEvent]:
        """Run one model turn, yielding text fragments as they arrive.

        Tool calls requested by the model are yielded as ToolCall objects once
        known. The caller executes them and starts the next turn.

        Raises:
            ProviderError: On API failure or invalid response.
        """
        ...

    async def complete(self, prompt: str, system: str = "") -> str:
        """Single tool-less turn, returned as one string."""
        parts: list[str] = []
        async for event in self.stream_step(system, [Turn(role="user", text=prompt)], []):
            if isinstance(event, str):
                parts.append(event)
        return "".join(parts)

"""Tool call round: repeat completions until the model stops requesting tools.

The loop is iterative. Each pass projects the history, streams one
completion through a fresh :class:`StreamAccumulator`, and either returns
(no tool calls) or executes the requested tools in index order and appends
their results before the next pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping, Protocol, Sequence, runtime_checkable

from ..client import AIStreamEvent
from .message_builder import coerce_message, project_history
from .stream_accumulator import RagContextCallback, StreamAccumulator, TextCallback
from .tool_executor import ToolExecutor, run_tool_call
from .types import Message, RagContext, StreamResult

__all__ = [
    "ModelClient",
    "RoundConfig",
    "ToolCallRound",
    "ToolRoundLimitError",
    "DEFAULT_MAX_ITERATIONS",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 8


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can stream normalized completion events."""

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        **kwargs: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        ...


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


class ToolRoundLimitError(RuntimeError):
    """Raised when the model keeps requesting tools past the iteration cap."""

    def __init__(self, max_iterations: int, history: Sequence[Message]) -> None:
        super().__init__(f"Tool call round exceeded {max_iterations} completion(s)")
        self.max_iterations = max_iterations
        self.history = list(history)


@dataclass(slots=True, frozen=True)
class RoundConfig:
    """Configuration for a tool call round.

    Attributes:
        max_iterations: Maximum completion calls in one round.
        system_prompt: Canonical system prompt replacing history system turns.
        temperature: Sampling temperature forwarded to the completion call.
        request_options: Extra keyword arguments for ``stream_chat``.
    """

    max_iterations: int = DEFAULT_MAX_ITERATIONS
    system_prompt: str | None = None
    temperature: float | None = None
    request_options: Mapping[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Round
# -----------------------------------------------------------------------------


class ToolCallRound:
    """Drives completion passes and tool executions for one user turn."""

    def __init__(
        self,
        client: ModelClient,
        executor: ToolExecutor,
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        config: RoundConfig | None = None,
    ) -> None:
        self._client = client
        self._executor = executor
        self._tools = tuple(tools) if tools else ()
        self._config = config or RoundConfig()
        self._completion_calls = 0
        self._last_result: StreamResult | None = None
        self._rag_context: RagContext | None = None

    @property
    def config(self) -> RoundConfig:
        return self._config

    @property
    def completion_calls(self) -> int:
        """Completion calls issued by the most recent :meth:`run`."""
        return self._completion_calls

    @property
    def last_result(self) -> StreamResult | None:
        return self._last_result

    @property
    def rag_context(self) -> RagContext | None:
        """Retrieval context reported by the proxy during the last run."""
        return self._rag_context

    async def run(
        self,
        history: Sequence[Message | Mapping[str, Any]],
        *,
        on_text: TextCallback | None = None,
        on_rag_context: RagContextCallback | None = None,
    ) -> list[Message]:
        """Run the round and return the extended history.

        The input sequence is not mutated. Raises :class:`ToolRoundLimitError`
        when ``max_iterations`` completions all ended with tool calls.
        """

        messages = [coerce_message(entry) for entry in history]
        max_iterations = max(1, self._config.max_iterations)
        self._completion_calls = 0
        self._last_result = None
        self._rag_context = None

        while self._completion_calls < max_iterations:
            self._completion_calls += 1
            LOGGER.debug("Tool round iteration %d", self._completion_calls)

            result = await self._stream_once(messages, on_text=on_text, on_rag_context=on_rag_context)
            self._last_result = result
            if result.rag_context is not None:
                self._rag_context = result.rag_context

            if not result.has_tool_calls:
                messages.append(Message.assistant(result.text))
                return messages

            messages.append(Message.assistant(result.text, result.tool_calls))
            for call in result.tool_calls:
                LOGGER.info("Executing tool %s (%s)", call.name, call.id)
                outcome = await run_tool_call(call, self._executor)
                messages.append(Message.tool(outcome.result, call.id))

        LOGGER.warning("Tool round reached max iterations (%d)", max_iterations)
        raise ToolRoundLimitError(max_iterations, messages)

    async def _stream_once(
        self,
        messages: Sequence[Message],
        *,
        on_text: TextCallback | None,
        on_rag_context: RagContextCallback | None,
    ) -> StreamResult:
        payload = project_history(messages, system_prompt=self._config.system_prompt)
        kwargs: dict[str, Any] = dict(self._config.request_options)
        if self._tools:
            kwargs["tools"] = list(self._tools)
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        events = self._client.stream_chat(payload, **kwargs)
        accumulator = StreamAccumulator()
        return await accumulator.consume(events, on_text=on_text, on_rag_context=on_rag_context)

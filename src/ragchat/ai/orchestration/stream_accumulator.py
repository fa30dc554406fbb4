"""Reassembly of streamed completion deltas into text and tool calls."""

from __future__ import annotations

import contextlib
import enum
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from ..client import CONTENT_DELTA, FINISH_REASON, RAG_CONTEXT, STREAM_ERROR, TOOL_CALL_DELTA, AIStreamEvent
from .types import FINISH_STOP, FINISH_TOOL_CALLS, RagContext, StreamResult, ToolCallInvocation

__all__ = [
    "AccumulatorState",
    "StreamAccumulator",
    "StreamError",
]

LOGGER = logging.getLogger(__name__)

TextCallback = Callable[[str], Any]
RagContextCallback = Callable[[RagContext], Any]


class AccumulatorState(enum.Enum):
    STREAMING = "streaming"
    FINISHED = "finished"


class StreamError(RuntimeError):
    """Raised when the upstream reports an in-band error mid-stream."""

    def __init__(self, payload: dict[str, Any]) -> None:
        self.payload = payload
        super().__init__(str(payload.get("message") or "Stream error"))


@dataclass(slots=True)
class _PendingToolCall:
    index: int
    id: str = ""
    name: str = ""
    arguments_parts: list[str] = field(default_factory=list)

    def finalize(self) -> ToolCallInvocation:
        call_id = self.id or f"call_{self.index}_{uuid.uuid4().hex[:8]}"
        return ToolCallInvocation(
            id=call_id,
            name=self.name,
            arguments="".join(self.arguments_parts),
            index=self.index,
        )


class StreamAccumulator:
    """Single-pass state machine over one completion stream.

    Text deltas are appended in delivery order, tool call fragments are
    keyed by their stream ``index`` and the finish reason is recorded without
    stopping iteration. Invocations are only considered complete once the
    event source is exhausted.
    """

    def __init__(self) -> None:
        self._state = AccumulatorState.STREAMING
        self._text = ""
        self._pending: dict[int, _PendingToolCall] = {}
        self._finish_reason: str | None = None
        self._rag_context: RagContext | None = None

    @property
    def state(self) -> AccumulatorState:
        return self._state

    @property
    def text(self) -> str:
        return self._text

    @property
    def rag_context(self) -> RagContext | None:
        return self._rag_context

    def feed(self, event: AIStreamEvent) -> str:
        """Apply ``event`` and return the updated text buffer."""

        if self._state is AccumulatorState.FINISHED:
            raise RuntimeError("Cannot feed events to a finished accumulator")

        event_type = event.type
        if event_type == CONTENT_DELTA:
            if event.content:
                self._text += event.content
        elif event_type == TOOL_CALL_DELTA:
            self._apply_tool_delta(event)
        elif event_type == FINISH_REASON:
            if event.finish_reason:
                self._finish_reason = event.finish_reason
        elif event_type == RAG_CONTEXT:
            self._rag_context = RagContext.from_event(event.payload or {})
        elif event_type == STREAM_ERROR:
            raise StreamError(dict(event.payload or {}))
        else:
            LOGGER.debug("Ignoring unknown stream event type %s", event_type)
        return self._text

    def finish(self) -> StreamResult:
        """Finalize pending invocations and move to ``FINISHED``."""

        if self._state is AccumulatorState.FINISHED:
            raise RuntimeError("Accumulator already finished")
        self._state = AccumulatorState.FINISHED

        tool_calls = tuple(self._pending[index].finalize() for index in sorted(self._pending))
        finish_reason = self._finish_reason
        if not finish_reason:
            finish_reason = FINISH_TOOL_CALLS if tool_calls else FINISH_STOP
        return StreamResult(
            text=self._text,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            rag_context=self._rag_context,
        )

    async def consume(
        self,
        events: AsyncIterator[AIStreamEvent],
        *,
        on_text: TextCallback | None = None,
        on_rag_context: RagContextCallback | None = None,
    ) -> StreamResult:
        """Drive ``events`` to exhaustion and return the finalized result.

        The source is closed on every exit path. If it raises, partial state is
        discarded and the error propagates unchanged.
        """

        try:
            async with contextlib.aclosing(events) as source:
                async for event in source:
                    text = self.feed(event)
                    if event.type == CONTENT_DELTA and event.content and on_text is not None:
                        await _maybe_await(on_text(text))
                    elif event.type == RAG_CONTEXT and on_rag_context is not None and self._rag_context:
                        await _maybe_await(on_rag_context(self._rag_context))
        except BaseException:
            self._discard()
            raise
        return self.finish()

    def _apply_tool_delta(self, event: AIStreamEvent) -> None:
        index = event.tool_index if event.tool_index is not None else 0
        pending = self._pending.get(index)
        if pending is None:
            pending = _PendingToolCall(index=index)
            self._pending[index] = pending
        if event.tool_call_id:
            pending.id = event.tool_call_id
        if event.tool_name:
            if pending.name and pending.name != event.tool_name:
                LOGGER.debug(
                    "Tool call %s renamed from %s to %s mid-stream",
                    index,
                    pending.name,
                    event.tool_name,
                )
            pending.name = event.tool_name
        if event.arguments_delta:
            pending.arguments_parts.append(event.arguments_delta)

    def _discard(self) -> None:
        self._text = ""
        self._pending.clear()
        self._finish_reason = None
        self._state = AccumulatorState.FINISHED


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result

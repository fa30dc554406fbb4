"""Core type definitions for the chat turn pipeline.

Messages and tool call invocations are immutable once built; the only
mutable tool call state lives inside :class:`StreamAccumulator` while a
stream is being reassembled.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    "MessageRole",
    "Message",
    "ToolCallInvocation",
    "RagContext",
    "StreamResult",
    "FINISH_STOP",
    "FINISH_TOOL_CALLS",
]

MessageRole = Literal["system", "user", "assistant", "tool"]

FINISH_STOP = "stop"
FINISH_TOOL_CALLS = "tool_calls"


# -----------------------------------------------------------------------------
# Tool Calls
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCallInvocation:
    """A fully assembled function call request emitted by the model.

    Attributes:
        id: Opaque identifier, generated upstream or synthesized locally.
        name: Function name.
        arguments: Raw JSON argument string as accumulated from the stream.
        index: Streaming correlation key; not part of the wire format.
    """

    id: str
    name: str
    arguments: str = ""
    index: int = 0

    def to_wire(self) -> dict[str, Any]:
        """Return the OpenAI ``tool_calls`` entry for this invocation."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any], index: int = 0) -> ToolCallInvocation:
        """Create an invocation from an OpenAI ``tool_calls`` entry."""
        function = payload.get("function") or {}
        return cls(
            id=str(payload.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=str(function.get("arguments") or ""),
            index=int(payload.get("index", index) or 0),
        )


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message owned by one conversation.

    Attributes:
        role: The role of the message sender.
        content: Text content; ``None`` only for assistant tool call turns.
        tool_calls: Tool calls requested by the assistant.
        tool_call_id: ID linking a tool result to its invocation.
    """

    role: MessageRole
    content: str | None
    tool_calls: tuple[ToolCallInvocation, ...] | None = None
    tool_call_id: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            payload["tool_calls"] = [call.to_wire() for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> Message:
        """Create a Message from OpenAI's ChatCompletionMessageParam format."""
        raw_calls = param.get("tool_calls") or ()
        tool_calls = tuple(
            ToolCallInvocation.from_wire(call, index) for index, call in enumerate(raw_calls)
        )
        content = param.get("content")
        if content is not None and not isinstance(content, str):
            content = _join_text_parts(content)
        return cls(
            role=param.get("role", "user"),  # type: ignore[arg-type]
            content=content,
            tool_calls=tool_calls or None,
            tool_call_id=param.get("tool_call_id"),
        )

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        """Create a user message."""
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls,
        content: str | None,
        tool_calls: Sequence[ToolCallInvocation] | None = None,
    ) -> Message:
        """Create an assistant message."""
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> Message:
        """Create a tool result message."""
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


def _join_text_parts(content: Any) -> str:
    parts: list[str] = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, Mapping) and isinstance(part.get("text"), str):
            parts.append(part["text"])
    return " ".join(part for part in parts if part)


# -----------------------------------------------------------------------------
# Retrieval Context
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class RagContext:
    """Retrieved passage bundle attached to one user turn."""

    context: str = ""
    context_length: int = 0
    enabled: bool = True

    @classmethod
    def from_text(cls, context: str, *, enabled: bool = True) -> RagContext:
        return cls(context=context, context_length=len(context), enabled=enabled)

    @classmethod
    def from_event(cls, payload: Mapping[str, Any]) -> RagContext:
        context = str(payload.get("context") or "")
        length = payload.get("contextLength")
        return cls(
            context=context,
            context_length=int(length) if isinstance(length, int) else len(context),
            enabled=bool(payload.get("enabled", True)),
        )

    @property
    def is_empty(self) -> bool:
        return not self.context.strip()

    def to_metadata(self) -> dict[str, Any]:
        return {
            "context": self.context,
            "contextLength": self.context_length,
            "enabled": self.enabled,
        }

    def to_event(self) -> dict[str, Any]:
        """Render the out-of-band ``rag_context`` stream event."""
        return {"type": "rag_context", **self.to_metadata()}


# -----------------------------------------------------------------------------
# Stream Result
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class StreamResult:
    """Terminal state of one completion stream."""

    text: str
    tool_calls: tuple[ToolCallInvocation, ...] = ()
    finish_reason: str = FINISH_STOP
    rag_context: RagContext | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def to_message(self) -> Message:
        """Return the assistant message recording this stream in history."""
        return Message.assistant(self.text, self.tool_calls or None)

"""Projection of conversation history into the completion wire format."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .types import Message

__all__ = ["project_history", "project_message", "coerce_message"]

LOGGER = logging.getLogger(__name__)


def coerce_message(entry: Message | Mapping[str, Any]) -> Message:
    """Return ``entry`` as a :class:`Message`, converting wire mappings."""
    if isinstance(entry, Message):
        return entry
    return Message.from_chat_param(entry)


def project_message(message: Message) -> dict[str, Any]:
    """Serialize one history entry with role-specific defaults.

    Assistant turns carrying tool calls are emitted with ``content=None`` and
    the invocation list stripped of its streaming index; every other role has
    its content defaulted to an empty string.
    """
    role = message.role
    if role == "assistant":
        if message.tool_calls:
            return {
                "role": "assistant",
                "content": None,
                "tool_calls": [call.to_wire() for call in message.tool_calls],
            }
        return {"role": "assistant", "content": message.content or ""}
    if role == "tool":
        return {
            "role": "tool",
            "content": message.content or "",
            "tool_call_id": message.tool_call_id or "",
        }
    if role == "system":
        return {"role": "system", "content": message.content or ""}
    return {"role": "user", "content": message.content or ""}


def project_history(
    history: Iterable[Message | Mapping[str, Any]],
    *,
    system_prompt: str | None = None,
) -> list[dict[str, Any]]:
    """Build the outgoing ``messages`` list for a completion request.

    Args:
        history: Conversation turns, either :class:`Message` objects or wire
            mappings.
        system_prompt: When provided, every system entry in ``history`` is
            dropped and this prompt is prepended once.

    Returns:
        Wire messages in exactly the input order.
    """
    projected: list[dict[str, Any]] = []
    if system_prompt is not None:
        projected.append({"role": "system", "content": system_prompt})

    skipped = 0
    for entry in history:
        message = coerce_message(entry)
        if system_prompt is not None and message.role == "system":
            skipped += 1
            continue
        projected.append(project_message(message))

    if skipped:
        LOGGER.debug("Replaced %s system message(s) with the canonical prompt", skipped)
    return projected

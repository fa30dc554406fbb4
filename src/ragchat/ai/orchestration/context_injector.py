"""Insertion of retrieved passages into a conversation as a system turn."""

from __future__ import annotations

from typing import Any, Mapping, Sequence, TypeVar

from .types import Message

__all__ = ["CONTEXT_LABEL", "build_context_message", "inject_context"]

CONTEXT_LABEL = "[Retrieved Context from Knowledge Base]:\n"

_Entry = TypeVar("_Entry", Message, Mapping[str, Any])


def build_context_message(context: str) -> str:
    return f"{CONTEXT_LABEL}{context}"


def _role_of(entry: Message | Mapping[str, Any]) -> str | None:
    if isinstance(entry, Message):
        return entry.role
    return entry.get("role")


def inject_context(messages: Sequence[_Entry], context: str | None) -> list[_Entry]:
    """Return a copy of ``messages`` with ``context`` layered in as a system turn.

    The context message lands directly after the first system message so an
    existing persona prompt keeps precedence; without one it is prepended.
    Blank context returns an unchanged copy.
    """

    result = list(messages)
    if not context or not context.strip():
        return result

    content = build_context_message(context)
    use_objects = bool(result) and all(isinstance(entry, Message) for entry in result)
    injected: Any = Message.system(content) if use_objects else {"role": "system", "content": content}

    for position, entry in enumerate(result):
        if _role_of(entry) == "system":
            result.insert(position + 1, injected)
            return result
    result.insert(0, injected)
    return result

"""Optional retrieval step that runs before a chat turn is forwarded."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Iterable, Mapping, Protocol, Sequence, TypeVar, runtime_checkable

from .context_injector import inject_context
from .types import Message, RagContext

__all__ = [
    "DEFAULT_RETRIEVAL_LIMIT",
    "PASSAGE_SEPARATOR",
    "Passage",
    "Retriever",
    "format_passages",
    "latest_user_text",
    "maybe_retrieve",
    "normalize_message_content",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_RETRIEVAL_LIMIT = 5
PASSAGE_SEPARATOR = "\n\n---\n\n"

_Entry = TypeVar("_Entry", Message, Mapping[str, Any])


class Passage(Protocol):
    text: str
    source: str
    chunk_index: int | None


@runtime_checkable
class Retriever(Protocol):
    """Ranked passage lookup; may be sync or async."""

    def retrieve(self, query: str, limit: int) -> Sequence[Passage] | Awaitable[Sequence[Passage]]:
        ...


def normalize_message_content(content: Any) -> str:
    """Reduce message content to plain text, keeping only text parts."""

    if isinstance(content, str):
        return content
    if not content:
        return ""
    parts: list[str] = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, Mapping) and isinstance(part.get("text"), str):
            parts.append(part["text"])
    return " ".join(part for part in parts if part)


def latest_user_text(history: Iterable[Message | Mapping[str, Any]]) -> str:
    """Return the most recent user message whose text is not blank."""

    for entry in reversed(list(history)):
        if isinstance(entry, Message):
            role, content = entry.role, entry.content
        else:
            role, content = entry.get("role"), entry.get("content")
        if role != "user":
            continue
        text = normalize_message_content(content)
        if text.strip():
            return text
    return ""


def format_passages(passages: Iterable[Passage]) -> str:
    formatted = []
    for passage in passages:
        source = getattr(passage, "source", None) or "Unknown"
        chunk = getattr(passage, "chunk_index", None)
        label = "?" if chunk is None else chunk
        formatted.append(f"[Document: {source} | Chunk {label}]\n{passage.text}")
    return PASSAGE_SEPARATOR.join(formatted)


async def maybe_retrieve(
    history: Sequence[_Entry],
    enabled: bool,
    *,
    retriever: Retriever | None,
    limit: int = DEFAULT_RETRIEVAL_LIMIT,
) -> tuple[list[_Entry], RagContext | None]:
    """Augment ``history`` with retrieved passages when ``enabled``.

    Retrieval errors are logged and treated as an empty result, so this never
    fails the turn. Returns the (possibly augmented) history together with
    the retrieval marker, or ``None`` when retrieval was disabled.
    """

    LOGGER.debug("[RAG] Retrieval enabled: %s", enabled)
    if not enabled:
        return list(history), None

    empty = RagContext.from_text("", enabled=True)
    query = latest_user_text(history)
    if not query or retriever is None:
        return list(history), empty

    LOGGER.info("[RAG] Retrieving context for user message: %r", query[:100])
    try:
        passages = retriever.retrieve(query, limit)
        if inspect.isawaitable(passages):
            passages = await passages
        context = format_passages(passages)
    except Exception:
        LOGGER.exception("[RAG] Error retrieving context")
        return list(history), empty

    if not context.strip():
        LOGGER.info("[RAG] No relevant context found")
        return list(history), empty

    augmented = inject_context(history, context)
    LOGGER.info(
        "[RAG] Retrieved context length %d; messages %d -> %d",
        len(context),
        len(history),
        len(augmented),
    )
    return augmented, RagContext.from_text(context, enabled=True)

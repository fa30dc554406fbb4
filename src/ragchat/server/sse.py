"""Server-sent event framing for completion streams.

Every event is one ``data: <json>`` line followed by a blank line and the
stream always ends with ``data: [DONE]``. Synthesized chunks use the same
``chat.completion.chunk`` schema as pass-through ones so one parser serves
both.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, AsyncIterator, Mapping

from ..ai.client import StreamingCompletion
from ..ai.orchestration.types import RagContext
from .errors import stream_error_payload

__all__ = [
    "DONE_EVENT",
    "SSE_HEADERS",
    "build_chunk",
    "format_event",
    "new_completion_id",
    "relay_stream",
]

LOGGER = logging.getLogger(__name__)

DONE_EVENT = "data: [DONE]\n\n"
SSE_HEADERS: Mapping[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(payload: Mapping[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:24]}"


def build_chunk(
    *,
    model: str,
    delta: Mapping[str, Any],
    finish_reason: str | None = None,
    completion_id: str | None = None,
    created: int | None = None,
) -> dict[str, Any]:
    """Build a ``chat.completion.chunk`` with a single choice."""

    return {
        "id": completion_id or new_completion_id(),
        "object": "chat.completion.chunk",
        "created": int(time.time()) if created is None else created,
        "model": model,
        "choices": [{"index": 0, "delta": dict(delta), "finish_reason": finish_reason}],
    }


async def relay_stream(
    completion: StreamingCompletion,
    *,
    rag_context: RagContext | None = None,
) -> AsyncIterator[str]:
    """Yield SSE frames for ``completion``.

    An optional ``rag_context`` event goes first. Upstream failures after this
    point cannot change the HTTP status, so they become one in-band error
    event. The upstream stream is closed on every exit path, including client
    disconnects.
    """

    chunks = 0
    try:
        if rag_context is not None:
            yield format_event(rag_context.to_event())
        async for chunk in completion:
            chunks += 1
            yield format_event(chunk)
    except Exception as exc:
        LOGGER.exception("Streaming failed after %d chunk(s)", chunks)
        yield format_event(stream_error_payload(exc))
    finally:
        await completion.aclose()
    LOGGER.debug("Relayed %d chunk(s)", chunks)
    yield DONE_EVENT

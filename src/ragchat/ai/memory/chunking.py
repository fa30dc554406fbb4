"""Fixed-window text chunking for the retrieval index."""

from __future__ import annotations

import math

__all__ = ["DEFAULT_MAX_LENGTH", "DEFAULT_OVERLAP", "create_chunks"]

DEFAULT_MAX_LENGTH = 2200
DEFAULT_OVERLAP = 200


def create_chunks(
    text: str,
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
    overlap: int = DEFAULT_OVERLAP,
) -> list[str]:
    """Split ``text`` into overlapping windows.

    Windows start every ``max_length - overlap`` characters and span at most
    ``max_length`` characters. Each window is stripped and empty windows are
    dropped.

    Raises:
        ValueError: If ``overlap`` is not smaller than ``max_length``.
    """

    step = max_length - overlap
    if step <= 0:
        raise ValueError("max_length must be greater than overlap")

    chunks: list[str] = []
    for step_index in range(math.ceil(len(text) / step)):
        start = step_index * step
        window = text[start : min(start + max_length, len(text))].strip()
        if window:
            chunks.append(window)
    return chunks

"""Shared test helpers and stub classes.

Reusable fakes for the OpenAI SDK surface and for model clients that speak
normalized stream events. Import from here instead of duplicating them in
individual test files.
"""

from __future__ import annotations

import copy
from types import SimpleNamespace
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence, cast

from openai import AsyncOpenAI

from ragchat.ai.client import AIClient, AIStreamEvent, ClientSettings, events_from_chunk
from ragchat.ai.memory.embeddings import ChunkRecord, DocumentIndex, EmbeddingStore
from ragchat.services.importers import PDFImportHandler


# -----------------------------------------------------------------------------
# Chunk builders
# -----------------------------------------------------------------------------


def content_chunk(text: str | None, *, finish_reason: str | None = None) -> dict[str, Any]:
    delta: dict[str, Any] = {}
    if text is not None:
        delta["content"] = text
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "created": 1,
        "model": "gpt-test",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def tool_chunk(
    index: int,
    *,
    call_id: str | None = None,
    name: str | None = None,
    arguments: str | None = None,
    finish_reason: str | None = None,
) -> dict[str, Any]:
    function: dict[str, Any] = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    tool_delta: dict[str, Any] = {"index": index, "function": function}
    if call_id is not None:
        tool_delta["id"] = call_id
        tool_delta["type"] = "function"
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion.chunk",
        "created": 1,
        "model": "gpt-test",
        "choices": [{"index": 0, "delta": {"tool_calls": [tool_delta]}, "finish_reason": finish_reason}],
    }


def finish_chunk(reason: str) -> dict[str, Any]:
    return content_chunk(None, finish_reason=reason)


def events_for(chunks: Iterable[Mapping[str, Any]]) -> list[AIStreamEvent]:
    events: list[AIStreamEvent] = []
    for chunk in chunks:
        events.extend(events_from_chunk(chunk))
    return events


def completion_response(content: str | None, *, tool_calls: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "id": "chatcmpl-full",
        "object": "chat.completion",
        "created": 1,
        "model": "gpt-test",
        "choices": [{"index": 0, "message": message, "finish_reason": "tool_calls" if tool_calls else "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
    }


# -----------------------------------------------------------------------------
# Fake OpenAI SDK
# -----------------------------------------------------------------------------


class FakeStream:
    """Async iterable of chunks that records whether it was closed."""

    def __init__(self, chunks: Iterable[Any], *, error: Exception | None = None) -> None:
        self._chunks = list(chunks)
        self._error = error
        self.closed = False
        self.consumed = 0

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        for chunk in self._chunks:
            self.consumed += 1
            yield chunk
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        self.closed = True


class FakeCompletions:
    """Stand-in for ``client.chat.completions`` with scripted outcomes.

    Each call pops the next outcome: an exception is raised, a list of chunks
    becomes a :class:`FakeStream`, and a mapping is returned as-is.
    """

    def __init__(self, outcomes: Sequence[Any]) -> None:
        self._outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []
        self.streams: list[FakeStream] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(copy.deepcopy(kwargs))
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, FakeStream):
            self.streams.append(outcome)
            return outcome
        if isinstance(outcome, list):
            stream = FakeStream(outcome)
            self.streams.append(stream)
            return stream
        return outcome


def make_openai(outcomes: Sequence[Any]) -> SimpleNamespace:
    completions = FakeCompletions(outcomes)
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions), closed=False)

    async def _close() -> None:
        fake.closed = True

    fake.close = _close
    return fake


def make_ai_client(outcomes: Sequence[Any], **settings: Any) -> tuple[AIClient, SimpleNamespace]:
    fake = make_openai(outcomes)
    options: dict[str, Any] = {
        "base_url": "http://local",
        "api_key": "test",
        "model": "gpt-test",
        "max_retries": 3,
        "retry_min_seconds": 0.0,
        "retry_max_seconds": 0.0,
    }
    options.update(settings)
    client = AIClient(ClientSettings(**options), client=cast(AsyncOpenAI, fake))
    return client, fake


# -----------------------------------------------------------------------------
# Scripted model client
# -----------------------------------------------------------------------------


class ScriptedModelClient:
    """Model client that replays one scripted chunk list per completion call."""

    def __init__(self, turns: Sequence[Sequence[Mapping[str, Any]] | Exception]) -> None:
        self._turns = list(turns)
        self.calls: list[dict[str, Any]] = []
        self.closed_streams = 0

    def stream_chat(self, messages: Sequence[Mapping[str, Any]], **kwargs: Any) -> AsyncIterator[AIStreamEvent]:
        self.calls.append({"messages": copy.deepcopy(list(messages)), **kwargs})
        turn = self._turns.pop(0)
        return self._replay(turn)

    async def _replay(self, turn: Sequence[Mapping[str, Any]] | Exception) -> AsyncIterator[AIStreamEvent]:
        try:
            if isinstance(turn, Exception):
                raise turn
            for event in events_for(turn):
                yield event
        finally:
            self.closed_streams += 1


class RecordingExecutor:
    """Tool executor that records invocations and returns canned strings."""

    def __init__(self, result: str = "tool result") -> None:
        self.result = result
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def execute(self, name: str, arguments: Mapping[str, Any]) -> str:
        self.calls.append((name, dict(arguments)))
        return self.result


# -----------------------------------------------------------------------------
# Retrieval fakes
# -----------------------------------------------------------------------------


class KeywordEmbeddingProvider:
    """Deterministic embeddings counting vocabulary words in the text."""

    name = "keywords"

    def __init__(self, vocabulary: Sequence[str] = ("cholesterol", "thyroid", "knee"), *, max_batch_size: int = 2) -> None:
        self.vocabulary = tuple(vocabulary)
        self.max_batch_size = max_batch_size
        self.document_batches: list[list[str]] = []
        self.queries: list[str] = []

    def vector(self, text: str) -> list[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.vocabulary]

    async def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        self.document_batches.append(list(texts))
        return [self.vector(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        self.queries.append(text)
        return self.vector(text)


class FakePdfReader:
    """Stand-in for ``pypdf.PdfReader``; pages are separated by form feeds."""

    def __init__(self, stream: Any) -> None:
        data = stream.read().decode("utf-8")
        if data.startswith("BROKEN"):
            raise ValueError("EOF marker not found")
        self.pages = [SimpleNamespace(extract_text=lambda text=page: text) for page in data.split("\f")]


def make_index(provider: KeywordEmbeddingProvider | None = None, **options: Any) -> DocumentIndex:
    return DocumentIndex(
        store=EmbeddingStore(":memory:"),
        provider=provider or KeywordEmbeddingProvider(),
        importer=PDFImportHandler(reader_cls=FakePdfReader),
        **options,
    )


def seed_index(index: DocumentIndex, study_id: str, file_name: str, texts: Sequence[str]) -> None:
    provider = cast(KeywordEmbeddingProvider, index._provider)
    records = [
        ChunkRecord(study_id=study_id, file=file_name, chunk_id=position, text=text, vector=tuple(provider.vector(text)))
        for position, text in enumerate(texts)
    ]
    index.store.replace_file(study_id, file_name, records)

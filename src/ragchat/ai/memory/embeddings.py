"""Document embedding index, persistence helpers, and provider adapters."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import sqlite3
import time
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Iterable, Protocol, Sequence

from openai import AsyncOpenAI

from ...services.importers import PDFImportHandler
from .chunking import DEFAULT_MAX_LENGTH, DEFAULT_OVERLAP, create_chunks

__all__ = [
    "ChunkRecord",
    "DocumentIndex",
    "EmbeddingProvider",
    "EmbeddingStore",
    "IndexResult",
    "OpenAIEmbeddingProvider",
    "RetrievedPassage",
    "StudyRetriever",
]

LOGGER = logging.getLogger(__name__)
Vector = tuple[float, ...]


class EmbeddingProvider(Protocol):
    """Protocol implemented by embedding backends."""

    name: str
    max_batch_size: int

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        """Return embeddings for document chunks."""

    async def embed_query(self, text: str) -> Sequence[float]:
        """Return embedding vector for a query string."""


@dataclass(slots=True)
class ChunkRecord:
    """Persisted chunk embedding for one file of one study."""

    study_id: str
    file: str
    chunk_id: int
    text: str
    vector: Vector
    created_at: float = field(default_factory=time.time)


@dataclass(slots=True, frozen=True)
class RetrievedPassage:
    text: str
    source: str
    chunk_index: int | None
    score: float = 0.0


@dataclass(slots=True, frozen=True)
class IndexResult:
    """Indexing confirmation returned for one uploaded document."""

    success: bool
    chunks_indexed: int = 0
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "chunksIndexed": self.chunks_indexed}
        if self.error is not None:
            payload["error"] = self.error
        return payload


class EmbeddingStore:
    """SQLite-backed persistence for chunk embeddings.

    Every statement runs under one re-entrant lock, and a file re-index
    deletes and reinserts inside a single transaction, so readers see either
    the old or the new chunk set, never a mix.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._path = Path(db_path)
        if str(db_path) != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._lock = RLock()
        self._create_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _create_schema(self) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS rag_chunks (
                        study_id TEXT NOT NULL,
                        file TEXT NOT NULL,
                        chunk_id INTEGER NOT NULL,
                        text TEXT NOT NULL,
                        vector TEXT NOT NULL,
                        created_at REAL NOT NULL,
                        PRIMARY KEY (study_id, file, chunk_id)
                    )
                    """
                )
                self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_rag_chunks_study ON rag_chunks(study_id)"
                )

    def replace_file(self, study_id: str, file: str, records: Sequence[ChunkRecord]) -> int:
        """Atomically swap the chunks stored for ``file``; returns rows deleted."""

        payloads = [self._record_to_tuple(record) for record in records]
        with self._lock:
            with self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM rag_chunks WHERE study_id = ? AND file = ?",
                    (study_id, file),
                )
                deleted = cursor.rowcount
                if payloads:
                    self._conn.executemany(
                        """
                        INSERT INTO rag_chunks (study_id, file, chunk_id, text, vector, created_at)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        payloads,
                    )
        return max(deleted, 0)

    def fetch_study(self, study_id: str) -> list[ChunkRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM rag_chunks WHERE study_id = ? ORDER BY file, chunk_id",
                (study_id,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_files(self, study_id: str) -> list[str]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT file FROM rag_chunks WHERE study_id = ? ORDER BY file",
                (study_id,),
            ).fetchall()
        return [row["file"] for row in rows]

    def delete_file(self, study_id: str, file: str) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    "DELETE FROM rag_chunks WHERE study_id = ? AND file = ?",
                    (study_id, file),
                )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _record_to_tuple(self, record: ChunkRecord) -> tuple[Any, ...]:
        return (
            record.study_id,
            record.file,
            record.chunk_id,
            record.text,
            json.dumps(list(record.vector)),
            record.created_at,
        )

    def _row_to_record(self, row: sqlite3.Row) -> ChunkRecord:
        vector = tuple(float(value) for value in json.loads(row["vector"]))
        return ChunkRecord(
            study_id=row["study_id"],
            file=row["file"],
            chunk_id=row["chunk_id"],
            text=row["text"],
            vector=vector,
            created_at=row["created_at"],
        )


class DocumentIndex:
    """Chunks, embeds, stores and searches documents per study."""

    def __init__(
        self,
        *,
        store: EmbeddingStore,
        provider: EmbeddingProvider,
        importer: PDFImportHandler | None = None,
        max_length: int = DEFAULT_MAX_LENGTH,
        overlap: int = DEFAULT_OVERLAP,
    ) -> None:
        self._store = store
        self._provider = provider
        self._importer = importer or PDFImportHandler()
        self._max_length = max_length
        self._overlap = overlap

    @property
    def store(self) -> EmbeddingStore:
        return self._store

    @property
    def provider_name(self) -> str | None:
        return getattr(self._provider, "name", None)

    async def index_document(self, study_id: str, file_name: str, data: bytes) -> IndexResult:
        """Extract, chunk, embed and store a PDF document.

        Failures are reported through the result rather than raised.
        """

        try:
            imported = await self._run_blocking(self._importer.import_bytes, data, file_name)
            return await self.index_text(study_id, file_name, imported.text)
        except Exception as exc:
            LOGGER.exception("Indexing failed for %s in study %s", file_name, study_id)
            return IndexResult(success=False, chunks_indexed=0, error=str(exc) or type(exc).__name__)

    async def index_text(self, study_id: str, file_name: str, text: str) -> IndexResult:
        chunks = create_chunks(text, max_length=self._max_length, overlap=self._overlap)
        LOGGER.info("Created %d chunk(s) for %s", len(chunks), file_name)

        vectors: list[Sequence[float]] = []
        for batch in _chunk_list(chunks, max(1, self._provider.max_batch_size)):
            vectors.extend(await self._provider.embed_documents(batch))
        if len(vectors) != len(chunks):
            raise RuntimeError(
                f"Embedding provider returned {len(vectors)} vector(s) for {len(chunks)} chunk(s)"
            )

        records = [
            ChunkRecord(
                study_id=study_id,
                file=file_name,
                chunk_id=index,
                text=chunk,
                vector=tuple(float(value) for value in vector),
            )
            for index, (chunk, vector) in enumerate(zip(chunks, vectors))
        ]
        deleted = await self._run_blocking(self._store.replace_file, study_id, file_name, records)
        LOGGER.info(
            "Indexed %s: replaced %d existing chunk(s) with %d new chunk(s)",
            file_name,
            deleted,
            len(records),
        )
        return IndexResult(success=True, chunks_indexed=len(records))

    async def retrieve(self, study_id: str, query: str, limit: int = 5) -> list[RetrievedPassage]:
        """Return the ``limit`` passages most similar to ``query``."""

        if not query.strip() or limit <= 0:
            return []
        query_vector = tuple(await self._provider.embed_query(query))
        candidates = await self._run_blocking(self._store.fetch_study, study_id)
        scored = [
            RetrievedPassage(
                text=record.text,
                source=record.file,
                chunk_index=record.chunk_id,
                score=_cosine_similarity(query_vector, record.vector),
            )
            for record in candidates
        ]
        scored.sort(key=lambda passage: passage.score, reverse=True)
        return scored[:limit]

    def retriever_for(self, study_id: str) -> StudyRetriever:
        return StudyRetriever(self, study_id)

    def close(self) -> None:
        self._store.close()

    async def _run_blocking(self, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))


class StudyRetriever:
    """Binds a :class:`DocumentIndex` to one study."""

    def __init__(self, index: DocumentIndex, study_id: str) -> None:
        self._index = index
        self.study_id = study_id

    async def retrieve(self, query: str, limit: int) -> list[RetrievedPassage]:
        return await self._index.retrieve(self.study_id, query, limit)


def _chunk_list(items: Sequence[str], size: int) -> Iterable[list[str]]:
    chunk: list[str] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def _cosine_similarity(lhs: Sequence[float], rhs: Sequence[float]) -> float:
    if not lhs or not rhs:
        return 0.0
    if len(lhs) != len(rhs):
        return 0.0
    dot = sum(a * b for a, b in zip(lhs, rhs))
    left = math.sqrt(sum(a * a for a in lhs))
    right = math.sqrt(sum(b * b for b in rhs))
    if left == 0 or right == 0:
        return 0.0
    return dot / (left * right)


class OpenAIEmbeddingProvider:
    """Embedding provider that wraps :class:`openai.AsyncOpenAI`."""

    def __init__(
        self,
        *,
        client: AsyncOpenAI,
        model: str = "text-embedding-3-small",
        name: str | None = None,
        max_batch_size: int = 16,
    ) -> None:
        self._client = client
        self._model = model
        self.name = name or f"openai:{model}"
        self.max_batch_size = max(1, int(max_batch_size))

    async def embed_documents(self, texts: Sequence[str]) -> Sequence[Sequence[float]]:
        response = await self._client.embeddings.create(model=self._model, input=list(texts))
        data = sorted(response.data, key=lambda item: getattr(item, "index", 0))
        return [list(getattr(item, "embedding", [])) for item in data]

    async def embed_query(self, text: str) -> Sequence[float]:
        vectors = await self.embed_documents([text])
        return vectors[0]

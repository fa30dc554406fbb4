"""Document chunking and embedding-backed retrieval."""

from .chunking import create_chunks
from .embeddings import (
    ChunkRecord,
    DocumentIndex,
    EmbeddingProvider,
    EmbeddingStore,
    IndexResult,
    OpenAIEmbeddingProvider,
    RetrievedPassage,
    StudyRetriever,
)

__all__ = [
    "ChunkRecord",
    "DocumentIndex",
    "EmbeddingProvider",
    "EmbeddingStore",
    "IndexResult",
    "OpenAIEmbeddingProvider",
    "RetrievedPassage",
    "StudyRetriever",
    "create_chunks",
]

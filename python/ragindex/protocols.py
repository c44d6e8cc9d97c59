"""
Provider Protocols - Capability interfaces consumed by the orchestrator.

Structural subtyping: implementations need no base class, only the
right methods. Concrete providers are chosen at construction time.
"""

from typing import List, Optional, Protocol, runtime_checkable

import numpy as np

from .models import RAGChunk, RAGQuery, RAGResult, RAGStats
from .tokens import TokenCounter


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Converts text to vectors.

    Allows swapping between local models (sentence-transformers),
    API-based models, or test doubles.
    """

    @property
    def model_name(self) -> str:
        """Identifier for the model used."""
        ...

    @property
    def dimension(self) -> int:
        """Embedding dimension."""
        ...

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text; returns shape (dimension,)."""
        ...

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        """Embed a batch; returns shape (len(texts), dimension)."""
        ...


@runtime_checkable
class RAGQueryProvider(Protocol):
    """Read-only access used at query time."""

    def query(self, query: RAGQuery) -> List[RAGResult]:
        """
        Similarity search.

        Results are ordered by descending score; ties are broken by
        chunk id so ordering is deterministic.
        """
        ...

    def get_stats(self) -> RAGStats:
        ...


@runtime_checkable
class RAGAdminProvider(RAGQueryProvider, Protocol):
    """
    Read/write access used by the indexer.

    ``upsert_chunks`` must replace a document's chunk set and checksum
    atomically: readers see either the old set or the new one.
    """

    def get_checksum(self, file_path: str) -> Optional[str]:
        """Checksum stored by the last committed index of this path."""
        ...

    def list_file_paths(self) -> List[str]:
        """All file paths that have a stored checksum."""
        ...

    def upsert_chunks(self, file_path: str, checksum: str, chunks: List[RAGChunk]) -> int:
        """Replace all chunks of ``file_path``; returns the number removed."""
        ...

    def delete_by_file_path(self, file_path: str) -> int:
        """Remove a document's chunks and checksum; returns chunks removed."""
        ...

    def clear(self) -> None:
        """Remove all chunks and checksums."""
        ...

    def acquire_writer(self) -> None:
        """Claim the single writer slot; raises IndexingInProgressError if taken."""
        ...

    def release_writer(self) -> None:
        ...


__all__ = ["TokenCounter", "EmbeddingProvider", "RAGQueryProvider", "RAGAdminProvider"]

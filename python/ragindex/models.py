"""
Data Models - Type definitions for the indexing pipeline.

These dataclasses represent the data flowing through the pipeline stages,
ensuring type safety and clear interfaces between modules.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from .errors import FrontmatterError


class IndexPhase(Enum):
    """Pipeline phase reported through progress callbacks."""
    SCANNING = "scanning"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"


class IndexOutcome(Enum):
    """What happened to one document during a run."""
    ADDED = "added"           # First time indexed
    UPDATED = "updated"       # Checksum changed, chunks replaced
    UNCHANGED = "unchanged"   # Checksum matched, no work done
    SKIPPED = "skipped"       # Not processed (cancelled or duplicate path)
    FAILED = "failed"         # Chunking or embedding failed


@dataclass(frozen=True)
class DocumentMetadata:
    """
    Validated frontmatter fields copied onto every chunk.

    Build it with ``from_frontmatter`` so nothing unvalidated gets past
    the discovery boundary.
    """
    title: Optional[str] = None
    type: Optional[str] = None
    tags: tuple[str, ...] = ()

    @classmethod
    def from_frontmatter(cls, data: Any) -> "DocumentMetadata":
        """
        Validate a parsed YAML frontmatter mapping.

        Unknown keys are ignored. Raises FrontmatterError listing every
        problem found.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise FrontmatterError([f"frontmatter must be a mapping, got {type(data).__name__}"])

        problems: List[str] = []

        title = data.get("title")
        if title is not None and not isinstance(title, str):
            problems.append(f"title must be a string, got {type(title).__name__}")

        doc_type = data.get("type")
        if doc_type is not None and not isinstance(doc_type, str):
            problems.append(f"type must be a string, got {type(doc_type).__name__}")

        tags = data.get("tags")
        if tags is None:
            tags = []
        elif isinstance(tags, str):
            tags = [t.strip() for t in tags.split(",") if t.strip()]
        elif not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            problems.append("tags must be a string or a list of strings")
            tags = []

        if problems:
            raise FrontmatterError(problems)

        return cls(title=title, type=doc_type, tags=tuple(tags))


@dataclass
class Document:
    """
    A markdown document handed to the orchestrator by discovery.

    ``file_path`` is the unique key. ``checksum`` is the SHA-256 hex
    digest of the raw bytes. ``frontmatter_lines`` is the number of leading
    lines taken by a parsed frontmatter block; the chunker skips them.
    """
    file_path: str
    content: str
    checksum: str
    modified_at: datetime
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    frontmatter_lines: int = 0


@dataclass
class RawChunk:
    """
    A chunk produced by the Chunker, before embedding.

    ``start_line``/``end_line`` are 1-based and inclusive. ``synthetic``
    marks chunks cut inside a paragraph because it exceeded the limit.
    """
    content: str
    start_line: int
    end_line: int
    heading_path: Optional[str] = None
    heading_level: Optional[int] = None
    synthetic: bool = False


@dataclass
class ChunkStats:
    """Token statistics over one document's chunks."""
    total_chunks: int = 0
    average_tokens: float = 0.0
    max_tokens: int = 0
    min_tokens: int = 0


@dataclass
class ChunkingResult:
    """Output of chunking one document."""
    chunks: List[RawChunk]
    stats: ChunkStats


@dataclass
class RAGChunk:
    """
    A persisted chunk: RawChunk plus document metadata and embedding.

    ``chunk_id`` is derived from (file_path, ordinal, content_hash), so
    re-indexing identical content reproduces identical ids.
    """
    chunk_id: str
    file_path: str
    ordinal: int
    content: str
    content_hash: str
    token_count: int
    start_line: int
    end_line: int
    document_checksum: str
    embedding: np.ndarray
    embedding_model: str
    heading_path: Optional[str] = None
    heading_level: Optional[int] = None
    synthetic: bool = False
    title: Optional[str] = None
    type: Optional[str] = None
    tags: tuple[str, ...] = ()
    previous_chunk_id: Optional[str] = None
    next_chunk_id: Optional[str] = None


@dataclass
class IndexProgress:
    """Progress snapshot delivered to the progress callback."""
    phase: IndexPhase
    completed: int
    total: int
    current_path: str
    elapsed_seconds: float = 0.0


@dataclass
class DocumentResult:
    """Outcome for a single document."""
    file_path: str
    outcome: IndexOutcome
    chunks: int = 0
    error: Optional[str] = None


@dataclass
class IndexResult:
    """Result of one indexing run."""
    documents: List[DocumentResult] = field(default_factory=list)
    deleted_paths: List[str] = field(default_factory=list)
    chunks_created: int = 0
    chunks_deleted: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def counts(self) -> Dict[IndexOutcome, int]:
        """Number of documents per outcome kind."""
        counts = {outcome: 0 for outcome in IndexOutcome}
        for doc in self.documents:
            counts[doc.outcome] += 1
        return counts

    @property
    def errors(self) -> List[DocumentResult]:
        return [d for d in self.documents if d.outcome is IndexOutcome.FAILED]

    def __str__(self) -> str:
        counts = self.counts
        return (
            f"Indexed {len(self.documents)} documents "
            f"({counts[IndexOutcome.ADDED]} added, "
            f"{counts[IndexOutcome.UPDATED]} updated, "
            f"{counts[IndexOutcome.UNCHANGED]} unchanged, "
            f"{counts[IndexOutcome.SKIPPED]} skipped, "
            f"{counts[IndexOutcome.FAILED]} failed; "
            f"{self.chunks_created} chunks created, "
            f"{len(self.deleted_paths)} documents removed) "
            f"in {self.duration_seconds:.1f}s"
        )


@dataclass
class RAGQuery:
    """
    A similarity query.

    ``embedding`` is filled in by the service layer from ``text`` before
    the query reaches the store.
    """
    text: str
    limit: int = 10
    file_paths: Optional[List[str]] = None
    heading_path: Optional[str] = None
    type: Optional[str] = None
    tag: Optional[str] = None
    embedding: Optional[np.ndarray] = None

    def __post_init__(self):
        if self.limit < 1:
            raise ValueError(f"limit must be at least 1, got {self.limit}")


@dataclass
class RAGResult:
    """One ranked query hit."""
    chunk: RAGChunk
    score: float


@dataclass
class RAGStats:
    """Read-only projection over the persisted index."""
    total_chunks: int
    total_resources: int
    embedding_model: Optional[str]

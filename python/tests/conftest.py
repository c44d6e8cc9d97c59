"""
Test Configuration - Shared fixtures for indexing tests.

Uses pytest fixtures to create isolated test environments. Embedding is
replaced by deterministic fakes so no model is ever downloaded.
"""

import hashlib
import shutil
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Generator, List, Optional

import numpy as np
import pytest

from ragindex.config import IndexerConfig, set_config
from ragindex.hasher import ChecksumTracker
from ragindex.models import Document, DocumentMetadata
from ragindex.store import SQLiteRAGStore


class FakeEmbedder:
    """Deterministic embedder: the vector is a pure function of the text."""

    def __init__(self, dimension: int = 8, model_name: str = "fake-embedder"):
        self._dimension = dimension
        self._model_name = model_name
        self._lock = threading.Lock()
        self.calls = 0
        self.texts_embedded = 0

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return self._dimension

    def vector(self, text: str) -> np.ndarray:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:4], "little")
        v = np.random.default_rng(seed).standard_normal(self._dimension).astype(np.float32)
        return v / np.linalg.norm(v)

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        with self._lock:
            self.calls += 1
            self.texts_embedded += len(texts)
        if not texts:
            return np.empty((0, self._dimension), dtype=np.float32)
        return np.vstack([self.vector(t) for t in texts])

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]


class FlakyEmbedder(FakeEmbedder):
    """
    Fails the first ``failures`` calls, and every call whose batch
    contains ``poison``.
    """

    def __init__(self, failures: int = 0, poison: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.poison = poison
        self.attempts = 0

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        with self._lock:
            self.attempts += 1
            attempt = self.attempts
        if attempt <= self.failures:
            raise RuntimeError(f"transient failure #{attempt}")
        if self.poison and any(self.poison in t for t in texts):
            raise RuntimeError("provider rejected input")
        return super().embed_batch(texts)


class WordTokenCounter:
    """Counts whitespace-separated words; easy to reason about in tests."""

    @property
    def name(self) -> str:
        return "words"

    def count(self, text: str) -> int:
        return len(text.split())

    def count_batch(self, texts: List[str]) -> List[int]:
        return [self.count(t) for t in texts]


class DoubleCharCounter:
    """Two tokens per character: no single character fits a limit of 1."""

    @property
    def name(self) -> str:
        return "double"

    def count(self, text: str) -> int:
        return 2 * len(text)

    def count_batch(self, texts: List[str]) -> List[int]:
        return [self.count(t) for t in texts]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="ragindex_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> IndexerConfig:
    """Create an isolated test configuration."""
    config = IndexerConfig(
        roots=[temp_dir / "docs"],
        db_path=temp_dir / "test.db",
        target_chunk_size=20,
        model_token_limit=40,
        padding_factor=1.0,
        embedding_model="fake-embedder",
        embedder_batch_size=2,
        embedder_concurrency=2,
        embed_max_attempts=3,
        embed_retry_base_delay=0.0,
        embed_retry_max_delay=0.0,
        embed_timeout=5.0,
        scanner_concurrency=4,
    )
    set_config(config)
    return config


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store(test_config: IndexerConfig) -> Generator[SQLiteRAGStore, None, None]:
    s = SQLiteRAGStore(test_config.db_path)
    yield s
    s.close()


@pytest.fixture
def make_document() -> Callable[..., Document]:
    """Factory for in-memory documents with a correct checksum."""
    tracker = ChecksumTracker()

    def _make(file_path: str, content: str, metadata: Optional[DocumentMetadata] = None) -> Document:
        return Document(
            file_path=file_path,
            content=content,
            checksum=tracker.compute(content),
            modified_at=datetime.now(),
            metadata=metadata or DocumentMetadata(),
        )

    return _make


@pytest.fixture
def sample_docs(temp_dir: Path) -> dict[str, Path]:
    """Create a small markdown tree on disk."""
    docs = temp_dir / "docs"
    docs.mkdir()
    files = {}

    guide = docs / "guide.md"
    guide.write_text(
        "---\ntitle: Guide\ntype: howto\ntags: [setup, python]\n---\n"
        "# Install\n\nRun the installer and follow the prompts.\n\n"
        "## Verify\n\nCheck the version number afterwards.\n"
    )
    files["guide"] = guide

    nested_dir = docs / "notes" / "deep"
    nested_dir.mkdir(parents=True)
    nested = nested_dir / "todo.markdown"
    nested.write_text("Plain notes without headings.\n\nSecond paragraph.\n")
    files["nested"] = nested

    # Not markdown (should be skipped)
    txt = docs / "readme.txt"
    txt.write_text("Not markdown.")
    files["txt"] = txt

    # Hidden file (should be skipped)
    hidden = docs / ".hidden.md"
    hidden.write_text("# Hidden\n\nShould be skipped.")
    files["hidden"] = hidden

    # Node modules dir (should be skipped)
    node_modules = docs / "node_modules" / "pkg"
    node_modules.mkdir(parents=True)
    vendored = node_modules / "README.md"
    vendored.write_text("# Vendored\n\nShould be skipped.")
    files["node_modules"] = vendored

    return files

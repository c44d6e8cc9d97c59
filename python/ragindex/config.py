"""
Indexing Configuration - Centralized settings for the RAG indexer.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths for reliability.
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Set, List

from .tokens import TokenCounter, ApproximateTokenCounter


@dataclass(frozen=True)
class ChunkingConfig:
    """
    Token budget for one indexing run.

    Validated on construction so the chunker never sees an impossible
    budget. ``hard_limit`` is the ceiling every chunk must respect.
    """
    target_chunk_size: int
    model_token_limit: int
    padding_factor: float = 0.9
    min_chunk_size: int = 0
    token_counter: TokenCounter = field(default_factory=ApproximateTokenCounter)

    def __post_init__(self):
        if self.target_chunk_size <= 0:
            raise ValueError(f"target_chunk_size must be positive, got {self.target_chunk_size}")
        if self.model_token_limit <= 0:
            raise ValueError(f"model_token_limit must be positive, got {self.model_token_limit}")
        if not 0 < self.padding_factor <= 1:
            raise ValueError(f"padding_factor must be in (0, 1], got {self.padding_factor}")
        if self.min_chunk_size < 0:
            raise ValueError(f"min_chunk_size must not be negative, got {self.min_chunk_size}")
        if self.hard_limit < 1:
            raise ValueError(
                f"model_token_limit * padding_factor leaves no room for content "
                f"({self.model_token_limit} * {self.padding_factor})"
            )

    @property
    def hard_limit(self) -> int:
        """Largest token count any chunk may have."""
        return math.floor(self.model_token_limit * self.padding_factor)


@dataclass
class IndexerConfig:
    """
    Configuration for the indexing system.

    The database defaults to ~/.ragindex. Embedding concurrency and
    retry settings are tuned for a local model; raise the timeout for
    remote providers.
    """

    # --- Paths ---
    roots: List[Path] = field(default_factory=lambda: [Path.cwd()])
    db_path: Path = field(default_factory=lambda: Path.home() / ".ragindex" / "index.db")

    # --- Chunking ---
    target_chunk_size: int = 512     # Tokens; chunks fill toward this
    model_token_limit: int = 8191    # Hard ceiling of the embedding model
    padding_factor: float = 0.9      # Safety margin for approximate counting
    min_chunk_size: int = 0          # Merge smaller chunks (0 disables)

    # --- Embedding ---
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_device: str | None = None   # None = auto (cuda, mps, cpu)
    embedder_batch_size: int = 32
    embedder_concurrency: int = 4    # Batches in flight per document
    embed_max_attempts: int = 3
    embed_retry_base_delay: float = 0.5
    embed_retry_max_delay: float = 8.0
    embed_timeout: float = 60.0      # Seconds per batch call

    # --- Discovery ---
    scanner_concurrency: int = 16
    markdown_extensions: Set[str] = field(default_factory=lambda: {
        ".md", ".markdown", ".mdx",
    })
    skip_dirs: Set[str] = field(default_factory=lambda: {
        # Version control
        ".git", ".svn", ".hg",
        # Dependencies
        "node_modules", "__pycache__", ".venv", "venv", "env",
        # Build outputs
        "build", "dist", "target", "out", ".next",
        # IDE/Editor
        ".idea", ".vscode",
        # Cache
        ".cache", ".npm", ".yarn",
    })

    def __post_init__(self):
        """Ensure all paths are absolute and the database directory exists."""
        self.db_path = Path(self.db_path).expanduser().resolve()
        self.roots = [Path(p).expanduser().resolve() for p in self.roots]

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def chunking_config(self, token_counter: TokenCounter | None = None) -> ChunkingConfig:
        """Build the immutable chunking budget for one run."""
        return ChunkingConfig(
            target_chunk_size=self.target_chunk_size,
            model_token_limit=self.model_token_limit,
            padding_factor=self.padding_factor,
            min_chunk_size=self.min_chunk_size,
            token_counter=token_counter or ApproximateTokenCounter(),
        )

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            RAGINDEX_ROOTS: Comma-separated list of paths
            RAGINDEX_DB_PATH: Path to SQLite database
            RAGINDEX_TARGET_CHUNK_SIZE: Target tokens per chunk
            RAGINDEX_MODEL_TOKEN_LIMIT: Hard token limit of the model
            RAGINDEX_PADDING_FACTOR: Safety margin in (0, 1]
            RAGINDEX_MIN_CHUNK_SIZE: Merge threshold in tokens
            RAGINDEX_EMBEDDING_MODEL: sentence-transformers model name
            RAGINDEX_BATCH_SIZE: Texts per embedding call
        """
        config = cls()

        if roots := os.environ.get("RAGINDEX_ROOTS"):
            config.roots = [Path(p.strip()) for p in roots.split(",")]

        if db_path := os.environ.get("RAGINDEX_DB_PATH"):
            config.db_path = Path(db_path)

        if target := os.environ.get("RAGINDEX_TARGET_CHUNK_SIZE"):
            config.target_chunk_size = int(target)

        if limit := os.environ.get("RAGINDEX_MODEL_TOKEN_LIMIT"):
            config.model_token_limit = int(limit)

        if padding := os.environ.get("RAGINDEX_PADDING_FACTOR"):
            config.padding_factor = float(padding)

        if min_size := os.environ.get("RAGINDEX_MIN_CHUNK_SIZE"):
            config.min_chunk_size = int(min_size)

        if model := os.environ.get("RAGINDEX_EMBEDDING_MODEL"):
            config.embedding_model = model

        if batch := os.environ.get("RAGINDEX_BATCH_SIZE"):
            config.embedder_batch_size = int(batch)

        config.__post_init__()
        return config


# Singleton default config
_default_config: IndexerConfig | None = None


def get_config() -> IndexerConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = IndexerConfig.from_env()
    return _default_config


def set_config(config: IndexerConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config

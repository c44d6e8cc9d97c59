"""
Configuration Tests - Verify defaults and environment overrides.
"""

from pathlib import Path

from ragindex.config import IndexerConfig
from ragindex.tokens import ApproximateTokenCounter


class TestIndexerConfig:
    """Tests for IndexerConfig."""

    def test_paths_resolved(self, temp_dir):
        """Paths are made absolute and the database directory is created."""
        config = IndexerConfig(roots=[temp_dir / "docs"], db_path=temp_dir / "nested" / "index.db")

        assert config.db_path.is_absolute()
        assert config.db_path.parent.exists()
        assert all(root.is_absolute() for root in config.roots)

    def test_chunking_config(self, temp_dir):
        """The chunking budget mirrors the config fields."""
        config = IndexerConfig(
            db_path=temp_dir / "index.db",
            target_chunk_size=100,
            model_token_limit=200,
            padding_factor=0.5,
            min_chunk_size=10,
        )

        chunking = config.chunking_config()

        assert chunking.target_chunk_size == 100
        assert chunking.hard_limit == 100
        assert chunking.min_chunk_size == 10
        assert isinstance(chunking.token_counter, ApproximateTokenCounter)

    def test_from_env(self, temp_dir, monkeypatch):
        """Environment variables override defaults."""
        monkeypatch.setenv("RAGINDEX_ROOTS", f"{temp_dir / 'a'}, {temp_dir / 'b'}")
        monkeypatch.setenv("RAGINDEX_DB_PATH", str(temp_dir / "env.db"))
        monkeypatch.setenv("RAGINDEX_TARGET_CHUNK_SIZE", "256")
        monkeypatch.setenv("RAGINDEX_MODEL_TOKEN_LIMIT", "1024")
        monkeypatch.setenv("RAGINDEX_PADDING_FACTOR", "0.8")
        monkeypatch.setenv("RAGINDEX_MIN_CHUNK_SIZE", "16")
        monkeypatch.setenv("RAGINDEX_EMBEDDING_MODEL", "all-mpnet-base-v2")
        monkeypatch.setenv("RAGINDEX_BATCH_SIZE", "8")

        config = IndexerConfig.from_env()

        assert config.roots == [temp_dir / "a", temp_dir / "b"]
        assert config.db_path == temp_dir / "env.db"
        assert config.target_chunk_size == 256
        assert config.model_token_limit == 1024
        assert config.padding_factor == 0.8
        assert config.min_chunk_size == 16
        assert config.embedding_model == "all-mpnet-base-v2"
        assert config.embedder_batch_size == 8

    def test_markdown_extensions_default(self, temp_dir):
        config = IndexerConfig(db_path=temp_dir / "index.db")

        assert ".md" in config.markdown_extensions
        assert "node_modules" in config.skip_dirs
        assert config.roots == [Path.cwd().resolve()]

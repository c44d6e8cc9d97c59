"""
Store - SQLite-backed RAG chunk store.

Implements both the admin (write) and query (read) provider contracts.
A document's chunks and checksum are replaced inside one transaction,
and the database runs in WAL mode, so readers always see a consistent
snapshot: either the old chunk set or the new one, never a mix.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import numpy as np

from .errors import IndexingInProgressError, StorageError
from .models import RAGChunk, RAGQuery, RAGResult, RAGStats


logger = logging.getLogger(__name__)


SCHEMA = """
    -- One row per indexed document; the checksum gates re-indexing
    CREATE TABLE IF NOT EXISTS documents (
        file_path TEXT PRIMARY KEY,
        checksum TEXT NOT NULL,
        chunk_count INTEGER NOT NULL,
        indexed_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS chunks (
        chunk_id TEXT PRIMARY KEY,
        file_path TEXT NOT NULL,
        ordinal INTEGER NOT NULL,
        content TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        token_count INTEGER NOT NULL,
        heading_path TEXT,
        heading_level INTEGER,
        start_line INTEGER NOT NULL,
        end_line INTEGER NOT NULL,
        synthetic INTEGER NOT NULL DEFAULT 0,
        document_checksum TEXT NOT NULL,
        title TEXT,
        type TEXT,
        tags TEXT NOT NULL DEFAULT '',
        embedding BLOB NOT NULL,
        embedding_dim INTEGER NOT NULL,
        embedding_model TEXT NOT NULL,
        previous_chunk_id TEXT,
        next_chunk_id TEXT,
        FOREIGN KEY (file_path) REFERENCES documents(file_path) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_chunks_file ON chunks(file_path, ordinal);

    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT
    );
"""


# One writer slot per database file, shared by every store instance in
# the process.
_WRITER_LOCKS: Dict[str, threading.Lock] = {}
_WRITER_LOCKS_GUARD = threading.Lock()


def _writer_lock_for(db_path: Path) -> threading.Lock:
    key = str(db_path)
    with _WRITER_LOCKS_GUARD:
        if key not in _WRITER_LOCKS:
            _WRITER_LOCKS[key] = threading.Lock()
        return _WRITER_LOCKS[key]


class SQLiteRAGStore:
    """
    Chunk store on a single SQLite file.

    Writes go through one long-lived connection; reads open short-lived
    connections so they never wait on an in-flight indexing run.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path).expanduser().resolve()
        self._conn: Optional[sqlite3.Connection] = None
        self._conn_lock = threading.RLock()
        self._writer_lock = _writer_lock_for(self.db_path)
        self._holds_writer = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the writer connection."""
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA journal_mode = WAL")
                self._conn.execute("PRAGMA synchronous = NORMAL")
                self._conn.execute("PRAGMA foreign_keys = ON")
                self._conn.executescript(SCHEMA)
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn = None
                raise StorageError(f"cannot open {self.db_path}: {e}") from e
        return self._conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        """Short-lived read connection seeing the last committed state."""
        self._get_connection()
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"read failed: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Single transaction on the writer connection."""
        with self._conn_lock:
            conn = self._get_connection()
            try:
                with conn:
                    yield conn
            except sqlite3.Error as e:
                raise StorageError(f"write failed: {e}") from e

    # ------------------------------------------------------------------
    # Writer slot
    # ------------------------------------------------------------------

    def acquire_writer(self) -> None:
        """Claim the writer slot without waiting."""
        if not self._writer_lock.acquire(blocking=False):
            raise IndexingInProgressError(f"an indexing run is already active on {self.db_path}")
        self._holds_writer = True

    def release_writer(self) -> None:
        if self._holds_writer:
            self._holds_writer = False
            self._writer_lock.release()

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def get_checksum(self, file_path: str) -> Optional[str]:
        with self._read() as conn:
            row = conn.execute(
                "SELECT checksum FROM documents WHERE file_path = ?", (file_path,)
            ).fetchone()
            return row["checksum"] if row else None

    def list_file_paths(self) -> List[str]:
        with self._read() as conn:
            cursor = conn.execute("SELECT file_path FROM documents ORDER BY file_path")
            return [row[0] for row in cursor.fetchall()]

    def upsert_chunks(self, file_path: str, checksum: str, chunks: List[RAGChunk]) -> int:
        """
        Replace every chunk of a document and its stored checksum.

        Runs as one transaction; on failure nothing changes.

        Args:
            file_path: Document key
            checksum: New document checksum
            chunks: The complete new chunk set (may be empty)

        Returns:
            Number of chunks the replacement removed
        """
        now = int(datetime.now().timestamp())
        models = {c.embedding_model for c in chunks}

        with self._write() as conn:
            removed = conn.execute(
                "DELETE FROM chunks WHERE file_path = ?", (file_path,)
            ).rowcount
            conn.execute(
                """
                INSERT INTO documents (file_path, checksum, chunk_count, indexed_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(file_path) DO UPDATE SET
                    checksum = excluded.checksum,
                    chunk_count = excluded.chunk_count,
                    indexed_at = excluded.indexed_at
                """,
                (file_path, checksum, len(chunks), now),
            )
            conn.executemany(
                """
                INSERT INTO chunks (
                    chunk_id, file_path, ordinal, content, content_hash, token_count,
                    heading_path, heading_level, start_line, end_line, synthetic,
                    document_checksum, title, type, tags,
                    embedding, embedding_dim, embedding_model,
                    previous_chunk_id, next_chunk_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [self._chunk_to_row(c) for c in chunks],
            )
            for model in models:
                conn.execute(
                    "INSERT OR REPLACE INTO metadata (key, value) VALUES ('embedding_model', ?)",
                    (model,),
                )

        logger.debug(f"Stored {len(chunks)} chunks for {file_path} (replaced {removed})")
        return removed

    def delete_by_file_path(self, file_path: str) -> int:
        with self._write() as conn:
            removed = conn.execute(
                "DELETE FROM chunks WHERE file_path = ?", (file_path,)
            ).rowcount
            conn.execute("DELETE FROM documents WHERE file_path = ?", (file_path,))
        logger.debug(f"Deleted {removed} chunks for {file_path}")
        return removed

    def clear(self) -> None:
        with self._write() as conn:
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM documents")
            conn.execute("DELETE FROM metadata")
        logger.info(f"Cleared RAG store {self.db_path}")

    # ------------------------------------------------------------------
    # Query operations
    # ------------------------------------------------------------------

    def get_chunks(self, file_path: str) -> List[RAGChunk]:
        """All chunks of one document, in ordinal order."""
        with self._read() as conn:
            cursor = conn.execute(
                "SELECT * FROM chunks WHERE file_path = ? ORDER BY ordinal", (file_path,)
            )
            return [self._row_to_chunk(row) for row in cursor.fetchall()]

    def query(self, query: RAGQuery) -> List[RAGResult]:
        """
        Rank chunks by cosine similarity to ``query.embedding``.

        Ties are broken by ascending chunk id.
        """
        if query.embedding is None:
            raise ValueError("RAGQuery.embedding must be set before querying the store")

        vector = np.asarray(query.embedding, dtype=np.float32).ravel()
        sql, params = self._filter_sql(query)

        with self._read() as conn:
            rows = conn.execute(sql, (*params, len(vector))).fetchall()

        if not rows:
            return []

        matrix = np.vstack([np.frombuffer(row["embedding"], dtype=np.float32) for row in rows])
        scores = self._cosine_scores(matrix, vector)

        ranked = sorted(
            zip(rows, scores),
            key=lambda pair: (-pair[1], pair[0]["chunk_id"]),
        )
        return [
            RAGResult(chunk=self._row_to_chunk(row), score=float(score))
            for row, score in ranked[:query.limit]
        ]

    def get_stats(self) -> RAGStats:
        with self._read() as conn:
            total_chunks = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            total_resources = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            row = conn.execute(
                "SELECT value FROM metadata WHERE key = 'embedding_model'"
            ).fetchone()
        return RAGStats(
            total_chunks=total_chunks,
            total_resources=total_resources,
            embedding_model=row["value"] if row else None,
        )

    def close(self):
        """Close database connection."""
        self.release_writer()
        with self._conn_lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _filter_sql(query: RAGQuery) -> tuple[str, list]:
        conditions: List[str] = []
        params: list = []

        if query.file_paths:
            placeholders = ", ".join("?" for _ in query.file_paths)
            conditions.append(f"file_path IN ({placeholders})")
            params.extend(query.file_paths)

        if query.heading_path:
            conditions.append("(heading_path = ? OR heading_path LIKE ?)")
            params.extend([query.heading_path, f"{query.heading_path} > %"])

        if query.type:
            conditions.append("type = ?")
            params.append(query.type)

        if query.tag:
            conditions.append("(',' || tags || ',') LIKE ?")
            params.append(f"%,{query.tag},%")

        conditions.append("embedding_dim = ?")
        return f"SELECT * FROM chunks WHERE {' AND '.join(conditions)}", params

    @staticmethod
    def _cosine_scores(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
        """Cosine similarity of every row against one vector."""
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
        dots = matrix @ vector
        return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)

    @staticmethod
    def _chunk_to_row(chunk: RAGChunk) -> tuple:
        embedding = np.asarray(chunk.embedding, dtype=np.float32).ravel()
        return (
            chunk.chunk_id,
            chunk.file_path,
            chunk.ordinal,
            chunk.content,
            chunk.content_hash,
            chunk.token_count,
            chunk.heading_path,
            chunk.heading_level,
            chunk.start_line,
            chunk.end_line,
            1 if chunk.synthetic else 0,
            chunk.document_checksum,
            chunk.title,
            chunk.type,
            ",".join(chunk.tags),
            embedding.tobytes(),
            embedding.shape[0],
            chunk.embedding_model,
            chunk.previous_chunk_id,
            chunk.next_chunk_id,
        )

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> RAGChunk:
        return RAGChunk(
            chunk_id=row["chunk_id"],
            file_path=row["file_path"],
            ordinal=row["ordinal"],
            content=row["content"],
            content_hash=row["content_hash"],
            token_count=row["token_count"],
            start_line=row["start_line"],
            end_line=row["end_line"],
            document_checksum=row["document_checksum"],
            embedding=np.frombuffer(row["embedding"], dtype=np.float32),
            embedding_model=row["embedding_model"],
            heading_path=row["heading_path"],
            heading_level=row["heading_level"],
            synthetic=bool(row["synthetic"]),
            title=row["title"],
            type=row["type"],
            tags=tuple(t for t in row["tags"].split(",") if t),
            previous_chunk_id=row["previous_chunk_id"],
            next_chunk_id=row["next_chunk_id"],
        )

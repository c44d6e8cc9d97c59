"""
Orchestrator - Main entry point for the RAG indexing system.

Runs one incremental indexing pass over a document set:
- Filter: compare SHA-256 checksums, skip unchanged documents (instant)
- Chunk: heading-aware, token-bounded splitting
- Embed: batched provider calls, bounded concurrency, retry with backoff
- Persist: atomic per-document replacement of the chunk set
- Reconcile: drop documents that disappeared from the set

Per-document failures (chunking, embedding) are recorded and the run
continues. Storage failures abort the run; documents committed before
the failure stay committed.
"""

import asyncio
import logging
import signal
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import numpy as np

from .chunker import Chunker
from .config import ChunkingConfig, IndexerConfig, get_config, set_config
from .embedder import SentenceTransformerEmbedder
from .errors import (
    ChunkingError, EmbeddingError, ErrorAction, StorageError, handle_error
)
from .hasher import ChecksumTracker, content_hash, make_chunk_id
from .models import (
    Document, DocumentResult, IndexOutcome, IndexPhase, IndexProgress,
    IndexResult, RAGChunk, RAGQuery, RAGResult, RAGStats, RawChunk
)
from .protocols import EmbeddingProvider, RAGAdminProvider
from .scanner import Scanner
from .store import SQLiteRAGStore
from .tokens import TokenCounter


logger = logging.getLogger(__name__)


ProgressCallback = Callable[[IndexProgress], None]


class _ProgressReporter:
    """Delivers IndexProgress events; callback errors never reach the pipeline."""

    def __init__(self, callback: Optional[ProgressCallback], total: int):
        self.callback = callback
        self.total = total
        self.last_phase = IndexPhase.SCANNING
        self._start = time.monotonic()

    def emit(self, phase: IndexPhase, completed: int, path: str) -> None:
        self.last_phase = phase
        if self.callback is None:
            return
        progress = IndexProgress(
            phase=phase,
            completed=completed,
            total=self.total,
            current_path=path,
            elapsed_seconds=time.monotonic() - self._start,
        )
        try:
            self.callback(progress)
        except Exception:
            logger.exception(f"Progress callback failed on {path}")


def build_rag_chunks(
    document: Document,
    checksum: str,
    raw_chunks: List[RawChunk],
    embeddings: np.ndarray,
    embedding_model: str,
    token_counter: TokenCounter,
) -> List[RAGChunk]:
    """
    Attach identity, document metadata and embeddings to raw chunks.

    Neighbouring chunks are linked through previous/next ids.
    """
    hashes = [content_hash(c.content) for c in raw_chunks]
    ids = [make_chunk_id(document.file_path, i, h) for i, h in enumerate(hashes)]
    token_counts = token_counter.count_batch([c.content for c in raw_chunks])
    meta = document.metadata

    return [
        RAGChunk(
            chunk_id=ids[i],
            file_path=document.file_path,
            ordinal=i,
            content=raw.content,
            content_hash=hashes[i],
            token_count=token_counts[i],
            start_line=raw.start_line,
            end_line=raw.end_line,
            document_checksum=checksum,
            embedding=embeddings[i],
            embedding_model=embedding_model,
            heading_path=raw.heading_path,
            heading_level=raw.heading_level,
            synthetic=raw.synthetic,
            title=meta.title,
            type=meta.type,
            tags=meta.tags,
            previous_chunk_id=ids[i - 1] if i > 0 else None,
            next_chunk_id=ids[i + 1] if i + 1 < len(ids) else None,
        )
        for i, raw in enumerate(raw_chunks)
    ]


class IndexingOrchestrator:
    """
    Drives discover -> chunk -> embed -> persist for one document set.

    Documents are processed one at a time, in order, so cancellation and
    storage failures always fall on a document boundary. Embedding
    batches within a document run concurrently on a thread pool.
    """

    def __init__(
        self,
        store: RAGAdminProvider,
        embedder: EmbeddingProvider,
        config: Optional[IndexerConfig] = None,
    ):
        self.config = config or get_config()
        self._store = store
        self._embedder = embedder
        self._checksums = ChecksumTracker()
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.embedder_concurrency,
                thread_name_prefix="embedder",
            )
        return self._executor

    async def index(
        self,
        documents: Iterable[Document],
        chunking: Optional[ChunkingConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IndexResult:
        """
        Run one full indexing pass.

        Args:
            documents: The complete current document set
            chunking: Token budget (default: built from config)
            progress_callback: Receives IndexProgress events
            cancel_event: Checked between documents; set it to stop
                scheduling further documents

        Returns:
            IndexResult with one outcome per document, in input order

        Raises:
            IndexingInProgressError: Another run holds this store
            StorageError: Persistence failed; ``partial_result`` holds
                the outcomes recorded so far
        """
        chunking = chunking or self.config.chunking_config()
        self._store.acquire_writer()
        try:
            return await self._run(list(documents), chunking, progress_callback, cancel_event)
        finally:
            self._store.release_writer()

    async def _run(
        self,
        documents: List[Document],
        chunking: ChunkingConfig,
        progress_callback: Optional[ProgressCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> IndexResult:
        start_time = time.monotonic()
        result = IndexResult()
        chunker = Chunker(chunking)
        reporter = _ProgressReporter(progress_callback, len(documents))
        seen: set[str] = set()

        logger.info(f"Indexing {len(documents)} documents...")

        try:
            for i, document in enumerate(documents):
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Indexing cancelled after {i} of {len(documents)} documents")
                    result.cancelled = True
                    result.documents.extend(
                        DocumentResult(d.file_path, IndexOutcome.SKIPPED) for d in documents[i:]
                    )
                    break

                if document.file_path in seen:
                    logger.warning(f"Duplicate document path in set, skipping: {document.file_path}")
                    result.documents.append(DocumentResult(document.file_path, IndexOutcome.SKIPPED))
                    continue
                seen.add(document.file_path)

                try:
                    doc_result = await self._index_document(document, i, chunker, reporter, result)
                except StorageError as e:
                    e.file_path = e.file_path or document.file_path
                    raise
                result.documents.append(doc_result)
                reporter.emit(reporter.last_phase, i + 1, document.file_path)

            if not result.cancelled:
                self._remove_missing(seen, result)

        except StorageError as e:
            handle_error(e, e.file_path, "index")
            result.duration_seconds = time.monotonic() - start_time
            e.partial_result = result
            raise

        result.duration_seconds = time.monotonic() - start_time
        logger.info(f"Indexing complete: {result}")
        return result

    async def _index_document(
        self,
        document: Document,
        position: int,
        chunker: Chunker,
        reporter: _ProgressReporter,
        result: IndexResult,
    ) -> DocumentResult:
        path = document.file_path

        # ═══════════════════════════════════════════════════════════════
        # CHECKSUM FILTER
        # ═══════════════════════════════════════════════════════════════
        reporter.emit(IndexPhase.SCANNING, position, path)
        checksum = document.checksum or self._checksums.compute(document.content)
        comparison = self._checksums.compare(checksum, self._store.get_checksum(path))

        if not comparison.changed:
            logger.debug(f"Unchanged: {path}")
            return DocumentResult(path, IndexOutcome.UNCHANGED)

        outcome = IndexOutcome.ADDED if comparison.is_new else IndexOutcome.UPDATED

        # ═══════════════════════════════════════════════════════════════
        # CHUNK
        # ═══════════════════════════════════════════════════════════════
        reporter.emit(IndexPhase.CHUNKING, position, path)
        try:
            chunked = chunker.chunk(document.content, document.frontmatter_lines)
        except ChunkingError as e:
            handle_error(e, path, "chunk")
            return DocumentResult(path, IndexOutcome.FAILED, error=str(e))

        # ═══════════════════════════════════════════════════════════════
        # EMBED
        # ═══════════════════════════════════════════════════════════════
        reporter.emit(IndexPhase.EMBEDDING, position, path)
        try:
            embeddings = await self._embed_all([c.content for c in chunked.chunks], path)
        except EmbeddingError as e:
            logger.warning(f"Giving up on {path}: {e}")
            return DocumentResult(path, IndexOutcome.FAILED, error=str(e))

        rag_chunks = build_rag_chunks(
            document,
            checksum,
            chunked.chunks,
            embeddings,
            self._embedder.model_name,
            chunker.config.token_counter,
        )

        # ═══════════════════════════════════════════════════════════════
        # PERSIST (atomic replacement)
        # ═══════════════════════════════════════════════════════════════
        reporter.emit(IndexPhase.STORING, position, path)
        removed = self._store.upsert_chunks(path, checksum, rag_chunks)

        result.chunks_created += len(rag_chunks)
        result.chunks_deleted += removed
        logger.debug(f"{outcome.value.capitalize()}: {path} ({len(rag_chunks)} chunks)")
        return DocumentResult(path, outcome, chunks=len(rag_chunks))

    async def _embed_all(self, texts: List[str], path: str) -> np.ndarray:
        """Embed texts in batches; any batch that exhausts its retries fails the lot."""
        if not texts:
            return np.empty((0, 0), dtype=np.float32)

        batch_size = self.config.embedder_batch_size
        batches = [texts[i:i + batch_size] for i in range(0, len(texts), batch_size)]
        semaphore = asyncio.Semaphore(self.config.embedder_concurrency)

        async def run(batch: List[str]) -> np.ndarray:
            async with semaphore:
                return await self._embed_with_retry(batch, path)

        results = await asyncio.gather(*(run(b) for b in batches), return_exceptions=True)

        for outcome in results:
            if isinstance(outcome, BaseException):
                raise outcome

        dimensions = {batch.shape[1] for batch in results}
        if len(dimensions) > 1:
            raise EmbeddingError(
                f"provider returned mixed dimensions {sorted(dimensions)} for {path}"
            )
        return np.vstack(results)

    async def _embed_with_retry(self, batch: List[str], path: str) -> np.ndarray:
        """One batch call with timeout and bounded exponential backoff."""
        loop = asyncio.get_running_loop()
        attempts = self.config.embed_max_attempts

        for attempt in range(1, attempts + 1):
            try:
                vectors = await asyncio.wait_for(
                    loop.run_in_executor(self._get_executor(), self._embedder.embed_batch, batch),
                    timeout=self.config.embed_timeout,
                )
                vectors = np.asarray(vectors, dtype=np.float32)
                if vectors.ndim != 2 or vectors.shape[0] != len(batch):
                    raise EmbeddingError(
                        f"provider returned shape {vectors.shape} for {len(batch)} texts"
                    )
                return vectors
            except asyncio.TimeoutError:
                error = EmbeddingError(f"batch timed out after {self.config.embed_timeout}s")
            except EmbeddingError as e:
                error = e
            except Exception as e:
                error = EmbeddingError(f"{type(e).__name__}: {e}")
                error.__cause__ = e

            action = handle_error(error, path, f"embed attempt {attempt}/{attempts}")
            if action is not ErrorAction.RETRY or attempt == attempts:
                raise error

            delay = min(
                self.config.embed_retry_base_delay * 2 ** (attempt - 1),
                self.config.embed_retry_max_delay,
            )
            await asyncio.sleep(delay)

        raise EmbeddingError(f"no embedding attempts configured for {path}")

    def _remove_missing(self, current_paths: set[str], result: IndexResult) -> None:
        """Delete every stored document that is not in the current set."""
        stale = sorted(set(self._store.list_file_paths()) - current_paths)
        for path in stale:
            try:
                removed = self._store.delete_by_file_path(path)
            except StorageError as e:
                e.file_path = path
                raise
            result.deleted_paths.append(path)
            result.chunks_deleted += removed

        if stale:
            logger.info(f"Removed {len(stale)} documents no longer present")

    def close(self):
        """Shutdown the embedding thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None


class RAGService:
    """
    The four operations exposed to CLI or service layers:
    index, query, clear and stats.
    """

    def __init__(
        self,
        config: Optional[IndexerConfig] = None,
        embedder: Optional[EmbeddingProvider] = None,
        store: Optional[SQLiteRAGStore] = None,
    ):
        self.config = config or get_config()
        if config:
            set_config(config)

        self.embedder = embedder or SentenceTransformerEmbedder(self.config)
        self.store = store or SQLiteRAGStore(self.config.db_path)
        self._orchestrator = IndexingOrchestrator(self.store, self.embedder, self.config)

    async def index(
        self,
        documents: Iterable[Document],
        chunking: Optional[ChunkingConfig] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IndexResult:
        """Index a document set (see IndexingOrchestrator.index)."""
        return await self._orchestrator.index(documents, chunking, progress_callback, cancel_event)

    async def index_roots(
        self,
        roots: Optional[List[Path]] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IndexResult:
        """Discover markdown under ``roots`` and index it."""
        scan = await Scanner(self.config).scan(roots)
        return await self.index(scan.documents, None, progress_callback, cancel_event)

    def query(self, query: RAGQuery) -> List[RAGResult]:
        """Embed the query text (unless already embedded) and search."""
        if query.embedding is None:
            query.embedding = self.embedder.embed(query.text)
        return self.store.query(query)

    def clear(self) -> None:
        """Remove everything; rejected while an indexing run is active."""
        self.store.acquire_writer()
        try:
            self.store.clear()
        finally:
            self.store.release_writer()

    def stats(self) -> RAGStats:
        return self.store.get_stats()

    def close(self):
        """Clean up resources."""
        self._orchestrator.close()
        self.store.close()


def _print_progress(progress: IndexProgress) -> None:
    print(
        f"\r[{progress.completed}/{progress.total}] {progress.phase.value:<9} "
        f"{Path(progress.current_path).name[:60]:<60}",
        end="",
        flush=True,
    )


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Incremental markdown RAG indexer")
    parser.add_argument("--db", help="Path to the index database")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Index markdown under the given roots")
    index_parser.add_argument("roots", nargs="*", help="Directories to index")
    index_parser.add_argument("--target-chunk-size", type=int, help="Target tokens per chunk")
    index_parser.add_argument("--min-chunk-size", type=int, help="Merge chunks smaller than this")

    query_parser = subparsers.add_parser("query", help="Search the index")
    query_parser.add_argument("text", help="Query text")
    query_parser.add_argument("--limit", type=int, default=10, help="Maximum results")
    query_parser.add_argument("--file", action="append", dest="files", help="Restrict to file path")
    query_parser.add_argument("--heading", help="Restrict to heading path (and below)")
    query_parser.add_argument("--type", help="Restrict to frontmatter type")
    query_parser.add_argument("--tag", help="Restrict to frontmatter tag")

    subparsers.add_parser("stats", help="Show index statistics")
    subparsers.add_parser("clear", help="Remove all indexed content")

    args = parser.parse_args()
    if args.command == "query" and args.limit < 1:
        parser.error("--limit must be at least 1")

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    config = IndexerConfig.from_env()
    if args.db:
        config.db_path = Path(args.db)
    if args.command == "index":
        if args.roots:
            config.roots = [Path(r) for r in args.roots]
        if args.target_chunk_size:
            config.target_chunk_size = args.target_chunk_size
        if args.min_chunk_size is not None:
            config.min_chunk_size = args.min_chunk_size
    config.__post_init__()

    async def _main():
        service = RAGService(config)
        try:
            if args.command == "index":
                cancel = asyncio.Event()
                try:
                    asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.set)
                except NotImplementedError:
                    pass  # Windows: fall back to KeyboardInterrupt
                result = await service.index_roots(
                    progress_callback=_print_progress, cancel_event=cancel
                )
                print(f"\n{result}")
                for failed in result.errors:
                    print(f"  failed: {failed.file_path}: {failed.error}")

            elif args.command == "query":
                results = service.query(RAGQuery(
                    text=args.text,
                    limit=args.limit,
                    file_paths=args.files,
                    heading_path=args.heading,
                    type=args.type,
                    tag=args.tag,
                ))
                for rank, hit in enumerate(results, start=1):
                    chunk = hit.chunk
                    location = f"{chunk.file_path}:{chunk.start_line}-{chunk.end_line}"
                    print(f"{rank:>2}. [{hit.score:.3f}] {location}")
                    if chunk.heading_path:
                        print(f"    {chunk.heading_path}")
                    print(f"    {chunk.content[:200]!r}")

            elif args.command == "stats":
                stats = service.stats()
                print(f"Documents: {stats.total_resources}")
                print(f"Chunks:    {stats.total_chunks}")
                print(f"Model:     {stats.embedding_model or '-'}")

            elif args.command == "clear":
                service.clear()
                print("Index cleared.")

        except KeyboardInterrupt:
            print("\nStopped.")
        finally:
            service.close()

    asyncio.run(_main())


if __name__ == "__main__":
    main()

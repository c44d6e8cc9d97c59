"""
RAG Index Package - Incremental markdown indexing for retrieval.

Modules:
    - config: Centralized configuration and chunking budget
    - tokens: Token counting strategies
    - scanner: Markdown discovery and frontmatter parsing
    - hasher: SHA-256 document checksums, chunk identity
    - chunker: Heading-aware, token-bounded chunking
    - embedder: sentence-transformers batch embedding
    - store: SQLite chunk store (admin + query)
    - protocols: Provider interfaces the orchestrator depends on
    - orchestrator: Main entry point (index, query, clear, stats)

Indexing Flow:
    Scan → Checksum (skip unchanged) → Chunk → Embed → Replace atomically

Usage:
    from ragindex import RAGService

    service = RAGService()
    result = await service.index_roots()
"""

from .orchestrator import IndexingOrchestrator, RAGService

__all__ = ["IndexingOrchestrator", "RAGService"]

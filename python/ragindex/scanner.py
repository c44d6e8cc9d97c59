"""
Scanner - Markdown document discovery.

Walks the configured roots, reads every markdown file, fingerprints its
raw bytes and parses its YAML frontmatter. Produces the Document set the
orchestrator indexes; files that cannot be read are logged and left out.
"""

import asyncio
import logging
import os
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import yaml

from .config import get_config, IndexerConfig
from .errors import FrontmatterError, handle_error
from .hasher import ChecksumTracker
from .models import Document, DocumentMetadata


logger = logging.getLogger(__name__)


FRONTMATTER_PATTERN = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


@dataclass
class ScanResult:
    """Result of scanning the document roots."""
    documents: List[Document]
    error_count: int
    duration_seconds: float


def read_frontmatter(text: str) -> Tuple[DocumentMetadata, int]:
    """
    Parse and validate the leading YAML frontmatter block of a document.

    Returns the metadata and the number of lines the block spans, or
    empty metadata and 0 when there is no frontmatter.

    Raises:
        FrontmatterError: If the block is not valid YAML or has
            fields of the wrong type
    """
    match = FRONTMATTER_PATTERN.match(text)
    if not match:
        return DocumentMetadata(), 0

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise FrontmatterError([f"invalid YAML: {e}"]) from e

    block = match.group(0)
    line_count = block.count("\n") + (0 if block.endswith("\n") else 1)
    return DocumentMetadata.from_frontmatter(data), line_count


def parse_frontmatter(text: str) -> DocumentMetadata:
    """Frontmatter metadata only; see read_frontmatter."""
    return read_frontmatter(text)[0]


def load_document(path: Path, tracker: Optional[ChecksumTracker] = None) -> Document:
    """
    Read one markdown file into a Document.

    The checksum covers the raw bytes. Invalid frontmatter is logged and
    the document is kept with empty metadata; its block is then chunked
    as ordinary content.

    Raises:
        OSError: If the file cannot be read
        UnicodeDecodeError: If the file is not UTF-8
    """
    tracker = tracker or ChecksumTracker()
    raw = path.read_bytes()
    content = raw.decode("utf-8")
    modified_at = datetime.fromtimestamp(path.stat().st_mtime)

    try:
        metadata, frontmatter_lines = read_frontmatter(content)
    except FrontmatterError as e:
        handle_error(e, str(path), "frontmatter")
        metadata, frontmatter_lines = DocumentMetadata(), 0

    return Document(
        file_path=str(path),
        content=content,
        checksum=tracker.compute(raw),
        modified_at=modified_at,
        metadata=metadata,
        frontmatter_lines=frontmatter_lines,
    )


class Scanner:
    """
    Markdown discovery over the configured roots.

    Directory traversal is sequential; file reads run on a thread pool
    bounded by ``scanner_concurrency``.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._tracker = ChecksumTracker()

    async def scan(self, roots: List[Path] | None = None) -> ScanResult:
        """
        Scan directories and load every markdown file found.

        Args:
            roots: Directories to scan (default: config.roots)

        Returns:
            ScanResult with documents sorted by path
        """
        roots = roots or self.config.roots
        start_time = time.monotonic()

        paths: List[Path] = []
        for root in roots:
            if not root.exists():
                logger.warning(f"Root directory not found: {root}")
                continue
            paths.extend(self._walk(root))
        paths.sort()

        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor(
            max_workers=self.config.scanner_concurrency,
            thread_name_prefix="scanner",
        ) as executor:
            results = await asyncio.gather(
                *(loop.run_in_executor(executor, load_document, p, self._tracker) for p in paths),
                return_exceptions=True,
            )

        documents: List[Document] = []
        errors = 0
        for path, result in zip(paths, results):
            if isinstance(result, Document):
                documents.append(result)
            else:
                handle_error(result, str(path), "load_document")
                errors += 1

        duration = time.monotonic() - start_time
        logger.info(f"Scanned {len(documents)} documents in {duration:.1f}s ({errors} unreadable)")

        return ScanResult(documents=documents, error_count=errors, duration_seconds=duration)

    def _walk(self, directory: Path) -> List[Path]:
        """Recursively collect markdown files, skipping hidden and vendored dirs."""
        try:
            entries = list(os.scandir(directory))
        except OSError as e:
            handle_error(e, str(directory), "scan_directory")
            return []

        found: List[Path] = []
        subdirs: List[Path] = []

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not self._should_skip_dir(entry.name):
                        subdirs.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    if self._is_markdown(entry.name):
                        found.append(Path(entry.path))
            except OSError as e:
                handle_error(e, entry.path, "scan_entry")

        for subdir in subdirs:
            found.extend(self._walk(subdir))

        return found

    def _should_skip_dir(self, name: str) -> bool:
        """Check if a directory should be skipped."""
        if name.startswith("."):
            return True
        return name in self.config.skip_dirs

    def _is_markdown(self, name: str) -> bool:
        if name.startswith("."):
            return False
        return Path(name).suffix.lower() in self.config.markdown_extensions


async def scan_documents(
    roots: List[Path] | None = None,
    config: IndexerConfig | None = None,
) -> ScanResult:
    """
    Convenience function to discover documents.

    Usage:
        result = await scan_documents([Path("docs")])
        for doc in result.documents:
            print(doc.file_path, doc.checksum)
    """
    scanner = Scanner(config)
    return await scanner.scan(roots)

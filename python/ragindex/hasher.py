"""
Hasher - Content fingerprints for change detection and chunk identity.

Document checksums are SHA-256 over raw bytes: they are persisted and
compared across runs, so they must be stable and collision resistant.
Chunk content hashes use xxHash, which is much faster and only needs to
distinguish chunks within one document.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import xxhash


@dataclass(frozen=True)
class ChecksumComparison:
    """Result of comparing a fresh checksum against the stored one."""
    changed: bool
    is_new: bool = False


class ChecksumTracker:
    """
    Computes and compares document checksums.

    A document whose checksum matches the stored one is never re-chunked
    or re-embedded; this is what makes re-indexing incremental.
    """

    READ_SIZE = 65536

    def compute(self, data: bytes | str) -> str:
        """SHA-256 hex digest of raw bytes (str is encoded as UTF-8)."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        return hashlib.sha256(data).hexdigest()

    def compute_file(self, path: Path) -> str:
        """SHA-256 hex digest of a file, read in 64KB blocks."""
        hasher = hashlib.sha256()
        with open(path, "rb") as f:
            while block := f.read(self.READ_SIZE):
                hasher.update(block)
        return hasher.hexdigest()

    def compare(self, new_checksum: str, stored_checksum: Optional[str]) -> ChecksumComparison:
        """
        Compare checksums.

        Args:
            new_checksum: Checksum of the document as discovered now
            stored_checksum: Checksum from the last committed index, or
                None if the document was never indexed

        Returns:
            ChecksumComparison; ``is_new`` is set when nothing was stored
        """
        if stored_checksum is None:
            return ChecksumComparison(changed=True, is_new=True)
        return ChecksumComparison(changed=new_checksum != stored_checksum)


def content_hash(text: str) -> str:
    """Fast fingerprint of chunk text (xxh64 hex digest)."""
    return xxhash.xxh64(text.encode("utf-8")).hexdigest()


def make_chunk_id(file_path: str, ordinal: int, chunk_hash: str) -> str:
    """
    Deterministic chunk id.

    A pure function of (file_path, ordinal, content hash): re-chunking
    identical content yields identical ids, so repeated runs never
    create duplicate rows.
    """
    key = f"{file_path}\x00{ordinal}\x00{chunk_hash}".encode("utf-8")
    return hashlib.sha256(key).hexdigest()[:32]

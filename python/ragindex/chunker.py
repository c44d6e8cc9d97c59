"""
Chunker - Heading-aware, token-bounded markdown chunking.

Splits a document into sections at markdown headings, then packs each
section's paragraphs greedily into chunks that stay under the hard
token limit (model limit scaled by the padding factor).

Oversized paragraphs are cut at line, then sentence, then fixed-width
window boundaries; those chunks are marked ``synthetic``.

Every source line belongs to exactly one chunk: heading lines and blank
separators are attributed to the chunk that follows them, trailing lines
to the last chunk. The only exception is a single overlong line, whose
synthetic pieces all report that line.

Callers pass the number of leading frontmatter lines found at discovery;
those lines are never chunked and count as gap lines of the first chunk.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import List, Optional

from .config import ChunkingConfig
from .errors import ChunkingError
from .models import ChunkingResult, ChunkStats, RawChunk


logger = logging.getLogger(__name__)


HEADING_PATTERN = re.compile(r"^ {0,3}(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$")
FENCE_PATTERN = re.compile(r"^ {0,3}(```|~~~)")
SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")

PARAGRAPH_SEPARATOR = "\n\n"


@dataclass
class _Section:
    """Lines between one heading and the next (body excludes the heading)."""
    index: int
    heading_path: Optional[str]
    heading_level: Optional[int]
    body_start: int         # 0-based, inclusive
    body_end: int = 0       # 0-based, exclusive


@dataclass
class _Unit:
    """A paragraph or a piece of one, with its 1-based source lines."""
    text: str
    first_line: int
    last_line: int
    synthetic: bool = False


@dataclass
class _Span:
    """Character range of a unit's text, with its 1-based source lines."""
    start: int
    end: int
    first_line: int
    last_line: int


@dataclass
class _Piece:
    """A chunk under construction."""
    units: List[_Unit]
    section: _Section

    @property
    def content(self) -> str:
        return PARAGRAPH_SEPARATOR.join(u.text for u in self.units)


class Chunker:
    """
    Splits one document's text into ordered, token-bounded chunks.

    Stateless apart from its config; safe to reuse across documents.
    """

    def __init__(self, config: ChunkingConfig):
        self.config = config
        self._counter = config.token_counter
        self._limit = config.hard_limit

    def chunk(self, text: str, skip_lines: int = 0) -> ChunkingResult:
        """
        Chunk a document.

        Args:
            text: Full markdown text of the document
            skip_lines: Leading lines that hold frontmatter

        Returns:
            ChunkingResult with chunks in source order and token stats

        Raises:
            ChunkingError: If some content cannot fit the token limit
        """
        try:
            return self._chunk(text, skip_lines)
        except ChunkingError:
            raise
        except Exception as e:
            raise ChunkingError(f"unexpected failure while chunking: {e}") from e

    def _chunk(self, text: str, skip_lines: int) -> ChunkingResult:
        lines = self._split_lines(text)
        start = min(max(skip_lines, 0), len(lines))
        if not any(line.strip() for line in lines[start:]):
            return ChunkingResult(chunks=[], stats=ChunkStats())

        pieces: List[_Piece] = []
        for section in self._parse_sections(lines, start):
            pieces.extend(self._pack_section(lines, section))

        pieces = self._merge_small(pieces)
        chunks = self._to_chunks(pieces, total_lines=len(lines))
        stats = self._compute_stats(chunks)

        logger.debug(
            f"Chunked {len(lines)} lines into {stats.total_chunks} chunks "
            f"(avg {stats.average_tokens:.0f}, max {stats.max_tokens} tokens)"
        )
        return ChunkingResult(chunks=chunks, stats=stats)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @staticmethod
    def _split_lines(text: str) -> List[str]:
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        lines = text.split("\n")
        if text.endswith("\n"):
            lines.pop()
        return lines

    @staticmethod
    def _parse_sections(lines: List[str], start: int = 0) -> List[_Section]:
        """
        Build the flat section list of the heading tree.

        Each section's body runs to the next heading of any level, so
        nested headings start their own section. Lines inside fenced
        code blocks are never headings.
        """
        sections: List[_Section] = []
        stack: List[tuple[int, str]] = []
        current = _Section(index=0, heading_path=None, heading_level=None, body_start=start)
        in_fence = False

        for i in range(start, len(lines)):
            line = lines[i]
            if FENCE_PATTERN.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue

            match = HEADING_PATTERN.match(line)
            if not match:
                continue

            current.body_end = i
            sections.append(current)

            level = len(match.group(1))
            title = match.group(2).strip()
            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, title))

            current = _Section(
                index=len(sections),
                heading_path=" > ".join(t for _, t in stack),
                heading_level=level,
                body_start=i + 1,
            )

        current.body_end = len(lines)
        sections.append(current)
        return sections

    @staticmethod
    def _paragraphs(lines: List[str], section: _Section) -> List[_Unit]:
        """Blank-line-delimited blocks of a section body."""
        units: List[_Unit] = []
        block_start: Optional[int] = None

        for i in range(section.body_start, section.body_end):
            if lines[i].strip():
                if block_start is None:
                    block_start = i
            elif block_start is not None:
                units.append(_Unit("\n".join(lines[block_start:i]), block_start + 1, i))
                block_start = None

        if block_start is not None:
            units.append(_Unit(
                "\n".join(lines[block_start:section.body_end]),
                block_start + 1,
                section.body_end,
            ))
        return units

    # ------------------------------------------------------------------
    # Packing
    # ------------------------------------------------------------------

    def _count(self, text: str) -> int:
        return self._counter.count(text)

    def _pack_section(self, lines: List[str], section: _Section) -> List[_Piece]:
        """Greedily accumulate a section's paragraphs into chunks."""
        pieces: List[_Piece] = []
        buffer: List[_Unit] = []
        buffer_tokens = 0

        def flush():
            nonlocal buffer, buffer_tokens
            if buffer:
                pieces.append(_Piece(buffer, section))
            buffer = []
            buffer_tokens = 0

        for unit in self._paragraphs(lines, section):
            unit_tokens = self._count(unit.text)

            if unit_tokens > self._limit:
                flush()
                for sub in self._split_oversized(unit):
                    pieces.append(_Piece([sub], section))
                continue

            if buffer:
                candidate = PARAGRAPH_SEPARATOR.join([u.text for u in buffer] + [unit.text])
                over_limit = self._count(candidate) > self._limit
                target_reached = (
                    buffer_tokens >= self.config.target_chunk_size
                    and unit_tokens >= self.config.min_chunk_size
                )
                if over_limit or target_reached:
                    flush()

            buffer.append(unit)
            buffer_tokens = self._count(PARAGRAPH_SEPARATOR.join(u.text for u in buffer))

        flush()
        return pieces

    def _split_oversized(self, unit: _Unit) -> List[_Unit]:
        """
        Cut a unit that exceeds the limit into synthetic sub-units.

        Tries line boundaries first (keeps line ranges disjoint), then
        sentence boundaries, then fixed-width windows. Packed parts are
        sliced from the source text, so separators survive unchanged.
        """
        text = unit.text
        spans: List[_Span] = []

        if "\n" in text:
            offset = 0
            for k, line in enumerate(text.split("\n")):
                line_no = unit.first_line + k
                spans.append(_Span(offset, offset + len(line), line_no, line_no))
                offset += len(line) + 1
            return self._pack_spans(text, spans)

        start = 0
        for match in SENTENCE_BOUNDARY.finditer(text):
            spans.append(_Span(start, match.start(), unit.first_line, unit.last_line))
            start = match.end()
        spans.append(_Span(start, len(text), unit.first_line, unit.last_line))
        spans = [s for s in spans if s.end > s.start]
        if len(spans) > 1:
            return self._pack_spans(text, spans)

        return self._split_windows(unit)

    def _pack_spans(self, source: str, spans: List[_Span]) -> List[_Unit]:
        packed: List[_Unit] = []
        current: Optional[_Span] = None

        def emit(span: _Span):
            packed.append(_Unit(source[span.start:span.end], span.first_line, span.last_line))

        for span in spans:
            text = source[span.start:span.end]
            if self._count(text) > self._limit:
                if current is not None:
                    emit(current)
                    current = None
                packed.extend(self._split_oversized(_Unit(text, span.first_line, span.last_line)))
                continue

            if current is None:
                current = span
                continue

            if self._count(source[current.start:span.end]) <= self._limit:
                current = _Span(current.start, span.end, current.first_line, span.last_line)
            else:
                emit(current)
                current = span

        if current is not None:
            emit(current)

        return [replace(u, synthetic=True) for u in packed if u.text.strip()]

    def _split_windows(self, unit: _Unit) -> List[_Unit]:
        """Fallback: longest prefixes that fit the limit, left to right."""
        text = unit.text
        windows: List[_Unit] = []
        start = 0

        while start < len(text):
            end = self._longest_fit(text, start)
            if end == start:
                raise ChunkingError(
                    f"line {unit.first_line}: a single character exceeds "
                    f"the {self._limit}-token limit"
                )
            piece = text[start:end]
            if piece.strip():
                windows.append(_Unit(piece, unit.first_line, unit.last_line, synthetic=True))
            start = end

        return windows

    def _longest_fit(self, text: str, start: int) -> int:
        """Largest end such that text[start:end] fits (counter is monotonic)."""
        lo, hi = start, len(text)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._count(text[start:mid]) <= self._limit:
                lo = mid
            else:
                hi = mid - 1
        return lo

    def _merge_small(self, pieces: List[_Piece]) -> List[_Piece]:
        """Fold chunks under min_chunk_size into their predecessor in the same section."""
        if not self.config.min_chunk_size:
            return pieces

        merged: List[_Piece] = []
        for piece in pieces:
            if (
                merged
                and merged[-1].section is piece.section
                and self._count(piece.content) < self.config.min_chunk_size
            ):
                combined = _Piece(merged[-1].units + piece.units, piece.section)
                if self._count(combined.content) <= self._limit:
                    merged[-1] = combined
                    continue
            merged.append(piece)
        return merged

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    @staticmethod
    def _to_chunks(pieces: List[_Piece], total_lines: int) -> List[RawChunk]:
        chunks: List[RawChunk] = []
        prev_end = 0

        for k, piece in enumerate(pieces):
            first = piece.units[0].first_line
            last = piece.units[-1].last_line

            # Gap lines before this chunk belong to it; a shared line only
            # happens between synthetic pieces of one overlong line.
            start = prev_end + 1 if first > prev_end else first
            end = max(last, total_lines) if k == len(pieces) - 1 else last

            chunks.append(RawChunk(
                content=piece.content,
                start_line=start,
                end_line=end,
                heading_path=piece.section.heading_path,
                heading_level=piece.section.heading_level,
                synthetic=any(u.synthetic for u in piece.units),
            ))
            prev_end = end

        return chunks

    def _compute_stats(self, chunks: List[RawChunk]) -> ChunkStats:
        if not chunks:
            return ChunkStats()
        counts = self._counter.count_batch([c.content for c in chunks])
        return ChunkStats(
            total_chunks=len(chunks),
            average_tokens=sum(counts) / len(counts),
            max_tokens=max(counts),
            min_tokens=min(counts),
        )


def chunk_document(text: str, config: ChunkingConfig, skip_lines: int = 0) -> ChunkingResult:
    """
    Convenience function to chunk a single document.

    Usage:
        result = chunk_document(markdown, ChunkingConfig(512, 8191))
        for chunk in result.chunks:
            print(chunk.heading_path, chunk.start_line, chunk.end_line)
    """
    return Chunker(config).chunk(text, skip_lines)

"""
Scanner Tests - Verify markdown discovery and frontmatter parsing.

Tests:
- Basic file discovery
- Skip pattern filtering (hidden files, node_modules, non-markdown)
- Frontmatter validation
- Error handling for unreadable files
"""

import hashlib

import pytest

from ragindex.errors import FrontmatterError
from ragindex.models import DocumentMetadata
from ragindex.scanner import Scanner, load_document, parse_frontmatter, read_frontmatter, scan_documents


class TestScanner:
    """Tests for the Scanner class."""

    @pytest.mark.asyncio
    async def test_finds_markdown_files(self, sample_docs, test_config):
        """Scanner finds markdown files, including nested ones."""
        result = await Scanner(test_config).scan()

        paths = [d.file_path for d in result.documents]

        assert str(sample_docs["guide"]) in paths
        assert str(sample_docs["nested"]) in paths
        assert paths == sorted(paths)

    @pytest.mark.asyncio
    async def test_skips_non_markdown(self, sample_docs, test_config):
        result = await Scanner(test_config).scan()

        paths = {d.file_path for d in result.documents}
        assert str(sample_docs["txt"]) not in paths

    @pytest.mark.asyncio
    async def test_skips_hidden_files(self, sample_docs, test_config):
        """Scanner skips hidden files (starting with .)."""
        result = await Scanner(test_config).scan()

        paths = {d.file_path for d in result.documents}
        assert str(sample_docs["hidden"]) not in paths

    @pytest.mark.asyncio
    async def test_skips_node_modules(self, sample_docs, test_config):
        """Scanner skips node_modules directories."""
        result = await Scanner(test_config).scan()

        paths = {d.file_path for d in result.documents}
        assert str(sample_docs["node_modules"]) not in paths
        assert len(paths) == 2

    @pytest.mark.asyncio
    async def test_checksum_of_raw_bytes(self, sample_docs, test_config):
        result = await Scanner(test_config).scan()

        guide = next(d for d in result.documents if d.file_path == str(sample_docs["guide"]))
        assert guide.checksum == hashlib.sha256(sample_docs["guide"].read_bytes()).hexdigest()

    @pytest.mark.asyncio
    async def test_frontmatter_metadata(self, sample_docs, test_config):
        result = await Scanner(test_config).scan()

        guide = next(d for d in result.documents if d.file_path == str(sample_docs["guide"]))
        assert guide.metadata == DocumentMetadata(title="Guide", type="howto", tags=("setup", "python"))

    @pytest.mark.asyncio
    async def test_undecodable_file_counted(self, sample_docs, test_config):
        """Files that are not UTF-8 are left out and counted."""
        bad = sample_docs["guide"].parent / "latin1.md"
        bad.write_bytes(b"# Caf\xe9\n")

        result = await Scanner(test_config).scan()

        assert str(bad) not in {d.file_path for d in result.documents}
        assert result.error_count == 1

    @pytest.mark.asyncio
    async def test_missing_root(self, temp_dir, test_config):
        """A missing root yields no documents, not an error."""
        result = await Scanner(test_config).scan([temp_dir / "nope"])

        assert result.documents == []
        assert result.error_count == 0

    @pytest.mark.asyncio
    async def test_scan_documents_function(self, sample_docs, test_config):
        """scan_documents convenience function works."""
        result = await scan_documents(config=test_config)

        assert len(result.documents) == 2


class TestFrontmatter:
    """Tests for frontmatter parsing and validation."""

    def test_no_frontmatter(self):
        assert parse_frontmatter("# Title\n\nBody") == DocumentMetadata()

    def test_tags_as_comma_string(self):
        metadata = parse_frontmatter("---\ntags: a, b ,c\n---\nBody")

        assert metadata.tags == ("a", "b", "c")

    def test_unknown_keys_ignored(self):
        metadata = parse_frontmatter("---\ntitle: T\nauthor: someone\n---\n")

        assert metadata.title == "T"

    def test_wrong_types_rejected(self):
        with pytest.raises(FrontmatterError) as exc_info:
            parse_frontmatter("---\ntitle: 5\ntags: {a: 1}\n---\nBody")

        assert len(exc_info.value.problems) == 2

    def test_invalid_yaml_rejected(self):
        with pytest.raises(FrontmatterError):
            parse_frontmatter("---\ntitle: [unclosed\n---\nBody")

    def test_invalid_frontmatter_keeps_document(self, temp_dir):
        """A document with bad frontmatter is still loaded, without metadata."""
        path = temp_dir / "bad.md"
        path.write_text("---\ntags: 42\n---\n# Still indexed\n")

        document = load_document(path)

        assert document.metadata == DocumentMetadata()
        assert "# Still indexed" in document.content
        assert document.frontmatter_lines == 0

    @pytest.mark.parametrize("text", [
        "---\ntitle: T\n---\nBody",
        "---\r\ntitle: T\r\n---\r\nBody",
        "---\ntitle: T\n---",
    ])
    def test_frontmatter_line_count(self, text):
        assert read_frontmatter(text) == (DocumentMetadata(title="T"), 3)

    def test_leading_thematic_breaks_are_not_frontmatter(self, temp_dir):
        """Prose between two --- lines is not YAML metadata and is not skipped."""
        path = temp_dir / "breaks.md"
        path.write_text("---\n\nImportant intro paragraph.\n\n---\n\n# H\n\nbody text")

        document = load_document(path)

        assert document.metadata == DocumentMetadata()
        assert document.frontmatter_lines == 0

    def test_valid_frontmatter_lines_recorded(self, temp_dir):
        path = temp_dir / "good.md"
        path.write_text("---\ntitle: Good\ntags: [x]\n---\n# Body\n")

        document = load_document(path)

        assert document.metadata.title == "Good"
        assert document.frontmatter_lines == 4

"""
Token Counter Tests - Verify the byte-length heuristic.
"""

import pytest

from ragindex.tokens import ApproximateTokenCounter, TokenCounter


class TestApproximateTokenCounter:
    """Tests for ApproximateTokenCounter."""

    @pytest.mark.parametrize("text,expected", [
        ("", 0),
        ("a", 1),
        ("abcd", 1),
        ("abcde", 2),
        ("éé", 1),          # 4 UTF-8 bytes
        ("\U0001F600", 1),  # 4 UTF-8 bytes
        ("ééé", 2),         # 6 UTF-8 bytes
    ])
    def test_count(self, text, expected):
        """Counts are ceil(utf8 bytes / 4)."""
        assert ApproximateTokenCounter().count(text) == expected

    def test_count_batch_elementwise(self):
        counter = ApproximateTokenCounter()
        texts = ["", "abcd", "abcdefgh", "x"]

        assert counter.count_batch(texts) == [counter.count(t) for t in texts]
        assert counter.count_batch([]) == []

    def test_monotonic_in_length(self):
        """Longer prefixes never count fewer tokens."""
        counter = ApproximateTokenCounter()
        text = "heading → café " * 10
        counts = [counter.count(text[:i]) for i in range(len(text) + 1)]

        assert counts == sorted(counts)

    def test_satisfies_protocol(self):
        counter = ApproximateTokenCounter()

        assert isinstance(counter, TokenCounter)
        assert counter.name == "approximate"

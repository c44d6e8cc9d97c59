"""
Token Counting - Approximate token estimation for chunk sizing.

Exact tokenization is model-specific and slow, so chunk budgets are
checked with a cheap estimate. Downstream size checks always apply the
padding factor to absorb the estimation error.
"""

import math
from typing import List, Protocol, runtime_checkable


@runtime_checkable
class TokenCounter(Protocol):
    """Protocol for token estimators. Implementations must be pure."""

    @property
    def name(self) -> str:
        """Identifier for this counter."""
        ...

    def count(self, text: str) -> int:
        """Estimated token count of ``text`` (0 for empty text)."""
        ...

    def count_batch(self, texts: List[str]) -> List[int]:
        """Element-wise ``count``; result length equals input length."""
        ...


class ApproximateTokenCounter:
    """
    Byte-length heuristic: one token per 4 UTF-8 bytes, rounded up.

    Never negative, 0 for empty input, and monotonic in byte length.
    """

    BYTES_PER_TOKEN = 4

    @property
    def name(self) -> str:
        return "approximate"

    def count(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text.encode("utf-8")) / self.BYTES_PER_TOKEN)

    def count_batch(self, texts: List[str]) -> List[int]:
        return [self.count(t) for t in texts]

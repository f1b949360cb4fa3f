"""
Approximate token counting for context budgets.

By default a character heuristic is used (~4 characters per token), which is
all the codex budget needs.  When ``generation.token_encoding`` names a
tiktoken encoding (e.g. ``"cl100k_base"``) the counter delegates to its BPE
encoder instead.
"""

from __future__ import annotations

from typing import Any

import tiktoken


class TokenCounter:
    """
    Estimate token counts for text and message lists.

    Parameters
    ----------
    encoding:
        Name passed to ``tiktoken.get_encoding``.  ``None`` selects the
        character heuristic.
    """

    def __init__(self, encoding: str | None = None) -> None:
        self.encoding = encoding
        self._enc: Any = tiktoken.get_encoding(encoding) if encoding else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def count_text(self, text: str) -> int:
        """Return the estimated token count for a plain string."""
        if not text:
            return 0
        if self._enc is not None:
            return len(self._enc.encode(text))
        # Heuristic: roughly 4 characters per token for English text.
        return max(1, len(text) // 4)

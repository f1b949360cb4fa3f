"""
Removal of inline thinking spans from model output.

Some locally served reasoning models (DeepSeek R1 and Qwen distillations in
particular) do not use a separate reasoning field but wrap their thoughts in
``<think>...</think>`` inside the visible content.  :class:`ThinkTagFilter`
strips those spans from a stream, including tags that straddle chunk
boundaries.
"""

from __future__ import annotations

import re

THINK_TAGS: tuple[str, ...] = ("think", "thinking", "reasoning")

_SPAN_RE = re.compile(
    r"<(%s)>.*?</\1>\s*" % "|".join(THINK_TAGS),
    re.DOTALL | re.IGNORECASE,
)


def strip_thinking(text: str) -> str:
    """Remove complete thinking spans from a finished text."""
    if not text or "<" not in text:
        return text
    return _SPAN_RE.sub("", text)


class ThinkTagFilter:
    """
    Streaming counterpart of :func:`strip_thinking`.

    ``feed`` returns the visible part of each increment; text that might be
    the start of a tag is held back until the next increment disambiguates
    it.  ``flush`` releases held-back text at the end of the stream (an
    unterminated thinking span is dropped).
    """

    def __init__(self) -> None:
        self._pending = ""
        self._closing: str | None = None

    def feed(self, text: str) -> str:
        self._pending += text
        out: list[str] = []
        while self._pending:
            if self._closing is not None:
                idx = self._pending.lower().find(self._closing)
                if idx < 0:
                    # Keep only a possible partial closing tag.
                    keep = len(self._closing) - 1
                    self._pending = self._pending[-keep:] if keep else ""
                    break
                self._pending = self._pending[idx + len(self._closing):].lstrip()
                self._closing = None
                continue

            idx = self._pending.find("<")
            if idx < 0:
                out.append(self._pending)
                self._pending = ""
                break
            out.append(self._pending[:idx])
            self._pending = self._pending[idx:]

            tag = self._match_opening(self._pending)
            if tag is None:
                if self._could_be_opening(self._pending):
                    break
                out.append(self._pending[0])
                self._pending = self._pending[1:]
                continue
            self._pending = self._pending[len(tag) + 2:]
            self._closing = f"</{tag}>"
        return "".join(out)

    def flush(self) -> str:
        rest = "" if self._closing is not None else self._pending
        self._pending = ""
        self._closing = None
        return rest

    @staticmethod
    def _match_opening(text: str) -> str | None:
        lowered = text.lower()
        for tag in THINK_TAGS:
            if lowered.startswith(f"<{tag}>"):
                return tag
        return None

    @staticmethod
    def _could_be_opening(text: str) -> bool:
        lowered = text.lower()
        return any(f"<{tag}>".startswith(lowered) for tag in THINK_TAGS)

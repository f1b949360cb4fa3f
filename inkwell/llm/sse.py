"""
Incremental decoding of streamed responses.

Two wire formats are handled:

* Server-Sent Events -- ``data: {json}`` lines, blank-line separated, with an
  optional ``data: [DONE]`` sentinel.
* Newline-delimited JSON -- one JSON object per line (Ollama).

Network reads do not respect line boundaries, so bytes are buffered until a
full line is available.  A complete line that still fails to parse is
skipped (see :func:`decode_payload`); it never aborts the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class LineDecoder:
    """
    Turns arbitrary byte (or str) fragments into complete lines.

    Multi-byte UTF-8 sequences split across reads are recombined as well.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes | str) -> list[str]:
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data
        lines: list[str] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            lines.append(line.rstrip("\r"))
        return lines

    def flush(self) -> list[str]:
        """Return whatever is left once the body has ended."""
        self._buffer += self._decoder.decode(b"", final=True)
        rest, self._buffer = self._buffer, ""
        rest = rest.rstrip("\r")
        return [rest] if rest.strip() else []


def data_payload(line: str) -> str | None:
    """Return the payload of an SSE ``data:`` line, ``None`` for other lines."""
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


def decode_payload(payload: str) -> dict | None:
    """
    Parse one event payload.

    Malformed fragments return ``None`` and the caller skips them.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream fragment: %s", payload[:200])
        return None
    if not isinstance(data, dict):
        logger.debug("Skipping non-object stream fragment: %s", payload[:200])
        return None
    return data


async def iter_sse_events(
    chunks: AsyncIterable[bytes | str],
) -> AsyncIterator[dict]:
    """Yield parsed ``data:`` payloads until ``[DONE]`` or end of body."""
    decoder = LineDecoder()
    async for raw in chunks:
        for line in decoder.feed(raw):
            payload = data_payload(line)
            if payload is None or not payload:
                continue
            if payload == DONE_SENTINEL:
                return
            data = decode_payload(payload)
            if data is not None:
                yield data

    for line in decoder.flush():
        payload = data_payload(line)
        if not payload or payload == DONE_SENTINEL:
            continue
        data = decode_payload(payload)
        if data is not None:
            yield data


async def iter_ndjson_events(
    chunks: AsyncIterable[bytes | str],
) -> AsyncIterator[dict]:
    """Yield one parsed object per non-empty line."""
    decoder = LineDecoder()
    async for raw in chunks:
        for line in decoder.feed(raw):
            line = line.strip()
            if not line:
                continue
            data = decode_payload(line)
            if data is not None:
                yield data

    for line in decoder.flush():
        data = decode_payload(line.strip())
        if data is not None:
            yield data

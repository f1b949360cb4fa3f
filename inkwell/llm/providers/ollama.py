"""
Ollama provider.

Streams responses from a local Ollama instance via its ``/api/chat``
endpoint.  The stream is newline-delimited JSON rather than SSE; each line
is a complete object and ``done: true`` ends the stream.

Dependencies: ``httpx``.
"""

from __future__ import annotations

import logging

from inkwell.config import ProviderKind
from inkwell.llm.providers.base import CallPlan, Provider
from inkwell.llm.types import Completion, StreamChunk

logger = logging.getLogger(__name__)


class OllamaProvider(Provider):
    kind = ProviderKind.OLLAMA
    stream_format = "ndjson"
    filter_think_tags = True

    def endpoint(self, plan: CallPlan, stream: bool) -> str:
        return f"{self.base_url}/api/chat"

    def build_body(self, plan: CallPlan, stream: bool) -> dict:
        body: dict = {
            "model": plan.model_id,
            "messages": [
                {"role": m.role, "content": m.content} for m in plan.messages
            ],
            "stream": stream,
            "options": {
                "temperature": plan.temperature,
                "top_p": plan.top_p,
                "num_predict": plan.max_tokens,
            },
        }
        logger.info(
            "REQUEST: provider=ollama model=%s num_predict=%d messages=%d",
            plan.model_id,
            plan.max_tokens,
            len(body["messages"]),
        )
        return body

    def parse_completion(self, data: dict) -> Completion:
        message = data.get("message") or {}
        return Completion(
            text=message.get("content") or data.get("response") or "",
            finish_reason=data.get("done_reason"),
            reasoning=message.get("thinking") or "",
        )

    def parse_event(self, data: dict) -> list[StreamChunk]:
        message = data.get("message") or {}
        chunks: list[StreamChunk] = []

        thinking = message.get("thinking")
        if thinking:
            chunks.append(StreamChunk(text=thinking, is_reasoning=True))

        content = message.get("content") or data.get("response")
        if content:
            chunks.append(StreamChunk(text=content))

        if data.get("done"):
            chunks.append(StreamChunk(done=True, finish_reason=data.get("done_reason")))
        return chunks

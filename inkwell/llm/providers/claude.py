"""
Anthropic Messages API provider.

System messages are lifted into the top-level ``system`` field.  Streaming
uses typed SSE events; ``thinking_delta`` blocks are reasoning, only
``text_delta`` blocks are visible text.

Dependencies: ``httpx``.
"""

from __future__ import annotations

import logging

from inkwell.config import ProviderKind
from inkwell.llm.errors import ErrorCategory, TransportError
from inkwell.llm.providers.base import CallPlan, Provider
from inkwell.llm.reasoning import MODE_BUDGET
from inkwell.llm.types import Completion, StreamChunk

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"

_STOP_REASONS = {"max_tokens": "length", "end_turn": "stop", "stop_sequence": "stop"}


class ClaudeProvider(Provider):
    kind = ProviderKind.CLAUDE

    def endpoint(self, plan: CallPlan, stream: bool) -> str:
        return f"{self.base_url}/messages"

    def build_headers(self, stream: bool) -> dict[str, str]:
        headers = super().build_headers(stream)
        headers["x-api-key"] = self._config.api_key
        headers["anthropic-version"] = API_VERSION
        return headers

    def build_body(self, plan: CallPlan, stream: bool) -> dict:
        system_parts = [m.content for m in plan.messages if m.role == "system"]
        messages = [
            {"role": m.role, "content": m.content}
            for m in plan.messages
            if m.role != "system"
        ]
        body: dict = {
            "model": plan.model_id,
            "messages": messages,
            "max_tokens": plan.max_tokens,
            "stream": stream,
        }
        if system_parts:
            body["system"] = "\n\n".join(system_parts)

        if plan.reasoning.mode == MODE_BUDGET:
            # Extended thinking rejects custom sampling parameters.
            body["thinking"] = {
                "type": "enabled",
                "budget_tokens": plan.reasoning.budget_tokens,
            }
        else:
            body["temperature"] = plan.temperature
            body["top_p"] = plan.top_p
            if self._config.top_k > 0:
                body["top_k"] = self._config.top_k

        logger.info(
            "REQUEST: provider=claude model=%s max_tokens=%d messages=%d",
            plan.model_id,
            plan.max_tokens,
            len(messages),
        )
        return body

    def parse_completion(self, data: dict) -> Completion:
        text_parts: list[str] = []
        thinking_parts: list[str] = []
        for block in data.get("content") or []:
            if block.get("type") == "text":
                text_parts.append(block.get("text") or "")
            elif block.get("type") == "thinking":
                thinking_parts.append(block.get("thinking") or "")
        stop = data.get("stop_reason")
        return Completion(
            text="".join(text_parts),
            finish_reason=_STOP_REASONS.get(stop, stop),
            reasoning="".join(thinking_parts),
        )

    def parse_event(self, data: dict) -> list[StreamChunk]:
        event_type = data.get("type")

        if event_type == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "thinking_delta":
                return [StreamChunk(text=delta.get("thinking") or "", is_reasoning=True)]
            if delta.get("text"):
                return [StreamChunk(text=delta["text"])]
            return []

        if event_type == "message_delta":
            stop = (data.get("delta") or {}).get("stop_reason")
            if stop:
                return [StreamChunk(finish_reason=_STOP_REASONS.get(stop, stop))]
            return []

        if event_type == "message_stop":
            return [StreamChunk(done=True)]

        if event_type == "error":
            error = data.get("error") or {}
            message = error.get("message") or "Claude stream error"
            category = ErrorCategory.BACKEND_UNAVAILABLE
            if error.get("type") == "invalid_request_error":
                category = ErrorCategory.INVALID_REQUEST
            raise TransportError(message, category=category)

        return []

"""
OpenAI-compatible chat-completion providers.

:class:`OpenAICompatProvider` works with any endpoint that speaks the OpenAI
``/v1/chat/completions`` wire protocol -- LM Studio, vLLM, LocalAI, etc.
:class:`OpenRouterProvider` adds OpenRouter's attribution headers and its
``reasoning`` request field.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import logging

from inkwell.config import ProviderKind
from inkwell.llm.providers.base import CallPlan, Provider
from inkwell.llm.types import Completion, StreamChunk

logger = logging.getLogger(__name__)

# Delta fields carrying hidden reasoning rather than answer text.
REASONING_FIELDS: tuple[str, ...] = ("reasoning", "reasoning_content", "thinking")


class OpenAICompatProvider(Provider):
    kind = ProviderKind.OPENAI_COMPATIBLE
    filter_think_tags = True

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def endpoint(self, plan: CallPlan, stream: bool) -> str:
        if self.base_url.endswith("/v1"):
            return f"{self.base_url}/chat/completions"
        return f"{self.base_url}/v1/chat/completions"

    def build_headers(self, stream: bool) -> dict[str, str]:
        headers = super().build_headers(stream)
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        return headers

    def build_body(self, plan: CallPlan, stream: bool) -> dict:
        body: dict = {
            "model": plan.model_id,
            "messages": [
                {"role": m.role, "content": m.content} for m in plan.messages
            ],
            "max_tokens": plan.max_tokens,
            "temperature": plan.temperature,
            "top_p": plan.top_p,
            "stream": stream,
        }
        logger.info(
            "REQUEST: provider=%s model=%s max_tokens=%d messages=%d",
            self.kind.value,
            plan.model_id,
            plan.max_tokens,
            len(body["messages"]),
        )
        return body

    # ------------------------------------------------------------------
    # Response decoding
    # ------------------------------------------------------------------

    def parse_completion(self, data: dict) -> Completion:
        choices = data.get("choices") or []
        if not choices:
            return Completion(text="")
        choice = choices[0]
        message = choice.get("message") or {}
        reasoning = ""
        for key in REASONING_FIELDS:
            if isinstance(message.get(key), str):
                reasoning = message[key]
                break
        return Completion(
            text=message.get("content") or "",
            finish_reason=choice.get("finish_reason"),
            reasoning=reasoning,
        )

    def parse_event(self, data: dict) -> list[StreamChunk]:
        choices = data.get("choices")
        if not choices:
            return []

        choice = choices[0]
        delta = choice.get("delta") or {}
        chunks: list[StreamChunk] = []

        for key in REASONING_FIELDS:
            value = delta.get(key)
            if isinstance(value, str) and value:
                chunks.append(StreamChunk(text=value, is_reasoning=True))

        content = delta.get("content")
        if content:
            chunks.append(StreamChunk(text=content))

        finish_reason = choice.get("finish_reason")
        if finish_reason is not None:
            chunks.append(StreamChunk(done=True, finish_reason=finish_reason))
        return chunks


class OpenRouterProvider(OpenAICompatProvider):
    kind = ProviderKind.OPENROUTER
    filter_think_tags = False

    def endpoint(self, plan: CallPlan, stream: bool) -> str:
        return f"{self.base_url}/chat/completions"

    def build_headers(self, stream: bool) -> dict[str, str]:
        headers = super().build_headers(stream)
        if self._app_url:
            headers["HTTP-Referer"] = self._app_url
        headers["X-Title"] = self._app_title
        return headers

    def build_body(self, plan: CallPlan, stream: bool) -> dict:
        body = super().build_body(plan, stream)
        reasoning = plan.reasoning.to_wire()
        if reasoning is not None:
            body["reasoning"] = reasoning
        return body

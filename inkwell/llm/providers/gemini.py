"""
Google Gemini (Generative Language API) provider.

Uses ``models/{model}:generateContent`` and, for streaming,
``models/{model}:streamGenerateContent?alt=sse``.  Parts flagged
``thought: true`` are reasoning and never reach the caller.

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

SAFETY_CATEGORIES: dict[str, str] = {
    "harassment": "HARM_CATEGORY_HARASSMENT",
    "hate_speech": "HARM_CATEGORY_HATE_SPEECH",
    "sexually_explicit": "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "dangerous_content": "HARM_CATEGORY_DANGEROUS_CONTENT",
    "civic_integrity": "HARM_CATEGORY_CIVIC_INTEGRITY",
}

_FINISH_REASONS = {"MAX_TOKENS": "length", "STOP": "stop"}


class GeminiProvider(Provider):
    kind = ProviderKind.GEMINI

    def endpoint(self, plan: CallPlan, stream: bool) -> str:
        model = plan.model_id
        if model.startswith("models/"):
            model = model[len("models/"):]
        if stream:
            return f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse"
        return f"{self.base_url}/models/{model}:generateContent"

    def build_headers(self, stream: bool) -> dict[str, str]:
        headers = super().build_headers(stream)
        headers["x-goog-api-key"] = self._config.api_key
        return headers

    def _safety_settings(self) -> list[dict]:
        configured = self._config.extra.get("safety_settings") or {}
        return [
            {"category": category, "threshold": configured.get(key, "BLOCK_NONE")}
            for key, category in SAFETY_CATEGORIES.items()
        ]

    def build_body(self, plan: CallPlan, stream: bool) -> dict:
        system_parts: list[dict] = []
        contents: list[dict] = []
        for m in plan.messages:
            if m.role == "system":
                system_parts.append({"text": m.content})
                continue
            role = "model" if m.role == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": m.content}]})

        generation_config: dict = {
            "temperature": plan.temperature,
            "topP": plan.top_p,
            "maxOutputTokens": plan.max_tokens,
        }
        if plan.reasoning.mode == MODE_BUDGET:
            generation_config["thinkingConfig"] = {
                "thinkingBudget": plan.reasoning.budget_tokens,
            }

        body: dict = {
            "contents": contents,
            "generationConfig": generation_config,
            "safetySettings": self._safety_settings(),
        }
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}

        logger.info(
            "REQUEST: provider=gemini model=%s max_tokens=%d contents=%d",
            plan.model_id,
            plan.max_tokens,
            len(contents),
        )
        return body

    # ------------------------------------------------------------------
    # Response decoding
    # ------------------------------------------------------------------

    @staticmethod
    def _check_blocked(data: dict) -> None:
        if data.get("candidates"):
            return
        reason = (data.get("promptFeedback") or {}).get("blockReason")
        if reason:
            raise TransportError(
                f"The request was blocked by Gemini's content filter ({reason}).",
                category=ErrorCategory.INVALID_REQUEST,
            )

    def _split_parts(self, data: dict) -> tuple[str, str, str | None]:
        candidates = data.get("candidates") or []
        if not candidates:
            return "", "", None
        candidate = candidates[0]
        visible: list[str] = []
        thoughts: list[str] = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            text = part.get("text") or ""
            if part.get("thought"):
                thoughts.append(text)
            else:
                visible.append(text)
        reason = candidate.get("finishReason")
        return "".join(visible), "".join(thoughts), _FINISH_REASONS.get(reason, reason)

    def parse_completion(self, data: dict) -> Completion:
        self._check_blocked(data)
        text, thoughts, finish_reason = self._split_parts(data)
        return Completion(text=text, finish_reason=finish_reason, reasoning=thoughts)

    def parse_event(self, data: dict) -> list[StreamChunk]:
        self._check_blocked(data)
        text, thoughts, finish_reason = self._split_parts(data)
        chunks: list[StreamChunk] = []
        if thoughts:
            chunks.append(StreamChunk(text=thoughts, is_reasoning=True))
        if text:
            chunks.append(StreamChunk(text=text))
        if finish_reason:
            # Gemini has no sentinel; the body simply ends after this event.
            chunks.append(StreamChunk(finish_reason=finish_reason))
        return chunks

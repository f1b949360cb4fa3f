"""
Reasoning ("thinking") mode policy.

Pure functions -- no I/O.  A model is *reasoning capable* when its
identifier contains one of :data:`REASONING_CAPABLE_PATTERNS`
(case-insensitive substring match).  The list holds OpenRouter-style
``vendor/model`` identifiers as well as the bare ids the Claude and Gemini
APIs expect.  A capable model is only invoked in reasoning mode when the
caller selected its reasoning variant, i.e. the identifier ends with
:data:`REASONING_SUFFIX`.

Two configuration styles exist:

* **effort** -- a qualitative level (``"high"``, ``"medium"``, ``"low"``),
  used by OpenAI and xAI models.
* **budget** -- an explicit token budget, scaled 1:1 with the requested
  output size and clamped to ``[MIN_TOKENS, MAX_TOKENS]``.  Reasoning
  tokens come *on top of* the visible output, so the total ceiling sent to
  the backend is ``budget + output_tokens``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

REASONING_CAPABLE_PATTERNS: tuple[str, ...] = (
    # xAI Grok (effort)
    "x-ai/grok-4",
    "x-ai/grok-3",
    # DeepSeek thinking models (budget)
    "deepseek/deepseek-r1",
    "deepseek/deepseek-v3",
    # Google Gemini thinking models (budget)
    "google/gemini-2.5-flash",
    "google/gemini-2.5-pro",
    # Anthropic Claude (budget)
    "anthropic/claude-3.5-sonnet",
    "anthropic/claude-3-5-sonnet",
    "anthropic/claude-sonnet-4",
    "anthropic/claude-opus-4",
    # OpenAI reasoning models (effort)
    "openai/o1",
    "openai/o3",
    "openai/gpt-5",
    # Qwen thinking models (budget)
    "qwen/qwen3",
    # Native Anthropic and Google identifiers, as sent to their own APIs (budget)
    "claude-3-7-sonnet",
    "claude-sonnet-4",
    "claude-opus-4",
    "gemini-2.5-flash",
    "gemini-2.5-pro",
)

EFFORT_BASED_PATTERNS: tuple[str, ...] = (
    "openai/",
    "x-ai/grok",
)

REASONING_SUFFIX = ":reasoning"

MIN_TOKENS = 1024
MAX_TOKENS = 32000
RATIO = 1.0

DEFAULT_EFFORT = "high"

MODE_EFFORT = "effort"
MODE_BUDGET = "budget"
MODE_NONE = "none"


@dataclass(frozen=True)
class ReasoningDecision:
    """How a single request should be decorated for reasoning."""

    base_model_id: str
    is_reasoning: bool = False
    mode: str = MODE_NONE
    effort: str | None = None
    budget_tokens: int | None = None

    def request_max_tokens(self, output_tokens: int) -> int:
        """Total token ceiling to send for *output_tokens* of visible text."""
        if self.mode == MODE_BUDGET and self.budget_tokens:
            return self.budget_tokens + output_tokens
        return output_tokens

    def to_wire(self) -> dict | None:
        """OpenRouter-style ``reasoning`` request field (``None`` if unused)."""
        if self.mode == MODE_EFFORT:
            return {"effort": self.effort}
        if self.mode == MODE_BUDGET:
            return {"max_tokens": self.budget_tokens}
        return None


def _contains_any(model_id: str, patterns: tuple[str, ...]) -> bool:
    lowered = model_id.lower()
    return any(p.lower() in lowered for p in patterns)


def supports_reasoning(model_id: str) -> bool:
    return _contains_any(model_id, REASONING_CAPABLE_PATTERNS)


def uses_effort_reasoning(model_id: str) -> bool:
    return _contains_any(model_id, EFFORT_BASED_PATTERNS)


def is_reasoning_variant(model_id: str) -> bool:
    return model_id.endswith(REASONING_SUFFIX)


def strip_reasoning_suffix(model_id: str) -> str:
    if is_reasoning_variant(model_id):
        return model_id[: -len(REASONING_SUFFIX)]
    return model_id


def reasoning_budget(output_tokens: int) -> int:
    """
    Reasoning budget for *output_tokens* of visible output.

    Monotonically non-decreasing in *output_tokens* and always within
    ``[MIN_TOKENS, MAX_TOKENS]``.
    """
    scaled = math.ceil(max(output_tokens, 0) * RATIO)
    return max(MIN_TOKENS, min(scaled, MAX_TOKENS))


def classify(model_id: str, output_tokens: int = 500) -> ReasoningDecision:
    """
    Decide the reasoning configuration for *model_id*.

    Without the reasoning suffix the model is used as-is.  With the suffix,
    the suffix is stripped and -- if the base model is reasoning capable --
    effort or budget mode is selected.
    """
    if not is_reasoning_variant(model_id):
        return ReasoningDecision(base_model_id=model_id)

    base = strip_reasoning_suffix(model_id)
    if not supports_reasoning(base):
        return ReasoningDecision(base_model_id=base)

    if uses_effort_reasoning(base):
        return ReasoningDecision(
            base_model_id=base,
            is_reasoning=True,
            mode=MODE_EFFORT,
            effort=DEFAULT_EFFORT,
        )
    return ReasoningDecision(
        base_model_id=base,
        is_reasoning=True,
        mode=MODE_BUDGET,
        budget_tokens=reasoning_budget(output_tokens),
    )

"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field

from inkwell.llm.cancel import CancelToken


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass(frozen=True)
class ModelReference:
    """
    A model selection of the form ``"provider:modelId"``.

    *provider* is ``None`` when the raw string carried no recognised provider
    prefix; the registry then decides which configured provider takes it.
    *model_id* is opaque and passed through verbatim (apart from the
    ``:reasoning`` suffix, which the reasoning policy strips).
    """

    provider: str | None
    model_id: str

    def __str__(self) -> str:
        if self.provider:
            return f"{self.provider}:{self.model_id}"
        return self.model_id


@dataclass
class StreamChunk:
    """
    A single decoded increment of a streaming response.

    Only chunks with ``is_reasoning == False`` are forwarded to callers.
    *done* is ``True`` when the provider signalled the end of the stream.
    """

    text: str = ""
    is_reasoning: bool = False
    done: bool = False
    finish_reason: str | None = None


@dataclass
class Completion:
    """The final text of a non-streaming call."""

    text: str
    finish_reason: str | None = None
    reasoning: str = ""
    provider: str = ""
    model: str = ""

    @property
    def truncated(self) -> bool:
        """True when the backend stopped at the output token ceiling."""
        return self.finish_reason == "length"


@dataclass
class GenerationRequest:
    """
    One generation call.

    Either *prompt* or *messages* must be given; *messages* wins when both
    are present.  ``None`` sampling parameters fall back to the provider's
    configured defaults.  *requested_provider* picks the provider for a
    bare model id that carries no ``provider:`` prefix.
    """

    entity_id: str
    model: ModelReference
    prompt: str = ""
    messages: list[Message] = field(default_factory=list)
    max_output_tokens: int = 500
    temperature: float | None = None
    top_p: float | None = None
    cancel_token: CancelToken = field(default_factory=CancelToken)
    word_count: int | None = None
    requested_provider: str | None = None

    def wire_messages(self) -> list[Message]:
        if self.messages:
            return list(self.messages)
        return [Message(role="user", content=self.prompt)]

    def prompt_for_logging(self) -> str:
        if self.prompt or not self.messages:
            return self.prompt
        return "\n\n".join(
            f"[{m.role.upper()}]: {m.content}" for m in self.messages
        )

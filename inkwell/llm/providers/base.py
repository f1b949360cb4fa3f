"""Abstract base class for LLM providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from inkwell.config import PROVIDER_DISPLAY_NAMES, ProviderConfig, ProviderKind
from inkwell.llm.reasoning import ReasoningDecision
from inkwell.llm.registry import Resolution
from inkwell.llm.sse import iter_ndjson_events, iter_sse_events
from inkwell.llm.thinking import ThinkTagFilter, strip_thinking
from inkwell.llm.types import Completion, GenerationRequest, Message, StreamChunk


@dataclass
class CallPlan:
    """A request together with its resolved provider and reasoning decision."""

    request: GenerationRequest
    resolution: Resolution
    reasoning: ReasoningDecision

    @property
    def config(self) -> ProviderConfig:
        return self.resolution.config

    @property
    def model_id(self) -> str:
        return self.reasoning.base_model_id

    @property
    def max_tokens(self) -> int:
        return self.reasoning.request_max_tokens(self.request.max_output_tokens)

    @property
    def temperature(self) -> float:
        if self.request.temperature is not None:
            return self.request.temperature
        return self.config.temperature

    @property
    def top_p(self) -> float:
        if self.request.top_p is not None:
            return self.request.top_p
        return self.config.top_p

    @property
    def messages(self) -> list[Message]:
        return self.request.wire_messages()


class Provider(ABC):
    """
    A provider encapsulates the wire protocol of a single backend.

    Subclasses describe the request (endpoint, headers, body) and decode
    responses; the shared ``complete`` and ``stream`` methods perform the
    HTTP exchange over the injected ``httpx.AsyncClient``.  HTTP failures
    surface as ``httpx`` exceptions and are classified by the orchestrator.
    """

    kind: ProviderKind
    stream_format: str = "sse"
    filter_think_tags: bool = False

    def __init__(
        self,
        config: ProviderConfig,
        client: httpx.AsyncClient,
        *,
        app_title: str = "Inkwell",
        app_url: str = "",
    ) -> None:
        self._config = config
        self._client = client
        self._app_title = app_title
        self._app_url = app_url

    @property
    def name(self) -> str:
        """Human-readable provider name (e.g. ``"OpenRouter"``)."""
        return PROVIDER_DISPLAY_NAMES[self.kind]

    @property
    def base_url(self) -> str:
        return self._config.base_url.rstrip("/")

    # ------------------------------------------------------------------
    # Wire description
    # ------------------------------------------------------------------

    @abstractmethod
    def endpoint(self, plan: CallPlan, stream: bool) -> str:
        ...

    def build_headers(self, stream: bool) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers

    @abstractmethod
    def build_body(self, plan: CallPlan, stream: bool) -> dict:
        ...

    @abstractmethod
    def parse_completion(self, data: dict) -> Completion:
        """Convert a non-streaming response document into a ``Completion``."""
        ...

    @abstractmethod
    def parse_event(self, data: dict) -> list[StreamChunk]:
        """Convert one decoded stream event into zero or more chunks."""
        ...

    # ------------------------------------------------------------------
    # HTTP exchange
    # ------------------------------------------------------------------

    async def complete(self, plan: CallPlan) -> Completion:
        response = await self._client.post(
            self.endpoint(plan, False),
            json=self.build_body(plan, False),
            headers=self.build_headers(False),
        )
        response.raise_for_status()
        completion = self.parse_completion(response.json())
        if self.filter_think_tags:
            completion.text = strip_thinking(completion.text)
        return completion

    async def stream(self, plan: CallPlan) -> AsyncIterator[StreamChunk]:
        async with self._client.stream(
            "POST",
            self.endpoint(plan, True),
            json=self.build_body(plan, True),
            headers=self.build_headers(True),
        ) as response:
            if response.is_error:
                # Read the body so the error detail is available.
                await response.aread()
                response.raise_for_status()

            if self.stream_format == "ndjson":
                events = iter_ndjson_events(response.aiter_bytes())
            else:
                events = iter_sse_events(response.aiter_bytes())

            think = ThinkTagFilter() if self.filter_think_tags else None
            finished = False
            async for data in events:
                for chunk in self.parse_event(data):
                    if think is not None and not chunk.is_reasoning and chunk.text:
                        chunk.text = think.feed(chunk.text)
                    yield chunk
                    if chunk.done:
                        finished = True
                        break
                if finished:
                    break

            if think is not None:
                tail = think.flush()
                if tail:
                    yield StreamChunk(text=tail)

"""Provider implementations, one per :class:`~inkwell.config.ProviderKind`."""

from __future__ import annotations

import httpx

from inkwell.config import GenerationConfig, ProviderConfig, ProviderKind
from inkwell.llm.providers.base import CallPlan, Provider
from inkwell.llm.providers.claude import ClaudeProvider
from inkwell.llm.providers.gemini import GeminiProvider
from inkwell.llm.providers.ollama import OllamaProvider
from inkwell.llm.providers.openai_compat import OpenAICompatProvider, OpenRouterProvider

PROVIDER_CLASSES: dict[ProviderKind, type[Provider]] = {
    ProviderKind.OPENROUTER: OpenRouterProvider,
    ProviderKind.GEMINI: GeminiProvider,
    ProviderKind.CLAUDE: ClaudeProvider,
    ProviderKind.OLLAMA: OllamaProvider,
    ProviderKind.OPENAI_COMPATIBLE: OpenAICompatProvider,
}


def build_provider(
    kind: ProviderKind,
    config: ProviderConfig,
    client: httpx.AsyncClient,
    generation: GenerationConfig | None = None,
) -> Provider:
    generation = generation or GenerationConfig()
    return PROVIDER_CLASSES[kind](
        config,
        client,
        app_title=generation.app_title,
        app_url=generation.app_url,
    )


__all__ = [
    "CallPlan",
    "ClaudeProvider",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAICompatProvider",
    "OpenRouterProvider",
    "PROVIDER_CLASSES",
    "Provider",
    "build_provider",
]

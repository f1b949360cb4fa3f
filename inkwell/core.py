"""Wiring for a host application: one call builds the whole generation stack."""

from __future__ import annotations

from dataclasses import dataclass

from inkwell.config import ConfigSource
from inkwell.generation.coordinator import ConflictPolicy, GenerationCoordinator
from inkwell.llm.orchestrator import ClientFactory, RequestOrchestrator
from inkwell.llm.registry import ProviderRegistry
from inkwell.llm.request_log import RequestLogger
from inkwell.llm.token_counter import TokenCounter
from inkwell.story.beats import BeatGenerationService
from inkwell.story.context import ContextAssembler
from inkwell.story.scenes import SceneGenerationService
from inkwell.story.store import StoryStore


@dataclass
class GenerationCore:
    registry: ProviderRegistry
    orchestrator: RequestOrchestrator
    coordinator: GenerationCoordinator
    assembler: ContextAssembler
    scenes: SceneGenerationService
    beats: BeatGenerationService

    def close(self) -> None:
        self.coordinator.close()


def build_core(
    config_source: ConfigSource,
    store: StoryStore,
    request_logger: RequestLogger | None = None,
    client_factory: ClientFactory | None = None,
    on_conflict: str = ConflictPolicy.REJECT,
) -> GenerationCore:
    """
    Wire registry, orchestrator, coordinator and the story services.

    The token counter uses ``generation.token_encoding`` as configured at
    build time; everything else reads the configuration per call.
    """
    registry = ProviderRegistry(config_source)
    orchestrator = RequestOrchestrator(
        registry,
        request_logger=request_logger,
        client_factory=client_factory,
    )
    coordinator = GenerationCoordinator(orchestrator, on_conflict=on_conflict)
    counter = TokenCounter(config_source.current().generation.token_encoding)
    assembler = ContextAssembler(store, token_counter=counter)
    return GenerationCore(
        registry=registry,
        orchestrator=orchestrator,
        coordinator=coordinator,
        assembler=assembler,
        scenes=SceneGenerationService(coordinator, registry, assembler),
        beats=BeatGenerationService(coordinator, registry, assembler, store),
    )

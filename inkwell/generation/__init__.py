"""Generation coordination: one in-flight generation per entity."""

from inkwell.generation.coordinator import (
    TRUNCATION_NOTE,
    ConflictPolicy,
    GenerationCoordinator,
    GenerationRecord,
    GenerationState,
)

__all__ = [
    "TRUNCATION_NOTE",
    "ConflictPolicy",
    "GenerationCoordinator",
    "GenerationRecord",
    "GenerationState",
]

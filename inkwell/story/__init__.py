"""Story material: store interface, context assembly, scene and beat generation."""

from inkwell.story.context import (
    ContextAssembler,
    html_to_text,
    strip_embedded_images,
    truncate_text,
)
from inkwell.story.store import (
    CodexCategory,
    CodexEntry,
    InMemoryStoryStore,
    SceneContext,
    Story,
    StoryStore,
)

__all__ = [
    "CodexCategory",
    "CodexEntry",
    "ContextAssembler",
    "InMemoryStoryStore",
    "SceneContext",
    "Story",
    "StoryStore",
    "html_to_text",
    "strip_embedded_images",
    "truncate_text",
]

"""
Read-only view of story material consumed by generation.

The host application owns persistence; it hands the core a
:class:`StoryStore`.  A fresh read is taken at the start of every generation,
so entries may be stale across a single call but never within one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class CodexEntry:
    """
    One lore entry.

    ``metadata`` carries the free-form fields of the entry: ``aliases``
    (comma-separated string), ``storyRole``, ``customFields`` (list of
    ``{"name": ..., "value": ...}``), ``globalInclude`` and any other
    scalar value, which is rendered as its own tag.
    """

    id: str
    title: str
    content: str = ""
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    always_include: bool = False

    @property
    def aliases(self) -> list[str]:
        raw = self.metadata.get("aliases")
        if not isinstance(raw, str):
            return []
        return [a.strip() for a in raw.split(",") if a.strip()]

    @property
    def story_role(self) -> str:
        return str(self.metadata.get("storyRole") or "")


@dataclass
class CodexCategory:
    name: str
    entries: list[CodexEntry] = field(default_factory=list)


@dataclass
class SceneContext:
    """A scene selected by the user as extra generation context."""

    scene_id: str
    content: str
    title: str = ""
    chapter_id: str = ""


@dataclass
class Story:
    id: str
    title: str = ""
    system_message: str = ""
    beat_template: str = ""
    # "continue" keeps the story moving, anything else stays in the moment.
    beat_instruction: str = "continue"
    language: str = ""


class StoryStore(Protocol):
    def get_entries(self, scope: str) -> list[CodexCategory]: ...

    def get_scene(self, scene_id: str) -> str: ...

    def get_story(self, story_id: str) -> Story | None: ...

    def get_story_outline(self, story_id: str, scene_id: str | None = None) -> str: ...


class InMemoryStoryStore:
    """Dictionary-backed :class:`StoryStore` for embedding and tests."""

    def __init__(self) -> None:
        self._codex: dict[str, list[CodexCategory]] = {}
        self._scenes: dict[str, str] = {}
        self._stories: dict[str, Story] = {}
        self._outlines: dict[str, str] = {}

    def add_story(self, story: Story, outline: str = "") -> None:
        self._stories[story.id] = story
        if outline:
            self._outlines[story.id] = outline

    def add_entry(self, scope: str, category: str, entry: CodexEntry) -> None:
        categories = self._codex.setdefault(scope, [])
        for existing in categories:
            if existing.name == category:
                existing.entries.append(entry)
                return
        categories.append(CodexCategory(name=category, entries=[entry]))

    def set_scene(self, scene_id: str, content: str) -> None:
        self._scenes[scene_id] = content

    def get_entries(self, scope: str) -> list[CodexCategory]:
        return [
            CodexCategory(name=c.name, entries=list(c.entries))
            for c in self._codex.get(scope, [])
        ]

    def get_scene(self, scene_id: str) -> str:
        return self._scenes.get(scene_id, "")

    def get_story(self, story_id: str) -> Story | None:
        return self._stories.get(story_id)

    def get_story_outline(self, story_id: str, scene_id: str | None = None) -> str:
        return self._outlines.get(story_id, "")

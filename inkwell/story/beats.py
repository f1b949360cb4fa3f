"""
Beat generation -- streamed prose for a single story beat.

A beat prompt combines the story's system message, the relevant codex
entries, the story so far and the current scene (or the scenes the user
picked as custom context) into a structured ``<message role="...">``
template.  Text is streamed back through the coordinator with the beat id
as entity id.
"""

from __future__ import annotations

import logging
import math
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator

from inkwell.generation.coordinator import GenerationCoordinator
from inkwell.llm.errors import NoModelSelectedError, NoProviderConfiguredError, ValidationError
from inkwell.llm.registry import ProviderRegistry, parse_model_string
from inkwell.llm.types import GenerationRequest
from inkwell.prompts.structured import escape_xml, fill_template, parse_structured_prompt
from inkwell.prompts.templates import BEAT_TEMPLATE, DEFAULT_SYSTEM_MESSAGE
from inkwell.story.context import MAX_CUSTOM_CONTEXT_CHARS, ContextAssembler, clean_text, truncate_text
from inkwell.story.scenes import TRUNCATED_NOTE
from inkwell.story.store import CodexCategory, SceneContext, StoryStore
from inkwell.types import ContextBundle

logger = logging.getLogger(__name__)

MIN_BEAT_TOKENS = 3000
TOKENS_PER_WORD = 2.5

# Character ceilings for the current scene and the story outline.
MAX_BEAT_SCENE_CHARS = MAX_CUSTOM_CONTEXT_CHARS
MAX_STORY_OUTLINE_CHARS = MAX_CUSTOM_CONTEXT_CHARS


def beat_max_tokens(word_count: int) -> int:
    return max(math.ceil(word_count * TOKENS_PER_WORD), MIN_BEAT_TOKENS)


@dataclass
class CustomContext:
    selected_scenes: list[SceneContext] = field(default_factory=list)
    include_story_outline: bool = False


@dataclass
class BeatOptions:
    story_id: str
    scene_id: str | None = None
    model: str = ""
    word_count: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    custom_context: CustomContext | None = None


@dataclass
class BeatPrompt:
    text: str
    codex: ContextBundle
    scene_context: ContextBundle | None = None
    truncated: bool = False


def find_protagonist(categories: list[CodexCategory]) -> str | None:
    for category in categories:
        if category.name != "Characters":
            continue
        for entry in category.entries:
            if entry.story_role == "Protagonist":
                return entry.title
    return None


class BeatGenerationService:
    """
    Parameters
    ----------
    coordinator : GenerationCoordinator
        Runs the streams; the beat id is the entity id.
    registry : ProviderRegistry
        Provides configuration and the "any provider configured" check.
    assembler : ContextAssembler
        Builds codex and custom scene context.
    store : StoryStore
        Story settings, scene text and outline.
    """

    def __init__(
        self,
        coordinator: GenerationCoordinator,
        registry: ProviderRegistry,
        assembler: ContextAssembler,
        store: StoryStore,
    ) -> None:
        self._coordinator = coordinator
        self._registry = registry
        self._assembler = assembler
        self._store = store

    def is_generating(self, beat_id: str) -> bool:
        return self._coordinator.is_active(beat_id)

    def stop(self, beat_id: str) -> bool:
        return self._coordinator.cancel(beat_id)

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------

    def build_prompt(self, prompt: str, options: BeatOptions) -> BeatPrompt:
        story = self._store.get_story(options.story_id)
        word_count = options.word_count or self._registry.config.beat.word_count
        custom = options.custom_context

        scene_bundle: ContextBundle | None = None
        truncated = False
        if custom is not None and custom.selected_scenes:
            if custom.include_story_outline:
                # The outline carries the other scenes; only the current one
                # is spelled out in full.
                current = next(
                    (s for s in custom.selected_scenes if s.scene_id == options.scene_id), None
                )
                if current is not None:
                    scene_text = clean_text(current.content)
                else:
                    scene_text = self._current_scene_text(options.scene_id)
            else:
                scene_bundle = self._assembler.build_custom_context(custom.selected_scenes)
                scene_text = scene_bundle.rendered
                truncated = scene_bundle.truncated
        else:
            scene_text = self._current_scene_text(options.scene_id)

        if scene_bundle is None:
            scene_text, cut = truncate_text(scene_text, MAX_BEAT_SCENE_CHARS)
            if cut:
                logger.info("Current scene cut to %d characters for the beat prompt", MAX_BEAT_SCENE_CHARS)
                scene_text += TRUNCATED_NOTE
                truncated = True

        story_so_far = ""
        if options.scene_id and (custom is None or custom.include_story_outline):
            story_so_far, cut = truncate_text(
                clean_text(self._store.get_story_outline(options.story_id, options.scene_id)),
                MAX_STORY_OUTLINE_CHARS,
            )
            if cut:
                logger.info("Story outline cut to %d characters for the beat prompt", MAX_STORY_OUTLINE_CHARS)
                story_so_far += TRUNCATED_NOTE
                truncated = True

        codex = self._assembler.build_codex_context(
            options.story_id,
            scene_text,
            prompt,
            token_budget=self._registry.config.generation.codex_token_budget,
            include_all=False,
        )

        protagonist = find_protagonist(self._store.get_entries(options.story_id))
        point_of_view = (
            f'<pointOfView type="first person" character="{escape_xml(protagonist)}"/>'
            if protagonist else ""
        )
        system_message = (story.system_message if story else "") or DEFAULT_SYSTEM_MESSAGE
        template = (story.beat_template if story else "") or self._registry.config.beat.custom_prompt or BEAT_TEMPLATE
        writing_style = (
            "Continue the story"
            if story is None or story.beat_instruction == "continue"
            else "Stay in the moment"
        )

        text = fill_template(template, {
            "systemMessage": escape_xml(system_message),
            "codexEntries": codex.rendered,
            "storySoFar": escape_xml(story_so_far),
            "storyTitle": escape_xml((story.title if story else "") or "Story"),
            # Custom context is already rendered XML with escaped content.
            "sceneFullText": scene_text if scene_bundle is not None else escape_xml(scene_text),
            "wordCount": str(word_count),
            "prompt": escape_xml(prompt),
            "pointOfView": point_of_view,
            "writingStyle": escape_xml(writing_style),
        })
        return BeatPrompt(text=text, codex=codex, scene_context=scene_bundle, truncated=truncated)

    def _current_scene_text(self, scene_id: str | None) -> str:
        if not scene_id:
            return ""
        return clean_text(self._store.get_scene(scene_id))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(
        self, beat_id: str, prompt: str, options: BeatOptions
    ) -> AsyncIterator[str]:
        """
        Stream the beat's prose.

        Raises ``ValidationError`` for an empty prompt and
        ``ConfigurationError`` when no model or provider is configured, in
        both cases before anything is sent.
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Beat prompt is empty.")
        config = self._registry.config
        model = options.model or config.beat.model or config.selected_model
        if not model:
            raise NoModelSelectedError()
        if not self._registry.has_any_available():
            raise NoProviderConfiguredError()

        word_count = options.word_count or config.beat.word_count
        built = self.build_prompt(prompt, options)
        if built.codex.dropped_entry_count:
            logger.info(
                "Beat %s: %d of %d codex entries left out of the prompt",
                beat_id, built.codex.dropped_entry_count, built.codex.total_entry_count,
            )

        request = GenerationRequest(
            entity_id=beat_id,
            model=parse_model_string(model),
            prompt=built.text,
            messages=parse_structured_prompt(built.text),
            max_output_tokens=beat_max_tokens(word_count),
            temperature=options.temperature if options.temperature is not None else config.beat.temperature,
            top_p=options.top_p if options.top_p is not None else config.beat.top_p,
            word_count=word_count,
        )
        async with aclosing(self._coordinator.stream(request)) as chunks:
            async for text in chunks:
                yield text

"""
Scene-level generation: summaries, titles and staging notes.

Every operation cleans the scene text (images stripped, HTML flattened),
cuts it at a per-operation ceiling and runs one non-streaming generation
through the coordinator.  Empty content and missing configuration are
rejected up front, before any request is logged or sent.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from inkwell.config import InkwellConfig
from inkwell.generation.coordinator import GenerationCoordinator
from inkwell.llm.errors import NoModelSelectedError, NoProviderConfiguredError, ValidationError
from inkwell.llm.registry import ProviderRegistry, parse_model_string
from inkwell.llm.types import GenerationRequest
from inkwell.prompts.structured import escape_xml, fill_template, indent_block, parse_structured_prompt
from inkwell.prompts.templates import (
    SCENE_SUMMARY_TEMPLATE,
    SCENE_TITLE_TEMPLATE,
    STAGING_NOTES_TEMPLATE,
    TITLE_STYLE_INSTRUCTIONS,
    language_instruction,
)
from inkwell.story.context import ContextAssembler, clean_text, truncate_text
from inkwell.types import GenerationResult

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH_SUMMARY = 200_000
MAX_CONTENT_LENGTH_TITLE = 50_000
MAX_CONTENT_LENGTH_STAGING_NOTES = 100_000

SUMMARY_MAX_TOKENS = 3000
TITLE_MAX_TOKENS = 200
STAGING_NOTES_MAX_TOKENS = 2000

SUMMARY_BASE_WORDS = 120
SUMMARY_BASE_THRESHOLD = 2000
SUMMARY_INCREMENT_SIZE = 500
SUMMARY_INCREMENT_WORDS = 25

TRUNCATED_NOTE = "\n\n[Note: Content was truncated as it was too long]"
REDUNDANCY_NOTE = "Do not repeat information already captured in the codex context."

KIND_SUMMARY = "summary"
KIND_TITLE = "title"
KIND_STAGING_NOTES = "staging_notes"
SCENE_KINDS = (KIND_SUMMARY, KIND_TITLE, KIND_STAGING_NOTES)


@dataclass
class SummaryOptions:
    story_id: str
    scene_id: str
    scene_content: str
    scene_title: str = ""
    scene_word_count: int | None = None
    story_language: str = ""
    model: str = ""


@dataclass
class TitleOptions:
    scene_id: str
    scene_content: str
    model: str = ""


@dataclass
class StagingNotesOptions:
    scene_id: str
    scene_content: str
    story_language: str = ""
    model: str = ""


def summary_minimum_words(scene_word_count: int) -> int:
    """120 words up to 2000 scene words, plus 25 for every started 500 beyond."""
    if scene_word_count <= SUMMARY_BASE_THRESHOLD:
        return SUMMARY_BASE_WORDS
    increments = math.ceil((scene_word_count - SUMMARY_BASE_THRESHOLD) / SUMMARY_INCREMENT_SIZE)
    return SUMMARY_BASE_WORDS + increments * SUMMARY_INCREMENT_WORDS


def ensure_terminal_punctuation(text: str) -> str:
    text = text.strip()
    if text and not re.search(r"[.!?]$", text):
        text += "."
    return text


def strip_title_quotes(text: str) -> str:
    return re.sub(r'^\s*"|"\s*$', "", text.strip())


def scene_entity_id(scene_id: str, kind: str) -> str:
    return f"scene:{scene_id}:{kind}"


class SceneGenerationService:
    """
    Parameters
    ----------
    coordinator : GenerationCoordinator
        Runs the generations; entity ids are per scene and operation.
    registry : ProviderRegistry
        Used for the up-front "any provider configured" check.
    assembler : ContextAssembler
        Builds the codex context for summaries.
    """

    def __init__(
        self,
        coordinator: GenerationCoordinator,
        registry: ProviderRegistry,
        assembler: ContextAssembler,
    ) -> None:
        self._coordinator = coordinator
        self._registry = registry
        self._assembler = assembler

    @property
    def config(self) -> InkwellConfig:
        return self._registry.config

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def is_generating(self, scene_id: str, kind: str | None = None) -> bool:
        kinds = (kind,) if kind else SCENE_KINDS
        return any(self._coordinator.is_active(scene_entity_id(scene_id, k)) for k in kinds)

    def cancel(self, scene_id: str) -> bool:
        """Cancel every running operation for *scene_id*."""
        cancelled = False
        for kind in SCENE_KINDS:
            cancelled = self._coordinator.cancel(scene_entity_id(scene_id, kind)) or cancelled
        return cancelled

    def _preflight(self, content: str, empty_message: str, *models: str) -> str:
        if not content or not content.strip():
            raise ValidationError(empty_message)
        model = next((m for m in models if m), "") or self.config.selected_model
        if not model:
            raise NoModelSelectedError()
        if not self._registry.has_any_available():
            raise NoProviderConfiguredError()
        return model

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    async def generate_scene_summary(self, options: SummaryOptions) -> GenerationResult:
        settings = self.config.scene_summary
        model = self._preflight(
            options.scene_content,
            "Scene has no content to summarize.",
            options.model,
            settings.model,
        )

        content, truncated = truncate_text(clean_text(options.scene_content), MAX_CONTENT_LENGTH_SUMMARY)
        word_count = options.scene_word_count
        if word_count is None:
            word_count = len(content.split())
        minimum_words = summary_minimum_words(word_count)
        length_instruction = f"Aim for around {minimum_words} words."
        language = language_instruction(options.story_language)

        custom_instruction = (settings.custom_instruction or "").strip()
        prompt_context = "\n".join(p for p in (options.scene_title, custom_instruction) if p)
        codex = self._assembler.build_codex_context(
            options.story_id,
            content,
            prompt_context,
            token_budget=self.config.generation.codex_token_budget,
            include_all=True,
        )

        truncated_note = TRUNCATED_NOTE if truncated else ""
        custom_xml = (
            f"      <customInstruction>{escape_xml(custom_instruction)}</customInstruction>"
            if custom_instruction else ""
        )
        if settings.use_custom_prompt and settings.custom_prompt:
            prompt = fill_template(settings.custom_prompt, {
                "sceneTitle": options.scene_title or "Untitled",
                "sceneContent": content + truncated_note,
                "customInstruction": custom_instruction,
                "customInstructionXml": custom_xml.strip(),
                "languageInstructionXml": f"<languageRequirement>{escape_xml(language)}</languageRequirement>",
                "languageInstruction": language,
                "summaryWordCount": str(minimum_words),
                "lengthRequirement": length_instruction,
                "codexEntries": codex.rendered,
            })
            for required in (language, REDUNDANCY_NOTE, length_instruction):
                if required not in prompt:
                    prompt += f"\n\n{required}"
        else:
            prompt = fill_template(SCENE_SUMMARY_TEMPLATE, {
                "sceneTitle": escape_xml(options.scene_title or "Untitled"),
                "sceneContent": content,
                "truncatedNote": truncated_note,
                "codexEntries": indent_block(codex.rendered, "      "),
                "languageInstruction": f"<languageRequirement>{escape_xml(language)}</languageRequirement>",
                "lengthRequirement": f"<lengthRequirement>{escape_xml(length_instruction)}</lengthRequirement>",
                "additionalInstructions": custom_xml,
                "summaryWordCount": str(minimum_words),
            })

        request = GenerationRequest(
            entity_id=scene_entity_id(options.scene_id, KIND_SUMMARY),
            model=parse_model_string(model),
            prompt=prompt,
            messages=parse_structured_prompt(prompt),
            max_output_tokens=SUMMARY_MAX_TOKENS,
            temperature=settings.temperature,
            word_count=minimum_words,
        )
        result = await self._coordinator.generate(request, post_process=ensure_terminal_punctuation)
        result.entries_dropped = codex.dropped_entry_count
        result.total_entries = codex.total_entry_count
        return result

    # ------------------------------------------------------------------
    # Title
    # ------------------------------------------------------------------

    def _title_prompt(self, content: str) -> str:
        settings = self.config.scene_title
        values = {
            "maxWords": str(settings.max_words),
            "styleInstruction": TITLE_STYLE_INSTRUCTIONS.get(
                settings.style, TITLE_STYLE_INSTRUCTIONS["concise"]
            ),
            "genreInstruction": (
                "Consider the genre of the story when choosing the title."
                if settings.include_genre else ""
            ),
            "languageInstruction": (
                "Respond in English." if settings.language == "english" else "Respond in German."
            ),
            "customInstruction": f"\n{settings.custom_instruction}" if settings.custom_instruction else "",
            "sceneContent": content,
        }
        template = SCENE_TITLE_TEMPLATE
        if settings.use_custom_prompt and settings.custom_prompt:
            template = settings.custom_prompt
        return fill_template(template, values)

    async def generate_scene_title(self, options: TitleOptions) -> GenerationResult:
        settings = self.config.scene_title
        model = self._preflight(
            options.scene_content,
            "Scene has no content to generate title from.",
            options.model,
            settings.model,
        )
        content, _ = truncate_text(clean_text(options.scene_content), MAX_CONTENT_LENGTH_TITLE)

        request = GenerationRequest(
            entity_id=scene_entity_id(options.scene_id, KIND_TITLE),
            model=parse_model_string(model),
            prompt=self._title_prompt(content),
            max_output_tokens=TITLE_MAX_TOKENS,
            temperature=settings.temperature,
        )
        return await self._coordinator.generate(request, post_process=strip_title_quotes)

    # ------------------------------------------------------------------
    # Staging notes
    # ------------------------------------------------------------------

    async def generate_staging_notes(self, options: StagingNotesOptions) -> GenerationResult:
        settings = self.config.staging_notes
        model = self._preflight(
            options.scene_content,
            "No content before this beat to generate staging notes from.",
            options.model,
            settings.model,
        )
        content, _ = truncate_text(clean_text(options.scene_content), MAX_CONTENT_LENGTH_STAGING_NOTES)
        language = language_instruction(options.story_language)

        custom_instruction = (settings.custom_instruction or "").strip()
        custom_xml = (
            f"    <customInstruction>{escape_xml(custom_instruction)}</customInstruction>"
            if custom_instruction else ""
        )
        if settings.use_custom_prompt and settings.custom_prompt:
            prompt = fill_template(settings.custom_prompt, {
                "sceneContent": content,
                "languageInstruction": language,
                "customInstruction": custom_xml,
            })
        else:
            prompt = fill_template(STAGING_NOTES_TEMPLATE, {
                "sceneContent": content,
                "languageInstruction": f"<languageRequirement>{escape_xml(language)}</languageRequirement>",
                "customInstruction": custom_xml,
            })

        request = GenerationRequest(
            entity_id=scene_entity_id(options.scene_id, KIND_STAGING_NOTES),
            model=parse_model_string(model),
            prompt=prompt,
            messages=parse_structured_prompt(prompt),
            max_output_tokens=STAGING_NOTES_MAX_TOKENS,
            temperature=settings.temperature,
        )
        return await self._coordinator.generate(request)

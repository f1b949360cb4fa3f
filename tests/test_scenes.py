"""Tests for inkwell.story.scenes."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from inkwell.config import StaticConfigSource
from inkwell.generation.coordinator import GenerationCoordinator
from inkwell.llm.errors import NoModelSelectedError, NoProviderConfiguredError, ValidationError
from inkwell.llm.orchestrator import RequestOrchestrator
from inkwell.llm.registry import ProviderRegistry
from inkwell.story.context import ContextAssembler
from inkwell.story.scenes import (
    SceneGenerationService,
    StagingNotesOptions,
    SummaryOptions,
    TitleOptions,
    ensure_terminal_punctuation,
    scene_entity_id,
    strip_title_quotes,
    summary_minimum_words,
)
from inkwell.story.store import CodexEntry, InMemoryStoryStore
from tests.fakes import (
    FakeBackend,
    RecordingRequestLogger,
    completion_json,
    json_backend,
    make_config,
)

MODEL = "openrouter:mistralai/mistral-large"


def _service(backend, config=None, store=None):
    config = config or make_config(selected_model=MODEL)
    registry = ProviderRegistry(StaticConfigSource(config))
    request_log = RecordingRequestLogger()
    orchestrator = RequestOrchestrator(
        registry, request_logger=request_log, client_factory=backend.client_factory
    )
    store = store or InMemoryStoryStore()
    service = SceneGenerationService(
        GenerationCoordinator(orchestrator), registry, ContextAssembler(store)
    )
    return service, request_log


def _user_message(backend) -> str:
    messages = backend.last_json["messages"]
    return next(m["content"] for m in messages if m["role"] == "user")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("words, expected", [
    (0, 120),
    (2000, 120),
    (2001, 145),
    (2500, 145),
    (2501, 170),
    (4000, 220),
])
def test_summary_minimum_words(words, expected):
    assert summary_minimum_words(words) == expected


def test_ensure_terminal_punctuation():
    assert ensure_terminal_punctuation("She left") == "She left."
    assert ensure_terminal_punctuation("Really?  ") == "Really?"
    assert ensure_terminal_punctuation("") == ""


def test_strip_title_quotes():
    assert strip_title_quotes('"The Long Night"') == "The Long Night"
    assert strip_title_quotes('  "Gone" ') == "Gone"
    assert strip_title_quotes('A "quoted" word') == 'A "quoted" word'


# ---------------------------------------------------------------------------
# Preflight
# ---------------------------------------------------------------------------

class TestPreflight:
    @pytest.mark.parametrize("content", ["", "   \n  "])
    async def test_empty_scene_rejected_before_sending(self, content):
        backend = json_backend(completion_json("unused"))
        service, log = _service(backend)

        with pytest.raises(ValidationError) as exc_info:
            await service.generate_scene_summary(
                SummaryOptions(story_id="story-1", scene_id="s1", scene_content=content)
            )

        assert exc_info.value.message == "Scene has no content to summarize."
        assert backend.call_count == 0
        assert log.events == []

    async def test_empty_title_content(self):
        backend = json_backend(completion_json("unused"))
        service, _ = _service(backend)
        with pytest.raises(ValidationError, match="generate title"):
            await service.generate_scene_title(TitleOptions(scene_id="s1", scene_content=""))
        assert backend.call_count == 0

    async def test_no_model_selected(self):
        backend = json_backend(completion_json("unused"))
        service, log = _service(backend, make_config())
        with pytest.raises(NoModelSelectedError):
            await service.generate_staging_notes(
                StagingNotesOptions(scene_id="s1", scene_content="Text.")
            )
        assert log.events == []

    async def test_no_provider_configured(self):
        backend = json_backend(completion_json("unused"))
        service, log = _service(backend, make_config(openrouter=False, selected_model=MODEL))
        with pytest.raises(NoProviderConfiguredError):
            await service.generate_scene_title(TitleOptions(scene_id="s1", scene_content="Text."))
        assert backend.call_count == 0
        assert log.events == []


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

class TestSummary:
    async def test_success(self):
        store = InMemoryStoryStore()
        store.add_entry("story-1", "Characters", CodexEntry(id="c1", title="Mara", content="Smuggler."))
        store.add_entry("story-1", "Locations", CodexEntry(id="l1", title="Lighthouse"))
        backend = json_backend(completion_json("  Mara reaches the lighthouse  "))
        service, log = _service(backend, store=store)

        result = await service.generate_scene_summary(SummaryOptions(
            story_id="story-1",
            scene_id="s1",
            scene_content="<p>Mara climbed the stairs.</p>",
            scene_title="Ascent",
            story_language="de",
        ))

        assert result.success
        assert result.text == "Mara reaches the lighthouse."
        assert result.entries_dropped == 0
        assert result.total_entries == 2

        body = backend.last_json
        assert body["max_tokens"] == 3000
        assert [m["role"] for m in body["messages"]] == ["system", "user"]
        user = _user_message(backend)
        assert "Mara climbed the stairs." in user
        assert "<p>" not in user
        assert '<scene title="Ascent">' in user
        assert 'name="Mara"' in user
        assert 'name="Lighthouse"' in user
        assert "Aim for around 120 words." in user
        assert "Antworte auf Deutsch." in user
        assert log.entries[0].meta["entity_id"] == scene_entity_id("s1", "summary")

    async def test_long_scene_is_cut(self):
        backend = json_backend(completion_json("Done."))
        service, _ = _service(backend)

        await service.generate_scene_summary(SummaryOptions(
            story_id="story-1", scene_id="s1", scene_content="word " * 50_000,
        ))

        user = _user_message(backend)
        assert "[Note: Content was truncated as it was too long]" in user
        # 50 000 words counted from the (cut) text.
        assert "Aim for around" in user

    async def test_custom_prompt_gets_required_instructions(self):
        config = make_config(selected_model=MODEL)
        config.scene_summary.use_custom_prompt = True
        config.scene_summary.custom_prompt = "Summarize {sceneTitle}: {sceneContent}"
        backend = json_backend(completion_json("Short."))
        service, _ = _service(backend, config)

        await service.generate_scene_summary(SummaryOptions(
            story_id="story-1", scene_id="s1", scene_content="Rain fell.", scene_title="Storm",
        ))

        user = _user_message(backend)
        assert user.startswith("Summarize Storm: Rain fell.")
        assert "Do not repeat information already captured in the codex context." in user
        assert "Aim for around 120 words." in user

    async def test_failure_is_a_result(self):
        backend = json_backend({"error": {"message": "quota"}}, status_code=429)
        service, _ = _service(backend)

        result = await service.generate_scene_summary(
            SummaryOptions(story_id="story-1", scene_id="s1", scene_content="Text.")
        )

        assert not result.success
        assert result.error == "Rate limit reached. Please wait a moment and try again."


# ---------------------------------------------------------------------------
# Title and staging notes
# ---------------------------------------------------------------------------

class TestTitle:
    async def test_quotes_removed(self):
        backend = json_backend(completion_json('"Night Watch"'))
        service, _ = _service(backend)

        result = await service.generate_scene_title(
            TitleOptions(scene_id="s1", scene_content="The guards stood still.")
        )

        assert result.text == "Night Watch"
        body = backend.last_json
        assert body["max_tokens"] == 200
        assert body["temperature"] == 0.3
        prompt = body["messages"][0]["content"]
        assert "up to 5 words" in prompt
        assert "Respond in English." in prompt
        assert "The guards stood still." in prompt

    async def test_german_and_style(self):
        config = make_config(selected_model=MODEL)
        config.scene_title.language = "german"
        config.scene_title.style = "action"
        backend = json_backend(completion_json("Flucht"))
        service, _ = _service(backend, config)

        await service.generate_scene_title(TitleOptions(scene_id="s1", scene_content="Sie rannte."))

        prompt = backend.last_json["messages"][0]["content"]
        assert "Respond in German." in prompt
        assert "action-packed" in prompt

    async def test_option_model_wins(self):
        backend = json_backend(completion_json("T"))
        service, _ = _service(backend)
        await service.generate_scene_title(TitleOptions(
            scene_id="s1", scene_content="Text.", model="openrouter:openai/gpt-4o-mini",
        ))
        assert backend.last_json["model"] == "openai/gpt-4o-mini"


class TestStagingNotes:
    async def test_success(self):
        backend = json_backend(completion_json("- Mara at the door"))
        service, _ = _service(backend)

        result = await service.generate_staging_notes(
            StagingNotesOptions(scene_id="s1", scene_content="Mara waited by the door.", story_language="en")
        )

        assert result.success
        assert result.text == "- Mara at the door"
        assert backend.last_json["max_tokens"] == 2000
        user = _user_message(backend)
        assert "Mara waited by the door." in user
        assert "Respond in English." in user

    async def test_empty_content_message(self):
        service, _ = _service(json_backend(completion_json("x")))
        with pytest.raises(ValidationError, match="staging notes"):
            await service.generate_staging_notes(StagingNotesOptions(scene_id="s1", scene_content=""))


# ---------------------------------------------------------------------------
# State and cancellation
# ---------------------------------------------------------------------------

class TestSceneState:
    async def test_cancel_running_summary(self):
        async def slow(request):
            await asyncio.sleep(30)
            return httpx.Response(200, json=completion_json("late"))

        service, log = _service(FakeBackend(slow))
        task = asyncio.create_task(service.generate_scene_summary(
            SummaryOptions(story_id="story-1", scene_id="s1", scene_content="Text.")
        ))
        await asyncio.sleep(0.05)

        assert service.is_generating("s1")
        assert service.is_generating("s1", "summary")
        assert not service.is_generating("s1", "title")
        assert service.cancel("s1") is True

        result = await task
        assert result.cancelled
        assert not service.is_generating("s1")
        assert log.terminal_kinds() == ["aborted"]

    async def test_title_and_summary_run_side_by_side(self):
        backend = json_backend(completion_json("Ok"))
        service, _ = _service(backend)

        summary, title = await asyncio.gather(
            service.generate_scene_summary(
                SummaryOptions(story_id="story-1", scene_id="s1", scene_content="Text.")
            ),
            service.generate_scene_title(TitleOptions(scene_id="s1", scene_content="Text.")),
        )

        assert summary.success and title.success
        assert backend.call_count == 2

"""Tests for inkwell.generation.coordinator."""

from __future__ import annotations

import asyncio
import threading
import time
from contextlib import aclosing

import httpx
import pytest

from inkwell.generation.coordinator import (
    TRUNCATION_NOTE,
    ConflictPolicy,
    GenerationCoordinator,
    GenerationState,
)
from inkwell.llm.errors import ErrorCategory, GenerationBusyError, TransportError
from inkwell.llm.registry import parse_model_string
from inkwell.llm.types import GenerationRequest
from tests.fakes import (
    FakeBackend,
    completion_json,
    json_backend,
    make_config,
    make_orchestrator,
    paced_sse,
    sse_backend,
)


def _request(entity_id: str = "scene-1", **kwargs) -> GenerationRequest:
    kwargs.setdefault("prompt", "Summarize.")
    return GenerationRequest(
        entity_id=entity_id,
        model=parse_model_string("openrouter:mistralai/mistral-large"),
        **kwargs,
    )


def _slow_backend(text: str = "done", delay: float = 0.2) -> FakeBackend:
    async def handler(request):
        await asyncio.sleep(delay)
        return httpx.Response(200, json=completion_json(text))

    return FakeBackend(handler)


def _coordinator(backend, **kwargs):
    orch, log = make_orchestrator(backend, kwargs.pop("config", None))
    return GenerationCoordinator(orch, **kwargs), log


class TestGenerate:
    async def test_success_strips_and_reports_provider(self):
        coord, _ = _coordinator(json_backend(completion_json("  A quiet morning.  \n")))

        result = await coord.generate(_request())

        assert result.success
        assert result.text == "A quiet morning."
        assert result.provider == "openrouter"
        assert result.model == "mistralai/mistral-large"
        assert coord.state("scene-1") is GenerationState.IDLE

    async def test_truncated_text_gets_note(self):
        coord, _ = _coordinator(json_backend(completion_json("Cut off", finish_reason="length")))
        result = await coord.generate(_request())
        assert result.text == "Cut off" + TRUNCATION_NOTE

    async def test_post_process_runs_on_success(self):
        coord, _ = _coordinator(json_backend(completion_json("title")))
        result = await coord.generate(_request(), post_process=str.upper)
        assert result.text == "TITLE"

    async def test_post_process_skipped_on_failure(self):
        calls = []
        coord, _ = _coordinator(json_backend({"error": {"message": "nope"}}, status_code=500))

        result = await coord.generate(_request(), post_process=calls.append)

        assert not result.success
        assert result.error_category == ErrorCategory.BACKEND_UNAVAILABLE
        assert result.error == "OpenRouter server error. Please try again later."
        assert calls == []

    async def test_configuration_error_becomes_result(self):
        backend = json_backend(completion_json("unused"))
        coord, log = _coordinator(backend, config=make_config(openrouter=False))

        result = await coord.generate(_request())

        assert not result.success
        assert result.error_category == ErrorCategory.CONFIGURATION
        assert backend.call_count == 0
        assert log.events == []
        assert not coord.is_active("scene-1")

    async def test_concurrent_starts_admit_one(self):
        backend = _slow_backend()
        coord, _ = _coordinator(backend)

        first = asyncio.create_task(coord.generate(_request()))
        await asyncio.sleep(0)
        second = await coord.generate(_request())

        assert not second.success
        assert second.error_category == ErrorCategory.BUSY
        assert (await first).success
        assert backend.call_count == 1

    async def test_distinct_entities_run_in_parallel(self):
        coord, _ = _coordinator(_slow_backend(delay=0.05))
        results = await asyncio.gather(
            coord.generate(_request("scene-1")),
            coord.generate(_request("scene-2")),
        )
        assert all(r.success for r in results)

    async def test_cancel_returns_cancelled_result(self):
        coord, log = _coordinator(_slow_backend(delay=30))

        task = asyncio.create_task(coord.generate(_request()))
        await asyncio.sleep(0.05)
        assert coord.state("scene-1") is GenerationState.GENERATING

        assert coord.cancel("scene-1") is True
        assert not coord.is_active("scene-1")
        result = await task

        assert result.cancelled
        assert not result.success
        assert result.error is None
        assert log.terminal_kinds() == ["aborted"]

    async def test_cancel_from_another_thread_wakes_the_call(self):
        coord, log = _coordinator(_slow_backend(delay=5))
        timer = threading.Timer(0.2, coord.cancel, args=("scene-1",))

        started = time.monotonic()
        timer.start()
        try:
            result = await coord.generate(_request())
        finally:
            timer.cancel()

        assert result.cancelled
        assert time.monotonic() - started < 2
        assert log.terminal_kinds() == ["aborted"]

    async def test_cancel_is_idempotent(self):
        coord, _ = _coordinator(_slow_backend(delay=30))
        task = asyncio.create_task(coord.generate(_request()))
        await asyncio.sleep(0.05)

        assert coord.cancel("scene-1") is True
        assert coord.cancel("scene-1") is False
        assert (await task).cancelled

    async def test_cancel_without_generation(self):
        coord, _ = _coordinator(json_backend(completion_json("x")))
        assert coord.cancel("nothing-running") is False

    async def test_start_after_cancel_is_allowed(self):
        backend = _slow_backend(delay=0.05)
        coord, _ = _coordinator(backend)

        task = asyncio.create_task(coord.generate(_request()))
        await asyncio.sleep(0.01)
        coord.cancel("scene-1")
        result = await coord.generate(_request())

        assert (await task).cancelled
        assert result.success

    async def test_replace_policy_cancels_running(self):
        coord, _ = _coordinator(_slow_backend(delay=0.1), on_conflict=ConflictPolicy.REPLACE)

        first = asyncio.create_task(coord.generate(_request()))
        await asyncio.sleep(0.01)
        second = await coord.generate(_request())

        assert second.success
        assert (await first).cancelled
        assert not coord.is_active("scene-1")

    async def test_close_cancels_and_refuses(self):
        coord, _ = _coordinator(_slow_backend(delay=30))
        task = asyncio.create_task(coord.generate(_request()))
        await asyncio.sleep(0.05)

        coord.close()

        assert (await task).cancelled
        assert coord.active_ids() == []
        with pytest.raises(RuntimeError):
            await coord.generate(_request("scene-2"))

    async def test_async_context_manager_closes(self):
        async with GenerationCoordinator(make_orchestrator(_slow_backend())[0]) as coord:
            pass
        with pytest.raises(RuntimeError):
            await coord.generate(_request())


class TestStream:
    async def test_streams_and_completes(self):
        coord, _ = _coordinator(sse_backend(lambda: paced_sse(["It ", "was ", "dark."])))

        chunks = [text async for text in coord.stream(_request("beat-1"))]

        assert chunks == ["It ", "was ", "dark."]
        assert not coord.is_active("beat-1")

    async def test_busy_while_streaming(self):
        coord, _ = _coordinator(sse_backend(lambda: paced_sse(["a", "b"], delay=0.05)))

        async with aclosing(coord.stream(_request("beat-1"))) as stream:
            first = await stream.__anext__()
            assert first == "a"
            assert coord.state("beat-1") is GenerationState.GENERATING
            with pytest.raises(GenerationBusyError):
                async for _ in coord.stream(_request("beat-1")):
                    pass

        assert not coord.is_active("beat-1")

    async def test_cancel_ends_stream_silently(self):
        coord, log = _coordinator(
            sse_backend(lambda: paced_sse([f"w{i} " for i in range(10)], delay=0.01))
        )

        received = []
        async for text in coord.stream(_request("beat-1")):
            received.append(text)
            if len(received) == 2:
                coord.cancel("beat-1")

        assert received == ["w0 ", "w1 "]
        assert log.terminal_kinds() == ["aborted"]

    async def test_failure_raises_user_message(self):
        coord, _ = _coordinator(json_backend({"error": {"message": "bad"}}, status_code=401))

        with pytest.raises(TransportError) as exc_info:
            async for _ in coord.stream(_request("beat-1")):
                pass

        assert exc_info.value.category == ErrorCategory.AUTH
        assert not coord.is_active("beat-1")

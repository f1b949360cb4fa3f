"""Wire-format tests for the provider implementations."""

from __future__ import annotations

import httpx
import pytest

from inkwell.config import ProviderConfig, ProviderKind
from inkwell.llm.errors import TransportError
from inkwell.llm.providers import PROVIDER_CLASSES, CallPlan, build_provider
from inkwell.llm.reasoning import classify
from inkwell.llm.registry import Resolution
from inkwell.llm.types import GenerationRequest, Message, ModelReference


def _plan(kind: ProviderKind, model_id: str, config: ProviderConfig, **request_kwargs) -> CallPlan:
    request = GenerationRequest(
        entity_id="e1",
        model=ModelReference(provider=kind.value, model_id=model_id),
        **request_kwargs,
    )
    resolution = Resolution(kind=kind, model_id=model_id, config=config)
    return CallPlan(request, resolution, classify(model_id, request.max_output_tokens))


def _provider(kind: ProviderKind, config: ProviderConfig):
    return build_provider(kind, config, httpx.AsyncClient())


MESSAGES = [
    Message(role="system", content="Be brief."),
    Message(role="user", content="Hello"),
    Message(role="assistant", content="Hi."),
    Message(role="user", content="Continue"),
]


def test_every_kind_has_a_provider():
    assert set(PROVIDER_CLASSES) == set(ProviderKind)


class TestOpenRouter:
    config = ProviderConfig(enabled=True, api_key="sk-or", base_url="https://openrouter.ai/api/v1")

    def test_budget_reasoning_body(self):
        provider = _provider(ProviderKind.OPENROUTER, self.config)
        plan = _plan(
            ProviderKind.OPENROUTER,
            "deepseek/deepseek-r1:reasoning",
            self.config,
            prompt="Write",
            max_output_tokens=4000,
        )
        body = provider.build_body(plan, True)
        assert body["model"] == "deepseek/deepseek-r1"
        assert body["max_tokens"] == 8000
        assert body["reasoning"] == {"max_tokens": 4000}
        assert body["stream"] is True
        assert body["messages"] == [{"role": "user", "content": "Write"}]

    def test_effort_reasoning_body(self):
        provider = _provider(ProviderKind.OPENROUTER, self.config)
        plan = _plan(ProviderKind.OPENROUTER, "openai/o3:reasoning", self.config, prompt="x")
        body = provider.build_body(plan, False)
        assert body["reasoning"] == {"effort": "high"}
        assert body["max_tokens"] == 500

    def test_no_reasoning_field_for_plain_model(self):
        provider = _provider(ProviderKind.OPENROUTER, self.config)
        plan = _plan(ProviderKind.OPENROUTER, "mistralai/mistral-large", self.config, prompt="x")
        assert "reasoning" not in provider.build_body(plan, False)

    def test_endpoint_and_headers(self):
        provider = _provider(ProviderKind.OPENROUTER, self.config)
        plan = _plan(ProviderKind.OPENROUTER, "m", self.config, prompt="x")
        assert provider.endpoint(plan, True) == "https://openrouter.ai/api/v1/chat/completions"
        headers = provider.build_headers(True)
        assert headers["Authorization"] == "Bearer sk-or"
        assert headers["X-Title"] == "Inkwell"

    def test_reasoning_delta_is_hidden(self):
        provider = _provider(ProviderKind.OPENROUTER, self.config)
        chunks = provider.parse_event(
            {"choices": [{"delta": {"reasoning": "hmm", "content": "Yes"}, "finish_reason": None}]}
        )
        assert [(c.text, c.is_reasoning) for c in chunks] == [("hmm", True), ("Yes", False)]

    def test_finish_reason_ends_stream(self):
        provider = _provider(ProviderKind.OPENROUTER, self.config)
        chunks = provider.parse_event({"choices": [{"delta": {}, "finish_reason": "length"}]})
        assert chunks[-1].done
        assert chunks[-1].finish_reason == "length"

    def test_parse_completion(self):
        provider = _provider(ProviderKind.OPENROUTER, self.config)
        completion = provider.parse_completion(
            {"choices": [{"message": {"content": "Done", "reasoning": "r"}, "finish_reason": "stop"}]}
        )
        assert completion.text == "Done"
        assert completion.reasoning == "r"
        assert not completion.truncated


class TestOpenAICompatible:
    def test_endpoint_does_not_double_v1(self):
        for base in ("http://localhost:1234", "http://localhost:1234/v1", "http://localhost:1234/"):
            config = ProviderConfig(enabled=True, base_url=base)
            provider = _provider(ProviderKind.OPENAI_COMPATIBLE, config)
            plan = _plan(ProviderKind.OPENAI_COMPATIBLE, "local", config, prompt="x")
            assert provider.endpoint(plan, False) == "http://localhost:1234/v1/chat/completions"

    def test_no_auth_without_key(self):
        config = ProviderConfig(enabled=True, base_url="http://localhost:1234")
        headers = _provider(ProviderKind.OPENAI_COMPATIBLE, config).build_headers(False)
        assert "Authorization" not in headers

    def test_filters_think_tags_without_reasoning_field(self):
        config = ProviderConfig(enabled=True, base_url="http://localhost:1234")
        provider = _provider(ProviderKind.OPENAI_COMPATIBLE, config)
        assert provider.filter_think_tags
        assert "reasoning" not in provider.build_body(
            _plan(ProviderKind.OPENAI_COMPATIBLE, "qwen/qwen3:reasoning", config, prompt="x"), False
        )


class TestClaude:
    config = ProviderConfig(enabled=True, api_key="sk-ant", base_url="https://api.anthropic.com/v1", top_k=40)

    def test_system_lifted_and_sampling(self):
        provider = _provider(ProviderKind.CLAUDE, self.config)
        plan = _plan(ProviderKind.CLAUDE, "claude-3-5-haiku", self.config, messages=MESSAGES, temperature=0.2)
        body = provider.build_body(plan, False)
        assert body["system"] == "Be brief."
        assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
        assert body["temperature"] == 0.2
        assert body["top_k"] == 40
        assert "thinking" not in body

    def test_budget_thinking(self):
        provider = _provider(ProviderKind.CLAUDE, self.config)
        plan = _plan(
            ProviderKind.CLAUDE,
            "anthropic/claude-sonnet-4:reasoning",
            self.config,
            prompt="x",
            max_output_tokens=2000,
        )
        body = provider.build_body(plan, True)
        assert body["thinking"] == {"type": "enabled", "budget_tokens": 2000}
        assert body["max_tokens"] == 4000
        assert "temperature" not in body

    def test_native_id_gets_thinking(self):
        provider = _provider(ProviderKind.CLAUDE, self.config)
        plan = _plan(
            ProviderKind.CLAUDE,
            "claude-sonnet-4-20250514:reasoning",
            self.config,
            prompt="x",
            max_output_tokens=3000,
        )
        body = provider.build_body(plan, True)
        assert body["model"] == "claude-sonnet-4-20250514"
        assert body["thinking"] == {"type": "enabled", "budget_tokens": 3000}
        assert body["max_tokens"] == 6000

    def test_headers(self):
        headers = _provider(ProviderKind.CLAUDE, self.config).build_headers(True)
        assert headers["x-api-key"] == "sk-ant"
        assert headers["anthropic-version"] == "2023-06-01"

    def test_events(self):
        provider = _provider(ProviderKind.CLAUDE, self.config)
        thinking = provider.parse_event(
            {"type": "content_block_delta", "delta": {"type": "thinking_delta", "thinking": "..."}}
        )
        assert thinking[0].is_reasoning
        text = provider.parse_event(
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}}
        )
        assert text[0].text == "Hi" and not text[0].is_reasoning
        stop = provider.parse_event({"type": "message_delta", "delta": {"stop_reason": "max_tokens"}})
        assert stop[0].finish_reason == "length"
        assert provider.parse_event({"type": "message_stop"})[0].done
        assert provider.parse_event({"type": "ping"}) == []

    def test_error_event_raises(self):
        provider = _provider(ProviderKind.CLAUDE, self.config)
        with pytest.raises(TransportError):
            provider.parse_event({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})


class TestGemini:
    config = ProviderConfig(
        enabled=True,
        api_key="gm",
        base_url="https://generativelanguage.googleapis.com/v1beta",
        extra={"safety_settings": {"harassment": "BLOCK_ONLY_HIGH"}},
    )

    def test_endpoints(self):
        provider = _provider(ProviderKind.GEMINI, self.config)
        plan = _plan(ProviderKind.GEMINI, "models/gemini-2.5-flash", self.config, prompt="x")
        base = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash"
        assert provider.endpoint(plan, False) == base + ":generateContent"
        assert provider.endpoint(plan, True) == base + ":streamGenerateContent?alt=sse"

    def test_body(self):
        provider = _provider(ProviderKind.GEMINI, self.config)
        plan = _plan(ProviderKind.GEMINI, "gemini-2.5-flash", self.config, messages=MESSAGES)
        body = provider.build_body(plan, False)
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
        assert body["generationConfig"]["maxOutputTokens"] == 500
        thresholds = {s["category"]: s["threshold"] for s in body["safetySettings"]}
        assert thresholds["HARM_CATEGORY_HARASSMENT"] == "BLOCK_ONLY_HIGH"
        assert thresholds["HARM_CATEGORY_HATE_SPEECH"] == "BLOCK_NONE"
        assert "thinkingConfig" not in body["generationConfig"]

    def test_thinking_budget(self):
        provider = _provider(ProviderKind.GEMINI, self.config)
        plan = _plan(
            ProviderKind.GEMINI, "gemini-2.5-flash:reasoning", self.config, prompt="x", max_output_tokens=2000
        )
        body = provider.build_body(plan, False)
        assert body["generationConfig"]["thinkingConfig"] == {"thinkingBudget": 2000}
        assert body["generationConfig"]["maxOutputTokens"] == 4000

    def test_thought_parts_are_reasoning(self):
        provider = _provider(ProviderKind.GEMINI, self.config)
        chunks = provider.parse_event({
            "candidates": [{
                "content": {"parts": [{"text": "plan", "thought": True}, {"text": "Answer"}]},
                "finishReason": "MAX_TOKENS",
            }]
        })
        assert [(c.text, c.is_reasoning) for c in chunks[:2]] == [("plan", True), ("Answer", False)]
        assert chunks[-1].finish_reason == "length"

    def test_blocked_prompt(self):
        provider = _provider(ProviderKind.GEMINI, self.config)
        with pytest.raises(TransportError) as exc_info:
            provider.parse_completion({"promptFeedback": {"blockReason": "SAFETY"}})
        assert exc_info.value.category == "invalid_request"


class TestOllama:
    config = ProviderConfig(enabled=True, base_url="http://localhost:11434")

    def test_body(self):
        provider = _provider(ProviderKind.OLLAMA, self.config)
        plan = _plan(ProviderKind.OLLAMA, "llama3.1", self.config, prompt="x", max_output_tokens=800)
        body = provider.build_body(plan, True)
        assert provider.endpoint(plan, True) == "http://localhost:11434/api/chat"
        assert body["options"]["num_predict"] == 800
        assert body["stream"] is True
        assert provider.stream_format == "ndjson"

    def test_events(self):
        provider = _provider(ProviderKind.OLLAMA, self.config)
        chunks = provider.parse_event({"message": {"content": "Hi", "thinking": "t"}, "done": False})
        assert [(c.text, c.is_reasoning) for c in chunks] == [("t", True), ("Hi", False)]
        final = provider.parse_event({"message": {"content": ""}, "done": True, "done_reason": "stop"})
        assert final[-1].done

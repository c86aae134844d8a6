"""Tests for the LLM layer — request shaping and provider selection."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

import groundwork.llm as llm_module
from groundwork.llm import (
    AnthropicProvider, LLMProvider, LLMResponse, OpenAIProvider,
    _build_completion_kwargs, _is_o_series, _make_client, _resolve_config,
)


class RecordingProvider(LLMProvider):
    def __init__(self):
        self.calls = []

    def provider_name(self) -> str:
        return "recording"

    def chat(self, messages, temperature=0.7, max_tokens=2048):
        self.calls.append((messages, temperature, max_tokens))
        return LLMResponse(content="[]")


class TestComplete:
    def test_system_and_user_messages(self):
        p = RecordingProvider()
        p.complete("be brief", "hello", max_tokens=300, temperature=0.2)
        messages, temperature, max_tokens = p.calls[0]
        assert messages == [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hello"},
        ]
        assert (temperature, max_tokens) == (0.2, 300)

    def test_empty_system_omitted(self):
        p = RecordingProvider()
        p.complete("", "hello")
        assert p.calls[0][0] == [{"role": "user", "content": "hello"}]


class TestCompletionKwargs:
    def test_o_series_detection(self):
        assert _is_o_series("o1-mini")
        assert _is_o_series("openai/o3")
        assert not _is_o_series("gpt-4o")
        assert not _is_o_series("claude-sonnet-4-5")

    def test_regular_model(self):
        kwargs = _build_completion_kwargs("gpt-4o", [], 0.5, 512)
        assert kwargs["temperature"] == 0.5
        assert kwargs["max_tokens"] == 512

    def test_o_series_model(self):
        kwargs = _build_completion_kwargs("o3-mini", [], 0.5, 512)
        assert "temperature" not in kwargs
        assert kwargs["max_completion_tokens"] == 512


class TestProviders:
    def test_openai_response_mapping(self):
        resp = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="[1]"), finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )
        with patch("openai.OpenAI") as mock_cls:
            mock_cls.return_value.chat.completions.create.return_value = resp
            provider = OpenAIProvider(api_key="k", model="gpt-4o")
            out = provider.complete("sys", "user", max_tokens=100)
        assert out.content == "[1]"
        assert out.total_tokens == 15
        assert out.model == "gpt-4o"

    def test_anthropic_separates_system(self):
        resp = SimpleNamespace(
            content=[SimpleNamespace(type="text", text='[{"a": 1}]')],
            usage=SimpleNamespace(input_tokens=20, output_tokens=7),
            stop_reason="end_turn",
        )
        with patch("anthropic.Anthropic") as mock_cls:
            create = mock_cls.return_value.messages.create
            create.return_value = resp
            provider = AnthropicProvider(api_key="k", model="claude")
            out = provider.complete("analyst", "context", max_tokens=512)

        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "analyst"
        assert kwargs["messages"] == [{"role": "user", "content": "context"}]
        assert kwargs["max_tokens"] == 512
        assert out.content == '[{"a": 1}]'
        assert out.total_tokens == 27


class TestFactory:
    def test_think_falls_back_to_chat(self, monkeypatch):
        monkeypatch.setattr(llm_module, "CHAT_PROVIDER", "openai")
        monkeypatch.setattr(llm_module, "CHAT_MODEL", "chat-model")
        monkeypatch.setattr(llm_module, "THINK_PROVIDER", "")
        monkeypatch.setattr(llm_module, "THINK_MODEL", "think-model")
        provider, _, model, _ = _resolve_config("think")
        assert provider == "openai"
        assert model == "think-model"

    def test_missing_model(self):
        with pytest.raises(ValueError):
            _make_client("openai", "k", "", "")

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            _make_client("carrier-pigeon", "k", "m", "")

    def test_get_client_caches(self, monkeypatch):
        fake = MagicMock(spec=LLMProvider)
        monkeypatch.setattr(llm_module, "_cached_clients", {})
        with patch.object(llm_module, "_make_client", return_value=fake) as make:
            assert llm_module.get_client("think") is fake
            assert llm_module.get_client("think") is fake
        assert make.call_count == 1

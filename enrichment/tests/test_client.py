"""Tests for LLM client construction and API key lookup."""

from types import SimpleNamespace

import pytest

import enrichment.client as client_mod
from detection.config import LLMConfig
from detection.errors import ConfigInvalid, ModelCallFailed
from enrichment.client import AnthropicClient, OpenAIClient, new_client, read_api_key


@pytest.fixture(autouse=True)
def no_ambient_keys(monkeypatch, tmp_path):
    """Isolate key lookup from the host's secrets and environment."""
    monkeypatch.setattr(client_mod, "_SECRETS_DIR", str(tmp_path))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def _cfg(**kwargs):
    data = {"provider": "anthropic", "model": "claude-haiku-4-5-20251001", "apiKey": "sk-test"}
    data.update(kwargs)
    return LLMConfig.model_validate(data)


class _Recorder:
    """Stands in for an SDK resource; records kwargs, returns a canned reply."""

    def __init__(self, reply):
        self.reply = reply
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        return self.reply


class TestNewClient:
    def test_anthropic(self):
        client = new_client(_cfg(temperature=0.3))
        assert isinstance(client, AnthropicClient)
        assert client.model == "claude-haiku-4-5-20251001"
        assert client.temperature == 0.3

    def test_openai(self):
        client = new_client(_cfg(provider="openai", model="gpt-4o-mini"))
        assert isinstance(client, OpenAIClient)
        assert client.model == "gpt-4o-mini"

    def test_unknown_provider(self):
        with pytest.raises(ConfigInvalid, match="cohere"):
            new_client(_cfg(provider="cohere"))

    def test_model_required(self):
        with pytest.raises(ConfigInvalid, match="model"):
            new_client(_cfg(model=""))

    def test_no_key_anywhere(self):
        with pytest.raises(ConfigInvalid, match="ANTHROPIC_API_KEY"):
            new_client(_cfg(apiKey=""))

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        assert isinstance(new_client(_cfg(apiKey="")), AnthropicClient)


class TestReadApiKey:
    def test_secret_file_preferred(self, tmp_path, monkeypatch):
        (tmp_path / "anthropic_api_key").write_text("sk-secret\n")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        assert read_api_key("anthropic") == "sk-secret"

    def test_empty_secret_falls_back_to_env(self, tmp_path, monkeypatch):
        (tmp_path / "openai_api_key").write_text("  \n")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        assert read_api_key("openai") == "sk-env"

    def test_nothing_configured(self):
        assert read_api_key("anthropic") is None


class TestCalls:
    def test_anthropic_joins_text_blocks(self):
        client = AnthropicClient(api_key="sk-test", model="m", temperature=0.0)
        reply = SimpleNamespace(content=[
            SimpleNamespace(type="text", text="[{\"a\": "),
            SimpleNamespace(type="tool_use", text="ignored"),
            SimpleNamespace(type="text", text="\"1\"}]"),
        ])
        messages = _Recorder(reply)
        client._client = SimpleNamespace(messages=messages)

        assert client.call("hello") == '[{"a": "1"}]'
        assert messages.kwargs["model"] == "m"
        assert messages.kwargs["messages"] == [{"role": "user", "content": "hello"}]

    def test_openai_returns_first_choice(self):
        client = OpenAIClient(api_key="sk-test", model="m")
        reply = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="[]"))])
        completions = _Recorder(reply)
        client._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))

        assert client.call("hello") == "[]"
        assert completions.kwargs["messages"] == [{"role": "user", "content": "hello"}]

    def test_openai_no_choices(self):
        client = OpenAIClient(api_key="sk-test", model="m")
        completions = _Recorder(SimpleNamespace(choices=[]))
        client._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        with pytest.raises(ModelCallFailed):
            client.call("hello")

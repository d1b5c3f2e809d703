"""
Tests for the model provider layer: cancellable streams, retries, the
OpenAI-compatible provider (with a fake client) and the factory.
"""

from types import SimpleNamespace

import pytest

from devify.core.config import config
from devify.core.errors import ProviderError
from devify.llm.base_client import ModelProvider, ModelStream, StreamChunk
from devify.llm.llm_factory import LLMFactory
from devify.llm.mock_client import DONE_TEXT, ScriptedProvider
from devify.llm.openai_client import OpenAIProvider, retry_with_backoff


class TestModelStream:
    def _stream(self, count=3):
        released = []
        chunks = (StreamChunk(text=str(i)) for i in range(count))
        return ModelStream(chunks, on_close=lambda: released.append(True)), released

    def test_iterates_and_releases_once(self):
        stream, released = self._stream()

        with stream:
            texts = [chunk.text for chunk in stream]
        stream.close()

        assert texts == ["0", "1", "2"]
        assert released == [True]

    def test_abort_stops_iteration(self):
        stream, released = self._stream(count=5)

        first = next(stream)
        stream.abort()

        assert first.text == "0"
        assert list(stream) == []
        assert released == [True]

    def test_build_messages(self):
        messages = [{"role": "user", "content": "hi"}]

        assert ModelProvider.build_messages(messages, None) == messages
        assert ModelProvider.build_messages(messages, "sys")[0] == {"role": "system", "content": "sys"}


class TestRetryWithBackoff:
    def test_retries_network_errors(self):
        sleeps = []
        attempts = []

        def flaky():
            attempts.append(True)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert retry_with_backoff(flaky, sleep=sleeps.append) == "ok"
        assert sleeps == [1.0, 2.0]

    def test_gives_up(self):
        attempts = []

        def broken():
            attempts.append(True)
            raise TimeoutError("slow")

        with pytest.raises(TimeoutError):
            retry_with_backoff(broken, max_retries=2, sleep=lambda s: None)
        assert len(attempts) == 3

    def test_other_errors_are_not_retried(self):
        attempts = []

        def bad():
            attempts.append(True)
            raise ValueError("bad request")

        with pytest.raises(ValueError):
            retry_with_backoff(bad, sleep=lambda s: None)
        assert len(attempts) == 1


class FakeOpenAIStream:
    def __init__(self, chunks):
        self.chunks = chunks
        self.closed = 0

    def __iter__(self):
        return iter(self.chunks)

    def close(self):
        self.closed += 1


def _chunk(text=None, usage=None):
    choices = [SimpleNamespace(delta=SimpleNamespace(content=text))] if text is not None else []
    return SimpleNamespace(choices=choices, usage=usage)


def _fake_client(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


class TestOpenAIProvider:
    def test_stream_chat(self):
        raw = FakeOpenAIStream([
            _chunk("Hel"),
            _chunk("lo"),
            _chunk(usage=SimpleNamespace(prompt_tokens=7, completion_tokens=2, prompt_tokens_details=None)),
        ])
        requests = []

        def create(**kwargs):
            requests.append(kwargs)
            return raw

        provider = OpenAIProvider(api_key="test", model="gpt-test")
        provider.client = _fake_client(create)

        with provider.stream_chat([{"role": "user", "content": "hi"}], "sys") as stream:
            chunks = list(stream)

        assert "".join(c.text for c in chunks) == "Hello"
        assert chunks[-1].usage.input_tokens == 7
        assert requests[0]["stream"] is True
        assert requests[0]["messages"][0] == {"role": "system", "content": "sys"}
        assert raw.closed == 1

    def test_non_network_errors_propagate(self):
        def create(**kwargs):
            raise ValueError("no such model")

        provider = OpenAIProvider(api_key="test")
        provider.client = _fake_client(create)

        with pytest.raises(ValueError):
            provider.stream_chat([], None)

    def test_network_failure_becomes_provider_error(self, monkeypatch):
        def create(**kwargs):
            raise ConnectionError("refused")

        monkeypatch.setattr("devify.llm.openai_client.time.sleep", lambda s: None)
        provider = OpenAIProvider(api_key="test")
        provider.client = _fake_client(create)

        with pytest.raises(ProviderError):
            provider.complete([{"role": "user", "content": "hi"}])

    def test_complete(self):
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Answer"))],
            usage=SimpleNamespace(prompt_tokens=3, completion_tokens=1, prompt_tokens_details=None),
        )
        provider = OpenAIProvider(api_key="test")
        provider.client = _fake_client(lambda **kwargs: response)

        completion = provider.complete([{"role": "user", "content": "hi"}])

        assert completion.text == "Answer"
        assert completion.usage.total_tokens == 4


class TestScriptedProvider:
    def test_replays_then_finishes(self):
        provider = ScriptedProvider(responses=["abc"], chunk_size=2)

        first = [c.text for c in provider.stream_chat([{"role": "user", "content": "x"}])]
        second = "".join(c.text for c in provider.stream_chat([]))

        assert first == ["ab", "c", ""]
        assert second == DONE_TEXT
        assert len(provider.calls) == 2


class TestLLMFactory:
    def test_mock_mode(self, monkeypatch):
        monkeypatch.setattr(config, "mock_mode", True)

        assert isinstance(LLMFactory.create_provider(config), ScriptedProvider)

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr(config, "mock_mode", False)
        monkeypatch.setattr(config, "openai_api_key", None)
        monkeypatch.setattr(config, "base_url", None)

        with pytest.raises(ValueError):
            LLMFactory.create_provider(config)

    def test_openai_provider(self, monkeypatch):
        monkeypatch.setattr(config, "mock_mode", False)
        monkeypatch.setattr(config, "openai_api_key", "sk-test")

        provider = LLMFactory.create_provider(config, model="gpt-test")

        assert isinstance(provider, OpenAIProvider)
        assert provider.model == "gpt-test"

"""Tests for the provider adapters and the provider table."""

from __future__ import annotations

import json

import httpx
import pytest

from modelcli.config import ModelSettings
from modelcli.errors import ConfigError
from modelcli.llm.providers import create_provider, list_providers, register_provider
from modelcli.llm.providers.ollama import OllamaProvider
from modelcli.llm.providers.openai_compat import OpenAICompatProvider
from modelcli.llm.types import Message, ToolCallRequest
from tests.mock_providers import MockProvider


def sse(*payloads) -> bytes:
    lines = []
    for p in payloads:
        data = p if isinstance(p, str) else json.dumps(p)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


def openai_settings(**kwargs) -> ModelSettings:
    base = dict(
        name="test",
        provider="openai",
        model="test-chat",
        api_key_env="TEST_API_KEY",
        base_url="https://llm.example/v1/",
    )
    base.update(kwargs)
    return ModelSettings(**base)


class Recorder:
    """httpx MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture(autouse=True)
def api_key(monkeypatch):
    monkeypatch.setenv("TEST_API_KEY", "sk-test")


# ---------------------------------------------------------------------------
# Provider table
# ---------------------------------------------------------------------------


class TestProviderTable:
    def test_builtin_names(self):
        assert {"openai", "ollama"} <= set(list_providers())

    def test_create_known(self):
        provider = create_provider("openai", openai_settings())
        assert isinstance(provider, OpenAICompatProvider)

    def test_unknown_provider(self):
        with pytest.raises(ConfigError, match="Unknown provider nope"):
            create_provider("nope", openai_settings(provider="nope"))

    def test_register_custom(self):
        class ConfiguredMock(MockProvider):
            def __init__(self, settings, **kwargs):
                super().__init__(settings=settings)

        register_provider("mock", ConfiguredMock)
        try:
            settings = openai_settings(provider="mock")
            provider = create_provider("mock", settings)
            assert isinstance(provider, MockProvider)
            assert provider.settings is settings
        finally:
            from modelcli.llm.providers import _REGISTRY

            _REGISTRY.pop("mock", None)


# ---------------------------------------------------------------------------
# OpenAI-compatible adapter
# ---------------------------------------------------------------------------


class TestOpenAIStreaming:
    async def test_text_reasoning_and_tool_call(self):
        body = sse(
            {"choices": [{"delta": {"reasoning_content": "thinking..."}}]},
            {"choices": [{"delta": {"content": "Let me "}}]},
            {"choices": [{"delta": {"content": "look."}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "call_1", "function": {"name": "echo", "arguments": ""}}
            ]}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "function": {"arguments": '{"message":'}}
            ]}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "function": {"arguments": ' "hi"}'}}
            ]}}]},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
            "[DONE]",
        )
        recorder = Recorder(httpx.Response(200, content=body, headers={"content-type": "text/event-stream"}))
        provider = OpenAICompatProvider(openai_settings(), transport=httpx.MockTransport(recorder))

        tokens, reasoning = [], []
        result = await provider.complete(
            [Message(role="user", content="hi")],
            tools=[{"type": "function", "function": {"name": "echo", "parameters": {}}}],
            on_token=tokens.append,
            on_reasoning=reasoning.append,
        )

        assert result.content == "Let me look."
        assert tokens == ["Let me ", "look."]
        assert result.reasoning == "thinking..."
        assert reasoning == ["thinking..."]
        assert len(result.tool_calls) == 1
        call = result.tool_calls[0]
        assert (call.id, call.name, call.arguments) == ("call_1", "echo", '{"message": "hi"}')

        request = recorder.requests[0]
        assert str(request.url) == "https://llm.example/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        sent = recorder.last_body
        assert sent["stream"] is True
        assert sent["tool_choice"] == "auto"
        assert sent["messages"] == [{"role": "user", "content": "hi"}]

    async def test_two_interleaved_tool_calls(self):
        body = sse(
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "a", "function": {"name": "first", "arguments": "{"}},
                {"index": 1, "id": "b", "function": {"name": "second", "arguments": "{"}},
            ]}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 1, "function": {"arguments": "}"}},
                {"index": 0, "function": {"arguments": "}"}},
            ]}}]},
            "[DONE]",
        )
        recorder = Recorder(httpx.Response(200, content=body))
        provider = OpenAICompatProvider(openai_settings(), transport=httpx.MockTransport(recorder))

        result = await provider.complete([{"role": "user", "content": "go"}])

        assert [(c.id, c.name, c.arguments) for c in result.tool_calls] == [
            ("a", "first", "{}"),
            ("b", "second", "{}"),
        ]

    async def test_blank_reasoning_is_none(self):
        body = sse({"choices": [{"delta": {"content": "ok", "reasoning_content": "  "}}]}, "[DONE]")
        provider = OpenAICompatProvider(
            openai_settings(), transport=httpx.MockTransport(Recorder(httpx.Response(200, content=body)))
        )
        result = await provider.complete([{"role": "user", "content": "x"}])
        assert result.reasoning is None
        assert result.tool_calls == []

    async def test_retries_on_server_error(self):
        ok = httpx.Response(200, content=sse({"choices": [{"delta": {"content": "fine"}}]}, "[DONE]"))
        recorder = Recorder(httpx.Response(503, content=b"busy"), ok)
        provider = OpenAICompatProvider(openai_settings(), transport=httpx.MockTransport(recorder))

        result = await provider.complete([{"role": "user", "content": "x"}])

        assert result.content == "fine"
        assert len(recorder.requests) == 2

    async def test_transport_error_before_any_chunk_is_retried(self):
        ok = httpx.Response(200, content=sse({"choices": [{"delta": {"content": "fine"}}]}, "[DONE]"))
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if len(requests) == 1:
                raise httpx.ConnectError("refused", request=request)
            return ok

        provider = OpenAICompatProvider(openai_settings(), transport=httpx.MockTransport(handler))

        result = await provider.complete([{"role": "user", "content": "x"}])

        assert result.content == "fine"
        assert len(requests) == 2

    async def test_transport_error_mid_stream_is_not_replayed(self):
        head = sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "c1", "function": {"name": "echo", "arguments": '{"text":'}}
            ]}}]},
        )

        async def broken_body():
            yield head
            raise httpx.ReadError("connection reset")

        full = sse(
            {"choices": [{"delta": {"content": "Hello"}}]},
            {"choices": [{"delta": {"tool_calls": [
                {"index": 0, "id": "c1", "function": {"name": "echo", "arguments": '{"text": "x"}'}}
            ]}}]},
            "[DONE]",
        )
        recorder = Recorder(httpx.Response(200, content=broken_body()), httpx.Response(200, content=full))
        provider = OpenAICompatProvider(openai_settings(), transport=httpx.MockTransport(recorder))

        tokens = []
        with pytest.raises(httpx.ReadError):
            await provider.complete([{"role": "user", "content": "x"}], on_token=tokens.append)

        assert tokens == ["Hel"]
        assert len(recorder.requests) == 1

    async def test_client_error_raises(self):
        recorder = Recorder(httpx.Response(401, content=b"denied"))
        provider = OpenAICompatProvider(openai_settings(), transport=httpx.MockTransport(recorder))

        with pytest.raises(httpx.HTTPStatusError):
            await provider.complete([{"role": "user", "content": "x"}])
        assert len(recorder.requests) == 1


class TestOpenAINonStreaming:
    async def test_message_and_object_arguments(self):
        payload = {
            "choices": [{
                "message": {
                    "content": "calling",
                    "reasoning_content": [{"text": "a"}, {"content": "b"}],
                    "tool_calls": [
                        {"id": "c1", "function": {"name": "echo", "arguments": {"message": "x"}}},
                    ],
                },
            }],
        }
        recorder = Recorder(httpx.Response(200, json=payload))
        settings = openai_settings(temperature=0.2, max_output_tokens=64, extra_body={"top_p": 0.5})
        provider = OpenAICompatProvider(settings, transport=httpx.MockTransport(recorder))

        tokens = []
        result = await provider.complete(
            [{"role": "user", "content": "x"}], stream=False, on_token=tokens.append
        )

        assert result.content == "calling"
        assert tokens == ["calling"]
        assert result.reasoning == "ab"
        assert json.loads(result.tool_calls[0].arguments) == {"message": "x"}
        sent = recorder.last_body
        assert sent["stream"] is False
        assert sent["temperature"] == 0.2
        assert sent["max_tokens"] == 64
        assert sent["top_p"] == 0.5
        assert "tools" not in sent


class TestOpenAIConfiguration:
    async def test_missing_api_key_env(self):
        provider = OpenAICompatProvider(openai_settings(api_key_env=None))
        with pytest.raises(ConfigError, match="requires api_key_env"):
            await provider.complete([{"role": "user", "content": "x"}])

    async def test_unset_api_key(self, monkeypatch):
        monkeypatch.delenv("TEST_API_KEY")
        provider = OpenAICompatProvider(openai_settings())
        with pytest.raises(ConfigError, match="TEST_API_KEY"):
            await provider.complete([{"role": "user", "content": "x"}])

    async def test_message_without_role(self):
        provider = OpenAICompatProvider(openai_settings())
        with pytest.raises(ConfigError, match="role"):
            await provider.complete([{"content": "x"}])

    def test_reasoning_detected_from_model_id(self):
        assert OpenAICompatProvider(openai_settings(model="deepseek-reasoner")).supports_reasoning_content()
        assert not OpenAICompatProvider(openai_settings()).supports_reasoning_content()

    def test_reasoning_switch_overrides_model_id(self):
        settings = openai_settings(model="deepseek-reasoner", extra={"reasoning": False})
        assert not OpenAICompatProvider(settings).supports_reasoning_content()

    async def test_reasoning_content_forwarded_only_when_supported(self):
        history = [
            Message(role="user", content="q"),
            Message(
                role="assistant",
                content="",
                tool_calls=[ToolCallRequest(id="c1", name="echo", arguments="{}")],
                reasoning_content="because",
            ),
            Message(role="tool", content="r", tool_call_id="c1"),
        ]
        body = sse({"choices": [{"delta": {"content": "ok"}}]}, "[DONE]")

        plain = Recorder(httpx.Response(200, content=body))
        await OpenAICompatProvider(openai_settings(), transport=httpx.MockTransport(plain)).complete(history)
        assert "reasoning_content" not in plain.last_body["messages"][1]
        assert plain.last_body["messages"][1]["tool_calls"][0]["id"] == "c1"
        assert plain.last_body["messages"][2]["tool_call_id"] == "c1"

        reasoner = Recorder(httpx.Response(200, content=body))
        await OpenAICompatProvider(
            openai_settings(model="x-reasoner"), transport=httpx.MockTransport(reasoner)
        ).complete(history)
        assert reasoner.last_body["messages"][1]["reasoning_content"] == "because"

    async def test_extra_headers(self):
        body = sse({"choices": [{"delta": {"content": "ok"}}]}, "[DONE]")
        recorder = Recorder(httpx.Response(200, content=body))
        settings = openai_settings(extra_headers={"X-Trace": 7})
        await OpenAICompatProvider(settings, transport=httpx.MockTransport(recorder)).complete(
            [{"role": "user", "content": "x"}]
        )
        assert recorder.requests[0].headers["x-trace"] == "7"


# ---------------------------------------------------------------------------
# Ollama adapter
# ---------------------------------------------------------------------------


def ndjson(*objects) -> bytes:
    return "".join(json.dumps(o) + "\n" for o in objects).encode("utf-8")


class TestOllama:
    def settings(self, **kwargs) -> ModelSettings:
        return ModelSettings(name="local", provider="ollama", model="qwen3", **kwargs)

    async def test_streamed_text_and_tool_calls(self):
        body = ndjson(
            {"message": {"role": "assistant", "thinking": "hmm"}, "done": False},
            {"message": {"role": "assistant", "content": "Sure"}, "done": False},
            {"message": {"tool_calls": [{"function": {"name": "echo", "arguments": {"message": "a"}}}]}, "done": False},
            {"message": {"tool_calls": [{"function": {"name": "echo", "arguments": {"message": "b"}}}]}, "done": False},
            {"message": {"content": ""}, "done": True},
        )
        recorder = Recorder(httpx.Response(200, content=body))
        provider = OllamaProvider(self.settings(), transport=httpx.MockTransport(recorder))

        result = await provider.complete([{"role": "user", "content": "x"}])

        assert result.content == "Sure"
        assert result.reasoning == "hmm"
        assert [json.loads(c.arguments) for c in result.tool_calls] == [{"message": "a"}, {"message": "b"}]
        assert len({c.id for c in result.tool_calls}) == 2
        assert str(recorder.requests[0].url) == "http://localhost:11434/api/chat"
        assert "authorization" not in recorder.requests[0].headers

    async def test_history_arguments_sent_as_objects(self):
        recorder = Recorder(httpx.Response(200, json={"message": {"content": "done"}}))
        provider = OllamaProvider(
            self.settings(temperature=0.1, max_output_tokens=32),
            transport=httpx.MockTransport(recorder),
        )
        history = [
            Message(role="user", content="q"),
            Message(
                role="assistant",
                content="",
                tool_calls=[ToolCallRequest(id="c1", name="echo", arguments='{"message": "x"}')],
            ),
            Message(role="tool", content="x", tool_call_id="c1"),
        ]

        result = await provider.complete(history, stream=False)

        assert result.content == "done"
        sent = recorder.last_body
        assert sent["messages"][1]["tool_calls"][0]["function"]["arguments"] == {"message": "x"}
        assert sent["options"] == {"temperature": 0.1, "num_predict": 32}
        assert sent["stream"] is False

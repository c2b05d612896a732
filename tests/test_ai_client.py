"""Tests for the OpenAI-compatible AI client and its stream backend."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable, cast

import httpx
import pytest
from openai import APIConnectionError, AsyncOpenAI

from clipper.ai.client import (
    AIClient,
    ApproxByteCounter,
    ClientSettings,
    OpenAIStreamBackend,
    StreamDelta,
    StreamInterruptedError,
    TokenCounterRegistry,
)
from clipper.ai.orchestration import Chunk, Info, ModelLoadError, PromptContext, ToolCallNative


@dataclass
class _FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None
    content: str | None = None
    name: str | None = None
    index: int | None = None
    arguments: str | None = None
    parsed_arguments: Any | None = None


class _FakeStream:
    """Yields events in order; an exception in the list is raised in place."""

    def __init__(self, events: Iterable[_FakeEvent | Exception]):
        self._iterator = iter(list(events))

    def __aiter__(self) -> "_FakeStream":
        return self

    async def __anext__(self) -> _FakeEvent:
        try:
            item = next(self._iterator)
        except StopIteration as exc:
            raise StopAsyncIteration from exc
        if isinstance(item, Exception):
            raise item
        return item


class _FakeStreamContext:
    def __init__(self, events: Iterable[_FakeEvent | Exception]):
        self._events = list(events)

    async def __aenter__(self) -> _FakeStream:
        return _FakeStream(self._events)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeCompletions:
    def __init__(self, events: Iterable[_FakeEvent | Exception], *, failures: int = 0):
        self._events = list(events)
        self._failures = failures
        self.calls: list[dict[str, Any]] = []

    def stream(self, **kwargs: Any) -> _FakeStreamContext:
        self.calls.append(kwargs)
        if self._failures:
            self._failures -= 1
            raise APIConnectionError(request=httpx.Request("POST", "http://local/v1/chat/completions"))
        return _FakeStreamContext(self._events)


class _FakeModels:
    def __init__(self, payload: list[SimpleNamespace], *, error: Exception | None = None):
        self._payload = payload
        self._error = error
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return SimpleNamespace(data=self._payload)


class _FakeOpenAI(SimpleNamespace):
    closed = False

    async def close(self) -> None:
        self.closed = True


def _make_client(
    events: Iterable[_FakeEvent | Exception] = (),
    *,
    models: _FakeModels | None = None,
    failures: int = 0,
    **settings: Any,
) -> tuple[AIClient, _FakeOpenAI]:
    fake = _FakeOpenAI(
        chat=SimpleNamespace(completions=_FakeCompletions(events, failures=failures)),
        models=models or _FakeModels([SimpleNamespace(id="test-model")]),
    )
    registry = TokenCounterRegistry(factory=None)
    registry.register("stub", ApproxByteCounter(model_name="stub"))
    registry.register("test-model", ApproxByteCounter(model_name="test-model"))
    options = {"base_url": "http://local", "api_key": "test", "model": "stub", "retry_min_seconds": 0.0}
    options.update(settings)
    client = AIClient(ClientSettings(**options), client=cast(AsyncOpenAI, fake), token_registry=registry)
    return client, fake


class TestAIClient:
    @pytest.mark.asyncio
    async def test_list_models_caches_results(self) -> None:
        models = _FakeModels([SimpleNamespace(id="gpt-4o"), SimpleNamespace(id="gpt-4o-mini")])
        client, _ = _make_client(models=models)

        first = await client.list_models()
        second = await client.list_models()
        refreshed = await client.list_models(refresh=True)

        assert first == second == refreshed == ["gpt-4o", "gpt-4o-mini"]
        assert models.calls == 2

    @pytest.mark.asyncio
    async def test_stream_chat_normalizes_events(self) -> None:
        events = [
            _FakeEvent(type="chunk"),
            _FakeEvent(type="content.delta", delta="Hello"),
            _FakeEvent(type="content.delta", delta=""),
            _FakeEvent(type="tool_calls.function.arguments.delta", name="getTodayDate", arguments="{"),
            _FakeEvent(type="tool_calls.function.arguments.done", name="getTodayDate", index=0, arguments="{}"),
            _FakeEvent(type="content.done", content="Hello"),
        ]
        client, fake = _make_client(events)

        received = [event async for event in client.stream_chat([{"role": "user", "content": "hi"}])]

        assert received == [
            StreamDelta("text", text="Hello"),
            StreamDelta("tool_call", tool_name="getTodayDate", tool_arguments="{}"),
        ]
        call = fake.chat.completions.calls[0]
        assert call["model"] == "stub"
        assert call["temperature"] == 0.2
        assert "tools" not in call
        assert "max_tokens" not in call

    @pytest.mark.asyncio
    async def test_stream_chat_retries_connection_errors(self) -> None:
        client, fake = _make_client([_FakeEvent(type="content.delta", delta="ok")], failures=1, max_retries=2)

        received = [delta.text async for delta in client.stream_chat([{"role": "user", "content": "hi"}])]

        assert received == ["ok"]
        assert len(fake.chat.completions.calls) == 2

    @pytest.mark.asyncio
    async def test_stream_chat_does_not_replay_partial_output(self) -> None:
        dropped = APIConnectionError(request=httpx.Request("POST", "http://local/v1/chat/completions"))
        client, fake = _make_client([_FakeEvent(type="content.delta", delta="par"), dropped], max_retries=3)
        received: list[str] = []

        with pytest.raises(StreamInterruptedError):
            async for delta in client.stream_chat([{"role": "user", "content": "hi"}]):
                received.append(delta.text)

        assert received == ["par"]
        assert len(fake.chat.completions.calls) == 1

    @pytest.mark.asyncio
    async def test_stream_chat_gives_up_after_max_retries(self) -> None:
        client, fake = _make_client(failures=5, max_retries=2)

        with pytest.raises(APIConnectionError):
            async for _ in client.stream_chat([{"role": "user", "content": "hi"}]):
                pass
        assert len(fake.chat.completions.calls) == 2

    @pytest.mark.asyncio
    async def test_stream_chat_requires_messages(self) -> None:
        client, _ = _make_client()
        with pytest.raises(ValueError):
            async for _ in client.stream_chat([]):
                pass

    def test_use_model_switches_settings(self) -> None:
        client, _ = _make_client()
        client.use_model("test-model")
        assert client.settings.model == "test-model"

    def test_count_tokens_uses_registered_counter(self) -> None:
        client, _ = _make_client()
        assert client.count_tokens("") == 0
        assert client.count_tokens("abcdefgh") == 2

    def test_approx_counter(self) -> None:
        counter = ApproxByteCounter(bytes_per_token=3)
        assert counter.count("abcd") == 2
        assert TokenCounterRegistry(factory=None).get("unknown").count("a") == 1

    @pytest.mark.asyncio
    async def test_aclose_closes_underlying_client(self) -> None:
        client, fake = _make_client()
        await client.aclose()
        assert fake.closed is True


class TestOpenAIStreamBackend:
    @pytest.mark.asyncio
    async def test_open_maps_events_and_reports_throughput(self) -> None:
        events = [
            _FakeEvent(type="content.delta", delta="Hello"),
            _FakeEvent(type="content.delta", delta=" world"),
            _FakeEvent(type="tool_calls.function.arguments.done", name="getTodayDate", arguments="{}"),
        ]
        client, fake = _make_client(events)
        ticks = iter([0.0, 1.0, 1.2, 2.0])
        backend = OpenAIStreamBackend(client, clock=lambda: next(ticks))
        context = PromptContext(system="Be brief.", user="hi")

        received = [event async for event in backend.open(context)]

        assert received == [
            Chunk("Hello"),
            Info(2.0),
            Chunk(" world"),
            ToolCallNative({"id": None, "name": "getTodayDate", "arguments": "{}"}),
            Info(2.0),
        ]
        assert fake.chat.completions.calls[0]["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
        ]

    @pytest.mark.asyncio
    async def test_load_switches_model_and_reports_progress(self) -> None:
        client, _ = _make_client()
        backend = OpenAIStreamBackend(client)
        progress: list[tuple[str, float]] = []

        await backend.load("test-model", lambda label, fraction: progress.append((label, fraction)))

        assert progress == [("test-model", 0.0), ("test-model", 0.5), ("test-model", 1.0)]
        assert client.settings.model == "test-model"

    @pytest.mark.asyncio
    async def test_load_rejects_unserved_model(self) -> None:
        client, _ = _make_client()
        with pytest.raises(ModelLoadError) as excinfo:
            await OpenAIStreamBackend(client).load("missing", lambda label, fraction: None)
        assert excinfo.value.model_id == "missing"
        assert client.settings.model == "stub"

    @pytest.mark.asyncio
    async def test_load_wraps_connection_errors(self) -> None:
        error = APIConnectionError(request=httpx.Request("GET", "http://local/v1/models"))
        client, _ = _make_client(models=_FakeModels([], error=error))
        with pytest.raises(ModelLoadError):
            await OpenAIStreamBackend(client).load("test-model", lambda label, fraction: None)

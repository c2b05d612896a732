"""OpenAI-compatible chat client and the model backend built on it.

:class:`AIClient` opens streamed chat completions against any server that
speaks the OpenAI API (llama.cpp, LM Studio, vLLM, Ollama's ``/v1``) and
retries connection-level failures. :class:`OpenAIStreamBackend` turns those
streams into the orchestrator's :class:`Chunk`/:class:`Info`/
:class:`ToolCallNative` events.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Protocol, Sequence

import httpx
import tiktoken
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .orchestration.model_types import (
    Chunk,
    Info,
    ModelLoadError,
    ProgressCallback,
    PromptContext,
    StreamEvent,
    ToolCallNative,
)

__all__ = [
    "TokenCounter",
    "ApproxByteCounter",
    "TiktokenCounter",
    "TokenCounterRegistry",
    "ClientSettings",
    "StreamDelta",
    "StreamInterruptedError",
    "AIClient",
    "OpenAIStreamBackend",
]

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    APIConnectionError,
    APIStatusError,
    RateLimitError,
    httpx.TimeoutException,
)
# Most local model names are unknown to tiktoken.
_FALLBACK_ENCODING = "cl100k_base"


# ----------------------------------------------------------------------
# Token counting
# ----------------------------------------------------------------------


class TokenCounter(Protocol):
    def count(self, text: str) -> int:
        ...


class ApproxByteCounter:
    """Estimates tokens as ``ceil(utf-8 bytes / bytes_per_token)``."""

    def __init__(self, *, model_name: str | None = None, bytes_per_token: int = 4) -> None:
        self.model_name = model_name
        self.bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text.encode("utf-8", errors="ignore")) / self.bytes_per_token))

    def __repr__(self) -> str:
        return f"ApproxByteCounter(model_name={self.model_name!r}, bytes_per_token={self.bytes_per_token})"


class TiktokenCounter:
    """Exact counts from a tiktoken encoding."""

    def __init__(self, encoding: tiktoken.Encoding, *, model_name: str | None = None) -> None:
        self.model_name = model_name
        self._encoding = encoding

    @classmethod
    def for_model(cls, model_name: str) -> "TiktokenCounter":
        try:
            encoding = tiktoken.encoding_for_model(model_name)
        except KeyError:
            LOGGER.debug("No tiktoken mapping for %s; using %s", model_name, _FALLBACK_ENCODING)
            encoding = tiktoken.get_encoding(_FALLBACK_ENCODING)
        return cls(encoding, model_name=model_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))


CounterFactory = Callable[[str], TokenCounter]


class TokenCounterRegistry:
    """Per-model token counters, created on first use.

    ``factory`` builds a counter for an unseen model name; when it is None or
    raises, the model gets an :class:`ApproxByteCounter`.
    """

    def __init__(self, *, factory: CounterFactory | None = TiktokenCounter.for_model) -> None:
        self._factory = factory
        self._counters: Dict[str, TokenCounter] = {}

    def register(self, model_name: str, counter: TokenCounter) -> None:
        key = model_name.strip().lower()
        if not key:
            raise ValueError("model_name is required to register a token counter")
        self._counters[key] = counter

    def get(self, model_name: str | None) -> TokenCounter:
        key = (model_name or "").strip().lower()
        counter = self._counters.get(key)
        if counter is None:
            counter = self._create(model_name or "")
            if key:
                self._counters[key] = counter
        return counter

    def _create(self, model_name: str) -> TokenCounter:
        if self._factory is None or not model_name.strip():
            return ApproxByteCounter(model_name=model_name or None)
        try:
            return self._factory(model_name.strip())
        except Exception as exc:
            LOGGER.debug("Token counter for %s unavailable (%s); estimating from bytes", model_name, exc)
            return ApproxByteCounter(model_name=model_name)


# ----------------------------------------------------------------------
# Chat client
# ----------------------------------------------------------------------


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry settings for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    debug_logging: bool = False


@dataclass(slots=True, frozen=True)
class StreamDelta:
    """One meaningful event from a streamed completion.

    ``kind`` is ``"text"`` for content deltas and ``"tool_call"`` for a
    native tool call whose arguments have been fully received.
    """

    kind: str
    text: str = ""
    tool_name: str | None = None
    tool_arguments: str | None = None
    tool_call_id: str | None = None


class StreamInterruptedError(RuntimeError):
    """A completion failed after part of it had already been delivered."""


def _delta_from_event(event: Any) -> StreamDelta | None:
    event_type = getattr(event, "type", None)
    if event_type == "content.delta":
        text = getattr(event, "delta", None)
        return StreamDelta("text", text=str(text)) if text else None
    if event_type == "tool_calls.function.arguments.done":
        return StreamDelta(
            "tool_call",
            tool_name=getattr(event, "name", None),
            tool_arguments=getattr(event, "arguments", None),
            tool_call_id=getattr(event, "id", None),
        )
    return None


class AIClient:
    """Streams chat completions from an OpenAI-compatible endpoint.

    Connection failures, rate limits, server errors and timeouts are retried
    with exponential backoff, but only until the first delta has been handed
    to the caller. After that a failure raises :class:`StreamInterruptedError`
    so partial output is never replayed.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
        token_registry: TokenCounterRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or AsyncOpenAI(
            api_key=settings.api_key or "not-needed",
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            max_retries=0,
        )
        self._tokens = token_registry or TokenCounterRegistry()
        self._models: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    def use_model(self, model: str) -> None:
        if not model or model == self._settings.model:
            return
        LOGGER.info("Active model %s -> %s", self._settings.model, model)
        self._settings = dataclasses.replace(self._settings, model=model)

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        temperature: float | None = 0.2,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamDelta]:
        if not messages:
            raise ValueError("stream_chat() needs at least one message")
        payload: Dict[str, Any] = {"model": self._settings.model, "messages": [dict(m) for m in messages]}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if self._settings.debug_logging:
            LOGGER.debug("Chat request:\n%s", json.dumps(payload, ensure_ascii=False, indent=2))
        else:
            LOGGER.debug("Chat request to %s with %d message(s)", payload["model"], len(messages))

        emitted = 0
        async for attempt in self._retrying():
            with attempt:
                try:
                    async with self._client.chat.completions.stream(**payload) as stream:
                        async for event in stream:
                            delta = _delta_from_event(event)
                            if delta is not None:
                                emitted += 1
                                yield delta
                except _RETRYABLE_ERRORS as exc:
                    if emitted:
                        raise StreamInterruptedError(f"stream interrupted: {exc}") from exc
                    LOGGER.info("Chat request failed (attempt %d): %s", attempt.retry_state.attempt_number, exc)
                    raise

    async def list_models(self, *, refresh: bool = False) -> List[str]:
        """Model ids served by the endpoint, cached after the first call."""
        async with self._models_lock:
            if self._models is None or refresh:
                page = await self._client.models.list()
                self._models = [item.id for item in page.data if getattr(item, "id", None)]
            return list(self._models)

    def count_tokens(self, text: str, *, model: str | None = None) -> int:
        return self._tokens.get(model or self._settings.model).count(text)

    async def aclose(self) -> None:
        await self._client.close()

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(multiplier=self._settings.retry_min_seconds, max=self._settings.retry_max_seconds),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )


# ----------------------------------------------------------------------
# Model backend
# ----------------------------------------------------------------------


class OpenAIStreamBackend:
    """:class:`ModelBackend` over an OpenAI-compatible chat endpoint.

    Text deltas become :class:`Chunk` events and completed native tool calls
    become :class:`ToolCallNative`. Throughput is reported as :class:`Info`
    at most every ``info_interval`` seconds plus once when the stream ends.
    """

    def __init__(
        self,
        client: AIClient,
        *,
        temperature: float | None = 0.2,
        max_tokens: int | None = None,
        info_interval: float = 0.5,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._client = client
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._info_interval = max(0.0, info_interval)
        self._clock = clock

    @property
    def client(self) -> AIClient:
        return self._client

    async def open(self, context: PromptContext) -> AsyncIterator[StreamEvent]:
        started = self._clock()
        last_report = started
        tokens = 0
        async for delta in self._client.stream_chat(
            context.messages(),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        ):
            if delta.kind == "tool_call":
                yield ToolCallNative({"id": delta.tool_call_id, "name": delta.tool_name, "arguments": delta.tool_arguments})
                continue
            yield Chunk(delta.text)
            tokens += self._client.count_tokens(delta.text)
            now = self._clock()
            if now > started and now - last_report >= self._info_interval:
                last_report = now
                yield Info(tokens / (now - started))
        elapsed = self._clock() - started
        if tokens and elapsed > 0:
            yield Info(tokens / elapsed)

    async def load(self, model_id: str, progress: ProgressCallback) -> None:
        """Check that ``model_id`` is served and make it the active model.

        Raises:
            ModelLoadError: If the endpoint is unreachable or lacks the model.
        """
        target = model_id or self._client.settings.model
        progress(target, 0.0)
        try:
            models = await self._client.list_models(refresh=True)
        except (APIError, httpx.HTTPError) as exc:
            raise ModelLoadError(target, str(exc)) from exc
        progress(target, 0.5)
        if models and target not in models:
            raise ModelLoadError(target, "model is not served by the endpoint")
        self._client.use_model(target)
        progress(target, 1.0)

    async def aclose(self) -> None:
        await self._client.aclose()

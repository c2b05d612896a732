"""Fakes shared by the orchestration tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Mapping, Sequence

from clipper.ai.orchestration import (
    Chunk,
    ParameterSpec,
    PromptContext,
    StreamEvent,
    ToolExecutionResult,
    ToolSpecification,
    ToolViewData,
)


@dataclass
class RecordingTool:
    """Tool returning a canned result and recording every call."""

    name: str
    result: ToolExecutionResult | Callable[[Mapping[str, Any]], ToolExecutionResult] = field(
        default_factory=lambda: ToolExecutionResult.text("ok")
    )
    parameters: Mapping[str, ParameterSpec] = field(default_factory=dict)
    delay: float = 0.0
    calls: list[dict[str, Any]] = field(default_factory=list)

    @property
    def specification(self) -> ToolSpecification:
        return ToolSpecification(name=self.name, description=f"{self.name} tool", parameters=self.parameters)

    async def execute(self, parameters: Mapping[str, Any]) -> ToolExecutionResult:
        self.calls.append(dict(parameters))
        if self.delay:
            await asyncio.sleep(self.delay)
        if callable(self.result):
            return self.result(parameters)
        return self.result


def date_view(full_date: str = "Monday, October 19, 2026 at 9:30:00 AM") -> ToolExecutionResult:
    return ToolExecutionResult.view(ToolViewData(type="date", data={"fullDate": full_date}, template="date_display"))


class ScriptedBackend:
    """Backend yielding a fixed list of events, optionally raising afterwards."""

    def __init__(
        self,
        events: Sequence[StreamEvent] = (),
        *,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.events = list(events)
        self.error = error
        self.gate = gate
        self.contexts: list[PromptContext] = []
        self.closed = 0
        self.load_calls: list[str] = []

    async def _stream(self) -> AsyncIterator[StreamEvent]:
        try:
            for event in self.events:
                yield event
                await asyncio.sleep(0)
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise self.error
        finally:
            self.closed += 1

    def open(self, context: PromptContext) -> AsyncIterator[StreamEvent]:
        self.contexts.append(context)
        return self._stream()

    async def load(self, model_id: str, progress: Callable[[str, float], None]) -> None:
        self.load_calls.append(model_id)
        progress(model_id, 0.5)


def chunks(*texts: str) -> list[StreamEvent]:
    return [Chunk(text) for text in texts]

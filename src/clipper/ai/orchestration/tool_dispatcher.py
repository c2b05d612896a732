"""Tool dispatch for one completed model turn.

The dispatcher executes parsed :class:`ToolCallCandidate` values against the
registry's selected tools, follows at most one chaining hop per candidate, and
returns the rendered fragments in parse order. Nothing raised by a tool escapes
:meth:`ToolDispatcher.execute`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Protocol, Sequence

from .output_formatter import OutputFormatter
from .tools.executor import ToolExecutor
from .tools.registry import ToolRegistry
from .tools.types import AssistantTool, ResultKind, ToolCallCandidate, ToolExecutionResult

__all__ = [
    "ToolIterationBudget",
    "DispatchRecord",
    "DispatchListener",
    "ToolDispatcher",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Iteration budget
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolIterationBudget:
    """Counts dispatch passes against an upper bound.

    Attributes:
        current: Passes consumed so far.
        maximum: Passes allowed before dispatch is skipped.
    """

    current: int = 0
    maximum: int = 5

    @property
    def exhausted(self) -> bool:
        return self.current >= self.maximum

    @property
    def remaining(self) -> int:
        return max(0, self.maximum - self.current)

    def consume(self) -> None:
        self.current += 1

    def reset(self) -> None:
        self.current = 0


# -----------------------------------------------------------------------------
# Dispatch records and listener
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class DispatchRecord:
    """Outcome of one tool invocation made by the dispatcher.

    Attributes:
        tool_name: Name of the tool that was requested.
        success: Whether the tool succeeded.
        error: Failure message, if any.
        execution_time_ms: Wall time spent in the tool.
        chained_from: Name of the tool whose result triggered this call.
    """

    tool_name: str
    success: bool
    error: str | None = None
    execution_time_ms: float = 0.0
    chained_from: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tool_name": self.tool_name,
            "success": self.success,
            "execution_time_ms": self.execution_time_ms,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.chained_from is not None:
            data["chained_from"] = self.chained_from
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


class DispatchListener(Protocol):
    """Callback protocol for dispatch events."""

    def on_tool_start(self, tool_name: str, parameters: Mapping[str, Any]) -> None:
        """Called when a tool starts execution."""
        ...

    def on_tool_complete(self, record: DispatchRecord) -> None:
        """Called when a tool finishes, successfully or not."""
        ...


# -----------------------------------------------------------------------------
# Tool Dispatcher
# -----------------------------------------------------------------------------


class ToolDispatcher:
    """Executes tool call candidates and renders their fragments.

    Example:
        dispatcher = ToolDispatcher()
        budget = ToolIterationBudget(maximum=5)
        fragments = await dispatcher.execute(candidates, registry, budget)
    """

    def __init__(
        self,
        executor: ToolExecutor | None = None,
        formatter: OutputFormatter | None = None,
        *,
        listener: DispatchListener | None = None,
    ) -> None:
        self._executor = executor or ToolExecutor()
        self._formatter = formatter or OutputFormatter()
        self._listener = listener

    @property
    def executor(self) -> ToolExecutor:
        return self._executor

    @property
    def formatter(self) -> OutputFormatter:
        return self._formatter

    def set_listener(self, listener: DispatchListener | None) -> None:
        self._listener = listener

    async def execute(
        self,
        candidates: Sequence[ToolCallCandidate],
        registry: ToolRegistry,
        budget: ToolIterationBudget,
        *,
        is_cancelled: Callable[[], bool] | None = None,
    ) -> list[str]:
        """Run one dispatch pass.

        Args:
            candidates: Parsed calls, in parse order.
            registry: Source of the selected tools, snapshotted once per pass.
            budget: Shared iteration counter; consumed once per pass.
            is_cancelled: Checked before each candidate; remaining candidates
                are skipped once it returns True.

        Returns:
            Rendered fragments, in parse order, chained fragments directly
            after their trigger.
        """
        if not candidates:
            return []
        if budget.exhausted:
            LOGGER.info(
                "Tool iteration budget exhausted (%d/%d); skipping %d call(s)",
                budget.current,
                budget.maximum,
                len(candidates),
            )
            return []
        budget.consume()

        selected = registry.selected_snapshot()
        fragments: list[str] = []
        for candidate in candidates:
            if is_cancelled is not None and is_cancelled():
                LOGGER.debug("Dispatch cancelled; skipping remaining tool calls")
                break
            fragments.extend(await self._dispatch_one(candidate, selected, is_cancelled))
        return fragments

    async def _dispatch_one(
        self,
        candidate: ToolCallCandidate,
        selected: Mapping[str, AssistantTool],
        is_cancelled: Callable[[], bool] | None,
    ) -> list[str]:
        name = candidate.name
        tool = selected.get(name)
        if tool is None:
            LOGGER.info("Model requested unavailable tool: %s", name)
            self._notify_complete(DispatchRecord(tool_name=name, success=False, error="tool not found"))
            return [self._formatter.format_error(name, "tool not found")]

        result = await self._invoke(tool, candidate.parameters)
        if not result.success:
            return [self._formatter.format_error(name, result.error)]

        fragments = self._render(name, result)
        if fragments is None:
            return [self._formatter.format_error(name, "result could not be rendered")]
        chain = result.chain_parameters
        if chain is None:
            return fragments
        if is_cancelled is not None and is_cancelled():
            LOGGER.debug("Dispatch cancelled; skipping chained call from %s", name)
            return fragments

        next_name = result.suggested_next_tool or ""
        next_tool = selected.get(next_name)
        if next_tool is None:
            LOGGER.debug("Chained tool %s from %s is not selected; omitted", next_name, name)
            return fragments
        chained = await self._invoke(next_tool, chain, chained_from=name)
        rendered = self._render(next_name, chained) if chained.success else None
        if rendered is not None:
            fragments.extend(rendered)
        else:
            LOGGER.debug("Chained call %s -> %s failed: %s", name, next_name, chained.error)
        return fragments

    async def _invoke(
        self,
        tool: AssistantTool,
        parameters: Mapping[str, Any],
        *,
        chained_from: str | None = None,
    ) -> ToolExecutionResult:
        name = tool.specification.name
        self._notify_start(name, parameters)
        start_time = time.perf_counter()
        result = await self._executor.run(tool, parameters)
        record = DispatchRecord(
            tool_name=name,
            success=result.success,
            error=result.error,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
            chained_from=chained_from,
            metadata=dict(result.metadata),
        )
        self._notify_complete(record)
        return result

    def _render(self, name: str, result: ToolExecutionResult) -> list[str] | None:
        """Fragments for a successful result, or None when formatting fails."""
        try:
            fragments = [self._formatter.format_result(name, result)]
            if result.kind is ResultKind.RICH_VIEW:
                fragments.append(self._formatter.format_view_summary(result.payload))
        except Exception:
            LOGGER.warning("Could not render result of %s", name, exc_info=True)
            return None
        return [fragment for fragment in fragments if fragment]

    def _notify_start(self, tool_name: str, parameters: Mapping[str, Any]) -> None:
        if self._listener is not None:
            try:
                self._listener.on_tool_start(tool_name, parameters)
            except Exception:
                LOGGER.debug("Listener on_tool_start failed", exc_info=True)

    def _notify_complete(self, record: DispatchRecord) -> None:
        if self._listener is not None:
            try:
                self._listener.on_tool_complete(record)
            except Exception:
                LOGGER.debug("Listener on_tool_complete failed", exc_info=True)

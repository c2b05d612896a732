"""Tests for ToolDispatcher: ordering, budget, chaining and cancellation."""

from __future__ import annotations

from typing import Any, Mapping

import pytest

from clipper.ai.orchestration import (
    DispatchRecord,
    ParameterSpec,
    ResultKind,
    ToolCallCandidate,
    ToolDispatcher,
    ToolExecutionResult,
    ToolIterationBudget,
    ToolRegistry,
)
from tests.helpers import RecordingTool, date_view


class _Listener:
    def __init__(self) -> None:
        self.started: list[str] = []
        self.completed: list[DispatchRecord] = []

    def on_tool_start(self, tool_name: str, parameters: Mapping[str, Any]) -> None:
        self.started.append(tool_name)

    def on_tool_complete(self, record: DispatchRecord) -> None:
        self.completed.append(record)


class _BrokenListener:
    def on_tool_start(self, tool_name, parameters):
        raise RuntimeError("listener broke")

    def on_tool_complete(self, record):
        raise RuntimeError("listener broke")


def _search_tool() -> RecordingTool:
    return RecordingTool(
        "searchDuckduckgo",
        result=lambda params: ToolExecutionResult.text(f"results for {params['query']}"),
        parameters={"query": ParameterSpec("string", "Query", required=True)},
    )


def _refine_tool(query: str = "x") -> RecordingTool:
    return RecordingTool(
        "refineSearchQuery",
        result=ToolExecutionResult.chained({"query": query}, next_tool="searchDuckduckgo"),
    )


class TestBasics:
    @pytest.mark.asyncio
    async def test_no_candidates_does_not_consume_budget(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        budget = ToolIterationBudget()
        assert await dispatcher.execute([], registry, budget) == []
        assert budget.current == 0

    @pytest.mark.asyncio
    async def test_date_view_produces_view_and_summary(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        registry.register(RecordingTool("getTodayDate", result=date_view("Monday")), selected=True)

        fragments = await dispatcher.execute(
            [ToolCallCandidate("getTodayDate", {"displayType": "view"})], registry, ToolIterationBudget()
        )

        assert len(fragments) == 2
        assert fragments[0].startswith("```tool-view")
        assert fragments[1] == "📅 Today's Date\nMonday"

    @pytest.mark.asyncio
    async def test_unknown_tool_yields_error_fragment(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        fragments = await dispatcher.execute([ToolCallCandidate("frobnicate")], registry, ToolIterationBudget())
        assert fragments == ["❌ frobnicate failed: tool not found"]

    @pytest.mark.asyncio
    async def test_unselected_tool_is_not_found(self, dispatcher: ToolDispatcher, registry: ToolRegistry) -> None:
        tool = RecordingTool("hidden")
        registry.register(tool)
        fragments = await dispatcher.execute([ToolCallCandidate("hidden")], registry, ToolIterationBudget())
        assert fragments == ["❌ hidden failed: tool not found"]
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_candidates(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        registry.register(RecordingTool("bad", result=ToolExecutionResult.failure("no access")), selected=True)
        registry.register(RecordingTool("good", result=ToolExecutionResult.text("fine")), selected=True)

        fragments = await dispatcher.execute(
            [ToolCallCandidate("bad"), ToolCallCandidate("good")], registry, ToolIterationBudget()
        )

        assert fragments == ["❌ bad failed: no access", "fine"]

    @pytest.mark.asyncio
    async def test_missing_parameter_yields_error_fragment(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        registry.register(_search_tool(), selected=True)
        fragments = await dispatcher.execute([ToolCallCandidate("searchDuckduckgo")], registry, ToolIterationBudget())
        assert fragments == ["❌ searchDuckduckgo failed: Missing required parameter: query"]

    @pytest.mark.asyncio
    async def test_unrenderable_result_does_not_stop_later_candidates(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        bad_view = ToolExecutionResult(success=True, kind=ResultKind.RICH_VIEW, payload={"type": "date"})
        registry.register(RecordingTool("viewer", result=bad_view), selected=True)
        registry.register(RecordingTool("after", result=ToolExecutionResult.text("after")), selected=True)

        fragments = await dispatcher.execute(
            [ToolCallCandidate("viewer"), ToolCallCandidate("after")], registry, ToolIterationBudget()
        )

        assert fragments == ["❌ viewer failed: result could not be rendered", "after"]

    @pytest.mark.asyncio
    async def test_selection_is_fixed_for_the_pass(self, dispatcher: ToolDispatcher, registry: ToolRegistry) -> None:
        def _deselect_second(params: Mapping[str, Any]) -> ToolExecutionResult:
            registry.remove_tool("second")
            return ToolExecutionResult.text("first ok")

        second = RecordingTool("second")
        registry.register(RecordingTool("first", result=_deselect_second), selected=True)
        registry.register(second, selected=True)

        fragments = await dispatcher.execute(
            [ToolCallCandidate("first"), ToolCallCandidate("second")], registry, ToolIterationBudget()
        )

        assert fragments == ["first ok", "ok"]
        assert len(second.calls) == 1
        assert not registry.is_selected("second")


class TestOrdering:
    @pytest.mark.asyncio
    async def test_fragments_follow_parse_order(self, dispatcher: ToolDispatcher, registry: ToolRegistry) -> None:
        registry.register(RecordingTool("a", result=ToolExecutionResult.text("A-fragment")), selected=True)
        registry.register(RecordingTool("b", result=ToolExecutionResult.text("B-fragment")), selected=True)

        fragments = await dispatcher.execute(
            [ToolCallCandidate("b"), ToolCallCandidate("a"), ToolCallCandidate("b")], registry, ToolIterationBudget()
        )

        assert fragments == ["B-fragment", "A-fragment", "B-fragment"]

    @pytest.mark.asyncio
    async def test_slow_first_tool_still_renders_first(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        registry.register(RecordingTool("slow", result=ToolExecutionResult.text("slow"), delay=0.05), selected=True)
        registry.register(RecordingTool("fast", result=ToolExecutionResult.text("fast")), selected=True)

        fragments = await dispatcher.execute(
            [ToolCallCandidate("slow"), ToolCallCandidate("fast")], registry, ToolIterationBudget()
        )

        assert fragments == ["slow", "fast"]


class TestBudget:
    @pytest.mark.asyncio
    async def test_budget_consumed_once_per_pass(self, dispatcher: ToolDispatcher, registry: ToolRegistry) -> None:
        registry.register(RecordingTool("a"), selected=True)
        budget = ToolIterationBudget(maximum=5)

        await dispatcher.execute([ToolCallCandidate("a")] * 3, registry, budget)

        assert budget.current == 1

    @pytest.mark.asyncio
    async def test_passes_are_capped_by_shared_budget(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        tool = RecordingTool("a")
        registry.register(tool, selected=True)
        budget = ToolIterationBudget(maximum=3)

        results = [await dispatcher.execute([ToolCallCandidate("a")], registry, budget) for _ in range(7)]

        assert [bool(fragments) for fragments in results] == [True, True, True, False, False, False, False]
        assert len(tool.calls) == 3
        assert budget.exhausted and budget.remaining == 0

    def test_budget_reset(self) -> None:
        budget = ToolIterationBudget(current=2, maximum=2)
        assert budget.exhausted
        budget.reset()
        assert budget.current == 0 and budget.remaining == 2


class TestChaining:
    @pytest.mark.asyncio
    async def test_chained_call_runs_after_trigger(self, dispatcher: ToolDispatcher, registry: ToolRegistry) -> None:
        search = _search_tool()
        registry.register(_refine_tool("x"), selected=True)
        registry.register(search, selected=True)

        fragments = await dispatcher.execute(
            [ToolCallCandidate("refineSearchQuery", {"originalQuery": "what is x"})], registry, ToolIterationBudget()
        )

        assert search.calls == [{"query": "x"}]
        assert fragments == ["🔗 refineSearchQuery → searchDuckduckgo: x", "results for x"]

    @pytest.mark.asyncio
    async def test_chain_fragments_precede_next_candidate(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        registry.register(_refine_tool("x"), selected=True)
        registry.register(_search_tool(), selected=True)
        registry.register(RecordingTool("after", result=ToolExecutionResult.text("after")), selected=True)

        fragments = await dispatcher.execute(
            [ToolCallCandidate("refineSearchQuery"), ToolCallCandidate("after")], registry, ToolIterationBudget()
        )

        assert fragments[-2:] == ["results for x", "after"]

    @pytest.mark.asyncio
    async def test_failed_chain_is_omitted(self, dispatcher: ToolDispatcher, registry: ToolRegistry) -> None:
        registry.register(_refine_tool(), selected=True)
        registry.register(
            RecordingTool("searchDuckduckgo", result=ToolExecutionResult.failure("offline")), selected=True
        )

        fragments = await dispatcher.execute([ToolCallCandidate("refineSearchQuery")], registry, ToolIterationBudget())

        assert fragments == ["🔗 refineSearchQuery → searchDuckduckgo: x"]

    @pytest.mark.asyncio
    async def test_unrenderable_chain_result_is_omitted(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        bad_view = ToolExecutionResult(success=True, kind=ResultKind.RICH_VIEW, payload=["not", "a", "view"])
        registry.register(_refine_tool(), selected=True)
        registry.register(RecordingTool("searchDuckduckgo", result=bad_view), selected=True)

        fragments = await dispatcher.execute([ToolCallCandidate("refineSearchQuery")], registry, ToolIterationBudget())

        assert fragments == ["🔗 refineSearchQuery → searchDuckduckgo: x"]

    @pytest.mark.asyncio
    async def test_unselected_chain_target_is_omitted(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        search = _search_tool()
        registry.register(_refine_tool(), selected=True)
        registry.register(search)

        fragments = await dispatcher.execute([ToolCallCandidate("refineSearchQuery")], registry, ToolIterationBudget())

        assert len(fragments) == 1
        assert search.calls == []

    @pytest.mark.asyncio
    async def test_chain_does_not_consume_budget(self, dispatcher: ToolDispatcher, registry: ToolRegistry) -> None:
        registry.register(_refine_tool(), selected=True)
        registry.register(_search_tool(), selected=True)
        budget = ToolIterationBudget()

        await dispatcher.execute([ToolCallCandidate("refineSearchQuery")], registry, budget)

        assert budget.current == 1


class TestCancellationAndListeners:
    @pytest.mark.asyncio
    async def test_cancel_check_skips_remaining_candidates(
        self, dispatcher: ToolDispatcher, registry: ToolRegistry
    ) -> None:
        first = RecordingTool("first")
        second = RecordingTool("second")
        registry.register(first, selected=True)
        registry.register(second, selected=True)
        cancelled = False

        def _after_first(params: Mapping[str, Any]) -> ToolExecutionResult:
            nonlocal cancelled
            cancelled = True
            return ToolExecutionResult.text("first done")

        first.result = _after_first
        fragments = await dispatcher.execute(
            [ToolCallCandidate("first"), ToolCallCandidate("second")],
            registry,
            ToolIterationBudget(),
            is_cancelled=lambda: cancelled,
        )

        assert fragments == ["first done"]
        assert second.calls == []

    @pytest.mark.asyncio
    async def test_cancel_check_skips_chain(self, dispatcher: ToolDispatcher, registry: ToolRegistry) -> None:
        search = _search_tool()
        registry.register(_refine_tool(), selected=True)
        registry.register(search, selected=True)
        checks = iter([False, True])

        await dispatcher.execute(
            [ToolCallCandidate("refineSearchQuery")],
            registry,
            ToolIterationBudget(),
            is_cancelled=lambda: next(checks),
        )

        assert search.calls == []

    @pytest.mark.asyncio
    async def test_listener_receives_records(self, registry: ToolRegistry) -> None:
        listener = _Listener()
        dispatcher = ToolDispatcher(listener=listener)
        registry.register(_refine_tool(), selected=True)
        registry.register(_search_tool(), selected=True)

        await dispatcher.execute(
            [ToolCallCandidate("refineSearchQuery"), ToolCallCandidate("ghost")], registry, ToolIterationBudget()
        )

        assert listener.started == ["refineSearchQuery", "searchDuckduckgo"]
        assert [(r.tool_name, r.success, r.chained_from) for r in listener.completed] == [
            ("refineSearchQuery", True, None),
            ("searchDuckduckgo", True, "refineSearchQuery"),
            ("ghost", False, None),
        ]

    @pytest.mark.asyncio
    async def test_listener_errors_are_contained(self, registry: ToolRegistry) -> None:
        dispatcher = ToolDispatcher()
        dispatcher.set_listener(_BrokenListener())
        registry.register(RecordingTool("a", result=ToolExecutionResult.text("ok")), selected=True)

        assert await dispatcher.execute([ToolCallCandidate("a")], registry, ToolIterationBudget()) == ["ok"]

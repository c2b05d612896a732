"""Portable assistant tools and the default registry wiring."""

from __future__ import annotations

import datetime as _dt
import logging
from typing import Callable

import httpx

from ...services.settings import DEFAULT_SELECTED_TOOLS, Settings
from ..orchestration.tools import ToolRegistry
from .date_tool import TodayDateTool
from .query_refine import QueryRefineTool
from .search_results import ProcessSearchResultsTool
from .search_tool import DuckDuckGoSearchTool

__all__ = [
    "TodayDateTool",
    "DuckDuckGoSearchTool",
    "QueryRefineTool",
    "ProcessSearchResultsTool",
    "create_default_registry",
]

LOGGER = logging.getLogger(__name__)


def create_default_registry(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    clock: Callable[[], _dt.datetime] | None = None,
) -> ToolRegistry:
    """Register every portable tool and select the configured ones.

    ``settings.selected_tools`` decides the initial selection; names that are
    not registered are skipped with a warning.
    """

    registry = ToolRegistry()
    date_tool = TodayDateTool(clock=clock) if clock is not None else TodayDateTool()
    registry.register(date_tool)
    registry.register(DuckDuckGoSearchTool(http_client=http_client))
    if clock is not None:
        registry.register(QueryRefineTool(clock=lambda: clock().date()))
    else:
        registry.register(QueryRefineTool())
    registry.register(ProcessSearchResultsTool())

    selection = settings.selected_tools if settings is not None else DEFAULT_SELECTED_TOOLS
    registry.set_selection(selection)
    LOGGER.debug("Default registry ready: %s", registry)
    return registry

"""Tool registry for the orchestration core.

The registry owns every registered tool plus the ordered subset the user has
currently selected. Only selected tools are visible to the dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .errors import DuplicateToolError, ToolNotFoundError
from .types import (
    AssistantTool,
    AsyncToolHandler,
    FunctionTool,
    ToolHandler,
    ToolSpecification,
)

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolRegistration:
    """Record of a registered tool.

    Attributes:
        name: Tool name.
        tool: The tool implementation.
        specification: Tool specification.
        metadata: Additional registration metadata.
    """

    name: str
    tool: AssistantTool
    specification: ToolSpecification
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> str:
        return self.specification.category


class ToolRegistry:
    """Registry of available tools and the user's current selection.

    Invariant: every selected name is registered. Selecting an unknown name is
    a logged no-op, and unregistering a tool also deselects it.

    Example:
        registry = ToolRegistry()
        registry.register(TodayDateTool(), selected=True)
        registry.add_tool("searchDuckduckgo")

        tools = registry.selected_snapshot()
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}
        self._selected: list[str] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        tool: AssistantTool,
        *,
        selected: bool = False,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolRegistration:
        """Register a tool implementation.

        Args:
            tool: The tool to register.
            selected: Also add the tool to the selection.
            allow_override: If True, replaces an existing registration.
            metadata: Additional metadata to store with registration.

        Raises:
            DuplicateToolError: If the name is taken and allow_override is False.
        """
        specification = tool.specification
        name = specification.name
        if name in self._tools and not allow_override:
            raise DuplicateToolError(name=name)

        registration = ToolRegistration(
            name=name,
            tool=tool,
            specification=specification,
            metadata=dict(metadata) if metadata else {},
        )
        self._tools[name] = registration
        LOGGER.debug("Registered tool: %s", name)
        if selected:
            self.add_tool(name)
        return registration

    def register_function(
        self,
        specification: ToolSpecification,
        handler: ToolHandler | AsyncToolHandler,
        *,
        selected: bool = False,
        allow_override: bool = False,
    ) -> ToolRegistration:
        """Register a plain callable as a tool."""
        tool = FunctionTool(specification=specification, handler=handler)
        return self.register(tool, selected=selected, allow_override=allow_override)

    def unregister(self, name: str) -> bool:
        """Remove a tool and drop it from the selection.

        Returns:
            True if the tool was unregistered, False if it was unknown.
        """
        if name not in self._tools:
            return False
        del self._tools[name]
        if name in self._selected:
            self._selected.remove(name)
        LOGGER.debug("Unregistered tool: %s", name)
        return True

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @property
    def available_tools(self) -> Mapping[str, ToolSpecification]:
        """Read-only mapping of every registered tool's specification."""
        return MappingProxyType({name: reg.specification for name, reg in self._tools.items()})

    @property
    def selected_tools(self) -> tuple[str, ...]:
        """Names of the selected tools, in selection order."""
        return tuple(self._selected)

    def add_tool(self, name: str) -> bool:
        """Select a registered tool.

        Returns:
            True if the selection changed.
        """
        if name not in self._tools:
            LOGGER.warning("Ignoring selection of unregistered tool: %s", name)
            return False
        if name in self._selected:
            return False
        self._selected.append(name)
        LOGGER.debug("Selected tool: %s", name)
        return True

    def remove_tool(self, name: str) -> bool:
        """Deselect a tool.

        Returns:
            True if the selection changed.
        """
        if name not in self._selected:
            return False
        self._selected.remove(name)
        LOGGER.debug("Deselected tool: %s", name)
        return True

    def set_selection(self, names: Iterable[str]) -> None:
        """Replace the selection with ``names``, skipping unknown tools."""
        self._selected.clear()
        for name in names:
            self.add_tool(name)

    def is_selected(self, name: str) -> bool:
        return name in self._selected

    def selected_snapshot(self) -> dict[str, AssistantTool]:
        """Copy of the selected tools, keyed by name, in selection order."""
        return {name: self._tools[name].tool for name in self._selected}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> AssistantTool | None:
        """Get a registered tool by name, selected or not."""
        registration = self._tools.get(name)
        return registration.tool if registration is not None else None

    def get_required(self, name: str) -> AssistantTool:
        """Get a registered tool by name.

        Raises:
            ToolNotFoundError: If the tool is not registered.
        """
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(name=name)
        return tool

    def tools_in(self, category: str) -> list[ToolSpecification]:
        """Specifications of the registered tools in ``category``."""
        return [reg.specification for reg in self._tools.values() if reg.category == category]

    def enable_category(self, category: str) -> int:
        """Select every tool in ``category``; returns how many were added."""
        return sum(1 for spec in self.tools_in(category) if self.add_tool(spec.name))

    def disable_category(self, category: str) -> int:
        """Deselect every tool in ``category``; returns how many were removed."""
        return sum(1 for spec in self.tools_in(category) if self.remove_tool(spec.name))

    def tool_specifications(self, *, selected_only: bool = True) -> list[ToolSpecification]:
        """Specifications to advertise to the model.

        Args:
            selected_only: When False, includes unselected tools as well.
        """
        if selected_only:
            return [self._tools[name].specification for name in self._selected]
        return [reg.specification for reg in self._tools.values()]

    def get_openai_tools(self) -> list[dict[str, Any]]:
        """Selected tools in OpenAI function-tool format."""
        return [spec.to_openai_tool() for spec in self.tool_specifications()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __repr__(self) -> str:
        return f"ToolRegistry(tools={list(self._tools)}, selected={self._selected})"

"""Tool system types for the orchestration core.

This module defines the value types exchanged between the parser, the
dispatcher, the tool implementations and the output formatter.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, Union, runtime_checkable

from .errors import InvalidParameterError, MissingParameterError, ToolError

__all__ = [
    "ParameterValue",
    "ParameterSpec",
    "ToolSpecification",
    "ToolCategory",
    "ToolViewData",
    "ResultKind",
    "ToolExecutionResult",
    "ToolCallCandidate",
    "AssistantTool",
    "ToolHandler",
    "AsyncToolHandler",
    "FunctionTool",
]

# Closed JSON-compatible variant used for tool parameters.
ParameterValue = Union[
    str,
    int,
    float,
    bool,
    None,
    list["ParameterValue"],
    dict[str, "ParameterValue"],
]


# -----------------------------------------------------------------------------
# Tool Categories
# -----------------------------------------------------------------------------


class ToolCategory:
    """Standard tool categories for organization."""

    CALENDAR = "calendar"
    REMINDER = "reminder"
    CONTACT = "contact"
    LOCATION = "location"
    MUSIC = "music"
    SEARCH = "search"
    QUERY_REFINE = "query_refine"
    UTILITY = "utility"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParameterSpec:
    """Schema entry for a single tool parameter.

    Attributes:
        type: JSON schema type name ("string", "integer", "object", ...).
        description: Human-readable description for the model.
        enum: Optional tuple of allowed values.
        required: Whether the parameter must be supplied.
    """

    type: str
    description: str
    enum: tuple[str, ...] | None = None
    required: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum is not None:
            data["enum"] = list(self.enum)
        return data


@dataclass(slots=True, frozen=True)
class ToolSpecification:
    """Immutable descriptor of a tool's interface.

    Attributes:
        name: Unique identifier for the tool; also the registry key.
        description: Human-readable description of what the tool does.
        parameters: Ordered mapping of parameter name to :class:`ParameterSpec`.
        category: Tool category for organization.
    """

    name: str
    description: str
    parameters: Mapping[str, ParameterSpec] = field(default_factory=dict)
    category: str = ToolCategory.UTILITY

    @property
    def required(self) -> tuple[str, ...]:
        """Names of required parameters, in declaration order."""
        return tuple(name for name, spec in self.parameters.items() if spec.required)

    def to_json_schema(self) -> dict[str, Any]:
        """Return the JSON schema object describing the parameters."""
        return {
            "type": "object",
            "properties": {name: spec.to_dict() for name, spec in self.parameters.items()},
            "required": list(self.required),
        }

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.to_json_schema(),
            },
        }

    def validate(self, parameters: Mapping[str, Any]) -> ToolError | None:
        """Check ``parameters`` against the declared schema.

        Only presence of required parameters and enum membership are checked;
        everything else is the tool's business.

        Returns:
            The first violation found, or None when the mapping is acceptable.
        """
        for name in self.required:
            if parameters.get(name) is None:
                return MissingParameterError(parameter=name)
        for name, spec in self.parameters.items():
            if spec.enum is None or name not in parameters:
                continue
            value = parameters[name]
            if value is not None and value not in spec.enum:
                allowed = ", ".join(map(str, spec.enum))
                return InvalidParameterError(
                    parameter=name,
                    reason=f"expected one of {allowed}, got {value!r}",
                )
        return None


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolViewData:
    """Renderer-agnostic description of how a tool result should be displayed.

    Attributes:
        type: Render-hint tag, e.g. "date", "search_results", "calendar_event".
        data: Tool-specific payload.
        template: Template identifier for renderers.
    """

    type: str
    data: Mapping[str, Any] = field(default_factory=dict)
    template: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "template": self.template, "data": dict(self.data)}


class ResultKind(enum.Enum):
    """Tag of the :class:`ToolExecutionResult` payload."""

    DATA = "data"
    TEXT = "text"
    RICH_VIEW = "rich_view"
    WEB_CONTENT = "web_content"
    CHAINED_DATA = "chained_data"


@dataclass(slots=True, frozen=True)
class ToolExecutionResult:
    """Outcome of a single tool invocation.

    ``kind`` selects how ``payload`` is interpreted: a string for TEXT and
    WEB_CONTENT (a URL), a :class:`ToolViewData` for RICH_VIEW, and any value
    for DATA and CHAINED_DATA.
    """

    success: bool
    kind: ResultKind
    payload: Any = None
    error: str | None = None
    should_chain: bool = False
    suggested_next_tool: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            raise ValueError("successful results cannot carry an error")
        if not self.success and self.error is None:
            raise ValueError("failed results must carry an error message")
        if self.suggested_next_tool is not None and not self.should_chain:
            raise ValueError("suggested_next_tool requires should_chain")

    @classmethod
    def text(cls, text: str, *, metadata: Mapping[str, Any] | None = None) -> ToolExecutionResult:
        return cls(success=True, kind=ResultKind.TEXT, payload=text, metadata=metadata or {})

    @classmethod
    def view(
        cls,
        view: ToolViewData,
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolExecutionResult:
        return cls(success=True, kind=ResultKind.RICH_VIEW, payload=view, metadata=metadata or {})

    @classmethod
    def data(cls, value: Any, *, metadata: Mapping[str, Any] | None = None) -> ToolExecutionResult:
        return cls(success=True, kind=ResultKind.DATA, payload=value, metadata=metadata or {})

    @classmethod
    def web(cls, url: str, *, metadata: Mapping[str, Any] | None = None) -> ToolExecutionResult:
        return cls(success=True, kind=ResultKind.WEB_CONTENT, payload=url, metadata=metadata or {})

    @classmethod
    def chained(
        cls,
        parameters: Mapping[str, Any],
        *,
        next_tool: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ToolExecutionResult:
        return cls(
            success=True,
            kind=ResultKind.CHAINED_DATA,
            payload=dict(parameters),
            should_chain=True,
            suggested_next_tool=next_tool,
            metadata=metadata or {},
        )

    @classmethod
    def failure(cls, error: str) -> ToolExecutionResult:
        return cls(success=False, kind=ResultKind.TEXT, payload=error, error=error)

    @property
    def chain_parameters(self) -> Mapping[str, Any] | None:
        """Parameters for the follow-up tool, when this result requests one."""
        if not (self.success and self.should_chain and self.suggested_next_tool):
            return None
        if self.kind is not ResultKind.CHAINED_DATA or not isinstance(self.payload, Mapping):
            return None
        return self.payload


@dataclass(slots=True, frozen=True)
class ToolCallCandidate:
    """A parsed, not-yet-executed intention to invoke a tool."""

    name: str
    parameters: Mapping[str, ParameterValue] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Tool Protocol
# -----------------------------------------------------------------------------

# Synchronous tool handler
ToolHandler = Callable[[Mapping[str, Any]], ToolExecutionResult]

# Asynchronous tool handler
AsyncToolHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, ToolExecutionResult]]


@runtime_checkable
class AssistantTool(Protocol):
    """Protocol for tool implementations.

    ``execute`` reports failure by returning ``ToolExecutionResult.failure``;
    it may raise only :class:`MissingParameterError` or
    :class:`InvalidParameterError`.
    """

    @property
    def specification(self) -> ToolSpecification:
        ...

    async def execute(self, parameters: Mapping[str, Any]) -> ToolExecutionResult:
        ...


@dataclass
class FunctionTool:
    """Tool implementation wrapping a plain callable.

    Example:
        def greet(params):
            return ToolExecutionResult.text(f"Hello, {params.get('name', 'World')}!")

        tool = FunctionTool(
            specification=ToolSpecification(name="greet", description="Greet someone"),
            handler=greet,
        )
    """

    specification: ToolSpecification
    handler: ToolHandler | AsyncToolHandler
    _is_async: bool = field(init=False, default=False)

    def __post_init__(self) -> None:
        self._is_async = asyncio.iscoroutinefunction(self.handler)

    @property
    def name(self) -> str:
        return self.specification.name

    async def execute(self, parameters: Mapping[str, Any]) -> ToolExecutionResult:
        if self._is_async:
            return await self.handler(parameters)  # type: ignore[misc]
        return self.handler(parameters)  # type: ignore[return-value]

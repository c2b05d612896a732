"""Tool system for the orchestration core.

This package provides the tool registry, the single-tool executor, the error
vocabulary and the value types shared by tools and the dispatcher.

Example:
    from clipper.ai.orchestration.tools import (
        ToolRegistry,
        ToolExecutor,
        ToolSpecification,
        ToolExecutionResult,
    )

    registry = ToolRegistry()
    registry.register_function(
        ToolSpecification(name="greet", description="Greet someone"),
        lambda params: ToolExecutionResult.text(f"Hello, {params.get('name', 'World')}!"),
        selected=True,
    )

    executor = ToolExecutor()
    result = await executor.run(registry.get_required("greet"), {"name": "Alice"})
"""

from .errors import (
    ToolError,
    MissingParameterError,
    InvalidParameterError,
    ToolNotFoundError,
    DuplicateToolError,
    ToolTimeoutError,
)

from .types import (
    ParameterValue,
    ParameterSpec,
    ToolSpecification,
    ToolCategory,
    ToolViewData,
    ResultKind,
    ToolExecutionResult,
    ToolCallCandidate,
    AssistantTool,
    ToolHandler,
    AsyncToolHandler,
    FunctionTool,
)

from .registry import (
    ToolRegistry,
    ToolRegistration,
)

from .executor import (
    ToolExecutor,
    ExecutorConfig,
)

__all__ = [
    # errors.py
    "ToolError",
    "MissingParameterError",
    "InvalidParameterError",
    "ToolNotFoundError",
    "DuplicateToolError",
    "ToolTimeoutError",
    # types.py
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
    # registry.py
    "ToolRegistry",
    "ToolRegistration",
    # executor.py
    "ToolExecutor",
    "ExecutorConfig",
]

"""Exceptions raised around tool execution.

Ordinary tool failures are returned as unsuccessful
:class:`~clipper.ai.orchestration.tools.types.ToolExecutionResult` values.
These exceptions cover bad parameters, registry misuse and executor
timeouts; the dispatcher turns every one of them into an error fragment.
"""

from __future__ import annotations

__all__ = [
    "ToolError",
    "MissingParameterError",
    "InvalidParameterError",
    "ToolNotFoundError",
    "DuplicateToolError",
    "ToolTimeoutError",
]


class ToolError(Exception):
    """Base class; ``error_code`` is a stable identifier for logs."""

    error_code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingParameterError(ToolError):
    error_code = "missing_parameter"

    def __init__(self, parameter: str) -> None:
        super().__init__(f"Missing required parameter: {parameter}")
        self.parameter = parameter


class InvalidParameterError(ToolError):
    error_code = "invalid_parameter"

    def __init__(self, parameter: str, reason: str) -> None:
        super().__init__(f"Invalid parameter '{parameter}': {reason}")
        self.parameter = parameter
        self.reason = reason


class ToolNotFoundError(ToolError):
    error_code = "tool_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' not found")
        self.name = name


class DuplicateToolError(ToolError):
    error_code = "duplicate_tool"

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool '{name}' is already registered")
        self.name = name


class ToolTimeoutError(ToolError):
    error_code = "timeout"

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.1f}s")
        self.timeout = timeout

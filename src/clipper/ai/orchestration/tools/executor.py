"""Single-tool executor.

Runs one tool invocation with schema validation, a timeout and logging, and
folds every failure mode into a :class:`ToolExecutionResult`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from .errors import ToolError, ToolTimeoutError
from .types import AssistantTool, ToolExecutionResult

__all__ = [
    "ToolExecutor",
    "ExecutorConfig",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ExecutorConfig:
    """Configuration for the tool executor.

    Attributes:
        default_timeout: Timeout for one tool execution in seconds; None or 0 disables it.
        log_arguments: Whether to log tool arguments (may contain sensitive data).
        log_results: Whether to log tool results.
        validate_parameters: Check parameters against the tool's schema first.
    """

    default_timeout: float | None = 30.0
    log_arguments: bool = False
    log_results: bool = False
    validate_parameters: bool = True


class ToolExecutor:
    """Executes a single tool and never raises ordinary exceptions.

    Cancellation (``asyncio.CancelledError``) is not caught and propagates to
    the caller.
    """

    def __init__(self, config: ExecutorConfig | None = None) -> None:
        self._config = config or ExecutorConfig()

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    async def run(
        self,
        tool: AssistantTool,
        parameters: Mapping[str, Any],
        *,
        timeout: float | None = None,
    ) -> ToolExecutionResult:
        """Execute ``tool`` with ``parameters``.

        Args:
            tool: The tool to invoke.
            parameters: Parameters passed to ``tool.execute``.
            timeout: Optional override of ``ExecutorConfig.default_timeout``.

        Returns:
            The tool's result, or a failure result describing what went wrong.
        """
        name = tool.specification.name
        if self._config.log_arguments:
            LOGGER.debug("Executing tool %s with arguments: %s", name, dict(parameters))
        else:
            LOGGER.debug("Executing tool %s", name)

        if self._config.validate_parameters:
            try:
                violation = tool.specification.validate(parameters)
            except Exception as exc:
                LOGGER.exception("Parameter check for %s raised unexpectedly", name)
                return ToolExecutionResult.failure(f"parameter check failed: {exc}")
            if violation is not None:
                LOGGER.info("Rejected call to %s: %s", name, violation)
                return ToolExecutionResult.failure(str(violation))

        effective_timeout = timeout if timeout is not None else self._config.default_timeout
        start_time = time.perf_counter()
        try:
            if effective_timeout is not None and effective_timeout > 0:
                result = await asyncio.wait_for(tool.execute(parameters), timeout=effective_timeout)
            else:
                result = await tool.execute(parameters)
        except asyncio.TimeoutError:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning(
                "Tool %s timed out after %.1fms (timeout=%.1fs)",
                name,
                duration_ms,
                effective_timeout,
            )
            return ToolExecutionResult.failure(str(ToolTimeoutError(timeout=effective_timeout or 0.0)))
        except ToolError as exc:
            LOGGER.info("Tool %s reported %s: %s", name, exc.error_code, exc.message)
            return ToolExecutionResult.failure(exc.message)
        except Exception as exc:
            LOGGER.exception("Tool %s raised unexpectedly", name)
            return ToolExecutionResult.failure(str(exc) or type(exc).__name__)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if not isinstance(result, ToolExecutionResult):
            LOGGER.warning("Tool %s returned %s instead of a result", name, type(result).__name__)
            return ToolExecutionResult.failure(f"invalid result type {type(result).__name__}")

        if self._config.log_results:
            LOGGER.debug("Tool %s completed in %.1fms with result: %s", name, duration_ms, result)
        else:
            LOGGER.debug("Tool %s completed in %.1fms (success=%s)", name, duration_ms, result.success)
        return result

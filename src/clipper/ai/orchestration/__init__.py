"""Orchestration core: parsing, dispatch, formatting and the turn state machine."""

# Stream and state types
from .model_types import (
    Chunk,
    Info,
    ToolCallNative,
    StreamEvent,
    PromptContext,
    ProgressCallback,
    ModelBackend,
    ModelLoadError,
    TurnState,
    LoadingProgress,
    SessionSnapshot,
)

# Tool system
from .tools import (
    ToolRegistry,
    ToolExecutor,
    ExecutorConfig,
    ToolSpecification,
    ParameterSpec,
    ToolCategory,
    ToolCallCandidate,
    ToolExecutionResult,
    ToolViewData,
    ResultKind,
    AssistantTool,
    FunctionTool,
)

# Tool call parsing
from .tool_call_parser import (
    ParserConfig,
    HeuristicStrategy,
    DateIntentHeuristic,
    SearchIntentHeuristic,
    ToolCallParser,
    parse_tool_calls,
)

from .output_formatter import FormatterConfig, OutputFormatter

from .tool_dispatcher import (
    ToolIterationBudget,
    DispatchRecord,
    DispatchListener,
    ToolDispatcher,
)

from .orchestrator import (
    GenerationOrchestrator,
    OrchestratorConfig,
    SnapshotListener,
)

__all__ = [
    # model_types.py
    "Chunk",
    "Info",
    "ToolCallNative",
    "StreamEvent",
    "PromptContext",
    "ProgressCallback",
    "ModelBackend",
    "ModelLoadError",
    "TurnState",
    "LoadingProgress",
    "SessionSnapshot",
    # tools
    "ToolRegistry",
    "ToolExecutor",
    "ExecutorConfig",
    "ToolSpecification",
    "ParameterSpec",
    "ToolCategory",
    "ToolCallCandidate",
    "ToolExecutionResult",
    "ToolViewData",
    "ResultKind",
    "AssistantTool",
    "FunctionTool",
    # tool_call_parser.py
    "ParserConfig",
    "HeuristicStrategy",
    "DateIntentHeuristic",
    "SearchIntentHeuristic",
    "ToolCallParser",
    "parse_tool_calls",
    # output_formatter.py
    "FormatterConfig",
    "OutputFormatter",
    # tool_dispatcher.py
    "ToolIterationBudget",
    "DispatchRecord",
    "DispatchListener",
    "ToolDispatcher",
    # orchestrator.py
    "GenerationOrchestrator",
    "OrchestratorConfig",
    "SnapshotListener",
]

"""Value types shared by the orchestrator and model backends."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Mapping, Protocol, Union, runtime_checkable

from .tools.types import ToolSpecification

__all__ = [
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
]


# -----------------------------------------------------------------------------
# Stream events
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Chunk:
    """Visible text produced by the model."""

    text: str


@dataclass(slots=True, frozen=True)
class Info:
    """Throughput report for the current generation."""

    tokens_per_second: float


@dataclass(slots=True, frozen=True)
class ToolCallNative:
    """A tool call reported by the backend's own tool-calling channel."""

    payload: Mapping[str, Any] = field(default_factory=dict)


StreamEvent = Union[Chunk, Info, ToolCallNative]


# -----------------------------------------------------------------------------
# Prompt
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class PromptContext:
    """The augmented prompt handed to a model backend.

    Attributes:
        system: Persona, user-context and tool instruction blocks.
        user: The user's prompt text.
        tools: Specifications of the tools advertised to the model.
    """

    system: str
    user: str
    tools: tuple[ToolSpecification, ...] = ()

    @property
    def augmented_prompt(self) -> str:
        """System blocks and user prompt as one string."""
        if not self.system:
            return self.user
        return f"{self.system}\n\n{self.user}"

    def messages(self) -> list[dict[str, str]]:
        """Chat-completion style message list."""
        messages: list[dict[str, str]] = []
        if self.system:
            messages.append({"role": "system", "content": self.system})
        messages.append({"role": "user", "content": self.user})
        return messages


# -----------------------------------------------------------------------------
# Backend protocol
# -----------------------------------------------------------------------------

# Receives (label, fraction in [0, 1]) while a model loads.
ProgressCallback = Callable[[str, float], None]


class ModelLoadError(RuntimeError):
    """Raised when a backend cannot load or reach the requested model."""

    def __init__(self, model_id: str, reason: str) -> None:
        self.model_id = model_id
        self.reason = reason
        super().__init__(f"Could not load model '{model_id}': {reason}")


@runtime_checkable
class ModelBackend(Protocol):
    """Streaming text generator consumed by the orchestrator.

    ``open`` returns an async iterator that either terminates normally or
    raises once. The orchestrator may close it early.
    """

    def open(self, context: PromptContext) -> AsyncIterator[StreamEvent]:
        ...


# -----------------------------------------------------------------------------
# Observable state
# -----------------------------------------------------------------------------


class TurnState(enum.Enum):
    """Lifecycle of one generation turn."""

    IDLE = "idle"
    STREAMING = "streaming"
    AGGREGATING = "aggregating"
    DISPATCHING = "dispatching"
    FINALIZING = "finalizing"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class LoadingProgress:
    """Model loading progress."""

    label: str = ""
    fraction: float = 0.0


@dataclass(slots=True, frozen=True)
class SessionSnapshot:
    """Immutable view of the orchestrator state published to listeners."""

    state: TurnState = TurnState.IDLE
    running: bool = False
    output: str = ""
    stat: str = ""
    current_tool_iteration: int = 0
    is_loading: bool = False
    loading_progress: LoadingProgress = field(default_factory=LoadingProgress)
    model_id: str = ""

"""Generation orchestrator: owns the lifecycle of one assistant turn.

A turn moves through ``IDLE → STREAMING → AGGREGATING → DISPATCHING →
FINALIZING → IDLE``; failures pass through ``FAILED`` and cancellations
through ``CANCELLED`` before returning to ``IDLE``. All observable state is
mutated by the orchestrator's own task and published to listeners as frozen
:class:`SessionSnapshot` values.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Mapping

from ..model_store import ModelArtifactStore
from ..prompts import DEFAULT_PERSONA, build_prompt_context
from .model_types import (
    Chunk,
    Info,
    LoadingProgress,
    ModelBackend,
    ModelLoadError,
    PromptContext,
    SessionSnapshot,
    StreamEvent,
    ToolCallNative,
    TurnState,
)
from .output_formatter import OutputFormatter
from .tool_call_parser import ToolCallParser
from .tool_dispatcher import ToolDispatcher, ToolIterationBudget
from .tools.executor import ToolExecutor
from .tools.registry import ToolRegistry

__all__ = [
    "GenerationOrchestrator",
    "OrchestratorConfig",
    "SnapshotListener",
]

LOGGER = logging.getLogger(__name__)

# Receives every published snapshot.
SnapshotListener = Callable[[SessionSnapshot], None]


@dataclass(slots=True, frozen=True)
class OrchestratorConfig:
    """Configuration for the generation orchestrator.

    Attributes:
        max_tool_iterations: Dispatch passes allowed per generation.
        persona: Persona key used for the system block.
        user_context: Static user-context entries; None uses the defaults.
        model_id: Initially selected model.
        stat_format: Format of the throughput stat; receives ``tps``.
    """

    max_tool_iterations: int = 5
    persona: str = DEFAULT_PERSONA
    user_context: Mapping[str, str] | None = None
    model_id: str = ""
    stat_format: str = "{tps:.2f} tokens/s"


@contextlib.asynccontextmanager
async def _closing(stream: AsyncIterator[StreamEvent]):
    try:
        yield stream
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()


class GenerationOrchestrator:
    """Drives one generation at a time from prompt to final transcript.

    Example:
        orchestrator = GenerationOrchestrator(backend, registry)
        orchestrator.subscribe(lambda snapshot: print(snapshot.output))
        await orchestrator.generate("What's today's date?")
    """

    def __init__(
        self,
        backend: ModelBackend,
        registry: ToolRegistry,
        *,
        config: OrchestratorConfig | None = None,
        parser: ToolCallParser | None = None,
        dispatcher: ToolDispatcher | None = None,
        formatter: OutputFormatter | None = None,
        artifact_store: ModelArtifactStore | None = None,
        loaded_model: str | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._config = config or OrchestratorConfig()
        self._parser = parser or ToolCallParser()
        self._formatter = formatter or OutputFormatter()
        self._dispatcher = dispatcher or ToolDispatcher(ToolExecutor(), self._formatter)
        self._artifact_store = artifact_store

        self._state = TurnState.IDLE
        self._running = False
        self._output = ""
        self._stat = ""
        self._is_loading = False
        self._loading_progress = LoadingProgress()
        self._budget = ToolIterationBudget(maximum=self._config.max_tool_iterations)
        self._model_id = self._config.model_id
        self._loaded_model = loaded_model

        self._cancel_requested = False
        self._active_task: asyncio.Task[None] | None = None
        self._listeners: list[SnapshotListener] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    @property
    def output(self) -> str:
        return self._output

    @property
    def stat(self) -> str:
        return self._stat

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def loading_progress(self) -> LoadingProgress:
        return self._loading_progress

    @property
    def current_tool_iteration(self) -> int:
        return self._budget.current

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def loaded_model(self) -> str | None:
        return self._loaded_model

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            running=self._running,
            output=self._output,
            stat=self._stat,
            current_tool_iteration=self._budget.current,
            is_loading=self._is_loading,
            loading_progress=self._loading_progress,
            model_id=self._model_id,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener`` for snapshots; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for listener in tuple(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                LOGGER.debug("Snapshot listener failed", exc_info=True)

    def _set_state(self, state: TurnState) -> None:
        if state is not self._state:
            LOGGER.debug("Turn state %s -> %s", self._state.value, state.value)
            self._state = state
            self._publish()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(self, prompt: str) -> bool:
        """Run one turn for ``prompt``.

        Returns:
            False if a turn was already running and this call was rejected,
            True once the accepted turn has finished (in any end state).
        """
        if self._running:
            LOGGER.info("Rejecting generate(): a turn is already running")
            return False

        # Everything up to create_task runs without suspending, so a second
        # generate() issued back to back observes running=True.
        self._running = True
        self._cancel_requested = False
        self._budget = ToolIterationBudget(maximum=self._config.max_tool_iterations)
        self._output = ""
        self._state = TurnState.STREAMING
        context = build_prompt_context(
            prompt,
            persona=self._config.persona,
            user_context=self._config.user_context,
            tools=self._registry.tool_specifications(),
        )
        self._publish()

        task = asyncio.create_task(self._run_turn(context))
        self._active_task = task
        try:
            await task
        except asyncio.CancelledError:
            # cancel() can land before the turn task starts running.
            if not (self._cancel_requested and task.cancelled()):
                raise
            LOGGER.info("Generation cancelled before streaming started")
        finally:
            if self._active_task is task:
                self._active_task = None
            if task.done() and self._running:
                self._running = False
                self._state = TurnState.IDLE
                self._publish()
        return True

    def cancel(self) -> None:
        """Cancel the running turn, if any.

        While streaming, the stream is torn down immediately. While
        dispatching, the tool in flight completes and no further tool runs.
        """
        if not self._running:
            LOGGER.debug("cancel() called but no turn is running")
            return
        self._cancel_requested = True
        task = self._active_task
        if self._state is TurnState.STREAMING and task is not None and not task.done():
            LOGGER.info("Cancelling active generation stream")
            task.cancel()
        else:
            LOGGER.info("Cancellation requested during %s", self._state.value)

    async def aclose(self) -> None:
        """Cancel any running turn and wait for it to unwind."""
        task = self._active_task
        if task is not None and not task.done():
            self._cancel_requested = True
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        close = getattr(self._backend, "aclose", None)
        if callable(close):
            await close()

    async def _run_turn(self, context: PromptContext) -> None:
        try:
            text = await self._stream(context)
            if text is None:
                return
            if self._cancel_requested:
                self._set_state(TurnState.CANCELLED)
                return

            self._set_state(TurnState.AGGREGATING)
            candidates = self._parser.parse(text)
            LOGGER.debug("Parsed %d tool call(s) from %d chars", len(candidates), len(text))

            self._set_state(TurnState.DISPATCHING)
            fragments = await self._dispatcher.execute(
                candidates,
                self._registry,
                self._budget,
                is_cancelled=lambda: self._cancel_requested,
            )
            if self._cancel_requested:
                self._set_state(TurnState.CANCELLED)
                return

            self._set_state(TurnState.FINALIZING)
            cleaned = self._formatter.deduplicate(self._formatter.clean(text))
            self._output = self._formatter.render(cleaned, fragments)
            self._publish()
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            LOGGER.info("Generation cancelled")
            self._set_state(TurnState.CANCELLED)
        finally:
            self._running = False
            self._state = TurnState.IDLE
            self._publish()

    async def _stream(self, context: PromptContext) -> str | None:
        """Consume the model stream; returns the full text, or None on failure."""
        accumulator: list[str] = []
        try:
            async with _closing(self._backend.open(context)) as stream:
                async for event in stream:
                    if isinstance(event, Chunk):
                        accumulator.append(event.text)
                        self._output = "".join(accumulator)
                        self._publish()
                    elif isinstance(event, Info):
                        self._stat = self._config.stat_format.format(tps=event.tokens_per_second)
                        self._publish()
                    elif isinstance(event, ToolCallNative):
                        LOGGER.debug("Ignoring native tool call event: %s", dict(event.payload))
                    else:
                        LOGGER.debug("Ignoring unknown stream event %r", event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Model stream failed")
            self._output = f"Failed: {exc}"
            self._set_state(TurnState.FAILED)
            return None
        return "".join(accumulator)

    # ------------------------------------------------------------------
    # Model selection
    # ------------------------------------------------------------------

    def select_model(self, model_id: str) -> bool:
        """Select the model to use on the next :meth:`load`.

        Returns:
            True if the selection differs from the loaded model.
        """
        self._model_id = model_id
        self._publish()
        return model_id != self._loaded_model

    async def load(self) -> bool:
        """Load the selected model, reclaiming the previous model's artifact.

        Returns:
            True when the backend reports the model as ready.
        """
        if self._is_loading:
            LOGGER.debug("load() called while already loading")
            return False
        model_id = self._model_id
        self._is_loading = True
        self._loading_progress = LoadingProgress(model_id, 0.0)
        self._publish()
        try:
            if self._artifact_store is not None:
                self._artifact_store.reclaim(self._loaded_model, model_id)
            loader = getattr(self._backend, "load", None)
            if loader is not None:
                await loader(model_id, self._report_progress)
            self._loaded_model = model_id
            self._loading_progress = LoadingProgress(model_id, 1.0)
            return True
        except ModelLoadError as exc:
            LOGGER.warning("%s", exc)
            return False
        except Exception:
            LOGGER.exception("Model load failed for %s", model_id)
            return False
        finally:
            self._is_loading = False
            self._publish()

    def _report_progress(self, label: str, fraction: float) -> None:
        fraction = min(1.0, max(0.0, float(fraction)))
        self._loading_progress = LoadingProgress(label, fraction)
        self._publish()

    def __repr__(self) -> str:
        return f"GenerationOrchestrator(state={self._state.value}, model={self._model_id!r})"

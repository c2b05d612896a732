"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest

from clipper.ai.orchestration import (
    ExecutorConfig,
    OutputFormatter,
    ToolDispatcher,
    ToolExecutor,
    ToolRegistry,
)
from clipper.utils import logging as clipper_logging


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def formatter() -> OutputFormatter:
    return OutputFormatter()


@pytest.fixture
def dispatcher(formatter: OutputFormatter) -> ToolDispatcher:
    return ToolDispatcher(ToolExecutor(ExecutorConfig(default_timeout=2.0)), formatter)


@pytest.fixture(autouse=True)
def _isolate_clipper_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CLIPPER_API_KEY",
        "CLIPPER_BASE_URL",
        "CLIPPER_MODEL",
        "CLIPPER_PERSONA",
        "CLIPPER_MODEL_CACHE_DIR",
        "CLIPPER_DEBUG_LOGGING",
        "CLIPPER_REQUEST_TIMEOUT",
        "CLIPPER_TEMPERATURE",
        "CLIPPER_TOOL_TIMEOUT",
        "CLIPPER_MAX_TOOL_ITERATIONS",
        "CLIPPER_MAX_RETRIES",
        "CLIPPER_SELECTED_TOOLS",
        "CLIPPER_LOG_DIR",
        "CLIPPER_DEBUG",
        "CLIPPER_SETTINGS_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def restore_logging(monkeypatch: pytest.MonkeyPatch):
    """Undo root-logger changes made by ``setup_logging``."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    monkeypatch.setattr(clipper_logging, "_CONFIGURED", False)
    monkeypatch.setattr(clipper_logging, "_LOG_PATH", None)
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)

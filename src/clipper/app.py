"""Command-line entry point for the Clipper assistant."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import AIClient, ClientSettings, OpenAIStreamBackend
from .ai.model_store import ModelArtifactStore
from .ai.orchestration import (
    ExecutorConfig,
    GenerationOrchestrator,
    OrchestratorConfig,
    SessionSnapshot,
    ToolDispatcher,
    ToolExecutor,
    ToolRegistry,
    TurnState,
)
from .ai.prompts import PERSONAS
from .ai.tools import create_default_registry
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

__all__ = ["main", "build_orchestrator", "configure_logging", "load_settings", "StreamPrinter"]

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_EXIT_COMMANDS = {"exit", "quit", ":q"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, force: bool = False) -> Path:
    """Configure file logging, mirrored to stderr when debugging."""

    level = logging.DEBUG if debug else logging.INFO
    path = logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s, path=%s)", logging.getLevelName(level), path)
    return path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


class StreamPrinter:
    """Snapshot listener that writes streamed text to ``stream`` as it grows."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._printed = ""

    @property
    def printed(self) -> str:
        return self._printed

    def reset(self) -> None:
        self._printed = ""

    def __call__(self, snapshot: SessionSnapshot) -> None:
        if snapshot.state is not TurnState.STREAMING:
            return
        output = snapshot.output
        if not output.startswith(self._printed):
            return
        delta = output[len(self._printed):]
        if delta:
            self._stream.write(delta)
            self._stream.flush()
            self._printed = output

    def finish(self, final_output: str) -> None:
        """Close the streamed line and print the final transcript if it changed."""

        if self._printed:
            self._stream.write("\n")
        if final_output.strip() and final_output != self._printed:
            if self._printed:
                self._stream.write("\n")
            self._stream.write(final_output + "\n")
        self._stream.flush()
        self._printed = ""


def build_orchestrator(
    settings: Settings,
    *,
    registry: ToolRegistry | None = None,
    client: AIClient | None = None,
    debug_logging: bool = False,
) -> GenerationOrchestrator:
    """Wire client, backend, tools and orchestrator from ``settings``."""

    if client is None:
        client = AIClient(
            ClientSettings(
                base_url=settings.base_url,
                api_key=settings.api_key,
                model=settings.model,
                request_timeout=settings.request_timeout,
                max_retries=settings.max_retries,
                retry_min_seconds=settings.retry_min_seconds,
                retry_max_seconds=settings.retry_max_seconds,
                debug_logging=debug_logging or settings.debug_logging,
            )
        )
    backend = OpenAIStreamBackend(client, temperature=settings.temperature)
    executor = ToolExecutor(
        ExecutorConfig(default_timeout=settings.tool_timeout, log_arguments=settings.debug_logging)
    )
    config = OrchestratorConfig(
        max_tool_iterations=_resolve_max_tool_iterations(settings),
        persona=settings.persona,
        user_context=settings.user_context,
        model_id=settings.model,
    )
    return GenerationOrchestrator(
        backend,
        registry if registry is not None else create_default_registry(settings),
        config=config,
        dispatcher=ToolDispatcher(executor),
        artifact_store=ModelArtifactStore(settings.model_cache_dir),
        loaded_model=settings.last_loaded_model,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `clipper` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("CLIPPER_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("CLIPPER_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    store = SettingsStore(resolved_path)
    try:
        overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2
    overrides.update(
        {
            key: value
            for key, value in (("persona", args.persona), ("model", args.model), ("base_url", args.base_url))
            if value is not None
        }
    )
    settings = load_settings(resolved_path, store=store, overrides=overrides or None)

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
        debug = True

    if args.dump_settings:
        _dump_settings(settings, store, overrides=overrides)
        return 0

    if args.list_personas:
        for key, persona in PERSONAS.items():
            marker = "*" if key == settings.persona else " "
            print(f"{marker} {key:<18} {persona.name}")
        return 0

    registry = create_default_registry(settings)
    if args.enable_tool or args.disable_tool:
        if not _update_selection(registry, args.enable_tool, args.disable_tool):
            return 2
        settings.selected_tools = list(registry.selected_tools)
        _persist(store, selected_tools=settings.selected_tools)

    if args.list_tools:
        _print_tools(registry)
        return 0
    if args.enable_tool or args.disable_tool:
        _print_tools(registry)
        if args.prompt is None:
            return 0

    orchestrator = build_orchestrator(settings, registry=registry, debug_logging=debug)
    try:
        return asyncio.run(_run(orchestrator, settings, store, prompt=args.prompt, load=not args.no_load))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return 130


async def _run(
    orchestrator: GenerationOrchestrator,
    settings: Settings,
    store: SettingsStore,
    *,
    prompt: str | None,
    load: bool,
) -> int:
    printer = StreamPrinter()
    unsubscribe = orchestrator.subscribe(printer)
    try:
        if load and orchestrator.select_model(settings.model):
            if await orchestrator.load():
                settings.last_loaded_model = orchestrator.loaded_model
                _persist(store, last_loaded_model=settings.last_loaded_model)
            else:
                print(f"Warning: model '{settings.model}' could not be loaded", file=sys.stderr)

        if prompt is not None:
            return await _run_prompt(orchestrator, printer, prompt)

        print(f"Clipper ({settings.persona}) ready. Type 'exit' to quit.", file=sys.stderr)
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                return 0
            text = line.strip()
            if not text:
                continue
            if text.lower() in _EXIT_COMMANDS:
                return 0
            await _run_prompt(orchestrator, printer, text)
    finally:
        unsubscribe()
        await orchestrator.aclose()


async def _run_prompt(orchestrator: GenerationOrchestrator, printer: StreamPrinter, prompt: str) -> int:
    printer.reset()
    end_states: set[TurnState] = set()

    def _track(snapshot: SessionSnapshot) -> None:
        if snapshot.state in (TurnState.FAILED, TurnState.CANCELLED):
            end_states.add(snapshot.state)

    unsubscribe = orchestrator.subscribe(_track)
    try:
        await orchestrator.generate(prompt)
    finally:
        unsubscribe()
    printer.finish(orchestrator.output)
    if orchestrator.stat:
        print(f"[{orchestrator.stat}]", file=sys.stderr)
    return 1 if TurnState.FAILED in end_states else 0


def _persist(store: SettingsStore, **changes: Any) -> None:
    """Write ``changes`` onto the persisted settings, leaving per-run overrides out."""

    persisted = store.load()
    for key, value in changes.items():
        setattr(persisted, key, value)
    try:
        store.save(persisted)
    except OSError as exc:
        _LOGGER.warning("Failed to save settings to %s: %s", store.path, exc)


def _update_selection(registry: ToolRegistry, enable: Sequence[str], disable: Sequence[str]) -> bool:
    unknown = [name for name in (*enable, *disable) if name not in registry]
    if unknown:
        print(f"Unknown tool(s): {', '.join(unknown)}", file=sys.stderr)
        return False
    for name in enable:
        registry.add_tool(name)
    for name in disable:
        registry.remove_tool(name)
    return True


def _print_tools(registry: ToolRegistry, stream: TextIO | None = None) -> None:
    destination = stream or sys.stdout
    for name, spec in registry.available_tools.items():
        marker = "*" if registry.is_selected(name) else " "
        destination.write(f"{marker} {name:<22} {spec.description}\n")


def _env_flag(name: str, *, default: bool = False) -> bool:
    raw = os.environ.get(name)
    return default if raw is None else raw.strip().lower() in _TRUE_VALUES


def _resolve_max_tool_iterations(settings: Settings | None) -> int:
    """Configured tool iteration limit, clamped to 1..50 (5 when unusable)."""

    try:
        limit = int(settings.max_tool_iterations) if settings is not None else 5
    except (TypeError, ValueError):
        limit = 5
    return min(50, max(1, limit))


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="clipper",
        description="Chat with a local model that can call tools such as date lookup and web search.",
    )
    parser.add_argument("--prompt", "-p", metavar="TEXT", help="Run a single prompt and exit.")
    parser.add_argument("--persona", metavar="KEY", help="Persona to use for this session.")
    parser.add_argument("--model", metavar="ID", help="Model identifier served by the endpoint.")
    parser.add_argument("--base-url", metavar="URL", help="OpenAI-compatible endpoint base URL.")
    parser.add_argument("--list-tools", action="store_true", help="List registered tools and exit.")
    parser.add_argument("--list-personas", action="store_true", help="List personas and exit.")
    parser.add_argument(
        "--enable-tool",
        metavar="NAME",
        action="append",
        default=[],
        help="Select a tool and persist the selection (repeatable).",
    )
    parser.add_argument(
        "--disable-tool",
        metavar="NAME",
        action="append",
        default=[],
        help="Deselect a tool and persist the selection (repeatable).",
    )
    parser.add_argument("--no-load", action="store_true", help="Skip verifying the model before chatting.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging on stderr.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.clipper/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Parse ``--set KEY=VALUE`` entries into typed :class:`Settings` values.

    Raises:
        ValueError: For malformed entries, unknown fields or values that do
            not fit the field's type.
    """

    hints = get_type_hints(Settings)
    parsed: Dict[str, Any] = {}
    for entry in items:
        name, sep, text = entry.partition("=")
        name = name.strip()
        if not sep:
            raise ValueError(f"'{entry}' is not of the form KEY=VALUE.")
        if not name:
            raise ValueError(f"'{entry}' does not name a setting.")
        if name not in hints:
            raise ValueError(f"'{name}' is not a known setting.")
        parsed[name] = _parse_typed(hints[name], text.strip())
    return parsed


def _parse_typed(annotation: Any, text: str) -> Any:
    kind = _base_type(annotation)
    if kind is not str and text.lower() in {"none", "null"}:
        return None
    if kind is bool:
        return _parse_bool(text)
    if kind is int:
        return int(text, 10)
    if kind is float:
        return float(text)
    if kind is list:
        if not text.startswith("["):
            return [part.strip() for part in text.split(",") if part.strip()]
        return _parse_json(text, list)
    if kind is dict:
        return _parse_json(text or "{}", dict)
    return text


def _parse_json(text: str, expected: type) -> Any:
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"expected a JSON {expected.__name__}: {exc.msg}") from exc
    if not isinstance(value, expected):
        raise ValueError(f"expected a JSON {expected.__name__}, got {type(value).__name__}")
    return value


def _base_type(annotation: Any) -> Any:
    """``list[str] | None`` -> ``list``; plain classes pass through."""

    origin = get_origin(annotation)
    if origin in (list, dict):
        return origin
    if origin is None:
        return annotation
    candidates = [arg for arg in get_args(annotation) if arg is not type(None)]
    return _base_type(candidates[0]) if candidates else origin


def _parse_bool(text: str) -> bool:
    word = text.strip().lower()
    if word in _TRUE_VALUES or word in _FALSE_VALUES:
        return word in _TRUE_VALUES
    raise ValueError(f"'{text}' is neither true nor false.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    document = {
        "settings": {**asdict(settings), "api_key": redact_secret(settings.api_key)},
        "meta": {
            "path": str(store.path),
            "secret_backend": store.vault.name,
            "cli_overrides": sorted(overrides),
            "environment_variables": sorted(key for key in os.environ if key.startswith("CLIPPER_")),
        },
    }
    out = stream or sys.stdout
    json.dump(document, out, indent=2)
    out.write("\n")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

"""Root logger setup: a rotating file under ``~/.clipper/logs`` plus optional stderr."""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__all__ = ["setup_logging", "parse_level", "get_log_path", "LOG_DIR_ENV"]

LOG_DIR_ENV = "CLIPPER_LOG_DIR"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Third-party loggers that flood DEBUG with per-request chatter.
_THIRD_PARTY = ("asyncio", "httpx", "httpcore", "openai")
_OWNED_MARK = "_clipper_handler"

_CONFIGURED = False
_LOG_PATH: Path | None = None


def setup_logging(
    level: int | str = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = False,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Attach Clipper's handlers to the root logger and return the log file path.

    The directory is ``log_dir``, else ``$CLIPPER_LOG_DIR``, else
    ``~/.clipper/logs``. Only the first call takes effect unless ``force`` is
    set; a forced call replaces the handlers installed earlier and leaves
    foreign handlers alone. The console handler writes to stderr because
    stdout carries the transcript.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and _LOG_PATH is not None and not force:
        return _LOG_PATH

    numeric = parse_level(level)
    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or Path.home() / ".clipper" / "logs").expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / "clipper.log"

    root = logging.getLogger()
    for stale in [handler for handler in root.handlers if getattr(handler, _OWNED_MARK, False)]:
        root.removeHandler(stale)
        stale.close()

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)
    installed: list[logging.Handler] = [
        RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    ]
    if console:
        installed.append(logging.StreamHandler(sys.stderr))
    for handler in installed:
        handler.setLevel(numeric)
        handler.setFormatter(formatter)
        setattr(handler, _OWNED_MARK, True)
        root.addHandler(handler)
    root.setLevel(numeric)

    logging.captureWarnings(True)
    for name in _THIRD_PARTY:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))

    _CONFIGURED, _LOG_PATH = True, path
    return path


def parse_level(level: int | str) -> int:
    """``logging.DEBUG`` or ``"debug"`` (any case, padded) to an int level."""

    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def get_log_path() -> Path | None:
    return _LOG_PATH

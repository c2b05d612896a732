"""On-disk cache of downloaded model artifacts."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

__all__ = ["ModelArtifactStore", "default_cache_dir"]

LOGGER = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def default_cache_dir() -> Path:
    return Path.home() / ".clipper" / "models"


class ModelArtifactStore:
    """Maps model ids to cache paths and removes stale artifacts.

    Model ids such as ``mlx-community/Llama-3.2-1B-Instruct-4bit`` are stored
    as ``<cache_dir>/mlx-community--Llama-3.2-1B-Instruct-4bit``.
    """

    def __init__(self, cache_dir: Path | str | None = None) -> None:
        self._cache_dir = Path(cache_dir).expanduser() if cache_dir else default_cache_dir()

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def artifact_path(self, model_id: str) -> Path:
        slug = _UNSAFE_CHARS.sub("-", model_id.strip().replace("/", "--")).strip(".-")
        return self._cache_dir / (slug or "model")

    def exists(self, model_id: str) -> bool:
        return self.artifact_path(model_id).exists()

    def reclaim(self, previous: str | None, current: str | None) -> bool:
        """Delete the artifact of ``previous`` when the selection moved away from it.

        Errors are logged and swallowed; a failed cleanup never blocks loading.

        Returns:
            True if an artifact was removed.
        """
        if not previous or previous == current:
            return False
        path = self.artifact_path(previous)
        try:
            if path.is_dir():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            LOGGER.debug("No cached artifact for %s at %s", previous, path)
            return False
        except OSError as exc:
            LOGGER.warning("Unable to remove cached artifact %s: %s", path, exc)
            return False
        LOGGER.info("Removed stale model artifact %s", path)
        return True

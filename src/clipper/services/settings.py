"""User settings: the dataclass, its JSON file and the API-key vault.

Settings live in ``~/.clipper/settings.json`` unless a path is given. The
API key never touches the file in clear text; it is stored as a Fernet token
under ``api_key_ciphertext`` with the key kept next to the settings file.
Values resolve in this order: file, then CLI overrides, then ``CLIPPER_*``
environment variables.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Tuple

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "DEFAULT_SELECTED_TOOLS",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_SELECTED_TOOLS: tuple[str, ...] = ("getTodayDate", "searchDuckduckgo", "refineSearchQuery")

_HOME = Path.home() / ".clipper"
_SCHEMA_VERSION = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"


@dataclass(slots=True)
class Settings:
    """Everything the CLI remembers between runs."""

    base_url: str = "http://127.0.0.1:8080/v1"
    api_key: str = ""
    model: str = "llama-3.2-3b-instruct"
    temperature: float = 0.2
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_tool_iterations: int = 5
    tool_timeout: float = 30.0
    persona: str = "generic"
    user_context: dict[str, str] | None = None  # None = built-in context block
    selected_tools: list[str] = field(default_factory=lambda: list(DEFAULT_SELECTED_TOOLS))
    model_cache_dir: str | None = None
    last_loaded_model: str | None = None
    debug_logging: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


def _field_names() -> frozenset[str]:
    return frozenset(item.name for item in fields(Settings))


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on", "debug"}


def _env_list(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


# CLIPPER_* variable -> (field, parser). Parsers raise ValueError on bad input.
_ENVIRONMENT: Mapping[str, Tuple[str, Callable[[str], Any]]] = {
    "CLIPPER_API_KEY": ("api_key", str),
    "CLIPPER_BASE_URL": ("base_url", str),
    "CLIPPER_MODEL": ("model", str),
    "CLIPPER_PERSONA": ("persona", str),
    "CLIPPER_MODEL_CACHE_DIR": ("model_cache_dir", str),
    "CLIPPER_DEBUG_LOGGING": ("debug_logging", _env_bool),
    "CLIPPER_REQUEST_TIMEOUT": ("request_timeout", float),
    "CLIPPER_TEMPERATURE": ("temperature", float),
    "CLIPPER_TOOL_TIMEOUT": ("tool_timeout", float),
    "CLIPPER_MAX_TOOL_ITERATIONS": ("max_tool_iterations", int),
    "CLIPPER_MAX_RETRIES": ("max_retries", int),
    "CLIPPER_SELECTED_TOOLS": ("selected_tools", _env_list),
}


class SecretVault:
    """Fernet encryption for secrets, keyed by a file created on first use.

    Tokens look like ``fernet:<token>``; a bare token is accepted as well.
    """

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self.key_path = key_path or (_HOME / "settings.key")
        self._cipher: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.name}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        backend, sep, body = token.partition(":")
        if not sep:
            backend, body = self.name, token
        if backend != self.name:
            raise ValueError(f"Unknown secret backend '{backend}'")
        try:
            return self._fernet().decrypt(body.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _fernet(self) -> Fernet:
        if self._cipher is None:
            if self.key_path.exists():
                key = self.key_path.read_bytes().strip()
            else:
                key = self._write_new_key()
            self._cipher = Fernet(key)
        return self._cipher

    def _write_new_key(self) -> bytes:
        key = Fernet.generate_key()
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        staging = self.key_path.with_suffix(".tmp")
        staging.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            staging.chmod(0o600)
        staging.replace(self.key_path)
        LOGGER.debug("Generated new settings key at %s", self.key_path)
        return key


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON.

    Loading never fails on a bad file: unreadable JSON, unknown fields and
    undecryptable keys are logged and replaced by defaults. Files carrying a
    plaintext ``api_key`` or an older schema version are rewritten on load.
    """

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self.path = path or (_HOME / "settings.json")
        self.vault = vault or SecretVault(key_path=self.path.with_suffix(".key"))

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        raw = self._read()
        settings = Settings()
        if raw:
            settings, rewrite = self._decode(raw)
            if rewrite or raw.get("version") != _SCHEMA_VERSION:
                self._migrate(settings)
        if overrides:
            settings = _merge(settings, overrides, source="CLI")
        return _merge(settings, _environment_overrides(), source="environment")

    def save(self, settings: Settings) -> Path:
        document = asdict(settings)
        secret = document.pop("api_key", "")
        if secret:
            document[_CIPHERTEXT_KEY] = self.vault.encrypt(secret)
        document["version"] = _SCHEMA_VERSION
        self.path.parent.mkdir(parents=True, exist_ok=True)
        staging = self.path.with_suffix(".tmp")
        staging.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        staging.replace(self.path)
        LOGGER.debug("Wrote settings to %s", self.path)
        return self.path

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring unreadable settings file %s: %s", self.path, exc)
            return {}
        if isinstance(document, dict):
            return document
        LOGGER.warning("Ignoring settings file %s: expected a JSON object", self.path)
        return {}

    def _decode(self, raw: Dict[str, Any]) -> tuple[Settings, bool]:
        """Build settings from a file payload; the flag asks for a rewrite."""
        known = _field_names() - {"api_key"}
        try:
            settings = Settings(**{key: value for key, value in raw.items() if key in known})
        except TypeError as exc:
            LOGGER.warning("Discarding malformed settings payload: %s", exc)
            settings = Settings()

        legacy = raw.get("api_key")
        token = raw.get(_CIPHERTEXT_KEY)
        if token:
            try:
                return replace(settings, api_key=self.vault.decrypt(token)), False
            except ValueError as exc:
                LOGGER.warning("Stored API key could not be decrypted: %s", exc)
                return settings, False
        if legacy:
            LOGGER.info("Encrypting plaintext API key found in %s", self.path)
            return replace(settings, api_key=legacy), True
        return settings, False

    def _migrate(self, settings: Settings) -> None:
        try:
            self.save(settings)
        except OSError as exc:
            LOGGER.warning("Could not rewrite settings file %s: %s", self.path, exc)


def _environment_overrides() -> Dict[str, Any]:
    found: Dict[str, Any] = {}
    for variable, (name, parse) in _ENVIRONMENT.items():
        raw = os.environ.get(variable)
        if raw is None:
            continue
        try:
            found[name] = parse(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: not a valid %s", variable, raw, name)
    return found


def _merge(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    """Apply known, non-None ``overrides``; ``metadata`` is merged key by key."""
    known = _field_names()
    changes = {key: value for key, value in overrides.items() if key in known and value is not None}
    if isinstance(changes.get("metadata"), Mapping):
        changes["metadata"] = {**(settings.metadata or {}), **changes["metadata"]}
    if not changes:
        return settings
    LOGGER.debug("Applying %s overrides: %s", source, sorted(changes))
    return replace(settings, **changes)


def redact_secret(value: str) -> str:
    """Mask all but the first and last two characters of ``value``."""
    secret = (value or "").strip()
    if len(secret) <= 4:
        return "*" * len(secret)
    return secret[:2] + "*" * (len(secret) - 4) + secret[-2:]

"""Service layer helpers (settings persistence, secret storage)."""

from .settings import DEFAULT_SELECTED_TOOLS, SecretVault, Settings, SettingsStore, redact_secret

__all__ = [
    "DEFAULT_SELECTED_TOOLS",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "redact_secret",
]

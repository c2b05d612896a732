"""AI client, model backend, prompts and tool wiring."""

from .client import AIClient, ApproxByteCounter, ClientSettings, OpenAIStreamBackend, TokenCounterRegistry

__all__ = ["AIClient", "ClientSettings", "OpenAIStreamBackend", "TokenCounterRegistry", "ApproxByteCounter"]

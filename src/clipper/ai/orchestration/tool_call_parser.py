"""Tool call extraction from generated text.

Parsing is tiered. Tier 1 looks for structured ``<tool_call>{...}</tool_call>``
markers. Tier 2 runs only when Tier 1 finds nothing and applies an ordered list
of heuristic strategies to the lower-cased text. The parser is total: it never
raises and returns an empty list for anything it cannot use.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from .tools.types import ToolCallCandidate

__all__ = [
    "TOOL_MARKER_TRANSLATION",
    "TOOL_CALL_BLOCK_RE",
    "ParserConfig",
    "HeuristicStrategy",
    "DateIntentHeuristic",
    "SearchIntentHeuristic",
    "ToolCallParser",
    "normalize_tool_marker_text",
    "try_parse_json_block",
    "parse_tool_calls",
]

LOGGER = logging.getLogger(__name__)

# Normalizes stylized glyphs some models emit inside tool markers.
TOOL_MARKER_TRANSLATION = str.maketrans(
    {
        ord("＜"): "<",
        ord("﹤"): "<",
        ord("〈"): "<",
        ord("《"): "<",
        ord("＞"): ">",
        ord("﹥"): ">",
        ord("〉"): ">",
        ord("》"): ">",
        ord("／"): "/",
        ord("∕"): "/",
        ord("▁"): "_",
        ord("＿"): "_",
        ord(" "): " ",
        ord(" "): " ",
        ord(" "): " ",
        ord(" "): " ",
        ord("​"): " ",
        ord(" "): " ",
        ord("　"): " ",
        ord("﻿"): " ",
    }
)

TOOL_CALL_BLOCK_RE = re.compile(
    r"<\s*tool[\s_]*call\s*>(?P<body>.*?)<\s*/\s*tool[\s_]*call\s*>",
    re.IGNORECASE | re.DOTALL,
)


def normalize_tool_marker_text(text: str) -> str:
    """Normalize stylized Unicode glyphs to ASCII equivalents for tool parsing."""
    return text.translate(TOOL_MARKER_TRANSLATION)


def try_parse_json_block(text: str) -> dict[str, Any] | None:
    """Attempt to parse text as a JSON object, returning None on failure."""
    if not text:
        return None
    try:
        result = json.loads(text)
    except (json.JSONDecodeError, RecursionError):
        return None
    if isinstance(result, dict):
        return result
    return None


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParserConfig:
    """Trigger vocabularies and target tools for the heuristic tier.

    Attributes:
        date_triggers: Phrases signalling a date/time question.
        date_tool: Tool invoked for date intent.
        date_parameters: Parameters passed to ``date_tool``.
        search_triggers: Ordered phrases preceding a search query.
        search_tool: Tool invoked for search intent.
        min_query_length: A remainder shorter than this is ignored.
    """

    date_triggers: tuple[str, ...] = (
        "today's date",
        "todays date",
        "what's the date",
        "what is the date",
        "current date",
        "what day is it",
    )
    date_tool: str = "getTodayDate"
    date_parameters: Mapping[str, Any] = field(default_factory=lambda: {"displayType": "view"})
    search_triggers: tuple[str, ...] = (
        "search for",
        "look up",
        "find information about",
        "who is",
        "what is",
    )
    search_tool: str = "searchDuckduckgo"
    min_query_length: int = 3


# -----------------------------------------------------------------------------
# Heuristic strategies
# -----------------------------------------------------------------------------


class HeuristicStrategy(Protocol):
    """A Tier 2 strategy.

    ``existing`` lists the candidates produced so far, letting a strategy skip
    tools that are already requested.
    """

    def detect(
        self,
        lowered: str,
        existing: Sequence[ToolCallCandidate],
    ) -> list[ToolCallCandidate]:
        ...


class DateIntentHeuristic:
    """Maps date questions onto a single date tool call."""

    def __init__(self, config: ParserConfig) -> None:
        self._triggers = tuple(trigger.lower() for trigger in config.date_triggers)
        self._tool = config.date_tool
        self._parameters = dict(config.date_parameters)

    def detect(
        self,
        lowered: str,
        existing: Sequence[ToolCallCandidate],
    ) -> list[ToolCallCandidate]:
        if any(candidate.name == self._tool for candidate in existing):
            return []
        if any(trigger in lowered for trigger in self._triggers):
            return [ToolCallCandidate(name=self._tool, parameters=dict(self._parameters))]
        return []


class SearchIntentHeuristic:
    """Turns "search for X" style phrasing into a search tool call."""

    def __init__(self, config: ParserConfig) -> None:
        self._triggers = tuple(trigger.lower() for trigger in config.search_triggers)
        self._tool = config.search_tool
        self._min_length = config.min_query_length

    def detect(
        self,
        lowered: str,
        existing: Sequence[ToolCallCandidate],
    ) -> list[ToolCallCandidate]:
        if any(candidate.name == self._tool for candidate in existing):
            return []
        for trigger in self._triggers:
            index = lowered.find(trigger)
            if index < 0:
                continue
            remainder = lowered[index + len(trigger):].strip().rstrip("?").strip()
            if len(remainder) >= self._min_length:
                return [ToolCallCandidate(name=self._tool, parameters={"query": remainder})]
        return []


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------


class ToolCallParser:
    """Extracts :class:`ToolCallCandidate` values from model output.

    Example:
        parser = ToolCallParser()
        parser.parse('<tool_call>{"name": "getTodayDate"}</tool_call>')
        # [ToolCallCandidate(name='getTodayDate', parameters={})]
    """

    def __init__(
        self,
        config: ParserConfig | None = None,
        *,
        strategies: Sequence[HeuristicStrategy] | None = None,
    ) -> None:
        self._config = config or ParserConfig()
        if strategies is None:
            strategies = (DateIntentHeuristic(self._config), SearchIntentHeuristic(self._config))
        self._strategies = tuple(strategies)

    @property
    def config(self) -> ParserConfig:
        return self._config

    @property
    def strategies(self) -> tuple[HeuristicStrategy, ...]:
        return self._strategies

    def parse(self, text: object) -> list[ToolCallCandidate]:
        """Return the tool calls found in ``text``, in order of appearance."""
        if isinstance(text, (bytes, bytearray)):
            text = bytes(text).decode("utf-8", errors="replace")
        if not isinstance(text, str) or not text:
            return []
        try:
            candidates = self.parse_structured(text)
            if candidates:
                return candidates
            return self.parse_heuristic(text)
        except Exception:  # pragma: no cover - strategies are pluggable
            LOGGER.debug("Tool call parsing failed", exc_info=True)
            return []

    def parse_structured(self, text: str) -> list[ToolCallCandidate]:
        """Tier 1: every well-formed ``<tool_call>`` block, left to right."""
        candidates: list[ToolCallCandidate] = []
        normalized = normalize_tool_marker_text(text)
        for match in TOOL_CALL_BLOCK_RE.finditer(normalized):
            candidate = self._candidate_from_payload(match.group("body").strip())
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def parse_heuristic(self, text: str) -> list[ToolCallCandidate]:
        """Tier 2: the first strategy that produces candidates wins."""
        lowered = text.lower()
        candidates: list[ToolCallCandidate] = []
        for strategy in self._strategies:
            found = strategy.detect(lowered, candidates)
            if found:
                candidates.extend(found)
                break
        return candidates

    @staticmethod
    def _candidate_from_payload(body: str) -> ToolCallCandidate | None:
        payload = try_parse_json_block(body)
        if payload is None:
            LOGGER.debug("Skipping tool call block with non-object payload")
            return None
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            LOGGER.debug("Skipping tool call block without a name")
            return None
        parameters = payload.get("parameters", {})
        if parameters is None:
            parameters = {}
        if not isinstance(parameters, dict):
            LOGGER.debug("Skipping tool call %s with non-object parameters", name)
            return None
        return ToolCallCandidate(name=name.strip(), parameters=parameters)


_DEFAULT_PARSER: ToolCallParser | None = None


def parse_tool_calls(text: object) -> list[ToolCallCandidate]:
    """Parse ``text`` with a default-configured :class:`ToolCallParser`."""
    global _DEFAULT_PARSER
    if _DEFAULT_PARSER is None:
        _DEFAULT_PARSER = ToolCallParser()
    return _DEFAULT_PARSER.parse(text)

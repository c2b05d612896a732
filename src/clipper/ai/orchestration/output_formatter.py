"""Transcript cleanup and tool result rendering.

``clean`` strips tool-call syntax and model control tokens from raw model
output. ``render`` appends tool fragments to the cleaned text. The
``format_*`` helpers produce the fragments the dispatcher emits.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from .tool_call_parser import TOOL_CALL_BLOCK_RE, normalize_tool_marker_text
from .tools.types import ResultKind, ToolExecutionResult, ToolViewData

__all__ = [
    "DEFAULT_CONTROL_TOKENS",
    "FormatterConfig",
    "OutputFormatter",
    "pretty_print",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTROL_TOKENS: tuple[str, ...] = (
    "<tool_call>",
    "</tool_call>",
    "<|python_tag|>",
    "<|eom_id|>",
    "<|eot_id|>",
    "<|im_end|>",
    "<end_of_turn>",
    "<start_of_turn>",
    "</s>",
)

_FENCED_BLOCK_RE = re.compile(r"```[^\n`]*\n?(?P<body>.*?)```", re.DOTALL)
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


@dataclass(slots=True, frozen=True)
class FormatterConfig:
    """Formatter tunables.

    Attributes:
        control_tokens: Literal tokens removed from model output.
        narration_pattern: Regex; fenced blocks whose body matches it are dropped.
        view_fence: Info string of the fenced block carrying rich views.
    """

    control_tokens: tuple[str, ...] = DEFAULT_CONTROL_TOKENS
    narration_pattern: str = r"\bthe function\b.*\bwas used\b"
    view_fence: str = "tool-view"


def pretty_print(value: Any, indent_level: int = 0) -> str:
    """Indented outline of nested mappings and sequences."""
    indent = "  " * indent_level
    output = ""
    if isinstance(value, Mapping):
        for key, item in value.items():
            output += f"{indent}- {key}:\n"
            output += pretty_print(item, indent_level + 1)
    elif isinstance(value, (list, tuple)):
        for item in value:
            output += pretty_print(item, indent_level + 1)
    else:
        output += f"{indent}  {value}\n"
    return output


def _count(data: Mapping[str, Any], key: str) -> int:
    value = data.get("count")
    if isinstance(value, int):
        return value
    items = data.get(key)
    return len(items) if isinstance(items, (list, tuple)) else 0


def _summarize_date(data: Mapping[str, Any]) -> str:
    return f"📅 Today's Date\n{data.get('fullDate', '')}".rstrip()


def _summarize_search(data: Mapping[str, Any]) -> str:
    count = data.get("resultCount")
    if not isinstance(count, int):
        count = _count(data, "results")
    noun = "result" if count == 1 else "results"
    return f"🔍 {count} {noun} for '{data.get('query', '')}'"


def _summarize_calendar_event(data: Mapping[str, Any]) -> str:
    lines = [f"📆 {data.get('title', 'Event')}"]
    if data.get("startDate"):
        lines.append(str(data["startDate"]))
    return "\n".join(lines)


def _summarize_calendar_list(data: Mapping[str, Any]) -> str:
    count = _count(data, "events")
    noun = "event" if count == 1 else "events"
    if data.get("query"):
        return f"📆 {count} {noun} matching '{data['query']}'"
    return f"📆 {count} {noun}"


def _summarize_reminder(data: Mapping[str, Any]) -> str:
    title = data.get("title", "Reminder")
    if data.get("action") == "completed":
        return f"✅ Completed: {title}"
    return f"✅ {title}"


def _summarize_reminder_list(data: Mapping[str, Any]) -> str:
    count = _count(data, "reminders")
    noun = "reminder" if count == 1 else "reminders"
    if data.get("query"):
        return f"✅ {count} {noun} matching '{data['query']}'"
    return f"✅ {count} {noun} in {data.get('listName', 'All Lists')}"


def _summarize_contacts(data: Mapping[str, Any]) -> str:
    count = _count(data, "contacts")
    noun = "contact" if count == 1 else "contacts"
    return f"👤 {count} {noun} matching '{data.get('query', '')}'"


def _summarize_contact(data: Mapping[str, Any]) -> str:
    return f"👤 {data.get('fullName') or 'Contact'}"


def _summarize_location(data: Mapping[str, Any]) -> str:
    address = data.get("address") or data.get("formattedAddress") or data.get("inputAddress")
    if address:
        return f"📍 {address}"
    return f"📍 {data.get('latitude', '?')}, {data.get('longitude', '?')}"


def _summarize_distance(data: Mapping[str, Any]) -> str:
    return (
        f"📍 {data.get('fromAddress', '?')} → {data.get('toAddress', '?')}: "
        f"{data.get('distanceKilometers', '?')} km"
    )


def _summarize_music_search(data: Mapping[str, Any]) -> str:
    count = _count(data, "results")
    noun = "result" if count == 1 else "results"
    return f"🎵 {count} {noun} for '{data.get('query', '')}'"


def _summarize_now_playing(data: Mapping[str, Any]) -> str:
    title = data.get("title", "Unknown")
    artist = data.get("artist")
    return f"🎵 Now playing: {title} by {artist}" if artist else f"🎵 Now playing: {title}"


def _summarize_playback(data: Mapping[str, Any]) -> str:
    return f"🎵 {str(data.get('state', 'unknown')).capitalize()}: {data.get('currentTrack', 'Unknown')}"


_VIEW_SUMMARIES: dict[str, Callable[[Mapping[str, Any]], str]] = {
    "date": _summarize_date,
    "search_results": _summarize_search,
    "calendar_event": _summarize_calendar_event,
    "calendar_events_list": _summarize_calendar_list,
    "calendar_search_results": _summarize_calendar_list,
    "reminder": _summarize_reminder,
    "reminders_list": _summarize_reminder_list,
    "reminder_search_results": _summarize_reminder_list,
    "contacts_list": _summarize_contacts,
    "contact_detail": _summarize_contact,
    "contact_created": _summarize_contact,
    "current_location": _summarize_location,
    "geocoded_location": _summarize_location,
    "distance_calculation": _summarize_distance,
    "music_search_results": _summarize_music_search,
    "now_playing": _summarize_now_playing,
    "playback_state": _summarize_playback,
}


class OutputFormatter:
    """Cleans model text and renders tool fragments."""

    def __init__(self, config: FormatterConfig | None = None) -> None:
        self._config = config or FormatterConfig()
        self._narration_re = re.compile(self._config.narration_pattern, re.IGNORECASE | re.DOTALL)
        # Longest first so "</tool_call>" wins over any shorter overlapping token.
        self._tokens = tuple(sorted(set(self._config.control_tokens), key=len, reverse=True))

    @property
    def config(self) -> FormatterConfig:
        return self._config

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------

    def clean(self, raw: object) -> str:
        """Strip tool-call syntax and control tokens from model output.

        Passes repeat until the text stops changing, so cleaning an already
        clean string returns it unchanged.
        """
        if not isinstance(raw, str):
            return ""
        text = raw
        while True:
            cleaned = self._clean_once(text)
            if cleaned == text:
                return cleaned
            text = cleaned

    def _clean_once(self, text: str) -> str:
        text = self._strip_tool_blocks(text)
        for token in self._tokens:
            text = text.replace(token, "")
        text = self._strip_inline_calls(text)
        text = _FENCED_BLOCK_RE.sub(self._drop_narration, text)
        text = _EXCESS_NEWLINES_RE.sub("\n\n", text)
        return text.strip()

    @staticmethod
    def _strip_tool_blocks(text: str) -> str:
        # Glyph normalization maps one character to one character, so spans
        # found in the normalized text are valid in the original.
        normalized = normalize_tool_marker_text(text)
        pieces: list[str] = []
        cursor = 0
        for match in TOOL_CALL_BLOCK_RE.finditer(normalized):
            pieces.append(text[cursor:match.start()])
            cursor = match.end()
        pieces.append(text[cursor:])
        return "".join(pieces)

    def _drop_narration(self, match: re.Match[str]) -> str:
        if self._narration_re.search(match.group("body")):
            return ""
        return match.group(0)

    @staticmethod
    def _strip_inline_calls(text: str) -> str:
        """Remove JSON objects shaped like ``{"name": ..., "parameters": ...}``."""
        if "{" not in text:
            return text
        decoder = json.JSONDecoder()
        pieces: list[str] = []
        cursor = 0
        index = text.find("{")
        while index >= 0:
            try:
                payload, end = decoder.raw_decode(text, index)
            except (ValueError, RecursionError):
                index = text.find("{", index + 1)
                continue
            if isinstance(payload, dict) and "name" in payload and "parameters" in payload:
                pieces.append(text[cursor:index])
                cursor = end
                index = text.find("{", end)
            else:
                index = text.find("{", index + 1)
        pieces.append(text[cursor:])
        return "".join(pieces)

    @staticmethod
    def deduplicate(cleaned: str) -> str:
        """Collapse text that is the same passage repeated twice."""
        trimmed = cleaned.strip()
        middle = len(trimmed) // 2
        first = trimmed[:middle].strip()
        second = trimmed[middle:].strip()
        if first and first == second:
            return first
        return cleaned

    @staticmethod
    def render(cleaned: str, fragments: Iterable[str]) -> str:
        """Append non-empty fragments after the cleaned text."""
        parts = [fragment for fragment in fragments if fragment and fragment.strip()]
        if not parts:
            return cleaned
        body = "\n\n".join(parts)
        return f"{cleaned}\n\n{body}" if cleaned else body

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    def format_result(self, tool: str, result: ToolExecutionResult) -> str:
        """Primary fragment for a successful result."""
        kind = result.kind
        if kind is ResultKind.TEXT:
            return str(result.payload or "")
        if kind is ResultKind.DATA:
            return f"🔧 {tool}\n{pretty_print(result.payload).rstrip()}".rstrip()
        if kind is ResultKind.RICH_VIEW:
            return self.format_view(result.payload)
        if kind is ResultKind.WEB_CONTENT:
            title = result.metadata.get("title") or "Web Content"
            return f"🌐 {title}: {result.payload}"
        if kind is ResultKind.CHAINED_DATA:
            header = f"🔗 {tool} → {result.suggested_next_tool or 'none'}"
            query = result.payload.get("query") if isinstance(result.payload, Mapping) else None
            return f"{header}: {query}" if query else header
        LOGGER.debug("No renderer for result kind %s", kind)
        return ""

    def format_view(self, view: ToolViewData) -> str:
        """Renderer-agnostic fenced JSON block holding ``view``."""
        payload = json.dumps(view.to_dict(), ensure_ascii=False, indent=2, default=str)
        return f"```{self._config.view_fence}\n{payload}\n```"

    @staticmethod
    def format_view_summary(view: ToolViewData) -> str:
        """Human-readable one or two line summary of a rich view."""
        summarize = _VIEW_SUMMARIES.get(view.type)
        if summarize is None:
            return f"🎨 {view.type}"
        return summarize(view.data)

    @staticmethod
    def format_error(tool: str, error: str | None) -> str:
        return f"❌ {tool} failed: {error or 'Unknown error'}"

"""Presentation helpers for search results produced by the search tool."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Mapping, Sequence

from ..orchestration.tools import (
    ParameterSpec,
    ToolCategory,
    ToolExecutionResult,
    ToolSpecification,
    ToolViewData,
)

__all__ = ["ProcessSearchResultsTool", "summarize_results"]


def summarize_results(query: str, results: Sequence[Mapping[str, Any]]) -> str:
    """Render ``results`` as a numbered markdown list."""

    lines = [f"## Search Results for '{query}'", ""]
    for index, result in enumerate(results, start=1):
        lines.append(f"**{index}. {result.get('title') or 'Unknown Title'}**")
        lines.append(str(result.get("snippet") or "No description available"))
        lines.append("")
    if len(results) > 1:
        lines.append(f"*Based on {len(results)} search results*")
    return "\n".join(lines).rstrip()


@dataclass(slots=True)
class ProcessSearchResultsTool:
    """Turn a ``search_results`` payload into a summary, a web link or a formatted view."""

    snippet_length: int = 150

    specification: ClassVar[ToolSpecification] = ToolSpecification(
        name="processSearchResults",
        description="Process and format search results for better presentation",
        parameters={
            "searchData": ParameterSpec(
                type="object",
                description="The search results data to process",
                required=True,
            ),
            "presentationType": ParameterSpec(
                type="string",
                description="How to present the processed results",
                enum=("summary", "webview", "formatted"),
            ),
        },
        category=ToolCategory.UTILITY,
    )

    async def execute(self, parameters: Mapping[str, Any]) -> ToolExecutionResult:
        search_data = parameters["searchData"]
        presentation = parameters.get("presentationType") or "summary"
        if not isinstance(search_data, Mapping):
            return ToolExecutionResult.failure("Invalid search data format")
        query = search_data.get("query")
        results = search_data.get("results")
        if not isinstance(query, str) or not isinstance(results, list):
            return ToolExecutionResult.failure("Invalid search data format")
        entries = [entry for entry in results if isinstance(entry, Mapping)]

        if presentation == "summary":
            return ToolExecutionResult.text(summarize_results(query, entries))
        if presentation == "webview":
            first = entries[0] if entries else None
            url = first.get("url") if first else None
            if not isinstance(url, str) or not url:
                return ToolExecutionResult.failure("No valid URL found in search results")
            return ToolExecutionResult.web(
                url,
                metadata={
                    "title": first.get("title") or "Web Content",
                    "snippet": first.get("snippet") or "",
                },
            )
        view = ToolViewData(
            type="search_results",
            data={
                "query": query,
                "results": [dict(entry) for entry in entries],
                "resultCount": len(entries),
                "formattedResults": [self._format_entry(entry) for entry in entries],
            },
            template="search_results_display",
        )
        return ToolExecutionResult.view(view)

    def _format_entry(self, entry: Mapping[str, Any]) -> dict[str, Any]:
        formatted = dict(entry)
        snippet = str(entry.get("snippet") or "")
        formatted["formattedSnippet"] = snippet[: self.snippet_length] + "..."
        return formatted

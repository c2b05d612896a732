"""DuckDuckGo Instant Answer search tool."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Mapping
from urllib.parse import quote_plus

import httpx

from ..orchestration.tools import (
    ParameterSpec,
    ToolCategory,
    ToolExecutionResult,
    ToolSpecification,
    ToolViewData,
)

__all__ = ["DuckDuckGoSearchTool", "extract_title", "DUCKDUCKGO_API_URL"]

LOGGER = logging.getLogger(__name__)

DUCKDUCKGO_API_URL = "https://api.duckduckgo.com/"
_WEB_SEARCH_URL = "https://duckduckgo.com/?q={query}"
_SEARCH_ENGINE = "DuckDuckGo"


def extract_title(text: str) -> str:
    """Use the first sentence of ``text`` as a title, or its first 50 chars."""
    head, dot, _ = text.partition(".")
    if dot and len(head) < 100:
        return head
    if len(text) > 50:
        return text[:50] + "..."
    return text


@dataclass(slots=True)
class DuckDuckGoSearchTool:
    """Query the DuckDuckGo Instant Answer API and return a ``search_results`` view.

    A shared ``http_client`` may be injected; otherwise a short-lived client is
    opened per search.
    """

    http_client: httpx.AsyncClient | None = None
    api_url: str = DUCKDUCKGO_API_URL
    timeout: float = 30.0
    max_related_topics: int = 5

    specification: ClassVar[ToolSpecification] = ToolSpecification(
        name="searchDuckduckgo",
        description="Search DuckDuckGo for information on a topic. Returns relevant web results.",
        parameters={
            "query": ParameterSpec(
                type="string",
                description="The search query to look up",
                required=True,
            ),
        },
        category=ToolCategory.SEARCH,
    )

    async def execute(self, parameters: Mapping[str, Any]) -> ToolExecutionResult:
        query = str(parameters["query"]).strip()
        try:
            payload = await self._fetch(query)
        except httpx.HTTPStatusError as exc:
            LOGGER.warning("Search request failed with status %s", exc.response.status_code)
            return ToolExecutionResult.failure("Search request failed")
        except httpx.HTTPError as exc:
            LOGGER.warning("Search request failed: %s", exc)
            return ToolExecutionResult.failure(f"Search failed: {exc}")
        except json.JSONDecodeError:
            return ToolExecutionResult.failure("Failed to parse search response")
        if not isinstance(payload, dict):
            return ToolExecutionResult.failure("Failed to parse search response")

        results = self._collect_results(payload)
        if not results:
            results.append(
                {
                    "title": f"Web Search: {query}",
                    "snippet": f"Click to search for '{query}' on DuckDuckGo",
                    "url": _WEB_SEARCH_URL.format(query=quote_plus(query)),
                    "source": "DuckDuckGo Web Search",
                }
            )
        LOGGER.debug("Search for %r returned %d result(s)", query, len(results))

        view = ToolViewData(
            type="search_results",
            data={
                "query": query,
                "results": results,
                "resultCount": len(results),
                "searchEngine": _SEARCH_ENGINE,
            },
            template="search_results_display",
        )
        return ToolExecutionResult.view(
            view,
            metadata={
                "originalQuery": query,
                "searchEngine": _SEARCH_ENGINE,
                "resultCount": len(results),
            },
        )

    async def _fetch(self, query: str) -> Any:
        params = {"q": query, "format": "json", "no_html": "1", "skip_disambig": "1"}
        if self.http_client is not None:
            response = await self.http_client.get(self.api_url, params=params)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.api_url, params=params)
        response.raise_for_status()
        return json.loads(response.text)

    def _collect_results(self, payload: Mapping[str, Any]) -> list[dict[str, str]]:
        results: list[dict[str, str]] = []
        abstract = payload.get("Abstract")
        if isinstance(abstract, str) and abstract:
            results.append(
                {
                    "title": payload.get("Heading") or "Answer",
                    "snippet": abstract,
                    "url": payload.get("AbstractURL") or "",
                    "source": payload.get("AbstractSource") or _SEARCH_ENGINE,
                }
            )
        topics = payload.get("RelatedTopics")
        if isinstance(topics, list):
            for topic in topics[: self.max_related_topics]:
                if not isinstance(topic, dict):
                    continue
                text = topic.get("Text")
                url = topic.get("FirstURL")
                if isinstance(text, str) and isinstance(url, str):
                    results.append(
                        {
                            "title": extract_title(text),
                            "snippet": text,
                            "url": url,
                            "source": _SEARCH_ENGINE,
                        }
                    )
        return results

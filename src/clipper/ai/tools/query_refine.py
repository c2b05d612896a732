"""Heuristic search-query refinement that chains into the search tool."""

from __future__ import annotations

import datetime as _dt
import re
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Mapping, Sequence

from ..orchestration.tools import (
    ParameterSpec,
    ToolCategory,
    ToolExecutionResult,
    ToolSpecification,
)

__all__ = [
    "QueryRefineTool",
    "RefinedQuery",
    "DEFAULT_STOP_PHRASES",
    "DEFAULT_QUESTION_PREFIXES",
]

DEFAULT_STOP_PHRASES: tuple[str, ...] = (
    "please",
    "can you",
    "could you",
    "would you",
    "i want to",
    "i need to",
    "help me",
    "tell me",
    "show me",
    "find me",
    "what is",
    "who is",
    "where is",
    "how do i",
    "i want",
    "i need",
    "like to know",
)

# Only the first matching prefix is stripped.
DEFAULT_QUESTION_PREFIXES: tuple[str, ...] = (
    "what are ",
    "what is the ",
    "what is ",
    "how to ",
    "how do i ",
    "why does ",
    "why is ",
    "when did ",
    "when is ",
    "where can i ",
    "where is ",
    "who is the ",
    "who is ",
    "can i ",
    "should i ",
)

_PROGRAMMING_KEYWORDS = ("code", "programming", "function", "error", "bug", "api", "library")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True, frozen=True)
class RefinedQuery:
    query: str
    improvements: tuple[str, ...]


@dataclass(slots=True)
class QueryRefineTool:
    """Rewrite a conversational request into a compact search query.

    The result is ``CHAINED_DATA`` whose payload carries the refined ``query``
    so the dispatcher can hand it straight to ``next_tool``.
    """

    stop_phrases: Sequence[str] = DEFAULT_STOP_PHRASES
    question_prefixes: Sequence[str] = DEFAULT_QUESTION_PREFIXES
    next_tool: str = "searchDuckduckgo"
    clock: Callable[[], _dt.date] = field(default=_dt.date.today)

    specification: ClassVar[ToolSpecification] = ToolSpecification(
        name="refineSearchQuery",
        description=(
            "Refine and improve a user's search query to get better search results. "
            "Use this before performing a search to optimize the query."
        ),
        parameters={
            "originalQuery": ParameterSpec(
                type="string",
                description="The original search query from the user",
                required=True,
            ),
            "context": ParameterSpec(
                type="string",
                description="Optional context about what the user is looking for",
            ),
        },
        category=ToolCategory.QUERY_REFINE,
    )

    async def execute(self, parameters: Mapping[str, Any]) -> ToolExecutionResult:
        original = str(parameters["originalQuery"])
        context = parameters.get("context")
        refined = self.refine(original, context if isinstance(context, str) else None)
        suggestions = self.suggestions(original)
        payload = {
            "query": refined.query,
            "originalQuery": original,
            "improvements": list(refined.improvements),
            "suggestions": suggestions,
            "should_chain": True,
        }
        return ToolExecutionResult.chained(
            payload,
            next_tool=self.next_tool,
            metadata={
                "originalQuery": original,
                "refinedQuery": refined.query,
                "improvements": list(refined.improvements),
            },
        )

    def refine(self, original: str, context: str | None = None) -> RefinedQuery:
        query = original.strip()
        improvements: list[str] = []

        for phrase in self.stop_phrases:
            pattern = re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE)
            if pattern.search(query):
                query = pattern.sub("", query)
                improvements.append(f"Removed conversational phrase: '{phrase}'")

        query = _WHITESPACE_RE.sub(" ", query).strip()
        if query.endswith(("?", "!")):
            query = query[:-1]
            improvements.append("Removed ending punctuation")

        lowered = query.lower()
        for prefix in self.question_prefixes:
            if lowered.startswith(prefix):
                query = query[len(prefix):]
                improvements.append("Simplified question format")
                break

        if context:
            query = self._apply_context(query, context.lower(), improvements)
        query = self._apply_domain_keywords(query, improvements)

        if len(query.split()) < 2 and len(original.split()) > 2:
            query = original.strip()
            improvements = ["Kept original query (too much reduction)"]

        query = query.strip()
        if not improvements:
            improvements.append("Query was already well-formed")
        return RefinedQuery(query, tuple(improvements))

    def suggestions(self, query: str, *, limit: int = 5) -> list[str]:
        lowered = query.lower()
        candidates = [f"{query} {self.clock().year}", f"{query} guide", f"{query} explained"]
        if any(word in lowered for word in ("swift", "ios", "xcode")):
            candidates += [f"{query} Apple documentation", f"{query} WWDC"]
        if any(word in lowered for word in ("python", "javascript", "programming")):
            candidates += [f"{query} Stack Overflow", f"{query} GitHub"]
        return list(dict.fromkeys(candidates))[:limit]

    def _apply_context(self, query: str, context: str, improvements: list[str]) -> str:
        lowered = query.lower()
        if any(word in context for word in ("recent", "latest", "new")):
            year = self.clock().year
            if str(year) not in lowered and str(year - 1) not in lowered:
                query += f" {year}"
                improvements.append("Added year for recency")
        if any(word in context for word in ("tutorial", "learn", "how")):
            if "tutorial" not in lowered and "guide" not in lowered:
                query += " tutorial"
                improvements.append("Added tutorial keyword")
        if "review" in context or "opinion" in context:
            if "review" not in lowered:
                query += " review"
                improvements.append("Added review keyword")
        return query

    @staticmethod
    def _apply_domain_keywords(query: str, improvements: list[str]) -> str:
        lowered = query.lower()
        if any(word in lowered for word in _PROGRAMMING_KEYWORDS):
            if "example" not in lowered and "documentation" not in lowered:
                query += " example"
                improvements.append("Added 'example' for programming query")
        if "make" in lowered and "recipe" not in lowered:
            query += " recipe"
            improvements.append("Added 'recipe' keyword")
        if lowered.startswith(("define ", "meaning of ")):
            query = re.sub(r"^(define|meaning of)\s+", "", query, flags=re.IGNORECASE)
            query += " definition"
            improvements.append("Reformatted for definition search")
        if any(word in lowered for word in (" vs ", " versus ", " or ")):
            if "comparison" not in lowered and "difference" not in lowered:
                query += " comparison"
                improvements.append("Added 'comparison' for vs query")
        return query

"""
Web search collaborator: Tavily when an API key is configured, DuckDuckGo otherwise.
"""

from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

MAX_RESULTS = 5


@dataclass
class SearchResult:
    title: str
    url: str
    snippet: str


class WebSearchError(Exception):
    """Both search backends failed."""


class WebSearchService:
    """Searches the web and formats results for the model."""

    def __init__(self, tavily_api_key: Optional[str] = None, max_results: int = MAX_RESULTS):
        """
        Args:
            tavily_api_key: Tavily key (defaults to config.tavily_api_key)
            max_results: Number of results to return
        """
        if tavily_api_key is None:
            from devify.core.config import config
            tavily_api_key = config.tavily_api_key
        self.tavily_api_key = tavily_api_key
        self.max_results = max_results

    def _search_tavily(self, query: str) -> List[SearchResult]:
        from tavily import TavilyClient

        client = TavilyClient(api_key=self.tavily_api_key)
        response = client.search(query, max_results=self.max_results)
        return [
            SearchResult(
                title=r.get("title") or "No title",
                url=r.get("url", ""),
                snippet=r.get("content", ""),
            )
            for r in response.get("results", [])
        ]

    def _search_duckduckgo(self, query: str) -> List[SearchResult]:
        from ddgs import DDGS

        results = DDGS().text(query, max_results=self.max_results) or []
        return [
            SearchResult(title=r.get("title", "No title"), url=r.get("href", ""), snippet=r.get("body", ""))
            for r in results
        ]

    def search(self, query: str) -> List[SearchResult]:
        """
        Run a search, trying Tavily first.

        Raises:
            WebSearchError: When every backend fails
        """
        if self.tavily_api_key:
            try:
                return self._search_tavily(query)[:self.max_results]
            except Exception as e:
                logger.warning(f"Tavily search failed, falling back to DuckDuckGo: {e}")

        try:
            return self._search_duckduckgo(query)[:self.max_results]
        except Exception as e:
            error = str(e).lower()
            if "rate" in error or "limit" in error:
                raise WebSearchError("Search rate limit reached. Please wait a moment and try again.") from e
            if "timeout" in error or "timed out" in error:
                raise WebSearchError("Search timed out. Check your internet connection.") from e
            raise WebSearchError(f"Search failed: {e}") from e


def format_results(query: str, results: List[SearchResult]) -> str:
    """Numbered title/url/snippet lines."""
    if not results:
        return f"No results found for '{query}'."
    lines = [f"Search results for '{query}':", ""]
    for i, r in enumerate(results, 1):
        lines.append(f"{i}. {r.title}")
        lines.append(f"   URL: {r.url}")
        if r.snippet:
            lines.append(f"   {r.snippet.strip()}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"

"""Tavily web search, used as the fallback tool when documentation runs out."""

import logging
import time
from typing import Optional, Protocol

import requests

from common.errors import ToolExecutionError
from config.settings import WebSearchConfig

logger = logging.getLogger(__name__)


class WebSearchProvider(Protocol):
    def search(self, query: str, max_results: Optional[int] = None) -> dict:
        ...


def format_search_results(data: dict, snippet_length: int = 500, max_length: int = 3000) -> dict:
    """Trim a raw Tavily response to the best sources that fit `max_length` characters.

    Returns {"query", "summary", "sources": [{"title", "url", "content"}]}.
    """
    sources = [
        {
            "title": r.get("title") or "",
            "url": r.get("url") or "",
            "content": (r.get("content") or "")[:snippet_length],
            "relevance": r.get("score") or 0.0,
        }
        for r in data.get("results") or []
    ]
    sources.sort(key=lambda s: s["relevance"], reverse=True)

    included = []
    used = 0
    for source in sources:
        size = len(f"\n\n[{source['title']}]({source['url']})\n{source['content']}")
        if used + size > max_length:
            break
        used += size
        included.append({"title": source["title"], "url": source["url"], "content": source["content"]})

    return {
        "query": data.get("query", ""),
        "summary": data.get("answer"),
        "sources": included,
    }


class TavilySearchProvider:
    """POSTs to the Tavily search API and formats the results for the model."""

    def __init__(self, config: WebSearchConfig, session: Optional[requests.Session] = None):
        if not config.api_key:
            raise ValueError("Tavily API key not provided (set TAVILY_API_KEY)")
        self.config = config
        self.session = session or requests.Session()

    def search(self, query: str, max_results: Optional[int] = None) -> dict:
        max_results = max_results or self.config.default_max_results
        logger.info("Searching Tavily: %r (depth: %s, max: %d)", query, self.config.search_depth, max_results)

        t0 = time.perf_counter()
        try:
            resp = self.session.post(
                self.config.api_url,
                json={
                    "api_key": self.config.api_key,
                    "query": query,
                    "search_depth": self.config.search_depth,
                    "max_results": max_results,
                    "include_answer": self.config.include_answer,
                    "include_images": False,
                    "include_raw_content": False,
                },
                headers={"Authorization": f"Bearer {self.config.api_key}"},
                timeout=self.config.timeout,
            )
        except requests.Timeout as e:
            raise ToolExecutionError(f"Tavily search timeout after {self.config.timeout}s") from e
        except requests.RequestException as e:
            raise ToolExecutionError(f"Tavily request failed: {e}") from e

        if not resp.ok:
            raise ToolExecutionError(f"Tavily API error ({resp.status_code}): {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise ToolExecutionError("Tavily returned invalid JSON") from e

        result = format_search_results(data, self.config.snippet_length, self.config.max_context_length)
        logger.info(
            "Tavily returned %d sources (%d used) in %.1fs",
            len(data.get("results") or []), len(result["sources"]), time.perf_counter() - t0,
        )
        return result

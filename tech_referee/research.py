"""Web research tool backed by the Exa search API. Never raises to its caller."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from config.config_loader import ResearchConfig
from tech_referee.models import Source
from tech_referee.retry import SEARCH_RETRY, RetryPolicy, is_retryable_error, with_retry

logger = logging.getLogger(__name__)

TOOL_NAME = "web_search"
TOOL_DESCRIPTION = (
    "Search the web for up-to-date technical information, documentation, benchmarks, "
    "pricing and reviews. Use specific queries."
)


@dataclass
class SearchResult:
    title: str
    url: str
    content: str
    published_date: str | None = None


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]      # JSON schema of the arguments object


def _search_is_retryable(exc: BaseException) -> bool:
    # httpx timeouts often stringify to "", so check the type as well
    return isinstance(exc, httpx.TransportError) or is_retryable_error(exc)


class ResearchTool:
    """Adapter over the search provider; degrades to an empty result list on any failure."""

    def __init__(
        self,
        config: ResearchConfig,
        api_key: str | None,
        retry: RetryPolicy = SEARCH_RETRY,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._api_key = api_key
        self._retry = retry
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=TOOL_NAME,
            description=TOOL_DESCRIPTION,
            parameters={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The search query - be specific for better results",
                    },
                },
                "required": ["query"],
            },
        )

    async def search(self, query: str) -> list[SearchResult]:
        """Return ranked results for query, or [] on missing key, provider error or timeout."""
        query = (query or "").strip()[: self._config.max_query_chars]
        if not query:
            return []
        if not self._api_key:
            logger.warning("Search API key not configured - web research disabled")
            return []

        try:
            results = await with_retry(
                lambda: self._fetch(query),
                self._retry,
                is_retryable=_search_is_retryable,
            )
        except Exception as exc:
            logger.error("Search failed after retries for %r: %s", query, exc)
            return []

        logger.info("Search %r returned %d results", query, len(results))
        return results

    async def _fetch(self, query: str) -> list[SearchResult]:
        payload = {
            "query": query,
            "numResults": self._config.num_results,
            "contents": {"text": True, "livecrawl": "always"},
        }
        headers = {"x-api-key": self._api_key or "", "Content-Type": "application/json"}
        url = f"{self._config.base_url.rstrip('/')}/search"

        if self._client is not None:
            response = await self._client.post(url, json=payload, headers=headers, timeout=self._config.timeout_sec)
        else:
            async with httpx.AsyncClient(timeout=self._config.timeout_sec) as client:
                response = await client.post(url, json=payload, headers=headers)
        response.raise_for_status()
        data = response.json()

        return [
            SearchResult(
                title=item.get("title") or "Untitled",
                url=item.get("url", ""),
                content=(item.get("text") or "")[: self._config.snippet_chars],
                published_date=item.get("publishedDate"),
            )
            for item in data.get("results", [])
            if item.get("url")
        ]


def results_to_dicts(results: list[SearchResult]) -> list[dict[str, Any]]:
    """JSON-serializable tool output handed back to the model."""
    return [
        {"title": r.title, "url": r.url, "content": r.content, "published_date": r.published_date}
        for r in results
    ]


def to_source(result: SearchResult, snippet_chars: int = 300) -> Source:
    return Source(
        title=result.title,
        url=result.url,
        snippet=result.content[:snippet_chars],
        published_date=result.published_date,
    )

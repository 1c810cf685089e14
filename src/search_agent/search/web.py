"""Web search providers (SerpApi, Google Custom Search) over httpx."""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from search_agent.agent.lifecycle import CancellationSignal, run_cancellable
from search_agent.config import SearchConfig
from search_agent.types import WebResult

SERPAPI_ENDPOINT = "https://serpapi.com/search"
GOOGLE_CSE_ENDPOINT = "https://www.googleapis.com/customsearch/v1"


class WebSearchError(RuntimeError):
    """Base class for web search failures."""


class SearchConfigurationError(WebSearchError):
    """Search settings are missing or incomplete."""


class SearchTransportError(WebSearchError):
    """The provider could not be reached or answered with an error."""


class WebSearch(Protocol):
    async def search(
        self,
        query: str,
        config: SearchConfig | None,
        signal: CancellationSignal | None = None,
    ) -> list[WebResult]:
        """Return the provider's top results for `query`, best first."""


class WebSearchClient:
    """Queries the configured provider and normalizes organic results."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    async def search(
        self,
        query: str,
        config: SearchConfig | None,
        signal: CancellationSignal | None = None,
    ) -> list[WebResult]:
        if config is None or not config.api_key:
            raise SearchConfigurationError("Search API key is not configured")

        if config.provider == "serpapi":
            url = SERPAPI_ENDPOINT
            params = {
                "q": query,
                "api_key": config.api_key,
                "engine": "google",
                "num": str(config.num_results),
            }
            label, results_key = "SerpApi", "organic_results"
        elif config.provider == "google":
            if not config.search_engine_id:
                raise SearchConfigurationError(
                    "Google Custom Search requires searchEngineId (cx)"
                )
            url = GOOGLE_CSE_ENDPOINT
            params = {
                "q": query,
                "key": config.api_key,
                "cx": config.search_engine_id,
                "num": str(config.num_results),
            }
            label, results_key = "Google Custom Search", "items"
        else:
            raise SearchConfigurationError(f"Unsupported search provider: {config.provider}")

        payload = await run_cancellable(
            self._get_json(url, params, label, config.timeout_seconds), signal
        )
        items = payload.get(results_key) or []
        return [_to_web_result(item) for item in items[: config.num_results]]

    async def _get_json(
        self, url: str, params: dict[str, str], label: str, timeout: float
    ) -> dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise SearchTransportError(f"{label} request failed: {exc}") from exc

        if response.status_code >= 400:
            raise SearchTransportError(
                f"{label} error: {response.status_code} - {response.text}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise SearchTransportError(f"{label} returned invalid JSON") from exc
        return payload if isinstance(payload, dict) else {}


def _to_web_result(item: dict[str, Any]) -> WebResult:
    return WebResult(
        title=str(item.get("title") or ""),
        snippet=str(item.get("snippet") or ""),
        url=str(item.get("link") or ""),
    )

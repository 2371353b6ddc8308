"""Web search providers that turn a product query into raw seller listings."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import urlparse

import httpx
import logfire

from ..conversation.contracts import Availability, ProductQuery, SearchResult, SpecValue
from ..errors import SearchFailed
from .base import SearchProvider
from .platforms import PLATFORM_DOMAINS, Platform, platform_for_host, platforms_by_priority


TAVILY_URL = "https://api.tavily.com/search"
SERPAPI_URL = "https://serpapi.com/search.json"
DEFAULT_TIMEOUT_SECONDS = 20.0

_PRICE_PATTERNS = (
    re.compile(r"₹\s*([0-9][0-9,]*(?:\.\d{1,2})?)"),
    re.compile(r"(?:Rs\.?|INR)\s*([0-9][0-9,]*(?:\.\d{1,2})?)", re.IGNORECASE),
    re.compile(r"price[:\s]+([0-9][0-9,]*(?:\.\d{1,2})?)", re.IGNORECASE),
)
_RAM = re.compile(r"(\d+)\s*GB\s*RAM", re.IGNORECASE)
_STORAGE = re.compile(r"(\d+)\s*(GB|TB)\s*(?:SSD|Storage|ROM)", re.IGNORECASE)
_SCREEN = re.compile(r"(\d+(?:\.\d+)?)\s*(?:inch|\")", re.IGNORECASE)


def extract_price(text: str) -> float | None:
    """Return the first rupee amount found in ``text``."""

    for pattern in _PRICE_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        try:
            price = float(match.group(1).replace(",", ""))
        except ValueError:
            continue
        if price > 0:
            return price
    return None


def determine_availability(text: str) -> Availability:
    lowered = text.lower()
    if "out of stock" in lowered or "unavailable" in lowered:
        return "out_of_stock"
    if "in stock" in lowered or "available" in lowered:
        return "in_stock"
    return "unknown"


def extract_specifications(text: str) -> dict[str, SpecValue]:
    """Pull RAM, storage and screen size out of listing text."""

    specs: dict[str, SpecValue] = {}
    if match := _RAM.search(text):
        specs["ram"] = f"{match.group(1)}GB"
    if match := _STORAGE.search(text):
        specs["storage"] = f"{match.group(1)}{match.group(2).upper()}"
    if match := _SCREEN.search(text):
        specs["screen_size"] = f"{match.group(1)} inch"
    return specs


def build_query_text(query: ProductQuery, *, domain: str | None = None) -> str:
    """Compose the free-text search string for a product query."""

    parts: list[str] = []
    if domain:
        parts.append(f"site:{domain}")
    if query.brand and query.brand.lower() not in query.product_name.lower():
        parts.append(query.brand)
    parts.append(query.product_name)
    parts.extend(str(value) for value in query.specifications.values())
    if domain is None:
        parts.append("buy online India price")
    return " ".join(parts)


def parse_tavily_results(payload: Mapping[str, Any]) -> list[SearchResult]:
    """Convert a Tavily response into listings from known platforms."""

    results: list[SearchResult] = []
    for item in payload.get("results") or []:
        url = str(item.get("url") or "")
        platform = platform_for_host(urlparse(url).hostname or "")
        if platform is None:
            continue
        title = str(item.get("title") or "")
        content = str(item.get("content") or "")
        combined = f"{title} {content}"
        price = extract_price(combined)
        if price is None:
            continue
        results.append(
            SearchResult(
                platform=platform.name,
                product_name=title,
                price=price,
                url=url,
                availability=determine_availability(content),
                specifications=extract_specifications(combined),
            )
        )
    return results


def parse_serpapi_results(payload: Mapping[str, Any], platform_name: str) -> list[SearchResult]:
    """Convert SerpAPI organic and shopping results for one platform."""

    results: list[SearchResult] = []
    for item in payload.get("organic_results") or []:
        title = str(item.get("title") or "")
        snippet = str(item.get("snippet") or "")
        price = extract_price(snippet or title)
        if price is None:
            continue
        results.append(
            SearchResult(
                platform=platform_name,
                product_name=title,
                price=price,
                url=str(item.get("link") or ""),
                availability=determine_availability(snippet),
                specifications=extract_specifications(f"{title} {snippet}"),
            )
        )

    for item in payload.get("shopping_results") or []:
        raw_price = item.get("extracted_price")
        if raw_price is None:
            digits = re.sub(r"[^0-9.]", "", str(item.get("price") or ""))
            raw_price = digits or 0
        try:
            price = float(raw_price)
        except ValueError:
            continue
        if price <= 0:
            continue
        title = str(item.get("title") or "")
        results.append(
            SearchResult(
                platform=platform_name,
                product_name=title,
                price=price,
                url=str(item.get("link") or ""),
                availability="in_stock" if item.get("delivery") else "unknown",
                specifications=extract_specifications(title),
            )
        )
    return results


class _HttpProvider:
    """Shared request plumbing for providers backed by a JSON HTTP API."""

    name = "http"

    def __init__(
        self,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if not api_key:
            raise ValueError(f"{type(self).__name__} requires an API key.")
        self._api_key = api_key
        self._client = client
        self._timeout = timeout

    async def _request(self, method: str, url: str, **kwargs: Any) -> Mapping[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SearchFailed(f"{self.name} request failed: {exc}") from exc


class TavilySearchProvider(_HttpProvider):
    name = "tavily"

    def __init__(self, api_key: str, *, max_results: int = 20, **kwargs: Any) -> None:
        super().__init__(api_key, **kwargs)
        self.max_results = max_results

    async def search(self, query: ProductQuery) -> list[SearchResult]:
        text = build_query_text(query)
        with logfire.span("search.tavily", query=text):
            payload = await self._request(
                "POST",
                TAVILY_URL,
                json={
                    "api_key": self._api_key,
                    "query": text,
                    "search_depth": "advanced",
                    "include_domains": list(PLATFORM_DOMAINS),
                    "max_results": self.max_results,
                },
            )
            results = parse_tavily_results(payload)
        logfire.info("search.tavily_results", count=len(results))
        return results


class SerpAPISearchProvider(_HttpProvider):
    """Searches every platform separately with a ``site:`` restricted query."""

    name = "serpapi"

    def __init__(
        self, api_key: str, *, platforms: Sequence[Platform] | None = None, **kwargs: Any
    ) -> None:
        super().__init__(api_key, **kwargs)
        self.platforms = list(platforms or platforms_by_priority())

    async def _search_platform(self, query: ProductQuery, platform: Platform) -> list[SearchResult]:
        payload = await self._request(
            "GET",
            SERPAPI_URL,
            params={
                "engine": "google",
                "q": build_query_text(query, domain=platform.domain),
                "api_key": self._api_key,
                "gl": "in",
                "hl": "en",
                "num": 10,
            },
        )
        return parse_serpapi_results(payload, platform.name)

    async def search(self, query: ProductQuery) -> list[SearchResult]:
        with logfire.span("search.serpapi", product=query.product_name):
            outcomes = await asyncio.gather(
                *(self._search_platform(query, platform) for platform in self.platforms),
                return_exceptions=True,
            )

        results: list[SearchResult] = []
        failures = 0
        for platform, outcome in zip(self.platforms, outcomes):
            if isinstance(outcome, SearchFailed):
                failures += 1
                logfire.warning("search.platform_failed", platform=platform.name, error=str(outcome))
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            results.extend(outcome)

        if self.platforms and failures == len(self.platforms):
            raise SearchFailed("SerpAPI search failed for every platform")
        logfire.info("search.serpapi_results", count=len(results), failed_platforms=failures)
        return results


class FallbackSearchProvider:
    """Try providers in order until one returns listings."""

    def __init__(self, providers: Iterable[SearchProvider]) -> None:
        self.providers = list(providers)

    async def search(self, query: ProductQuery) -> list[SearchResult]:
        if not self.providers:
            raise SearchFailed("No search provider is configured")

        errors: list[SearchFailed] = []
        answered = False
        for provider in self.providers:
            name = getattr(provider, "name", type(provider).__name__)
            try:
                results = await provider.search(query)
            except SearchFailed as exc:
                logfire.warning("search.provider_failed", provider=name, error=str(exc))
                errors.append(exc)
                continue
            answered = True
            if results:
                return list(results)
            logfire.warning("search.provider_empty", provider=name)

        if not answered:
            raise SearchFailed("; ".join(str(error) for error in errors)) from errors[-1]
        return []


__all__ = [
    "FallbackSearchProvider",
    "SerpAPISearchProvider",
    "TavilySearchProvider",
    "build_query_text",
    "determine_availability",
    "extract_price",
    "extract_specifications",
    "parse_serpapi_results",
    "parse_tavily_results",
]

"""
Web search providers - credential rules plus search and fetch over HTTP.

google, bing and ollama are called with httpx. The keyless duckduckgo /
custom_scrape provider uses the DuckDuckGo Instant Answer API via requests.
"""

from __future__ import annotations
import asyncio
import html
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import requests

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
BING_SEARCH_URL = "https://api.bing.microsoft.com/v7.0/search"
OLLAMA_SEARCH_URL = "https://ollama.com/api/web_search"
OLLAMA_FETCH_URL = "https://ollama.com/api/web_fetch"
DUCKDUCKGO_API_URL = "https://api.duckduckgo.com/"

USER_AGENT = "toolrelay/1.0 (+https://ollama.com)"
RETRY_STATUSES = (202, 429, 403, 500, 502, 503, 504)
DDG_ATTEMPTS = 5

PROVIDER_LABELS = {
    "google": "Google",
    "bing": "Bing",
    "ollama": "Ollama",
    "duckduckgo": "DuckDuckGo",
    "custom_scrape": "Custom Scraper",
}

_REQUIRED_CREDENTIALS = {
    "google": ("google_api_key", "google_cse_id"),
    "bing": ("bing_api_key",),
    "ollama": ("ollama_api_key",),
    "duckduckgo": (),
    "custom_scrape": (),
}


class WebSearchError(Exception):
    """A provider request failed."""


@dataclass
class WebSearchResult:
    source_title: str
    url: str
    snippet: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"source_title": self.source_title, "url": self.url, "snippet": self.snippet}


def list_providers() -> List[str]:
    return list(PROVIDER_LABELS)


def missing_credentials(provider: str, credentials: Dict[str, Optional[str]]) -> List[str]:
    """Credential keys the provider needs but does not have; unknown providers need nothing."""
    required = _REQUIRED_CREDENTIALS.get(provider, ())
    return [key for key in required if not (credentials.get(key) or "").strip()]


def is_provider_configured(provider: str, credentials: Dict[str, Optional[str]]) -> bool:
    return provider in _REQUIRED_CREDENTIALS and not missing_credentials(provider, credentials)


def strip_html(text: str) -> str:
    """Drop scripts, styles and tags, unescape entities and collapse whitespace."""
    text = re.sub(r"(?is)<(script|style|noscript)[^>]*>.*?</\1>", " ", text or "")
    text = re.sub(r"(?s)<!--.*?-->", " ", text)
    text = re.sub(r"(?i)<br\s*/?>|</p>|</div>|</li>|</h[1-6]>", "\n", text)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    return re.sub(r"\n\s*\n+", "\n\n", text).strip()


def _html_title(text: str) -> str:
    match = re.search(r"(?is)<title[^>]*>(.*?)</title>", text or "")
    return html.unescape(match.group(1)).strip() if match else ""


class WebSearchClient:
    """Runs search/fetch requests for a chosen provider."""

    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        session: Optional[requests.Session] = None,
        timeout_s: float = 10.0,
        max_results: int = 5,
        retry_backoff_s: float = 0.5,
        logger: Optional[logging.Logger] = None
    ):
        self._http = http
        self._owns_http = http is None
        self._session = session or requests.Session()
        self.timeout_s = timeout_s
        self.max_results = max_results
        self.retry_backoff_s = retry_backoff_s
        self._logger = logger or logging.getLogger(__name__)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.timeout_s,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        self._session.close()

    # ---------- Search ----------
    async def search(
        self,
        provider: str,
        query: str,
        credentials: Dict[str, Optional[str]],
        max_results: Optional[int] = None
    ) -> List[Dict[str, str]]:
        """Top results as ``{source_title, url, snippet}`` dicts."""
        limit = max(1, min(int(max_results or self.max_results), 10))
        self._logger.debug(f"Web search via {provider}: {query[:200]!r}")
        if provider == "google":
            results = await self._search_google(query, credentials, limit)
        elif provider == "bing":
            results = await self._search_bing(query, credentials, limit)
        elif provider == "ollama":
            results = await self._search_ollama(query, credentials, limit)
        elif provider in ("duckduckgo", "custom_scrape"):
            results = await asyncio.to_thread(self._search_duckduckgo, query, limit)
        else:
            raise WebSearchError(f"Unknown web search provider: {provider}")
        return [r.to_dict() for r in results[:limit]]

    async def _get_json(self, url: str, **kwargs) -> Any:
        try:
            resp = await self._client().get(url, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise WebSearchError(f"HTTP {e.response.status_code} from {url}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise WebSearchError(f"Request to {url} failed: {e}") from e

    async def _post_json(self, url: str, api_key: str, payload: Dict[str, Any]) -> Any:
        try:
            resp = await self._client().post(url, json=payload, headers={"Authorization": f"Bearer {api_key}"})
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise WebSearchError(f"HTTP {e.response.status_code} from {url}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise WebSearchError(f"Request to {url} failed: {e}") from e

    async def _search_google(self, query: str, credentials: Dict[str, Optional[str]], limit: int) -> List[WebSearchResult]:
        data = await self._get_json(GOOGLE_SEARCH_URL, params={
            "key": credentials.get("google_api_key"),
            "cx": credentials.get("google_cse_id"),
            "q": query,
            "num": limit,
        })
        items = data.get("items") if isinstance(data, dict) else None
        return [
            WebSearchResult(item["title"], item["link"], item.get("snippet") or "")
            for item in (items or [])
            if isinstance(item, dict) and item.get("title") and item.get("link")
        ]

    async def _search_bing(self, query: str, credentials: Dict[str, Optional[str]], limit: int) -> List[WebSearchResult]:
        data = await self._get_json(
            BING_SEARCH_URL,
            params={"q": query, "count": limit},
            headers={"Ocp-Apim-Subscription-Key": credentials.get("bing_api_key") or ""},
        )
        pages = ((data or {}).get("webPages") or {}).get("value") or []
        return [
            WebSearchResult(item["name"], item["url"], item.get("snippet") or "")
            for item in pages
            if isinstance(item, dict) and item.get("name") and item.get("url")
        ]

    async def _search_ollama(self, query: str, credentials: Dict[str, Optional[str]], limit: int) -> List[WebSearchResult]:
        data = await self._post_json(OLLAMA_SEARCH_URL, credentials.get("ollama_api_key") or "", {
            "query": query,
            "max_results": limit,
        })
        items = data.get("results") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise WebSearchError("No results found in Ollama response")
        return [
            WebSearchResult(item["title"], item["url"], item.get("content") or "")
            for item in items
            if isinstance(item, dict) and item.get("title") and item.get("url")
        ]

    def _search_duckduckgo(self, query: str, limit: int) -> List[WebSearchResult]:
        params = {
            "q": query,
            "format": "json",
            "no_html": "1",
            "no_redirect": "1",
            "t": "toolrelay",
        }
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}

        # Small retries for transient statuses (e.g., 202, 429, 5xx)
        resp = None
        for attempt in range(DDG_ATTEMPTS):
            last = attempt == DDG_ATTEMPTS - 1
            try:
                resp = self._session.get(DUCKDUCKGO_API_URL, params=params, headers=headers, timeout=self.timeout_s)
            except requests.RequestException as e:
                if last:
                    raise WebSearchError(f"DuckDuckGo network error: {e}") from e
                time.sleep(self.retry_backoff_s * (2 ** attempt))
                continue
            if resp.status_code == 200:
                break
            if not last and resp.status_code in RETRY_STATUSES:
                time.sleep(self.retry_backoff_s * (2 ** attempt))
                continue
            break

        if resp is None or resp.status_code != 200:
            raise WebSearchError(f"DuckDuckGo returned HTTP {getattr(resp, 'status_code', 'n/a')}")
        try:
            data = resp.json()
        except ValueError as e:
            raise WebSearchError("DuckDuckGo returned invalid JSON") from e

        results: List[WebSearchResult] = []
        if data.get("AbstractURL") and data.get("AbstractText"):
            results.append(WebSearchResult(
                data.get("Heading") or data["AbstractURL"], data["AbstractURL"], data["AbstractText"]
            ))

        def walk(topics):
            for topic in topics or []:
                if not isinstance(topic, dict):
                    continue
                if "Topics" in topic:
                    yield from walk(topic.get("Topics"))
                elif topic.get("FirstURL"):
                    yield topic

        seen = {r.url for r in results}
        for topic in walk(list(data.get("Results") or []) + list(data.get("RelatedTopics") or [])):
            url = topic["FirstURL"]
            if url in seen:
                continue
            seen.add(url)
            text = topic.get("Text") or ""
            results.append(WebSearchResult(text.split(" - ")[0][:120] or url, url, text))
            if len(results) >= limit:
                break
        return results

    # ---------- Fetch ----------
    async def fetch(
        self,
        provider: str,
        url: str,
        credentials: Dict[str, Optional[str]],
        max_content_chars: int = 8000
    ) -> Dict[str, Any]:
        """Readable text of a page as ``{url, title, content, truncated}``."""
        if not re.match(r"(?i)^https?://", url):
            raise WebSearchError("url must start with http:// or https://")
        self._logger.debug(f"Web fetch via {provider}: {url[:200]}")
        if provider == "ollama":
            data = await self._post_json(OLLAMA_FETCH_URL, credentials.get("ollama_api_key") or "", {"url": url})
            title = str((data or {}).get("title") or "")
            content = str((data or {}).get("content") or "")
            final_url = url
        else:
            try:
                resp = await self._client().get(url)
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise WebSearchError(f"HTTP {e.response.status_code} fetching {url}") from e
            except httpx.HTTPError as e:
                raise WebSearchError(f"Fetching {url} failed: {e}") from e
            body = resp.text
            final_url = str(resp.url)
            if "html" in resp.headers.get("Content-Type", "").lower() or body.lstrip().startswith("<"):
                title = _html_title(body)
                content = strip_html(body)
            else:
                title = ""
                content = body.strip()
        truncated = len(content) > max_content_chars
        return {
            "url": final_url,
            "title": title,
            "content": content[:max_content_chars],
            "truncated": truncated,
        }

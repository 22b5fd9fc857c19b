"""Rate-limited client for MediaWiki-compatible JSON APIs.

Every request goes through an injected :class:`RateLimiter`; by default
the limiter is shared by all MediaWiki clients in the process, so several
pipelines hitting the same host are throttled together.

Example:
    from wiki_mirror.ingestion.mediawiki import MediaWikiClient

    client = MediaWikiClient("https://oldschool.runescape.wiki/api.php")
    page = client.get_page("Abyssal whip")
    for title in client.all_pages(start_from="Dragon", limit=100):
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from wiki_mirror.ingestion.errors import (
    ApiError,
    HttpError,
    NotFoundError,
    ParseError,
    RequestError,
)
from wiki_mirror.ingestion.rate_limit import RateLimiter
from wiki_mirror.settings import get_user_agent

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

# Per-call maximum enforced by the API for list queries
API_MAX_LIMIT = 500

# Titles per action=query batch
TITLES_PER_QUERY = 50


@dataclass
class Page:
    """A page fetched from the API."""

    title: str
    page_id: int | None = None
    revision_id: int | None = None
    html: str = ""
    wikitext: str = ""


@dataclass
class RecentChange:
    title: str
    page_id: int | None = None
    revision_id: int | None = None
    timestamp: str | None = None


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


class MediaWikiClient:
    """HTTP client for the MediaWiki ``api.php`` endpoint.

    Attributes:
        api_url: Full URL of api.php
        timeout: Request timeout in seconds
        rate_limiter: Gate consulted before every request
    """

    def __init__(
        self,
        api_url: str,
        rate_limiter: RateLimiter | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.api_url = api_url
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter.shared("mediawiki", 1.0)
        self.user_agent = user_agent or get_user_agent()
        self._session = session

    def _get_session(self) -> requests.Session:
        """Get or create the pooled requests session."""
        if self._session is None:
            self._session = requests.Session()
            retry_strategy = Retry(
                total=3,
                backoff_factor=0.5,
                status_forcelist=[502, 503, 504],
                allowed_methods=["GET"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy, pool_maxsize=10)
            self._session.mount("https://", adapter)
            self._session.mount("http://", adapter)
            self._session.headers.update(
                {
                    "User-Agent": self.user_agent,
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip, deflate",
                }
            )
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        """Issue one rate-limited GET and return the decoded JSON body.

        Raises:
            NotFoundError: API reported ``missingtitle``
            ApiError: any other structured API error
            HttpError: non-200 status
            RequestError: transport failure
            ParseError: body is not JSON
        """
        self.rate_limiter.acquire()
        query = {"format": "json", **params}
        try:
            response = self._get_session().get(
                self.api_url, params=query, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RequestError(str(e)) from e

        if response.status_code != 200:
            raise HttpError(response.status_code, self.api_url)

        try:
            data = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON from {self.api_url}: {e}") from e

        if isinstance(data, dict) and "error" in data:
            error = data["error"]
            code = error.get("code", "unknown")
            info = error.get("info", "")
            if code == "missingtitle":
                raise NotFoundError(info or params.get("page", ""))
            raise ApiError(code, info)
        return data

    def _paginate(
        self,
        params: dict[str, Any],
        list_key: str,
        continue_key: str,
        limit: int | None,
    ) -> Iterator[dict[str, Any]]:
        """Follow ``continue`` tokens, yielding list items up to ``limit``."""
        params = dict(params)
        yielded = 0
        while True:
            data = self._request(params)
            for item in data.get("query", {}).get(list_key, []):
                if limit is not None and yielded >= limit:
                    return
                yield item
                yielded += 1

            token = data.get("continue", {}).get(continue_key)
            if not token or (limit is not None and yielded >= limit):
                return
            params[continue_key] = token
            params["continue"] = data["continue"].get("continue", "")

    # ─── Single pages ───────────────────────────────────────────────────

    def get_page(self, title: str) -> Page:
        """Fetch parsed HTML and wikitext for one page.

        Raises:
            NotFoundError: if the page does not exist
        """
        data = self._request(
            {
                "action": "parse",
                "page": title,
                "prop": "text|wikitext|revid",
                "formatversion": 1,
                "redirects": 1,
            }
        )
        parse = data.get("parse")
        if not parse:
            raise ParseError(f"No parse result for {title!r}")
        return Page(
            title=parse.get("title", title),
            page_id=parse.get("pageid"),
            revision_id=parse.get("revid"),
            html=(parse.get("text") or {}).get("*", ""),
            wikitext=(parse.get("wikitext") or {}).get("*", ""),
        )

    def get_pages(self, titles: list[str]) -> list[Page]:
        """Fetch wikitext for many titles, 50 per request. Missing pages are skipped."""
        pages: list[Page] = []
        for start in range(0, len(titles), TITLES_PER_QUERY):
            chunk = titles[start : start + TITLES_PER_QUERY]
            data = self._request(
                {
                    "action": "query",
                    "titles": "|".join(chunk),
                    "prop": "revisions",
                    "rvprop": "content|ids",
                    "rvslots": "main",
                }
            )
            for page in data.get("query", {}).get("pages", {}).values():
                if "missing" in page or "invalid" in page:
                    continue
                revision = (page.get("revisions") or [{}])[0]
                main = revision.get("slots", {}).get("main", {})
                pages.append(
                    Page(
                        title=page["title"],
                        page_id=page.get("pageid"),
                        revision_id=revision.get("revid"),
                        wikitext=main.get("*", ""),
                    )
                )
        return pages

    # ─── Lists ──────────────────────────────────────────────────────────

    def recent_changes(self, since: datetime, limit: int = 500) -> list[RecentChange]:
        """Main-namespace edits and creations newer than ``since``."""
        params = {
            "action": "query",
            "list": "recentchanges",
            "rcprop": "title|ids|timestamp",
            "rctype": "edit|new",
            "rcnamespace": 0,
            "rcend": _format_timestamp(since),
            "rclimit": min(limit, API_MAX_LIMIT),
        }
        return [
            RecentChange(
                title=item["title"],
                page_id=item.get("pageid"),
                revision_id=item.get("revid"),
                timestamp=item.get("timestamp"),
            )
            for item in self._paginate(params, "recentchanges", "rccontinue", limit)
        ]

    def category_members(self, category: str, limit: int = 5000) -> list[str]:
        """Titles of main-namespace pages in a category."""
        if not category.startswith("Category:"):
            category = f"Category:{category}"
        params = {
            "action": "query",
            "list": "categorymembers",
            "cmtitle": category,
            "cmnamespace": 0,
            "cmlimit": min(limit, API_MAX_LIMIT),
        }
        return [
            item["title"]
            for item in self._paginate(params, "categorymembers", "cmcontinue", limit)
        ]

    def all_pages(
        self,
        start_from: str | None = None,
        limit: int | None = None,
        namespace: int = 0,
    ) -> Iterator[str]:
        """Lazily iterate every page title in alphabetical order.

        Args:
            start_from: Resume point; titles sorting before it are skipped
            limit: Stop after this many titles (None for the whole wiki)
            namespace: Namespace id (0 = articles)
        """
        params: dict[str, Any] = {
            "action": "query",
            "list": "allpages",
            "apnamespace": namespace,
            "aplimit": min(limit, API_MAX_LIMIT) if limit else API_MAX_LIMIT,
        }
        if start_from:
            params["apfrom"] = start_from
        for item in self._paginate(params, "allpages", "apcontinue", limit):
            yield item["title"]

    def search(self, query: str, limit: int = 50) -> list[str]:
        """Full-text search; a single bounded request."""
        data = self._request(
            {
                "action": "query",
                "list": "search",
                "srsearch": query,
                "srlimit": min(limit, API_MAX_LIMIT),
            }
        )
        return [item["title"] for item in data.get("query", {}).get("search", [])]

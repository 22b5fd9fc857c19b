"""Client for the Internet Archive's CDX index and raw snapshot endpoint.

Used when the live origin refuses direct access. Only successful (200)
captures are requested, collapsed to one row per unique URL, then
filtered to HTML-like resources.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from wiki_mirror.ingestion.errors import (
    HttpError,
    IngestionError,
    NotFoundError,
    ParseError,
    RequestError,
)
from wiki_mirror.ingestion.rate_limit import RateLimiter
from wiki_mirror.settings import get_user_agent

logger = logging.getLogger(__name__)

CDX_URL = "https://web.archive.org/cdx/search/cdx"
SNAPSHOT_BASE = "https://web.archive.org/web"
DEFAULT_TIMEOUT = 30

HTML_MIME_TYPES = frozenset({"text/html", "text/htm", "application/xhtml+xml"})
HTML_EXTENSIONS = (".html", ".htm", ".ashx")

# "2" sorts after every real 14-digit timestamp, so the archive serves the latest
LATEST = "2"


@dataclass
class ArchivedUrl:
    url: str
    timestamp: str
    status: str = "200"
    mime_type: str = ""


@dataclass
class Snapshot:
    html: str
    timestamp: str
    original_url: str
    wayback_url: str


def is_html_like(url: str, mime_type: str) -> bool:
    """HTML by MIME type, or by extension (including none at all)."""
    if mime_type.lower() in HTML_MIME_TYPES:
        return True
    path = url.split("?", 1)[0].split("#", 1)[0].rstrip("/")
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return True
    return last.lower().endswith(HTML_EXTENSIONS)


class WaybackClient:
    """Rate-limited CDX/snapshot client.

    Every call passes through the injected rate limiter, which by default
    is shared process-wide with a 1 second interval.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        cdx_url: str = CDX_URL,
        snapshot_base: str = SNAPSHOT_BASE,
    ) -> None:
        self.rate_limiter = rate_limiter or RateLimiter.shared("wayback", 1.0)
        self.timeout = timeout
        self.cdx_url = cdx_url
        self.snapshot_base = snapshot_base.rstrip("/")
        self._session = session

    def _get_session(self) -> requests.Session:
        """Get or create the pooled requests session."""
        if self._session is None:
            self._session = requests.Session()
            retry_strategy = Retry(
                total=3,
                backoff_factor=1.0,
                status_forcelist=[429, 502, 503, 504],
                allowed_methods=["GET"],
                raise_on_status=False,
            )
            adapter = HTTPAdapter(max_retries=retry_strategy, pool_maxsize=10)
            self._session.mount("https://", adapter)
            self._session.mount("http://", adapter)
            self._session.headers.update({"User-Agent": get_user_agent()})
        return self._session

    def _get(self, url: str, params: dict[str, Any] | None = None) -> requests.Response:
        self.rate_limiter.acquire()
        try:
            return self._get_session().get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise RequestError(str(e)) from e

    def _cdx(self, params: dict[str, Any]) -> list[list[str]]:
        """Query the CDX API and return data rows (header row removed)."""
        response = self._get(self.cdx_url, {"output": "json", **params})
        if response.status_code != 200:
            raise HttpError(response.status_code, self.cdx_url)
        if not response.text.strip():
            return []
        try:
            rows = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid CDX response: {e}") from e
        return rows[1:] if rows else []

    def list_archived_urls(
        self,
        domain: str,
        prefix: str = "",
        limit: int = 10_000,
        from_timestamp: str | None = None,
        offset: int = 0,
    ) -> list[ArchivedUrl]:
        """Unique successfully-archived HTML URLs under ``domain/prefix``."""
        params: dict[str, Any] = {
            "url": f"{domain}/{prefix}*",
            "fl": "timestamp,original,statuscode,mimetype",
            "filter": "statuscode:200",
            "collapse": "urlkey",
            "limit": limit,
        }
        if offset:
            params["offset"] = offset
        if from_timestamp:
            params["from"] = from_timestamp

        urls = []
        for row in self._cdx(params):
            if len(row) < 4:
                continue
            timestamp, original, status, mime_type = row[:4]
            if is_html_like(original, mime_type):
                urls.append(ArchivedUrl(original, timestamp, status, mime_type))
        return urls

    def count_archived_urls(self, domain: str, prefix: str = "") -> int:
        """Rough capture count (pages of results, or rows when unpaged)."""
        response = self._get(
            self.cdx_url,
            {"url": f"{domain}/{prefix}*", "showNumPages": "true", "output": "json"},
        )
        if response.status_code != 200:
            raise HttpError(response.status_code, self.cdx_url)
        body = response.text.strip()
        if body.isdigit():
            return int(body)
        try:
            rows = response.json()
        except ValueError as e:
            raise ParseError(f"Invalid CDX count response: {e}") from e
        if isinstance(rows, int):
            return rows
        return max(len(rows) - 1, 0)

    def fetch_snapshot(self, url: str, timestamp: str | None = None) -> str:
        """Raw archived body (``id_`` suppresses the archive's toolbar).

        Raises:
            NotFoundError: no capture for this URL
        """
        snapshot_url = f"{self.snapshot_base}/{timestamp or LATEST}id_/{url}"
        response = self._get(snapshot_url)
        if response.status_code == 404:
            raise NotFoundError(url)
        if response.status_code != 200:
            raise HttpError(response.status_code, snapshot_url)
        return response.text

    def fetch_snapshot_with_meta(self, url: str) -> Snapshot:
        """Look up the newest capture, then fetch exactly that capture."""
        rows = self._cdx(
            {
                "url": url,
                "fl": "timestamp,original",
                "filter": "statuscode:200",
                "limit": 1,
                "sort": "reverse",
            }
        )
        if not rows:
            raise NotFoundError(url)
        timestamp, original = rows[0][0], rows[0][1]
        html = self.fetch_snapshot(original, timestamp)
        return Snapshot(
            html=html,
            timestamp=timestamp,
            original_url=original,
            wayback_url=f"{self.snapshot_base}/{timestamp}/{original}",
        )

    def stream_archived_urls(
        self, domain: str, prefix: str = "", batch_size: int = 1000
    ) -> Iterator[ArchivedUrl]:
        """Page through a domain's captures without holding the full list.

        Stops at the first short page. A failed page request is logged with
        its offset and re-raised, so callers never see a silently truncated
        listing.
        """
        offset = 0
        while True:
            try:
                batch = self._cdx(
                    {
                        "url": f"{domain}/{prefix}*",
                        "fl": "timestamp,original,statuscode,mimetype",
                        "filter": "statuscode:200",
                        "collapse": "urlkey",
                        "limit": batch_size,
                        "offset": offset,
                    }
                )
            except IngestionError as e:
                logger.warning("Archive listing stopped at offset %d: %s", offset, e)
                raise
            for row in batch:
                if len(row) >= 4 and is_html_like(row[1], row[3]):
                    yield ArchivedUrl(row[1], row[0], row[2], row[3])
            if len(batch) < batch_size:
                return
            offset += batch_size

"""Vintage Machinery: a live site mirrored with wget, or its archived wiki.

The live site is mirrored to disk and read locally. The wiki subdomain
refuses direct access, so it is ingested from Wayback Machine snapshots.
Both paths share the same HTML cleaning: site chrome is dropped, internal
links are rewritten to ``/machines/<slug>`` and images are made absolute.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Hashable
from datetime import datetime, timedelta
from itertools import islice
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup

from wiki_mirror.ingestion.common import clean_html, filter_out_all, humanize_slug
from wiki_mirror.ingestion.errors import ParseError
from wiki_mirror.ingestion.mirror import (
    CONTENT_SELECTORS,
    MirrorClient,
    MirrorPage,
    path_to_slug,
    slug_category,
)
from wiki_mirror.ingestion.pipeline import Rendition, SourceAdapter, SourcePipeline
from wiki_mirror.ingestion.results import SyncResult
from wiki_mirror.ingestion.wayback import ArchivedUrl, Snapshot, WaybackClient
from wiki_mirror.ingestion.workers import BatchWorker
from wiki_mirror.models import Source, SyncRun

logger = logging.getLogger(__name__)

LICENSE = "Used with permission"
ARCHIVED_LICENSE = "Used with permission (archived)"
SITE_URL = "https://vintagemachinery.org"
UPSTREAM_BASE = f"{SITE_URL}/"
ARCHIVED_DOMAIN = "wiki.vintagemachinery.org"
SITE_HOSTS = frozenset(
    {"vintagemachinery.org", "www.vintagemachinery.org", ARCHIVED_DOMAIN}
)
LINK_PREFIX = "/machines/"

CHROME_SELECTORS = (
    "nav",
    "header",
    "footer",
    ".navigation",
    ".sidebar",
    "#menu",
    "script",
    "style",
    "noscript",
)

_WAYBACK_URL = re.compile(r"(?:https?:)?//web\.archive\.org/web/\d+(?:[a-z]{2}_)?/(.+)")
_HTML_EXT = re.compile(r"\.html?$", re.IGNORECASE)


# ─── URL helpers ────────────────────────────────────────────────────────────


def unwrap_wayback_url(url: str) -> str:
    """``https://web.archive.org/web/2019…id_/http://x/y`` → ``http://x/y``."""
    match = _WAYBACK_URL.search(url)
    return match.group(1) if match else url


def url_to_slug(url: str) -> str:
    path = unquote(urlparse(url).path).lstrip("/")
    path = _HTML_EXT.sub("", path).rstrip("/")
    slug = path.replace("/", "__").lower()
    return slug or "index"


def url_to_title(url: str) -> str:
    path = unquote(urlparse(url).path).rstrip("/")
    last = _HTML_EXT.sub("", path.rsplit("/", 1)[-1])
    last = re.sub(r"\.ashx$", "", last, flags=re.IGNORECASE)
    return humanize_slug(last) if last else "Index"


def timestamp_to_date(timestamp: str) -> str | None:
    """``20190412083000`` → ``2019-04-12``."""
    if len(timestamp) < 8 or not timestamp[:8].isdigit():
        return None
    return f"{timestamp[:4]}-{timestamp[4:6]}-{timestamp[6:8]}"


# ─── HTML cleaning ──────────────────────────────────────────────────────────


def rewrite_link(href: str, site_hosts: frozenset[str] = frozenset()) -> str:
    href = unwrap_wayback_url(href)
    if href.startswith(("#", "mailto:", "javascript:")):
        return href
    if href.startswith(("http://", "https://")):
        if urlparse(href).netloc.lower() in site_hosts:
            return LINK_PREFIX + url_to_slug(href)
        return href
    target = href.split("#", 1)[0].split("?", 1)[0]
    return LINK_PREFIX + path_to_slug(target) if target else href


def absolutize_image(src: str, site_url: str = SITE_URL) -> str:
    src = unwrap_wayback_url(src)
    if src.startswith(("http://", "https://", "data:")):
        return src
    if src.startswith("//"):
        return f"https:{src}"
    if src.startswith("/"):
        return site_url + src
    return f"{site_url}/{src}"


def clean_site_html(markup: str, site_url: str = SITE_URL) -> str:
    """Drop chrome, rewrite internal links and absolutize images."""
    hosts = SITE_HOSTS | {urlparse(site_url).netloc}
    remove_chrome = filter_out_all(CHROME_SELECTORS)

    def transform(soup: BeautifulSoup) -> None:
        remove_chrome(soup)
        for anchor in soup.find_all("a", href=True):
            anchor["href"] = rewrite_link(anchor["href"], hosts)
        for img in soup.find_all("img", src=True):
            img["src"] = absolutize_image(img["src"], site_url)

    return clean_html(markup, transform)


def wrap_article(title: str, body: str) -> str:
    return (
        '<article class="vm-article">'
        f"<h1>{html.escape(title)}</h1>"
        f'<div class="vm-content">{body}</div>'
        "</article>"
    )


# ─── Live mirror ────────────────────────────────────────────────────────────


class VintageMachineryAdapter(SourceAdapter[str, MirrorPage]):
    source = Source.VINTAGE_MACHINERY
    license = LICENSE
    upstream_base = UPSTREAM_BASE

    def __init__(self, client: MirrorClient) -> None:
        self.client = client

    def fetch(self, key: str) -> MirrorPage:
        return self.client.get_page(key)

    def render(self, page: MirrorPage) -> Rendition:
        body = clean_site_html(page.content_html, self.client.site_url)
        metadata: dict = {"images": page.images}
        if page.category:
            metadata["category"] = page.category
        return Rendition(
            slug=page.slug,
            title=page.title,
            html=wrap_article(page.title, body),
            raw=page.html,
            extracted_text=page.text or None,
            metadata=metadata,
        )

    def upstream_url(self, page: MirrorPage, rendition: Rendition) -> str:
        if page.path is not None:
            relative = page.path.relative_to(self.client.site_dir).as_posix()
            return self.upstream_base + relative
        return self.upstream_base + page.slug.replace("__", "/")


class VintageMachineryPipeline(SourcePipeline[str, MirrorPage]):
    """Pages are local once mirrored, so batches run concurrently."""

    batch_mode = "concurrent"
    lookback = timedelta(days=30)

    adapter: VintageMachineryAdapter

    @property
    def client(self) -> MirrorClient:
        return self.adapter.client

    def changed_keys(self, since: datetime) -> list[str]:
        self.client.sync_site()
        return self.client.list_modified_pages(since)

    def all_keys(self, limit: int | None = None) -> list[str]:
        self.client.sync_site()
        slugs = self.client.list_pages()
        return slugs[:limit] if limit is not None else slugs

    def sync_all(self, limit: int | None = 50_000) -> SyncResult:
        return super().sync_all(limit=limit)


# ─── Wayback archive ────────────────────────────────────────────────────────


class WaybackAdapter(SourceAdapter[ArchivedUrl | str, Snapshot]):
    source = Source.VINTAGE_MACHINERY
    license = ARCHIVED_LICENSE
    upstream_base = f"https://{ARCHIVED_DOMAIN}/"

    def __init__(self, client: WaybackClient) -> None:
        self.client = client

    def fetch(self, key: ArchivedUrl | str) -> Snapshot:
        """Known captures are fetched directly; bare URLs look up the newest."""
        if isinstance(key, ArchivedUrl):
            body = self.client.fetch_snapshot(key.url, key.timestamp)
            return Snapshot(
                html=body,
                timestamp=key.timestamp,
                original_url=key.url,
                wayback_url=f"{self.client.snapshot_base}/{key.timestamp}/{key.url}",
            )
        return self.client.fetch_snapshot_with_meta(key)

    def render(self, page: Snapshot) -> Rendition:
        if not page.html.strip():
            raise ParseError(f"Empty snapshot for {page.original_url}")
        soup = BeautifulSoup(page.html, "html.parser")
        title_tag = soup.find("title")
        title = title_tag.get_text(strip=True) if title_tag else ""
        title = title or url_to_title(page.original_url)

        content = None
        for selector in CONTENT_SELECTORS:
            content = soup.select_one(selector)
            if content is not None:
                break
        if content is None:
            raise ParseError(f"No content element in snapshot of {page.original_url}")

        slug = url_to_slug(page.original_url)
        body = clean_site_html(str(content), f"https://{ARCHIVED_DOMAIN}")
        metadata = {
            "source": "wayback_machine",
            "archived_at": timestamp_to_date(page.timestamp),
            "wayback_url": page.wayback_url,
        }
        if category := slug_category(slug):
            metadata["category"] = category
        return Rendition(
            slug=slug,
            title=title,
            html=wrap_article(title, body),
            raw=page.html,
            metadata=metadata,
        )

    def upstream_url(self, page: Snapshot, rendition: Rendition) -> str:
        return page.original_url


class VintageMachineryWaybackPipeline(SourcePipeline[ArchivedUrl | str, Snapshot]):
    """Archived wiki pages; the archive's rate limiter paces the pool."""

    batch_mode = "concurrent"
    lookback = timedelta(days=30)
    prefixes: tuple[str, ...] = ("",)

    adapter: WaybackAdapter

    def __init__(
        self, adapter: WaybackAdapter, stores, domain: str = ARCHIVED_DOMAIN
    ) -> None:
        super().__init__(adapter, stores)
        self.domain = domain

    @property
    def client(self) -> WaybackClient:
        return self.adapter.client

    def item_key(self, key: ArchivedUrl | str) -> Hashable:
        return key.url if isinstance(key, ArchivedUrl) else key

    def changed_keys(self, since: datetime) -> list[ArchivedUrl | str]:
        from_timestamp = since.strftime("%Y%m%d%H%M%S")
        urls: list[ArchivedUrl | str] = []
        for prefix in self.prefixes:
            urls.extend(
                self.client.list_archived_urls(
                    self.domain, prefix, from_timestamp=from_timestamp
                )
            )
        return urls

    def all_keys(self, limit: int | None = None) -> list[ArchivedUrl | str]:
        urls: list[ArchivedUrl | str] = []
        for prefix in self.prefixes:
            stream = self.client.stream_archived_urls(self.domain, prefix)
            urls.extend(islice(stream, limit))
        return urls[:limit] if limit is not None else urls

    def sync_prefix(self, prefix: str, limit: int = 10_000) -> SyncResult:
        def work(run: SyncRun) -> SyncResult:
            urls = self.client.list_archived_urls(self.domain, prefix, limit=limit)
            return self._process_listing(lambda: list(urls))

        return self.run_tracked(f"prefix:{prefix or '/'}", work)

    def sync_all(self, limit: int | None = 50_000) -> SyncResult:
        """Stream the whole archive in batches, checkpointing every 50 URLs."""
        worker = BatchWorker(self, batch_size=50, progress_interval=50)
        worker.strategy = "wayback_full"

        def work(run: SyncRun) -> SyncResult:
            urls = (
                url
                for prefix in self.prefixes
                for url in self.client.stream_archived_urls(self.domain, prefix)
            )
            return worker.run_batches(
                run,
                islice(urls, limit),
                lambda url, total: {"last_url": url.url, "processed": total},
            )

        return self.run_tracked(worker.strategy, work)

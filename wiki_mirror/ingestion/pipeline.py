"""Generic ingestion pipeline.

Every source implements the small :class:`SourceAdapter` capability
interface (``fetch``, ``render``, ``upstream_url``). :func:`upsert` runs
the shared sequence for one key:

    fetch → render → hash → compare → store blobs → upsert → invalidate

and :class:`SourcePipeline` adds the batch and sync entry points a
scheduler calls: ``process_page``, ``process_pages``,
``sync_recent_changes`` and ``sync_all``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, ClassVar, Generic, Literal, TypeVar

from pydantic import ValidationError

from wiki_mirror.ingestion.common import (
    extract_text,
    hash_content,
    run_concurrent,
    run_sequential,
    upstream_url,
)
from wiki_mirror.ingestion.errors import IngestionError, ParseError, PersistError
from wiki_mirror.ingestion.results import PageResult, SyncResult, aggregate_stats
from wiki_mirror.ingestion.tracking import RunTracker
from wiki_mirror.models import Article, Source, SyncRun, utc_now
from wiki_mirror.storage import (
    ArticleStore,
    BlobStore,
    CacheInvalidator,
    LocalArticleStore,
    LocalBlobStore,
    LocalRecordStore,
    LocalSyncRunStore,
    LoggingCacheInvalidator,
    MemoryArticleStore,
    MemoryBlobStore,
    MemoryRecordStore,
    MemorySyncRunStore,
    RecordingCacheInvalidator,
    RecordStore,
)

logger = logging.getLogger(__name__)

K = TypeVar("K")
P = TypeVar("P")


@dataclass
class Rendition:
    """Canonical rendering of a fetched page, ready to be stored."""

    slug: str
    title: str
    html: str
    raw: str = ""
    extracted_text: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Stores:
    """The external collaborators a pipeline writes through."""

    articles: ArticleStore
    blobs: BlobStore
    cache: CacheInvalidator
    tracker: RunTracker
    records: RecordStore = field(default_factory=MemoryRecordStore)

    @classmethod
    def in_memory(cls) -> Stores:
        return cls(
            articles=MemoryArticleStore(),
            blobs=MemoryBlobStore(),
            cache=RecordingCacheInvalidator(),
            tracker=RunTracker(MemorySyncRunStore()),
        )

    @classmethod
    def local(cls, root: Path) -> Stores:
        root = Path(root)
        return cls(
            articles=LocalArticleStore(root / "articles"),
            blobs=LocalBlobStore(root / "blobs"),
            cache=LoggingCacheInvalidator(),
            tracker=RunTracker(LocalSyncRunStore(root / "sync_runs.json")),
            records=LocalRecordStore(root / "records"),
        )


class SourceAdapter(ABC, Generic[K, P]):
    """Per-source capabilities consumed by :func:`upsert`.

    Attributes:
        source: Source identifier stored on every article
        license: License string stored on every article
        upstream_base: Prefix for upstream URLs
    """

    source: ClassVar[Source]
    license: ClassVar[str]
    upstream_base: ClassVar[str]

    @abstractmethod
    def fetch(self, key: K) -> P:
        """Retrieve the upstream page for ``key`` (raises IngestionError)."""

    @abstractmethod
    def render(self, page: P) -> Rendition:
        """Produce canonical HTML plus slug, title and metadata."""

    def upstream_url(self, page: P, rendition: Rendition) -> str:
        return upstream_url(self.upstream_base, rendition.slug)


def upsert(
    adapter: SourceAdapter[K, P], key: K, stores: Stores
) -> PageResult:
    """Fetch, render and store one key; never raises for per-key failures."""
    try:
        page = adapter.fetch(key)
    except IngestionError as e:
        logger.debug("Fetch failed for %s %r: %s", adapter.source.value, key, e)
        return PageResult.failed(e)

    try:
        rendition = adapter.render(page)
    except IngestionError as e:
        return PageResult.failed(e)
    except (ValueError, TypeError, KeyError, AttributeError) as e:
        return PageResult.failed(ParseError(f"Render failed for {key!r}: {e}"))

    source = adapter.source
    content_hash = hash_content(rendition.html)
    existing = stores.articles.get(source, rendition.slug)
    if existing is not None and existing.upstream_hash == content_hash:
        return PageResult(status="unchanged", article=existing)

    raw_key = stores.blobs.raw_key(source, rendition.slug) if rendition.raw else None
    try:
        article = Article(
            source=source,
            slug=rendition.slug,
            title=rendition.title,
            extracted_text=(
                rendition.extracted_text
                if rendition.extracted_text is not None
                else extract_text(rendition.html)
            ),
            rendered_html_key=stores.blobs.html_key(source, rendition.slug),
            raw_content_key=raw_key,
            upstream_url=adapter.upstream_url(page, rendition),
            upstream_hash=content_hash,
            license=adapter.license,
            metadata=rendition.metadata,
            synced_at=utc_now(),
        )
    except ValidationError as e:
        error = PersistError(f"Invalid article {rendition.slug!r}: {e}")
        return PageResult.failed(error)

    try:
        stores.blobs.put_html(source, rendition.slug, rendition.html)
        if raw_key is not None:
            stores.blobs.put_raw(source, rendition.slug, rendition.raw)
        stored = stores.articles.upsert(article)
    except PersistError as e:
        return PageResult.failed(e)
    except (OSError, ValueError) as e:
        return PageResult.failed(PersistError(f"Storage write failed: {e}"))

    stores.cache.invalidate(source, rendition.slug)
    status = "created" if existing is None else "updated"
    logger.debug("%s %s/%s", status, source.value, rendition.slug)
    return PageResult(status=status, article=stored)


class SourcePipeline(ABC, Generic[K, P]):
    """Scheduler-facing entry points for one source.

    Subclasses supply the adapter and the key listings; the sync entry
    points run inside a tracked SyncRun and return a SyncResult.
    """

    batch_mode: ClassVar[Literal["sequential", "concurrent"]] = "sequential"
    lookback: ClassVar[timedelta] = timedelta(days=1)
    max_concurrency: ClassVar[int] = 4
    task_timeout: ClassVar[float] = 60.0

    def __init__(self, adapter: SourceAdapter[K, P], stores: Stores) -> None:
        self.adapter = adapter
        self.stores = stores

    @property
    def source(self) -> Source:
        return self.adapter.source

    @property
    def tracker(self) -> RunTracker:
        return self.stores.tracker

    def item_key(self, key: K) -> Hashable:
        return key  # type: ignore[return-value]

    # ─── Per-key ────────────────────────────────────────────────────────

    def process_page(self, key: K) -> PageResult:
        return upsert(self.adapter, key, self.stores)

    def process_pages(self, keys: Iterable[K]) -> dict[Hashable, PageResult]:
        if self.batch_mode == "concurrent":
            return run_concurrent(
                keys,
                self.process_page,
                key=self.item_key,
                max_concurrency=self.max_concurrency,
                timeout=self.task_timeout,
            )
        return run_sequential(keys, self.process_page, key=self.item_key)

    # ─── Sync ───────────────────────────────────────────────────────────

    @abstractmethod
    def changed_keys(self, since: datetime) -> list[K]:
        """Keys changed upstream after ``since``."""

    @abstractmethod
    def all_keys(self, limit: int | None = None) -> list[K]:
        """Every key known upstream (up to ``limit``)."""

    def default_since(self) -> datetime:
        """Last completed run, else now minus the source's lookback window."""
        return self.tracker.last_completed_at(self.source) or utc_now() - self.lookback

    def run_tracked(
        self, strategy: str, fn: Callable[[SyncRun], SyncResult]
    ) -> SyncResult:
        return self.tracker.track(self.source, strategy, fn)

    def _process_listing(self, list_keys: Callable[[], list[K]]) -> SyncResult:
        keys = list_keys()
        if not keys:
            return SyncResult.success(aggregate_stats([]))
        return SyncResult.success(aggregate_stats(self.process_pages(keys)))

    def sync_recent_changes(self, since: datetime | None = None) -> SyncResult:
        since = since or self.default_since()
        logger.info("Syncing %s changes since %s", self.source.value, since.isoformat())
        return self.run_tracked(
            "recent_changes",
            lambda run: self._process_listing(lambda: self.changed_keys(since)),
        )

    def sync_all(self, limit: int | None = None) -> SyncResult:
        return self.run_tracked(
            "full_sync", lambda run: self._process_listing(lambda: self.all_keys(limit))
        )

"""Wikipedia: bulk import from the pages-articles XML dump.

Records are already local once streamed, so batches run on the bounded
concurrent pool. Full and incremental syncs both delegate to
:class:`~wiki_mirror.ingestion.workers.DumpImportWorker`; an incremental
sync only imports when the dump file changed after the last run.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Sequence
from contextlib import closing
from datetime import datetime, timedelta
from itertools import islice
from pathlib import Path

from wiki_mirror.ingestion.dump import (
    DEFAULT_DECOMPRESSOR,
    DumpArticle,
    dump_info,
    stream_articles,
)
from wiki_mirror.ingestion.errors import NotFoundError
from wiki_mirror.ingestion.pipeline import Rendition, SourceAdapter, SourcePipeline
from wiki_mirror.ingestion.render import (
    wiki_slug,
    wikitext_summary,
    wikitext_to_html,
)
from wiki_mirror.ingestion.results import SyncResult, SyncStats
from wiki_mirror.ingestion.workers import DumpImportWorker
from wiki_mirror.models import Source

logger = logging.getLogger(__name__)

LICENSE = "CC BY-SA 4.0"
UPSTREAM_BASE = "https://en.wikipedia.org/wiki/"


class WikipediaAdapter(SourceAdapter[DumpArticle | str, DumpArticle]):
    source = Source.WIKIPEDIA
    license = LICENSE
    upstream_base = UPSTREAM_BASE

    def __init__(
        self, dump_path: Path, decompressor: Sequence[str] = DEFAULT_DECOMPRESSOR
    ) -> None:
        self.dump_path = Path(dump_path)
        self.decompressor = tuple(decompressor)

    def stream(self):
        return stream_articles(self.dump_path, decompressor=self.decompressor)

    def fetch(self, key: DumpArticle | str) -> DumpArticle:
        """Streamed records pass through; a bare title scans the dump for it."""
        if isinstance(key, DumpArticle):
            return key
        with closing(self.stream()) as articles:
            for article in articles:
                if article.title == key:
                    return article
        raise NotFoundError(f"{key!r} not in {self.dump_path.name}")

    def render(self, page: DumpArticle) -> Rendition:
        return Rendition(
            slug=wiki_slug(page.title),
            title=page.title,
            html=wikitext_to_html(page.text, page.title),
            raw=page.text,
            extracted_text=wikitext_summary(page.text),
            metadata={"categories": page.categories, "wikipedia_id": page.id},
        )

    def upstream_url(self, page: DumpArticle, rendition: Rendition) -> str:
        # Slug is already percent-encoded
        return self.upstream_base + rendition.slug


class WikipediaPipeline(SourcePipeline[DumpArticle | str, DumpArticle]):
    batch_mode = "concurrent"
    task_timeout = 30.0
    lookback = timedelta(days=30)

    adapter: WikipediaAdapter

    @property
    def dump_path(self) -> Path:
        return self.adapter.dump_path

    @property
    def decompressor(self) -> tuple[str, ...]:
        return self.adapter.decompressor

    def item_key(self, key: DumpArticle | str) -> Hashable:
        return key.title if isinstance(key, DumpArticle) else key

    def changed_keys(self, since: datetime) -> list[DumpArticle | str]:
        # Only the worker path is lazy; this listing is for small dumps
        if dump_info(self.dump_path).modified <= since:
            return []
        return list(self.adapter.stream())

    def all_keys(self, limit: int | None = None) -> list[DumpArticle | str]:
        with closing(self.adapter.stream()) as articles:
            return list(islice(articles, limit))

    def worker(self) -> DumpImportWorker:
        return DumpImportWorker(self)

    def sync_all(
        self,
        limit: int | None = None,
        offset: int = 0,
        categories: list[str] | None = None,
    ) -> SyncResult:
        return self.worker().run(
            dump_path=self.dump_path, offset=offset, limit=limit, categories=categories
        )

    def sync_recent_changes(self, since: datetime | None = None) -> SyncResult:
        """Re-import only if a newer dump was downloaded since ``since``."""
        since = since or self.default_since()
        try:
            modified = dump_info(self.dump_path).modified
        except NotFoundError:
            return self.run_tracked(
                "recent_changes", lambda run: SyncResult.failure("dump_not_found")
            )
        if modified <= since:
            logger.info("Dump unchanged since %s", since.isoformat())
            return self.run_tracked(
                "recent_changes", lambda run: SyncResult.success(SyncStats())
            )
        return self.sync_all()

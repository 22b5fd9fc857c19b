"""Batch/resume workers for full-corpus imports.

Both workers consume their source lazily, process fixed-size batches
through the owning pipeline, merge per-batch statistics, and every
``progress_interval`` items log progress and write a checkpoint into the
run record. A failure outside per-page processing ends the run; the last
checkpoint is the resume point.

    FullDumpWorker    MediaWiki ``allpages`` crawl, resumable via ``start_from``
    DumpImportWorker  compressed XML dump, resumable via ``offset``
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import closing
from itertools import islice
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from wiki_mirror.ingestion.dump import DumpArticle, dump_info, stream_articles
from wiki_mirror.ingestion.errors import IngestionError, NotFoundError
from wiki_mirror.ingestion.results import SyncResult, SyncStats, aggregate_stats
from wiki_mirror.models import SyncRun

if TYPE_CHECKING:
    from wiki_mirror.ingestion.pipeline import SourcePipeline
    from wiki_mirror.ingestion.sources.osrs import OSRSPipeline
    from wiki_mirror.ingestion.sources.wikipedia import WikipediaPipeline

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Lazily split an iterable into lists of at most ``size`` items."""
    iterator = iter(items)
    while batch := list(islice(iterator, size)):
        yield batch


class BatchWorker:
    """Shared batch loop with progress checkpoints."""

    strategy = "batch"
    batch_size = 50
    progress_interval = 100

    def __init__(
        self,
        pipeline: SourcePipeline,
        batch_size: int | None = None,
        progress_interval: int | None = None,
    ) -> None:
        self.pipeline = pipeline
        if batch_size is not None:
            self.batch_size = batch_size
        if progress_interval is not None:
            self.progress_interval = progress_interval

    def _due(self, total: int) -> bool:
        return total % self.progress_interval < self.batch_size

    def run_batches(
        self,
        run: SyncRun,
        items: Iterable[T],
        checkpoint_of: Callable[[T, int], dict[str, Any]],
    ) -> SyncResult:
        """Process ``items`` batch by batch.

        Args:
            run: The tracked run receiving checkpoints
            items: Lazy source of work
            checkpoint_of: Maps (last item of a batch, items processed so
                far) to the checkpoint fields written on progress
        """
        tracker = self.pipeline.tracker
        stats = SyncStats()
        total = 0
        checkpoint: dict[str, Any] = {}
        batches = chunked(items, self.batch_size)
        batch_num = 0
        while True:
            batch_num += 1
            try:
                batch = next(batches, None)
                if batch is None:
                    break
                results = self.pipeline.process_pages(batch)
            except (IngestionError, OSError) as e:
                reason = e.reason if isinstance(e, IngestionError) else str(e)
                logger.error("Batch %d failed: %s", batch_num, reason)
                return SyncResult.failure(
                    f"batch_failed: batch {batch_num}: {reason}", stats, **checkpoint
                )

            stats = stats.merge(aggregate_stats(results))
            total += len(batch)
            checkpoint = checkpoint_of(batch[-1], total)

            if self._due(total):
                logger.info(
                    "%s %s progress: %d processed (%d created, %d updated, "
                    "%d unchanged, %d errors) at %s",
                    self.pipeline.source.value,
                    self.strategy,
                    total,
                    stats.created,
                    stats.updated,
                    stats.unchanged,
                    stats.errors,
                    checkpoint,
                )
                run = tracker.update_progress(run, stats, **checkpoint)

        return SyncResult.success(stats, **checkpoint)


class FullDumpWorker(BatchWorker):
    """Crawl every title of a MediaWiki wiki through ``list=allpages``.

    Resuming with ``start_from="Dragon"`` begins at "Dragon" itself;
    titles sorting before it are never requested.
    """

    strategy = "full_dump"
    batch_size = 50
    progress_interval = 100

    pipeline: OSRSPipeline

    def run(
        self, start_from: str | None = None, limit: int | None = None
    ) -> SyncResult:
        def work(run: SyncRun) -> SyncResult:
            client = self.pipeline.client
            titles = client.all_pages(start_from=start_from, limit=limit)
            return self.run_batches(
                run,
                titles,
                lambda title, total: {"last_title": title, "processed": total},
            )

        return self.pipeline.run_tracked(self.strategy, work)


class DumpImportWorker(BatchWorker):
    """Import a compressed XML dump.

    Order of filters: skip ``offset`` articles, take ``limit``, then keep
    only articles directly in one of ``categories``. Subcategories are
    not expanded.
    """

    strategy = "dump_import"
    batch_size = 100
    progress_interval = 1000

    pipeline: WikipediaPipeline

    def run(
        self,
        dump_path: Path | None = None,
        offset: int = 0,
        limit: int | None = None,
        categories: list[str] | None = None,
    ) -> SyncResult:
        path = Path(dump_path) if dump_path else self.pipeline.dump_path

        def work(run: SyncRun) -> SyncResult:
            try:
                info = dump_info(path)
            except NotFoundError:
                return SyncResult.failure("dump_not_found")
            logger.info(
                "Importing %s (%s) from offset %d", path, info.size_human, offset
            )

            wanted = {c.strip().lower() for c in categories or [] if c.strip()}
            stop = offset + limit if limit is not None else None
            articles = stream_articles(path, decompressor=self.pipeline.decompressor)
            with closing(articles) as stream:
                window = islice(enumerate(stream), offset, stop)
                return self.run_batches(
                    run,
                    _select(window, wanted),
                    lambda article, total: {
                        "last_title": article.title,
                        "offset": article.position + 1,
                        "processed": total,
                    },
                )

        return self.pipeline.run_tracked(self.strategy, work)


def _select(
    window: Iterable[tuple[int, DumpArticle]], categories: set[str]
) -> Iterator[DumpArticle]:
    """Stamp stream positions and apply the direct-category filter."""
    for position, article in window:
        article.position = position
        if categories and not categories.intersection(
            c.lower() for c in article.categories
        ):
            continue
        yield article

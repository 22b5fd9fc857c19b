"""Tests for the batch/resume workers."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from wiki_mirror.ingestion.errors import NotFoundError, RequestError
from wiki_mirror.ingestion.mediawiki import Page
from wiki_mirror.models import RunStatus, Source

CAT = ("cat",)


def _fake_client(titles, missing=()):
    client = MagicMock()
    client.all_pages.side_effect = lambda start_from=None, limit=None: iter(
        [t for t in titles if start_from is None or t >= start_from][:limit]
    )

    def get_page(title):
        if title in missing:
            raise NotFoundError(title)
        return Page(title=title, page_id=1, revision_id=1, html=f"<p>{title}</p>")

    client.get_page.side_effect = get_page
    return client


def _osrs_pipeline(client, stores):
    from wiki_mirror.ingestion.sources.osrs import OSRSAdapter, OSRSPipeline

    return OSRSPipeline(OSRSAdapter(client), stores)


def _record_progress(stores):
    """Spy on checkpoint writes while still persisting them."""
    checkpoints = []
    original = stores.tracker.update_progress

    def spy(run, stats, **checkpoint):
        checkpoints.append(dict(checkpoint))
        return original(run, stats, **checkpoint)

    stores.tracker.update_progress = spy
    return checkpoints


class TestChunked:
    def test_lazy_fixed_size(self):
        from wiki_mirror.ingestion.workers import chunked

        assert list(chunked(iter(range(7)), 3)) == [[0, 1, 2], [3, 4, 5], [6]]
        assert list(chunked([], 3)) == []


# =============================================================================
# FullDumpWorker
# =============================================================================


class TestFullDumpWorker:
    def test_defaults(self, stores):
        from wiki_mirror.ingestion.workers import FullDumpWorker

        worker = FullDumpWorker(_osrs_pipeline(_fake_client([]), stores))
        assert worker.batch_size == 50
        assert worker.progress_interval == 100

    def test_resume_from_title(self, stores):
        from wiki_mirror.ingestion.workers import FullDumpWorker

        titles = ["Abyssal whip", "Bronze axe", "Dragon", "Dragon axe", "Zulrah"]
        client = _fake_client(titles)
        result = FullDumpWorker(_osrs_pipeline(client, stores), batch_size=2).run(
            start_from="Dragon"
        )

        assert result.ok
        assert result.stats.created == 3
        fetched = [c.args[0] for c in client.get_page.call_args_list]
        assert fetched == ["Dragon", "Dragon axe", "Zulrah"]
        client.all_pages.assert_called_once_with(start_from="Dragon", limit=None)

    def test_checkpoints_every_interval(self, stores):
        from wiki_mirror.ingestion.workers import FullDumpWorker

        titles = [f"T{i}" for i in range(10)]
        checkpoints = _record_progress(stores)
        worker = FullDumpWorker(
            _osrs_pipeline(_fake_client(titles), stores),
            batch_size=2,
            progress_interval=4,
        )
        result = worker.run()

        assert checkpoints == [
            {"last_title": "T3", "processed": 4},
            {"last_title": "T7", "processed": 8},
        ]
        assert result.checkpoint == {"last_title": "T9", "processed": 10}
        [run] = stores.tracker.store.list_runs(Source.OSRS)
        assert run.strategy == "full_dump"
        assert run.status is RunStatus.COMPLETED
        assert run.checkpoint["last_title"] == "T9"

    def test_limit(self, stores):
        from wiki_mirror.ingestion.workers import FullDumpWorker

        client = _fake_client([f"T{i}" for i in range(10)])
        result = FullDumpWorker(_osrs_pipeline(client, stores)).run(limit=3)
        assert result.stats.processed == 3

    def test_page_errors_do_not_stop_run(self, stores):
        from wiki_mirror.ingestion.workers import FullDumpWorker

        client = _fake_client(["A", "B", "C"], missing={"B"})
        result = FullDumpWorker(_osrs_pipeline(client, stores), batch_size=2).run()
        assert result.ok
        assert result.stats.created == 2
        assert result.stats.errors == 1

    def test_listing_failure_ends_run_with_last_checkpoint(self, stores):
        from wiki_mirror.ingestion.workers import FullDumpWorker

        def titles():
            yield "A"
            yield "B"
            yield "C"
            raise RequestError("connection reset")

        client = _fake_client([])
        client.all_pages.side_effect = lambda start_from=None, limit=None: titles()
        result = FullDumpWorker(_osrs_pipeline(client, stores), batch_size=2).run()

        assert not result.ok
        assert result.error == "batch_failed: batch 2: request_error: connection reset"
        assert result.checkpoint == {"last_title": "B", "processed": 2}
        [run] = stores.tracker.store.list_runs(Source.OSRS)
        assert run.status is RunStatus.FAILED
        assert run.checkpoint["last_title"] == "B"


# =============================================================================
# DumpImportWorker
# =============================================================================


@pytest.fixture
def wikipedia(dump_file, stores):
    from wiki_mirror.ingestion.sources.wikipedia import (
        WikipediaAdapter,
        WikipediaPipeline,
    )

    return WikipediaPipeline(WikipediaAdapter(dump_file, decompressor=CAT), stores)


class TestDumpImportWorker:
    def test_defaults(self, wikipedia):
        worker = wikipedia.worker()
        assert worker.batch_size == 100
        assert worker.progress_interval == 1000

    def test_imports_main_namespace(self, wikipedia, stores):
        result = wikipedia.sync_all()

        assert result.ok
        assert result.stats.created == 3
        assert stores.articles.list_slugs(Source.WIKIPEDIA) == sorted(
            ["Ada_Lovelace", "Charles_Babbage", "AT%26T"]
        )
        assert result.checkpoint == {
            "last_title": "AT&T",
            "offset": 3,
            "processed": 3,
        }
        [run] = stores.tracker.store.list_runs(Source.WIKIPEDIA)
        assert run.strategy == "dump_import"

    def test_offset_and_limit(self, wikipedia, stores):
        result = wikipedia.sync_all(offset=1, limit=1)

        assert result.stats.created == 1
        assert stores.articles.list_slugs(Source.WIKIPEDIA) == ["Charles_Babbage"]
        assert result.checkpoint["offset"] == 2

    def test_resume_from_checkpoint(self, wikipedia, stores):
        first = wikipedia.sync_all(limit=2)
        second = wikipedia.sync_all(offset=first.checkpoint["offset"])

        assert first.stats.created == 2
        assert second.stats.created == 1
        assert second.checkpoint["last_title"] == "AT&T"

    def test_direct_category_filter(self, wikipedia, stores):
        result = wikipedia.sync_all(categories=["mathematicians"])

        assert result.stats.created == 1
        assert stores.articles.list_slugs(Source.WIKIPEDIA) == ["Ada_Lovelace"]
        # The checkpoint still points past the filtered article's position
        assert result.checkpoint["offset"] == 1

    def test_offset_past_end(self, wikipedia):
        result = wikipedia.sync_all(offset=100)
        assert result.ok
        assert result.stats.processed == 0

    def test_missing_dump(self, stores, tmp_path):
        from wiki_mirror.ingestion.sources.wikipedia import (
            WikipediaAdapter,
            WikipediaPipeline,
        )

        pipeline = WikipediaPipeline(
            WikipediaAdapter(tmp_path / "none.xml.bz2", decompressor=CAT), stores
        )
        result = pipeline.sync_all()
        assert result.error == "dump_not_found"
        assert stores.tracker.store.list_runs()[0].status is RunStatus.FAILED

    def test_decompressor_failure_fails_run(self, dump_file, stores):
        from wiki_mirror.ingestion.sources.wikipedia import (
            WikipediaAdapter,
            WikipediaPipeline,
        )

        pipeline = WikipediaPipeline(
            WikipediaAdapter(dump_file, decompressor=("false",)), stores
        )
        result = pipeline.sync_all()
        assert result.error.startswith("batch_failed: batch 1: dump_stream_error")

    def test_reimport_is_unchanged(self, wikipedia, stores):
        wikipedia.sync_all()
        writes = stores.blobs.writes
        result = wikipedia.sync_all()
        assert result.stats.unchanged == 3
        assert stores.blobs.writes == writes


class TestWikipediaRecentChanges:
    def test_newer_dump_imports(self, wikipedia):
        from wiki_mirror.models import utc_now

        result = wikipedia.sync_recent_changes(utc_now() - timedelta(days=1))
        assert result.stats.created == 3

    def test_unchanged_dump_skips(self, wikipedia, stores):
        from wiki_mirror.models import utc_now

        result = wikipedia.sync_recent_changes(utc_now() + timedelta(days=1))
        assert result.ok
        assert result.stats.processed == 0
        assert stores.tracker.store.list_runs()[0].strategy == "recent_changes"


class TestBatchWorkerGeneric:
    def test_unexpected_os_error_is_batch_failure(self, stores):
        from wiki_mirror.ingestion.workers import BatchWorker

        pipeline = _osrs_pipeline(_fake_client([]), stores)
        pipeline.process_pages = MagicMock(side_effect=OSError("disk gone"))
        worker = BatchWorker(pipeline, batch_size=1)

        result = pipeline.run_tracked(
            "batch",
            lambda run: worker.run_batches(
                run, ["a"], lambda item, total: {"last": item}
            ),
        )
        assert result.error == "batch_failed: batch 1: disk gone"

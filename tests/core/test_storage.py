"""Tests for the storage interfaces and their local and in-memory backends."""

from datetime import UTC, datetime, timedelta

import pytest

from wiki_mirror.models import Article, RunStatus, Source, SyncRun

HASH = "a" * 64


def _article(slug: str = "Ada_Lovelace", **overrides) -> Article:
    fields = {
        "source": Source.WIKIPEDIA,
        "slug": slug,
        "title": "Ada Lovelace",
        "rendered_html_key": f"wikipedia/{slug}/rendered.html",
        "upstream_hash": HASH,
    }
    return Article(**{**fields, **overrides})


class TestKeys:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Ada_Lovelace", "Ada_Lovelace"),
            ("AT%26T", "AT%2526T"),
            ("category theory", "category%20theory"),
            ("../etc/passwd", "%2E%2E%2Fetc%2Fpasswd"),
            ("..", "%2E%2E"),
        ],
    )
    def test_encode_key_part(self, value, expected):
        from wiki_mirror.storage import encode_key_part

        assert encode_key_part(value) == expected

    @pytest.mark.parametrize(
        "first,second",
        [("Red_Dwarf", "Red_dwarf"), ("A.B", "A,B"), ("a b", "a_b"), ("x.", "x%2E")],
    )
    def test_encode_key_part_keeps_slugs_apart(self, first, second):
        from urllib.parse import unquote

        from wiki_mirror.storage import encode_key_part

        assert encode_key_part(first) != encode_key_part(second)
        assert unquote(encode_key_part(first)) == first

    def test_blob_keys(self):
        from wiki_mirror.storage import BlobStore

        assert BlobStore.html_key(Source.OSRS, "abyssal-whip") == (
            "osrs/abyssal-whip/rendered.html"
        )
        assert BlobStore.raw_key("nlab", "category theory") == (
            "nlab/category%20theory/raw.txt"
        )
        assert BlobStore.html_key("wikipedia", "Red_Dwarf") != BlobStore.html_key(
            "wikipedia", "Red_dwarf"
        )


class TestBlobStores:
    def test_memory_round_trip(self):
        from wiki_mirror.storage import MemoryBlobStore

        blobs = MemoryBlobStore()
        blobs.put_html("osrs", "whip", "<p>é</p>")
        blobs.put_raw("osrs", "whip", "'''whip'''")

        assert blobs.get_html("osrs", "whip") == "<p>é</p>"
        assert blobs.get_raw("osrs", "whip") == "'''whip'''"
        assert blobs.writes == 2
        blobs.delete_article("osrs", "whip")
        assert not blobs.html_exists("osrs", "whip")
        assert len(blobs) == 0

    def test_local_round_trip(self, tmp_path):
        from wiki_mirror.storage import LocalBlobStore

        blobs = LocalBlobStore(tmp_path)
        key = blobs.put_html("nlab", "functor", "<p>F</p>")

        assert (tmp_path / key).read_text(encoding="utf-8") == "<p>F</p>"
        assert blobs.get_html("nlab", "functor") == "<p>F</p>"
        assert blobs.get_raw("nlab", "functor") is None
        blobs.delete_article("nlab", "functor")
        assert blobs.get_html("nlab", "functor") is None

    def test_local_rejects_escaping_key(self, tmp_path):
        from wiki_mirror.storage import LocalBlobStore

        blobs = LocalBlobStore(tmp_path / "store")
        with pytest.raises(ValueError, match="escapes"):
            blobs.put("../outside.html", b"x", "text/html")
        assert not (tmp_path / "outside.html").exists()


class TestArticleStores:
    def test_memory_store(self):
        from wiki_mirror.storage import MemoryArticleStore

        articles = MemoryArticleStore()
        articles.upsert(_article("B"))
        articles.upsert(_article("A"))
        articles.upsert(_article("x", source=Source.NLAB))

        assert articles.get("wikipedia", "A").slug == "A"
        assert articles.get(Source.WIKIPEDIA, "missing") is None
        assert articles.list_slugs("wikipedia") == ["A", "B"]
        assert articles.list_slugs("wikipedia", limit=1) == ["A"]
        assert len(articles) == 3

    def test_local_store(self, tmp_path):
        from wiki_mirror.storage import LocalArticleStore

        articles = LocalArticleStore(tmp_path)
        stored = articles.upsert(_article(metadata={"categories": ["Mathematicians"]}))

        reopened = LocalArticleStore(tmp_path)
        assert reopened.get("wikipedia", "Ada_Lovelace") == stored
        assert reopened.list_slugs("wikipedia") == ["Ada_Lovelace"]
        assert reopened.list_slugs("osrs") == []

    def test_local_store_keeps_case_variants_apart(self, tmp_path):
        from wiki_mirror.storage import LocalArticleStore

        articles = LocalArticleStore(tmp_path)
        articles.upsert(_article("Red_Dwarf", title="Red Dwarf"))
        articles.upsert(_article("Red_dwarf", title="Red dwarf"))
        articles.upsert(_article("A.B", title="A.B"))
        articles.upsert(_article("A,B", title="A,B"))

        assert articles.get("wikipedia", "Red_Dwarf").title == "Red Dwarf"
        assert articles.get("wikipedia", "Red_dwarf").title == "Red dwarf"
        assert articles.get("wikipedia", "A.B").slug == "A.B"
        assert articles.list_slugs("wikipedia") == sorted(
            ["Red_Dwarf", "Red_dwarf", "A.B", "A,B"]
        )

    def test_article_validation(self):
        from pydantic import ValidationError

        with pytest.raises(ValidationError):
            _article(title="   ")
        with pytest.raises(ValidationError):
            _article(upstream_hash="not-a-hash")
        with pytest.raises(ValidationError):
            _article(slug="")


class TestSyncRunStores:
    def test_ids_and_latest_completed(self):
        from wiki_mirror.storage import MemorySyncRunStore

        store = MemorySyncRunStore()
        now = datetime.now(UTC)
        first = store.insert(SyncRun(source=Source.OSRS, strategy="full_sync"))
        second = store.insert(SyncRun(source=Source.OSRS, strategy="recent_changes"))
        store.insert(SyncRun(source=Source.NLAB, strategy="full_sync"))
        assert (first.id, second.id) == (1, 2)

        store.update(
            first.model_copy(
                update={"status": RunStatus.COMPLETED, "completed_at": now}
            )
        )
        store.update(
            second.model_copy(
                update={
                    "status": RunStatus.COMPLETED,
                    "completed_at": now - timedelta(hours=1),
                }
            )
        )
        assert store.latest_completed("osrs").id == 1
        assert store.latest_completed("nlab") is None
        assert len(store.list_runs(Source.OSRS)) == 2

    def test_update_unknown_run(self):
        from wiki_mirror.storage import MemorySyncRunStore

        with pytest.raises(KeyError):
            MemorySyncRunStore().update(SyncRun(id=9, source="osrs", strategy="x"))

    def test_local_store_persists(self, tmp_path):
        from wiki_mirror.storage import LocalSyncRunStore

        path = tmp_path / "runs.json"
        run = LocalSyncRunStore(path).insert(
            SyncRun(source=Source.WIKIPEDIA, strategy="dump_import")
        )

        reopened = LocalSyncRunStore(path)
        [loaded] = reopened.list_runs()
        assert loaded.id == run.id
        assert loaded.strategy == "dump_import"
        assert reopened.insert(SyncRun(source="osrs", strategy="x")).id == 2


class TestRecordStores:
    def test_memory(self):
        from wiki_mirror.storage import MemoryRecordStore

        records = MemoryRecordStore()
        records.upsert_record("item", "abyssal-whip", {"item_id": 4151})
        assert records.get_record("item", "abyssal-whip") == {"item_id": 4151}
        assert records.get_record("monster", "abyssal-whip") is None

    def test_local_serializes_dates(self, tmp_path):
        from datetime import date

        from wiki_mirror.storage import LocalRecordStore

        records = LocalRecordStore(tmp_path)
        records.upsert_record("item", "abyssal-whip", {"release": date(2005, 1, 26)})
        assert records.get_record("item", "abyssal-whip") == {"release": "2005-01-26"}
        assert records.get_record("item", "unknown") is None

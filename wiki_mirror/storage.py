"""Storage interfaces the ingestion pipelines write through.

The durable article store, the blob backend, the read-through cache and the
run log live outside this package. Pipelines only see the abstract
interfaces below. In-memory implementations back the tests; local
filesystem implementations back the CLI.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote

from wiki_mirror.models import Article, RunStatus, Source, SyncRun

logger = logging.getLogger(__name__)


def encode_key_part(value: str) -> str:
    """Percent-encode value into a single path segment.

    Case is kept and every character outside ``[A-Za-z0-9_~-]`` is escaped,
    dots included, so distinct values always map to distinct segments and
    no segment can be ``.`` or ``..``. ``urllib.parse.unquote`` reverses it.
    """
    return quote(value, safe="").replace(".", "%2E")


def _source_value(source: Source | str) -> str:
    return source.value if isinstance(source, Source) else str(source)


# =============================================================================
# Blob storage
# =============================================================================


class BlobStore(ABC):
    """Key-addressed storage for rendered HTML and raw source content."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under key and return the key."""

    @abstractmethod
    def get(self, key: str) -> bytes | None:
        """Return stored bytes, or None if the key is unknown."""

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @staticmethod
    def html_key(source: Source | str, slug: str) -> str:
        return f"{_source_value(source)}/{encode_key_part(slug)}/rendered.html"

    @staticmethod
    def raw_key(source: Source | str, slug: str) -> str:
        return f"{_source_value(source)}/{encode_key_part(slug)}/raw.txt"

    def put_html(self, source: Source | str, slug: str, html: str) -> str:
        key = self.html_key(source, slug)
        return self.put(key, html.encode("utf-8"), "text/html; charset=utf-8")

    def put_raw(self, source: Source | str, slug: str, raw: str) -> str:
        return self.put(
            self.raw_key(source, slug), raw.encode("utf-8"), "text/plain; charset=utf-8"
        )

    def get_html(self, source: Source | str, slug: str) -> str | None:
        data = self.get(self.html_key(source, slug))
        return data.decode("utf-8") if data is not None else None

    def get_raw(self, source: Source | str, slug: str) -> str | None:
        data = self.get(self.raw_key(source, slug))
        return data.decode("utf-8") if data is not None else None

    def html_exists(self, source: Source | str, slug: str) -> bool:
        return self.get(self.html_key(source, slug)) is not None

    def delete_article(self, source: Source | str, slug: str) -> None:
        self.delete(self.html_key(source, slug))
        self.delete(self.raw_key(source, slug))


class MemoryBlobStore(BlobStore):
    """Thread-safe dict-backed blob store that counts writes."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.writes = 0

    def put(self, key: str, data: bytes, content_type: str) -> str:
        with self._lock:
            self._blobs[key] = data
            self.writes += 1
        return key

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._blobs.get(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)

    def __len__(self) -> int:
        return len(self._blobs)


class LocalBlobStore(BlobStore):
    """Blob store rooted at a local directory (keys map to relative paths)."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes store root: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)
        return key

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        return path.read_bytes() if path.exists() else None

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# =============================================================================
# Article store
# =============================================================================


class ArticleStore(ABC):
    """Durable record store, unique on (source, slug)."""

    @abstractmethod
    def get(self, source: Source | str, slug: str) -> Article | None: ...

    @abstractmethod
    def upsert(self, article: Article) -> Article: ...

    @abstractmethod
    def list_slugs(
        self, source: Source | str, limit: int | None = None
    ) -> list[str]: ...


class MemoryArticleStore(ArticleStore):
    def __init__(self) -> None:
        self._articles: dict[tuple[str, str], Article] = {}
        self._lock = threading.Lock()

    def get(self, source: Source | str, slug: str) -> Article | None:
        with self._lock:
            return self._articles.get((_source_value(source), slug))

    def upsert(self, article: Article) -> Article:
        with self._lock:
            self._articles[article.key] = article
        return article

    def list_slugs(self, source: Source | str, limit: int | None = None) -> list[str]:
        with self._lock:
            wanted = _source_value(source)
            slugs = sorted(s for src, s in self._articles if src == wanted)
        return slugs[:limit] if limit is not None else slugs

    def __len__(self) -> int:
        return len(self._articles)


class LocalArticleStore(ArticleStore):
    """One JSON document per article under ``<root>/<source>/<slug>.json``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def _path(self, source: Source | str, slug: str) -> Path:
        return self.root / _source_value(source) / f"{encode_key_part(slug)}.json"

    def get(self, source: Source | str, slug: str) -> Article | None:
        path = self._path(source, slug)
        if not path.exists():
            return None
        return Article.model_validate_json(path.read_text(encoding="utf-8"))

    def upsert(self, article: Article) -> Article:
        path = self._path(article.source, article.slug)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(article.model_dump_json(indent=2), encoding="utf-8")
        return article

    def list_slugs(self, source: Source | str, limit: int | None = None) -> list[str]:
        directory = self.root / _source_value(source)
        if not directory.is_dir():
            return []
        slugs = sorted(
            json.loads(p.read_text(encoding="utf-8"))["slug"]
            for p in directory.glob("*.json")
        )
        return slugs[:limit] if limit is not None else slugs


# =============================================================================
# Cache invalidation hook
# =============================================================================


class CacheInvalidator(ABC):
    @abstractmethod
    def invalidate(self, source: Source | str, slug: str) -> None: ...


class LoggingCacheInvalidator(CacheInvalidator):
    """Used when no downstream cache is configured."""

    def invalidate(self, source: Source | str, slug: str) -> None:
        logger.debug("Cache invalidate %s/%s", _source_value(source), slug)


class RecordingCacheInvalidator(CacheInvalidator):
    def __init__(self) -> None:
        self.invalidated: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def invalidate(self, source: Source | str, slug: str) -> None:
        with self._lock:
            self.invalidated.append((_source_value(source), slug))


# =============================================================================
# Sync run log
# =============================================================================


class SyncRunStore(ABC):
    @abstractmethod
    def insert(self, run: SyncRun) -> SyncRun:
        """Persist a new run and return it with an id assigned."""

    @abstractmethod
    def update(self, run: SyncRun) -> SyncRun: ...

    @abstractmethod
    def list_runs(self, source: Source | str | None = None) -> list[SyncRun]: ...

    def latest_completed(self, source: Source | str) -> SyncRun | None:
        completed = [
            run
            for run in self.list_runs(source)
            if run.status is RunStatus.COMPLETED and run.completed_at is not None
        ]
        return max(completed, key=lambda r: r.completed_at, default=None)


class MemorySyncRunStore(SyncRunStore):
    def __init__(self) -> None:
        self._runs: dict[int, SyncRun] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def insert(self, run: SyncRun) -> SyncRun:
        with self._lock:
            stored = run.model_copy(update={"id": self._next_id})
            self._runs[self._next_id] = stored
            self._next_id += 1
        return stored

    def update(self, run: SyncRun) -> SyncRun:
        if run.id is None or run.id not in self._runs:
            raise KeyError(f"Unknown sync run: {run.id}")
        with self._lock:
            self._runs[run.id] = run
        return run

    def list_runs(self, source: Source | str | None = None) -> list[SyncRun]:
        with self._lock:
            runs = list(self._runs.values())
        if source is None:
            return runs
        return [r for r in runs if r.source.value == _source_value(source)]


class LocalSyncRunStore(MemorySyncRunStore):
    """Run log persisted as a JSON array, rewritten on every change."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            for item in json.loads(self.path.read_text(encoding="utf-8")):
                run = SyncRun.model_validate(item)
                self._runs[run.id] = run
            self._next_id = max(self._runs, default=0) + 1

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [run.model_dump(mode="json") for run in self._runs.values()]
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def insert(self, run: SyncRun) -> SyncRun:
        stored = super().insert(run)
        self._flush()
        return stored

    def update(self, run: SyncRun) -> SyncRun:
        super().update(run)
        self._flush()
        return run


# =============================================================================
# Structured records (typed data extracted from infoboxes)
# =============================================================================


class RecordStore(ABC):
    """Keyed JSON-serializable records grouped by kind (``item``, ``monster``)."""

    @abstractmethod
    def upsert_record(self, kind: str, key: str, record: dict) -> dict: ...

    @abstractmethod
    def get_record(self, kind: str, key: str) -> dict | None: ...


class MemoryRecordStore(RecordStore):
    def __init__(self) -> None:
        self._records: dict[tuple[str, str], dict] = {}
        self._lock = threading.Lock()

    def upsert_record(self, kind: str, key: str, record: dict) -> dict:
        with self._lock:
            self._records[(kind, key)] = record
        return record

    def get_record(self, kind: str, key: str) -> dict | None:
        with self._lock:
            return self._records.get((kind, key))


class LocalRecordStore(RecordStore):
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, kind: str, key: str) -> Path:
        return self.root / encode_key_part(kind) / f"{encode_key_part(key)}.json"

    def upsert_record(self, kind: str, key: str, record: dict) -> dict:
        path = self._path(kind, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record, indent=2, default=str), encoding="utf-8")
        return record

    def get_record(self, kind: str, key: str) -> dict | None:
        path = self._path(kind, key)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

"""Persisted records: mirrored articles and sync-run audit entries.

Both are Pydantic models so that a record handed to a store has already
been validated; a ``ValidationError`` at construction time is reported by
the pipelines as a ``persist_error``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "Article",
    "ArticleStatus",
    "RunStatus",
    "Source",
    "SyncRun",
]


def utc_now() -> datetime:
    return datetime.now(UTC)


class Source(str, Enum):
    """Upstream sources mirrored into the article store."""

    OSRS = "osrs"
    NLAB = "nlab"
    WIKIPEDIA = "wikipedia"
    VINTAGE_MACHINERY = "vintage_machinery"


class ArticleStatus(str, Enum):
    SYNCED = "synced"
    STALE = "stale"
    REMOVED = "removed"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Article(BaseModel):
    """The canonical unit of mirrored content, identified by (source, slug).

    Rendered and raw content live in blob storage; the article only holds
    their keys. ``upstream_hash`` is the hash of the bytes behind
    ``rendered_html_key``.
    """

    source: Source
    slug: str = Field(min_length=1, max_length=512)
    title: str = Field(min_length=1)
    extracted_text: str = ""
    rendered_html_key: str = Field(min_length=1)
    raw_content_key: str | None = None
    upstream_url: str = ""
    upstream_hash: str = Field(pattern=r"^[0-9a-f]{64}$")
    status: ArticleStatus = ArticleStatus.SYNCED
    license: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    synced_at: datetime = Field(default_factory=utc_now)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @property
    def key(self) -> tuple[str, str]:
        return (self.source.value, self.slug)


class SyncRun(BaseModel):
    """Audit and checkpoint record for one ingestion invocation."""

    id: int | None = None
    source: Source
    strategy: str
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    pages_processed: int = 0
    pages_created: int = 0
    pages_updated: int = 0
    pages_unchanged: int = 0
    pages_errored: int = 0
    error: str | None = None
    checkpoint: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status is not RunStatus.RUNNING

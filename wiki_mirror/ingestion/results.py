"""Per-key results and run statistics."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from wiki_mirror.ingestion.errors import IngestionError
    from wiki_mirror.models import Article

ResultStatus = Literal["created", "updated", "unchanged", "error"]


@dataclass
class PageResult:
    """Outcome of upserting a single key."""

    status: ResultStatus
    article: Article | None = None
    error: IngestionError | None = None

    @classmethod
    def failed(cls, error: IngestionError) -> PageResult:
        return cls(status="error", error=error)

    @property
    def ok(self) -> bool:
        return self.status != "error"


@dataclass
class SyncStats:
    """Aggregated counts for a batch or a whole run."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.unchanged + self.errors

    def record(self, result: PageResult) -> None:
        if result.status == "created":
            self.created += 1
        elif result.status == "updated":
            self.updated += 1
        elif result.status == "unchanged":
            self.unchanged += 1
        else:
            self.errors += 1

    def merge(self, other: SyncStats) -> SyncStats:
        """Return a new SyncStats with both sets of counts summed."""
        return SyncStats(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            unchanged=self.unchanged + other.unchanged,
            errors=self.errors + other.errors,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "errors": self.errors,
        }


def aggregate_stats(
    results: Mapping[Any, PageResult] | Iterable[PageResult],
) -> SyncStats:
    """Count created/updated/unchanged/error results, independent of order."""
    values = results.values() if isinstance(results, Mapping) else results
    stats = SyncStats()
    for result in values:
        stats.record(result)
    return stats


@dataclass
class SyncResult:
    """Terminal outcome of a sync entry point: ``ok`` with stats, or an error."""

    stats: SyncStats = field(default_factory=SyncStats)
    error: str | None = None
    checkpoint: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, stats: SyncStats, **checkpoint: Any) -> SyncResult:
        return cls(stats=stats, checkpoint=dict(checkpoint))

    @classmethod
    def failure(
        cls, reason: str, stats: SyncStats | None = None, **checkpoint: Any
    ) -> SyncResult:
        return cls(
            stats=stats or SyncStats(), error=reason, checkpoint=dict(checkpoint)
        )

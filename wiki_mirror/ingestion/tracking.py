"""SyncRun bookkeeping: start, checkpoint, and exactly-once completion."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from wiki_mirror.ingestion.errors import IngestionError
from wiki_mirror.ingestion.results import SyncResult, SyncStats
from wiki_mirror.models import RunStatus, Source, SyncRun, utc_now
from wiki_mirror.storage import SyncRunStore

logger = logging.getLogger(__name__)


class RunAlreadyCompletedError(RuntimeError):
    """A second terminal outcome was recorded for the same run."""


def log_stats(label: str, stats: SyncStats) -> None:
    logger.info(
        "%s complete: %d created, %d updated, %d unchanged, %d errors",
        label,
        stats.created,
        stats.updated,
        stats.unchanged,
        stats.errors,
    )


def _stat_fields(stats: SyncStats) -> dict[str, int]:
    return {
        "pages_processed": stats.processed,
        "pages_created": stats.created,
        "pages_updated": stats.updated,
        "pages_unchanged": stats.unchanged,
        "pages_errored": stats.errors,
    }


class RunTracker:
    """Records the lifecycle of sync runs in a :class:`SyncRunStore`."""

    def __init__(self, store: SyncRunStore) -> None:
        self.store = store

    def start(self, source: Source, strategy: str) -> SyncRun:
        run = self.store.insert(SyncRun(source=source, strategy=strategy))
        logger.info("Started %s run %s (%s)", source.value, run.id, strategy)
        return run

    def update_progress(
        self, run: SyncRun, stats: SyncStats, **checkpoint: Any
    ) -> SyncRun:
        """Write running counters and a resume checkpoint."""
        if run.is_terminal:
            raise RunAlreadyCompletedError(
                f"Run {run.id} is already {run.status.value}"
            )
        updated = run.model_copy(
            update={
                **_stat_fields(stats),
                "checkpoint": {**run.checkpoint, **checkpoint},
            }
        )
        return self.store.update(updated)

    def _current(self, run: SyncRun) -> SyncRun:
        stored = (r for r in self.store.list_runs(run.source) if r.id == run.id)
        return next(stored, run)

    def complete(self, run: SyncRun, result: SyncResult) -> SyncRun:
        """Record the terminal outcome; a run can only be completed once."""
        current = self._current(run)
        if current.is_terminal:
            raise RunAlreadyCompletedError(
                f"Run {run.id} is already {current.status.value}"
            )
        finished = current.model_copy(
            update={
                **_stat_fields(result.stats),
                "status": RunStatus.COMPLETED if result.ok else RunStatus.FAILED,
                "completed_at": utc_now(),
                "error": result.error,
                "checkpoint": {**current.checkpoint, **result.checkpoint},
            }
        )
        return self.store.update(finished)

    def _interrupt(self, run: SyncRun, reason: str) -> SyncRun:
        current = self._current(run)
        stats = SyncStats(
            created=current.pages_created,
            updated=current.pages_updated,
            unchanged=current.pages_unchanged,
            errors=current.pages_errored,
        )
        return self.complete(current, SyncResult.failure(reason, stats))

    def last_completed_at(self, source: Source) -> datetime | None:
        run = self.store.latest_completed(source)
        return run.completed_at if run else None

    def track(
        self,
        source: Source,
        strategy: str,
        fn: Callable[[SyncRun], SyncResult],
        label: str | None = None,
    ) -> SyncResult:
        """Run ``fn`` inside a SyncRun and record exactly one outcome.

        Any exception escaping ``fn`` becomes a failed run; it is logged
        and returned as a failed :class:`SyncResult`, never re-raised.
        ``KeyboardInterrupt`` and ``SystemExit`` also fail the run, keeping
        the last checkpointed counters, and are then re-raised.
        """
        label = label or f"{source.value} {strategy}"
        run = self.start(source, strategy)
        try:
            result = fn(run)
        except IngestionError as e:
            result = SyncResult.failure(e.reason)
        except Exception as e:
            logger.exception("%s crashed", label)
            result = SyncResult.failure(f"{type(e).__name__}: {e}")
        except BaseException as e:
            self._interrupt(run, f"interrupted: {type(e).__name__}")
            logger.error("%s interrupted", label)
            raise

        self.complete(run, result)
        if result.ok:
            log_stats(label, result.stats)
        else:
            logger.error("%s failed: %s", label, result.error)
        return result

"""Ingestion pipeline: source clients, renderers, upsert and batch workers.

Usage:
    from wiki_mirror.ingestion import Stores, get_pipeline

    pipeline = get_pipeline("osrs", Stores.in_memory())
    result = pipeline.process_page("Abyssal whip")
    sync = pipeline.sync_recent_changes()
"""

from wiki_mirror.ingestion.errors import (
    ApiError,
    HttpError,
    IngestionError,
    NotFoundError,
    ParseError,
    PersistError,
    RequestError,
)
from wiki_mirror.ingestion.pipeline import (
    Rendition,
    SourceAdapter,
    SourcePipeline,
    Stores,
    upsert,
)
from wiki_mirror.ingestion.rate_limit import RateLimiter
from wiki_mirror.ingestion.results import (
    PageResult,
    SyncResult,
    SyncStats,
    aggregate_stats,
)
from wiki_mirror.ingestion.sources import SOURCE_NAMES, get_pipeline
from wiki_mirror.ingestion.tracking import RunTracker

__all__ = [
    # Errors
    "ApiError",
    "HttpError",
    "IngestionError",
    "NotFoundError",
    "ParseError",
    "PersistError",
    "RequestError",
    # Pipeline
    "Rendition",
    "SourceAdapter",
    "SourcePipeline",
    "Stores",
    "upsert",
    "get_pipeline",
    "SOURCE_NAMES",
    # Results and tracking
    "PageResult",
    "SyncResult",
    "SyncStats",
    "aggregate_stats",
    "RunTracker",
    "RateLimiter",
]

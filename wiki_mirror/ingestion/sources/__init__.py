"""Per-source pipelines and the factory that wires them to settings."""

from __future__ import annotations

from pathlib import Path

from wiki_mirror import settings
from wiki_mirror.ingestion.pipeline import SourcePipeline, Stores
from wiki_mirror.ingestion.rate_limit import RateLimiter

SOURCE_NAMES = (
    "osrs",
    "nlab",
    "wikipedia",
    "vintage_machinery",
    "vintage_machinery_wayback",
)


def get_pipeline(
    name: str,
    stores: Stores,
    *,
    dump_path: Path | None = None,
) -> SourcePipeline:
    """Build the pipeline for a source from project settings.

    Args:
        name: One of :data:`SOURCE_NAMES`
        stores: Storage collaborators to write through
        dump_path: Override the configured Wikipedia dump path

    Raises:
        ValueError: unknown source name
    """
    if name == "osrs":
        from wiki_mirror.ingestion.mediawiki import MediaWikiClient
        from wiki_mirror.ingestion.sources.osrs import OSRSAdapter, OSRSPipeline

        limiter = RateLimiter.shared("mediawiki", settings.get_osrs_rate_limit())
        client = MediaWikiClient(settings.get_osrs_api_url(), rate_limiter=limiter)
        return OSRSPipeline(OSRSAdapter(client), stores)

    if name == "nlab":
        from wiki_mirror.ingestion.git_source import GitSourceClient
        from wiki_mirror.ingestion.sources.nlab import NLabAdapter, NLabPipeline

        client = GitSourceClient(
            settings.get_nlab_repo_url(),
            settings.get_nlab_branch(),
            settings.get_nlab_repo_path(),
        )
        return NLabPipeline(NLabAdapter(client), stores)

    if name == "wikipedia":
        from wiki_mirror.ingestion.sources.wikipedia import (
            WikipediaAdapter,
            WikipediaPipeline,
        )

        path = dump_path or settings.get_wikipedia_dump_path()
        return WikipediaPipeline(WikipediaAdapter(path), stores)

    if name == "vintage_machinery":
        from wiki_mirror.ingestion.mirror import MirrorClient
        from wiki_mirror.ingestion.sources.vintage_machinery import (
            SITE_URL,
            VintageMachineryAdapter,
            VintageMachineryPipeline,
        )

        client = MirrorClient(SITE_URL, settings.get_mirror_dir())
        return VintageMachineryPipeline(VintageMachineryAdapter(client), stores)

    if name == "vintage_machinery_wayback":
        from wiki_mirror.ingestion.sources.vintage_machinery import (
            VintageMachineryWaybackPipeline,
            WaybackAdapter,
        )
        from wiki_mirror.ingestion.wayback import WaybackClient

        limiter = RateLimiter.shared("wayback", settings.get_wayback_rate_limit())
        client = WaybackClient(rate_limiter=limiter)
        return VintageMachineryWaybackPipeline(
            WaybackAdapter(client), stores, domain=settings.get_archived_domain()
        )

    raise ValueError(f"Unknown source: {name}. Known: {', '.join(SOURCE_NAMES)}")


__all__ = ["SOURCE_NAMES", "get_pipeline"]

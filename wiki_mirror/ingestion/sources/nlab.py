"""nLab: a mathematics wiki whose canonical storage is a git repository.

Pages are markdown with itex math. Math is turned into KaTeX-ready
elements before the markdown is converted, then the result is wrapped
in an ``<article>`` with the page title.
"""

from __future__ import annotations

import html
import logging
from datetime import datetime, timedelta

from wiki_mirror.ingestion.git_source import GitPage, GitSourceClient
from wiki_mirror.ingestion.pipeline import Rendition, SourceAdapter, SourcePipeline
from wiki_mirror.ingestion.render import MathRenderer, render_markdown_with_math
from wiki_mirror.ingestion.results import SyncResult, aggregate_stats
from wiki_mirror.models import Source

logger = logging.getLogger(__name__)

LICENSE = "CC BY-SA 4.0"
UPSTREAM_BASE = "https://ncatlab.org/nlab/show/"
LINK_PREFIX = "/nlab/"


def wrap_html(title: str, body: str) -> str:
    return (
        '<article class="nlab-article">'
        f"<header><h1>{html.escape(title)}</h1></header>"
        f'<div class="nlab-content">{body}</div>'
        "</article>"
    )


class NLabAdapter(SourceAdapter[str, GitPage]):
    source = Source.NLAB
    license = LICENSE
    upstream_base = UPSTREAM_BASE

    def __init__(
        self, client: GitSourceClient, math: MathRenderer | None = None
    ) -> None:
        self.client = client
        self.math = math or MathRenderer()

    def fetch(self, key: str) -> GitPage:
        return self.client.get_page(key)

    def render(self, page: GitPage) -> Rendition:
        body = render_markdown_with_math(
            page.content, self.math, link_prefix=LINK_PREFIX
        )
        return Rendition(
            slug=page.slug,
            title=page.title,
            html=wrap_html(page.title, body),
            raw=page.content,
            metadata={
                "categories": page.categories,
                "has_math": self.math.has_math(page.content),
            },
        )


class NLabPipeline(SourcePipeline[str, GitPage]):
    """Git-backed pipeline; sequential since git work is local and serialized."""

    lookback = timedelta(days=7)

    adapter: NLabAdapter

    @property
    def client(self) -> GitSourceClient:
        return self.adapter.client

    def changed_keys(self, since: datetime) -> list[str]:
        self.client.sync_repo()
        return self.client.list_modified_pages(since)

    def all_keys(self, limit: int | None = None) -> list[str]:
        self.client.sync_repo()
        slugs = self.client.list_pages()
        return slugs[:limit] if limit is not None else slugs

    def sync_all(self, limit: int | None = 10_000) -> SyncResult:
        return super().sync_all(limit=limit)

    def sync_pages(self, slugs: list[str]) -> SyncResult:
        """Process an explicit slug list without touching the remote."""
        return self.run_tracked(
            "manual",
            lambda run: SyncResult.success(aggregate_stats(self.process_pages(slugs))),
        )

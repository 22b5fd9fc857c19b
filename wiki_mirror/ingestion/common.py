"""Shared helpers for the ingestion pipelines.

- content hashing and plain-text extraction
- slug and URL helpers
- BeautifulSoup-based HTML cleaning
- sequential and bounded-concurrent batch runners that never let one
  key's failure abort its siblings
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from collections.abc import Callable, Hashable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar
from urllib.parse import quote

from bs4 import BeautifulSoup

from wiki_mirror.ingestion.errors import IngestionError, TaskTimeoutError
from wiki_mirror.ingestion.results import PageResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_TEXT_LENGTH = 100_000
DEFAULT_CONCURRENCY = 4
DEFAULT_TASK_TIMEOUT = 60.0

_WHITESPACE = re.compile(r"\s+")
_SLUG_SEPARATORS = re.compile(r"[-_]+")


def hash_content(content: str | bytes) -> str:
    """Lowercase hex SHA-256 of the UTF-8 encoded content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def extract_text(html: str, max_length: int = DEFAULT_MAX_TEXT_LENGTH) -> str:
    """Visible text of an HTML fragment, whitespace-collapsed and truncated."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = _WHITESPACE.sub(" ", soup.get_text(" ")).strip()
    return text[:max_length]


def humanize_slug(slug: str) -> str:
    """``category-theory_basics`` → ``Category Theory Basics``."""
    words = _SLUG_SEPARATORS.sub(" ", slug).split()
    return " ".join(word.capitalize() for word in words)


def upstream_url(base: str, slug: str) -> str:
    """Append a percent-encoded slug (only unreserved characters kept) to base."""
    return base + quote(slug, safe="-._~")


# =============================================================================
# HTML cleaning
# =============================================================================


def clean_html(html: str, transform: Callable[[BeautifulSoup], None]) -> str:
    """Parse, apply an in-place transform, and serialize.

    The original markup is returned if parsing or the transform fails.
    """
    try:
        soup = BeautifulSoup(html, "html.parser")
        transform(soup)
        return str(soup)
    except Exception as e:
        logger.warning("HTML cleaning failed, keeping original: %s", e)
        return html


def filter_out_all(selectors: Iterable[str]) -> Callable[[BeautifulSoup], None]:
    """Transform that removes every element matching any CSS selector."""
    selector_list = list(selectors)

    def transform(soup: BeautifulSoup) -> None:
        for selector in selector_list:
            for element in soup.select(selector):
                element.decompose()

    return transform


# =============================================================================
# Batch runners
# =============================================================================


def _identity(item: T) -> T:
    return item


def _safe_call(fn: Callable[[T], PageResult], item: T) -> PageResult:
    try:
        return fn(item)
    except IngestionError as e:
        return PageResult.failed(e)
    except Exception as e:
        logger.exception("Unexpected failure processing %r", item)
        return PageResult.failed(IngestionError(f"{type(e).__name__}: {e}"))


def run_sequential(
    items: Iterable[T],
    fn: Callable[[T], PageResult],
    key: Callable[[T], Hashable] = _identity,
) -> dict[Hashable, PageResult]:
    """Process items one at a time; results keyed by ``key(item)``."""
    return {key(item): _safe_call(fn, item) for item in items}


async def _run_bounded(
    items: list[T],
    fn: Callable[[T], PageResult],
    max_concurrency: int,
    timeout: float,
) -> list[PageResult]:
    loop = asyncio.get_running_loop()
    semaphore = asyncio.Semaphore(max_concurrency)
    executor = ThreadPoolExecutor(
        max_workers=max_concurrency, thread_name_prefix="ingest"
    )

    async def process(item: T) -> PageResult:
        async with semaphore:
            try:
                return await asyncio.wait_for(
                    loop.run_in_executor(executor, _safe_call, fn, item), timeout
                )
            except TimeoutError:
                logger.warning("Timed out after %.0fs: %r", timeout, item)
                return PageResult.failed(
                    TaskTimeoutError(f"timed out after {timeout:.0f}s")
                )

    try:
        return await asyncio.gather(*(process(item) for item in items))
    finally:
        # Timed-out threads cannot be killed; don't wait for them
        executor.shutdown(wait=False, cancel_futures=True)


def run_concurrent(
    items: Iterable[T],
    fn: Callable[[T], PageResult],
    key: Callable[[T], Hashable] = _identity,
    max_concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float = DEFAULT_TASK_TIMEOUT,
) -> dict[Hashable, PageResult]:
    """Process items on a fixed-size worker pool with a per-item timeout.

    Results are keyed by ``key(item)`` in input order regardless of
    completion order. Timeouts and crashes become ``error`` results.
    Must not be called from inside a running event loop.

    A timed-out item is reported as ``timeout`` but its worker thread is
    not killed: ``fn`` keeps running in the background and its side
    effects (for an upsert, the blob and article writes) may still land
    after this function returns. ``fn`` must therefore be safe to finish
    late; the next run sees the write as ``unchanged``.
    """
    item_list = list(items)
    if not item_list:
        return {}
    results = asyncio.run(_run_bounded(item_list, fn, max_concurrency, timeout))
    return {key(item): result for item, result in zip(item_list, results, strict=True)}

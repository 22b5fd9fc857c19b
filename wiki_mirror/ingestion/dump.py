"""Streaming reader for bzip2-compressed MediaWiki XML dumps.

The dump is never decompressed to disk or parsed as a whole. A ``bzcat``
subprocess writes to a pipe, a reader thread moves fixed-size chunks into
a bounded queue, and the consumer scans its buffer for complete
``<page>…</page>`` spans, extracting only the fields the pipelines use.

Usage:
    from wiki_mirror.ingestion.dump import stream_articles

    for article in stream_articles(path, namespace=0):
        print(article.title, article.categories)

Breaking out of the loop (or closing the generator) terminates the
subprocess.
"""

from __future__ import annotations

import codecs
import html
import logging
import queue
import re
import subprocess
import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from wiki_mirror.ingestion.errors import DumpStreamError, NotFoundError, RequestError

logger = logging.getLogger(__name__)

DEFAULT_DECOMPRESSOR = ("bzcat",)
CHUNK_SIZE = 1024 * 1024
QUEUE_SIZE = 8

PAGE_OPEN = "<page>"
PAGE_CLOSE = "</page>"

_FIELD_PATTERNS = {
    tag: re.compile(rf"<{tag}[^>]*>([^<]*)</{tag}>", re.DOTALL)
    for tag in ("title", "ns", "id", "text")
}
_REDIRECT_PATTERN = re.compile(r'<redirect title="([^"]+)"')
_CATEGORY_PATTERN = re.compile(r"\[\[Category:([^\]|]+)", re.IGNORECASE)

_EOF = object()


@dataclass
class DumpArticle:
    """One ``<page>`` record from the dump."""

    title: str
    id: int
    ns: int
    text: str = ""
    redirect: str | None = None
    categories: list[str] = field(default_factory=list)
    position: int = 0

    @property
    def is_redirect(self) -> bool:
        return self.redirect is not None


@dataclass
class DumpInfo:
    path: Path
    size: int
    size_human: str
    modified: datetime


def _parse_int(value: str | None) -> int:
    try:
        return int(value.strip()) if value is not None else 0
    except ValueError:
        return 0


def _first(tag: str, span: str) -> str | None:
    match = _FIELD_PATTERNS[tag].search(span)
    return match.group(1) if match else None


def extract_categories(text: str) -> list[str]:
    """Direct ``[[Category:…]]`` memberships, in order of appearance."""
    return [m.group(1).strip() for m in _CATEGORY_PATTERN.finditer(text)]


def parse_page(span: str) -> DumpArticle:
    """Targeted field extraction from one ``<page>…</page>`` span."""
    redirect = _REDIRECT_PATTERN.search(span)
    text = html.unescape(_first("text", span) or "")
    return DumpArticle(
        title=html.unescape(_first("title", span) or ""),
        id=_parse_int(_first("id", span)),
        ns=_parse_int(_first("ns", span)),
        text=text,
        redirect=html.unescape(redirect.group(1)) if redirect else None,
        categories=extract_categories(text),
    )


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024**2:
        return f"{size / 1024:.1f} KB"
    if size < 1024**3:
        return f"{size / 1024**2:.1f} MB"
    return f"{size / 1024**3:.2f} GB"


class DumpStream:
    """Decompression subprocess plus page-span scanner.

    Use as a context manager; the subprocess and reader thread are torn
    down on exit whether the stream was exhausted or abandoned.
    """

    def __init__(
        self,
        path: str | Path,
        decompressor: Sequence[str] = DEFAULT_DECOMPRESSOR,
        chunk_size: int = CHUNK_SIZE,
        queue_size: int = QUEUE_SIZE,
    ) -> None:
        self.path = Path(path)
        self.decompressor = tuple(decompressor)
        self.chunk_size = chunk_size
        self._chunks: queue.Queue = queue.Queue(maxsize=queue_size)
        self._stop = threading.Event()
        self._process: subprocess.Popen | None = None
        self._reader: threading.Thread | None = None
        self._reader_error: BaseException | None = None

    def __enter__(self) -> DumpStream:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def open(self) -> None:
        if not self.path.exists():
            raise NotFoundError(f"Dump not found: {self.path}")
        try:
            self._process = subprocess.Popen(
                [*self.decompressor, str(self.path)],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise DumpStreamError(f"Cannot start {self.decompressor[0]}: {e}") from e
        self._reader = threading.Thread(
            target=self._pump, name=f"dump-reader-{self.path.name}", daemon=True
        )
        self._reader.start()
        logger.debug("Streaming %s via %s", self.path, " ".join(self.decompressor))

    def _put(self, item: object) -> bool:
        while not self._stop.is_set():
            try:
                self._chunks.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _pump(self) -> None:
        """Reader thread: subprocess stdout → bounded queue."""
        assert self._process is not None and self._process.stdout is not None
        try:
            while not self._stop.is_set():
                chunk = self._process.stdout.read(self.chunk_size)
                if not chunk:
                    break
                if not self._put(chunk):
                    return
        except (OSError, ValueError) as e:
            # ValueError: pipe closed by close() while reading
            if not self._stop.is_set():
                self._reader_error = e
        self._put(_EOF)

    def _chunks_iter(self) -> Iterator[bytes]:
        while True:
            item = self._chunks.get()
            if item is _EOF:
                return
            yield item

    def spans(self) -> Iterator[str]:
        """Yield raw ``<page>…</page>`` spans in file order."""
        if self._process is None:
            raise RuntimeError("DumpStream is not open")
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        for chunk in self._chunks_iter():
            buffer += decoder.decode(chunk)
            buffer, complete = self._drain(buffer)
            yield from complete
        buffer += decoder.decode(b"", final=True)
        # One last pass over whatever is left after the subprocess closed
        _, complete = self._drain(buffer)
        yield from complete
        self._check_exit()

    @staticmethod
    def _drain(buffer: str) -> tuple[str, list[str]]:
        """Split complete page spans off the front of ``buffer``."""
        spans = []
        pos = 0
        while True:
            start = buffer.find(PAGE_OPEN, pos)
            if start < 0:
                # Keep a tail long enough to hold a split opening tag
                return buffer[max(pos, len(buffer) - len(PAGE_OPEN)) :], spans
            end = buffer.find(PAGE_CLOSE, start)
            if end < 0:
                return buffer[start:], spans
            end += len(PAGE_CLOSE)
            spans.append(buffer[start:end])
            pos = end

    def _check_exit(self) -> None:
        assert self._process is not None
        returncode = self._process.wait()
        if self._reader_error is not None:
            raise DumpStreamError(f"Reading dump failed: {self._reader_error}")
        if returncode != 0:
            stderr = ""
            if self._process.stderr is not None:
                stderr = self._process.stderr.read().decode(errors="replace")
            raise DumpStreamError(
                f"{self.decompressor[0]} exited with {returncode}: {stderr.strip()}"
            )

    def articles(self) -> Iterator[DumpArticle]:
        for span in self.spans():
            yield parse_page(span)

    def close(self) -> None:
        self._stop.set()
        process = self._process
        if process is not None and process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
        if process is not None:
            for pipe in (process.stdout, process.stderr):
                if pipe is not None:
                    pipe.close()
        if self._reader is not None:
            self._reader.join(timeout=5)


def stream_articles(
    path: str | Path,
    namespace: int | None = 0,
    skip_redirects: bool = True,
    decompressor: Sequence[str] = DEFAULT_DECOMPRESSOR,
) -> Iterator[DumpArticle]:
    """Lazily yield articles from a compressed dump.

    Args:
        path: Path to the ``.xml.bz2`` dump
        namespace: Only yield pages in this namespace (None for all)
        skip_redirects: Drop redirect pages
        decompressor: Command that writes the decompressed XML to stdout

    Raises:
        NotFoundError: if the dump file does not exist
        DumpStreamError: if the decompressor fails mid-stream
    """
    with DumpStream(path, decompressor=decompressor) as stream:
        for article in stream.articles():
            if namespace is not None and article.ns != namespace:
                continue
            if skip_redirects and article.is_redirect:
                continue
            yield article


def count_articles(
    path: str | Path,
    namespace: int | None = 0,
    decompressor: Sequence[str] = DEFAULT_DECOMPRESSOR,
) -> int:
    """Count pages without keeping their text."""
    total = 0
    with DumpStream(path, decompressor=decompressor) as stream:
        for span in stream.spans():
            if namespace is None or _parse_int(_first("ns", span)) == namespace:
                total += 1
    return total


def dump_info(path: str | Path) -> DumpInfo:
    """Size and modification time of a dump file.

    Raises:
        NotFoundError: if the file does not exist
    """
    path = Path(path)
    try:
        stat = path.stat()
    except FileNotFoundError as e:
        raise NotFoundError(f"Dump not found: {path}") from e
    return DumpInfo(
        path=path,
        size=stat.st_size,
        size_human=format_size(stat.st_size),
        modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
    )


def download_dump(url: str, dest: str | Path) -> Path:
    """Download (or resume downloading) a dump with ``curl -C -``."""
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    logger.info("Downloading %s -> %s", url, dest)
    result = subprocess.run(
        ["curl", "-L", "-C", "-", "-o", str(dest), url],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise RequestError(
            f"curl exited with {result.returncode}: {result.stderr.strip()}"
        )
    return dest

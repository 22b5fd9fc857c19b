"""Live-site mirror client driven by ``wget --mirror``.

The site is mirrored to a local directory; pages are then read from disk.
Slugs are site-relative paths without the HTML extension and with ``/``
replaced by ``__`` (``pubs/123.html`` → ``pubs__123``).
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from wiki_mirror.ingestion.common import humanize_slug
from wiki_mirror.ingestion.errors import MirrorError, NotFoundError, ParseError
from wiki_mirror.settings import get_user_agent

logger = logging.getLogger(__name__)

# wget exits 8 when some links 404, which is normal for a crawl
WGET_OK_CODES = frozenset({0, 8})
WGET_TIMEOUT = 6 * 60 * 60

EXCLUDED_DIRS = frozenset({"images", "css", "js"})
CONTENT_SELECTORS = ("#content", "#main-content", ".content", "main", "article", "body")
SLUG_CATEGORIES = {"pubs": "publications", "mfgindex": "manufacturers"}


@dataclass
class MirrorPage:
    slug: str
    title: str
    html: str
    content_html: str
    text: str = ""
    images: list[str] = field(default_factory=list)
    category: str | None = None
    path: Path | None = None
    last_modified: datetime | None = None


def path_to_slug(relative: str) -> str:
    for ext in (".html", ".htm"):
        if relative.lower().endswith(ext):
            relative = relative[: -len(ext)]
            break
    return relative.strip("/").replace("/", "__")


def slug_category(slug: str) -> str | None:
    prefix = slug.split("__", 1)[0] if "__" in slug else None
    return SLUG_CATEGORIES.get(prefix) if prefix else None


class MirrorClient:
    """Mirror a live website with wget and read pages back from disk."""

    def __init__(
        self,
        site_url: str,
        mirror_dir: Path,
        wait: float = 1.0,
        level: int = 5,
    ) -> None:
        self.site_url = site_url.rstrip("/")
        self.host = urlparse(self.site_url).netloc
        self.mirror_dir = Path(mirror_dir)
        self.wait = wait
        self.level = level

    @property
    def site_dir(self) -> Path:
        """Directory wget writes the site into (with or without ``www.``)."""
        bare = self.host.removeprefix("www.")
        for candidate in (bare, f"www.{bare}"):
            path = self.mirror_dir / candidate
            if path.is_dir():
                return path
        return self.mirror_dir / self.host

    def wget_command(self, include_dirs: list[str] | None = None) -> list[str]:
        cmd = [
            "wget",
            "--mirror",
            "--convert-links",
            "--adjust-extension",
            "--page-requisites",
            "--no-parent",
            f"--wait={self.wait:g}",
            "--random-wait",
            f"--user-agent={get_user_agent()}",
            f"--directory-prefix={self.mirror_dir}",
            "--timestamping",
            f"--level={self.level}",
        ]
        if include_dirs:
            cmd.append(f"--include-directories={','.join(include_dirs)}")
        cmd.append(f"{self.site_url}/")
        return cmd

    def sync_site(self, include_dirs: list[str] | None = None) -> int:
        """Run (or refresh) the mirror.

        Returns:
            Number of HTML pages present afterwards.

        Raises:
            MirrorError: wget failed or could not be started
        """
        self.mirror_dir.mkdir(parents=True, exist_ok=True)
        cmd = self.wget_command(include_dirs)
        logger.info("Mirroring %s into %s", self.site_url, self.mirror_dir)
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=WGET_TIMEOUT
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise MirrorError(str(e)) from e
        if result.returncode not in WGET_OK_CODES:
            tail = "\n".join(result.stderr.strip().splitlines()[-5:])
            raise MirrorError(f"wget exited with {result.returncode}: {tail}")
        return len(self._html_files())

    def _html_files(self) -> list[Path]:
        root = self.site_dir
        if not root.is_dir():
            return []
        files = []
        for path in root.rglob("*"):
            if path.suffix.lower() not in (".html", ".htm") or not path.is_file():
                continue
            parts = path.relative_to(root).parts[:-1]
            if EXCLUDED_DIRS.intersection(parts):
                continue
            files.append(path)
        return files

    def _slug_for(self, path: Path) -> str:
        return path_to_slug(path.relative_to(self.site_dir).as_posix())

    def list_pages(self) -> list[str]:
        return sorted(self._slug_for(p) for p in self._html_files())

    def list_modified_pages(self, since: datetime) -> list[str]:
        cutoff = since.timestamp()
        return sorted(
            self._slug_for(p) for p in self._html_files() if p.stat().st_mtime > cutoff
        )

    def _resolve(self, slug: str) -> Path:
        root = self.site_dir.resolve()
        base = (self.site_dir / slug.replace("__", "/")).resolve()
        if root not in base.parents:
            raise NotFoundError(f"Slug escapes the mirror directory: {slug}")
        candidates = (
            base,
            base.with_name(base.name + ".html"),
            base.with_name(base.name + ".htm"),
        )
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        raise NotFoundError(f"No mirrored page for {slug}")

    def get_page(self, slug: str) -> MirrorPage:
        path = self._resolve(slug)
        try:
            html = path.read_text(encoding="utf-8", errors="replace")
            soup = BeautifulSoup(html, "html.parser")
        except OSError as e:
            raise ParseError(f"Cannot read {path}: {e}") from e

        title_tag = soup.find("title")
        title = title_tag.get_text(strip=True) if title_tag else ""

        content = None
        for selector in CONTENT_SELECTORS:
            content = soup.select_one(selector)
            if content is not None:
                break
        content_html = str(content) if content is not None else html
        text = content.get_text(" ", strip=True) if content is not None else ""
        images = [
            img["src"]
            for img in (content or soup).find_all("img", src=True)
            if not img["src"].startswith("data:")
        ]
        return MirrorPage(
            slug=slug,
            title=title or humanize_slug(slug.rsplit("__", 1)[-1]),
            html=html,
            content_html=content_html,
            text=text,
            images=images,
            category=slug_category(slug),
            path=path,
            last_modified=datetime.fromtimestamp(path.stat().st_mtime, tz=UTC),
        )

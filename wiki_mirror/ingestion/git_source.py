"""Client for a wiki whose canonical storage is a git repository.

Layout of the upstream repository::

    pages/<bucket>/<id>/name         # the page slug
    pages/<bucket>/<id>/content.md   # front-matter header + markdown body

Change detection is delegated to ``git log``. The slug → directory index
is owned by the client, built lazily on first lookup and rebuilt after
every :meth:`GitSourceClient.sync_repo`.

Concurrent runs against the same checkout are not safe; callers must
serialize them.
"""

from __future__ import annotations

import logging
import re
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from wiki_mirror.ingestion.common import humanize_slug
from wiki_mirror.ingestion.errors import GitError, NotFoundError, ParseError

logger = logging.getLogger(__name__)

PAGES_DIR = "pages"
NAME_FILE = "name"
CONTENT_FILE = "content.md"
GIT_TIMEOUT = 600

_FRONT_MATTER = re.compile(r"\A---\n(.+?)\n---\n(.*)\Z", re.DOTALL)


@dataclass
class GitPage:
    slug: str
    title: str
    content: str
    categories: list[str] = field(default_factory=list)
    front_matter: dict[str, str] = field(default_factory=dict)
    last_modified: datetime | None = None
    path: Path | None = None


def parse_front_matter(raw: str) -> tuple[dict[str, str], str]:
    """Split ``---`` delimited ``key: value`` header from the body."""
    match = _FRONT_MATTER.match(raw)
    if not match:
        return {}, raw
    header: dict[str, str] = {}
    for line in match.group(1).splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip():
            header[key.strip()] = value.strip()
    return header, match.group(2)


class SlugIndex:
    """Lazily built slug → page directory map."""

    def __init__(self, pages_root: Path) -> None:
        self.pages_root = pages_root
        self._entries: dict[str, Path] | None = None
        self._lock = threading.Lock()

    def _build(self) -> dict[str, Path]:
        entries: dict[str, Path] = {}
        if not self.pages_root.is_dir():
            return entries
        for name_file in self.pages_root.rglob(NAME_FILE):
            if not name_file.is_file():
                continue
            slug = name_file.read_text(encoding="utf-8", errors="replace").strip()
            if slug:
                entries[slug] = name_file.parent
        logger.debug("Indexed %d pages under %s", len(entries), self.pages_root)
        return entries

    def entries(self) -> dict[str, Path]:
        with self._lock:
            if self._entries is None:
                self._entries = self._build()
            return self._entries

    def invalidate(self) -> None:
        with self._lock:
            self._entries = None

    def rebuild(self) -> int:
        with self._lock:
            self._entries = self._build()
            return len(self._entries)

    def lookup(self, slug: str) -> Path | None:
        return self.entries().get(slug)

    @property
    def is_built(self) -> bool:
        return self._entries is not None


class GitSourceClient:
    """Read pages out of a local clone of a git-backed wiki.

    Attributes:
        repo_url: Remote to clone from
        branch: Branch to track
        repo_path: Local checkout directory
    """

    def __init__(self, repo_url: str, branch: str, repo_path: Path) -> None:
        self.repo_url = repo_url
        self.branch = branch
        self.repo_path = Path(repo_path)
        self.index = SlugIndex(self.repo_path / PAGES_DIR)

    def _git(self, *args: str, cwd: Path | None = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["git", *args],
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT,
            )
        except subprocess.TimeoutExpired as e:
            raise GitError(f"{args[0]}_timeout", f"git {args[0]} timed out") from e
        except OSError as e:
            raise GitError(f"{args[0]}_failed", str(e)) from e

    def sync_repo(self) -> int:
        """Clone on first use, pull afterwards, then rebuild the slug index.

        Returns:
            Number of pages in the rebuilt index.

        Raises:
            GitError: ``clone_failed`` or ``pull_failed``
        """
        if (self.repo_path / ".git").exists():
            logger.info("Pulling %s (%s)", self.repo_path, self.branch)
            result = self._git("pull", "origin", self.branch, cwd=self.repo_path)
            if result.returncode != 0:
                raise GitError("pull_failed", result.stderr)
        else:
            logger.info("Cloning %s into %s", self.repo_url, self.repo_path)
            self.repo_path.parent.mkdir(parents=True, exist_ok=True)
            result = self._git(
                "clone",
                "--branch",
                self.branch,
                "--single-branch",
                "--depth",
                "1",
                self.repo_url,
                str(self.repo_path),
            )
            if result.returncode != 0:
                raise GitError("clone_failed", result.stderr)
        count = self.index.rebuild()
        logger.info("Indexed %d pages", count)
        return count

    def list_pages(self) -> list[str]:
        return sorted(self.index.entries())

    def list_modified_pages(self, since: datetime) -> list[str]:
        """Slugs whose content file changed after ``since``.

        Raises:
            GitError: ``git_log_failed``
        """
        if since.tzinfo is None:
            since = since.replace(tzinfo=UTC)
        result = self._git(
            "log",
            f"--since={since.isoformat()}",
            "--name-only",
            "--pretty=format:",
            "--",
            f"{PAGES_DIR}/",
            cwd=self.repo_path,
        )
        if result.returncode != 0:
            raise GitError("git_log_failed", result.stderr)

        slugs: set[str] = set()
        seen_dirs: set[str] = set()
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line.endswith(f"/{CONTENT_FILE}"):
                continue
            page_dir = line.rsplit("/", 1)[0]
            if page_dir in seen_dirs:
                continue
            seen_dirs.add(page_dir)
            name_file = self.repo_path / page_dir / NAME_FILE
            if name_file.is_file():
                slug = name_file.read_text(encoding="utf-8", errors="replace").strip()
                if slug:
                    slugs.add(slug)
        return sorted(slugs)

    def get_page(self, slug: str) -> GitPage:
        """Read and split one page.

        Raises:
            NotFoundError: slug unknown or content file missing
            ParseError: content file unreadable
        """
        page_dir = self.index.lookup(slug)
        if page_dir is None:
            raise NotFoundError(f"Unknown page: {slug}")
        content_path = page_dir / CONTENT_FILE
        if not content_path.is_file():
            raise NotFoundError(f"No content for {slug}")
        try:
            raw = content_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"Cannot read {content_path}: {e}") from e

        header, body = parse_front_matter(raw)
        categories = [
            c.strip() for c in header.get("categories", "").split(",") if c.strip()
        ]
        return GitPage(
            slug=slug,
            title=header.get("title") or humanize_slug(slug),
            content=body,
            categories=categories,
            front_matter=header,
            last_modified=datetime.fromtimestamp(content_path.stat().st_mtime, tz=UTC),
            path=content_path,
        )

    def get_pages(self, slugs: list[str]) -> list[GitPage]:
        pages = []
        for slug in slugs:
            try:
                pages.append(self.get_page(slug))
            except (NotFoundError, ParseError) as e:
                logger.debug("Skipping %s: %s", slug, e)
        return pages

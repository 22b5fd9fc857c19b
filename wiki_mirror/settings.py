"""Project settings loaded from pyproject.toml [tool.wiki-mirror] section.

Configuration is organized into subsections:
  [tool.wiki-mirror]                   general settings (data-dir, user-agent)
  [tool.wiki-mirror.osrs]              MediaWiki API URL, rate limit
  [tool.wiki-mirror.nlab]              git repository URL, branch, checkout path
  [tool.wiki-mirror.wikipedia]         dump URL and local dump path
  [tool.wiki-mirror.vintage-machinery] mirror directory, archived domain
  [tool.wiki-mirror.wayback]           archive rate limit

All settings support environment variable overrides (WIKI_MIRROR_* prefix).
"""

import importlib.resources
import os
import tomllib
from functools import cache
from pathlib import Path

DEFAULT_USER_AGENT = "wiki-mirror/1.0 (read-only wiki browser; ingestion bot)"
DEFAULT_DATA_DIR = "~/.local/share/wiki-mirror"
DEFAULT_DUMP_URL = (
    "https://dumps.wikimedia.org/enwiki/latest/enwiki-latest-pages-articles.xml.bz2"
)


@cache
def _load_pyproject_settings() -> dict:
    """Load settings from pyproject.toml [tool.wiki-mirror] section.

    Returns:
        Dictionary of settings from pyproject.toml, empty dict if not found.
    """
    try:
        files = importlib.resources.files("wiki_mirror")
        pyproject_path = files.joinpath("..", "pyproject.toml")

        if not pyproject_path.is_file():  # type: ignore[union-attr]
            # Walk up to find pyproject.toml (for development)
            current = Path(__file__).resolve().parent
            while current != current.parent:
                candidate = current / "pyproject.toml"
                if candidate.exists():
                    pyproject_path = candidate
                    break
                current = current.parent
            else:
                return {}

        content = pyproject_path.read_text()  # type: ignore[union-attr]
        data = tomllib.loads(content)
        return data.get("tool", {}).get("wiki-mirror", {})
    except (OSError, tomllib.TOMLDecodeError):
        return {}


def _get_section(section: str) -> dict:
    """Get a subsection from [tool.wiki-mirror.{section}]."""
    value = _load_pyproject_settings().get(section, {})
    return value if isinstance(value, dict) else {}


def _resolve(section: str | None, key: str, env_var: str, default):
    """Resolve one setting. Priority: env var → pyproject → default."""
    if env := os.getenv(env_var):
        return env
    source = _get_section(section) if section else _load_pyproject_settings()
    return source.get(key, default)


# ─── General ────────────────────────────────────────────────────────────────


def get_data_dir() -> Path:
    """Root directory for local checkouts, mirrors, dumps and blobs.

    Priority: WIKI_MIRROR_DATA_DIR env → [tool.wiki-mirror].data-dir
    → ~/.local/share/wiki-mirror.
    """
    raw = _resolve(None, "data-dir", "WIKI_MIRROR_DATA_DIR", DEFAULT_DATA_DIR)
    return Path(raw).expanduser()


def get_user_agent() -> str:
    """User-Agent header sent to every upstream host."""
    return _resolve(None, "user-agent", "WIKI_MIRROR_USER_AGENT", DEFAULT_USER_AGENT)


# ─── MediaWiki (osrs) ───────────────────────────────────────────────────────


def get_osrs_api_url() -> str:
    return _resolve(
        "osrs",
        "api-url",
        "WIKI_MIRROR_OSRS_API_URL",
        "https://oldschool.runescape.wiki/api.php",
    )


def get_osrs_rate_limit() -> float:
    """Minimum seconds between MediaWiki API requests (default 1.0)."""
    return float(_resolve("osrs", "rate-limit", "WIKI_MIRROR_OSRS_RATE_LIMIT", 1.0))


# ─── Git source (nlab) ──────────────────────────────────────────────────────


def get_nlab_repo_url() -> str:
    return _resolve(
        "nlab",
        "repo-url",
        "WIKI_MIRROR_NLAB_REPO_URL",
        "https://github.com/ncatlab/nlab-content.git",
    )


def get_nlab_branch() -> str:
    return _resolve("nlab", "branch", "WIKI_MIRROR_NLAB_BRANCH", "master")


def get_nlab_repo_path() -> Path:
    raw = _resolve("nlab", "repo-path", "WIKI_MIRROR_NLAB_REPO_PATH", None)
    return Path(raw).expanduser() if raw else get_data_dir() / "nlab-content"


# ─── Wikipedia dump ─────────────────────────────────────────────────────────


def get_wikipedia_dump_url() -> str:
    return _resolve(
        "wikipedia",
        "dump-url",
        "WIKI_MIRROR_WIKIPEDIA_DUMP_URL",
        DEFAULT_DUMP_URL,
    )


def get_wikipedia_dump_path() -> Path:
    raw = _resolve("wikipedia", "dump-path", "WIKI_MIRROR_WIKIPEDIA_DUMP_PATH", None)
    if raw:
        return Path(raw).expanduser()
    return get_data_dir() / "wikipedia-dump" / "enwiki-latest-pages-articles.xml.bz2"


# ─── Vintage Machinery (live mirror + archive) ─────────────────────────────


def get_mirror_dir() -> Path:
    raw = _resolve(
        "vintage-machinery", "mirror-dir", "WIKI_MIRROR_VM_MIRROR_DIR", None
    )
    return Path(raw).expanduser() if raw else get_data_dir() / "vintage-machinery"


def get_archived_domain() -> str:
    return _resolve(
        "vintage-machinery",
        "archived-domain",
        "WIKI_MIRROR_VM_ARCHIVED_DOMAIN",
        "wiki.vintagemachinery.org",
    )


def get_wayback_rate_limit() -> float:
    """Fixed delay in seconds before every archive request (default 1.0)."""
    return float(
        _resolve("wayback", "rate-limit", "WIKI_MIRROR_WAYBACK_RATE_LIMIT", 1.0)
    )

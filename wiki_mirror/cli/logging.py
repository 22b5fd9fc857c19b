"""CLI logging configuration with file output.

Log files are split by command *and* source under
``~/.local/share/wiki-mirror/logs/``::

    <command>_<source>.log   # e.g. sync_osrs.log, import_wikipedia.log
    <command>.log            # when no source is given

Multi-hour imports are best followed with::

    tail -f ~/.local/share/wiki-mirror/logs/import_wikipedia.log
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_DIR = Path.home() / ".local" / "share" / "wiki-mirror" / "logs"
PACKAGE_LOGGER = "wiki_mirror"


def get_log_dir() -> Path:
    """Return the CLI log directory, creating it if needed."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    return LOG_DIR


def get_log_file(command: str, source: str | None = None) -> Path:
    stem = f"{command}_{source}" if source else command
    return get_log_dir() / f"{stem}.log"


def configure_cli_logging(
    command: str,
    *,
    source: str | None = None,
    verbose: bool = False,
    console_level: int | None = None,
    file_level: int = logging.DEBUG,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 3,
) -> Path:
    """Attach a rotating file handler and a Rich console handler.

    Args:
        command: CLI command name (e.g. "sync", "import")
        source: Source id; splits the log file per source
        verbose: Console at INFO instead of WARNING
        console_level: Explicit console level (overrides verbose)
        file_level: File log level
        max_bytes: Max size per log file before rotation
        backup_count: Number of rotated backups to keep

    Returns:
        Path to the log file
    """
    log_file = get_log_file(command, source=source)
    root_logger = logging.getLogger(PACKAGE_LOGGER)

    # Repeated calls (tests, nested commands) must not duplicate output
    for handler in root_logger.handlers[:]:
        if isinstance(handler, (RotatingFileHandler, RichHandler)):
            root_logger.removeHandler(handler)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root_logger.addHandler(file_handler)

    level = console_level
    if level is None:
        level = logging.INFO if verbose else logging.WARNING
    console_handler = RichHandler(
        console=Console(stderr=True), show_path=False, rich_tracebacks=True
    )
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    lowest = min(level, file_level)
    if root_logger.level == logging.NOTSET or root_logger.level > lowest:
        root_logger.setLevel(lowest)

    return log_file

"""Error taxonomy for ingestion.

Clients raise these; pipelines catch them per key and report them in the
per-key result map; workers treat the run-fatal subclasses as the end of
a run.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for every ingestion failure.

    Attributes:
        kind: Machine-readable error kind used in stats and run records.
    """

    kind = "ingestion_error"

    @property
    def reason(self) -> str:
        message = str(self)
        return f"{self.kind}: {message}" if message else self.kind


class NotFoundError(IngestionError):
    """Resource is missing upstream."""

    kind = "not_found"


class ApiError(IngestionError):
    """Remote API reported a structured failure."""

    kind = "api_error"

    def __init__(self, code: str, info: str = "") -> None:
        super().__init__(f"{code}: {info}" if info else code)
        self.code = code
        self.info = info


class HttpError(IngestionError):
    """Non-200 HTTP response."""

    kind = "http_error"

    def __init__(self, status: int, url: str = "") -> None:
        super().__init__(f"HTTP {status}" + (f" for {url}" if url else ""))
        self.status = status
        self.url = url


class RequestError(IngestionError):
    """Transport failure (DNS, connection reset, timeout)."""

    kind = "request_error"


class ParseError(IngestionError):
    """Local content parsing failed."""

    kind = "parse_error"


class NoInfoboxError(ParseError):
    """Wikitext carries no (terminated) infobox template."""

    kind = "no_infobox"


class PersistError(IngestionError):
    """Article validation or storage write failed."""

    kind = "persist_error"


class TaskTimeoutError(IngestionError):
    """A unit of work in a concurrent batch exceeded its timeout."""

    kind = "timeout"


# ─── Run-fatal errors ───────────────────────────────────────────────────────


class GitError(IngestionError):
    """git clone/pull/log failed."""

    kind = "git_error"

    def __init__(self, operation: str, detail: str = "") -> None:
        super().__init__(detail.strip())
        self.kind = operation
        self.operation = operation
        self.detail = detail


class DumpStreamError(IngestionError):
    """Decompression subprocess failed while streaming a dump."""

    kind = "dump_stream_error"


class MirrorError(IngestionError):
    """wget mirror run failed."""

    kind = "mirror_error"


__all__ = [
    "ApiError",
    "DumpStreamError",
    "GitError",
    "HttpError",
    "IngestionError",
    "MirrorError",
    "NoInfoboxError",
    "NotFoundError",
    "ParseError",
    "PersistError",
    "RequestError",
    "TaskTimeoutError",
]

"""Wiki Mirror - ingestion pipeline for a read-only wiki browser."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("wiki-mirror")
except PackageNotFoundError:
    __version__ = "0.0.0"

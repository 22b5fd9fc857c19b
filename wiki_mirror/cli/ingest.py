"""Ingestion commands: sync, full crawls, dump imports and inspection."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from wiki_mirror import settings
from wiki_mirror.cli.logging import configure_cli_logging
from wiki_mirror.ingestion.errors import IngestionError
from wiki_mirror.ingestion.sources import SOURCE_NAMES, get_pipeline
from wiki_mirror.models import Source

console = Console()

source_argument = click.argument("source", type=click.Choice(SOURCE_NAMES))
verbose_option = click.option(
    "-v", "--verbose", is_flag=True, help="Log INFO to console."
)
store_option = click.option(
    "--store",
    "store_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Local store directory (default: <data-dir>/store).",
)


def _stores(store_dir: Path | None):
    from wiki_mirror.ingestion.pipeline import Stores

    return Stores.local(store_dir or settings.get_data_dir() / "store")


def _parse_since(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _print_result(title: str, result) -> None:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Updated", justify="right", style="cyan")
    table.add_column("Unchanged", justify="right", style="dim")
    table.add_column("Errors", justify="right", style="red")
    stats = result.stats
    table.add_row(
        str(stats.created), str(stats.updated), str(stats.unchanged), str(stats.errors)
    )
    console.print(table)
    if result.checkpoint:
        console.print(f"[dim]Checkpoint: {result.checkpoint}[/dim]")
    if not result.ok:
        console.print(f"[red]Failed:[/red] {result.error}")
        raise SystemExit(1)


@click.command()
@source_argument
@click.option(
    "--since", default=None, help="ISO timestamp (default: last completed run)."
)
@store_option
@verbose_option
def sync(source: str, since: str | None, store_dir: Path | None, verbose: bool) -> None:
    """Incremental sync of pages changed upstream."""
    log_file = configure_cli_logging("sync", source=source, verbose=verbose)
    pipeline = get_pipeline(source, _stores(store_dir))
    result = pipeline.sync_recent_changes(_parse_since(since))
    _print_result(f"{source} recent changes", result)
    console.print(f"[dim]Log: {log_file}[/dim]")


@click.command()
@source_argument
@click.option(
    "--from", "start_from", default=None, help="Resume from this title (osrs)."
)
@click.option("--limit", type=int, default=None, help="Stop after N pages.")
@store_option
@verbose_option
def full(
    source: str,
    start_from: str | None,
    limit: int | None,
    store_dir: Path | None,
    verbose: bool,
) -> None:
    """Full crawl of a source, resumable where the source supports it."""
    configure_cli_logging("full", source=source, verbose=verbose)
    pipeline = get_pipeline(source, _stores(store_dir))
    if source == "osrs":
        from wiki_mirror.ingestion.workers import FullDumpWorker

        result = FullDumpWorker(pipeline).run(start_from=start_from, limit=limit)
    else:
        result = pipeline.sync_all(limit=limit)
    _print_result(f"{source} full sync", result)


@click.command()
@source_argument
@click.argument("key")
@store_option
@verbose_option
def page(source: str, key: str, store_dir: Path | None, verbose: bool) -> None:
    """Ingest a single page by title, slug or URL."""
    configure_cli_logging("page", source=source, verbose=verbose)
    pipeline = get_pipeline(source, _stores(store_dir))
    result = pipeline.process_page(key)
    if result.ok:
        article = result.article
        ref = f"{article.source.value}/{article.slug}"
        console.print(f"[green]{result.status}[/green] {ref}")
        console.print(f"  title: {article.title}")
        console.print(f"  hash:  [dim]{article.upstream_hash}[/dim]")
    else:
        console.print(f"[red]error[/red] {result.error.reason}")
        raise SystemExit(1)


@click.command()
@click.argument("name")
@click.option("--limit", type=int, default=5000, show_default=True)
@store_option
@verbose_option
def category(name: str, limit: int, store_dir: Path | None, verbose: bool) -> None:
    """Sync every page in an OSRS wiki category."""
    configure_cli_logging("category", source="osrs", verbose=verbose)
    pipeline = get_pipeline("osrs", _stores(store_dir))
    _print_result(f"osrs category:{name}", pipeline.sync_category(name, limit=limit))


@click.command("import")
@click.option("--dump", "dump_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--offset", type=int, default=0, show_default=True)
@click.option("--limit", type=int, default=None)
@click.option("--category", "categories", multiple=True, help="Direct category filter.")
@store_option
@verbose_option
def import_dump(
    dump_path: Path | None,
    offset: int,
    limit: int | None,
    categories: tuple[str, ...],
    store_dir: Path | None,
    verbose: bool,
) -> None:
    """Import articles from the Wikipedia dump."""
    configure_cli_logging("import", source="wikipedia", verbose=verbose)
    pipeline = get_pipeline("wikipedia", _stores(store_dir), dump_path=dump_path)
    result = pipeline.sync_all(limit=limit, offset=offset, categories=list(categories))
    _print_result("wikipedia dump import", result)


@click.command("dump-info")
@click.option("--dump", "dump_path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--count", is_flag=True, help="Also count articles (slow).")
def dump_info_cmd(dump_path: Path | None, count: bool) -> None:
    """Show size and age of the Wikipedia dump."""
    from wiki_mirror.ingestion.dump import count_articles, dump_info

    path = dump_path or settings.get_wikipedia_dump_path()
    try:
        info = dump_info(path)
    except IngestionError as e:
        console.print(f"[red]{e.reason}[/red]")
        raise SystemExit(1) from e
    console.print(f"Path:     {info.path}")
    console.print(f"Size:     {info.size_human}")
    console.print(f"Modified: {info.modified.isoformat()}")
    if count:
        console.print(f"Articles: {count_articles(path):,}")


@click.command("download-dump")
@click.option("--dest", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.option("--url", default=None)
def download_dump(dest: Path | None, url: str | None) -> None:
    """Download (or resume) the Wikipedia dump."""
    from wiki_mirror.ingestion.dump import download_dump as fetch_dump

    configure_cli_logging("download", source="wikipedia", verbose=True)
    path = fetch_dump(
        url or settings.get_wikipedia_dump_url(),
        dest or settings.get_wikipedia_dump_path(),
    )
    console.print(f"[green]Saved[/green] {path}")


@click.command("infobox")
@click.argument("wikitext_file", type=click.File("r"))
@click.option("--all", "parse_every", is_flag=True, help="Show every infobox.")
def infobox_cmd(wikitext_file, parse_every: bool) -> None:
    """Parse infoboxes from a wikitext file."""
    from wiki_mirror.ingestion import infobox

    text = wikitext_file.read()
    boxes = infobox.parse_all(text)
    if not boxes:
        console.print("[yellow]No infobox found.[/yellow]")
        raise SystemExit(1)
    for box in boxes if parse_every else boxes[:1]:
        table = Table(title=f"Infobox {box.infobox_type}")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in box.params.items():
            table.add_row(key, value)
        console.print(table)


@click.command()
@click.argument("source", type=click.Choice([s.value for s in Source]))
@click.option("--limit", type=int, default=10, show_default=True)
@store_option
def runs(source: str, limit: int, store_dir: Path | None) -> None:
    """Show recent sync runs for a source."""
    stores = _stores(store_dir)
    history = sorted(
        stores.tracker.store.list_runs(source), key=lambda r: r.started_at, reverse=True
    )[:limit]
    table = Table(title=f"Sync runs: {source}")
    table.add_column("ID", justify="right")
    table.add_column("Strategy")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Processed", justify="right")
    table.add_column("Error", style="red")
    for run in history:
        table.add_row(
            str(run.id),
            run.strategy,
            run.status.value,
            run.started_at.strftime("%Y-%m-%d %H:%M"),
            str(run.pages_processed),
            run.error or "",
        )
    console.print(table)

"""Command line interface for Wiki Mirror.

Every command is a thin wrapper over a pipeline entry point, so the same
operations a scheduler invokes can be run by hand.
"""

import logging as stdlib_logging

import click
from dotenv import load_dotenv

from wiki_mirror import __version__
from wiki_mirror.cli.ingest import (
    category,
    download_dump,
    dump_info_cmd,
    full,
    import_dump,
    infobox_cmd,
    page,
    runs,
    sync,
)

# Load environment variables from .env file
load_dotenv(override=True)

logger = stdlib_logging.getLogger(__name__)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show the wiki-mirror version and exit.")
@click.pass_context
def main(ctx: click.Context, version: bool) -> None:
    """Wiki Mirror - mirror upstream wikis into a content-addressed store.

    \b
      wiki-mirror sync osrs              Incremental sync since the last run
      wiki-mirror full osrs --from Dragon  Resumable full crawl
      wiki-mirror page osrs "Abyssal whip"  Ingest one page
      wiki-mirror import --limit 1000    Import from the Wikipedia dump
      wiki-mirror runs osrs              Show recent sync runs
    """
    if version:
        click.echo(__version__)
        ctx.exit()

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


main.add_command(sync)
main.add_command(full)
main.add_command(page)
main.add_command(category)
main.add_command(import_dump)
main.add_command(dump_info_cmd)
main.add_command(download_dump)
main.add_command(infobox_cmd)
main.add_command(runs)


if __name__ == "__main__":
    main()

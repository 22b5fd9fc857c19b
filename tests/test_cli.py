"""Smoke tests for the CLI.

Commands are invoked through click's CliRunner against temporary stores,
checkouts and dump files; nothing touches the network.
"""

import logging

import pytest
from click.testing import CliRunner

INFOBOX_TEXT = """\
{{Infobox Item
|name = Abyssal whip
|value = 120,001
}}
{{Infobox Bonuses
|aslash = +82
}}
"""

NLAB_PAGE = "---\ntitle: Category theory\n---\nA **category**.\n"


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    """Send log files to a temp dir and detach handlers afterwards."""
    from wiki_mirror.cli import logging as cli_logging

    monkeypatch.setattr(cli_logging, "LOG_DIR", tmp_path / "logs")
    monkeypatch.setenv("WIKI_MIRROR_DATA_DIR", str(tmp_path / "data"))
    yield
    package_logger = logging.getLogger(cli_logging.PACKAGE_LOGGER)
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()


class TestCLIImports:
    """Test that all CLI modules can be imported."""

    def test_import_main(self):
        """Main CLI entry point can be imported."""
        from wiki_mirror.cli import main

        assert main is not None
        assert {"sync", "full", "page", "import", "runs"} <= set(main.commands)


class TestCLICommands:
    """Test that CLI commands are properly registered and have help text."""

    def test_main_help(self, runner):
        from wiki_mirror.cli import main

        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Wiki Mirror" in result.output
        assert "Commands:" in result.output

    def test_no_command_shows_help(self, runner):
        from wiki_mirror.cli import main

        result = runner.invoke(main, [])
        assert result.exit_code == 0
        assert "Commands:" in result.output

    def test_main_version(self, runner):
        """--version flag works."""
        from wiki_mirror import __version__
        from wiki_mirror.cli import main

        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert result.output.strip() == __version__

    def test_unknown_source_rejected(self, runner):
        from wiki_mirror.cli import main

        result = runner.invoke(main, ["sync", "bogus"])
        assert result.exit_code == 2


class TestInfoboxCommand:
    def _write(self, tmp_path, text):
        path = tmp_path / "page.wiki"
        path.write_text(text, encoding="utf-8")
        return str(path)

    def test_first_infobox(self, runner, tmp_path):
        from wiki_mirror.cli import main

        result = runner.invoke(main, ["infobox", self._write(tmp_path, INFOBOX_TEXT)])
        assert result.exit_code == 0
        assert "Infobox Item" in result.output
        assert "Abyssal whip" in result.output
        assert "Infobox Bonuses" not in result.output

    def test_all_infoboxes(self, runner, tmp_path):
        from wiki_mirror.cli import main

        path = self._write(tmp_path, INFOBOX_TEXT)
        result = runner.invoke(main, ["infobox", path, "--all"])
        assert result.exit_code == 0
        assert "Infobox Bonuses" in result.output

    def test_no_infobox(self, runner, tmp_path):
        from wiki_mirror.cli import main

        path = self._write(tmp_path, "Plain text.")
        result = runner.invoke(main, ["infobox", path])
        assert result.exit_code == 1
        assert "No infobox found." in result.output


class TestDumpInfoCommand:
    def test_missing_dump(self, runner, tmp_path):
        from wiki_mirror.cli import main

        dump = str(tmp_path / "missing.xml.bz2")
        result = runner.invoke(main, ["dump-info", "--dump", dump])
        assert result.exit_code == 1
        assert "not_found" in result.output

    def test_existing_dump(self, runner, tmp_path):
        from wiki_mirror.cli import main

        dump = tmp_path / "dump.xml.bz2"
        dump.write_bytes(b"x" * 2048)
        result = runner.invoke(main, ["dump-info", "--dump", str(dump)])
        assert result.exit_code == 0
        assert "Size:" in result.output
        assert "Modified:" in result.output


class TestPageCommand:
    @pytest.fixture
    def nlab_checkout(self, tmp_path, monkeypatch):
        page_dir = tmp_path / "nlab" / "pages" / "1" / "11"
        page_dir.mkdir(parents=True)
        (page_dir / "name").write_text("category theory\n", encoding="utf-8")
        (page_dir / "content.md").write_text(NLAB_PAGE, encoding="utf-8")
        monkeypatch.setenv("WIKI_MIRROR_NLAB_REPO_PATH", str(tmp_path / "nlab"))
        return tmp_path / "nlab"

    def test_created_then_unchanged(self, runner, tmp_path, nlab_checkout):
        from wiki_mirror.cli import main

        args = ["page", "nlab", "category theory", "--store", str(tmp_path / "s")]
        first = runner.invoke(main, args)
        assert first.exit_code == 0, first.output
        assert "created nlab/category theory" in first.output
        assert "title: Category theory" in first.output

        second = runner.invoke(main, args)
        assert second.exit_code == 0
        assert "unchanged" in second.output

    def test_unknown_page(self, runner, tmp_path, nlab_checkout):
        from wiki_mirror.cli import main

        result = runner.invoke(
            main, ["page", "nlab", "no such page", "--store", str(tmp_path / "s")]
        )
        assert result.exit_code == 1
        assert "not_found" in result.output


class TestRunsCommand:
    def test_lists_runs(self, runner, tmp_path):
        from wiki_mirror.cli import main
        from wiki_mirror.ingestion.pipeline import Stores
        from wiki_mirror.models import Source, SyncRun

        store_dir = tmp_path / "store"
        Stores.local(store_dir).tracker.store.insert(
            SyncRun(source=Source.OSRS, strategy="full_sync")
        )

        result = runner.invoke(main, ["runs", "osrs", "--store", str(store_dir)])
        assert result.exit_code == 0
        assert "full_sync" in result.output
        assert "running" in result.output

    def test_empty_history(self, runner, tmp_path):
        from wiki_mirror.cli import main

        result = runner.invoke(main, ["runs", "nlab", "--store", str(tmp_path / "s")])
        assert result.exit_code == 0
        assert "full_sync" not in result.output

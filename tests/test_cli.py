"""Tests for the command-line interface."""

from unittest.mock import AsyncMock, patch

import pytest

from emlak import cli
from emlak.errors import NoValidSeedsError
from emlak.models import CrawlStats


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("MAX_ITEMS", "INCLUDE_DETAILS", "MAX_CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)


class TestBuildConfig:
    """Tests for argument handling."""

    def test_overrides(self, tmp_path):
        """Command-line flags override the input file."""
        path = tmp_path / "input.json"
        path.write_text('{"maxItems": 100, "includeDetails": false}')

        args = cli.parse_args([
            "--input", str(path),
            "--start-url", "https://www.sahibinden.com/a",
            "--start-url", "https://www.sahibinden.com/b",
            "--max-items", "5",
            "--include-details",
            "--headed",
            "--output", str(tmp_path / "out.jsonl"),
        ])
        config = cli.build_config(args)

        assert config.start_urls == ["https://www.sahibinden.com/a", "https://www.sahibinden.com/b"]
        assert config.max_items == 5
        assert config.include_details is True
        assert config.headless is False
        assert config.output_path == str(tmp_path / "out.jsonl")

    def test_unset_flags_keep_input(self, tmp_path):
        """Flags that were not given do not clobber the input file."""
        path = tmp_path / "input.json"
        path.write_text('{"maxItems": 100, "includeDetails": true, "headless": false}')

        config = cli.build_config(cli.parse_args(["--input", str(path)]))

        assert config.max_items == 100
        assert config.include_details is True
        assert config.headless is False

    def test_headless_flags_exclusive(self):
        """--headless and --headed cannot be combined."""
        with pytest.raises(SystemExit):
            cli.parse_args(["--headless", "--headed"])


class TestMain:
    """Tests for exit codes."""

    def test_success(self, capsys):
        """A finished crawl exits 0 and prints a summary."""
        with patch("emlak.cli._run", new=AsyncMock(return_value=CrawlStats(emitted=4))):
            assert cli.main(["--start-url", "https://www.sahibinden.com/a"]) == 0
        assert '"emitted": 4' in capsys.readouterr().out

    def test_no_valid_seeds(self):
        """No usable start URL exits 2."""
        with patch("emlak.cli._run", new=AsyncMock(side_effect=NoValidSeedsError("No valid start URLs provided"))):
            assert cli.main(["--start-url", "nope"]) == 2

    def test_crawl_error(self):
        """Unexpected errors exit 1."""
        with patch("emlak.cli._run", new=AsyncMock(side_effect=RuntimeError("browser crashed"))):
            assert cli.main([]) == 1

    def test_invalid_input_file(self, tmp_path):
        """A malformed input file exits 1 without crawling."""
        path = tmp_path / "input.json"
        path.write_text("{not json")

        with patch("emlak.cli._run", new=AsyncMock()) as run:
            assert cli.main(["--input", str(path)]) == 1
        run.assert_not_called()

    def test_invalid_input_value(self, tmp_path):
        """A quota that is not a number exits 1 without crawling."""
        path = tmp_path / "input.json"
        path.write_text('{"maxItems": "five"}')

        with patch("emlak.cli._run", new=AsyncMock()) as run:
            assert cli.main(["--input", str(path)]) == 1
        run.assert_not_called()

    def test_summary_lists_failures(self, capsys):
        """Failed requests are listed in the summary."""
        stats = CrawlStats(failed={
            "https://www.sahibinden.com/a": {"error_type": "BlockedError", "attempts": 8},
        })
        cli.print_summary(stats)
        out = capsys.readouterr().out
        assert "BlockedError after 8 attempt(s)" in out

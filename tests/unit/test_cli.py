"""Tests for the command line entry point."""

import json

import pytest
import structlog

from servers.gigfeed import __main__ as cli


@pytest.fixture
def local_env(tmp_path, monkeypatch):
    """Point the CLI at a temporary local store."""
    monkeypatch.setenv("GIGFEED_ROOT", str(tmp_path))
    monkeypatch.setenv("GIGFEED_STORAGE", "local")
    monkeypatch.setenv("GIGFEED_TABLES", "local")
    monkeypatch.delenv("GIGFEED_SOURCES_FILE", raising=False)
    monkeypatch.delenv("AWS_LAMBDA_FUNCTION_NAME", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    yield tmp_path
    structlog.reset_defaults()


class TestParser:
    """Tests for argument parsing."""

    def test_invalidate_takes_ids(self):
        args = cli.build_parser().parse_args(["invalidate", "thecamel", "broadberry"])
        assert args.command == "invalidate"
        assert args.sources == ["thecamel", "broadberry"]

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    """Tests for main()."""

    def test_status_idle(self, local_env, capsys):
        """A fresh install reports idle."""
        assert cli.main(["status"]) == 0
        assert json.loads(capsys.readouterr().out) == {"status": "idle", "detail": None}

    def test_collect_with_no_sources(self, local_env, capsys):
        """A run with no sources still publishes an empty feed."""
        assert cli.main(["collect"]) == 0

        result = json.loads(capsys.readouterr().out)
        assert result["status"] == "done"
        assert result["shows"] == 0
        assert (local_env / "json" / "events.json").is_file()

    def test_invalidate(self, local_env, capsys):
        """Invalidate reports the sources it cleared; log lines go to stderr."""
        assert cli.main(["invalidate", "thecamel"]) == 0

        captured = capsys.readouterr()
        assert json.loads(captured.out)["status"] == "Invalidated cache for: thecamel"
        assert "event_cache_invalidated" in captured.err

    def test_invalid_config(self, local_env, monkeypatch):
        """A bad backend stops before any work."""
        monkeypatch.setenv("GIGFEED_STORAGE", "ftp")
        assert cli.main(["status"]) == 2

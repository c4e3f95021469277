"""Tests for the command line and shutdown handling."""

import signal
from unittest.mock import MagicMock, patch

import pytest

from devicescrape.cli import main, parse_args
from devicescrape.shutdown import ShutdownHandler


@pytest.fixture
def run(manager):
    """Run the CLI against the fixture manager without touching signals or log files."""

    def _run(*argv):
        with patch("devicescrape.cli.build_job_manager", return_value=manager), \
                patch("devicescrape.cli.setup_logging"), \
                patch("devicescrape.cli.get_shutdown_handler", return_value=MagicMock()):
            return main(list(argv))

    return _run


class TestParseArgs:
    def test_import(self):
        args = parse_args(["import", "42", "Galaxy S24", "--device-type", "smartphone", "--no-site"])
        assert args.command == "import"
        assert args.device_id == "42"
        assert args.search_string == "Galaxy S24"
        assert args.device_type == "smartphone"
        assert args.no_site is True

    def test_resolve_rejects_unknown_action(self):
        with pytest.raises(SystemExit):
            parse_args(["resolve", "42", "overwrite"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestMain:
    def test_import_to_selecting(self, run, site, capsys):
        site.autocomplete["Galaxy S24"] = [
            ("Samsung Galaxy S24", "samsung-galaxy-s24"),
            ("Samsung Galaxy S24 Ultra", "samsung-galaxy-s24-ultra"),
        ]

        assert run("import", "42", "Galaxy S24") == 0

        out = capsys.readouterr().out
        assert "Step:     selecting" in out
        assert "samsung-galaxy-s24-ultra" in out

    def test_status_json(self, run, capsys):
        run("import", "42", "Nothing at all")
        capsys.readouterr()

        assert run("status", "42", "--json") == 0
        assert '"step": "error"' in capsys.readouterr().out

    def test_job_errors_exit_1(self, run, capsys):
        assert run("status", "missing") == 1
        assert "No job for device" in capsys.readouterr().err

    def test_value_errors_exit_2(self, run):
        assert run("import", "42", "   ") == 2

    def test_interrupt_exits_130(self, run, site, scraper):
        site.autocomplete["Pixel 8"] = [("Google Pixel 8", "google-pixel-8")]
        scraper.error = KeyboardInterrupt()

        assert run("import", "42", "Pixel 8") == 130

    def test_cancel(self, run, capsys):
        run("import", "42", "Nothing at all")
        assert run("cancel", "42") == 0
        assert "Closed job 42" in capsys.readouterr().out


class TestShutdownHandler:
    def test_signal_sets_flag_and_runs_cleanup_once(self):
        handler = ShutdownHandler()
        calls = []
        handler.register_cleanup(lambda: calls.append(1))

        handler._on_signal(signal.SIGINT, None)
        handler.cleanup()

        assert handler.shutdown_requested
        assert calls == [1]

    def test_second_signal_exits(self):
        handler = ShutdownHandler()
        handler._on_signal(signal.SIGTERM, None)
        with pytest.raises(SystemExit):
            handler._on_signal(signal.SIGTERM, None)

    def test_raise_if_requested(self):
        handler = ShutdownHandler()
        handler.raise_if_requested()
        handler.request_shutdown()
        with pytest.raises(KeyboardInterrupt):
            handler.raise_if_requested()

    def test_failing_cleanup_does_not_stop_others(self):
        handler = ShutdownHandler()
        calls = []

        def broken():
            raise RuntimeError("boom")

        handler.register_cleanup(broken)
        handler.register_cleanup(lambda: calls.append(1))
        handler.cleanup()

        assert calls == [1]

    def test_reset(self):
        handler = ShutdownHandler()
        handler.request_shutdown()
        handler.reset()
        assert not handler.shutdown_requested

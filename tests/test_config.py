"""Tests for bridge configuration and the command-line entry point."""

import logging

import pytest

from anyclaw import __main__ as cli
from anyclaw.util.config import BridgeSettings, resolve_codex_command


class TestResolveCodexCommand:
    """Tests for codex binary resolution order."""

    def test_argument_wins(self, monkeypatch):
        monkeypatch.setenv("ANYCLAW_CODEX_BIN", "/env/codex")
        assert resolve_codex_command("/arg/codex") == ("/arg/codex", "argument")

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("ANYCLAW_CODEX_BIN", "/env/codex")
        monkeypatch.setenv("PREFIX", "/data/usr")
        assert resolve_codex_command() == ("/env/codex", "env:ANYCLAW_CODEX_BIN")

    def test_prefix_bin(self, monkeypatch):
        monkeypatch.setenv("PREFIX", "/data/usr")
        command, reason = resolve_codex_command()
        assert command.replace("\\", "/") == "/data/usr/bin/codex"
        assert reason == "env:PREFIX"

    def test_path_default(self):
        assert resolve_codex_command() == ("codex", "path_default")


class TestBridgeSettings:
    """Tests for BridgeSettings."""

    def test_defaults(self):
        settings = BridgeSettings.resolve()
        assert settings.codex_bin == "codex"
        assert settings.keepalive_seconds == 15.0
        assert settings.kill_grace_seconds == 1.5
        assert settings.app_server_command == ["codex", "app-server"]
        assert settings.client_info["name"] == "codex-web-local"

    def test_extra_args_follow_subcommand(self):
        settings = BridgeSettings(codex_bin="/x/codex", extra_args=["--flag"])
        assert settings.app_server_command == ["/x/codex", "app-server", "--flag"]

    def test_env_timings(self, monkeypatch):
        monkeypatch.setenv("ANYCLAW_KEEPALIVE_SECONDS", "2.5")
        monkeypatch.setenv("ANYCLAW_KILL_GRACE_SECONDS", "0.25")
        settings = BridgeSettings.resolve()
        assert settings.keepalive_seconds == 2.5
        assert settings.kill_grace_seconds == 0.25

    @pytest.mark.parametrize("raw", ["soon", "0", "-3"])
    def test_bad_env_timings_fall_back(self, monkeypatch, raw):
        monkeypatch.setenv("ANYCLAW_KEEPALIVE_SECONDS", raw)
        assert BridgeSettings.resolve().keepalive_seconds == 15.0

    def test_explicit_timings_win(self, monkeypatch):
        monkeypatch.setenv("ANYCLAW_KEEPALIVE_SECONDS", "9")
        assert BridgeSettings.resolve(keepalive_seconds=1.0).keepalive_seconds == 1.0


class TestCommandLine:
    """Tests for the anyclaw entry point."""

    def test_parser_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.port == 3000
        assert args.host == "127.0.0.1"
        assert args.codex_bin is None
        assert args.log_level == "INFO"

    def test_log_level_from_env(self, monkeypatch):
        monkeypatch.setenv("ANYCLAW_LOG_LEVEL", "DEBUG")
        assert cli.build_parser().parse_args([]).log_level == "DEBUG"

    def test_main_runs_server_with_resolved_settings(self, monkeypatch):
        calls = {}

        def fake_run_server(host, port, settings):
            calls.update(host=host, port=port, settings=settings)

        monkeypatch.setattr(cli, "run_server", fake_run_server)
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: None)

        assert cli.main(["--port", "4100", "--codex-bin", "/opt/codex"]) == 0
        assert calls["port"] == 4100
        assert calls["host"] == "127.0.0.1"
        assert calls["settings"].codex_bin == "/opt/codex"
        assert calls["settings"].codex_bin_reason == "argument"

    def test_main_rejects_unknown_log_level(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "run_server", lambda **kwargs: pytest.fail("should not start"))
        assert cli.main(["--log-level", "chatty"]) == 1
        assert "Unknown log level" in capsys.readouterr().out

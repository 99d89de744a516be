from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
FAKE_APP_SERVER = Path(__file__).resolve().parent / "fake_app_server.py"

# Force current worktree src to the front of sys.path so imports use this tree,
# not any installed or sibling worktrees.
SRC_STR = str(SRC_PATH)
sys.path = [SRC_STR] + [p for p in sys.path if p != SRC_STR]


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path_factory, monkeypatch):
    """Keep UI state on disk per test and ignore the developer's overrides."""
    state_dir = tmp_path_factory.mktemp("ui_state")
    monkeypatch.setenv("ANYCLAW_UI_STATE", str(state_dir / "ui-state.json"))
    for name in (
        "ANYCLAW_CODEX_BIN",
        "ANYCLAW_KEEPALIVE_SECONDS",
        "ANYCLAW_KILL_GRACE_SECONDS",
        "ANYCLAW_LOG_LEVEL",
        "PREFIX",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def fake_codex(tmp_path) -> str:
    """Executable that behaves like ``codex`` for the ``app-server`` subcommands."""
    wrapper = tmp_path / "codex"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_APP_SERVER}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(wrapper)


@pytest.fixture
def bridge_settings(fake_codex):
    from anyclaw.util.config import BridgeSettings

    return BridgeSettings(codex_bin=fake_codex, codex_bin_reason="argument", kill_grace_seconds=1.0)

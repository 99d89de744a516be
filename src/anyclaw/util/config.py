"""Bridge configuration for AnyClaw."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from anyclaw import __version__

logger = logging.getLogger(__name__)

DEFAULT_KEEPALIVE_SECONDS = 15.0
DEFAULT_KILL_GRACE_SECONDS = 1.5
CLIENT_NAME = "codex-web-local"


def resolve_codex_command(codex_bin: str | None = None) -> tuple[str, str]:
    """Resolve the codex executable, preferring explicit overrides.

    Returns:
        Tuple of (command, reason)
    """
    if codex_bin:
        return codex_bin, "argument"

    env_bin = os.environ.get("ANYCLAW_CODEX_BIN")
    if env_bin:
        return env_bin, "env:ANYCLAW_CODEX_BIN"

    prefix = os.environ.get("PREFIX")
    if prefix:
        return str(Path(prefix) / "bin" / "codex"), "env:PREFIX"

    return "codex", "path_default"


def _float_from_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r", name, raw)
        return default
    return value


@dataclass
class BridgeSettings:
    """Everything the bridge needs to launch and talk to the app-server."""

    codex_bin: str = "codex"
    codex_bin_reason: str = "path_default"
    keepalive_seconds: float = DEFAULT_KEEPALIVE_SECONDS
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS
    client_name: str = CLIENT_NAME
    client_version: str = __version__
    extra_args: list[str] = field(default_factory=list)

    @property
    def app_server_command(self) -> list[str]:
        return [self.codex_bin, "app-server", *self.extra_args]

    @property
    def client_info(self) -> dict[str, str]:
        return {"name": self.client_name, "version": self.client_version}

    @classmethod
    def resolve(
        cls,
        codex_bin: str | None = None,
        keepalive_seconds: float | None = None,
        kill_grace_seconds: float | None = None,
    ) -> "BridgeSettings":
        """Build settings from arguments, then environment, then defaults."""
        command, reason = resolve_codex_command(codex_bin)
        settings = cls(
            codex_bin=command,
            codex_bin_reason=reason,
            keepalive_seconds=keepalive_seconds
            or _float_from_env("ANYCLAW_KEEPALIVE_SECONDS", DEFAULT_KEEPALIVE_SECONDS),
            kill_grace_seconds=kill_grace_seconds
            or _float_from_env("ANYCLAW_KILL_GRACE_SECONDS", DEFAULT_KILL_GRACE_SECONDS),
        )
        logger.debug("Resolved codex binary %s (%s)", settings.codex_bin, settings.codex_bin_reason)
        return settings

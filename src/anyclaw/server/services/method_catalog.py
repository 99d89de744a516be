"""Introspection of the app-server method surface via its JSON schema."""

from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from pathlib import Path
from typing import Any

from anyclaw.util.config import BridgeSettings

from .errors import MethodCatalogError

logger = logging.getLogger(__name__)

CLIENT_REQUEST_SCHEMA = "ClientRequest.json"
SERVER_NOTIFICATION_SCHEMA = "ServerNotification.json"


def extract_method_names(schema: Any) -> list[str]:
    """Collect ``oneOf[].properties.method.enum`` strings, sorted and unique."""
    if not isinstance(schema, dict):
        return []
    variants = schema.get("oneOf")
    if not isinstance(variants, list):
        return []

    methods: set[str] = set()
    for variant in variants:
        if not isinstance(variant, dict):
            continue
        properties = variant.get("properties")
        method_def = properties.get("method") if isinstance(properties, dict) else None
        values = method_def.get("enum") if isinstance(method_def, dict) else None
        if not isinstance(values, list):
            continue
        methods.update(value for value in values if isinstance(value, str) and value)
    return sorted(methods)


class MethodCatalog:
    """Lists client methods and notification methods the app-server knows.

    The schema is generated once by ``codex app-server generate-json-schema``
    and both lists are cached for the life of the catalog.
    """

    def __init__(self, settings: BridgeSettings | None = None):
        self.settings = settings or BridgeSettings.resolve()
        self._methods: list[str] | None = None
        self._notifications: list[str] | None = None
        self._lock = asyncio.Lock()

    async def list_methods(self) -> list[str]:
        await self._load()
        return list(self._methods or [])

    async def list_notification_methods(self) -> list[str]:
        await self._load()
        return list(self._notifications or [])

    async def _load(self) -> None:
        async with self._lock:
            if self._methods is not None and self._notifications is not None:
                return
            with tempfile.TemporaryDirectory(prefix="anyclaw-schema-") as out_dir:
                await self._generate_schema(out_dir)
                self._methods = extract_method_names(
                    self._read_schema(Path(out_dir) / CLIENT_REQUEST_SCHEMA)
                )
                self._notifications = extract_method_names(
                    self._read_schema(Path(out_dir) / SERVER_NOTIFICATION_SCHEMA)
                )
            logger.info(
                "Loaded %d client methods and %d notification methods",
                len(self._methods),
                len(self._notifications),
            )

    async def _generate_schema(self, out_dir: str) -> None:
        command = [self.settings.codex_bin, "app-server", "generate-json-schema", "--out", out_dir]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise MethodCatalogError(f"Failed to run {command[0]}: {exc}") from exc

        _, stderr = await process.communicate()
        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise MethodCatalogError(
                detail or f"generate-json-schema exited with code {process.returncode}"
            )

    @staticmethod
    def _read_schema(path: Path) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise MethodCatalogError(f"Could not read {path.name}: {exc}") from exc

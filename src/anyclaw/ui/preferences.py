"""Durable UI preferences stored in a local JSON file."""

from __future__ import annotations

import json
import logging
import math
import os
import tempfile
from pathlib import Path
from typing import Any

from .models import ThreadScrollState

logger = logging.getLogger(__name__)

READ_STATE_KEY = "thread_read_state"
SCROLL_STATE_KEY = "thread_scroll_state"
SELECTED_THREAD_KEY = "selected_thread_id"
PROJECT_ORDER_KEY = "project_order"
PROJECT_DISPLAY_NAME_KEY = "project_display_names"
AUTO_REFRESH_KEY = "auto_refresh_enabled"


def _finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def normalize_thread_scroll_state(value: Any) -> ThreadScrollState | None:
    """Validate a stored scroll position.

    ``scrollTop`` must be a finite number (floored at 0) and ``isAtBottom``
    a bool; ``scrollRatio`` is optional and clamped to 0..1.
    """
    if isinstance(value, ThreadScrollState):
        value = value.to_dict()
    if not isinstance(value, dict):
        return None
    scroll_top = value.get("scrollTop")
    is_at_bottom = value.get("isAtBottom")
    if not _finite(scroll_top) or not isinstance(is_at_bottom, bool):
        return None

    ratio = value.get("scrollRatio")
    return ThreadScrollState(
        scroll_top=max(0, scroll_top),
        is_at_bottom=is_at_bottom,
        scroll_ratio=min(max(ratio, 0), 1) if _finite(ratio) else None,
    )


class UiPreferences:
    """Reads and writes the client's persisted UI state.

    Every loader tolerates a missing or corrupt file and drops malformed
    entries instead of failing.
    """

    def __init__(self, path: Path | None = None):
        env_path = os.environ.get("ANYCLAW_UI_STATE")
        if path is not None:
            self.path = Path(path)
        elif env_path:
            self.path = Path(env_path)
        else:
            self.path = Path.home() / ".anyclaw" / "ui-state.json"

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not load UI state %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, data: dict[str, Any]) -> None:
        """Write the whole state atomically (temp file then rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".anyclaw_ui_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _get(self, key: str) -> Any:
        return self.load().get(key)

    def _set(self, key: str, value: Any) -> None:
        data = self.load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        try:
            self.save(data)
        except OSError as e:
            logger.warning("Could not save UI state %s: %s", self.path, e)

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def load_read_state(self) -> dict[str, str]:
        raw = self._get(READ_STATE_KEY)
        if not isinstance(raw, dict):
            return {}
        return {key: value for key, value in raw.items() if key and isinstance(value, str)}

    def save_read_state(self, state: dict[str, str]) -> None:
        self._set(READ_STATE_KEY, dict(state))

    def load_scroll_state(self) -> dict[str, ThreadScrollState]:
        raw = self._get(SCROLL_STATE_KEY)
        if not isinstance(raw, dict):
            return {}
        states = {}
        for thread_id, value in raw.items():
            state = normalize_thread_scroll_state(value)
            if thread_id and state is not None:
                states[thread_id] = state
        return states

    def save_scroll_state(self, state: dict[str, ThreadScrollState]) -> None:
        self._set(SCROLL_STATE_KEY, {key: value.to_dict() for key, value in state.items()})

    def load_selected_thread_id(self) -> str:
        value = self._get(SELECTED_THREAD_KEY)
        return value if isinstance(value, str) else ""

    def save_selected_thread_id(self, thread_id: str) -> None:
        self._set(SELECTED_THREAD_KEY, thread_id or None)

    def load_project_order(self) -> list[str]:
        raw = self._get(PROJECT_ORDER_KEY)
        if not isinstance(raw, list):
            return []
        order: list[str] = []
        for item in raw:
            if isinstance(item, str) and item and item not in order:
                order.append(item)
        return order

    def save_project_order(self, order: list[str]) -> None:
        self._set(PROJECT_ORDER_KEY, list(order))

    def load_project_display_names(self) -> dict[str, str]:
        raw = self._get(PROJECT_DISPLAY_NAME_KEY)
        if not isinstance(raw, dict):
            return {}
        return {key: value for key, value in raw.items() if key and isinstance(value, str)}

    def save_project_display_names(self, names: dict[str, str]) -> None:
        self._set(PROJECT_DISPLAY_NAME_KEY, dict(names))

    def load_auto_refresh_enabled(self) -> bool:
        return self._get(AUTO_REFRESH_KEY) is True

    def save_auto_refresh_enabled(self, enabled: bool) -> None:
        self._set(AUTO_REFRESH_KEY, bool(enabled))

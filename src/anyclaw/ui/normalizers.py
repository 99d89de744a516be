"""Conversion of app-server thread payloads into UI models."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any

from .models import UiMessage, UiProjectGroup, UiThread

UNKNOWN_PROJECT = "unknown-project"
UNTITLED_THREAD = "Untitled thread"

_REQUEST_MARKER = re.compile(
    r"(?:^|\n)\s{0,3}#{0,6}\s*my request for codex\s*:?\s*", re.IGNORECASE
)
_MARKDOWN_RULES = [
    (re.compile(r"\[([^\]]+)\]\([^)]*\)"), r"\1"),
    (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
    (re.compile(r"(?<!\*)\*(?!\*)(.+?)(?<!\*)\*(?!\*)"), r"\1"),
    (re.compile(r"~~(.+?)~~"), r"\1"),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"\s+"), " "),
]


def to_iso(seconds: Any) -> str:
    """Format a Unix timestamp in seconds as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    if not isinstance(seconds, (int, float)) or isinstance(seconds, bool):
        seconds = 0
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_project_name(cwd: str) -> str:
    parts = [part for part in cwd.split("/") if part]
    if parts:
        return parts[-1]
    return cwd or UNKNOWN_PROJECT


def strip_markdown(text: str) -> str:
    """Reduce inline markdown to plain text on a single line."""
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def extract_user_request_text(value: str) -> str:
    """Keep only the text after the last "my request for codex:" marker."""
    matches = list(_REQUEST_MARKER.finditer(value))
    if not matches:
        return value.strip()
    return value[matches[-1].end():].strip()


def _raw_payload(value: Any) -> str:
    try:
        return json.dumps(value, indent=2)
    except (TypeError, ValueError):
        return str(value)


def _thread_title(preview: Any) -> str:
    if isinstance(preview, str) and preview.strip():
        return strip_markdown(preview.strip())
    return UNTITLED_THREAD


def to_ui_thread(summary: dict[str, Any]) -> UiThread:
    cwd = summary.get("cwd") if isinstance(summary.get("cwd"), str) else ""
    preview = summary.get("preview") if isinstance(summary.get("preview"), str) else ""
    return UiThread(
        id=str(summary.get("id", "")),
        title=_thread_title(preview),
        project_name=to_project_name(cwd),
        cwd=cwd,
        created_at_iso=to_iso(summary.get("createdAt")),
        updated_at_iso=to_iso(summary.get("updatedAt")),
        preview=preview,
    )


def group_threads_by_project(threads: list[UiThread]) -> list[UiProjectGroup]:
    """Bucket threads by project, newest thread first, newest project first."""
    grouped: dict[str, list[UiThread]] = {}
    for thread in threads:
        grouped.setdefault(thread.project_name, []).append(thread)

    groups = [
        UiProjectGroup(
            project_name=name,
            threads=sorted(rows, key=lambda row: row.updated_at_iso, reverse=True),
        )
        for name, rows in grouped.items()
    ]
    groups.sort(key=lambda group: group.threads[0].updated_at_iso, reverse=True)
    return groups


def normalize_thread_groups(threads: list[dict[str, Any]]) -> list[UiProjectGroup]:
    """Turn ``thread/list`` rows into project groups."""
    return group_threads_by_project(
        [to_ui_thread(row) for row in threads if isinstance(row, dict)]
    )


def _parse_user_content(item_id: str, content: Any) -> tuple[str, list[str], list[UiMessage]]:
    if not isinstance(content, list):
        return "", [], []

    text_chunks: list[str] = []
    images: list[str] = []
    raw_blocks: list[UiMessage] = []

    for index, block in enumerate(content):
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        text = block.get("text")
        url = block.get("url")
        if block_type == "text":
            if isinstance(text, str) and text:
                text_chunks.append(text)
        elif block_type == "image":
            if isinstance(url, str) and url.strip():
                images.append(url.strip())
        else:
            raw_blocks.append(
                UiMessage(
                    id=f"{item_id}:user-content:{index}",
                    role="user",
                    text="",
                    message_type=f"userContent.{block_type}",
                    raw_payload=_raw_payload(block),
                    is_unhandled=True,
                )
            )

    return extract_user_request_text("\n".join(text_chunks)), images, raw_blocks


def to_ui_messages(item: dict[str, Any]) -> list[UiMessage]:
    item_type = item.get("type")
    item_id = str(item.get("id", ""))

    if item_type == "agentMessage":
        text = item.get("text")
        return [
            UiMessage(
                id=item_id,
                role="assistant",
                text=text if isinstance(text, str) else "",
                message_type="agentMessage",
            )
        ]

    if item_type == "userMessage":
        text, images, raw_blocks = _parse_user_content(item_id, item.get("content"))
        messages: list[UiMessage] = []
        if text or images:
            messages.append(
                UiMessage(id=item_id, role="user", text=text, images=images, message_type="userMessage")
            )
        messages.extend(raw_blocks)
        return messages

    # Reasoning and tool items are not part of the transcript
    return []


def normalize_thread_messages(payload: dict[str, Any]) -> list[UiMessage]:
    """Flatten a ``thread/read`` result into transcript messages."""
    thread = payload.get("thread") if isinstance(payload, dict) else None
    turns = thread.get("turns") if isinstance(thread, dict) else None
    if not isinstance(turns, list):
        return []

    messages: list[UiMessage] = []
    for turn in turns:
        items = turn.get("items") if isinstance(turn, dict) else None
        if not isinstance(items, list):
            continue
        for item in items:
            if isinstance(item, dict):
                messages.extend(to_ui_messages(item))
    return messages

"""Identity-preserving merges for threads, messages and project order.

Every function here returns its input list unchanged (the same object) when
nothing changed, and otherwise reuses the earlier object for every entry
whose fields are equal. Callers detect changes with ``is``.
"""

from __future__ import annotations

import math
import re
from typing import TypeVar

from .models import (
    LIVE_AGENT_MESSAGE_TYPE,
    WORKED_MESSAGE_TYPE,
    TurnSummary,
    UiMessage,
    UiProjectGroup,
)

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")


def same_items(first: list, second: list) -> bool:
    """True when both lists hold the very same objects in the same order."""
    return len(first) == len(second) and all(a is b for a, b in zip(first, second))


def normalize_message_text(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def merge_messages(
    previous: list[UiMessage],
    incoming: list[UiMessage],
    preserve_missing: bool = False,
) -> list[UiMessage]:
    """Merge a freshly loaded transcript into the one already shown.

    With ``preserve_missing`` false the incoming list wins and previously
    seen ids that are absent are dropped. With it true those ids are kept in
    place and new ids are appended.
    """
    previous_by_id = {message.id: message for message in previous}
    incoming_by_id = {message.id: message for message in incoming}

    merged_incoming = []
    for message in incoming:
        earlier = previous_by_id.get(message.id)
        merged_incoming.append(earlier if earlier is not None and earlier == message else message)

    if not preserve_missing:
        return previous if same_items(previous, merged_incoming) else merged_incoming

    merged = []
    for message in previous:
        replacement = incoming_by_id.get(message.id)
        if replacement is None or replacement == message:
            merged.append(message)
        else:
            merged.append(replacement)
    merged.extend(message for message in merged_incoming if message.id not in previous_by_id)

    return previous if same_items(previous, merged) else merged


def upsert_message(previous: list[UiMessage], message: UiMessage) -> list[UiMessage]:
    """Replace the message with the same id, or append it."""
    for index, existing in enumerate(previous):
        if existing.id == message.id:
            if existing == message:
                return previous
            updated = list(previous)
            updated[index] = message
            return updated
    return [*previous, message]


def remove_redundant_live_agent_messages(
    previous: list[UiMessage], incoming: list[UiMessage]
) -> list[UiMessage]:
    """Drop live messages whose text has now arrived as a persisted reply.

    Empty live messages are dropped too, but only when the incoming list has
    at least one assistant message.
    """
    assistant_texts = {
        normalize_message_text(message.text)
        for message in incoming
        if message.role == "assistant"
    }
    assistant_texts.discard("")
    if not assistant_texts:
        return previous

    kept = []
    for message in previous:
        if message.message_type != LIVE_AGENT_MESSAGE_TYPE:
            kept.append(message)
            continue
        text = normalize_message_text(message.text)
        if text and text not in assistant_texts:
            kept.append(message)

    return previous if len(kept) == len(previous) else kept


def merge_thread_groups(
    previous: list[UiProjectGroup], incoming: list[UiProjectGroup]
) -> list[UiProjectGroup]:
    previous_by_name = {group.project_name: group for group in previous}
    merged_groups = []

    for group in incoming:
        earlier_group = previous_by_name.get(group.project_name)
        earlier_threads = {thread.id: thread for thread in earlier_group.threads} if earlier_group else {}

        threads = []
        for thread in group.threads:
            earlier = earlier_threads.get(thread.id)
            threads.append(earlier if earlier is not None and earlier == thread else thread)

        if earlier_group is not None and same_items(earlier_group.threads, threads):
            merged_groups.append(earlier_group)
        else:
            merged_groups.append(UiProjectGroup(project_name=group.project_name, threads=threads))

    return previous if same_items(previous, merged_groups) else merged_groups


def merge_project_order(previous_order: list[str], groups: list[UiProjectGroup]) -> list[str]:
    """Append projects not seen before to the end of the saved order."""
    order = list(previous_order)
    for group in groups:
        if group.project_name not in order:
            order.append(group.project_name)
    return previous_order if order == previous_order else order


def order_groups_by_project_order(
    groups: list[UiProjectGroup], project_order: list[str]
) -> list[UiProjectGroup]:
    """Lay groups out in saved order.

    Saved projects without threads get an empty group. Groups missing from
    the saved order keep their relative order at the end.
    """
    by_name = {group.project_name: group for group in groups}
    ordered = [by_name.get(name) or UiProjectGroup(project_name=name) for name in project_order]
    ordered.extend(group for group in groups if group.project_name not in project_order)
    return ordered


def reorder_items(items: list[T], from_index: int, to_index: int) -> list[T]:
    """Move one item; out-of-range or no-op moves return ``items`` itself."""
    size = len(items)
    if not (0 <= from_index < size and 0 <= to_index < size) or from_index == to_index:
        return items
    moved = list(items)
    moved.insert(to_index, moved.pop(from_index))
    return moved


def format_turn_duration(duration_ms: float) -> str:
    """Render a duration as e.g. ``5s``, ``2m 0s`` or ``1h 0m 3s``."""
    if not isinstance(duration_ms, (int, float)) or not math.isfinite(duration_ms) or duration_ms <= 0:
        return "<1s"

    total_seconds = max(1, int(duration_ms / 1000 + 0.5))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or hours > 0:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def build_turn_summary_message(summary: TurnSummary) -> UiMessage:
    return UiMessage(
        id=f"turn-summary:{summary.turn_id}",
        role="system",
        text=f"Worked for {format_turn_duration(summary.duration_ms)}",
        message_type=WORKED_MESSAGE_TYPE,
    )


def insert_turn_summary_message(messages: list[UiMessage], summary: TurnSummary) -> list[UiMessage]:
    """Place the "Worked for" line right after the last assistant reply.

    Any earlier summary line is removed first. Without an assistant reply
    the line goes at the end.
    """
    summary_message = build_turn_summary_message(summary)
    remaining = [message for message in messages if message.message_type != WORKED_MESSAGE_TYPE]

    for index in range(len(remaining) - 1, -1, -1):
        if remaining[index].role == "assistant":
            return [*remaining[: index + 1], summary_message, *remaining[index + 1 :]]
    return [*remaining, summary_message]


def prune_thread_state_map(state: dict[str, T], thread_ids: set[str]) -> dict[str, T]:
    """Keep only entries for live threads; unchanged maps come back as-is."""
    pruned = {thread_id: value for thread_id, value in state.items() if thread_id in thread_ids}
    return state if len(pruned) == len(state) else pruned

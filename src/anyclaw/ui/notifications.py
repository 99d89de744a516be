"""Narrow readers over app-server notification payloads.

Notification params are open-ended JSON. Each reader checks exactly the
fields it needs and returns an empty value when they are missing or have
the wrong type.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .models import (
    GLOBAL_SERVER_REQUEST_SCOPE,
    LIVE_AGENT_MESSAGE_TYPE,
    RpcNotification,
    TurnActivity,
    UiMessage,
    UiServerRequest,
)

logger = logging.getLogger(__name__)

# Durations from different sources further apart than this are logged
DURATION_ANOMALY_MS = 2000

_STRUCTURAL_PREFIXES = ("thread/", "turn/", "item/")


@dataclass
class TurnStartedInfo:
    thread_id: str
    turn_id: str
    started_at_ms: float


@dataclass
class TurnCompletedInfo:
    thread_id: str
    turn_id: str
    completed_at_ms: float
    started_at_ms: float | None = None


def as_record(value: Any) -> dict[str, Any] | None:
    return value if isinstance(value, dict) else None


def read_string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def read_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def read_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def parse_iso_timestamp(value: str) -> float | None:
    """Milliseconds since the epoch, or None for empty or unparseable text."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp() * 1000


def now_ms() -> float:
    return time.time() * 1000


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def is_structural(method: str) -> bool:
    """Methods that can change the thread list."""
    return method.startswith(_STRUCTURAL_PREFIXES)


def extract_thread_id(notification: RpcNotification) -> str:
    params = as_record(notification.params)
    if params is None:
        return ""

    for key in ("threadId", "thread_id", "conversationId", "conversation_id"):
        value = read_string(params.get(key))
        if value:
            return value

    thread = as_record(params.get("thread")) or {}
    value = read_string(thread.get("id"))
    if value:
        return value

    turn = as_record(params.get("turn")) or {}
    for key in ("threadId", "thread_id"):
        value = read_string(turn.get(key))
        if value:
            return value

    return ""


def _item(notification: RpcNotification) -> dict[str, Any]:
    params = as_record(notification.params) or {}
    return as_record(params.get("item")) or {}


def _turn_id(notification: RpcNotification, thread_id: str) -> str:
    params = as_record(notification.params) or {}
    turn = as_record(params.get("turn")) or {}
    return read_string(turn.get("id")) or read_string(params.get("turnId")) or f"{thread_id}:unknown"


def _turn_timestamp(notification: RpcNotification, key: str) -> float | None:
    params = as_record(notification.params) or {}
    turn = as_record(params.get("turn")) or {}
    stamp = parse_iso_timestamp(read_string(turn.get(key)))
    if stamp is None:
        stamp = parse_iso_timestamp(read_string(params.get(key)))
    return stamp


# ----------------------------------------------------------------------
# Turns
# ----------------------------------------------------------------------


def read_turn_started(notification: RpcNotification) -> TurnStartedInfo | None:
    if notification.method != "turn/started" or as_record(notification.params) is None:
        return None
    thread_id = extract_thread_id(notification)
    if not thread_id:
        return None

    started_at_ms = _turn_timestamp(notification, "startedAt")
    if started_at_ms is None:
        started_at_ms = parse_iso_timestamp(notification.at_iso)
    if started_at_ms is None:
        started_at_ms = now_ms()

    return TurnStartedInfo(
        thread_id=thread_id,
        turn_id=_turn_id(notification, thread_id),
        started_at_ms=started_at_ms,
    )


def read_turn_completed(notification: RpcNotification) -> TurnCompletedInfo | None:
    if notification.method != "turn/completed" or as_record(notification.params) is None:
        return None
    thread_id = extract_thread_id(notification)
    if not thread_id:
        return None

    completed_at_ms = _turn_timestamp(notification, "completedAt")
    if completed_at_ms is None:
        completed_at_ms = parse_iso_timestamp(notification.at_iso)
    if completed_at_ms is None:
        completed_at_ms = now_ms()

    return TurnCompletedInfo(
        thread_id=thread_id,
        turn_id=_turn_id(notification, thread_id),
        completed_at_ms=completed_at_ms,
        started_at_ms=_turn_timestamp(notification, "startedAt"),
    )


def resolve_turn_duration(
    notification: RpcNotification,
    completed: TurnCompletedInfo,
    local_started_at_ms: float | None = None,
) -> float:
    """Pick the turn duration from the most authoritative available source.

    Preference: ``params.durationMs``, ``turn.durationMs``, turn payload
    timestamps, then the locally recorded start. Sources that disagree by
    more than two seconds are logged. The result is never negative.
    """
    params = as_record(notification.params) or {}
    turn = as_record(params.get("turn")) or {}

    candidates: list[tuple[str, float]] = []
    for source, value in (
        ("params.durationMs", read_number(params.get("durationMs"))),
        ("turn.durationMs", read_number(turn.get("durationMs"))),
    ):
        if value is not None:
            candidates.append((source, value))
    if completed.started_at_ms is not None:
        candidates.append(("turn timestamps", completed.completed_at_ms - completed.started_at_ms))
    if local_started_at_ms is not None:
        candidates.append(("local start", completed.completed_at_ms - local_started_at_ms))

    if not candidates:
        return 0

    chosen_source, chosen = candidates[0]
    for source, value in candidates[1:]:
        if abs(value - chosen) > DURATION_ANOMALY_MS:
            logger.warning(
                "Turn %s duration disagrees: %s=%.0fms, %s=%.0fms",
                completed.turn_id,
                chosen_source,
                chosen,
                source,
                value,
            )
    return max(0, chosen)


def read_turn_error_message(notification: RpcNotification) -> str:
    """Error text of a failed ``turn/completed``, else ""."""
    if notification.method != "turn/completed":
        return ""
    params = as_record(notification.params) or {}
    turn = as_record(params.get("turn"))
    if turn is None or turn.get("status") != "failed":
        return ""
    error = as_record(turn.get("error")) or {}
    return read_string(error.get("message"))


def read_turn_activity(notification: RpcNotification) -> tuple[str, TurnActivity] | None:
    """Activity label implied by a notification, paired with its thread id."""
    thread_id = extract_thread_id(notification)
    if not thread_id:
        return None

    method = notification.method
    label = ""
    if method == "turn/started":
        label = "Thinking"
    elif method == "item/started":
        item_type = read_string(_item(notification).get("type")).lower()
        if item_type == "reasoning":
            label = "Thinking"
        elif item_type == "agentmessage":
            label = "Writing response"
    elif method in ("item/reasoning/summaryTextDelta", "item/reasoning/summaryPartAdded"):
        label = "Thinking"
    elif method == "item/agentMessage/delta":
        label = "Writing response"

    if not label:
        return None
    return thread_id, TurnActivity(label=label)


# ----------------------------------------------------------------------
# Items
# ----------------------------------------------------------------------


def read_agent_message_delta(notification: RpcNotification) -> tuple[str, str] | None:
    """(item id, delta) of an ``item/agentMessage/delta``."""
    if notification.method != "item/agentMessage/delta":
        return None
    params = as_record(notification.params) or {}
    item_id = read_string(params.get("itemId"))
    delta = read_string(params.get("delta"))
    if not item_id or not delta:
        return None
    return item_id, delta


def read_agent_message_completed(notification: RpcNotification) -> UiMessage | None:
    if notification.method != "item/completed":
        return None
    item = _item(notification)
    if item.get("type") != "agentMessage":
        return None
    item_id = read_string(item.get("id"))
    text = read_string(item.get("text"))
    if not item_id or not text:
        return None
    return UiMessage(id=item_id, role="assistant", text=text, message_type=LIVE_AGENT_MESSAGE_TYPE)


def read_reasoning_delta(notification: RpcNotification) -> tuple[str, str] | None:
    """(item id, delta) of an ``item/reasoning/summaryTextDelta``."""
    if notification.method != "item/reasoning/summaryTextDelta":
        return None
    params = as_record(notification.params) or {}
    item_id = read_string(params.get("itemId"))
    delta = read_string(params.get("delta"))
    if not item_id or not delta:
        return None
    return item_id, delta


def read_reasoning_part_added(notification: RpcNotification) -> str:
    """Item id of an ``item/reasoning/summaryPartAdded``, else ""."""
    if notification.method != "item/reasoning/summaryPartAdded":
        return ""
    params = as_record(notification.params) or {}
    return read_string(params.get("itemId"))


def is_agent_content_event(notification: RpcNotification) -> bool:
    if notification.method == "item/agentMessage/delta":
        return True
    if notification.method == "item/completed":
        return _item(notification).get("type") == "agentMessage"
    return False


# ----------------------------------------------------------------------
# Server requests
# ----------------------------------------------------------------------


def normalize_server_request(value: Any) -> UiServerRequest | None:
    """Build a UI server request from a ``server/request`` payload.

    Requests without an integer id or a method are rejected. Requests whose
    params name no thread land in the global scope.
    """
    row = as_record(value)
    if row is None:
        return None

    request_id = read_int(row.get("id"))
    method = read_string(row.get("method"))
    if request_id is None or not method:
        return None

    params = row.get("params")
    record = as_record(params) or {}
    return UiServerRequest(
        id=request_id,
        method=method,
        thread_id=read_string(record.get("threadId")) or GLOBAL_SERVER_REQUEST_SCOPE,
        turn_id=read_string(record.get("turnId")),
        item_id=read_string(record.get("itemId")),
        received_at_iso=read_string(row.get("receivedAtIso")) or now_iso(),
        params=params,
    )


def read_resolved_server_request_id(notification: RpcNotification) -> int | None:
    if notification.method != "server/request/resolved":
        return None
    row = as_record(notification.params) or {}
    return read_int(row.get("id"))

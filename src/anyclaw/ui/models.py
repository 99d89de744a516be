"""UI-facing data model for the client state engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

REASONING_EFFORT_OPTIONS = ("none", "minimal", "low", "medium", "high", "xhigh")
GLOBAL_SERVER_REQUEST_SCOPE = "__global__"

WORKED_MESSAGE_TYPE = "worked"
LIVE_AGENT_MESSAGE_TYPE = "agentMessage.live"


@dataclass
class UiThread:
    """One conversation as shown in the sidebar."""

    id: str
    title: str
    project_name: str
    cwd: str
    created_at_iso: str
    updated_at_iso: str
    preview: str
    unread: bool = False
    in_progress: bool = False


@dataclass
class UiMessage:
    """A message in a thread transcript.

    Equality compares every field, which is what merges use to decide
    whether an earlier object can be kept.
    """

    id: str
    role: str  # user, assistant, system
    text: str
    images: list[str] = field(default_factory=list)
    message_type: str = ""
    raw_payload: str = ""
    is_unhandled: bool = False


@dataclass
class UiProjectGroup:
    project_name: str
    threads: list[UiThread] = field(default_factory=list)


@dataclass
class UiServerRequest:
    """A pending server request scoped to a thread, or to the global scope."""

    id: int
    method: str
    thread_id: str
    turn_id: str
    item_id: str
    received_at_iso: str
    params: Any = None


@dataclass
class ServerRequestReply:
    """The user's answer to a server request: a result or an error."""

    id: int
    result: Any = None
    error: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        if self.error is not None:
            return {"id": self.id, "error": self.error}
        return {"id": self.id, "result": self.result}


@dataclass
class TurnSummary:
    turn_id: str
    duration_ms: float


@dataclass
class TurnActivity:
    label: str
    details: list[str] = field(default_factory=list)


@dataclass
class TurnError:
    message: str


@dataclass
class ThreadScrollState:
    scroll_top: float
    is_at_bottom: bool
    scroll_ratio: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"scrollTop": self.scroll_top, "isAtBottom": self.is_at_bottom}
        if self.scroll_ratio is not None:
            data["scrollRatio"] = self.scroll_ratio
        return data


@dataclass
class LiveOverlay:
    """Transient status shown under the selected thread while a turn runs."""

    activity_label: str
    activity_details: list[str]
    reasoning_text: str
    error_text: str


@dataclass
class RpcNotification:
    """A notification as received from the bridge event stream."""

    method: str
    params: Any = None
    at_iso: str = ""


@dataclass
class ModelConfig:
    model: str = ""
    reasoning_effort: str = ""

"""Client-side reconciliation engine for threads, messages and live turn state.

:class:`DesktopState` combines two inputs: pull refreshes through
:class:`~anyclaw.ui.client.BridgeClient` and pushed notifications from the
bridge event stream. From them it keeps a normalized view of project groups,
the selected thread's transcript, live streaming text, and per-thread flags.
Everything runs on one event loop; background resyncs go through a
:class:`~anyclaw.ui.sync.ResyncScheduler` so at most one is in flight.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable

from .client import BridgeClient, BridgeRequestError, NotificationStream
from .merge import (
    insert_turn_summary_message,
    merge_messages,
    merge_project_order,
    merge_thread_groups,
    normalize_message_text,
    order_groups_by_project_order,
    prune_thread_state_map,
    remove_redundant_live_agent_messages,
    reorder_items,
    same_items,
    upsert_message,
)
from .models import (
    GLOBAL_SERVER_REQUEST_SCOPE,
    LIVE_AGENT_MESSAGE_TYPE,
    REASONING_EFFORT_OPTIONS,
    LiveOverlay,
    RpcNotification,
    ServerRequestReply,
    ThreadScrollState,
    TurnActivity,
    TurnError,
    TurnSummary,
    UiMessage,
    UiProjectGroup,
    UiServerRequest,
    UiThread,
)
from .notifications import (
    TurnStartedInfo,
    extract_thread_id,
    is_agent_content_event,
    is_structural,
    normalize_server_request,
    read_agent_message_completed,
    read_agent_message_delta,
    read_reasoning_delta,
    read_reasoning_part_added,
    read_resolved_server_request_id,
    read_turn_activity,
    read_turn_completed,
    read_turn_error_message,
    read_turn_started,
    resolve_turn_duration,
)
from .preferences import UiPreferences, normalize_thread_scroll_state
from .sync import EVENT_SYNC_DEBOUNCE_SECONDS, ResyncScheduler

logger = logging.getLogger(__name__)

AUTO_REFRESH_INTERVAL_SECONDS = 4
MAX_ACTIVITY_DETAILS = 3
DEFAULT_ACTIVITY_LABEL = "Thinking"


def flatten_threads(groups: list[UiProjectGroup]) -> list[UiThread]:
    return [thread for group in groups for thread in group.threads]


def _without(state: dict[str, Any], key: str) -> dict[str, Any]:
    if key not in state:
        return state
    return {k: v for k, v in state.items() if k != key}


def _error_text(exc: Exception, fallback: str) -> str:
    return str(exc) or fallback


class DesktopState:
    """Reconciled UI state for one client session.

    Thread-scoped maps are replaced rather than mutated, so a caller that
    kept a reference can compare it with ``is`` to detect changes.
    """

    def __init__(
        self,
        client: BridgeClient,
        stream: NotificationStream | None = None,
        preferences: UiPreferences | None = None,
        sync_delay: float = EVENT_SYNC_DEBOUNCE_SECONDS,
        auto_refresh_interval: float = AUTO_REFRESH_INTERVAL_SECONDS,
    ):
        self.client = client
        self.stream = stream
        self.preferences = preferences or UiPreferences()
        self.auto_refresh_interval = auto_refresh_interval

        self.project_groups: list[UiProjectGroup] = []
        self.source_groups: list[UiProjectGroup] = []
        self.selected_thread_id = self.preferences.load_selected_thread_id()
        self.persisted_messages: dict[str, list[UiMessage]] = {}
        self.live_agent_messages: dict[str, list[UiMessage]] = {}
        self.live_reasoning_text: dict[str, str] = {}
        self.in_progress: dict[str, bool] = {}
        self.event_unread: dict[str, bool] = {}
        self.available_model_ids: list[str] = []
        self.selected_model_id = ""
        self.selected_reasoning_effort = "medium"
        self.read_state: dict[str, str] = self.preferences.load_read_state()
        self.scroll_state: dict[str, ThreadScrollState] = self.preferences.load_scroll_state()
        self.project_order: list[str] = self.preferences.load_project_order()
        self.project_display_names: dict[str, str] = self.preferences.load_project_display_names()
        self.loaded_versions: dict[str, str] = {}
        self.loaded_messages: dict[str, bool] = {}
        self.resumed_threads: dict[str, bool] = {}
        self.turn_summaries: dict[str, TurnSummary] = {}
        self.turn_activities: dict[str, TurnActivity] = {}
        self.turn_errors: dict[str, TurnError] = {}
        self.active_turn_ids: dict[str, str] = {}
        self.pending_server_requests: dict[str, list[UiServerRequest]] = {}

        self.is_loading_threads = False
        self.is_loading_messages = False
        self.is_sending_message = False
        self.is_interrupting_turn = False
        self.has_loaded_threads = False
        self.error = ""
        self.is_auto_refresh_enabled = self.preferences.load_auto_refresh_enabled()
        self.auto_refresh_seconds_left = int(auto_refresh_interval)

        self._scheduler = ResyncScheduler(self._resync, delay=sync_delay)
        self._pending_threads_refresh = False
        self._pending_message_refresh: set[str] = set()
        self._pending_turn_starts: dict[str, TurnStartedInfo] = {}
        self._auto_scroll_on_next_agent_event = False
        self._stop_stream: Callable[[], None] | None = None
        self._auto_refresh_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def scheduler(self) -> ResyncScheduler:
        return self._scheduler

    @property
    def all_threads(self) -> list[UiThread]:
        return flatten_threads(self.project_groups)

    @property
    def selected_thread(self) -> UiThread | None:
        for thread in self.all_threads:
            if thread.id == self.selected_thread_id:
                return thread
        return None

    @property
    def selected_thread_scroll_state(self) -> ThreadScrollState | None:
        return self.scroll_state.get(self.selected_thread_id)

    @property
    def selected_thread_server_requests(self) -> list[UiServerRequest]:
        """Requests for the selected thread plus global ones, oldest first."""
        rows: list[UiServerRequest] = []
        if self.selected_thread_id:
            rows.extend(self.pending_server_requests.get(self.selected_thread_id, []))
        rows.extend(self.pending_server_requests.get(GLOBAL_SERVER_REQUEST_SCOPE, []))
        return sorted(rows, key=lambda row: row.received_at_iso)

    @property
    def selected_live_overlay(self) -> LiveOverlay | None:
        thread_id = self.selected_thread_id
        if not thread_id:
            return None

        activity = self.turn_activities.get(thread_id)
        reasoning = self.live_reasoning_text.get(thread_id, "").strip()
        error = self.turn_errors.get(thread_id)
        error_text = error.message.strip() if error else ""
        if activity is None and not reasoning and not error_text:
            return None

        return LiveOverlay(
            activity_label=(activity.label if activity else "") or DEFAULT_ACTIVITY_LABEL,
            activity_details=list(activity.details) if activity else [],
            reasoning_text=reasoning,
            error_text=error_text,
        )

    @property
    def messages(self) -> list[UiMessage]:
        """Transcript of the selected thread including live and summary lines."""
        thread_id = self.selected_thread_id
        if not thread_id:
            return []

        persisted = self.persisted_messages.get(thread_id, [])
        live = self.live_agent_messages.get(thread_id, [])
        combined = [*persisted, *live] if live else persisted

        summary = self.turn_summaries.get(thread_id)
        if summary is None:
            return combined
        return insert_turn_summary_message(combined, summary)

    def project_display_name(self, project_name: str) -> str:
        return self.project_display_names.get(project_name) or project_name

    # ------------------------------------------------------------------
    # Selection and preferences
    # ------------------------------------------------------------------

    def _set_selected_thread_id(self, thread_id: str) -> None:
        if self.selected_thread_id == thread_id:
            return
        self.selected_thread_id = thread_id
        self.preferences.save_selected_thread_id(thread_id)
        self._auto_scroll_on_next_agent_event = False

    def set_selected_model_id(self, model_id: str) -> None:
        self.selected_model_id = model_id.strip()

    def set_selected_reasoning_effort(self, effort: str) -> None:
        if effort and effort not in REASONING_EFFORT_OPTIONS:
            return
        self.selected_reasoning_effort = effort

    def set_thread_scroll_state(self, thread_id: str, state: ThreadScrollState | dict[str, Any]) -> None:
        if not thread_id:
            return
        normalized = normalize_thread_scroll_state(state)
        if normalized is None or self.scroll_state.get(thread_id) == normalized:
            return
        self.scroll_state = {**self.scroll_state, thread_id: normalized}
        self.preferences.save_scroll_state(self.scroll_state)

    def _pending_turn_details(self) -> list[str]:
        model = self.selected_model_id.strip() or "default"
        effort = self.selected_reasoning_effort or "default"
        return [f"Model: {model}", f"Thinking: {effort}"]

    async def refresh_model_preferences(self) -> None:
        """Load model ids and the configured default; failures keep the old values."""
        try:
            model_ids, config = await asyncio.gather(
                self.client.list_model_ids(),
                self.client.read_model_config(),
            )
        except BridgeRequestError as exc:
            logger.debug("Model metadata unavailable: %s", exc)
            return

        self.available_model_ids = model_ids
        if not (self.selected_model_id and self.selected_model_id in model_ids):
            if config.model and config.model in model_ids:
                self.selected_model_id = config.model
            else:
                self.selected_model_id = model_ids[0] if model_ids else ""

        if config.reasoning_effort in REASONING_EFFORT_OPTIONS:
            self.selected_reasoning_effort = config.reasoning_effort

    # ------------------------------------------------------------------
    # Thread flags
    # ------------------------------------------------------------------

    def apply_thread_flags(self) -> None:
        """Recompute unread and in-progress for every thread."""
        flagged = []
        for group in self.source_groups:
            threads = []
            for thread in group.threads:
                in_progress = self.in_progress.get(thread.id) is True
                selected = thread.id == self.selected_thread_id
                unread_by_event = self.event_unread.get(thread.id) is True
                unread = (
                    not selected
                    and not in_progress
                    and (unread_by_event or self.read_state.get(thread.id) != thread.updated_at_iso)
                )
                threads.append(replace(thread, in_progress=in_progress, unread=unread))
            flagged.append(UiProjectGroup(project_name=group.project_name, threads=threads))
        self.project_groups = merge_thread_groups(self.project_groups, flagged)

    def mark_thread_as_read(self, thread_id: str) -> None:
        thread = next((row for row in flatten_threads(self.source_groups) if row.id == thread_id), None)
        if thread is None:
            return
        self.read_state = {**self.read_state, thread_id: thread.updated_at_iso}
        self.preferences.save_read_state(self.read_state)
        self.event_unread = _without(self.event_unread, thread_id)
        self.apply_thread_flags()

    def _set_thread_in_progress(self, thread_id: str, in_progress: bool) -> None:
        if not thread_id or (self.in_progress.get(thread_id) is True) == in_progress:
            return
        if in_progress:
            self.in_progress = {**self.in_progress, thread_id: True}
        else:
            self.in_progress = _without(self.in_progress, thread_id)
        self.apply_thread_flags()

    def _mark_thread_unread_by_event(self, thread_id: str) -> None:
        if not thread_id or thread_id == self.selected_thread_id or self.event_unread.get(thread_id):
            return
        self.event_unread = {**self.event_unread, thread_id: True}
        self.apply_thread_flags()

    def _current_thread_version(self, thread_id: str) -> str:
        for thread in flatten_threads(self.source_groups):
            if thread.id == thread_id:
                return thread.updated_at_iso
        return ""

    def _prune_thread_scoped_state(self, threads: list[UiThread]) -> None:
        thread_ids = {thread.id for thread in threads}

        read_state = prune_thread_state_map(self.read_state, thread_ids)
        if read_state is not self.read_state:
            self.read_state = read_state
            self.preferences.save_read_state(read_state)
        scroll_state = prune_thread_state_map(self.scroll_state, thread_ids)
        if scroll_state is not self.scroll_state:
            self.scroll_state = scroll_state
            self.preferences.save_scroll_state(scroll_state)

        self.loaded_messages = prune_thread_state_map(self.loaded_messages, thread_ids)
        self.loaded_versions = prune_thread_state_map(self.loaded_versions, thread_ids)
        self.resumed_threads = prune_thread_state_map(self.resumed_threads, thread_ids)
        self.persisted_messages = prune_thread_state_map(self.persisted_messages, thread_ids)
        self.live_agent_messages = prune_thread_state_map(self.live_agent_messages, thread_ids)
        self.live_reasoning_text = prune_thread_state_map(self.live_reasoning_text, thread_ids)
        self.turn_summaries = prune_thread_state_map(self.turn_summaries, thread_ids)
        self.turn_activities = prune_thread_state_map(self.turn_activities, thread_ids)
        self.turn_errors = prune_thread_state_map(self.turn_errors, thread_ids)
        self.active_turn_ids = prune_thread_state_map(self.active_turn_ids, thread_ids)
        self.event_unread = prune_thread_state_map(self.event_unread, thread_ids)
        self.in_progress = prune_thread_state_map(self.in_progress, thread_ids)
        self._pending_turn_starts = {
            turn_id: started
            for turn_id, started in self._pending_turn_starts.items()
            if started.thread_id in thread_ids
        }
        self.pending_server_requests = prune_thread_state_map(
            self.pending_server_requests, thread_ids | {GLOBAL_SERVER_REQUEST_SCOPE}
        )

    def _select_first_thread_if_missing(self) -> None:
        threads = flatten_threads(self.project_groups)
        self._prune_thread_scoped_state(threads)
        if not any(thread.id == self.selected_thread_id for thread in threads):
            self._set_selected_thread_id(threads[0].id if threads else "")

    # ------------------------------------------------------------------
    # Turn state
    # ------------------------------------------------------------------

    def _set_turn_summary(self, thread_id: str, summary: TurnSummary | None) -> None:
        if not thread_id:
            return
        if summary is None:
            self.turn_summaries = _without(self.turn_summaries, thread_id)
        elif self.turn_summaries.get(thread_id) != summary:
            self.turn_summaries = {**self.turn_summaries, thread_id: summary}

    def _set_turn_activity(self, thread_id: str, activity: TurnActivity | None) -> None:
        """Set the activity label; details accumulate and keep the last three."""
        if not thread_id:
            return
        previous = self.turn_activities.get(thread_id)
        if activity is None:
            self.turn_activities = _without(self.turn_activities, thread_id)
            return

        label = normalize_message_text(activity.label) or DEFAULT_ACTIVITY_LABEL
        details: list[str] = list(previous.details) if previous else []
        for line in activity.details:
            text = normalize_message_text(line)
            if text and text != label and text not in details:
                details.append(text)
        updated = TurnActivity(label=label, details=details[-MAX_ACTIVITY_DETAILS:])

        if previous != updated:
            self.turn_activities = {**self.turn_activities, thread_id: updated}

    def _set_turn_error(self, thread_id: str, message: str | None) -> None:
        if not thread_id:
            return
        text = normalize_message_text(message) if message else ""
        if not text:
            self.turn_errors = _without(self.turn_errors, thread_id)
        elif self.turn_errors.get(thread_id) != TurnError(text):
            self.turn_errors = {**self.turn_errors, thread_id: TurnError(text)}

    def _clear_active_turn(self, thread_id: str) -> None:
        self.active_turn_ids = _without(self.active_turn_ids, thread_id)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _set_persisted_messages(self, thread_id: str, messages: list[UiMessage]) -> None:
        if not same_items(self.persisted_messages.get(thread_id, []), messages):
            self.persisted_messages = {**self.persisted_messages, thread_id: messages}

    def _set_live_agent_messages(self, thread_id: str, messages: list[UiMessage]) -> None:
        if not same_items(self.live_agent_messages.get(thread_id, []), messages):
            self.live_agent_messages = {**self.live_agent_messages, thread_id: messages}

    def _upsert_live_agent_message(self, thread_id: str, message: UiMessage) -> None:
        previous = self.live_agent_messages.get(thread_id, [])
        self._set_live_agent_messages(thread_id, upsert_message(previous, message))

    def _set_live_reasoning_text(self, thread_id: str, text: str) -> None:
        if not text.strip():
            self.live_reasoning_text = _without(self.live_reasoning_text, thread_id)
        elif self.live_reasoning_text.get(thread_id) != text:
            self.live_reasoning_text = {**self.live_reasoning_text, thread_id: text}

    def _clear_live_reasoning(self, thread_id: str) -> None:
        self.live_reasoning_text = _without(self.live_reasoning_text, thread_id)

    # ------------------------------------------------------------------
    # Server requests
    # ------------------------------------------------------------------

    def _upsert_pending_server_request(self, request: UiServerRequest) -> None:
        scope = request.thread_id or GLOBAL_SERVER_REQUEST_SCOPE
        rows = [row for row in self.pending_server_requests.get(scope, []) if row.id != request.id]
        rows.append(request)
        rows.sort(key=lambda row: row.received_at_iso)
        self.pending_server_requests = {**self.pending_server_requests, scope: rows}

    def _remove_pending_server_request(self, request_id: int) -> None:
        remaining: dict[str, list[UiServerRequest]] = {}
        for scope, rows in self.pending_server_requests.items():
            kept = [row for row in rows if row.id != request_id]
            if kept:
                remaining[scope] = kept
        self.pending_server_requests = remaining

    def _handle_server_request_notification(self, notification: RpcNotification) -> bool:
        if notification.method == "server/request":
            request = normalize_server_request(notification.params)
            if request is not None:
                self._upsert_pending_server_request(request)
            return True
        if notification.method == "server/request/resolved":
            request_id = read_resolved_server_request_id(notification)
            if request_id is not None:
                self._remove_pending_server_request(request_id)
            return True
        return False

    async def load_pending_server_requests(self) -> None:
        """Pick up requests that arrived before the event stream connected."""
        try:
            rows = await self.client.list_pending_server_requests()
        except BridgeRequestError as exc:
            logger.debug("Pending server requests unavailable: %s", exc)
            return
        for row in rows:
            request = normalize_server_request(row)
            if request is not None:
                self._upsert_pending_server_request(request)

    async def respond_to_pending_server_request(self, reply: ServerRequestReply) -> None:
        try:
            await self.client.reply_to_server_request(reply)
        except BridgeRequestError as exc:
            self.error = _error_text(exc, "Failed to reply to server request")
            return
        self._remove_pending_server_request(reply.id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def handle_notification(self, notification: RpcNotification) -> None:
        """Stream callback: apply the notification and queue a resync."""
        self.apply_notification(notification)
        self.queue_event_driven_sync(notification)

    def apply_notification(self, notification: RpcNotification) -> None:
        """Apply one notification to the live state."""
        if self._handle_server_request_notification(notification):
            return

        turn_activity = read_turn_activity(notification)
        if turn_activity is not None:
            self._set_turn_activity(*turn_activity)

        started = read_turn_started(notification)
        if started is not None:
            self._pending_turn_starts[started.turn_id] = started
            self.active_turn_ids = {**self.active_turn_ids, started.thread_id: started.turn_id}
            self._set_turn_summary(started.thread_id, None)
            self._set_turn_error(started.thread_id, None)
            self._set_thread_in_progress(started.thread_id, True)
            self.event_unread = _without(self.event_unread, started.thread_id)

        completed = read_turn_completed(notification)
        if completed is not None:
            local_start = self._pending_turn_starts.pop(completed.turn_id, None)
            duration_ms = resolve_turn_duration(
                notification,
                completed,
                local_start.started_at_ms if local_start else None,
            )
            self._set_turn_summary(
                completed.thread_id, TurnSummary(turn_id=completed.turn_id, duration_ms=duration_ms)
            )
            self._clear_active_turn(completed.thread_id)
            self._set_thread_in_progress(completed.thread_id, False)
            self._set_turn_activity(completed.thread_id, None)
            self._mark_thread_unread_by_event(completed.thread_id)

        turn_error = read_turn_error_message(notification)
        if turn_error:
            failed_thread_id = completed.thread_id if completed else extract_thread_id(notification)
            self._set_turn_error(failed_thread_id, turn_error)
            self.error = turn_error
        elif completed is not None:
            self._set_turn_error(completed.thread_id, None)

        thread_id = extract_thread_id(notification)
        if not thread_id or thread_id != self.selected_thread_id:
            return
        self._apply_selected_thread_stream(thread_id, notification)

    def _apply_selected_thread_stream(self, thread_id: str, notification: RpcNotification) -> None:
        agent_delta = read_agent_message_delta(notification)
        if agent_delta is not None:
            item_id, delta = agent_delta
            existing = next(
                (m for m in self.live_agent_messages.get(thread_id, []) if m.id == item_id), None
            )
            self._upsert_live_agent_message(
                thread_id,
                UiMessage(
                    id=item_id,
                    role="assistant",
                    text=(existing.text if existing else "") + delta,
                    message_type=LIVE_AGENT_MESSAGE_TYPE,
                ),
            )

        completed_message = read_agent_message_completed(notification)
        if completed_message is not None:
            self._upsert_live_agent_message(thread_id, completed_message)

        reasoning_delta = read_reasoning_delta(notification)
        if reasoning_delta is not None:
            current = self.live_reasoning_text.get(thread_id, "")
            self._set_live_reasoning_text(thread_id, current + reasoning_delta[1])

        if read_reasoning_part_added(notification):
            current = self.live_reasoning_text.get(thread_id, "")
            if current.strip() and not current.endswith("\n\n"):
                self._set_live_reasoning_text(thread_id, current + "\n\n")

        if is_agent_content_event(notification):
            if self._auto_scroll_on_next_agent_event:
                self.set_thread_scroll_state(
                    thread_id, ThreadScrollState(scroll_top=0, is_at_bottom=True, scroll_ratio=1)
                )
                self._auto_scroll_on_next_agent_event = False
            self._clear_live_reasoning(thread_id)

        if notification.method == "turn/completed":
            self._auto_scroll_on_next_agent_event = False
            self._clear_live_reasoning(thread_id)

    def queue_event_driven_sync(self, notification: RpcNotification) -> None:
        """Mark the notification's thread dirty and schedule a debounced resync."""
        thread_id = extract_thread_id(notification)
        if thread_id:
            self._pending_message_refresh.add(thread_id)
        if is_structural(notification.method):
            self._pending_threads_refresh = True
        self._scheduler.request()

    async def sync_from_notifications(self) -> None:
        """Resync now, or fold into the trailing run if one is in flight."""
        await self._scheduler.run_now()

    async def _resync(self) -> None:
        refresh_threads = self._pending_threads_refresh
        dirty_threads = set(self._pending_message_refresh)
        self._pending_threads_refresh = False
        self._pending_message_refresh.clear()

        if refresh_threads:
            await self.load_threads()

        thread_id = self.selected_thread_id
        if not thread_id:
            return
        if (
            thread_id in dirty_threads
            or self.in_progress.get(thread_id) is True
            or self._has_version_change(thread_id)
            or refresh_threads
        ):
            await self.load_messages(thread_id, silent=True)

    async def sync_thread_status(self) -> None:
        """Poll once unless a sync is already running."""
        await self._scheduler.try_run(self._poll_thread_status)

    async def _poll_thread_status(self) -> None:
        await self.load_threads()
        thread_id = self.selected_thread_id
        if not thread_id:
            return
        if self.in_progress.get(thread_id) is True or self._has_version_change(thread_id):
            await self.load_messages(thread_id, silent=True)

    def _has_version_change(self, thread_id: str) -> bool:
        current = self._current_thread_version(thread_id)
        return bool(current) and current != self.loaded_versions.get(thread_id, "")

    # ------------------------------------------------------------------
    # Pull refresh
    # ------------------------------------------------------------------

    async def load_threads(self) -> None:
        if not self.has_loaded_threads:
            self.is_loading_threads = True
        try:
            groups = await self.client.list_thread_groups()

            order = merge_project_order(self.project_order, groups)
            if order is not self.project_order:
                self.project_order = order
                self.preferences.save_project_order(order)

            ordered = order_groups_by_project_order(groups, self.project_order)
            self.source_groups = merge_thread_groups(self.source_groups, ordered)
            self.apply_thread_flags()
            self.has_loaded_threads = True
            self._select_first_thread_if_missing()
        finally:
            self.is_loading_threads = False

    async def load_messages(self, thread_id: str, silent: bool = False) -> None:
        """Load a thread's transcript.

        Explicit loads replace the transcript. Silent background loads keep
        messages the server did not return.
        """
        if not thread_id:
            return

        show_loading = not silent and not self.loaded_messages.get(thread_id)
        if show_loading:
            self.is_loading_messages = True
        try:
            if not self.resumed_threads.get(thread_id):
                await self.client.resume_thread(thread_id)
                self.resumed_threads = {**self.resumed_threads, thread_id: True}

            incoming = await self.client.read_thread_messages(thread_id)
            merged = merge_messages(
                self.persisted_messages.get(thread_id, []), incoming, preserve_missing=silent
            )
            self._set_persisted_messages(thread_id, merged)
            self._set_live_agent_messages(
                thread_id,
                remove_redundant_live_agent_messages(self.live_agent_messages.get(thread_id, []), incoming),
            )
            self.loaded_messages = {**self.loaded_messages, thread_id: True}

            version = self._current_thread_version(thread_id)
            if version:
                self.loaded_versions = {**self.loaded_versions, thread_id: version}
            self.mark_thread_as_read(thread_id)
        finally:
            if show_loading:
                self.is_loading_messages = False

    async def refresh_all(self) -> None:
        self.error = ""
        try:
            await asyncio.gather(self.load_threads(), self.refresh_model_preferences())
            await self.load_messages(self.selected_thread_id)
        except BridgeRequestError as exc:
            self.error = _error_text(exc, "Unknown application error")

    async def select_thread(self, thread_id: str) -> None:
        self._set_selected_thread_id(thread_id)
        self.mark_thread_as_read(thread_id)
        try:
            await self.load_messages(thread_id)
        except BridgeRequestError as exc:
            self.error = _error_text(exc, "Unknown application error")

    async def archive_thread(self, thread_id: str) -> None:
        try:
            await self.client.archive_thread(thread_id)
            await self.load_threads()
            if self.selected_thread_id == thread_id:
                await self.load_messages(self.selected_thread_id)
        except BridgeRequestError as exc:
            self.error = _error_text(exc, "Unknown application error")

    # ------------------------------------------------------------------
    # Sending and interrupting
    # ------------------------------------------------------------------

    def _begin_pending_turn(self, thread_id: str) -> None:
        self._auto_scroll_on_next_agent_event = True
        self._set_turn_summary(thread_id, None)
        self._set_turn_activity(
            thread_id, TurnActivity(label="Thinking", details=self._pending_turn_details())
        )
        self._set_turn_error(thread_id, None)
        self._set_thread_in_progress(thread_id, True)

    def _rollback_pending_turn(self, thread_id: str, message: str) -> None:
        self._auto_scroll_on_next_agent_event = False
        if thread_id:
            self._set_thread_in_progress(thread_id, False)
            self._set_turn_activity(thread_id, None)
            self._set_turn_error(thread_id, message)
        self.error = message

    async def send_message_to_selected_thread(self, text: str) -> None:
        """Start a turn on the selected thread.

        The thread shows as in progress right away. If the call fails that
        state is rolled back, the error is recorded and the exception re-raised.
        """
        thread_id = self.selected_thread_id
        message = text.strip()
        if not thread_id or not message:
            return

        self.is_sending_message = True
        self.error = ""
        self._begin_pending_turn(thread_id)
        try:
            await self._start_turn_for_thread(thread_id, message)
        except BridgeRequestError as exc:
            self._rollback_pending_turn(thread_id, _error_text(exc, "Unknown application error"))
            raise
        finally:
            self.is_sending_message = False

    async def send_message_to_new_thread(self, text: str, cwd: str) -> str:
        """Start a thread in ``cwd``, send the first message, and return the thread id."""
        message = text.strip()
        if not message:
            return ""

        self.is_sending_message = True
        self.error = ""
        thread_id = ""
        try:
            thread_id = await self.client.start_thread(
                cwd.strip() or None, self.selected_model_id.strip() or None
            )
            if not thread_id:
                return ""

            self.resumed_threads = {**self.resumed_threads, thread_id: True}
            self._set_selected_thread_id(thread_id)
            self._begin_pending_turn(thread_id)
            await self._start_turn_for_thread(thread_id, message)
            return thread_id
        except BridgeRequestError as exc:
            self._rollback_pending_turn(thread_id, _error_text(exc, "Unknown application error"))
            raise
        finally:
            self.is_sending_message = False

    async def _start_turn_for_thread(self, thread_id: str, text: str) -> None:
        if not self.resumed_threads.get(thread_id):
            await self.client.resume_thread(thread_id)

        await self.client.start_turn(
            thread_id,
            text,
            self.selected_model_id.strip() or None,
            self.selected_reasoning_effort or None,
        )
        self.resumed_threads = {**self.resumed_threads, thread_id: True}

        self._pending_message_refresh.add(thread_id)
        self._pending_threads_refresh = True
        await self.sync_from_notifications()

    async def interrupt_selected_thread_turn(self) -> None:
        """Interrupt the running turn of the selected thread.

        On failure the error sticks to the thread and the in-progress flag is
        left alone, since the turn may still be running.
        """
        thread_id = self.selected_thread_id
        if not thread_id or self.in_progress.get(thread_id) is not True:
            return
        turn_id = self.active_turn_ids.get(thread_id)

        self.is_interrupting_turn = True
        self.error = ""
        try:
            await self.client.interrupt_turn(thread_id, turn_id)
        except BridgeRequestError as exc:
            message = _error_text(exc, "Failed to interrupt active turn")
            self._set_turn_error(thread_id, message)
            self.error = message
            return
        finally:
            self.is_interrupting_turn = False

        self._set_thread_in_progress(thread_id, False)
        self._set_turn_activity(thread_id, None)
        self._set_turn_error(thread_id, None)
        if turn_id:
            self._pending_turn_starts.pop(turn_id, None)
        self._clear_active_turn(thread_id)
        self._pending_message_refresh.add(thread_id)
        self._pending_threads_refresh = True
        await self.sync_from_notifications()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def rename_project(self, project_name: str, display_name: str) -> None:
        if not project_name or self.project_display_names.get(project_name, "") == display_name:
            return
        self.project_display_names = {**self.project_display_names, project_name: display_name}
        self.preferences.save_project_display_names(self.project_display_names)

    def remove_project(self, project_name: str) -> None:
        """Hide a project and drop all local state for its threads."""
        if not project_name:
            return

        order = [name for name in self.project_order if name != project_name]
        if order != self.project_order:
            self.project_order = order
            self.preferences.save_project_order(order)

        self.source_groups = [g for g in self.source_groups if g.project_name != project_name]

        if project_name in self.project_display_names:
            self.project_display_names = _without(self.project_display_names, project_name)
            self.preferences.save_project_display_names(self.project_display_names)

        self.apply_thread_flags()
        self._select_first_thread_if_missing()

    def reorder_project(self, project_name: str, to_index: int) -> None:
        if not project_name or project_name not in self.project_order:
            return

        from_index = self.project_order.index(project_name)
        to_index = max(0, min(to_index, len(self.project_order) - 1))
        order = reorder_items(self.project_order, from_index, to_index)
        if order is self.project_order:
            return

        self.project_order = order
        self.preferences.save_project_order(order)
        ordered = order_groups_by_project_order(self.source_groups, order)
        self.source_groups = merge_thread_groups(self.source_groups, ordered)
        self.apply_thread_flags()

    # ------------------------------------------------------------------
    # Live updates and auto refresh
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def start_polling(self) -> None:
        """Subscribe to the event stream and start auto refresh if enabled."""
        if self._stop_stream is not None:
            return
        if self.is_auto_refresh_enabled:
            self.start_auto_refresh()
        self._spawn(self.load_pending_server_requests())
        if self.stream is not None:
            self._stop_stream = self.stream.subscribe(self.handle_notification)

    def stop_polling(self) -> None:
        """Stop live updates and forget transient per-thread state."""
        self.stop_auto_refresh(update_preference=False)

        if self._stop_stream is not None:
            self._stop_stream()
            self._stop_stream = None

        self._pending_threads_refresh = False
        self._pending_message_refresh.clear()
        self._pending_turn_starts.clear()
        self._scheduler.cancel()
        self._auto_scroll_on_next_agent_event = False
        self.persisted_messages = {}
        self.live_agent_messages = {}
        self.live_reasoning_text = {}
        self.turn_activities = {}
        self.turn_summaries = {}
        self.turn_errors = {}
        self.active_turn_ids = {}

    def start_auto_refresh(self) -> None:
        if self._auto_refresh_task is not None and not self._auto_refresh_task.done():
            return
        self.is_auto_refresh_enabled = True
        self.preferences.save_auto_refresh_enabled(True)
        self.auto_refresh_seconds_left = int(self.auto_refresh_interval)
        self._auto_refresh_task = asyncio.ensure_future(self._auto_refresh_loop())

    def stop_auto_refresh(self, update_preference: bool = True) -> None:
        if self._auto_refresh_task is not None:
            self._auto_refresh_task.cancel()
            self._auto_refresh_task = None
        if update_preference:
            self.is_auto_refresh_enabled = False
            self.preferences.save_auto_refresh_enabled(False)
        self.auto_refresh_seconds_left = int(self.auto_refresh_interval)

    def toggle_auto_refresh(self) -> None:
        if self.is_auto_refresh_enabled:
            self.stop_auto_refresh()
        else:
            self.start_auto_refresh()

    async def _auto_refresh_loop(self) -> None:
        while True:
            remaining = float(self.auto_refresh_interval)
            self.auto_refresh_seconds_left = int(remaining)
            while remaining > 0:
                step = min(1.0, remaining)
                await asyncio.sleep(step)
                remaining -= step
                self.auto_refresh_seconds_left = max(0, self.auto_refresh_seconds_left - 1)
            await self.sync_thread_status()

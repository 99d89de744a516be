"""Tests for persisted UI preferences."""

import json

import pytest

from anyclaw.ui.models import ThreadScrollState
from anyclaw.ui.preferences import UiPreferences, normalize_thread_scroll_state


@pytest.fixture
def prefs(tmp_path):
    return UiPreferences(tmp_path / "state" / "ui.json")


class TestUiPreferences:
    """Tests for UiPreferences."""

    def test_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ANYCLAW_UI_STATE", str(tmp_path / "env.json"))
        assert UiPreferences().path == tmp_path / "env.json"

    def test_missing_file_gives_defaults(self, prefs):
        assert prefs.load_read_state() == {}
        assert prefs.load_scroll_state() == {}
        assert prefs.load_selected_thread_id() == ""
        assert prefs.load_project_order() == []
        assert prefs.load_project_display_names() == {}
        assert prefs.load_auto_refresh_enabled() is False

    def test_corrupt_file_gives_defaults(self, prefs):
        prefs.path.parent.mkdir(parents=True)
        prefs.path.write_text("{not json")
        assert prefs.load() == {}
        assert prefs.load_project_order() == []

    def test_round_trip_values_persist(self, prefs):
        prefs.save_read_state({"t1": "2024-01-01T00:00:00.000Z"})
        prefs.save_selected_thread_id("t1")
        prefs.save_project_order(["b", "a"])
        prefs.save_project_display_names({"a": "Alpha"})
        prefs.save_auto_refresh_enabled(True)
        prefs.save_scroll_state({"t1": ThreadScrollState(scroll_top=120, is_at_bottom=False, scroll_ratio=0.5)})

        reloaded = UiPreferences(prefs.path)
        assert reloaded.load_read_state() == {"t1": "2024-01-01T00:00:00.000Z"}
        assert reloaded.load_selected_thread_id() == "t1"
        assert reloaded.load_project_order() == ["b", "a"]
        assert reloaded.load_project_display_names() == {"a": "Alpha"}
        assert reloaded.load_auto_refresh_enabled() is True
        assert reloaded.load_scroll_state() == {
            "t1": ThreadScrollState(scroll_top=120, is_at_bottom=False, scroll_ratio=0.5)
        }

    def test_file_uses_camel_case_scroll_keys(self, prefs):
        prefs.save_scroll_state({"t1": ThreadScrollState(scroll_top=1, is_at_bottom=True)})
        data = json.loads(prefs.path.read_text())
        assert data["thread_scroll_state"] == {"t1": {"scrollTop": 1, "isAtBottom": True}}

    def test_clearing_selected_thread_removes_key(self, prefs):
        prefs.save_selected_thread_id("t1")
        prefs.save_selected_thread_id("")
        assert "selected_thread_id" not in prefs.load()

    def test_malformed_entries_dropped(self, prefs):
        prefs.path.parent.mkdir(parents=True)
        prefs.path.write_text(
            json.dumps(
                {
                    "thread_read_state": {"t1": "x", "t2": 5},
                    "project_order": ["a", "a", 3, "", "b"],
                    "thread_scroll_state": {"t1": {"scrollTop": "1"}, "t2": {"scrollTop": 4, "isAtBottom": False}},
                    "auto_refresh_enabled": "yes",
                }
            )
        )
        assert prefs.load_read_state() == {"t1": "x"}
        assert prefs.load_project_order() == ["a", "b"]
        assert list(prefs.load_scroll_state()) == ["t2"]
        assert prefs.load_auto_refresh_enabled() is False

    def test_no_temp_files_left_behind(self, prefs):
        prefs.save_project_order(["a"])
        prefs.save_project_order(["a", "b"])
        assert [p.name for p in prefs.path.parent.iterdir()] == ["ui.json"]


class TestNormalizeScrollState:
    def test_clamps(self):
        state = normalize_thread_scroll_state({"scrollTop": -5, "isAtBottom": True, "scrollRatio": 3})
        assert state == ThreadScrollState(scroll_top=0, is_at_bottom=True, scroll_ratio=1)

    @pytest.mark.parametrize(
        "value",
        [None, "x", {"scrollTop": float("inf"), "isAtBottom": True}, {"scrollTop": 1, "isAtBottom": 1}],
    )
    def test_rejects(self, value):
        assert normalize_thread_scroll_state(value) is None

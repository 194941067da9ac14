"""
Tests for persisted settings and history lists.
"""

import json

import pytest

from vmdeck.config import DEFAULT_RDP_OPTIONS, HISTORY_SIZE
from vmdeck.settings import Settings, push_history


class TestPushHistory:
    """Most-recent-first, deduplicated, capped."""

    def test_most_recent_first(self):
        history = ["a", "b"]
        push_history(history, "c")
        assert history == ["c", "a", "b"]

    def test_duplicate_moves_to_front(self):
        history = ["a", "b", "c"]
        push_history(history, "c")
        assert history == ["c", "a", "b"]

    def test_capped(self):
        history = [str(i) for i in range(5)]
        push_history(history, "new", limit=5)
        assert history == ["new", "0", "1", "2", "3"]

    @pytest.mark.parametrize("value", ["", "   "])
    def test_blank_ignored(self, value):
        history = ["a"]
        push_history(history, value)
        assert history == ["a"]

    def test_value_stripped(self):
        history = ["a"]
        push_history(history, "  a  ")
        assert history == ["a"]


class TestSettings:
    """Load and save."""

    def test_defaults_when_missing(self, tmp_path):
        settings = Settings.load(tmp_path / "settings.json")
        assert settings.servers == []
        assert settings.rdp_options == DEFAULT_RDP_OPTIONS
        assert settings.rdp_options is not DEFAULT_RDP_OPTIONS

    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "settings.json"
        settings = Settings(path=path)
        settings.remember_servers(["qemu:///system", "qemu+ssh://hv1/system", "qemu:///system"])
        settings.remember_script("/opt/scripts/backup.sh", "--full")
        settings.save()

        loaded = Settings.load(path)
        assert loaded.servers == ["qemu:///system", "qemu+ssh://hv1/system"]
        assert loaded.script_history == ["/opt/scripts/backup.sh"]
        assert loaded.argument_history == ["--full"]
        assert "path" not in json.loads(path.read_text())

    def test_corrupt_file(self, tmp_path, caplog):
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        settings = Settings.load(path)
        assert settings.servers == []
        assert "Ignoring unreadable settings" in caplog.text

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2, 3]")
        assert Settings.load(path).servers == []

    def test_wrong_types_ignored(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"servers": "qemu:///system", "script_history": ["a", 2]}))
        settings = Settings.load(path)
        assert settings.servers == []
        assert settings.script_history == ["a", "2"]

    def test_history_capped_on_load(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"script_history": [f"s{i}" for i in range(HISTORY_SIZE + 5)]}))
        assert len(Settings.load(path).script_history) == HISTORY_SIZE

"""Tests for the key-value stores and the game/progress repositories.

File-backed tests use tmp_path for isolation from real data.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from textchess.models import (
    PLAYER,
    WHITE,
    GameRecord,
    GameSnapshot,
    MoveRecord,
    StrengthConfig,
)
from textchess.storage import (
    ACTIVE_GAMES_KEY,
    GAME_RECORDS_KEY,
    PUZZLE_PROGRESS_KEY,
    GameStore,
    JsonFileStore,
    MemoryStore,
    ProgressStore,
)

_STRENGTH = StrengthConfig(target_elo=1200)


def _snapshot(game_id: str = "g1", moves: tuple[str, ...] = ("e4",)) -> GameSnapshot:
    return GameSnapshot(
        id=game_id,
        started_at="2026-01-02T10:00:00+00:00",
        strength=_STRENGTH,
        human_side=WHITE,
        history=[MoveRecord(m, PLAYER) for m in moves],
    )


def _record(game_id: str, result: str = "win") -> GameRecord:
    return GameRecord(
        id=game_id,
        started_at="2026-01-02T10:00:00+00:00",
        strength=_STRENGTH,
        human_side=WHITE,
        result=result,
        moves=("e4", "e5"),
    )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class TestMemoryStore:

    def test_missing_key_returns_default(self):
        assert MemoryStore().get("nope", {"a": 1}) == {"a": 1}

    def test_values_are_copied(self):
        store = MemoryStore()
        value = {"items": [1]}
        store.set("k", value)
        value["items"].append(2)
        store.get("k")["items"].append(3)
        assert store.get("k") == {"items": [1]}

    def test_delete(self):
        store = MemoryStore()
        store.set("k", 1)
        store.delete("k")
        store.delete("k")
        assert store.get("k") is None


class TestJsonFileStore:

    def test_round_trip(self, tmp_path):
        store = JsonFileStore(tmp_path / "data")
        store.set("k", {"a": [1, 2]})
        assert JsonFileStore(tmp_path / "data").get("k") == {"a": [1, 2]}
        assert (tmp_path / "data" / "k.json").exists()
        assert not (tmp_path / "data" / "k.tmp").exists()

    def test_missing_file_returns_default(self, tmp_path):
        assert JsonFileStore(tmp_path).get("k", []) == []

    def test_corrupt_file_is_backed_up(self, tmp_path):
        (tmp_path / "k.json").write_text("{not json", encoding="utf-8")
        store = JsonFileStore(tmp_path)
        assert store.get("k", {}) == {}
        assert (tmp_path / "k.bak").read_text(encoding="utf-8") == "{not json"

    def test_write_failure_is_logged_not_raised(self, tmp_path, caplog):
        store = JsonFileStore(tmp_path)
        with patch("textchess.storage.os.replace", side_effect=OSError("disk full")):
            store.set("k", {"a": 1})
        assert "Could not write" in caplog.text
        assert store.get("k") is None

    def test_delete(self, tmp_path):
        store = JsonFileStore(tmp_path)
        store.set("k", 1)
        store.delete("k")
        store.delete("k")
        assert store.get("k") is None


# ---------------------------------------------------------------------------
# GameStore
# ---------------------------------------------------------------------------


class TestGameStore:

    def test_save_and_get_active(self, game_store):
        game_store.save_active(_snapshot("g1", ("e4", "e5")))
        loaded = game_store.get_active("g1")
        assert [r.notation for r in loaded.history] == ["e4", "e5"]
        assert loaded.strength == _STRENGTH

    def test_save_overwrites(self, game_store):
        game_store.save_active(_snapshot("g1", ("e4",)))
        game_store.save_active(_snapshot("g1", ("e4", "e5")))
        assert len(game_store.active_games()) == 1
        assert len(game_store.get_active("g1").history) == 2

    def test_delete_active(self, game_store):
        game_store.save_active(_snapshot("g1"))
        game_store.save_active(_snapshot("g2"))
        game_store.delete_active("g1")
        assert set(game_store.active_games()) == {"g2"}

    def test_malformed_active_entry_skipped(self, memory_store, game_store):
        memory_store.set(ACTIVE_GAMES_KEY, {"bad": {"id": "bad"}, "g1": _snapshot("g1").to_dict()})
        assert set(game_store.active_games()) == {"g1"}

    def test_malformed_active_data_reads_empty(self, memory_store, game_store):
        memory_store.set(ACTIVE_GAMES_KEY, ["not", "a", "dict"])
        assert game_store.active_games() == {}

    def test_records_newest_first(self, game_store):
        game_store.add_record(_record("old"))
        game_store.add_record(_record("new"))
        assert [r.id for r in game_store.records()] == ["new", "old"]

    def test_record_added_once(self, game_store):
        assert game_store.add_record(_record("g1"))
        assert not game_store.add_record(_record("g1", result="loss"))
        records = game_store.records()
        assert len(records) == 1
        assert records[0].result == "win"

    def test_get_and_delete_record(self, game_store):
        game_store.add_record(_record("g1"))
        game_store.add_record(_record("g2"))
        assert game_store.get_record("g1").moves == ("e4", "e5")
        game_store.delete_record("g1")
        assert game_store.get_record("g1") is None
        assert [r.id for r in game_store.records()] == ["g2"]

    def test_malformed_records_skipped(self, memory_store, game_store):
        memory_store.set(GAME_RECORDS_KEY, [{"id": "broken"}, _record("g1").to_dict()])
        assert [r.id for r in game_store.records()] == ["g1"]

    def test_on_disk_layout(self, tmp_path):
        games = GameStore(JsonFileStore(tmp_path))
        games.save_active(_snapshot("g1"))
        data = json.loads((tmp_path / "active_games.json").read_text(encoding="utf-8"))
        assert data["g1"]["history"] == [{"notation": "e4", "source": "player"}]


# ---------------------------------------------------------------------------
# ProgressStore
# ---------------------------------------------------------------------------


class TestProgressStore:

    def test_empty(self, progress_store):
        assert progress_store.load().solved == {}
        assert not progress_store.is_solved("p1")

    def test_mark_solved_records_timestamp(self, progress_store):
        progress_store.mark_solved("p1", when="2026-03-01T12:00:00+00:00")
        assert progress_store.load().solved == {"p1": "2026-03-01T12:00:00+00:00"}

    def test_mark_solved_again_updates_timestamp(self, progress_store):
        progress_store.mark_solved("p1", when="2026-03-01T12:00:00+00:00")
        progress_store.mark_solved("p1", when="2026-03-02T12:00:00+00:00")
        assert progress_store.load().solved["p1"] == "2026-03-02T12:00:00+00:00"

    def test_unmark(self, progress_store):
        progress_store.mark_solved("p1")
        progress_store.mark_solved("p2")
        progress_store.unmark("p1")
        assert progress_store.load().solved_ids == {"p2"}

    def test_clear(self, progress_store):
        progress_store.mark_solved("p1")
        progress_store.clear()
        assert progress_store.load().solved_ids == set()

    @pytest.mark.parametrize("raw", [[1, 2], {"solved": ["p1"]}, "garbage"])
    def test_malformed_progress_reads_empty(self, memory_store, progress_store, raw):
        memory_store.set(PUZZLE_PROGRESS_KEY, raw)
        assert progress_store.load().solved == {}

    def test_corrupt_file_reads_empty(self, tmp_path):
        (tmp_path / "puzzle_progress.json").write_text("][", encoding="utf-8")
        progress = ProgressStore(JsonFileStore(tmp_path))
        assert not progress.is_solved("p1")
        progress.mark_solved("p1")
        assert progress.is_solved("p1")

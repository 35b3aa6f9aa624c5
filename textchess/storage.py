"""Persistent stores for Text Chess.

A small key-value interface with two backends (JSON files on disk and an
in-memory dict for tests), plus typed repositories on top of it:

- ``GameStore``: active games keyed by session id, and the finished-game
  archive (newest first).
- ``ProgressStore``: solved puzzle ids with last-solved timestamps.

Reads never raise: missing or corrupt data degrades to empty defaults.
Writes are last-write-wins per key and failures are logged, not raised.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from textchess.models import GameRecord, GameSnapshot, PuzzleProgress

log = logging.getLogger(__name__)

ACTIVE_GAMES_KEY = "active_games"
GAME_RECORDS_KEY = "game_records"
PUZZLE_PROGRESS_KEY = "puzzle_progress"


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store. Values are deep-copied so callers never share state."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return a copy of the stored value, or ``default`` if the key is unset."""
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        """Store a copy of ``value`` under ``key``."""
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""
        self._data.pop(key, None)


class JsonFileStore:
    """One JSON file per key under ``data_dir``."""

    def __init__(self, data_dir: str | Path) -> None:
        self._dir = Path(data_dir)

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        """Load a value, backing up a corrupt file as ``.bak``.

        Returns:
            The stored value, or ``default`` if the file is missing or corrupt.
        """
        path = self._path(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            log.warning("Corrupt store file %s; backing up and starting fresh", path)
            try:
                shutil.copy2(path, path.with_suffix(".bak"))
            except OSError:
                log.warning("Could not back up %s", path)
            return default
        except OSError as exc:
            log.warning("Could not read %s: %s", path, exc)
            return default

    def set(self, key: str, value: Any) -> None:
        """Write atomically (temp file + os.replace)."""
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(value, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            os.replace(tmp_path, path)
        except OSError as exc:
            log.warning("Could not write %s: %s", path, exc)

    def delete(self, key: str) -> None:
        """Remove the key's file. Missing files are ignored and failures logged."""
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            log.warning("Could not delete %s: %s", self._path(key), exc)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class GameStore:
    """Active-game snapshots and the finished-game archive."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def _load_active(self) -> dict[str, dict]:
        data = self._store.get(ACTIVE_GAMES_KEY, {})
        if not isinstance(data, dict):
            log.warning("Ignoring malformed active-games data")
            return {}
        return data

    def active_games(self) -> dict[str, GameSnapshot]:
        """Load every active game, skipping entries that do not parse.

        Returns:
            Mapping of game id to snapshot; empty if nothing is stored.
        """
        games: dict[str, GameSnapshot] = {}
        for game_id, raw in self._load_active().items():
            try:
                games[game_id] = GameSnapshot.from_dict(raw)
            except (KeyError, TypeError, ValueError):
                log.warning("Skipping malformed active game %s", game_id)
        return games

    def get_active(self, game_id: str) -> GameSnapshot | None:
        """Return the active game ``game_id``, or None if it is not stored."""
        return self.active_games().get(game_id)

    def save_active(self, snapshot: GameSnapshot) -> None:
        """Write or overwrite an active game snapshot.

        Args:
            snapshot: Full game state, keyed by its id.
        """
        data = self._load_active()
        data[snapshot.id] = snapshot.to_dict()
        self._store.set(ACTIVE_GAMES_KEY, data)

    def delete_active(self, game_id: str) -> None:
        """Drop an active game. Unknown ids are ignored."""
        data = self._load_active()
        if data.pop(game_id, None) is not None:
            self._store.set(ACTIVE_GAMES_KEY, data)

    def _load_records(self) -> list[dict]:
        data = self._store.get(GAME_RECORDS_KEY, [])
        if not isinstance(data, list):
            log.warning("Ignoring malformed game-records data")
            return []
        return data

    def records(self) -> list[GameRecord]:
        """Finished games, newest first."""
        records: list[GameRecord] = []
        for raw in self._load_records():
            try:
                records.append(GameRecord.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                log.warning("Skipping malformed game record")
        return records

    def get_record(self, game_id: str) -> GameRecord | None:
        """Return the finished game ``game_id``, or None."""
        return next((r for r in self.records() if r.id == game_id), None)

    def add_record(self, record: GameRecord) -> bool:
        """Archive a finished game once.

        Returns:
            False if a record with the same id already exists.
        """
        data = self._load_records()
        if any(raw.get("id") == record.id for raw in data if isinstance(raw, dict)):
            return False
        data.insert(0, record.to_dict())
        self._store.set(GAME_RECORDS_KEY, data)
        return True

    def delete_record(self, game_id: str) -> None:
        """Remove a finished game from the archive."""
        data = [
            raw for raw in self._load_records()
            if not (isinstance(raw, dict) and raw.get("id") == game_id)
        ]
        self._store.set(GAME_RECORDS_KEY, data)


class ProgressStore:
    """Solved-puzzle set with per-puzzle last-solved timestamps."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def load(self) -> PuzzleProgress:
        """Read solved puzzles.

        Returns:
            Current progress; empty if the stored data is missing or malformed.
        """
        data = self._store.get(PUZZLE_PROGRESS_KEY, {})
        solved = data.get("solved") if isinstance(data, dict) else None
        if not isinstance(solved, dict):
            if data:
                log.warning("Ignoring malformed puzzle-progress data")
            return PuzzleProgress()
        return PuzzleProgress(solved={str(k): str(v) for k, v in solved.items()})

    def _save(self, progress: PuzzleProgress) -> None:
        self._store.set(PUZZLE_PROGRESS_KEY, {"solved": progress.solved})

    def is_solved(self, puzzle_id: str) -> bool:
        """Whether ``puzzle_id`` is marked solved."""
        return self.load().is_solved(puzzle_id)

    def mark_solved(self, puzzle_id: str, when: str | None = None) -> None:
        """Mark a puzzle solved.

        Args:
            puzzle_id: Puzzle to mark.
            when: ISO timestamp to record; defaults to now (UTC).
        """
        progress = self.load()
        progress.solved[puzzle_id] = when or _now_iso()
        self._save(progress)

    def unmark(self, puzzle_id: str) -> None:
        """Forget a puzzle's solved mark, if it has one."""
        progress = self.load()
        if progress.solved.pop(puzzle_id, None) is not None:
            self._save(progress)

    def clear(self) -> None:
        """Reset all puzzle progress."""
        self._save(PuzzleProgress())

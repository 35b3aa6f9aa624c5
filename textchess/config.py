"""
Configuration for Text Chess, read from environment variables.

- TEXTCHESS_DATA_DIR: directory holding the JSON stores (default ./data).
- STOCKFISH_PATH: engine binary; auto-detected when unset.
- TEXTCHESS_MOVETIME_MS: engine thinking budget per move (default 1000).
- TEXTCHESS_READY_TIMEOUT_S: how long a search waits for the engine handshake (default 10).
- TEXTCHESS_PUZZLES: puzzle JSON file (default: the bundled sample set).
- TEXTCHESS_LOG_LEVEL: logging level name for the CLI and server (default WARNING).
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

_PACKAGE_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _PACKAGE_DIR.parent

DEFAULT_PUZZLES = _PACKAGE_DIR / "data" / "puzzles.json"


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    env = os.environ.get(name)
    if env is None or env == "":
        return default
    return cast(env) if cast else env


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    stockfish_path: str | None
    movetime_ms: int
    ready_timeout_s: float
    puzzles_path: Path
    log_level: str


def load_settings() -> Settings:
    return Settings(
        data_dir=_get("TEXTCHESS_DATA_DIR", _PROJECT_ROOT / "data", cast=Path),
        stockfish_path=_get("STOCKFISH_PATH", None),
        movetime_ms=_get("TEXTCHESS_MOVETIME_MS", 1000, cast=int),
        ready_timeout_s=_get("TEXTCHESS_READY_TIMEOUT_S", 10.0, cast=float),
        puzzles_path=_get("TEXTCHESS_PUZZLES", DEFAULT_PUZZLES, cast=Path),
        log_level=_get("TEXTCHESS_LOG_LEVEL", "WARNING").upper(),
    )


SETTINGS = load_settings()

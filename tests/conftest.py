"""Shared test fixtures with dual-mode support (mocked vs real Stockfish).

Usage:
    pytest tests/                  # Fast, mocked engine (no Stockfish)
    pytest tests/ --e2e            # Also run tests against real Stockfish

Fixtures:
    mock_uci        - Patches chess.engine.popen_uci with a mock UCI protocol
                      that plays the first legal move.
    oracle          - python-chess backed ChessOracle.
    memory_store    - In-memory key-value store.
    game_store      - GameStore over memory_store.
    progress_store  - ProgressStore over memory_store.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import chess
import chess.engine
import pytest

from textchess.oracle import ChessOracle
from textchess.storage import GameStore, MemoryStore, ProgressStore


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no mocks).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e was passed."""
    if config.getoption("--e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ---------------------------------------------------------------------------
# Mock UCI engine
# ---------------------------------------------------------------------------


def stockfish_options() -> dict:
    """Option table advertised by a current Stockfish build."""
    Option = chess.engine.Option
    return {
        "UCI_LimitStrength": Option("UCI_LimitStrength", "check", False, None, None, []),
        "UCI_Elo": Option("UCI_Elo", "spin", 1320, 1320, 3190, []),
        "Skill Level": Option("Skill Level", "spin", 20, 0, 20, []),
    }


async def first_legal_move(board: chess.Board, limit, game=None, **kwargs):
    """Play the first legal move, like a very fast and very weak engine."""
    legal = list(board.legal_moves)
    return chess.engine.PlayResult(legal[0] if legal else None, None)


def make_mock_protocol(options: dict | None = None) -> MagicMock:
    """Create a mock UciProtocol with async configure/ping/play/quit."""
    protocol = MagicMock()
    protocol.options = stockfish_options() if options is None else options
    protocol.configure = AsyncMock()
    protocol.ping = AsyncMock()
    protocol.quit = AsyncMock()
    protocol.play = AsyncMock(side_effect=first_legal_move)
    return protocol


@pytest.fixture()
def mock_uci():
    """Patch popen_uci so EngineSession talks to a mock protocol.

    Yields the protocol; tests can swap ``protocol.play.side_effect`` to
    control what the engine returns and when.
    """
    protocol = make_mock_protocol()
    popen = AsyncMock(return_value=(MagicMock(), protocol))
    with patch("chess.engine.popen_uci", popen), \
            patch("textchess.engine.find_stockfish", return_value="stockfish"):
        protocol.popen = popen
        yield protocol


# ---------------------------------------------------------------------------
# Oracle and stores
# ---------------------------------------------------------------------------


@pytest.fixture()
def oracle() -> ChessOracle:
    return ChessOracle()


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def game_store(memory_store) -> GameStore:
    return GameStore(memory_store)


@pytest.fixture()
def progress_store(memory_store) -> ProgressStore:
    return ProgressStore(memory_store)

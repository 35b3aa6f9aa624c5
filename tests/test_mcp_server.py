"""MCP tool tests: game and puzzle flows through the FastMCP server module.

Uses the mock_uci fixture from conftest.py, so no Stockfish is needed.
Stores are swapped for in-memory ones so tests never touch data/.
"""

from __future__ import annotations

import asyncio
import importlib.util
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import chess
import chess.engine
import pytest

# Add project root so imports resolve
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))

# Import server module from hyphenated directory via importlib
_server_path = _PROJECT_ROOT / "mcp-server" / "server.py"
_spec = importlib.util.spec_from_file_location("mcp_server_test", _server_path)
_server = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(_server)

from response_schemas import (  # noqa: E402
    ERROR_SCHEMA,
    GAME_SCHEMA,
    PUZZLE_SCHEMA,
    _moves_to_pgn_string,
    validate_response,
)

from textchess.config import DEFAULT_PUZZLES  # noqa: E402
from textchess.errors import EngineBusy  # noqa: E402
from textchess.models import GameSnapshot, MoveRecord, StrengthConfig  # noqa: E402
from textchess.puzzles import PuzzleLibrary  # noqa: E402
from textchess.storage import GameStore, MemoryStore, ProgressStore  # noqa: E402

_MATE_IN_ONE_FEN = "rnbqkbnr/ppppp2p/5p2/6p1/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 3"


@pytest.fixture(autouse=True)
def server_state(monkeypatch, mock_uci, oracle):
    """Fresh in-memory stores and session tables for every test."""
    store = MemoryStore()
    monkeypatch.setenv("TEXTCHESS_VALIDATE", "1")
    monkeypatch.setattr(_server, "_games_store", GameStore(store))
    monkeypatch.setattr(_server, "_progress", ProgressStore(store))
    monkeypatch.setattr(_server, "_library", PuzzleLibrary.from_file(DEFAULT_PUZZLES, oracle))
    monkeypatch.setattr(_server, "_games", {})
    monkeypatch.setattr(_server, "_puzzles", {})
    yield store


def _assert_game(response: dict) -> None:
    assert "error" not in response, response
    assert validate_response(response, GAME_SCHEMA) == []


def _assert_puzzle(response: dict) -> None:
    assert "error" not in response, response
    assert validate_response(response, PUZZLE_SCHEMA) == []


def _assert_error(response: dict) -> None:
    assert validate_response(response, ERROR_SCHEMA) == []


# ---------------------------------------------------------------------------
# Games
# ---------------------------------------------------------------------------


class TestNewGame:

    def test_defaults(self):
        state = asyncio.run(_server.new_game())
        _assert_game(state)
        assert state["state"] == "awaiting_player"
        assert state["strength"] == "Elo 1500"
        assert state["move_list"] == ""
        assert state["legal_moves_count"] == 20
        assert state["engine_move"] is None

    def test_engine_opens_when_player_is_black(self):
        state = asyncio.run(_server.new_game(difficulty="Easy", player_color="black"))
        _assert_game(state)
        assert state["engine_move"] is not None
        assert state["move_list"].startswith("1.")
        assert state["state"] == "awaiting_player"

    def test_skill_level(self):
        state = asyncio.run(_server.new_game(skill_level=3))
        assert state["strength"] == "Skill 3"

    @pytest.mark.parametrize("kwargs", [
        {"difficulty": "Grandmaster"},
        {"player_color": "green"},
        {"starting_fen": "not a fen"},
        {"starting_fen": "rnb1kbnr/pppp1ppp/8/4p3/6Pq/5P2/PPPPP2P/RNBQKBNR w KQkq - 1 3"},
    ])
    def test_invalid_arguments(self, kwargs):
        response = asyncio.run(_server.new_game(**kwargs))
        assert "error" in response
        _assert_error(response)

    def test_engine_missing(self, mock_uci):
        mock_uci.popen.side_effect = FileNotFoundError("stockfish")
        response = asyncio.run(_server.new_game())
        assert "Could not start engine" in response["error"]


class TestPlaying:

    def test_move_and_reply(self):
        async def scenario():
            game_id = (await _server.new_game())["game_id"]
            return await _server.submit_move(game_id, "e4")

        state = asyncio.run(scenario())
        _assert_game(state)
        assert state["accepted"] is True
        assert state["move_list"].startswith("1.e4 ")
        assert state["engine_move"] is not None
        assert state["state"] == "awaiting_player"

    def test_illegal_move(self):
        async def scenario():
            game_id = (await _server.new_game())["game_id"]
            return await _server.submit_move(game_id, "Ke2")

        state = asyncio.run(scenario())
        assert state["accepted"] is False
        assert state["message"] == (
            "Cannot move king to e2: the square is occupied by your own pawn."
        )
        assert state["move_list"] == ""

    def test_manual_engine_move(self):
        async def scenario():
            game_id = (await _server.new_game())["game_id"]
            waiting = await _server.submit_move(game_id, "d4", auto_reply=False)
            replied = await _server.engine_move(game_id)
            again = await _server.engine_move(game_id)
            return waiting, replied, again

        waiting, replied, again = asyncio.run(scenario())
        assert waiting["state"] == "awaiting_engine"
        assert "engine_move" not in waiting
        _assert_game(replied)
        assert replied["state"] == "awaiting_player"
        assert "not the engine's turn" in again["error"]

    def test_overlapping_engine_moves(self, mock_uci):
        async def scenario():
            game_id = (await _server.new_game())["game_id"]
            await _server.submit_move(game_id, "d4", auto_reply=False)

            gate = asyncio.Event()

            async def slow_play(board, limit, game=None, **kwargs):
                await gate.wait()
                return chess.engine.PlayResult(next(iter(board.legal_moves)), None)

            mock_uci.play.side_effect = slow_play
            first = asyncio.ensure_future(_server.engine_move(game_id))
            await asyncio.sleep(0)
            second = await _server.engine_move(game_id)
            gate.set()
            return await first, second

        first, second = asyncio.run(scenario())
        _assert_game(second)
        assert second["engine_move"] is None
        _assert_game(first)
        assert first["engine_move"] is not None
        assert first["move_list"].startswith("1.d4 ")

    def test_busy_engine_returns_error(self, monkeypatch):
        async def scenario():
            game_id = (await _server.new_game())["game_id"]
            await _server.submit_move(game_id, "d4", auto_reply=False)
            session = _server._games[game_id]
            monkeypatch.setattr(
                session, "play_engine_turn", AsyncMock(side_effect=EngineBusy("search running")),
            )
            return await _server.engine_move(game_id)

        response = asyncio.run(scenario())
        assert response == {"error": "search running"}

    def test_legal_moves(self):
        async def scenario():
            game_id = (await _server.new_game())["game_id"]
            return await _server.get_legal_moves(game_id)

        assert "Nf3" in asyncio.run(scenario())["legal_moves"]

    def test_unknown_game(self):
        for tool in (_server.get_game, _server.engine_move, _server.resign):
            response = asyncio.run(tool("missing"))
            assert response["error"] == "Game not found: missing"

    def test_resume_from_store(self, server_state):
        _server._games_store.save_active(GameSnapshot(
            id="saved",
            started_at="2026-01-02T10:00:00+00:00",
            strength=StrengthConfig(target_elo=1200),
            human_side="white",
            history=[MoveRecord("e4", "player"), MoveRecord("e5", "opponent")],
        ))
        state = asyncio.run(_server.get_game("saved"))
        _assert_game(state)
        assert state["move_list"] == "1.e4 e5"
        assert state["strength"] == "Elo 1200"
        assert _server.list_active_games()["games"][0]["move_count"] == 2


class TestGameEnd:

    def test_checkmate_then_acknowledge(self):
        async def scenario():
            game_id = (await _server.new_game(starting_fen=_MATE_IN_ONE_FEN))["game_id"]
            final = await _server.submit_move(game_id, "Qh5")
            early = await _server.get_game(game_id)
            archived = await _server.acknowledge_game(game_id)
            gone = await _server.get_game(game_id)
            return final, early, archived, gone

        final, early, archived, gone = asyncio.run(scenario())
        assert final["state"] == "finished"
        assert final["result"] == "win"
        assert final["status"] == "Checkmate! You won!"
        assert early["state"] == "finished"
        assert archived["result"] == "win"
        assert "error" in gone
        assert [g["result"] for g in _server.list_finished_games()["games"]] == ["win"]

    def test_acknowledge_running_game(self):
        async def scenario():
            game_id = (await _server.new_game())["game_id"]
            return await _server.acknowledge_game(game_id)

        assert "still in progress" in asyncio.run(scenario())["error"]

    def test_resign_export_delete(self):
        async def scenario():
            game_id = (await _server.new_game())["game_id"]
            await _server.submit_move(game_id, "e4")
            return await _server.resign(game_id)

        summary = asyncio.run(scenario())
        game_id = summary["game_id"]
        assert summary["result"] == "resigned"
        assert summary["status"] == "You resigned."
        assert _server.list_active_games()["games"] == []

        pgn = _server.export_game_pgn(game_id)["pgn"]
        assert '[Termination "resignation"]' in pgn
        assert "1. e4" in pgn

        assert _server.delete_finished_game(game_id) == {"deleted": game_id}
        assert _server.list_finished_games()["games"] == []
        assert "error" in _server.delete_finished_game(game_id)
        assert "error" in _server.export_game_pgn(game_id)


# ---------------------------------------------------------------------------
# Puzzles
# ---------------------------------------------------------------------------


class TestPuzzles:

    def test_list(self):
        listing = _server.list_puzzles()
        assert listing["total"] == 3
        assert listing["solved"] == 0
        assert [p["rating"] for p in listing["puzzles"]] == [600, 750, 1100]
        assert listing["themes"]["backRankMate"] == "Back Rank Mate"

    def test_list_by_theme(self):
        listing = _server.list_puzzles(theme="mateIn2")
        assert [p["puzzle_id"] for p in listing["puzzles"]] == ["tc003"]

    def test_solve(self):
        opened = _server.open_puzzle("tc003")
        _assert_puzzle(opened)
        assert opened["moves"] == ["a6"]
        assert opened["player_side"] == "white"
        assert opened["progress"] == "1 of 2"

        wrong = _server.puzzle_move("tc003", "Rd7")
        assert wrong["accepted"] is False
        assert wrong["message"] == "Not quite. Try again."
        assert wrong["moves"] == ["a6"]

        step = _server.puzzle_move("tc003", "Rd8")
        assert step["accepted"] is True
        assert step["opponent_move"] == "Rxd8"
        assert step["progress"] == "2 of 2"

        done = _server.puzzle_move("tc003", "Rxd8")
        assert done["state"] == "solved"
        assert done["message"] == "Puzzle solved!"
        assert _server.list_puzzles()["solved"] == 1

    def test_hint(self):
        _server.open_puzzle("tc003")
        response = _server.puzzle_hint("tc003")
        assert response["message"] == "Hint: Rd8+"
        assert response["opponent_move"] == "Rxd8"

    def test_show_solution_and_reset(self):
        _server.open_puzzle("tc002")
        solved = _server.puzzle_show_solution("tc002")
        assert solved["state"] == "solved"
        assert solved["message"] == "Solution: a6, Rd8#"

        reset = _server.puzzle_reset("tc002")
        _assert_puzzle(reset)
        assert reset["state"] == "awaiting_player"
        assert reset["moves"] == ["a6"]
        assert _server.list_puzzles()["solved"] == 0

    def test_reset_all_progress(self):
        _server.open_puzzle("tc001")
        _server.puzzle_show_solution("tc001")
        assert _server.reset_puzzle_progress() == {"solved": 0, "total": 3}
        assert "error" in _server.puzzle_move("tc001", "Qxf7#")

    def test_unknown_puzzle(self):
        assert "error" in _server.open_puzzle("nope")
        assert "error" in _server.puzzle_move("nope", "e4")
        assert "error" in _server.puzzle_hint("nope")


class TestMoveListFormat:

    def test_white_first(self):
        assert _moves_to_pgn_string(["e4", "e5", "Nf3"]) == "1.e4 e5 2.Nf3"

    def test_black_first(self):
        assert _moves_to_pgn_string(["e5", "Nf3", "Nc6"], "black") == "1...e5 2.Nf3 Nc6"

    def test_empty(self):
        assert _moves_to_pgn_string([]) == ""

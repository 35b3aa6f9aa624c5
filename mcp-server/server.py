"""MCP server for Text Chess.

Exposes game and puzzle commands via FastMCP. Live sessions are held in
memory keyed by id; every accepted game move is also written to the
active-game store, so a game not found in memory is resumed from disk.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP  # noqa: E402

from textchess.config import SETTINGS  # noqa: E402
from textchess.engine import EngineSession  # noqa: E402
from textchess.errors import EngineBusy, EngineUnavailable, IllegalMove  # noqa: E402
from textchess.game import GameSession, load_active_game, record_to_pgn  # noqa: E402
from textchess.models import GameState, StrengthConfig  # noqa: E402
from textchess.oracle import ChessOracle  # noqa: E402
from textchess.puzzles import PuzzleLibrary, PuzzleSession, theme_label  # noqa: E402
from textchess.storage import GameStore, JsonFileStore, ProgressStore  # noqa: E402

from response_schemas import (  # noqa: E402
    feedback_response,
    game_response,
    puzzle_response,
    record_summary,
)

log = logging.getLogger(__name__)

mcp = FastMCP("text-chess")

_oracle = ChessOracle()
_store = JsonFileStore(SETTINGS.data_dir)
_games_store = GameStore(_store)
_progress = ProgressStore(_store)

# Live sessions: game_id -> GameSession, puzzle_id -> PuzzleSession
_games: dict[str, GameSession] = {}
_puzzles: dict[str, PuzzleSession] = {}

_library: PuzzleLibrary | None = None


def _get_library() -> PuzzleLibrary:
    """Load the puzzle library on first use."""
    global _library
    if _library is None:
        _library = PuzzleLibrary.from_file(SETTINGS.puzzles_path, _oracle)
        log.info("Loaded %d puzzles from %s", len(_library), SETTINGS.puzzles_path)
    return _library


async def _start_engine(strength: StrengthConfig) -> EngineSession:
    engine = EngineSession(
        strength,
        engine_path=SETTINGS.stockfish_path,
        movetime_ms=SETTINGS.movetime_ms,
        ready_timeout_s=SETTINGS.ready_timeout_s,
    )
    await engine.start()
    return engine


async def _get_game(game_id: str) -> GameSession | None:
    """Look up a live game, resuming it from the active-game store if needed.

    Raises:
        EngineUnavailable: If a stored game needs an engine that cannot start.
    """
    session = _games.get(game_id)
    if session is not None:
        return session

    snapshot = _games_store.get_active(game_id)
    if snapshot is None:
        return None
    engine = await _start_engine(snapshot.strength)
    session = load_active_game(game_id, _oracle, engine, _games_store)
    if session is None:
        await engine.close()
        return None
    _games[game_id] = session
    log.info("Resumed game %s with %d moves", game_id, len(session.history))
    return session


async def _engine_reply(session: GameSession) -> dict:
    """Let the engine move if it is its turn; returns fields for the response."""
    if session.state != GameState.AWAITING_ENGINE:
        return {"engine_move": None}
    try:
        record = await session.play_engine_turn()
    except (EngineBusy, EngineUnavailable) as exc:
        return {"engine_move": None, "engine_error": str(exc)}
    if session.state == GameState.FINISHED:
        await session.close()
    return {"engine_move": record.notation if record else None}


# ---------------------------------------------------------------------------
# Game tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def new_game(
    difficulty: str = "Medium",
    target_elo: int | None = None,
    skill_level: int | None = None,
    player_color: str = "white",
    starting_fen: str | None = None,
) -> dict:
    """Start a new game against Stockfish.

    Args:
        difficulty: Beginner, Easy, Medium, Hard or Expert. Default Medium.
        target_elo: Engine rating (100-3500); overrides difficulty.
        skill_level: Stockfish skill level (0-20); overrides target_elo.
        player_color: 'white' or 'black'. Default 'white'.
        starting_fen: Optional custom starting position FEN.

    Returns:
        Game dict; if the engine moves first its reply is already played.
    """
    if player_color not in ("white", "black"):
        return {"error": f"Invalid player_color: {player_color}"}
    try:
        if skill_level is not None:
            strength = StrengthConfig(skill_level=skill_level)
        elif target_elo is not None:
            strength = StrengthConfig(target_elo=target_elo)
        else:
            strength = StrengthConfig.from_difficulty(difficulty)
    except ValueError as exc:
        return {"error": str(exc)}

    if starting_fen:
        try:
            if _oracle.status(starting_fen).is_terminal:
                return {"error": f"Starting position is already over: {starting_fen}"}
        except IllegalMove as exc:
            return {"error": f"Invalid FEN: {exc}"}

    try:
        engine = await _start_engine(strength)
    except EngineUnavailable as exc:
        return {"error": str(exc)}

    session = GameSession(
        _oracle,
        engine,
        _games_store,
        human_side=player_color,
        strength=strength,
        start_fen=starting_fen,
    )
    _games[session.id] = session
    reply = await _engine_reply(session)
    return {**game_response(session), **reply}


@mcp.tool()
async def get_game(game_id: str) -> dict:
    """Get the current state of a game, resuming it from disk if needed.

    Args:
        game_id: UUID of the game.

    Returns:
        Game dict with position, state and move list.
    """
    try:
        session = await _get_game(game_id)
    except EngineUnavailable as exc:
        return {"error": str(exc)}
    if session is None:
        return {"error": f"Game not found: {game_id}"}
    return game_response(session)


@mcp.tool()
async def get_legal_moves(game_id: str) -> dict:
    """List the legal moves in the current position (standard algebraic notation).

    Args:
        game_id: UUID of the game.
    """
    try:
        session = await _get_game(game_id)
    except EngineUnavailable as exc:
        return {"error": str(exc)}
    if session is None:
        return {"error": f"Game not found: {game_id}"}
    return {"game_id": game_id, "legal_moves": session.legal_moves()}


@mcp.tool()
async def submit_move(game_id: str, move: str, auto_reply: bool = True) -> dict:
    """Play a move in standard algebraic notation (e.g. 'e4', 'Nf3', 'O-O').

    Illegal input leaves the game unchanged and returns an explanation of
    why the move is not possible.

    Args:
        game_id: UUID of the game.
        move: The move as typed by the player.
        auto_reply: Let the engine answer immediately. Default True.

    Returns:
        Game dict plus 'accepted', 'message' and the engine's reply if any.
    """
    try:
        session = await _get_game(game_id)
    except EngineUnavailable as exc:
        return {"error": str(exc)}
    if session is None:
        return {"error": f"Game not found: {game_id}"}

    feedback = session.submit_move(move)
    response = {**game_response(session), **feedback_response(feedback)}
    if not feedback.accepted:
        return response

    if session.state == GameState.FINISHED:
        await session.close()
        return response
    if auto_reply:
        reply = await _engine_reply(session)
        response = {**game_response(session), **feedback_response(feedback), **reply}
    return response


@mcp.tool()
async def engine_move(game_id: str) -> dict:
    """Have the engine make its move.

    Args:
        game_id: UUID of the game.

    Returns:
        Game dict after the engine's move.
    """
    try:
        session = await _get_game(game_id)
    except EngineUnavailable as exc:
        return {"error": str(exc)}
    if session is None:
        return {"error": f"Game not found: {game_id}"}
    if session.state != GameState.AWAITING_ENGINE:
        return {"error": f"It is not the engine's turn (state: {session.state.value})"}

    reply = await _engine_reply(session)
    if "engine_error" in reply:
        return {"error": reply["engine_error"]}
    return {**game_response(session), **reply}


@mcp.tool()
async def resign(game_id: str) -> dict:
    """Resign the game. It is archived immediately.

    Args:
        game_id: UUID of the game.

    Returns:
        Archived game summary.
    """
    try:
        session = await _get_game(game_id)
    except EngineUnavailable as exc:
        return {"error": str(exc)}
    if session is None:
        return {"error": f"Game not found: {game_id}"}

    record = session.resign()
    _games.pop(game_id, None)
    await session.close()
    return {**record_summary(record), "status": session.status_text}


@mcp.tool()
async def acknowledge_game(game_id: str) -> dict:
    """Archive a finished game and release it.

    Args:
        game_id: UUID of the game.

    Returns:
        Archived game summary, or an error while the game is still running.
    """
    try:
        session = await _get_game(game_id)
    except EngineUnavailable as exc:
        return {"error": str(exc)}
    if session is None:
        return {"error": f"Game not found: {game_id}"}

    record = session.acknowledge()
    if record is None:
        return {"error": "The game is still in progress. Resign to end it early."}
    _games.pop(game_id, None)
    await session.close()
    return {**record_summary(record), "status": session.status_text}


@mcp.tool()
def list_active_games() -> dict:
    """List unfinished games that can be resumed."""
    games = []
    for snapshot in _games_store.active_games().values():
        games.append({
            "game_id": snapshot.id,
            "started_at": snapshot.started_at,
            "human_side": snapshot.human_side,
            "strength": snapshot.strength.describe(),
            "move_count": len(snapshot.history),
        })
    return {"games": games}


@mcp.tool()
def list_finished_games() -> dict:
    """List finished games, newest first."""
    return {"games": [record_summary(r) for r in _games_store.records()]}


@mcp.tool()
def delete_finished_game(game_id: str) -> dict:
    """Delete a finished game from the history.

    Args:
        game_id: UUID of the game.
    """
    if _games_store.get_record(game_id) is None:
        return {"error": f"Finished game not found: {game_id}"}
    _games_store.delete_record(game_id)
    return {"deleted": game_id}


@mcp.tool()
def export_game_pgn(game_id: str) -> dict:
    """Export a finished game as PGN.

    Args:
        game_id: UUID of the game.

    Returns:
        Dict with the PGN text.
    """
    record = _games_store.get_record(game_id)
    if record is None:
        return {"error": f"Finished game not found: {game_id}"}
    return {"game_id": game_id, "pgn": record_to_pgn(record)}


# ---------------------------------------------------------------------------
# Puzzle tools
# ---------------------------------------------------------------------------


@mcp.tool()
def list_puzzles(theme: str | None = None) -> dict:
    """List puzzles sorted by rating, optionally filtered by theme.

    Args:
        theme: Theme key such as 'mateIn1' or 'backRankMate'.

    Returns:
        Dict with puzzles, available themes and the solved count.
    """
    library = _get_library()
    progress = _progress.load()
    return {
        "puzzles": [
            {
                "puzzle_id": p.id,
                "rating": p.rating,
                "themes": [theme_label(t) for t in p.themes],
                "solved": progress.is_solved(p.id),
            }
            for p in library.sorted_by_rating(theme)
        ],
        "themes": {t: theme_label(t) for t in library.themes()},
        "solved": library.solved_count(progress),
        "total": len(library),
    }


def _open_session(puzzle_id: str) -> PuzzleSession | None:
    session = _puzzles.get(puzzle_id)
    if session is not None:
        return session
    definition = _get_library().get(puzzle_id)
    if definition is None:
        return None
    session = PuzzleSession(definition, _oracle, _progress)
    session.replay_opponent()
    _puzzles[puzzle_id] = session
    return session


@mcp.tool()
def open_puzzle(puzzle_id: str) -> dict:
    """Open a puzzle and play the opponent's setup move.

    Args:
        puzzle_id: Puzzle id from list_puzzles.
    """
    _puzzles.pop(puzzle_id, None)
    session = _open_session(puzzle_id)
    if session is None:
        return {"error": f"Puzzle not found: {puzzle_id}"}
    return puzzle_response(session)


@mcp.tool()
def puzzle_move(puzzle_id: str, move: str) -> dict:
    """Try a move in an open puzzle. Correct moves get the scripted reply.

    Args:
        puzzle_id: Puzzle id.
        move: Move in standard algebraic notation.
    """
    session = _puzzles.get(puzzle_id)
    if session is None:
        return {"error": f"Puzzle not open: {puzzle_id}"}

    feedback = session.submit_move(move)
    reply = session.replay_opponent() if feedback.accepted else None
    return {
        **puzzle_response(session),
        **feedback_response(feedback),
        "opponent_move": reply.notation if reply else None,
    }


@mcp.tool()
def puzzle_hint(puzzle_id: str) -> dict:
    """Reveal and play the expected move, then the scripted reply.

    Args:
        puzzle_id: Puzzle id.
    """
    session = _puzzles.get(puzzle_id)
    if session is None:
        return {"error": f"Puzzle not open: {puzzle_id}"}
    feedback = session.hint()
    reply = session.replay_opponent() if feedback.accepted else None
    response = {**puzzle_response(session), **feedback_response(feedback)}
    response["opponent_move"] = reply.notation if reply else None
    return response


@mcp.tool()
def puzzle_show_solution(puzzle_id: str) -> dict:
    """Play out the rest of the solution and mark the puzzle solved.

    Args:
        puzzle_id: Puzzle id.
    """
    session = _puzzles.get(puzzle_id)
    if session is None:
        return {"error": f"Puzzle not open: {puzzle_id}"}
    feedback = session.show_solution()
    return {**puzzle_response(session), **feedback_response(feedback)}


@mcp.tool()
def puzzle_reset(puzzle_id: str) -> dict:
    """Clear a puzzle's solved mark and start it again.

    Args:
        puzzle_id: Puzzle id.
    """
    session = _open_session(puzzle_id)
    if session is None:
        return {"error": f"Puzzle not found: {puzzle_id}"}
    session.reset()
    session.replay_opponent()
    return puzzle_response(session)


@mcp.tool()
def reset_puzzle_progress() -> dict:
    """Forget every solved puzzle."""
    _progress.clear()
    _puzzles.clear()
    return {"solved": 0, "total": len(_get_library())}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(level=SETTINGS.log_level, stream=sys.stderr)
    mcp.run()

"""Response shapes for MCP tool results.

Tool results are compact dicts: move lists are PGN-style strings
(1.e4 e5 2.Nf3 ...) and legal moves are reported as a count.
"""

from __future__ import annotations

import os

from textchess.game import GameSession
from textchess.models import WHITE, GameRecord, MoveFeedback
from textchess.puzzles import PuzzleSession, theme_label


def game_response(session: GameSession) -> dict:
    """Summarize a game session for an MCP response.

    Args:
        session: Live game session.

    Returns:
        Dict with position, turn state, status line and move list.
    """
    history = session.history
    return {
        "game_id": session.id,
        "fen": session.fen,
        "human_side": session.human_side,
        "strength": session.strength.describe(),
        "state": session.state.value,
        "result": session.result,
        "status": session.status_text,
        "last_move": history[-1].notation if history else None,
        "move_list": _moves_to_pgn_string([r.notation for r in history], session.first_mover),
        "legal_moves_count": len(session.legal_moves()),
    }


def feedback_response(feedback: MoveFeedback) -> dict:
    return {"accepted": feedback.accepted, "message": feedback.message}


def puzzle_response(session: PuzzleSession) -> dict:
    """Summarize a puzzle session for an MCP response.

    Args:
        session: Open puzzle session.

    Returns:
        Dict with position, state, progress and the moves played so far.
    """
    definition = session.definition
    return {
        "puzzle_id": definition.id,
        "fen": session.fen,
        "player_side": session.player_side,
        "state": session.state.value,
        "progress": session.progress_text,
        "rating": definition.rating,
        "themes": [theme_label(t) for t in definition.themes],
        "message": session.message,
        "moves": [r.notation for r in session.history],
    }


def record_summary(record: GameRecord) -> dict:
    return {
        "game_id": record.id,
        "started_at": record.started_at,
        "human_side": record.human_side,
        "strength": record.strength.describe(),
        "result": record.result,
        "move_count": len(record.moves),
    }


def _moves_to_pgn_string(moves: list[str], first_mover: str = WHITE) -> str:
    """Convert a list of SAN moves to a PGN move string.

    E.g., ['e4', 'e5', 'Nf3', 'Nc6'] -> '1.e4 e5 2.Nf3 Nc6'. A game that
    starts with Black to move opens with '1...'.

    Args:
        moves: List of SAN move strings.
        first_mover: Side that played the first move.

    Returns:
        PGN-formatted move string.
    """
    if not moves:
        return ""

    offset = 0 if first_mover == WHITE else 1
    parts = []
    for i, move in enumerate(moves):
        ply = i + offset
        if ply % 2 == 0:
            parts.append(f"{ply // 2 + 1}.{move}")
        elif i == 0:
            parts.append(f"1...{move}")
        else:
            parts.append(move)

    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

GAME_SCHEMA = {
    "game_id": str,
    "fen": str,
    "human_side": str,
    "strength": str,
    "state": str,
    "result": (str, type(None)),
    "status": str,
    "last_move": (str, type(None)),
    "move_list": str,
    "legal_moves_count": int,
}

PUZZLE_SCHEMA = {
    "puzzle_id": str,
    "fen": str,
    "player_side": str,
    "state": str,
    "progress": str,
    "rating": int,
    "themes": list,
    "message": str,
    "moves": list,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when TEXTCHESS_VALIDATE=1 is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("TEXTCHESS_VALIDATE") != "1":
        return []

    if not isinstance(response, dict):
        return [f"Response is not a dict: {type(response).__name__}"]

    errors = []
    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue
        if not isinstance(response[key], expected_types):
            if isinstance(expected_types, tuple):
                type_names = ", ".join(t.__name__ for t in expected_types)
            else:
                type_names = expected_types.__name__
            errors.append(
                f"Key '{key}': expected ({type_names}), "
                f"got {type(response[key]).__name__}"
            )
    return errors

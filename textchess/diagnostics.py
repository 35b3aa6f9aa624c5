"""Explain why a move string was rejected.

``diagnose`` is called only after the oracle refused a move. It classifies
the text (see ``textchess.notation``), then walks a fixed precedence of
checks against the legal-move list and board occupancy, returning the most
specific true statement it can make. It never modifies a position.
"""

from __future__ import annotations

import re
from functools import cached_property

from textchess.models import WHITE, LegalMove, PieceInfo, PositionStatus
from textchess.notation import (
    CASTLE,
    COORDINATE,
    EMPTY,
    KINGSIDE,
    PAWN,
    PIECE,
    MoveShape,
    classify,
    strip_suffix,
)
from textchess.oracle import MoveOracle

PIECE_NAMES = {
    "k": "king",
    "q": "queen",
    "r": "rook",
    "b": "bishop",
    "n": "knight",
    "p": "pawn",
}

_VALID_START = re.compile(r"^[a-hKQRBNO0]")


class _Position:
    """Lazily computed evidence about one position."""

    def __init__(self, oracle: MoveOracle, fen: str) -> None:
        self._oracle = oracle
        self._fen = fen

    @cached_property
    def legal(self) -> list[LegalMove]:
        return self._oracle.legal_moves(self._fen)

    @cached_property
    def occupancy(self) -> dict[str, PieceInfo]:
        return self._oracle.occupancy(self._fen)

    @cached_property
    def status(self) -> PositionStatus:
        return self._oracle.status(self._fen)

    @property
    def mover(self) -> str:
        return self.status.side_to_move

    def own_pieces(self, kind: str) -> list[str]:
        return sorted(
            square for square, piece in self.occupancy.items()
            if piece.kind == kind and piece.color == self.mover
        )

    def moves_to(self, kind: str, destination: str) -> list[LegalMove]:
        return [m for m in self.legal if m.piece == kind and m.to_square == destination]


def _rank_name(rank: str) -> str:
    return "8th" if rank == "8" else "1st"


def _diagnose_castle(shape: MoveShape, pos: _Position) -> str | None:
    token = "O-O" if shape.castle_side == KINGSIDE else "O-O-O"
    if any(m.san.rstrip("+#") == token for m in pos.legal):
        return None

    home_rank = "1" if pos.mover == WHITE else "8"
    rook_file = "h" if shape.castle_side == KINGSIDE else "a"

    if pos.status.in_check:
        return "Cannot castle while in check."
    king = pos.occupancy.get(f"e{home_rank}")
    if king is None or king.kind != "k" or king.color != pos.mover:
        return "Cannot castle: the king has moved."
    rook = pos.occupancy.get(f"{rook_file}{home_rank}")
    if rook is None or rook.kind != "r" or rook.color != pos.mover:
        return f"Cannot castle {shape.castle_side}: the rook has moved or is missing."
    if shape.castle_side not in pos.status.castling_rights:
        return f"Cannot castle {shape.castle_side}: the king or rook has already moved."
    return f"Cannot castle {shape.castle_side}: the path is blocked or passes through check."


def _diagnose_pawn(shape: MoveShape, pos: _Position) -> str | None:
    destination = shape.destination
    candidates = pos.moves_to("p", destination)

    if not candidates:
        if shape.source_file:
            return _pawn_from_file(shape, pos)
        return _pawn_unreachable(shape, pos)

    if shape.source_file:
        from_file = [m for m in candidates if m.from_square[0] == shape.source_file]
        if not from_file:
            return f"No pawn on the {shape.source_file}-file can capture on {destination}."
        candidates = from_file

    if shape.promotion is None and all(m.promotion for m in candidates):
        return (
            f"A pawn reaching {destination} must promote. "
            f"Add the piece, for example {strip_suffix(shape.text)}=Q."
        )
    return None


def _pawn_from_file(shape: MoveShape, pos: _Position) -> str:
    source_file = shape.source_file
    if not [sq for sq in pos.own_pieces("p") if sq[0] == source_file]:
        return f"You don't have a pawn on the {source_file}-file."
    if pos.status.in_check:
        return "Invalid move: you must get out of check."
    return f"No pawn on the {source_file}-file can capture on {shape.destination}."


def _pawn_unreachable(shape: MoveShape, pos: _Position) -> str:
    destination = shape.destination
    target_file = destination[0]
    target_rank = int(destination[1])
    forward = 1 if pos.mover == WHITE else -1
    start_rank = 2 if pos.mover == WHITE else 7
    occupant = pos.occupancy.get(destination)
    pawns = [sq for sq in pos.own_pieces("p") if sq[0] == target_file]

    if pawns:
        if destination in pawns:
            return f"Your pawn is already on {destination}."
        behind = [sq for sq in pawns if (target_rank - int(sq[1])) * forward > 0]
        if not behind:
            return "Pawns cannot move backwards."
        pawn = min(behind, key=lambda sq: abs(target_rank - int(sq[1])))
        pawn_rank = int(pawn[1])
        distance = abs(target_rank - pawn_rank)
        if distance > 2:
            return "Pawns can only move 1 square forward, or 2 from the starting position."
        if distance == 2 and pawn_rank != start_rank:
            return "Pawns can only move 2 squares from their starting position."
        if occupant is not None:
            return f"Cannot move pawn to {destination}: the square is occupied. Pawns capture diagonally."
        if distance == 2:
            middle = f"{target_file}{pawn_rank + forward}"
            blocker = pos.occupancy.get(middle)
            if blocker is not None:
                return (
                    f"Cannot move pawn to {destination}: the path is blocked by the "
                    f"{blocker.color} {PIECE_NAMES[blocker.kind]} on {middle}."
                )

    if occupant is not None:
        return f"Cannot move pawn to {destination}: the square is occupied. Pawns capture diagonally."
    if not pawns:
        return f"You don't have a pawn on the {target_file}-file."
    if pos.status.in_check:
        return "Invalid move: you must get out of check."
    return f"Cannot move pawn to {destination}: this move would leave your king in check."


def _diagnose_piece(shape: MoveShape, pos: _Position) -> str | None:
    destination = shape.destination
    name = PIECE_NAMES[shape.piece]
    candidates = pos.moves_to(shape.piece, destination)

    if not candidates:
        if not pos.own_pieces(shape.piece):
            return f"You don't have a {name} on the board."
        occupant = pos.occupancy.get(destination)
        if occupant is not None and occupant.color == pos.mover:
            return (
                f"Cannot move {name} to {destination}: the square is occupied by "
                f"your own {PIECE_NAMES[occupant.kind]}."
            )
        if pos.status.in_check:
            return f"Cannot move {name} to {destination}: you must get out of check."
        return (
            f"The {name} cannot move to {destination}: either no {name} can reach that "
            "square, or it would leave your king in check."
        )

    hint = (shape.source_file or "") + (shape.source_rank or "")
    matching = [
        m for m in candidates
        if (shape.source_file is None or m.from_square[0] == shape.source_file)
        and (shape.source_rank is None or m.from_square[1] == shape.source_rank)
    ]
    if hint and not matching:
        return f"No {name} on {hint} can move to {destination}."
    if len(matching) > 1:
        origins = " or ".join(sorted(m.from_square for m in matching))
        return f"Ambiguous move: more than one {name} can move to {destination} (from {origins})."
    if shape.capture and not any(m.is_capture for m in matching):
        return f"There is nothing to capture on {destination}."
    return None


_SHAPE_CHECKS = {
    CASTLE: _diagnose_castle,
    PAWN: _diagnose_pawn,
    PIECE: _diagnose_piece,
}


def diagnose(text: str, fen: str, oracle: MoveOracle) -> str:
    """Return a human-readable reason why ``text`` is not playable at ``fen``.

    Args:
        text: The move as the player typed it.
        fen: Position the move was attempted in.
        oracle: Rules oracle used for legal moves, occupancy and status.

    Returns:
        A single-sentence message. Identical inputs give identical output.
    """
    shape = classify(text)
    if shape.kind == EMPTY:
        return "Please enter a move."

    pos = _Position(oracle, fen)
    check = _SHAPE_CHECKS.get(shape.kind)
    if check is not None:
        message = check(shape, pos)
        if message:
            return message

    raw = shape.text
    if not _VALID_START.match(raw):
        return "Invalid notation."

    if shape.promotion and shape.destination and shape.kind != COORDINATE:
        promotion_rank = "8" if pos.mover == WHITE else "1"
        if shape.destination[1] != promotion_rank:
            return f"Promotion is only possible when a pawn reaches the {_rank_name(promotion_rank)} rank."

    if shape.kind == COORDINATE:
        return f'"{raw}" looks like UCI notation. Use standard algebraic notation instead.'

    return f'"{raw}" is not a valid move.'

"""Move-legality oracle for Text Chess.

Sessions never touch a board directly: they hold FEN snapshots and ask a
``MoveOracle`` for legal moves, move application and terminal status.
``ChessOracle`` is the python-chess backed implementation; tests may inject
any object with the same methods.
"""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence

import chess

from textchess.errors import IllegalMove
from textchess.models import BLACK, WHITE, AppliedMove, LegalMove, PieceInfo, PositionStatus
from textchess.notation import normalize_castle

STARTING_FEN = chess.STARTING_FEN


class MoveOracle(Protocol):
    """Capabilities the sessions and diagnostics need from a rules engine."""

    def legal_moves(self, fen: str) -> list[LegalMove]: ...

    def apply_move(self, fen: str, text: str) -> AppliedMove: ...

    def apply_uci(self, fen: str, uci: str) -> AppliedMove: ...

    def status(self, fen: str, previous: Sequence[str] = ()) -> PositionStatus: ...

    def occupancy(self, fen: str) -> dict[str, PieceInfo]: ...


def _side(color: chess.Color) -> str:
    return WHITE if color == chess.WHITE else BLACK


def position_key(fen: str) -> str:
    """Placement, side to move, castling and en passant: the repetition identity."""
    return " ".join(fen.split()[:4])


class ChessOracle:
    """python-chess implementation of ``MoveOracle``."""

    def _board(self, fen: str) -> chess.Board:
        try:
            return chess.Board(fen)
        except ValueError as exc:
            raise IllegalMove("", f"Invalid position: {exc}") from exc

    def legal_moves(self, fen: str) -> list[LegalMove]:
        """List every legal move with the metadata diagnostics need.

        Args:
            fen: Position to inspect.

        Returns:
            One ``LegalMove`` per legal move, in canonical SAN.

        Raises:
            IllegalMove: If ``fen`` is not a valid position.
        """
        board = self._board(fen)
        moves: list[LegalMove] = []
        for move in board.legal_moves:
            piece_type = board.piece_type_at(move.from_square)
            moves.append(LegalMove(
                san=board.san(move),
                uci=move.uci(),
                piece=chess.piece_symbol(piece_type),
                from_square=chess.square_name(move.from_square),
                to_square=chess.square_name(move.to_square),
                is_capture=board.is_capture(move),
                promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
            ))
        return moves

    def apply_move(self, fen: str, text: str) -> AppliedMove:
        """Parse SAN (castling with letter O or digit 0) and play it.

        Raises:
            IllegalMove: If the text is malformed, ambiguous or illegal here.
        """
        board = self._board(fen)
        token = text.strip()
        if not token:
            raise IllegalMove(text, "Empty move")
        token = normalize_castle(token) or token
        try:
            move = board.parse_san(token)
        except ValueError as exc:
            raise IllegalMove(text, str(exc)) from exc
        # parse_san maps "--"/"0000" to a null move
        if not move:
            raise IllegalMove(text, f"Not a move: {text}")
        if "x" in token and not board.is_capture(move):
            raise IllegalMove(text, f"Nothing to capture: {text}")
        return self._push(board, move)

    def apply_uci(self, fen: str, uci: str) -> AppliedMove:
        """Play an origin+destination(+promotion) move such as ``e7e8q``.

        Raises:
            IllegalMove: If the move is malformed or not legal here.
        """
        board = self._board(fen)
        try:
            move = chess.Move.from_uci(uci.strip().lower())
        except ValueError as exc:
            raise IllegalMove(uci, str(exc)) from exc
        if move not in board.legal_moves:
            raise IllegalMove(uci, f"Illegal move: {uci}")
        return self._push(board, move)

    def _push(self, board: chess.Board, move: chess.Move) -> AppliedMove:
        san = board.san(move)
        board.push(move)
        return AppliedMove(fen=board.fen(), san=san, uci=move.uci())

    def status(self, fen: str, previous: Sequence[str] = ()) -> PositionStatus:
        """Report check, mate and draw flags.

        Args:
            fen: Position to inspect.
            previous: FENs of earlier positions in the same game, used for
                threefold repetition (a FEN alone carries no history).
        """
        board = self._board(fen)
        color = board.turn
        rights = set()
        if board.has_kingside_castling_rights(color):
            rights.add("kingside")
        if board.has_queenside_castling_rights(color):
            rights.add("queenside")

        checkmate = board.is_checkmate()
        stalemate = board.is_stalemate()
        draw_reason = None
        if not checkmate and not stalemate:
            draw_reason = self._draw_reason(board, fen, previous)

        return PositionStatus(
            side_to_move=_side(color),
            in_check=board.is_check(),
            checkmate=checkmate,
            stalemate=stalemate,
            draw_reason=draw_reason,
            castling_rights=frozenset(rights),
        )

    def _draw_reason(self, board: chess.Board, fen: str, previous: Iterable[str]) -> str | None:
        if board.is_insufficient_material():
            return "insufficient material"
        if board.halfmove_clock >= 100:
            return "fifty-move rule"
        key = position_key(fen)
        occurrences = 1 + sum(1 for f in previous if position_key(f) == key)
        if occurrences >= 3:
            return "threefold repetition"
        return None

    def occupancy(self, fen: str) -> dict[str, PieceInfo]:
        """Map each occupied square name (e.g. ``"e4"``) to its piece."""
        board = self._board(fen)
        return {
            chess.square_name(square): PieceInfo(_side(piece.color), chess.piece_symbol(piece.piece_type))
            for square, piece in board.piece_map().items()
        }


def replay(oracle: MoveOracle, start_fen: str, notations: Iterable[str]) -> list[str]:
    """Replay canonical notation from ``start_fen``.

    Returns:
        FENs of every position reached, starting with ``start_fen``.

    Raises:
        IllegalMove: If any move does not apply in sequence.
    """
    fens = [start_fen]
    for text in notations:
        fens.append(oracle.apply_move(fens[-1], text).fen)
    return fens

"""Game session: a human playing typed moves against the engine.

The session owns an append-only move history and a FEN per reached
position. Whose turn it is, and therefore the session state, is always
derived from the history length and the human's side; nothing else tracks
it. Every accepted move is written to the active-game store so a reload can
resume by replaying history.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

import chess
import chess.pgn

from textchess.diagnostics import diagnose
from textchess.engine import EngineSession
from textchess.errors import (
    EngineUnavailable,
    IllegalMove,
    NoMoveAvailable,
    StaleEngineResponse,
)
from textchess.models import (
    DRAW,
    LOSS,
    OPPONENT,
    PLAYER,
    RESIGNED,
    WHITE,
    WIN,
    AppliedMove,
    GameRecord,
    GameSnapshot,
    GameState,
    MoveFeedback,
    MoveRecord,
    PositionStatus,
    StrengthConfig,
    other_side,
)
from textchess.oracle import STARTING_FEN, MoveOracle, replay
from textchess.storage import GameStore

log = logging.getLogger(__name__)


class GameSession:
    """State machine interleaving player input with engine replies."""

    def __init__(
        self,
        oracle: MoveOracle,
        engine: EngineSession,
        games: GameStore,
        human_side: str = WHITE,
        strength: StrengthConfig | None = None,
        session_id: str | None = None,
        started_at: str | None = None,
        history: list[MoveRecord] | None = None,
        start_fen: str | None = None,
        on_end: Callable[[GameRecord], None] | None = None,
    ) -> None:
        """Create or resume a game.

        Args:
            oracle: Rules oracle.
            engine: Engine session playing the other side.
            games: Store for the active snapshot and the finished archive.
            human_side: "white" or "black".
            strength: Strength recorded with the game (defaults to the engine's).
            session_id: Existing id when resuming; a new UUID otherwise.
            started_at: ISO start timestamp when resuming.
            history: Moves already played, replayed through the oracle.
            start_fen: Custom starting position (defaults to the standard one).
            on_end: Called once with the archived record when the game ends.

        Raises:
            IllegalMove: If ``history`` does not replay from ``start_fen``.
        """
        self._oracle = oracle
        self._engine = engine
        self._games = games
        self._on_end = on_end

        self.id = session_id or str(uuid.uuid4())
        self.started_at = started_at or datetime.now(timezone.utc).isoformat()
        self.human_side = human_side
        self.strength = strength or engine.strength
        self.start_fen = start_fen or STARTING_FEN

        self._history: list[MoveRecord] = list(history or [])
        self._fens = replay(oracle, self.start_fen, [r.notation for r in self._history])
        self._first_mover = oracle.status(self.start_fen).side_to_move

        # Bumped when the session ends; engine replies carry the value they started with
        self._generation = 0
        self._record: GameRecord | None = None
        self._resigned = False
        self._searching = False
        self._position_status = self._compute_status()

        self._persist()

    @classmethod
    def resume(
        cls,
        snapshot: GameSnapshot,
        oracle: MoveOracle,
        engine: EngineSession,
        games: GameStore,
        on_end: Callable[[GameRecord], None] | None = None,
    ) -> GameSession:
        """Rebuild a game from its active-game snapshot by replaying its history.

        Args:
            snapshot: Stored state written after the last accepted move.
            oracle: Move oracle used for the replay and further play.
            engine: Engine session configured with ``snapshot.strength``.
            games: Store the resumed game keeps writing to.
            on_end: Called once with the archived record when the game ends.

        Returns:
            A session in the same state the snapshot was taken in.

        Raises:
            IllegalMove: If the stored history no longer replays.
        """
        return cls(
            oracle,
            engine,
            games,
            human_side=snapshot.human_side,
            strength=snapshot.strength,
            session_id=snapshot.id,
            started_at=snapshot.started_at,
            history=snapshot.history,
            start_fen=snapshot.start_fen,
            on_end=on_end,
        )

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def history(self) -> tuple[MoveRecord, ...]:
        return tuple(self._history)

    @property
    def fen(self) -> str:
        return self._fens[-1]

    @property
    def first_mover(self) -> str:
        return self._first_mover

    @property
    def side_to_move(self) -> str:
        if len(self._history) % 2 == 0:
            return self._first_mover
        return other_side(self._first_mover)

    @property
    def is_player_turn(self) -> bool:
        return self.state == GameState.AWAITING_PLAYER

    @property
    def result(self) -> str | None:
        if self._resigned:
            return RESIGNED
        status = self._position_status
        if status.checkmate:
            winner = other_side(status.side_to_move)
            return WIN if winner == self.human_side else LOSS
        if status.stalemate or status.draw_reason is not None:
            return DRAW
        return None

    @property
    def state(self) -> GameState:
        if self.result is not None:
            return GameState.FINISHED
        if self.side_to_move == self.human_side:
            return GameState.AWAITING_PLAYER
        return GameState.AWAITING_ENGINE

    @property
    def status_text(self) -> str:
        result = self.result
        status = self._position_status
        if result == RESIGNED:
            return "You resigned."
        if result == WIN:
            return "Checkmate! You won!"
        if result == LOSS:
            return "Checkmate! The engine wins."
        if result == DRAW:
            if status.stalemate:
                return "Stalemate. Draw."
            return f"Draw by {status.draw_reason}."
        if status.in_check:
            return "Check!"
        return ""

    def legal_moves(self) -> list[str]:
        if self.state == GameState.FINISHED:
            return []
        return [m.san for m in self._oracle.legal_moves(self.fen)]

    def snapshot(self) -> GameSnapshot:
        return GameSnapshot(
            id=self.id,
            started_at=self.started_at,
            strength=self.strength,
            human_side=self.human_side,
            history=list(self._history),
            start_fen=None if self.start_fen == STARTING_FEN else self.start_fen,
        )

    def _compute_status(self) -> PositionStatus:
        return self._oracle.status(self.fen, previous=self._fens[:-1])

    def _persist(self) -> None:
        if self._record is None:
            self._games.save_active(self.snapshot())

    def _append(self, applied: AppliedMove, source: str) -> MoveRecord:
        record = MoveRecord(applied.san, source)
        self._history.append(record)
        self._fens.append(applied.fen)
        self._position_status = self._compute_status()
        self._persist()
        log.debug("Game %s: %s played %s", self.id, source, applied.san)
        if self.state == GameState.FINISHED:
            log.info("Game %s finished: %s", self.id, self.result)
        return record

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit_move(self, text: str) -> MoveFeedback:
        """Try a player move; illegal input leaves the game unchanged."""
        state = self.state
        if state == GameState.FINISHED:
            return MoveFeedback(False, "The game is over.")
        if state == GameState.AWAITING_ENGINE:
            return MoveFeedback(False, "Wait for the engine to move.")

        fen = self.fen
        try:
            applied = self._oracle.apply_move(fen, text)
        except IllegalMove:
            return MoveFeedback(False, diagnose(text, fen, self._oracle))

        record = self._append(applied, PLAYER)
        return MoveFeedback(True, self.status_text, record)

    async def play_engine_turn(self) -> MoveRecord | None:
        """Ask the engine for a move and apply it.

        Returns:
            The engine's move record, or None when it is not the engine's
            turn, a search for this position is already running, the reply
            went stale, or the engine had no move.

        Raises:
            EngineUnavailable: If the engine is not ready; retry once it is.
        """
        if self.state != GameState.AWAITING_ENGINE:
            return None
        if self._searching:
            log.debug("Game %s: engine search already in flight", self.id)
            return None

        generation = self._generation
        fen = self.fen
        self._searching = True
        try:
            move = await self._engine.best_move(fen)
            self._check_current(generation, fen)
        except StaleEngineResponse as exc:
            log.warning("Game %s: %s", self.id, exc)
            return None
        except NoMoveAvailable:
            if generation != self._generation:
                return None
            log.error("Game %s: engine returned no move at non-terminal position %s", self.id, fen)
            return None
        except EngineUnavailable:
            if generation != self._generation:
                log.warning("Game %s: engine stopped after the game ended", self.id)
                return None
            raise
        finally:
            self._searching = False

        try:
            applied = self._oracle.apply_uci(fen, move.uci())
        except IllegalMove:
            log.error("Game %s: engine move %s is illegal at %s", self.id, move.uci(), fen)
            return None
        return self._append(applied, OPPONENT)

    def _check_current(self, generation: int, fen: str) -> None:
        if generation != self._generation or fen != self.fen:
            raise StaleEngineResponse("discarding engine reply for a finished or changed game")

    def resign(self) -> GameRecord:
        """Archive the game as resigned. Does not wait for an in-flight search."""
        if self._record is not None:
            return self._record
        self._resigned = True
        return self._archive(RESIGNED)

    def acknowledge(self) -> GameRecord | None:
        """Archive a finished game once; returns None while the game is still running."""
        if self._record is not None:
            return self._record
        result = self.result
        if result is None:
            return None
        return self._archive(result)

    def _archive(self, result: str) -> GameRecord:
        self._generation += 1
        record = GameRecord(
            id=self.id,
            started_at=self.started_at,
            strength=self.strength,
            human_side=self.human_side,
            result=result,
            moves=tuple(r.notation for r in self._history),
            start_fen=None if self.start_fen == STARTING_FEN else self.start_fen,
        )
        self._record = record
        self._games.add_record(record)
        self._games.delete_active(self.id)
        log.info("Game %s archived: %s after %d moves", self.id, result, len(record.moves))
        if self._on_end is not None:
            self._on_end(record)
        return record

    async def close(self) -> None:
        await self._engine.close()


def load_active_game(
    game_id: str,
    oracle: MoveOracle,
    engine: EngineSession,
    games: GameStore,
    on_end: Callable[[GameRecord], None] | None = None,
) -> GameSession | None:
    """Resume a stored game; a snapshot that no longer replays is dropped."""
    snapshot = games.get_active(game_id)
    if snapshot is None:
        return None
    try:
        return GameSession.resume(snapshot, oracle, engine, games, on_end=on_end)
    except IllegalMove as exc:
        log.warning("Dropping corrupt active game %s: %s", game_id, exc)
        games.delete_active(game_id)
        return None


_PGN_RESULTS = {WIN: ("1-0", "0-1"), LOSS: ("0-1", "1-0"), DRAW: ("1/2-1/2", "1/2-1/2")}


def record_to_pgn(record: GameRecord) -> str:
    """Export an archived game as PGN."""
    pgn_game = chess.pgn.Game()
    start_fen = record.start_fen or STARTING_FEN
    board = chess.Board(start_fen)
    if start_fen != STARTING_FEN:
        pgn_game.setup(board)

    engine_name = f"Stockfish ({record.strength.describe()})"
    pgn_game.headers["Event"] = "Text Chess"
    pgn_game.headers["Date"] = record.started_at[:10].replace("-", ".")
    pgn_game.headers["White"] = "Player" if record.human_side == WHITE else engine_name
    pgn_game.headers["Black"] = "Player" if record.human_side != WHITE else engine_name

    if record.result == RESIGNED:
        pgn_game.headers["Result"] = "0-1" if record.human_side == WHITE else "1-0"
        pgn_game.headers["Termination"] = "resignation"
    elif record.result in _PGN_RESULTS:
        white_result, black_result = _PGN_RESULTS[record.result]
        pgn_game.headers["Result"] = white_result if record.human_side == WHITE else black_result

    node = pgn_game
    for san in record.moves:
        move = board.parse_san(san)
        node = node.add_variation(move)
        board.push(move)

    return str(pgn_game)

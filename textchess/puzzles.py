"""Puzzle sessions and the puzzle library.

A puzzle is a start position plus a scripted line. The first scripted move
is always the opponent's setup move; the player owns every odd index. The
opponent side is replayed from the script, never searched.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator

from textchess.diagnostics import diagnose
from textchess.errors import IllegalMove, WrongPuzzleMove
from textchess.models import (
    OPPONENT,
    PLAYER,
    AppliedMove,
    MoveFeedback,
    MoveRecord,
    PuzzleDefinition,
    PuzzleProgress,
    PuzzleState,
    other_side,
)
from textchess.oracle import MoveOracle
from textchess.storage import ProgressStore

log = logging.getLogger(__name__)

PUZZLE_THEMES = {
    "fork": "Fork",
    "pin": "Pin",
    "skewer": "Skewer",
    "discoveredAttack": "Discovered Attack",
    "doubleCheck": "Double Check",
    "mateIn1": "Mate in 1",
    "mateIn2": "Mate in 2",
    "mateIn3": "Mate in 3",
    "sacrifice": "Sacrifice",
    "deflection": "Deflection",
    "clearance": "Clearance",
    "backRankMate": "Back Rank Mate",
    "endgame": "Endgame",
    "pawnEndgame": "Pawn Endgame",
    "rookEndgame": "Rook Endgame",
    "opening": "Opening",
    "short": "Short Puzzle",
}


def theme_label(theme: str) -> str:
    return PUZZLE_THEMES.get(theme, theme)


class PuzzleSession:
    """Validates player moves against a puzzle's scripted solution."""

    def __init__(
        self,
        definition: PuzzleDefinition,
        oracle: MoveOracle,
        progress: ProgressStore,
    ) -> None:
        if not definition.solution_moves:
            raise ValueError(f"Puzzle {definition.id} has no solution moves")
        self.definition = definition
        self._oracle = oracle
        self._progress = progress
        self.player_side = other_side(oracle.status(definition.start_fen).side_to_move)
        self._load()

    def _load(self) -> None:
        self._cursor = 0
        self._history: list[MoveRecord] = []
        self._fens = [self.definition.start_fen]
        self._solved = False
        self.message = ""
        if self._progress.is_solved(self.definition.id):
            # Review mode: show the full line without asking for it again
            while self._cursor < len(self.definition.solution_moves):
                self._step(self._source_at(self._cursor), record_progress=False)
            self.message = "Already solved."

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def history(self) -> tuple[MoveRecord, ...]:
        return tuple(self._history)

    @property
    def fen(self) -> str:
        return self._fens[-1]

    @property
    def solved(self) -> bool:
        return self._solved

    @property
    def state(self) -> PuzzleState:
        if self._solved:
            return PuzzleState.SOLVED
        if self._cursor % 2 == 1:
            return PuzzleState.AWAITING_PLAYER
        return PuzzleState.AWAITING_OPPONENT_REPLAY

    @property
    def progress_text(self) -> str:
        """Current player move out of the line's total, as ``"k of n"``."""
        total = self.definition.player_move_count
        if self._solved:
            return f"{total} of {total}"
        current = self._cursor // 2 + (1 if self.state == PuzzleState.AWAITING_PLAYER else 0)
        return f"{max(1, min(current, total))} of {total}"

    @staticmethod
    def _source_at(index: int) -> str:
        return PLAYER if index % 2 == 1 else OPPONENT

    def _step(self, source: str, record_progress: bool = True) -> MoveRecord:
        """Play the scripted move at the cursor."""
        uci = self.definition.solution_moves[self._cursor]
        applied = self._oracle.apply_uci(self.fen, uci)
        return self._commit(applied.fen, applied.san, source, record_progress)

    def _commit(self, fen: str, san: str, source: str, record_progress: bool = True) -> MoveRecord:
        record = MoveRecord(san, source)
        self._history.append(record)
        self._fens.append(fen)
        self._cursor += 1
        if self._cursor == len(self.definition.solution_moves):
            self._solved = True
            if record_progress:
                self._progress.mark_solved(self.definition.id)
                log.info("Puzzle %s solved", self.definition.id)
        return record

    def replay_opponent(self) -> MoveRecord | None:
        """Play the scripted opponent move if it is the opponent's turn."""
        if self.state != PuzzleState.AWAITING_OPPONENT_REPLAY:
            return None
        record = self._step(OPPONENT)
        if self._solved:
            self.message = "Puzzle solved!"
        return record

    def submit_move(self, text: str) -> MoveFeedback:
        """Check a player move against the solution. Wrong moves are never recorded."""
        state = self.state
        if state == PuzzleState.SOLVED:
            return MoveFeedback(False, "Puzzle already solved.")
        if state == PuzzleState.AWAITING_OPPONENT_REPLAY:
            return MoveFeedback(False, "Wait for the opponent's move.")

        fen = self.fen
        try:
            applied = self._oracle.apply_move(fen, text)
        except IllegalMove:
            self.message = diagnose(text, fen, self._oracle)
            return MoveFeedback(False, self.message)

        try:
            self._check_solution(applied)
        except WrongPuzzleMove as exc:
            # The resulting position is discarded; the session keeps ``fen``
            log.debug("Puzzle %s: %s", self.definition.id, exc)
            self.message = "Not quite. Try again."
            return MoveFeedback(False, self.message)

        record = self._commit(applied.fen, applied.san, PLAYER)
        self.message = "Puzzle solved!" if self._solved else "Correct!"
        return MoveFeedback(True, self.message, record)

    def _check_solution(self, applied: AppliedMove) -> None:
        """Compare a legal player move with the scripted one.

        Raises:
            WrongPuzzleMove: If the move is not the expected solution move.
        """
        expected = self.definition.solution_moves[self._cursor].lower()
        if applied.uci != expected:
            raise WrongPuzzleMove(applied.uci, expected)

    def hint(self) -> MoveFeedback:
        """Play the expected move for the player and reveal it."""
        if self.state != PuzzleState.AWAITING_PLAYER:
            return MoveFeedback(False, "Hints are only available on your move.")
        record = self._step(PLAYER)
        self.message = f"Hint: {record.notation}"
        return MoveFeedback(True, self.message, record)

    def show_solution(self) -> MoveFeedback:
        """Replay the rest of the line and mark the puzzle solved. No-op once solved."""
        if self._solved:
            return MoveFeedback(False, "Puzzle already solved.")
        while self._cursor < len(self.definition.solution_moves):
            self._step(self._source_at(self._cursor))
        self.message = "Solution: " + ", ".join(r.notation for r in self._history)
        return MoveFeedback(True, self.message)

    def reset(self) -> None:
        """Forget this puzzle's solved mark and start over."""
        self._progress.unmark(self.definition.id)
        self._load()


def validate_puzzle(definition: PuzzleDefinition, oracle: MoveOracle) -> list[str]:
    """Check that a puzzle's solution replays legally. Returns error messages."""
    errors = []
    prefix = f"puzzle {definition.id}"
    if len(definition.solution_moves) < 1:
        errors.append(f"{prefix}: no solution moves")
        return errors

    fen = definition.start_fen
    try:
        oracle.status(fen)
    except IllegalMove as exc:
        errors.append(f"{prefix}: invalid FEN '{fen}': {exc}")
        return errors

    for i, uci in enumerate(definition.solution_moves):
        try:
            fen = oracle.apply_uci(fen, uci).fen
        except IllegalMove:
            errors.append(f"{prefix}: illegal move '{uci}' at step {i} (FEN: {fen})")
            break
    return errors


def load_puzzles(path: str | Path, oracle: MoveOracle | None = None) -> list[PuzzleDefinition]:
    """Load Lichess-style puzzles from a JSON array.

    Malformed entries are skipped. When ``oracle`` is given, puzzles whose
    solution does not replay are skipped too. A missing or unreadable file
    yields an empty list.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        log.warning("Could not load puzzles from %s: %s", path, exc)
        return []
    if not isinstance(data, list):
        log.warning("Puzzle file %s must contain a JSON array", path)
        return []

    puzzles: list[PuzzleDefinition] = []
    for index, raw in enumerate(data):
        try:
            definition = PuzzleDefinition.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            log.warning("Skipping malformed puzzle at index %d in %s", index, path)
            continue
        if oracle is not None:
            errors = validate_puzzle(definition, oracle)
            if errors:
                log.warning("Skipping invalid puzzle: %s", "; ".join(errors))
                continue
        puzzles.append(definition)
    return puzzles


class PuzzleLibrary:
    """Read-only collection of puzzle definitions with list-screen queries."""

    def __init__(self, puzzles: Iterable[PuzzleDefinition]) -> None:
        self._puzzles = list(puzzles)
        self._by_id = {p.id: p for p in self._puzzles}

    @classmethod
    def from_file(cls, path: str | Path, oracle: MoveOracle | None = None) -> PuzzleLibrary:
        """Load a library from a puzzle JSON file; see ``load_puzzles``."""
        return cls(load_puzzles(path, oracle))

    def __len__(self) -> int:
        return len(self._puzzles)

    def __iter__(self) -> Iterator[PuzzleDefinition]:
        return iter(self._puzzles)

    def get(self, puzzle_id: str) -> PuzzleDefinition | None:
        return self._by_id.get(puzzle_id)

    def themes(self) -> list[str]:
        """Every theme tag used by at least one puzzle, sorted."""
        seen = {t for p in self._puzzles for t in p.themes}
        return sorted(seen)

    def by_theme(self, theme: str | None) -> list[PuzzleDefinition]:
        """Filter puzzles by theme tag.

        Args:
            theme: Tag such as ``"fork"``; None or ``"all"`` keeps every puzzle.

        Returns:
            Matching puzzles in file order.
        """
        if not theme or theme == "all":
            return list(self._puzzles)
        return [p for p in self._puzzles if theme in p.themes]

    def sorted_by_rating(self, theme: str | None = None, descending: bool = False) -> list[PuzzleDefinition]:
        """Puzzles for ``theme`` ordered by rating, easiest first unless ``descending``."""
        return sorted(self.by_theme(theme), key=lambda p: p.rating, reverse=descending)

    def solved_count(self, progress: PuzzleProgress) -> int:
        """Count library puzzles marked solved in ``progress``."""
        return sum(1 for p in self._puzzles if progress.is_solved(p.id))

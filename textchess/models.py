"""Shared data models for Text Chess.

Session snapshots, archived game records and puzzle definitions are the
shared contract between the sessions, the stores and the command surfaces
(MCP server and terminal CLI).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

WHITE = "white"
BLACK = "black"

PLAYER = "player"
OPPONENT = "opponent"

# Game results
WIN = "win"
LOSS = "loss"
DRAW = "draw"
RESIGNED = "resigned"

DIFFICULTY_ELO = {
    "Beginner": 800,
    "Easy": 1200,
    "Medium": 1500,
    "Hard": 2000,
    "Expert": 2500,
}

_MIN_ELO = 100
_MAX_ELO = 3500
_MAX_SKILL = 20


def other_side(side: str) -> str:
    return BLACK if side == WHITE else WHITE


class GameState(str, enum.Enum):
    AWAITING_PLAYER = "awaiting_player"
    AWAITING_ENGINE = "awaiting_engine"
    FINISHED = "finished"


class PuzzleState(str, enum.Enum):
    AWAITING_OPPONENT_REPLAY = "awaiting_opponent_replay"
    AWAITING_PLAYER = "awaiting_player"
    SOLVED = "solved"


@dataclass(frozen=True)
class StrengthConfig:
    """Engine strength: a coarse skill level or a target rating, never both."""

    skill_level: int | None = None
    target_elo: int | None = None

    def __post_init__(self) -> None:
        if (self.skill_level is None) == (self.target_elo is None):
            raise ValueError("StrengthConfig needs exactly one of skill_level or target_elo")
        if self.skill_level is not None:
            object.__setattr__(self, "skill_level", max(0, min(_MAX_SKILL, self.skill_level)))
        if self.target_elo is not None:
            object.__setattr__(self, "target_elo", max(_MIN_ELO, min(_MAX_ELO, self.target_elo)))

    @classmethod
    def from_difficulty(cls, name: str) -> StrengthConfig:
        """Build a rating-based config from a named difficulty level.

        Raises:
            ValueError: If the name is not a known difficulty level.
        """
        try:
            return cls(target_elo=DIFFICULTY_ELO[name])
        except KeyError:
            raise ValueError(
                f"Unknown difficulty {name!r}; expected one of {list(DIFFICULTY_ELO)}"
            ) from None

    def to_dict(self) -> dict:
        return {"skill_level": self.skill_level, "target_elo": self.target_elo}

    @classmethod
    def from_dict(cls, data: dict) -> StrengthConfig:
        return cls(skill_level=data.get("skill_level"), target_elo=data.get("target_elo"))

    def describe(self) -> str:
        if self.target_elo is not None:
            return f"Elo {self.target_elo}"
        return f"Skill {self.skill_level}"


@dataclass(frozen=True)
class MoveRecord:
    """One accepted move in a session's append-only history."""

    notation: str
    source: str

    def to_dict(self) -> dict:
        return {"notation": self.notation, "source": self.source}

    @classmethod
    def from_dict(cls, data: dict) -> MoveRecord:
        return cls(notation=data["notation"], source=data["source"])


@dataclass(frozen=True)
class PieceInfo:
    color: str
    kind: str  # one of "p", "n", "b", "r", "q", "k"


@dataclass(frozen=True)
class LegalMove:
    """A fully disambiguated legal move with the metadata diagnostics need."""

    san: str
    uci: str
    piece: str
    from_square: str
    to_square: str
    is_capture: bool = False
    promotion: str | None = None


@dataclass(frozen=True)
class AppliedMove:
    fen: str
    san: str
    uci: str


@dataclass(frozen=True)
class PositionStatus:
    """Terminal and check flags for one position."""

    side_to_move: str
    in_check: bool = False
    checkmate: bool = False
    stalemate: bool = False
    draw_reason: str | None = None
    castling_rights: frozenset = frozenset()

    @property
    def is_terminal(self) -> bool:
        return self.checkmate or self.stalemate or self.draw_reason is not None


@dataclass(frozen=True)
class MoveFeedback:
    """Outcome of one move command, shown to the player."""

    accepted: bool
    message: str = ""
    record: MoveRecord | None = None


@dataclass
class GameSnapshot:
    """Serializable form of an active game, written after every accepted move."""

    id: str
    started_at: str
    strength: StrengthConfig
    human_side: str
    history: list[MoveRecord] = field(default_factory=list)
    start_fen: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "started_at": self.started_at,
            "strength": self.strength.to_dict(),
            "human_side": self.human_side,
            "history": [r.to_dict() for r in self.history],
            "start_fen": self.start_fen,
        }

    @classmethod
    def from_dict(cls, data: dict) -> GameSnapshot:
        return cls(
            id=data["id"],
            started_at=data["started_at"],
            strength=StrengthConfig.from_dict(data["strength"]),
            human_side=data["human_side"],
            history=[MoveRecord.from_dict(r) for r in data.get("history", [])],
            start_fen=data.get("start_fen"),
        )


@dataclass(frozen=True)
class GameRecord:
    """Archived, immutable form of a finished game."""

    id: str
    started_at: str
    strength: StrengthConfig
    human_side: str
    result: str
    moves: tuple[str, ...] = ()
    start_fen: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "started_at": self.started_at,
            "strength": self.strength.to_dict(),
            "human_side": self.human_side,
            "result": self.result,
            "moves": list(self.moves),
            "start_fen": self.start_fen,
        }

    @classmethod
    def from_dict(cls, data: dict) -> GameRecord:
        return cls(
            id=data["id"],
            started_at=data["started_at"],
            strength=StrengthConfig.from_dict(data["strength"]),
            human_side=data["human_side"],
            result=data["result"],
            moves=tuple(data.get("moves", [])),
            start_fen=data.get("start_fen"),
        )


@dataclass(frozen=True)
class PuzzleDefinition:
    """A scripted puzzle. Index 0 of ``solution_moves`` is the opponent's setup move."""

    id: str
    start_fen: str
    solution_moves: tuple[str, ...]
    themes: tuple[str, ...] = ()
    rating: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> PuzzleDefinition:
        """Build from a Lichess-style puzzle object (``fen``/``moves``/``themes``)."""
        moves = data["moves"]
        if isinstance(moves, str):
            moves = moves.split()
        return cls(
            id=str(data["id"]),
            start_fen=data["fen"],
            solution_moves=tuple(moves),
            themes=tuple(data.get("themes", ())),
            rating=int(data.get("rating", 0)),
        )

    @property
    def player_move_count(self) -> int:
        return len(self.solution_moves) // 2


@dataclass
class PuzzleProgress:
    """Solved puzzle ids mapped to their last-solved ISO timestamp."""

    solved: dict[str, str] = field(default_factory=dict)

    def is_solved(self, puzzle_id: str) -> bool:
        return puzzle_id in self.solved

    @property
    def solved_ids(self) -> set[str]:
        return set(self.solved)

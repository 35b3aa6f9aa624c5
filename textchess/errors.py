"""Exception taxonomy for Text Chess."""

from __future__ import annotations


class TextChessError(Exception):
    """Base class for all Text Chess errors."""


class IllegalMove(TextChessError):
    """Move text did not correspond to any legal transition."""

    def __init__(self, text: str, message: str = "") -> None:
        super().__init__(message or f"Illegal move: {text}")
        self.text = text
        self.message = message


class WrongPuzzleMove(TextChessError):
    """Legal move that does not match the puzzle's scripted solution."""

    def __init__(self, played: str, expected: str) -> None:
        super().__init__(f"Expected {expected}, got {played}")
        self.played = played
        self.expected = expected


class EngineUnavailable(TextChessError):
    """The search engine is not ready, failed to start, or was closed."""


class EngineBusy(TextChessError):
    """A best-move request was issued while another one is outstanding."""


class NoMoveAvailable(TextChessError):
    """The engine answered a search with no move."""


class StaleEngineResponse(TextChessError):
    """An engine reply arrived for a session that has already ended."""

"""Move-text tokenizer.

Classifies raw player input into a tagged ``MoveShape`` (castle, pawn move,
piece move, coordinate shorthand, malformed) so diagnostics can branch on
the shape instead of re-running patterns at every step.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

EMPTY = "empty"
CASTLE = "castle"
PAWN = "pawn"
PIECE = "piece"
COORDINATE = "coordinate"
MALFORMED = "malformed"

KINGSIDE = "kingside"
QUEENSIDE = "queenside"

_CASTLE_TOKENS = {"O-O": KINGSIDE, "O-O-O": QUEENSIDE}

_PAWN_RE = re.compile(r"^(?P<src>[a-h])?(?P<x>x)?(?P<dest>[a-h][1-8])$")
_PIECE_RE = re.compile(
    r"^(?P<piece>[KQRBN])(?P<file>[a-h])?(?P<rank>[1-8])?(?P<x>x)?(?P<dest>[a-h][1-8])$"
)
_COORDINATE_RE = re.compile(r"^(?P<src>[a-h][1-8])-?(?P<dest>[a-h][1-8])(?P<promo>[qrbnQRBN])?$")
_PROMOTION_RE = re.compile(r"=?(?P<promo>[QRBN])$")


@dataclass(frozen=True)
class MoveShape:
    """Structure recognised in a move string. Fields not relevant to ``kind`` stay None."""

    kind: str
    text: str
    castle_side: str | None = None
    piece: str | None = None
    source_file: str | None = None
    source_rank: str | None = None
    destination: str | None = None
    capture: bool = False
    promotion: str | None = None


def strip_suffix(text: str) -> str:
    """Drop trailing check/mate markers and annotation glyphs."""
    return text.rstrip("+#!?")


def normalize_castle(text: str) -> str | None:
    """Return ``O-O`` / ``O-O-O`` for any letter-case or zero spelling, else None."""
    token = strip_suffix(text.strip()).upper().replace("0", "O")
    return token if token in _CASTLE_TOKENS else None


def classify(text: str) -> MoveShape:
    raw = text.strip()
    if not raw:
        return MoveShape(EMPTY, raw)

    castle = normalize_castle(raw)
    if castle is not None:
        return MoveShape(CASTLE, raw, castle_side=_CASTLE_TOKENS[castle])

    body = strip_suffix(raw)
    promotion = None
    promo_match = _PROMOTION_RE.search(body)
    if promo_match and len(body) > 1:
        promotion = promo_match.group("promo").lower()
        body = body[:promo_match.start()]

    match = _PAWN_RE.match(body)
    if match:
        return MoveShape(
            PAWN,
            raw,
            piece="p",
            source_file=match.group("src"),
            destination=match.group("dest"),
            capture=match.group("x") is not None,
            promotion=promotion,
        )

    match = _PIECE_RE.match(body)
    if match:
        return MoveShape(
            PIECE,
            raw,
            piece=match.group("piece").lower(),
            source_file=match.group("file"),
            source_rank=match.group("rank"),
            destination=match.group("dest"),
            capture=match.group("x") is not None,
            promotion=promotion,
        )

    match = _COORDINATE_RE.match(strip_suffix(raw))
    if match:
        promo = match.group("promo")
        return MoveShape(
            COORDINATE,
            raw,
            source_file=match.group("src")[0],
            source_rank=match.group("src")[1],
            destination=match.group("dest"),
            promotion=promo.lower() if promo else None,
        )

    return MoveShape(MALFORMED, raw, promotion=promotion)

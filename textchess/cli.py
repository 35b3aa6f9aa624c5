"""Terminal front end for Text Chess.

Plays a game against Stockfish or works through puzzles with typed
algebraic moves, rendering the board with Rich.

    python -m textchess.cli play --difficulty Easy --side black
    python -m textchess.cli puzzle --theme mateIn1
    python -m textchess.cli history --pgn <game-id>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import chess
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from textchess.config import SETTINGS
from textchess.engine import EngineSession
from textchess.errors import EngineUnavailable
from textchess.game import GameSession, load_active_game, record_to_pgn
from textchess.models import (
    BLACK,
    DIFFICULTY_ELO,
    WHITE,
    GameState,
    MoveRecord,
    PuzzleState,
    StrengthConfig,
)
from textchess.oracle import ChessOracle
from textchess.puzzles import PuzzleLibrary, PuzzleSession, theme_label
from textchess.storage import GameStore, JsonFileStore, ProgressStore

_PIECE_SYMBOLS = {
    "K": "♔", "Q": "♕", "R": "♖", "B": "♗",
    "N": "♘", "P": "♙",
    "k": "♚", "q": "♛", "r": "♜", "b": "♝",
    "n": "♞", "p": "♟",
}

_LIGHT_SQ = "grey85"
_DARK_SQ = "grey50"

_GAME_HELP = "Type a move (e4, Nf3, O-O), or: moves, resign, quit, help"
_PUZZLE_HELP = "Type a move, or: hint, solution, reset, skip, quit, help"


def render_board(fen: str, flipped: bool = False, title: str = "Text Chess") -> Panel:
    """Render a position as a Rich panel of colored squares.

    Args:
        fen: Position to draw.
        flipped: Draw from Black's side.
        title: Panel title.

    Returns:
        Panel containing the board.
    """
    board = chess.Board(fen)
    table = Table(show_header=False, show_edge=False, pad_edge=False,
                  box=None, padding=(0, 1))
    table.add_column(width=2, justify="right")
    for _ in range(8):
        table.add_column(width=3, justify="center")

    ranks = range(8) if flipped else range(7, -1, -1)
    files = list(range(7, -1, -1)) if flipped else list(range(8))

    for rank in ranks:
        row: list[Text] = [Text(str(rank + 1), style="bold")]
        for file in files:
            piece = board.piece_at(chess.square(file, rank))
            bg = _LIGHT_SQ if (rank + file) % 2 == 1 else _DARK_SQ
            symbol = _PIECE_SYMBOLS[piece.symbol()] if piece else " "
            row.append(Text(f" {symbol} ", style=f"on {bg}"))
        table.add_row(*row)

    labels = [Text("  ")]
    labels.extend(Text(f" {chr(ord('a') + f)} ", style="bold") for f in files)
    table.add_row(*labels)
    return Panel(table, title=title, border_style="blue")


def format_history(history: tuple[MoveRecord, ...], first_mover: str = WHITE) -> str:
    """Numbered move list, e.g. ``1. e4 e5 2. Nf3``."""
    parts = []
    offset = 0 if first_mover == WHITE else 1
    for i, record in enumerate(history):
        ply = i + offset
        if ply % 2 == 0:
            parts.append(f"{ply // 2 + 1}. {record.notation}")
        elif i == 0:
            parts.append(f"1... {record.notation}")
        else:
            parts.append(record.notation)
    return " ".join(parts)


def _make_stores() -> tuple[GameStore, ProgressStore]:
    store = JsonFileStore(SETTINGS.data_dir)
    return GameStore(store), ProgressStore(store)


def _strength_from_args(args: argparse.Namespace) -> StrengthConfig:
    if args.skill is not None:
        return StrengthConfig(skill_level=args.skill)
    if args.elo is not None:
        return StrengthConfig(target_elo=args.elo)
    return StrengthConfig.from_difficulty(args.difficulty)


# ---------------------------------------------------------------------------
# play
# ---------------------------------------------------------------------------


def _show_game(console: Console, game: GameSession) -> None:
    title = f"You: {game.human_side} | Stockfish {game.strength.describe()}"
    console.print(render_board(game.fen, flipped=game.human_side == BLACK, title=title))
    if game.history:
        console.print(format_history(game.history, game.first_mover))
    if game.status_text:
        console.print(f"[bold yellow]{game.status_text}[/bold yellow]")


async def _play(console: Console, args: argparse.Namespace) -> int:
    games, _ = _make_stores()
    oracle = ChessOracle()

    snapshot = games.get_active(args.resume) if args.resume else None
    strength = snapshot.strength if snapshot else _strength_from_args(args)
    engine = EngineSession(
        strength,
        engine_path=SETTINGS.stockfish_path,
        movetime_ms=SETTINGS.movetime_ms,
        ready_timeout_s=SETTINGS.ready_timeout_s,
    )
    try:
        await engine.start()
    except EngineUnavailable as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    try:
        if args.resume:
            game = load_active_game(args.resume, oracle, engine, games)
            if game is None:
                console.print(f"[red]No resumable game with id {args.resume}[/red]")
                return 1
        else:
            game = GameSession(oracle, engine, games, human_side=args.side,
                               strength=strength, start_fen=args.fen)

        console.print(f"[dim]Game {game.id}. {_GAME_HELP}[/dim]")
        _show_game(console, game)

        while game.state != GameState.FINISHED:
            if game.state == GameState.AWAITING_ENGINE:
                try:
                    with console.status("Stockfish is thinking..."):
                        record = await game.play_engine_turn()
                except EngineUnavailable as exc:
                    console.print(f"[red]{exc}. Game saved as {game.id}.[/red]")
                    return 1
                if record is None:
                    console.print(f"[red]Stockfish did not move. Game saved as {game.id}.[/red]")
                    return 1
                console.print(f"Stockfish plays [bold]{record.notation}[/bold]")
                _show_game(console, game)
                continue

            try:
                text = (await asyncio.to_thread(console.input, "[bold]> [/bold]")).strip()
            except (EOFError, KeyboardInterrupt):
                text = "quit"

            command = text.lower()
            if command == "quit":
                console.print(f"Game saved. Resume with: play --resume {game.id}")
                return 0
            if command == "help":
                console.print(_GAME_HELP)
                continue
            if command == "moves":
                console.print(", ".join(game.legal_moves()))
                continue
            if command == "resign":
                game.resign()
                break

            feedback = game.submit_move(text)
            if not feedback.accepted:
                console.print(f"[red]{feedback.message}[/red]")
                continue
            _show_game(console, game)

        record = game.acknowledge()
        console.print(f"[bold]{game.status_text}[/bold]")
        if record is not None:
            console.print(f"[dim]Saved as {record.id}[/dim]")
        return 0
    finally:
        await engine.close()


# ---------------------------------------------------------------------------
# puzzle
# ---------------------------------------------------------------------------


def _show_puzzle(console: Console, session: PuzzleSession) -> None:
    definition = session.definition
    themes = ", ".join(theme_label(t) for t in definition.themes)
    title = f"Puzzle {definition.id} ({definition.rating}) | {themes}"
    console.print(render_board(session.fen, flipped=session.player_side == BLACK, title=title))
    console.print(
        f"You play {session.player_side}. Move {session.progress_text}."
    )


def _run_puzzle(console: Console, session: PuzzleSession) -> bool:
    """Drive one puzzle; returns False when the player asked to quit."""
    record = session.replay_opponent()
    if record is not None:
        console.print(f"Opponent plays [bold]{record.notation}[/bold]")
    _show_puzzle(console, session)

    while session.state != PuzzleState.SOLVED:
        if session.state == PuzzleState.AWAITING_OPPONENT_REPLAY:
            record = session.replay_opponent()
            console.print(f"Opponent plays [bold]{record.notation}[/bold]")
            _show_puzzle(console, session)
            continue

        try:
            text = console.input("[bold]> [/bold]").strip()
        except (EOFError, KeyboardInterrupt):
            return False

        command = text.lower()
        if command == "quit":
            return False
        if command == "skip":
            return True
        if command == "help":
            console.print(_PUZZLE_HELP)
            continue
        if command == "hint":
            feedback = session.hint()
        elif command == "solution":
            feedback = session.show_solution()
        elif command == "reset":
            session.reset()
            session.replay_opponent()
            _show_puzzle(console, session)
            continue
        else:
            feedback = session.submit_move(text)

        style = "green" if feedback.accepted else "red"
        console.print(f"[{style}]{feedback.message}[/{style}]")
        if feedback.accepted and session.state != PuzzleState.SOLVED:
            _show_puzzle(console, session)

    console.print(f"[bold green]{session.message}[/bold green]")
    return True


def _puzzle(console: Console, args: argparse.Namespace) -> int:
    _, progress = _make_stores()
    oracle = ChessOracle()
    library = PuzzleLibrary.from_file(SETTINGS.puzzles_path, oracle)
    if not len(library):
        console.print(f"[red]No puzzles found in {SETTINGS.puzzles_path}[/red]")
        return 1

    if args.clear_progress:
        progress.clear()
        console.print("Puzzle progress cleared.")
        return 0

    solved = progress.load()
    if args.list:
        table = Table(title=f"Puzzles ({library.solved_count(solved)}/{len(library)} solved)")
        for column in ("ID", "Rating", "Themes", "Solved"):
            table.add_column(column)
        for definition in library.sorted_by_rating(args.theme):
            table.add_row(
                definition.id,
                str(definition.rating),
                ", ".join(theme_label(t) for t in definition.themes),
                "yes" if solved.is_solved(definition.id) else "",
            )
        console.print(table)
        return 0

    if args.id:
        definition = library.get(args.id)
        if definition is None:
            console.print(f"[red]Unknown puzzle: {args.id}[/red]")
            return 1
        queue = [definition]
    else:
        queue = [p for p in library.sorted_by_rating(args.theme) if not solved.is_solved(p.id)]
        if not queue:
            console.print("All puzzles solved. Use --clear-progress to start over.")
            return 0

    console.print(f"[dim]{_PUZZLE_HELP}[/dim]")
    for definition in queue:
        if not _run_puzzle(console, PuzzleSession(definition, oracle, progress)):
            break
    return 0


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


def _history(console: Console, args: argparse.Namespace) -> int:
    games, _ = _make_stores()

    if args.pgn:
        record = games.get_record(args.pgn)
        if record is None:
            console.print(f"[red]No finished game with id {args.pgn}[/red]")
            return 1
        console.print(record_to_pgn(record), markup=False)
        return 0

    if args.delete:
        games.delete_record(args.delete)
        console.print(f"Deleted {args.delete}")
        return 0

    active = games.active_games()
    if active:
        table = Table(title="Games in progress")
        for column in ("ID", "Started", "Side", "Engine", "Moves"):
            table.add_column(column)
        for snapshot in active.values():
            table.add_row(snapshot.id, snapshot.started_at[:16], snapshot.human_side,
                          snapshot.strength.describe(), str(len(snapshot.history)))
        console.print(table)

    table = Table(title="Finished games")
    for column in ("ID", "Started", "Side", "Engine", "Result", "Moves"):
        table.add_column(column)
    for record in games.records():
        table.add_row(record.id, record.started_at[:16], record.human_side,
                      record.strength.describe(), record.result, str(len(record.moves)))
    console.print(table)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Text Chess: play Stockfish or solve puzzles")
    sub = parser.add_subparsers(dest="command", required=True)

    play = sub.add_parser("play", help="Play a game against Stockfish")
    play.add_argument("--side", choices=[WHITE, BLACK], default=WHITE)
    play.add_argument("--difficulty", choices=list(DIFFICULTY_ELO), default="Medium")
    play.add_argument("--elo", type=int, help="Target engine rating (overrides --difficulty)")
    play.add_argument("--skill", type=int, help="Stockfish skill level 0-20 (overrides --elo)")
    play.add_argument("--fen", help="Custom starting position")
    play.add_argument("--resume", metavar="GAME_ID", help="Resume a saved game")

    puzzle = sub.add_parser("puzzle", help="Solve puzzles")
    puzzle.add_argument("--theme", help="Only puzzles with this theme")
    puzzle.add_argument("--id", help="Open one puzzle by id")
    puzzle.add_argument("--list", action="store_true", help="List puzzles and exit")
    puzzle.add_argument("--clear-progress", action="store_true",
                        help="Forget all solved puzzles")

    history = sub.add_parser("history", help="List saved games")
    history.add_argument("--pgn", metavar="GAME_ID", help="Print a finished game as PGN")
    history.add_argument("--delete", metavar="GAME_ID", help="Delete a finished game")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = _build_parser().parse_args(argv)
    console = Console()
    logging.basicConfig(
        level=SETTINGS.log_level,
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    if args.command == "play":
        return asyncio.run(_play(console, args))
    if args.command == "puzzle":
        return _puzzle(console, args)
    return _history(console, args)


if __name__ == "__main__":
    sys.exit(main())

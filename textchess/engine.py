"""Engine session for Text Chess.

Wraps one Stockfish process via python-chess's asyncio UCI client. Provides:
- Strength fixed per instance (skill level or target Elo)
- Readiness handshake; searches wait for it or fail with EngineUnavailable
- One fresh, time-bounded search per best_move call
- Idempotent teardown that cancels an in-flight search
"""

from __future__ import annotations

import asyncio
import logging
import random
import shutil
from pathlib import Path

import chess
import chess.engine

from textchess.errors import EngineBusy, EngineUnavailable, NoMoveAvailable
from textchess.models import StrengthConfig

log = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/games/stockfish",
    "/usr/bin/stockfish",
]

# Random-move blend ceiling for ratings under the engine's UCI_Elo floor
_MAX_RANDOM_PCT = 0.85

_ENGINE_ERRORS = (chess.engine.EngineError, chess.engine.EngineTerminatedError)


def find_stockfish() -> str:
    """Auto-detect Stockfish binary path.

    Checks known install paths, then falls back to PATH lookup.

    Returns:
        Path to Stockfish binary.

    Raises:
        FileNotFoundError: If Stockfish is not found anywhere.
    """
    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        "Stockfish not found. Install it or set STOCKFISH_PATH."
    )


class EngineSession:
    """One engine process scoped to a single strength configuration."""

    def __init__(
        self,
        strength: StrengthConfig,
        engine_path: str | None = None,
        movetime_ms: int = 1000,
        ready_timeout_s: float = 10.0,
        rng: random.Random | None = None,
    ) -> None:
        self._strength = strength
        self._engine_path = engine_path
        self._movetime = movetime_ms / 1000.0
        self._ready_timeout = ready_timeout_s
        self._rng = rng or random.Random()

        self._transport: asyncio.SubprocessTransport | None = None
        self._protocol: chess.engine.UciProtocol | None = None
        self._settled = asyncio.Event()
        self._ready = False
        self._closed = False
        self._start_error: str | None = None
        self._busy = False
        self._pending: asyncio.Future | None = None
        self._random_pct = 0.0

    @property
    def strength(self) -> StrengthConfig:
        return self._strength

    def is_ready(self) -> bool:
        """True once the engine acknowledged its configuration and until it is closed."""
        return self._ready and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Launch the engine, apply the strength options and wait for readyok.

        Raises:
            EngineUnavailable: If the binary is missing or the handshake fails.
        """
        if self._closed:
            raise EngineUnavailable("Engine session is closed")
        if self._protocol is not None:
            return

        try:
            path = self._engine_path or find_stockfish()
            self._transport, self._protocol = await chess.engine.popen_uci(path)
            await self._protocol.configure(self._strength_options())
            await self._protocol.ping()
        except (OSError, *_ENGINE_ERRORS) as exc:
            self._start_error = str(exc)
            self._settled.set()
            await self._release()
            raise EngineUnavailable(f"Could not start engine: {exc}") from exc

        if self._closed:
            # close() ran while the handshake was in flight
            await self._release()
            raise EngineUnavailable("Engine session is closed")

        self._ready = True
        self._settled.set()
        log.info("Engine ready (%s)", self._strength.describe())

    def _strength_options(self) -> dict:
        """Map the strength config onto the options this engine advertises."""
        options = self._protocol.options
        self._random_pct = 0.0

        if self._strength.skill_level is not None:
            configured = {}
            if "UCI_LimitStrength" in options:
                configured["UCI_LimitStrength"] = False
            if "Skill Level" in options:
                configured["Skill Level"] = self._strength.skill_level
            return configured

        target_elo = self._strength.target_elo
        if "UCI_Elo" not in options:
            log.warning("Engine has no UCI_Elo option; playing at full strength")
            return {}

        elo_option = options["UCI_Elo"]
        floor = elo_option.min if elo_option.min is not None else target_elo
        ceiling = elo_option.max if elo_option.max is not None else target_elo
        if target_elo < floor:
            # Below the engine's floor: weakest limited play blended with random moves
            self._random_pct = max(0.0, _MAX_RANDOM_PCT - (target_elo / floor) * _MAX_RANDOM_PCT)
        configured = {"UCI_Elo": max(floor, min(ceiling, target_elo))}
        if "UCI_LimitStrength" in options:
            configured["UCI_LimitStrength"] = True
        return configured

    async def _wait_ready(self) -> None:
        if self._closed:
            raise EngineUnavailable("Engine session is closed")
        if not self._settled.is_set():
            try:
                await asyncio.wait_for(self._settled.wait(), timeout=self._ready_timeout)
            except asyncio.TimeoutError:
                raise EngineUnavailable("Engine did not become ready in time") from None
        if self._closed:
            raise EngineUnavailable("Engine session is closed")
        if not self._ready:
            raise EngineUnavailable(f"Engine failed to start: {self._start_error}")

    async def best_move(self, fen: str) -> chess.Move:
        """Search the position and return the engine's move.

        Each call starts a fresh search context; only the strength options
        carry over between calls.

        Raises:
            EngineBusy: If another search from this session is outstanding.
            EngineUnavailable: If the engine is not ready, failed, or was closed.
            NoMoveAvailable: If the engine reports no move.
        """
        if self._busy:
            raise EngineBusy("A best-move request is already outstanding")
        self._busy = True
        try:
            await self._wait_ready()
            board = chess.Board(fen)

            if self._random_pct and self._rng.random() < self._random_pct:
                legal_moves = list(board.legal_moves)
                if legal_moves:
                    return self._rng.choice(legal_moves)

            self._pending = asyncio.ensure_future(self._search(board))
            try:
                move = await self._pending
            except asyncio.CancelledError:
                if self._closed:
                    raise EngineUnavailable("Engine closed during search") from None
                raise
            except _ENGINE_ERRORS as exc:
                raise EngineUnavailable(f"Engine search failed: {exc}") from exc
            finally:
                self._pending = None
        finally:
            self._busy = False

        if move is None:
            raise NoMoveAvailable(f"Engine returned no move for {fen}")
        return move

    async def _search(self, board: chess.Board) -> chess.Move | None:
        # A fresh game identifier makes python-chess send ucinewgame first
        result = await self._protocol.play(
            board,
            chess.engine.Limit(time=self._movetime),
            game=object(),
        )
        return result.move

    async def close(self) -> None:
        """Cancel any in-flight search and stop the engine. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._ready = False
        self._settled.set()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        await self._release()
        log.info("Engine closed")

    async def _release(self) -> None:
        protocol, self._protocol = self._protocol, None
        self._transport = None
        if protocol is None:
            return
        try:
            await protocol.quit()
        except _ENGINE_ERRORS:
            pass

    async def reconfigured(self, strength: StrengthConfig) -> EngineSession:
        """Tear this engine down and start a new one at a different strength."""
        await self.close()
        session = EngineSession(
            strength,
            engine_path=self._engine_path,
            movetime_ms=int(self._movetime * 1000),
            ready_timeout_s=self._ready_timeout,
            rng=self._rng,
        )
        await session.start()
        return session

    async def __aenter__(self) -> EngineSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

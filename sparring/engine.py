"""Evaluation engine bridge for reel sparring.

Wraps Stockfish via python-chess's asyncio UCI interface behind a small
message protocol, so the orchestrator never touches the engine process:

    client -> transport   {"type": "evaluate", "requestId", "snapshot", "depth"}
                          {"type": "stop"}
    transport -> client   {"type": "loading"} / {"type": "ready"}
                          {"type": "eval", "requestId", "snapshot", "score",
                           "depth", "bestMove"}
                          {"type": "error", "message", "requestId"?}

Scores on the wire are pawns relative to the side to move in the
snapshot. EvaluationClient keeps exactly one request current; issuing a
new one supersedes the previous one.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import Callable

import chess
import chess.engine

from sparring.classifier import MATE_SCORE, centipawns_to_pawns
from sparring.errors import EngineUnavailable, StaleEvaluation
from sparring.models import EvaluationRequest, EvaluationResult

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]

DEFAULT_DEPTH = 12

Listener = Callable[[dict], None]


def _find_stockfish() -> str:
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
        "Stockfish not found. Install it or set SPARRING_STOCKFISH."
    )


def score_to_pawns(score: chess.engine.Score) -> float:
    """Convert a python-chess Score to pawns.

    Forced mates become +/-MATE_SCORE; "already mated" (mate 0) counts
    as being mated.
    """
    if score is chess.engine.MateGiven:
        return MATE_SCORE
    mate = score.mate()
    if mate is not None:
        return MATE_SCORE if mate > 0 else -MATE_SCORE
    return centipawns_to_pawns(score.score())


class EngineTransport:
    """Message link to an evaluation engine.

    Subclasses deliver every reply through _emit(); they never raise
    engine faults to the caller of send().
    """

    def __init__(self) -> None:
        self._listener: Listener | None = None

    def set_listener(self, listener: Listener) -> None:
        self._listener = listener

    async def start(self) -> None:
        raise NotImplementedError

    async def send(self, message: dict) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return

    def _emit(self, message: dict) -> None:
        if self._listener is not None:
            self._listener(message)


class StockfishTransport(EngineTransport):
    """Stockfish process driven through python-chess's async UCI protocol."""

    def __init__(self, stockfish_path: str | None = None) -> None:
        super().__init__()
        self._stockfish_path = stockfish_path
        self._engine: chess.engine.UciProtocol | None = None
        self._search: asyncio.Task | None = None

    async def start(self) -> None:
        """Launch Stockfish; emits ready once the UCI handshake completes."""
        self._emit({"type": "loading"})
        try:
            if self._stockfish_path is None:
                self._stockfish_path = _find_stockfish()
            await self._open_engine()
        except (FileNotFoundError, OSError, chess.engine.EngineError) as exc:
            logger.warning("Stockfish failed to start: %s", exc)
            self._emit({"type": "error", "message": f"Init failed: {exc}"})
            return
        self._emit({"type": "ready"})

    async def _open_engine(self) -> None:
        _, self._engine = await chess.engine.popen_uci(self._stockfish_path)
        logger.info("Stockfish started from %s", self._stockfish_path)

    async def send(self, message: dict) -> None:
        kind = message.get("type")
        if kind == "stop":
            self._cancel_search()
            return
        if kind != "evaluate":
            self._emit({"type": "error", "message": f"Unknown message type: {kind!r}"})
            return
        if self._engine is None:
            self._emit({
                "type": "error",
                "message": "Engine not ready",
                "requestId": message.get("requestId"),
            })
            return

        # One search at a time: a new position stops the previous one
        self._cancel_search()
        self._search = asyncio.create_task(self._search_position(message))

    def _cancel_search(self) -> None:
        if self._search is not None and not self._search.done():
            self._search.cancel()
        self._search = None

    async def _search_position(self, message: dict) -> None:
        request_id = message.get("requestId")
        snapshot = message.get("snapshot") or ""
        depth = int(message.get("depth") or DEFAULT_DEPTH)

        try:
            board = chess.Board(snapshot)
        except ValueError as exc:
            self._emit({"type": "error", "message": f"Invalid snapshot: {exc}", "requestId": request_id})
            return

        try:
            info = await self._engine.analyse(board, chess.engine.Limit(depth=depth))
        except chess.engine.EngineTerminatedError as exc:
            self._emit({"type": "error", "message": f"Engine terminated: {exc}", "requestId": request_id})
            await self._reopen_engine()
            return
        except chess.engine.EngineError as exc:
            self._emit({"type": "error", "message": f"Engine error: {exc}", "requestId": request_id})
            return

        score = info.get("score")
        if score is None:
            self._emit({"type": "error", "message": "Engine returned no score", "requestId": request_id})
            return

        pv = info.get("pv") or []
        self._emit({
            "type": "eval",
            "requestId": request_id,
            "snapshot": snapshot,
            "score": score_to_pawns(score.relative),
            "depth": info.get("depth", depth),
            "bestMove": pv[0].uci() if pv else None,
        })

    async def _reopen_engine(self) -> None:
        """Restart a crashed Stockfish for later requests (the failed one is not retried)."""
        self._engine = None
        try:
            await self._open_engine()
        except (OSError, chess.engine.EngineError) as exc:
            logger.warning("Stockfish restart failed: %s", exc)

    async def close(self) -> None:
        """Clean up Stockfish process."""
        self._cancel_search()
        if self._engine is None:
            return
        try:
            await self._engine.quit()
        except chess.engine.EngineTerminatedError:
            pass
        self._engine = None


class EvaluationClient:
    """Request/response bridge over an EngineTransport.

    Requests are rejected with EngineUnavailable until the transport has
    sent its ready handshake. A reply is matched to the current request
    by requestId (or snapshot); replies for superseded requests are
    dropped.
    """

    def __init__(self, transport: EngineTransport) -> None:
        self._transport = transport
        self._transport.set_listener(self.handle_message)
        self._ready = asyncio.Event()
        self._handshake = asyncio.Event()
        self._init_error: str | None = None
        self._started = False
        self._next_request_id = 0
        self._current: EvaluationRequest | None = None
        self._pending: asyncio.Future | None = None
        self._stop_tasks: set[asyncio.Task] = set()

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def current_request(self) -> EvaluationRequest | None:
        return self._current

    async def start(self, timeout: float = 10.0) -> None:
        """Start the transport and wait for its ready handshake.

        Raises:
            EngineUnavailable: If the engine reports an init failure or is
                not ready within `timeout` seconds.
        """
        if self.is_ready:
            return
        if not self._started:
            self._started = True
            await self._transport.start()

        try:
            await asyncio.wait_for(self._handshake.wait(), timeout)
        except asyncio.TimeoutError:
            raise EngineUnavailable(f"Engine not ready after {timeout:.1f}s") from None

        if not self.is_ready:
            self._started = False
            self._handshake.clear()
            raise EngineUnavailable(self._init_error or "Engine failed to start")

    async def request_evaluation(self, snapshot: str, depth: int = DEFAULT_DEPTH) -> EvaluationResult:
        """Evaluate a snapshot; supersedes any outstanding request.

        If the caller is cancelled (e.g. by a timeout) while the request is
        still current, the engine is told to stop searching.

        Raises:
            EngineUnavailable: Engine not ready, transport fault, engine
                error reply or malformed reply.
            StaleEvaluation: A newer request superseded this one.
        """
        if not self.is_ready:
            raise EngineUnavailable("Engine not ready")

        self._settle(StaleEvaluation("Superseded by a newer evaluation request"))
        self._next_request_id += 1
        request = EvaluationRequest(snapshot=snapshot, request_id=self._next_request_id, depth=depth)
        future = asyncio.get_running_loop().create_future()
        self._current, self._pending = request, future

        try:
            try:
                await self._transport.send({
                    "type": "evaluate",
                    "requestId": request.request_id,
                    "snapshot": request.snapshot,
                    "depth": request.depth,
                })
            except (OSError, chess.engine.EngineError) as exc:
                self._settle(EngineUnavailable(f"Transport error: {exc}"))
            return await future
        except asyncio.CancelledError:
            if self._current is request:
                self._current = self._pending = None
                self._stop_search()
            raise

    def _stop_search(self) -> None:
        logger.debug("Stopping abandoned evaluation")
        task = asyncio.get_running_loop().create_task(self._send_stop())
        self._stop_tasks.add(task)
        task.add_done_callback(self._stop_tasks.discard)

    async def _send_stop(self) -> None:
        try:
            await self._transport.send({"type": "stop"})
        except (OSError, chess.engine.EngineError) as exc:
            logger.warning("Could not stop engine search: %s", exc)

    def handle_message(self, message: dict) -> None:
        """Entry point for every transport -> client message."""
        kind = message.get("type")
        if kind == "ready":
            logger.info("Evaluation engine ready")
            self._ready.set()
            self._handshake.set()
        elif kind == "loading":
            logger.debug("Evaluation engine loading")
        elif kind == "eval":
            self._resolve(message)
        elif kind == "error":
            self._on_error(message)
        else:
            logger.warning("Ignoring unknown engine message type %r", kind)

    def _resolve(self, message: dict) -> None:
        request = self._current
        if request is None or self._pending is None:
            logger.debug("Dropping evaluation with no outstanding request")
            return

        request_id = message.get("requestId")
        snapshot = message.get("snapshot")
        if request_id is None and snapshot is None:
            self._settle(EngineUnavailable("Malformed evaluation: missing requestId and snapshot"))
            return
        if (request_id is not None and request_id != request.request_id) or (
            request_id is None and snapshot != request.snapshot
        ):
            logger.debug("Dropping stale evaluation for request %s", request_id)
            return

        try:
            result = EvaluationResult(
                snapshot=request.snapshot,
                score=float(message["score"]),
                depth=int(message.get("depth") or 0),
                best_move=message.get("bestMove") or None,
                request_id=request.request_id,
            )
        except (KeyError, TypeError, ValueError):
            self._settle(EngineUnavailable(f"Malformed evaluation: {message!r}"))
            return

        future = self._pending
        self._current = self._pending = None
        if not future.done():
            future.set_result(result)

    def _on_error(self, message: dict) -> None:
        text = message.get("message") or "unknown engine error"
        if not self.is_ready:
            logger.warning("Evaluation engine failed before ready: %s", text)
            self._init_error = text
            self._handshake.set()
            return

        request_id = message.get("requestId")
        if self._current is not None and request_id is not None and request_id != self._current.request_id:
            logger.debug("Dropping engine error for superseded request %s", request_id)
            return

        logger.warning("Evaluation engine error: %s", text)
        self._settle(EngineUnavailable(text))

    def _settle(self, exc: Exception) -> None:
        """Fail the outstanding request (if any) and clear it."""
        future = self._pending
        self._current = self._pending = None
        if future is not None and not future.done():
            future.set_exception(exc)

    async def close(self) -> None:
        self._settle(EngineUnavailable("Evaluation client closed"))
        self._ready.clear()
        self._handshake.clear()
        self._started = False
        await self._transport.close()


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


async def _analyze(fen: str, depth: int, stockfish_path: str | None) -> EvaluationResult:
    board = chess.Board(fen)
    client = EvaluationClient(StockfishTransport(stockfish_path))
    try:
        await client.start()
        return await client.request_evaluation(board.fen(), depth)
    finally:
        await client.close()


def _cli_analyze(fen: str, depth: int, stockfish_path: str | None) -> None:
    """Evaluate a FEN position once and print score and best move.

    Args:
        fen: FEN string of the position to analyze.
        depth: Search depth.
        stockfish_path: Explicit Stockfish binary, or None to auto-detect.
    """
    try:
        result = asyncio.run(_analyze(fen, depth, stockfish_path))
    except ValueError as exc:
        print(f"Invalid FEN: {exc}", file=sys.stderr)
        sys.exit(1)
    except EngineUnavailable as exc:
        print(f"Engine unavailable: {exc}", file=sys.stderr)
        sys.exit(1)

    board = chess.Board(fen)
    print(f"Position: {fen}")
    print(f"Side to move: {'White' if board.turn else 'Black'}")
    print(f"Score (side to move): {result.score:+.2f}  depth {result.depth}")
    print(f"Best move: {result.best_move or '(none)'}")


def main() -> None:
    """CLI entry point for engine.py."""
    parser = argparse.ArgumentParser(
        description="Evaluation engine bridge - analyze positions"
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument("--stockfish", default=None, help="Path to Stockfish binary")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a FEN position")
    analyze_parser.add_argument("fen", type=str, help="FEN string to analyze")
    analyze_parser.add_argument("--depth", type=int, default=DEFAULT_DEPTH, help="Search depth")

    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper())

    if args.command == "analyze":
        _cli_analyze(args.fen, args.depth, args.stockfish)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

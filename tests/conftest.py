"""Shared test fixtures with dual-mode support (scripted vs real Stockfish).

Usage:
    uv run pytest tests/                  # Fast, scripted engine (no Stockfish)
    uv run pytest tests/ --e2e            # Also run tests against real Stockfish

Fixtures:
    transport          - ScriptedTransport: records evaluate requests and
                         replies only when the test says so.
    fast_config        - SessionConfig with zero presentation delays.
    enable_validation  - Sets SPARRING_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Callable

import chess
import pytest

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))

from sparring.config import SessionConfig  # noqa: E402
from sparring.engine import EngineTransport  # noqa: E402

# Italian Game after 3.Bc4, Black to move
ITALIAN_FEN = "r1bqkbnr/pppp1ppp/2n5/4p3/2B1P3/5N2/PPPP1PPP/RNBQK2R b KQkq - 3 3"


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no mocks).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e is passed."""
    if config.getoption("--e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ---------------------------------------------------------------------------
# Scripted engine transport
# ---------------------------------------------------------------------------


def eval_reply(request: dict, score: float, best_move: str | None = None, depth: int = 12) -> dict:
    """Build an engine 'eval' message answering `request`."""
    return {
        "type": "eval",
        "requestId": request["requestId"],
        "snapshot": request["snapshot"],
        "score": score,
        "depth": depth,
        "bestMove": best_move,
    }


class ScriptedTransport(EngineTransport):
    """In-memory engine that replies when told to (or via a responder)."""

    def __init__(
        self,
        ready: bool = True,
        responder: Callable[[dict], dict | None] | None = None,
    ) -> None:
        super().__init__()
        self.requests: list[dict] = []
        self.stops = 0
        self.started = False
        self.closed = False
        self._ready = ready
        self._responder = responder

    async def start(self) -> None:
        self.started = True
        if self._ready:
            self._emit({"type": "ready"})

    async def send(self, message: dict) -> None:
        if message.get("type") == "stop":
            self.stops += 1
            return
        self.requests.append(message)
        if self._responder is not None:
            reply = self._responder(message)
            if reply is not None:
                asyncio.get_running_loop().call_soon(self._emit, reply)

    async def close(self) -> None:
        self.closed = True

    def emit(self, message: dict) -> None:
        self._emit(message)

    def reply(self, request: dict, score: float, best_move: str | None = None, depth: int = 12) -> None:
        self._emit(eval_reply(request, score, best_move, depth))

    def fail(self, request: dict, message: str = "engine crashed") -> None:
        self._emit({"type": "error", "message": message, "requestId": request["requestId"]})


def first_move_responder(score: float = 0.1) -> Callable[[dict], dict]:
    """Responder: constant score for the side to move, best move = first legal move."""

    def _respond(request: dict) -> dict:
        board = chess.Board(request["snapshot"])
        best = next(iter(board.legal_moves), None)
        return eval_reply(request, score, best.uci() if best else None)

    return _respond


async def until(predicate: Callable[[], bool], attempts: int = 200) -> None:
    """Yield to the event loop until `predicate()` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture()
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture()
def fast_config() -> SessionConfig:
    return SessionConfig(
        opponent_move_delay=0.0,
        fail_settle_delay=0.0,
        evaluation_timeout=2.0,
        ready_timeout=1.0,
    )


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set SPARRING_VALIDATE=1 for the test session.

    Restores the original env var value after the test.
    """
    original = os.environ.get("SPARRING_VALIDATE")
    os.environ["SPARRING_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("SPARRING_VALIDATE", None)
    else:
        os.environ["SPARRING_VALIDATE"] = original

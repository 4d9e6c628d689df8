"""MCP server for reel sparring sessions.

Presentation adapter over the SessionOrchestrator: exposes the session
commands (start, move, end, reset) and read-only queries as FastMCP
tools. The projection is synced to data/current_session.json after
every state change for TUI consumption, and each finished session is
saved as PGN under data/sessions/.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP

from sparring.config import DEFAULT_CUE_FEN, DEFAULT_PLAYER_SIDE, SessionConfig
from sparring.engine import EngineTransport, EvaluationClient, StockfishTransport
from sparring.models import SessionView
from sparring.orchestrator import SessionOrchestrator, player_to_move

from response_schemas import minify_legal_targets, minify_session_view  # noqa: E402

logger = logging.getLogger(__name__)

mcp = FastMCP("reel-sparring")

_DATA_DIR = _PROJECT_ROOT / "data"

# Process-wide orchestrator: created on first use, torn down by shutdown()
_orchestrator: SessionOrchestrator | None = None

# Session ids whose PGN has been written
_saved_sessions: set[int] = set()


def _make_transport(config: SessionConfig) -> EngineTransport:
    return StockfishTransport(config.stockfish_path)


def _get_orchestrator() -> SessionOrchestrator:
    """Return the shared orchestrator, creating it on first use."""
    global _orchestrator
    if _orchestrator is None:
        config = SessionConfig.from_env()
        orchestrator = SessionOrchestrator(EvaluationClient(_make_transport(config)), config)
        orchestrator.subscribe(_on_session_change)
        _orchestrator = orchestrator
    return _orchestrator


async def shutdown() -> None:
    """Close the shared orchestrator and its engine process."""
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.close()
    _orchestrator = None
    _saved_sessions.clear()


def _respond(orchestrator: SessionOrchestrator) -> dict:
    view = asdict(orchestrator.view())
    return minify_session_view(view, orchestrator.session.starting_fen)


def _on_session_change(view: SessionView) -> None:
    """Sync the projection to disk; archive the PGN once a session ends."""
    _sync_session_json(asdict(view))
    if view.session_status == "ended" and view.session_id not in _saved_sessions:
        _saved_sessions.add(view.session_id)
        _auto_save_pgn(view)


def _sync_session_json(view: dict) -> None:
    """Write the session projection to data/current_session.json atomically.

    Uses temp file + os.replace() for atomic write.

    Args:
        view: SessionView dict to persist.
    """
    _DATA_DIR.mkdir(parents=True, exist_ok=True)
    target = _DATA_DIR / "current_session.json"
    tmp = _DATA_DIR / "current_session.tmp"
    tmp.write_text(
        json.dumps(view, indent=2, default=str, ensure_ascii=False),
        encoding="utf-8",
    )
    os.replace(tmp, target)


def _auto_save_pgn(view: SessionView) -> Path | None:
    """Save the ended session's moves as PGN under data/sessions/.

    Args:
        view: Projection of the session that just ended.

    Returns:
        Path of the written file, or None when there is no position.
    """
    orchestrator = _orchestrator
    if orchestrator is None or orchestrator.position is None:
        return None

    player_is_white = view.player_side == "white"
    pgn_game = orchestrator.position.to_pgn(
        white="Player" if player_is_white else "Stockfish",
        black="Stockfish" if player_is_white else "Player",
    )
    pgn_game.headers["Termination"] = (
        "position collapsed" if view.status_tier == "fail" else "ended by player"
    )

    sessions_dir = _DATA_DIR / "sessions"
    sessions_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filename = f"session_{timestamp}_{view.session_id}.pgn"
    target = sessions_dir / filename
    tmp = sessions_dir / f"{filename}.tmp"
    tmp.write_text(str(pgn_game) + "\n", encoding="utf-8")
    os.replace(tmp, target)
    logger.info("Saved session %d to %s", view.session_id, target)
    return target


# ---------------------------------------------------------------------------
# Session commands
# ---------------------------------------------------------------------------


@mcp.tool()
async def start_session(
    fen: str = DEFAULT_CUE_FEN,
    player_side: str = DEFAULT_PLAYER_SIDE,
) -> dict:
    """Pause the reel at its cue and start a sparring session.

    Args:
        fen: Cue position FEN. Default is the Italian Game, Black to move.
        player_side: 'w'/'b' or 'white'/'black'. Default 'b'.

    Returns:
        Session dict (evaluation of the start position is already running).
    """
    orchestrator = _get_orchestrator()
    if not orchestrator.engine_ready:
        await orchestrator.connect_engine()

    if orchestrator.start_session(fen, player_side) is None:
        return {"error": orchestrator.last_rejection or "Session could not be started"}
    return _respond(orchestrator)


@mcp.tool()
async def submit_move(from_square: str, to_square: str, promotion: str | None = None) -> dict:
    """Play the player's move.

    Args:
        from_square: Origin square, e.g. 'f8'.
        to_square: Destination square, e.g. 'c5'.
        promotion: Optional promotion piece ('q', 'r', 'b', 'n'); pawns
            promote to a queen by default.

    Returns:
        Updated session dict, or an error dict if the move was rejected.
    """
    orchestrator = _get_orchestrator()
    if orchestrator.submit_user_move(from_square, to_square, promotion) is None:
        return {"error": orchestrator.last_rejection or "Move rejected"}
    return _respond(orchestrator)


@mcp.tool()
async def end_session() -> dict:
    """End the active session and let the reel resume."""
    orchestrator = _get_orchestrator()
    if not orchestrator.end_session():
        return {"error": orchestrator.last_rejection or "No active session"}
    return _respond(orchestrator)


@mcp.tool()
async def reset_session() -> dict:
    """Clear an ended session back to idle."""
    orchestrator = _get_orchestrator()
    if not orchestrator.reset_session():
        return {"error": orchestrator.last_rejection or "Session cannot be reset now"}
    return _respond(orchestrator)


@mcp.tool()
async def reevaluate() -> dict:
    """Ask the engine again after an evaluation failure."""
    orchestrator = _get_orchestrator()
    if not orchestrator.reevaluate():
        return {"error": orchestrator.last_rejection or "No active session"}
    return _respond(orchestrator)


# ---------------------------------------------------------------------------
# Read-only queries
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_session() -> dict:
    """Get the current session projection."""
    return _respond(_get_orchestrator())


@mcp.tool()
async def get_legal_targets(square: str) -> dict:
    """List destination squares for the piece on a square.

    Args:
        square: Square name, e.g. 'f8'.

    Returns:
        Dict with square, targets, and count.
    """
    targets = _get_orchestrator().legal_targets(square)
    return minify_legal_targets(square, targets)


@mcp.tool()
async def wait_for_turn(timeout: float = 10.0) -> dict:
    """Wait until the player may move or the session is no longer active.

    Args:
        timeout: Seconds to wait before returning the current state.

    Returns:
        Session dict; includes 'timed_out': True if the wait expired.
    """
    orchestrator = _get_orchestrator()

    def _ready(view: SessionView) -> bool:
        if view.session_status != "active":
            return True
        return player_to_move(view) and not view.is_evaluating

    try:
        await orchestrator.wait_for(_ready, timeout)
    except asyncio.TimeoutError:
        response = _respond(orchestrator)
        response["timed_out"] = True
        return response
    return _respond(orchestrator)


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("SPARRING_LOG_LEVEL", "WARNING").upper())
    mcp.run()

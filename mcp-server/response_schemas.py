"""Response schemas and minification for MCP tool responses.

Minifies SessionView projections to reduce LLM context token waste.
data/current_session.json (TUI sync) is NOT affected, only MCP return
values.

PGN string format for move_list uses standard chess notation and
respects the side that moved first (3...Bc5 4.c3 ...).
"""

from __future__ import annotations

import os

import chess


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_session_view(view: dict, starting_fen: str | None = None) -> dict:
    """Minify a SessionView dict for MCP response.

    Compacts move_history to a PGN string, flattens last_move to UCI-style
    text, and drops optional fields that carry no information.

    Args:
        view: Full SessionView dict (from dataclasses.asdict).
        starting_fen: FEN the session started from, for move numbering.

    Returns:
        Minified dict with reduced token footprint.
    """
    result = {}

    # Keep core fields as-is
    for key in (
        "session_status", "session_id", "fen", "player_side",
        "score_for_player", "status_tier", "message", "is_evaluating",
        "is_opponent_thinking", "stream_paused", "pending_suggestion",
        "is_game_over",
    ):
        if key in view:
            result[key] = view[key]

    moves = view.get("move_history", [])
    if isinstance(moves, list):
        result["move_list"] = _moves_to_pgn_string(moves, starting_fen)
    else:
        result["move_list"] = moves

    last_move = view.get("last_move")
    if isinstance(last_move, dict):
        result["last_move"] = f"{last_move.get('from')}{last_move.get('to')}"
    else:
        result["last_move"] = None

    # Only include notice/result when set
    if view.get("notice"):
        result["notice"] = view["notice"]
    if view.get("result"):
        result["result"] = view["result"]

    return result


def minify_legal_targets(square: str, targets: list[str]) -> dict:
    """Compact legal-target response: square, targets, count."""
    return {"square": square, "targets": targets, "count": len(targets)}


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[str], starting_fen: str | None = None) -> str:
    """Number a list of SAN moves the way PGN movetext does.

    ['e4', 'e5', 'Nf3'] from the initial position -> '1.e4 e5 2.Nf3';
    ['Bc5', 'c3'] from a Black-to-move cue at move 3 -> '3...Bc5 4.c3'.
    """
    if not moves:
        return ""

    start = chess.Board(starting_fen) if starting_fen else chess.Board()
    # Plies since White's first move
    ply = (start.fullmove_number - 1) * 2 + (0 if start.turn == chess.WHITE else 1)

    tokens = []
    for offset, san in enumerate(moves):
        number, black = divmod(ply + offset, 2)
        if not black:
            tokens.append(f"{number + 1}.{san}")
        elif offset == 0:
            tokens.append(f"{number + 1}...{san}")
        else:
            tokens.append(san)
    return " ".join(tokens)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

SESSION_VIEW_SCHEMA = {
    "session_status": str,
    "session_id": int,
    "fen": (str, type(None)),
    "player_side": str,
    "score_for_player": (int, float, type(None)),
    "status_tier": str,
    "message": str,
    "is_evaluating": bool,
    "is_opponent_thinking": bool,
    "stream_paused": bool,
    "pending_suggestion": (str, type(None)),
    "is_game_over": bool,
    "move_list": str,
    "last_move": (str, type(None)),
}

LEGAL_TARGETS_SCHEMA = {
    "square": str,
    "targets": list,
    "count": int,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Check a tool response against a {key: type or tuple of types} schema.

    A no-op unless SPARRING_VALIDATE=1 is set.

    Returns:
        One message per missing or mistyped key; empty when valid.
    """
    if os.environ.get("SPARRING_VALIDATE") != "1":
        return []
    if not isinstance(response, dict):
        return [f"Response is not a dict: {type(response).__name__}"]

    problems = []
    for key, allowed in schema.items():
        if key not in response:
            problems.append(f"Missing key: {key}")
            continue
        allowed = allowed if isinstance(allowed, tuple) else (allowed,)
        if not isinstance(response[key], allowed):
            expected = " | ".join(t.__name__ for t in allowed)
            problems.append(
                f"Key '{key}': expected {expected}, got {type(response[key]).__name__}"
            )
    return problems

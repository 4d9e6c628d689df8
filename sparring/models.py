"""Shared data models for reel sparring sessions.

Session and SessionEvalState are owned exclusively by the
SessionOrchestrator. SessionView is the read-only projection handed to
presentation adapters (MCP server, TUI, terminal loop).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import chess

_SIDE_ALIASES = {
    "w": chess.WHITE,
    "white": chess.WHITE,
    "b": chess.BLACK,
    "black": chess.BLACK,
}


def parse_side(value: str | bool) -> chess.Color:
    """Parse 'w'/'b'/'white'/'black' (or a chess.Color) into a chess.Color.

    Raises:
        ValueError: If the value names no side.
    """
    if isinstance(value, bool):
        return value
    side = _SIDE_ALIASES.get(str(value).strip().lower())
    if side is None:
        raise ValueError(f"Unknown side: {value!r} (expected 'w', 'b', 'white' or 'black')")
    return side


def side_name(side: chess.Color) -> str:
    return "white" if side == chess.WHITE else "black"


class SessionStatus(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    ENDED = "ended"


class StatusTier(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    FAIL = "fail"


@dataclass(frozen=True)
class LastMove:
    from_square: str
    to_square: str


@dataclass(frozen=True)
class MoveRecord:
    """A move committed to the canonical position."""

    uci: str
    san: str
    from_square: str
    to_square: str
    side: str
    fen_after: str
    promotion: str | None = None
    by_player: bool = True


@dataclass(frozen=True)
class EvaluationRequest:
    snapshot: str
    request_id: int
    depth: int


@dataclass(frozen=True)
class EvaluationResult:
    """Engine verdict for one snapshot.

    score is in pawns, relative to the side to move in snapshot.
    """

    snapshot: str
    score: float
    depth: int
    best_move: str | None = None
    request_id: int | None = None


@dataclass
class SessionEvalState:
    score_for_player: float | None = None
    status_tier: StatusTier = StatusTier.SAFE
    pending_suggestion: str | None = None
    is_evaluating: bool = False
    is_opponent_thinking: bool = False


@dataclass
class Session:
    status: SessionStatus = SessionStatus.IDLE
    session_id: int = 0
    starting_fen: str | None = None
    player_side: chess.Color = chess.WHITE
    move_history: list[MoveRecord] = field(default_factory=list)
    last_move: LastMove | None = None
    stream_paused: bool = False
    notice: str | None = None


@dataclass
class SessionView:
    """Read-only projection of a session for the presentation layer."""

    session_status: str
    session_id: int
    fen: str | None
    player_side: str
    score_for_player: float | None
    status_tier: str
    message: str
    is_evaluating: bool
    is_opponent_thinking: bool
    stream_paused: bool
    move_history: list[str] = field(default_factory=list)
    last_move: dict | None = None
    pending_suggestion: str | None = None
    notice: str | None = None
    is_game_over: bool = False
    result: str | None = None

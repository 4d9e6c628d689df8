"""Threshold classification of perspective-normalized evaluations.

All scores here are in pawns and, after normalize_score(), positive
means the position favours the human player.
"""

from __future__ import annotations

import chess

from sparring.models import StatusTier

WARNING_THRESHOLD = -0.8
FAIL_THRESHOLD = -1.5

# Pawn value reported for forced mates (sign = who mates)
MATE_SCORE = 999.0

_TIER_MESSAGES = {
    StatusTier.SAFE: "Position is solid. Keep exploring!",
    StatusTier.WARNING: "Careful! Your position is getting worse.",
    StatusTier.FAIL: "Position collapsed! Session ending...",
}


def centipawns_to_pawns(centipawns: int) -> float:
    return centipawns / 100.0


def classify(score_for_player: float) -> StatusTier:
    """Map a player-perspective score onto a status tier.

    Args:
        score_for_player: Score in pawns, positive = good for the player.

    Returns:
        FAIL at or below FAIL_THRESHOLD, WARNING at or below
        WARNING_THRESHOLD, SAFE otherwise.
    """
    if score_for_player <= FAIL_THRESHOLD:
        return StatusTier.FAIL
    if score_for_player <= WARNING_THRESHOLD:
        return StatusTier.WARNING
    return StatusTier.SAFE


def normalize_score(
    raw_score: float,
    side_to_move_at_eval: chess.Color,
    player_side: chess.Color,
) -> float:
    """Convert an engine score to the player's perspective.

    The engine reports relative to the side to move; the score is
    negated whenever that side is not the player's.
    """
    if side_to_move_at_eval != player_side:
        return -raw_score
    return raw_score


def describe_tier(tier: StatusTier) -> tuple[str, bool]:
    """Return (message, should_continue) for a status tier."""
    return _TIER_MESSAGES[tier], tier != StatusTier.FAIL

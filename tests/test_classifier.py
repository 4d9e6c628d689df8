"""Pytest tests for threshold classification and perspective normalization."""

from __future__ import annotations

import chess
import pytest

from sparring.classifier import (
    FAIL_THRESHOLD,
    WARNING_THRESHOLD,
    centipawns_to_pawns,
    classify,
    describe_tier,
    normalize_score,
)
from sparring.models import StatusTier


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------


class TestClassify:

    def test_thresholds(self):
        assert WARNING_THRESHOLD == -0.8
        assert FAIL_THRESHOLD == -1.5

    @pytest.mark.parametrize("score", [5.0, 0.3, 0.0, -0.5, -0.79])
    def test_safe(self, score):
        assert classify(score) == StatusTier.SAFE

    @pytest.mark.parametrize("score", [-0.8, -1.0, -1.49])
    def test_warning(self, score):
        assert classify(score) == StatusTier.WARNING

    @pytest.mark.parametrize("score", [-1.5, -1.6, -3.0, -999.0])
    def test_fail(self, score):
        assert classify(score) == StatusTier.FAIL

    def test_boundaries_are_inclusive_downward(self):
        assert classify(-0.8) == StatusTier.WARNING
        assert classify(-0.8 + 1e-9) == StatusTier.SAFE
        assert classify(-1.5) == StatusTier.FAIL
        assert classify(-1.5 + 1e-9) == StatusTier.WARNING

    def test_monotonic(self):
        order = {StatusTier.SAFE: 0, StatusTier.WARNING: 1, StatusTier.FAIL: 2}
        scores = [x / 10 for x in range(30, -40, -1)]
        tiers = [order[classify(s)] for s in scores]
        assert tiers == sorted(tiers)


# ---------------------------------------------------------------------------
# normalize_score
# ---------------------------------------------------------------------------


class TestNormalize:

    def test_same_side_keeps_sign(self):
        assert normalize_score(0.3, chess.BLACK, chess.BLACK) == 0.3
        assert normalize_score(-2.0, chess.WHITE, chess.WHITE) == -2.0

    def test_other_side_negates(self):
        assert normalize_score(1.6, chess.WHITE, chess.BLACK) == -1.6
        assert normalize_score(-0.4, chess.BLACK, chess.WHITE) == 0.4

    @pytest.mark.parametrize("raw", [2.0, -1.25, 0.0, 999.0])
    def test_double_normalization_is_identity(self, raw):
        once = normalize_score(raw, chess.WHITE, chess.BLACK)
        assert normalize_score(once, chess.WHITE, chess.BLACK) == raw


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def test_centipawns_to_pawns():
    assert centipawns_to_pawns(150) == 1.5
    assert centipawns_to_pawns(-80) == -0.8


def test_describe_tier():
    message, should_continue = describe_tier(StatusTier.FAIL)
    assert should_continue is False
    assert "collapsed" in message.lower()

    for tier in (StatusTier.SAFE, StatusTier.WARNING):
        message, should_continue = describe_tier(tier)
        assert should_continue is True
        assert message

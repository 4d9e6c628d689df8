"""Pytest tests for SessionConfig defaults, env overrides and validation."""

from __future__ import annotations

import chess
import pytest

from sparring.config import DEFAULT_CUE_FEN, SessionConfig
from sparring.position import PositionState


def test_defaults():
    config = SessionConfig()
    assert config.opponent_move_delay == 0.5
    assert config.fail_settle_delay == 1.2
    assert config.search_depth == 12
    assert config.stockfish_path is None


def test_default_cue_is_black_to_move():
    pos = PositionState(DEFAULT_CUE_FEN)
    assert pos.current_side_to_move() == chess.BLACK


def test_from_env():
    config = SessionConfig.from_env({
        "SPARRING_OPPONENT_DELAY": "0",
        "SPARRING_FAIL_DELAY": "2.5",
        "SPARRING_DEPTH": "8",
        "SPARRING_STOCKFISH": "/usr/games/stockfish",
        "SPARRING_EVAL_TIMEOUT": "",
    })
    assert config.opponent_move_delay == 0.0
    assert config.fail_settle_delay == 2.5
    assert config.search_depth == 8
    assert config.stockfish_path == "/usr/games/stockfish"
    assert config.evaluation_timeout == 15.0


def test_from_env_malformed_names_variable():
    with pytest.raises(ValueError, match="SPARRING_DEPTH"):
        SessionConfig.from_env({"SPARRING_DEPTH": "deep"})


@pytest.mark.parametrize("field, value", [
    ("search_depth", 0),
    ("opponent_move_delay", -1.0),
    ("fail_settle_delay", -0.1),
    ("evaluation_timeout", 0.0),
    ("ready_timeout", -5.0),
])
def test_validation(field, value):
    with pytest.raises(ValueError, match=field):
        SessionConfig(**{field: value})


def test_with_overrides_skips_none():
    config = SessionConfig().with_overrides(search_depth=6, opponent_move_delay=None)
    assert config.search_depth == 6
    assert config.opponent_move_delay == 0.5

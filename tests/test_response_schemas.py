"""Pytest tests for MCP response minification and schema validation."""

from __future__ import annotations

import os
import sys
from pathlib import Path

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT / "mcp-server"))

from conftest import ITALIAN_FEN  # noqa: E402
from response_schemas import (  # noqa: E402
    SESSION_VIEW_SCHEMA,
    _moves_to_pgn_string,
    minify_session_view,
    validate_response,
)


def _view(**overrides) -> dict:
    view = {
        "session_status": "active",
        "session_id": 1,
        "fen": ITALIAN_FEN,
        "player_side": "black",
        "score_for_player": 0.3,
        "status_tier": "safe",
        "message": "Position is solid. Keep exploring!",
        "is_evaluating": False,
        "is_opponent_thinking": False,
        "stream_paused": True,
        "move_history": [],
        "last_move": None,
        "pending_suggestion": "g8f6",
        "notice": None,
        "is_game_over": False,
        "result": None,
    }
    view.update(overrides)
    return view


class TestMovesToPgn:

    def test_from_initial_position(self):
        assert _moves_to_pgn_string(["e4", "e5", "Nf3"]) == "1.e4 e5 2.Nf3"

    def test_black_moves_first(self):
        assert _moves_to_pgn_string(["Bc5", "c3", "Nf6"], ITALIAN_FEN) == "3...Bc5 4.c3 Nf6"

    def test_empty(self):
        assert _moves_to_pgn_string([], ITALIAN_FEN) == ""


class TestMinifySessionView:

    def test_compacts_moves_and_last_move(self):
        view = _view(move_history=["Bc5", "c3"], last_move={"from": "c2", "to": "c3"})
        result = minify_session_view(view, ITALIAN_FEN)
        assert result["move_list"] == "3...Bc5 4.c3"
        assert result["last_move"] == "c2c3"
        assert "move_history" not in result
        assert validate_response(result, SESSION_VIEW_SCHEMA) == []

    def test_optional_fields_only_when_set(self):
        result = minify_session_view(_view(), ITALIAN_FEN)
        assert "notice" not in result
        assert "result" not in result

        result = minify_session_view(_view(notice="Evaluation unavailable: timeout", result="0-1"))
        assert result["notice"] == "Evaluation unavailable: timeout"
        assert result["result"] == "0-1"


class TestValidateResponse:

    def test_reports_missing_and_mistyped(self):
        result = minify_session_view(_view(), ITALIAN_FEN)
        del result["fen"]
        result["session_id"] = "one"
        errors = validate_response(result, SESSION_VIEW_SCHEMA)
        assert "Missing key: fen" in errors
        assert any("session_id" in e for e in errors)

    def test_disabled_without_env(self, monkeypatch):
        monkeypatch.delenv("SPARRING_VALIDATE", raising=False)
        assert os.environ.get("SPARRING_VALIDATE") is None
        assert validate_response({}, SESSION_VIEW_SCHEMA) == []

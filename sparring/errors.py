"""Exception taxonomy for sparring sessions.

PositionState and EvaluationClient raise these; the SessionOrchestrator
catches all of them at its entry points and turns them into session
state, so none of them ever escapes to the presentation layer.
"""

from __future__ import annotations


class SparringError(Exception):
    """Base class for all session faults."""


class IllegalMove(SparringError):
    """A move was rejected by the move-generation capability."""

    def __init__(self, move: str, reason: str = "illegal in the current position") -> None:
        self.move = move
        self.reason = reason
        super().__init__(f"Illegal move {move}: {reason}")


class EngineUnavailable(SparringError):
    """The evaluation engine failed, timed out, or was not ready."""


class StaleEvaluation(SparringError):
    """An evaluation or scheduled action no longer matches the live session."""


class InvalidTransition(SparringError):
    """A command was issued in a session state that forbids it."""

    def __init__(self, command: str, status: str) -> None:
        self.command = command
        self.status = status
        super().__init__(f"{command} is not allowed while session is {status}")

"""Session orchestrator for reel sparring.

Owns the one live Session and sequences three independently timed
actors: user moves (synchronous commands), evaluation replies (async,
possibly late or out of order) and the automated opponent (delayed
timer). All mutation happens on the asyncio event loop thread, through
the public commands or through callbacks that first re-check that the
session and position they were created for are still current.

Lifecycle:

    idle --start_session--> active --end_session / fail--> ended
      ^                                                      |
      +--------------------- reset_session ------------------+
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

import chess

from sparring.classifier import classify, describe_tier, normalize_score
from sparring.config import SessionConfig
from sparring.engine import EvaluationClient
from sparring.errors import (
    EngineUnavailable,
    IllegalMove,
    InvalidTransition,
    SparringError,
    StaleEvaluation,
)
from sparring.models import (
    EvaluationResult,
    LastMove,
    MoveRecord,
    Session,
    SessionEvalState,
    SessionStatus,
    SessionView,
    StatusTier,
    parse_side,
    side_name,
)
from sparring.position import PositionState

logger = logging.getLogger(__name__)

Listener = Callable[[SessionView], None]


@dataclass
class ScheduledWork:
    """A delayed action tagged with the session and position it was meant for."""

    kind: str
    session_id: int
    snapshot: str | None
    handle: asyncio.TimerHandle | None = field(default=None, repr=False)

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()


class SessionOrchestrator:
    """State machine for one interactive sparring session at a time.

    Commands never raise for user or engine faults: rejected commands
    return None/False and leave the session untouched, with the reason
    kept in `last_rejection`. Must be driven from a running event loop.
    """

    def __init__(self, client: EvaluationClient, config: SessionConfig | None = None) -> None:
        self._client = client
        self._config = config or SessionConfig()
        self._session = Session()
        self._eval = SessionEvalState()
        self._position: PositionState | None = None
        self._session_seq = 0
        self._work: list[ScheduledWork] = []
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Listener] = []
        self._changed = asyncio.Event()
        self.last_rejection: str | None = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def engine_ready(self) -> bool:
        return self._client.is_ready

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def session(self) -> Session:
        return self._session

    @property
    def eval_state(self) -> SessionEvalState:
        return self._eval

    @property
    def position(self) -> PositionState | None:
        return self._position

    @property
    def scheduled_work(self) -> list[ScheduledWork]:
        return list(self._work)

    def view(self) -> SessionView:
        """Build the read-only projection for presentation adapters."""
        message, _ = describe_tier(self._eval.status_tier)
        position = self._position
        last_move = self._session.last_move
        return SessionView(
            session_status=self._session.status.value,
            session_id=self._session.session_id,
            fen=position.serialize() if position else None,
            player_side=side_name(self._session.player_side),
            score_for_player=self._eval.score_for_player,
            status_tier=self._eval.status_tier.value,
            message=message,
            is_evaluating=self._eval.is_evaluating,
            is_opponent_thinking=self._eval.is_opponent_thinking,
            stream_paused=self._session.stream_paused,
            move_history=[m.san for m in self._session.move_history],
            last_move=(
                {"from": last_move.from_square, "to": last_move.to_square}
                if last_move else None
            ),
            pending_suggestion=self._eval.pending_suggestion,
            notice=self._session.notice,
            is_game_over=position.is_game_over() if position else False,
            result=position.result() if position else None,
        )

    def legal_targets(self, square: str) -> list[str]:
        """Destination squares for the piece on `square` (empty unless active)."""
        if self._session.status != SessionStatus.ACTIVE or self._position is None:
            return []
        return self._position.legal_targets(square)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` with a fresh SessionView after every state change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def wait_for(
        self,
        predicate: Callable[[SessionView], bool],
        timeout: float | None = None,
    ) -> SessionView:
        """Wait until the projection satisfies `predicate`.

        Raises:
            asyncio.TimeoutError: If `timeout` elapses first.
        """

        async def _wait() -> SessionView:
            while True:
                view = self.view()
                if predicate(view):
                    return view
                self._changed.clear()
                await self._changed.wait()

        return await asyncio.wait_for(_wait(), timeout)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def connect_engine(self) -> bool:
        """Start the evaluation engine and wait for its ready handshake."""
        try:
            await self._client.start(self._config.ready_timeout)
        except EngineUnavailable as exc:
            logger.warning("Evaluation engine unavailable: %s", exc)
            self._session.notice = f"Evaluation unavailable: {exc}"
            self._notify()
            return False
        return True

    def start_session(self, fen: str, player_side: str | bool) -> SessionView | None:
        """Open a session at a cue position (idle -> active).

        Immediately requests an evaluation of the starting position so a
        position that is already lost fails straight away.

        Args:
            fen: Starting position FEN.
            player_side: Side the human plays ('w'/'b'/'white'/'black').

        Returns:
            The new SessionView, or None if rejected.
        """
        if self._session.status != SessionStatus.IDLE:
            self._reject(InvalidTransition("start_session", self._session.status.value))
            return None

        try:
            side = parse_side(player_side)
            position = PositionState(fen, side)
        except ValueError as exc:
            self._reject(exc)
            return None

        self._cancel_work()
        self._session_seq += 1
        self._session = Session(
            status=SessionStatus.ACTIVE,
            session_id=self._session_seq,
            starting_fen=position.starting_fen,
            player_side=side,
            stream_paused=True,
        )
        self._eval = SessionEvalState()
        self._position = position
        self.last_rejection = None
        logger.info(
            "Session %d started: %s, player is %s",
            self._session.session_id, position.starting_fen, side_name(side),
        )

        self._request_evaluation()
        self._notify()
        return self.view()

    def submit_user_move(
        self,
        from_square: str,
        to_square: str,
        promotion: str | None = None,
    ) -> MoveRecord | None:
        """Play the human's move.

        Rejected (None, nothing changes) unless the session is active, it
        is the player's turn, the position has not collapsed and the move
        is legal.
        """
        session = self._session
        if session.status != SessionStatus.ACTIVE or self._position is None:
            self._reject(InvalidTransition("submit_user_move", session.status.value))
            return None
        if self._eval.status_tier == StatusTier.FAIL:
            self._reject(InvalidTransition("submit_user_move", "collapsing"))
            return None
        if self._position.current_side_to_move() != session.player_side or self._eval.is_opponent_thinking:
            self._reject(InvalidTransition("submit_user_move", "on the opponent's turn"))
            return None

        try:
            record = self._position.apply_move(from_square, to_square, promotion)
        except IllegalMove as exc:
            self._reject(exc)
            return None

        self.last_rejection = None
        self._record_move(record)
        self._eval.pending_suggestion = None
        self._request_evaluation()
        self._notify()
        return record

    def end_session(self) -> bool:
        """Close the active session (active -> ended) and release the stream."""
        if self._session.status != SessionStatus.ACTIVE:
            self._reject(InvalidTransition("end_session", self._session.status.value))
            return False

        self._cancel_work()
        self._session.status = SessionStatus.ENDED
        self._session.stream_paused = False
        self._eval.is_evaluating = False
        self._eval.is_opponent_thinking = False
        logger.info(
            "Session %d ended after %d moves (tier %s)",
            self._session.session_id, len(self._session.move_history),
            self._eval.status_tier.value,
        )
        self._notify()
        return True

    def reset_session(self) -> bool:
        """Clear an ended session back to idle. The only way back to idle."""
        status = self._session.status
        if status == SessionStatus.IDLE:
            return True
        if status != SessionStatus.ENDED:
            self._reject(InvalidTransition("reset_session", status.value))
            return False

        self._cancel_work()
        logger.info("Session %d reset", self._session.session_id)
        self._session = Session()
        self._eval = SessionEvalState()
        self._position = None
        self.last_rejection = None
        self._notify()
        return True

    def reevaluate(self) -> bool:
        """Re-request evaluation of the current position after an engine fault."""
        if self._session.status != SessionStatus.ACTIVE or self._position is None:
            self._reject(InvalidTransition("reevaluate", self._session.status.value))
            return False
        if self._eval.status_tier == StatusTier.FAIL:
            self._reject(InvalidTransition("reevaluate", "collapsing"))
            return False
        if self._eval.is_evaluating:
            return True
        self._request_evaluation()
        self._notify()
        return True

    async def close(self) -> None:
        """Cancel pending work and shut the evaluation engine down."""
        self._cancel_work()
        for task in list(self._tasks):
            task.cancel()
        await self._client.close()

    # ------------------------------------------------------------------
    # Evaluation pipeline
    # ------------------------------------------------------------------

    def _request_evaluation(self) -> None:
        snapshot = self._position.serialize()
        session_id = self._session.session_id
        self._eval.is_evaluating = True
        task = asyncio.get_running_loop().create_task(self._run_evaluation(session_id, snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_evaluation(self, session_id: int, snapshot: str) -> None:
        timeout = self._config.evaluation_timeout
        try:
            result = await asyncio.wait_for(
                self._client.request_evaluation(snapshot, self._config.search_depth),
                timeout,
            )
        except StaleEvaluation:
            logger.debug("Evaluation of %s superseded", snapshot)
            return
        except asyncio.TimeoutError:
            self._evaluation_failed(session_id, snapshot, f"no reply within {timeout:.1f}s")
            return
        except EngineUnavailable as exc:
            self._evaluation_failed(session_id, snapshot, str(exc))
            return

        self.apply_evaluation(result, session_id)

    def apply_evaluation(self, result: EvaluationResult, session_id: int | None = None) -> bool:
        """Apply an engine verdict if it is still about the live position.

        Args:
            result: Evaluation of `result.snapshot`.
            session_id: Session the request was issued for (defaults to
                the current one).

        Returns:
            True if applied, False if discarded as stale.
        """
        if session_id is None:
            session_id = self._session.session_id
        try:
            self._require_current(session_id, result.snapshot)
        except StaleEvaluation as exc:
            logger.debug("Discarding evaluation of %s: %s", result.snapshot, exc)
            return False

        player_side = self._session.player_side
        side_to_move = self._position.current_side_to_move()
        score = normalize_score(result.score, side_to_move, player_side)
        tier = classify(score)

        self._eval.score_for_player = score
        self._eval.status_tier = tier
        self._eval.is_evaluating = False
        self._eval.pending_suggestion = result.best_move if side_to_move == player_side else None
        self._session.notice = None
        logger.info(
            "Session %d eval %+.2f for player (%s, depth %d, best %s)",
            session_id, score, tier.value, result.depth, result.best_move,
        )

        if tier == StatusTier.FAIL:
            self._schedule("end_session", self._config.fail_settle_delay, result.snapshot, self._fire_fail_end)
        elif side_to_move != player_side and result.best_move:
            self._eval.is_opponent_thinking = True
            best_move = result.best_move
            self._schedule(
                "opponent_move",
                self._config.opponent_move_delay,
                result.snapshot,
                lambda work: self._fire_opponent_move(work, best_move),
            )

        self._notify()
        return True

    def _evaluation_failed(self, session_id: int, snapshot: str, reason: str) -> None:
        try:
            self._require_current(session_id, snapshot)
        except StaleEvaluation as exc:
            logger.debug("Ignoring failed evaluation of %s: %s", snapshot, exc)
            return

        logger.warning("Evaluation skipped for session %d: %s", session_id, reason)
        self._eval.is_evaluating = False
        self._session.notice = f"Evaluation unavailable: {reason}"
        self._notify()

    # ------------------------------------------------------------------
    # Scheduled work
    # ------------------------------------------------------------------

    def _schedule(
        self,
        kind: str,
        delay: float,
        snapshot: str | None,
        callback: Callable[[ScheduledWork], None],
    ) -> ScheduledWork:
        work = ScheduledWork(kind=kind, session_id=self._session.session_id, snapshot=snapshot)
        work.handle = asyncio.get_running_loop().call_later(delay, self._run_work, work, callback)
        self._work.append(work)
        return work

    def _run_work(self, work: ScheduledWork, callback: Callable[[ScheduledWork], None]) -> None:
        if work in self._work:
            self._work.remove(work)
        callback(work)

    def _cancel_work(self) -> None:
        for work in self._work:
            work.cancel()
        self._work.clear()

    def _fire_opponent_move(self, work: ScheduledWork, best_move: str) -> None:
        try:
            self._require_current(work.session_id, work.snapshot)
        except StaleEvaluation as exc:
            logger.debug("Dropping scheduled opponent move %s: %s", best_move, exc)
            return

        self._eval.is_opponent_thinking = False
        if (
            self._eval.status_tier == StatusTier.FAIL
            or self._position.current_side_to_move() == self._session.player_side
        ):
            self._notify()
            return

        try:
            record = self._position.apply_uci(best_move)
        except IllegalMove as exc:
            logger.warning("Opponent move failed: %s", exc)
            self._notify()
            return

        logger.info("Session %d opponent played %s (%s)", work.session_id, record.san, record.uci)
        self._record_move(record)
        self._request_evaluation()
        self._notify()

    def _fire_fail_end(self, work: ScheduledWork) -> None:
        try:
            self._require_current(work.session_id, work.snapshot)
        except StaleEvaluation as exc:
            logger.debug("Dropping scheduled session end: %s", exc)
            return
        if self._eval.status_tier != StatusTier.FAIL:
            logger.debug("Dropping scheduled session end: tier is %s", self._eval.status_tier.value)
            return
        logger.info("Session %d collapsed", work.session_id)
        self.end_session()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_current(self, session_id: int, snapshot: str | None = None) -> None:
        """Raise StaleEvaluation unless the session (and position) still match."""
        if self._session.status != SessionStatus.ACTIVE or self._position is None:
            raise StaleEvaluation(f"session is {self._session.status.value}")
        if session_id != self._session.session_id:
            raise StaleEvaluation(f"issued for session {session_id}, current is {self._session.session_id}")
        if snapshot is not None and snapshot != self._position.serialize():
            raise StaleEvaluation("position has changed")

    def _record_move(self, record: MoveRecord) -> None:
        self._session.move_history.append(record)
        self._session.last_move = LastMove(record.from_square, record.to_square)

    def _reject(self, exc: SparringError | ValueError) -> None:
        self.last_rejection = str(exc)
        logger.debug("Rejected: %s", exc)

    def _notify(self) -> None:
        self._changed.set()
        if not self._listeners:
            return
        view = self.view()
        for listener in list(self._listeners):
            listener(view)


def player_to_move(view: SessionView) -> bool:
    """Predicate for wait_for: the human may move now."""
    if view.session_status != SessionStatus.ACTIVE.value or view.fen is None:
        return False
    if view.is_opponent_thinking or view.status_tier == StatusTier.FAIL.value:
        return False
    turn = chess.Board(view.fen).turn
    return side_name(turn) == view.player_side


def settled(view: SessionView) -> bool:
    """Predicate for wait_for: nothing asynchronous is pending."""
    if view.session_status != SessionStatus.ACTIVE.value:
        return True
    return not view.is_evaluating and not view.is_opponent_thinking

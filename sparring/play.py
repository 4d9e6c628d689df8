"""Terminal sparring loop.

A minimal presentation adapter: starts a session at the cue position,
renders the projection with the TUI renderer, and reads the player's
moves from stdin until the session ends.

    python -m sparring.play --fen "<FEN>" --side b
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import asdict

from rich.console import Console

from sparring.config import DEFAULT_CUE_FEN, DEFAULT_PLAYER_SIDE, SessionConfig
from sparring.engine import EngineTransport, EvaluationClient, StockfishTransport
from sparring.orchestrator import SessionOrchestrator, player_to_move, settled
from sparring.tui import render_session

_PROMPT = "Your move (e.g. f8c5), '?f8' for targets, 'r' to re-evaluate, 'q' to quit: "


def handle_command(orchestrator: SessionOrchestrator, text: str) -> str | None:
    """Apply one line of player input.

    Returns:
        A message to show the player, or None.
    """
    text = text.strip().lower()
    if not text:
        return None
    if text in ("q", "quit", "exit"):
        orchestrator.end_session()
        return "Session ended."
    if text in ("r", "retry"):
        if orchestrator.reevaluate():
            return "Re-evaluating..."
        return orchestrator.last_rejection
    if text.startswith("?"):
        square = text[1:].strip()
        targets = orchestrator.legal_targets(square)
        return f"{square}: {' '.join(targets) if targets else '(no moves)'}"
    if len(text) in (4, 5):
        record = orchestrator.submit_user_move(text[:2], text[2:4], text[4:] or None)
        if record is None:
            return orchestrator.last_rejection
        return f"You played {record.san}"
    return f"Unrecognised input: {text!r}"


async def run_session(
    fen: str,
    side: str,
    config: SessionConfig,
    transport: EngineTransport | None = None,
    console: Console | None = None,
) -> int:
    """Run one session to completion. Returns a process exit code."""
    console = console or Console()
    transport = transport or StockfishTransport(config.stockfish_path)
    orchestrator = SessionOrchestrator(EvaluationClient(transport), config)
    loop = asyncio.get_running_loop()

    try:
        if not await orchestrator.connect_engine():
            console.print(f"[yellow]{orchestrator.view().notice}[/yellow]")
        if orchestrator.start_session(fen, side) is None:
            console.print(f"[red]{orchestrator.last_rejection}[/red]")
            return 1

        while True:
            view = await orchestrator.wait_for(settled)
            if view.session_status != "active":
                break
            if view.status_tier == "fail":
                console.print(render_session(asdict(view)))
                await orchestrator.wait_for(lambda v: v.session_status != "active")
                continue

            console.print(render_session(asdict(view)))
            if view.is_game_over:
                console.print(f"Game over: {view.result}. Enter 'q' to close the session.")
            elif not player_to_move(view):
                console.print("Opponent is waiting on the engine. Enter 'r' to re-evaluate.")

            text = await loop.run_in_executor(None, input, _PROMPT)
            message = handle_command(orchestrator, text)
            if message:
                console.print(message)

        final = orchestrator.view()
        console.print(render_session(asdict(final)) if final.fen else "")
        console.print(f"Session over ({final.status_tier}). Resuming the reel.")
        orchestrator.reset_session()
        return 0
    finally:
        await orchestrator.close()


def main() -> None:
    """CLI entry point for play.py."""
    parser = argparse.ArgumentParser(description="Spar against Stockfish from a reel cue position")
    parser.add_argument("--fen", default=DEFAULT_CUE_FEN, help="Cue position FEN")
    parser.add_argument("--side", default=DEFAULT_PLAYER_SIDE, help="Your side: w/b/white/black")
    parser.add_argument("--depth", type=int, default=None, help="Engine search depth")
    parser.add_argument("--opponent-delay", type=float, default=None, help="Seconds before the opponent replies")
    parser.add_argument("--fail-delay", type=float, default=None, help="Seconds to show a collapse before ending")
    parser.add_argument("--stockfish", default=None, help="Path to Stockfish binary")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper())

    try:
        config = SessionConfig.from_env().with_overrides(
            search_depth=args.depth,
            opponent_move_delay=args.opponent_delay,
            fail_settle_delay=args.fail_delay,
            stockfish_path=args.stockfish,
        )
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(2)

    try:
        code = asyncio.run(run_session(args.fen, args.side, config))
    except (KeyboardInterrupt, EOFError):
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()

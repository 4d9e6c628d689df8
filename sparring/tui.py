"""Terminal session view for reel sparring.

Draws the SessionView projection (board from the player's side, eval
bar, tier badge, move list) with Rich. The live mode redraws whenever
the MCP server rewrites data/current_session.json, using a watchdog
observer; --sample renders data/sample_session.json once and exits.
"""

from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path

import chess
from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DATA_DIR = _PROJECT_ROOT / "data"
_CURRENT_SESSION = _DATA_DIR / "current_session.json"
_SAMPLE_SESSION = _DATA_DIR / "sample_session.json"

_GLYPHS = dict(zip("KQRBNPkqrbnp", "♔♕♖♗♘♙♚♛♜♝♞♟"))

_SQUARE_STYLES = {True: "on grey85", False: "on grey50"}
_LAST_MOVE_STYLE = "on yellow"

# tier -> (label, colour)
_TIER_BADGES = {
    "safe": ("SAFE", "green"),
    "warning": ("CAUTION", "yellow"),
    "fail": ("COLLAPSED", "red"),
}

# Evaluation bar clamps to +/- this many pawns
_EVAL_BAR_RANGE = 5.0

# Seconds between checks for a changed session file
_POLL_INTERVAL = 0.25


def _load_session_view(path: Path) -> dict | None:
    """Read a SessionView dict written by the MCP server.

    Returns:
        The dict, or None if the file is missing, half-written or not an
        object.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def render_session(state: dict) -> Layout | Panel:
    """Board on the left, status sidebar on the right; a placeholder when idle."""
    if state.get("session_status", "idle") == "idle" or not state.get("fen"):
        return _render_waiting()

    layout = Layout()
    layout.split_row(
        Layout(_render_board_panel(state), name="board", ratio=2),
        Layout(_render_sidebar(state), name="sidebar", ratio=1),
    )
    return layout


def status_badge(state: dict) -> Text:
    """Badge text: thinking/analyzing states win over the tier label."""
    label, colour = _TIER_BADGES.get(state.get("status_tier", "safe"), _TIER_BADGES["safe"])
    if state.get("session_status") == "ended":
        label = f"ENDED ({label})"
    elif state.get("is_opponent_thinking"):
        label = "OPPONENT THINKING..."
    elif state.get("is_evaluating"):
        label = "ANALYZING..."
    return Text(f" {label} ", style=f"bold {colour} reverse")


def eval_bar(score: float | None, width: int = 20) -> str:
    """Text evaluation bar; half full at 0.0, empty when unknown."""
    if score is None:
        return "░" * width
    clamped = max(-_EVAL_BAR_RANGE, min(_EVAL_BAR_RANGE, score))
    filled = int((clamped + _EVAL_BAR_RANGE) / (2 * _EVAL_BAR_RANGE) * width)
    return "█" * filled + "░" * (width - filled)


def _last_move_squares(last_move: dict | None) -> set[chess.Square]:
    squares: set[chess.Square] = set()
    if not isinstance(last_move, dict):
        return squares
    for name in (last_move.get("from"), last_move.get("to")):
        if name in chess.SQUARE_NAMES:
            squares.add(chess.parse_square(name))
    return squares


def _square_cell(board: chess.Board, square: chess.Square, highlighted: set[chess.Square]) -> Text:
    piece = board.piece_at(square)
    glyph = _GLYPHS[piece.symbol()] if piece else " "
    if square in highlighted:
        style = _LAST_MOVE_STYLE
    else:
        # a1 is dark
        style = _SQUARE_STYLES[(chess.square_file(square) + chess.square_rank(square)) % 2 == 1]
    return Text(f" {glyph} ", style=style)


def _render_board_panel(state: dict) -> Panel:
    """The board as seen by the player: Black's pieces at the bottom when playing Black."""
    board = chess.Board(state["fen"])
    highlighted = _last_move_squares(state.get("last_move"))
    white_at_bottom = state.get("player_side", "white") != "black"

    rank_order = range(7, -1, -1) if white_at_bottom else range(8)
    file_order = list(range(8)) if white_at_bottom else list(range(7, -1, -1))

    grid = Table.grid(padding=(0, 0))
    grid.add_column(width=3, justify="right")
    for _ in file_order:
        grid.add_column(width=3, justify="center")

    for rank in rank_order:
        cells = [_square_cell(board, chess.square(f, rank), highlighted) for f in file_order]
        grid.add_row(Text(f"{rank + 1} ", style="bold"), *cells)
    grid.add_row(Text(""), *(Text(chess.FILE_NAMES[f], style="bold") for f in file_order))

    if state.get("is_game_over"):
        title = f"Game Over: {state.get('result') or '?'}"
    else:
        title = "Sparring Session"
    return Panel(grid, title=title, border_style="blue")


def _format_moves(move_history: list[str]) -> list[str]:
    return [" ".join(move_history[i:i + 2]) for i in range(0, len(move_history), 2)]


def _render_sidebar(state: dict) -> Panel:
    score = state.get("score_for_player")
    lines = [
        f"[bold]Session #{state.get('session_id', 0)}[/bold]",
        f"Playing as: {state.get('player_side', 'white')}",
        "",
        f"[bold]Eval:[/bold] {'--' if score is None else format(score, '+.1f')}",
        f"  [{eval_bar(score)}]",
        "",
    ]

    if state.get("session_status") == "active" and state.get("message"):
        lines.append(f"[italic]{state['message']}[/italic]")
    if state.get("pending_suggestion"):
        lines.append(f"Engine suggests: {state['pending_suggestion']}")
    if state.get("notice"):
        lines.append(f"[red]{state['notice']}[/red]")

    moves = state.get("move_history") or []
    if moves:
        lines += ["", "[bold]Moves:[/bold]"]
        lines += [f"  {pair}" for pair in _format_moves(moves)]

    body = Group(status_badge(state), Text.from_markup("\n".join(lines)))
    return Panel(body, title="Status", border_style="green")


def _render_waiting() -> Panel:
    return Panel(
        Text("Waiting for the reel cue...\n\nStart a session via the MCP server to see the board.",
             justify="center"),
        title="Reel Sparring",
        border_style="dim",
    )


def _watch_loop(console: Console) -> None:
    """Redraw whenever current_session.json is replaced, until Ctrl-C."""
    from watchdog.events import FileSystemEventHandler
    from watchdog.observers import Observer

    changed = threading.Event()
    changed.set()
    target = _CURRENT_SESSION.name

    class _SessionFileHandler(FileSystemEventHandler):
        # The server writes a temp file and os.replace()s it, so moves count too
        def on_any_event(self, event):
            paths = (event.src_path, getattr(event, "dest_path", ""))
            if any(str(p).endswith(target) for p in paths):
                changed.set()

    _DATA_DIR.mkdir(parents=True, exist_ok=True)
    observer = Observer()
    observer.schedule(_SessionFileHandler(), str(_DATA_DIR), recursive=False)
    observer.start()

    try:
        with Live(_render_waiting(), console=console, refresh_per_second=4) as live:
            while True:
                if not changed.wait(_POLL_INTERVAL):
                    continue
                changed.clear()
                state = _load_session_view(_CURRENT_SESSION)
                if state is not None:
                    live.update(render_session(state))
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()


def main() -> None:
    """CLI entry point for tui.py."""
    parser = argparse.ArgumentParser(description="Reel Sparring terminal view")
    parser.add_argument(
        "--sample", action="store_true",
        help="Render data/sample_session.json once and exit",
    )
    args = parser.parse_args()
    console = Console()

    if not args.sample:
        _watch_loop(console)
        return

    state = _load_session_view(_SAMPLE_SESSION)
    if state is None:
        console.print(f"[red]No sample session at {_SAMPLE_SESSION}[/red]")
        sys.exit(1)
    console.print(render_session(state))


if __name__ == "__main__":
    main()

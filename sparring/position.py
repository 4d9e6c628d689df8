"""Canonical position for a sparring session.

Wraps python-chess. The board is mutated only through apply_move /
apply_uci, which either commit a MoveRecord or raise IllegalMove.
"""

from __future__ import annotations

from datetime import datetime, timezone

import chess
import chess.pgn

from sparring.errors import IllegalMove
from sparring.models import MoveRecord, side_name

_PROMOTION_PIECES = {
    "q": chess.QUEEN,
    "r": chess.ROOK,
    "b": chess.BISHOP,
    "n": chess.KNIGHT,
}


class PositionState:
    """Legal-move-aware board for one session.

    The session keeps the move list; moves are replayable from
    `starting_fen` through the board's own move stack (see to_pgn).
    """

    def __init__(self, fen: str = chess.STARTING_FEN, player_side: chess.Color = chess.WHITE) -> None:
        """Load a starting position.

        Args:
            fen: Starting position FEN.
            player_side: Side the human plays; recorded on each MoveRecord.

        Raises:
            ValueError: If the FEN is malformed or describes an invalid position.
        """
        board = chess.Board(fen)
        if not board.is_valid():
            raise ValueError(f"Invalid FEN position: {fen}")
        self._board = board
        self._starting_fen = board.fen()
        self._player_side = player_side

    @property
    def starting_fen(self) -> str:
        return self._starting_fen

    def current_side_to_move(self) -> chess.Color:
        return self._board.turn

    def serialize(self) -> str:
        """Canonical snapshot used to key evaluation requests."""
        return self._board.fen()

    def is_game_over(self) -> bool:
        return self._board.is_game_over()

    def result(self) -> str | None:
        if not self._board.is_game_over():
            return None
        return self._board.result()

    def legal_targets(self, square: str) -> list[str]:
        """Destination squares for the piece on `square`, sorted.

        Empty when the square is malformed or holds nothing that can move.
        """
        try:
            from_sq = chess.parse_square(square.strip().lower())
        except ValueError:
            return []
        targets = {
            chess.square_name(m.to_square)
            for m in self._board.legal_moves
            if m.from_square == from_sq
        }
        return sorted(targets)

    def apply_move(self, from_square: str, to_square: str, promotion: str | None = None) -> MoveRecord:
        """Apply a from/to move for the side to move.

        Pawns reaching the last rank promote to a queen unless a
        promotion piece is given.

        Args:
            from_square: Origin square name, e.g. 'e7'.
            to_square: Destination square name, e.g. 'e5'.
            promotion: Optional piece letter ('q', 'r', 'b', 'n').

        Returns:
            The committed MoveRecord.

        Raises:
            IllegalMove: If the squares are malformed or the move is not legal.
        """
        label = f"{from_square}{to_square}{promotion or ''}"
        try:
            from_sq = chess.parse_square(from_square.strip().lower())
            to_sq = chess.parse_square(to_square.strip().lower())
        except ValueError:
            raise IllegalMove(label, "malformed square") from None

        promo_piece = None
        if promotion:
            promo_piece = _PROMOTION_PIECES.get(promotion.strip().lower())
            if promo_piece is None:
                raise IllegalMove(label, f"unknown promotion piece {promotion!r}")
        elif self._is_promotion_square(from_sq, to_sq):
            promo_piece = chess.QUEEN

        return self._commit(chess.Move(from_sq, to_sq, promotion=promo_piece), label)

    def apply_uci(self, uci: str) -> MoveRecord:
        """Apply a move given in UCI notation (engine suggestions).

        Raises:
            IllegalMove: If the string is not valid UCI or the move is illegal.
        """
        try:
            move = chess.Move.from_uci(uci.strip())
        except (ValueError, chess.InvalidMoveError):
            raise IllegalMove(uci, "malformed UCI move") from None
        if move.promotion is None and self._is_promotion_square(move.from_square, move.to_square):
            move = chess.Move(move.from_square, move.to_square, promotion=chess.QUEEN)
        return self._commit(move, uci)

    def to_pgn(self, white: str, black: str, event: str = "Reel Sparring") -> chess.pgn.Game:
        """Build a PGN game for the moves played from the starting position."""
        game = chess.pgn.Game()
        if self._starting_fen != chess.STARTING_FEN:
            game.setup(chess.Board(self._starting_fen))
        game.headers["Event"] = event
        game.headers["Site"] = "Reel Sparring"
        game.headers["Date"] = datetime.now(timezone.utc).strftime("%Y.%m.%d")
        game.headers["White"] = white
        game.headers["Black"] = black
        game.headers["Result"] = self._board.result() if self._board.is_game_over() else "*"

        node = game
        for m in self._board.move_stack:
            node = node.add_variation(m)
        return game

    def _is_promotion_square(self, from_sq: chess.Square, to_sq: chess.Square) -> bool:
        piece = self._board.piece_at(from_sq)
        if piece is None or piece.piece_type != chess.PAWN:
            return False
        return chess.square_rank(to_sq) in (0, 7)

    def _commit(self, move: chess.Move, label: str) -> MoveRecord:
        if move not in self._board.legal_moves:
            raise IllegalMove(label)

        side = self._board.turn
        san = self._board.san(move)
        self._board.push(move)

        record = MoveRecord(
            uci=move.uci(),
            san=san,
            from_square=chess.square_name(move.from_square),
            to_square=chess.square_name(move.to_square),
            side=side_name(side),
            fen_after=self._board.fen(),
            promotion=chess.piece_symbol(move.promotion) if move.promotion else None,
            by_player=side == self._player_side,
        )
        return record

"""
Position Engine: the rules oracle consumed by the Arbitrator.

The Arbitrator never builds a position by hand. It only adopts what `validate_and_apply` hands back.
Positions are FEN strings, the implementation sits on top of python-chess.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Self

import chess

from chess_arbiter.core.shared_types import Side

PROMOTION_PIECES = ("q", "r", "b", "n")


@dataclass(frozen=True)
class ProposedMove:
    """A move expressed the way participants send it: two squares and an optional promotion piece."""

    from_square: str
    to_square: str
    promotion: Optional[str] = None

    @classmethod
    def from_uci(cls, uci: str) -> Self:
        return cls(
            from_square=uci[0:2],
            to_square=uci[2:4],
            promotion=uci[4:5] or None,
        )

    def to_uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"


@dataclass(frozen=True)
class MoveOutcome:
    """Result of validate_and_apply. `applied` is the move as played, with the promotion piece actually used."""

    legal: bool
    new_position: Optional[str] = None
    applied: Optional[ProposedMove] = None
    is_check: bool = False
    is_checkmate: bool = False
    is_draw: bool = False

    @classmethod
    def rejected(cls) -> Self:
        return cls(legal=False)

    @property
    def is_terminal(self) -> bool:
        return self.is_checkmate or self.is_draw


class PositionEngine(Protocol):
    """Contract of the rules oracle."""

    def new_game_position(self) -> str:
        """Standard starting position."""
        ...

    def side_to_move(self, position: str) -> Side:
        ...

    def validate_and_apply(
        self,
        position: str,
        from_square: str,
        to_square: str,
        promotion: Optional[str] = None,
    ) -> MoveOutcome:
        """Check legality of the move and (if legal) return the resulting position, the move as applied and its status flags."""
        ...

    def legal_moves(self, position: str) -> list[ProposedMove]:
        ...

    def is_well_formed(self, position: str) -> bool:
        ...


class ChessPositionEngine:
    """PositionEngine implemented with python-chess."""

    def new_game_position(self) -> str:
        return chess.STARTING_FEN

    def side_to_move(self, position: str) -> Side:
        board = chess.Board(position)
        return Side.WHITE if board.turn == chess.WHITE else Side.BLACK

    def validate_and_apply(
        self,
        position: str,
        from_square: str,
        to_square: str,
        promotion: Optional[str] = None,
    ) -> MoveOutcome:
        board = chess.Board(position)
        move = self._build_move(board, from_square, to_square, promotion)
        if move is None or move not in board.legal_moves:
            return MoveOutcome.rejected()

        board.push(move)
        return MoveOutcome(
            legal=True,
            new_position=board.fen(),
            applied=ProposedMove.from_uci(move.uci()),
            is_check=board.is_check(),
            is_checkmate=board.is_checkmate(),
            is_draw=self._is_draw(board),
        )

    def legal_moves(self, position: str) -> list[ProposedMove]:
        board = chess.Board(position)
        return [ProposedMove.from_uci(move.uci()) for move in board.legal_moves]

    def is_well_formed(self, position: str) -> bool:
        try:
            board = chess.Board(position)
        except ValueError:
            return False
        return board.is_valid()

    # -- Internal helpers --
    def _build_move(
        self,
        board: chess.Board,
        from_square: str,
        to_square: str,
        promotion: Optional[str],
    ) -> Optional[chess.Move]:
        """Parse the squares. Returns None if the input cannot describe a move at all."""
        try:
            origin = chess.parse_square(from_square.lower())
            target = chess.parse_square(to_square.lower())
        except ValueError:
            return None

        if promotion is not None and promotion.lower() not in PROMOTION_PIECES:
            return None

        # A promotion piece on any other move is ignored. No piece requested on a promotion defaults to a queen.
        promotion_type = None
        if self._is_pawn_push_to_last_rank(board, origin, target):
            symbol = promotion.lower() if promotion else "q"
            promotion_type = chess.Piece.from_symbol(symbol).piece_type

        return chess.Move(origin, target, promotion=promotion_type)

    def _is_pawn_push_to_last_rank(self, board: chess.Board, origin: int, target: int) -> bool:
        piece = board.piece_at(origin)
        if piece is None or piece.piece_type != chess.PAWN:
            return False
        return chess.square_rank(target) in (0, 7)

    def _is_draw(self, board: chess.Board) -> bool:
        """
        Draw conditions that can be read off a single position.
        ---
        Repetition needs the game history, which a FEN string does not carry.
        """
        return (
            board.is_stalemate()
            or board.is_insufficient_material()
            or board.is_seventyfive_moves()
            or board.can_claim_fifty_moves()
        )

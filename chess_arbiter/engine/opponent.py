"""
Automated Opponent Adapter.

Black box from the Arbitrator's point of view: (position, difficulty) -> move, or None if it has nothing to offer.
"""

import random
from typing import Optional, Protocol

import chess

from chess_arbiter.engine.position import ProposedMove

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
MAX_SEARCH_DEPTH = 3

PIECE_VALUES = {
    chess.PAWN: 100,
    chess.KNIGHT: 320,
    chess.BISHOP: 330,
    chess.ROOK: 500,
    chess.QUEEN: 900,
    chess.KING: 0,
}
MATE_SCORE = 100_000


class AutomatedOpponent(Protocol):
    def propose_move(self, position: str, difficulty: int) -> Optional[ProposedMove]:
        ...


def search_depth(difficulty: int) -> int:
    """Difficulty 1 plays random moves (depth 0), every level above adds a ply up to MAX_SEARCH_DEPTH."""
    clamped = max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, difficulty))
    return min(clamped - 1, MAX_SEARCH_DEPTH)


class MaterialSearchOpponent:
    """Negamax with alpha-beta pruning over plain material balance."""

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self.rng = rng or random.Random()

    def propose_move(self, position: str, difficulty: int) -> Optional[ProposedMove]:
        board = chess.Board(position)
        moves = list(board.legal_moves)
        if not moves:
            return None

        depth = search_depth(difficulty)
        if depth == 0:
            return ProposedMove.from_uci(self.rng.choice(moves).uci())

        best_score = -MATE_SCORE - 1
        best_moves: list[chess.Move] = []
        for move in moves:
            board.push(move)
            score = -self._negamax(board, depth - 1, -MATE_SCORE - 1, MATE_SCORE + 1)
            board.pop()
            if score > best_score:
                best_score = score
                best_moves = [move]
            elif score == best_score:
                best_moves.append(move)

        return ProposedMove.from_uci(self.rng.choice(best_moves).uci())

    def _negamax(self, board: chess.Board, depth: int, alpha: int, beta: int) -> int:
        """Score from the point of view of the side to move."""
        if board.is_checkmate():
            # Prefer faster mates (deeper remaining depth = found earlier).
            return -MATE_SCORE - depth
        if board.is_stalemate() or board.is_insufficient_material():
            return 0
        if depth == 0:
            return self._evaluate(board)

        best = -MATE_SCORE - 1
        for move in board.legal_moves:
            board.push(move)
            score = -self._negamax(board, depth - 1, -beta, -alpha)
            board.pop()
            best = max(best, score)
            alpha = max(alpha, score)
            if alpha >= beta:
                break
        return best

    def _evaluate(self, board: chess.Board) -> int:
        score = 0
        for piece in board.piece_map().values():
            value = PIECE_VALUES[piece.piece_type]
            score += value if piece.color == board.turn else -value
        return score

"""Static evaluation, move priors and capture safety for the MCTS engine.

Everything here works on python-chess boards wrapped in
:class:`chess_logic.ChessPosition`:

* :class:`HeuristicEvaluator` scores a position in centipawns for the side to
  move. The tree squashes the score with ``tanh(score / value_scale)``.
* :class:`HeuristicPriorPolicy` turns simple move features into a softmax
  distribution used as PUCT priors.
* :class:`CaptureSafetyFilter` runs a one-ply static exchange check and either
  drops (hard mode) or discounts (soft mode) captures that lose material.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Dict, List, Sequence

import chess

from chess_logic import ChessPosition

PIECE_VALUES: Dict[int, int] = {
    chess.PAWN: 100,
    chess.KNIGHT: 320,
    chess.BISHOP: 330,
    chess.ROOK: 500,
    chess.QUEEN: 900,
    chess.KING: 20_000,
}

MATE_SCORE = 50_000

# Tables are laid out rank 8 first, from White's point of view.
PIECE_SQUARE_TABLES: Dict[int, List[int]] = {
    chess.PAWN: [
        0, 0, 0, 0, 0, 0, 0, 0,
        50, 50, 50, 50, 50, 50, 50, 50,
        10, 10, 20, 30, 30, 20, 10, 10,
        5, 5, 10, 25, 25, 10, 5, 5,
        0, 0, 0, 20, 20, 0, 0, 0,
        5, -5, -10, 0, 0, -10, -5, 5,
        5, 10, 10, -20, -20, 10, 10, 5,
        0, 0, 0, 0, 0, 0, 0, 0
    ],
    chess.KNIGHT: [
        -50, -40, -30, -30, -30, -30, -40, -50,
        -40, -20, 0, 0, 0, 0, -20, -40,
        -30, 0, 10, 15, 15, 10, 0, -30,
        -30, 5, 15, 20, 20, 15, 5, -30,
        -30, 0, 15, 20, 20, 15, 0, -30,
        -30, 5, 10, 15, 15, 10, 5, -30,
        -40, -20, 0, 5, 5, 0, -20, -40,
        -50, -40, -30, -30, -30, -30, -40, -50
    ],
    chess.BISHOP: [
        -20, -10, -10, -10, -10, -10, -10, -20,
        -10, 0, 0, 0, 0, 0, 0, -10,
        -10, 0, 5, 10, 10, 5, 0, -10,
        -10, 5, 5, 10, 10, 5, 5, -10,
        -10, 0, 10, 10, 10, 10, 0, -10,
        -10, 10, 10, 10, 10, 10, 10, -10,
        -10, 5, 0, 0, 0, 0, 5, -10,
        -20, -10, -10, -10, -10, -10, -10, -20
    ],
    chess.ROOK: [
        0, 0, 0, 0, 0, 0, 0, 0,
        5, 10, 10, 10, 10, 10, 10, 5,
        -5, 0, 0, 0, 0, 0, 0, -5,
        -5, 0, 0, 0, 0, 0, 0, -5,
        -5, 0, 0, 0, 0, 0, 0, -5,
        -5, 0, 0, 0, 0, 0, 0, -5,
        -5, 0, 0, 0, 0, 0, 0, -5,
        0, 0, 0, 5, 5, 0, 0, 0
    ],
    chess.QUEEN: [
        -20, -10, -10, -5, -5, -10, -10, -20,
        -10, 0, 0, 0, 0, 0, 0, -10,
        -10, 0, 5, 5, 5, 5, 0, -10,
        -5, 0, 5, 5, 5, 5, 0, -5,
        0, 0, 5, 5, 5, 5, 0, -5,
        -10, 5, 5, 5, 5, 5, 0, -10,
        -10, 0, 5, 0, 0, 0, 0, -10,
        -20, -10, -10, -5, -5, -10, -10, -20
    ],
    chess.KING: [
        -30, -40, -40, -50, -50, -40, -40, -30,
        -30, -40, -40, -50, -50, -40, -40, -30,
        -30, -40, -40, -50, -50, -40, -40, -30,
        -30, -40, -40, -50, -50, -40, -40, -30,
        -20, -30, -30, -40, -40, -30, -30, -20,
        -10, -20, -20, -20, -20, -20, -20, -10,
        20, 20, 0, 0, 0, 0, 20, 20,
        20, 30, 10, 0, 0, 10, 30, 20
    ],
}

KING_ENDGAME_TABLE: List[int] = [
    -50, -40, -30, -20, -20, -30, -40, -50,
    -30, -20, -10, 0, 0, -10, -20, -30,
    -30, -10, 20, 30, 30, 20, -10, -30,
    -30, -10, 30, 40, 40, 30, -10, -30,
    -30, -10, 30, 40, 40, 30, -10, -30,
    -30, -10, 20, 30, 30, 20, -10, -30,
    -30, -30, 0, 0, 0, 0, -30, -30,
    -50, -30, -30, -30, -30, -30, -30, -50
]


def _table_value(table: Sequence[int], square: chess.Square, color: chess.Color) -> int:
    return table[chess.square_mirror(square)] if color == chess.WHITE else table[square]


def captured_piece_type(board: chess.Board, move: chess.Move) -> int:
    if board.is_en_passant(move):
        return chess.PAWN
    victim = board.piece_at(move.to_square)
    return victim.piece_type if victim is not None else 0


def static_exchange_gain(board: chess.Board, move: chess.Move) -> int:
    """One-ply exchange estimate for ``move`` in centipawns.

    The captured piece's value, minus the mover's value when the destination
    square is attacked by the opponent once the capture has been played.
    Returns 0 for non-captures and malformed moves.
    """

    mover = board.piece_at(move.from_square)
    if mover is None:
        return 0
    captured = captured_piece_type(board, move)
    if not captured:
        return 0
    victim = board.piece_at(move.to_square)
    if victim is not None and victim.color == mover.color:
        return 0

    gain = PIECE_VALUES[captured]
    scratch = board.copy(stack=False)
    scratch.push(move)
    if scratch.is_attacked_by(scratch.turn, move.to_square):
        gain -= PIECE_VALUES[mover.piece_type]
    return gain


class HeuristicEvaluator:
    """Material, piece-square, bishop pair, open files and mobility.

    Scores are centipawns from the side to move; checkmate scores ``-MATE_SCORE``
    and dead draws score zero.
    """

    def __init__(
        self,
        *,
        mobility_unit: float = 5.0,
        bishop_pair_bonus: float = 50.0,
        rook_open_file_bonus: float = 20.0,
        endgame_piece_threshold: int = 12,
    ) -> None:
        self.mobility_unit = mobility_unit
        self.bishop_pair_bonus = bishop_pair_bonus
        self.rook_open_file_bonus = rook_open_file_bonus
        self.endgame_piece_threshold = endgame_piece_threshold

    def value(self, position: ChessPosition) -> float:
        return self.evaluate(position.board)

    def evaluate(self, board: chess.Board) -> float:
        if board.is_checkmate():
            return -MATE_SCORE
        if board.is_stalemate() or board.is_insufficient_material():
            return 0.0

        endgame = chess.popcount(board.occupied) < self.endgame_piece_threshold
        score = 0.0
        for square, piece in board.piece_map().items():
            sign = 1 if piece.color == chess.WHITE else -1
            if piece.piece_type == chess.KING:
                table = KING_ENDGAME_TABLE if endgame else PIECE_SQUARE_TABLES[chess.KING]
                score += sign * _table_value(table, square, piece.color)
                continue
            score += sign * (PIECE_VALUES[piece.piece_type] + _table_value(PIECE_SQUARE_TABLES[piece.piece_type], square, piece.color))

        pawns = board.pawns
        for color in (chess.WHITE, chess.BLACK):
            sign = 1 if color == chess.WHITE else -1
            if len(board.pieces(chess.BISHOP, color)) >= 2:
                score += sign * self.bishop_pair_bonus
            for square in board.pieces(chess.ROOK, color):
                if not pawns & chess.BB_FILES[chess.square_file(square)]:
                    score += sign * self.rook_open_file_bonus

        relative = score if board.turn == chess.WHITE else -score
        return relative + self._mobility_term(board)

    def _mobility_term(self, board: chess.Board) -> float:
        if board.is_check():
            return 0.0
        mobility = board.legal_moves.count()
        # Probe on a copy; the same board may be read by other search workers.
        probe = board.copy(stack=False)
        probe.push(chess.Move.null())
        opponent = probe.legal_moves.count()
        return (mobility - opponent) * self.mobility_unit


class HeuristicPriorPolicy:
    """Softmax over hand-written move features."""

    def __init__(self, *, see_threshold: float = -50.0, opening_moves: int = 12) -> None:
        self.see_threshold = see_threshold
        self.opening_moves = opening_moves

    def priors(self, position: ChessPosition, legal_moves: Sequence[chess.Move]) -> List[float]:
        if not legal_moves:
            return []
        board = position.board
        scores = [self.move_score(board, move) for move in legal_moves]
        peak = max(scores)
        weights = [math.exp(score - peak) for score in scores]
        total = sum(weights)
        return [weight / total for weight in weights]

    def move_score(self, board: chess.Board, move: chess.Move) -> float:
        score = 1.0
        if board.is_capture(move):
            gain = static_exchange_gain(board, move)
            if gain >= self.see_threshold:
                score += 3.0 + PIECE_VALUES[captured_piece_type(board, move)] / 100.0 + gain / 100.0
        if move.promotion:
            score += 10.0

        file_idx = chess.square_file(move.to_square)
        rank_idx = chess.square_rank(move.to_square)
        if 2 <= file_idx <= 5 and 2 <= rank_idx <= 5:
            score += 1.5

        if board.fullmove_number < self.opening_moves:
            piece = board.piece_at(move.from_square)
            home_rank = 0 if board.turn == chess.WHITE else 7
            if piece is not None and piece.piece_type in (chess.KNIGHT, chess.BISHOP) \
                    and chess.square_rank(move.from_square) == home_rank:
                score += 2.5

        if board.is_castling(move):
            score += 4.0
        return score


class UniformPriorPolicy:
    def priors(self, position: ChessPosition, legal_moves: Sequence[chess.Move]) -> List[float]:
        if not legal_moves:
            return []
        return [1.0 / len(legal_moves)] * len(legal_moves)


class CaptureFilterMode(Enum):
    OFF = "off"
    SOFT = "soft"
    HARD = "hard"


class CaptureSafetyFilter:
    """Screens captures whose one-ply exchange falls below ``threshold``.

    ``HARD`` removes unsafe captures from the expansion (keeping every move if
    nothing would survive), ``SOFT`` multiplies their priors by ``discount``.
    """

    def __init__(
        self,
        mode: CaptureFilterMode = CaptureFilterMode.SOFT,
        *,
        threshold: float = -50.0,
        discount: float = 0.01,
    ) -> None:
        self.mode = mode
        self.threshold = threshold
        self.discount = discount

    def gain(self, position: ChessPosition, move: chess.Move) -> int:
        return static_exchange_gain(position.board, move)

    def is_unsafe(self, position: ChessPosition, move: chess.Move) -> bool:
        board = position.board
        return board.is_capture(move) and static_exchange_gain(board, move) < self.threshold

    def screen_moves(self, position: ChessPosition, moves: Sequence[chess.Move]) -> List[chess.Move]:
        if self.mode is not CaptureFilterMode.HARD:
            return list(moves)
        kept = [move for move in moves if not self.is_unsafe(position, move)]
        return kept or list(moves)

    def discount_priors(
        self,
        position: ChessPosition,
        moves: Sequence[chess.Move],
        priors: Sequence[float],
    ) -> List[float]:
        if self.mode is not CaptureFilterMode.SOFT:
            return list(priors)
        adjusted = [
            prior * self.discount if self.is_unsafe(position, move) else prior
            for move, prior in zip(moves, priors)
        ]
        total = sum(adjusted)
        if total <= 0:
            return list(priors)
        return [prior / total for prior in adjusted]


__all__ = [
    "CaptureFilterMode",
    "CaptureSafetyFilter",
    "HeuristicEvaluator",
    "HeuristicPriorPolicy",
    "MATE_SCORE",
    "PIECE_VALUES",
    "UniformPriorPolicy",
    "captured_piece_type",
    "static_exchange_gain",
]

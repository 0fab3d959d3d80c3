from typing import List, Optional

import chess
import chess.polyglot

from mcts import TerminalStatus


class ChessPosition:
    """python-chess board wrapped in the position protocol the tree expects."""

    __slots__ = ("board",)

    def __init__(self, board: Optional[chess.Board] = None) -> None:
        self.board = board if board is not None else chess.Board()

    @classmethod
    def from_fen(cls, fen: str) -> "ChessPosition":
        return cls(chess.Board(fen))

    def __repr__(self) -> str:
        return f"ChessPosition({self.board.fen()!r})"

    def clone(self) -> "ChessPosition":
        return ChessPosition(self.board.copy(stack=True))

    def apply(self, move: chess.Move) -> "ChessPosition":
        # Keep the move stack so repetition draws stay detectable deeper in the tree.
        child = self.board.copy(stack=True)
        child.push(move)
        return ChessPosition(child)

    def legal_moves(self) -> List[chess.Move]:
        return list(self.board.legal_moves)

    def fingerprint(self) -> int:
        return chess.polyglot.zobrist_hash(self.board)

    def terminal_status(self) -> TerminalStatus:
        outcome = self.board.outcome(claim_draw=False)
        if outcome is None:
            return TerminalStatus.NONE
        if outcome.winner is None:
            return TerminalStatus.DRAW
        return TerminalStatus.WIN if outcome.winner == self.board.turn else TerminalStatus.LOSS

    @property
    def turn(self) -> chess.Color:
        return self.board.turn

    @property
    def piece_count(self) -> int:
        return chess.popcount(self.board.occupied)


def get_game_result(board: chess.Board) -> str:
    if board.is_checkmate():
        return "Checkmate"
    elif board.is_stalemate():
        return "Stalemate"
    elif board.is_insufficient_material():
        return "Insufficient Material"
    elif board.is_seventyfive_moves():
        return "75-move rule"
    elif board.is_fivefold_repetition():
        return "Fivefold Repetition"
    else:
        return "Game in progress"


def export_move_history_uci(board: chess.Board) -> str:
    """Exports the move history of a chess game in Universal Chess Interface (UCI) format."""
    return ' '.join(move.uci() for move in board.move_stack)

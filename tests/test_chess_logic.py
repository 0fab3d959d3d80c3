import chess

import chess_logic
from chess_logic import ChessPosition
from mcts import TerminalStatus


def test_apply_returns_new_position_without_mutating_parent() -> None:
    start = ChessPosition()
    child = start.apply(chess.Move.from_uci("e2e4"))
    assert start.board.fen() == chess.STARTING_FEN
    assert child.board.piece_at(chess.E4).piece_type == chess.PAWN
    assert child.board.move_stack == [chess.Move.from_uci("e2e4")]


def test_clone_is_independent() -> None:
    position = ChessPosition()
    copy = position.clone()
    copy.board.push_san("d4")
    assert position.board.fen() == chess.STARTING_FEN


def test_fingerprint_matches_transpositions() -> None:
    start = ChessPosition()
    shuffled = start
    for uci in ("g1f3", "g8f6", "f3g1", "f6g8"):
        shuffled = shuffled.apply(chess.Move.from_uci(uci))
    assert shuffled.fingerprint() == start.fingerprint()
    assert start.apply(chess.Move.from_uci("e2e4")).fingerprint() != start.fingerprint()


def test_terminal_status_for_side_to_move() -> None:
    checkmate = chess.Board()
    for san in ("f3", "e5", "g4", "Qh4#"):
        checkmate.push_san(san)
    assert ChessPosition(checkmate).terminal_status() is TerminalStatus.LOSS

    stalemate = ChessPosition.from_fen("7k/5Q2/6K1/8/8/8/8/8 b - - 0 1")
    assert stalemate.terminal_status() is TerminalStatus.DRAW
    assert stalemate.legal_moves() == []

    bare_kings = ChessPosition.from_fen("8/8/4k3/8/8/4K3/8/8 w - - 0 1")
    assert bare_kings.terminal_status() is TerminalStatus.DRAW

    assert ChessPosition().terminal_status() is TerminalStatus.NONE
    assert len(ChessPosition().legal_moves()) == 20


def test_piece_count_and_turn() -> None:
    position = ChessPosition.from_fen("4k3/8/8/3p4/8/8/8/3QK3 w - - 0 1")
    assert position.piece_count == 4
    assert position.turn == chess.WHITE


def test_game_result_messages() -> None:
    checkmate = chess.Board()
    for san in ("f3", "e5", "g4", "Qh4#"):
        checkmate.push_san(san)
    assert chess_logic.get_game_result(checkmate) == "Checkmate"

    stalemate = chess.Board("7k/5Q2/6K1/8/8/8/8/8 b - - 0 1")
    assert chess_logic.get_game_result(stalemate) == "Stalemate"

    assert chess_logic.get_game_result(chess.Board()) == "Game in progress"


def test_export_move_history_uci() -> None:
    board = chess.Board()
    board.push_san("e4")
    board.push_san("e5")
    assert chess_logic.export_move_history_uci(board) == "e2e4 e7e5"
    assert chess_logic.export_move_history_uci(chess.Board()) == ""

"""UCI front end for the PuctFish Monte Carlo tree search engine.

The engine is split into composable units: a strategy selector choosing
between a mate-in-one shortcut and the tree search, preset driven
configuration with time management, and a line-oriented UCI façade. The
search itself lives in :mod:`mcts`; chess specific evaluation and priors live
in :mod:`evaluation`.
"""

from __future__ import annotations

import argparse
import io
import math
import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import chess

import chess_logic
from chess_logic import ChessPosition
from evaluation import (
    PIECE_VALUES,
    CaptureFilterMode,
    CaptureSafetyFilter,
    HeuristicEvaluator,
    HeuristicPriorPolicy,
)
from mcts import MCTSConfig, MCTSTree, SearchBudget, SearchProgress


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------


def _ensure_line_buffered_stdout() -> None:
    if getattr(sys.stdout, "line_buffering", False):
        return
    buffer = getattr(sys.stdout, "buffer", None)
    if buffer is None:
        return
    sys.stdout = io.TextIOWrapper(buffer, line_buffering=True)


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


def _value_to_centipawns(value: float, scale: float) -> int:
    bounded = _clamp(value, -0.999, 0.999)
    return int(round(math.atanh(bounded) * scale))


# ---------------------------------------------------------------------------
# Strategy model
# ---------------------------------------------------------------------------


@dataclass
class StrategyContext:
    piece_count: int
    material_imbalance: int
    turn: bool
    legal_moves_count: int
    time_controls: Optional[Dict[str, int]]


def material_balance(board: chess.Board) -> int:
    """White minus black material in pawns, kings excluded."""
    total = 0
    for piece in board.piece_map().values():
        if piece.piece_type == chess.KING:
            continue
        value = PIECE_VALUES[piece.piece_type] // 100
        total += value if piece.color == chess.WHITE else -value
    return total


def build_context(board: chess.Board, time_controls: Optional[Dict[str, int]] = None) -> StrategyContext:
    return StrategyContext(
        piece_count=len(board.piece_map()),
        material_imbalance=material_balance(board),
        turn=board.turn,
        legal_moves_count=board.legal_moves.count(),
        time_controls=dict(time_controls) if time_controls else None,
    )


@dataclass
class StrategyResult:
    move: Optional[str]
    strategy_name: str
    score: Optional[float] = None
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    definitive: bool = False


class MoveStrategy(ABC):
    def __init__(self, *, name: Optional[str] = None, priority: int = 0, confidence: Optional[float] = None):
        self.name = name or self.__class__.__name__
        self.priority = priority
        self.confidence = confidence

    @abstractmethod
    def is_applicable(self, context: StrategyContext) -> bool:
        ...

    @abstractmethod
    def generate_move(self, board: chess.Board, context: StrategyContext) -> Optional[StrategyResult]:
        ...

    def apply_config(self, config: Any) -> None:
        pass

    def reset(self) -> None:
        pass


class StrategySelector:
    """Runs applicable strategies and keeps the best suggestion.

    Results are ranked by strategy priority, then score, then confidence. A
    definitive result short-circuits the remaining strategies; a strategy that
    raises is logged and skipped.
    """

    def __init__(self, *, logger: Optional[Callable[[str], None]] = None):
        self._strategies: List[MoveStrategy] = []
        self._logger = logger or (lambda *_: None)

    def register(self, strategy: MoveStrategy) -> None:
        self._strategies.append(strategy)
        self._strategies.sort(key=lambda s: s.priority, reverse=True)
        self._logger(f"strategy registered: {strategy.name} (priority={strategy.priority})")

    def strategies(self) -> Tuple[MoveStrategy, ...]:
        return tuple(self._strategies)

    def reset(self) -> None:
        for strategy in self._strategies:
            strategy.reset()

    def select(self, board: chess.Board, context: StrategyContext) -> Optional[StrategyResult]:
        best_result: Optional[StrategyResult] = None
        best_key = (-math.inf, -math.inf, -math.inf)

        for strategy in self._strategies:
            if not strategy.is_applicable(context):
                continue
            try:
                result = strategy.generate_move(board, context)
            except Exception as exc:
                self._logger(f"strategy {strategy.name} error: {exc}")
                continue
            if not result or not result.move:
                continue
            if result.definitive:
                return result

            key = (
                float(strategy.priority),
                float(result.score) if result.score is not None else 0.0,
                float(result.confidence) if result.confidence is not None else 0.0,
            )
            if key > best_key:
                best_key = key
                best_result = result

        if best_result is None:
            self._logger("no strategies produced a move suggestion")
        return best_result


# ---------------------------------------------------------------------------
# Configuration model
# ---------------------------------------------------------------------------


class StrategyToggle(Enum):
    MATE_IN_ONE = "mate_in_one"
    MCTS = "mcts"


@dataclass(slots=True, frozen=True)
class SearchPreset:
    simulations: int = 1600
    c_puct: float = 1.5
    temperature: float = 0.1
    dirichlet_alpha: float = 0.3
    dirichlet_epsilon: float = 0.25
    virtual_loss: float = 3.0
    min_visits_for_expansion: int = 1
    capture_filter: CaptureFilterMode = CaptureFilterMode.SOFT
    see_threshold: float = -50.0
    see_discount: float = 0.01
    value_scale: float = 1000.0
    endgame_piece_threshold: int = 12
    endgame_simulations: Optional[int] = None
    endgame_c_puct: Optional[float] = None
    move_time: float = 2.0
    min_time: float = 0.05
    max_time: float = 30.0
    time_factor: float = 0.05
    infinite_simulations: int = 10_000_000
    workers: int = 1
    reuse_depth: int = 2

    def clamp(self) -> "SearchPreset":
        return replace(
            self,
            simulations=max(1, int(self.simulations)),
            c_puct=max(0.0, float(self.c_puct)),
            temperature=max(0.0, float(self.temperature)),
            dirichlet_alpha=max(1e-3, float(self.dirichlet_alpha)),
            dirichlet_epsilon=_clamp(float(self.dirichlet_epsilon), 0.0, 1.0),
            virtual_loss=max(0.0, float(self.virtual_loss)),
            min_visits_for_expansion=max(0, int(self.min_visits_for_expansion)),
            see_discount=_clamp(float(self.see_discount), 0.0, 1.0),
            value_scale=max(1.0, float(self.value_scale)),
            min_time=max(0.0, self.min_time),
            max_time=max(self.min_time, self.max_time),
            workers=int(_clamp(int(self.workers), 1, 64)),
            reuse_depth=max(0, int(self.reuse_depth)),
        )


class PresetRegistry:
    PRESETS: Dict[str, SearchPreset] = {
        "balanced": SearchPreset(),
        "fastblitz": SearchPreset(
            simulations=400,
            temperature=0.0,
            capture_filter=CaptureFilterMode.HARD,
            move_time=0.5,
            time_factor=0.04,
        ),
        "tournament": SearchPreset(
            simulations=2000,
            c_puct=1.8,
            temperature=0.05,
            endgame_simulations=2500,
            endgame_c_puct=2.0,
            move_time=5.0,
            max_time=60.0,
        ),
    }

    @classmethod
    def resolve(cls, preset: str) -> SearchPreset:
        if preset not in cls.PRESETS:
            raise ValueError(f"Unknown search preset '{preset}'")
        return cls.PRESETS[preset].clamp()


class SearchLimits:
    def __init__(
        self,
        *,
        min_time: float,
        max_time: float,
        move_time: float,
        time_factor: float,
        simulations: int,
        infinite_simulations: int,
    ) -> None:
        self.min_time = min_time
        self.max_time = max_time
        self.move_time = move_time
        self.time_factor = time_factor
        self.simulations = simulations
        self.infinite_simulations = infinite_simulations

    def resolve_budget(self, context: StrategyContext, reporter: Optional["SearchReporter"] = None) -> SearchBudget:
        tc = context.time_controls or {}
        if tc.get("infinite") or tc.get("ponder"):
            if reporter:
                mode = "infinite" if tc.get("infinite") else "ponder"
                reporter.trace(f"budget calc: {mode} search; running until stop")
            return SearchBudget.create(simulations=self.infinite_simulations)

        node_cap = tc.get("nodes", tc.get("simulations"))
        simulations = max(1, int(node_cap)) if node_cap is not None else self.simulations

        if "movetime" in tc:
            return SearchBudget.create(seconds=self._clamp(tc["movetime"] / 1000.0), simulations=simulations)

        turn_key = "wtime" if context.turn == chess.WHITE else "btime"
        inc_key = "winc" if context.turn == chess.WHITE else "binc"
        if turn_key in tc:
            time_left = max(tc.get(turn_key, 0), 0)
            increment = max(tc.get(inc_key, 0), 0)
            moves_to_go = tc.get("movestogo")
            if moves_to_go:
                budget = time_left / max(1, moves_to_go)
            else:
                budget = time_left * self.time_factor
            budget += increment
            return SearchBudget.create(seconds=self._clamp(budget / 1000.0), simulations=simulations)

        if node_cap is not None:
            return SearchBudget.create(simulations=simulations)
        if reporter:
            reporter.trace("budget calc: no clock supplied; using preset simulations and default move time")
        return SearchBudget.create(seconds=self.move_time, simulations=simulations)

    def _clamp(self, seconds: float) -> float:
        return max(self.min_time, min(self.max_time, seconds))


def build_mcts_config(
    preset: SearchPreset,
    *,
    endgame: bool = False,
    seed: Optional[int] = None,
) -> Tuple[MCTSConfig, SearchLimits]:
    simulations = preset.simulations
    c_puct = preset.c_puct
    if endgame:
        if preset.endgame_simulations is not None:
            simulations = preset.endgame_simulations
        if preset.endgame_c_puct is not None:
            c_puct = preset.endgame_c_puct

    config = MCTSConfig(
        c_puct=c_puct,
        virtual_loss=preset.virtual_loss,
        dirichlet_alpha=preset.dirichlet_alpha,
        dirichlet_epsilon=preset.dirichlet_epsilon,
        temperature=preset.temperature,
        min_visits_for_expansion=preset.min_visits_for_expansion,
        value_scale=preset.value_scale,
        workers=preset.workers,
        reuse_depth=preset.reuse_depth,
        seed=seed,
    )
    limits = SearchLimits(
        min_time=preset.min_time,
        max_time=preset.max_time,
        move_time=preset.move_time,
        time_factor=preset.time_factor,
        simulations=simulations,
        infinite_simulations=preset.infinite_simulations,
    )
    return config, limits


class SearchReporter:
    def __init__(
        self,
        *,
        logger: Callable[[str], None],
        value_scale: float = 1000.0,
        emit: Optional[Callable[[str], None]] = None,
    ):
        self._log = logger
        self._emit = emit or print
        self.value_scale = value_scale

    def trace(self, message: str) -> None:
        self._log(message)

    def progress(self, update: SearchProgress) -> None:
        pv = " ".join(move.uci() for move in update.principal_variation)
        line = (
            f"info depth {max(1, len(update.principal_variation))} "
            f"score cp {_value_to_centipawns(update.value, self.value_scale)} "
            f"nodes {update.nodes_visited} nps {update.nodes_per_second} time {update.elapsed_ms}"
        )
        self._emit(f"{line} pv {pv}" if pv else line)

    def perf_summary(self, label: str, simulations: int, nodes: int, time_spent: float, extras: Optional[Dict[str, Any]] = None) -> None:
        nps = int(nodes / time_spent) if time_spent else 0
        segments = [
            f"info string perf {label} sims={simulations}",
            f"nodes={nodes}",
            f"time={time_spent:.3f}s",
            f"nps={nps}",
        ]
        if extras:
            segments.extend(f"{key}={value}" for key, value in extras.items())
        self._emit(" ".join(segments))


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class MateInOneStrategy(MoveStrategy):
    def __init__(self, *, logger: Optional[Callable[[str], None]] = None) -> None:
        super().__init__(priority=100)
        self._logger = logger or (lambda *_: None)

    def is_applicable(self, context: StrategyContext) -> bool:
        return context.legal_moves_count > 0

    def generate_move(self, board: chess.Board, context: StrategyContext) -> Optional[StrategyResult]:
        for move in board.legal_moves:
            if not board.gives_check(move):
                continue
            board.push(move)
            is_mate = board.is_checkmate()
            board.pop()
            if is_mate:
                move_uci = move.uci()
                self._logger(f"mate-in-one strategy chose {move_uci}")
                return StrategyResult(
                    move=move_uci,
                    strategy_name=self.name,
                    score=500000.0,
                    confidence=1.0,
                    metadata={"pattern": "mate_in_one"},
                    definitive=True,
                )
        return None


class MCTSSearchStrategy(MoveStrategy):
    """Runs the PUCT tree search on a persistent tree.

    The tree is kept between moves so the subtree of the position reached
    after the opponent's reply is reused; :meth:`reset` drops it.
    """

    def __init__(
        self,
        *,
        logger: Optional[Callable[[str], None]] = None,
        log_tag: str = "MCTS",
        seed: Optional[int] = None,
        **kwargs,
    ) -> None:
        super().__init__(priority=70, confidence=0.85, **kwargs)
        self.log_tag = log_tag
        self._logger = logger or (lambda *_: None)
        self._seed = seed
        self._preset: Optional[SearchPreset] = None
        self._config: Optional[MCTSConfig] = None
        self._limits: Optional[SearchLimits] = None
        self._tree: Optional[MCTSTree] = None
        self._stop_event: Optional[threading.Event] = None

    def apply_config(self, config: SearchPreset) -> None:
        if not isinstance(config, SearchPreset):
            raise TypeError("MCTSSearchStrategy.apply_config expects SearchPreset")
        preset = config.clamp()
        mcts_config, limits = build_mcts_config(preset, seed=self._seed)
        self._preset = preset
        self._config = mcts_config
        self._limits = limits
        self._tree = MCTSTree(
            HeuristicPriorPolicy(see_threshold=preset.see_threshold),
            HeuristicEvaluator(endgame_piece_threshold=preset.endgame_piece_threshold),
            mcts_config,
            capture_filter=CaptureSafetyFilter(
                preset.capture_filter,
                threshold=preset.see_threshold,
                discount=preset.see_discount,
            ),
            logger=self._logger,
        )

    def set_stop_event(self, event: threading.Event) -> None:
        self._stop_event = event

    def reset(self) -> None:
        if self._tree is not None:
            self._tree.reset()

    def is_applicable(self, context: StrategyContext) -> bool:
        return context.legal_moves_count > 0

    def generate_move(self, board: chess.Board, context: StrategyContext) -> Optional[StrategyResult]:
        if not self._preset or not self._config or not self._limits or self._tree is None:
            raise RuntimeError("MCTSSearchStrategy not configured")
        if context.legal_moves_count == 0:
            return None

        config, limits = self._config, self._limits
        endgame = context.piece_count < self._preset.endgame_piece_threshold
        if endgame:
            config, limits = build_mcts_config(self._preset, endgame=True, seed=self._seed)

        reporter = SearchReporter(logger=self._logger, value_scale=self._preset.value_scale)
        budget = limits.resolve_budget(context, reporter)
        remaining = budget.remaining_seconds()
        budget_desc = f"{remaining:.2f}s" if remaining is not None else "none"
        self._logger(
            f"{self.log_tag}: simulations={budget.max_simulations} budget={budget_desc} "
            f"c_puct={config.c_puct} endgame={endgame} moves={context.legal_moves_count}"
        )

        outcome = self._tree.search(
            ChessPosition(board.copy(stack=True)),
            budget,
            config=config,
            stop_event=self._stop_event,
            progress=reporter.progress,
        )
        if outcome.no_move:
            self._logger(f"{self.log_tag}: search returned no move")
            return None

        reporter.perf_summary(
            self.log_tag,
            outcome.simulations,
            outcome.nodes,
            outcome.time_spent,
            {
                "reused": outcome.reused,
                "stop": outcome.stop_reason or "-",
                "fallbacks": outcome.diagnostics.prior_fallbacks + outcome.diagnostics.value_fallbacks,
            },
        )

        metadata = dict(outcome.metadata)
        metadata["pv"] = [move.uci() for move in outcome.principal_variation]
        metadata.setdefault("label", self.log_tag)

        return StrategyResult(
            move=outcome.move.uci(),
            strategy_name=self.name,
            score=outcome.value,
            confidence=self.confidence,
            metadata=metadata,
        )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def run_profile(fen: str, simulations: int, preset_name: str = "tournament") -> None:
    import cProfile
    import pstats

    preset = replace(PresetRegistry.resolve(preset_name), simulations=max(1, simulations))
    strategy = MCTSSearchStrategy(seed=0)
    strategy.apply_config(preset)
    board = chess.Board(fen) if fen else chess.Board()
    context = build_context(board, {"nodes": preset.simulations})

    profiler = cProfile.Profile()
    profiler.enable()
    result = strategy.generate_move(board.copy(stack=True), context)
    profiler.disable()

    metadata = result.metadata if result else {}
    print(f"bestmove={result.move if result else '(none)'} score={result.score if result else 0.0:.3f}")
    print(
        f"simulations={metadata.get('simulations', 0)} nodes={metadata.get('nodes', 0)} "
        f"time={metadata.get('time', 0.0):.3f}s"
    )

    stats = pstats.Stats(profiler).sort_stats("cumulative")
    stats.print_stats(25)


def profile_cli(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Profile the MCTS search")
    parser.add_argument("--fen", default="", help="FEN to analyse (default: start position)")
    parser.add_argument("--simulations", type=int, default=800, help="Number of simulations to run")
    parser.add_argument("--profile-preset", default="tournament", choices=sorted(PresetRegistry.PRESETS.keys()))
    args = parser.parse_args(list(argv) if argv is not None else None)
    run_profile(args.fen, args.simulations, args.profile_preset)


def engine_main(argv: Optional[Sequence[str]] = None) -> None:
    default_preset = os.environ.get("PUCTFISH_PRESET", "balanced")
    parser = argparse.ArgumentParser(description="PuctFish MCTS engine entrypoint", add_help=True)
    parser.add_argument("--profile", action="store_true", help="Run the profiling helper instead of UCI loop")
    parser.add_argument(
        "--preset",
        choices=sorted(PresetRegistry.PRESETS.keys()),
        default=default_preset,
        help="Search preset to load",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for root noise and move sampling")
    args, remaining = parser.parse_known_args(list(argv) if argv is not None else None)
    if args.profile:
        profile_cli(remaining)
    else:
        ChessEngine(preset=args.preset, seed=args.seed).start()


# ---------------------------------------------------------------------------
# UCI façade
# ---------------------------------------------------------------------------


class ChessEngine:
    def __init__(
        self,
        *,
        preset: str = "balanced",
        toggles: Optional[Iterable[StrategyToggle]] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.engine_name = "PuctFish"
        self.engine_author = "PuctFish developers"
        self.board = chess.Board()
        self.debug = True
        self.move_calculating = False
        self.running = True
        self.state_lock = threading.Lock()
        self.stop_event = threading.Event()
        self.current_worker: Optional[threading.Thread] = None

        active_toggles = {toggle for toggle in (toggles or (StrategyToggle.MATE_IN_ONE, StrategyToggle.MCTS))}
        self.preset_name = preset
        self.base_preset = PresetRegistry.resolve(preset)
        self.preset = self.base_preset

        self.selector = StrategySelector(logger=self._log_debug)
        self.search_strategy: Optional[MCTSSearchStrategy] = None
        if StrategyToggle.MATE_IN_ONE in active_toggles:
            self.selector.register(MateInOneStrategy(logger=self._log_debug))
        if StrategyToggle.MCTS in active_toggles:
            search = MCTSSearchStrategy(logger=self._log_debug, seed=seed)
            search.apply_config(self.preset)
            search.set_stop_event(self.stop_event)
            self.selector.register(search)
            self.search_strategy = search

        self.dispatch_table = {
            "quit": self.handle_quit,
            "debug": self.handle_debug,
            "isready": self.handle_isready,
            "position": self.handle_position,
            "boardpos": self.handle_boardpos,
            "go": self.handle_go,
            "stop": self.handle_stop,
            "ponderhit": self.handle_ponderhit,
            "ucinewgame": self.handle_ucinewgame,
            "uci": self.handle_uci,
            "setoption": self.handle_setoption,
        }

    def _log_debug(self, message: str) -> None:
        if not self.debug:
            return
        for line in message.splitlines():
            print(f"info string {line}")

    def start(self) -> None:
        _ensure_line_buffered_stdout()
        self.handle_uci()
        self.command_loop()

    def command_loop(self) -> None:
        while self.running:
            command = sys.stdin.readline()
            if not command:
                break
            command = command.strip()
            if not command:
                continue
            parts = command.split(" ", 1)
            name = parts[0].lower()
            args = parts[1] if len(parts) > 1 else ""
            handler = self.dispatch_table.get(name, self.handle_unknown)
            try:
                handler(args)
            except Exception as exc:
                print(f"info string Error processing command: {exc}")
            finally:
                sys.stdout.flush()

    def handle_unknown(self, args: str) -> None:
        print(f"unknown command received: '{args}'")

    def handle_quit(self, _: str) -> None:
        print("info string Engine shutting down")
        with self.state_lock:
            self.running = False
            self.stop_event.set()
            worker = self.current_worker
        if worker and worker.is_alive():
            worker.join(timeout=5.0)
        self.running = False

    def handle_debug(self, args: str) -> None:
        setting = args.strip().lower()
        if setting == "on":
            self.debug = True
        elif setting == "off":
            self.debug = False
        else:
            print("info string Invalid debug setting. Use 'on' or 'off'.")
            return
        print(f"info string Debug:{self.debug}")

    def handle_isready(self, _: str) -> None:
        with self.state_lock:
            print("readyok" if not self.move_calculating else "info string Engine is busy processing a move")

    def handle_position(self, args: str) -> None:
        with self.state_lock:
            if args.startswith("startpos"):
                self.board.reset()
                if self.debug:
                    print(f"info string Set to start position: {self.board.fen()}")
                moves_part = args.split("moves", 1)[1] if "moves" in args else ""
            elif args.startswith("fen"):
                fen_part, _, moves_part = args[4:].partition(" moves ")
                try:
                    self.board.set_fen(fen_part.strip())
                    if self.debug:
                        print(f"info string setpos {self.board.fen()}")
                except ValueError:
                    print("info string Invalid FEN string provided.")
                    return
            else:
                print("info string Unknown position command.")
                return

            for move_text in moves_part.split():
                try:
                    move = self.board.parse_uci(move_text)
                except ValueError:
                    print(f"info string Invalid move in position command: {move_text}")
                    break
                self.board.push(move)

    def handle_boardpos(self, _: str) -> None:
        with self.state_lock:
            print(f"info string Position: {self.board.fen()}")
            history = chess_logic.export_move_history_uci(self.board)
            if history:
                print(f"info string Moves: {history}")
            print(f"info string Status: {chess_logic.get_game_result(self.board)}")

    def handle_go(self, args: str) -> None:
        time_controls = self._parse_go_args(args)
        with self.state_lock:
            if self.move_calculating:
                print("info string Please wait for computer move")
                return
            self.stop_event.clear()
            self.move_calculating = True

        worker = threading.Thread(target=self._compute_move, args=(time_controls,))
        with self.state_lock:
            self.current_worker = worker
        worker.start()

    def handle_stop(self, _: str) -> None:
        with self.state_lock:
            if not self.move_calculating:
                print("info string Stop ignored; engine idle")
                return
            self.stop_event.set()
            worker = self.current_worker
        print("info string Stop signal received")
        if worker and worker.is_alive():
            worker.join(timeout=5.0)

    def handle_ponderhit(self, args: str) -> None:
        # A ponder search has no clock; the move found so far is played.
        self.handle_stop(args)

    def _compute_move(self, time_controls: Optional[Dict[str, int]]) -> None:
        move: Optional[str] = None
        try:
            with self.state_lock:
                board_copy = self.board.copy(stack=True)
            context = build_context(board_copy, time_controls)
            self._log_debug(
                f"search context: pieces={context.piece_count} material={context.material_imbalance} "
                f"moves={context.legal_moves_count} clock={context.time_controls or {}}"
            )

            select_start = time.perf_counter()
            result = self.selector.select(board_copy, context)
            select_time = time.perf_counter() - select_start

            if result is not None and result.move:
                move = result.move
                label = result.metadata.get("label", result.strategy_name)
                print(f"info string strategy {label} selected move {move}")
                # Tree searches report their own perf line.
                if "nodes" not in result.metadata:
                    print(f"info string perf select={select_time:.3f}s")
            else:
                self._log_debug("no strategy produced a move")
        except Exception as exc:
            print(f"info string Error generating move: {exc}")
        finally:
            with self.state_lock:
                print(f"bestmove {move}" if move else "bestmove (none)")
                print("readyok")
                self.move_calculating = False
                self.current_worker = None

    def handle_ucinewgame(self, _: str) -> None:
        with self.state_lock:
            self.board.reset()
            self.selector.reset()
            if self.debug:
                print("info string New game started, board reset to initial position")
            print("info string New game initialized")

    def handle_uci(self, _: str = "") -> None:
        preset = self.preset
        use_see = "false" if preset.capture_filter is CaptureFilterMode.OFF else "true"
        print(f"id name {self.engine_name}")
        print(f"id author {self.engine_author}")
        print(f"option name Simulations type spin default {preset.simulations} min 1 max 1000000")
        print(f"option name CPuct type string default {preset.c_puct}")
        print(f"option name Temperature type string default {preset.temperature}")
        print(f"option name UseSEE type check default {use_see}")
        print(f"option name Threads type spin default {preset.workers} min 1 max 64")
        print("uciok")

    def handle_setoption(self, args: str) -> None:
        name, value = self._parse_setoption_args(args)
        if not name:
            print("info string Invalid setoption command; expected 'name <id> value <x>'")
            return
        with self.state_lock:
            if self.move_calculating:
                print("info string Cannot change options while searching")
                return
            try:
                preset = self._apply_option(self.preset, name, value)
            except KeyError:
                print(f"info string Unknown option {name}")
                return
            except ValueError:
                print(f"info string Invalid value for {name}: {value}")
                return
            self.preset = preset.clamp()
            if self.search_strategy is not None:
                self.search_strategy.apply_config(self.preset)
        self._log_debug(f"option {name} set to {value}")

    def _apply_option(self, preset: SearchPreset, name: str, value: str) -> SearchPreset:
        key = name.replace(" ", "").lower()
        if key == "simulations":
            return replace(preset, simulations=int(value))
        if key == "cpuct":
            return replace(preset, c_puct=float(value))
        if key == "temperature":
            return replace(preset, temperature=float(value))
        if key == "threads":
            return replace(preset, workers=int(value))
        if key == "usesee":
            flag = value.strip().lower()
            if flag not in {"true", "false", "on", "off", "1", "0"}:
                raise ValueError(value)
            if flag in {"true", "on", "1"}:
                mode = self.base_preset.capture_filter
                if mode is CaptureFilterMode.OFF:
                    mode = CaptureFilterMode.SOFT
            else:
                mode = CaptureFilterMode.OFF
            return replace(preset, capture_filter=mode)
        raise KeyError(name)

    @staticmethod
    def _parse_setoption_args(args: str) -> Tuple[str, str]:
        tokens = args.split()
        if not tokens or tokens[0].lower() != "name":
            return "", ""
        lowered = [token.lower() for token in tokens]
        if "value" in lowered:
            split = lowered.index("value")
            return " ".join(tokens[1:split]), " ".join(tokens[split + 1:])
        return " ".join(tokens[1:]), ""

    def _parse_go_args(self, args: str) -> Dict[str, int]:
        tokens = args.split()
        if not tokens:
            return {}
        parsed: Dict[str, int] = {}
        iterator = iter(tokens)
        for token in iterator:
            key = token.lower()
            if key in {"wtime", "btime", "winc", "binc", "movestogo", "movetime", "depth", "nodes", "simulations"}:
                try:
                    parsed[key] = int(next(iterator))
                except (StopIteration, ValueError):
                    continue
            elif key in {"infinite", "ponder"}:
                parsed[key] = True
        return parsed


if __name__ == "__main__":
    engine_main(sys.argv[1:])

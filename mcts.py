"""Monte Carlo tree search with PUCT selection.

The tree is game agnostic: it talks to positions, move priors and value
estimates through the small protocols declared below. :mod:`chess_logic`
and :mod:`evaluation` provide the chess implementations used by the engine.

A simulation walks down the tree picking the child with the best
``Q + U`` score, resolves the leaf (terminal value, expansion and/or static
value estimate) and pushes the result back up the path, flipping its sign
once per ply. Statistics on a node are stored from the point of view of the
side that played the move leading to it, so a parent simply maximises over
its children.
"""

from __future__ import annotations

import math
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple


class TerminalStatus(Enum):
    """Game result from the point of view of the side to move."""

    NONE = "none"
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"


class Position(Protocol):
    def clone(self) -> "Position":
        ...

    def apply(self, move: Any) -> "Position":
        ...

    def legal_moves(self) -> List[Any]:
        ...

    def fingerprint(self) -> int:
        ...

    def terminal_status(self) -> TerminalStatus:
        ...


class PriorPolicy(Protocol):
    def priors(self, position: Position, legal_moves: Sequence[Any]) -> Sequence[float]:
        ...


class ValueEstimator(Protocol):
    def value(self, position: Position) -> float:
        ...


class MoveScreen(Protocol):
    """Hook used to drop or de-prioritise moves while a node is expanded."""

    def screen_moves(self, position: Position, moves: Sequence[Any]) -> List[Any]:
        ...

    def discount_priors(self, position: Position, moves: Sequence[Any], priors: Sequence[float]) -> List[float]:
        ...


# ---------------------------------------------------------------------------
# Configuration and budget
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class MCTSConfig:
    c_puct: float = 1.5
    virtual_loss: float = 3.0
    dirichlet_alpha: float = 0.3
    dirichlet_epsilon: float = 0.25
    temperature: float = 0.0
    min_visits_for_expansion: int = 1
    loss_value: float = -1.0
    draw_value: float = 0.0
    win_value: float = 1.0
    # When set, estimator output is an unbounded score squashed with tanh(score / value_scale).
    value_scale: Optional[float] = None
    progress_interval: int = 100
    workers: int = 1
    reuse_depth: int = 1
    seed: Optional[int] = None

    def validate(self) -> "MCTSConfig":
        if self.c_puct < 0:
            raise ValueError("c_puct must be non-negative")
        if self.virtual_loss < 0:
            raise ValueError("virtual_loss must be non-negative")
        if self.dirichlet_alpha <= 0:
            raise ValueError("dirichlet_alpha must be positive")
        if not 0.0 <= self.dirichlet_epsilon <= 1.0:
            raise ValueError("dirichlet_epsilon must lie in [0, 1]")
        if self.temperature < 0:
            raise ValueError("temperature must be non-negative")
        if self.min_visits_for_expansion < 0:
            raise ValueError("min_visits_for_expansion must be non-negative")
        if self.value_scale is not None and self.value_scale <= 0:
            raise ValueError("value_scale must be positive when set")
        if self.progress_interval < 1:
            raise ValueError("progress_interval must be at least 1")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")
        if self.reuse_depth < 0:
            raise ValueError("reuse_depth must be non-negative")
        return self


@dataclass(slots=True, frozen=True)
class SearchBudget:
    """Stop conditions for a search.

    ``deadline`` is an absolute :func:`time.monotonic` instant. At least one of
    the two bounds has to be supplied.
    """

    deadline: Optional[float] = None
    max_simulations: Optional[int] = None

    @classmethod
    def create(cls, *, seconds: Optional[float] = None, simulations: Optional[int] = None) -> "SearchBudget":
        deadline = None if seconds is None else time.monotonic() + max(0.0, seconds)
        return cls(deadline=deadline, max_simulations=simulations)

    def validate(self) -> None:
        if self.deadline is None and self.max_simulations is None:
            raise ValueError("search budget needs a deadline or a simulation cap")
        if self.max_simulations is not None and self.max_simulations < 0:
            raise ValueError("max_simulations must be non-negative")

    def remaining_seconds(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


# ---------------------------------------------------------------------------
# Tree nodes
# ---------------------------------------------------------------------------


class Node:
    """One vertex of the search tree.

    Children are owned through the ``children`` list. ``parent`` is a plain
    back-reference; it is cleared when the node is promoted to a new root.
    ``total_value`` accumulates results for the side that played ``move``.
    """

    __slots__ = (
        "move",
        "prior",
        "base_prior",
        "parent",
        "children",
        "visit_count",
        "total_value",
        "virtual_loss_count",
        "expanded",
        "terminal",
        "terminal_value",
        "_position",
        "_expanding",
        "_lock",
    )

    def __init__(
        self,
        position: Optional[Position] = None,
        *,
        parent: Optional["Node"] = None,
        move: Any = None,
        prior: float = 0.0,
    ) -> None:
        self.move = move
        self.prior = prior
        self.base_prior = prior
        self.parent = parent
        self.children: List[Node] = []
        self.visit_count = 0
        self.total_value = 0.0
        self.virtual_loss_count = 0
        self.expanded = False
        self.terminal = False
        self.terminal_value: Optional[float] = None
        self._position = position
        self._expanding = False
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"Node(move={self.move!r}, prior={self.prior:.3f}, visits={self.visit_count}, "
            f"q={self.q_value():.3f}, children={len(self.children)})"
        )

    @property
    def position(self) -> Position:
        # Child positions are built on first use from the parent's position.
        if self._position is None:
            with self._lock:
                if self._position is None:
                    if self.parent is None:
                        raise RuntimeError("detached node has no position")
                    self._position = self.parent.position.apply(self.move)
        return self._position

    @position.setter
    def position(self, value: Position) -> None:
        self._position = value

    # ------------------------------------------------------------------
    # Derived scores
    # ------------------------------------------------------------------
    def q_value(self, virtual_loss: float = 0.0) -> float:
        if self.visit_count == 0:
            return 0.0
        pending = self.virtual_loss_count
        return (self.total_value - pending * virtual_loss) / (self.visit_count + pending)

    def u_value(self, parent_visits: int, c_puct: float) -> float:
        return c_puct * self.prior * math.sqrt(parent_visits) / (1 + self.visit_count)

    def score(self, parent_visits: int, c_puct: float, virtual_loss: float = 0.0) -> float:
        return self.q_value(virtual_loss) + self.u_value(parent_visits, c_puct)

    def select_child(self, c_puct: float, virtual_loss: float = 0.0) -> Optional["Node"]:
        best: Optional[Node] = None
        best_score = -math.inf
        parent_visits = self.visit_count
        for child in self.children:
            child_score = child.score(parent_visits, c_puct, virtual_loss)
            # Strict comparison keeps the earliest generated move on ties.
            if child_score > best_score:
                best = child
                best_score = child_score
        return best

    def most_visited_child(self) -> Optional["Node"]:
        best: Optional[Node] = None
        for child in self.children:
            if best is None or child.visit_count > best.visit_count:
                best = child
        return best

    def principal_variation(self, max_length: int = 32) -> List[Any]:
        line: List[Any] = []
        node = self
        while len(line) < max_length:
            child = node.most_visited_child()
            if child is None or child.visit_count == 0:
                break
            line.append(child.move)
            node = child
        return line

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def claim_expansion(self) -> bool:
        with self._lock:
            if self.expanded or self._expanding:
                return False
            self._expanding = True
            return True

    def expand(self, moves: Sequence[Any], priors: Sequence[float]) -> None:
        children = [Node(parent=self, move=move, prior=prior) for move, prior in zip(moves, priors)]
        with self._lock:
            self.children = children
            self.expanded = True
            self._expanding = False

    def mark_terminal(self, value: float) -> None:
        with self._lock:
            self.children = []
            self.terminal = True
            self.terminal_value = value
            self.expanded = True
            self._expanding = False

    def abandon_expansion(self) -> None:
        with self._lock:
            self._expanding = False

    def add_virtual_loss(self) -> None:
        with self._lock:
            self.virtual_loss_count += 1

    def release_virtual_loss(self) -> None:
        with self._lock:
            if self.virtual_loss_count > 0:
                self.virtual_loss_count -= 1

    def record(self, value: float) -> None:
        with self._lock:
            self.visit_count += 1
            self.total_value += value
            if self.virtual_loss_count > 0:
                self.virtual_loss_count -= 1

    def detach(self, position: Optional[Position] = None) -> None:
        if position is not None:
            self._position = position
        else:
            self.position  # materialise before the parent link goes away
        self.parent = None
        self.move = None

    def find_descendant(self, fingerprint: int, max_depth: int) -> Optional["Node"]:
        frontier: List[Node] = [self]
        for _ in range(max_depth):
            next_frontier: List[Node] = []
            for node in frontier:
                if not node.expanded:
                    continue
                for child in node.children:
                    if child.position.fingerprint() == fingerprint:
                        return child
                    next_frontier.append(child)
            frontier = next_frontier
        return None


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SearchProgress:
    simulations_run: int
    elapsed_ms: int
    nodes_visited: int
    nodes_per_second: int
    best_move: Optional[Any]
    principal_variation: Tuple[Any, ...]
    value: float = 0.0


@dataclass(slots=True)
class SearchDiagnostics:
    prior_fallbacks: int = 0
    value_fallbacks: int = 0
    expansions: int = 0
    terminal_hits: int = 0


@dataclass(slots=True)
class SearchOutcome:
    move: Optional[Any]
    value: float
    simulations: int
    nodes: int
    time_spent: float
    principal_variation: Tuple[Any, ...] = ()
    reused: bool = False
    stop_reason: str = ""
    diagnostics: SearchDiagnostics = field(default_factory=SearchDiagnostics)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def no_move(self) -> bool:
        return self.move is None


ProgressCallback = Callable[[SearchProgress], None]


# ---------------------------------------------------------------------------
# Search driver
# ---------------------------------------------------------------------------


class MCTSTree:
    """Owns the root node and runs simulations against a budget.

    The tree survives between :meth:`search` calls; when the next position is
    the current root or one of its descendants (up to ``reuse_depth`` plies)
    that subtree becomes the new root, otherwise a fresh root is built.
    """

    def __init__(
        self,
        policy: PriorPolicy,
        estimator: ValueEstimator,
        config: Optional[MCTSConfig] = None,
        *,
        capture_filter: Optional[MoveScreen] = None,
        logger: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.policy = policy
        self.estimator = estimator
        self.config = (config or MCTSConfig()).validate()
        self.capture_filter = capture_filter
        self._log = logger or (lambda *_: None)
        self._rng = random.Random(self.config.seed)
        self._stats_lock = threading.Lock()
        self.root: Optional[Node] = None
        self.diagnostics = SearchDiagnostics()

    def reset(self) -> None:
        self.root = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def search(
        self,
        position: Position,
        budget: SearchBudget,
        *,
        config: Optional[MCTSConfig] = None,
        stop_event: Optional[threading.Event] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> SearchOutcome:
        budget.validate()
        cfg = self.config if config is None else config.validate()
        started = time.monotonic()
        self.diagnostics = SearchDiagnostics()

        root, reused = self._prepare_root(position, cfg)
        if not root.expanded:
            self._expand(root, cfg, at_root=True)
        if not root.children:
            self._log("mcts: root has no legal moves")
            return SearchOutcome(
                move=None,
                value=0.0,
                simulations=0,
                nodes=0,
                time_spent=time.monotonic() - started,
                reused=reused,
                stop_reason="no_moves",
                diagnostics=self.diagnostics,
            )

        self._add_root_noise(root, cfg)

        limit = budget.max_simulations
        if len(root.children) == 1:
            limit = 1 if limit is None else min(limit, 1)

        simulations, nodes, stop_reason = self._run(root, cfg, budget, limit, stop_event, progress, started)

        chosen = self.choose_child(root, cfg.temperature)
        elapsed = max(1e-9, time.monotonic() - started)
        pv = tuple(root.principal_variation())
        value = chosen.q_value() if chosen is not None else 0.0
        metadata = {
            "simulations": simulations,
            "nodes": nodes,
            "time": elapsed,
            "root_visits": root.visit_count,
            "reused": reused,
            "stop_reason": stop_reason,
            "prior_fallbacks": self.diagnostics.prior_fallbacks,
            "value_fallbacks": self.diagnostics.value_fallbacks,
        }
        return SearchOutcome(
            move=chosen.move if chosen is not None else None,
            value=value,
            simulations=simulations,
            nodes=nodes,
            time_spent=elapsed,
            principal_variation=pv,
            reused=reused,
            stop_reason=stop_reason,
            diagnostics=self.diagnostics,
            metadata=metadata,
        )

    def select_move(self, temperature: Optional[float] = None) -> Optional[Any]:
        """Pick a move from the current root's visit counts."""

        if self.root is None:
            return None
        chosen = self.choose_child(self.root, self.config.temperature if temperature is None else temperature)
        return chosen.move if chosen is not None else None

    def choose_child(self, root: Node, temperature: float) -> Optional[Node]:
        children = root.children
        if not children:
            return None
        if temperature <= 0:
            return root.most_visited_child()

        peak = max(child.visit_count for child in children)
        if peak == 0:
            return root.most_visited_child()
        # Scaling by the peak keeps visit ** (1 / T) finite for small temperatures.
        exponent = 1.0 / temperature
        weights = [(child.visit_count / peak) ** exponent for child in children]
        total = sum(weights)
        if total <= 0:
            return root.most_visited_child()
        threshold = self._rng.random() * total
        cumulative = 0.0
        for child, weight in zip(children, weights):
            cumulative += weight
            if cumulative > threshold:
                return child
        return children[-1]

    # ------------------------------------------------------------------
    # Simulation loop
    # ------------------------------------------------------------------
    def _run(
        self,
        root: Node,
        cfg: MCTSConfig,
        budget: SearchBudget,
        limit: Optional[int],
        stop_event: Optional[threading.Event],
        progress: Optional[ProgressCallback],
        started: float,
    ) -> Tuple[int, int, str]:
        simulations = 0
        nodes = 0
        next_report = cfg.progress_interval
        stop_reason = ""
        executor = ThreadPoolExecutor(max_workers=cfg.workers) if cfg.workers > 1 else None
        try:
            while True:
                if stop_event is not None and stop_event.is_set():
                    stop_reason = "stopped"
                    break
                if budget.deadline is not None and time.monotonic() >= budget.deadline:
                    stop_reason = "deadline"
                    break
                if limit is not None and simulations >= limit:
                    stop_reason = "simulations"
                    break

                if executor is None:
                    nodes += self._simulate(root, cfg)
                    simulations += 1
                else:
                    batch = cfg.workers if limit is None else min(cfg.workers, limit - simulations)
                    futures = [executor.submit(self._simulate, root, cfg) for _ in range(batch)]
                    nodes += sum(future.result() for future in futures)
                    simulations += batch

                if progress is not None and simulations >= next_report:
                    progress(self._progress(root, simulations, nodes, started))
                    while next_report <= simulations:
                        next_report += cfg.progress_interval
        finally:
            if executor is not None:
                executor.shutdown(wait=True)
        return simulations, nodes, stop_reason

    def _simulate(self, root: Node, cfg: MCTSConfig) -> int:
        node = root
        path = [root]
        root.add_virtual_loss()
        while node.expanded and node.children:
            child = node.select_child(cfg.c_puct, cfg.virtual_loss)
            if child is None:
                break
            node = child
            node.add_virtual_loss()
            path.append(node)

        try:
            value = self._resolve_leaf(node, cfg)
        except Exception:
            # Nothing is recorded for a failed simulation.
            for visited in path:
                visited.release_virtual_loss()
            raise
        self._backpropagate(path, value)
        return len(path)

    def _resolve_leaf(self, node: Node, cfg: MCTSConfig) -> float:
        if node.terminal:
            self._count("terminal_hits")
            return node.terminal_value or 0.0
        if not node.expanded and node.visit_count >= cfg.min_visits_for_expansion:
            self._expand(node, cfg)
            if node.terminal:
                self._count("terminal_hits")
                return node.terminal_value or 0.0
        return self._leaf_value(node, cfg)

    @staticmethod
    def _backpropagate(path: Sequence[Node], value: float) -> None:
        # ``value`` is for the side to move at the leaf; every node stores the
        # result for the side that moved into it.
        for node in reversed(path):
            value = -value
            node.record(value)

    # ------------------------------------------------------------------
    # Expansion and evaluation
    # ------------------------------------------------------------------
    def _expand(self, node: Node, cfg: MCTSConfig, *, at_root: bool = False) -> None:
        if not node.claim_expansion():
            return
        try:
            self._populate(node, cfg, at_root)
        except Exception:
            node.abandon_expansion()
            raise

    def _populate(self, node: Node, cfg: MCTSConfig, at_root: bool) -> None:
        position = node.position
        status = TerminalStatus.NONE if at_root else position.terminal_status()
        moves = list(position.legal_moves()) if status is TerminalStatus.NONE else []
        if moves and self.capture_filter is not None:
            moves = list(self.capture_filter.screen_moves(position, moves))
        if not moves:
            node.mark_terminal(self._terminal_value(status, cfg))
            return

        priors = self._priors(position, moves)
        if self.capture_filter is not None:
            priors = _normalised(self.capture_filter.discount_priors(position, moves, priors)) or priors
        node.expand(moves, priors)
        self._count("expansions")

    @staticmethod
    def _terminal_value(status: TerminalStatus, cfg: MCTSConfig) -> float:
        if status is TerminalStatus.WIN:
            return cfg.win_value
        if status is TerminalStatus.DRAW:
            return cfg.draw_value
        # No legal moves without an explicit verdict is treated as a loss.
        return cfg.loss_value

    def _priors(self, position: Position, moves: Sequence[Any]) -> List[float]:
        try:
            raw = [float(p) for p in self.policy.priors(position, moves)]
        except Exception as exc:
            return self._uniform_priors(moves, f"prior policy raised {exc!r}")
        if len(raw) != len(moves):
            return self._uniform_priors(moves, f"prior policy returned {len(raw)} priors for {len(moves)} moves")
        priors = _normalised(raw)
        if priors is None:
            return self._uniform_priors(moves, "prior policy returned an invalid distribution")
        return priors

    def _uniform_priors(self, moves: Sequence[Any], reason: str) -> List[float]:
        self._count("prior_fallbacks")
        self._log(f"mcts: {reason}; using uniform priors")
        return [1.0 / len(moves)] * len(moves)

    def _leaf_value(self, node: Node, cfg: MCTSConfig) -> float:
        try:
            raw = float(self.estimator.value(node.position))
        except Exception as exc:
            return self._neutral_value(f"value estimator raised {exc!r}")
        if not math.isfinite(raw):
            return self._neutral_value(f"value estimator returned {raw}")
        if cfg.value_scale is not None:
            return math.tanh(raw / cfg.value_scale)
        if not -1.0 <= raw <= 1.0:
            return self._neutral_value(f"value estimator returned out of range value {raw}")
        return raw

    def _neutral_value(self, reason: str) -> float:
        self._count("value_fallbacks")
        self._log(f"mcts: {reason}; using neutral value")
        return 0.0

    def _add_root_noise(self, root: Node, cfg: MCTSConfig) -> None:
        epsilon = cfg.dirichlet_epsilon
        if epsilon <= 0 or len(root.children) < 2:
            return
        # u ** (1 / alpha) renormalised stands in for a symmetric Dirichlet sample.
        samples = [self._rng.random() ** (1.0 / cfg.dirichlet_alpha) for _ in root.children]
        total = sum(samples)
        if total <= 0:
            return
        # Blend from the policy prior so a reused root does not accumulate noise.
        for child, sample in zip(root.children, samples):
            child.prior = (1.0 - epsilon) * child.base_prior + epsilon * sample / total

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _prepare_root(self, position: Position, cfg: MCTSConfig) -> Tuple[Node, bool]:
        root = self.root
        if root is not None:
            fingerprint = position.fingerprint()
            if root.position.fingerprint() == fingerprint:
                match: Optional[Node] = root
            else:
                match = root.find_descendant(fingerprint, cfg.reuse_depth)
            if match is not None and match.terminal:
                # A terminal verdict skipped move generation; a root must list its moves.
                self._log("mcts: matched node was scored terminal; building a fresh root")
            elif match is root:
                root.position = position
                self._log(f"mcts: reusing root with {root.visit_count} visits")
                return root, True
            elif match is not None:
                match.detach(position)
                self.root = match
                self._log(f"mcts: promoted subtree with {match.visit_count} visits")
                return match, True
        self.root = Node(position)
        return self.root, False

    def _progress(self, root: Node, simulations: int, nodes: int, started: float) -> SearchProgress:
        elapsed = time.monotonic() - started
        pv = tuple(root.principal_variation())
        best = root.most_visited_child()
        return SearchProgress(
            simulations_run=simulations,
            elapsed_ms=int(elapsed * 1000),
            nodes_visited=nodes,
            nodes_per_second=int(nodes / elapsed) if elapsed > 0 else 0,
            best_move=pv[0] if pv else None,
            principal_variation=pv,
            value=best.q_value() if best is not None else 0.0,
        )

    def _count(self, name: str) -> None:
        with self._stats_lock:
            setattr(self.diagnostics, name, getattr(self.diagnostics, name) + 1)


def _normalised(values: Sequence[float]) -> Optional[List[float]]:
    values = list(values)
    if not values or any(not math.isfinite(v) or v < 0 for v in values):
        return None
    total = sum(values)
    if total <= 0:
        return None
    return [v / total for v in values]


__all__ = [
    "MCTSConfig",
    "MCTSTree",
    "MoveScreen",
    "Node",
    "Position",
    "PriorPolicy",
    "SearchBudget",
    "SearchDiagnostics",
    "SearchOutcome",
    "SearchProgress",
    "TerminalStatus",
    "ValueEstimator",
]

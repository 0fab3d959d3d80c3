import chess
import pytest

from evaluation import CaptureFilterMode
from mctsengine import (
    PresetRegistry,
    SearchLimits,
    SearchPreset,
    SearchReporter,
    StrategyContext,
    build_mcts_config,
)
from mcts import SearchProgress


def make_context(
    *,
    turn: bool = chess.WHITE,
    legal_moves: int = 20,
    piece_count: int = 32,
    time_controls=None,
) -> StrategyContext:
    return StrategyContext(
        piece_count=piece_count,
        material_imbalance=0,
        turn=turn,
        legal_moves_count=legal_moves,
        time_controls=time_controls,
    )


def make_limits(**overrides) -> SearchLimits:
    params = dict(
        min_time=0.1,
        max_time=5.0,
        move_time=1.0,
        time_factor=0.25,
        simulations=800,
        infinite_simulations=1_000_000,
    )
    params.update(overrides)
    return SearchLimits(**params)


def test_resolve_budget_with_explicit_movetime() -> None:
    budget = make_limits().resolve_budget(make_context(time_controls={"movetime": 750}))
    assert budget.max_simulations == 800
    assert budget.remaining_seconds() == pytest.approx(0.75, abs=0.05)


def test_resolve_budget_with_incremental_clock() -> None:
    tc = {"wtime": 4000, "winc": 500, "movestogo": 20}
    budget = make_limits().resolve_budget(make_context(turn=chess.WHITE, time_controls=tc))
    # (4000/20 + 500) / 1000 = 0.7 seconds
    assert budget.remaining_seconds() == pytest.approx(0.7, abs=0.05)


def test_resolve_budget_uses_black_clock_and_time_factor() -> None:
    tc = {"wtime": 100, "btime": 8000, "binc": 0}
    budget = make_limits().resolve_budget(make_context(turn=chess.BLACK, time_controls=tc))
    # 8000 * 0.25 / 1000 = 2.0 seconds
    assert budget.remaining_seconds() == pytest.approx(2.0, abs=0.05)


def test_resolve_budget_clamps_to_bounds() -> None:
    limits = make_limits()
    short = limits.resolve_budget(make_context(time_controls={"movetime": 1}))
    long = limits.resolve_budget(make_context(time_controls={"movetime": 60_000}))
    assert short.remaining_seconds() == pytest.approx(0.1, abs=0.05)
    assert long.remaining_seconds() == pytest.approx(5.0, abs=0.05)


@pytest.mark.parametrize("token", ["nodes", "simulations"])
def test_resolve_budget_with_simulation_cap_only(token: str) -> None:
    budget = make_limits().resolve_budget(make_context(time_controls={token: 300}))
    assert budget.max_simulations == 300
    assert budget.deadline is None


def test_resolve_budget_without_time_controls_uses_defaults() -> None:
    messages = []
    reporter = SearchReporter(logger=messages.append)
    budget = make_limits().resolve_budget(make_context(), reporter)
    assert budget.max_simulations == 800
    assert budget.remaining_seconds() == pytest.approx(1.0, abs=0.05)
    assert messages and "default move time" in messages[0]


def test_resolve_budget_ponder_runs_until_stop() -> None:
    messages = []
    reporter = SearchReporter(logger=messages.append)
    tc = {"ponder": True, "wtime": 4000, "btime": 4000}
    budget = make_limits().resolve_budget(make_context(time_controls=tc), reporter)
    assert budget.deadline is None
    assert budget.max_simulations == 1_000_000
    assert "ponder" in messages[0]


def test_resolve_budget_infinite_has_no_deadline() -> None:
    messages = []
    reporter = SearchReporter(logger=messages.append)
    budget = make_limits().resolve_budget(make_context(time_controls={"infinite": True}), reporter)
    assert budget.deadline is None
    assert budget.max_simulations == 1_000_000
    assert "infinite" in messages[0]


def test_depth_token_falls_back_to_defaults() -> None:
    budget = make_limits().resolve_budget(make_context(time_controls={"depth": 6}))
    assert budget.max_simulations == 800
    assert budget.deadline is not None


def test_preset_registry_resolve_and_clamp() -> None:
    preset = PresetRegistry.resolve("balanced")
    assert isinstance(preset, SearchPreset)
    assert preset.simulations == 1600
    assert preset.capture_filter is CaptureFilterMode.SOFT

    assert PresetRegistry.resolve("fastblitz").capture_filter is CaptureFilterMode.HARD

    with pytest.raises(ValueError):
        PresetRegistry.resolve("unknown")

    clamped = SearchPreset(simulations=0, dirichlet_epsilon=2.0, workers=500, temperature=-1.0).clamp()
    assert clamped.simulations == 1
    assert clamped.dirichlet_epsilon == 1.0
    assert clamped.workers == 64
    assert clamped.temperature == 0.0


def test_build_mcts_config_applies_endgame_overrides() -> None:
    preset = PresetRegistry.resolve("tournament")
    config, limits = build_mcts_config(preset)
    assert config.c_puct == pytest.approx(1.8)
    assert config.temperature == pytest.approx(0.05)
    assert config.value_scale == pytest.approx(1000.0)
    assert limits.simulations == 2000

    end_config, end_limits = build_mcts_config(preset, endgame=True, seed=3)
    assert end_config.c_puct == pytest.approx(2.0)
    assert end_config.seed == 3
    assert end_limits.simulations == 2500


def test_build_mcts_config_without_endgame_overrides() -> None:
    preset = PresetRegistry.resolve("balanced")
    config, limits = build_mcts_config(preset, endgame=True)
    assert config.c_puct == pytest.approx(1.5)
    assert limits.simulations == 1600


def test_reporter_formats_progress_line() -> None:
    lines = []
    reporter = SearchReporter(logger=lambda *_: None, value_scale=1000.0, emit=lines.append)
    pv = (chess.Move.from_uci("e2e4"), chess.Move.from_uci("e7e5"))
    reporter.progress(
        SearchProgress(
            simulations_run=100,
            elapsed_ms=250,
            nodes_visited=400,
            nodes_per_second=1600,
            best_move=pv[0],
            principal_variation=pv,
            value=0.0,
        )
    )
    assert lines == ["info depth 2 score cp 0 nodes 400 nps 1600 time 250 pv e2e4 e7e5"]


def test_reporter_perf_summary() -> None:
    lines = []
    reporter = SearchReporter(logger=lambda *_: None, emit=lines.append)
    reporter.perf_summary("MCTS", 50, 200, 0.5, {"reused": True})
    assert lines == ["info string perf MCTS sims=50 nodes=200 time=0.500s nps=400 reused=True"]

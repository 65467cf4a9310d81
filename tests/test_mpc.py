"""
Tests for the trajectory optimizer.
"""

import numpy as np
import pytest

from latency_mpc.control.errors import SolverDivergence
from latency_mpc.control.mpc import TrajectoryOptimizer
from latency_mpc.control.types import (
    ActuatorCommand,
    ControlHorizon,
    CostWeights,
    SolverSettings,
    VehicleLimits,
    VehicleState,
)
from latency_mpc.estimation.predictor import StatePredictor
from latency_mpc.track.reference import ReferencePathFitter
from latency_mpc.vehicle.dynamics import rollout


@pytest.fixture
def left_curve():
    xs = np.arange(6) * 5.0
    return ReferencePathFitter().fit_local(xs, 0.02 * xs ** 2)


@pytest.fixture
def left_curve_state(left_curve):
    return StatePredictor(latency=0.1).predict(10.0, ActuatorCommand(0.0, 0.0), left_curve)


def lateral_deviation(reference, state_row):
    return abs(reference.evaluate(state_row[0]) - state_row[1])


def test_straight_path_needs_no_steering(straight_reference, relaxed_settings):
    optimizer = TrajectoryOptimizer(settings=relaxed_settings)

    result = optimizer.solve(VehicleState(x=1.0, v=10.0), straight_reference)

    assert abs(result.command.steering) < 1e-3
    assert result.command.throttle > 0.0
    np.testing.assert_allclose(result.states[:, 1], 0.0, atol=1e-3)


def test_result_shapes_and_anchor(straight_reference, relaxed_settings):
    optimizer = TrajectoryOptimizer(settings=relaxed_settings)
    state = VehicleState(x=1.0, v=10.0, cte=0.2, epsi=0.01)

    result = optimizer.solve(state, straight_reference)

    assert result.states.shape == (10, 6)
    assert result.controls.shape == (9, 2)
    np.testing.assert_array_equal(result.states[0], state.as_array())
    xs, ys = result.predicted_xy()
    assert len(xs) == len(ys) == 9
    assert len(result.trajectory) == 10
    assert result.iterations >= 1


def test_left_curve_steers_left_and_tracks_better(left_curve, left_curve_state, relaxed_settings):
    optimizer = TrajectoryOptimizer(settings=relaxed_settings)

    result = optimizer.solve(left_curve_state, left_curve)

    assert result.command.steering < 0.0

    baseline_controls = np.zeros((9, 2))
    baseline_controls[:, 1] = result.controls[:, 1]
    baseline = rollout(left_curve_state.as_array(), baseline_controls, 0.1, left_curve, 2.67)

    assert lateral_deviation(left_curve, result.states[-1]) < lateral_deviation(left_curve, baseline[-1])


def test_solution_is_dynamically_consistent(left_curve, left_curve_state, relaxed_settings):
    optimizer = TrajectoryOptimizer(settings=relaxed_settings)

    result = optimizer.solve(left_curve_state, left_curve)

    z = np.concatenate([result.states.ravel(), result.controls.ravel()])
    _, residuals = optimizer.make_evaluator(left_curve_state.as_array(), left_curve)(z)
    assert np.max(np.abs(residuals)) < 1e-3


def test_commands_stay_within_bounds(relaxed_settings):
    limits = VehicleLimits()
    fitter = ReferencePathFitter()
    xs = np.arange(6) * 5.0
    reference = fitter.fit_local(xs, 3.0 + 0.05 * xs ** 2)
    state = StatePredictor().predict(15.0, ActuatorCommand(0.0, 0.0), reference)
    optimizer = TrajectoryOptimizer(limits=limits, settings=relaxed_settings)

    result = optimizer.solve(state, reference)

    assert -limits.steer_max <= result.command.steering <= limits.steer_max
    assert -limits.accel_max <= result.command.throttle <= limits.accel_max
    assert np.all(np.abs(result.controls[:, 0]) <= limits.steer_max + 1e-6)
    assert np.all(np.abs(result.controls[:, 1]) <= limits.accel_max + 1e-6)


def test_rate_limits_are_enforced(left_curve, left_curve_state, relaxed_settings):
    limits = VehicleLimits(steer_rate=0.005)
    optimizer = TrajectoryOptimizer(limits=limits, settings=relaxed_settings)

    result = optimizer.solve(left_curve_state, left_curve)

    assert np.all(np.abs(np.diff(result.controls[:, 0])) <= 0.005 + 1e-5)


def test_evaluator_cost_at_initial_guess(straight_reference):
    optimizer = TrajectoryOptimizer(reference_speed=40.0)
    x0 = VehicleState(v=10.0).as_array()

    cost, residuals = optimizer.make_evaluator(x0, straight_reference)(optimizer.initial_guess(x0, straight_reference))

    # only the speed term: N * w_v * (10 - 40)^2
    assert cost == pytest.approx(10 * 1.0 * 900.0)
    assert np.max(np.abs(residuals)) < 1e-12


def test_speed_squared_without_target(straight_reference):
    optimizer = TrajectoryOptimizer(reference_speed=None)
    x0 = VehicleState(v=10.0).as_array()

    cost, _ = optimizer.make_evaluator(x0, straight_reference)(optimizer.initial_guess(x0, straight_reference))

    assert cost == pytest.approx(10 * 100.0)


def test_zero_weight_disables_term(straight_reference):
    weights = CostWeights(6000.0, 6000.0, 0.0, 10.0, 10.0, 200.0, 10.0)
    optimizer = TrajectoryOptimizer(weights=weights)
    x0 = VehicleState(v=10.0).as_array()

    cost, _ = optimizer.make_evaluator(x0, straight_reference)(optimizer.initial_guess(x0, straight_reference))

    assert cost == pytest.approx(0.0)


def test_shortest_horizon(straight_reference, relaxed_settings):
    optimizer = TrajectoryOptimizer(horizon=ControlHorizon(steps=2, dt=0.1), settings=relaxed_settings)

    result = optimizer.solve(VehicleState(v=10.0), straight_reference)

    assert result.states.shape == (2, 6)
    assert result.controls.shape == (1, 2)


def test_iteration_budget_raises_divergence(left_curve, left_curve_state):
    optimizer = TrajectoryOptimizer(settings=SolverSettings(max_iterations=1, max_solve_time=30.0))

    with pytest.raises(SolverDivergence) as excinfo:
        optimizer.solve(left_curve_state, left_curve)
    assert excinfo.value.status == "max_iterations"
    assert excinfo.value.iterations == 1


def test_time_budget_raises_divergence(left_curve, left_curve_state):
    optimizer = TrajectoryOptimizer(settings=SolverSettings(max_solve_time=1e-9))

    with pytest.raises(SolverDivergence) as excinfo:
        optimizer.solve(left_curve_state, left_curve)
    assert excinfo.value.status == "time_limit"


def test_warm_start_reaches_same_command(left_curve, left_curve_state, relaxed_settings):
    optimizer = TrajectoryOptimizer(settings=relaxed_settings)

    cold = optimizer.solve(left_curve_state, left_curve)
    warm = optimizer.solve(left_curve_state, left_curve, warm_start=cold)

    assert warm.command.steering == pytest.approx(cold.command.steering, abs=1e-2)
    assert warm.command.throttle == pytest.approx(cold.command.throttle, abs=1e-2)


def test_solve_is_repeatable(left_curve, left_curve_state, relaxed_settings):
    optimizer = TrajectoryOptimizer(settings=relaxed_settings)

    first = optimizer.solve(left_curve_state, left_curve)
    second = optimizer.solve(left_curve_state, left_curve)

    np.testing.assert_allclose(first.states, second.states, atol=1e-2)
    assert first.command.steering == pytest.approx(second.command.steering, abs=1e-3)
    assert first.command.throttle == pytest.approx(second.command.throttle, abs=1e-3)


def test_rejects_non_finite_state(straight_reference):
    with pytest.raises(ValueError):
        TrajectoryOptimizer().solve([0.0, 0.0, 0.0, np.nan, 0.0, 0.0], straight_reference)


def test_line_search_reports_step_taken(straight_reference):
    """A direction that only makes things worse is still taken at the shortest trial step."""
    optimizer = TrajectoryOptimizer()
    x0 = VehicleState(v=10.0).as_array()
    evaluate = optimizer.make_evaluator(x0, straight_reference)
    z = optimizer.initial_guess(x0, straight_reference)
    cost, residuals = evaluate(z)
    direction = np.zeros_like(z)
    direction[optimizer.n_states::2] = 0.3

    candidate, _, _, alpha = optimizer._line_search(evaluate, z, direction, cost, residuals, 1e4)

    assert alpha == pytest.approx(0.5 ** 5)
    np.testing.assert_allclose(candidate, z + alpha * direction)


def test_line_search_accepts_full_step(straight_reference):
    optimizer = TrajectoryOptimizer()
    x0 = VehicleState(v=10.0).as_array()
    evaluate = optimizer.make_evaluator(x0, straight_reference)
    z = optimizer.initial_guess(x0, straight_reference)
    cost, residuals = evaluate(z)

    candidate, _, _, alpha = optimizer._line_search(evaluate, z, np.zeros_like(z), cost, residuals, 1e4)

    assert alpha == 1.0
    np.testing.assert_array_equal(candidate, z)


def test_near_standstill_converges_within_default_budget(left_curve, relaxed_settings):
    state = StatePredictor(latency=0.1).predict(0.26, ActuatorCommand(0.0, 0.0), left_curve)
    optimizer = TrajectoryOptimizer(settings=relaxed_settings)

    result = optimizer.solve(state, left_curve)

    assert result.iterations <= relaxed_settings.max_iterations
    assert -optimizer.limits.steer_max <= result.command.steering <= optimizer.limits.steer_max

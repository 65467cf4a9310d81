"""
Tests for the bicycle model, its linearization and the simulated actuator.
"""

import numpy as np
import pytest

from latency_mpc.control.linearize import linearize
from latency_mpc.track.reference import ReferencePolynomial
from latency_mpc.vehicle.actuators import ActuatorModel
from latency_mpc.vehicle.dynamics import rollout, step, step_pose

LF = 2.67


def test_straight_line_step(straight_reference):
    x = np.array([0.0, 0.0, 0.0, 10.0, 0.0, 0.0])

    x_next = step(x, [0.0, 0.0], 0.1, straight_reference, LF)

    np.testing.assert_allclose(x_next, [1.0, 0.0, 0.0, 10.0, 0.0, 0.0], atol=1e-12)


def test_positive_steering_turns_right(straight_reference):
    x = np.array([0.0, 0.0, 0.0, 10.0, 0.0, 0.0])

    x_next = step(x, [0.2, 0.0], 0.1, straight_reference, LF)

    assert x_next[2] < 0.0
    assert x_next[5] < 0.0


def test_cross_track_error_follows_reference():
    reference = ReferencePolynomial((1.0, 0.0, 0.0, 0.0))
    x = np.array([0.0, 0.25, 0.0, 10.0, 0.0, 0.0])

    x_next = step(x, [0.0, 0.0], 0.1, reference, LF)

    assert x_next[4] == pytest.approx(0.75)


def test_rollout_length(straight_reference):
    states = rollout([0.0, 0.0, 0.0, 5.0, 0.0, 0.0], np.zeros((4, 2)), 0.1, straight_reference, LF)

    assert states.shape == (5, 6)
    assert states[-1, 0] == pytest.approx(2.0)


def test_linearization_is_exact_at_the_operating_point():
    reference = ReferencePolynomial((0.2, 0.1, 0.01, -0.0005))
    x = np.array([3.0, 0.4, 0.05, 12.0, 0.3, -0.02])
    u = np.array([-0.05, 0.3])

    A, B, c = linearize(x, u, 0.1, reference, LF)

    np.testing.assert_allclose(A @ x + B @ u + c, step(x, u, 0.1, reference, LF), atol=1e-9)


def test_linearization_predicts_small_perturbations():
    reference = ReferencePolynomial((0.2, 0.1, 0.01, -0.0005))
    x = np.array([3.0, 0.4, 0.05, 12.0, 0.3, -0.02])
    u = np.array([-0.05, 0.3])
    dx = np.array([0.01, -0.01, 0.002, 0.05, 0.0, 0.001])
    du = np.array([0.001, -0.01])

    A, B, c = linearize(x, u, 0.1, reference, LF)

    np.testing.assert_allclose(A @ (x + dx) + B @ (u + du) + c,
                               step(x + dx, u + du, 0.1, reference, LF), atol=1e-4)


def test_step_pose_normalizes_heading():
    pose = np.array([0.0, 0.0, np.pi - 0.01, 10.0])

    next_pose = step_pose(pose, [-0.5, 0.0], 0.1, LF)

    assert -np.pi <= next_pose[2] <= np.pi
    assert next_pose[2] < 0.0


def test_actuator_applies_commands_after_delay():
    act = ActuatorModel(2, steer_max=0.4, accel_max=1.0)

    first = act.apply([0.1, 0.5], 0.1)
    second = act.apply([0.2, 0.5], 0.1)
    third = act.apply([0.3, 0.5], 0.1)

    np.testing.assert_allclose(first, [0.0, 0.0])
    np.testing.assert_allclose(second, [0.0, 0.0])
    np.testing.assert_allclose(third, [0.1, 0.5])


def test_actuator_clips_to_limits():
    act = ActuatorModel(0, steer_max=0.4, accel_max=1.0)

    applied = act.apply([2.0, -3.0], 0.1)

    np.testing.assert_allclose(applied, [0.4, -1.0])

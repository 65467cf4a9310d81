"""
Tests for the demo tracks, simulated telemetry and a short closed-loop run.
"""

import numpy as np
import pytest

from latency_mpc.main_simple import run_simulation
from latency_mpc.track.track import (
    circular_track,
    lookahead_waypoints,
    nearest_index,
    sinusoidal_track,
    track_heading,
)
from latency_mpc.utils.plotting import plot
from latency_mpc.vehicle.sensors import telemetry


def test_sinusoidal_track_shape():
    center, width = sinusoidal_track(length=100.0, amplitude=5.0, points=201)

    assert center.shape == (201, 2)
    assert width == 8.0
    assert center[0, 1] == pytest.approx(0.0)
    assert np.max(center[:, 1]) == pytest.approx(5.0, abs=1e-3)


def test_circular_heading_is_tangent():
    center, _ = circular_track(radius=10.0, points=360)

    assert track_heading(center, 0, closed=True) == pytest.approx(np.pi / 2, abs=0.01)


def test_lookahead_starts_behind_vehicle():
    center, _ = sinusoidal_track(length=600.0, amplitude=0.0, points=601)

    xs, ys = lookahead_waypoints(center, [100.2, 0.0], count=6, spacing=6.0)

    np.testing.assert_allclose(xs, [94.0, 100.0, 106.0, 112.0, 118.0, 124.0])
    np.testing.assert_allclose(ys, 0.0)


def test_lookahead_wraps_on_closed_track():
    center, _ = circular_track(radius=60.0, points=600)

    xs, _ = lookahead_waypoints(center, center[599], count=6, closed=True)

    assert len(xs) == 6


def test_lookahead_runs_out_on_open_track():
    center, _ = sinusoidal_track(length=600.0, amplitude=0.0, points=601)

    assert lookahead_waypoints(center, center[-2], count=6, spacing=6.0) is None


def test_simulated_telemetry_reports_normalized_steering():
    center, _ = sinusoidal_track()
    pose = np.array([center[10, 0], center[10, 1], 0.0, 12.0])

    event = telemetry(pose, center, [0.2, 0.5], steering_scale=2.0)

    assert len(event.waypoints_x) == 6
    assert event.speed == 12.0
    assert event.last_steering_angle == pytest.approx(0.1)
    assert event.last_throttle == 0.5
    assert nearest_index(center, pose) == 10


def test_short_closed_loop_run():
    run = run_simulation("sine", speed=15.0, steps=5)

    assert len(run["states"]) == 5
    assert len(run["predictions"]) == 5
    assert all(np.all(np.isfinite(state)) for state in run["states"])
    # the vehicle moves forward along the road
    assert run["states"][-1][0] > run["states"][0][0]


def test_summary_plot_is_written(tmp_path):
    center, width = sinusoidal_track(length=100.0, points=201)
    states = [np.array([x, 0.0, 0.0, 10.0]) for x in (0.0, 1.0, 2.0)]
    predictions = [np.array([[1.0, 0.0], [2.0, 0.1]]), np.empty((0, 2)), np.array([[3.0, 0.0]])]

    path = plot(states, center[:3], center, width, predictions, cte=[0.1, 0.05, 0.0],
                save_path=str(tmp_path / "run.png"))

    assert (tmp_path / "run.png").stat().st_size > 0
    assert path.endswith("run.png")

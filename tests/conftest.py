import numpy as np
import pytest

from latency_mpc.control.types import SolverSettings, Telemetry
from latency_mpc.track.reference import ReferencePolynomial


@pytest.fixture
def straight_reference():
    return ReferencePolynomial((0.0, 0.0, 0.0, 0.0))


@pytest.fixture
def relaxed_settings():
    """Default tolerances with a time budget that slow CI machines cannot hit."""
    return SolverSettings(max_solve_time=30.0)


def make_telemetry(xs, ys, px=0.0, py=0.0, psi=0.0, speed=10.0, steering=0.0, throttle=0.0):
    return Telemetry(
        waypoints_x=tuple(float(x) for x in xs),
        waypoints_y=tuple(float(y) for y in ys),
        position_x=px,
        position_y=py,
        heading=psi,
        speed=speed,
        last_steering_angle=steering,
        last_throttle=throttle,
    )


@pytest.fixture
def left_curve_telemetry():
    """Mild left curve y = 0.02 x^2 ahead of a vehicle at the origin facing +x."""
    xs = np.arange(6) * 5.0
    return make_telemetry(xs, 0.02 * xs ** 2)


@pytest.fixture
def straight_telemetry():
    """Six waypoints on the line through (10, 5) along heading 0.3, vehicle on it."""
    d = np.arange(-1, 5) * 6.0
    psi = 0.3
    return make_telemetry(10.0 + d * np.cos(psi), 5.0 + d * np.sin(psi), px=10.0, py=5.0, psi=psi)

import numpy as np

from latency_mpc.config import params
from latency_mpc.control.types import Telemetry
from latency_mpc.track.track import lookahead_waypoints


def telemetry(pose, center, u_applied, steering_scale, noise=params.NOISE, closed=False, rng=None):
    """
    Telemetry event for the simulator pose [X, Y, psi, v].

    u_applied is [delta (rad), a]; steering is reported normalized by
    steering_scale like the real link does. Returns None past the end of an
    open track.
    """
    waypoints = lookahead_waypoints(center, pose, closed=closed)
    if waypoints is None:
        return None

    rng = rng or np.random.default_rng()
    X, Y, psi, v = pose
    return Telemetry(
        waypoints_x=tuple(float(p) for p in waypoints[0]),
        waypoints_y=tuple(float(p) for p in waypoints[1]),
        position_x=float(X + rng.standard_normal()*noise["pos"]),
        position_y=float(Y + rng.standard_normal()*noise["pos"]),
        heading=float(psi + rng.standard_normal()*noise["psi"]),
        speed=float(v + rng.standard_normal()*noise["speed"]),
        last_steering_angle=float(u_applied[0] / steering_scale),
        last_throttle=float(u_applied[1]),
    )

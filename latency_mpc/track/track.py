import numpy as np

from latency_mpc.config import params


def circular_track(radius=60.0, width=8.0, points=600):
    theta = np.linspace(0, 2*np.pi, points, endpoint=False)
    center = np.vstack([radius*np.cos(theta), radius*np.sin(theta)]).T
    return center, width


def sinusoidal_track(length=600.0, amplitude=15.0, width=8.0, points=1200):
    """
    Create a sinusoidal two-lane road

    Args:
        length: Total length of the road (meters)
        amplitude: Amplitude of the sinusoid (meters)
        width: Width of the road (meters)
        points: Number of points along the centerline

    Returns:
        center: Road centerline points [N, 2]
        width: Road width
    """
    x = np.linspace(0, length, points)
    y = amplitude * np.sin(2 * np.pi * x / length)
    center = np.vstack([x, y]).T
    return center, width


def nearest_index(center, position):
    return int(np.argmin(np.linalg.norm(center - np.asarray(position)[:2], axis=1)))


def track_heading(center, k, closed=False):
    """Direction of the centerline at point k."""
    n = len(center)
    if closed:
        t = center[(k+1) % n] - center[k]
    elif k < n - 1:
        t = center[k+1] - center[k]
    else:
        t = center[k] - center[k-1]
    return float(np.arctan2(t[1], t[0]))


def lookahead_waypoints(center, position, count=params.LOOKAHEAD_POINTS,
                        spacing=params.WAYPOINT_SPACING, closed=False):
    """
    count centerline points ahead of position, roughly spacing apart,
    starting one stride behind the nearest point.

    Returns None when an open track has fewer points left than requested.
    """
    seg = np.linalg.norm(np.diff(center, axis=0), axis=1).mean()
    stride = max(1, int(round(spacing / seg)))
    k = nearest_index(center, position) - stride

    idx = k + stride*np.arange(count)
    if closed:
        idx = idx % len(center)
    elif idx[0] < 0:
        idx = idx - idx[0]
    if not closed and idx[-1] >= len(center):
        return None

    pts = center[idx]
    return pts[:, 0], pts[:, 1]

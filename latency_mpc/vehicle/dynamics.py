import numpy as np


def step(x, u, dt, reference, lf):
    """
    Kinematic bicycle model with tracking errors

    Args:
        x: state [X, Y, psi, v, cte, epsi] in the vehicle frame
        u: control [delta, a]
        dt: time step
        reference: ReferencePolynomial the errors are measured against
        lf: distance from the front axle to the center of gravity

    Returns:
        x_next: next state
    """
    X, Y, psi, v, cte, epsi = x
    delta, a = u

    f = reference.evaluate(X)
    psi_des = reference.heading(X)
    yaw = v * delta / lf * dt

    return np.array([
        X + v * np.cos(psi) * dt,
        Y + v * np.sin(psi) * dt,
        psi - yaw,
        v + a * dt,
        (f - Y) + v * np.sin(epsi) * dt,
        (psi - psi_des) - yaw
    ])


def rollout(x0, controls, dt, reference, lf):
    """Propagate x0 through a control sequence. Returns len(controls)+1 states."""
    states = [np.asarray(x0, dtype=float)]
    for u in controls:
        states.append(step(states[-1], u, dt, reference, lf))
    return np.array(states)


def step_pose(pose, u, dt, lf):
    """
    Global-frame bicycle step used by the simulator

    Args:
        pose: [X, Y, psi, v]
        u: control [delta, a]
    """
    X, Y, psi, v = pose
    delta, a = u

    x_next = np.array([
        X + v * np.cos(psi) * dt,
        Y + v * np.sin(psi) * dt,
        psi - v * delta / lf * dt,
        v + a * dt
    ])
    x_next[2] = np.arctan2(np.sin(x_next[2]), np.cos(x_next[2]))  # Normalize heading

    return x_next

import numpy as np
from latency_mpc.vehicle.dynamics import step


def linearize(x, u, dt, reference, lf, eps=1e-6):
    """
    Central-difference Jacobians of step() around (x, u).

    Returns A, B, c with step(x', u') ~= A x' + B u' + c near (x, u).
    """
    x = np.asarray(x, dtype=float)
    u = np.asarray(u, dtype=float)
    nx, nu = len(x), len(u)
    f0 = step(x, u, dt, reference, lf)

    A = np.zeros((nx, nx))
    B = np.zeros((nx, nu))

    for i in range(nx):
        dx = np.zeros(nx)
        dx[i] = eps
        A[:, i] = (step(x + dx, u, dt, reference, lf) - step(x - dx, u, dt, reference, lf)) / (2 * eps)

    for i in range(nu):
        du = np.zeros(nu)
        du[i] = eps
        B[:, i] = (step(x, u + du, dt, reference, lf) - step(x, u - du, dt, reference, lf)) / (2 * eps)

    c = f0 - A @ x - B @ u
    return A, B, c

"""
Reference path fitting in the vehicle frame.

Waypoints arrive in the global frame. They are shifted to the vehicle position,
rotated by -psi so the vehicle sits at the origin looking down +x, and a cubic
y(x) is fitted through them by least squares.
"""
import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np
from scipy.linalg import solve_triangular

from latency_mpc.config import params
from latency_mpc.control.errors import InsufficientWaypoints, NumericalDegeneracy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferencePolynomial:
    """
    y(x) = c0 + c1*x + c2*x^2 + c3*x^3 in the vehicle frame.

    coeffs always has order+1 entries (ascending powers). When the fit had to
    drop to a lower order the unused high coefficients are zero and
    degenerate is set.
    """

    coeffs: Tuple[float, ...]
    fit_order: int = params.FIT["order"]
    degenerate: bool = False

    @property
    def order(self) -> int:
        return len(self.coeffs) - 1

    def evaluate(self, x):
        result = np.zeros_like(np.asarray(x, dtype=float))
        for c in reversed(self.coeffs):
            result = result * x + c
        return result if np.ndim(result) else float(result)

    __call__ = evaluate

    def derivative(self, x):
        result = np.zeros_like(np.asarray(x, dtype=float))
        for power in range(self.order, 0, -1):
            result = result * x + power * self.coeffs[power]
        return result if np.ndim(result) else float(result)

    def heading(self, x):
        """Tangent direction of the reference at x."""
        return np.arctan(self.derivative(x))


def to_vehicle_frame(xs, ys, px, py, psi):
    """Translate by -(px, py) then rotate by -psi."""
    dx = np.asarray(xs, dtype=float) - px
    dy = np.asarray(ys, dtype=float) - py
    cos_psi, sin_psi = np.cos(-psi), np.sin(-psi)
    local_x = dx * cos_psi - dy * sin_psi
    local_y = dx * sin_psi + dy * cos_psi
    return local_x, local_y


def to_global_frame(xs, ys, px, py, psi):
    """Inverse of to_vehicle_frame."""
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)
    cos_psi, sin_psi = np.cos(psi), np.sin(psi)
    global_x = xs * cos_psi - ys * sin_psi + px
    global_y = xs * sin_psi + ys * cos_psi + py
    return global_x, global_y


def polyfit(xs, ys, order, max_condition=params.FIT["max_condition"]):
    """
    Least-squares polynomial fit through a Vandermonde design matrix.

    The system is solved with a QR factorization instead of the normal
    equations. Returns coefficients in ascending powers.

    Raises:
        InsufficientWaypoints: fewer than order+1 points
        NumericalDegeneracy: the design matrix is rank deficient or its
            condition number exceeds max_condition
    """
    xs = np.asarray(xs, dtype=float)
    ys = np.asarray(ys, dtype=float)

    if xs.ndim != 1 or xs.shape != ys.shape:
        raise ValueError(f"x and y must be 1-D with equal length, got {xs.shape} and {ys.shape}")
    if order < 1:
        raise ValueError(f"Polynomial order must be at least 1, got {order}")
    if len(xs) < order + 1:
        raise InsufficientWaypoints(len(xs), order + 1)
    if not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        raise NumericalDegeneracy("Waypoints contain non-finite coordinates")

    with np.errstate(over="ignore", invalid="ignore"):
        A = np.vander(xs, order + 1, increasing=True)
    if not np.all(np.isfinite(A)):
        raise NumericalDegeneracy(f"Design matrix for order {order} overflows")

    try:
        Q, R = np.linalg.qr(A)
        if not np.all(np.isfinite(R)):
            raise NumericalDegeneracy(f"QR factorization for order {order} is not finite")

        diag = np.abs(np.diag(R))
        if diag.min() <= np.finfo(float).eps * max(diag.max(), 1.0):
            raise NumericalDegeneracy(f"Rank deficient design matrix for order {order}")

        condition = np.linalg.cond(R)
    except np.linalg.LinAlgError as error:
        raise NumericalDegeneracy(f"Fit for order {order} failed: {error}") from error

    if not np.isfinite(condition) or condition > max_condition:
        raise NumericalDegeneracy(
            f"Ill-conditioned fit for order {order} (cond={condition:.3g})", condition
        )

    return solve_triangular(R, Q.T @ ys)


class ReferencePathFitter:
    """Turns global waypoints into a vehicle-frame ReferencePolynomial."""

    def __init__(self, order=params.FIT["order"], max_condition=params.FIT["max_condition"]):
        if order < 1:
            raise ValueError(f"Polynomial order must be at least 1, got {order}")
        self.order = order
        self.max_condition = max_condition

    def fit(self, waypoints_x, waypoints_y, px, py, psi,
            previous: Optional[ReferencePolynomial] = None) -> ReferencePolynomial:
        """
        Transform and fit.

        An ill-conditioned fit is retried with decreasing order. If even a
        line cannot be fitted, the previous cycle's polynomial is reused when
        one is given; otherwise the NumericalDegeneracy is raised.
        """
        xs, ys = to_vehicle_frame(waypoints_x, waypoints_y, px, py, psi)
        return self.fit_local(xs, ys, previous)

    def fit_local(self, xs, ys, previous: Optional[ReferencePolynomial] = None) -> ReferencePolynomial:
        try:
            coeffs = polyfit(xs, ys, self.order, self.max_condition)
            return ReferencePolynomial(tuple(float(c) for c in coeffs), fit_order=self.order)
        except NumericalDegeneracy as error:
            degeneracy = error

        for order in range(self.order - 1, 0, -1):
            try:
                coeffs = polyfit(xs, ys, order, self.max_condition)
            except NumericalDegeneracy:
                continue
            logger.warning("Reference fit degenerate (%s), using order %d", degeneracy, order)
            padded = np.zeros(self.order + 1)
            padded[:order + 1] = coeffs
            return ReferencePolynomial(tuple(float(c) for c in padded), fit_order=order, degenerate=True)

        if previous is not None:
            logger.warning("Reference fit degenerate (%s), reusing previous polynomial", degeneracy)
            return replace(previous, degenerate=True)

        raise degeneracy


def sample_reference(polynomial, spacing=params.REFERENCE_SAMPLE["spacing"],
                     points=params.REFERENCE_SAMPLE["points"]):
    """Points along the fitted reference for display, skipping the origin."""
    xs = spacing * np.arange(1, points)
    return xs.tolist(), np.asarray(polynomial.evaluate(xs)).tolist()

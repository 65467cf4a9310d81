"""Recoverable failures of a single control cycle."""


class TrackingError(Exception):
    """Base class. A cycle that raises one of these falls back instead of stopping the loop."""

    kind = "tracking_error"


class MalformedTelemetry(TrackingError, ValueError):
    """A telemetry field is missing or has the wrong shape."""

    kind = "malformed_telemetry"


class InsufficientWaypoints(TrackingError, ValueError):
    """Too few points to fit the reference polynomial."""

    kind = "insufficient_waypoints"

    def __init__(self, count, required):
        super().__init__(f"Need at least {required} waypoints to fit the reference, got {count}")
        self.count = count
        self.required = required


class NumericalDegeneracy(TrackingError, ArithmeticError):
    """The reference fit is ill-conditioned."""

    kind = "numerical_degeneracy"

    def __init__(self, message, condition=float("inf")):
        super().__init__(message)
        self.condition = condition


class SolverDivergence(TrackingError, RuntimeError):
    """The optimizer ran out of budget or its subproblem failed."""

    kind = "solver_divergence"

    def __init__(self, message, status="unknown", iterations=0, elapsed=0.0):
        super().__init__(message)
        self.status = status
        self.iterations = iterations
        self.elapsed = elapsed

"""
One control cycle: telemetry -> reference fit -> latency prediction -> MPC -> response.

Every failure kind of a cycle is recovered here. A bad cycle answers with the
fallback command and the loop carries on with the next telemetry.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from latency_mpc.config import params
from latency_mpc.control.errors import MalformedTelemetry, TrackingError
from latency_mpc.control.mpc import TrajectoryOptimizer
from latency_mpc.control.types import (
    NEUTRAL_COMMAND,
    ActuatorCommand,
    ControlResponse,
    OptimizationResult,
    Telemetry,
    VehicleLimits,
    VehicleState,
)
from latency_mpc.estimation.predictor import StatePredictor
from latency_mpc.track.reference import ReferencePathFitter, ReferencePolynomial, sample_reference

logger = logging.getLogger(__name__)


class CommandEmitter:
    """Converts between radians and the normalized steering units on the wire."""

    def __init__(self, limits: VehicleLimits,
                 spacing=params.REFERENCE_SAMPLE["spacing"], points=params.REFERENCE_SAMPLE["points"]):
        self.limits = limits
        self.spacing = spacing
        self.points = points

    @property
    def steering_scale(self):
        return self.limits.steer_max * self.limits.lf

    def to_command(self, telemetry: Telemetry) -> ActuatorCommand:
        """Actuation currently in effect, steering in radians."""
        return ActuatorCommand(
            steering=telemetry.last_steering_angle * self.steering_scale,
            throttle=telemetry.last_throttle,
        )

    def emit(self, command: ActuatorCommand, result: Optional[OptimizationResult] = None,
             reference: Optional[ReferencePolynomial] = None) -> ControlResponse:
        command = command.clipped(self.limits)

        mpc_x, mpc_y = result.predicted_xy() if result is not None else ([], [])
        if reference is not None:
            next_x, next_y = sample_reference(reference, self.spacing, self.points)
        else:
            next_x, next_y = [], []

        return ControlResponse(
            steering_angle=command.steering / self.steering_scale,
            throttle=command.throttle,
            predicted_trajectory_x=tuple(mpc_x),
            predicted_trajectory_y=tuple(mpc_y),
            reference_trajectory_x=tuple(next_x),
            reference_trajectory_y=tuple(next_y),
        )


@dataclass(frozen=True)
class CycleOutcome:
    response: ControlResponse
    command: ActuatorCommand = NEUTRAL_COMMAND
    state: Optional[VehicleState] = None
    reference: Optional[ReferencePolynomial] = None
    result: Optional[OptimizationResult] = None
    error: Optional[TrackingError] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


class MPCController:
    """
    Runs the cycle pipeline and owns the fallback policy.

    The optimizer is stateless. The controller only remembers what the
    fallbacks need: the last command it issued, the last good reference for
    a degenerate fit, and the last plan as a warm start hint.
    """

    def __init__(self, weights=None, horizon=None, limits=None, settings=None,
                 latency=params.LATENCY, reference_speed=params.REFERENCE_SPEED,
                 fitter=None, use_warm_start=True):
        self.limits = limits or VehicleLimits()
        self.optimizer = TrajectoryOptimizer(weights, horizon, self.limits, settings, reference_speed)
        self.fitter = fitter or ReferencePathFitter()
        self.predictor = StatePredictor(latency=latency, lf=self.limits.lf)
        self.emitter = CommandEmitter(self.limits)
        self.use_warm_start = use_warm_start

        self.last_command: Optional[ActuatorCommand] = None
        self.last_reference: Optional[ReferencePolynomial] = None
        self.last_result: Optional[OptimizationResult] = None

    def fallback_command(self) -> ActuatorCommand:
        """
        Hold the last issued steering without accelerating; neutral if
        nothing has been issued yet.
        """
        if self.last_command is None:
            return NEUTRAL_COMMAND
        return ActuatorCommand(
            steering=self.last_command.steering,
            throttle=min(self.last_command.throttle, 0.0),
        ).clipped(self.limits)

    def step(self, telemetry: Optional[Telemetry]) -> CycleOutcome:
        if telemetry is None:
            return CycleOutcome(response=ControlResponse.neutral())

        reference = state = None
        try:
            self._validate(telemetry)
            reference = self.fitter.fit(
                telemetry.waypoints_x, telemetry.waypoints_y,
                telemetry.position_x, telemetry.position_y, telemetry.heading,
                previous=self.last_reference,
            )
            previous = self.emitter.to_command(telemetry)
            state = self.predictor.predict(telemetry.speed, previous, reference)
            warm_start = self.last_result if self.use_warm_start else None
            result = self.optimizer.solve(state, reference, warm_start=warm_start)
        except TrackingError as error:
            return self._degrade(error, state, reference)

        self.last_command = result.command
        self.last_reference = reference
        self.last_result = result
        self._log_cycle(result.command, state, reference)

        return CycleOutcome(
            response=self.emitter.emit(result.command, result, reference),
            command=result.command,
            state=state,
            reference=reference,
            result=result,
        )

    def reject(self, error: TrackingError) -> CycleOutcome:
        """Answer a cycle whose telemetry could not even be decoded."""
        return self._degrade(error)

    def _degrade(self, error, state=None, reference=None):
        command = self.fallback_command()
        self.last_result = None
        logger.warning("Cycle degraded (%s: %s), sending steering=%.4f throttle=%.3f",
                       error.kind, error, command.steering, command.throttle)
        return CycleOutcome(
            response=self.emitter.emit(command, None, reference),
            command=command,
            state=state,
            reference=reference,
            error=error,
        )

    def _validate(self, telemetry):
        try:
            wx = np.asarray(telemetry.waypoints_x, dtype=float)
            wy = np.asarray(telemetry.waypoints_y, dtype=float)
            scalars = np.asarray((telemetry.position_x, telemetry.position_y, telemetry.heading,
                                  telemetry.speed, telemetry.last_steering_angle, telemetry.last_throttle),
                                 dtype=float)
        except (TypeError, ValueError) as error:
            raise MalformedTelemetry(f"Telemetry values are not numeric: {error}") from error

        if wx.ndim != 1 or wy.ndim != 1:
            raise MalformedTelemetry(f"Waypoints must be flat sequences, got shapes {wx.shape} and {wy.shape}")
        if len(wx) != len(wy):
            raise MalformedTelemetry(f"Waypoint coordinate counts differ: {len(wx)} x, {len(wy)} y")
        if not (np.all(np.isfinite(wx)) and np.all(np.isfinite(wy))):
            raise MalformedTelemetry("Waypoints contain non-finite coordinates")
        if scalars.shape != (6,) or not np.all(np.isfinite(scalars)):
            raise MalformedTelemetry(f"Telemetry scalars must be finite numbers, got {scalars}")

    def _log_cycle(self, command, state, reference):
        steer = command.steering / self.emitter.steering_scale
        curvature = (reference.coeffs[-1] * 100 * state.v) ** 2
        level = logging.WARNING if abs(state.cte) > 1.0 else logging.INFO
        logger.log(level, "steer: %.4f throttle: %.3f cte: %.3f epsi: %.4f curvature: %.4f",
                   steer, command.throttle, state.cte, state.epsi, curvature)

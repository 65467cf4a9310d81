"""
Data model shared by the fitter, the predictor and the optimizer.

Everything here is immutable. Configuration objects are built once when the
controller is constructed and handed to every cycle read-only.
"""
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

import numpy as np

from latency_mpc.config import params

STATE_SIZE = 6
CONTROL_SIZE = 2


@dataclass(frozen=True)
class VehicleState:
    """Vehicle-frame state at the instant planning begins."""

    x: float = 0.0
    y: float = 0.0
    psi: float = 0.0
    v: float = 0.0
    cte: float = 0.0
    epsi: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.psi, self.v, self.cte, self.epsi], dtype=float)

    @classmethod
    def from_array(cls, values) -> "VehicleState":
        values = np.asarray(values, dtype=float)
        if values.shape != (STATE_SIZE,):
            raise ValueError(f"State vector must have {STATE_SIZE} entries, got shape {values.shape}")
        return cls(*(float(value) for value in values))


@dataclass(frozen=True)
class ActuatorCommand:
    """Steering angle [rad] and normalized acceleration."""

    steering: float = 0.0
    throttle: float = 0.0

    def clipped(self, limits: "VehicleLimits") -> "ActuatorCommand":
        return ActuatorCommand(
            steering=float(np.clip(self.steering, -limits.steer_max, limits.steer_max)),
            throttle=float(np.clip(self.throttle, -limits.accel_max, limits.accel_max)),
        )


NEUTRAL_COMMAND = ActuatorCommand(0.0, 0.0)


@dataclass(frozen=True)
class CostWeights:
    """Multipliers of the seven cost terms. A zero weight disables its term."""

    cte: float
    epsi: float
    speed: float
    steering: float
    throttle: float
    steering_rate: float
    throttle_rate: float

    def __post_init__(self):
        for name, value in self.__dict__.items():
            if value < 0.0:
                raise ValueError(f"Cost weight '{name}' must be non-negative, got {value}")

    @classmethod
    def from_sequence(cls, multipliers: Sequence[float]) -> "CostWeights":
        """Build from a (cte, epsi, v, delta, a, delta gap, a gap) list."""
        if len(multipliers) != 7:
            raise ValueError(f"Expected 7 cost multipliers, got {len(multipliers)}")
        return cls(*(float(m) for m in multipliers))

    @classmethod
    def default(cls) -> "CostWeights":
        return cls.from_sequence(params.COST_WEIGHTS)


@dataclass(frozen=True)
class ControlHorizon:
    """N planning steps of dt seconds each."""

    steps: int = params.HORIZON
    dt: float = params.DT

    def __post_init__(self):
        if self.steps < 2:
            raise ValueError(f"Horizon needs at least 2 steps, got {self.steps}")
        if self.dt <= 0.0:
            raise ValueError(f"Step duration must be positive, got {self.dt}")

    @property
    def intervals(self) -> int:
        return self.steps - 1

    @property
    def duration(self) -> float:
        return self.steps * self.dt


@dataclass(frozen=True)
class VehicleLimits:
    """Vehicle geometry and actuator bounds."""

    lf: float = params.LF
    steer_max: float = params.LIMITS["steer_max"]
    accel_max: float = params.LIMITS["accel_max"]
    steer_rate: Optional[float] = params.LIMITS["steer_rate"]
    accel_rate: Optional[float] = params.LIMITS["accel_rate"]

    def __post_init__(self):
        if self.lf <= 0.0:
            raise ValueError(f"Lf must be positive, got {self.lf}")
        if self.steer_max <= 0.0 or self.accel_max <= 0.0:
            raise ValueError("Actuator limits must be positive")
        for rate in (self.steer_rate, self.accel_rate):
            if rate is not None and rate <= 0.0:
                raise ValueError(f"Actuator rate limits must be positive, got {rate}")


@dataclass(frozen=True)
class SolverSettings:
    """Iteration and wall-clock budget of one solve."""

    max_iterations: int = params.SOLVER["max_iterations"]
    max_solve_time: float = params.SOLVER["max_solve_time"]
    constraint_tol: float = params.SOLVER["constraint_tol"]
    step_tol: float = params.SOLVER["step_tol"]
    merit_penalty: float = params.SOLVER["merit_penalty"]
    qp_eps: float = params.SOLVER["qp_eps"]

    def __post_init__(self):
        if self.max_iterations < 1:
            raise ValueError("Solver needs at least one iteration")
        if self.max_solve_time <= 0.0:
            raise ValueError("Solver time budget must be positive")


@dataclass(frozen=True)
class OptimizationResult:
    """
    Command to apply now plus the plan it came from.

    states has shape (N, 6) and controls (N-1, 2). Both are diagnostics only;
    the next cycle always restarts from measured telemetry.
    """

    command: ActuatorCommand
    states: np.ndarray = field(repr=False)
    controls: np.ndarray = field(repr=False)
    cost: float = 0.0
    iterations: int = 0
    solve_time: float = 0.0

    @property
    def trajectory(self) -> list:
        return [VehicleState.from_array(row) for row in self.states]

    def predicted_xy(self):
        """Planned (x, y) points after the initial state, vehicle frame."""
        return self.states[1:, 0].tolist(), self.states[1:, 1].tolist()


@dataclass(frozen=True)
class Telemetry:
    """
    One decoded telemetry event. Waypoints and pose are global; steering is
    normalized (radians divided by steer_max * Lf), throttle in [-1, 1].
    """

    waypoints_x: Tuple[float, ...]
    waypoints_y: Tuple[float, ...]
    position_x: float
    position_y: float
    heading: float
    speed: float
    last_steering_angle: float = 0.0
    last_throttle: float = 0.0


@dataclass(frozen=True)
class ControlResponse:
    """Reply for one cycle, same units as Telemetry. Trajectories are vehicle frame."""

    steering_angle: float = 0.0
    throttle: float = 0.0
    predicted_trajectory_x: Tuple[float, ...] = ()
    predicted_trajectory_y: Tuple[float, ...] = ()
    reference_trajectory_x: Tuple[float, ...] = ()
    reference_trajectory_y: Tuple[float, ...] = ()

    @classmethod
    def neutral(cls) -> "ControlResponse":
        return cls()

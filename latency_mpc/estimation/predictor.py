import numpy as np

from latency_mpc.config import params
from latency_mpc.control.types import ActuatorCommand, VehicleState


class StatePredictor:
    """
    Advances measured telemetry through the actuation delay.

    The commands already sent keep acting while the new ones travel to the
    actuators, so the optimizer plans from where the vehicle will be once its
    output takes effect.
    """

    def __init__(self, latency=params.LATENCY, lf=params.LF):
        if latency < 0.0:
            raise ValueError(f"Latency must be non-negative, got {latency}")
        if lf <= 0.0:
            raise ValueError(f"Lf must be positive, got {lf}")
        self.latency = latency
        self.lf = lf

    def predict(self, speed, previous: ActuatorCommand, reference, x=0.0, y=0.0, psi=0.0) -> VehicleState:
        """
        Args:
            speed: measured speed
            previous: actuation in effect during the delay (steering in radians)
            reference: ReferencePolynomial in the vehicle frame
            x, y, psi: pose in the same frame, the origin after the transform

        Returns:
            VehicleState after the delay
        """
        cte = reference.evaluate(x) - y
        epsi = psi - reference.heading(x)

        dt = self.latency
        yaw = speed * previous.steering / self.lf * dt

        return VehicleState(
            x=float(x + speed * np.cos(psi) * dt),
            y=float(y),
            psi=float(psi - yaw),
            v=float(speed + previous.throttle * dt),
            cte=float(cte + speed * np.sin(epsi) * dt),
            epsi=float(epsi - yaw),
        )

from collections import deque

import numpy as np


class ActuatorModel:
    """
    Simulated drive-by-wire: a command takes effect delay_steps simulation
    steps after it was issued, optionally rate limited per second.
    """

    def __init__(self, delay_steps, steer_max, accel_max, steer_rate=None):
        if delay_steps < 0:
            raise ValueError(f"Delay must be non-negative, got {delay_steps}")
        self.steer_max = steer_max
        self.accel_max = accel_max
        self.steer_rate = steer_rate
        self.u = np.zeros(2)
        self.pending = deque([np.zeros(2)] * delay_steps)

    def apply(self, u_cmd, dt):
        self.pending.append(np.asarray(u_cmd, dtype=float))
        target = self.pending.popleft()

        du = target - self.u
        if self.steer_rate is not None:
            du[0] = np.clip(du[0], -self.steer_rate*dt, self.steer_rate*dt)
        self.u += du
        self.u[0] = np.clip(self.u[0], -self.steer_max, self.steer_max)
        self.u[1] = np.clip(self.u[1], -self.accel_max, self.accel_max)
        return self.u.copy()

import logging
import time

import numpy as np
import scipy.sparse as sp
import osqp

from latency_mpc.config import params
from latency_mpc.control.errors import SolverDivergence
from latency_mpc.control.linearize import linearize
from latency_mpc.control.types import (
    CONTROL_SIZE,
    STATE_SIZE,
    ActuatorCommand,
    ControlHorizon,
    CostWeights,
    OptimizationResult,
    SolverSettings,
    VehicleLimits,
    VehicleState,
)
from latency_mpc.vehicle.dynamics import rollout, step

logger = logging.getLogger(__name__)

LINE_SEARCH_STEPS = 6
ARMIJO = 1e-4


class TrajectoryOptimizer:
    """
    Nonlinear MPC over a direct transcription of the kinematic bicycle model,
    solved by sequential quadratic programming with OSQP subproblems.

    Decision vector z is stacked as:
    [s_0, ..., s_{N-1}, u_0, ..., u_{N-2}]
    with s = (x, y, psi, v, cte, epsi) and u = (delta, a).

    The cost is quadratic in z, so every QP keeps it exactly; only the
    dynamics are linearized around the current iterate. Nothing is carried
    from one solve to the next.
    """

    def __init__(self, weights=None, horizon=None, limits=None, settings=None,
                 reference_speed=params.REFERENCE_SPEED):
        self.weights = weights or CostWeights.default()
        self.horizon = horizon or ControlHorizon()
        self.limits = limits or VehicleLimits()
        self.settings = settings or SolverSettings()
        self.reference_speed = reference_speed

        self.n_states = self.horizon.steps * STATE_SIZE
        self.n_controls = self.horizon.intervals * CONTROL_SIZE
        self.n_vars = self.n_states + self.n_controls

        self._P, self._q, self._cost_offset = self._build_cost()

    def split(self, z):
        """View z as (states [N, 6], controls [N-1, 2])."""
        states = z[:self.n_states].reshape(self.horizon.steps, STATE_SIZE)
        controls = z[self.n_states:].reshape(self.horizon.intervals, CONTROL_SIZE)
        return states, controls

    def _state_slice(self, k):
        return slice(k * STATE_SIZE, (k + 1) * STATE_SIZE)

    def _control_slice(self, k):
        offset = self.n_states + k * CONTROL_SIZE
        return slice(offset, offset + CONTROL_SIZE)

    def _build_cost(self):
        """
        Build the objective 0.5 z^T P z + q^T z + offset:
        sum_k w_cte cte_k^2 + w_epsi epsi_k^2 + w_v (v_k - v_ref)^2
        + sum_k w_delta delta_k^2 + w_a a_k^2
        + sum_k w_ddelta (delta_{k+1} - delta_k)^2 + w_da (a_{k+1} - a_k)^2
        """
        w = self.weights
        N, M = self.horizon.steps, self.horizon.intervals

        Q = np.diag([0.0, 0.0, 0.0, w.speed, w.cte, w.epsi])
        R = np.diag([w.steering, w.throttle])
        Rj = np.diag([w.steering_rate, w.throttle_rate])

        state_block = sp.kron(sp.eye(N), Q)
        input_block = sp.kron(sp.eye(M), R)
        if M > 1:
            # rows are u_{k+1} - u_k
            diff = sp.kron(sp.eye(M - 1, M, k=1) - sp.eye(M - 1, M), sp.eye(CONTROL_SIZE))
            input_block = input_block + diff.T @ sp.kron(sp.eye(M - 1), Rj) @ diff

        P = 2.0 * sp.block_diag([state_block, input_block], format="csc")

        q = np.zeros(self.n_vars)
        offset = 0.0
        if self.reference_speed is not None:
            for k in range(N):
                q[k * STATE_SIZE + 3] = -2.0 * w.speed * self.reference_speed
            offset = N * w.speed * self.reference_speed ** 2

        return P, q, offset

    def make_evaluator(self, x0, reference):
        """
        Objective and equality residuals at a decision vector.

        The residual vector stacks s_0 - x0 and s_{k+1} - step(s_k, u_k), so
        a dynamically consistent plan has all-zero residuals.
        """
        x0 = np.asarray(x0, dtype=float)
        P, q, offset = self._P, self._q, self._cost_offset
        dt, lf = self.horizon.dt, self.limits.lf

        def evaluate(z):
            states, controls = self.split(z)
            cost = 0.5 * z @ (P @ z) + q @ z + offset
            residuals = np.empty(self.n_states)
            residuals[:STATE_SIZE] = states[0] - x0
            for k in range(self.horizon.intervals):
                residuals[self._state_slice(k + 1)] = states[k + 1] - step(states[k], controls[k], dt, reference, lf)
            return float(cost), residuals

        return evaluate

    def initial_guess(self, x0, reference, warm_start=None):
        """
        Zero actuation rolled out from x0, or the previous plan's controls
        shifted by one interval when a warm start is given.
        """
        M = self.horizon.intervals
        controls = np.zeros((M, CONTROL_SIZE))

        if warm_start is not None:
            previous = np.asarray(warm_start.controls, dtype=float)
            if previous.shape == (M, CONTROL_SIZE):
                controls = np.vstack([previous[1:], previous[-1:]])
                controls[:, 0] = np.clip(controls[:, 0], -self.limits.steer_max, self.limits.steer_max)
                controls[:, 1] = np.clip(controls[:, 1], -self.limits.accel_max, self.limits.accel_max)
            else:
                logger.debug("Ignoring warm start with controls of shape %s", previous.shape)

        states = rollout(x0, controls, self.horizon.dt, reference, self.limits.lf)
        return np.concatenate([states.ravel(), controls.ravel()])

    def _build_dynamics_constraints(self, x0, A, B, c):
        """
        Anchor s_0 to x0 and enforce s_{k+1} = A_k s_k + B_k u_k + c_k.
        """
        rows, lower, upper = [], [], []

        row = np.zeros((STATE_SIZE, self.n_vars))
        row[:, self._state_slice(0)] = np.eye(STATE_SIZE)
        rows.append(row)
        lower.append(x0)
        upper.append(x0)

        for k in range(self.horizon.intervals):
            row = np.zeros((STATE_SIZE, self.n_vars))
            row[:, self._state_slice(k)] = -A[k]
            row[:, self._state_slice(k + 1)] = np.eye(STATE_SIZE)
            row[:, self._control_slice(k)] = -B[k]
            rows.append(row)
            lower.append(c[k])
            upper.append(c[k])

        return rows, lower, upper

    def _build_input_constraints(self):
        """Box constraints -max <= u_k <= max."""
        rows, lower, upper = [], [], []
        umax = np.array([self.limits.steer_max, self.limits.accel_max])

        for k in range(self.horizon.intervals):
            row = np.zeros((CONTROL_SIZE, self.n_vars))
            row[:, self._control_slice(k)] = np.eye(CONTROL_SIZE)
            rows.append(row)
            lower.append(-umax)
            upper.append(umax)

        return rows, lower, upper

    def _build_rate_constraints(self):
        """
        Optional hard bounds on u_{k+1} - u_k. Without them the rate is only
        penalized in the cost.
        """
        rows, lower, upper = [], [], []
        steer_rate, accel_rate = self.limits.steer_rate, self.limits.accel_rate
        if steer_rate is None and accel_rate is None:
            return rows, lower, upper

        bound = np.array([
            np.inf if steer_rate is None else steer_rate,
            np.inf if accel_rate is None else accel_rate,
        ])
        for k in range(self.horizon.intervals - 1):
            row = np.zeros((CONTROL_SIZE, self.n_vars))
            row[:, self._control_slice(k + 1)] = np.eye(CONTROL_SIZE)
            row[:, self._control_slice(k)] = -np.eye(CONTROL_SIZE)
            rows.append(row)
            lower.append(-bound)
            upper.append(bound)

        return rows, lower, upper

    def _linearize_plan(self, z, reference):
        states, controls = self.split(z)
        A, B, c = [], [], []
        for k in range(self.horizon.intervals):
            a, b, cc = linearize(states[k], controls[k], self.horizon.dt, reference, self.limits.lf)
            A.append(a); B.append(b); c.append(cc)
        return A, B, c

    def _solve_qp(self, x0, z, A, B, c, time_limit, iteration):
        rows, l, u = [], [], []
        builders = [
            self._build_dynamics_constraints(x0, A, B, c),
            self._build_input_constraints(),
            self._build_rate_constraints(),
        ]

        for block_rows, block_l, block_u in builders:
            rows.extend(block_rows)
            l.extend(block_l)
            u.extend(block_u)

        Aqp = sp.csc_matrix(np.vstack(rows))
        lqp = np.hstack(l)
        uqp = np.hstack(u)

        eps = self.settings.qp_eps
        solver = osqp.OSQP()
        solver.setup(P=sp.triu(self._P, format="csc"), q=self._q, A=Aqp, l=lqp, u=uqp,
                     verbose=False, eps_abs=eps, eps_rel=eps, max_iter=20000,
                     time_limit=time_limit)
        solver.warm_start(x=z)
        res = solver.solve()

        if res.x is None or res.info.status_val not in (1, 2) or not np.all(np.isfinite(res.x)):
            raise SolverDivergence(
                f"QP subproblem failed with status '{res.info.status}'",
                status=res.info.status, iterations=iteration,
            )

        return res.x, res.y

    def _line_search(self, evaluate, z, direction, cost, residuals, penalty):
        """Backtracking on the l1 merit function cost + penalty * |residuals|_1."""
        infeasibility = np.sum(np.abs(residuals))
        merit = cost + penalty * infeasibility
        slope = (self._P @ z + self._q) @ direction - penalty * infeasibility

        # the last trial is taken even when it is rejected
        for trial in range(LINE_SEARCH_STEPS):
            alpha = 0.5 ** trial
            candidate = z + alpha * direction
            candidate_cost, candidate_residuals = evaluate(candidate)
            candidate_merit = candidate_cost + penalty * np.sum(np.abs(candidate_residuals))
            if candidate_merit <= merit + ARMIJO * alpha * min(slope, 0.0):
                break

        return candidate, candidate_cost, candidate_residuals, alpha

    def solve(self, state, reference, warm_start=None) -> OptimizationResult:
        """
        Plan from state against reference and return the first command.

        Args:
            state: VehicleState (or 6-vector) after latency compensation
            reference: ReferencePolynomial in the same frame
            warm_start: optional previous OptimizationResult

        Raises:
            SolverDivergence: the iteration or time budget ran out, or a QP
                subproblem was not solved
        """
        start = time.perf_counter()
        x0 = state.as_array() if isinstance(state, VehicleState) else np.asarray(state, dtype=float)
        if x0.shape != (STATE_SIZE,) or not np.all(np.isfinite(x0)):
            raise ValueError(f"Initial state must be a finite {STATE_SIZE}-vector, got {x0}")

        evaluate = self.make_evaluator(x0, reference)
        z = self.initial_guess(x0, reference, warm_start)
        cost, residuals = evaluate(z)
        penalty = self.settings.merit_penalty

        for iteration in range(1, self.settings.max_iterations + 1):
            elapsed = time.perf_counter() - start
            remaining = self.settings.max_solve_time - elapsed
            if remaining <= 0.0:
                raise SolverDivergence(
                    f"Time budget of {self.settings.max_solve_time}s exhausted",
                    status="time_limit", iterations=iteration - 1, elapsed=elapsed,
                )

            A, B, c = self._linearize_plan(z, reference)
            z_qp, duals = self._solve_qp(x0, z, A, B, c, remaining, iteration)

            direction = z_qp - z
            penalty = max(penalty, 1.5 * np.max(np.abs(duals[:self.n_states])))
            z, cost, residuals, alpha = self._line_search(evaluate, z, direction, cost, residuals, penalty)

            step_norm = np.max(np.abs(direction))
            infeasibility = np.max(np.abs(residuals))
            logger.debug("SQP iter %d: cost=%.4f step=%.2e infeasibility=%.2e alpha=%.3f",
                         iteration, cost, step_norm, infeasibility, alpha)

            if infeasibility <= self.settings.constraint_tol and step_norm <= self.settings.step_tol:
                return self._result(z, x0, cost, iteration, time.perf_counter() - start)

        elapsed = time.perf_counter() - start
        raise SolverDivergence(
            f"No convergence after {self.settings.max_iterations} iterations "
            f"(infeasibility={infeasibility:.2e}, step={step_norm:.2e})",
            status="max_iterations", iterations=self.settings.max_iterations, elapsed=elapsed,
        )

    def _result(self, z, x0, cost, iterations, elapsed):
        states, controls = self.split(z.copy())
        states[0] = x0
        command = ActuatorCommand(steering=float(controls[0, 0]), throttle=float(controls[0, 1]))
        return OptimizationResult(
            command=command.clipped(self.limits),
            states=states,
            controls=controls,
            cost=cost,
            iterations=iterations,
            solve_time=elapsed,
        )

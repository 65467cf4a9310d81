"""
Closed-loop demo: simulated vehicle <-> text frames <-> MPC controller
"""
import argparse
import logging

import numpy as np

from latency_mpc.bridge import protocol
from latency_mpc.bridge.session import Session
from latency_mpc.config.params import DT, HORIZON, LATENCY, NOISE, REFERENCE_SPEED, SIM_STEPS
from latency_mpc.control.controller import MPCController
from latency_mpc.control.types import ControlHorizon, VehicleLimits
from latency_mpc.track.reference import to_global_frame
from latency_mpc.track.track import circular_track, nearest_index, sinusoidal_track, track_heading
from latency_mpc.utils.plotting import create_trajectory_gif, plot
from latency_mpc.vehicle.actuators import ActuatorModel
from latency_mpc.vehicle.dynamics import step_pose
from latency_mpc.vehicle.sensors import telemetry


def run_simulation(track_type="sine", speed=REFERENCE_SPEED, horizon=HORIZON, steps=SIM_STEPS,
                   latency_ms=0, noise=NOISE, seed=0):
    """
    Drive one lap (or to the end of an open track)

    Args:
        track_type: "sine" or "circle"
        speed: Target speed of the controller
        horizon: MPC horizon steps
        steps: Maximum number of control cycles
        latency_ms: Artificial wire delay per reply
        noise: Telemetry noise standard deviations
        seed: Seed of the telemetry noise

    Returns:
        dict with states, refs, predictions, cte and degraded cycle count
    """
    closed = track_type == "circle"
    if closed:
        center, width = circular_track()
    else:
        center, width = sinusoidal_track()

    limits = VehicleLimits()
    plan = ControlHorizon(steps=horizon, dt=DT)
    controller = MPCController(horizon=plan, limits=limits,
                               reference_speed=speed)
    session = Session(controller, artificial_latency_ms=latency_ms)
    scale = controller.emitter.steering_scale
    act = ActuatorModel(int(round(LATENCY / DT)), limits.steer_max, limits.accel_max)
    rng = np.random.default_rng(seed)

    x = np.array([center[0, 0], center[0, 1], track_heading(center, 0, closed), 0.5 * speed])
    u_applied = np.zeros(2)

    states, refs, predictions, cte = [], [], [], []
    degraded = 0

    print(f"Starting {track_type} simulation...")
    print(f"Target speed: {speed}, Horizon: {plan.steps} steps ({plan.duration:.1f}s), Latency: {LATENCY}s")

    for t in range(steps):
        event = telemetry(x, center, u_applied, scale, noise=noise, closed=closed, rng=rng)
        if event is None:
            print(f"End of track reached after {t} cycles")
            break

        reply = session.handle(protocol.encode_telemetry(event))
        response = protocol.decode_steer(reply)
        if controller.last_result is None:
            degraded += 1
        else:
            cte.append(controller.last_result.states[0, 4])

        if response.predicted_trajectory_x:
            gx, gy = to_global_frame(response.predicted_trajectory_x, response.predicted_trajectory_y,
                                     x[0], x[1], x[2])
            predictions.append(np.vstack([gx, gy]).T)
        else:
            predictions.append(np.empty((0, 2)))

        u_cmd = np.array([response.steering_angle * scale, response.throttle])
        u_applied = act.apply(u_cmd, DT)
        x = step_pose(x, u_applied, DT, limits.lf)

        states.append(x)
        refs.append(center[nearest_index(center, x)])

        if t % 50 == 0:
            print(f"Step {t}/{steps}: Position ({x[0]:.1f}, {x[1]:.1f}), Speed: {x[3]:.1f}, "
                  f"Steering: {response.steering_angle:.3f}, Throttle: {response.throttle:.3f}")

    return dict(states=states, refs=refs, predictions=predictions, cte=cte, degraded=degraded,
                center=center, width=width)


def main():
    parser = argparse.ArgumentParser(description='Latency-compensated MPC tracking simulation')
    parser.add_argument('--track', type=str, default='sine', choices=['sine', 'circle'],
                        help='Track shape')
    parser.add_argument('--speed', type=float, default=20.0,
                        help='Target speed')
    parser.add_argument('--horizon', type=int, default=HORIZON,
                        help='MPC prediction horizon')
    parser.add_argument('--steps', type=int, default=SIM_STEPS,
                        help='Maximum number of control cycles')
    parser.add_argument('--latency-ms', type=int, default=0,
                        help='Artificial wire delay per reply')
    parser.add_argument('--output', type=str, default='mpc_trajectory.gif',
                        help='Output GIF filename, a PNG summary is written next to it')
    parser.add_argument('--no-gif', action='store_true',
                        help='Only write the PNG summary')
    parser.add_argument('--log-level', type=str, default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])

    args = parser.parse_args()
    logging.basicConfig(level=args.log_level, format='%(asctime)s %(name)s %(levelname)s %(message)s')

    run = run_simulation(args.track, speed=args.speed, horizon=args.horizon, steps=args.steps,
                         latency_ms=args.latency_ms)

    if run['cte']:
        print(f"\nMean |cte|: {np.mean(np.abs(run['cte'])):.3f}, max |cte|: {np.max(np.abs(run['cte'])):.3f}")
    print(f"Degraded cycles: {run['degraded']}")

    png = plot(run['states'], run['refs'], run['center'], run['width'], run['predictions'], run['cte'],
               save_path=args.output.rsplit('.', 1)[0] + '.png')
    print(f"Trajectory plot saved as {png}")

    if not args.no_gif:
        create_trajectory_gif(run['states'], run['refs'], run['center'], run['width'], run['predictions'],
                              save_path=args.output, interval=100, fps=10)


if __name__ == "__main__":
    main()

import math

DT = 0.1
HORIZON = 10  # 1 second at 0.1s dt

# Distance between the front axle and the center of gravity, tuned so that
# a constant steering angle reproduces the simulator's turning radius.
LF = 2.67

# Actuation delay compensated by the state predictor
LATENCY = 0.1

LIMITS = dict(
    steer_max=math.radians(25.0),
    accel_max=1.0,
    steer_rate=None,  # per step, None keeps rate in the cost only
    accel_rate=None
)

# cte, epsi, speed, steering, throttle, steering gap, throttle gap
COST_WEIGHTS = [6000.0, 6000.0, 1.0, 10.0, 10.0, 200.0, 10.0]

# Target speed for the speed term, None penalizes v^2 instead
REFERENCE_SPEED = 40.0

SOLVER = dict(
    max_iterations=50,
    max_solve_time=0.5,
    constraint_tol=1e-4,
    step_tol=1e-3,
    merit_penalty=1e4,
    qp_eps=1e-6
)

FIT = dict(
    order=3,
    max_condition=1e10,
    waypoint_count=6
)

# Reference line sent back for display
REFERENCE_SAMPLE = dict(
    spacing=2.5,
    points=25
)

# Wire delay injected by the session to mimic a real drive-by-wire link
ARTIFICIAL_LATENCY_MS = 100

# Demo harness
SIM_STEPS = 300
LOOKAHEAD_POINTS = 6
WAYPOINT_SPACING = 6.0
NOISE = dict(
    speed=0.0,
    pos=0.0,
    psi=0.0
)

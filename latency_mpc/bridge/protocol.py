"""
Text framing of the simulator link.

Frames look like 42["event",{...}]: "4" marks a socket message and "2" an
event. Telemetry comes in as a "telemetry" event, commands go back as "steer".
A frame without a payload asks for manual driving.
"""
import json
import math

from latency_mpc.config import params
from latency_mpc.control.errors import MalformedTelemetry
from latency_mpc.control.types import ControlResponse, Telemetry

EVENT_PREFIX = "42"
MANUAL_MESSAGE = '42["manual",{}]'

TELEMETRY_FIELDS = ("ptsx", "ptsy", "x", "y", "psi", "speed", "steering_angle", "throttle")


def is_event_frame(message):
    return len(message) > 2 and message.startswith(EVENT_PREFIX)


def has_data(message):
    """
    JSON payload of a frame, from the first '[' to the last '}]', or None
    when the frame carries no data.
    """
    if "null" in message:
        return None
    start = message.find("[")
    end = message.rfind("}]")
    if start != -1 and end != -1:
        return message[start:end + 2]
    return None


def parse_event(payload):
    """Split a payload into (event name, data dict)."""
    try:
        decoded = json.loads(payload)
    except json.JSONDecodeError as error:
        raise MalformedTelemetry(f"Payload is not valid JSON: {error}") from error

    if not isinstance(decoded, list) or not decoded or not isinstance(decoded[0], str):
        raise MalformedTelemetry(f"Expected [event, data], got {payload[:80]!r}")

    data = decoded[1] if len(decoded) > 1 else {}
    if not isinstance(data, dict):
        raise MalformedTelemetry(f"Event data must be an object, got {type(data).__name__}")
    return decoded[0], data


def _number(data, key):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedTelemetry(f"Field '{key}' must be a number, got {value!r}")
    if not math.isfinite(value):
        raise MalformedTelemetry(f"Field '{key}' is not finite")
    return float(value)


def _numbers(data, key):
    values = data.get(key)
    if not isinstance(values, list):
        raise MalformedTelemetry(f"Field '{key}' must be a list, got {values!r}")
    return tuple(_number({key: value}, key) for value in values)


def decode_telemetry(data, waypoint_count=params.FIT["waypoint_count"]) -> Telemetry:
    """
    Build a Telemetry from a telemetry event's data.

    Raises:
        MalformedTelemetry: missing fields, wrong types, or a waypoint count
            other than waypoint_count (None accepts any count)
    """
    missing = [key for key in TELEMETRY_FIELDS if key not in data]
    if missing:
        raise MalformedTelemetry(f"Telemetry is missing fields: {', '.join(missing)}")

    ptsx = _numbers(data, "ptsx")
    ptsy = _numbers(data, "ptsy")
    if len(ptsx) != len(ptsy):
        raise MalformedTelemetry(f"ptsx has {len(ptsx)} entries but ptsy has {len(ptsy)}")
    if waypoint_count is not None and len(ptsx) != waypoint_count:
        raise MalformedTelemetry(f"Expected {waypoint_count} waypoints, got {len(ptsx)}")

    return Telemetry(
        waypoints_x=ptsx,
        waypoints_y=ptsy,
        position_x=_number(data, "x"),
        position_y=_number(data, "y"),
        heading=_number(data, "psi"),
        speed=_number(data, "speed"),
        last_steering_angle=_number(data, "steering_angle"),
        last_throttle=_number(data, "throttle"),
    )


def encode_telemetry(telemetry: Telemetry):
    data = {
        "ptsx": list(telemetry.waypoints_x),
        "ptsy": list(telemetry.waypoints_y),
        "x": telemetry.position_x,
        "y": telemetry.position_y,
        "psi": telemetry.heading,
        "speed": telemetry.speed,
        "steering_angle": telemetry.last_steering_angle,
        "throttle": telemetry.last_throttle,
    }
    return EVENT_PREFIX + json.dumps(["telemetry", data])


def encode_steer(response: ControlResponse):
    data = {
        "steering_angle": response.steering_angle,
        "throttle": response.throttle,
        "mpc_x": list(response.predicted_trajectory_x),
        "mpc_y": list(response.predicted_trajectory_y),
        "next_x": list(response.reference_trajectory_x),
        "next_y": list(response.reference_trajectory_y),
    }
    return EVENT_PREFIX + '["steer",' + json.dumps(data) + "]"


def decode_steer(message) -> ControlResponse:
    """Read a steer (or manual) frame back into a ControlResponse."""
    payload = has_data(message)
    if payload is None:
        raise MalformedTelemetry(f"Frame carries no data: {message[:80]!r}")
    event, data = parse_event(payload)
    if event == "manual":
        return ControlResponse.neutral()
    if event != "steer":
        raise MalformedTelemetry(f"Expected a steer event, got '{event}'")

    return ControlResponse(
        steering_angle=_number(data, "steering_angle"),
        throttle=_number(data, "throttle"),
        predicted_trajectory_x=_numbers(data, "mpc_x"),
        predicted_trajectory_y=_numbers(data, "mpc_y"),
        reference_trajectory_x=_numbers(data, "next_x"),
        reference_trajectory_y=_numbers(data, "next_y"),
    )

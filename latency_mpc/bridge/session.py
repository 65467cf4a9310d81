import logging
import time

from latency_mpc.bridge import protocol
from latency_mpc.config import params
from latency_mpc.control.errors import MalformedTelemetry

logger = logging.getLogger(__name__)


class Session:
    """
    Turns one incoming frame into at most one reply frame.

    A websocket server would call handle() for every text message it receives
    and send back whatever is returned. artificial_latency_ms holds each steer
    reply back to mimic a real actuation link; it is unrelated to the latency
    the predictor compensates for.
    """

    def __init__(self, controller, artificial_latency_ms=params.ARTIFICIAL_LATENCY_MS,
                 waypoint_count=params.FIT["waypoint_count"], sleep=time.sleep):
        if artificial_latency_ms < 0:
            raise ValueError(f"Artificial latency must be non-negative, got {artificial_latency_ms}")
        self.controller = controller
        self.artificial_latency_ms = artificial_latency_ms
        self.waypoint_count = waypoint_count
        self.sleep = sleep

    def handle(self, message):
        if not protocol.is_event_frame(message):
            return None

        payload = protocol.has_data(message)
        if payload is None:
            return protocol.MANUAL_MESSAGE

        try:
            event, data = protocol.parse_event(payload)
            if event != "telemetry":
                logger.debug("Ignoring event '%s'", event)
                return None
            telemetry = protocol.decode_telemetry(data, self.waypoint_count)
        except MalformedTelemetry as error:
            outcome = self.controller.reject(error)
        else:
            outcome = self.controller.step(telemetry)

        reply = protocol.encode_steer(outcome.response)
        if self.artificial_latency_ms:
            self.sleep(self.artificial_latency_ms / 1000.0)
        return reply

class CoopControllerError(Exception):
    """Base class for recoverable controller faults."""


class SensorFault(CoopControllerError):
    """A sensor produced an invalid or out-of-range reading."""

    def __init__(self, field: str, raw_value=None):
        super().__init__(f"Invalid reading for {field}: {raw_value!r}")
        self.field = field
        self.raw_value = raw_value


class ActuatorCommandFailure(CoopControllerError):
    """A driver could not set its output."""

    def __init__(self, actuator: str, on: bool, reason: str = ""):
        state = "ON" if on else "OFF"
        message = f"Failed to switch {actuator} {state}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.actuator = actuator
        self.on = on


class RemoteUnavailable(CoopControllerError):
    """The remote control plane could not be reached for a pull or push."""

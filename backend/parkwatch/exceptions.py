"""
Exception hierarchy for the availability monitor.

Only NotFoundError and PersistenceError are expected to escape
SearchExecutor.execute_search; probe and notification failures are
absorbed and logged by the engine.
"""


class ParkwatchError(Exception):
    """Base class for all application errors."""


class ConfigurationError(ParkwatchError):
    """Missing or inconsistent configuration, raised at process startup."""


class NotFoundError(ParkwatchError):
    """A referenced search, execution or result does not exist."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class PersistenceError(ParkwatchError):
    """A storage operation failed."""


class BookingApiError(ParkwatchError):
    """The Holiday Park API could not be reached or returned an error."""


class ProbeError(ParkwatchError):
    """A single date-range probe failed after all retry attempts."""

    def __init__(self, check_in: str, check_out: str, cause: Exception):
        self.check_in = check_in
        self.check_out = check_out
        self.cause = cause
        super().__init__(f"Probe {check_in} -> {check_out} failed: {cause}")


class NotificationError(ParkwatchError):
    """A notification could not be delivered."""

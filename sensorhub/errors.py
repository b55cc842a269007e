"""
Error types shared by the sensor management service.

Collisions and missing hierarchies are expected outcomes and are returned as
values by the hierarchy store (see ``WriteResult``); the exceptions here cover
malformed input and infrastructure failures.
"""


class SensorHubError(Exception):
    """Base class for all sensorhub errors."""
    pass


class MalformedInputError(SensorHubError, ValueError):
    """Raised when a payload does not describe a valid sensor hierarchy."""
    pass


class IdentifierMismatchError(SensorHubError, ValueError):
    """Raised when a hierarchy's root identifier differs from the addressed resource."""

    def __init__(self, expected: str, actual: str):
        super().__init__(f"Hierarchy identifier {actual!r} does not match {expected!r}")
        self.expected = expected
        self.actual = actual


class ConnectivityError(SensorHubError):
    """Raised when the store cannot be reached after all retries."""
    pass


class StoreError(SensorHubError):
    """Raised when a store operation fails after the transaction was opened."""
    pass

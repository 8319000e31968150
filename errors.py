"""Error types for the sensor-ingest service."""
from typing import List, Optional


class SensorIngestError(Exception):
    """Base error for sensor-ingest."""


class AdmissionRejected(SensorIngestError):
    """A client exceeded its request quota for the current window."""

    def __init__(self, decision, message: str):
        super().__init__(message)
        self.decision = decision
        self.message = message


class SchemaValidationError(SensorIngestError):
    """Inbound payload failed declarative validation."""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class StorageUnavailableError(SensorIngestError):
    """The document store is unreachable or the connection is closed."""


class StorageWriteError(SensorIngestError):
    """A bulk write failed for a reason other than duplicate keys."""


class StartupConnectionError(SensorIngestError):
    """The store could not be reached within the retry budget."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error

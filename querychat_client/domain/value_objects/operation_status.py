from enum import Enum


class OperationStatus(str, Enum):
    """Lifecycle status of one independent operation track."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

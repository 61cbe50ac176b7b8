"""
Error taxonomy for the analysis engine.
Every per-file failure is isolated and reported as an ErrorRecord.
"""


class MonitorError(Exception):
    pass


class ConfigError(MonitorError):
    pass


class RecoverablePayloadError(MonitorError):
    """Payload bytes that cannot be analyzed (empty, binary, oversized)."""


class StoreReadError(MonitorError):
    """A persisted document is unreadable or corrupt."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read {path}: {reason}")


class DeliveryError(MonitorError):
    """Notification transport failed. Never leaves the aggregator."""

    def __init__(self, message: str, status: int = 0):
        self.status = status
        super().__init__(message)

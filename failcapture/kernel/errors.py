"""Kernel error types."""


class FailureCaptureError(Exception):
    """Base error for failcapture."""


class ConfigError(FailureCaptureError):
    """Raised when failure-artifact options are invalid."""


class ScratchWriteError(FailureCaptureError, OSError):
    """Raised when a submitted frame cannot be stored in scratch space."""


class BufferClosedError(FailureCaptureError):
    """Raised when a frame is added after the buffer released its scratch space."""

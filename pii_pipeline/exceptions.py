"""
Exceptions raised by the detection pipeline.

Only configuration problems escape to callers. Remote recognizer errors are
raised by transports and always absorbed by the recognizer wrapper.
"""


class ConfigurationError(ValueError):
    """Invalid pipeline configuration (bad normalization form, negative timeout, ...)."""


class RemoteRecognizerError(RuntimeError):
    """A remote recognizer call failed (non-2xx response, unreadable payload)."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code

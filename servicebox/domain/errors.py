"""Exception taxonomy for service startup and serving."""

from typing import Optional


class ServiceError(Exception):
    """Base class for errors raised by the service core."""


class StartupConfigError(ServiceError):
    """Raised when configuration prevents the service from starting."""


class ConfigLoadError(StartupConfigError):
    """Raised when a configuration file cannot be read or decoded."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"failed to load configuration from {path}: {reason}")
        self.path = path
        self.reason = reason


class UnsupportedFormatError(StartupConfigError):
    """Raised when a configuration file extension is not recognized."""

    def __init__(self, path: str) -> None:
        super().__init__(f"unsupported file type: {path}")
        self.path = path


class UnknownLogLevelError(StartupConfigError):
    """Raised when a log level token cannot be mapped to a logging level."""

    def __init__(self, level: str) -> None:
        super().__init__(f"unknown log level: {level}")
        self.level = level


class ResourceLimitError(ServiceError):
    """Raised when CPU or memory limits cannot be applied."""

    def __init__(self, resource: str, reason: str, limit: Optional[float] = None):
        super().__init__(f"failed to apply {resource} limit: {reason}")
        self.resource = resource
        self.reason = reason
        self.limit = limit


class ServerNotInitializedError(ServiceError):
    """Raised when serving is requested before the web server was enabled."""

    def __init__(self) -> None:
        super().__init__("web server has not been initialized")


class ServerClosed(Exception):
    """Raised by the listener once a deliberate shutdown has completed.

    Callers of ``listen_and_serve`` should treat it as a successful exit.
    """

    def __init__(self) -> None:
        super().__init__("http: Server closed")

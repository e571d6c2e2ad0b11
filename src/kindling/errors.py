"""Exception hierarchy for kindling.

Every failure the CLI knows how to report derives from
:class:`KindlingError`.  Command mode prints the message and exits 1;
the daemon loop logs it and keeps going.
"""

from __future__ import annotations


class KindlingError(Exception):
    """Base class for all kindling errors."""


class ConfigError(KindlingError):
    """The configuration file is unreadable or invalid."""


class ConfigMissingError(ConfigError):
    """No configuration file exists yet."""

    def __init__(self, path: object) -> None:
        super().__init__(
            f"No configuration found at {path}. Run 'kindling setup' to create one."
        )
        self.path = path


class ApiError(KindlingError):
    """The chat service returned an unexpected response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ApiError):
    """The API token was rejected."""


class NetworkError(ApiError):
    """The chat service could not be reached."""


class RateLimitError(ApiError):
    """The chat service asked us to slow down."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class RoomNotFoundError(KindlingError):
    """The requested subdomain/room pair is not configured or does not exist."""


class PasteError(KindlingError):
    """Paste content could not be read from the requested source."""


class DaemonError(KindlingError):
    """The daemon could not be started or stopped."""


class DaemonAlreadyRunningError(DaemonError):
    """A live daemon already owns the pid file."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"Daemon already running (pid {pid}).")
        self.pid = pid


class DaemonNotRunningError(DaemonError):
    """No live daemon owns the pid file."""

    def __init__(self) -> None:
        super().__init__("Daemon is not running.")

"""Error taxonomy for the command subsystem.

Start and stdin failures are raised synchronously to the caller. Failures
during execution (timeout, non-zero exit) are never raised; they reach
observers only as terminal events.
"""

from __future__ import annotations


class CommandError(Exception):
    """Base class for command subsystem failures."""

    def __init__(self, message: str, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class AlreadyRunning(CommandError):
    """Another command currently holds the active-session slot."""


class InvalidCommand(CommandError):
    """The requested command kind is not one the service runs."""


class SessionNotFound(CommandError):
    """No session with the given identifier exists (or it was reaped)."""


class SessionNotRunning(CommandError):
    """The session has already finished."""


class LaunchFailure(CommandError):
    """The executable could not be started."""


class StdinWriteError(CommandError):
    """Writing to the command's stdin pipe failed."""


class ConnectionLost(CommandError):
    """An observer's delivery channel is gone."""

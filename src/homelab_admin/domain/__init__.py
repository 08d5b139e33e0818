"""Domain models for homelab-admin.

This package contains the command kinds, session statuses, stream events
and session snapshots shared by the command subsystem and its front ends.
All models use Pydantic v2 for validation and serialization.
"""

from homelab_admin.domain.models import (
    CommandEvent,
    CommandKind,
    DoneEvent,
    ErrorEvent,
    OutputEvent,
    PasswordPromptEvent,
    SessionSnapshot,
    SessionStatus,
    is_terminal_event,
)

__all__ = [
    "CommandEvent",
    "CommandKind",
    "DoneEvent",
    "ErrorEvent",
    "OutputEvent",
    "PasswordPromptEvent",
    "SessionSnapshot",
    "SessionStatus",
    "is_terminal_event",
]

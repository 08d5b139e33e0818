"""Command execution and live-output streaming.

Starts the fixed set of administrative commands, buffers and classifies
their output, fans it out to subscribers, and enforces that only one
command runs at a time.
"""

from homelab_admin.commands.channel import EventChannel
from homelab_admin.commands.errors import (
    AlreadyRunning,
    CommandError,
    ConnectionLost,
    InvalidCommand,
    LaunchFailure,
    SessionNotFound,
    SessionNotRunning,
    StdinWriteError,
)
from homelab_admin.commands.launcher import CommandSpec, ProcessHandle, ProcessLauncher
from homelab_admin.commands.registry import SessionRegistry

__all__ = [
    "AlreadyRunning",
    "CommandError",
    "CommandSpec",
    "ConnectionLost",
    "EventChannel",
    "InvalidCommand",
    "LaunchFailure",
    "ProcessHandle",
    "ProcessLauncher",
    "SessionNotFound",
    "SessionNotRunning",
    "SessionRegistry",
    "StdinWriteError",
]

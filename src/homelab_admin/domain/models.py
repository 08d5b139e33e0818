"""Core domain models for the homelab-admin service.

These models represent the data flowing out of the command subsystem:
the closed set of command kinds, session status, the typed events pushed
to stream observers, and read-only session snapshots for polling callers.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class CommandKind(str, enum.Enum):
    """The closed set of commands the service is allowed to run."""

    FETCH_CHANGES = "fetch-changes"  # git pull of the configuration repo
    APPLY_CONFIGURATION = "apply-configuration"  # rebuild + switch the host


class SessionStatus(str, enum.Enum):
    """Lifecycle status of a command session."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Stream events (discriminated union)
# ---------------------------------------------------------------------------


class OutputEvent(BaseModel):
    """A chunk of plain command output."""

    model_config = ConfigDict(frozen=True)

    type: Literal["output"] = "output"
    text: str = Field(description="Decoded output text, verbatim")


class PasswordPromptEvent(BaseModel):
    """The command printed something that looks like a credential prompt."""

    model_config = ConfigDict(frozen=True)

    type: Literal["password_prompt"] = "password_prompt"


class DoneEvent(BaseModel):
    """The command exited on its own."""

    model_config = ConfigDict(frozen=True)

    type: Literal["done"] = "done"
    exit_code: int = Field(description="Process exit code")
    duration_ms: int = Field(ge=0, description="Wall-clock run time in milliseconds")


class ErrorEvent(BaseModel):
    """The command was ended by the service (e.g. it ran past its budget)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    message: str = Field(description="Human-readable failure description")


CommandEvent = Annotated[
    Union[OutputEvent, PasswordPromptEvent, DoneEvent, ErrorEvent],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"done", "error"})


def is_terminal_event(event: BaseModel) -> bool:
    """Whether no further events follow this one on a session stream."""
    return getattr(event, "type", None) in TERMINAL_EVENT_TYPES


# ---------------------------------------------------------------------------
# Session snapshot
# ---------------------------------------------------------------------------


class SessionSnapshot(BaseModel):
    """Point-in-time, read-only view of a command session."""

    model_config = ConfigDict(frozen=True)

    session_id: str = Field(description="Opaque session identifier")
    kind: CommandKind
    status: SessionStatus
    started_at: datetime = Field(description="When the session was created (UTC)")
    exit_code: int | None = Field(default=None, description="Set once the process exited")
    duration_ms: int | None = Field(default=None, description="Fixed at the terminal transition")
    error_message: str | None = Field(default=None, description="Set when the service ended the command")
    output: list[str] = Field(default_factory=list, description="Buffered output chunks in order")
    subscriber_count: int = Field(default=0, ge=0)

"""Live state of one command execution and its event fan-out.

A session buffers every decoded chunk in order and pushes the classified
event to its current subscribers. Late subscribers first receive a replay
of the buffer. Delivery is self-healing: an observer that raises while
receiving an event is dropped and the remaining observers still get it.

All mutation happens in synchronous code on the event loop thread, so an
append and its delivery are never interleaved with another append.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from homelab_admin.commands.errors import SessionNotRunning, StdinWriteError
from homelab_admin.commands.launcher import ProcessHandle
from homelab_admin.commands.reader import classify_chunk
from homelab_admin.domain.models import (
    CommandEvent,
    CommandKind,
    DoneEvent,
    ErrorEvent,
    SessionSnapshot,
    SessionStatus,
)

logger = logging.getLogger(__name__)

Observer = Callable[[CommandEvent], None]
Unsubscribe = Callable[[], None]

# Reported to late subscribers if a terminal session somehow has no exit code
MISSING_EXIT_CODE = 1


def _noop() -> None:
    return None


class CommandSession:
    """One spawned command from start to terminal status."""

    def __init__(
        self,
        kind: CommandKind,
        session_id: str | None = None,
        encoding: str = "utf-8",
    ) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self.kind = kind
        self.started_at = datetime.now(timezone.utc)
        self.exit_code: int | None = None
        self.duration_ms: int | None = None
        self.error_message: str | None = None
        self._encoding = encoding
        self._started = time.monotonic()
        self._status = SessionStatus.RUNNING
        self._output: list[str] = []
        self._subscribers: dict[object, Observer] = {}
        self._process: ProcessHandle | None = None

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status is SessionStatus.RUNNING

    @property
    def output(self) -> tuple[str, ...]:
        return tuple(self._output)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def attach_process(self, process: ProcessHandle) -> None:
        self._process = process

    # -------------------------------------------------------------------
    # Output buffer
    # -------------------------------------------------------------------

    def append_output(self, text: str) -> None:
        """Buffer a decoded chunk and push its classified event live.

        Output arriving after the terminal transition is dropped; the
        buffer of a finished session never changes.
        """
        if not self.is_running:
            logger.debug("Dropping %d chars for finished session %s", len(text), self.session_id)
            return
        self._output.append(text)
        self.emit(classify_chunk(text))

    # -------------------------------------------------------------------
    # Event bus
    # -------------------------------------------------------------------

    def subscribe(self, observer: Observer) -> Unsubscribe:
        """Replay buffered history to the observer, then attach it.

        For a finished session the terminal event follows the replay and
        nothing is registered. An observer that raises during the replay is
        treated like one failing in ``emit``: it is not registered.
        """
        try:
            for text in list(self._output):
                observer(classify_chunk(text))
            if not self.is_running:
                observer(self.terminal_event())
                return _noop
        except Exception as e:
            logger.debug(
                "Dropping subscriber of session %s during replay: %s", self.session_id, e
            )
            return _noop

        token = object()
        self._subscribers[token] = observer

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def emit(self, event: CommandEvent) -> None:
        """Deliver an event to every subscriber, dropping any that fail."""
        for token, observer in list(self._subscribers.items()):
            try:
                observer(event)
            except Exception as e:
                logger.debug(
                    "Removing subscriber of session %s after delivery failure: %s",
                    self.session_id, e,
                )
                self._subscribers.pop(token, None)

    def clear_subscribers(self) -> None:
        self._subscribers.clear()

    # -------------------------------------------------------------------
    # Terminal transition
    # -------------------------------------------------------------------

    def finish(self, exit_code: int) -> bool:
        """Record a natural exit. Returns False if already terminal."""
        if not self.is_running:
            return False
        self.exit_code = exit_code
        self.duration_ms = self._elapsed_ms()
        self._status = SessionStatus.SUCCEEDED if exit_code == 0 else SessionStatus.FAILED
        return True

    def fail(self, message: str) -> bool:
        """Record a service-initiated failure. Returns False if already terminal."""
        if not self.is_running:
            return False
        self.error_message = message
        self.duration_ms = self._elapsed_ms()
        self._status = SessionStatus.FAILED
        return True

    def terminal_event(self) -> DoneEvent | ErrorEvent:
        if self.error_message is not None:
            return ErrorEvent(message=self.error_message)
        return DoneEvent(
            exit_code=self.exit_code if self.exit_code is not None else MISSING_EXIT_CODE,
            duration_ms=self.duration_ms or 0,
        )

    def _elapsed_ms(self) -> int:
        return max(0, int((time.monotonic() - self._started) * 1000))

    # -------------------------------------------------------------------
    # Process access
    # -------------------------------------------------------------------

    def write_stdin(self, text: str) -> None:
        """Write one line to the command's stdin; does not wait for it."""
        if not self.is_running:
            raise SessionNotRunning("Command is not running", session_id=self.session_id)
        if self._process is None:
            raise StdinWriteError("Command has no stdin pipe yet", session_id=self.session_id)
        try:
            self._process.write_stdin((text + "\n").encode(self._encoding))
        except StdinWriteError as e:
            e.session_id = self.session_id
            raise

    def kill(self) -> None:
        if self._process is not None:
            self._process.kill()

    async def wait(self) -> int:
        """Wait for the owned process to exit and return its exit code."""
        if self._process is None:
            raise RuntimeError(f"Session {self.session_id} has no process")
        return await self._process.wait()

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            kind=self.kind,
            status=self._status,
            started_at=self.started_at,
            exit_code=self.exit_code,
            duration_ms=self.duration_ms,
            error_message=self.error_message,
            output=list(self._output),
            subscriber_count=len(self._subscribers),
        )

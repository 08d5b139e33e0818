"""Process-wide table of command sessions with single-command admission.

The registry is the one service object that owns every session. It is
built once per process (by the HTTP lifespan or the CLI) and handed to
every entry point. Only one session may be running at a time: the active
slot is checked and claimed before the first suspension point of
start_command, so of several concurrent start requests exactly one is
admitted and the rest fail with AlreadyRunning. Nothing is queued.

Each started session gets three tasks: a stdout reader, a stderr reader
and a supervisor. The supervisor races the process exit against the
command's timeout budget. Once the process has exited on its own the
readers get a short, separate drain window, and then the supervisor
performs exactly one terminal transition. Finished sessions are dropped
after the grace period.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from homelab_admin.commands.errors import (
    AlreadyRunning,
    SessionNotFound,
    SessionNotRunning,
)
from homelab_admin.commands.launcher import CommandSpec, ProcessLauncher
from homelab_admin.commands.reader import StreamReader
from homelab_admin.commands.session import CommandSession, Observer, Unsubscribe
from homelab_admin.config.settings import CommandsConfig
from homelab_admin.domain.models import CommandKind, SessionSnapshot

logger = logging.getLogger(__name__)

# How long to wait for a killed process to be reaped
KILL_WAIT_TIMEOUT = 5.0


class SessionRegistry:
    """Owns all command sessions and the single active-session slot.

    Example::

        registry = SessionRegistry(settings=settings.commands)
        session_id = await registry.start_command("fetch-changes", "/etc/nixos")
        unsubscribe = registry.subscribe(session_id, print)
        ...
        await registry.shutdown()
    """

    def __init__(
        self,
        launcher: ProcessLauncher | None = None,
        settings: CommandsConfig | None = None,
    ) -> None:
        self._settings = settings or CommandsConfig()
        self._launcher = launcher or ProcessLauncher(self._settings)
        self._sessions: dict[str, CommandSession] = {}
        self._active_session_id: str | None = None
        self._supervisors: dict[str, asyncio.Task[None]] = {}
        self._reap_handles: dict[str, asyncio.TimerHandle] = {}

    @property
    def active_session_id(self) -> str | None:
        return self._active_session_id

    def __len__(self) -> int:
        return len(self._sessions)

    # -------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------

    async def start_command(
        self,
        kind: CommandKind | str,
        working_directory: Path | str,
    ) -> str:
        """Start a command and return its session id without waiting for it.

        Raises:
            AlreadyRunning: If another command is running.
            InvalidCommand: If the kind is unknown.
            LaunchFailure: If the executable could not be started.
        """
        if self.is_command_running():
            raise AlreadyRunning(
                "A command is already running", session_id=self._active_session_id
            )
        spec = self._launcher.resolve(kind, working_directory)

        session = CommandSession(spec.kind, encoding=self._settings.encoding)
        session_id = session.session_id
        self._sessions[session_id] = session
        self._active_session_id = session_id

        try:
            process = await self._launcher.launch(spec)
        except BaseException:
            self._sessions.pop(session_id, None)
            if self._active_session_id == session_id:
                self._active_session_id = None
            raise

        session.attach_process(process)
        readers = [
            asyncio.create_task(
                self._make_reader(session, stream, name).run(),
                name=f"{name}-reader-{session_id}",
            )
            for name, stream in (("stdout", process.stdout), ("stderr", process.stderr))
            if stream is not None
        ]
        supervisor = asyncio.create_task(
            self._supervise(session, spec, readers),
            name=f"supervisor-{session_id}",
        )
        self._supervisors[session_id] = supervisor
        supervisor.add_done_callback(lambda _: self._supervisors.pop(session_id, None))

        logger.info(
            "Started %s session %s (pid=%d, timeout=%gs)",
            spec.kind.value, session_id, process.pid, spec.timeout,
        )
        return session_id

    def get_session(self, session_id: str) -> SessionSnapshot:
        """Return a snapshot of the session.

        Raises:
            SessionNotFound: If the id is unknown or already reaped.
        """
        return self._require(session_id).snapshot()

    def find_session(self, session_id: str) -> SessionSnapshot | None:
        session = self._sessions.get(session_id)
        return session.snapshot() if session is not None else None

    def is_command_running(self) -> bool:
        if self._active_session_id is None:
            return False
        session = self._sessions.get(self._active_session_id)
        return session is not None and session.is_running

    def subscribe(self, session_id: str, observer: Observer) -> Unsubscribe:
        """Attach an observer to a session's event stream (with replay).

        Raises:
            SessionNotFound: If the id is unknown or already reaped.
        """
        return self._require(session_id).subscribe(observer)

    def send_stdin(self, session_id: str, text: str) -> None:
        """Write one line of input to a running command.

        Fire-and-forget: returns once the bytes are queued on the pipe.

        Raises:
            SessionNotFound: If the id is unknown or already reaped.
            SessionNotRunning: If the session has finished.
            StdinWriteError: If the pipe is closed or broken.
        """
        session = self._require(session_id)
        if not session.is_running:
            raise SessionNotRunning("Command is not running", session_id=session_id)
        session.write_stdin(text)
        logger.info("Sent %d chars to stdin of session %s", len(text), session_id)

    async def shutdown(self) -> None:
        """Stop supervising, kill any running command and drop all timers."""
        supervisors = list(self._supervisors.values())
        for task in supervisors:
            task.cancel()
        if supervisors:
            await asyncio.gather(*supervisors, return_exceptions=True)

        for session in list(self._sessions.values()):
            if not session.is_running:
                continue
            session.kill()
            if session.fail("Command aborted: service shutting down"):
                self._conclude(session)
            await self._reap_process(session)

        for handle in self._reap_handles.values():
            handle.cancel()
        self._reap_handles.clear()
        logger.info("Session registry shut down (%d sessions)", len(self._sessions))

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------

    def _make_reader(
        self,
        session: CommandSession,
        stream: asyncio.StreamReader,
        name: str,
    ) -> StreamReader:
        return StreamReader(
            stream,
            session.append_output,
            name=name,
            encoding=self._settings.encoding,
            chunk_size=self._settings.read_chunk_size,
        )

    async def _supervise(
        self,
        session: CommandSession,
        spec: CommandSpec,
        readers: list[asyncio.Task[None]],
    ) -> None:
        try:
            try:
                exit_code = await asyncio.wait_for(session.wait(), timeout=spec.timeout)
            except asyncio.TimeoutError:
                await self._expire(session, spec, readers)
                return
            # The process exited first, so the deadline no longer applies
            await self._drain(session, readers)
        except asyncio.CancelledError:
            _cancel_all(readers)
            raise
        except Exception as e:
            logger.exception("Supervisor for session %s failed", session.session_id)
            _cancel_all(readers)
            session.kill()
            if session.fail(f"Command failed: {e}"):
                self._conclude(session)
            return

        if session.finish(exit_code):
            logger.info(
                "Session %s exited with code %d after %dms",
                session.session_id, exit_code, session.duration_ms,
            )
            self._conclude(session)

    async def _drain(
        self,
        session: CommandSession,
        readers: list[asyncio.Task[None]],
    ) -> None:
        """Let the readers buffer the remaining output before the transition.

        A descendant that inherited a pipe can keep it open after the
        command itself exited; such readers are cancelled after the drain
        timeout and the command's own exit code still stands.
        """
        timeout = self._settings.drain_timeout
        try:
            await asyncio.wait_for(asyncio.gather(*readers), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Output of session %s still open %gs after exit, closing readers",
                session.session_id, timeout,
            )
            _cancel_all(readers)

    async def _expire(
        self,
        session: CommandSession,
        spec: CommandSpec,
        readers: list[asyncio.Task[None]],
    ) -> None:
        _cancel_all(readers)
        session.kill()
        if session.fail(f"Command timed out after {spec.timeout:g}s"):
            logger.warning(
                "Session %s (%s) exceeded its %gs budget and was killed",
                session.session_id, spec.kind.value, spec.timeout,
            )
            self._conclude(session)
        await self._reap_process(session)

    def _conclude(self, session: CommandSession) -> None:
        """Release the slot, announce the end and schedule removal.

        Called in the same synchronous step as the terminal transition.
        """
        if self._active_session_id == session.session_id:
            self._active_session_id = None
        session.emit(session.terminal_event())
        session.clear_subscribers()
        self._schedule_reap(session.session_id)

    async def _reap_process(self, session: CommandSession) -> None:
        try:
            await asyncio.wait_for(session.wait(), timeout=KILL_WAIT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Process of session %s did not exit after kill", session.session_id)

    # -------------------------------------------------------------------
    # Reaper
    # -------------------------------------------------------------------

    def _schedule_reap(self, session_id: str) -> None:
        loop = asyncio.get_running_loop()
        self._reap_handles[session_id] = loop.call_later(
            self._settings.grace_period, self._reap, session_id
        )

    def _reap(self, session_id: str) -> None:
        self._reap_handles.pop(session_id, None)
        if self._sessions.pop(session_id, None) is not None:
            logger.debug("Reaped session %s", session_id)

    def _require(self, session_id: str) -> CommandSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session not found: {session_id}", session_id=session_id)
        return session


def _cancel_all(tasks: list[asyncio.Task[None]]) -> None:
    for task in tasks:
        if not task.done():
            task.cancel()

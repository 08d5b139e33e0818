"""Process launcher for the fixed set of administrative commands.

Maps a command kind to a concrete argument vector, working directory and
timeout budget, and starts it with stdin/stdout/stderr pipes in its own
process session so the whole process group can be killed on timeout.
The argument vectors come from configuration only, never from request
data.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path

from homelab_admin.commands.errors import InvalidCommand, LaunchFailure, StdinWriteError
from homelab_admin.config.settings import CommandsConfig
from homelab_admin.domain.models import CommandKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandSpec:
    """Fully resolved command ready to be started.

    Attributes:
        kind: The command kind this was resolved from
        argv: Executable followed by its arguments
        cwd: Working directory, or None to inherit the service's
        timeout: Budget in seconds before the command is killed
    """

    kind: CommandKind
    argv: tuple[str, ...]
    cwd: Path | None
    timeout: float


class ProcessHandle:
    """A started subprocess with piped standard streams.

    Owned by exactly one session; nothing outside the session touches it.
    """

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self._process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self._process.stderr

    def write_stdin(self, data: bytes) -> None:
        """Queue bytes on the stdin pipe without waiting for them to drain."""
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise StdinWriteError("stdin pipe is closed")
        try:
            stdin.write(data)
        except (OSError, RuntimeError) as e:
            raise StdinWriteError(f"Failed to write to stdin: {e}") from e

    def kill(self) -> None:
        """Send SIGKILL to the process group (or just the process)."""
        if self._process.returncode is not None:
            return
        try:
            pgid = os.getpgid(self._process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug("Sent SIGKILL to process group pgid=%d", pgid)
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug("killpg failed, falling back to kill: %s", e)
            try:
                self._process.kill()
            except ProcessLookupError:
                pass

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await self._process.wait()


class ProcessLauncher:
    """Resolves command kinds and starts them as subprocesses."""

    def __init__(self, settings: CommandsConfig | None = None) -> None:
        self._settings = settings or CommandsConfig()

    def resolve(self, kind: CommandKind | str, working_directory: Path | str) -> CommandSpec:
        """Map a command kind to its fixed argument vector and budget.

        Raises:
            InvalidCommand: If the kind is not a known command.
        """
        try:
            kind = CommandKind(kind)
        except ValueError as e:
            raise InvalidCommand(f"Unknown command: {kind}") from e

        repo = Path(working_directory)
        s = self._settings
        if kind is CommandKind.FETCH_CHANGES:
            return CommandSpec(
                kind=kind,
                argv=(s.git_executable, "-C", str(repo), "pull"),
                cwd=None,
                timeout=s.fetch_timeout,
            )
        if kind is CommandKind.APPLY_CONFIGURATION:
            # -S: sudo reads the password from stdin and prompts on stderr
            return CommandSpec(
                kind=kind,
                argv=(s.sudo_executable, "-S", s.rebuild_executable, "switch"),
                cwd=repo,
                timeout=s.apply_timeout,
            )
        raise InvalidCommand(f"Unknown command: {kind}")

    async def launch(self, spec: CommandSpec) -> ProcessHandle:
        """Start the command with all three standard streams piped.

        Raises:
            LaunchFailure: If the executable could not be started.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                start_new_session=True,
            )
        except OSError as e:
            logger.warning("Failed to start %s: %s", spec.argv[0], e)
            raise LaunchFailure(f"Failed to start {spec.argv[0]}: {e}") from e

        logger.debug(
            "Started subprocess pid=%d argv=%s cwd=%s",
            process.pid, spec.argv[0], spec.cwd,
        )
        return ProcessHandle(process)

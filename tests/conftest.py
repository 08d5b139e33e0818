"""Shared test fixtures for the homelab-admin test suite.

Provides a scriptable fake subprocess and launcher so the session registry
can be exercised without spawning real commands, plus small async helpers.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import pytest

from homelab_admin.commands.errors import StdinWriteError
from homelab_admin.commands.launcher import CommandSpec, ProcessLauncher
from homelab_admin.commands.registry import SessionRegistry
from homelab_admin.config.settings import CommandsConfig


# ---------------------------------------------------------------------------
# Fake process / launcher
# ---------------------------------------------------------------------------


class FakeProcess:
    """Stands in for ProcessHandle; output and exit are driven by the test.

    Must be created inside a running event loop.
    """

    def __init__(self, pid: int = 4242) -> None:
        self.pid = pid
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdin_writes: list[bytes] = []
        self.stdin_closed = False
        self.killed = False
        self.returncode: int | None = None
        self._exited = asyncio.Event()

    def emit_stdout(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def emit_stderr(self, data: bytes) -> None:
        self.stderr.feed_data(data)

    def exit(self, code: int = 0, keep_stdout_open: bool = False) -> None:
        """Exit with the given code and close the pipes.

        With ``keep_stdout_open`` stdout stays open, as when a descendant
        that inherited the pipe outlives the command.
        """
        if self.returncode is not None:
            return
        self.returncode = code
        if not keep_stdout_open:
            self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    def close_stdout(self) -> None:
        self.stdout.feed_eof()

    def write_stdin(self, data: bytes) -> None:
        if self.stdin_closed:
            raise StdinWriteError("stdin pipe is closed")
        self.stdin_writes.append(data)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode


class FakeLauncher(ProcessLauncher):
    """Resolves commands like the real launcher but hands out FakeProcesses.

    With ``auto_output``/``auto_exit`` set, each process writes that output
    to stdout and exits on its own right after launch.
    """

    def __init__(
        self,
        settings: CommandsConfig | None = None,
        fail_with: Exception | None = None,
        auto_output: bytes | None = None,
        auto_exit: int | None = None,
    ) -> None:
        super().__init__(settings)
        self.fail_with = fail_with
        self.auto_output = auto_output
        self.auto_exit = auto_exit
        self.launched: list[CommandSpec] = []
        self.processes: list[FakeProcess] = []

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]

    async def launch(self, spec: CommandSpec) -> FakeProcess:  # type: ignore[override]
        # A real spawn suspends here too
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        self.launched.append(spec)
        process = FakeProcess(pid=1000 + len(self.processes))
        self.processes.append(process)
        if self.auto_exit is not None:
            loop = asyncio.get_running_loop()
            if self.auto_output:
                loop.call_soon(process.emit_stdout, self.auto_output)
            loop.call_soon(process.exit, self.auto_exit)
        return process


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def commands_config() -> CommandsConfig:
    """Command settings with short budgets suitable for tests."""
    return CommandsConfig(fetch_timeout=5.0, apply_timeout=5.0, grace_period=60.0)


@pytest.fixture
def fake_launcher(commands_config: CommandsConfig) -> FakeLauncher:
    return FakeLauncher(commands_config)


@pytest.fixture
def registry(fake_launcher: FakeLauncher, commands_config: CommandsConfig) -> SessionRegistry:
    """A SessionRegistry backed by the fake launcher."""
    return SessionRegistry(launcher=fake_launcher, settings=commands_config)


@pytest.fixture
def make_registry() -> Callable[..., tuple[SessionRegistry, FakeLauncher]]:
    """Factory for registries with custom command settings."""

    def factory(
        fail_with: Exception | None = None,
        auto_output: bytes | None = None,
        auto_exit: int | None = None,
        **overrides: object,
    ) -> tuple[SessionRegistry, FakeLauncher]:
        values = {"fetch_timeout": 5.0, "apply_timeout": 5.0, "grace_period": 60.0}
        values.update(overrides)
        config = CommandsConfig(**values)
        launcher = FakeLauncher(
            config, fail_with=fail_with, auto_output=auto_output, auto_exit=auto_exit
        )
        return SessionRegistry(launcher=launcher, settings=config), launcher

    return factory


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate on the event loop until it holds or time runs out."""

    async def waiter(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met within %.1fs" % timeout)
            await asyncio.sleep(0.005)

    return waiter

"""Process supervisor — spawns agent subprocesses and owns their lifetime."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Mapping, Sequence

from tether.constants import PROCESS_TIMEOUT

logger = logging.getLogger(__name__)


class ProcessHandle:
    """A running agent process.

    ``stdout`` and ``stderr`` are the raw byte streams; ``wait()`` yields
    the exit code and releases the supervisor's bookkeeping.
    """

    def __init__(
        self,
        key: str | None,
        proc: asyncio.subprocess.Process,
        supervisor: ProcessSupervisor,
    ) -> None:
        self.key = key
        self._proc = proc
        self._supervisor = supervisor
        self._timer: asyncio.TimerHandle | None = None
        self._killed = False
        self.timed_out = False

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self._proc.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self._proc.stderr

    def kill(self, sig: int = signal.SIGTERM) -> bool:
        """Send *sig* once; later calls are no-ops.  Returns True if sent."""
        if self._killed or self._proc.returncode is not None:
            return False
        self._killed = True
        with contextlib.suppress(ProcessLookupError):
            self._proc.send_signal(sig)
        return True

    async def wait(self) -> int:
        """Wait for exit, disarm the timeout and unregister the process."""
        try:
            return await self._proc.wait()
        finally:
            self._supervisor._release(self)

    def _arm_timeout(self, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(timeout, self._on_timeout, timeout)

    def _disarm_timeout(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self, timeout: float) -> None:
        self._timer = None
        if self.key is not None and not self._supervisor.owns(self):
            return
        logger.warning(
            "%s: process %s exceeded %.0fs, sending SIGTERM",
            self.key or "agent",
            self.pid,
            timeout,
        )
        self.timed_out = True
        self.kill(signal.SIGTERM)


class ProcessSupervisor:
    """Spawns agent processes and tracks one active process per key.

    The registry is owned by the supervisor instance; callers share one
    supervisor per set of conversations they manage.
    """

    def __init__(self, timeout: float = PROCESS_TIMEOUT) -> None:
        self._timeout = timeout
        self._active: dict[str, ProcessHandle] = {}

    async def spawn(
        self,
        key: str | None,
        command: str,
        args: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> ProcessHandle:
        """Start *command* with *args*.

        Raises:
            OSError: If the process cannot be spawned.
        """
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            start_new_session=True,
        )
        handle = ProcessHandle(key, proc, self)
        if key is not None:
            self._active[key] = handle
        handle._arm_timeout(self._timeout if timeout is None else timeout)
        logger.debug("%s: spawned %s (pid %s)", key or "agent", command, handle.pid)
        return handle

    def owns(self, handle: ProcessHandle) -> bool:
        return handle.key is not None and self._active.get(handle.key) is handle

    def cancel(self, key: str) -> bool:
        """Kill the process registered under *key*.  True if one was signalled."""
        handle = self._active.get(key)
        if handle is None:
            return False
        sent = handle.kill(signal.SIGTERM)
        logger.info("%s: cancel requested (signal sent: %s)", key, sent)
        return sent

    def is_active(self, key: str) -> bool:
        return key in self._active

    def _release(self, handle: ProcessHandle) -> None:
        handle._disarm_timeout()
        if self.owns(handle):
            del self._active[handle.key]  # type: ignore[arg-type]

"""
Asynchronous child process execution with line oriented output capture.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import psutil  # type: ignore[import-untyped]

from ..exceptions import SpawnFailed
from .logger import get_logger
from .subprocess_wrapper import SecureSubprocess

logger = get_logger(__name__)

# Seconds between SIGTERM and SIGKILL when cancelling
KILL_GRACE_PERIOD = 5

# Bytes read from stdout at a time
READ_CHUNK_SIZE = 64 * 1024


@dataclass
class ProcessResult:
    """Outcome of one child process run."""
    lines: List[str] = field(default_factory=list)
    returncode: Optional[int] = None
    error: Optional[SpawnFailed] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        """True when the process ran to completion (any exit code)."""
        return self.error is None and not self.cancelled


class ProcessRunner:
    """
    Runs one child process on the event loop and collects its stdout lines.

    A runner is single use: `run()` spawns the process and resolves once,
    either when the child exits and its output is drained, when it fails to
    spawn, or as soon as `cancel()` is called. Reaping always completes in the
    background, and the process is released exactly once.
    """

    def __init__(self, argv: Sequence[str], cwd: Optional[str] = None, validate: bool = True) -> None:
        """
        Initialize the runner.

        Args:
            argv: Argument vector
            cwd: Working directory for the child
            validate: Resolve and check the executable before spawning
        """
        self.argv = list(argv)
        self.cwd = cwd
        self.validate = validate

        self._lines: List[str] = []
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.Task] = None
        self._done: Optional[asyncio.Future] = None
        self._result: Optional[ProcessResult] = None
        self._started = False
        self._cancel_requested = False
        self._terminated = False
        self._released = False
        self._kill_handle: Optional[asyncio.TimerHandle] = None

    @property
    def finished(self) -> bool:
        """True once the result is available."""
        return self._result is not None

    @property
    def pid(self) -> Optional[int]:
        """Process id of the child, if it was spawned."""
        return self._process.pid if self._process else None

    async def run(self) -> ProcessResult:
        """
        Spawn the process and wait for its result.

        Returns:
            ProcessResult with the captured lines, or the spawn error
        """
        if self._started:
            return await self._wait()
        self._started = True

        loop = asyncio.get_running_loop()
        self._done = loop.create_future()
        if self._result is not None:
            # Cancelled before it was started
            self._done.set_result(self._result)
            return self._result

        try:
            argv = SecureSubprocess.validate_command(self.argv) if self.validate else self.argv
            if not argv:
                raise SpawnFailed("Empty command")
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                cwd=self.cwd,
            )
        except SpawnFailed as e:
            logger.warning(f"Failed to spawn {self.argv[0] if self.argv else '<empty>'}: {e.reason}")
            self._resolve(ProcessResult(error=e))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to spawn {self.argv[0] if self.argv else '<empty>'}: {e}")
            self._resolve(ProcessResult(error=SpawnFailed(str(e), self.argv)))
        else:
            logger.debug(f"Spawned {self.argv[0]} (pid {self._process.pid})")
            self._reader = loop.create_task(self._drain(self._process, self._process.stdout))
            if self._cancel_requested:
                self._terminate()

        return await self._wait()

    async def _wait(self) -> ProcessResult:
        if self._result is not None:
            return self._result
        if self._done is None:
            raise RuntimeError("ProcessRunner.run() has not been called")
        return await asyncio.shield(self._done)

    async def _drain(self, process: asyncio.subprocess.Process, stdout: asyncio.StreamReader) -> None:
        """Read stdout to EOF, then reap the child. Resolves on every exit path."""
        returncode: Optional[int] = None
        pending = b''
        try:
            # Lines may be longer than the StreamReader limit, split them here
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                *complete, pending = (pending + chunk).split(b'\n')
                for raw in complete:
                    self._add_line(raw)
            self._add_line(pending)
            returncode = await process.wait()
        except asyncio.CancelledError:
            self._terminate()
            self._resolve(ProcessResult(lines=list(self._lines), cancelled=True))
            raise
        except (OSError, ValueError) as e:
            logger.warning(f"Reading output of {self.argv[0]} failed: {e}")
        finally:
            self._release()
            self._resolve(ProcessResult(lines=list(self._lines), returncode=returncode))

        logger.debug(f"{self.argv[0]} exited with {returncode}, {len(self._lines)} lines")

    def _add_line(self, raw: bytes) -> None:
        line = raw.decode('utf-8', errors='replace').rstrip('\r')
        if line.strip():
            self._lines.append(line)

    def cancel(self) -> bool:
        """
        Terminate the child and resolve the run as cancelled.

        Returns:
            False when the run had already resolved or was already cancelled
        """
        if self._cancel_requested or self.finished:
            return False
        self._cancel_requested = True
        logger.info(f"Cancelling {self.argv[0] if self.argv else 'process'}")
        self._terminate()
        self._resolve(ProcessResult(lines=list(self._lines), cancelled=True))
        return True

    async def wait_closed(self) -> None:
        """Wait until the child has been reaped."""
        if self._reader is not None:
            try:
                await asyncio.shield(self._reader)
            except asyncio.CancelledError:
                if not self._reader.cancelled():
                    raise

    def _resolve(self, result: ProcessResult) -> None:
        if self._result is not None:
            return
        self._result = result
        if self._done is not None and not self._done.done():
            self._done.set_result(result)

    def _terminate(self) -> None:
        """Send SIGTERM to the child and its descendants, once."""
        if self._terminated or self._process is None or self._process.returncode is not None:
            return
        self._terminated = True

        try:
            parent = psutil.Process(self._process.pid)
            processes = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        for proc in processes:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied:
                # Privileged children can only be stopped through their wrapper
                logger.debug(f"Not allowed to terminate pid {proc.pid}")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._kill_handle = loop.call_later(KILL_GRACE_PERIOD, self._kill)

    def _kill(self) -> None:
        self._kill_handle = None
        if self._process is None or self._process.returncode is not None:
            return
        try:
            psutil.Process(self._process.pid).kill()
            logger.warning(f"Killed {self.argv[0]} after {KILL_GRACE_PERIOD}s grace period")
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.debug(f"Could not kill pid {self._process.pid}: {e}")

    def _release(self) -> None:
        """Drop the process handle; guarded so it only happens once."""
        if self._released:
            return
        self._released = True
        if self._process is not None and self._process.returncode is None:
            # Reader was torn down before exit; the loop's child watcher reaps it
            self._terminate()
            self._kill()
        if self._kill_handle is not None:
            self._kill_handle.cancel()
            self._kill_handle = None

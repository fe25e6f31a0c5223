"""Spawn agent CLI processes and consume their output."""

import asyncio
import logging
import os
import signal
import time
import weakref
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from cli_agents.config import settings
from cli_agents.exceptions import CliTimeoutError, ProcessSpawnError

logger = logging.getLogger(__name__)

# asyncio StreamReader buffer; a single stdout line longer than this is dropped
LINE_LIMIT = 1024 * 1024

_SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)


def _kill_process_group(pid: int, sig: int = _SIGKILL) -> None:
    """Signal the whole process group led by ``pid``."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(pid, sig)
        else:
            os.kill(pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


def _expire(pid: int, expired: List[bool]) -> None:
    expired.append(True)
    _kill_process_group(pid)


class _BoundedBuffer:
    def __init__(self, limit: int):
        self.limit = limit
        self.data = bytearray()
        self.dropped = 0

    def append(self, chunk: bytes) -> None:
        room = self.limit - len(self.data)
        if room > 0:
            self.data.extend(chunk[:room])
        self.dropped += max(0, len(chunk) - max(room, 0))

    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


async def _drain(reader: asyncio.StreamReader, buffer: _BoundedBuffer) -> None:
    while True:
        chunk = await reader.read(65536)
        if not chunk:
            return
        buffer.append(chunk)


async def _feed_stdin(writer: asyncio.StreamWriter, data: bytes) -> None:
    try:
        writer.write(data)
        await writer.drain()
    except (BrokenPipeError, ConnectionResetError) as e:
        logger.debug(f"Process closed stdin early: {e}")
    finally:
        writer.close()


class ProcessOutput(BaseModel):
    """Raw result of a completed process."""

    stdout: str
    stderr: str
    exit_code: int
    duration: float
    truncated: bool = False


class ProcessStream:
    """
    Lazy, cancellable sequence of stdout lines from one child process.

    Use as ``async with transport.stream(...) as lines: async for line in lines``.
    The process group is killed when the stream is closed before the process
    exits, when the consuming task is cancelled, when the deadline passes, or
    when an abandoned stream is garbage collected. After exhaustion
    ``exit_code``, ``stderr`` and ``duration`` are set.
    """

    def __init__(
        self,
        argv: Sequence[str],
        stdin: Optional[bytes],
        cwd: Optional[str],
        env: Optional[Dict[str, str]],
        timeout: float,
        max_output_bytes: int,
        max_stderr_bytes: int,
        kill_grace_period: float,
    ):
        self.argv = list(argv)
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        self.kill_grace_period = kill_grace_period
        self._stdin = stdin
        self._cwd = cwd
        self._env = env or {}

        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr = _BoundedBuffer(max_stderr_bytes)
        self._tasks: List[asyncio.Task] = []
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._finalizer: Optional[weakref.finalize] = None
        self._started_at = 0.0
        self._deadline = 0.0
        self._stdout_bytes = 0
        self._done = False
        self._expired: List[bool] = []

        self.exit_code: Optional[int] = None
        self.duration = 0.0
        self.truncated = False
        self.cancelled = False

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def stderr(self) -> str:
        return self._stderr.text()

    async def start(self) -> "ProcessStream":
        if self._process is not None:
            return self

        self._started_at = time.monotonic()
        self._deadline = self._started_at + self.timeout
        logger.info(f"Executing: {' '.join(self.argv[:3])}...")
        logger.debug(f"Full command: {self.argv}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdin=asyncio.subprocess.PIPE if self._stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env={**os.environ, **self._env},
                limit=LINE_LIMIT,
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start {self.argv[0]}: {e}")
            raise ProcessSpawnError(self.argv[0], str(e)) from e

        pid = self._process.pid
        # Nothing below may hold a reference to self, or abandonment could not be detected
        self._finalizer = weakref.finalize(self, _kill_process_group, pid)
        self._watchdog = asyncio.get_running_loop().call_later(
            self.timeout + self.kill_grace_period, _expire, pid, self._expired
        )
        self._tasks.append(asyncio.create_task(_drain(self._process.stderr, self._stderr)))
        if self._stdin is not None:
            self._tasks.append(asyncio.create_task(_feed_stdin(self._process.stdin, self._stdin)))
        return self

    def __aiter__(self) -> "ProcessStream":
        return self

    async def __anext__(self) -> str:
        if self._process is None:
            await self.start()

        while not self._done:
            try:
                raw = await self._readline()
            except asyncio.CancelledError:
                _kill_process_group(self._process.pid)
                self.cancelled = True
                self._release()
                raise

            if raw is None:
                await self._finish()
                break

            self._stdout_bytes += len(raw)
            if self._stdout_bytes > self.max_output_bytes:
                if not self.truncated:
                    logger.warning(
                        f"Output exceeded {self.max_output_bytes} bytes; dropping further stdout lines"
                    )
                    self.truncated = True
                continue

            return raw.decode("utf-8", errors="replace").rstrip("\r\n")

        raise StopAsyncIteration

    async def _readline(self) -> Optional[bytes]:
        """Next raw line, or None at EOF. Raises CliTimeoutError past the deadline."""
        while True:
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                if self._process.returncode is None or self._expired:
                    await self._on_timeout()
                # Exited in time; only buffered output is left to read
                remaining = self.kill_grace_period
            try:
                line = await asyncio.wait_for(self._read_whole_line(self._process.stdout), remaining)
            except asyncio.TimeoutError:
                await self._on_timeout()
            return line or None

    async def _read_whole_line(self, reader: asyncio.StreamReader) -> bytes:
        """
        Read through the next newline, dropping any line that overruns LINE_LIMIT.

        An overrun line is discarded up to and including its newline, so its
        tail never comes back as a line of its own. Returns b"" at EOF.
        """
        discarding = False
        while True:
            try:
                line = await reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                return b"" if discarding else e.partial
            except asyncio.LimitOverrunError as e:
                if not discarding:
                    logger.warning(f"Dropped a stdout line longer than {LINE_LIMIT} bytes")
                    self.truncated = True
                    discarding = True
                await reader.read(e.consumed)
                continue
            if not discarding:
                return line
            discarding = False

    async def _finish(self) -> None:
        remaining = max(self._deadline - time.monotonic(), 0.001)
        try:
            await asyncio.wait_for(self._process.wait(), remaining)
        except asyncio.TimeoutError:
            await self._on_timeout()
        if self._expired:
            await self._on_timeout()

        # stderr reaches EOF once every process in the group has closed it
        _, pending = await asyncio.wait(self._tasks, timeout=max(self.kill_grace_period, 1.0))
        if pending:
            logger.warning("Background processes still hold stderr open; killing process group")
            _kill_process_group(self._process.pid)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self.exit_code = self._process.returncode
        self.duration = time.monotonic() - self._started_at
        self._release()

        if self._stderr.dropped:
            logger.warning(f"Dropped {self._stderr.dropped} bytes of stderr over the capture limit")
        logger.info(f"Process exited with code {self.exit_code} after {self.duration:.2f}s")

    async def _on_timeout(self) -> None:
        logger.error(f"Process exceeded {self.timeout:g}s deadline; killing process group")
        await self._terminate()
        raise CliTimeoutError(self.timeout, stderr=self.stderr)

    async def _terminate(self) -> None:
        process = self._process
        if process.returncode is None:
            _kill_process_group(process.pid, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), self.kill_grace_period)
            except asyncio.TimeoutError:
                logger.warning(f"Process {process.pid} ignored SIGTERM; sending SIGKILL")
        # Leader gone; make sure nothing else in its group survives
        _kill_process_group(process.pid)
        await process.wait()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self.exit_code = process.returncode
        self.duration = time.monotonic() - self._started_at
        self._release()

    def _release(self) -> None:
        self._done = True
        if self._watchdog is not None:
            self._watchdog.cancel()
        if self._finalizer is not None:
            self._finalizer.detach()

    async def aclose(self) -> None:
        """Kill the process if it is still running. Safe to call repeatedly."""
        if self._process is None or self._done:
            self._done = True
            return
        logger.info(f"Stream closed before process {self._process.pid} finished; terminating")
        self.cancelled = True
        await self._terminate()

    async def __aenter__(self) -> "ProcessStream":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class ProcessTransport:
    """Runs CLI processes with a wall-clock deadline and bounded capture."""

    def __init__(
        self,
        max_output_bytes: Optional[int] = None,
        max_stderr_bytes: Optional[int] = None,
        kill_grace_period: Optional[float] = None,
    ):
        self.max_output_bytes = max_output_bytes or settings.max_output_bytes
        self.max_stderr_bytes = max_stderr_bytes or settings.max_stderr_bytes
        self.kill_grace_period = (
            kill_grace_period if kill_grace_period is not None else settings.kill_grace_period
        )

    def stream(
        self,
        argv: Sequence[str],
        stdin: Optional[bytes] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_output_bytes: Optional[int] = None,
    ) -> ProcessStream:
        """
        Create a stream for one process. Nothing is spawned until it is entered
        or first iterated.

        Args:
            argv: Executable and arguments
            stdin: Bytes piped to the process, then stdin is closed
            cwd: Working directory
            env: Variables layered over the current environment
            timeout: Wall-clock deadline in seconds from spawn
            max_output_bytes: Override of the stdout capture cap

        Returns:
            An unstarted ProcessStream
        """
        return ProcessStream(
            argv,
            stdin=stdin,
            cwd=cwd,
            env=env,
            timeout=timeout or settings.default_timeout,
            max_output_bytes=max_output_bytes or self.max_output_bytes,
            max_stderr_bytes=self.max_stderr_bytes,
            kill_grace_period=self.kill_grace_period,
        )

    async def execute(
        self,
        argv: Sequence[str],
        stdin: Optional[bytes] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_output_bytes: Optional[int] = None,
    ) -> ProcessOutput:
        """
        Run a process to completion by collecting its stream.

        Raises:
            ProcessSpawnError: The process could not be started
            CliTimeoutError: The deadline passed; the process group was killed
        """
        async with self.stream(argv, stdin, cwd, env, timeout, max_output_bytes) as lines:
            collected = [line async for line in lines]

        return ProcessOutput(
            stdout="\n".join(collected),
            stderr=lines.stderr,
            exit_code=lines.exit_code,
            duration=lines.duration,
            truncated=lines.truncated,
        )

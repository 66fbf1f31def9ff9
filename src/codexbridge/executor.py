"""Run the Codex CLI as a child process and capture its output.

Arguments are always passed as a vector. Only on Windows, where ``codex`` is
usually a ``.cmd`` shim that needs cmd.exe to resolve, is a shell involved,
and then every argument is escaped first. The choice is made once per
executor through a :class:`LaunchStrategy`.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import sys
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass

from codexbridge.errors import CommandExecutionError, SpawnError
from codexbridge.escape import escape_windows_arg
from codexbridge.telemetry import set_span_attributes, trace_span

logger = logging.getLogger(__name__)

MAX_BUFFER_BYTES = 10 * 1024 * 1024
PROGRESS_INTERVAL_SECONDS = 0.1
_READ_CHUNK_BYTES = 64 * 1024

ProgressCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class CommandResult:
    """Captured output of a finished child process."""

    stdout: str
    stderr: str
    returncode: int
    stdout_truncated: bool = False
    stderr_truncated: bool = False


@dataclass(frozen=True)
class LaunchStrategy:
    """How the child process is started on this platform."""

    name: str
    use_shell: bool

    def prepare(self, executable: str, args: Sequence[str]) -> list[str]:
        if not self.use_shell:
            return [executable, *args]
        return [executable, *(escape_windows_arg(arg) for arg in args)]


DIRECT_LAUNCH = LaunchStrategy(name="direct", use_shell=False)
WINDOWS_SHELL_LAUNCH = LaunchStrategy(name="windows-shell", use_shell=True)


def select_launch_strategy(platform: str | None = None) -> LaunchStrategy:
    """Pick the launch strategy for ``platform`` (defaults to the host)."""
    platform = platform or sys.platform
    if platform.startswith("win"):
        return WINDOWS_SHELL_LAUNCH
    return DIRECT_LAUNCH


class _OutputBuffer:
    """Byte accumulator that silently drops everything past ``limit``."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._chunks: list[bytes] = []
        self._size = 0
        self.truncated = False

    def append(self, data: bytes) -> None:
        room = self._limit - self._size
        if len(data) > room:
            self.truncated = True
            data = data[: max(room, 0)]
        if data:
            self._chunks.append(data)
            self._size += len(data)

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


class _ProgressThrottle:
    """Coalesce output chunks into at most one callback per interval.

    Chunks held back inside an interval are delivered when it ends, even if
    the process stays silent afterwards.
    """

    def __init__(
        self,
        callback: ProgressCallback,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._pending: list[str] = []
        self._last_emit: float | None = None
        self._trailing: asyncio.Task[None] | None = None

    async def push(self, text: str) -> None:
        self._pending.append(text)
        now = self._clock()
        if self._last_emit is None or now - self._last_emit >= self._interval:
            await self._emit(now)
        elif self._trailing is None:
            delay = self._interval - (now - self._last_emit)
            self._trailing = asyncio.create_task(self._emit_later(delay))

    async def flush(self) -> None:
        self.cancel()
        if self._pending:
            await self._emit(self._clock())

    def cancel(self) -> None:
        """Drop the scheduled trailing delivery, if any."""
        if self._trailing is not None:
            self._trailing.cancel()
            self._trailing = None

    async def _emit_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._trailing = None
        if self._pending:
            await self._emit(self._clock())

    async def _emit(self, now: float) -> None:
        self.cancel()
        text = "".join(self._pending)
        self._pending.clear()
        self._last_emit = now
        try:
            await self._callback(text)
        except Exception as exc:
            logger.debug("Progress callback failed: %s", exc)


async def _drain(
    stream: asyncio.StreamReader | None,
    buffer: _OutputBuffer,
    throttle: _ProgressThrottle | None,
) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            break
        buffer.append(chunk)
        if throttle is not None:
            text = decoder.decode(chunk)
            if text:
                await throttle.push(text)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Kill the child and wait for it to exit."""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.shield(proc.wait())
    except asyncio.CancelledError:
        logger.debug("Interrupted while reaping pid %s", proc.pid)


class CommandExecutor:
    """Spawns a CLI and resolves or rejects based on exit code and output.

    Args:
        strategy: Launch strategy; chosen from the host platform when omitted.
        max_buffer_bytes: Per-stream capture limit. Bytes beyond it are dropped
            and the result is flagged as truncated.
        progress_interval: Minimum seconds between progress callbacks.
    """

    def __init__(
        self,
        strategy: LaunchStrategy | None = None,
        *,
        max_buffer_bytes: int = MAX_BUFFER_BYTES,
        progress_interval: float = PROGRESS_INTERVAL_SECONDS,
    ) -> None:
        self.strategy = strategy or select_launch_strategy()
        self.max_buffer_bytes = max_buffer_bytes
        self.progress_interval = progress_interval

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run to completion with buffered capture.

        A non-zero exit still succeeds when stdout is non-empty.

        Raises:
            SpawnError: If the process cannot be started.
            CommandExecutionError: On non-zero exit with empty stdout.
        """
        command_line, result = await self._execute(executable, args, env, cwd, None)
        return self._resolve(command_line, result, lenient=bool(result.stdout))

    async def run_streamed(
        self,
        executable: str,
        args: Sequence[str],
        on_progress: ProgressCallback,
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        """Like :meth:`run`, forwarding output chunks to ``on_progress``.

        The consumer has already seen partial output, so a non-zero exit
        succeeds whenever either stream produced anything.
        """
        command_line, result = await self._execute(executable, args, env, cwd, on_progress)
        return self._resolve(command_line, result, lenient=bool(result.stdout or result.stderr))

    def _resolve(self, command_line: str, result: CommandResult, *, lenient: bool) -> CommandResult:
        if result.returncode == 0:
            return result
        if lenient:
            logger.warning(
                "Command exited with code %s but produced output; treating as success",
                result.returncode,
            )
            return result
        raise CommandExecutionError(
            command_line,
            f"exited with code {result.returncode}: {result.stderr.strip() or 'no output'}",
            exit_code=result.returncode,
            stderr=result.stderr,
        )

    async def _spawn(
        self,
        command: list[str],
        env: dict[str, str] | None,
        cwd: str | None,
    ) -> asyncio.subprocess.Process:
        if self.strategy.use_shell:
            return await asyncio.create_subprocess_shell(
                " ".join(command),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=cwd,
            )
        # create_subprocess_exec passes args as array, no shell
        return await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
        )

    async def _execute(
        self,
        executable: str,
        args: Sequence[str],
        env: Mapping[str, str] | None,
        cwd: str | None,
        on_progress: ProgressCallback | None,
    ) -> tuple[str, CommandResult]:
        command = self.strategy.prepare(executable, args)
        command_line = " ".join(command)
        child_env = {**os.environ, **env} if env else None
        start = time.monotonic()
        logger.debug("Executing: %s", command_line[:500])

        with trace_span(
            f"exec/{executable}",
            attributes={"launch": self.strategy.name, "arg_count": len(args)},
        ) as span:
            try:
                proc = await self._spawn(command, child_env, cwd)
            except OSError as exc:
                logger.error("Failed to start %s: %s", executable, exc)
                raise SpawnError(command_line, f"failed to start process: {exc}") from exc

            stdout = _OutputBuffer(self.max_buffer_bytes)
            stderr = _OutputBuffer(self.max_buffer_bytes)
            throttle = (
                _ProgressThrottle(on_progress, self.progress_interval) if on_progress else None
            )
            try:
                await asyncio.gather(
                    _drain(proc.stdout, stdout, throttle),
                    _drain(proc.stderr, stderr, throttle),
                )
                returncode = await proc.wait()
            except BaseException:
                if throttle is not None:
                    throttle.cancel()
                await _terminate(proc)
                raise
            if throttle is not None:
                await throttle.flush()

            duration_ms = int((time.monotonic() - start) * 1000)
            set_span_attributes(span, returncode=returncode, duration_ms=duration_ms)

        if stdout.truncated or stderr.truncated:
            logger.warning(
                "Output of %s exceeded %d bytes and was truncated (stdout=%s, stderr=%s)",
                executable,
                self.max_buffer_bytes,
                stdout.truncated,
                stderr.truncated,
            )
        logger.info("%s exited with code %s after %dms", executable, returncode, duration_ms)
        return command_line, CommandResult(
            stdout=stdout.text(),
            stderr=stderr.text(),
            returncode=returncode,
            stdout_truncated=stdout.truncated,
            stderr_truncated=stderr.truncated,
        )


__all__ = [
    "DIRECT_LAUNCH",
    "MAX_BUFFER_BYTES",
    "WINDOWS_SHELL_LAUNCH",
    "CommandExecutor",
    "CommandResult",
    "LaunchStrategy",
    "ProgressCallback",
    "select_launch_strategy",
]

"""Subprocess execution with streamed, binary-aware output.

ProcessRunner.execute() spawns one shell command and returns a
ProcessHandle right away. While the command runs, stdout and stderr are
read concurrently, decoded incrementally (split multi-byte sequences
are held until complete), stripped of ANSI escapes and emitted as
DataEvents. The first sniff that contains a NUL byte flips the run into
binary mode: from then on only BinaryProgressEvents are emitted, while
raw bytes keep accumulating for the final result.

Cancellation goes through an asyncio.Event. On POSIX the shell runs in
its own session so the whole process group can be signalled: SIGTERM
first, then SIGKILL after a fixed grace window.
"""
from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
import os
import shutil
import signal
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from keel.shared.events import (
    BinaryDetectedEvent,
    BinaryProgressEvent,
    DataEvent,
    OutputEvent,
    OutputStream,
)
from keel.shared.text_utils import is_binary, resolve_output_encoding, strip_ansi

logger = logging.getLogger(__name__)

# Grace window between SIGTERM and SIGKILL. Not configurable.
SIGKILL_TIMEOUT_SECONDS = 0.2
# Binary sniffing looks at most at this many bytes / chunks.
MAX_SNIFF_SIZE = 4096
MAX_SNIFF_CHUNKS = 20
READ_CHUNK_SIZE = 4096
# Per-accumulator cap; older output is dropped, the tail is kept.
DEFAULT_MAX_OUTPUT_SIZE = 16 * 1024 * 1024
# How long to keep reading pipes after the shell exits. Background
# children can hold the pipes open indefinitely.
DRAIN_TIMEOUT_SECONDS = 1.0

# Signature: async def callback(event: OutputEvent) -> None
OutputEventCallback = Callable[[OutputEvent], Awaitable[None] | None]


@dataclass
class ProcessResult:
    """Final outcome of one execute() call."""
    raw_output: bytes = b""
    output: str = ""
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    signal: int | None = None
    error: BaseException | None = None
    aborted: bool = False
    pid: int | None = None
    truncated: bool = False
    binary_detected: bool = False


class _TailBuffer:
    """Accumulates str or bytes chunks, keeping at most *limit* units."""

    def __init__(self, empty: str | bytes, limit: int) -> None:
        self._empty = empty
        self._limit = limit
        self._chunks: list[Any] = []
        self._size = 0
        self.truncated = False

    def append(self, chunk: str | bytes) -> None:
        if not chunk:
            return
        self._chunks.append(chunk)
        self._size += len(chunk)
        if self._size > self._limit:
            joined = self._empty.join(self._chunks)[-self._limit:]
            self._chunks = [joined]
            self._size = len(joined)
            self.truncated = True

    def value(self) -> Any:
        return self._empty.join(self._chunks)


@dataclass
class _RunState:
    """Mutable per-run state shared by both stream readers."""
    encoding: str
    max_output_size: int
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    binary: bool = False
    total_bytes: int = 0
    sniff: bytearray = field(default_factory=bytearray)
    sniff_chunks: int = 0
    decoders: dict[str, codecs.IncrementalDecoder] = field(default_factory=dict)
    raw: _TailBuffer | None = None
    text: dict[str, _TailBuffer] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("stdout", "stderr"):
            self.decoders[name] = codecs.getincrementaldecoder(self.encoding)(
                errors="replace",
            )
            self.text[name] = _TailBuffer("", self.max_output_size)
        self.raw = _TailBuffer(b"", self.max_output_size)


class ProcessHandle:
    """Live view of one running command.

    Await ``wait()`` (or the handle itself) for the ProcessResult.
    ``abort()`` is idempotent and a no-op after the process finished.
    """

    def __init__(
        self,
        pid: int | None,
        abort_event: asyncio.Event,
        result: asyncio.Future[ProcessResult],
        stream: OutputStream | None = None,
    ) -> None:
        self.pid = pid
        self.abort_event = abort_event
        self._result = result
        self._stream = stream

    @property
    def done(self) -> bool:
        return self._result.done()

    def abort(self) -> None:
        if self._result.done() or self.abort_event.is_set():
            return
        self.abort_event.set()

    async def wait(self) -> ProcessResult:
        return await asyncio.shield(self._result)

    def __await__(self):
        return self.wait().__await__()

    def events(self) -> AsyncIterator[OutputEvent]:
        """Iterate the run's output events in emission order.

        Only available when execute() was called with stream_events=True;
        the stream is bounded, so the consumer must keep reading.
        """
        if self._stream is None:
            raise RuntimeError(
                "Output events are not buffered for this run; "
                "call execute(..., stream_events=True)"
            )
        return self._stream.consume()


class ProcessRunner:
    """Runs shell commands and streams their output."""

    def __init__(self, max_output_size: int = DEFAULT_MAX_OUTPUT_SIZE) -> None:
        self._max_output_size = max_output_size

    async def execute(
        self,
        command: str,
        cwd: str,
        on_output_event: OutputEventCallback | None = None,
        abort_event: asyncio.Event | None = None,
        *,
        stream_events: bool = False,
        env: dict[str, str] | None = None,
    ) -> ProcessHandle:
        """Spawn *command* via the platform shell.

        Spawn failures never raise; they come back as ``result.error``.
        """
        abort_event = abort_event or asyncio.Event()
        stream = OutputStream() if stream_events else None
        loop = asyncio.get_running_loop()

        try:
            proc = await self._spawn(command, cwd, env)
        except OSError as exc:
            logger.warning("Failed to spawn command %r in %s: %s", command[:80], cwd, exc)
            future: asyncio.Future[ProcessResult] = loop.create_future()
            future.set_result(ProcessResult(error=exc, aborted=abort_event.is_set()))
            if stream is not None:
                await stream.close()
            return ProcessHandle(None, abort_event, future, stream)

        logger.info("Spawned pid=%s cwd=%s command=%s", proc.pid, cwd, command[:120])
        state = _RunState(
            encoding=resolve_output_encoding(),
            max_output_size=self._max_output_size,
        )
        task = asyncio.ensure_future(
            self._run(proc, state, on_output_event, abort_event, stream)
        )
        return ProcessHandle(proc.pid, abort_event, task, stream)

    # ── Spawning ─────────────────────────────────────────────────

    @staticmethod
    async def _spawn(
        command: str, cwd: str, env: dict[str, str] | None,
    ) -> asyncio.subprocess.Process:
        child_env = {**os.environ, **(env or {}), "KEEL": "1"}
        if sys.platform == "win32":
            return await asyncio.create_subprocess_exec(
                "cmd.exe", "/c", command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=child_env,
            )
        shell = shutil.which("bash") or shutil.which("sh") or "/bin/sh"
        return await asyncio.create_subprocess_exec(
            shell, "-c", command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=child_env,
            start_new_session=True,
        )

    # ── Run loop ─────────────────────────────────────────────────

    async def _run(
        self,
        proc: asyncio.subprocess.Process,
        state: _RunState,
        on_output_event: OutputEventCallback | None,
        abort_event: asyncio.Event,
        stream: OutputStream | None,
    ) -> ProcessResult:
        async def emit(event: OutputEvent) -> None:
            if on_output_event is not None:
                try:
                    maybe = on_output_event(event)
                    if inspect.isawaitable(maybe):
                        await maybe
                except Exception:
                    logger.warning("Output callback raised for pid=%s", proc.pid, exc_info=True)
            if stream is not None:
                await stream.put(event)

        readers = [
            asyncio.ensure_future(self._read_stream(proc.stdout, "stdout", state, emit)),
            asyncio.ensure_future(self._read_stream(proc.stderr, "stderr", state, emit)),
        ]
        wait_task = asyncio.ensure_future(proc.wait())
        abort_task = asyncio.ensure_future(abort_event.wait())
        try:
            done, _ = await asyncio.wait(
                {wait_task, abort_task}, return_when=asyncio.FIRST_COMPLETED,
            )
            if abort_task in done and not wait_task.done():
                logger.info("Abort requested for pid=%s", proc.pid)
                await self._terminate(proc)
            await wait_task

            _, pending = await asyncio.wait(readers, timeout=DRAIN_TIMEOUT_SECONDS)
            if pending:
                logger.debug(
                    "pid=%s exited but its pipes are still open; stopping readers",
                    proc.pid,
                )
                if abort_event.is_set():
                    self._signal_process_group(proc.pid, signal.SIGKILL)
                for reader in pending:
                    reader.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

            async with state.lock:
                for name in ("stdout", "stderr"):
                    tail = strip_ansi(state.decoders[name].decode(b"", final=True))
                    state.text[name].append(tail)
                    if tail and not state.binary:
                        await emit(DataEvent(stream=name, chunk=tail))
        finally:
            abort_task.cancel()
            if not wait_task.done():
                wait_task.cancel()
            if stream is not None:
                await stream.close()

        returncode = proc.returncode
        exit_code = returncode if returncode is not None and returncode >= 0 else None
        sig = -returncode if returncode is not None and returncode < 0 else None
        stdout = state.text["stdout"].value()
        stderr = state.text["stderr"].value()
        result = ProcessResult(
            raw_output=state.raw.value(),
            output=stdout + (f"\n{stderr}" if stderr else ""),
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            signal=sig,
            aborted=abort_event.is_set(),
            pid=proc.pid,
            truncated=(
                state.raw.truncated
                or state.text["stdout"].truncated
                or state.text["stderr"].truncated
            ),
            binary_detected=state.binary,
        )
        logger.debug(
            "pid=%s finished exit_code=%s signal=%s aborted=%s bytes=%d",
            proc.pid, exit_code, sig, result.aborted, state.total_bytes,
        )
        return result

    async def _read_stream(
        self,
        reader: asyncio.StreamReader | None,
        name: str,
        state: _RunState,
        emit: Callable[[OutputEvent], Awaitable[None]],
    ) -> None:
        if reader is None:
            return
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            await self._handle_chunk(chunk, name, state, emit)

    @staticmethod
    async def _handle_chunk(
        data: bytes,
        name: str,
        state: _RunState,
        emit: Callable[[OutputEvent], Awaitable[None]],
    ) -> None:
        # The binary flag is read and flipped under the run lock so that
        # once set no reader can emit another DataEvent.
        async with state.lock:
            state.raw.append(data)
            state.total_bytes += len(data)

            if (
                not state.binary
                and state.sniff_chunks < MAX_SNIFF_CHUNKS
                and len(state.sniff) < MAX_SNIFF_SIZE
            ):
                state.sniff.extend(data[:MAX_SNIFF_SIZE - len(state.sniff)])
                state.sniff_chunks += 1
                if is_binary(bytes(state.sniff)):
                    state.binary = True
                    logger.debug("Binary output detected on %s", name)
                    await emit(BinaryDetectedEvent())

            text = strip_ansi(state.decoders[name].decode(data))
            state.text[name].append(text)

            if state.binary:
                await emit(BinaryProgressEvent(bytes_received=state.total_bytes))
            elif text:
                await emit(DataEvent(stream=name, chunk=text))

    # ── Termination ──────────────────────────────────────────────

    @staticmethod
    def _signal_process_group(pid: int, sig: signal.Signals) -> bool:
        """Send a signal to the process group. False if it no longer exists."""
        try:
            os.killpg(pid, sig)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            logger.debug("No permission to signal process group %s", pid)
            return False

    @staticmethod
    def _process_group_alive(pgid: int) -> bool:
        """Best-effort existence check for a process group.

        A PermissionError means something with that id exists that we
        cannot signal, so it is counted as still running and the caller
        escalates.
        """
        try:
            os.killpg(pgid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        """Stop the process tree: SIGTERM, grace window, then SIGKILL."""
        if proc.returncode is not None:
            return

        if sys.platform == "win32":
            try:
                killer = await asyncio.create_subprocess_exec(
                    "taskkill", "/pid", str(proc.pid), "/f", "/t",
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
                await killer.wait()
            except OSError:
                logger.warning("taskkill failed for pid=%s, killing directly", proc.pid)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
            return

        term_sent = self._signal_process_group(proc.pid, signal.SIGTERM)
        if not term_sent:
            try:
                proc.terminate()
            except ProcessLookupError:
                return

        await asyncio.sleep(SIGKILL_TIMEOUT_SECONDS)
        if proc.returncode is None or self._process_group_alive(proc.pid):
            kill_sent = self._signal_process_group(proc.pid, signal.SIGKILL)
            logger.warning(
                "pid=%s still running after SIGTERM; escalating to SIGKILL sent=%s",
                proc.pid, kill_sent,
            )
            if not kill_sent and proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass

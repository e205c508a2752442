from __future__ import annotations

import asyncio
import signal
import sys
import time

import pytest

from keel.engine.process_runner import ProcessRunner
from keel.shared.events import BinaryDetectedEvent, BinaryProgressEvent, DataEvent

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell semantics")


async def _run(command: str, cwd, **kwargs):
    runner = ProcessRunner(**kwargs.pop("runner_kwargs", {}))
    handle = await runner.execute(command, str(cwd), **kwargs)
    return handle, await handle.wait()


@pytest.mark.asyncio
async def test_successful_command(tmp_path) -> None:
    handle, result = await _run("echo hello", tmp_path)
    assert result.exit_code == 0
    assert result.signal is None
    assert result.error is None
    assert not result.aborted
    assert result.stdout == "hello\n"
    assert result.output == "hello\n"
    assert result.pid == handle.pid
    assert handle.done


@pytest.mark.asyncio
async def test_stdout_and_stderr_are_separated(tmp_path) -> None:
    _, result = await _run("echo out; echo err 1>&2", tmp_path)
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.output == "out\n\nerr\n"


@pytest.mark.asyncio
async def test_nonzero_exit_code(tmp_path) -> None:
    _, result = await _run("exit 3", tmp_path)
    assert result.exit_code == 3
    assert result.signal is None
    assert result.error is None


@pytest.mark.asyncio
async def test_runs_in_cwd_with_marker_env(tmp_path) -> None:
    _, result = await _run('pwd; echo "$KEEL"', tmp_path)
    lines = result.stdout.splitlines()
    assert lines[0].endswith(tmp_path.name)
    assert lines[1] == "1"


@pytest.mark.asyncio
async def test_abort_terminates_process(tmp_path) -> None:
    abort = asyncio.Event()
    runner = ProcessRunner()
    handle = await runner.execute("sleep 10", str(tmp_path), abort_event=abort)
    await asyncio.sleep(0.1)
    start = time.monotonic()
    handle.abort()
    result = await handle.wait()
    assert result.aborted
    assert result.exit_code is None
    assert result.signal is not None
    assert time.monotonic() - start < 3


@pytest.mark.asyncio
async def test_abort_escalates_to_sigkill_when_term_ignored(tmp_path) -> None:
    abort = asyncio.Event()
    runner = ProcessRunner()
    handle = await runner.execute(
        "trap '' TERM; while true; do sleep 0.05; done",
        str(tmp_path),
        abort_event=abort,
    )
    await asyncio.sleep(0.2)
    abort.set()
    result = await handle.wait()
    assert result.aborted
    assert result.signal == signal.SIGKILL


@pytest.mark.asyncio
async def test_abort_after_exit_is_noop(tmp_path) -> None:
    handle, result = await _run("true", tmp_path)
    handle.abort()
    assert not handle.abort_event.is_set()
    assert not result.aborted


@pytest.mark.asyncio
async def test_binary_output_switches_to_progress_events(tmp_path) -> None:
    events = []
    _, result = await _run(
        "printf 'abc\\000def'", tmp_path, on_output_event=events.append,
    )
    assert result.binary_detected
    assert b"\x00" in result.raw_output
    kinds = [type(e) for e in events]
    assert BinaryDetectedEvent in kinds
    first_binary = kinds.index(BinaryDetectedEvent)
    assert DataEvent not in kinds[first_binary:]
    assert isinstance(events[-1], BinaryProgressEvent)
    assert events[-1].bytes_received == len(result.raw_output)


@pytest.mark.asyncio
async def test_binary_on_stderr_silences_both_streams(tmp_path) -> None:
    events = []
    _, result = await _run(
        "printf 'a\\000b' >&2; sleep 0.1; echo text; sleep 0.1; printf more; "
        "sleep 0.1; echo late >&2",
        tmp_path,
        on_output_event=events.append,
    )
    assert result.binary_detected
    kinds = [type(e) for e in events]
    first_binary = kinds.index(BinaryDetectedEvent)
    assert DataEvent not in kinds[first_binary:]
    assert not any(isinstance(e, DataEvent) and e.stream == "stdout" for e in events)

    progress = [e.bytes_received for e in events if isinstance(e, BinaryProgressEvent)]
    assert len(progress) >= 2
    assert progress == sorted(progress)
    assert progress[-1] == len(result.raw_output)


@pytest.mark.asyncio
async def test_async_callback_receives_data_events(tmp_path) -> None:
    chunks: list[str] = []

    async def on_event(event) -> None:
        if isinstance(event, DataEvent):
            chunks.append(event.chunk)

    _, result = await _run("echo streamed", tmp_path, on_output_event=on_event)
    assert "".join(chunks) == "streamed\n"
    assert result.exit_code == 0


@pytest.mark.asyncio
async def test_callback_errors_do_not_break_the_run(tmp_path) -> None:
    def broken(event) -> None:
        raise ValueError("boom")

    _, result = await _run("echo ok", tmp_path, on_output_event=broken)
    assert result.stdout == "ok\n"


@pytest.mark.asyncio
async def test_events_iterator(tmp_path) -> None:
    runner = ProcessRunner()
    handle = await runner.execute("echo one; echo two", str(tmp_path), stream_events=True)
    chunks = [e.chunk async for e in handle.events() if isinstance(e, DataEvent)]
    result = await handle.wait()
    assert "".join(chunks) == "one\ntwo\n"
    assert result.exit_code == 0


@pytest.mark.asyncio
async def test_events_requires_stream_events(tmp_path) -> None:
    handle, _ = await _run("true", tmp_path)
    with pytest.raises(RuntimeError):
        handle.events()


@pytest.mark.asyncio
async def test_spawn_failure_is_reported_not_raised(tmp_path) -> None:
    handle, result = await _run("echo hi", tmp_path / "missing")
    assert handle.pid is None
    assert isinstance(result.error, OSError)
    assert result.exit_code is None


@pytest.mark.asyncio
async def test_output_is_truncated_to_tail(tmp_path) -> None:
    _, result = await _run(
        "printf '0123456789abcdef'", tmp_path, runner_kwargs={"max_output_size": 10},
    )
    assert result.truncated
    assert result.stdout == "6789abcdef"


@pytest.mark.asyncio
async def test_ansi_sequences_are_stripped(tmp_path) -> None:
    _, result = await _run("printf '\\033[31mred\\033[0m'", tmp_path)
    assert result.stdout == "red"
    assert b"\x1b[31m" in result.raw_output

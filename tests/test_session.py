"""Session spawn, shared wait and signal delivery tests."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import sys
from pathlib import Path

import pytest
import structlog
from structlog.testing import capture_logs

import extbuilder.lib.exec.process_groups as process_groups_module
from extbuilder.lib.exec.errors import (
    ExitStatusError,
    SignalDeliveryError,
    SignalTerminationError,
    SpawnError,
)
from extbuilder.lib.exec.session import OUTPUT_DRAIN_SECONDS, ExitStatus, Session


def _logger() -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger("test")


@pytest.mark.parametrize(
    "returncode,error_type,message",
    [
        pytest.param(0, None, None, id="success"),
        pytest.param(1, ExitStatusError, "exit status 1", id="exit-1"),
        pytest.param(42, ExitStatusError, "exit status 42", id="exit-42"),
        pytest.param(-signal.SIGTERM, SignalTerminationError, "signal: terminated", id="sigterm"),
        pytest.param(-signal.SIGKILL, SignalTerminationError, "signal: killed", id="sigkill"),
    ],
)
def test_exit_status_from_returncode(
    returncode: int,
    error_type: type[Exception] | None,
    message: str | None,
) -> None:
    status = ExitStatus.from_returncode(returncode)

    assert status.returncode == returncode
    if error_type is None:
        assert status.ok is True
        assert status.error is None
    else:
        assert status.ok is False
        assert isinstance(status.error, error_type)
        assert str(status.error) == message
        assert status.error.exit_code == returncode


@pytest.mark.asyncio
async def test_start_missing_binary_raises_spawn_error(tmp_path: Path) -> None:
    missing = tmp_path / "does-not-exist"

    with pytest.raises(SpawnError, match="could not start") as exc_info:
        await Session.start(_logger(), [str(missing)])

    assert exc_info.value.command == (str(missing),)
    assert isinstance(exc_info.value.__cause__, FileNotFoundError)


@pytest.mark.asyncio
async def test_start_rejects_empty_command() -> None:
    with pytest.raises(ValueError, match="command is empty"):
        await Session.start(_logger(), [])


@pytest.mark.asyncio
async def test_wait_returns_clean_exit() -> None:
    session = await Session.start(_logger(), [sys.executable, "-c", "pass"])

    status = await session.wait()

    assert status == ExitStatus(returncode=0)
    assert session.returncode == 0


@pytest.mark.asyncio
async def test_concurrent_waiters_share_one_process_wait() -> None:
    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-c",
        "import time; time.sleep(0.2); raise SystemExit(3)",
        start_new_session=True,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    calls = 0
    original_wait = process.wait

    async def counting_wait() -> int:
        nonlocal calls
        calls += 1
        return await original_wait()

    process.wait = counting_wait  # type: ignore[method-assign]
    session = Session(process, logger=_logger())

    results = await asyncio.gather(*(session.wait() for _ in range(5)))
    late = await session.wait()

    assert calls == 1
    assert all(result is results[0] for result in results)
    assert late is results[0]
    assert late.returncode == 3
    assert str(late.error) == "exit status 3"


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_wait() -> None:
    session = await Session.start(
        _logger(),
        [sys.executable, "-c", "import time; time.sleep(0.3)"],
    )

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(session.wait(), timeout=0.05)

    status = await session.wait()
    assert status.returncode == 0


@pytest.mark.asyncio
async def test_terminate_reports_signal_terminated() -> None:
    session = await Session.start(_logger(), ["sleep", "90"])

    assert session.terminate() is True
    status = await session.wait()

    assert isinstance(status.error, SignalTerminationError)
    assert str(status.error) == "signal: terminated"
    assert status.returncode == -signal.SIGTERM


@pytest.mark.asyncio
async def test_kill_reports_signal_killed() -> None:
    session = await Session.start(_logger(), ["sleep", "90"])

    assert session.kill() is True
    status = await session.wait()

    assert isinstance(status.error, SignalTerminationError)
    assert str(status.error) == "signal: killed"


@pytest.mark.asyncio
async def test_signals_after_exit_are_benign() -> None:
    session = await Session.start(_logger(), [sys.executable, "-c", "pass"])
    await session.wait()

    assert session.terminate() is False
    assert session.kill() is False


@pytest.mark.asyncio
async def test_signal_race_with_exit_is_benign(monkeypatch: pytest.MonkeyPatch) -> None:
    session = await Session.start(_logger(), ["sleep", "90"])

    def _gone(pgid: int, signum: int) -> None:
        raise ProcessLookupError(pgid, signum)

    with monkeypatch.context() as patch:
        patch.setattr(process_groups_module.os, "killpg", _gone)
        assert session.terminate() is False

    session.kill()
    await session.wait()


@pytest.mark.asyncio
async def test_signal_delivery_failure_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    session = await Session.start(_logger(), ["sleep", "90"])

    def _denied(pgid: int, signum: int) -> None:
        raise PermissionError(1, "Operation not permitted")

    with monkeypatch.context() as patch:
        patch.setattr(process_groups_module.os, "killpg", _denied)
        with pytest.raises(SignalDeliveryError, match="failed to send SIGTERM") as exc_info:
            session.terminate()

    assert exc_info.value.pid == session.pid
    session.kill()
    await session.wait()


@pytest.mark.asyncio
async def test_stdin_payload_is_delivered(tmp_path: Path) -> None:
    target = tmp_path / "stdin.txt"
    script = (
        "import sys, pathlib; "
        f"pathlib.Path({str(target)!r}).write_bytes(sys.stdin.buffer.read())"
    )
    session = await Session.start(
        _logger(),
        [sys.executable, "-c", script],
        stdin_payload=b'{"peer_address": "peer0:7052"}',
    )

    status = await session.wait()

    assert status.ok
    assert target.read_bytes() == b'{"peer_address": "peer0:7052"}'


@pytest.mark.asyncio
async def test_child_output_is_forwarded_to_logger() -> None:
    script = "import sys; print('to stdout'); print('to stderr', file=sys.stderr)"
    with capture_logs() as logs:
        session = await Session.start(_logger(), [sys.executable, "-c", script])
        await session.wait()

    lines = {(entry["event"], entry.get("stream")) for entry in logs}
    assert ("to stdout", "stdout") in lines
    assert ("to stderr", "stderr") in lines
    assert any(entry["event"] == "Process exited." for entry in logs)


@pytest.mark.asyncio
async def test_exit_callbacks_run_once_with_status() -> None:
    seen: list[ExitStatus] = []

    def _boom(status: ExitStatus) -> None:
        raise RuntimeError("callback failure must not break wait")

    session = await Session.start(
        _logger(),
        [sys.executable, "-c", "raise SystemExit(2)"],
        exit_callbacks=(_boom, seen.append),
    )

    first = await session.wait()
    second = await session.wait()

    assert first is second
    assert seen == [first]
    assert first.returncode == 2


@pytest.mark.asyncio
async def test_wait_exited_does_not_wait_for_output_drain() -> None:
    # The background sleep inherits stdout and outlives the shell.
    session = await Session.start(_logger(), ["sh", "-c", "sleep 30 & exit 0"])

    try:
        returncode = await asyncio.wait_for(
            session.wait_exited(),
            timeout=OUTPUT_DRAIN_SECONDS / 2,
        )
        assert returncode == 0
        status = await session.wait()
        assert status.ok
    finally:
        with contextlib.suppress(ProcessLookupError):
            os.killpg(session.pid, signal.SIGKILL)


@pytest.mark.asyncio
async def test_awaitable_exit_callbacks_finish_before_wait_returns() -> None:
    seen: list[int] = []

    async def _record(status: ExitStatus) -> None:
        await asyncio.sleep(0)
        seen.append(status.returncode)

    session = await Session.start(
        _logger(),
        [sys.executable, "-c", "pass"],
        exit_callbacks=(_record,),
    )

    await session.wait()

    assert seen == [0]

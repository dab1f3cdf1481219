"""One spawned builder process and its single shared exit result."""

from __future__ import annotations

import asyncio
import inspect
import signal
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog

from extbuilder.lib.exec.errors import (
    ExitStatusError,
    ExternalBuilderError,
    SignalTerminationError,
    SpawnError,
)
from extbuilder.lib.exec.process_groups import signal_process_group

# Output readers get this long to hit EOF once the process has exited. A
# grandchild that inherited the pipes can otherwise hold them open forever.
OUTPUT_DRAIN_SECONDS = 1.0

module_logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ExitStatus:
    """Terminal result of one process.

    ``returncode`` follows the asyncio convention: negative signal number when
    the process was ended by a signal.
    """

    returncode: int
    error: ExternalBuilderError | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> ExitStatus:
        if returncode == 0:
            return cls(returncode=0)
        if returncode < 0:
            return cls(returncode=returncode, error=SignalTerminationError(-returncode))
        return cls(returncode=returncode, error=ExitStatusError(returncode))

    @property
    def ok(self) -> bool:
        return self.error is None


ExitCallback = Callable[[ExitStatus], Awaitable[None] | None]


async def _forward_output(
    reader: asyncio.StreamReader,
    *,
    logger: structlog.typing.FilteringBoundLogger,
    stream: str,
) -> None:
    while True:
        chunk = await reader.readline()
        if not chunk:
            return
        line = chunk.decode("utf-8", errors="replace").rstrip("\r\n")
        if line:
            logger.info(line, stream=stream)


async def _write_stdin(
    process: asyncio.subprocess.Process,
    payload: bytes,
    *,
    logger: structlog.typing.FilteringBoundLogger,
) -> None:
    if process.stdin is None:
        return
    try:
        process.stdin.write(payload)
        await process.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # Builders are free to ignore their input.
        logger.debug("Builder closed stdin before reading the payload.", pid=process.pid)
    finally:
        process.stdin.close()


class Session:
    """Owns one live child process.

    Exactly one task calls ``process.wait()``; every caller of :meth:`wait`
    receives the result of that task.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        logger: structlog.typing.FilteringBoundLogger,
        exit_callbacks: Sequence[ExitCallback] = (),
    ) -> None:
        self._process = process
        self._logger = logger.bind(pid=process.pid)
        self._exit_callbacks = tuple(exit_callbacks)
        self._output_tasks: list[asyncio.Task[None]] = []
        self._wait_task: asyncio.Task[ExitStatus] | None = None
        self._exited = asyncio.Event()

    @classmethod
    async def start(
        cls,
        logger: structlog.typing.FilteringBoundLogger | None,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        stdin_payload: bytes | None = None,
        exit_callbacks: Sequence[ExitCallback] = (),
    ) -> Session:
        """Spawn ``command`` in its own process group and start watching it."""

        if not command:
            raise ValueError("Cannot spawn process: command is empty.")

        resolved_logger = logger if logger is not None else module_logger
        argv = tuple(command)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                start_new_session=True,
                stdin=(
                    asyncio.subprocess.PIPE
                    if stdin_payload is not None
                    else asyncio.subprocess.DEVNULL
                ),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            resolved_logger.warning("Failed to start process.", command=argv[0], error=str(exc))
            raise SpawnError(argv, exc) from exc

        session = cls(process, logger=resolved_logger, exit_callbacks=exit_callbacks)
        session._logger.info("Started process.", command=argv[0])
        session._watch()
        if stdin_payload is not None:
            await _write_stdin(process, stdin_payload, logger=session._logger)
        return session

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def _watch(self) -> None:
        for reader, stream in ((self._process.stdout, "stdout"), (self._process.stderr, "stderr")):
            if reader is None:
                continue
            self._output_tasks.append(
                asyncio.create_task(_forward_output(reader, logger=self._logger, stream=stream))
            )
        if self._wait_task is None:
            self._wait_task = asyncio.create_task(self._reap(), name=f"reap-{self.pid}")

    async def _reap(self) -> ExitStatus:
        returncode = await self._process.wait()
        self._exited.set()
        if self._output_tasks:
            _done, pending = await asyncio.wait(self._output_tasks, timeout=OUTPUT_DRAIN_SECONDS)
            for task in pending:
                task.cancel()

        status = ExitStatus.from_returncode(returncode)
        if status.ok:
            self._logger.info("Process exited.", returncode=returncode)
        else:
            self._logger.info("Process exited.", returncode=returncode, error=str(status.error))

        for callback in self._exit_callbacks:
            try:
                result = callback(status)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self._logger.warning("Process exit callback failed.", exc_info=True)
        return status

    async def wait(self) -> ExitStatus:
        """Wait for the process to terminate and return its exit status.

        Safe to call any number of times from any number of tasks. Cancelling
        one waiter does not cancel the shared reap task.
        """

        if self._wait_task is None:
            self._watch()
        assert self._wait_task is not None
        return await asyncio.shield(self._wait_task)

    async def wait_exited(self) -> int:
        """Return the returncode as soon as the process has been reaped.

        Unlike :meth:`wait` this does not wait for output to drain or for exit
        callbacks, so a grandchild holding the pipes open cannot delay it.
        """

        if self._wait_task is None:
            self._watch()
        await self._exited.wait()
        returncode = self._process.returncode
        assert returncode is not None
        return returncode

    def send_signal(self, signum: signal.Signals) -> bool:
        """Signal the process group; returns False when the process is already gone."""

        delivered = signal_process_group(self._process, signum)
        if delivered:
            self._logger.debug("Sent signal.", signal=signum.name)
        else:
            self._logger.debug("Process already exited; signal not sent.", signal=signum.name)
        return delivered

    def terminate(self) -> bool:
        return self.send_signal(signal.SIGTERM)

    def kill(self) -> bool:
        return self.send_signal(signal.SIGKILL)

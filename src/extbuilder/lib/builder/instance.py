"""Start, stop and wait on one running builder instance."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import structlog

from extbuilder.lib.builder.builder import Builder
from extbuilder.lib.builder.connection import PeerConnection
from extbuilder.lib.exec.errors import (
    ExitStatusError,
    InstanceAlreadyStartedError,
    NotStartedError,
    RunFailedError,
    SignalTerminationError,
)
from extbuilder.lib.exec.session import Session
from extbuilder.lib.types import PackageId

DEFAULT_TERM_TIMEOUT_SECONDS = 5.0

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class Instance:
    """One supervised run of a builder for a package.

    ``term_timeout`` is the grace period between SIGTERM and SIGKILL in
    seconds; zero or ``None`` selects ``DEFAULT_TERM_TIMEOUT_SECONDS``.
    """

    package_id: PackageId
    builder: Builder
    build_dir: Path
    term_timeout: float | None = None
    session: Session | None = None

    @property
    def grace_seconds(self) -> float:
        return self.term_timeout or DEFAULT_TERM_TIMEOUT_SECONDS

    async def start(self, connection: PeerConnection) -> None:
        """Launch the builder's run command.

        A failed launch leaves ``session`` untouched so start can be retried.
        Starting again while the previous process is still running is refused.
        """

        previous = self.session
        if previous is not None and previous.returncode is None:
            raise InstanceAlreadyStartedError(
                f"instance '{self.package_id}' is already running (pid {previous.pid})"
            )

        self.session = await self.builder.run(self.package_id, Path(self.build_dir), connection)

    async def stop(self) -> None:
        """Ask the process to exit, escalating to SIGKILL after the grace period.

        Returns when the process exits within the grace period or right after
        SIGKILL is sent. The exit status is only reported by :meth:`wait`.
        """

        session = self.session
        if session is None:
            raise NotStartedError("instance has not been started")

        log = logger.bind(package_id=self.package_id, pid=session.pid)
        grace_seconds = self.grace_seconds
        session.terminate()
        try:
            await asyncio.wait_for(session.wait_exited(), timeout=grace_seconds)
        except TimeoutError:
            log.warning(
                "Process ignored SIGTERM; sending SIGKILL.",
                grace_seconds=grace_seconds,
            )
            session.kill()
            return
        log.debug("Process exited after SIGTERM.")

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code.

        Raises ``RunFailedError`` for a non-zero exit and
        ``SignalTerminationError`` when the process was ended by a signal.
        Both carry ``exit_code``.
        """

        session = self.session
        if session is None:
            raise NotStartedError("instance was not successfully started", exit_code=-1)

        status = await session.wait()
        error = status.error
        if error is None:
            return status.returncode
        if isinstance(error, ExitStatusError):
            raise RunFailedError(self.builder.name, error)
        if isinstance(error, SignalTerminationError):
            raise error.with_builder(self.builder.name)
        raise error

"""Error taxonomy for external builder process lifecycles."""

from __future__ import annotations

import signal

UNKNOWN_EXIT_CODE = -1


class ExternalBuilderError(RuntimeError):
    """Base class for errors raised while supervising a builder process."""

    def __init__(self, message: str, *, exit_code: int = UNKNOWN_EXIT_CODE) -> None:
        self.exit_code = exit_code
        super().__init__(message)


class SpawnError(ExternalBuilderError):
    """Raised when the OS could not create the child process."""

    def __init__(self, command: tuple[str, ...], cause: OSError) -> None:
        self.command = command
        program = command[0] if command else "<empty>"
        super().__init__(f"could not start '{program}': {cause.strerror or cause}")


class NotStartedError(ExternalBuilderError):
    """Raised when stop/wait is called on an instance without a session."""


class InstanceAlreadyStartedError(ExternalBuilderError):
    """Raised when start is called while a previous session is still running."""


class SignalDeliveryError(ExternalBuilderError):
    """Raised when a signal could not be delivered to a live process."""

    def __init__(self, signum: signal.Signals, pid: int, cause: OSError) -> None:
        self.signum = signum
        self.pid = pid
        super().__init__(f"failed to send {signum.name} to process {pid}: {cause}")


class ExitStatusError(ExternalBuilderError):
    """The process exited on its own with a non-zero status."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"exit status {exit_code}", exit_code=exit_code)


class SignalTerminationError(ExternalBuilderError):
    """The process was ended by a signal."""

    def __init__(self, signum: int, *, builder_name: str | None = None) -> None:
        self.signum = signum
        self.builder_name = builder_name
        super().__init__(f"signal: {describe_signal(signum)}", exit_code=-signum)

    def with_builder(self, builder_name: str) -> SignalTerminationError:
        return SignalTerminationError(self.signum, builder_name=builder_name)


class RunFailedError(ExternalBuilderError):
    """The builder's run command exited with a non-zero status."""

    def __init__(self, builder_name: str, cause: ExitStatusError) -> None:
        self.builder_name = builder_name
        super().__init__(
            f"builder '{builder_name}' run failed: {cause}",
            exit_code=cause.exit_code,
        )


_SIGNAL_DESCRIPTIONS: dict[int, str] = {
    signal.SIGTERM: "terminated",
    signal.SIGKILL: "killed",
    signal.SIGINT: "interrupt",
    signal.SIGHUP: "hangup",
    signal.SIGQUIT: "quit",
    signal.SIGABRT: "aborted",
    signal.SIGSEGV: "segmentation fault",
    signal.SIGPIPE: "broken pipe",
}


def describe_signal(signum: int) -> str:
    """Return the short human description used in termination messages."""

    description = _SIGNAL_DESCRIPTIONS.get(signum)
    if description is not None:
        return description
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"

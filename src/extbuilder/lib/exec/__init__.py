"""Process lifecycle primitives."""

from extbuilder.lib.exec.errors import (
    ExitStatusError,
    ExternalBuilderError,
    InstanceAlreadyStartedError,
    NotStartedError,
    RunFailedError,
    SignalDeliveryError,
    SignalTerminationError,
    SpawnError,
    describe_signal,
)
from extbuilder.lib.exec.process_groups import signal_process_group
from extbuilder.lib.exec.session import ExitCallback, ExitStatus, Session

__all__ = [
    "ExitCallback",
    "ExitStatus",
    "ExitStatusError",
    "ExternalBuilderError",
    "InstanceAlreadyStartedError",
    "NotStartedError",
    "RunFailedError",
    "Session",
    "SignalDeliveryError",
    "SignalTerminationError",
    "SpawnError",
    "describe_signal",
    "signal_process_group",
]

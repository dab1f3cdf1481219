"""Process-group helpers for subprocess lifecycle management."""

from __future__ import annotations

import asyncio
import os
import signal

from extbuilder.lib.exec.errors import SignalDeliveryError


def signal_process_group(
    process: asyncio.subprocess.Process,
    signum: signal.Signals,
) -> bool:
    """Send one signal to the subprocess process group.

    Returns False when the process is already gone. The child may exit between
    returncode checks and signal delivery, so ProcessLookupError is treated as
    an expected race. Any other failure raises SignalDeliveryError.
    """

    if process.returncode is not None:
        return False

    pid = process.pid
    try:
        pgid = os.getpgid(pid)
        os.killpg(pgid, signum)
    except ProcessLookupError:
        return False
    except OSError as exc:
        raise SignalDeliveryError(signum, pid, exc) from exc
    return True

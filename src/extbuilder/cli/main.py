"""Cyclopts CLI entry point for extbuilder."""

from __future__ import annotations

import asyncio
import signal
import sys
from contextvars import ContextVar
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import structlog
from cyclopts import App, Parameter

from extbuilder import __version__
from extbuilder.lib.builder import Builder, Instance, PeerConnection, TLSConfig
from extbuilder.lib.config import load_config
from extbuilder.lib.exec.errors import (
    ExternalBuilderError,
    RunFailedError,
    SignalTerminationError,
)
from extbuilder.lib.logging import configure_logging
from extbuilder.lib.types import PackageId

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = structlog.get_logger(__name__)

_FORWARDED_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


@dataclass(frozen=True, slots=True)
class LoggingOptions:
    json_mode: bool = False
    verbosity: int = 0


_LOGGING_OPTIONS: ContextVar[LoggingOptions | None] = ContextVar("_LOGGING_OPTIONS", default=None)


app = App(
    name="extbuilder",
    help="Supervise external builder processes",
    version=__version__,
    help_formatter="plain",
)


def _read_optional(path: Path | None) -> bytes:
    if path is None:
        return b""
    return path.read_bytes()


def _tls_config(
    client_cert: Path | None,
    client_key: Path | None,
    root_cert: Path | None,
) -> TLSConfig | None:
    if client_cert is None and client_key is None and root_cert is None:
        return None
    if (client_cert is None) != (client_key is None):
        raise ValueError("--client-cert and --client-key must be given together.")
    return TLSConfig(
        client_cert=_read_optional(client_cert),
        client_key=_read_optional(client_key),
        root_cert=_read_optional(root_cert),
    )


def signal_exit_code(error: SignalTerminationError) -> int:
    """Shell convention for a child ended by a signal."""

    return 128 + error.signum


async def run_instance(instance: Instance, connection: PeerConnection) -> int:
    """Start ``instance``, stop it on SIGINT/SIGTERM, and return its exit code."""

    await instance.start(connection)

    loop = asyncio.get_running_loop()
    stop_tasks: set[asyncio.Task[None]] = set()

    def _request_stop(signum: signal.Signals) -> None:
        logger.info("Received signal; stopping builder.", signal=signum.name)
        task = loop.create_task(instance.stop())
        stop_tasks.add(task)

    for signum in _FORWARDED_SIGNALS:
        loop.add_signal_handler(signum, _request_stop, signum)
    try:
        try:
            return await instance.wait()
        except SignalTerminationError as exc:
            logger.warning("Builder was stopped.", error=str(exc))
            return signal_exit_code(exc)
        except RunFailedError as exc:
            logger.error("Builder run failed.", error=str(exc))
            return exc.exit_code
    finally:
        for signum in _FORWARDED_SIGNALS:
            loop.remove_signal_handler(signum)
        for task in stop_tasks:
            try:
                await task
            except ExternalBuilderError:
                logger.exception("Failed to stop builder.")


@app.command(name="run")
def run(
    location: Annotated[
        Path,
        Parameter(help="Builder installation directory containing bin/run."),
    ],
    build_dir: Annotated[
        Path,
        Parameter(help="Build output directory passed to bin/run."),
    ],
    *,
    package_id: Annotated[
        str,
        Parameter(name="--package-id", help="Identifier of the package being run."),
    ],
    peer_address: Annotated[
        str,
        Parameter(name="--peer-address", help="Address the builder connects back to."),
    ],
    name: Annotated[
        str,
        Parameter(name="--name", help="Builder name used in error messages."),
    ] = "",
    msp_id: Annotated[
        str,
        Parameter(name="--msp-id", help="MSP identifier forwarded to the builder."),
    ] = "",
    client_cert: Annotated[
        Path | None,
        Parameter(name="--client-cert", help="PEM client certificate file."),
    ] = None,
    client_key: Annotated[
        Path | None,
        Parameter(name="--client-key", help="PEM client key file."),
    ] = None,
    root_cert: Annotated[
        Path | None,
        Parameter(name="--root-cert", help="PEM root certificate file."),
    ] = None,
    term_timeout: Annotated[
        float | None,
        Parameter(
            name="--term-timeout",
            help="Seconds between SIGTERM and SIGKILL when stopping.",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        Parameter(name="--config", help="Path to an extbuilder.toml file."),
    ] = None,
) -> None:
    """Run a builder and supervise it until it exits."""

    loaded = load_config(config)
    options = _LOGGING_OPTIONS.get() or LoggingOptions()
    if options.verbosity == 0 and loaded.log_verbosity > 0:
        configure_logging(json_mode=options.json_mode, verbosity=loaded.log_verbosity)

    builder = Builder(
        location=location,
        name=name,
        msp_id=msp_id,
        run_dir_root=loaded.run_dir_root,
    )
    instance = Instance(
        package_id=PackageId(package_id),
        builder=builder,
        build_dir=build_dir,
        term_timeout=term_timeout if term_timeout is not None else loaded.term_timeout_seconds,
    )
    connection = PeerConnection(
        address=peer_address,
        tls_config=_tls_config(client_cert, client_key, root_cert),
    )

    exit_code = asyncio.run(run_instance(instance, connection))
    if exit_code != 0:
        raise SystemExit(exit_code)


def _extract_logging_flags(argv: Sequence[str]) -> tuple[list[str], LoggingOptions]:
    json_mode = False
    verbosity = 0
    cleaned: list[str] = []
    for arg in argv:
        if arg == "--json":
            json_mode = True
            continue
        if arg in {"--verbose", "-v"}:
            verbosity += 1
            continue
        if arg == "-vv":
            verbosity += 2
            continue
        cleaned.append(arg)
    return cleaned, LoggingOptions(json_mode=json_mode, verbosity=verbosity)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point used by `extbuilder` and `python -m extbuilder`."""

    args = list(sys.argv[1:] if argv is None else argv)
    cleaned_args, options = _extract_logging_flags(args)
    configure_logging(json_mode=options.json_mode, verbosity=options.verbosity)

    token = _LOGGING_OPTIONS.set(options)
    try:
        try:
            app(cleaned_args)
        except ExternalBuilderError as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(1) from None
        except (ValueError, FileNotFoundError, OSError) as exc:
            print(f"error: {exc}", file=sys.stderr)
            raise SystemExit(1) from None
    finally:
        _LOGGING_OPTIONS.reset(token)

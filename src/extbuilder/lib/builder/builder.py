"""Builder recipe: how to turn a package and a connection into a run command."""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from extbuilder.lib.builder.connection import PeerConnection, RunMetadata
from extbuilder.lib.exec.session import ExitStatus, Session
from extbuilder.lib.types import PackageId

RUN_PROGRAM = Path("bin") / "run"
RUN_DIR_PREFIX = "extbuilder-run-"

# Builders always see these so dynamic linking and temp files keep working.
DEFAULT_PROPAGATED_ENV = frozenset({"LD_LIBRARY_PATH", "LIBPATH", "PATH", "TMPDIR"})


def propagated_env(
    base_env: Mapping[str, str],
    propagate: Collection[str],
) -> dict[str, str]:
    """Return the subset of ``base_env`` a builder is allowed to see."""

    allowed = DEFAULT_PROPAGATED_ENV | {name for name in propagate}
    return {key: value for key, value in base_env.items() if key in allowed}


def _default_logger() -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger("extbuilder.builder")


@dataclass(slots=True)
class Builder:
    """Launch recipe for one external builder installation.

    ``name`` is used verbatim in run failure messages and defaults to the last
    component of ``location``.
    """

    location: Path
    name: str = ""
    msp_id: str = ""
    propagate_environment: tuple[str, ...] = ()
    run_dir_root: Path | None = None
    logger: structlog.typing.FilteringBoundLogger = field(default_factory=_default_logger)

    def __post_init__(self) -> None:
        self.location = Path(self.location)
        if not self.name:
            self.name = self.location.name

    @property
    def run_program(self) -> Path:
        return self.location / RUN_PROGRAM

    def run_command(self, build_dir: Path, run_dir: Path) -> tuple[str, ...]:
        return (str(self.run_program), str(build_dir), str(run_dir))

    def child_env(self) -> dict[str, str]:
        return propagated_env(os.environ, self.propagate_environment)

    async def run(
        self,
        package_id: PackageId,
        build_dir: Path,
        connection: PeerConnection,
    ) -> Session:
        """Write run metadata into a fresh run directory and start ``bin/run``.

        The run directory is removed once the process exits, or immediately if
        the process cannot be started.
        """

        if self.run_dir_root is not None:
            self.run_dir_root.mkdir(parents=True, exist_ok=True)
        run_dir = Path(tempfile.mkdtemp(prefix=RUN_DIR_PREFIX, dir=self.run_dir_root))
        logger = self.logger.bind(builder=self.name, package_id=package_id)

        async def _remove_run_dir(status: ExitStatus) -> None:
            _ = status
            await asyncio.to_thread(shutil.rmtree, run_dir, ignore_errors=True)

        try:
            metadata = RunMetadata.from_connection(
                package_id=package_id,
                msp_id=self.msp_id,
                connection=connection,
            )
            metadata.write(run_dir)
            return await Session.start(
                logger,
                self.run_command(build_dir, run_dir),
                env=self.child_env(),
                stdin_payload=metadata.to_json_bytes(),
                exit_callbacks=(_remove_run_dir,),
            )
        except BaseException:
            shutil.rmtree(run_dir, ignore_errors=True)
            raise

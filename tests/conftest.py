"""Shared pytest fixtures: small shell builders written into tmp_path."""

from __future__ import annotations

import asyncio
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

_GOOD_RUN = """
    BUILD_DIR="$1"
    RUN_DIR="$2"
    cp "$RUN_DIR/chaincode.json" "$BUILD_DIR/chaincode.json"
    for cert in client.crt client.key root.crt; do
        if [ -f "$RUN_DIR/$cert" ]; then
            cp "$RUN_DIR/$cert" "$BUILD_DIR/$cert"
        fi
    done
    cat > "$BUILD_DIR/stdin.json"
    env > "$BUILD_DIR/env.txt"
    printf '%s' "$RUN_DIR" > "$BUILD_DIR/run_dir.txt"
    echo "hello from builder" >&2
    exit 0
"""

_FAIL_RUN = """
    echo "build went sideways" >&2
    exit 1
"""

_SLEEP_RUN = """
    touch "$1/ready"
    exec sleep 90
"""

_IGNORE_TERM_RUN = """
    trap '' TERM
    touch "$1/ready"
    sleep 90
"""


def write_builder(root: Path, name: str, body: str) -> Path:
    location = root / name
    run = location / "bin" / "run"
    run.parent.mkdir(parents=True)
    run.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip(), encoding="utf-8")
    run.chmod(0o755)
    return location


@dataclass(frozen=True, slots=True)
class BuilderPaths:
    good: Path
    fail: Path
    sleep: Path
    ignore_term: Path
    build_dir: Path
    run_dir_root: Path


@pytest.fixture
def builders(tmp_path: Path) -> BuilderPaths:
    root = tmp_path / "builders"
    build_dir = tmp_path / "build"
    build_dir.mkdir()
    return BuilderPaths(
        good=write_builder(root, "goodbuilder", _GOOD_RUN),
        fail=write_builder(root, "failbuilder", _FAIL_RUN),
        sleep=write_builder(root, "sleepbuilder", _SLEEP_RUN),
        ignore_term=write_builder(root, "ignoreterm", _IGNORE_TERM_RUN),
        build_dir=build_dir,
        run_dir_root=tmp_path / "runs",
    )


async def _wait_for_file(path: Path, timeout: float = 5.0) -> None:
    """Poll until ``path`` exists; the builders touch a file once they are ready."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not path.exists():
        if loop.time() > deadline:
            raise AssertionError(f"timed out waiting for {path}")
        await asyncio.sleep(0.02)


@pytest.fixture
def wait_for_file() -> Callable[..., Awaitable[None]]:
    return _wait_for_file

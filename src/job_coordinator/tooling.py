"""Console entry points wrapping the project's quality tools."""

from __future__ import annotations

import subprocess
import sys

SOURCE_PATHS = ("src", "tests")


def _run_tool(*command: str) -> None:
    completed_process = subprocess.run([*command, *sys.argv[1:]], check=False)
    if completed_process.returncode != 0:
        raise SystemExit(completed_process.returncode)


def lint() -> None:
    _run_tool("ruff", "check", *SOURCE_PATHS)


def format() -> None:
    _run_tool("black", *SOURCE_PATHS)


def typecheck() -> None:
    _run_tool("mypy", *SOURCE_PATHS)


def test() -> None:
    _run_tool("pytest")

"""Tests that each package imports cleanly on its own."""

import subprocess
import sys

import pytest


@pytest.mark.parametrize(
    "module",
    [
        "vigil_cli.database",
        "vigil_cli.database.connection",
        "vigil_cli.database.repositories",
        "vigil_cli.scheduler",
        "vigil_cli.scheduler.job",
        "vigil_cli.daemon",
        "vigil_cli.main",
    ],
)
def test_imports_in_fresh_interpreter(module: str) -> None:
    """Import order must not matter between the database and scheduler packages."""
    proc = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert proc.returncode == 0, proc.stderr

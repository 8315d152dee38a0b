"""Daemon module for Vigil.

Runs the periodic due-job tick as a foreground or background service.
"""

from vigil_cli.daemon.pid import PIDFile
from vigil_cli.daemon.service import (
    VigilDaemon,
    build_runner,
    daemonize,
    run_daemon,
)

__all__ = [
    "VigilDaemon",
    "PIDFile",
    "build_runner",
    "daemonize",
    "run_daemon",
]

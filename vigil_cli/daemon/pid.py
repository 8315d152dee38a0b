"""PID file for the Vigil daemon."""

import os
from pathlib import Path
from typing import Optional

PID_FILE_NAME = "vigil.pid"


class PIDFile:
    """Track the running daemon through a file holding its PID.

    Example:
        pid_file = PIDFile.for_data_dir(config.data_dir)
        if pid_file.is_running():
            raise SystemExit("Daemon already running")
        pid_file.create()
    """

    def __init__(self, path: Path):
        self.path = path

    @classmethod
    def for_data_dir(cls, data_dir: Path) -> "PIDFile":
        return cls(Path(data_dir) / PID_FILE_NAME)

    def create(self) -> None:
        """Write the current process ID."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))

    def remove(self) -> None:
        """Delete the file if present."""
        self.path.unlink(missing_ok=True)

    def read(self) -> Optional[int]:
        """PID stored in the file, or None if missing or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except (FileNotFoundError, ValueError, OSError):
            return None

    def is_running(self) -> bool:
        """Whether the recorded process is alive."""
        pid = self.read()
        if pid is None:
            return False
        try:
            # Signal 0 only checks that the process exists
            os.kill(pid, 0)
        except PermissionError:
            # Alive but owned by another user
            return True
        except OSError:
            return False
        return True

    def clear_if_stale(self) -> bool:
        """Remove the file when its process is gone.

        Returns:
            True if a stale file was removed
        """
        if self.read() is None or self.is_running():
            return False
        self.remove()
        return True

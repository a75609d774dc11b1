"""Daemon supervisor for service processes.

Handles:
- Launching one external service binary per call
- Redirecting its stdout/stderr to an append-only log file
- Reaping the exit status in the background to release the log file

There is no stop, restart or crash notification: the reaper
thread only closes the log file and has no path back into the installer.
Readiness is the prober's job.
"""

from __future__ import annotations

import os
import subprocess
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .errors import LaunchError
from .shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DaemonHandle:
    """A launched daemon process."""

    command: str
    args: tuple[str, ...]
    log_path: Path
    pid: int

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


def is_alive(pid: int) -> bool:
    """Check if a process exists.

    Args:
        pid: Process ID

    Returns:
        True if the process exists (even if owned by another user).
    """
    try:
        os.kill(pid, 0)  # Signal 0 = check existence
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but we can't signal it (different user)
        return True


@dataclass
class DaemonSupervisor:
    """Launch service daemons and detach from them."""

    env: Mapping[str, str] | None = None
    _reapers: list[threading.Thread] = field(default_factory=list, repr=False)

    def launch(
        self,
        command: str | Path,
        args: Sequence[str] = (),
        log_path: str | Path = "",
        env: Mapping[str, str] | None = None,
    ) -> DaemonHandle:
        """Start a daemon with output appended to log_path.

        Returns once the OS has created the process, not once it exits.

        Args:
            command: Executable path
            args: Command-line arguments
            log_path: Log file (created if absent, appended if present)
            env: Extra environment entries merged over the supervisor's base

        Raises:
            LaunchError: If the log file cannot be opened or the process
                cannot be started.
        """
        command = str(command)
        log_path = Path(log_path)

        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_file = open(log_path, "ab")
        except OSError as e:
            raise LaunchError(
                message=f"Failed to open log file {log_path}: {e}",
                command=command,
                log_path=log_path,
            ) from e

        process_env = dict(self.env) if self.env is not None else dict(os.environ)
        if env:
            process_env.update(env)

        try:
            process = subprocess.Popen(
                [command, *args],
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                env=process_env,
                start_new_session=True,
            )
        except OSError as e:
            log_file.close()
            raise LaunchError(
                message=f"Failed to start {command}: {e}",
                command=command,
                log_path=log_path,
            ) from e

        reaper = threading.Thread(
            target=self._reap,
            args=(process, log_file),
            name=f"reaper-{process.pid}",
            daemon=True,
        )
        reaper.start()
        self._reapers.append(reaper)

        logger.info("daemon_started", command=command, pid=process.pid, log=str(log_path))
        return DaemonHandle(command=command, args=tuple(args), log_path=log_path, pid=process.pid)

    @staticmethod
    def _reap(process: subprocess.Popen, log_file) -> None:
        """Wait for exit, then release the log file."""
        try:
            returncode = process.wait()
            logger.debug("daemon_exited", pid=process.pid, returncode=returncode)
        finally:
            log_file.close()

"""Operator diagnostics captured when a service never becomes ready.

Process liveness plus the tail of the service log. Purely informational:
nothing here influences whether a step succeeds.
"""

from __future__ import annotations

import subprocess
from collections import deque
from pathlib import Path

from .supervisor import is_alive

DEFAULT_TAIL_LINES = 20


def process_status(process_name: str, pid: int | None = None) -> str:
    """Describe whether the service process is running.

    With the launched pid the answer is exact. Without one, fall back to
    pgrep, which also matches any command line that mentions process_name.
    """
    if pid is not None:
        state = "running" if is_alive(pid) else "not running"
        return f"{process_name} (pid {pid}) is {state}"

    try:
        result = subprocess.run(
            ["pgrep", "-a", "-f", process_name],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except FileNotFoundError:
        return "process check unavailable (pgrep not found)"
    except subprocess.TimeoutExpired:
        return "process check timed out"

    if result.returncode == 0 and result.stdout.strip():
        return f"{process_name} is running:\n{result.stdout.strip()}"
    return f"{process_name} is not running"


def tail(path: Path, lines: int = DEFAULT_TAIL_LINES) -> str | None:
    """Last lines of a text file, or None if it cannot be read."""
    try:
        with open(path, errors="replace") as f:
            return "".join(deque(f, maxlen=lines)).rstrip("\n")
    except OSError:
        return None


def collect(
    process_name: str,
    log_path: Path | None = None,
    lines: int = DEFAULT_TAIL_LINES,
    pid: int | None = None,
) -> str:
    """Process liveness and recent log output for one service."""
    sections = [process_status(process_name, pid)]
    if log_path is not None:
        content = tail(log_path, lines)
        if content is None:
            sections.append(f"log {log_path} is not readable")
        elif content:
            sections.append(f"last {lines} lines of {log_path}:\n{content}")
        else:
            sections.append(f"log {log_path} is empty")
    return "\n".join(sections)


def for_probe(spec) -> str:
    """Diagnostics hook for ReadinessProber: uses the ProbeSpec name, pid and log file."""
    return collect(spec.name, spec.log_path, pid=spec.pid)

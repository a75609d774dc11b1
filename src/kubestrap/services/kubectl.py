"""Thin kubectl wrapper bound to the installer's kubeconfig."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ..config import InstallerConfig
from ..readiness import CommandTarget

ALREADY_EXISTS = "AlreadyExists"


@dataclass
class KubectlResult:
    """Result of a kubectl invocation."""

    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def already_exists(self) -> bool:
        return ALREADY_EXISTS in self.output or "already exists" in self.output


class Kubectl:
    """Run kubectl against the freshly installed cluster."""

    def __init__(self, config: InstallerConfig, timeout: float = 30.0):
        self.config = config
        self.timeout = timeout

    @property
    def path(self) -> str:
        return str(self.config.binary("kubectl"))

    def argv(self, *args: str) -> list[str]:
        """Full command line for args."""
        return [self.path, "--kubeconfig", str(self.config.kubeconfig), *args]

    def target(self, *args: str) -> CommandTarget:
        """A readiness probe target that succeeds when the command exits 0."""
        return CommandTarget(self.argv(*args))

    def run(self, *args: str) -> KubectlResult:
        """Run kubectl and capture combined output.

        Never raises for a non-zero exit; a missing binary or a timeout is
        reported as a failed result.
        """
        try:
            result = subprocess.run(
                self.argv(*args),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return KubectlResult(127, f"kubectl not found at {self.path}")
        except subprocess.TimeoutExpired:
            return KubectlResult(124, f"kubectl {' '.join(args)} timed out after {self.timeout}s")

        output = (result.stdout or "") + (result.stderr or "")
        return KubectlResult(result.returncode, output.strip())

"""Error taxonomy for the installer.

Every failure that can stop a step derives from InstallerError. The pipeline
wraps whatever a step raises in StepFailure so the report always carries the
step name next to the underlying cause.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class InstallerError(Exception):
    """Base error class for installer errors."""

    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass
class KeyGenerationError(InstallerError):
    """Asymmetric key generation failed. Always fatal."""

    message: str = "Key generation failed"


@dataclass
class SigningError(InstallerError):
    """Certificate construction or signing failed. Always fatal."""

    message: str = "Certificate signing failed"


@dataclass
class LaunchError(InstallerError):
    """A daemon process could not be started."""

    message: str = "Failed to launch process"
    command: str | None = None
    log_path: Path | None = None


@dataclass
class ReadinessTimeout(InstallerError):
    """A service never satisfied its readiness probe policy."""

    message: str = "Service did not become ready"
    attempts: int = 0
    last_error: str | None = None
    diagnostics: str | None = None
    log_path: Path | None = None


@dataclass
class StepFailure(InstallerError):
    """A pipeline step failed. Wraps the underlying cause."""

    message: str = "Step failed"
    step: str = ""
    cause: BaseException | None = None

    @classmethod
    def wrap(cls, step: str, cause: BaseException) -> StepFailure:
        """Wrap an exception raised by a step action."""
        if isinstance(cause, StepFailure):
            return cause
        failure = cls(message=f"failed at step '{step}': {cause}", step=step, cause=cause)
        failure.__cause__ = cause
        return failure

    @property
    def log_path(self) -> Path | None:
        """Log file the operator should inspect, when the cause names one."""
        return getattr(self.cause, "log_path", None) or self.data.get("log_path")


@dataclass
class PrerequisiteError(InstallerError):
    """Binaries or configuration files the installer expects are missing."""

    message: str = "Prerequisites missing"
    missing: list[str] = field(default_factory=list)


@dataclass
class VerificationError(InstallerError):
    """A critical post-install check failed."""

    message: str = "Verification failed"
    check: str = ""

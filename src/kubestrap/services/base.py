"""Common shape of a control-plane service step.

A service step is always: prepare the host, launch the daemon through the
supervisor, then block on one or more readiness probes. Subclasses only
describe the command line and what "ready" means.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..config import InstallerConfig
from ..pki import PkiLayout
from ..readiness import ProbeSpec, ReadinessProber
from ..readiness.prober import AttemptCallback
from ..shared.logging import get_logger
from ..supervisor import DaemonHandle, DaemonSupervisor

logger = get_logger(__name__)


@dataclass
class ServiceContext:
    """Collaborators shared by every service step."""

    config: InstallerConfig
    supervisor: DaemonSupervisor
    prober: ReadinessProber
    on_attempt: AttemptCallback | None = None

    @property
    def pki(self) -> PkiLayout:
        return PkiLayout.from_config(self.config)


class Service:
    """Base class for a supervised service."""

    name: str = ""
    binary_name: str = ""

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx
        self.config = ctx.config
        self.handle: DaemonHandle | None = None

    @property
    def binary(self) -> Path:
        return self.config.binary(self.binary_name or self.name)

    @property
    def log_path(self) -> Path:
        return self.config.log_file(self.name)

    def args(self) -> Sequence[str]:
        raise NotImplementedError

    def env(self) -> Mapping[str, str] | None:
        return None

    def probe_specs(self) -> Sequence[ProbeSpec]:
        return ()

    async def prepare(self) -> None:
        """Host preparation before launch."""

    async def after_ready(self) -> None:
        """Work that needs the service up (registration, labels)."""

    async def wait_ready(self) -> None:
        for spec in self.probe_specs():
            await self.ctx.prober.wait_until_ready(spec, self.ctx.on_attempt)

    async def start(self) -> DaemonHandle:
        """Prepare, launch and wait for the service."""
        await self.prepare()
        self.handle = self.ctx.supervisor.launch(self.binary, self.args(), self.log_path, env=self.env())
        logger.info("waiting_for_service", service=self.name, pid=self.handle.pid)
        await self.wait_ready()
        await self.after_ready()
        return self.handle

    def spec(self, targets, **kwargs) -> ProbeSpec:
        """ProbeSpec with this service's name, log file and launched pid filled in."""
        kwargs.setdefault("name", self.name)
        kwargs.setdefault("log_path", self.log_path)
        kwargs.setdefault("pid", self.handle.pid if self.handle else None)
        return ProbeSpec(targets=targets, **kwargs)


def path_env(config: InstallerConfig, *extra: Path | str) -> dict[str, str]:
    """PATH extended with the service binary directory and extra entries."""
    parts = [config.search_path, str(config.bin_dir), *(str(p) for p in extra)]
    return {"PATH": ":".join(parts)}

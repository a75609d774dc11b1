"""Prerequisite detection for the install command.

The installer never downloads or templates anything: it checks that the
service binaries and static configuration files are at their canonical
paths, and that the control-plane ports are not already taken.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path

from .config import InstallerConfig
from .errors import PrerequisiteError
from .shared.logging import get_logger
from .shared.network import LOOPBACK_IP

logger = get_logger(__name__)

SERVICE_BINARIES = (
    "etcd",
    "kube-apiserver",
    "kube-controller-manager",
    "kube-scheduler",
    "kubelet",
    "kubectl",
    "containerd",
    "crictl",
)

CONTROL_PLANE_PORTS = {
    2379: "etcd",
    6443: "kube-apiserver",
    10248: "kubelet",
    10257: "kube-controller-manager",
    10259: "kube-scheduler",
}


@dataclass
class BinaryCheck:
    """Presence of one required file."""

    name: str
    path: Path
    present: bool
    executable: bool = False
    error: str | None = None


@dataclass
class PortStatus:
    """Result of port availability check."""

    port: int
    available: bool
    service_name: str | None = None


class PrerequisiteChecker:
    """Detect missing binaries, configuration files and busy ports."""

    def __init__(self, config: InstallerConfig):
        self.config = config

    def check_binaries(self) -> list[BinaryCheck]:
        results = []
        for name in SERVICE_BINARIES:
            path = self.config.binary(name)
            if not path.is_file():
                results.append(BinaryCheck(name, path, False, error=f"{name} not found at {path}"))
            elif not os.access(path, os.X_OK):
                results.append(BinaryCheck(name, path, True, error=f"{path} is not executable"))
            else:
                results.append(BinaryCheck(name, path, True, executable=True))
        return results

    def check_config_files(self) -> list[BinaryCheck]:
        files = {
            "containerd config": self.config.containerd_config,
            "kubelet config": self.config.kubelet_config,
            "kubelet kubeconfig": self.config.kubelet_kubeconfig,
            "admin kubeconfig": self.config.kubeconfig,
        }
        results = []
        for name, path in files.items():
            present = path.is_file()
            error = None if present else f"{name} not found at {path}"
            results.append(BinaryCheck(name, path, present, error=error))
        return results

    def check_ports(self, ports: dict[int, str] | None = None) -> list[PortStatus]:
        """Check if ports are available.

        Args:
            ports: dict of {port_number: service_name}

        Returns:
            List of PortStatus for each checked port.
        """
        ports = CONTROL_PLANE_PORTS if ports is None else ports
        return [PortStatus(port, self._is_port_available(port), service) for port, service in ports.items()]

    def _is_port_available(self, port: int) -> bool:
        """Check if nothing listens on the port locally."""
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.settimeout(1)
                return sock.connect_ex((LOOPBACK_IP, port)) != 0
        except OSError:
            return False

    def run(self) -> None:
        """Check everything; busy ports only warn.

        Raises:
            PrerequisiteError: If any binary or configuration file is missing
        """
        for status in self.check_ports():
            if not status.available:
                logger.warning("port_in_use", port=status.port, service=status.service_name)

        problems = [c for c in self.check_binaries() + self.check_config_files() if c.error]
        for check in problems:
            logger.warning("prerequisite_missing", name=check.name, path=str(check.path), error=check.error)

        if problems:
            raise PrerequisiteError(
                message=f"{len(problems)} prerequisite(s) missing: "
                + ", ".join(check.name for check in problems),
                missing=[str(check.path) for check in problems],
            )
        logger.info("prerequisites_present", binaries=len(SERVICE_BINARIES))

"""kube-scheduler."""

from __future__ import annotations

from ..readiness import TcpTarget
from ..shared.network import LOOPBACK_IP
from .base import Service

SECURE_PORT = 10259


class Scheduler(Service):
    name = "scheduler"
    binary_name = "kube-scheduler"

    def args(self) -> list[str]:
        return [
            f"--kubeconfig={self.config.kubeconfig}",
            "--leader-elect=false",
            "--bind-address=0.0.0.0",
            f"--secure-port={SECURE_PORT}",
            "--v=2",
        ]

    def probe_specs(self):
        return [
            self.spec(
                [TcpTarget(LOOPBACK_IP, SECURE_PORT)],
                max_attempts=60,
                interval=1.0,
            )
        ]

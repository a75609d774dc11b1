"""kube-controller-manager."""

from __future__ import annotations

from ..readiness import TcpTarget
from ..shared.network import LOOPBACK_IP
from .apiserver import SERVICE_CLUSTER_IP_RANGE
from .base import Service

SECURE_PORT = 10257


class ControllerManager(Service):
    """Controller manager using the admin kubeconfig and the service-account key."""

    name = "controller-manager"
    binary_name = "kube-controller-manager"

    def args(self) -> list[str]:
        pki = self.ctx.pki
        return [
            f"--kubeconfig={self.config.kubeconfig}",
            "--leader-elect=false",
            f"--service-cluster-ip-range={SERVICE_CLUSTER_IP_RANGE}",
            "--cluster-name=kubernetes",
            f"--root-ca-file={pki.ca_cert}",
            f"--service-account-private-key-file={pki.sa_key}",
            "--use-service-account-credentials=true",
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

"""etcd: the cluster's consensus store."""

from __future__ import annotations

from ..readiness import HttpTarget
from ..shared.network import LOOPBACK_IP
from .base import Service

CLIENT_PORT = 2379
PEER_PORT = 2380


class Etcd(Service):
    """Single-member etcd cluster listening on all interfaces."""

    name = "etcd"

    def args(self) -> list[str]:
        host = self.config.host_ip
        return [
            "--name=default",
            f"--data-dir={self.config.etcd_data_dir}",
            f"--advertise-client-urls=http://{host}:{CLIENT_PORT}",
            f"--listen-client-urls=http://0.0.0.0:{CLIENT_PORT}",
            f"--listen-peer-urls=http://0.0.0.0:{PEER_PORT}",
            f"--initial-advertise-peer-urls=http://{host}:{PEER_PORT}",
            f"--initial-cluster=default=http://{host}:{PEER_PORT}",
            "--initial-cluster-state=new",
            "--initial-cluster-token=kubestrap-etcd",
        ]

    def probe_specs(self):
        targets = [HttpTarget(f"http://{self.config.host_ip}:{CLIENT_PORT}/health")]
        if self.config.host_ip != LOOPBACK_IP:
            targets.append(HttpTarget(f"http://{LOOPBACK_IP}:{CLIENT_PORT}/health"))
        return [
            self.spec(
                targets,
                success_threshold=1,
                max_attempts=30,
                interval=1.0,
                per_attempt_timeout=2.0,
            )
        ]

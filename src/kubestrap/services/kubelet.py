"""kubelet: the node agent.

Once the kubelet's own health endpoint answers, the step also waits for the
node object to appear in the API server, lifts the control-plane taint so
workloads can schedule on the single node, and labels the node.
"""

from __future__ import annotations

import socket

from ..readiness import HttpTarget
from ..shared.logging import get_logger
from ..shared.network import LOOPBACK_IP
from .base import Service, path_env
from .kubectl import Kubectl

logger = get_logger(__name__)

HEALTHZ_PORT = 10248
PAUSE_IMAGE = "registry.k8s.io/pause:3.10"
MAX_PODS = 10
CONTROL_PLANE_TAINT = "node-role.kubernetes.io/control-plane:NoSchedule-"
MASTER_LABEL = "node-role.kubernetes.io/master="

# kubectl taint answers these when there is nothing to remove
_TAINT_ABSENT = ("not found", "not tainted")


def node_name() -> str:
    return socket.gethostname().lower()


class Kubelet(Service):
    """kubelet talking to containerd over CRI."""

    name = "kubelet"

    def __init__(self, ctx, kubectl: Kubectl | None = None):
        super().__init__(ctx)
        self.kubectl = kubectl or Kubectl(ctx.config)
        self.node = node_name()

    async def prepare(self) -> None:
        self.config.kubelet_pki_dir.mkdir(parents=True, exist_ok=True)

    def args(self) -> list[str]:
        return [
            f"--kubeconfig={self.config.kubelet_kubeconfig}",
            f"--config={self.config.kubelet_config}",
            f"--root-dir={self.config.kubelet_dir}",
            f"--cert-dir={self.config.kubelet_pki_dir}",
            f"--hostname-override={self.node}",
            f"--pod-infra-container-image={PAUSE_IMAGE}",
            f"--node-ip={self.config.host_ip}",
            f"--container-runtime-endpoint=unix://{self.config.containerd_socket}",
            "--cloud-provider=external",
            "--cgroup-driver=cgroupfs",
            f"--max-pods={MAX_PODS}",
            "--runtime-request-timeout=5m",
            "--v=2",
        ]

    def env(self):
        return path_env(self.config, self.config.cni_bin_dir, "/usr/sbin")

    def probe_specs(self):
        return [
            self.spec(
                [HttpTarget(f"http://{LOOPBACK_IP}:{HEALTHZ_PORT}/healthz")],
                max_attempts=60,
                interval=1.0,
                per_attempt_timeout=2.0,
            )
        ]

    def registration_spec(self):
        """Node object visible through the API server."""
        return self.spec(
            [self.kubectl.target("get", "node", self.node)],
            max_attempts=60,
            interval=2.0,
            per_attempt_timeout=10.0,
        )

    async def after_ready(self) -> None:
        await self.ctx.prober.wait_until_ready(self.registration_spec(), self.ctx.on_attempt)
        logger.info("node_registered", node=self.node)
        self.untaint()
        self.label()

    def untaint(self) -> None:
        """Remove the control-plane taint; best effort."""
        result = self.kubectl.run("taint", "nodes", self.node, CONTROL_PLANE_TAINT)
        if result.ok:
            logger.info("node_untainted", node=self.node)
        elif any(marker in result.output for marker in _TAINT_ABSENT):
            logger.debug("node_not_tainted", node=self.node)
        else:
            logger.warning("node_untaint_failed", node=self.node, output=result.output)

    def label(self) -> None:
        result = self.kubectl.run("label", "node", self.node, MASTER_LABEL, "--overwrite")
        if not result.ok:
            logger.warning("node_label_failed", node=self.node, output=result.output)

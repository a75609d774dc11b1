"""kube-apiserver: the cluster's API front-end.

Anonymous requests are rejected (--anonymous-auth=false), so the readiness
probe first asks /readyz anonymously and, on 401/403, repeats the request
with the bootstrap token from the static token file.
"""

from __future__ import annotations

import asyncio

import httpx

from ..pki import ensure_token_file
from ..readiness import HttpTarget
from ..shared.logging import get_logger
from ..shared.network import LOOPBACK_IP
from .base import Service
from .etcd import CLIENT_PORT as ETCD_PORT

logger = get_logger(__name__)

SECURE_PORT = 6443
SERVICE_CLUSTER_IP_RANGE = "10.0.0.0/16"
SERVICE_ACCOUNT_ISSUER = "https://kubernetes.default.svc.cluster.local"


class ApiServer(Service):
    """kube-apiserver backed by the local etcd."""

    name = "apiserver"
    binary_name = "kube-apiserver"

    def __init__(self, ctx):
        super().__init__(ctx)
        self.etcd_endpoint = LOOPBACK_IP
        self.credential: str | None = None

    async def prepare(self) -> None:
        self.etcd_endpoint = await self.select_etcd_endpoint()
        self.credential = ensure_token_file(self.ctx.pki.token_file)

    async def select_etcd_endpoint(self) -> str:
        """Use etcd on the host address when it answers there, else loopback."""
        host = self.config.host_ip
        if host == LOOPBACK_IP:
            return LOOPBACK_IP

        url = f"http://{host}:{ETCD_PORT}/health"
        try:
            async with httpx.AsyncClient(timeout=1.0) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("etcd_host_unreachable_using_loopback", url=url, error=str(e))
            return LOOPBACK_IP

        if response.status_code == 200 and "health" in response.text:
            logger.info("etcd_endpoint_selected", endpoint=host)
            return host

        logger.warning("etcd_host_unhealthy_using_loopback", url=url, status=response.status_code)
        return LOOPBACK_IP

    def args(self) -> list[str]:
        pki = self.ctx.pki
        return [
            f"--etcd-servers=http://{self.etcd_endpoint}:{ETCD_PORT}",
            f"--service-cluster-ip-range={SERVICE_CLUSTER_IP_RANGE}",
            "--bind-address=0.0.0.0",
            f"--secure-port={SECURE_PORT}",
            f"--advertise-address={self.config.host_ip}",
            "--authorization-mode=AlwaysAllow",
            "--anonymous-auth=false",
            f"--client-ca-file={pki.ca_cert}",
            f"--tls-cert-file={pki.apiserver_cert}",
            f"--tls-private-key-file={pki.apiserver_key}",
            f"--service-account-key-file={pki.sa_pub}",
            f"--service-account-signing-key-file={pki.sa_key}",
            f"--service-account-issuer={SERVICE_ACCOUNT_ISSUER}",
            f"--token-auth-file={pki.token_file}",
            "--enable-priority-and-fairness=false",
            "--allow-privileged=true",
            "--profiling=false",
            "--storage-backend=etcd3",
            "--storage-media-type=application/json",
            f"--cert-dir={self.config.base_dir / 'apiserver'}",
            "--v=2",
        ]

    def probe_specs(self):
        targets = [HttpTarget(f"https://{LOOPBACK_IP}:{SECURE_PORT}/readyz")]
        if self.config.host_ip != LOOPBACK_IP:
            targets.append(HttpTarget(f"https://{self.config.host_ip}:{SECURE_PORT}/readyz"))
        targets.append(HttpTarget(f"https://{LOOPBACK_IP}:{SECURE_PORT}/livez"))
        return [
            self.spec(
                targets,
                success_threshold=3,
                max_attempts=300,
                interval=2.0,
                per_attempt_timeout=5.0,
                credential=self.credential,
                verify=self.ctx.pki.ca_cert,
            )
        ]

    async def wait_ready(self) -> None:
        if self.config.skip_api_wait:
            logger.warning(
                "skipping_apiserver_readiness",
                grace_seconds=self.config.api_grace_seconds,
            )
            await asyncio.sleep(self.config.api_grace_seconds)
            return
        await super().wait_ready()

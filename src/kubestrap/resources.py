"""Cluster objects every fresh control plane needs.

Creation is idempotent: an object that already exists counts as created,
so re-running the installer against a live cluster is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .config import InstallerConfig
from .errors import InstallerError
from .pki import PkiLayout
from .services.kubectl import Kubectl
from .shared.logging import get_logger

logger = get_logger(__name__)

SYSTEM_NAMESPACES = ("kube-system", "kube-public", "kube-node-lease", "default")
DEFAULT_NAMESPACE = "default"
ROOT_CA_CONFIGMAP = "kube-root-ca.crt"


@dataclass
class CreationReport:
    """Which objects were created, already present, or failed."""

    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def raise_for_failures(self, what: str) -> None:
        if self.failed:
            raise InstallerError(
                message=f"failed to create {what}: " + ", ".join(sorted(self.failed)),
                data={"failed": dict(self.failed)},
            )


class ClusterResources:
    """Create namespaces and default objects through kubectl."""

    def __init__(self, config: InstallerConfig, kubectl: Kubectl | None = None):
        self.config = config
        self.kubectl = kubectl or Kubectl(config)

    def _create(self, report: CreationReport, label: str, *args: str) -> None:
        result = self.kubectl.run("create", *args)
        if result.ok:
            logger.info("resource_created", resource=label)
            report.created.append(label)
        elif result.already_exists:
            logger.debug("resource_exists", resource=label)
            report.existing.append(label)
        else:
            logger.warning("resource_create_failed", resource=label, output=result.output)
            report.failed[label] = result.output

    def create_namespaces(self) -> CreationReport:
        report = CreationReport()
        for namespace in SYSTEM_NAMESPACES:
            self._create(report, f"namespace/{namespace}", "namespace", namespace)
        report.raise_for_failures("namespaces")
        return report

    def create_default_resources(self) -> CreationReport:
        """Default service account and the root CA ConfigMap."""
        ca_cert = PkiLayout.from_config(self.config).ca_cert
        report = CreationReport()
        self._create(
            report,
            "serviceaccount/default",
            "serviceaccount",
            "default",
            f"--namespace={DEFAULT_NAMESPACE}",
        )
        self._create(
            report,
            f"configmap/{ROOT_CA_CONFIGMAP}",
            "configmap",
            ROOT_CA_CONFIGMAP,
            f"--from-file=ca.crt={ca_cert}",
            f"--namespace={DEFAULT_NAMESPACE}",
        )
        report.raise_for_failures("default resources")
        return report

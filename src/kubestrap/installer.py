"""The concrete installation: which steps run, in which order, how critical.

Installer wires one InstallerConfig into the supervisor, the prober and the
service definitions, declares the step list and hands it to StepPipeline.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from .config import InstallerConfig
from .diagnostics import for_probe
from .pipeline import InstallStep, PipelineReport, StepCallback, StepPipeline
from .pki import PersistReport, PkiLayout, ensure_token_file, issue_bundle, persist
from .prerequisites import PrerequisiteChecker
from .readiness import ReadinessProber
from .readiness.prober import AttemptCallback
from .resources import ClusterResources
from .services import (
    ApiServer,
    Containerd,
    ControllerManager,
    Etcd,
    Kubectl,
    Kubelet,
    Scheduler,
    Service,
    ServiceContext,
)
from .shared.logging import get_logger
from .supervisor import DaemonHandle, DaemonSupervisor
from .verify import Verifier

logger = get_logger(__name__)


def required_directories(config: InstallerConfig) -> list[Path]:
    """Directories that must exist before any step writes into them."""
    return [
        config.base_dir,
        config.bin_dir,
        config.pki_dir,
        config.etcd_data_dir,
        config.manifests_dir,
        config.base_dir / "apiserver",
        config.kubelet_dir,
        config.kubelet_pki_dir,
        config.log_dir,
        config.cni_conf_dir,
        config.cni_bin_dir,
        config.kubeconfig.parent,
    ]


def ensure_directories(config: InstallerConfig) -> list[Path]:
    """Create the directory layout; existing directories are left alone.

    Raises:
        OSError: If a directory cannot be created
    """
    directories = required_directories(config)
    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)
    logger.info("directories_ready", count=len(directories))
    return directories


def generate_certificates(config: InstallerConfig) -> PersistReport:
    """Issue the trust bundle, persist it and create the bootstrap token file."""
    bundle = issue_bundle(
        host_ip=config.host_ip,
        ca_validity_days=config.ca_validity_days,
        leaf_validity_days=config.leaf_validity_days,
    )
    layout = PkiLayout.from_config(config)
    report = persist(bundle, layout)
    ensure_token_file(layout.token_file)
    return report


class Installer:
    """Single-node control plane installer."""

    def __init__(
        self,
        config: InstallerConfig,
        supervisor: DaemonSupervisor | None = None,
        prober: ReadinessProber | None = None,
        kubectl: Kubectl | None = None,
        on_step: StepCallback | None = None,
        on_attempt: AttemptCallback | None = None,
    ):
        """Initialize installer.

        Args:
            config: Installer configuration
            supervisor: Daemon supervisor (default: one inheriting os.environ)
            prober: Readiness prober (default: one collecting diagnostics)
            kubectl: kubectl wrapper for post-start work
            on_step: Pipeline progress callback
            on_attempt: Readiness progress callback
        """
        self.config = config
        self.supervisor = supervisor or DaemonSupervisor()
        self.prober = prober or ReadinessProber(diagnostics=for_probe)
        self.kubectl = kubectl or Kubectl(config)
        self.on_step = on_step
        self.ctx = ServiceContext(
            config=config,
            supervisor=self.supervisor,
            prober=self.prober,
            on_attempt=on_attempt,
        )
        self.handles: dict[str, DaemonHandle] = {}

    def _start(self, service: Service) -> Callable[[], object]:
        async def action() -> None:
            self.handles[service.name] = await service.start()

        return action

    def steps(self) -> list[InstallStep]:
        """The installation steps in execution order."""
        config = self.config
        ctx = self.ctx
        resources = ClusterResources(config, self.kubectl)
        verifier = Verifier(config, ReadinessProber(), self.kubectl)

        return [
            InstallStep("Creating directories", lambda: ensure_directories(config)),
            InstallStep(
                "Checking prerequisites",
                PrerequisiteChecker(config).run,
                critical=False,
                skip=config.skip_download,
            ),
            InstallStep("Generating certificates", lambda: generate_certificates(config)),
            InstallStep("Starting etcd", self._start(Etcd(ctx))),
            InstallStep("Starting API server", self._start(ApiServer(ctx))),
            InstallStep("Starting containerd", self._start(Containerd(ctx))),
            InstallStep(
                "Starting controller manager",
                self._start(ControllerManager(ctx)),
                critical=False,
            ),
            InstallStep("Starting scheduler", self._start(Scheduler(ctx)), critical=False),
            InstallStep("Starting kubelet", self._start(Kubelet(ctx, self.kubectl))),
            InstallStep(
                "Creating system namespaces",
                resources.create_namespaces,
                critical=False,
            ),
            InstallStep(
                "Creating default resources",
                resources.create_default_resources,
                critical=False,
            ),
            InstallStep(
                "Verifying installation",
                verifier.run,
                critical=False,
                skip=config.skip_verify,
            ),
        ]

    async def run(self) -> PipelineReport:
        """Run every step and return the pipeline report."""
        logger.info(
            "install_started",
            k8s_version=self.config.k8s_version,
            host_ip=self.config.host_ip,
            continue_on_error=self.config.continue_on_error,
        )
        pipeline = StepPipeline(
            self.steps(),
            continue_on_error=self.config.continue_on_error,
            on_step=self.on_step,
        )
        report = await pipeline.run()
        logger.info("install_finished", state=report.state.value, failures=len(report.failures))
        return report

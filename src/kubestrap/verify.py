"""Post-install verification.

A TCP check on the API server port, then a list of kubectl checks. Each
check is a readiness probe over a kubectl command with its own retry
budget. A failing critical check stops verification; the others are
reported as warnings.
"""

from __future__ import annotations

from dataclasses import dataclass

from .config import InstallerConfig
from .errors import ReadinessTimeout, VerificationError
from .readiness import ProbeSpec, ReadinessProber, TcpTarget
from .services.apiserver import SECURE_PORT
from .services.kubectl import Kubectl
from .shared.logging import get_logger
from .shared.network import LOOPBACK_IP

logger = get_logger(__name__)


@dataclass(frozen=True)
class VerifyCheck:
    """One kubectl check."""

    name: str
    args: tuple[str, ...]
    critical: bool = False
    retries: int = 3
    interval: float = 2.0


DEFAULT_CHECKS = (
    VerifyCheck("kubectl client", ("version", "--client"), critical=True, retries=3, interval=2.0),
    VerifyCheck("API health", ("get", "--raw=/healthz"), critical=True, retries=5, interval=3.0),
    VerifyCheck("API readiness", ("get", "--raw=/readyz?verbose"), retries=3),
    VerifyCheck("nodes", ("get", "nodes"), retries=3),
    VerifyCheck("component status", ("get", "componentstatuses"), retries=2),
    VerifyCheck("pods", ("get", "pods", "-A"), retries=2),
)


@dataclass
class VerifyReport:
    passed: list[str]
    warnings: list[str]

    @property
    def clean(self) -> bool:
        return not self.warnings


class Verifier:
    """Run the verification checks against the installed cluster."""

    def __init__(
        self,
        config: InstallerConfig,
        prober: ReadinessProber,
        kubectl: Kubectl | None = None,
        checks: tuple[VerifyCheck, ...] = DEFAULT_CHECKS,
    ):
        self.config = config
        self.prober = prober
        self.kubectl = kubectl or Kubectl(config)
        self.checks = checks

    def connectivity_spec(self) -> ProbeSpec:
        return ProbeSpec(
            targets=[TcpTarget(LOOPBACK_IP, SECURE_PORT), TcpTarget("localhost", SECURE_PORT)],
            max_attempts=3,
            interval=1.0,
            per_attempt_timeout=5.0,
            name="kube-apiserver",
            log_path=self.config.log_file("apiserver"),
        )

    def check_spec(self, check: VerifyCheck) -> ProbeSpec:
        return ProbeSpec(
            targets=[self.kubectl.target(*check.args)],
            max_attempts=check.retries,
            interval=check.interval,
            per_attempt_timeout=self.kubectl.timeout,
            name=check.name,
        )

    async def run(self) -> VerifyReport:
        """Run all checks.

        Raises:
            VerificationError: If the API port is unreachable or a critical
                check fails
        """
        report = VerifyReport(passed=[], warnings=[])

        try:
            await self.prober.wait_until_ready(self.connectivity_spec())
        except ReadinessTimeout as e:
            raise VerificationError(
                message=f"API server port {SECURE_PORT} unreachable: {e.last_error}",
                check="connectivity",
            ) from e
        report.passed.append("connectivity")

        for check in self.checks:
            try:
                await self.prober.wait_until_ready(self.check_spec(check))
            except ReadinessTimeout as e:
                if check.critical:
                    raise VerificationError(
                        message=f"critical check '{check.name}' failed: {e.last_error}",
                        check=check.name,
                    ) from e
                logger.warning("verify_check_failed", check=check.name, error=e.last_error)
                report.warnings.append(check.name)
                continue
            logger.info("verify_check_passed", check=check.name)
            report.passed.append(check.name)

        return report

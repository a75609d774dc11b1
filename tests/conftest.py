"""Shared test fixtures for kubestrap tests.

- installer_config: InstallerConfig with every path under a temp directory
- service_ctx: ServiceContext with a mocked supervisor and prober
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from kubestrap.config import InstallerConfig
from kubestrap.readiness import ReadinessProber
from kubestrap.services import ServiceContext
from kubestrap.supervisor import DaemonHandle, DaemonSupervisor


@pytest.fixture
def installer_config(tmp_path: Path) -> InstallerConfig:
    """Config rooted in tmp_path, advertising a fixed non-loopback address."""
    return InstallerConfig(
        base_dir=tmp_path / "kubernetes",
        kubelet_dir=tmp_path / "kubelet",
        log_dir=tmp_path / "log",
        host_ip="192.168.1.10",
        cni_conf_dir=tmp_path / "cni" / "net.d",
        cni_bin_dir=tmp_path / "cni" / "bin",
        containerd_config=tmp_path / "containerd" / "config.toml",
        containerd_state_dir=tmp_path / "run" / "containerd",
        containerd_root_dir=tmp_path / "containerd" / "root",
        kubeconfig=tmp_path / "kube" / "config",
        search_path="/usr/bin:/bin",
        api_grace_seconds=0.0,
    )


@pytest.fixture
def mock_supervisor() -> MagicMock:
    """Supervisor whose launch() returns a handle without starting anything."""
    supervisor = MagicMock(spec=DaemonSupervisor)

    def launch(command, args=(), log_path="", env=None):
        return DaemonHandle(command=str(command), args=tuple(args), log_path=Path(log_path), pid=4242)

    supervisor.launch.side_effect = launch
    return supervisor


@pytest.fixture
def mock_prober() -> MagicMock:
    """Prober whose waits succeed immediately."""
    prober = MagicMock(spec=ReadinessProber)
    prober.wait_until_ready = AsyncMock()
    return prober


@pytest.fixture
def service_ctx(installer_config, mock_supervisor, mock_prober) -> ServiceContext:
    return ServiceContext(config=installer_config, supervisor=mock_supervisor, prober=mock_prober)

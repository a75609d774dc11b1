"""Unit tests for the control-plane service definitions."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from kubestrap.readiness import CommandTarget, HttpTarget, TcpTarget, UnixSocketTarget
from kubestrap.services import (
    ApiServer,
    Containerd,
    ControllerManager,
    Etcd,
    Kubectl,
    KubectlResult,
    Kubelet,
    Scheduler,
    path_env,
)


class TestServiceStart:
    """Tests for the shared launch-then-probe sequence."""

    @pytest.mark.asyncio
    async def test_start_launches_then_probes(self, service_ctx, installer_config):
        handle = await Etcd(service_ctx).start()

        service_ctx.supervisor.launch.assert_called_once()
        args, kwargs = service_ctx.supervisor.launch.call_args
        assert args[0] == installer_config.bin_dir / "etcd"
        assert args[2] == installer_config.log_dir / "etcd.log"
        assert handle.pid == 4242
        spec = service_ctx.prober.wait_until_ready.await_args.args[0]
        assert spec.name == "etcd"
        assert spec.log_path == installer_config.log_dir / "etcd.log"
        assert spec.pid == 4242

    @pytest.mark.asyncio
    async def test_probe_failure_propagates(self, service_ctx):
        service_ctx.prober.wait_until_ready.side_effect = RuntimeError("never ready")
        with pytest.raises(RuntimeError):
            await Scheduler(service_ctx).start()

    def test_path_env(self, installer_config):
        env = path_env(installer_config, "/opt/cni/bin")
        assert env["PATH"] == f"/usr/bin:/bin:{installer_config.bin_dir}:/opt/cni/bin"


class TestEtcd:
    """Tests for etcd."""

    def test_args(self, service_ctx, installer_config):
        args = Etcd(service_ctx).args()
        assert "--name=default" in args
        assert f"--data-dir={installer_config.etcd_data_dir}" in args
        assert "--advertise-client-urls=http://192.168.1.10:2379" in args

    def test_probe_tries_host_then_loopback(self, service_ctx):
        (spec,) = Etcd(service_ctx).probe_specs()
        assert [t.url for t in spec.targets] == [
            "http://192.168.1.10:2379/health",
            "http://127.0.0.1:2379/health",
        ]
        assert (spec.success_threshold, spec.max_attempts, spec.interval) == (1, 30, 1.0)


class TestApiServer:
    """Tests for kube-apiserver."""

    @pytest.mark.asyncio
    async def test_prepare_uses_host_etcd_when_healthy(self, service_ctx):
        api = ApiServer(service_ctx)

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client_class.return_value.__aenter__.return_value = mock_client
            mock_client.get.return_value = MagicMock(status_code=200, text='{"health":"true"}')
            await api.prepare()

        assert api.etcd_endpoint == "192.168.1.10"
        assert "--etcd-servers=http://192.168.1.10:2379" in api.args()
        assert api.credential
        assert service_ctx.pki.token_file.exists()

    @pytest.mark.asyncio
    async def test_prepare_falls_back_to_loopback(self, service_ctx):
        api = ApiServer(service_ctx)

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client_class.return_value.__aenter__.return_value = mock_client
            mock_client.get.side_effect = httpx.ConnectError("refused")
            await api.prepare()

        assert api.etcd_endpoint == "127.0.0.1"

    def test_args_reject_anonymous(self, service_ctx):
        args = ApiServer(service_ctx).args()
        pki = service_ctx.pki
        assert "--anonymous-auth=false" in args
        assert f"--tls-cert-file={pki.apiserver_cert}" in args
        assert f"--client-ca-file={pki.ca_cert}" in args
        assert f"--token-auth-file={pki.token_file}" in args

    @pytest.mark.asyncio
    async def test_probe_uses_bootstrap_token(self, service_ctx):
        api = ApiServer(service_ctx)
        api.credential = "tok"

        (spec,) = api.probe_specs()

        assert spec.credential == "tok"
        assert spec.success_threshold == 3
        assert spec.max_attempts == 300
        assert spec.verify == service_ctx.pki.ca_cert
        assert [t.url for t in spec.targets] == [
            "https://127.0.0.1:6443/readyz",
            "https://192.168.1.10:6443/readyz",
            "https://127.0.0.1:6443/livez",
        ]

    @pytest.mark.asyncio
    async def test_skip_api_wait_sleeps_instead(self, service_ctx, installer_config):
        installer_config.skip_api_wait = True

        await ApiServer(service_ctx).wait_ready()

        service_ctx.prober.wait_until_ready.assert_not_awaited()


class TestContainerd:
    """Tests for containerd."""

    @pytest.mark.asyncio
    async def test_prepare_removes_stale_sockets(self, service_ctx, installer_config):
        containerd = Containerd(service_ctx)
        installer_config.containerd_state_dir.mkdir(parents=True)
        stale = installer_config.containerd_socket
        stale.write_text("")

        await containerd.prepare()

        assert not stale.exists()
        assert installer_config.containerd_root_dir.is_dir()

    def test_env(self, service_ctx):
        env = Containerd(service_ctx).env()
        assert env["CONTAINERD_NAMESPACE"] == "k8s.io"
        assert env["TMPDIR"] == "/tmp"

    def test_probe_socket_then_cri(self, service_ctx, installer_config):
        socket_spec, cri_spec = Containerd(service_ctx).probe_specs()
        assert socket_spec.targets == (UnixSocketTarget(installer_config.containerd_socket),)
        (target,) = cri_spec.targets
        assert isinstance(target, CommandTarget)
        assert target.argv[-1] == "info"
        assert f"unix://{installer_config.containerd_socket}" in target.argv
        assert cri_spec.success_threshold == 2


class TestControllerManagerAndScheduler:
    """Tests for the controller manager and the scheduler."""

    def test_controller_manager(self, service_ctx):
        cm = ControllerManager(service_ctx)
        assert cm.binary.name == "kube-controller-manager"
        assert "--leader-elect=false" in cm.args()
        assert f"--service-account-private-key-file={service_ctx.pki.sa_key}" in cm.args()
        (spec,) = cm.probe_specs()
        assert spec.targets == (TcpTarget("127.0.0.1", 10257),)

    def test_scheduler(self, service_ctx):
        scheduler = Scheduler(service_ctx)
        assert scheduler.binary.name == "kube-scheduler"
        (spec,) = scheduler.probe_specs()
        assert spec.targets == (TcpTarget("127.0.0.1", 10259),)


class TestKubelet:
    """Tests for kubelet."""

    @pytest.fixture
    def kubectl(self):
        kubectl = MagicMock(spec=Kubectl)
        kubectl.target.side_effect = lambda *args: CommandTarget(["kubectl", *args])
        kubectl.run.return_value = KubectlResult(0, "")
        return kubectl

    def test_args(self, service_ctx, installer_config, kubectl):
        kubelet = Kubelet(service_ctx, kubectl)
        args = kubelet.args()
        assert f"--kubeconfig={installer_config.kubelet_kubeconfig}" in args
        assert f"--hostname-override={kubelet.node}" in args
        assert "--node-ip=192.168.1.10" in args

    def test_healthz_probe(self, service_ctx, kubectl):
        (spec,) = Kubelet(service_ctx, kubectl).probe_specs()
        assert spec.targets == (HttpTarget("http://127.0.0.1:10248/healthz"),)

    @pytest.mark.asyncio
    async def test_after_ready_registers_untaints_and_labels(self, service_ctx, kubectl):
        kubelet = Kubelet(service_ctx, kubectl)

        await kubelet.after_ready()

        spec = service_ctx.prober.wait_until_ready.await_args.args[0]
        assert spec.targets == (CommandTarget(["kubectl", "get", "node", kubelet.node]),)
        commands = [c.args[0] for c in kubectl.run.call_args_list]
        assert commands == ["taint", "label"]

    def test_untaint_tolerates_absent_taint(self, service_ctx, kubectl):
        kubectl.run.return_value = KubectlResult(1, 'error: taint "node-role.kubernetes.io/control-plane" not found')
        Kubelet(service_ctx, kubectl).untaint()


class TestKubectl:
    """Tests for the kubectl wrapper."""

    def test_run_success(self, installer_config):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="ok\n", stderr="")
            result = Kubectl(installer_config).run("get", "nodes")

        assert result.ok
        argv = mock_run.call_args.args[0]
        assert argv == [
            str(installer_config.bin_dir / "kubectl"),
            "--kubeconfig",
            str(installer_config.kubeconfig),
            "get",
            "nodes",
        ]

    def test_already_exists(self, installer_config):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(
                returncode=1, stdout="", stderr='Error from server (AlreadyExists): namespaces "default" already exists'
            )
            result = Kubectl(installer_config).run("create", "namespace", "default")

        assert not result.ok
        assert result.already_exists

    def test_missing_binary(self, installer_config):
        with patch("subprocess.run", side_effect=FileNotFoundError):
            result = Kubectl(installer_config).run("version")
        assert result.returncode == 127

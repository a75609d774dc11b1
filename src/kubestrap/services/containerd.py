"""containerd: the container runtime behind the kubelet's CRI."""

from __future__ import annotations

from ..readiness import CommandTarget, UnixSocketTarget
from ..shared.logging import get_logger
from .base import Service, path_env

logger = get_logger(__name__)


class Containerd(Service):
    """containerd with its CRI plugin."""

    name = "containerd"

    @property
    def stale_files(self):
        """Sockets and locks left behind by a previous containerd."""
        state = self.config.containerd_state_dir
        return [
            state / "containerd.sock",
            state / "containerd.sock.ttrpc",
            self.config.containerd_root_dir / "io.containerd.metadata.v1.bolt" / "meta.db.lock",
        ]

    async def prepare(self) -> None:
        for directory in (self.config.containerd_root_dir, self.config.containerd_state_dir):
            directory.mkdir(parents=True, exist_ok=True)

        for path in self.stale_files:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("stale_file_not_removed", path=str(path), error=str(e))

    def args(self) -> list[str]:
        return [
            "--config",
            str(self.config.containerd_config),
            "--address",
            str(self.config.containerd_socket),
            "--log-level",
            "info",
        ]

    def env(self):
        env = path_env(self.config, "/usr/local/bin", "/usr/sbin")
        env["CONTAINERD_NAMESPACE"] = "k8s.io"
        env["TMPDIR"] = "/tmp"
        return env

    def crictl(self, *args: str) -> CommandTarget:
        return CommandTarget(
            [
                str(self.config.binary("crictl")),
                "--runtime-endpoint",
                f"unix://{self.config.containerd_socket}",
                "--timeout",
                "5s",
                *args,
            ]
        )

    def probe_specs(self):
        return [
            # The socket accepting connections comes first...
            self.spec(
                [UnixSocketTarget(self.config.containerd_socket)],
                success_threshold=1,
                max_attempts=60,
                interval=0.5,
                per_attempt_timeout=2.0,
            ),
            # ...then the CRI plugin must answer twice in a row; it reports
            # early while the metadata store is still initializing.
            self.spec(
                [self.crictl("info")],
                success_threshold=2,
                max_attempts=120,
                interval=1.0,
                per_attempt_timeout=10.0,
            ),
        ]
